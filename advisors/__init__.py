"""
Range recommendation strategies for the rebalancer.
"""
from .base_advisor import BaseRangeAdvisor
from .heuristic_advisor import HeuristicRangeAdvisor
from .llm_advisor import LLMRangeAdvisor, OpenAIChatClient
from .advisor_factory import AdvisorFactory

__all__ = ['BaseRangeAdvisor', 'HeuristicRangeAdvisor', 'LLMRangeAdvisor', 'OpenAIChatClient', 'AdvisorFactory']
