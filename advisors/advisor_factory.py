"""
Advisor factory for creating range advisors.
"""
import logging
from typing import Type, Dict, Any
from config import Config
from .base_advisor import BaseRangeAdvisor
from .heuristic_advisor import HeuristicRangeAdvisor
from .llm_advisor import LLMRangeAdvisor

logger = logging.getLogger(__name__)


class AdvisorFactory:
    """
    Factory class for creating range advisors.

    Lets configuration pick the recommendation strategy without touching
    the orchestrator.
    """

    _advisors: Dict[str, Type[BaseRangeAdvisor]] = {
        'heuristic': HeuristicRangeAdvisor,
        'llm': LLMRangeAdvisor,
    }

    @classmethod
    def create_advisor(cls, advisor_name: str, config: Config) -> BaseRangeAdvisor:
        """
        Create an advisor instance.

        Args:
            advisor_name: Registered advisor name
            config: Configuration object

        Returns:
            Advisor instance

        Raises:
            ValueError: If advisor name is not found
        """
        key = advisor_name.lower()
        if key not in cls._advisors:
            available = ', '.join(cls._advisors.keys())
            raise ValueError(f"Unknown advisor '{advisor_name}'. Available advisors: {available}")

        advisor = cls._advisors[key](config)
        logger.info(f"Created {advisor.advisor_name} instance")
        return advisor

    @classmethod
    def get_available_advisors(cls) -> Dict[str, str]:
        """Map advisor names to their class names"""
        return {name: advisor_class.__name__ for name, advisor_class in cls._advisors.items()}

    @classmethod
    def register_advisor(cls, name: str, advisor_class: Type[BaseRangeAdvisor]):
        """
        Register a new advisor class.

        Args:
            name: Name of the advisor
            advisor_class: Class that inherits from BaseRangeAdvisor
        """
        if not issubclass(advisor_class, BaseRangeAdvisor):
            raise ValueError("Advisor class must inherit from BaseRangeAdvisor")

        cls._advisors[name.lower()] = advisor_class
        logger.info(f"Registered new advisor: {name}")

    @classmethod
    def get_advisor_info(cls, advisor_name: str, config: Config) -> Dict[str, Any]:
        """Describe a registered advisor"""
        return cls.create_advisor(advisor_name, config).get_advisor_info()
