"""
LLM-backed range advisor.
Asks a chat-completions model for range parameters and falls back to the
heuristic advisor whenever the model is unavailable or its answer is unusable.
"""
import json
import logging
import math
from dataclasses import asdict
from typing import Dict, Any, Optional, Tuple

import requests

from config import Config
from lp_types import KPISet, RangeRecommendation, RecommendationAction, RiskProfile
from utils import ParseError, UpstreamUnavailable
from .base_advisor import BaseRangeAdvisor
from .heuristic_advisor import HeuristicRangeAdvisor

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = (
    'action', 'confidence', 'reasoning', 'half_width_pct', 'center_skew_pct', 'expected_outcome'
)
FORBIDDEN_KEY_FRAGMENTS = ('tick', 'sqrt', 'amount')

SYSTEM_PROMPT = (
    "You are an expert DeFi liquidity provider analyst for concentrated liquidity pools. "
    "Answer with exactly one JSON object in the requested format and nothing else."
)

USER_PROMPT_TEMPLATE = """Analyze this concentrated liquidity position and recommend whether to move its range.

## Position
- Current range: ticks [{lower_tick}, {upper_tick}]
- Risk profile: {risk_profile}

## Pool KPIs
{kpis}

## Risk profile guidelines
- conservative: half-width 2-5% around the current price
- medium: half-width 5-10% around the current price
- aggressive: half-width 10-20% around the current price
The full range width must stay between {min_width}% and {max_width}% of the price.

## Response format
Return one JSON object with exactly these fields:
{{
  "action": "rebalance|maintain|withdraw",
  "confidence": 0.0-1.0,
  "reasoning": "short data-driven explanation",
  "half_width_pct": number,
  "center_skew_pct": number,
  "expected_outcome": "what the change should achieve"
}}
Do not include ticks, sqrt prices or token amounts."""


class OpenAIChatClient:
    """Minimal chat-completions client"""

    def __init__(self, api_key: str, model: str = 'gpt-4',
                 base_url: str = 'https://api.openai.com/v1',
                 temperature: float = 0.3, timeout: float = 60.0):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip('/')
        self.temperature = temperature
        self.timeout = timeout

    def generate_text(self, system_prompt: str, user_prompt: str) -> str:
        """
        Send a system+user prompt and return the model's text

        Raises:
            UpstreamUnavailable: Transport error or non-200 status
            ParseError: Response body without a message content
        """
        try:
            response = requests.post(
                f"{self.base_url}/chat/completions",
                headers={
                    'Authorization': f"Bearer {self.api_key}",
                    'Content-Type': 'application/json'
                },
                json={
                    'model': self.model,
                    'messages': [
                        {'role': 'system', 'content': system_prompt},
                        {'role': 'user', 'content': user_prompt}
                    ],
                    'temperature': self.temperature,
                    'max_tokens': 800
                },
                timeout=self.timeout
            )
        except requests.RequestException as e:
            raise UpstreamUnavailable(f"Advisor request failed: {e}") from e

        if response.status_code != 200:
            raise UpstreamUnavailable(f"Advisor returned HTTP {response.status_code}: {response.text[:200]}")

        try:
            return response.json()['choices'][0]['message']['content']
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise ParseError(f"Unexpected advisor response shape: {e}") from e


def extract_json_object(text: str) -> str:
    """
    Return the first top-level JSON object in free text.

    Scans from the first '{' to its matching '}', ignoring braces inside
    JSON strings.
    """
    if not isinstance(text, str):
        raise ParseError("Advisor response is not text")

    start = text.find('{')
    if start == -1:
        raise ParseError("No JSON object in advisor response")

    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == '\\':
                escaped = True
            elif char == '"':
                in_string = False
        elif char == '"':
            in_string = True
        elif char == '{':
            depth += 1
        elif char == '}':
            depth -= 1
            if depth == 0:
                return text[start:index + 1]

    raise ParseError("Unbalanced JSON object in advisor response")


def _find_forbidden_keys(value: Any, path: str = '') -> Optional[str]:
    if isinstance(value, dict):
        for key, child in value.items():
            lowered = str(key).lower()
            if any(fragment in lowered for fragment in FORBIDDEN_KEY_FRAGMENTS):
                return f"{path}{key}"
            found = _find_forbidden_keys(child, f"{path}{key}.")
            if found:
                return found
    elif isinstance(value, list):
        for child in value:
            found = _find_forbidden_keys(child, path)
            if found:
                return found
    return None


def _number(data: Dict[str, Any], name: str) -> float:
    value = data[name]
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ParseError(f"Field '{name}' must be a number, got {type(value).__name__}")
    # json.loads accepts NaN and Infinity literals
    if not math.isfinite(value):
        raise ParseError(f"Field '{name}' must be finite, got {value}")
    return float(value)


def _text(data: Dict[str, Any], name: str) -> str:
    value = data[name]
    if not isinstance(value, str):
        raise ParseError(f"Field '{name}' must be a string, got {type(value).__name__}")
    return value


def parse_recommendation(text: str, risk_profile: RiskProfile) -> RangeRecommendation:
    """
    Parse and validate an advisor answer

    Raises:
        ParseError: Any structural, field or type violation
    """
    try:
        data = json.loads(extract_json_object(text))
    except ValueError as e:
        raise ParseError(f"Advisor JSON is invalid: {e}") from e

    if not isinstance(data, dict):
        raise ParseError("Advisor JSON is not an object")

    forbidden = _find_forbidden_keys(data)
    if forbidden:
        raise ParseError(f"Advisor response contains forbidden field '{forbidden}'")

    missing = [name for name in REQUIRED_FIELDS if name not in data]
    if missing:
        raise ParseError(f"Advisor response missing fields: {', '.join(missing)}")

    extra = sorted(set(data) - set(REQUIRED_FIELDS))
    if extra:
        raise ParseError(f"Advisor response has unexpected fields: {', '.join(extra)}")

    try:
        action = RecommendationAction(_text(data, 'action').strip().lower())
    except ValueError as e:
        raise ParseError(f"Unknown advisor action: {data['action']}") from e

    confidence = _number(data, 'confidence')
    if not 0.0 <= confidence <= 1.0:
        raise ParseError(f"Confidence {confidence} outside [0, 1]")

    half_width = _number(data, 'half_width_pct')
    if half_width <= 0:
        raise ParseError(f"Half-width must be positive, got {half_width}")

    return RangeRecommendation(
        action=action,
        confidence=confidence,
        half_width_pct=half_width,
        center_skew_pct=_number(data, 'center_skew_pct'),
        risk_profile=risk_profile,
        reasoning=_text(data, 'reasoning'),
        expected_outcome=_text(data, 'expected_outcome'),
        source='llm'
    )


class LLMRangeAdvisor(BaseRangeAdvisor):
    """
    Advisor backed by an external text-generation model.

    Any unavailability or unusable answer yields the heuristic advisor's
    recommendation instead; callers see the same return type either way.
    """

    def __init__(self, config: Config, client: Optional[OpenAIChatClient] = None,
                 fallback: Optional[BaseRangeAdvisor] = None):
        super().__init__(config)
        self.fallback = fallback or HeuristicRangeAdvisor(config)
        self.fallback_count = 0

        if client is None and config.OPENAI_API_KEY:
            client = OpenAIChatClient(
                api_key=config.OPENAI_API_KEY,
                model=config.OPENAI_MODEL,
                base_url=config.OPENAI_BASE_URL,
                temperature=config.OPENAI_TEMPERATURE,
                timeout=config.OPENAI_TIMEOUT_SECONDS
            )
        self.client = client

        if self.client is None:
            logger.info("No LLM client configured; heuristic recommendations will be used")

    def build_prompt(self, kpis: KPISet, current_range: Tuple[int, int], risk_profile: RiskProfile) -> str:
        kpi_data = asdict(kpis)
        kpi_data['volatility'] = kpis.volatility
        return USER_PROMPT_TEMPLATE.format(
            lower_tick=current_range[0],
            upper_tick=current_range[1],
            risk_profile=risk_profile.value,
            kpis=json.dumps(kpi_data, indent=2, default=str),
            min_width=self.config.MIN_RANGE_WIDTH_PERCENTAGE,
            max_width=self.config.MAX_RANGE_WIDTH_PERCENTAGE
        )

    def recommend(
        self,
        kpis: KPISet,
        current_range: Tuple[int, int],
        risk_profile: RiskProfile
    ) -> RangeRecommendation:
        if self.client is None:
            return self.fallback.recommend(kpis, current_range, risk_profile)

        try:
            text = self.client.generate_text(SYSTEM_PROMPT, self.build_prompt(kpis, current_range, risk_profile))
            recommendation = parse_recommendation(text, risk_profile)
        except (UpstreamUnavailable, ParseError) as e:
            self.fallback_count += 1
            logger.warning(f"LLM advisor unusable ({e}); falling back to heuristic")
            return self.fallback.recommend(kpis, current_range, risk_profile)

        logger.info(f"LLM recommends {recommendation.action.value} "
                    f"(confidence {recommendation.confidence:.2f}, half-width {recommendation.half_width_pct}%)")
        return recommendation

    def get_advisor_info(self) -> Dict[str, Any]:
        return {
            'name': 'LLM Range Advisor',
            'description': 'Chat-completions model with heuristic fallback',
            'version': '1.0.0',
            'parameters': {
                'model': self.config.OPENAI_MODEL,
                'client_configured': self.client is not None,
                'fallback': self.fallback.advisor_name
            }
        }
