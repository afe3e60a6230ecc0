"""
Token pricing used for per-call cost estimates.

Rates are nano-USD per token. Model names are matched on the longest known
prefix so dated variants ("gemini-2.5-flash-lite-001") resolve to their family.
"""
from typing import Dict, Tuple

NANO_USD = 1_000_000_000

# model prefix -> (input nano-USD/token, output nano-USD/token)
MODEL_PRICING: Dict[str, Tuple[int, int]] = {
    "gemini-2.5-flash-lite": (100, 400),
    "gemini-2.5-flash": (300, 2500),
    "gemini-2.5-pro": (1250, 10000),
    "gemini-2.0-flash-lite": (75, 300),
    "gemini-2.0-flash": (100, 400),
}
FALLBACK_PRICING_MODEL = "gemini-2.5-flash-lite"


def resolve_model_pricing(model: str) -> Tuple[int, int]:
    name = (model or "").strip().lower()
    matches = [prefix for prefix in MODEL_PRICING if name.startswith(prefix)]
    if not matches:
        return MODEL_PRICING[FALLBACK_PRICING_MODEL]
    return MODEL_PRICING[max(matches, key=len)]


def estimate_cost_usd(model: str, input_tokens: int, output_tokens: int) -> float:
    input_rate, output_rate = resolve_model_pricing(model)
    nano = max(0, input_tokens) * input_rate + max(0, output_tokens) * output_rate
    return nano / NANO_USD
