"""LLM provider infrastructure."""

from .provider import LlmProvider, LlmProviderError, LlmRequest, LlmResponse, LlmUsage
from .client import VertexRestClient
from .pricing import estimate_cost_usd, resolve_model_pricing

__all__ = [
    "LlmProvider", "LlmProviderError", "LlmRequest", "LlmResponse", "LlmUsage",
    "VertexRestClient", "estimate_cost_usd", "resolve_model_pricing",
]
