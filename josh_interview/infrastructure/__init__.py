"""Infrastructure components for the JOSH interview engine.

This module contains low-level technical components that the interview
engine builds on: the LLM provider, storage and telemetry.
"""

# LLM infrastructure
from .llm import VertexRestClient, LlmProvider, LlmProviderError

# Storage
from .data import ConversationStore, InMemoryConversationStore, JsonFileConversationStore

# Telemetry
from .observability import ObservabilitySink, LoggingObservabilitySink, InMemoryObservabilitySink

__all__ = [
    # LLM client
    "VertexRestClient", "LlmProvider", "LlmProviderError",

    # Storage
    "ConversationStore", "InMemoryConversationStore", "JsonFileConversationStore",

    # Telemetry
    "ObservabilitySink", "LoggingObservabilitySink", "InMemoryObservabilitySink",
]
