"""
Provider-neutral request/response types for text generation.
"""
import threading
from dataclasses import dataclass
from typing import Optional


@dataclass
class LlmRequest:
    system_prompt: str
    user_prompt: str
    timeout_ms: Optional[int] = None
    cancel_event: Optional[threading.Event] = None

    @property
    def cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()


@dataclass
class LlmUsage:
    input_tokens: int = 0
    output_tokens: int = 0


@dataclass
class LlmResponse:
    text: str
    model: str
    provider: str
    usage: Optional[LlmUsage] = None


class LlmProviderError(RuntimeError):
    """A provider call failed. transient=True means retrying may succeed."""

    def __init__(self, message: str, transient: bool, status: Optional[int] = None):
        super().__init__(message)
        self.transient = transient
        self.status = status


TRANSIENT_HTTP_STATUSES = frozenset({408, 409, 429})


def is_transient_http_status(status: int) -> bool:
    return status in TRANSIENT_HTTP_STATUSES or status >= 500


class LlmProvider:
    """Anything that turns a system + user prompt into text."""

    name = "unknown"
    model = "unknown"

    def generate_text(self, request: LlmRequest) -> LlmResponse:
        raise NotImplementedError
