"""
Event-driven architecture for the interview system.
"""
import logging
from abc import ABC
from typing import Dict, Any, List, Callable, Optional
from dataclasses import dataclass
from enum import Enum

logger = logging.getLogger("events")


class EventType(str, Enum):
    """Types of interview events."""
    INTERVIEW_STARTED = "interview_started"
    INTERVIEW_RESUMED = "interview_resumed"
    INTERVIEW_PAUSED = "interview_paused"
    INTERVIEW_STEP_SAVED = "interview_step_saved"
    INTERVIEW_COMPLETED = "interview_completed"
    ANSWER_RETRY = "answer_retry"
    ERROR_OCCURRED = "error_occurred"


@dataclass
class InterviewEvent(ABC):
    """Base class for all interview events."""
    event_type: EventType
    user_id: str
    timestamp: float
    data: Dict[str, Any]


@dataclass
class InterviewStartedEvent(InterviewEvent):
    """Event fired when an interview (re)starts at a step."""
    def __init__(self, user_id: str, timestamp: float, step_id: str):
        super().__init__(
            event_type=EventType.INTERVIEW_STARTED,
            user_id=user_id,
            timestamp=timestamp,
            data={"step_id": step_id}
        )


@dataclass
class InterviewResumedEvent(InterviewEvent):
    """Event fired when a user comes back after a dropout nudge."""
    def __init__(self, user_id: str, timestamp: float, step_id: str):
        super().__init__(
            event_type=EventType.INTERVIEW_RESUMED,
            user_id=user_id,
            timestamp=timestamp,
            data={"step_id": step_id}
        )


@dataclass
class InterviewPausedEvent(InterviewEvent):
    """Event fired when the user asks to continue later."""
    def __init__(self, user_id: str, timestamp: float, step_id: str):
        super().__init__(
            event_type=EventType.INTERVIEW_PAUSED,
            user_id=user_id,
            timestamp=timestamp,
            data={"step_id": step_id}
        )


@dataclass
class StepSavedEvent(InterviewEvent):
    """Event fired when an answer was saved and the interview moved on."""
    def __init__(self, user_id: str, timestamp: float, payload: Dict[str, Any]):
        super().__init__(
            event_type=EventType.INTERVIEW_STEP_SAVED,
            user_id=user_id,
            timestamp=timestamp,
            data=dict(payload)
        )


@dataclass
class InterviewCompletedEvent(InterviewEvent):
    """Event fired when the profile reaches MVP coverage."""
    def __init__(self, user_id: str, timestamp: float, payload: Dict[str, Any]):
        super().__init__(
            event_type=EventType.INTERVIEW_COMPLETED,
            user_id=user_id,
            timestamp=timestamp,
            data=dict(payload)
        )


@dataclass
class AnswerRetryEvent(InterviewEvent):
    """Event fired when an answer could not be read and the retry prompt was sent."""
    def __init__(self, user_id: str, timestamp: float, step_id: str):
        super().__init__(
            event_type=EventType.ANSWER_RETRY,
            user_id=user_id,
            timestamp=timestamp,
            data={"step_id": step_id}
        )


@dataclass
class ErrorOccurredEvent(InterviewEvent):
    """Event fired when an error occurs."""
    def __init__(self, user_id: str, timestamp: float, error_type: str,
                 error_message: str, component: str):
        super().__init__(
            event_type=EventType.ERROR_OCCURRED,
            user_id=user_id,
            timestamp=timestamp,
            data={
                "error_type": error_type,
                "error_message": error_message,
                "component": component
            }
        )


EventHandler = Callable[[InterviewEvent], None]


class InterviewEventBus:
    """Fans interview events out to subscribers. A failing subscriber is logged and skipped."""

    def __init__(self):
        self._subscribers: List[EventHandler] = []

    def subscribe(self, handler: EventHandler) -> None:
        self._subscribers.append(handler)

    def publish(self, event: InterviewEvent) -> None:
        logger.debug(f"Publishing {event.event_type.value} for {event.user_id} to {len(self._subscribers)} subscribers")
        for handler in list(self._subscribers):
            try:
                handler(event)
            except Exception as e:
                logger.error(f"Subscriber failed on {event.event_type.value} for {event.user_id}: {e}")


class EventLogger:
    """Logs all events for debugging and analysis."""

    def __init__(self, log_level: int = logging.INFO):
        self.logger = logging.getLogger("event_logger")
        self.logger.setLevel(log_level)

    def handle_event(self, event: InterviewEvent) -> None:
        """Log event details (answers are left out, they hold user text)."""
        summary = {k: v for k, v in event.data.items() if k != "answer"}
        self.logger.info(f"Event: {event.event_type.value} | User: {event.user_id} | Data: {summary}")


class InterviewMetrics:
    """Collects metrics from interview events."""

    def __init__(self):
        self.reset()

    def handle_event(self, event: InterviewEvent) -> None:
        """Update metrics based on event."""
        if event.event_type == EventType.INTERVIEW_STARTED:
            self.interviews_started += 1
        elif event.event_type == EventType.INTERVIEW_RESUMED:
            self.interviews_resumed += 1
        elif event.event_type == EventType.INTERVIEW_PAUSED:
            self.interviews_paused += 1
        elif event.event_type in (EventType.INTERVIEW_STEP_SAVED, EventType.INTERVIEW_COMPLETED):
            self.steps_saved += 1
            if event.data.get("extraction_source") == "llm":
                self.llm_answers += 1
            elif event.data.get("extraction_fallback_reason"):
                self.llm_fallbacks += 1
            if event.event_type == EventType.INTERVIEW_COMPLETED:
                self.interviews_completed += 1
        elif event.event_type == EventType.ANSWER_RETRY:
            self.retries += 1
        elif event.event_type == EventType.ERROR_OCCURRED:
            self.errors_occurred += 1

    def get_metrics(self) -> Dict[str, int]:
        """Get current metrics snapshot."""
        return {
            "interviews_started": self.interviews_started,
            "interviews_resumed": self.interviews_resumed,
            "interviews_paused": self.interviews_paused,
            "interviews_completed": self.interviews_completed,
            "steps_saved": self.steps_saved,
            "llm_answers": self.llm_answers,
            "llm_fallbacks": self.llm_fallbacks,
            "retries": self.retries,
            "errors_occurred": self.errors_occurred
        }

    def reset(self) -> None:
        """Reset all metrics to zero."""
        self.interviews_started = 0
        self.interviews_resumed = 0
        self.interviews_paused = 0
        self.interviews_completed = 0
        self.steps_saved = 0
        self.llm_answers = 0
        self.llm_fallbacks = 0
        self.retries = 0
        self.errors_occurred = 0


def event_for_plan(user_id: str, timestamp: float, action: str, step_id: Optional[str],
                   event_type: Optional[str], payload: Optional[Dict[str, Any]]) -> Optional[InterviewEvent]:
    """Map a planner decision onto the bus event announcing it (None for replays)."""
    if event_type == EventType.INTERVIEW_COMPLETED.value:
        return InterviewCompletedEvent(user_id, timestamp, payload or {})
    if event_type == EventType.INTERVIEW_STEP_SAVED.value:
        return StepSavedEvent(user_id, timestamp, payload or {})
    if action == "start" and step_id:
        return InterviewStartedEvent(user_id, timestamp, step_id)
    if action == "resume" and step_id:
        return InterviewResumedEvent(user_id, timestamp, step_id)
    if action == "pause" and step_id:
        return InterviewPausedEvent(user_id, timestamp, step_id)
    if action == "retry" and step_id:
        return AnswerRetryEvent(user_id, timestamp, step_id)
    return None
