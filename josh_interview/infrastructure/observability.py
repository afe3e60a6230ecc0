"""
Observability sinks for metrics and structured log events.

Sinks are best-effort: callers go through emit_metric_safely/log_event_safely so a
broken sink can never interrupt an interview turn.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..utils.logging import redact_pii

logger = logging.getLogger("observability")

LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


class ObservabilitySink:
    """Receives metrics and log events."""

    def emit_metric(self, name: str, value: float, tags: Optional[Dict[str, str]] = None) -> None:
        raise NotImplementedError

    def log_event(self, level: str, event: str, payload: Optional[Dict[str, Any]] = None) -> None:
        raise NotImplementedError


class LoggingObservabilitySink(ObservabilitySink):
    """Writes metrics and events through the standard logging module, with PII redacted."""

    def __init__(self, logger_name: str = "telemetry"):
        self.logger = logging.getLogger(logger_name)

    def emit_metric(self, name: str, value: float, tags: Optional[Dict[str, str]] = None) -> None:
        self.logger.info("metric %s=%s tags=%s", name, value, tags or {})

    def log_event(self, level: str, event: str, payload: Optional[Dict[str, Any]] = None) -> None:
        self.logger.log(LEVELS.get(level, logging.INFO), "event %s %s", event, redact_pii(payload or {}))


@dataclass
class MetricRecord:
    name: str
    value: float
    tags: Dict[str, str] = field(default_factory=dict)


@dataclass
class EventRecord:
    level: str
    event: str
    payload: Dict[str, Any] = field(default_factory=dict)


class InMemoryObservabilitySink(ObservabilitySink):
    """Keeps everything in lists; used by the simulator summary and tests."""

    def __init__(self):
        self.metrics: List[MetricRecord] = []
        self.events: List[EventRecord] = []

    def emit_metric(self, name: str, value: float, tags: Optional[Dict[str, str]] = None) -> None:
        self.metrics.append(MetricRecord(name, value, dict(tags or {})))

    def log_event(self, level: str, event: str, payload: Optional[Dict[str, Any]] = None) -> None:
        self.events.append(EventRecord(level, event, dict(payload or {})))

    def metric_values(self, name: str) -> List[float]:
        return [m.value for m in self.metrics if m.name == name]

    def reset(self) -> None:
        self.metrics.clear()
        self.events.clear()


def emit_metric_safely(sink: Optional[ObservabilitySink], name: str, value: float,
                       tags: Optional[Dict[str, str]] = None) -> None:
    if sink is None:
        return
    try:
        sink.emit_metric(name, value, tags)
    except Exception as e:
        logger.warning("Metric sink failed for %s: %s", name, e)


def log_event_safely(sink: Optional[ObservabilitySink], level: str, event: str,
                     payload: Optional[Dict[str, Any]] = None) -> None:
    if sink is None:
        return
    try:
        sink.log_event(level, event, payload)
    except Exception as e:
        logger.warning("Event sink failed for %s: %s", event, e)
