"""Utility modules for logging and helpers."""

from .logging import setup_logging, redact_pii

__all__ = ["setup_logging", "redact_pii"]
