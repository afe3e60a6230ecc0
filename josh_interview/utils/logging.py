"""
Logging utilities for the interview engine.
"""
import os
import re
import logging
from typing import Any


def setup_logging(log_file_path: str, level: str = "INFO") -> str:
    """
    Set up logging to file with minimal console output.

    Args:
        log_file_path: Full path to the log file
        level: Level for the file handler (DEBUG, INFO, ...)

    Returns:
        Path to the log file
    """
    workdir = os.path.dirname(log_file_path)
    if workdir:
        os.makedirs(workdir, exist_ok=True)

    logging.getLogger().handlers.clear()

    file_handler = logging.FileHandler(log_file_path, mode='a')
    file_handler.setLevel(getattr(logging, level.upper(), logging.INFO))
    file_handler.setFormatter(logging.Formatter('%(asctime)s %(levelname)s %(name)s - %(message)s'))

    # Console only shows problems; the simulator prints its own transcript
    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.WARNING)
    console_handler.setFormatter(logging.Formatter('%(levelname)s %(message)s'))

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    root_logger.addHandler(file_handler)
    root_logger.addHandler(console_handler)

    return log_file_path


EMAIL_PATTERN = re.compile(r"\b[A-Z0-9._%+-]+@[A-Z0-9.-]+\.[A-Z]{2,}\b", re.IGNORECASE)
PHONE_PATTERN = re.compile(r"\+?\d[\d().\-\s]{8,}\d")
SMS_BODY_KEY_PATTERN = re.compile(
    r"(^|[_-])(sms[_-]?body|message[_-]?body|user_answer_text|inbound_text|outbound_text|body|raw_body)$",
    re.IGNORECASE,
)

REDACTED_SMS_BODY = "[REDACTED_SMS_BODY]"


def _redact_phone(match: "re.Match[str]") -> str:
    digits = re.sub(r"\D", "", match.group(0))
    if len(digits) < 10 or len(digits) > 15:
        return match.group(0)
    return "[REDACTED_PHONE]"


def redact_pii(value: Any, key_name: str = "") -> Any:
    """
    Return a copy of a log payload with SMS bodies, emails and phone numbers masked.

    Keys that name a message body are replaced wholesale; other strings are scanned.
    """
    if value is None:
        return None
    if key_name and SMS_BODY_KEY_PATTERN.search(key_name):
        return REDACTED_SMS_BODY
    if isinstance(value, str):
        redacted = EMAIL_PATTERN.sub("[REDACTED_EMAIL]", value)
        return PHONE_PATTERN.sub(_redact_phone, redacted)
    if isinstance(value, dict):
        return {k: redact_pii(v, str(k)) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [redact_pii(v, key_name) for v in value]
    return value
