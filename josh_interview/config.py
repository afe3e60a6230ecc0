"""
JOSH Interview Configuration
============================

This file contains ALL configuration for the interview engine.
- User settings at the top (things operators might want to change)
- Internal constants at the bottom (coverage thresholds and writer defaults)
"""
import os
from dataclasses import dataclass
from typing import Optional


# =============================================================================
# USER SETTINGS - Edit these to customize the engine
# =============================================================================

# LLM extraction runs on Vertex AI. Leave the project unset to run deterministic-only.
GOOGLE_CLOUD_PROJECT = None
GOOGLE_APPLICATION_CREDENTIALS = None  # Optional: path to service account JSON

VERTEX_LOCATION = "us-central1"
MODEL_NAME = "gemini-2.5-flash-lite"

# Extraction budget per inbound message
LLM_TIMEOUT_MS = 5000
LLM_RETRY_COUNT = 1
MAX_OUTPUT_TOKENS = 800

# Local storage for the console simulator
STORE_DIR = "./_interviews"

# Logging
LOG_FILE = "./_interviews/interview.log"
LOG_LEVEL = "INFO"


# =============================================================================
# INTERNAL CONSTANTS - Don't change these unless you know what you're doing
# =============================================================================

# Coverage
FACTOR_COVERAGE_CONFIDENCE = 0.55
ACTIVITY_COVERAGE_CONFIDENCE = 0.6
ACTIVITY_COVERAGE_MIN_KEYS = 3
MVP_MIN_FINGERPRINT_FACTORS = 8

# Conversation history handed to the extractor
RECENT_HISTORY_TURNS = 6
PROMPT_HISTORY_TURNS = 8

# Interview writer defaults
INTERVIEW_ACTIVITY_CONFIDENCE = 0.65
MAX_ACTIVITY_KEYS = 3
MAX_BOUNDARY_ITEMS = 5

# Follow-up demotion threshold for model-reported motive weights
FOLLOW_UP_MOTIVE_THRESHOLD = 0.55

PROGRESS_VERSION = 1


# =============================================================================
# MAIN CONFIG OBJECT
# =============================================================================

@dataclass
class Config:
    """Main configuration object."""
    google_cloud_project: Optional[str] = None
    google_application_credentials: Optional[str] = None
    vertex_location: str = VERTEX_LOCATION
    model_name: str = MODEL_NAME
    llm_timeout_ms: int = LLM_TIMEOUT_MS
    llm_retry_count: int = LLM_RETRY_COUNT
    store_dir: str = STORE_DIR
    log_file: str = LOG_FILE
    log_level: str = LOG_LEVEL

    @property
    def llm_enabled(self) -> bool:
        return bool(self.google_cloud_project)


def _int_from_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")
    if value < 0:
        raise ValueError(f"{name} must be >= 0, got {value}")
    return value


def get_config(require_llm: bool = False) -> Config:
    """Load configuration from module defaults overridden by environment variables."""
    project = os.getenv("GOOGLE_CLOUD_PROJECT") or GOOGLE_CLOUD_PROJECT
    credentials = os.getenv("GOOGLE_APPLICATION_CREDENTIALS") or GOOGLE_APPLICATION_CREDENTIALS

    if require_llm and not project:
        raise ValueError("Please set GOOGLE_CLOUD_PROJECT in config.py or as environment variable")

    return Config(
        google_cloud_project=project,
        google_application_credentials=credentials,
        vertex_location=os.getenv("JOSH_VERTEX_LOCATION") or VERTEX_LOCATION,
        model_name=os.getenv("JOSH_LLM_MODEL") or MODEL_NAME,
        llm_timeout_ms=_int_from_env("JOSH_LLM_TIMEOUT_MS", LLM_TIMEOUT_MS),
        llm_retry_count=_int_from_env("JOSH_LLM_RETRY_COUNT", LLM_RETRY_COUNT),
        store_dir=os.getenv("JOSH_STORE_DIR") or STORE_DIR,
        log_file=os.getenv("JOSH_LOG_FILE") or LOG_FILE,
        log_level=(os.getenv("JOSH_LOG_LEVEL") or LOG_LEVEL).upper(),
    )
