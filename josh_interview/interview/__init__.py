"""Interview engine components.

This module contains the business logic for conducting the JOSH SMS interview,
including the step catalog, signal coverage, LLM extraction, profile patching
and the per-message transition planner.
"""

# Caller-side orchestrator
from .orchestrator import InterviewOrchestrator

# Pure core
from .planner import build_interview_transition_plan, resolve_current_step
from .coverage import get_signal_coverage_status, select_next_question
from .profile_writer import build_patch_for_answer, build_start_patch, build_pause_patch
from .steps import INTERVIEW_STEPS, INTERVIEW_STEP_CATALOG, get_interview_step

# Data models
from .models import (
    ProfileSnapshot, SessionSnapshot, InterviewTransitionPlan, ProfileUpdatePatch,
    InterviewProgress, InterviewExtractInput, ConversationTurn,
)

# Extraction
from .extractor import InterviewSignalExtractor
from .idempotency import ExtractionRequestGuard
from .schemas import InterviewExtractOutput, parse_interview_extract_output
from .guardrails import validate_model_output
from .errors import InterviewStateError, InterviewExtractorError, ExtractorErrorCode

# Event system
from .events import (
    InterviewEventBus, EventLogger, InterviewMetrics,
    EventType, InterviewEvent, InterviewStartedEvent, InterviewResumedEvent,
    InterviewPausedEvent, StepSavedEvent, InterviewCompletedEvent,
    AnswerRetryEvent, ErrorOccurredEvent,
)

__all__ = [
    # Orchestrator
    "InterviewOrchestrator",

    # Core
    "build_interview_transition_plan", "resolve_current_step",
    "get_signal_coverage_status", "select_next_question",
    "build_patch_for_answer", "build_start_patch", "build_pause_patch",
    "INTERVIEW_STEPS", "INTERVIEW_STEP_CATALOG", "get_interview_step",

    # Data models
    "ProfileSnapshot", "SessionSnapshot", "InterviewTransitionPlan", "ProfileUpdatePatch",
    "InterviewProgress", "InterviewExtractInput", "ConversationTurn",

    # Extraction
    "InterviewSignalExtractor", "ExtractionRequestGuard",
    "InterviewExtractOutput", "parse_interview_extract_output", "validate_model_output",
    "InterviewStateError", "InterviewExtractorError", "ExtractorErrorCode",

    # Events
    "InterviewEventBus", "EventLogger", "InterviewMetrics",
    "EventType", "InterviewEvent", "InterviewStartedEvent", "InterviewResumedEvent",
    "InterviewPausedEvent", "StepSavedEvent", "InterviewCompletedEvent",
    "AnswerRetryEvent", "ErrorOccurredEvent",
]
