"""
JOSH interview: adaptive SMS interview engine for group-activity matching.

Turns one inbound SMS at a time into a reply, a session update and a profile
patch, using deterministic parsing with optional LLM signal extraction.
"""

__version__ = "1.0.0"

# Main entry points
from .interview.orchestrator import InterviewOrchestrator
from .interview.planner import build_interview_transition_plan
from .interview.models import ProfileSnapshot, SessionSnapshot, InterviewTransitionPlan

__all__ = [
    "InterviewOrchestrator", "build_interview_transition_plan",
    "ProfileSnapshot", "SessionSnapshot", "InterviewTransitionPlan",
]
