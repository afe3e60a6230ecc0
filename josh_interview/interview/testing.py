"""
Testing infrastructure with mock providers and builders for the interview system.
"""
import json
import time
import tempfile
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from .idempotency import ExtractionRequestGuard
from .models import (
    InterviewExtractInput, InterviewTransitionPlan, ProfileSnapshot, SessionSnapshot,
)
from .planner import build_interview_transition_plan
from .schemas import InterviewExtractOutput, parse_interview_extract_output
from ..infrastructure.llm import LlmProvider, LlmProviderError, LlmRequest, LlmResponse, LlmUsage

FIXED_NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

MockResponse = Union[str, Exception]


class MockLLMProvider(LlmProvider):
    """
    Mock provider that replays scripted responses.

    A string entry is returned as the model text; an exception entry is raised.
    With delay_seconds set, each call waits that long (or until cancelled) first.
    """

    name = "mock"

    def __init__(self, mock_responses: Sequence[MockResponse], model: str = "gemini-2.5-flash-lite",
                 delay_seconds: float = 0.0, input_tokens: int = 120, output_tokens: int = 40):
        self.mock_responses = list(mock_responses)
        self.model = model
        self.delay_seconds = delay_seconds
        self.input_tokens = input_tokens
        self.output_tokens = output_tokens
        self.current_response_idx = 0
        self.request_history: List[LlmRequest] = []

    @property
    def call_count(self) -> int:
        return len(self.request_history)

    def generate_text(self, request: LlmRequest) -> LlmResponse:
        """Return (or raise) the next scripted response."""
        self.request_history.append(request)
        if self.delay_seconds:
            if request.cancel_event is not None:
                request.cancel_event.wait(self.delay_seconds)
            else:
                time.sleep(self.delay_seconds)

        if self.current_response_idx >= len(self.mock_responses):
            raise LlmProviderError("No more mock responses", transient=False)
        response = self.mock_responses[self.current_response_idx]
        self.current_response_idx += 1

        if isinstance(response, Exception):
            raise response
        return LlmResponse(
            text=response,
            model=self.model,
            provider=self.name,
            usage=LlmUsage(input_tokens=self.input_tokens, output_tokens=self.output_tokens),
        )


class ScriptedExtractor:
    """
    Stand-in for InterviewSignalExtractor that answers per step id.

    Each script entry is an extraction payload dict (stepId is filled in), an
    InterviewExtractorError to raise, or a callable taking the input.
    """

    def __init__(self, script: Optional[Dict[str, Any]] = None, default: Any = None):
        self.script = dict(script or {})
        self.default = default
        self.inputs: List[InterviewExtractInput] = []

    def __call__(self, extract_input: InterviewExtractInput) -> InterviewExtractOutput:
        self.inputs.append(extract_input)
        entry = self.script.get(extract_input.step_id, self.default)
        if callable(entry) and not isinstance(entry, Exception):
            entry = entry(extract_input)
        if isinstance(entry, Exception):
            raise entry
        if entry is None:
            raise RuntimeError(f"No scripted extraction for step {extract_input.step_id}")
        if isinstance(entry, InterviewExtractOutput):
            return entry
        payload = dict(entry)
        payload["stepId"] = extract_input.step_id
        return parse_interview_extract_output(payload)


def build_extraction_payload(step_id: str,
                             fingerprint: Optional[Dict[str, float]] = None,
                             fingerprint_confidence: float = 0.8,
                             activities: Optional[Dict[str, Dict[str, float]]] = None,
                             activity_confidence: float = 0.8,
                             boundaries: Optional[Dict[str, Any]] = None,
                             preferences: Optional[Dict[str, Any]] = None,
                             notes: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Build a payload in the extraction wire format."""
    extracted: Dict[str, Any] = {}
    if fingerprint:
        extracted["fingerprintPatches"] = [
            {"key": key, "range_value": value, "confidence": fingerprint_confidence}
            for key, value in fingerprint.items()
        ]
    if activities:
        extracted["activityPatternsAdd"] = [
            {"activity_key": key, "motive_weights": dict(weights), "confidence": activity_confidence}
            for key, weights in activities.items()
        ]
    if boundaries is not None:
        extracted["boundariesPatch"] = boundaries
    if preferences is not None:
        extracted["preferencesPatch"] = preferences
    payload: Dict[str, Any] = {"stepId": step_id, "extracted": extracted}
    if notes is not None:
        payload["notes"] = notes
    return payload


def extraction_json(step_id: str, **kwargs) -> str:
    return json.dumps(build_extraction_payload(step_id, **kwargs))


RICH_FINGERPRINT = {
    "connection_depth": 0.8,
    "social_energy": 0.6,
    "social_pace": 0.5,
    "novelty_seeking": 0.7,
    "structure_preference": 0.4,
    "humor_style": 0.6,
    "conversation_style": 0.7,
    "emotional_directness": 0.6,
    "adventure_comfort": 0.7,
    "conflict_tolerance": 0.5,
    "values_alignment_importance": 0.6,
    "group_vs_1on1_preference": 0.4,
}

RICH_ACTIVITIES = {
    "coffee": {"connection": 0.8},
    "walk": {"restorative": 0.7},
    "climbing": {"adventure": 0.9},
}


def make_rich_extraction(step_id: str) -> Dict[str, Any]:
    """An extraction that covers every required target on its own."""
    return build_extraction_payload(
        step_id,
        fingerprint=RICH_FINGERPRINT,
        activities=RICH_ACTIVITIES,
        boundaries={"no_thanks": ["bars"]},
        preferences={"group_size_pref": "4-6", "time_preferences": ["evenings"]},
    )


def make_profile(user_id: str = "user-1", **overrides) -> ProfileSnapshot:
    return ProfileSnapshot(user_id=user_id, **overrides)


def make_session(**overrides) -> SessionSnapshot:
    return SessionSnapshot(**overrides)


# Answers that walk an empty profile through the deterministic path to MVP
SPARSE_INTERVIEW_ANSWERS = [
    "coffee, walk, museum",   # activity_01
    "coffee",                 # activity_02
    "deeper convo",           # motive_01
    "A",                      # style_01
    "ideas and stories",      # style_02
    "B",                      # pace_01
    "B",                      # group_01
    "A",                      # values_01
    "bars and late nights",   # boundaries_01
    "C",                      # constraints_01
]


# Canonical answer per step; the reply sent each turn is picked by the step being asked
CANONICAL_ANSWER_BY_STEP: Dict[str, str] = {
    "activity_01": "coffee, walk, museum",
    "activity_02": "coffee",
    "motive_01": "deeper conversation and calm reset",
    "motive_02": "A",
    "style_01": "B",
    "style_02": "ideas and stories",
    "pace_01": "B",
    "group_01": "A",
    "values_01": "B",
    "boundaries_01": "bars and late nights",
    "constraints_01": "C",
    "location_01": "US-WA",
}


def _drive_interview(next_text: Callable[[int, SessionSnapshot], Optional[str]],
                     user_id: str,
                     profile: Optional[ProfileSnapshot],
                     session: Optional[SessionSnapshot],
                     llm_extractor: Optional[Callable[[InterviewExtractInput], InterviewExtractOutput]],
                     max_turns: int) -> List[InterviewTransitionPlan]:
    profile = profile or make_profile(user_id)
    session = session or make_session()
    guard = ExtractionRequestGuard()
    plans: List[InterviewTransitionPlan] = []

    for i in range(max_turns):
        text = next_text(i, session)
        if text is None:
            break
        plan = build_interview_transition_plan(
            user_id=user_id,
            inbound_message_sid=f"SM{i:04d}",
            inbound_text=text,
            session=session,
            profile=profile,
            now=FIXED_NOW,
            llm_extractor=llm_extractor,
            llm_request_guard=guard,
        )
        plans.append(plan)
        if plan.profile_patch is not None:
            profile = plan.profile_patch.apply_to(profile)
        session = plan.next_session
        if plan.action == "complete":
            break
    return plans


def run_scripted_interview(answers: Sequence[str],
                           user_id: str = "user-1",
                           profile: Optional[ProfileSnapshot] = None,
                           session: Optional[SessionSnapshot] = None,
                           llm_extractor: Optional[Callable[[InterviewExtractInput], InterviewExtractOutput]] = None,
                           opening_text: str = "hi") -> List[InterviewTransitionPlan]:
    """
    Drive the planner through a conversation, applying every plan like a caller would.

    The first message is the opening text that triggers the cold start; the
    answers follow in order. Stops early once a plan completes the interview.
    """
    texts = [opening_text] + list(answers)
    return _drive_interview(lambda i, _session: texts[i] if i < len(texts) else None,
                            user_id, profile, session, llm_extractor, len(texts))


def run_step_keyed_interview(answer_by_step: Dict[str, str],
                             user_id: str = "user-1",
                             llm_extractor: Optional[Callable[[InterviewExtractInput], InterviewExtractOutput]] = None,
                             opening_text: str = "yes",
                             fallback_text: str = "A",
                             max_turns: int = 20) -> List[InterviewTransitionPlan]:
    """
    Drive the planner answering whichever step the session is on.

    Steps missing from answer_by_step get fallback_text. Stops at completion
    or after max_turns messages.
    """
    def next_text(i: int, session: SessionSnapshot) -> str:
        if i == 0:
            return opening_text
        return answer_by_step.get(session.current_step_id, fallback_text)

    return _drive_interview(next_text, user_id, None, None, llm_extractor, max_turns)


def create_mock_interview_setup(script: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Create an orchestrator wired to an in-memory store and a scripted extractor."""
    from .orchestrator import InterviewOrchestrator
    from ..infrastructure.data import InMemoryConversationStore
    from ..infrastructure.observability import InMemoryObservabilitySink

    store = InMemoryConversationStore()
    sink = InMemoryObservabilitySink()
    extractor = ScriptedExtractor(script) if script is not None else None
    orchestrator = InterviewOrchestrator(
        store=store,
        llm_extractor=extractor,
        enable_llm=extractor is not None,
        sink=sink,
        clock=lambda: FIXED_NOW,
    )
    return {
        "store": store,
        "sink": sink,
        "extractor": extractor,
        "orchestrator": orchestrator,
        "temp_dir": tempfile.mkdtemp(prefix="josh_interview_test_"),
    }


def cleanup_test_files(temp_dir: str) -> None:
    """Clean up test files and directories."""
    import shutil
    try:
        shutil.rmtree(temp_dir)
    except OSError:
        pass  # Directory may not exist or be deletable


__all__ = [
    "MockLLMProvider", "ScriptedExtractor", "build_extraction_payload", "extraction_json",
    "make_rich_extraction", "make_profile", "make_session", "run_scripted_interview",
    "create_mock_interview_setup", "cleanup_test_files", "SPARSE_INTERVIEW_ANSWERS",
    "FIXED_NOW",
]
