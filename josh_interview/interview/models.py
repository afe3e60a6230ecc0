"""
Data models for the interview engine.

Answers are one frozen dataclass per step id. Profile and session snapshots are
plain dataclasses that mirror the stored rows; their nested maps stay loosely typed
because they come straight from persistence.
"""
import copy
from dataclasses import dataclass, field, fields, replace
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional, Tuple


class ConversationMode(str, Enum):
    """Session modes known to the conversation router."""
    IDLE = "idle"
    INTERVIEWING = "interviewing"
    LINKUP_FORMING = "linkup_forming"
    AWAITING_INVITE_REPLY = "awaiting_invite_reply"
    SAFETY_HOLD = "safety_hold"


class ProfileState(str, Enum):
    """Lifecycle states of a profile row."""
    EMPTY = "empty"
    PARTIAL = "partial"
    COMPLETE_MVP = "complete_mvp"
    COMPLETE_FULL = "complete_full"
    STALE = "stale"


class TransitionAction(str, Enum):
    """What the planner decided to do with one inbound message."""
    START = "start"
    RESUME = "resume"
    IDEMPOTENT = "idempotent"
    RETRY = "retry"
    PAUSE = "pause"
    ADVANCE = "advance"
    COMPLETE = "complete"


class ProgressStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    PAUSED = "paused"
    COMPLETE = "complete"


# =============================================================================
# Normalized answers
# =============================================================================

class NormalizedAnswer:
    """Base for the per-step answer shapes."""

    step_ids: ClassVar[Tuple[str, ...]] = ()

    def to_dict(self) -> Dict[str, Any]:
        """Plain JSON-friendly form stored in interview_progress.answers."""
        data: Dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, tuple):
                value = list(value)
            elif isinstance(value, dict):
                value = dict(value)
            data[f.name] = value
        return data


@dataclass(frozen=True)
class IntroAnswer(NormalizedAnswer):
    step_ids: ClassVar[Tuple[str, ...]] = ("intro_01",)
    consent: str


@dataclass(frozen=True)
class ActivityAnswer(NormalizedAnswer):
    step_ids: ClassVar[Tuple[str, ...]] = ("activity_01",)
    activity_keys: Tuple[str, ...]


@dataclass(frozen=True)
class TopActivityAnswer(NormalizedAnswer):
    step_ids: ClassVar[Tuple[str, ...]] = ("activity_02",)
    activity_key: str


@dataclass(frozen=True)
class MotiveAnswer(NormalizedAnswer):
    step_ids: ClassVar[Tuple[str, ...]] = ("motive_01", "motive_02")
    motive_weights: Dict[str, float]


@dataclass(frozen=True)
class StyleAnswer(NormalizedAnswer):
    step_ids: ClassVar[Tuple[str, ...]] = ("style_01",)
    social_style: str


@dataclass(frozen=True)
class ConversationStyleAnswer(NormalizedAnswer):
    step_ids: ClassVar[Tuple[str, ...]] = ("style_02",)
    conversation_styles: Tuple[str, ...]


@dataclass(frozen=True)
class PaceAnswer(NormalizedAnswer):
    step_ids: ClassVar[Tuple[str, ...]] = ("pace_01",)
    social_pace: str


@dataclass(frozen=True)
class GroupSizeAnswer(NormalizedAnswer):
    step_ids: ClassVar[Tuple[str, ...]] = ("group_01",)
    group_size_pref: str


@dataclass(frozen=True)
class ValuesAnswer(NormalizedAnswer):
    step_ids: ClassVar[Tuple[str, ...]] = ("values_01",)
    values_alignment_importance: str


@dataclass(frozen=True)
class BoundariesAnswer(NormalizedAnswer):
    step_ids: ClassVar[Tuple[str, ...]] = ("boundaries_01",)
    no_thanks: Tuple[str, ...]
    skipped: bool


@dataclass(frozen=True)
class TimePreferenceAnswer(NormalizedAnswer):
    step_ids: ClassVar[Tuple[str, ...]] = ("constraints_01",)
    time_preferences: Tuple[str, ...]


@dataclass(frozen=True)
class LocationAnswer(NormalizedAnswer):
    step_ids: ClassVar[Tuple[str, ...]] = ("location_01",)
    country_code: str
    state_code: Optional[str] = None


ANSWER_TYPES: Dict[str, type] = {
    step_id: answer_type
    for answer_type in (
        IntroAnswer, ActivityAnswer, TopActivityAnswer, MotiveAnswer, StyleAnswer,
        ConversationStyleAnswer, PaceAnswer, GroupSizeAnswer, ValuesAnswer,
        BoundariesAnswer, TimePreferenceAnswer, LocationAnswer,
    )
    for step_id in answer_type.step_ids
}


def answer_from_dict(step_id: str, data: Any) -> Optional[NormalizedAnswer]:
    """
    Rebuild a stored answer. Returns None for unknown steps or malformed data.
    """
    answer_type = ANSWER_TYPES.get(step_id)
    if answer_type is None or not isinstance(data, dict):
        return None

    kwargs: Dict[str, Any] = {}
    for f in fields(answer_type):
        if f.name not in data:
            if f.default is None:
                kwargs[f.name] = None
                continue
            return None
        value = data[f.name]
        if isinstance(value, list):
            value = tuple(value)
        kwargs[f.name] = value
    try:
        return answer_type(**kwargs)
    except TypeError:
        return None


@dataclass(frozen=True)
class ParseResult:
    """Outcome of a deterministic parser: ok with a value, or not ok."""
    ok: bool
    value: Optional[NormalizedAnswer] = None

    @classmethod
    def success(cls, value: NormalizedAnswer) -> "ParseResult":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls) -> "ParseResult":
        return cls(ok=False)


# =============================================================================
# Snapshots
# =============================================================================

@dataclass
class InterviewProgress:
    """Durable interview memory embedded in preferences.interview_progress."""
    status: str = ProgressStatus.IN_PROGRESS.value
    step_index: int = 0
    current_step_id: Optional[str] = None
    completed_step_ids: List[str] = field(default_factory=list)
    answers: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    updated_at: Optional[str] = None
    version: int = 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "status": self.status,
            "step_index": self.step_index,
            "current_step_id": self.current_step_id,
            "completed_step_ids": list(self.completed_step_ids),
            "answers": copy.deepcopy(self.answers),
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_value(cls, raw: Any) -> Optional["InterviewProgress"]:
        """Read a stored progress object, tolerating missing or mistyped fields."""
        if not isinstance(raw, dict):
            return None
        completed = raw.get("completed_step_ids")
        answers = raw.get("answers")
        step_index = raw.get("step_index")
        current = raw.get("current_step_id")
        return cls(
            status=raw.get("status") if isinstance(raw.get("status"), str) else ProgressStatus.IN_PROGRESS.value,
            step_index=step_index if isinstance(step_index, int) and not isinstance(step_index, bool) else 0,
            current_step_id=current if isinstance(current, str) and current else None,
            completed_step_ids=[s for s in completed if isinstance(s, str)] if isinstance(completed, list) else [],
            answers={k: v for k, v in answers.items() if isinstance(v, dict)} if isinstance(answers, dict) else {},
            updated_at=raw.get("updated_at") if isinstance(raw.get("updated_at"), str) else None,
        )


@dataclass
class ProfileSnapshot:
    """A profile row as seen by the interview engine."""
    user_id: str
    id: Optional[str] = None
    country_code: Optional[str] = None
    state_code: Optional[str] = None
    state: str = ProfileState.EMPTY.value
    is_complete_mvp: bool = False
    last_interview_step: Optional[str] = None
    preferences: Dict[str, Any] = field(default_factory=dict)
    fingerprint: Dict[str, Any] = field(default_factory=dict)
    activity_patterns: List[Any] = field(default_factory=list)
    boundaries: Dict[str, Any] = field(default_factory=dict)
    active_intent: Optional[Dict[str, Any]] = None
    completeness_percent: int = 0
    completed_at: Optional[str] = None
    status_reason: Optional[str] = None
    state_changed_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: copy.deepcopy(getattr(self, f.name)) for f in fields(self)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProfileSnapshot":
        known = {f.name for f in fields(cls)}
        return cls(**{k: copy.deepcopy(v) for k, v in data.items() if k in known})


@dataclass
class ProfileUpdatePatch:
    """Every profile column the interview engine may rewrite in one turn."""
    state: str
    is_complete_mvp: bool
    last_interview_step: Optional[str]
    preferences: Dict[str, Any]
    fingerprint: Dict[str, Any]
    activity_patterns: List[Any]
    boundaries: Dict[str, Any]
    active_intent: Optional[Dict[str, Any]]
    completeness_percent: int
    completed_at: Optional[str]
    status_reason: Optional[str]
    state_changed_at: Optional[str]
    country_code: Optional[str] = None
    state_code: Optional[str] = None

    def apply_to(self, profile: ProfileSnapshot) -> ProfileSnapshot:
        """Return the profile with this patch merged over it."""
        return replace(profile, **{f.name: copy.deepcopy(getattr(self, f.name)) for f in fields(self)})

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: copy.deepcopy(getattr(self, f.name)) for f in fields(self)}


@dataclass
class SessionSnapshot:
    """Per-user conversation session owned by the conversation router."""
    mode: str = ConversationMode.IDLE.value
    state_token: Optional[str] = "idle"
    current_step_id: Optional[str] = None
    last_inbound_message_sid: Optional[str] = None
    dropout_nudge_sent_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SessionSnapshot":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


@dataclass
class InterviewTransitionPlan:
    """Everything the caller persists and sends for one inbound message."""
    action: str
    reply_message: str
    current_step_id: Optional[str]
    next_step_id: Optional[str]
    next_session: SessionSnapshot
    profile_patch: Optional[ProfileUpdatePatch] = None
    profile_event_type: Optional[str] = None
    profile_event_step_id: Optional[str] = None
    profile_event_payload: Optional[Dict[str, Any]] = None


# =============================================================================
# Extraction input
# =============================================================================

@dataclass(frozen=True)
class ConversationTurn:
    role: str
    text: str


@dataclass
class InterviewExtractInput:
    """Everything the extractor needs to read one answer in context."""
    user_id: str
    inbound_message_sid: str
    step_id: str
    question_target: str
    question_text: str
    user_answer_text: str
    recent_conversation_turns: List[ConversationTurn] = field(default_factory=list)
    current_profile: Dict[str, Any] = field(default_factory=dict)
    correlation_id: Optional[str] = None
