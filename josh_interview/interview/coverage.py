"""
Signal coverage: what the profile already knows, and what to ask next.

Coverage is computed from the profile snapshot alone, so it is stable across
restarts and replays. Question selection additionally looks at free-text history
to avoid asking about things the user has plainly told us already.
"""
import re
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Set

from .models import InterviewProgress, ProfileSnapshot
from .parsing import VALID_GROUP_SIZES, VALID_TIME_PREFERENCES
from .steps import ACTIVE_INTERVIEW_STEP_IDS, normalize_interview_step_id
from ..config import (
    ACTIVITY_COVERAGE_CONFIDENCE, ACTIVITY_COVERAGE_MIN_KEYS, FACTOR_COVERAGE_CONFIDENCE,
    MVP_MIN_FINGERPRINT_FACTORS,
)

logger = logging.getLogger("coverage")

FINGERPRINT_FACTOR_KEYS = (
    "connection_depth",
    "social_energy",
    "social_pace",
    "novelty_seeking",
    "structure_preference",
    "humor_style",
    "conversation_style",
    "emotional_directness",
    "adventure_comfort",
    "conflict_tolerance",
    "values_alignment_importance",
    "group_vs_1on1_preference",
)

STRUCTURAL_COVERAGE_TARGETS = ("activity_patterns", "group_size_pref", "time_preferences", "boundaries_asked")

REQUIRED_COVERAGE_TARGETS = FINGERPRINT_FACTOR_KEYS + STRUCTURAL_COVERAGE_TARGETS

SIGNAL_TARGET_TO_QUESTION_ID = {
    "activity_patterns": "activity_01",
    "top_activity_intent": "activity_02",
    "connection_depth": "motive_01",
    "novelty_seeking": "motive_02",
    "social_energy": "style_01",
    "humor_style": "style_01",
    "conversation_style": "style_02",
    "social_pace": "pace_01",
    "structure_preference": "pace_01",
    "group_size_pref": "group_01",
    "group_vs_1on1_preference": "group_01",
    "values_alignment_importance": "values_01",
    "boundaries_asked": "boundaries_01",
    "conflict_tolerance": "boundaries_01",
    "time_preferences": "constraints_01",
    "emotional_directness": "motive_01",
    "adventure_comfort": "motive_02",
    "location_capture": "location_01",
}

# Order used to report the single most useful uncovered target
REQUIRED_TARGET_PRIORITY = (
    "activity_patterns",
    "connection_depth",
    "social_energy",
    "conversation_style",
    "social_pace",
    "group_size_pref",
    "values_alignment_importance",
    "boundaries_asked",
    "time_preferences",
    "novelty_seeking",
    "structure_preference",
    "humor_style",
    "emotional_directness",
    "adventure_comfort",
    "conflict_tolerance",
    "group_vs_1on1_preference",
)

# Order used to walk questions; also covers targets that are asked but not required
QUESTION_TARGET_PRIORITY = (
    "activity_patterns",
    "top_activity_intent",
    "connection_depth",
    "novelty_seeking",
    "social_energy",
    "conversation_style",
    "social_pace",
    "group_size_pref",
    "values_alignment_importance",
    "boundaries_asked",
    "time_preferences",
    "structure_preference",
    "humor_style",
    "emotional_directness",
    "adventure_comfort",
    "conflict_tolerance",
    "group_vs_1on1_preference",
    "location_capture",
)

ACTIVITY_KEYWORDS = (
    "coffee", "walk", "museum", "gallery", "climbing", "bouldering",
    "games", "board game", "hike", "dinner", "concert", "music",
)
ACTIVITY_KEYWORD_PATTERNS = tuple(re.compile(rf"\b{re.escape(k)}\b") for k in ACTIVITY_KEYWORDS)
NEAR_TERM_PATTERN = re.compile(r"\b(this week|this weekend|today|tonight)\b")
GROUP_SIZE_HINT_PATTERN = re.compile(r"(\b2-3\b|\b4-6\b|\b7-10\b|\bone on one\b|\b1:1\b|\bsmall group\b|\blarge group\b)")
TIME_HINT_PATTERN = re.compile(r"\b(mornings?|afternoons?|evenings?|weekends?)\b")
VALUES_HINT_PATTERN = re.compile(r"\b(share values|same values|values matter|not a big deal)\b")


@dataclass
class SignalCoverageStatus:
    covered: List[str]
    uncovered: List[str]
    mvp_complete: bool
    next_signal_target: Optional[str]
    covered_fingerprint_factors: int = 0


@dataclass
class NextQuestionSelection:
    question_id: str
    signal_target: str
    metadata: Dict[str, Any] = field(default_factory=dict)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def read_interview_progress(profile: ProfileSnapshot) -> Optional[InterviewProgress]:
    return InterviewProgress.from_value(_as_dict(profile.preferences).get("interview_progress"))


def is_fingerprint_factor_covered(profile: ProfileSnapshot, factor: str) -> bool:
    entry = _as_dict(profile.fingerprint).get(factor)
    if not isinstance(entry, dict):
        return False
    confidence = entry.get("confidence")
    return _is_number(confidence) and confidence >= FACTOR_COVERAGE_CONFIDENCE


def confident_activity_keys(profile: ProfileSnapshot) -> Set[str]:
    keys = set()
    patterns = profile.activity_patterns if isinstance(profile.activity_patterns, list) else []
    for pattern in patterns:
        if not isinstance(pattern, dict):
            continue
        key = pattern.get("activity_key")
        confidence = pattern.get("confidence")
        if isinstance(key, str) and key and _is_number(confidence) and confidence >= ACTIVITY_COVERAGE_CONFIDENCE:
            keys.add(key)
    return keys


def is_valid_group_size_pref(value: Any) -> bool:
    if isinstance(value, str):
        return value in VALID_GROUP_SIZES
    if isinstance(value, dict):
        low, high = value.get("min"), value.get("max")
        return _is_number(low) and _is_number(high) and 0 < low <= high
    return False


def is_valid_time_preferences(value: Any) -> bool:
    return (
        isinstance(value, list)
        and len(value) > 0
        and all(isinstance(item, str) and item in VALID_TIME_PREFERENCES for item in value)
    )


def _progress_mentions_step(progress: Optional[InterviewProgress], step_id: str) -> bool:
    if progress is None:
        return False
    completed = {normalize_interview_step_id(s) for s in progress.completed_step_ids}
    answered = {normalize_interview_step_id(s) for s in progress.answers}
    return step_id in completed or step_id in answered


def is_boundaries_asked(profile: ProfileSnapshot) -> bool:
    """
    True once the boundaries question has been dealt with in any recorded way.

    Older profiles predate per-step progress, so a last_interview_step at or past
    boundaries_01 also counts.
    """
    if _progress_mentions_step(read_interview_progress(profile), "boundaries_01"):
        return True

    boundaries = _as_dict(profile.boundaries)
    if boundaries.get("skipped") is True:
        return True
    no_thanks = boundaries.get("no_thanks")
    if isinstance(no_thanks, list) and no_thanks:
        return True

    last_step = profile.last_interview_step
    if isinstance(last_step, str) and last_step:
        last_step = normalize_interview_step_id(last_step)
        if last_step in ACTIVE_INTERVIEW_STEP_IDS:
            return ACTIVE_INTERVIEW_STEP_IDS.index(last_step) >= ACTIVE_INTERVIEW_STEP_IDS.index("boundaries_01")
    return False


def is_target_covered(profile: ProfileSnapshot, target: str) -> bool:
    if target in FINGERPRINT_FACTOR_KEYS:
        return is_fingerprint_factor_covered(profile, target)
    if target == "activity_patterns":
        return len(confident_activity_keys(profile)) >= ACTIVITY_COVERAGE_MIN_KEYS
    if target == "group_size_pref":
        return is_valid_group_size_pref(_as_dict(profile.preferences).get("group_size_pref"))
    if target == "time_preferences":
        return is_valid_time_preferences(_as_dict(profile.preferences).get("time_preferences"))
    if target == "boundaries_asked":
        return is_boundaries_asked(profile)
    if target == "top_activity_intent":
        activity_key = _as_dict(profile.active_intent).get("activity_key")
        return isinstance(activity_key, str) and bool(activity_key.strip())
    if target == "location_capture":
        return isinstance(profile.country_code, str) and bool(profile.country_code.strip())
    raise ValueError(f"Unknown coverage target '{target}'")


def get_signal_coverage_status(profile: ProfileSnapshot) -> SignalCoverageStatus:
    """
    Split the required targets into covered/uncovered and decide MVP completion.

    MVP needs 8 of the 12 fingerprint factors plus every structural target.
    """
    covered = [t for t in REQUIRED_COVERAGE_TARGETS if is_target_covered(profile, t)]
    covered_set = set(covered)
    uncovered = [t for t in REQUIRED_COVERAGE_TARGETS if t not in covered_set]

    factor_count = sum(1 for t in FINGERPRINT_FACTOR_KEYS if t in covered_set)
    structural_done = all(t in covered_set for t in STRUCTURAL_COVERAGE_TARGETS)
    mvp_complete = factor_count >= MVP_MIN_FINGERPRINT_FACTORS and structural_done

    next_target = None
    if not mvp_complete:
        next_target = next((t for t in REQUIRED_TARGET_PRIORITY if t not in covered_set), None)

    return SignalCoverageStatus(
        covered=covered,
        uncovered=uncovered,
        mvp_complete=mvp_complete,
        next_signal_target=next_target,
        covered_fingerprint_factors=factor_count,
    )


def infer_targets_from_history(conversation_history: Sequence[str]) -> Set[str]:
    """Targets whose value is plainly stated somewhere in free-text history."""
    text = " ".join(h for h in conversation_history if isinstance(h, str)).lower()
    if not text.strip():
        return set()

    inferred = set()
    activity_mentions = sum(1 for pattern in ACTIVITY_KEYWORD_PATTERNS if pattern.search(text))
    if activity_mentions >= 2:
        inferred.add("activity_patterns")
    if activity_mentions >= 1 and NEAR_TERM_PATTERN.search(text):
        inferred.add("top_activity_intent")
    if GROUP_SIZE_HINT_PATTERN.search(text):
        inferred.add("group_size_pref")
    if TIME_HINT_PATTERN.search(text):
        inferred.add("time_preferences")
    if VALUES_HINT_PATTERN.search(text):
        inferred.add("values_alignment_importance")
    return inferred


def is_question_answered(profile: ProfileSnapshot, question_id: str) -> bool:
    progress = read_interview_progress(profile)
    if progress is not None:
        completed = {normalize_interview_step_id(s) for s in progress.completed_step_ids}
        if question_id in completed:
            return True
    last_step = profile.last_interview_step
    return isinstance(last_step, str) and normalize_interview_step_id(last_step) == question_id


def select_next_question(profile: ProfileSnapshot,
                         conversation_history: Sequence[str] = ()) -> Optional[NextQuestionSelection]:
    """
    Pick the next question by walking the question priority order.

    Covered targets are skipped. Targets inferable from history, or whose question
    was already answered, are skipped too but remembered, so that when nothing
    else is left the first of them is asked rather than stalling the interview.
    Returns None only when the profile is MVP-complete.
    """
    if get_signal_coverage_status(profile).mvp_complete:
        return None

    inferable = infer_targets_from_history(conversation_history)
    skipped_inferable: List[str] = []
    skipped_answered: List[str] = []

    def selection(target: str, reason: str) -> NextQuestionSelection:
        return NextQuestionSelection(
            question_id=SIGNAL_TARGET_TO_QUESTION_ID[target],
            signal_target=target,
            metadata={
                "reason": reason,
                "skipped_inferable_targets": list(skipped_inferable),
                "skipped_answered_targets": list(skipped_answered),
            },
        )

    for target in QUESTION_TARGET_PRIORITY:
        if is_target_covered(profile, target):
            continue
        question_id = SIGNAL_TARGET_TO_QUESTION_ID[target]
        if target in inferable:
            skipped_inferable.append(target)
            continue
        if is_question_answered(profile, question_id):
            skipped_answered.append(target)
            continue
        return selection(target, "uncovered")

    if skipped_inferable:
        logger.debug("All open targets skippable; falling back to inferable target %s", skipped_inferable[0])
        return selection(skipped_inferable[0], "fallback_inferable")
    if skipped_answered:
        logger.debug("All open targets skippable; falling back to answered target %s", skipped_answered[0])
        return selection(skipped_answered[0], "fallback_answered")
    return None
