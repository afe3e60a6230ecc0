"""
Profile patch builder.

Each step id maps to a fixed list of write targets, and each write target has
one writer that derives a mutation from the normalized answer. Fingerprint
factors are merged by confidence, so a later writer can refine a value but can
never lower its confidence. Profile state follows coverage, never step count.
"""
import copy
import math
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from .coverage import (
    FINGERPRINT_FACTOR_KEYS, REQUIRED_COVERAGE_TARGETS, get_signal_coverage_status,
    is_valid_group_size_pref, is_valid_time_preferences, read_interview_progress,
)
from .errors import InterviewStateError
from .models import (
    ActivityAnswer, BoundariesAnswer, ConversationStyleAnswer, GroupSizeAnswer, IntroAnswer,
    InterviewProgress, LocationAnswer, MotiveAnswer, NormalizedAnswer, PaceAnswer,
    ProfileSnapshot, ProfileState, ProfileUpdatePatch, ProgressStatus, StyleAnswer,
    TimePreferenceAnswer, TopActivityAnswer, ValuesAnswer,
)
from .parsing import VALUES_CHOICES
from .schemas import InterviewExtractOutput
from .steps import ACTIVE_INTERVIEW_STEP_IDS, normalize_interview_step_id
from ..config import INTERVIEW_ACTIVITY_CONFIDENCE, MAX_BOUNDARY_ITEMS, PROGRESS_VERSION

logger = logging.getLogger("profile_writer")

Timestamp = Union[datetime, str]

SOURCE_INTERVIEW = "interview"
SOURCE_LLM = "llm"

STATUS_REASON_COMPLETE = "interview_complete_mvp"
STATUS_REASON_IN_PROGRESS = "interview_in_progress"


def clamp_unit(value: float) -> float:
    return max(0.0, min(1.0, float(value)))


def to_iso(now: Timestamp) -> str:
    return now.isoformat() if isinstance(now, datetime) else str(now)


def merge_fingerprint_factor(existing: Any, candidate: Dict[str, Any]) -> Dict[str, Any]:
    """
    Keep whichever value carries more confidence.

    Ties go to the candidate so a same-confidence answer can refine the value.
    """
    if isinstance(existing, dict):
        existing_confidence = existing.get("confidence")
        if (isinstance(existing_confidence, (int, float)) and not isinstance(existing_confidence, bool)
                and existing_confidence > candidate["confidence"]):
            return existing
    return candidate


# =============================================================================
# Writers
# =============================================================================

@dataclass
class WriterMutation:
    """What one writer wants changed. Fingerprint entries are merge candidates."""
    fingerprint: Dict[str, Tuple[float, float]] = field(default_factory=dict)
    preferences: Dict[str, Any] = field(default_factory=dict)
    boundaries: Optional[Dict[str, Any]] = None
    activity_keys: Tuple[str, ...] = ()
    active_intent: Dict[str, Any] = field(default_factory=dict)
    country_code: Optional[str] = None
    state_code: Optional[str] = None


Writer = Callable[[NormalizedAnswer, ProfileSnapshot], WriterMutation]


def _weights(answer: NormalizedAnswer) -> Dict[str, float]:
    return answer.motive_weights if isinstance(answer, MotiveAnswer) else {}


def write_onboarding_consent(answer, current):
    if not isinstance(answer, IntroAnswer):
        return WriterMutation()
    return WriterMutation(preferences={"interview_consent": answer.consent})


def write_activity_patterns(answer, current):
    if not isinstance(answer, ActivityAnswer):
        return WriterMutation()
    return WriterMutation(activity_keys=tuple(answer.activity_keys))


def write_active_intent(answer, current):
    if not isinstance(answer, TopActivityAnswer):
        return WriterMutation()
    return WriterMutation(active_intent={"activity_key": answer.activity_key})


def write_motive_weights(answer, current):
    weights = _weights(answer)
    if not weights:
        return WriterMutation()
    intent = current.active_intent if isinstance(current.active_intent, dict) else {}
    merged = dict(intent.get("motive_weights") or {})
    for motive, weight in weights.items():
        merged[motive] = max(float(merged.get(motive, 0.0)), weight)
    return WriterMutation(active_intent={"motive_weights": merged})


def write_connection_depth(answer, current):
    w = _weights(answer)
    if not w:
        return WriterMutation()
    value = max(w.get("connection", 0.0), w.get("comfort", 0.0) * 0.5)
    return WriterMutation(fingerprint={"connection_depth": (clamp_unit(value), 0.62)})


def write_novelty_seeking(answer, current):
    w = _weights(answer)
    if not w:
        return WriterMutation()
    value = max(w.get("adventure", 0.0), w.get("fun", 0.0) * 0.85)
    return WriterMutation(fingerprint={"novelty_seeking": (clamp_unit(value), 0.6)})


def write_emotional_directness(answer, current):
    w = _weights(answer)
    if not w:
        return WriterMutation()
    value = max(w.get("connection", 0.0) * 0.9, w.get("restorative", 0.0) * 0.5)
    return WriterMutation(fingerprint={"emotional_directness": (clamp_unit(value), 0.58)})


def write_adventure_comfort(answer, current):
    w = _weights(answer)
    if not w:
        return WriterMutation()
    value = max(w.get("adventure", 0.0), w.get("fun", 0.0) * 0.5)
    return WriterMutation(fingerprint={"adventure_comfort": (clamp_unit(value), 0.58)})


SOCIAL_ENERGY_BY_STYLE = {"energetic": 0.85, "funny": 0.7, "curious": 0.6, "thoughtful": 0.4}
HUMOR_BY_STYLE = {"funny": 0.85, "energetic": 0.65, "curious": 0.5, "thoughtful": 0.35}


def write_social_energy(answer, current):
    if not isinstance(answer, StyleAnswer):
        return WriterMutation()
    return WriterMutation(fingerprint={"social_energy": (SOCIAL_ENERGY_BY_STYLE[answer.social_style], 0.65)})


def write_humor_style(answer, current):
    if not isinstance(answer, StyleAnswer):
        return WriterMutation()
    return WriterMutation(fingerprint={"humor_style": (HUMOR_BY_STYLE[answer.social_style], 0.6)})


CONVERSATION_DEPTH = {"feelings": 0.85, "ideas": 0.7, "stories": 0.5, "plans": 0.35}


def write_conversation_style(answer, current):
    if not isinstance(answer, ConversationStyleAnswer) or not answer.conversation_styles:
        return WriterMutation()
    depth = sum(CONVERSATION_DEPTH[s] for s in answer.conversation_styles) / len(answer.conversation_styles)
    return WriterMutation(
        fingerprint={"conversation_style": (round(depth, 4), 0.7)},
        preferences={"conversation_styles": list(answer.conversation_styles)},
    )


SOCIAL_PACE_VALUE = {"slow": 0.25, "medium": 0.5, "fast": 0.8}
STRUCTURE_BY_PACE = {"slow": 0.7, "medium": 0.5, "fast": 0.3}


def write_social_pace(answer, current):
    if not isinstance(answer, PaceAnswer):
        return WriterMutation()
    return WriterMutation(
        fingerprint={"social_pace": (SOCIAL_PACE_VALUE[answer.social_pace], 0.8)},
        preferences={"social_pace": answer.social_pace},
    )


def write_structure_preference(answer, current):
    if not isinstance(answer, PaceAnswer):
        return WriterMutation()
    return WriterMutation(fingerprint={"structure_preference": (STRUCTURE_BY_PACE[answer.social_pace], 0.58)})


GROUP_PREFERENCE_VALUE = {"2-3": 0.25, "4-6": 0.55, "7-10": 0.85}


def write_group_size_pref(answer, current):
    if not isinstance(answer, GroupSizeAnswer):
        return WriterMutation()
    return WriterMutation(preferences={"group_size_pref": answer.group_size_pref})


def write_group_vs_1on1(answer, current):
    if not isinstance(answer, GroupSizeAnswer):
        return WriterMutation()
    value = GROUP_PREFERENCE_VALUE[answer.group_size_pref]
    return WriterMutation(fingerprint={"group_vs_1on1_preference": (value, 0.65)})


VALUES_IMPORTANCE_VALUE = {"very": 0.9, "somewhat": 0.6, "not_a_big_deal": 0.25}


def write_values_alignment(answer, current):
    if not isinstance(answer, ValuesAnswer):
        return WriterMutation()
    importance = answer.values_alignment_importance
    return WriterMutation(
        fingerprint={"values_alignment_importance": (VALUES_IMPORTANCE_VALUE[importance], 0.75)},
        preferences={"values_alignment_importance": importance},
    )


def write_boundaries(answer, current):
    if not isinstance(answer, BoundariesAnswer):
        return WriterMutation()
    return WriterMutation(boundaries={"no_thanks": list(answer.no_thanks), "skipped": answer.skipped})


def write_conflict_tolerance(answer, current):
    if not isinstance(answer, BoundariesAnswer):
        return WriterMutation()
    if answer.skipped:
        value = 0.5
    else:
        value = max(0.3, 1 - min(4, len(answer.no_thanks)) * 0.15)
    return WriterMutation(fingerprint={"conflict_tolerance": (clamp_unit(value), 0.56)})


def write_time_preferences(answer, current):
    if not isinstance(answer, TimePreferenceAnswer):
        return WriterMutation()
    return WriterMutation(preferences={"time_preferences": list(answer.time_preferences)})


def write_location(answer, current):
    if not isinstance(answer, LocationAnswer):
        return WriterMutation()
    return WriterMutation(country_code=answer.country_code, state_code=answer.state_code)


WRITERS: Dict[str, Writer] = {
    "onboarding_consent": write_onboarding_consent,
    "activity_patterns": write_activity_patterns,
    "active_intent": write_active_intent,
    "motive_weights": write_motive_weights,
    "connection_depth": write_connection_depth,
    "novelty_seeking": write_novelty_seeking,
    "emotional_directness": write_emotional_directness,
    "adventure_comfort": write_adventure_comfort,
    "social_energy": write_social_energy,
    "humor_style": write_humor_style,
    "conversation_style": write_conversation_style,
    "social_pace": write_social_pace,
    "structure_preference": write_structure_preference,
    "group_size_pref": write_group_size_pref,
    "group_vs_1on1_preference": write_group_vs_1on1,
    "values_alignment_importance": write_values_alignment,
    "boundaries": write_boundaries,
    "conflict_tolerance": write_conflict_tolerance,
    "time_preferences": write_time_preferences,
    "location": write_location,
}

STEP_WRITE_TARGETS: Dict[str, Tuple[str, ...]] = {
    "intro_01": ("onboarding_consent",),
    "activity_01": ("activity_patterns",),
    "activity_02": ("active_intent",),
    "motive_01": ("motive_weights", "connection_depth", "novelty_seeking", "emotional_directness", "adventure_comfort"),
    "motive_02": ("motive_weights", "novelty_seeking", "adventure_comfort", "connection_depth"),
    "style_01": ("social_energy", "humor_style"),
    "style_02": ("conversation_style",),
    "pace_01": ("social_pace", "structure_preference"),
    "group_01": ("group_size_pref", "group_vs_1on1_preference"),
    "values_01": ("values_alignment_importance",),
    "boundaries_01": ("boundaries", "conflict_tolerance"),
    "constraints_01": ("time_preferences",),
    "location_01": ("location",),
}


# =============================================================================
# Draft application
# =============================================================================

def _draft_from(profile: ProfileSnapshot) -> ProfileSnapshot:
    draft = copy.deepcopy(profile)
    if not isinstance(draft.preferences, dict):
        draft.preferences = {}
    if not isinstance(draft.fingerprint, dict):
        draft.fingerprint = {}
    if not isinstance(draft.activity_patterns, list):
        draft.activity_patterns = []
    if not isinstance(draft.boundaries, dict):
        draft.boundaries = {}
    return draft


def _upsert_activity(draft: ProfileSnapshot, activity_key: str, confidence: float, source: str,
                     motive_weights: Optional[Dict[str, float]] = None) -> Dict[str, Any]:
    for pattern in draft.activity_patterns:
        if isinstance(pattern, dict) and pattern.get("activity_key") == activity_key:
            current = pattern.get("confidence")
            if not isinstance(current, (int, float)) or isinstance(current, bool) or confidence > current:
                pattern["confidence"] = confidence
            if motive_weights:
                merged = dict(pattern.get("motive_weights") or {})
                for motive, weight in motive_weights.items():
                    merged[motive] = max(float(merged.get(motive, 0.0)), weight)
                pattern["motive_weights"] = merged
            return pattern
    pattern = {
        "activity_key": activity_key,
        "confidence": confidence,
        "source": source,
        "motive_weights": dict(motive_weights or {}),
    }
    draft.activity_patterns.append(pattern)
    return pattern


def _apply_mutation(draft: ProfileSnapshot, mutation: WriterMutation, now_iso: str) -> None:
    for factor, (value, confidence) in mutation.fingerprint.items():
        candidate = {"value": value, "confidence": confidence, "source": SOURCE_INTERVIEW, "updated_at": now_iso}
        draft.fingerprint[factor] = merge_fingerprint_factor(draft.fingerprint.get(factor), candidate)
    draft.preferences.update(copy.deepcopy(mutation.preferences))
    if mutation.boundaries is not None:
        draft.boundaries = {**draft.boundaries, **mutation.boundaries}
    for activity_key in mutation.activity_keys:
        _upsert_activity(draft, activity_key, INTERVIEW_ACTIVITY_CONFIDENCE, SOURCE_INTERVIEW)
    if mutation.active_intent:
        intent = dict(draft.active_intent) if isinstance(draft.active_intent, dict) else {}
        intent.update(mutation.active_intent)
        draft.active_intent = intent
    if mutation.country_code is not None:
        draft.country_code = mutation.country_code
        draft.state_code = mutation.state_code


def apply_answer_writers(draft: ProfileSnapshot, step_id: str, answer: NormalizedAnswer, now_iso: str) -> None:
    targets = STEP_WRITE_TARGETS.get(step_id)
    if not targets:
        raise InterviewStateError(f"No write targets for interview step '{step_id}'.")
    for target in targets:
        _apply_mutation(draft, WRITERS[target](answer, draft), now_iso)


def apply_extraction_to_draft(draft: ProfileSnapshot, extraction: InterviewExtractOutput, now_iso: str) -> None:
    """
    Layer LLM-extracted signals over the draft.

    Fingerprint and activity data merge by confidence. Preference and boundary
    values only fill gaps; what the user answered directly is never replaced.
    """
    extracted = extraction.extracted

    for patch in extracted.fingerprint_patches or ():
        if patch.key not in FINGERPRINT_FACTOR_KEYS:
            logger.debug("Ignoring extracted fingerprint key %s", patch.key)
            continue
        candidate = {"value": patch.range_value, "confidence": patch.confidence,
                     "source": SOURCE_LLM, "updated_at": now_iso}
        draft.fingerprint[patch.key] = merge_fingerprint_factor(draft.fingerprint.get(patch.key), candidate)

    for add in extracted.activity_patterns_add or ():
        pattern = _upsert_activity(draft, add.activity_key, add.confidence, SOURCE_LLM, add.motive_weights)
        if add.constraints is not None:
            pattern["constraints"] = dict(add.constraints)
        if add.preferred_windows is not None:
            pattern["preferred_windows"] = list(add.preferred_windows)

    boundaries_patch = extracted.boundaries_patch or {}
    no_thanks = boundaries_patch.get("no_thanks")
    if isinstance(no_thanks, list):
        merged = list(draft.boundaries.get("no_thanks") or [])
        for item in no_thanks:
            if isinstance(item, str) and item.strip() and item not in merged:
                merged.append(item)
        draft.boundaries["no_thanks"] = merged[:MAX_BOUNDARY_ITEMS]
    if isinstance(boundaries_patch.get("skipped"), bool) and "skipped" not in draft.boundaries:
        draft.boundaries["skipped"] = boundaries_patch["skipped"]

    preferences_patch = extracted.preferences_patch or {}
    group_size = preferences_patch.get("group_size_pref")
    if is_valid_group_size_pref(group_size) and not is_valid_group_size_pref(draft.preferences.get("group_size_pref")):
        draft.preferences["group_size_pref"] = copy.deepcopy(group_size)
    times = preferences_patch.get("time_preferences")
    if is_valid_time_preferences(times) and not is_valid_time_preferences(draft.preferences.get("time_preferences")):
        draft.preferences["time_preferences"] = list(times)
    importance = preferences_patch.get("values_alignment_importance")
    if importance in set(VALUES_CHOICES.values()) and "values_alignment_importance" not in draft.preferences:
        draft.preferences["values_alignment_importance"] = importance


# =============================================================================
# Patch builders
# =============================================================================

def completeness_percent(covered: int, total: int = len(REQUIRED_COVERAGE_TARGETS)) -> int:
    if total <= 0:
        return 0
    return int(math.floor(100.0 * covered / total + 0.5))


def _step_index(step_id: Optional[str]) -> int:
    if step_id is None:
        return len(ACTIVE_INTERVIEW_STEP_IDS)
    step_id = normalize_interview_step_id(step_id)
    if step_id in ACTIVE_INTERVIEW_STEP_IDS:
        return ACTIVE_INTERVIEW_STEP_IDS.index(step_id)
    return 0


def _finalize_patch(profile: ProfileSnapshot, draft: ProfileSnapshot, progress: InterviewProgress,
                    now_iso: str, last_interview_step: Optional[str]) -> ProfileUpdatePatch:
    draft.preferences["interview_progress"] = progress.to_dict()
    draft.last_interview_step = last_interview_step

    coverage = get_signal_coverage_status(draft)
    if coverage.mvp_complete:
        state = ProfileState.COMPLETE_MVP.value
        completed_at = profile.completed_at or now_iso
        status_reason = STATUS_REASON_COMPLETE
        progress.status = ProgressStatus.COMPLETE.value
        draft.preferences["interview_progress"] = progress.to_dict()
    else:
        state = ProfileState.PARTIAL.value
        completed_at = profile.completed_at
        status_reason = STATUS_REASON_IN_PROGRESS

    return ProfileUpdatePatch(
        state=state,
        is_complete_mvp=coverage.mvp_complete,
        last_interview_step=last_interview_step,
        preferences=draft.preferences,
        fingerprint=draft.fingerprint,
        activity_patterns=draft.activity_patterns,
        boundaries=draft.boundaries,
        active_intent=draft.active_intent,
        completeness_percent=completeness_percent(len(coverage.covered)),
        completed_at=completed_at,
        status_reason=status_reason,
        state_changed_at=now_iso if state != profile.state else profile.state_changed_at,
        country_code=draft.country_code,
        state_code=draft.state_code,
    )


def build_patch_for_answer(profile: ProfileSnapshot,
                           step_id: str,
                           answer: NormalizedAnswer,
                           next_step_id: Optional[str],
                           now: Timestamp,
                           extraction: Optional[InterviewExtractOutput] = None) -> ProfileUpdatePatch:
    """
    Build the profile patch for one answered step.

    Args:
        profile: Snapshot the answer applies to (not modified)
        step_id: Step that was answered
        answer: Normalized answer for that step
        next_step_id: Step asked next, or None when the interview is done
        now: Wall-clock time of the turn
        extraction: Validated LLM extraction to layer on top, if any

    Returns:
        ProfileUpdatePatch with progress, coverage-derived state and completeness
    """
    step_id = normalize_interview_step_id(step_id)
    now_iso = to_iso(now)
    draft = _draft_from(profile)

    apply_answer_writers(draft, step_id, answer, now_iso)
    if extraction is not None:
        apply_extraction_to_draft(draft, extraction, now_iso)

    progress = read_interview_progress(profile) or InterviewProgress()
    completed: List[str] = []
    for completed_id in progress.completed_step_ids + [step_id]:
        completed_id = normalize_interview_step_id(completed_id)
        if completed_id not in completed:
            completed.append(completed_id)
    answers = dict(progress.answers)
    answers[step_id] = answer.to_dict()

    next_progress = InterviewProgress(
        version=PROGRESS_VERSION,
        status=ProgressStatus.IN_PROGRESS.value,
        step_index=_step_index(next_step_id),
        current_step_id=normalize_interview_step_id(next_step_id) if next_step_id else None,
        completed_step_ids=completed,
        answers=answers,
        updated_at=now_iso,
    )
    return _finalize_patch(profile, draft, next_progress, now_iso, last_interview_step=step_id)


def build_start_patch(profile: ProfileSnapshot, step_id: str, now: Timestamp) -> ProfileUpdatePatch:
    """Initialize (or reopen) interview progress at step_id without applying an answer."""
    step_id = normalize_interview_step_id(step_id)
    now_iso = to_iso(now)
    draft = _draft_from(profile)
    progress = read_interview_progress(profile) or InterviewProgress()
    progress.version = PROGRESS_VERSION
    progress.status = ProgressStatus.IN_PROGRESS.value
    progress.current_step_id = step_id
    progress.step_index = _step_index(step_id)
    progress.updated_at = now_iso
    return _finalize_patch(profile, draft, progress, now_iso, last_interview_step=profile.last_interview_step)


def build_pause_patch(profile: ProfileSnapshot, step_id: str, now: Timestamp) -> ProfileUpdatePatch:
    """Mark progress paused while keeping step_id current."""
    patch = build_start_patch(profile, step_id, now)
    patch.preferences["interview_progress"]["status"] = ProgressStatus.PAUSED.value
    return patch
