"""
Interview transition planner.

One inbound message in, one decision out: the reply to send, the session to
persist, the profile patch to apply and the domain event to record. The planner
reads everything at the start of the turn and writes nothing itself; the caller
applies the returned plan.
"""
import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from .coverage import (
    get_signal_coverage_status, read_interview_progress, select_next_question,
)
from .errors import InterviewExtractorError, InterviewStateError
from .events import EventType
from .idempotency import ExtractionRequestGuard, extraction_request_key
from .messages import (
    ALREADY_COMPLETE_PROFILE_MESSAGE, INTERVIEW_PAUSE_MESSAGE, INTERVIEW_WRAP_MESSAGE, render_resume_message,
)
from .models import (
    ActivityAnswer, BoundariesAnswer, ConversationMode, ConversationStyleAnswer, ConversationTurn,
    GroupSizeAnswer, InterviewExtractInput, InterviewTransitionPlan, IntroAnswer, LocationAnswer,
    MotiveAnswer, NormalizedAnswer, PaceAnswer, ProfileSnapshot, ProfileState, SessionSnapshot,
    StyleAnswer, TimePreferenceAnswer, TopActivityAnswer, TransitionAction, ValuesAnswer, answer_from_dict,
)
from .parsing import parse_intro
from .profile_writer import build_pause_patch, build_patch_for_answer, build_start_patch
from .schemas import InterviewExtractOutput
from .steps import (
    DEPRECATED_STEP_ALIASES, FIRST_ACTIVE_STEP_ID, get_interview_step, is_interview_step_id,
    normalize_interview_step_id, question_target_for_step,
)
from ..config import MAX_ACTIVITY_KEYS, RECENT_HISTORY_TURNS

logger = logging.getLogger("planner")

Timestamp = Union[datetime, str]
LlmExtractor = Callable[[InterviewExtractInput], InterviewExtractOutput]

INTERVIEW_TOKEN_PREFIX = "interview:"
ONBOARDING_TOKEN_PREFIX = "onboarding:"
IDLE_STATE_TOKEN = "idle"

ONBOARDING_STATE_TOKENS = (
    "onboarding:awaiting_opening_response",
    "onboarding:awaiting_explanation_response",
    "onboarding:awaiting_interview_start",
)

# Fallback reasons that are not extractor error codes
FALLBACK_EXTRACTOR_UNAVAILABLE = "llm_extractor_unavailable"
FALLBACK_RATE_LIMITED = "rate_limited"
FALLBACK_UNKNOWN_ERROR = "unknown_error"


def to_interview_state_token(step_id: str) -> str:
    return f"{INTERVIEW_TOKEN_PREFIX}{step_id}"


def from_interview_state_token(token: Optional[str]) -> Optional[str]:
    """
    Read a step id (or an onboarding token) out of a session state token.

    Returns None for empty and non-interview tokens. Unknown onboarding tokens and
    interview tokens naming a step that doesn't exist raise InterviewStateError.
    The returned step id is not alias-normalized.
    """
    normalized = (token or "").strip()
    if not normalized:
        return None

    if normalized.startswith(ONBOARDING_TOKEN_PREFIX):
        if normalized not in ONBOARDING_STATE_TOKENS:
            raise InterviewStateError(f"Unknown onboarding state token '{normalized}'.")
        return normalized

    if not normalized.startswith(INTERVIEW_TOKEN_PREFIX):
        return None

    step_id = normalized[len(INTERVIEW_TOKEN_PREFIX):]
    if not is_interview_step_id(step_id) or get_interview_step(step_id).is_terminal:
        raise InterviewStateError(f"Unknown interview state token '{normalized}'.")
    return step_id


def _is_question_step_id(value: Any) -> bool:
    return is_interview_step_id(value) and not get_interview_step(value).is_terminal


def _collect_history_fragments(value: Any) -> List[str]:
    if isinstance(value, str):
        stripped = value.strip()
        return [stripped] if stripped else []
    if isinstance(value, (list, tuple)):
        return [fragment for item in value for fragment in _collect_history_fragments(item)]
    if isinstance(value, dict):
        return [fragment for item in value.values() for fragment in _collect_history_fragments(item)]
    return []


def build_conversation_history(profile: ProfileSnapshot, latest_inbound_text: Optional[str] = None) -> List[str]:
    """String leaves of every stored answer, then the latest inbound text if any."""
    progress = read_interview_progress(profile)
    history = _collect_history_fragments(list(progress.answers.values())) if progress else []
    latest = (latest_inbound_text or "").strip()
    if latest:
        history.append(latest)
    return history


def resolve_current_step(session: SessionSnapshot, profile: ProfileSnapshot) -> Tuple[str, bool]:
    """
    Decide which step the inbound message answers.

    Returns the normalized step id and whether it was reached through a
    deprecated alias.

    Raises:
        InterviewStateError: for onboarding tokens, unknown tokens, or an
            interviewing session without a usable token
    """
    token_step = from_interview_state_token(session.state_token)
    if session.mode == ConversationMode.INTERVIEWING.value and token_step is None:
        raise InterviewStateError(f"Unknown interview state token '{session.state_token}'.")

    def resolved(step_id: str) -> Tuple[str, bool]:
        return normalize_interview_step_id(step_id), step_id in DEPRECATED_STEP_ALIASES

    if _is_question_step_id(session.current_step_id):
        return resolved(session.current_step_id)

    if token_step is not None:
        if token_step.startswith(ONBOARDING_TOKEN_PREFIX):
            raise InterviewStateError(
                f"Onboarding state token '{token_step}' must be routed to the onboarding engine."
            )
        return resolved(token_step)

    progress = read_interview_progress(profile)
    if progress is not None and _is_question_step_id(progress.current_step_id):
        return resolved(progress.current_step_id)

    selection = select_next_question(profile, build_conversation_history(profile))
    if selection is not None:
        return selection.question_id, False
    return FIRST_ACTIVE_STEP_ID, False


def _collected_answers(profile: ProfileSnapshot) -> Dict[str, NormalizedAnswer]:
    progress = read_interview_progress(profile)
    if progress is None:
        return {}
    collected = {}
    for step_id, data in progress.answers.items():
        answer = answer_from_dict(normalize_interview_step_id(step_id), data)
        if answer is not None:
            collected[normalize_interview_step_id(step_id)] = answer
    return collected


def _extraction_activity_keys(extraction: InterviewExtractOutput) -> Tuple[str, ...]:
    keys: List[str] = []
    for add in extraction.extracted.activity_patterns_add or ():
        key = add.activity_key.strip()
        if key and key not in keys:
            keys.append(key)
    return tuple(keys[:MAX_ACTIVITY_KEYS])


def derive_answer_from_extraction(step_id: str, extraction: InterviewExtractOutput) -> NormalizedAnswer:
    """
    Synthetic answer for a step the deterministic parser could not read.

    Only structural fields are derived from the model output; everything else
    takes a neutral default so that the extraction itself carries the signal.
    """
    activity_keys = _extraction_activity_keys(extraction)
    if step_id == "activity_01":
        return ActivityAnswer(activity_keys=activity_keys)
    if step_id == "activity_02":
        return TopActivityAnswer(activity_key=activity_keys[0] if activity_keys else "coffee")
    if step_id in ("motive_01", "motive_02"):
        adds = extraction.extracted.activity_patterns_add or ()
        return MotiveAnswer(motive_weights=dict(adds[0].motive_weights) if adds else {})
    if step_id == "style_01":
        return StyleAnswer(social_style="curious")
    if step_id == "style_02":
        return ConversationStyleAnswer(conversation_styles=())
    if step_id == "pace_01":
        return PaceAnswer(social_pace="medium")
    if step_id == "group_01":
        return GroupSizeAnswer(group_size_pref="4-6")
    if step_id == "values_01":
        return ValuesAnswer(values_alignment_importance="somewhat")
    if step_id == "boundaries_01":
        return BoundariesAnswer(no_thanks=(), skipped=True)
    if step_id == "constraints_01":
        return TimePreferenceAnswer(time_preferences=("evenings",))
    if step_id == "location_01":
        return LocationAnswer(country_code="US", state_code=None)
    if step_id == "intro_01":
        return IntroAnswer(consent="yes")
    raise InterviewStateError(f"Unknown interview step '{step_id}'.")


def _extract_with_llm(user_id: str,
                      inbound_message_sid: str,
                      inbound_text: str,
                      step_id: str,
                      profile: ProfileSnapshot,
                      llm_extractor: Optional[LlmExtractor],
                      llm_request_guard: Optional[ExtractionRequestGuard]
                      ) -> Tuple[Optional[InterviewExtractOutput], Optional[str]]:
    """Run extraction once for this message. Returns (output, fallback_reason)."""
    if llm_extractor is None:
        return None, FALLBACK_EXTRACTOR_UNAVAILABLE

    if llm_request_guard is not None:
        if not llm_request_guard.try_acquire(extraction_request_key(user_id, inbound_message_sid)):
            logger.info("Extraction already attempted for %s, skipping", inbound_message_sid)
            return None, FALLBACK_RATE_LIMITED

    step = get_interview_step(step_id)
    extract_input = InterviewExtractInput(
        user_id=user_id,
        inbound_message_sid=inbound_message_sid,
        step_id=step_id,
        question_target=question_target_for_step(step_id),
        question_text=step.prompt,
        user_answer_text=inbound_text,
        recent_conversation_turns=[
            ConversationTurn(role="user", text=text)
            for text in build_conversation_history(profile)[-RECENT_HISTORY_TURNS:]
        ],
        current_profile={
            "fingerprint": profile.fingerprint or {},
            "activityPatterns": profile.activity_patterns or [],
            "boundaries": profile.boundaries or {},
            "preferences": profile.preferences or {},
        },
    )
    try:
        return llm_extractor(extract_input), None
    except InterviewExtractorError as e:
        return None, e.code.value
    except Exception as e:
        logger.error("Unexpected extractor failure for step %s: %s", step_id, e)
        return None, FALLBACK_UNKNOWN_ERROR


def _interviewing_session(step_id: str, inbound_message_sid: str,
                          dropout_nudge_sent_at: Optional[str]) -> SessionSnapshot:
    return SessionSnapshot(
        mode=ConversationMode.INTERVIEWING.value,
        state_token=to_interview_state_token(step_id),
        current_step_id=step_id,
        last_inbound_message_sid=inbound_message_sid,
        dropout_nudge_sent_at=dropout_nudge_sent_at,
    )


def _idle_session(inbound_message_sid: str) -> SessionSnapshot:
    return SessionSnapshot(
        mode=ConversationMode.IDLE.value,
        state_token=IDLE_STATE_TOKEN,
        current_step_id=None,
        last_inbound_message_sid=inbound_message_sid,
        dropout_nudge_sent_at=None,
    )


def build_interview_transition_plan(user_id: str,
                                    inbound_message_sid: str,
                                    inbound_text: str,
                                    session: SessionSnapshot,
                                    profile: ProfileSnapshot,
                                    now: Timestamp,
                                    llm_extractor: Optional[LlmExtractor] = None,
                                    llm_request_guard: Optional[ExtractionRequestGuard] = None
                                    ) -> InterviewTransitionPlan:
    """
    Plan the response to one inbound interview message.

    Args:
        user_id: Owner of the session and profile
        inbound_message_sid: Transport id of the message, used for replay detection
        inbound_text: Raw message body
        session: Session as read at the start of the turn
        profile: Profile as read at the start of the turn
        now: Wall-clock time of the turn
        llm_extractor: Optional extraction callable; without one the turn is deterministic
        llm_request_guard: Optional shared guard so a message triggers at most one extraction

    Returns:
        InterviewTransitionPlan for the caller to apply

    Raises:
        InterviewStateError: when the session or profile references a step or token
            the interview engine must never see
    """
    # 1. Already complete
    coverage = get_signal_coverage_status(profile)
    if coverage.mvp_complete or profile.state == ProfileState.COMPLETE_FULL.value:
        should_wrap = (
            session.mode == ConversationMode.INTERVIEWING.value
            and (session.state_token or "").startswith(INTERVIEW_TOKEN_PREFIX)
        )
        return InterviewTransitionPlan(
            action=TransitionAction.COMPLETE.value if should_wrap else TransitionAction.IDEMPOTENT.value,
            reply_message=INTERVIEW_WRAP_MESSAGE if should_wrap else ALREADY_COMPLETE_PROFILE_MESSAGE,
            current_step_id=None,
            next_step_id=None,
            next_session=_idle_session(inbound_message_sid),
        )

    current_step_id, via_alias = resolve_current_step(session, profile)
    current_step = get_interview_step(current_step_id)

    # 2. Idempotent replay
    if session.last_inbound_message_sid == inbound_message_sid:
        logger.info("Replay of %s for user %s; re-sending %s", inbound_message_sid, user_id, current_step_id)
        return InterviewTransitionPlan(
            action=TransitionAction.IDEMPOTENT.value,
            reply_message=current_step.prompt,
            current_step_id=current_step_id,
            next_step_id=current_step_id,
            next_session=_interviewing_session(current_step_id, inbound_message_sid, session.dropout_nudge_sent_at),
        )

    # 3. Cold start
    if session.mode != ConversationMode.INTERVIEWING.value:
        return InterviewTransitionPlan(
            action=TransitionAction.START.value,
            reply_message=current_step.prompt,
            current_step_id=current_step_id,
            next_step_id=current_step_id,
            next_session=_interviewing_session(current_step_id, inbound_message_sid, None),
            profile_patch=build_start_patch(profile, current_step_id, now),
        )

    # 4. Dropout resume
    if session.dropout_nudge_sent_at:
        selection = select_next_question(profile, build_conversation_history(profile))
        resume_step_id = selection.question_id if selection is not None else current_step_id
        return InterviewTransitionPlan(
            action=TransitionAction.RESUME.value,
            reply_message=render_resume_message(get_interview_step(resume_step_id).prompt),
            current_step_id=current_step_id,
            next_step_id=resume_step_id,
            next_session=_interviewing_session(resume_step_id, inbound_message_sid, None),
            profile_patch=build_start_patch(profile, resume_step_id, now),
        )

    # Deprecated intro consent: "later" pauses at the step that replaced it
    if via_alias:
        intro = parse_intro(inbound_text, {})
        if intro.ok and intro.value.consent == "later":
            return InterviewTransitionPlan(
                action=TransitionAction.PAUSE.value,
                reply_message=INTERVIEW_PAUSE_MESSAGE,
                current_step_id=current_step_id,
                next_step_id=current_step_id,
                next_session=_interviewing_session(current_step_id, inbound_message_sid,
                                                   session.dropout_nudge_sent_at),
                profile_patch=build_pause_patch(profile, current_step_id, now),
            )

    # 5. Normal answer turn: LLM extraction runs alongside the deterministic parse
    with ThreadPoolExecutor(max_workers=1, thread_name_prefix="interview-extract") as pool:
        extraction_future = pool.submit(
            _extract_with_llm, user_id, inbound_message_sid, inbound_text, current_step_id,
            profile, llm_extractor, llm_request_guard,
        )
        parsed = current_step.parse(inbound_text, _collected_answers(profile))
        extraction, fallback_reason = extraction_future.result()

    if extraction is None and not parsed.ok:
        return InterviewTransitionPlan(
            action=TransitionAction.RETRY.value,
            reply_message=current_step.retry_prompt,
            current_step_id=current_step_id,
            next_step_id=current_step_id,
            next_session=_interviewing_session(current_step_id, inbound_message_sid, session.dropout_nudge_sent_at),
        )

    answer = parsed.value if parsed.ok else derive_answer_from_extraction(current_step_id, extraction)
    extraction_source = "llm" if extraction is not None else "deterministic"

    # Next step is chosen against the profile as it will look after this answer
    provisional = build_patch_for_answer(profile, current_step_id, answer, current_step_id, now, extraction)
    profile_after = provisional.apply_to(profile)
    selection = select_next_question(profile_after, build_conversation_history(profile_after, inbound_text))
    post_coverage = get_signal_coverage_status(profile_after)
    if post_coverage.mvp_complete:
        next_step_id = None
    else:
        next_step_id = selection.question_id if selection is not None else current_step_id

    patch = build_patch_for_answer(profile, current_step_id, answer, next_step_id, now, extraction)
    is_complete = patch.is_complete_mvp
    active_next_step_id = next_step_id or current_step_id
    planned_next_step_id = None if is_complete else active_next_step_id

    if is_complete:
        next_session = _idle_session(inbound_message_sid)
    else:
        next_session = _interviewing_session(active_next_step_id, inbound_message_sid, session.dropout_nudge_sent_at)

    logger.info("User %s answered %s -> %s (source=%s, fallback=%s, %d%%)",
                user_id, current_step_id, planned_next_step_id or "complete",
                extraction_source, fallback_reason, patch.completeness_percent)

    return InterviewTransitionPlan(
        action=TransitionAction.COMPLETE.value if is_complete else TransitionAction.ADVANCE.value,
        reply_message=INTERVIEW_WRAP_MESSAGE if is_complete else get_interview_step(active_next_step_id).prompt,
        current_step_id=current_step_id,
        next_step_id=planned_next_step_id,
        next_session=next_session,
        profile_patch=patch,
        profile_event_type=(EventType.INTERVIEW_COMPLETED if is_complete else EventType.INTERVIEW_STEP_SAVED).value,
        profile_event_step_id=current_step_id,
        profile_event_payload={
            "step_id": current_step_id,
            "answer": answer.to_dict(),
            "next_step_id": planned_next_step_id,
            "next_signal_target": selection.signal_target if selection is not None else None,
            "extraction_source": extraction_source,
            "extraction_fallback_reason": fallback_reason,
            "skipped_inferable_targets": list(selection.metadata.get("skipped_inferable_targets", []))
            if selection is not None else [],
            "profile_state": patch.state,
            "is_complete_mvp": patch.is_complete_mvp,
            "completeness_percent": patch.completeness_percent,
        },
    )
