"""
Tests for the interview transition planner, from single branches to whole conversations.
"""

import threading

import pytest

from josh_interview.interview.coverage import FINGERPRINT_FACTOR_KEYS
from josh_interview.interview.errors import ExtractorErrorCode, InterviewExtractorError, InterviewStateError
from josh_interview.interview.extractor import InterviewSignalExtractor
from josh_interview.interview.idempotency import ExtractionRequestGuard, extraction_request_key
from josh_interview.interview.messages import (
    ALREADY_COMPLETE_PROFILE_MESSAGE, INTERVIEW_DROPOUT_RESUME, INTERVIEW_PAUSE_MESSAGE, INTERVIEW_WRAP_MESSAGE,
)
from josh_interview.interview.planner import (
    build_conversation_history, build_interview_transition_plan, derive_answer_from_extraction,
    from_interview_state_token, to_interview_state_token,
)
from josh_interview.interview.schemas import parse_interview_extract_output
from josh_interview.interview.steps import get_interview_step
from josh_interview.interview.testing import (
    CANONICAL_ANSWER_BY_STEP, FIXED_NOW, SPARSE_INTERVIEW_ANSWERS, MockLLMProvider, ScriptedExtractor,
    build_extraction_payload, make_profile, make_rich_extraction, make_session, run_scripted_interview,
    run_step_keyed_interview,
)


def interviewing(step_id, last_sid="SM0000", **overrides):
    return make_session(
        mode="interviewing",
        state_token=to_interview_state_token(step_id),
        current_step_id=step_id,
        last_inbound_message_sid=last_sid,
        **overrides,
    )


def plan(text, session, profile=None, sid="SM0001", **kwargs):
    return build_interview_transition_plan(
        user_id="user-1",
        inbound_message_sid=sid,
        inbound_text=text,
        session=session,
        profile=profile or make_profile(),
        now=FIXED_NOW,
        **kwargs,
    )


def mvp_profile():
    return make_profile(
        state="complete_mvp",
        fingerprint={key: {"value": 0.5, "confidence": 0.7} for key in FINGERPRINT_FACTOR_KEYS[:8]},
        activity_patterns=[{"activity_key": k, "confidence": 0.65} for k in ("coffee", "walk", "museum")],
        preferences={"group_size_pref": "4-6", "time_preferences": ["evenings"]},
        boundaries={"no_thanks": [], "skipped": True},
    )


def rich_extractor():
    return ScriptedExtractor(default=lambda extract_input: make_rich_extraction(extract_input.step_id))


class TestStateTokens:
    """Tests for session state token handling."""

    def test_round_trip(self):
        assert to_interview_state_token("pace_01") == "interview:pace_01"
        assert from_interview_state_token("interview:pace_01") == "pace_01"

    def test_non_interview_tokens(self):
        assert from_interview_state_token(None) is None
        assert from_interview_state_token("  ") is None
        assert from_interview_state_token("idle") is None

    def test_known_onboarding_token_returned(self):
        token = "onboarding:awaiting_interview_start"
        assert from_interview_state_token(token) == token

    def test_unknown_tokens_raise(self):
        with pytest.raises(InterviewStateError, match="Unknown onboarding state token"):
            from_interview_state_token("onboarding:dancing")
        with pytest.raises(InterviewStateError, match="Unknown interview state token"):
            from_interview_state_token("interview:nope_01")
        with pytest.raises(InterviewStateError):
            from_interview_state_token("interview:wrap_01")


class TestStateErrors:
    """Tests for sessions the planner must refuse."""

    def test_onboarding_token_must_be_routed_elsewhere(self):
        session = make_session(state_token="onboarding:awaiting_opening_response")
        with pytest.raises(InterviewStateError, match="must be routed to the onboarding engine"):
            plan("hi", session)

    def test_interviewing_without_interview_token(self):
        session = make_session(mode="interviewing", state_token="idle")
        with pytest.raises(InterviewStateError):
            plan("hi", session)


class TestCompleteProfile:
    """Tests for profiles that are already done."""

    def test_idle_session_gets_already_complete(self):
        result = plan("hey", make_session(), profile=mvp_profile())
        assert result.action == "idempotent"
        assert result.reply_message == ALREADY_COMPLETE_PROFILE_MESSAGE
        assert result.profile_patch is None
        assert result.next_session.mode == "idle"

    def test_interviewing_session_gets_wrapped(self):
        result = plan("B", interviewing("pace_01"), profile=mvp_profile())
        assert result.action == "complete"
        assert result.reply_message == INTERVIEW_WRAP_MESSAGE
        assert result.next_session.state_token == "idle"
        assert result.next_session.last_inbound_message_sid == "SM0001"


class TestReplayAndStart:
    """Tests for replays and cold starts."""

    def test_replay_resends_current_prompt(self):
        session = interviewing("pace_01", last_sid="SM0009", dropout_nudge_sent_at="2026-02-28T12:00:00+00:00")
        result = plan("B", session, sid="SM0009")
        assert result.action == "idempotent"
        assert result.reply_message == get_interview_step("pace_01").prompt
        assert result.profile_patch is None
        assert result.next_session.dropout_nudge_sent_at == "2026-02-28T12:00:00+00:00"

    def test_cold_start(self, empty_profile, idle_session):
        result = plan("hi", idle_session, profile=empty_profile)
        assert result.action == "start"
        assert result.current_step_id == "activity_01"
        assert result.reply_message == get_interview_step("activity_01").prompt
        assert result.next_session.state_token == "interview:activity_01"
        assert result.profile_patch.preferences["interview_progress"]["current_step_id"] == "activity_01"
        assert result.profile_event_type is None

    def test_cold_start_resumes_stored_progress(self, idle_session):
        profile = make_profile(preferences={"interview_progress": {"current_step_id": "group_01"}})
        result = plan("hi", idle_session, profile=profile)
        assert result.current_step_id == "group_01"


class TestDropoutResume:
    """Tests for the first message after a dropout nudge."""

    def test_resume_recomputes_next_question(self, empty_profile):
        session = interviewing("pace_01", dropout_nudge_sent_at="2026-02-28T12:00:00+00:00")
        result = plan("sorry, back now", session, profile=empty_profile)
        assert result.action == "resume"
        assert result.reply_message.startswith(INTERVIEW_DROPOUT_RESUME)
        assert result.next_step_id == "activity_01"
        assert result.next_session.dropout_nudge_sent_at is None
        assert result.next_session.current_step_id == "activity_01"


class TestRetry:
    """Tests for unparseable answers."""

    def test_unparseable_answer_retries_same_step(self):
        session = interviewing("pace_01", dropout_nudge_sent_at=None)
        result = plan("hmm no idea", session)
        assert result.action == "retry"
        assert result.reply_message == get_interview_step("pace_01").retry_prompt
        assert result.reply_message.count("?") <= 1
        assert result.profile_patch is None
        assert result.next_session.current_step_id == "pace_01"
        assert result.next_session.last_inbound_message_sid == "SM0001"

    def test_retry_when_extraction_also_fails(self):
        extractor = ScriptedExtractor(default=InterviewExtractorError(
            ExtractorErrorCode.TIMEOUT, "slow", True, "corr", "v1"))
        result = plan("purple", interviewing("motive_01"), llm_extractor=extractor)
        assert result.action == "retry"


class TestDeprecatedIntroAlias:
    """Tests for sessions still parked on the old intro step."""

    def test_later_pauses(self):
        session = make_session(mode="interviewing", state_token="interview:intro_01")
        result = plan("later", session)
        assert result.action == "pause"
        assert result.reply_message == INTERVIEW_PAUSE_MESSAGE
        assert result.current_step_id == "activity_01"
        assert result.profile_patch.preferences["interview_progress"]["status"] == "paused"
        assert result.next_session.state_token == "interview:activity_01"

    def test_other_text_answers_replacement_step(self):
        session = make_session(mode="interviewing", state_token="interview:intro_01")
        result = plan("coffee and a walk", session)
        assert result.action == "advance"
        assert result.current_step_id == "activity_01"


class TestAnswerTurn:
    """Tests for the normal answer path."""

    def test_advance_payload(self, empty_profile):
        result = plan("coffee, walk, museum", interviewing("activity_01"), profile=empty_profile)
        assert result.action == "advance"
        assert result.next_step_id == "activity_02"
        assert result.reply_message == get_interview_step("activity_02").prompt
        assert result.profile_event_type == "interview_step_saved"
        payload = result.profile_event_payload
        assert payload["answer"] == {"activity_keys": ["coffee", "walk", "museum"]}
        assert payload["extraction_source"] == "deterministic"
        assert payload["extraction_fallback_reason"] == "llm_extractor_unavailable"
        assert payload["next_signal_target"] == "top_activity_intent"
        assert payload["profile_state"] == "partial"
        assert payload["is_complete_mvp"] is False

    def test_prefer_not_boundaries(self):
        result = plan("I'd rather not say", interviewing("boundaries_01"))
        assert result.profile_patch.boundaries == {"no_thanks": [], "skipped": True}
        assert result.profile_event_payload["answer"] == {"no_thanks": [], "skipped": True}


class TestLlmFallback:
    """Tests for extraction failures falling back to deterministic parsing."""

    def test_malformed_json_falls_back(self):
        extractor = InterviewSignalExtractor(MockLLMProvider(["not-json"]))
        result = plan("coffee, walk, museum", interviewing("activity_01"), llm_extractor=extractor)
        assert result.action == "advance"
        assert result.profile_event_payload["extraction_source"] == "deterministic"
        assert result.profile_event_payload["extraction_fallback_reason"] == ExtractorErrorCode.INVALID_JSON.value

    def test_rate_limited_when_message_already_extracted(self):
        guard = ExtractionRequestGuard([extraction_request_key("user-1", "SM0001")])
        extractor = rich_extractor()
        result = plan("coffee, walk, museum", interviewing("activity_01"),
                      llm_extractor=extractor, llm_request_guard=guard)
        assert result.profile_event_payload["extraction_fallback_reason"] == "rate_limited"
        assert extractor.inputs == []

    def test_unexpected_extractor_exception(self):
        result = plan("coffee, walk, museum", interviewing("activity_01"), llm_extractor=ScriptedExtractor())
        assert result.action == "advance"
        assert result.profile_event_payload["extraction_fallback_reason"] == "unknown_error"


class TestLlmExtraction:
    """Tests for turns where extraction succeeds."""

    def test_extraction_rescues_unparseable_answer(self):
        extractor = ScriptedExtractor({
            "activity_01": build_extraction_payload(
                "activity_01", activities={"coffee": {"connection": 0.6}, "walk": {"restorative": 0.6}}),
        })
        result = plan("mostly just hanging out somewhere chill", interviewing("activity_01"), llm_extractor=extractor)
        assert result.action == "advance"
        assert result.profile_event_payload["answer"] == {"activity_keys": ["coffee", "walk"]}
        assert result.profile_event_payload["extraction_source"] == "llm"
        assert result.profile_event_payload["extraction_fallback_reason"] is None

    def test_extractor_input(self):
        extractor = rich_extractor()
        plan("coffee, walk, museum", interviewing("activity_01"), llm_extractor=extractor)
        extract_input = extractor.inputs[0]
        assert extract_input.step_id == "activity_01"
        assert extract_input.inbound_message_sid == "SM0001"
        assert extract_input.question_text == get_interview_step("activity_01").prompt
        assert set(extract_input.current_profile) == {"fingerprint", "activityPatterns", "boundaries", "preferences"}

    def test_one_extraction_per_message(self):
        guard = ExtractionRequestGuard()
        extractor = rich_extractor()
        for _ in range(2):
            plan("coffee, walk, museum", interviewing("activity_01"), llm_extractor=extractor, llm_request_guard=guard)
        assert len(extractor.inputs) == 1
        assert len(guard) == 1
        assert extraction_request_key("user-1", "SM0001") in guard

        guard.release(extraction_request_key("user-1", "SM0001"))
        assert len(guard) == 0
        assert guard.try_acquire(extraction_request_key("user-1", "SM0001"))


class TestDerivedAnswers:
    """Tests for answers synthesized from extraction output."""

    def test_defaults(self):
        extraction = parse_interview_extract_output({"stepId": "style_02", "extracted": {}})
        assert derive_answer_from_extraction("style_02", extraction).conversation_styles == ()
        assert derive_answer_from_extraction("activity_02", extraction).activity_key == "coffee"
        assert derive_answer_from_extraction("boundaries_01", extraction).skipped is True

    def test_motive_from_first_activity(self):
        extraction = parse_interview_extract_output(
            build_extraction_payload("motive_01", activities={"climbing": {"adventure": 0.9}}))
        assert derive_answer_from_extraction("motive_01", extraction).motive_weights == {"adventure": 0.9}

    def test_unknown_step(self):
        extraction = parse_interview_extract_output({"stepId": "x", "extracted": {}})
        with pytest.raises(InterviewStateError):
            derive_answer_from_extraction("wrap_01", extraction)


class TestConversationHistory:
    """Tests for the history used for inference."""

    def test_string_leaves_then_latest(self):
        progress = {"answers": {
            "activity_01": {"activity_keys": ["coffee", "walk"]},
            "pace_01": {"social_pace": "fast"},
        }}
        profile = make_profile(preferences={"interview_progress": progress})
        assert build_conversation_history(profile, "  B  ") == ["coffee", "walk", "fast", "B"]


class TestFullInterviews:
    """End-to-end conversations through the planner."""

    def test_sparse_deterministic_interview(self):
        plans = run_scripted_interview(SPARSE_INTERVIEW_ANSWERS)
        assert [p.action for p in plans] == ["start"] + ["advance"] * 9 + ["complete"]
        assert [p.current_step_id for p in plans[1:]] == [
            "activity_01", "activity_02", "motive_01", "style_01", "style_02",
            "pace_01", "group_01", "values_01", "boundaries_01", "constraints_01",
        ]
        final = plans[-1]
        assert final.reply_message == INTERVIEW_WRAP_MESSAGE
        assert final.profile_patch.state == "complete_mvp"
        assert final.profile_event_type == "interview_completed"
        assert final.next_session.mode == "idle"
        assert all(p.reply_message.count("?") <= 1 for p in plans)

    def test_canonical_step_keyed_script(self):
        plans = run_step_keyed_interview(CANONICAL_ANSWER_BY_STEP)
        actions = [p.action for p in plans]
        assert actions[0] == "start"
        assert actions[-1] == "complete"
        assert set(actions[1:-1]) == {"advance"}
        assert all(p.current_step_id in CANONICAL_ANSWER_BY_STEP for p in plans[1:])
        for p in plans[:-1]:
            assert p.reply_message == get_interview_step(p.next_step_id).prompt

        final = plans[-1]
        assert final.current_step_id == "constraints_01"
        assert final.reply_message == INTERVIEW_WRAP_MESSAGE
        assert final.profile_patch.is_complete_mvp is True
        assert final.profile_patch.state == "complete_mvp"
        assert final.next_session.mode == "idle"
        assert final.next_session.state_token == "idle"

    def test_step_keyed_script_ignores_entry_order(self):
        reversed_script = dict(reversed(list(CANONICAL_ANSWER_BY_STEP.items())))
        expected = run_step_keyed_interview(CANONICAL_ANSWER_BY_STEP)
        plans = run_step_keyed_interview(reversed_script)
        assert [(p.action, p.current_step_id) for p in plans] == [(p.action, p.current_step_id) for p in expected]
        assert plans[-1].reply_message == INTERVIEW_WRAP_MESSAGE

    def test_sparse_interview_never_asks_location(self):
        plans = run_scripted_interview(SPARSE_INTERVIEW_ANSWERS)
        assert "location_01" not in [p.next_step_id for p in plans]

    def test_rich_extraction_completes_early(self):
        plans = run_scripted_interview(["coffee, walk, museum"], llm_extractor=rich_extractor())
        assert [p.action for p in plans] == ["start", "complete"]
        payload = plans[-1].profile_event_payload
        assert payload["extraction_source"] == "llm"
        assert payload["is_complete_mvp"] is True
        assert payload["completeness_percent"] == 100

    def test_concurrent_guard_acquisition(self):
        guard = ExtractionRequestGuard()
        results = []
        lock = threading.Lock()

        def acquire():
            acquired = guard.try_acquire("user-1:SM0001")
            with lock:
                results.append(acquired)

        threads = [threading.Thread(target=acquire) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        assert results.count(True) == 1
