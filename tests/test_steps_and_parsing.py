"""
Unit tests for the step catalog and the deterministic answer parsers.
"""

import pytest

from josh_interview.interview.errors import InterviewStateError
from josh_interview.interview.guardrails import find_prohibited_content
from josh_interview.interview.messages import (
    ALREADY_COMPLETE_PROFILE_MESSAGE, INTERVIEW_DROPOUT_NUDGE_TEMPLATE, INTERVIEW_DROPOUT_RESUME,
    INTERVIEW_MESSAGES_VERSION, INTERVIEW_PAUSE_MESSAGE, INTERVIEW_WRAP_MESSAGE, render_dropout_nudge,
    render_resume_message,
)
from josh_interview.interview.models import (
    ActivityAnswer, BoundariesAnswer, IntroAnswer, MotiveAnswer, answer_from_dict,
)
from josh_interview.interview.parsing import (
    extract_activity_keys, parse_activities, parse_boundaries, parse_conversation_style,
    parse_group_size, parse_intro, parse_location, parse_motive, parse_motive_quick_pick,
    parse_pace, parse_social_style, parse_time_preferences, parse_top_activity, parse_values,
)
from josh_interview.interview.steps import (
    ACTIVE_INTERVIEW_STEP_IDS, FIRST_ACTIVE_STEP_ID, INTERVIEW_STEP_CATALOG, WRAP_STEP_ID,
    get_interview_step, normalize_interview_step_id,
)


class TestStepCatalog:
    """Tests for the ordered step catalog."""

    def test_catalog_ends_with_terminal_wrap(self):
        last = INTERVIEW_STEP_CATALOG[-1]
        assert last.id == WRAP_STEP_ID
        assert last.is_terminal
        assert last.parser is None

    def test_every_question_step_has_parser_and_retry(self):
        for step in INTERVIEW_STEP_CATALOG[:-1]:
            assert step.kind == "question"
            assert step.parser is not None
            assert step.retry_prompt

    def test_retry_prompts_ask_at_most_one_question(self):
        for step in INTERVIEW_STEP_CATALOG:
            assert step.retry_prompt.count("?") <= 1

    def test_active_steps_skip_deprecated_intro(self):
        assert "intro_01" not in ACTIVE_INTERVIEW_STEP_IDS
        assert FIRST_ACTIVE_STEP_ID == "activity_01"
        assert ACTIVE_INTERVIEW_STEP_IDS[-1] == "location_01"

    def test_intro_alias_normalizes(self):
        assert normalize_interview_step_id("intro_01") == "activity_01"
        assert normalize_interview_step_id("pace_01") == "pace_01"

    def test_unknown_step_raises(self):
        with pytest.raises(InterviewStateError, match="Unknown interview step"):
            get_interview_step("nope_01")

    def test_step_parse_without_parser_fails(self):
        assert get_interview_step(WRAP_STEP_ID).parse("anything").ok is False


class TestActivityParsing:
    """Tests for the activity parsers."""

    def test_keys_ordered_by_first_mention(self):
        assert extract_activity_keys("Museums then a walk, maybe coffee") == ["museum", "walk", "coffee"]

    def test_keys_capped_at_three(self):
        keys = extract_activity_keys("coffee, walk, museum, climbing, games")
        assert keys == ["coffee", "walk", "museum"]

    def test_word_boundaries(self):
        # "walker" is not "walk"
        assert extract_activity_keys("my walker broke") == []

    def test_parse_activities(self):
        result = parse_activities("coffee and bouldering", {})
        assert result.ok
        assert result.value == ActivityAnswer(activity_keys=("coffee", "climbing"))

    def test_parse_activities_fails_on_unknown(self):
        assert parse_activities("nothing really", {}).ok is False

    def test_top_activity_by_rank(self):
        context = {"activity_01": ActivityAnswer(activity_keys=("coffee", "walk", "museum"))}
        assert parse_top_activity("2", context).value.activity_key == "walk"

    def test_top_activity_rank_out_of_range_falls_back_to_name(self):
        context = {"activity_01": ActivityAnswer(activity_keys=("coffee",))}
        assert parse_top_activity("3", context).ok is False
        assert parse_top_activity("coffee please", context).value.activity_key == "coffee"


class TestChoiceParsing:
    """Tests for the single and multi choice parsers."""

    def test_intro(self):
        assert parse_intro("Yes!", {}).value == IntroAnswer(consent="yes")
        assert parse_intro("later", {}).value == IntroAnswer(consent="later")
        assert parse_intro("maybe", {}).ok is False

    @pytest.mark.parametrize("text,expected", [("A", "curious"), ("b.", "funny"), ("Energetic", "energetic")])
    def test_social_style(self, text, expected):
        assert parse_social_style(text, {}).value.social_style == expected

    def test_conversation_style_max_two(self):
        result = parse_conversation_style("ideas, feelings and plans", {})
        assert result.value.conversation_styles == ("ideas", "feelings")

    def test_pace_group_values(self):
        assert parse_pace("C", {}).value.social_pace == "fast"
        assert parse_group_size("2 - 3", {}).value.group_size_pref == "2-3"
        assert parse_values("not a big deal", {}).value.values_alignment_importance == "not_a_big_deal"

    def test_time_preferences(self):
        assert parse_time_preferences("evenings and weekends", {}).value.time_preferences == (
            "evenings", "weekends_only",
        )
        assert parse_time_preferences("whenever", {}).ok is False


class TestMotiveParsing:
    """Tests for motive keyword and quick-pick parsing."""

    def test_keywords(self):
        weights = parse_motive("deeper convo but also some adventure", {}).value.motive_weights
        assert weights == {"connection": 0.75, "adventure": 0.7}

    def test_unsure_answer_gets_soft_weights(self):
        assert parse_motive("idk", {}).value == MotiveAnswer(motive_weights={"comfort": 0.5, "restorative": 0.45})

    def test_no_motive(self):
        assert parse_motive("purple", {}).ok is False

    def test_quick_pick(self):
        assert parse_motive_quick_pick("D", {}).value.motive_weights == {"adventure": 0.8}

    def test_quick_pick_falls_back_to_keywords(self):
        assert parse_motive_quick_pick("calm reset", {}).value.motive_weights == {"restorative": 0.7}


class TestBoundariesParsing:
    """Tests for free-text boundaries."""

    def test_items_split(self):
        result = parse_boundaries("Bars, late nights and super loud places, etc.", {})
        assert result.value == BoundariesAnswer(
            no_thanks=("bars", "late nights", "super loud places"), skipped=False,
        )

    def test_prefer_not_is_skip(self):
        assert parse_boundaries("I'd prefer not to say", {}).value == BoundariesAnswer(no_thanks=(), skipped=True)

    def test_none_is_empty_answer(self):
        assert parse_boundaries("None!", {}).value == BoundariesAnswer(no_thanks=(), skipped=False)

    def test_empty_fails(self):
        assert parse_boundaries("   ", {}).ok is False


class TestLocationParsing:
    """Tests for the location parser."""

    def test_country_and_state(self):
        answer = parse_location("us-wa", {}).value
        assert (answer.country_code, answer.state_code) == ("US", "WA")

    def test_country_alias(self):
        assert parse_location("Canada", {}).value.country_code == "CA"

    def test_garbage(self):
        assert parse_location("the moon", {}).ok is False


class TestAnswerStorage:
    """Tests for answer serialization in interview progress."""

    def test_round_trip_through_progress_form(self):
        answer = BoundariesAnswer(no_thanks=("bars",), skipped=False)
        assert answer.to_dict() == {"no_thanks": ["bars"], "skipped": False}
        assert answer_from_dict("boundaries_01", answer.to_dict()) == answer

    def test_malformed_answer_is_none(self):
        assert answer_from_dict("pace_01", {"speed": "fast"}) is None
        assert answer_from_dict("unknown_01", {}) is None


class TestMessages:
    """Tests for fixed SMS copy."""

    def test_copy_text(self):
        assert INTERVIEW_MESSAGES_VERSION == "v1"
        assert INTERVIEW_WRAP_MESSAGE == (
            "That's everything. Your profile is set. I now have a real sense of your style — the kinds of "
            "plans you'd enjoy, how you like to connect, and what a good match looks like for you. Whenever "
            "you're ready to do something, just text me naturally. Something like 'I’m free Saturday morning' "
            "or 'I want to go skiing this weekend' and I'll take it from there."
        )
        assert INTERVIEW_DROPOUT_NUDGE_TEMPLATE == (
            "Hey {first_name} — you were mid-way through your JOSH profile. No pressure, but whenever you "
            "want to pick back up, just reply anything and we'll continue from where you left off."
        )
        assert INTERVIEW_DROPOUT_RESUME == "Welcome back. Picking up from where we left off."

    def test_rendered_nudge(self):
        assert render_dropout_nudge(" Avery ") == (
            "Hey Avery — you were mid-way through your JOSH profile. No pressure, but whenever you want "
            "to pick back up, just reply anything and we'll continue from where you left off."
        )

    def test_resume_message(self):
        message = render_resume_message("What size group feels best?")
        assert message == "Welcome back. Picking up from where we left off.\n\nWhat size group feels best?"

    def test_nudge_needs_name(self):
        with pytest.raises(ValueError):
            render_dropout_nudge("  ")
        with pytest.raises(ValueError):
            render_dropout_nudge(None)

    def test_copy_passes_guardrails(self):
        copy = [
            INTERVIEW_WRAP_MESSAGE, ALREADY_COMPLETE_PROFILE_MESSAGE, INTERVIEW_PAUSE_MESSAGE,
            INTERVIEW_DROPOUT_RESUME, render_dropout_nudge("Avery"),
        ]
        for step in INTERVIEW_STEP_CATALOG:
            copy.extend([step.prompt, step.retry_prompt])
        assert find_prohibited_content(copy) == []
