"""
Unit tests for InterviewSignalExtractor: retry, timeout, validation and telemetry.
"""

import pytest

from josh_interview.infrastructure.llm import LlmProviderError
from josh_interview.interview.errors import ExtractorErrorCode, InterviewExtractorError
from josh_interview.interview.extractor import InterviewSignalExtractor, normalize_follow_up
from josh_interview.interview.prompts import INTERVIEW_EXTRACTION_PROMPT_VERSION, InterviewExtractionPrompts
from josh_interview.interview.models import ConversationTurn
from josh_interview.interview.schemas import parse_interview_extract_output
from josh_interview.interview.testing import MockLLMProvider, build_extraction_payload, extraction_json


def valid_response(step_id="motive_01"):
    return extraction_json(step_id, activities={"coffee": {"connection": 0.8}})


class TestExtractSuccess:
    """Tests for the happy path."""

    def test_returns_validated_output(self, extract_input, sink):
        provider = MockLLMProvider([valid_response()])
        output = InterviewSignalExtractor(provider, sink=sink)(extract_input)
        assert output.step_id == "motive_01"
        assert output.extracted.activity_patterns_add[0].activity_key == "coffee"
        assert provider.call_count == 1

    def test_prompts_carry_step_and_version(self, extract_input):
        provider = MockLLMProvider([valid_response()])
        InterviewSignalExtractor(provider)(extract_input)
        request = provider.request_history[0]
        assert "Return JSON only" in request.system_prompt
        assert f"PromptVersion: {INTERVIEW_EXTRACTION_PROMPT_VERSION}" in request.user_prompt
        assert "CurrentStepId: motive_01" in request.user_prompt
        assert request.timeout_ms == 5000


class TestExtractRetry:
    """Tests for transient retry behavior."""

    def test_transient_failure_retried_once(self, extract_input, sink):
        provider = MockLLMProvider([LlmProviderError("busy", transient=True, status=503), valid_response()])
        output = InterviewSignalExtractor(provider, sink=sink)(extract_input)
        assert output.step_id == "motive_01"
        assert provider.call_count == 2
        assert [e.event for e in sink.events] == ["llm.extraction.failed"]

    def test_second_transient_failure_raises(self, extract_input):
        provider = MockLLMProvider([
            LlmProviderError("busy", transient=True, status=429),
            LlmProviderError("busy", transient=True, status=429),
            valid_response(),
        ])
        with pytest.raises(InterviewExtractorError) as exc:
            InterviewSignalExtractor(provider)(extract_input)
        assert exc.value.code == ExtractorErrorCode.PROVIDER_TRANSIENT
        assert exc.value.transient is True
        assert provider.call_count == 2

    def test_non_transient_not_retried(self, extract_input):
        provider = MockLLMProvider([LlmProviderError("bad request", transient=False, status=400), valid_response()])
        with pytest.raises(InterviewExtractorError) as exc:
            InterviewSignalExtractor(provider)(extract_input)
        assert exc.value.code == ExtractorErrorCode.PROVIDER_NON_TRANSIENT
        assert provider.call_count == 1

    def test_unexpected_provider_exception_is_non_transient(self, extract_input):
        provider = MockLLMProvider([KeyError("boom")])
        with pytest.raises(InterviewExtractorError) as exc:
            InterviewSignalExtractor(provider)(extract_input)
        assert exc.value.code == ExtractorErrorCode.PROVIDER_NON_TRANSIENT
        assert isinstance(exc.value.cause, KeyError)

    def test_retry_count_zero(self, extract_input):
        provider = MockLLMProvider([LlmProviderError("busy", transient=True), valid_response()])
        with pytest.raises(InterviewExtractorError):
            InterviewSignalExtractor(provider, retry_count=0)(extract_input)
        assert provider.call_count == 1


class TestExtractTimeout:
    """Tests for the per-attempt timeout."""

    def test_timeout_is_transient_and_retried(self, extract_input):
        provider = MockLLMProvider([valid_response(), valid_response()], delay_seconds=1.0)
        extractor = InterviewSignalExtractor(provider, timeout_ms=50)
        with pytest.raises(InterviewExtractorError) as exc:
            extractor(extract_input)
        assert exc.value.code == ExtractorErrorCode.TIMEOUT
        assert exc.value.transient is True
        assert provider.call_count == 2

    def test_timeout_sets_cancel_signal(self, extract_input):
        provider = MockLLMProvider([valid_response()], delay_seconds=1.0)
        with pytest.raises(InterviewExtractorError):
            InterviewSignalExtractor(provider, timeout_ms=50, retry_count=0)(extract_input)
        assert provider.request_history[0].cancelled


class TestExtractValidation:
    """Tests for validator, schema and step checks."""

    @pytest.mark.parametrize("raw", ["not-json", 'Here is the JSON: {"stepId": "motive_01", "extracted": {}}'])
    def test_malformed_json(self, extract_input, raw):
        provider = MockLLMProvider([raw, valid_response()])
        with pytest.raises(InterviewExtractorError) as exc:
            InterviewSignalExtractor(provider)(extract_input)
        assert exc.value.code == ExtractorErrorCode.INVALID_JSON
        assert exc.value.transient is False
        assert provider.call_count == 1

    def test_guardrail_violation(self, extract_input):
        raw = extraction_json("motive_01", notes={"followUpQuestion": "What does your healing journey look like?"})
        with pytest.raises(InterviewExtractorError) as exc:
            InterviewSignalExtractor(MockLLMProvider([raw]))(extract_input)
        assert exc.value.code == ExtractorErrorCode.GUARDRAIL_VIOLATION

    def test_schema_invalid(self, extract_input):
        raw = extraction_json("motive_01", fingerprint={"connection_depth": 0.5}, fingerprint_confidence=2)
        with pytest.raises(InterviewExtractorError) as exc:
            InterviewSignalExtractor(MockLLMProvider([raw]))(extract_input)
        assert exc.value.code == ExtractorErrorCode.SCHEMA_INVALID

    def test_step_mismatch_not_retried(self, extract_input):
        provider = MockLLMProvider([valid_response("style_01"), valid_response()])
        with pytest.raises(InterviewExtractorError) as exc:
            InterviewSignalExtractor(provider)(extract_input)
        assert exc.value.code == ExtractorErrorCode.STEP_MISMATCH
        assert provider.call_count == 1

    def test_error_carries_correlation_and_prompt_version(self, extract_input):
        extract_input.correlation_id = "corr-1"
        with pytest.raises(InterviewExtractorError) as exc:
            InterviewSignalExtractor(MockLLMProvider(["not-json"]))(extract_input)
        assert exc.value.correlation_id == "corr-1"
        assert exc.value.prompt_version == INTERVIEW_EXTRACTION_PROMPT_VERSION
        assert exc.value.should_fallback is True


class TestExtractTelemetry:
    """Tests for per-attempt metrics."""

    def test_metrics_emitted_per_attempt(self, extract_input, sink):
        provider = MockLLMProvider([LlmProviderError("busy", transient=True), valid_response()])
        InterviewSignalExtractor(provider, sink=sink)(extract_input)
        assert sink.metric_values("llm.request.count") == [1, 1]
        assert len(sink.metric_values("system.request.latency")) == 2
        assert sink.metric_values("llm.token.input") == [0, 120]
        assert sink.metric_values("llm.token.output") == [0, 40]

    def test_cost_estimate(self, extract_input, sink):
        InterviewSignalExtractor(MockLLMProvider([valid_response()]), sink=sink)(extract_input)
        cost = sink.metric_values("llm.cost.estimated_usd")[0]
        assert cost == pytest.approx((120 * 100 + 40 * 400) / 1e9)

    def test_outcome_tags(self, extract_input, sink):
        with pytest.raises(InterviewExtractorError):
            InterviewSignalExtractor(MockLLMProvider(["not-json"]), sink=sink)(extract_input)
        record = next(m for m in sink.metrics if m.name == "llm.request.count")
        assert record.tags["outcome"] == "error"
        assert record.tags["provider"] == "mock"

    def test_broken_sink_never_breaks_extraction(self, extract_input):
        class BrokenSink:
            def emit_metric(self, *args, **kwargs):
                raise RuntimeError("sink down")

            def log_event(self, *args, **kwargs):
                raise RuntimeError("sink down")

        output = InterviewSignalExtractor(MockLLMProvider([valid_response()]), sink=BrokenSink())(extract_input)
        assert output.step_id == "motive_01"


class TestFollowUpNormalization:
    """Tests for needsFollowUp demotion."""

    def _output(self, weights, question=None, needs=True):
        notes = {"needsFollowUp": needs}
        if question:
            notes["followUpQuestion"] = question
        payload = build_extraction_payload("motive_01", activities={"coffee": weights}, notes=notes)
        return parse_interview_extract_output(payload)

    def test_flat_weights_demoted(self):
        output = normalize_follow_up(self._output({"connection": 0.3, "fun": 0.3}))
        assert output.notes.needs_follow_up is False

    def test_strong_motive_kept(self):
        output = normalize_follow_up(self._output({"connection": 0.7}))
        assert output.notes.needs_follow_up is True

    def test_mismatch_question_kept(self):
        output = normalize_follow_up(self._output({"fun": 0.2}, question="Is there a conflict between these?"))
        assert output.notes.needs_follow_up is True

    def test_false_never_promoted(self):
        output = normalize_follow_up(self._output({"connection": 0.9}, needs=False))
        assert output.notes.needs_follow_up is False


class TestPrompts:
    """Tests for prompt formatting."""

    def test_recent_turns_capped_at_eight(self):
        turns = [ConversationTurn(role="user", text=f"msg {i}") for i in range(10)]
        formatted = InterviewExtractionPrompts.format_recent_turns(turns)
        lines = formatted.splitlines()
        assert len(lines) == 8
        assert lines[0] == "1. user: msg 2"

    def test_no_turns(self):
        assert InterviewExtractionPrompts.format_recent_turns([]) == "(none)"
