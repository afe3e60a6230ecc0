"""
LLM signal extraction for interview answers.

The extractor calls a provider under an explicit timeout, retries once on transient
failure, and only returns output that passed the guardrail validator, the schema
parser and the step-id check. Every other outcome is a typed
InterviewExtractorError that callers answer by falling back to deterministic parsing.
"""
import re
import time
import uuid
import logging
import threading
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from dataclasses import replace
from typing import Any, Dict, Optional

from .errors import ExtractorErrorCode, InterviewExtractOutputSchemaError, InterviewExtractorError
from .guardrails import STRUCTURAL_VIOLATIONS, validate_model_output
from .models import InterviewExtractInput
from .prompts import INTERVIEW_EXTRACTION_PROMPT_VERSION, InterviewExtractionPrompts
from .schemas import InterviewExtractOutput, parse_interview_extract_output
from ..config import FOLLOW_UP_MOTIVE_THRESHOLD, LLM_RETRY_COUNT, LLM_TIMEOUT_MS
from ..infrastructure.llm import LlmProvider, LlmProviderError, LlmRequest, LlmResponse, estimate_cost_usd
from ..infrastructure.observability import ObservabilitySink, emit_metric_safely, log_event_safely

logger = logging.getLogger("extractor")

MISMATCH_PATTERN = re.compile(r"\b(mismatch|conflict|incompatible|risk)\b", re.IGNORECASE)


def normalize_follow_up(output: InterviewExtractOutput) -> InterviewExtractOutput:
    """
    Demote a model-requested follow-up unless it is warranted.

    needsFollowUp=True survives only if some motive weight reaches the threshold or
    the follow-up question itself is about a mismatch. False is never promoted.
    """
    notes = output.notes
    if notes is None or notes.needs_follow_up is not True:
        return output

    weights = [
        weight
        for add in (output.extracted.activity_patterns_add or ())
        for weight in add.motive_weights.values()
    ]
    has_strong_motive = any(weight >= FOLLOW_UP_MOTIVE_THRESHOLD for weight in weights)
    signals_mismatch = bool(notes.follow_up_question and MISMATCH_PATTERN.search(notes.follow_up_question))
    if has_strong_motive or signals_mismatch:
        return output
    return replace(output, notes=replace(notes, needs_follow_up=False))


class InterviewSignalExtractor:
    """Hybrid-interview extraction orchestrator around one LLM provider."""

    def __init__(self,
                 provider: LlmProvider,
                 sink: Optional[ObservabilitySink] = None,
                 timeout_ms: int = LLM_TIMEOUT_MS,
                 retry_count: int = LLM_RETRY_COUNT):
        self.provider = provider
        self.sink = sink
        self.timeout_ms = timeout_ms
        self.retry_count = max(0, retry_count)

    def __call__(self, extract_input: InterviewExtractInput) -> InterviewExtractOutput:
        return self.extract(extract_input)

    def extract(self, extract_input: InterviewExtractInput) -> InterviewExtractOutput:
        """
        Extract structured signals for one answer.

        Raises:
            InterviewExtractorError: for any failure; transient ones were already retried
        """
        correlation_id = extract_input.correlation_id or str(uuid.uuid4())
        system_prompt = InterviewExtractionPrompts.system_prompt()
        user_prompt = InterviewExtractionPrompts.user_prompt(extract_input)
        max_attempts = 1 + self.retry_count

        attempt = 1
        while True:
            try:
                return self._attempt(extract_input, system_prompt, user_prompt, correlation_id, attempt)
            except InterviewExtractorError as e:
                log_event_safely(self.sink, "warn", "llm.extraction.failed", {
                    "correlation_id": correlation_id,
                    "step_id": extract_input.step_id,
                    "error_code": e.code.value,
                    "transient": e.transient,
                    "attempt": attempt,
                    "prompt_version": INTERVIEW_EXTRACTION_PROMPT_VERSION,
                })
                if not e.transient or attempt >= max_attempts:
                    logger.info("Extraction failed for step %s: %s (%s)", extract_input.step_id, e.code.value, e)
                    raise
                logger.info("Transient extraction failure on attempt %d, retrying: %s", attempt, e)
                attempt += 1

    def _attempt(self,
                 extract_input: InterviewExtractInput,
                 system_prompt: str,
                 user_prompt: str,
                 correlation_id: str,
                 attempt: int) -> InterviewExtractOutput:
        started = time.monotonic()
        response: Optional[LlmResponse] = None
        outcome = "error"
        try:
            response = self._call_provider(system_prompt, user_prompt, correlation_id)
            output = self._validate(response.text, extract_input, correlation_id)
            outcome = "success"
            return output
        finally:
            self._record_attempt(response, outcome, (time.monotonic() - started) * 1000.0, attempt)

    def _call_provider(self, system_prompt: str, user_prompt: str, correlation_id: str) -> LlmResponse:
        cancel_event = threading.Event()
        request = LlmRequest(
            system_prompt=system_prompt,
            user_prompt=user_prompt,
            timeout_ms=self.timeout_ms,
            cancel_event=cancel_event,
        )
        pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="llm-extract")
        future = pool.submit(self.provider.generate_text, request)
        try:
            return future.result(timeout=self.timeout_ms / 1000.0)
        except FutureTimeoutError:
            cancel_event.set()
            future.cancel()
            raise self._error(ExtractorErrorCode.TIMEOUT,
                              f"Provider did not answer within {self.timeout_ms}ms", True, correlation_id)
        except LlmProviderError as e:
            code = ExtractorErrorCode.PROVIDER_TRANSIENT if e.transient else ExtractorErrorCode.PROVIDER_NON_TRANSIENT
            raise self._error(code, str(e), e.transient, correlation_id, cause=e)
        except Exception as e:
            raise self._error(ExtractorErrorCode.PROVIDER_NON_TRANSIENT,
                              f"Provider raised {type(e).__name__}: {e}", False, correlation_id, cause=e)
        finally:
            pool.shutdown(wait=False)

    def _validate(self, raw_text: str, extract_input: InterviewExtractInput,
                  correlation_id: str) -> InterviewExtractOutput:
        validation = validate_model_output(raw_text, require_json=True)
        if not validation.ok:
            structural = any(v in STRUCTURAL_VIOLATIONS for v in validation.violations)
            code = ExtractorErrorCode.INVALID_JSON if structural else ExtractorErrorCode.GUARDRAIL_VIOLATION
            raise self._error(code, f"Output validator rejected model output: {', '.join(validation.violations)}",
                              False, correlation_id)

        try:
            output = parse_interview_extract_output(validation.parsed)
        except InterviewExtractOutputSchemaError as e:
            raise self._error(ExtractorErrorCode.SCHEMA_INVALID, str(e), False, correlation_id, cause=e)

        if output.step_id != extract_input.step_id:
            raise self._error(
                ExtractorErrorCode.STEP_MISMATCH,
                f"Model answered step '{output.step_id}' but '{extract_input.step_id}' was asked",
                False, correlation_id,
            )
        return normalize_follow_up(output)

    def _error(self, code: ExtractorErrorCode, message: str, transient: bool, correlation_id: str,
               cause: Optional[BaseException] = None) -> InterviewExtractorError:
        return InterviewExtractorError(
            code=code,
            message=message,
            transient=transient,
            correlation_id=correlation_id,
            prompt_version=INTERVIEW_EXTRACTION_PROMPT_VERSION,
            cause=cause,
        )

    def _record_attempt(self, response: Optional[LlmResponse], outcome: str, latency_ms: float, attempt: int):
        model = response.model if response is not None else self.provider.model
        tags: Dict[str, Any] = {
            "component": "interview_extractor",
            "provider": self.provider.name,
            "model": model,
            "outcome": outcome,
            "attempt": str(attempt),
        }
        emit_metric_safely(self.sink, "llm.request.count", 1, tags)
        emit_metric_safely(self.sink, "system.request.latency", latency_ms, {**tags, "component": "llm_call"})

        usage = response.usage if response is not None else None
        input_tokens = usage.input_tokens if usage else 0
        output_tokens = usage.output_tokens if usage else 0
        emit_metric_safely(self.sink, "llm.token.input", input_tokens, tags)
        emit_metric_safely(self.sink, "llm.token.output", output_tokens, tags)
        emit_metric_safely(self.sink, "llm.cost.estimated_usd",
                           estimate_cost_usd(model, input_tokens, output_tokens), tags)
