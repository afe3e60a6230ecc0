"""
Guardrail and JSON-shape checks for model output.

Nothing a model returns is trusted before it passes through validate_model_output.
Any violation voids the whole output.
"""
import json
import re
import logging
from dataclasses import dataclass
from typing import Any, Iterator, List, Optional, Tuple

logger = logging.getLogger("guardrails")

OUTPUT_VALIDATOR_VERSION = "output_validator_v1"
PROHIBITED_PATTERNS_VERSION = "conversation_prohibited_patterns_v1"

EMPTY_OUTPUT = "empty_output"
INVALID_JSON = "invalid_json"
OUTPUT_WRAPPER_DETECTED = "output_wrapper_detected"

STRUCTURAL_VIOLATIONS = frozenset({EMPTY_OUTPUT, INVALID_JSON, OUTPUT_WRAPPER_DETECTED})

PROHIBITED_PATTERNS: Tuple[Tuple[str, "re.Pattern[str]"], ...] = (
    ("no_jargon", re.compile(r"\b(heuristic|state machine|schema|idempotent|pipeline)\b", re.IGNORECASE)),
    ("no_therapy_framing", re.compile(r"\b(trauma response|attachment style|healing journey|co-regulate)\b", re.IGNORECASE)),
    ("no_guarantees", re.compile(r"\b(guarantee(d|s)?|i promise|always works|never fails)\b|\b100%\s*match\b", re.IGNORECASE)),
    ("no_personality_scoring_language", re.compile(r"\b(personality score|type score|you are an introvert|you are an extrovert)\b", re.IGNORECASE)),
    ("no_feature_explaining", re.compile(r"\b(my algorithm|matching engine|llm|model prompt|backend)\b", re.IGNORECASE)),
)

FENCE_PATTERN = re.compile(r"^```[a-zA-Z]*\s*\n?(.*?)\n?\s*```$", re.DOTALL)


@dataclass(frozen=True)
class OutputValidationResult:
    """ok=True carries sanitized_text; ok=False carries the violation codes."""
    ok: bool
    sanitized_text: Optional[str] = None
    violations: Tuple[str, ...] = ()
    parsed: Any = None


def iter_string_leaves(value: Any) -> Iterator[str]:
    """Every string value nested anywhere inside a parsed JSON value."""
    if isinstance(value, str):
        yield value
    elif isinstance(value, dict):
        for child in value.values():
            yield from iter_string_leaves(child)
    elif isinstance(value, list):
        for child in value:
            yield from iter_string_leaves(child)


def find_prohibited_content(value: Any) -> List[str]:
    """Codes of the prohibited patterns matched by any string leaf, each reported once."""
    leaves = list(iter_string_leaves(value))
    return [code for code, pattern in PROHIBITED_PATTERNS if any(pattern.search(leaf) for leaf in leaves)]


def _find_balanced_json_span(text: str) -> Optional[str]:
    starts = [i for i in (text.find("{"), text.find("[")) if i != -1]
    if not starts:
        return None
    start = min(starts)
    opener = text[start]
    closer = "}" if opener == "{" else "]"

    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == opener:
            depth += 1
        elif char == closer:
            depth -= 1
            if depth == 0:
                return text[start:index + 1]
    return None


def validate_model_output(raw_text: Optional[str], require_json: bool = True) -> OutputValidationResult:
    """
    Check raw model text before anything downstream reads it.

    A single markdown fence is stripped and recorded as a wrapper violation. When
    JSON is required and the text does not parse directly, the first balanced
    {...} or [...] span is tried, again recording a wrapper violation.
    """
    text = (raw_text or "").strip()
    if not text:
        return OutputValidationResult(ok=False, violations=(EMPTY_OUTPUT,))

    violations: List[str] = []

    fence = FENCE_PATTERN.match(text)
    if fence:
        text = fence.group(1).strip()
        violations.append(OUTPUT_WRAPPER_DETECTED)

    parsed: Any = None
    if require_json:
        try:
            parsed = json.loads(text)
        except ValueError:
            span = _find_balanced_json_span(text)
            if span is None:
                violations.append(INVALID_JSON)
            else:
                try:
                    parsed = json.loads(span)
                    text = span
                    if OUTPUT_WRAPPER_DETECTED not in violations:
                        violations.append(OUTPUT_WRAPPER_DETECTED)
                except ValueError:
                    violations.append(INVALID_JSON)

    scanned = parsed if parsed is not None else text
    violations.extend(find_prohibited_content(scanned))

    if violations:
        logger.debug("Model output rejected: %s", violations)
        return OutputValidationResult(ok=False, violations=tuple(violations), parsed=parsed)
    return OutputValidationResult(ok=True, sanitized_text=text, parsed=parsed)
