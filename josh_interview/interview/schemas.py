"""
Structured contract for the interview extraction payload.

parse_interview_extract_output is a strict validator, not a coercer: undocumented
keys are rejected, numbers bound to [0, 1] must be finite and in range, and
optional fields that are absent stay absent.
"""
import math
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional, Tuple

from .errors import InterviewExtractOutputSchemaError

TOP_LEVEL_KEYS = frozenset({"stepId", "extracted", "notes"})
EXTRACTED_KEYS = frozenset({"fingerprintPatches", "activityPatternsAdd", "boundariesPatch", "preferencesPatch"})
FINGERPRINT_PATCH_KEYS = frozenset({"key", "range_value", "confidence"})
ACTIVITY_ADD_KEYS = frozenset({"activity_key", "motive_weights", "constraints", "preferred_windows", "confidence"})
NOTES_KEYS = frozenset({"needsFollowUp", "followUpQuestion", "followUpOptions"})
FOLLOW_UP_OPTION_KEYS = frozenset({"key", "label"})


@dataclass(frozen=True)
class FingerprintPatch:
    key: str
    range_value: float
    confidence: float


@dataclass(frozen=True)
class ActivityPatternAdd:
    activity_key: str
    motive_weights: Dict[str, float]
    confidence: float
    constraints: Optional[Dict[str, bool]] = None
    preferred_windows: Optional[Tuple[str, ...]] = None


@dataclass(frozen=True)
class FollowUpOption:
    key: str
    label: str


@dataclass(frozen=True)
class ExtractionNotes:
    needs_follow_up: Optional[bool] = None
    follow_up_question: Optional[str] = None
    follow_up_options: Optional[Tuple[FollowUpOption, ...]] = None


@dataclass(frozen=True)
class ExtractedSignals:
    fingerprint_patches: Optional[Tuple[FingerprintPatch, ...]] = None
    activity_patterns_add: Optional[Tuple[ActivityPatternAdd, ...]] = None
    boundaries_patch: Optional[Dict[str, Any]] = None
    preferences_patch: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class InterviewExtractOutput:
    """A validated extraction for one interview step."""
    step_id: str
    extracted: ExtractedSignals
    notes: Optional[ExtractionNotes] = None


def _require_object(value: Any, path: str) -> Dict[str, Any]:
    if not isinstance(value, dict):
        raise InterviewExtractOutputSchemaError(path, "must be an object")
    return value


def _require_known_keys(value: Dict[str, Any], allowed: Iterable[str], path: str) -> None:
    unknown = sorted(set(value) - set(allowed))
    if unknown:
        raise InterviewExtractOutputSchemaError(path, f"unknown key(s): {', '.join(unknown)}")


def _require_list(value: Any, path: str) -> list:
    if not isinstance(value, list):
        raise InterviewExtractOutputSchemaError(path, "must be an array")
    return value


def _require_non_empty_string(value: Any, path: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise InterviewExtractOutputSchemaError(path, "must be a non-empty string")
    return value


def _require_unit_interval(value: Any, path: str) -> float:
    # bool is an int subclass; true/false are not numbers here
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InterviewExtractOutputSchemaError(path, "must be a number")
    if not math.isfinite(value) or value < 0 or value > 1:
        raise InterviewExtractOutputSchemaError(path, "must be within [0, 1]")
    return float(value)


def _require_bool(value: Any, path: str) -> bool:
    if not isinstance(value, bool):
        raise InterviewExtractOutputSchemaError(path, "must be a boolean")
    return value


def _parse_fingerprint_patch(value: Any, path: str) -> FingerprintPatch:
    obj = _require_object(value, path)
    _require_known_keys(obj, FINGERPRINT_PATCH_KEYS, path)
    for required in FINGERPRINT_PATCH_KEYS:
        if required not in obj:
            raise InterviewExtractOutputSchemaError(f"{path}.{required}", "is required")
    return FingerprintPatch(
        key=_require_non_empty_string(obj["key"], f"{path}.key"),
        range_value=_require_unit_interval(obj["range_value"], f"{path}.range_value"),
        confidence=_require_unit_interval(obj["confidence"], f"{path}.confidence"),
    )


def _parse_activity_add(value: Any, path: str) -> ActivityPatternAdd:
    obj = _require_object(value, path)
    _require_known_keys(obj, ACTIVITY_ADD_KEYS, path)
    for required in ("activity_key", "motive_weights", "confidence"):
        if required not in obj:
            raise InterviewExtractOutputSchemaError(f"{path}.{required}", "is required")

    weights_obj = _require_object(obj["motive_weights"], f"{path}.motive_weights")
    motive_weights = {}
    for motive, weight in weights_obj.items():
        _require_non_empty_string(motive, f"{path}.motive_weights")
        motive_weights[motive] = _require_unit_interval(weight, f"{path}.motive_weights.{motive}")

    constraints = None
    if "constraints" in obj:
        constraints_obj = _require_object(obj["constraints"], f"{path}.constraints")
        constraints = {
            name: _require_bool(flag, f"{path}.constraints.{name}")
            for name, flag in constraints_obj.items()
        }

    preferred_windows = None
    if "preferred_windows" in obj:
        windows = _require_list(obj["preferred_windows"], f"{path}.preferred_windows")
        preferred_windows = tuple(
            _require_non_empty_string(window, f"{path}.preferred_windows[{i}]")
            for i, window in enumerate(windows)
        )

    return ActivityPatternAdd(
        activity_key=_require_non_empty_string(obj["activity_key"], f"{path}.activity_key"),
        motive_weights=motive_weights,
        confidence=_require_unit_interval(obj["confidence"], f"{path}.confidence"),
        constraints=constraints,
        preferred_windows=preferred_windows,
    )


def _parse_extracted(value: Any, path: str) -> ExtractedSignals:
    obj = _require_object(value, path)
    _require_known_keys(obj, EXTRACTED_KEYS, path)

    fingerprint_patches = None
    if "fingerprintPatches" in obj:
        items = _require_list(obj["fingerprintPatches"], f"{path}.fingerprintPatches")
        fingerprint_patches = tuple(
            _parse_fingerprint_patch(item, f"{path}.fingerprintPatches[{i}]") for i, item in enumerate(items)
        )

    activity_patterns_add = None
    if "activityPatternsAdd" in obj:
        items = _require_list(obj["activityPatternsAdd"], f"{path}.activityPatternsAdd")
        activity_patterns_add = tuple(
            _parse_activity_add(item, f"{path}.activityPatternsAdd[{i}]") for i, item in enumerate(items)
        )

    boundaries_patch = None
    if "boundariesPatch" in obj:
        boundaries_patch = dict(_require_object(obj["boundariesPatch"], f"{path}.boundariesPatch"))

    preferences_patch = None
    if "preferencesPatch" in obj:
        preferences_patch = dict(_require_object(obj["preferencesPatch"], f"{path}.preferencesPatch"))

    return ExtractedSignals(
        fingerprint_patches=fingerprint_patches,
        activity_patterns_add=activity_patterns_add,
        boundaries_patch=boundaries_patch,
        preferences_patch=preferences_patch,
    )


def _parse_notes(value: Any, path: str) -> ExtractionNotes:
    obj = _require_object(value, path)
    _require_known_keys(obj, NOTES_KEYS, path)

    needs_follow_up = None
    if "needsFollowUp" in obj:
        needs_follow_up = _require_bool(obj["needsFollowUp"], f"{path}.needsFollowUp")

    follow_up_question = None
    if "followUpQuestion" in obj:
        follow_up_question = _require_non_empty_string(obj["followUpQuestion"], f"{path}.followUpQuestion")

    follow_up_options = None
    if "followUpOptions" in obj:
        options = []
        for i, item in enumerate(_require_list(obj["followUpOptions"], f"{path}.followUpOptions")):
            option_path = f"{path}.followUpOptions[{i}]"
            option = _require_object(item, option_path)
            _require_known_keys(option, FOLLOW_UP_OPTION_KEYS, option_path)
            options.append(FollowUpOption(
                key=_require_non_empty_string(option.get("key"), f"{option_path}.key"),
                label=_require_non_empty_string(option.get("label"), f"{option_path}.label"),
            ))
        follow_up_options = tuple(options)

    return ExtractionNotes(
        needs_follow_up=needs_follow_up,
        follow_up_question=follow_up_question,
        follow_up_options=follow_up_options,
    )


def parse_interview_extract_output(payload: Any) -> InterviewExtractOutput:
    """
    Validate a decoded model payload against the extraction contract.

    Raises:
        InterviewExtractOutputSchemaError: with the JSON path of the first problem
    """
    obj = _require_object(payload, "$")
    _require_known_keys(obj, TOP_LEVEL_KEYS, "$")
    if "stepId" not in obj:
        raise InterviewExtractOutputSchemaError("$.stepId", "is required")
    if "extracted" not in obj:
        raise InterviewExtractOutputSchemaError("$.extracted", "is required")

    return InterviewExtractOutput(
        step_id=_require_non_empty_string(obj["stepId"], "$.stepId"),
        extracted=_parse_extracted(obj["extracted"], "$.extracted"),
        notes=_parse_notes(obj["notes"], "$.notes") if "notes" in obj else None,
    )
