"""Pre-flight check that configured JPD fields exist with compatible types"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from jpdsync.models.sync_config import FieldDefinition

logger = logging.getLogger(__name__)

# actual (detected) type -> declared types it satisfies
TYPE_COMPATIBILITY: Dict[str, set[str]] = {
    "string": {"text", "url", "date", "datetime"},
    "text": {"string"},
    "array": {"multiselect"},
    "select": {"object"},
    "multiselect": {"array"},
    "object": {"select", "user"},
    "number": set(),
    "boolean": set(),
    "user": set(),
}

_MISSING = object()


@dataclass
class FieldValidationError:
    field: str
    field_id: str
    error: str  # "missing" | "wrong_type"
    expected: Optional[str] = None
    actual: Optional[str] = None
    message: str = ""


@dataclass
class ValidationResult:
    valid: bool = True
    errors: List[FieldValidationError] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


def detect_field_type(value: Any) -> str:
    """Classify a raw Jira field value."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, list):
        return "array"
    if isinstance(value, str):
        return "string"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, dict):
        if "value" in value:
            return "select"
        if "accountId" in value or ("name" in value and "key" in value):
            return "user"
    return "object"


def is_type_compatible(actual: str, expected: str) -> bool:
    if actual == expected:
        return True
    return expected in TYPE_COMPATIBILITY.get(actual, set())


class FieldValidator:
    """Validate field definitions against a sample of JPD issues.

    A missing required field or a type mismatch makes the result invalid,
    which the engine treats as fatal; an empty optional field is only a warning.
    """

    SAMPLE_SIZE = 5

    def __init__(self, source: Any, fields: Sequence[FieldDefinition], base_url: str = ""):
        self.source = source
        self.fields = list(fields)
        self.base_url = (base_url or "").rstrip("/")

    def validate(self, project_key: str) -> ValidationResult:
        result = ValidationResult()
        if not self.fields:
            return result

        logger.info(f"Validating {len(self.fields)} JPD field definitions for {project_key}")
        found = self.source.search_issues(
            f"project = {project_key}", fields=["*all"], limit=self.SAMPLE_SIZE
        )
        samples = list(found.get("issues") or [])
        if not samples:
            result.valid = False
            result.errors.append(
                FieldValidationError(
                    field="project",
                    field_id=project_key,
                    error="missing",
                    message=(
                        f"No issues found in project {project_key}. "
                        "Create at least one issue to validate fields."
                    ),
                )
            )
            return result

        self.validate_samples(samples, result)
        if not result.valid:
            logger.error(f"Field validation failed with {len(result.errors)} errors")
        return result

    def validate_samples(
        self, samples: List[Dict[str, Any]], result: Optional[ValidationResult] = None
    ) -> ValidationResult:
        result = result or ValidationResult()
        for definition in self.fields:
            value, sample_key = self._first_value(samples, definition.id)

            if value is _MISSING:
                if definition.required:
                    result.valid = False
                    result.errors.append(
                        FieldValidationError(
                            field=definition.name,
                            field_id=definition.id,
                            error="missing",
                            expected=definition.type,
                            message=(
                                f'Required field "{definition.name}" ({definition.id}) '
                                "not found in JPD project."
                            ),
                        )
                    )
                continue

            if value is None and not definition.required:
                where = f" Edit in JPD: {self.base_url}/browse/{sample_key}" if self.base_url else ""
                result.warnings.append(
                    f'Optional field "{definition.name}" ({definition.id}) is empty.{where}'
                )
                continue

            actual = detect_field_type(value)
            if not is_type_compatible(actual, definition.type):
                result.valid = False
                result.errors.append(
                    FieldValidationError(
                        field=definition.name,
                        field_id=definition.id,
                        error="wrong_type",
                        expected=definition.type,
                        actual=actual,
                        message=(
                            f'Field "{definition.name}" has type "{actual}" '
                            f'but expected "{definition.type}".'
                        ),
                    )
                )
        return result

    @staticmethod
    def _first_value(samples: List[Dict[str, Any]], field_id: str) -> tuple[Any, Optional[str]]:
        """First non-null value across samples; None if only nulls; _MISSING if never present."""
        seen_null_in: Optional[str] = None
        for sample in samples:
            fields = sample.get("fields") or {}
            if field_id not in fields:
                continue
            value = fields[field_id]
            if value is not None:
                return value, sample.get("key")
            seen_null_in = seen_null_in or sample.get("key")
        if seen_null_in is not None:
            return None, seen_null_in
        return _MISSING, None


def format_validation_report(result: ValidationResult) -> str:
    """Human-readable list of exactly which fields are missing or mismatched."""
    lines = ["JPD FIELD VALIDATION FAILED", ""]
    for err in result.errors:
        lines.append(f"- {err.field} ({err.field_id}): {err.error}")
        if err.expected:
            lines.append(f"    expected: {err.expected}")
        if err.error == "missing":
            lines.append("    actual:   missing")
        elif err.actual:
            lines.append(f"    actual:   {err.actual}")
        if err.message:
            lines.append(f"    {err.message}")
    if result.warnings:
        lines.append("")
        lines.append("Warnings:")
        lines.extend(f"- {w}" for w in result.warnings)
    lines.append("")
    lines.append("Sync cannot continue until all required fields are available.")
    return "\n".join(lines)
