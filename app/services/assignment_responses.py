"""Typed client responses for an assignment.

The assignment type's ``structure`` declares each field's type. Raw form
values are parsed into the matching ``ResponseValue`` variant (text, number,
rating, checkbox, select) so malformed submissions are caught before they
reach staff.

Draft saves only type-check what was sent. Submission additionally requires
every ``required`` field; a required checkbox must be ticked.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Mapping, Tuple

from pydantic import TypeAdapter, ValidationError as PydanticValidationError

from app.schemas.assignment import (
    AssignmentField,
    ResponseValue,
    TextValue,
    NumberValue,
    RatingValue,
    CheckboxValue,
    SelectValue,
)

logger = logging.getLogger("app.responses")

_field_adapter = TypeAdapter(AssignmentField)

DEFAULT_RATING_MIN = 1
DEFAULT_RATING_MAX = 5


def load_field_schema(structure: Iterable[Mapping[str, Any]] | None) -> List[AssignmentField]:
    """Parse an assignment type's structure, skipping malformed entries."""
    fields: List[AssignmentField] = []
    for raw in structure or []:
        try:
            fields.append(_field_adapter.validate_python(raw))
        except PydanticValidationError as e:
            logger.warning("Skipping malformed assignment field %r: %s", raw, e.errors()[:1])
    return fields


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def parse_value(field: AssignmentField, value: Any) -> ResponseValue:
    """Parse one raw value for ``field``; raises ValueError with a readable reason."""
    if field.type in ("text", "textarea"):
        if not isinstance(value, str):
            raise ValueError("expected text")
        return TextValue(value=value)

    if field.type == "number":
        if not _is_number(value):
            raise ValueError("expected a number")
        if field.min is not None and value < field.min:
            raise ValueError(f"must be >= {field.min:g}")
        if field.max is not None and value > field.max:
            raise ValueError(f"must be <= {field.max:g}")
        return NumberValue(value=value)

    if field.type == "rating":
        low = field.min if field.min is not None else DEFAULT_RATING_MIN
        high = field.max if field.max is not None else DEFAULT_RATING_MAX
        if not _is_number(value) or int(value) != value:
            raise ValueError("expected a whole-number rating")
        if value < low or value > high:
            raise ValueError(f"rating must be between {low:g} and {high:g}")
        return RatingValue(value=int(value))

    if field.type == "checkbox":
        if not isinstance(value, bool):
            raise ValueError("expected true or false")
        return CheckboxValue(value=value)

    if field.type == "select":
        if not isinstance(value, str):
            raise ValueError("expected one of the listed options")
        if field.options and value not in field.options:
            raise ValueError(f"'{value}' is not one of: {', '.join(field.options)}")
        return SelectValue(value=value)

    raise ValueError(f"unsupported field type {field.type}")


def validate_responses(
    fields: List[AssignmentField],
    responses: Mapping[str, Any],
    require_complete: bool,
) -> Tuple[Dict[str, ResponseValue], List[str]]:
    """Return (typed values, error messages). Errors empty means valid."""
    errors: List[str] = []
    by_id = {f.id: f for f in fields}

    unexpected = sorted(k for k in responses.keys() if k not in by_id)
    if unexpected:
        errors.append(f"Unexpected fields: {', '.join(unexpected)}")

    values: Dict[str, ResponseValue] = {}
    for field in fields:
        raw = responses.get(field.id)
        if _is_blank(raw):
            continue
        try:
            values[field.id] = parse_value(field, raw)
        except ValueError as e:
            errors.append(f"{field.label}: {e}")

    if require_complete:
        missing = []
        for field in fields:
            if not field.required:
                continue
            parsed = values.get(field.id)
            if parsed is None:
                if field.id not in responses or _is_blank(responses.get(field.id)):
                    missing.append(field.label)
            elif isinstance(parsed, CheckboxValue) and not parsed.value:
                missing.append(field.label)
        if missing:
            errors.append(f"Missing required fields: {', '.join(missing)}")

    return values, errors


def to_storage(values: Mapping[str, ResponseValue]) -> Dict[str, Any]:
    """Plain ``field_id -> value`` JSON, the shape the client form reads back."""
    return {field_id: v.value for field_id, v in values.items()}
