import pytest

from app.schemas.assignment import CheckboxValue, NumberValue, RatingValue, SelectValue, TextValue
from app.services.assignment_responses import (
    load_field_schema,
    parse_value,
    to_storage,
    validate_responses,
)

STRUCTURE = [
    {"id": "reflection", "label": "Reflection", "type": "textarea", "required": True},
    {"id": "confidence", "label": "Confidence", "type": "rating", "required": True},
    {"id": "agree", "label": "Agreement", "type": "checkbox", "required": True},
    {"id": "hours", "label": "Hours", "type": "number", "min": 0, "max": 40},
    {"id": "track", "label": "Track", "type": "select", "options": ["foundations", "advanced"]},
]


@pytest.fixture
def fields():
    return load_field_schema(STRUCTURE)


def test_load_field_schema_skips_malformed_entries():
    fields = load_field_schema(STRUCTURE + [{"id": "broken"}, {"id": "x", "label": "X", "type": "video"}])
    assert [f.id for f in fields] == ["reflection", "confidence", "agree", "hours", "track"]
    assert load_field_schema(None) == []


def test_parse_value_variants(fields):
    by_id = {f.id: f for f in fields}
    assert parse_value(by_id["reflection"], "hello") == TextValue(value="hello")
    assert parse_value(by_id["confidence"], 4) == RatingValue(value=4)
    assert parse_value(by_id["agree"], True) == CheckboxValue(value=True)
    assert parse_value(by_id["hours"], 2.5) == NumberValue(value=2.5)
    assert parse_value(by_id["track"], "advanced") == SelectValue(value="advanced")


@pytest.mark.parametrize("field_id,value,message", [
    ("reflection", 12, "expected text"),
    ("confidence", 6, "rating must be between 1 and 5"),
    ("confidence", 2.5, "whole-number"),
    ("agree", "yes", "true or false"),
    ("hours", 41, "must be <= 40"),
    ("hours", True, "expected a number"),
    ("track", "expert", "not one of"),
])
def test_parse_value_rejects(fields, field_id, value, message):
    field = next(f for f in fields if f.id == field_id)
    with pytest.raises(ValueError) as exc:
        parse_value(field, value)
    assert message in str(exc.value)


def test_draft_validation_does_not_require_fields(fields):
    values, errors = validate_responses(fields, {"reflection": "draft"}, require_complete=False)
    assert errors == []
    assert to_storage(values) == {"reflection": "draft"}


def test_submit_validation_requires_fields(fields):
    _, errors = validate_responses(fields, {"reflection": "  "}, require_complete=True)
    assert errors == ["Missing required fields: Reflection, Confidence, Agreement"]


def test_required_checkbox_must_be_ticked(fields):
    responses = {"reflection": "done", "confidence": 3, "agree": False}
    _, errors = validate_responses(fields, responses, require_complete=True)
    assert errors == ["Missing required fields: Agreement"]


def test_unexpected_fields_reported(fields):
    _, errors = validate_responses(fields, {"reflection": "x", "bogus": 1}, require_complete=False)
    assert errors == ["Unexpected fields: bogus"]


def test_type_errors_use_field_labels(fields):
    _, errors = validate_responses(fields, {"confidence": 9}, require_complete=False)
    assert errors == ["Confidence: rating must be between 1 and 5"]


def test_complete_submission_round_trips_to_storage(fields):
    responses = {"reflection": "done", "confidence": 5, "agree": True, "hours": 2, "track": "foundations"}
    values, errors = validate_responses(fields, responses, require_complete=True)
    assert errors == []
    assert to_storage(values) == responses
