"""Tests for JSON Schema validation via compiled pydantic models."""

from __future__ import annotations

import pytest

from toolrelay.foundation.core import SchemaValidator
from toolrelay.foundation.errors import SchemaValidationError


def _object(properties: dict, required: list[str] | None = None, **extra: object) -> SchemaValidator:
    return SchemaValidator({"type": "object", "properties": properties, "required": required or [], **extra})


class TestScalars:
    def test_string_is_strict(self) -> None:
        v = _object({"s": {"type": "string"}}, ["s"])
        assert v.is_valid({"s": "x"})
        assert not v.is_valid({"s": 1})

    def test_integer_is_strict(self) -> None:
        v = _object({"n": {"type": "integer"}}, ["n"])
        assert v.is_valid({"n": 5})
        assert not v.is_valid({"n": "5"})
        assert not v.is_valid({"n": True})
        assert not v.is_valid({"n": 1.5})

    def test_number_accepts_int_and_float(self) -> None:
        v = _object({"x": {"type": "number"}}, ["x"])
        assert v.is_valid({"x": 3})
        assert v.is_valid({"x": 2.5})
        assert not v.is_valid({"x": "3"})

    def test_boolean(self) -> None:
        v = _object({"b": {"type": "boolean"}}, ["b"])
        assert v.is_valid({"b": False})
        assert not v.is_valid({"b": "false"})

    def test_nullable_type_list(self) -> None:
        v = _object({"s": {"type": ["string", "null"]}}, ["s"])
        assert v.is_valid({"s": None})
        assert v.is_valid({"s": "x"})
        assert not v.is_valid({"s": 3})


class TestConstraints:
    def test_string_constraints(self) -> None:
        v = _object({"code": {"type": "string", "minLength": 2, "maxLength": 4, "pattern": "^[A-Z]+$"}}, ["code"])
        assert v.is_valid({"code": "AB"})
        assert not v.is_valid({"code": "A"})
        assert not v.is_valid({"code": "ABCDE"})
        assert not v.is_valid({"code": "ab"})

    def test_numeric_bounds(self) -> None:
        v = _object({"n": {"type": "integer", "minimum": 1, "exclusiveMaximum": 10}}, ["n"])
        assert v.is_valid({"n": 1})
        assert not v.is_valid({"n": 0})
        assert not v.is_valid({"n": 10})

    def test_array_items_and_length(self) -> None:
        v = _object({"tags": {"type": "array", "items": {"type": "string"}, "minItems": 1}}, ["tags"])
        assert v.is_valid({"tags": ["a", "b"]})
        assert not v.is_valid({"tags": []})
        assert not v.is_valid({"tags": ["a", 2]})

    def test_enum_and_const(self) -> None:
        v = _object({"unit": {"enum": ["c", "f"]}, "kind": {"const": "temp"}}, ["unit"])
        assert v.is_valid({"unit": "c", "kind": "temp"})
        assert not v.is_valid({"unit": "k"})
        assert not v.is_valid({"unit": "c", "kind": "other"})


class TestObjects:
    def test_required_and_optional(self) -> None:
        v = _object({"a": {"type": "string"}, "b": {"type": "integer"}}, ["a"])
        assert v.is_valid({"a": "x"})
        assert not v.is_valid({"b": 1})

    def test_optional_field_is_not_nullable(self) -> None:
        v = _object({"b": {"type": "integer"}})
        assert not v.is_valid({"b": None})

    def test_additional_properties(self) -> None:
        closed = _object({"a": {"type": "string"}}, additionalProperties=False)
        open_ = _object({"a": {"type": "string"}})
        assert not closed.is_valid({"a": "x", "extra": 1})
        assert open_.is_valid({"a": "x", "extra": 1})

    def test_empty_closed_object(self) -> None:
        v = SchemaValidator({"type": "object", "properties": {}, "additionalProperties": False})
        assert v.is_valid({})
        assert not v.is_valid({"x": 1})

    def test_nested_objects(self) -> None:
        v = _object({
            "user": {
                "type": "object",
                "properties": {"name": {"type": "string"}},
                "required": ["name"],
            },
        }, ["user"])
        assert v.is_valid({"user": {"name": "ada"}})
        assert not v.is_valid({"user": {}})

    def test_property_names_clashing_with_pydantic(self) -> None:
        v = _object({"schema": {"type": "string"}, "model_config": {"type": "integer"}}, ["schema", "model_config"])
        assert v.is_valid({"schema": "x", "model_config": 1})
        assert not v.is_valid({"schema": "x", "model_config": "1"})

    def test_non_object_rejected(self) -> None:
        v = _object({})
        assert not v.is_valid(["not", "a", "dict"])


class TestComposition:
    def test_any_of(self) -> None:
        v = _object({"id": {"anyOf": [{"type": "integer"}, {"type": "string"}]}}, ["id"])
        assert v.is_valid({"id": 1})
        assert v.is_valid({"id": "x"})
        assert not v.is_valid({"id": 1.5})

    def test_local_refs(self) -> None:
        v = SchemaValidator({
            "type": "object",
            "properties": {"point": {"$ref": "#/$defs/Point"}},
            "required": ["point"],
            "$defs": {
                "Point": {
                    "type": "object",
                    "properties": {"x": {"type": "number"}, "y": {"type": "number"}},
                    "required": ["x", "y"],
                },
            },
        })
        assert v.is_valid({"point": {"x": 1, "y": 2.5}})
        assert not v.is_valid({"point": {"x": 1}})

    def test_recursive_ref_does_not_loop(self) -> None:
        v = SchemaValidator({
            "type": "object",
            "properties": {"child": {"$ref": "#"}, "name": {"type": "string"}},
        })
        assert v.is_valid({"name": "a", "child": {"name": "b"}})

    def test_non_object_root(self) -> None:
        v = SchemaValidator({"type": "string", "maxLength": 3})
        assert v.is_valid("abc")
        assert not v.is_valid("abcd")


class TestErrors:
    def test_validate_reports_fields(self) -> None:
        v = _object({"a": {"type": "string"}, "b": {"type": "integer"}}, ["a", "b"])
        with pytest.raises(SchemaValidationError) as exc:
            v.validate({"a": 1}, tool_name="demo")
        err = exc.value
        assert "demo" in err.message
        locs = {e["loc"] for e in err.errors}
        assert locs == {"a", "b"}

    def test_validate_passes_silently(self) -> None:
        v = _object({"a": {"type": "string"}}, ["a"])
        assert v.validate({"a": "ok"}) is None
