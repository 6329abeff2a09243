"""JSON Schema -> pydantic compilation for argument and output validation.

Tool parameter schemas arrive as plain JSON Schema documents from an external
generator and are passed through to providers verbatim. For strict tools and
structured output they are also compiled once into pydantic types, so
validation runs through pydantic-core instead of a hand-written walker.

Supported: object/properties/required/additionalProperties, string, integer,
number, boolean, null, array/items, enum, const, anyOf/oneOf, single-member or
object-merging allOf, type lists, local ``$ref`` into ``$defs``/``definitions``,
and the common length/range/pattern keywords. Anything else validates as Any.

Properties are stored under generated field names with the JSON name as alias,
so property names that clash with pydantic attributes (``schema``, ``json``,
``model_*``) are safe.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Annotated, Any, Literal, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictBool,
    StrictFloat,
    StrictInt,
    StrictStr,
    TypeAdapter,
    ValidationError,
    create_model,
)

from toolrelay.foundation.errors import SchemaValidationError

_STRING_KEYWORDS = (("minLength", "min_length"), ("maxLength", "max_length"), ("pattern", "pattern"))
_NUMBER_KEYWORDS = (
    ("minimum", "ge"), ("maximum", "le"),
    ("exclusiveMinimum", "gt"), ("exclusiveMaximum", "lt"),
    ("multipleOf", "multiple_of"),
)
_ARRAY_KEYWORDS = (("minItems", "min_length"), ("maxItems", "max_length"))

_NONWORD = re.compile(r"\W+")


def _model_name(raw: str) -> str:
    name = _NONWORD.sub("_", raw).strip("_") or "Schema"
    return name if name[0].isalpha() else f"S_{name}"


def _hashable(value: object) -> bool:
    return isinstance(value, (str, int, float, bool)) or value is None


class _Compiler:
    """Single-use compiler bound to one root schema (for ``$ref`` resolution)."""

    __slots__ = ("_root", "_refs")

    def __init__(self, root: Mapping[str, Any]) -> None:
        self._root = root
        self._refs: dict[str, Any] = {}

    def annotation(self, schema: Any, name: str) -> Any:
        if not isinstance(schema, Mapping) or not schema:
            return Any
        if "$ref" in schema:
            return self._ref(schema["$ref"])
        if "const" in schema:
            const = schema["const"]
            return Literal[const] if _hashable(const) else Any  # type: ignore[valid-type]
        if "enum" in schema:
            values = tuple(schema["enum"])
            return Literal[values] if values and all(map(_hashable, values)) else Any  # type: ignore[valid-type]
        for key in ("anyOf", "oneOf"):
            if key in schema:
                return self._union([self.annotation(s, f"{name}_{i}") for i, s in enumerate(schema[key])])
        if "allOf" in schema:
            return self._all_of(schema, name)

        types = schema.get("type")
        if isinstance(types, list):
            return self._union([self._for_type(t, schema, name) for t in types])
        if types is None:
            if "properties" in schema:
                types = "object"
            elif "items" in schema:
                types = "array"
            else:
                return Any
        return self._for_type(types, schema, name)

    def _for_type(self, type_: str, schema: Mapping[str, Any], name: str) -> Any:
        match type_:
            case "string":
                return _constrained(StrictStr, schema, _STRING_KEYWORDS)
            case "integer":
                return _constrained(StrictInt, schema, _NUMBER_KEYWORDS)
            case "number":
                return _constrained(StrictFloat, schema, _NUMBER_KEYWORDS)
            case "boolean":
                return StrictBool
            case "null":
                return None
            case "array":
                items = schema.get("items")
                item = self.annotation(items, f"{name}_item") if isinstance(items, Mapping) else Any
                return _constrained(list[item], schema, _ARRAY_KEYWORDS)  # type: ignore[valid-type]
            case "object":
                return self._object(schema, name)
            case _:
                return Any

    def _object(self, schema: Mapping[str, Any], name: str) -> Any:
        props: Mapping[str, Any] = schema.get("properties") or {}
        additional = schema.get("additionalProperties", True)
        if not props and not schema.get("required"):
            if additional is False:
                return create_model(_model_name(name), __config__=ConfigDict(extra="forbid"))
            if isinstance(additional, Mapping):
                return dict[str, self.annotation(additional, f"{name}_value")]  # type: ignore[misc]
            return dict[str, Any]

        required = set(schema.get("required") or ())
        fields: dict[str, Any] = {}
        for i, (prop, sub) in enumerate(props.items()):
            ann = self.annotation(sub, f"{name}_{prop}")
            default = ... if prop in required else None
            fields[f"f{i}"] = (ann, Field(default, alias=prop))
        for j, prop in enumerate(sorted(required - set(props))):
            fields[f"r{j}"] = (Any, Field(..., alias=prop))

        config = ConfigDict(
            extra="forbid" if additional is False else "allow",
            protected_namespaces=(),
            regex_engine="python-re",
        )
        return create_model(_model_name(name), __config__=config, **fields)

    def _all_of(self, schema: Mapping[str, Any], name: str) -> Any:
        parts = [s for s in schema["allOf"] if isinstance(s, Mapping)]
        if len(parts) == 1:
            return self.annotation(parts[0], name)
        if parts and all(p.get("type", "object") == "object" for p in parts):
            merged: dict[str, Any] = {"type": "object", "properties": {}, "required": []}
            for part in parts:
                merged["properties"].update(part.get("properties") or {})
                merged["required"].extend(part.get("required") or [])
                if part.get("additionalProperties") is False:
                    merged["additionalProperties"] = False
            return self._object(merged, name)
        return Any

    def _ref(self, ref: str) -> Any:
        if ref in self._refs:
            return self._refs[ref]
        # Placeholder first so recursive references degrade to Any
        self._refs[ref] = Any
        target: Any = self._root
        if ref.startswith("#/"):
            for token in ref[2:].split("/"):
                token = token.replace("~1", "/").replace("~0", "~")
                target = target.get(token) if isinstance(target, Mapping) else None
        elif ref != "#":
            target = None
        resolved = self.annotation(target, _model_name(ref.rsplit("/", 1)[-1])) if target is not None else Any
        self._refs[ref] = resolved
        return resolved

    @staticmethod
    def _union(members: list[Any]) -> Any:
        if not members:
            return Any
        return members[0] if len(members) == 1 else Union[tuple(members)]  # type: ignore[return-value]


def _constrained(base: Any, schema: Mapping[str, Any], keywords: tuple[tuple[str, str], ...]) -> Any:
    kwargs = {field: schema[key] for key, field in keywords if key in schema}
    return Annotated[base, Field(**kwargs)] if kwargs else base


def compile_schema(schema: Mapping[str, Any], name: str = "Arguments") -> Any:
    """Compile a JSON Schema document into a pydantic-compatible annotation.

    Object schemas become ``BaseModel`` subclasses; other schemas become plain
    annotations usable with ``TypeAdapter``.
    """
    return _Compiler(schema).annotation(schema, name)


class SchemaValidator:
    """Validates JSON-like values against one compiled JSON Schema.

    Values are checked, never coerced: ``validate`` returns nothing and the
    caller keeps using the original value.

    Example:
        >>> v = SchemaValidator({"type": "object", "properties": {"text": {"type": "string"}},
        ...                      "required": ["text"], "additionalProperties": False})
        >>> v.validate({"text": "hi"})
        >>> v.is_valid({"text": 1})
        False
    """

    __slots__ = ("schema", "name", "_adapter")

    def __init__(self, schema: Mapping[str, Any], *, name: str = "Arguments") -> None:
        self.schema = schema
        self.name = name
        annotation = compile_schema(schema, _model_name(name))
        if isinstance(annotation, type) and issubclass(annotation, BaseModel):
            self._adapter: TypeAdapter[Any] = TypeAdapter(annotation)
        else:
            self._adapter = TypeAdapter(annotation, config=ConfigDict(regex_engine="python-re"))

    def validate(self, value: Any, *, tool_name: str | None = None) -> None:
        """Raise SchemaValidationError if ``value`` does not match the schema."""
        try:
            self._adapter.validate_python(value)
        except ValidationError as e:
            raise SchemaValidationError.from_pydantic(e, tool_name=tool_name) from e

    def is_valid(self, value: Any) -> bool:
        try:
            self._adapter.validate_python(value)
        except ValidationError:
            return False
        return True
