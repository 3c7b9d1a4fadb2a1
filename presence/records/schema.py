"""Derive partial record models from JSON Schema entity definitions."""
from __future__ import annotations

import re
from typing import Any, Annotated, Dict, List, Mapping, Optional

from pydantic import Field, create_model

from presence.optional.value import UNSET, OptionalValue
from presence.records.partial import PartialRecord
from presence.records.shape import EntityField, NotNull

_IDENTIFIER_RE = re.compile(r"\W")


def _resolve(node: Mapping[str, Any], root: Mapping[str, Any]) -> Mapping[str, Any]:
    ref = node.get("$ref")
    if not ref:
        return node
    if not ref.startswith("#/"):
        raise ValueError(f"Only local schema references are supported: {ref}")
    target: Any = root
    for part in ref[2:].split("/"):
        target = target[part]
    return _resolve(target, root)


def _primary_type(node: Mapping[str, Any]) -> Optional[str]:
    declared = node.get("type")
    if isinstance(declared, list):
        declared = next((item for item in declared if item != "null"), None)
    if declared is None and "properties" in node:
        return "object"
    return declared


def _camel(name: str) -> str:
    return "".join(part[:1].upper() + part[1:] for part in re.split(r"[\W_]+", name) if part)


def _field_type(node: Mapping[str, Any], root: Mapping[str, Any], model_name: str) -> Any:
    node = _resolve(node, root)
    kind = _primary_type(node)
    if kind == "object" and "properties" in node:
        return partial_model_from_schema(node, model_name, root=root)
    if kind == "array":
        items = _resolve(node.get("items", {}), root)
        if _primary_type(items) == "object" and "properties" in items:
            return List[partial_model_from_schema(items, model_name, root=root)]
    return Any


def partial_model_from_schema(
    schema: Mapping[str, Any],
    name: str = "Partial",
    *,
    root: Optional[Mapping[str, Any]] = None,
) -> type[PartialRecord]:
    """Build a ``PartialRecord`` subclass mirroring a JSON Schema object definition.

    Object properties become nested partial records, arrays of objects become
    collections and everything else is a scalar. Properties listed under
    ``required`` do not accept null.
    """
    root = root if root is not None else schema
    schema = _resolve(schema, root)
    if _primary_type(schema) != "object":
        raise ValueError(f"{name}: schema must describe an object")
    required = set(schema.get("required", []))
    fields: Dict[str, Any] = {}
    for prop, node in schema.get("properties", {}).items():
        inner = _field_type(node, root, f"{name}{_camel(prop)}")
        metadata: List[Any] = []
        field_name = _IDENTIFIER_RE.sub("_", prop)
        if not field_name.isidentifier() or field_name.startswith(("_", "model_")):
            field_name = f"f_{field_name}"
        if field_name != prop:
            metadata.append(EntityField(prop))
        if prop in required:
            metadata.append(NotNull())
        annotation: Any = OptionalValue[inner]
        if metadata:
            annotation = Annotated[(annotation, *metadata)]
        default = Field(UNSET, alias=prop) if field_name != prop else UNSET
        fields[field_name] = (annotation, default)
    return create_model(name, __base__=PartialRecord, **fields)
