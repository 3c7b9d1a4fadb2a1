"""Partial-update documents whose fields track key presence."""
from __future__ import annotations

from typing import Any, Dict, List, Mapping, TypeVar

import orjson
from pydantic import BaseModel, ConfigDict, model_serializer

from presence.errors import OptionalTypeError
from presence.records.shape import FieldKind, field_shapes

R = TypeVar("R", bound="PartialRecord")


class PartialRecord(BaseModel):
    """Base class for DTOs that mirror a domain entity field by field.

    Every updatable field is declared as ``OptionalValue[...]`` defaulting to
    ``UNSET``; nested structures are ``OptionalValue[OtherPartial]`` and
    collections of them ``OptionalValue[list[OtherPartial]]``::

        class AddressPatch(PartialRecord):
            street: OptionalValue[str] = UNSET
            city: Annotated[OptionalValue[str], NotNull()] = UNSET

        class CustomerPatch(PartialRecord):
            email: OptionalValue[str] = UNSET
            address: OptionalValue[AddressPatch] = UNSET
    """

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    @classmethod
    def from_presence_map(cls: type[R], data: Mapping[str, Any]) -> R:
        """Build a record from a mapping where a missing key means unset and ``None`` means null."""
        record = cls.model_validate(dict(data))
        record.check_nulls()
        return record

    @classmethod
    def from_json(cls: type[R], raw: str | bytes) -> R:
        payload = orjson.loads(raw)
        if not isinstance(payload, dict):
            raise ValueError(f"partial update must be a JSON object, got {type(payload).__name__}")
        return cls.from_presence_map(payload)

    def check_nulls(self, prefix: str = "") -> None:
        """Raise ``OptionalTypeError`` when null was supplied for a field that does not admit it."""
        for name, shape in field_shapes(type(self)).items():
            if shape.kind is FieldKind.UNKNOWN:
                continue
            value = getattr(self, name)
            path = shape.path(prefix)
            if value.is_null() and not shape.nullable:
                raise OptionalTypeError("field does not accept null", path=path)
            if not value.is_present():
                continue
            if shape.kind is FieldKind.NESTED:
                value.value.check_nulls(path)
            elif shape.kind is FieldKind.COLLECTION:
                for index, element in enumerate(value.value):
                    element.check_nulls(f"{path}[{index}]")

    def present_fields(self) -> List[str]:
        """Names of the fields that were part of the input (null or value)."""
        return [
            name
            for name, shape in field_shapes(type(self)).items()
            if shape.kind is not FieldKind.UNKNOWN and not getattr(self, name).is_unset()
        ]

    def is_empty(self) -> bool:
        return not self.present_fields()

    def to_presence_map(self) -> Dict[str, Any]:
        """Inverse of ``from_presence_map``: unset keys are omitted, null becomes ``None``."""
        payload: Dict[str, Any] = {}
        fields = type(self).model_fields
        for name, shape in field_shapes(type(self)).items():
            value = getattr(self, name)
            key = fields[name].alias or name
            if shape.kind is FieldKind.UNKNOWN:
                payload[key] = value
                continue
            if value.is_unset():
                continue
            if value.is_null():
                payload[key] = None
            elif shape.kind is FieldKind.NESTED:
                payload[key] = value.value.to_presence_map()
            elif shape.kind is FieldKind.COLLECTION:
                payload[key] = [element.to_presence_map() for element in value.value]
            else:
                payload[key] = value.value
        return payload

    @model_serializer
    def _serialize_presence(self) -> Dict[str, Any]:
        # unset fields are omitted rather than dumped as null
        return self.to_presence_map()

    def to_json(self) -> bytes:
        return orjson.dumps(self.to_presence_map())
