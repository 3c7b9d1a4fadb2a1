"""Classification of partial record fields into merge resolution shapes."""
from __future__ import annotations

import collections.abc
import enum
import functools
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple, get_args, get_origin

from presence.errors import OptionalTypeError
from presence.optional.value import OptionalValue, flat_inner_type, is_optional_type

_SEQUENCE_ORIGINS = (list, tuple, collections.abc.Sequence, collections.abc.MutableSequence)


@dataclass(frozen=True)
class NotNull:
    """Annotation marker: the field does not admit null semantics."""


@dataclass(frozen=True)
class EntityField:
    """Annotation marker: the field updates a differently named entity attribute."""

    name: str


class FieldKind(enum.Enum):
    SCALAR = "scalar"
    NESTED = "nested"
    COLLECTION = "collection"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class FieldShape:
    """How one partial record field resolves against its entity attribute."""

    name: str
    entity_name: str
    kind: FieldKind
    inner: Any
    record: Optional[type] = None
    nullable: bool = True

    def path(self, prefix: str = "") -> str:
        """Dotted entity path used for errors, validators and hook keys."""
        return f"{prefix}.{self.entity_name}" if prefix else self.entity_name


def _record_base() -> type:
    from presence.records.partial import PartialRecord

    return PartialRecord


def _is_record(annotation: Any) -> bool:
    return isinstance(annotation, type) and issubclass(annotation, _record_base())


def _classify(inner: Any) -> Tuple[FieldKind, Optional[type]]:
    if _is_record(inner):
        return FieldKind.NESTED, inner
    if get_origin(inner) in _SEQUENCE_ORIGINS:
        args = [arg for arg in get_args(inner) if arg is not Ellipsis]
        if len(args) == 1 and _is_record(args[0]):
            return FieldKind.COLLECTION, args[0]
    return FieldKind.SCALAR, None


@functools.lru_cache(maxsize=None)
def field_shapes(record_cls: type) -> Dict[str, FieldShape]:
    """Return the resolution shape of every declared field of a partial record class."""
    shapes: Dict[str, FieldShape] = {}
    for name, info in record_cls.model_fields.items():
        entity_name = info.alias or name
        nullable = True
        for marker in info.metadata:
            if isinstance(marker, EntityField):
                entity_name = marker.name
            elif isinstance(marker, NotNull) or marker is NotNull:
                nullable = False
        if not is_optional_type(info.annotation):
            shapes[name] = FieldShape(name, entity_name, FieldKind.UNKNOWN, info.annotation)
            continue
        default = info.default
        if not isinstance(default, OptionalValue) or not default.is_unset():
            raise OptionalTypeError(
                f"{record_cls.__name__}.{name} must default to UNSET",
                path=name,
            )
        inner = flat_inner_type(info.annotation)
        kind, record = _classify(inner)
        shapes[name] = FieldShape(name, entity_name, kind, inner, record, nullable)
    return shapes
