"""Tri-state optional values: unset, explicitly null, or present with a value."""
from __future__ import annotations

import enum
import types
from typing import Any, Callable, Generic, TypeVar, Union, get_args, get_origin

from pydantic import GetCoreSchemaHandler
from pydantic_core import PydanticUndefined, core_schema

from presence.errors import InvalidValue, OptionalTypeError

T = TypeVar("T")
U = TypeVar("U")


class OptionalState(enum.Enum):
    """The three states a partial-update field can be in."""

    UNSET = "unset"
    NULL = "null"
    PRESENT = "present"


class OptionalValue(Generic[T]):
    """Carries whether a field was omitted, supplied as null, or supplied with a value.

    Build instances with the factories rather than the constructor:

        OptionalValue.unset()     # key absent, leave the target alone
        OptionalValue.of_null()   # key present with null, clear the target
        OptionalValue.of("x")     # key present with a value, overwrite the target

    Instances are immutable. ``of`` accepts another ``OptionalValue`` so generic
    code can compose wrappers; ``flatten`` collapses such stacks to one level.
    """

    __slots__ = ("state", "value")

    state: OptionalState
    value: Any

    def __init__(self, state: OptionalState, value: Any = None) -> None:
        if not isinstance(state, OptionalState):
            raise OptionalTypeError(f"state must be an OptionalState, got {state!r}")
        if state is OptionalState.PRESENT:
            if value is None or value is PydanticUndefined:
                raise InvalidValue("a present value cannot be a null or missing marker")
        elif value is not None:
            raise OptionalTypeError(f"{state.value} carries no value, got {value!r}")
        object.__setattr__(self, "state", state)
        object.__setattr__(self, "value", value)

    def __setattr__(self, name: str, value: Any) -> None:
        raise AttributeError(f"OptionalValue is immutable; cannot set {name!r}")

    def __delattr__(self, name: str) -> None:
        raise AttributeError(f"OptionalValue is immutable; cannot delete {name!r}")

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, OptionalValue):
            return NotImplemented
        return self.state is other.state and self.value == other.value

    def __hash__(self) -> int:
        return hash((self.state, self.value))

    @classmethod
    def unset(cls) -> "OptionalValue[Any]":
        return UNSET

    @classmethod
    def of_null(cls) -> "OptionalValue[Any]":
        return NULL

    @classmethod
    def of(cls, value: T) -> "OptionalValue[T]":
        """Wrap a concrete value; ``None`` and missing markers raise ``InvalidValue``."""
        return cls(OptionalState.PRESENT, value)

    def is_unset(self) -> bool:
        return self.state is OptionalState.UNSET

    def is_null(self) -> bool:
        return self.state is OptionalState.NULL

    def is_present(self) -> bool:
        return self.state is OptionalState.PRESENT

    def value_or(self, default: T) -> T:
        """Return the value when present, else ``default`` (unset and null look the same here)."""
        if self.state is OptionalState.PRESENT:
            return self.value
        return default

    def map(self, func: Callable[[T], U]) -> "OptionalValue[U]":
        if self.state is OptionalState.PRESENT:
            return OptionalValue.of(func(self.value))
        return self

    def flatten(self) -> "OptionalValue[Any]":
        """Collapse nested optional values to a single level.

        An outer unset or null wins outright; an outer present value yields its
        inner optional as-is (itself flattened).
        """
        current: OptionalValue[Any] = self
        while current.state is OptionalState.PRESENT and isinstance(current.value, OptionalValue):
            current = current.value
        return current

    def __copy__(self) -> "OptionalValue[T]":
        return self

    def __deepcopy__(self, memo: dict) -> "OptionalValue[T]":
        return self

    def __repr__(self) -> str:
        if self.state is OptionalState.UNSET:
            return "Unset"
        if self.state is OptionalState.NULL:
            return "Null"
        return f"Present({self.value!r})"

    @classmethod
    def __get_pydantic_core_schema__(cls, source: Any, handler: GetCoreSchemaHandler) -> core_schema.CoreSchema:
        args = get_args(source)
        inner = flat_inner_type(args[0]) if args else Any
        wrapped = core_schema.no_info_after_validator_function(
            _wrap_input,
            core_schema.nullable_schema(handler.generate_schema(inner)),
        )
        return core_schema.no_info_wrap_validator_function(
            _unwrap_optional_input,
            wrapped,
            serialization=core_schema.plain_serializer_function_ser_schema(
                _serialize, when_used="always"
            ),
        )


UNSET: OptionalValue[Any] = OptionalValue(OptionalState.UNSET)
NULL: OptionalValue[Any] = OptionalValue(OptionalState.NULL)


def _wrap_input(value: Any) -> OptionalValue[Any]:
    if value is None:
        return NULL
    return OptionalValue.of(value)


def _unwrap_optional_input(value: Any, handler: Callable[[Any], OptionalValue[Any]]) -> OptionalValue[Any]:
    if isinstance(value, OptionalValue):
        value = value.flatten()
        if not value.is_present():
            return value
        value = value.value
    return handler(value)


def _serialize(value: OptionalValue[Any]) -> Any:
    return value.value_or(None)


def is_optional_type(annotation: Any) -> bool:
    """Return True when the annotation is ``OptionalValue`` or a parametrisation of it."""
    return annotation is OptionalValue or get_origin(annotation) is OptionalValue


def flat_inner_type(annotation: Any) -> Any:
    """Strip stacked optionality from the type parameter of an ``OptionalValue``.

    ``OptionalValue[T | None]`` and ``OptionalValue[OptionalValue[T]]`` both
    describe the same tri-state field as ``OptionalValue[T]``.
    """
    while True:
        if is_optional_type(annotation):
            args = get_args(annotation)
            annotation = args[0] if args else Any
            continue
        origin = get_origin(annotation)
        if origin is Union or origin is types.UnionType:
            members = [arg for arg in get_args(annotation) if arg is not type(None)]
            if len(members) == len(get_args(annotation)):
                return annotation
            if len(members) == 1:
                annotation = members[0]
                continue
            return Union[tuple(members)]
        return annotation
