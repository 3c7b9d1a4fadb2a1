from typing import Annotated, List, Optional

import pytest
from pydantic import BaseModel, TypeAdapter

from presence.errors import InvalidValue, OptionalTypeError
from presence.optional.value import (
    NULL,
    UNSET,
    OptionalState,
    OptionalValue,
    flat_inner_type,
)


def test_states_are_exclusive():
    unset = OptionalValue.unset()
    null = OptionalValue.of_null()
    present = OptionalValue.of("a@x.com")

    assert (unset.is_unset(), unset.is_null(), unset.is_present()) == (True, False, False)
    assert (null.is_unset(), null.is_null(), null.is_present()) == (False, True, False)
    assert (present.is_unset(), present.is_null(), present.is_present()) == (False, False, True)
    assert unset == UNSET and null == NULL
    assert present.value == "a@x.com"


def test_of_rejects_null_markers():
    with pytest.raises(InvalidValue):
        OptionalValue.of(None)
    with pytest.raises(ValueError):
        OptionalValue(OptionalState.PRESENT)


def test_inconsistent_construction_is_a_type_error():
    with pytest.raises(TypeError):
        OptionalValue(OptionalState.NULL, "value")
    with pytest.raises(OptionalTypeError):
        OptionalValue("present", 1)


def test_value_or_does_not_distinguish_unset_from_null():
    assert OptionalValue.of(3).value_or(0) == 3
    assert UNSET.value_or(0) == 0
    assert NULL.value_or(0) == 0
    assert OptionalValue.of(False).value_or(True) is False


def test_flatten():
    assert OptionalValue.of(OptionalValue.of("v")).flatten() == OptionalValue.of("v")
    assert OptionalValue.of(UNSET).flatten() == UNSET
    assert OptionalValue.of(NULL).flatten() == NULL
    assert UNSET.flatten() == UNSET
    assert NULL.flatten() == NULL
    assert OptionalValue.of(OptionalValue.of(OptionalValue.of(1))).flatten() == OptionalValue.of(1)
    assert OptionalValue.of("plain").flatten() == OptionalValue.of("plain")


def test_map_and_repr():
    assert OptionalValue.of(2).map(lambda value: value * 2) == OptionalValue.of(4)
    assert NULL.map(lambda value: value * 2) is NULL
    assert repr(UNSET) == "Unset"
    assert repr(NULL) == "Null"
    assert repr(OptionalValue.of("x")) == "Present('x')"


def test_values_are_immutable():
    value = OptionalValue.of(1)
    with pytest.raises(AttributeError):
        value.value = 2
    assert hash(value) == hash(OptionalValue.of(1))


def test_flat_inner_type_collapses_stacked_optionality():
    assert flat_inner_type(OptionalValue[Optional[int]]) is int
    assert flat_inner_type(OptionalValue[OptionalValue[str]]) is str
    assert flat_inner_type(OptionalValue[int | None]) is int
    assert flat_inner_type(List[int]) == List[int]


class _Model(BaseModel):
    name: OptionalValue[str] = UNSET
    age: OptionalValue[Optional[int]] = UNSET
    tags: Annotated[OptionalValue[List[str]], "meta"] = UNSET


def test_pydantic_field_tracks_presence():
    model = _Model.model_validate({"name": None, "age": "42"})
    assert model.name.is_null()
    assert model.age == OptionalValue.of(42)
    assert model.tags.is_unset()


def test_pydantic_field_flattens_wrapped_input():
    model = _Model(name=OptionalValue.of(OptionalValue.of("bob")), age=OptionalValue.of(UNSET))
    assert model.name == OptionalValue.of("bob")
    assert model.age.is_unset()


def test_pydantic_field_validates_inner_type():
    with pytest.raises(ValueError):
        _Model.model_validate({"age": "not a number"})


def test_parametrised_type_uses_presence_schema():
    adapter = TypeAdapter(OptionalValue[int])
    assert adapter.validate_python(None) is NULL
    assert adapter.validate_python("7") == OptionalValue.of(7)
    assert adapter.validate_python(OptionalValue.of(OptionalValue.of(3))) == OptionalValue.of(3)
    assert adapter.dump_python(OptionalValue.of(7)) == 7
    with pytest.raises(ValueError):
        adapter.validate_python({"state": "present", "value": 7})
