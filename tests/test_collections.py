from dataclasses import dataclass, field
from typing import Annotated, List, Optional

import pytest

from presence.errors import ValidationFailed
from presence.merge.collections import CollectionPolicy, MatchByKey, ReplaceAll
from presence.merge.engine import MergeEngine
from presence.merge.hooks import EntityHooks
from presence.optional.value import UNSET, OptionalValue
from presence.quality.validate import RuleValidator
from presence.records.partial import PartialRecord
from presence.records.shape import EntityField


class ContactPatch(PartialRecord):
    kind: OptionalValue[str] = UNSET
    value: OptionalValue[str] = UNSET


class CustomerPatch(PartialRecord):
    contacts: OptionalValue[List[ContactPatch]] = UNSET


@dataclass
class Contact:
    kind: Optional[str] = None
    value: Optional[str] = None


@dataclass
class Customer:
    contacts: List[Contact] = field(default_factory=list)


def _entity():
    return {
        "contacts": [
            {"kind": "phone", "value": "555-1234"},
            {"kind": "fax", "value": "555-9999"},
        ]
    }


def test_replace_all_rebuilds_the_collection():
    patch = CustomerPatch.from_presence_map({"contacts": [{"kind": "mobile", "value": "555-0000"}]})
    engine = MergeEngine(collections={"contacts": ReplaceAll()})
    result = engine.merge(_entity(), patch)
    assert result.entity == {"contacts": [{"kind": "mobile", "value": "555-0000"}]}


def test_match_by_key_merges_matched_and_appends_new():
    patch = CustomerPatch.from_presence_map(
        {"contacts": [{"kind": "fax", "value": "555-1111"}, {"kind": "mobile", "value": "555-0000"}]}
    )
    engine = MergeEngine(collections={"contacts": MatchByKey("kind")})
    result = engine.merge(_entity(), patch)
    assert result.entity["contacts"] == [
        {"kind": "phone", "value": "555-1234"},
        {"kind": "fax", "value": "555-1111"},
        {"kind": "mobile", "value": "555-0000"},
    ]
    assert "contacts[0].value" in result.changed


def test_match_by_key_can_drop_unmatched_elements():
    patch = CustomerPatch.from_presence_map({"contacts": [{"kind": "fax"}]})
    engine = MergeEngine(collections={"contacts": MatchByKey("kind", remove_unmatched=True)})
    result = engine.merge(_entity(), patch)
    assert result.entity["contacts"] == [{"kind": "fax", "value": "555-9999"}]


def test_matched_elements_keep_unset_fields():
    patch = CustomerPatch.from_presence_map({"contacts": [{"kind": "phone", "value": None}]})
    engine = MergeEngine(collections={"contacts": MatchByKey("kind")})
    result = engine.merge(_entity(), patch)
    assert result.entity["contacts"][0] == {"kind": "phone", "value": None}
    assert result.entity["contacts"][1] == {"kind": "fax", "value": "555-9999"}


def test_null_clears_collection():
    engine = MergeEngine(collections={"contacts": ReplaceAll()})
    result = engine.merge(_entity(), CustomerPatch.from_presence_map({"contacts": None}))
    assert result.entity == {"contacts": []}


def test_collection_merge_is_idempotent_with_identity_matching():
    patch = CustomerPatch.from_presence_map({"contacts": [{"kind": "mobile", "value": "555-0000"}]})
    engine = MergeEngine(collections={"contacts": MatchByKey("kind")})
    once = engine.merge(_entity(), patch).entity
    again = engine.merge(engine.merge(_entity(), patch).entity, patch)
    assert again.entity == once
    assert not again.mutated


def test_elements_are_created_from_declared_type():
    patch = CustomerPatch.from_presence_map({"contacts": [{"kind": "phone", "value": "555-1234"}]})
    entity = Customer()
    MergeEngine(collections={"contacts": MatchByKey("kind")}).merge(entity, patch)
    assert entity.contacts == [Contact(kind="phone", value="555-1234")]


def test_custom_policy_and_element_factory():
    class ByValue(CollectionPolicy):
        remove_unmatched = False

        def match(self, existing, partial, hooks):
            for index, element in enumerate(existing):
                if hooks.get(element, "value") == partial.value.value_or(None):
                    return index
            return None

    hooks = EntityHooks(factories={"contacts": lambda: {"kind": "unknown"}})
    patch = CustomerPatch.from_presence_map({"contacts": [{"value": "555-1234"}, {"value": "555-2222"}]})
    engine = MergeEngine(hooks=hooks, collections={"contacts": ByValue()})
    result = engine.merge(_entity(), patch)
    assert result.entity["contacts"][-1] == {"kind": "unknown", "value": "555-2222"}
    assert len(result.entity["contacts"]) == 3


def test_nested_collection_errors_report_element_path():
    engine = MergeEngine(
        collections={"contacts": ReplaceAll()},
        validator=RuleValidator({"contacts.value": "non_empty"}),
    )
    patch = CustomerPatch.from_presence_map({"contacts": [{"value": "555"}, {"value": "  "}]})
    with pytest.raises(ValidationFailed) as excinfo:
        engine.merge(_entity(), patch)
    assert excinfo.value.path == "contacts[1].value"


def test_match_by_key_follows_renamed_identity_field():
    class RenamedContactPatch(PartialRecord):
        channel: Annotated[OptionalValue[str], EntityField("kind")] = UNSET
        value: OptionalValue[str] = UNSET

    class RenamedCustomerPatch(PartialRecord):
        contacts: OptionalValue[List[RenamedContactPatch]] = UNSET

    patch = RenamedCustomerPatch.from_presence_map({"contacts": [{"channel": "fax", "value": "555-1111"}]})
    result = MergeEngine(collections={"contacts": MatchByKey("kind")}).merge(_entity(), patch)
    assert result.entity["contacts"] == [
        {"kind": "phone", "value": "555-1234"},
        {"kind": "fax", "value": "555-1111"},
    ]
