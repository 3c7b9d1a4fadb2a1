"""Caller-supplied policies for merging collections of nested partial records."""
from __future__ import annotations

from typing import Any, Optional, Sequence

from presence.merge.hooks import EntityHooks
from presence.optional.value import OptionalValue
from presence.records.shape import field_shapes


class CollectionPolicy:
    """Decides which existing element, if any, a partial element updates.

    ``match`` returns the index of the existing element the partial element
    identifies, or ``None`` when it describes a new element. Existing elements
    left unmatched are dropped when ``remove_unmatched`` is true.
    """

    remove_unmatched = True

    def match(self, existing: Sequence[Any], partial: Any, hooks: EntityHooks) -> Optional[int]:
        return None


class ReplaceAll(CollectionPolicy):
    """Positional replace-all: every element is rebuilt from its partial."""


class MatchByKey(CollectionPolicy):
    """Match elements on an identity attribute, merging matched pairs in place.

    ``key`` names the entity attribute; the partial field mapped onto it (by
    alias or ``EntityField``) supplies the identity.
    """

    def __init__(self, key: str, *, remove_unmatched: bool = False) -> None:
        self.key = key
        self.remove_unmatched = remove_unmatched

    def match(self, existing: Sequence[Any], partial: Any, hooks: EntityHooks) -> Optional[int]:
        identity = self._identity(partial)
        if not isinstance(identity, OptionalValue) or not identity.is_present():
            return None
        for index, element in enumerate(existing):
            if element is not None and hooks.get(element, self.key) == identity.value:
                return index
        return None

    def _identity(self, partial: Any) -> Any:
        for shape in field_shapes(type(partial)).values():
            if shape.entity_name == self.key:
                return getattr(partial, shape.name)
        return None
