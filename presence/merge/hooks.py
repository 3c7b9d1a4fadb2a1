"""Persistence-side collaborator hooks used by the merge engine."""
from __future__ import annotations

import types
import typing
from collections.abc import MutableMapping
from typing import Any, Callable, Dict, Iterable, Mapping, Optional, Union

from pydantic import BaseModel

from presence.errors import NestedCreationFailed

_MISSING = object()


def _declared_type(owner: Any, name: str) -> Any:
    """Return the annotation of ``name`` on the owner's class, or ``_MISSING``."""
    cls = type(owner)
    if isinstance(owner, BaseModel):
        info = cls.model_fields.get(name)
        return info.annotation if info is not None else _MISSING
    try:
        hints = typing.get_type_hints(cls)
    except (NameError, TypeError):
        hints = getattr(cls, "__annotations__", {})
    return hints.get(name, _MISSING)


def _admits_none(annotation: Any) -> bool:
    if annotation is _MISSING or annotation is Any or annotation is None or annotation is type(None):
        return True
    origin = typing.get_origin(annotation)
    if origin is Union or origin is types.UnionType:
        return type(None) in typing.get_args(annotation)
    return False


def _strip_none(annotation: Any) -> Any:
    origin = typing.get_origin(annotation)
    if origin is Union or origin is types.UnionType:
        members = [arg for arg in typing.get_args(annotation) if arg is not type(None)]
        return members[0] if len(members) == 1 else None
    return annotation


def _concrete_type(annotation: Any) -> Optional[type]:
    annotation = _strip_none(annotation)
    return annotation if isinstance(annotation, type) else None


def _element_type(annotation: Any) -> Optional[type]:
    annotation = _strip_none(annotation)
    return next((arg for arg in typing.get_args(annotation) if isinstance(arg, type)), None)


class EntityHooks:
    """Reads, writes, creates and detaches entity attributes on behalf of the engine.

    Mapping entities (plain ``dict`` records) are accessed by key, anything else
    by attribute. ``factories`` maps dotted field paths to zero-argument
    callables that build missing nested objects; ``required`` lists paths whose
    association may never be removed.
    """

    def __init__(
        self,
        *,
        factories: Optional[Mapping[str, Callable[[], Any]]] = None,
        required: Iterable[str] = (),
    ) -> None:
        self._factories: Dict[str, Callable[[], Any]] = dict(factories or {})
        self._required = set(required)

    def has(self, entity: Any, name: str) -> bool:
        if isinstance(entity, MutableMapping):
            return name in entity
        return hasattr(entity, name)

    def get(self, entity: Any, name: str) -> Any:
        if isinstance(entity, MutableMapping):
            return entity.get(name)
        return getattr(entity, name, None)

    def set(self, entity: Any, name: str, value: Any) -> None:
        if isinstance(entity, MutableMapping):
            entity[name] = value
        else:
            setattr(entity, name, value)

    def empty_value(self, path: str) -> Any:
        """The domain's representation of a cleared scalar."""
        return None

    def create(self, path: str, owner: Any, name: str) -> Any:
        """Build a fresh nested object for ``owner.name``."""
        factory = self._factories.get(path)
        if factory is None and not isinstance(owner, MutableMapping):
            factory = _concrete_type(_declared_type(owner, name))
        return self._build(path, owner, factory)

    def create_element(self, path: str, owner: Any, name: str) -> Any:
        """Build a fresh element for the collection ``owner.name``; ``path`` carries no index."""
        factory = self._factories.get(path)
        if factory is None and not isinstance(owner, MutableMapping):
            factory = _element_type(_declared_type(owner, name))
        return self._build(path, owner, factory)

    def _build(self, path: str, owner: Any, factory: Optional[Callable[[], Any]]) -> Any:
        if factory is None:
            if isinstance(owner, MutableMapping):
                return {}
            raise NestedCreationFailed("no factory registered and no concrete declared type", path=path)
        try:
            return factory()
        except (TypeError, ValueError) as exc:
            raise NestedCreationFailed(f"factory failed: {exc}", path=path) from exc

    def can_detach(self, path: str, owner: Any, name: str) -> bool:
        if path in self._required:
            return False
        if isinstance(owner, MutableMapping):
            return True
        return _admits_none(_declared_type(owner, name))

    def detach(self, path: str, owner: Any, name: str) -> None:
        """Remove the association held by ``owner.name``."""
        self.set(owner, name, None)
