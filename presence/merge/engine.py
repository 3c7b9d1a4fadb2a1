"""Structural merge of partial records onto domain entities."""
from __future__ import annotations

import inspect
from copy import deepcopy
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Tuple, Union

from pydantic import BaseModel

from presence.errors import (
    CollectionPolicyMissing,
    DetachNotSupported,
    MergeError,
    MergeErrors,
    OptionalTypeError,
    UnknownFieldShape,
    ValidationFailed,
)
from presence.merge.collections import CollectionPolicy
from presence.merge.hooks import EntityHooks
from presence.merge.plan import MergePlan, MergeStep, StepAction
from presence.optional.value import OptionalValue
from presence.records.partial import PartialRecord
from presence.records.shape import FieldKind, FieldShape, field_shapes

Validator = Callable[[str, Any], Union[Any, Awaitable[Any]]]


@dataclass
class MergeResult:
    """The merged entity and the dotted paths whose value changed."""

    entity: Any
    changed: List[str] = field(default_factory=list)

    @property
    def mutated(self) -> bool:
        return bool(self.changed)


class MergeEngine:
    """Applies a ``PartialRecord`` onto an entity field by field, recursively.

    Per field: unset leaves the target alone, null clears a scalar or detaches
    a nested record, a scalar value overwrites, a nested partial recurses into
    the existing nested object (creating it through the hooks when missing).
    Collections merge through the policy configured for their path.

    Every planned value is validated before the first mutation, so a rejected
    value leaves the entity untouched. Errors carry the dotted field path; the
    first one is raised unless ``collect_errors`` gathers them all.
    """

    def __init__(
        self,
        *,
        hooks: Optional[EntityHooks] = None,
        validator: Optional[Validator] = None,
        collections: Optional[Mapping[str, CollectionPolicy]] = None,
        copy: bool = False,
        collect_errors: bool = False,
    ) -> None:
        self.hooks = hooks or EntityHooks()
        self.validator = validator
        self.collections: Dict[str, CollectionPolicy] = dict(collections or {})
        self.copy = copy
        self.collect_errors = collect_errors

    def plan(self, entity: Any, partial: PartialRecord) -> MergePlan:
        """Compute the mutations ``partial`` implies for ``entity`` without applying them."""
        plan, errors = self._plan(entity, partial)
        if errors:
            raise _combine(errors)
        return plan

    def merge(self, entity: Any, partial: PartialRecord) -> MergeResult:
        target = self._prepare(entity)
        plan, errors = self._plan(target, partial)
        for step in plan.value_steps():
            try:
                outcome = self._invoke(step)
                if inspect.isawaitable(outcome):
                    if inspect.iscoroutine(outcome):
                        outcome.close()
                    raise TypeError("validator returned an awaitable; use amerge()")
                _verdict(step, outcome)
            except MergeError as exc:
                self._record(exc, errors)
        if errors:
            raise _combine(errors)
        return self.apply(target, plan)

    async def amerge(self, entity: Any, partial: PartialRecord) -> MergeResult:
        """Like ``merge`` but awaits validators that perform I/O."""
        target = self._prepare(entity)
        plan, errors = self._plan(target, partial)
        for step in plan.value_steps():
            try:
                outcome = self._invoke(step)
                if inspect.isawaitable(outcome):
                    try:
                        outcome = await outcome
                    except ValueError as exc:
                        raise ValidationFailed(step.path, exc) from exc
                _verdict(step, outcome)
            except MergeError as exc:
                self._record(exc, errors)
        if errors:
            raise _combine(errors)
        return self.apply(target, plan)

    def apply(self, entity: Any, plan: MergePlan) -> MergeResult:
        """Execute a plan produced by ``plan`` for the same entity."""
        hooks = self.hooks
        changed: List[str] = []
        for step in plan:
            before = hooks.get(step.owner, step.name)
            if step.action is StepAction.DETACH:
                hooks.detach(step.path, step.owner, step.name)
            else:
                hooks.set(step.owner, step.name, step.value)
            if before != hooks.get(step.owner, step.name):
                changed.append(step.path)
        return MergeResult(entity=entity, changed=changed)

    def _plan(self, entity: Any, partial: PartialRecord) -> Tuple[MergePlan, List[MergeError]]:
        """Plan the merge; with ``collect_errors`` planning errors are returned, not raised."""
        plan = MergePlan()
        errors: List[MergeError] = []
        self._walk(entity, partial, "", "", plan, errors)
        return plan, errors

    def _prepare(self, entity: Any) -> Any:
        if not self.copy:
            return entity
        if isinstance(entity, BaseModel):
            return entity.model_copy(deep=True)
        return deepcopy(entity)

    def _invoke(self, step: MergeStep) -> Any:
        if self.validator is None:
            return None
        try:
            return self.validator(step.path, step.value)
        except ValidationFailed:
            raise
        except ValueError as exc:
            raise ValidationFailed(step.path, exc) from exc

    def _record(self, error: MergeError, errors: List[MergeError]) -> None:
        if not self.collect_errors:
            raise error
        if isinstance(error, MergeErrors):
            errors.extend(error.errors)
        else:
            errors.append(error)

    def _walk(
        self,
        target: Any,
        partial: PartialRecord,
        prefix: str,
        key_prefix: str,
        plan: MergePlan,
        errors: List[MergeError],
    ) -> None:
        for shape in field_shapes(type(partial)).values():
            try:
                self._resolve(target, partial, shape, shape.path(prefix), shape.path(key_prefix), plan, errors)
            except MergeError as exc:
                self._record(exc, errors)

    def _resolve(
        self,
        target: Any,
        partial: PartialRecord,
        shape: FieldShape,
        path: str,
        key: str,
        plan: MergePlan,
        errors: List[MergeError],
    ) -> None:
        value = getattr(partial, shape.name)
        if shape.kind is FieldKind.UNKNOWN or not isinstance(value, OptionalValue):
            raise UnknownFieldShape(f"field type {shape.inner!r} has no resolution rule", path=path)
        value = value.flatten()
        if value.is_unset():
            return
        name = shape.entity_name
        if value.is_null():
            if not shape.nullable:
                raise OptionalTypeError("field does not accept null", path=path)
            if shape.kind is FieldKind.SCALAR:
                plan.add(MergeStep(path, StepAction.CLEAR, target, name, self.hooks.empty_value(key)))
            elif shape.kind is FieldKind.NESTED:
                if not self.hooks.can_detach(key, target, name):
                    raise DetachNotSupported("association cannot be removed", path=path)
                plan.add(MergeStep(path, StepAction.DETACH, target, name))
            else:
                plan.add(MergeStep(path, StepAction.REPLACE_COLLECTION, target, name, []))
            return
        payload = value.value
        if shape.kind is FieldKind.SCALAR:
            plan.add(MergeStep(path, StepAction.SET, target, name, payload))
        elif shape.kind is FieldKind.NESTED:
            if not isinstance(payload, shape.record):
                raise UnknownFieldShape(f"expected {shape.record.__name__}, got {type(payload).__name__}", path=path)
            current = self.hooks.get(target, name)
            if current is None:
                current = self.hooks.create(key, target, name)
                plan.add(MergeStep(path, StepAction.CREATE, target, name, current))
            self._walk(current, payload, path, key, plan, errors)
        else:
            self._plan_collection(target, name, payload, shape, path, key, plan, errors)

    def _plan_collection(
        self,
        target: Any,
        name: str,
        elements: Any,
        shape: FieldShape,
        path: str,
        key: str,
        plan: MergePlan,
        errors: List[MergeError],
    ) -> None:
        policy = self.collections.get(key)
        if policy is None:
            raise CollectionPolicyMissing("no collection policy configured", path=path)
        existing = list(self.hooks.get(target, name) or [])
        matched: set[int] = set()
        created: List[Any] = []
        for index, element in enumerate(elements):
            element_path = f"{path}[{index}]"
            if not isinstance(element, shape.record):
                raise UnknownFieldShape(
                    f"expected {shape.record.__name__}, got {type(element).__name__}", path=element_path
                )
            position = policy.match(existing, element, self.hooks)
            if position is None:
                item = self.hooks.create_element(key, target, name)
                created.append(item)
            else:
                item = existing[position]
                matched.add(position)
            self._walk(item, element, element_path, key, plan, errors)
        kept = [item for index, item in enumerate(existing) if index in matched or not policy.remove_unmatched]
        plan.add(MergeStep(path, StepAction.REPLACE_COLLECTION, target, name, kept + created))


def _verdict(step: MergeStep, outcome: Any) -> None:
    if outcome is None or outcome is True:
        return
    if outcome is False:
        raise ValidationFailed(step.path, "rejected")
    if not outcome.ok:
        raise ValidationFailed(step.path, "; ".join(outcome.errors) or "rejected")


def _combine(errors: List[MergeError]) -> MergeError:
    return errors[0] if len(errors) == 1 else MergeErrors(errors)


def merge(entity: Any, partial: PartialRecord, **options: Any) -> MergeResult:
    """Merge with a throwaway engine built from ``options``."""
    return MergeEngine(**options).merge(entity, partial)
