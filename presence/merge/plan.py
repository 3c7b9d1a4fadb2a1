"""Concrete merge plans: the per-field decisions computed before any mutation."""
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List


class StepAction(enum.Enum):
    SET = "set"
    CLEAR = "clear"
    DETACH = "detach"
    CREATE = "create"
    REPLACE_COLLECTION = "replace_collection"


@dataclass(slots=True)
class MergeStep:
    """One mutation of ``owner.name`` reported under a dotted ``path``."""

    path: str
    action: StepAction
    owner: Any
    name: str
    value: Any = None


@dataclass
class MergePlan:
    """Ordered mutations for one merge call. Apply a plan at most once."""

    steps: List[MergeStep] = field(default_factory=list)

    def add(self, step: MergeStep) -> None:
        self.steps.append(step)

    def __iter__(self) -> Iterator[MergeStep]:
        return iter(self.steps)

    def __len__(self) -> int:
        return len(self.steps)

    def paths(self) -> List[str]:
        return [step.path for step in self.steps]

    def value_steps(self) -> List[MergeStep]:
        """Steps whose incoming value goes through the validator."""
        return [step for step in self.steps if step.action is StepAction.SET]

    def describe(self) -> List[Dict[str, Any]]:
        rows: List[Dict[str, Any]] = []
        for step in self.steps:
            row: Dict[str, Any] = {"path": step.path, "action": step.action.value}
            if step.action is StepAction.SET:
                row["value"] = step.value
            elif step.action is StepAction.REPLACE_COLLECTION:
                row["size"] = len(step.value)
            rows.append(row)
        return rows
