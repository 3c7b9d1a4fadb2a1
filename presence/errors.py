"""Error taxonomy for optional values and structural merges."""
from __future__ import annotations

from typing import Dict, List, Optional


class MergeError(Exception):
    """Base class for every failure surfaced by a merge call."""

    code = "merge_error"

    def __init__(self, message: str, *, path: Optional[str] = None) -> None:
        self.path = path
        self.message = message
        super().__init__(f"{path}: {message}" if path else message)

    def to_dict(self) -> Dict[str, object]:
        return {"error": self.code, "path": self.path, "message": self.message}


class OptionalTypeError(MergeError, TypeError):
    """An optional value or partial record schema is malformed."""

    code = "type_error"


class InvalidValue(MergeError, ValueError):
    """A null or missing marker was wrapped as a concrete value."""

    code = "invalid_value"


class UnknownFieldShape(MergeError):
    """A partial record field matches none of the resolution rules."""

    code = "unknown_field_shape"


class CollectionPolicyMissing(UnknownFieldShape):
    """A collection field was supplied but the caller configured no policy for it."""

    code = "collection_policy_missing"


class ValidationFailed(MergeError):
    """The validator collaborator rejected a field value."""

    code = "validation_failed"

    def __init__(self, path: str, cause: object) -> None:
        self.cause = cause
        super().__init__(str(cause), path=path)


class DetachNotSupported(MergeError):
    """Null was supplied for an association that cannot be removed."""

    code = "detach_not_supported"


class NestedCreationFailed(MergeError):
    """The factory collaborator could not build a missing nested object."""

    code = "nested_creation_failed"


class MergeErrors(MergeError):
    """Every error gathered by a merge running in collect-all mode."""

    code = "merge_errors"

    def __init__(self, errors: List[MergeError]) -> None:
        self.errors = list(errors)
        paths = ", ".join(str(error.path) for error in self.errors)
        super().__init__(f"{len(self.errors)} field(s) failed: {paths}")

    def to_dict(self) -> Dict[str, object]:
        return {"error": self.code, "errors": [error.to_dict() for error in self.errors]}
