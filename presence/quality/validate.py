"""Field-level validation collaborators for the merge engine."""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

import jsonschema
import orjson
from dateutil import parser as dateparser

_EMAIL_RE = re.compile(r"^[A-Z0-9._%+-]+@[A-Z0-9.-]+\.[A-Z]{2,}$", re.IGNORECASE)
_INDEX_RE = re.compile(r"\[\d+\]")
_SEGMENT_RE = re.compile(r"([^.\[\]]+)|\[(\d+)\]")


@dataclass
class ValidationResult:
    """Outcome of validating a single field value."""

    ok: bool
    errors: List[str] = field(default_factory=list)

    @classmethod
    def success(cls) -> "ValidationResult":
        return cls(ok=True)

    @classmethod
    def failure(cls, *errors: str) -> "ValidationResult":
        return cls(ok=False, errors=list(errors))


def strip_indices(path: str) -> str:
    """``contacts[2].value`` -> ``contacts.value``."""
    return _INDEX_RE.sub("", path)


class SchemaValidator:
    """Validates individual field values against the matching part of an entity JSON Schema."""

    def __init__(self, schema: Dict[str, Any]) -> None:
        self._schema = schema
        self._cache: Dict[str, Optional[Dict[str, Any]]] = {}

    def _resolve(self, node: Dict[str, Any]) -> Dict[str, Any]:
        while "$ref" in node and node["$ref"].startswith("#/"):
            target: Any = self._schema
            for part in node["$ref"][2:].split("/"):
                target = target[part]
            node = target
        return node

    def subschema(self, path: str) -> Optional[Dict[str, Any]]:
        """Return the schema governing ``path`` or ``None`` when the schema does not describe it."""
        key = strip_indices(path)
        if key in self._cache:
            return self._cache[key]
        node: Optional[Dict[str, Any]] = self._resolve(self._schema)
        for name, index in _SEGMENT_RE.findall(path):
            if node is None:
                break
            if index:
                items = node.get("items")
                node = self._resolve(items) if isinstance(items, dict) else None
            else:
                child = node.get("properties", {}).get(name)
                node = self._resolve(child) if isinstance(child, dict) else None
        self._cache[key] = node
        return node

    def __call__(self, path: str, value: Any) -> ValidationResult:
        schema = self.subschema(path)
        if schema is None:
            return ValidationResult.success()
        root = {**schema}
        if "$defs" in self._schema and "$defs" not in root:
            root["$defs"] = self._schema["$defs"]
        validator = jsonschema.Draft202012Validator(root, format_checker=jsonschema.FormatChecker())
        errors = [f"{error.json_path}: {error.message}" for error in validator.iter_errors(value)]
        return ValidationResult(ok=not errors, errors=errors)


class SchemaRegistry:
    """Lazily loads entity JSON Schemas by entity type."""

    def __init__(self, root: Path) -> None:
        self._root = root
        self._cache: Dict[str, Dict[str, Any]] = {}

    def load(self, entity_type: str) -> Dict[str, Any]:
        if entity_type not in self._cache:
            path = self._root / f"{entity_type}.schema.json"
            if not path.exists():
                raise FileNotFoundError(f"Schema not found for {entity_type}: {path}")
            self._cache[entity_type] = orjson.loads(path.read_text(encoding="utf-8"))
        return self._cache[entity_type]

    def validator(self, entity_type: str) -> SchemaValidator:
        return SchemaValidator(self.load(entity_type))

    def validate(self, entity_type: str, payload: Dict[str, Any]) -> ValidationResult:
        """Validate a whole entity document."""
        validator = jsonschema.Draft202012Validator(self.load(entity_type))
        errors = [f"{error.json_path}: {error.message}" for error in validator.iter_errors(payload)]
        return ValidationResult(ok=not errors, errors=errors)


Rule = Callable[[Any], Union[bool, ValidationResult]]


def _email(value: Any) -> bool:
    return isinstance(value, str) and bool(_EMAIL_RE.match(value))


def _iso_date(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    try:
        dateparser.isoparse(value)
    except ValueError:
        return False
    return True


def _non_empty(value: Any) -> bool:
    return bool(value.strip()) if isinstance(value, str) else value not in ([], {})


BUILTIN_RULES: Dict[str, Rule] = {
    "email": _email,
    "iso_date": _iso_date,
    "non_empty": _non_empty,
}


class RuleValidator:
    """Runs per-path rules; paths are dotted and ignore collection indices."""

    def __init__(self, rules: Mapping[str, Union[str, Rule]]) -> None:
        self._rules: Dict[str, Rule] = {}
        for path, rule in rules.items():
            if isinstance(rule, str):
                if rule not in BUILTIN_RULES:
                    raise ValueError(f"Unknown rule {rule!r} for {path}")
                rule = BUILTIN_RULES[rule]
            self._rules[path] = rule

    def __call__(self, path: str, value: Any) -> ValidationResult:
        rule = self._rules.get(strip_indices(path))
        if rule is None:
            return ValidationResult.success()
        outcome = rule(value)
        if isinstance(outcome, ValidationResult):
            return outcome
        if outcome:
            return ValidationResult.success()
        name = getattr(rule, "__name__", "rule").lstrip("_")
        return ValidationResult.failure(f"{path}: failed {name} check")


def chain(*validators: Callable[[str, Any], ValidationResult]) -> Callable[[str, Any], ValidationResult]:
    """Combine validators; the first failing one decides."""

    def run(path: str, value: Any) -> ValidationResult:
        for validator in validators:
            result = validator(path, value)
            if not result.ok:
                return result
        return ValidationResult.success()

    return run
