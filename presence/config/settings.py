"""TOML-backed configuration for merge engines and the patch service."""
from __future__ import annotations

import tomllib
from pathlib import Path
from typing import Any, Callable, Dict, List, Literal, Mapping, Optional

from pydantic import BaseModel, Field, ValidationError

from presence.merge.collections import CollectionPolicy, MatchByKey, ReplaceAll
from presence.merge.engine import MergeEngine
from presence.merge.hooks import EntityHooks
from presence.quality.validate import BUILTIN_RULES, RuleValidator, ValidationResult, chain


class CollectionSettings(BaseModel):
    """Merge policy for one collection field."""

    strategy: Literal["replace_all", "match_by_key"]
    key: Optional[str] = None
    remove_unmatched: bool = False

    def build(self) -> CollectionPolicy:
        if self.strategy == "replace_all":
            return ReplaceAll()
        if not self.key:
            raise ValueError("match_by_key requires a key")
        return MatchByKey(self.key, remove_unmatched=self.remove_unmatched)


class PathSettings(BaseModel):
    data_root: Path = Path("data/entities")
    quarantine_dir: Path = Path("data/quarantine")
    schemas_dir: Path = Path("config/schemas")
    metrics_dir: Path = Path("data/metrics")


class MergeSettings(BaseModel):
    """Validated contents of ``settings.toml``."""

    copy_entities: bool = False
    collect_errors: bool = False
    required: List[str] = Field(default_factory=list)
    collections: Dict[str, CollectionSettings] = Field(default_factory=dict)
    rules: Dict[str, str] = Field(default_factory=dict)
    paths: PathSettings = Field(default_factory=PathSettings)

    def collection_policies(self) -> Dict[str, CollectionPolicy]:
        return {path: entry.build() for path, entry in self.collections.items()}


def parse_settings(data: Mapping[str, Any]) -> MergeSettings:
    try:
        settings = MergeSettings.model_validate(dict(data.get("merge", {}), paths=data.get("paths", {})))
    except ValidationError as exc:
        raise ValueError(f"Invalid merge settings: {exc}") from exc
    for path, rule in settings.rules.items():
        if rule not in BUILTIN_RULES:
            raise ValueError(f"Invalid merge settings: unknown rule {rule!r} for {path}")
    for path, entry in settings.collections.items():
        if entry.strategy == "match_by_key" and not entry.key:
            raise ValueError(f"Invalid merge settings: collection {path} needs a key")
    return settings


def load_settings(path: Path) -> MergeSettings:
    """Read the TOML configuration file; a missing file yields the defaults."""
    if not path.exists():
        return MergeSettings()
    with path.open("rb") as handle:
        return parse_settings(tomllib.load(handle))


def build_engine(
    settings: MergeSettings,
    *,
    validator: Optional[Callable[[str, Any], ValidationResult]] = None,
    hooks: Optional[EntityHooks] = None,
) -> MergeEngine:
    """Assemble a ``MergeEngine`` from settings plus optional collaborators."""
    validators = [RuleValidator(settings.rules)] if settings.rules else []
    if validator is not None:
        validators.append(validator)
    combined = None
    if len(validators) == 1:
        combined = validators[0]
    elif validators:
        combined = chain(*validators)
    return MergeEngine(
        hooks=hooks or EntityHooks(required=settings.required),
        validator=combined,
        collections=settings.collection_policies(),
        copy=settings.copy_entities,
        collect_errors=settings.collect_errors,
    )
