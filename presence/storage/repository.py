"""File-backed entity repository used as the persistence collaborator."""
from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any, Dict, Iterator

import orjson

_KEY_RE = re.compile(r"^[A-Za-z0-9_.-]+$")


class RecordNotFound(LookupError):
    """No entity is stored under the requested key."""


class JsonFileRepository:
    """Stores one JSON document per entity under ``<root>/<entity_type>/<key>.json``."""

    def __init__(self, root: Path) -> None:
        self._root = root

    def _path(self, entity_type: str, key: str) -> Path:
        for part in (entity_type, key):
            if not _KEY_RE.match(part) or part in {".", ".."}:
                raise ValueError(f"Invalid repository key: {part!r}")
        return self._root / entity_type / f"{key}.json"

    def exists(self, entity_type: str, key: str) -> bool:
        return self._path(entity_type, key).exists()

    def load(self, entity_type: str, key: str) -> Dict[str, Any]:
        path = self._path(entity_type, key)
        if not path.exists():
            raise RecordNotFound(f"{entity_type}/{key}")
        return orjson.loads(path.read_bytes())

    def commit(self, entity_type: str, key: str, entity: Dict[str, Any]) -> Path:
        """Write the entity, replacing the previous version atomically."""
        path = self._path(entity_type, key)
        path.parent.mkdir(parents=True, exist_ok=True)
        staging = path.with_suffix(".json.tmp")
        staging.write_bytes(orjson.dumps(entity, option=orjson.OPT_INDENT_2))
        os.replace(staging, path)
        return path

    def keys(self, entity_type: str) -> Iterator[str]:
        directory = self._root / entity_type
        if not directory.exists():
            return iter(())
        return (path.stem for path in sorted(directory.glob("*.json")))
