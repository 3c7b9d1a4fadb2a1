"""Quarantine handling for rejected partial updates."""
from __future__ import annotations

from collections import Counter
from datetime import datetime, timedelta
from pathlib import Path
from typing import Dict, List, Optional
from uuid import uuid4

import orjson


class Quarantine:
    """Writes rejected patches to a quarantine directory for inspection."""

    def __init__(self, root: Path) -> None:
        self._root = root
        self._root.mkdir(parents=True, exist_ok=True)

    def reject(
        self,
        *,
        entity_type: str,
        key: str,
        patch: Dict[str, object],
        errors: List[Dict[str, object]],
    ) -> Path:
        """Persist the rejected patch with the errors that stopped it."""
        timestamp = datetime.utcnow().strftime("%Y%m%dT%H%M%S%f")
        target = self._root / f"reject_{timestamp}_{uuid4().hex[:8]}.json"
        blob = {"entity_type": entity_type, "key": key, "patch": patch, "errors": errors}
        target.write_text(orjson.dumps(blob, option=orjson.OPT_INDENT_2).decode(), encoding="utf-8")
        return target

    def summarise(self, *, entity_type: Optional[str] = None, days: int = 7) -> Dict[str, int]:
        """Count rejection reasons (``<error>:<path>``) written in the last ``days`` days."""
        cutoff = datetime.utcnow() - timedelta(days=days)
        counter: Counter[str] = Counter()
        for path in self._root.glob("reject_*.json"):
            try:
                written = datetime.strptime(path.stem.split("_")[1], "%Y%m%dT%H%M%S%f")
            except (IndexError, ValueError):
                written = datetime.utcnow()
            if written < cutoff:
                continue
            payload = orjson.loads(path.read_bytes())
            if entity_type and payload.get("entity_type") != entity_type:
                continue
            for error in payload.get("errors", []):
                counter[f"{error.get('error')}:{error.get('path')}"] += 1
        return dict(counter)
