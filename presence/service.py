"""Load, merge and commit partial updates against the entity repository."""
from __future__ import annotations

from typing import Any, Dict, Optional

import structlog
from structlog.contextvars import bound_contextvars

from presence.errors import MergeError
from presence.merge.engine import MergeEngine, MergeResult
from presence.observability.metrics import MetricsRegistry, record_duration
from presence.quality.quarantine import Quarantine
from presence.records.partial import PartialRecord
from presence.storage.repository import JsonFileRepository

LOGGER = structlog.get_logger(__name__)


def _error_rows(error: MergeError) -> list[Dict[str, object]]:
    payload = error.to_dict()
    return list(payload.get("errors", [payload]))


class PatchService:
    """Applies partial records to stored entities, committing only successful merges."""

    def __init__(
        self,
        *,
        repository: JsonFileRepository,
        engine: MergeEngine,
        quarantine: Optional[Quarantine] = None,
        metrics: Optional[MetricsRegistry] = None,
    ) -> None:
        self._repository = repository
        self._engine = engine
        self._quarantine = quarantine
        self.metrics = metrics or MetricsRegistry()

    def apply_patch(self, entity_type: str, key: str, partial: PartialRecord) -> MergeResult:
        with bound_contextvars(entity_type=entity_type, key=key):
            entity = self._repository.load(entity_type, key)
            try:
                with record_duration(self.metrics, "merge_duration_ms"):
                    result = self._engine.merge(entity, partial)
            except MergeError as error:
                self._reject(entity_type, key, partial, error)
                raise
            return self._commit(entity_type, key, result)

    async def apply_patch_async(self, entity_type: str, key: str, partial: PartialRecord) -> MergeResult:
        with bound_contextvars(entity_type=entity_type, key=key):
            entity = self._repository.load(entity_type, key)
            try:
                with record_duration(self.metrics, "merge_duration_ms"):
                    result = await self._engine.amerge(entity, partial)
            except MergeError as error:
                self._reject(entity_type, key, partial, error)
                raise
            return self._commit(entity_type, key, result)

    def _commit(self, entity_type: str, key: str, result: MergeResult) -> MergeResult:
        if not result.mutated:
            self.metrics.incr("patches_noop")
            LOGGER.info("patch_noop")
            return result
        self._repository.commit(entity_type, key, result.entity)
        self.metrics.incr("patches_applied")
        self.metrics.incr("fields_changed", len(result.changed))
        LOGGER.info("patch_applied", changed=result.changed)
        return result

    def _reject(self, entity_type: str, key: str, partial: PartialRecord, error: MergeError) -> None:
        self.metrics.incr("patches_rejected")
        rows = _error_rows(error)
        LOGGER.warning("patch_rejected", errors=rows)
        if self._quarantine is not None:
            patch: Dict[str, Any] = partial.to_presence_map()
            self._quarantine.reject(entity_type=entity_type, key=key, patch=patch, errors=rows)
