"""
Per-batch import work: validate, resolve duplicates, persist.

A batch is categorized in file order against the job's duplicate cache, then
persisted with one bulk insert for the new records while the coalesced
fill-empty updates run on a small thread pool. A failed bulk insert falls back
to inserting records one at a time.
"""
from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from crm_app.core.config import settings
from crm_app.domain.imports.duplicate_cache import CachedEntity, DuplicateCache, fill_empty_patch
from crm_app.domain.imports.enrichment import enrich_contact
from crm_app.domain.imports.field_catalog import EntityType, FieldCatalog, get_catalog
from crm_app.domain.imports.progress import BatchResult
from crm_app.domain.imports.transformer import RejectedRow, transform_row

logger = logging.getLogger(__name__)

DUPLICATE_POLICY_MERGE = "merge"
DUPLICATE_POLICY_SKIP = "skip"
DUPLICATE_POLICY_OFF = "off"


@dataclass
class ImportOptions:
    entity_type: EntityType = EntityType.CONTACT
    skip_duplicates: bool = True
    update_existing: bool = False
    auto_enrich: bool = False
    batch_size: int = field(default_factory=lambda: settings.import_batch_size)

    def __post_init__(self) -> None:
        self.entity_type = EntityType(self.entity_type)
        if self.batch_size < 1:
            raise ValueError("batch_size must be at least 1")

    @property
    def duplicate_policy(self) -> str:
        if self.update_existing:
            return DUPLICATE_POLICY_MERGE
        if self.skip_duplicates:
            return DUPLICATE_POLICY_SKIP
        return DUPLICATE_POLICY_OFF

    @classmethod
    def from_dict(cls, values: Optional[Mapping[str, Any]]) -> "ImportOptions":
        values = dict(values or {})
        known = {key: values[key] for key in cls.__dataclass_fields__ if values.get(key) is not None}
        return cls(**known)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entity_type": self.entity_type.value,
            "skip_duplicates": self.skip_duplicates,
            "update_existing": self.update_existing,
            "auto_enrich": self.auto_enrich,
            "batch_size": self.batch_size,
        }


@dataclass
class _PendingInsert:
    row: int
    entity: CachedEntity


_ABSENT = object()


@dataclass
class _PendingUpdate:
    entity: CachedEntity
    patch: Dict[str, Any] = field(default_factory=dict)
    rows: List[int] = field(default_factory=list)
    # cached values the patch replaced, restored if the update does not persist
    previous: Dict[str, Any] = field(default_factory=dict)

    @property
    def entity_id(self) -> str:
        return self.entity.id


class BatchProcessor:
    """Processes the batches of one job run; owns no state beyond the job's cache."""

    def __init__(
        self,
        store,
        mapping: Mapping[str, str],
        options: ImportOptions,
        *,
        cache: Optional[DuplicateCache] = None,
        catalog: Optional[FieldCatalog] = None,
        update_workers: Optional[int] = None,
    ):
        self.store = store
        self.mapping = dict(mapping)
        self.options = options
        self.catalog = catalog or get_catalog(options.entity_type)
        self.kind = self.catalog.entity_type.value
        self.update_workers = update_workers or settings.import_update_workers
        if options.duplicate_policy != DUPLICATE_POLICY_OFF and cache is None:
            raise ValueError("A duplicate cache is required unless duplicate detection is off")
        self.cache = cache

    def process(self, rows: List[Mapping[str, Any]], *, start_row: int = 1) -> BatchResult:
        """
        Process one batch. ``start_row`` is the 1-based data row number of ``rows[0]``.

        Per batch: processed == successful + errors + duplicates + updated.
        """
        result = BatchResult()
        result.stats.processed = len(rows)

        inserts: List[_PendingInsert] = []
        updates: Dict[str, _PendingUpdate] = {}
        policy = self.options.duplicate_policy

        valid = []
        for offset, raw in enumerate(rows):
            row_number = start_row + offset
            try:
                outcome = transform_row(raw, self.mapping, row_index=row_number, catalog=self.catalog)
                if isinstance(outcome, RejectedRow):
                    result.record_error(outcome.row, outcome.reason)
                    continue
                data = outcome.data
                if self.options.auto_enrich and self.catalog.entity_type == EntityType.CONTACT:
                    data = enrich_contact(data)
            except Exception as exc:
                logger.exception("Unexpected failure preparing row %d", row_number)
                result.record_error(row_number, f"Could not process row: {exc}")
                continue
            valid.append((row_number, data))

        if policy == DUPLICATE_POLICY_OFF:
            inserts = [_PendingInsert(row, CachedEntity(id=None, data=data, staged=True)) for row, data in valid]
        else:
            try:
                self.cache.prefetch(data for _, data in valid)
            except Exception as exc:
                logger.warning(
                    "Store lookup for batch starting at row %d failed (%s); resolving duplicates from the cache",
                    start_row,
                    exc,
                )
            for row_number, data in valid:
                self._categorize(row_number, data, policy, result, inserts, updates)

        self._persist(inserts, updates, result)

        if not result.stats.is_consistent():
            logger.error("Batch starting at row %d has inconsistent stats: %s", start_row, result.stats)
        return result

    def _categorize(
        self,
        row_number: int,
        data: Dict[str, Any],
        policy: str,
        result: BatchResult,
        inserts: List[_PendingInsert],
        updates: Dict[str, _PendingUpdate],
    ) -> None:
        match = self.cache.find(data)
        if match is None:
            entity = CachedEntity(id=None, data=data, staged=True)
            self.cache.add(entity)
            inserts.append(_PendingInsert(row_number, entity))
            return

        if policy == DUPLICATE_POLICY_SKIP:
            result.stats.duplicates += 1
            return

        patch = fill_empty_patch(match.data, data)
        if not patch:
            result.stats.duplicates += 1
            return

        if match.staged:
            match.merged_rows.append(row_number)
        else:
            pending = updates.get(match.id)
            if pending is None:
                pending = updates[match.id] = _PendingUpdate(entity=match)
            for key in patch:
                pending.previous.setdefault(key, match.data.get(key, _ABSENT))
            pending.patch.update(patch)
            pending.rows.append(row_number)

        match.data.update(patch)
        # the patched record may expose new keys (e.g. a first email)
        self.cache.add(match)

    def _revert(self, pending: _PendingUpdate) -> None:
        entity = pending.entity
        self.cache.remove(entity)
        for key, value in pending.previous.items():
            if value is _ABSENT:
                entity.data.pop(key, None)
            else:
                entity.data[key] = value
        self.cache.add(entity)

    # ------------------------------------------------------------ persistence
    def _persist(
        self,
        inserts: List[_PendingInsert],
        updates: Dict[str, _PendingUpdate],
        result: BatchResult,
    ) -> None:
        if not updates:
            self._insert_all(inserts, result)
            return

        workers = max(1, min(self.update_workers, len(updates)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="import-update") as pool:
            futures = [
                (pending, pool.submit(self.store.update, self.kind, pending.entity_id, pending.patch))
                for pending in updates.values()
            ]
            self._insert_all(inserts, result)

            for pending, future in futures:
                try:
                    applied = future.result()
                except Exception as exc:
                    logger.warning("Update of %s %s failed: %s", self.kind, pending.entity_id, exc)
                    self._fail_rows(pending.rows, f"Update failed: {exc}", result)
                    self._revert(pending)
                    continue
                if applied:
                    result.stats.updated += len(pending.rows)
                else:
                    self._fail_rows(pending.rows, f"Existing {self.kind} {pending.entity_id} no longer exists", result)
                    self.cache.remove(pending.entity)

    def _insert_all(self, inserts: List[_PendingInsert], result: BatchResult) -> None:
        if not inserts:
            return
        records = [pending.entity.data for pending in inserts]
        try:
            ids = self.store.bulk_insert(self.kind, records)
        except Exception as exc:
            logger.warning(
                "Bulk insert of %d %s records failed (%s); retrying one at a time",
                len(records),
                self.kind,
                exc,
            )
            self._insert_individually(inserts, result)
            return

        ids = list(ids or [])
        if len(ids) < len(inserts):
            logger.error(
                "Bulk insert returned %d ids for %d %s records",
                len(ids),
                len(inserts),
                self.kind,
            )
        for pending, entity_id in zip(inserts, ids):
            self._mark_inserted(pending, entity_id, result)
        for pending in inserts[len(ids):]:
            self._fail_rows([pending.row] + pending.entity.merged_rows, "Insert failed: no id returned", result)
            if self.cache is not None:
                self.cache.remove(pending.entity)

    def _insert_individually(self, inserts: List[_PendingInsert], result: BatchResult) -> None:
        for pending in inserts:
            try:
                entity_id = self.store.insert(self.kind, pending.entity.data)
            except Exception as exc:
                logger.debug("Insert of row %d failed: %s", pending.row, exc)
                self._fail_rows([pending.row] + pending.entity.merged_rows, f"Insert failed: {exc}", result)
                if self.cache is not None:
                    self.cache.remove(pending.entity)
                continue
            self._mark_inserted(pending, entity_id, result)

    @staticmethod
    def _mark_inserted(pending: _PendingInsert, entity_id: str, result: BatchResult) -> None:
        pending.entity.id = entity_id
        pending.entity.data["id"] = entity_id
        pending.entity.staged = False
        result.stats.successful += 1
        result.stats.updated += len(pending.entity.merged_rows)
        pending.entity.merged_rows = []

    @staticmethod
    def _fail_rows(rows: List[int], message: str, result: BatchResult) -> None:
        for row in sorted(rows):
            result.record_error(row, message)
