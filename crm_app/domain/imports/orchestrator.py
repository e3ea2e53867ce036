"""
Import orchestration layer.

``ImportService`` is the entry point used by the API: it creates jobs, runs
them (reader -> batch processor -> progress tracker) and answers status and
mapping queries. One job run owns its duplicate cache and its temporary file;
the file is removed once the job is terminal, whatever the outcome.
"""

import logging
import os
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from crm_app.core.config import settings
from crm_app.domain.imports.batch_processor import DUPLICATE_POLICY_OFF, BatchProcessor, ImportOptions
from crm_app.domain.imports.duplicate_cache import DuplicateCache
from crm_app.domain.imports.errors import ImportJobNotFound
from crm_app.domain.imports.field_catalog import FieldCatalog, get_catalog
from crm_app.domain.imports.field_mapper import HeaderFieldMapper, HeaderMapping
from crm_app.domain.imports.jobs import JobSnapshotStore
from crm_app.domain.imports.processors.csv_processor import (
    PrefetchingBatchReader,
    count_csv_rows,
    iter_csv_batches,
    preview_csv,
    read_csv_headers,
)
from crm_app.domain.imports.progress import ImportProgressTracker

logger = logging.getLogger(__name__)

PREVIEW_ROWS = 3


def _remove_file(path: Optional[str]) -> None:
    if not path:
        return
    try:
        os.remove(path)
        logger.debug("Removed upload %s", path)
    except FileNotFoundError:
        pass
    except OSError as exc:
        logger.warning(f"Could not remove upload {path}: {exc}")


def clean_field_mapping(mapping: Mapping[str, Optional[str]], catalog: FieldCatalog) -> Dict[str, str]:
    """Keep header -> field pairs whose field exists in ``catalog``; blanks mean "skip"."""
    cleaned: Dict[str, str] = {}
    for header, field_name in (mapping or {}).items():
        if not field_name:
            continue
        if catalog.get(field_name) is None:
            logger.warning(f"Ignoring mapping {header!r} -> {field_name!r}: unknown {catalog.entity_type.value} field")
            continue
        cleaned[str(header)] = field_name
    return cleaned


class ImportService:
    """Job lifecycle for CSV imports against one entity store."""

    def __init__(self, store, snapshots: Optional[JobSnapshotStore] = None):
        self.store = store
        self.snapshots = snapshots or JobSnapshotStore(store)

    # ------------------------------------------------------------ mapping
    def get_auto_mapping(self, headers: Sequence[str], entity_type: str = "contact") -> HeaderMapping:
        return HeaderFieldMapper(get_catalog(entity_type)).map_headers(headers)

    def auto_map_file(self, path: str, entity_type: str = "contact") -> Dict[str, Any]:
        """Headers, inferred mapping, a short preview and the data row count of a CSV."""
        headers, preview = preview_csv(path, PREVIEW_ROWS)
        mapping = self.get_auto_mapping(headers, entity_type)
        return {
            "headers": headers,
            "preview": preview,
            "total_rows": count_csv_rows(path),
            **mapping.to_dict(),
        }

    def available_fields(self, entity_type: str) -> List[Dict[str, str]]:
        return get_catalog(entity_type).describe()

    # --------------------------------------------------------------- jobs
    def start_import(
        self,
        path: str,
        filename: str,
        *,
        field_mapping: Optional[Mapping[str, Optional[str]]] = None,
        options: Optional[ImportOptions] = None,
    ) -> Dict[str, Any]:
        """
        Register a job for an uploaded file. The caller schedules :meth:`run_import`.

        When no mapping is supplied the headers are auto-mapped.
        """
        options = options or ImportOptions()
        catalog = get_catalog(options.entity_type)

        if field_mapping:
            mapping = clean_field_mapping(field_mapping, catalog)
        else:
            mapping = HeaderFieldMapper(catalog).map_headers(read_csv_headers(path)).mapping
            logger.info(f"Auto-mapped {len(mapping)} headers for {filename}")

        return self.snapshots.create(
            filename=filename,
            entity_type=options.entity_type.value,
            field_mapping=mapping,
            options=options.to_dict(),
        )

    def run_import(self, job_id: str, path: str) -> Optional[Dict[str, Any]]:
        """
        Run a job to a terminal state. Never raises; failures end in ``failed``.
        """
        tracker = ImportProgressTracker(self.snapshots, job_id)
        try:
            job = self.snapshots.get(job_id)
            options = ImportOptions.from_dict(job.get("options"))
            mapping = job.get("field_mapping") or {}

            tracker.start()
            tracker.set_total_rows(count_csv_rows(path))
            logger.info(
                f"Starting import job {job_id}: {tracker.total_rows} rows, "
                f"batch size {options.batch_size}, duplicates={options.duplicate_policy}"
            )

            processor = BatchProcessor(
                self.store,
                mapping,
                options,
                cache=self._build_cache(options),
            )

            next_row = 1
            with PrefetchingBatchReader(iter_csv_batches(path, options.batch_size)) as reader:
                for batch in reader:
                    result = processor.process(batch, start_row=next_row)
                    next_row += len(batch)
                    tracker.record_batch(result)

            return tracker.complete()
        except Exception as exc:
            logger.exception(f"Import job {job_id} failed")
            try:
                return tracker.fail(f"Import failed: {exc}")
            except Exception:
                logger.exception(f"Could not record failure of import job {job_id}")
                return None
        finally:
            _remove_file(path)

    def _build_cache(self, options: ImportOptions) -> Optional[DuplicateCache]:
        if options.duplicate_policy == DUPLICATE_POLICY_OFF:
            return None
        return DuplicateCache.build(
            self.store,
            options.entity_type,
            limit=settings.import_cache_preload_limit,
            lookup_on_miss=settings.import_lookup_store_on_cache_miss,
        )

    def get_job_status(self, job_id: str) -> Dict[str, Any]:
        job = self.store.get_import_job(job_id)
        if job is None:
            raise ImportJobNotFound(job_id)
        return job

    def list_jobs(self, *, limit: int = 50, offset: int = 0) -> Tuple[List[Dict[str, Any]], int]:
        return self.snapshots.list(limit=limit, offset=offset)
