"""
Running statistics and snapshot persistence for one import job.
"""
from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Dict, List, Optional

from crm_app.core.config import settings
from crm_app.domain.imports.jobs import JobSnapshotStore, JobStatus

logger = logging.getLogger(__name__)


@dataclass
class ProcessingStats:
    processed: int = 0
    successful: int = 0
    errors: int = 0
    duplicates: int = 0
    updated: int = 0

    def add(self, other: "ProcessingStats") -> None:
        self.processed += other.processed
        self.successful += other.successful
        self.errors += other.errors
        self.duplicates += other.duplicates
        self.updated += other.updated

    def is_consistent(self) -> bool:
        return self.processed == self.successful + self.errors + self.duplicates + self.updated

    def copy(self) -> "ProcessingStats":
        return ProcessingStats(**asdict(self))

    def as_job_fields(self) -> Dict[str, int]:
        return {
            "processed_rows": self.processed,
            "successful_rows": self.successful,
            "error_rows": self.errors,
            "duplicate_rows": self.duplicates,
            "updated_rows": self.updated,
        }


@dataclass
class RowError:
    row: int
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {"row": self.row, "message": self.message}


@dataclass
class BatchResult:
    stats: ProcessingStats = field(default_factory=ProcessingStats)
    errors: List[RowError] = field(default_factory=list)

    def record_error(self, row: int, message: str) -> None:
        self.stats.errors += 1
        self.errors.append(RowError(row=row, message=message))


def format_progress_message(processed: int, total: int) -> str:
    """``"42% complete (420/1000)"``"""
    if total <= 0:
        return f"Processing ({processed} rows)"
    percent = min(100, int(processed * 100 / total))
    return f"{percent}% complete ({processed}/{total})"


def format_summary(stats: ProcessingStats) -> str:
    return (
        f"Import completed: {stats.successful} created, {stats.updated} updated, "
        f"{stats.duplicates} duplicates, {stats.errors} errors"
    )


class ImportProgressTracker:
    """
    Authoritative progress for one job run.

    Batch results are merged on the processing thread. Snapshots go to the job
    record on a single background writer at most every ``snapshot_interval``
    seconds; the terminal snapshot is written synchronously once that writer
    has drained.
    """

    def __init__(
        self,
        snapshots: JobSnapshotStore,
        job_id: str,
        *,
        total_rows: int = 0,
        snapshot_interval: Optional[float] = None,
        error_limit: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.snapshots = snapshots
        self.job_id = job_id
        self.total_rows = total_rows
        self.snapshot_interval = (
            snapshot_interval if snapshot_interval is not None else settings.progress_snapshot_interval_seconds
        )
        self.error_limit = error_limit if error_limit is not None else settings.import_error_detail_limit
        self.stats = ProcessingStats()
        self.errors: List[Dict[str, Any]] = []
        self._clock = clock
        self._last_snapshot = clock()
        self._writer = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"job-{job_id[:8]}-snapshot")
        self._pending: Optional[Future] = None
        self._lock = threading.Lock()
        self._started = False
        self._finished = False

    def start(self) -> None:
        self.snapshots.write(
            self.job_id,
            status=JobStatus.PROCESSING.value,
            total_rows=self.total_rows,
            message=format_progress_message(0, self.total_rows),
        )
        self._started = True

    def set_total_rows(self, total_rows: int) -> None:
        """Record the up-front row count once the job is processing."""
        self.total_rows = total_rows
        self.snapshots.write(
            self.job_id,
            total_rows=total_rows,
            message=format_progress_message(self.stats.processed, total_rows),
        )

    def record_batch(self, result: BatchResult) -> None:
        with self._lock:
            self.stats.add(result.stats)
            room = self.error_limit - len(self.errors)
            if room > 0:
                self.errors.extend(error.to_dict() for error in result.errors[:room])

        now = self._clock()
        if now - self._last_snapshot >= self.snapshot_interval:
            self._last_snapshot = now
            self._schedule_snapshot()

    def _snapshot_fields(self) -> Dict[str, Any]:
        with self._lock:
            stats = self.stats.copy()
            errors = list(self.errors)
        fields: Dict[str, Any] = stats.as_job_fields()
        fields["errors"] = errors
        fields["total_rows"] = max(self.total_rows, stats.processed)
        fields["message"] = format_progress_message(stats.processed, fields["total_rows"])
        return fields

    def _schedule_snapshot(self) -> None:
        # A queued snapshot has not started yet; the next interval carries newer counters.
        if self._pending is not None and not self._pending.done():
            return
        fields = self._snapshot_fields()
        self._pending = self._writer.submit(self._write_snapshot, fields)

    def _write_snapshot(self, fields: Dict[str, Any]) -> None:
        try:
            self.snapshots.write(self.job_id, **fields)
        except Exception:
            logger.exception("Failed to persist progress snapshot for job %s", self.job_id)

    def _drain(self) -> None:
        self._writer.shutdown(wait=True)

    def complete(self) -> Optional[Dict[str, Any]]:
        """
        Write the ``completed`` snapshot. Only the first terminal write that
        persists counts; if this one raises, :meth:`fail` may still run.
        """
        if self._finished:
            return None
        self._drain()

        fields = self._snapshot_fields()
        if self.total_rows != self.stats.processed:
            logger.warning(
                "Job %s counted %d rows up front but processed %d; recording the processed count",
                self.job_id,
                self.total_rows,
                self.stats.processed,
            )
            fields["total_rows"] = self.stats.processed
        fields["message"] = format_summary(self.stats)
        fields["status"] = JobStatus.COMPLETED.value
        job = self.snapshots.write(self.job_id, **fields)
        self._finished = True
        logger.info(f"Import job {self.job_id} finished: {fields['message']}")
        return job

    def fail(self, message: str) -> Optional[Dict[str, Any]]:
        if self._finished:
            return None
        self._drain()
        if not self._started:
            # a job only fails from processing
            self.start()

        fields = self._snapshot_fields()
        fields["message"] = message
        fields["status"] = JobStatus.FAILED.value
        job = self.snapshots.write(self.job_id, **fields)
        self._finished = True
        logger.error(f"Import job {self.job_id} failed: {message}")
        return job
