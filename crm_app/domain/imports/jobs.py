"""
Persistent tracking for long-running import jobs.

``JobSnapshotStore`` is the only writer of import job records. It enforces the
job lifecycle (pending -> processing -> completed | failed) and notifies
listeners after every successful write, which is how progress reaches the push
channel.
"""
from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from crm_app.domain.imports.errors import ImportJobNotFound, InvalidJobTransition

logger = logging.getLogger(__name__)


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED.value, JobStatus.FAILED.value})

_ALLOWED_TRANSITIONS = {
    JobStatus.PENDING.value: {JobStatus.PENDING.value, JobStatus.PROCESSING.value},
    JobStatus.PROCESSING.value: {JobStatus.PROCESSING.value, JobStatus.COMPLETED.value, JobStatus.FAILED.value},
}

JobListener = Callable[[Dict[str, Any]], None]


def is_terminal(status: Optional[str]) -> bool:
    return status in TERMINAL_STATUSES


class JobSnapshotStore:
    """Lifecycle-checked job record writes with notify-on-write."""

    def __init__(self, store, listeners: Optional[List[JobListener]] = None):
        self.store = store
        self._listeners: List[JobListener] = list(listeners or [])
        self._statuses: Dict[str, str] = {}
        self._lock = threading.Lock()

    def add_listener(self, listener: JobListener) -> None:
        self._listeners.append(listener)

    def _notify(self, job: Dict[str, Any]) -> None:
        for listener in list(self._listeners):
            try:
                listener(job)
            except Exception:
                logger.exception("Import job listener failed for job %s", job.get("id"))

    def create(
        self,
        *,
        filename: str,
        entity_type: str,
        field_mapping: Optional[Dict[str, str]] = None,
        options: Optional[Dict[str, Any]] = None,
        total_rows: int = 0,
    ) -> Dict[str, Any]:
        job = self.store.create_import_job(
            filename=filename,
            entity_type=entity_type,
            field_mapping=field_mapping,
            options=options,
            total_rows=total_rows,
        )
        with self._lock:
            self._remember(job["id"], job["status"])
        logger.info("Created import job %s for %s (%s)", job["id"], filename, entity_type)
        self._notify(job)
        return job

    def get(self, job_id: str) -> Dict[str, Any]:
        job = self.store.get_import_job(job_id)
        if job is None:
            raise ImportJobNotFound(job_id)
        return job

    def _current_status(self, job_id: str) -> str:
        status = self._statuses.get(job_id)
        if status is None:
            status = self.get(job_id)["status"]
            self._remember(job_id, status)
        return status

    def _remember(self, job_id: str, status: str) -> None:
        # terminal jobs are answered from the store; only live jobs are kept
        if is_terminal(status):
            self._statuses.pop(job_id, None)
        else:
            self._statuses[job_id] = status

    def tracked_jobs(self) -> int:
        with self._lock:
            return len(self._statuses)

    def write(self, job_id: str, **fields: Any) -> Optional[Dict[str, Any]]:
        """
        Persist ``fields`` on the job and notify listeners.

        Returns None (and writes nothing) when the job is already terminal.
        Raises InvalidJobTransition for a status change the lifecycle forbids.
        """
        with self._lock:
            current = self._current_status(job_id)
            if is_terminal(current):
                logger.warning("Ignoring write to %s import job %s", current, job_id)
                return None

            target = fields.get("status")
            if target is not None:
                target = JobStatus(target).value
                if target not in _ALLOWED_TRANSITIONS[current]:
                    raise InvalidJobTransition(job_id, current, target)
                fields["status"] = target
                if is_terminal(target):
                    fields.setdefault("completed_at", datetime.now(timezone.utc))

            job = self.store.update_import_job(job_id, **fields)
            if job is None:
                raise ImportJobNotFound(job_id)
            self._remember(job_id, job["status"])
            # notify under the lock so listeners see writes in order
            self._notify(job)
        return job

    def list(self, *, limit: int = 50, offset: int = 0):
        return self.store.list_import_jobs(limit=limit, offset=offset)
