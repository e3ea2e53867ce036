"""
Consumer-side view of an import job's progress.

Push frames and polled job records are two views of the same snapshot, so both
go through ``reconcile``: counters never move backwards and the first terminal
state wins. ``ImportProgressWatcher`` listens on the push channel when one is
available and polls the job record whenever push is missing or quiet.
"""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from crm_app.core.config import settings
from crm_app.domain.imports.jobs import JobStatus, is_terminal

logger = logging.getLogger(__name__)

_COUNTERS = (
    "total_rows",
    "processed_rows",
    "successful_rows",
    "error_rows",
    "duplicate_rows",
    "updated_rows",
)

_STATUS_RANK = {
    JobStatus.PENDING.value: 0,
    JobStatus.PROCESSING.value: 1,
    JobStatus.COMPLETED.value: 2,
    JobStatus.FAILED.value: 2,
}


@dataclass(frozen=True)
class ProgressState:
    job_id: str
    status: str = JobStatus.PENDING.value
    total_rows: int = 0
    processed_rows: int = 0
    successful_rows: int = 0
    error_rows: int = 0
    duplicate_rows: int = 0
    updated_rows: int = 0
    message: Optional[str] = None
    completed_at: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "ProgressState":
        """Accepts a push frame (``job_id``) or a job record (``id``)."""
        completed_at = payload.get("completed_at")
        return cls(
            job_id=str(payload.get("job_id") or payload.get("id")),
            status=payload.get("status") or JobStatus.PENDING.value,
            message=payload.get("message"),
            completed_at=completed_at.isoformat() if hasattr(completed_at, "isoformat") else completed_at,
            **{name: int(payload.get(name) or 0) for name in _COUNTERS},
        )

    @property
    def terminal(self) -> bool:
        return is_terminal(self.status)

    @property
    def percent(self) -> int:
        if self.total_rows <= 0:
            return 100 if self.terminal else 0
        return min(100, int(self.processed_rows * 100 / self.total_rows))


def reconcile(current: Optional[ProgressState], incoming: ProgressState) -> ProgressState:
    """Fold ``incoming`` into ``current`` keeping the view monotone."""
    if current is None:
        return incoming
    if incoming.job_id != current.job_id or current.terminal:
        return current
    if incoming.terminal:
        return incoming
    if _STATUS_RANK.get(incoming.status, 0) < _STATUS_RANK.get(current.status, 0):
        return current
    if any(getattr(incoming, name) < getattr(current, name) for name in _COUNTERS):
        return current
    return incoming


class ImportProgressWatcher:
    """
    Follows one job until it reaches a terminal state.

    Args:
        job_id: Job to follow
        fetch_status: Returns the persisted job record (dict) for polling
        subscribe: Optional ``subscribe(job_id, on_frame) -> unsubscribe`` for push
        on_progress: Called with every state that advances the view
        on_complete: Called once when the job completes
        on_error: Called once when the job fails
    """

    def __init__(
        self,
        job_id: str,
        *,
        fetch_status: Callable[[str], Optional[Dict[str, Any]]],
        subscribe: Optional[Callable[[str, Callable[[Dict[str, Any]], None]], Callable[[], None]]] = None,
        on_progress: Optional[Callable[[ProgressState], None]] = None,
        on_complete: Optional[Callable[[ProgressState], None]] = None,
        on_error: Optional[Callable[[ProgressState], None]] = None,
        poll_interval: Optional[float] = None,
        push_timeout: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.job_id = job_id
        self._fetch_status = fetch_status
        self._subscribe = subscribe
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._on_progress = on_progress
        self._on_complete = on_complete
        self._on_error = on_error
        self.poll_interval = poll_interval if poll_interval is not None else settings.progress_poll_interval_seconds
        self.push_timeout = push_timeout if push_timeout is not None else settings.progress_push_timeout_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._state: Optional[ProgressState] = None
        self._last_push: Optional[float] = None
        self._push_available = False
        self._terminal_fired = False
        self._done = threading.Event()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def state(self) -> Optional[ProgressState]:
        return self._state

    @property
    def push_available(self) -> bool:
        return self._push_available

    def start(self) -> "ImportProgressWatcher":
        if self._subscribe is not None:
            try:
                self._unsubscribe = self._subscribe(self.job_id, self.handle_frame)
                self._push_available = True
            except Exception as exc:
                logger.warning("Push channel unavailable for job %s, polling instead: %s", self.job_id, exc)
            # a replayed terminal frame finishes the watch during subscribe
            if self._done.is_set():
                self._release_push()
        self._thread = threading.Thread(target=self._poll_loop, name=f"watch-{self.job_id[:8]}", daemon=True)
        self._thread.start()
        return self

    def _push_is_quiet(self) -> bool:
        if not self._push_available:
            return True
        if self._last_push is None:
            return True
        return self._clock() - self._last_push >= self.push_timeout

    def _poll_loop(self) -> None:
        # First poll right away so late watchers catch finished jobs.
        self.poll_once()
        while not self._done.is_set() and not self._stop.wait(self.poll_interval):
            if self._push_is_quiet():
                self.poll_once()

    def poll_once(self) -> Optional[ProgressState]:
        try:
            record = self._fetch_status(self.job_id)
        except Exception as exc:
            logger.warning("Polling job %s failed: %s", self.job_id, exc)
            return self._state
        if record is None:
            return self._state
        return self._apply(ProgressState.from_payload(record))

    def handle_frame(self, frame: Dict[str, Any]) -> Optional[ProgressState]:
        if frame.get("type") not in (None, "import-progress"):
            return self._state
        self._last_push = self._clock()
        return self._apply(ProgressState.from_payload(frame))

    def _apply(self, incoming: ProgressState) -> ProgressState:
        fire_terminal = False
        with self._lock:
            previous = self._state
            state = reconcile(previous, incoming)
            advanced = previous is None or state != previous
            self._state = state
            if state.terminal and not self._terminal_fired:
                self._terminal_fired = True
                fire_terminal = True

        if advanced and self._on_progress is not None:
            self._on_progress(state)
        if fire_terminal:
            self._finish(state)
        return state

    def _finish(self, state: ProgressState) -> None:
        if state.status == JobStatus.COMPLETED.value:
            if self._on_complete is not None:
                self._on_complete(state)
        elif self._on_error is not None:
            self._on_error(state)
        self._done.set()
        self._release_push()

    def _release_push(self) -> None:
        unsubscribe, self._unsubscribe = self._unsubscribe, None
        if unsubscribe is not None:
            try:
                unsubscribe()
            except Exception as exc:
                logger.debug("Unsubscribe for job %s failed: %s", self.job_id, exc)

    def wait(self, timeout: Optional[float] = None) -> Optional[ProgressState]:
        """Block until the job is terminal (or ``timeout``); returns the latest state."""
        self._done.wait(timeout)
        return self._state

    def stop(self) -> None:
        self._stop.set()
        self._release_push()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=5)
