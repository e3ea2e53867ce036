"""
Fan-out of import progress frames to push subscribers.

The hub is transport-agnostic: a connection is registered with a ``send``
callable (the WebSocket router wraps an asyncio queue) and subscribes to job
ids. Frames are built from persisted job snapshots; progress frames are
throttled per job, terminal frames are always delivered and close the job's
subscriptions after a short linger.
"""
from __future__ import annotations

import itertools
import logging
import threading
import time
from collections import OrderedDict
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Set

from crm_app.core.config import settings
from crm_app.domain.imports.jobs import is_terminal

logger = logging.getLogger(__name__)

FRAME_TYPE = "import-progress"
FINISHED_JOBS_REMEMBERED = 1000

Frame = Dict[str, Any]
SendFn = Callable[[Frame], None]


def _iso(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def build_frame(job: Dict[str, Any]) -> Frame:
    """Progress frame (absolute counters) for a job snapshot."""
    frame: Frame = {
        "type": FRAME_TYPE,
        "job_id": job["id"],
        "status": job.get("status") or "processing",
        "total_rows": job.get("total_rows") or 0,
        "processed_rows": job.get("processed_rows") or 0,
        "successful_rows": job.get("successful_rows") or 0,
        "error_rows": job.get("error_rows") or 0,
        "duplicate_rows": job.get("duplicate_rows") or 0,
        "updated_rows": job.get("updated_rows") or 0,
        "message": job.get("message"),
    }
    if is_terminal(frame["status"]):
        frame["completed_at"] = _iso(job.get("completed_at"))
        frame["errors"] = job.get("errors") or []
    return frame


class ProgressHub:
    """Per-job subscriptions with throttled, at-least-once, last-value-wins delivery."""

    def __init__(
        self,
        *,
        throttle_ms: Optional[int] = None,
        linger_seconds: Optional[float] = None,
        finished_limit: int = FINISHED_JOBS_REMEMBERED,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.throttle_seconds = (throttle_ms if throttle_ms is not None else settings.progress_throttle_ms) / 1000.0
        self.linger_seconds = (
            linger_seconds if linger_seconds is not None else settings.progress_subscription_linger_seconds
        )
        self._clock = clock
        self._lock = threading.RLock()
        self._ids = itertools.count(1)
        self._connections: Dict[int, SendFn] = {}
        self._client_jobs: Dict[int, Set[str]] = {}
        self._job_subscribers: Dict[str, Set[int]] = {}
        self._last_sent: Dict[str, float] = {}
        self._last_frame: Dict[str, Frame] = {}
        # recently finished jobs, oldest first, at most finished_limit entries
        self._finished: "OrderedDict[str, None]" = OrderedDict()
        self.finished_limit = finished_limit
        self._timers: Dict[str, threading.Timer] = {}
        self.frames_sent = 0
        self.frames_throttled = 0

    # ----------------------------------------------------------- connections
    def connect(self, send: SendFn) -> int:
        with self._lock:
            connection_id = next(self._ids)
            self._connections[connection_id] = send
            self._client_jobs[connection_id] = set()
        logger.debug("Progress connection %d opened", connection_id)
        return connection_id

    def disconnect(self, connection_id: int) -> None:
        with self._lock:
            for job_id in self._client_jobs.pop(connection_id, set()):
                self._drop_subscriber(job_id, connection_id)
            self._connections.pop(connection_id, None)
        logger.debug("Progress connection %d closed", connection_id)

    def subscribe(self, connection_id: int, job_id: str) -> Optional[Frame]:
        """Subscribe a connection to a job; returns the latest frame seen for it, if any."""
        with self._lock:
            if connection_id not in self._connections:
                raise KeyError(connection_id)
            self._job_subscribers.setdefault(job_id, set()).add(connection_id)
            self._client_jobs[connection_id].add(job_id)
            return self._last_frame.get(job_id)

    def unsubscribe(self, connection_id: int, job_id: str) -> None:
        with self._lock:
            self._client_jobs.get(connection_id, set()).discard(job_id)
            self._drop_subscriber(job_id, connection_id)

    def _drop_subscriber(self, job_id: str, connection_id: int) -> None:
        subscribers = self._job_subscribers.get(job_id)
        if subscribers is None:
            return
        subscribers.discard(connection_id)
        if not subscribers:
            del self._job_subscribers[job_id]

    def watch(self, job_id: str, on_frame: SendFn) -> Callable[[], None]:
        """
        In-process subscription for one job; returns the matching unsubscribe.

        The latest known frame, if any, is replayed to ``on_frame`` right away.
        """
        connection_id = self.connect(on_frame)
        latest = self.subscribe(connection_id, job_id)
        if latest is not None:
            on_frame(latest)
        return lambda: self.disconnect(connection_id)

    # ----------------------------------------------------------- publishing
    def publish(self, job: Dict[str, Any]) -> bool:
        """
        Offer a job snapshot to subscribers. Used as the snapshot store listener.

        Returns True when a frame was handed to the subscribers.
        """
        frame = build_frame(job)
        job_id = frame["job_id"]
        terminal = is_terminal(frame["status"])

        with self._lock:
            if job_id in self._finished:
                return False

            now = self._clock()
            last = self._last_sent.get(job_id)
            if not terminal and last is not None and now - last < self.throttle_seconds:
                self.frames_throttled += 1
                self._last_frame[job_id] = frame
                return False

            self._last_sent[job_id] = now
            self._last_frame[job_id] = frame
            targets = [
                (connection_id, self._connections[connection_id])
                for connection_id in self._job_subscribers.get(job_id, ())
                if connection_id in self._connections
            ]
            if terminal:
                self._finished[job_id] = None
                while len(self._finished) > self.finished_limit:
                    self._finished.popitem(last=False)
                self._schedule_cleanup(job_id)

        for connection_id, send in targets:
            try:
                send(frame)
                self.frames_sent += 1
            except Exception as exc:
                logger.warning("Dropping progress connection %d after send failure: %s", connection_id, exc)
                self.disconnect(connection_id)
        return bool(targets)

    def _schedule_cleanup(self, job_id: str) -> None:
        if self.linger_seconds <= 0:
            self._cleanup_job(job_id)
            return
        timer = threading.Timer(self.linger_seconds, self._cleanup_job, args=(job_id,))
        timer.daemon = True
        self._timers[job_id] = timer
        timer.start()

    def _cleanup_job(self, job_id: str) -> None:
        with self._lock:
            for connection_id in self._job_subscribers.pop(job_id, set()):
                self._client_jobs.get(connection_id, set()).discard(job_id)
            self._last_sent.pop(job_id, None)
            self._last_frame.pop(job_id, None)
            self._timers.pop(job_id, None)
        logger.debug("Cleaned up progress subscriptions for job %s", job_id)

    def get_stats(self) -> Dict[str, int]:
        with self._lock:
            return {
                "total_connections": len(self._connections),
                "total_subscriptions": sum(len(subs) for subs in self._job_subscribers.values()),
                "frames_sent": self.frames_sent,
                "frames_throttled": self.frames_throttled,
                "finished_jobs": len(self._finished),
            }

    def close(self) -> None:
        with self._lock:
            for timer in self._timers.values():
                timer.cancel()
            self._timers.clear()
            self._connections.clear()
            self._client_jobs.clear()
            self._job_subscribers.clear()
            self._last_sent.clear()
            self._last_frame.clear()
            self._finished.clear()
