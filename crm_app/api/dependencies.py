"""
Shared dependencies and state for the API.

The import service and the progress hub are process-wide singletons: background
import jobs write snapshots through the service and the hub fans them out to
WebSocket subscribers.
"""
import threading
from typing import Optional

from fastapi import HTTPException

from crm_app.db.session import get_engine
from crm_app.db.store import SqlEntityStore
from crm_app.domain.imports.jobs import JobSnapshotStore
from crm_app.domain.imports.orchestrator import ImportService
from crm_app.domain.imports.progress_hub import ProgressHub

progress_hub = ProgressHub()

_import_service: Optional[ImportService] = None
_service_lock = threading.Lock()


def build_import_service(store, hub: ProgressHub) -> ImportService:
    """Wire a service whose job writes are pushed through ``hub``."""
    snapshots = JobSnapshotStore(store, listeners=[hub.publish])
    return ImportService(store, snapshots)


def get_import_service() -> ImportService:
    global _import_service
    if _import_service is None:
        with _service_lock:
            if _import_service is None:
                _import_service = build_import_service(SqlEntityStore(get_engine()), progress_hub)
    return _import_service


def get_progress_hub() -> ProgressHub:
    return progress_hub


def ensure_csv_filename(filename: Optional[str]) -> str:
    """
    Validate an uploaded file name.

    Raises:
    - HTTPException: If the name is missing or not a .csv file
    """
    if not filename:
        raise HTTPException(status_code=400, detail="No file provided")
    if not filename.lower().endswith(".csv"):
        raise HTTPException(status_code=400, detail="Unsupported file type; only .csv files can be imported")
    return filename
