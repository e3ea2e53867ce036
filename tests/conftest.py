"""
Pytest configuration and fixtures for the CRM import tests.

Every test gets its own file-backed SQLite database under ``tmp_path`` so
worker threads (snapshot writer, update pool) share one database without any
external service.
"""

import csv
import os

# The app lifespan must not touch the configured production database.
os.environ.setdefault("SKIP_DB_INIT", "1")

import pytest

from crm_app.api.dependencies import build_import_service
from crm_app.core.config import settings
from crm_app.db.session import build_engine
from crm_app.db.store import SqlEntityStore
from crm_app.domain.imports.progress_hub import ProgressHub


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'crm.db'}")
    yield engine
    engine.dispose()


@pytest.fixture
def store(engine):
    store = SqlEntityStore(engine)
    store.ensure_tables()
    return store


@pytest.fixture
def hub():
    hub = ProgressHub(throttle_ms=0, linger_seconds=0)
    yield hub
    hub.close()


@pytest.fixture
def service(store, hub):
    return build_import_service(store, hub)


@pytest.fixture(autouse=True)
def upload_dir(tmp_path, monkeypatch):
    path = tmp_path / "uploads"
    path.mkdir()
    monkeypatch.setattr(settings, "upload_dir", str(path))
    return path


@pytest.fixture
def write_csv(tmp_path):
    """Factory: write rows (first row = header) to a CSV file and return its path."""
    counter = {"n": 0}

    def _write(rows, name=None):
        counter["n"] += 1
        path = tmp_path / (name or f"upload-{counter['n']}.csv")
        with open(path, "w", newline="", encoding="utf-8") as handle:
            csv.writer(handle).writerows(rows)
        return str(path)

    return _write


@pytest.fixture
def client(service, hub):
    from fastapi.testclient import TestClient

    from crm_app.api.dependencies import get_import_service, get_progress_hub
    from crm_app.main import app

    app.dependency_overrides[get_import_service] = lambda: service
    app.dependency_overrides[get_progress_hub] = lambda: hub
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
