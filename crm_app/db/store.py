"""
SQLAlchemy-backed entity store used by the import pipeline.

The pipeline only talks to this narrow contract: recent-entity preload, batched
duplicate lookups, bulk/single inserts, field patches and import job records.
"""
from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import String, cast, func, or_, select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from crm_app.db.models import ENTITY_MODELS, Company, Contact, ImportJob, create_crm_tables
from crm_app.utils.domains import extract_domain

logger = logging.getLogger(__name__)

# Keeps IN (...) / OR lists at a size every backend accepts.
LOOKUP_CHUNK_SIZE = 200

_JOB_FIELDS = (
    "filename",
    "entity_type",
    "status",
    "total_rows",
    "processed_rows",
    "successful_rows",
    "error_rows",
    "duplicate_rows",
    "updated_rows",
    "field_mapping",
    "options",
    "errors",
    "message",
    "completed_at",
)


def _chunks(values: Sequence[str], size: int = LOOKUP_CHUNK_SIZE) -> Iterable[Sequence[str]]:
    for start in range(0, len(values), size):
        yield values[start:start + size]


def _unique_lower(values: Iterable[Optional[str]]) -> List[str]:
    seen: Dict[str, None] = {}
    for value in values:
        if value:
            seen.setdefault(value.strip().lower(), None)
    return [value for value in seen if value]


def _job_to_dict(job: ImportJob) -> Dict[str, Any]:
    return {
        "id": job.id,
        "filename": job.filename,
        "entity_type": job.entity_type,
        "status": job.status,
        "total_rows": job.total_rows or 0,
        "processed_rows": job.processed_rows or 0,
        "successful_rows": job.successful_rows or 0,
        "error_rows": job.error_rows or 0,
        "duplicate_rows": job.duplicate_rows or 0,
        "updated_rows": job.updated_rows or 0,
        "field_mapping": job.field_mapping or {},
        "options": job.options or {},
        "errors": job.errors or [],
        "message": job.message,
        "created_at": job.created_at,
        "updated_at": job.updated_at,
        "completed_at": job.completed_at,
    }


class SqlEntityStore:
    """Entity and import-job persistence on top of a SQLAlchemy engine."""

    def __init__(self, engine: Engine):
        self.engine = engine
        self._tables_ready = False
        self._tables_lock = threading.Lock()

    # ------------------------------------------------------------------ schema
    def ensure_tables(self) -> None:
        """Create the CRM tables on first use."""
        if self._tables_ready:
            return
        with self._tables_lock:
            if self._tables_ready:
                return
            create_crm_tables(self.engine)
            self._tables_ready = True

    def _session(self) -> Session:
        self.ensure_tables()
        return Session(self.engine, expire_on_commit=False)

    @staticmethod
    def _model(kind: str):
        try:
            return ENTITY_MODELS[kind]
        except KeyError:
            raise ValueError(f"Unknown entity kind: {kind}") from None

    @staticmethod
    def _column_values(model, record: Dict[str, Any]) -> Dict[str, Any]:
        columns = model.__table__.columns.keys()
        return {key: value for key, value in record.items() if key in columns}

    # ---------------------------------------------------------------- entities
    def list_recent(self, kind: str, limit: int) -> List[Dict[str, Any]]:
        model = self._model(kind)
        with self._session() as session:
            rows = session.scalars(
                select(model).order_by(model.created_at.desc()).limit(limit)
            ).all()
            return [row.to_dict() for row in rows]

    def bulk_insert(self, kind: str, records: List[Dict[str, Any]]) -> List[str]:
        """Insert ``records`` in one transaction and return their ids in order."""
        if not records:
            return []
        model = self._model(kind)
        with self._session() as session:
            with session.begin():
                entities = [model(**self._column_values(model, record)) for record in records]
                session.add_all(entities)
                session.flush()
                return [entity.id for entity in entities]

    def insert(self, kind: str, record: Dict[str, Any]) -> str:
        model = self._model(kind)
        with self._session() as session:
            with session.begin():
                entity = model(**self._column_values(model, record))
                session.add(entity)
                session.flush()
                return entity.id

    def update(self, kind: str, entity_id: str, patch: Dict[str, Any]) -> bool:
        """Apply ``patch`` to one entity. Returns False when the entity is gone."""
        model = self._model(kind)
        values = self._column_values(model, patch)
        with self._session() as session:
            with session.begin():
                entity = session.get(model, entity_id)
                if entity is None:
                    return False
                for key, value in values.items():
                    setattr(entity, key, value)
                return True

    def find_contacts_by_emails(self, emails: Iterable[str]) -> List[Dict[str, Any]]:
        wanted = _unique_lower(emails)
        found: List[Dict[str, Any]] = []
        if not wanted:
            return found
        with self._session() as session:
            for chunk in _chunks(wanted):
                rows = session.scalars(
                    select(Contact).where(func.lower(Contact.email).in_(chunk))
                ).all()
                found.extend(row.to_dict() for row in rows)
        return found

    def find_companies_by_names(self, names: Iterable[str]) -> List[Dict[str, Any]]:
        wanted = _unique_lower(names)
        found: List[Dict[str, Any]] = []
        if not wanted:
            return found
        with self._session() as session:
            for chunk in _chunks(wanted):
                rows = session.scalars(
                    select(Company).where(func.lower(Company.name).in_(chunk))
                ).all()
                found.extend(row.to_dict() for row in rows)
        return found

    def find_companies_by_domains(self, domains: Iterable[str]) -> List[Dict[str, Any]]:
        """
        Find companies whose domain list or website mentions any of ``domains``.

        The JSON column is matched textually so the query stays portable; the
        candidates are then filtered on exact domain equality.
        """
        wanted = _unique_lower(domains)
        found: Dict[str, Dict[str, Any]] = {}
        if not wanted:
            return []
        wanted_set = set(wanted)
        domains_text = func.lower(cast(Company.domains, String))
        with self._session() as session:
            for chunk in _chunks(wanted):
                clauses = []
                for domain in chunk:
                    clauses.append(domains_text.like(f'%"{domain}"%'))
                    clauses.append(func.lower(Company.website).like(f"%{domain}%"))
                rows = session.scalars(select(Company).where(or_(*clauses))).all()
                for row in rows:
                    data = row.to_dict()
                    if _company_domains(data) & wanted_set:
                        found[row.id] = data
        return list(found.values())

    # ------------------------------------------------------------- import jobs
    def create_import_job(
        self,
        *,
        filename: str,
        entity_type: str,
        field_mapping: Optional[Dict[str, str]] = None,
        options: Optional[Dict[str, Any]] = None,
        total_rows: int = 0,
    ) -> Dict[str, Any]:
        with self._session() as session:
            with session.begin():
                job = ImportJob(
                    filename=filename,
                    entity_type=entity_type,
                    status="pending",
                    total_rows=total_rows,
                    processed_rows=0,
                    successful_rows=0,
                    error_rows=0,
                    duplicate_rows=0,
                    updated_rows=0,
                    field_mapping=field_mapping or {},
                    options=options or {},
                    errors=[],
                )
                session.add(job)
                session.flush()
                return _job_to_dict(job)

    def update_import_job(self, job_id: str, **fields: Any) -> Optional[Dict[str, Any]]:
        unknown = set(fields) - set(_JOB_FIELDS)
        if unknown:
            raise ValueError(f"Unknown import job fields: {sorted(unknown)}")
        with self._session() as session:
            with session.begin():
                job = session.get(ImportJob, job_id)
                if job is None:
                    return None
                for key, value in fields.items():
                    setattr(job, key, value)
                job.updated_at = datetime.now(timezone.utc)
                session.flush()
                return _job_to_dict(job)

    def get_import_job(self, job_id: str) -> Optional[Dict[str, Any]]:
        with self._session() as session:
            job = session.get(ImportJob, job_id)
            return _job_to_dict(job) if job is not None else None

    def list_import_jobs(self, *, limit: int = 50, offset: int = 0) -> Tuple[List[Dict[str, Any]], int]:
        with self._session() as session:
            total = session.scalar(select(func.count()).select_from(ImportJob)) or 0
            rows = session.scalars(
                select(ImportJob).order_by(ImportJob.created_at.desc()).limit(limit).offset(offset)
            ).all()
            return [_job_to_dict(row) for row in rows], total


def _company_domains(data: Dict[str, Any]) -> set:
    domains = {str(domain).lower() for domain in (data.get("domains") or []) if domain}
    website_domain = extract_domain(data.get("website"))
    if website_domain:
        domains.add(website_domain)
    return domains
