"""
ORM models for the CRM entities touched by the import pipeline.

Column types stay portable (JSON instead of JSONB/ARRAY) so the same models run
on PostgreSQL in production and SQLite in the test suite.
"""
import uuid
from datetime import datetime, timezone
from typing import Any, Dict

from sqlalchemy import JSON, Column, DateTime, Float, Index, Integer, String, Text
from sqlalchemy.engine import Engine

from crm_app.db.session import Base


def _utcnow() -> datetime:
    """Return a timezone-aware UTC timestamp."""
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


class _EntityMixin:
    id = Column(String(36), primary_key=True, default=_new_id)
    created_at = Column(DateTime(timezone=True), default=_utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {column.name: getattr(self, column.name) for column in self.__table__.columns}


class Contact(_EntityMixin, Base):
    """A person record (prospect/contact)."""
    __tablename__ = "contacts"

    full_name = Column(Text)
    first_name = Column(Text)
    last_name = Column(Text)
    title = Column(Text)
    email = Column(String(254), index=True)

    mobile_phone = Column(String(32))
    other_phone = Column(String(32))
    home_phone = Column(String(32))
    corporate_phone = Column(String(32))

    company = Column(Text)
    employees = Column(Integer)
    employee_size_bracket = Column(Text)
    industry = Column(Text)
    website = Column(Text)
    company_linkedin = Column(Text)
    technologies = Column(JSON)
    annual_revenue = Column(Float)

    person_linkedin = Column(Text)

    city = Column(Text)
    state = Column(Text)
    country = Column(Text)
    company_address = Column(Text)
    company_city = Column(Text)
    company_state = Column(Text)
    company_country = Column(Text)

    # Filled by auto-enrichment
    email_domain = Column(Text)
    country_code = Column(String(8))
    timezone = Column(Text)
    region = Column(String(16))
    business_type = Column(String(16))
    technology_category = Column(Text)
    lead_score = Column(Float)


class Company(_EntityMixin, Base):
    """An organization record; matched by domain first, then by name."""
    __tablename__ = "companies"

    name = Column(Text, nullable=False)
    website = Column(Text)
    linkedin_url = Column(Text)
    domains = Column(JSON)

    industry = Column(Text)
    employees = Column(Integer)
    employee_size_bracket = Column(Text)
    short_description = Column(Text)
    keywords = Column(Text)
    business_type = Column(Text)

    phone = Column(String(32))

    street = Column(Text)
    city = Column(Text)
    state = Column(Text)
    country = Column(Text)
    postal_code = Column(String(32))
    address = Column(Text)

    technologies = Column(JSON)
    sic_codes = Column(Text)
    naics_codes = Column(Text)

    annual_revenue = Column(Text)
    total_funding = Column(Text)
    latest_funding = Column(Text)
    latest_funding_amount = Column(Text)
    last_raised_at = Column(Text)

    retail_locations = Column(Integer)
    founded_year = Column(Integer)


class ImportJob(Base):
    """One row per uploaded file; the persisted progress snapshot of a run."""
    __tablename__ = "import_jobs"

    id = Column(String(36), primary_key=True, default=_new_id)
    filename = Column(Text, nullable=False)
    entity_type = Column(String(16), nullable=False, default="contact")
    status = Column(String(16), nullable=False, default="pending")
    total_rows = Column(Integer, default=0)
    processed_rows = Column(Integer, default=0)
    successful_rows = Column(Integer, default=0)
    error_rows = Column(Integer, default=0)
    duplicate_rows = Column(Integer, default=0)
    updated_rows = Column(Integer, default=0)
    field_mapping = Column(JSON)
    options = Column(JSON)
    errors = Column(JSON)
    message = Column(Text)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)
    completed_at = Column(DateTime(timezone=True))

    __table_args__ = (
        Index("import_jobs_status_idx", "status"),
        Index("import_jobs_created_at_idx", "created_at"),
    )


ENTITY_MODELS = {
    "contact": Contact,
    "company": Company,
}


def create_crm_tables(engine: Engine) -> None:
    """Create the contacts, companies and import_jobs tables if missing."""
    Base.metadata.create_all(engine)
