from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator


class EntityTypeName(str, Enum):
    CONTACT = "contact"
    COMPANY = "company"


class RowErrorInfo(BaseModel):
    row: int
    message: str


class ImportJobInfo(BaseModel):
    """Persisted snapshot of an import job."""
    id: str
    filename: str
    entity_type: EntityTypeName = EntityTypeName.CONTACT
    status: str
    total_rows: int = 0
    processed_rows: int = 0
    successful_rows: int = 0
    error_rows: int = 0
    duplicate_rows: int = 0
    updated_rows: int = 0
    field_mapping: Dict[str, str] = Field(default_factory=dict)
    options: Dict[str, Any] = Field(default_factory=dict)
    errors: List[RowErrorInfo] = Field(default_factory=list)
    message: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class ImportJobResponse(BaseModel):
    """Response wrapper for a single import job."""
    success: bool
    job: ImportJobInfo


class ImportJobListResponse(BaseModel):
    """Response wrapper for a list of import jobs."""
    success: bool
    jobs: List[ImportJobInfo]
    total_count: int
    limit: int
    offset: int


class StartImportResponse(BaseModel):
    success: bool
    job_id: str
    status: str
    message: str


class AutoMapRequest(BaseModel):
    headers: List[str]
    entity_type: EntityTypeName = EntityTypeName.CONTACT

    @field_validator("headers")
    @classmethod
    def strip_headers(cls, value: List[str]) -> List[str]:
        return [header.strip() for header in value]


class AutoMapResponse(BaseModel):
    success: bool
    mapping: Dict[str, str]
    confidence: Dict[str, float]
    suggestions: Dict[str, List[str]]


class AutoMapFileResponse(AutoMapResponse):
    headers: List[str]
    preview: List[Dict[str, Any]]
    total_rows: int


class FieldInfo(BaseModel):
    value: str
    label: str
    category: str


class AvailableFieldsResponse(BaseModel):
    success: bool
    entity_type: EntityTypeName
    fields: List[FieldInfo]
