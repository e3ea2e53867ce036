"""
CSV import endpoints: upload + start, header auto-mapping and job status.
"""
import json
import logging
import os
import tempfile
from typing import Dict, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, HTTPException, UploadFile

from crm_app.api.dependencies import ensure_csv_filename, get_import_service
from crm_app.api.schemas.shared import (
    AutoMapFileResponse,
    AutoMapRequest,
    AutoMapResponse,
    AvailableFieldsResponse,
    EntityTypeName,
    ImportJobResponse,
    StartImportResponse,
)
from crm_app.core.config import settings
from crm_app.domain.imports.batch_processor import ImportOptions
from crm_app.domain.imports.errors import ImportJobNotFound, SourceFileError
from crm_app.domain.imports.orchestrator import ImportService

router = APIRouter(prefix="/api", tags=["imports"])

logger = logging.getLogger(__name__)

UPLOAD_CHUNK_BYTES = 1024 * 1024


async def save_upload(file: UploadFile) -> str:
    """Stream an upload into ``settings.upload_dir`` and return the temp path."""
    ensure_csv_filename(file.filename)
    os.makedirs(settings.upload_dir, exist_ok=True)
    max_bytes = settings.upload_max_file_size_mb * 1024 * 1024

    handle = tempfile.NamedTemporaryFile(
        mode="wb", dir=settings.upload_dir, prefix="import-", suffix=".csv", delete=False
    )
    written = 0
    try:
        with handle:
            while True:
                chunk = await file.read(UPLOAD_CHUNK_BYTES)
                if not chunk:
                    break
                written += len(chunk)
                if written > max_bytes:
                    raise HTTPException(
                        status_code=413,
                        detail=f"File exceeds the {settings.upload_max_file_size_mb} MB upload limit",
                    )
                handle.write(chunk)
    except BaseException:
        os.remove(handle.name)
        raise

    logger.info(f"Stored upload '{file.filename}' ({written} bytes) at {handle.name}")
    return handle.name


def _parse_field_mapping(field_mapping: Optional[str]) -> Optional[Dict[str, Optional[str]]]:
    if not field_mapping:
        return None
    try:
        parsed = json.loads(field_mapping)
    except json.JSONDecodeError as e:
        raise HTTPException(status_code=400, detail=f"field_mapping is not valid JSON: {e}")
    if not isinstance(parsed, dict):
        raise HTTPException(status_code=400, detail="field_mapping must be a JSON object of header -> field")
    return parsed


@router.post("/import", response_model=StartImportResponse, status_code=202)
async def start_import_endpoint(
    background_tasks: BackgroundTasks,
    file: UploadFile = File(...),
    field_mapping: Optional[str] = Form(None),
    entity_type: EntityTypeName = Form(EntityTypeName.CONTACT),
    skip_duplicates: bool = Form(True),
    update_existing: bool = Form(False),
    auto_enrich: bool = Form(False),
    batch_size: Optional[int] = Form(None),
    service: ImportService = Depends(get_import_service),
):
    """
    Upload a CSV and start an import job in the background.

    Parameters:
    - file: The CSV file to import
    - field_mapping: Optional JSON object of header -> canonical field (auto-mapped when omitted)
    - entity_type: "contact" or "company"
    - skip_duplicates / update_existing / auto_enrich / batch_size: import options

    Returns:
    - The job id; poll GET /api/import/{job_id} or subscribe on /ws/import-progress
    """
    mapping = _parse_field_mapping(field_mapping)
    try:
        options = ImportOptions(
            entity_type=entity_type.value,
            skip_duplicates=skip_duplicates,
            update_existing=update_existing,
            auto_enrich=auto_enrich,
            batch_size=batch_size or settings.import_batch_size,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    path = await save_upload(file)
    try:
        job = service.start_import(path, file.filename, field_mapping=mapping, options=options)
    except SourceFileError as e:
        os.remove(path)
        logger.warning(f"Rejected upload '{file.filename}': {e}")
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        os.remove(path)
        logger.exception(f"Could not start import for '{file.filename}': {e}")
        raise HTTPException(status_code=500, detail=str(e))

    background_tasks.add_task(service.run_import, job["id"], path)

    return StartImportResponse(
        success=True,
        job_id=job["id"],
        status=job["status"],
        message="Import started",
    )


@router.post("/import/auto-map", response_model=AutoMapResponse)
async def auto_map_endpoint(
    request: AutoMapRequest,
    service: ImportService = Depends(get_import_service),
):
    """Suggest a header -> field mapping for a list of CSV headers."""
    result = service.get_auto_mapping(request.headers, request.entity_type.value)
    return AutoMapResponse(success=True, **result.to_dict())


@router.post("/import/auto-map/file", response_model=AutoMapFileResponse)
async def auto_map_file_endpoint(
    file: UploadFile = File(...),
    entity_type: EntityTypeName = Form(EntityTypeName.CONTACT),
    service: ImportService = Depends(get_import_service),
):
    """
    Read the headers of an uploaded CSV and suggest a mapping.

    Returns the headers, mapping, confidence, suggestions, a three-row preview
    and the number of data rows. The upload is not kept.
    """
    path = await save_upload(file)
    try:
        result = service.auto_map_file(path, entity_type.value)
    except SourceFileError as e:
        raise HTTPException(status_code=400, detail=str(e))
    finally:
        os.remove(path)
    return AutoMapFileResponse(success=True, **result)


@router.get("/import/fields/{entity_type}", response_model=AvailableFieldsResponse)
async def available_fields_endpoint(
    entity_type: EntityTypeName,
    service: ImportService = Depends(get_import_service),
):
    return AvailableFieldsResponse(
        success=True,
        entity_type=entity_type,
        fields=service.available_fields(entity_type.value),
    )


@router.get("/import/{job_id}", response_model=ImportJobResponse)
async def get_import_status_endpoint(
    job_id: str,
    service: ImportService = Depends(get_import_service),
):
    """Persisted job snapshot; the authority of record for progress."""
    try:
        job = service.get_job_status(job_id)
    except ImportJobNotFound:
        raise HTTPException(status_code=404, detail="Job not found")
    return ImportJobResponse(success=True, job=job)
