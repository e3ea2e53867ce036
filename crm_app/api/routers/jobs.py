"""
Endpoints for tracking import job progress.
"""
from fastapi import APIRouter, Depends, Query

from crm_app.api.dependencies import get_import_service
from crm_app.api.schemas.shared import ImportJobListResponse
from crm_app.domain.imports.orchestrator import ImportService

router = APIRouter(prefix="/api", tags=["import-jobs"])


@router.get("/import-jobs", response_model=ImportJobListResponse)
async def list_import_jobs_endpoint(
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    service: ImportService = Depends(get_import_service),
):
    jobs, total = service.list_jobs(limit=limit, offset=offset)
    return ImportJobListResponse(
        success=True,
        jobs=jobs,
        total_count=total,
        limit=limit,
        offset=offset,
    )
