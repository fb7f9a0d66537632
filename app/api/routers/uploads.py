"""
app/api/routers/uploads.py

Upload history, column mapping and batch deletion endpoints.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.api.dependencies import get_owner_id, http_error_for
from app.errors import PipelineError
from app.schemas.uploads import (
    BatchDeletedResponse,
    ColumnMappingInfoResponse,
    ColumnResponse,
    MappingResultResponse,
    MappingSubmissionRequest,
    SystemFieldInfo,
    UploadHistoryItem,
    UploadHistoryResponse,
)
from app.services.ingestion_service import IngestionService, get_ingestion_service
from app.validators.mapping_validator import MappingEntry
from db.repositories.types import ColumnWithMapping
from db.session import get_db

router = APIRouter(prefix="/uploads", tags=["uploads"])


def _to_column_response(column: ColumnWithMapping) -> ColumnResponse:
    return ColumnResponse(
        source_name=column.source_name,
        data_type=column.data_type,
        sample_value=column.sample_value,
        system_field=column.system_field,
    )


@router.get("/history", response_model=UploadHistoryResponse)
def get_upload_history(
    dataset_id: int | None = Query(default=None, description="Restrict history to one dataset"),
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    owner_id: int = Depends(get_owner_id),
    db: Session = Depends(get_db),
    service: IngestionService = Depends(get_ingestion_service),
) -> UploadHistoryResponse:
    records = service.get_upload_history(
        db=db,
        owner_id=owner_id,
        dataset_id=dataset_id,
        limit=limit,
        offset=offset,
    )
    return UploadHistoryResponse(
        items=[
            UploadHistoryItem(
                batch_id=record.batch_id,
                dataset_id=record.dataset_id,
                dataset_name=record.dataset_name,
                source_filename=record.source_filename,
                total_rows=record.total_rows,
                status=record.status,
                error_message=record.error_message,
                created_at=record.created_at,
                updated_at=record.updated_at,
                columns=[_to_column_response(column) for column in record.columns],
            )
            for record in records
        ],
        limit=limit,
        offset=offset,
    )


@router.get("/{batch_id}/columns", response_model=ColumnMappingInfoResponse)
def get_column_mapping_info(
    batch_id: int,
    owner_id: int = Depends(get_owner_id),
    db: Session = Depends(get_db),
    service: IngestionService = Depends(get_ingestion_service),
) -> ColumnMappingInfoResponse:
    try:
        info = service.get_column_mapping_info(db=db, owner_id=owner_id, batch_id=batch_id)
    except PipelineError as exc:
        raise http_error_for(exc) from exc

    return ColumnMappingInfoResponse(
        batch_id=info.batch_id,
        dataset_id=info.dataset_id,
        status=info.status,
        system_fields=[SystemFieldInfo(name=name, expected_type=data_type) for name, data_type in info.system_fields],
        columns=[_to_column_response(column) for column in info.columns],
    )


@router.put("/{batch_id}/mappings", response_model=MappingResultResponse)
def upsert_mappings(
    batch_id: int,
    body: MappingSubmissionRequest,
    owner_id: int = Depends(get_owner_id),
    db: Session = Depends(get_db),
    service: IngestionService = Depends(get_ingestion_service),
) -> MappingResultResponse:
    """
    Validate and apply a mapping; materialization is queued after commit.
    """

    entries = [MappingEntry(source_column=item.source_column, system_field=item.system_field) for item in body.mappings]
    try:
        result = service.upsert_mappings(db=db, batch_id=batch_id, entries=entries, owner_id=owner_id)
    except PipelineError as exc:
        raise http_error_for(exc) from exc

    return MappingResultResponse(
        batch_id=result.batch_id,
        dataset_id=result.dataset_id,
        status=result.status,
        mapped=result.mapped,
        removed=list(result.removed),
        job_id=result.job_id,
    )


@router.delete("/{batch_id}", response_model=BatchDeletedResponse)
def delete_batch(
    batch_id: int,
    owner_id: int = Depends(get_owner_id),
    db: Session = Depends(get_db),
    service: IngestionService = Depends(get_ingestion_service),
) -> BatchDeletedResponse:
    try:
        result = service.delete_batch(db=db, owner_id=owner_id, batch_id=batch_id)
    except PipelineError as exc:
        raise http_error_for(exc) from exc
    return BatchDeletedResponse(batch_id=result.batch_id, dataset_id=result.dataset_id, job_id=result.job_id)
