"""
app/api/routers/datasets.py

Dataset lifecycle and CSV upload endpoints.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, UploadFile, status
from sqlalchemy.orm import Session

from app.api.dependencies import get_csv_upload, get_owner_id, http_error_for
from app.errors import PipelineError
from app.schemas.uploads import (
    ColumnResponse,
    DatasetCreateRequest,
    DatasetDeletedResponse,
    DatasetListResponse,
    DatasetResponse,
    UploadResultResponse,
)
from app.services.ingestion_service import IngestionService, get_ingestion_service
from db.models.dataset import Dataset
from db.session import get_db

router = APIRouter(tags=["datasets"])


def _to_dataset_response(dataset: Dataset) -> DatasetResponse:
    return DatasetResponse(
        dataset_id=dataset.id,
        name=dataset.name,
        created_at=dataset.created_at,
        updated_at=dataset.updated_at,
    )


@router.post("/datasets", status_code=status.HTTP_201_CREATED, response_model=DatasetResponse)
def create_dataset(
    body: DatasetCreateRequest,
    owner_id: int = Depends(get_owner_id),
    db: Session = Depends(get_db),
    service: IngestionService = Depends(get_ingestion_service),
) -> DatasetResponse:
    try:
        dataset = service.create_dataset(db=db, owner_id=owner_id, name=body.name)
    except PipelineError as exc:
        raise http_error_for(exc) from exc
    return _to_dataset_response(dataset)


@router.get("/datasets", response_model=DatasetListResponse)
def list_datasets(
    owner_id: int = Depends(get_owner_id),
    db: Session = Depends(get_db),
    service: IngestionService = Depends(get_ingestion_service),
) -> DatasetListResponse:
    datasets = service.list_datasets(db=db, owner_id=owner_id)
    return DatasetListResponse(datasets=[_to_dataset_response(dataset) for dataset in datasets])


@router.delete("/datasets/{dataset_id}", response_model=DatasetDeletedResponse)
def delete_dataset(
    dataset_id: int,
    owner_id: int = Depends(get_owner_id),
    db: Session = Depends(get_db),
    service: IngestionService = Depends(get_ingestion_service),
) -> DatasetDeletedResponse:
    try:
        result = service.delete_dataset(db=db, owner_id=owner_id, dataset_id=dataset_id)
    except PipelineError as exc:
        raise http_error_for(exc) from exc
    return DatasetDeletedResponse(dataset_id=result.dataset_id, cache_invalidated=result.cache_invalidation.ok)


@router.post(
    "/datasets/{dataset_id}/uploads",
    status_code=status.HTTP_201_CREATED,
    response_model=UploadResultResponse,
)
def upload_csv(
    dataset_id: int,
    file: UploadFile = Depends(get_csv_upload),
    owner_id: int = Depends(get_owner_id),
    db: Session = Depends(get_db),
    service: IngestionService = Depends(get_ingestion_service),
) -> UploadResultResponse:
    """
    Store one CSV file as a new Pending batch of the dataset.
    """

    try:
        result = service.upload_csv(
            db=db,
            owner_id=owner_id,
            dataset_id=dataset_id,
            file_name=file.filename or "upload.csv",
            stream=file.file,
        )
    except PipelineError as exc:
        raise http_error_for(exc) from exc
    finally:
        file.file.close()

    return UploadResultResponse(
        batch_id=result.batch_id,
        dataset_id=result.dataset_id,
        source_filename=result.source_filename,
        status=result.status,
        total_rows=result.total_rows,
        inserted_rows=result.inserted_rows,
        row_count_mismatch=result.row_count_mismatch,
        columns=[
            ColumnResponse(
                source_name=column.source_name,
                data_type=column.data_type,
                sample_value=column.sample_value,
            )
            for column in result.columns
        ],
    )
