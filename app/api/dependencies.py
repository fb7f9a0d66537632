"""
app/api/dependencies.py

Shared FastAPI dependencies for request identity, upload validation and
domain-error translation.
"""

from __future__ import annotations

from fastapi import File, Header, HTTPException, UploadFile, status

from app.errors import (
    IngestionCancelledError,
    InputValidationError,
    MappingValidationError,
    NotFoundError,
    PipelineError,
    QuotaExceededError,
    TransientInfrastructureError,
)

CSV_CONTENT_TYPES = {
    "text/csv",
    "application/csv",
    "application/vnd.ms-excel",
}


def get_owner_id(x_owner_id: int = Header(..., alias="X-Owner-Id", gt=0)) -> int:
    """
    Resolve the calling owner. Identity is established upstream and passed
    in the ``X-Owner-Id`` header.
    """

    return x_owner_id


def get_csv_upload(file: UploadFile = File(...)) -> UploadFile:
    """
    Validate that the uploaded file is a CSV by extension or MIME type.
    """

    filename = (file.filename or "").strip().lower()
    content_type = (file.content_type or "").strip().lower()

    is_csv_filename = filename.endswith(".csv")
    is_csv_content_type = content_type in CSV_CONTENT_TYPES

    if not is_csv_filename and not is_csv_content_type:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Only CSV files are allowed.",
        )

    return file


def http_error_for(exc: PipelineError) -> HTTPException:
    """
    Translate a domain error into the HTTP error the API reports.
    """

    if isinstance(exc, MappingValidationError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.to_dict())
    if isinstance(exc, QuotaExceededError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    if isinstance(exc, InputValidationError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, IngestionCancelledError):
        return HTTPException(status_code=499, detail=str(exc))
    if isinstance(exc, TransientInfrastructureError):
        return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Pipeline operation failed.")
