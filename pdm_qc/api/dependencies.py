"""
pdm_qc/api/dependencies.py

Shared FastAPI dependencies for request validation.
"""

from __future__ import annotations

from fastapi import BackgroundTasks, File, HTTPException, UploadFile, status

from pdm_qc.services.ai_review_service import FastAPIBackgroundTaskExecutor
from pdm_qc.services.sheet_ingestion_service import SUPPORTED_EXTENSIONS

SPREADSHEET_CONTENT_TYPES = {
    "text/csv",
    "application/csv",
    "application/vnd.ms-excel",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
}


def validate_spreadsheet_upload(file: UploadFile) -> UploadFile:
    """
    Validate that the uploaded file is a CSV/XLSX by extension or MIME type.
    """

    filename = (file.filename or "").strip().lower()
    content_type = (file.content_type or "").strip().lower()

    is_spreadsheet_filename = filename.endswith(tuple(SUPPORTED_EXTENSIONS))
    is_spreadsheet_content_type = content_type in SPREADSHEET_CONTENT_TYPES

    if not is_spreadsheet_filename and not is_spreadsheet_content_type:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Only CSV or XLSX files are allowed.",
        )

    return file


def get_afterproof_upload(afterproof: UploadFile = File(...)) -> UploadFile:
    return validate_spreadsheet_upload(afterproof)


def get_pdm_library_upload(pdm_library: UploadFile | None = File(default=None)) -> UploadFile | None:
    if pdm_library is None:
        return None
    return validate_spreadsheet_upload(pdm_library)


def get_beforeproof_upload(beforeproof: UploadFile | None = File(default=None)) -> UploadFile | None:
    if beforeproof is None:
        return None
    return validate_spreadsheet_upload(beforeproof)


def get_review_task_executor(background_tasks: BackgroundTasks) -> FastAPIBackgroundTaskExecutor:
    return FastAPIBackgroundTaskExecutor(background_tasks)
