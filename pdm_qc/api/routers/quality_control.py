"""
pdm_qc/api/routers/quality_control.py

Quality-control HTTP endpoints.

POST /qc/classifications          JSON row tables -> canonical rows
POST /qc/classifications/upload   CSV/XLSX uploads -> canonical rows
POST /qc/report                   canonical rows -> grouped, validated report
POST /qc/export                   canonical rows -> .xlsx download
GET  /qc/config                   effective non-secret settings
POST /qc/ai-validate              synchronous AI text review
POST /qc/ai-validate/start        background AI text review
GET  /qc/ai-validate/status/{id}  background review progress

All pipeline logic lives in the services; the router only handles HTTP
plumbing (boundary validation, serialisation, error mapping).
"""

from __future__ import annotations

import logging
from collections.abc import Iterator

from fastapi import APIRouter, Depends, HTTPException, UploadFile, status
from fastapi.responses import JSONResponse, StreamingResponse

from pdm_qc.api.dependencies import (
    get_afterproof_upload,
    get_beforeproof_upload,
    get_pdm_library_upload,
    get_review_task_executor,
)
from pdm_qc.config import (
    AIReviewSettings,
    QCExportSettings,
    QCIngestionSettings,
    QCValidationSettings,
    get_ai_review_settings,
    get_qc_export_settings,
    get_qc_ingestion_settings,
    get_qc_validation_settings,
)
from pdm_qc.domain.report import Report
from pdm_qc.domain.rows import HEADING_TABLE_WIDTH, PDM_LIBRARY_TABLE_WIDTH, CanonicalRow
from pdm_qc.schemas.quality_control import (
    AccountDetailsPayload,
    AIValidateRequest,
    AIValidateResponse,
    AIValidateStartRequest,
    AIValidateStartResponse,
    AIValidateStatusResponse,
    ClassificationsRequest,
    ClassificationsResponse,
    DeletedHeadingResponse,
    ExceptionHeadingResponse,
    ExportRequest,
    HeadingSummaryResponse,
    NoPdmHeadingResponse,
    PdmGroupResponse,
    QCConfigResponse,
    ReportRequest,
    ReportResponse,
    ReportSummaryResponse,
    ValidationResultResponse,
)
from pdm_qc.services.ai_review_service import (
    AIReviewJobService,
    AIReviewService,
    FastAPIBackgroundTaskExecutor,
    get_ai_review_job_service,
    get_ai_review_service,
)
from pdm_qc.services.classification_service import ClassificationService, get_classification_service
from pdm_qc.services.export_service import (
    AccountDetails,
    ExportArtifact,
    ExportService,
    QCExportError,
    get_export_service,
)
from pdm_qc.services.report_service import ReportService, get_report_service
from pdm_qc.services.sheet_ingestion_service import (
    SheetIngestionService,
    SheetReadError,
    get_sheet_ingestion_service,
)
from pdm_qc.validators.row_validator import (
    QCRowTableValidator,
    RowTableValidationError,
    get_row_table_validator,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/qc", tags=["quality-control"])


# ---------------------------------------------------------------------------
# Serialisation helpers (no business logic)
# ---------------------------------------------------------------------------


def _report_response(report: Report) -> ReportResponse:
    summary = report.summary
    return ReportResponse(
        pdm_groups={
            pdm_number: PdmGroupResponse(
                headings=[
                    HeadingSummaryResponse(
                        name=heading.name,
                        type=heading.type,
                        url=heading.url,
                        family=heading.family,
                        company_type=heading.company_type,
                        quality=heading.quality,
                    )
                    for heading in group.headings
                ],
                assigned_urls=list(group.assigned_urls),
                families=list(group.families),
                pdm_text=group.pdm_text,
                pdm_text_status=group.pdm_text_status.value,
                word_count=group.word_count,
                display_common_family=group.display_common_family,
                display_company_type=group.display_company_type,
                display_quality=group.display_quality,
                word_count_warning=group.word_count_warning,
            )
            for pdm_number, group in report.pdm_groups.items()
        },
        validation_results=[
            ValidationResultResponse(pdm_number=result.pdm_number, errors=list(result.errors))
            for result in report.validation_results
        ],
        summary=ReportSummaryResponse(
            total_grouped_pdms=summary.total_grouped_pdms,
            total_existing_headings=summary.total_existing_headings,
            unique_existing_links=summary.unique_existing_links,
            total_added_headings=summary.total_added_headings,
            unique_added_links=summary.unique_added_links,
            total_unsupported_headings=summary.total_unsupported_headings,
            total_deleted_headings=summary.total_deleted_headings,
        ),
        unsupported_headings=[
            ExceptionHeadingResponse(
                heading_id=item.heading_id,
                heading_name=item.heading_name,
                family=item.family,
                error=item.error,
            )
            for item in report.unsupported_headings
        ],
        unprocessed_headings=[
            ExceptionHeadingResponse(
                heading_id=item.heading_id,
                heading_name=item.heading_name,
                family=item.family,
                error=item.error,
            )
            for item in report.unprocessed_headings
        ],
        no_pdm_headings=[
            NoPdmHeadingResponse(heading_id=item.heading_id, heading_name=item.heading_name, family=item.family)
            for item in report.no_pdm_headings
        ],
        deleted_headings=[
            DeletedHeadingResponse(
                heading_id=item.heading_id,
                heading_name=item.heading_name,
                assigned_url=item.assigned_url,
                family=item.family,
                hqs=item.quality,
            )
            for item in report.deleted_headings
        ],
    )


def _account_details(payload: AccountDetailsPayload | None) -> AccountDetails:
    if payload is None:
        return AccountDetails()
    return AccountDetails(
        account_name=payload.account_name,
        account_id=payload.account_id,
        editor_name=payload.editor_name,
        qc_name=payload.qc_name,
    )


def _to_xlsx_streaming(artifact: ExportArtifact) -> StreamingResponse:
    """Stream the in-memory workbook as a file download."""

    def _generate() -> Iterator[bytes]:
        yield artifact.content

    return StreamingResponse(
        content=_generate(),
        media_type=artifact.media_type,
        headers={
            "Content-Disposition": f'attachment; filename="{artifact.filename}"',
            "Content-Length": str(len(artifact.content)),
        },
    )


def _ensure_rows_valid(
    row_validator: QCRowTableValidator,
    tables: list[tuple[str, object, int, bool]],
) -> None:
    try:
        row_validator.ensure_valid(tables)
    except RowTableValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=exc.to_dict(),
        ) from exc


# ---------------------------------------------------------------------------
# Pipeline endpoints
# ---------------------------------------------------------------------------


@router.post("/classifications", response_model=ClassificationsResponse)
def classifications(
    payload: ClassificationsRequest,
    row_validator: QCRowTableValidator = Depends(get_row_table_validator),
    classification_service: ClassificationService = Depends(get_classification_service),
) -> ClassificationsResponse:
    """
    Classify afterproof headings against the PDM library and beforeproof.
    """

    _ensure_rows_valid(
        row_validator,
        [
            ("dataTableData", payload.data_table_data, HEADING_TABLE_WIDTH, True),
            ("dataTablePDMData", payload.data_table_pdm_data, PDM_LIBRARY_TABLE_WIDTH, False),
            ("pulldataBackupTableData", payload.pulldata_backup_table_data, HEADING_TABLE_WIDTH, False),
        ],
    )

    rows = classification_service.classify(
        payload.data_table_data,
        payload.data_table_pdm_data,
        payload.pulldata_backup_table_data,
    )
    return ClassificationsResponse(classification_details=[row.to_row() for row in rows])


@router.post("/classifications/upload", response_model=ClassificationsResponse)
def classifications_upload(
    afterproof: UploadFile = Depends(get_afterproof_upload),
    pdm_library: UploadFile | None = Depends(get_pdm_library_upload),
    beforeproof: UploadFile | None = Depends(get_beforeproof_upload),
    ingestion_service: SheetIngestionService = Depends(get_sheet_ingestion_service),
    classification_service: ClassificationService = Depends(get_classification_service),
) -> ClassificationsResponse:
    """
    Classify headings read from spreadsheet uploads (header row skipped).
    """

    try:
        afterproof_rows = ingestion_service.read_upload(afterproof, expected_columns=HEADING_TABLE_WIDTH)
        pdm_rows = (
            ingestion_service.read_upload(pdm_library, expected_columns=PDM_LIBRARY_TABLE_WIDTH)
            if pdm_library is not None
            else []
        )
        beforeproof_rows = (
            ingestion_service.read_upload(beforeproof, expected_columns=HEADING_TABLE_WIDTH)
            if beforeproof is not None
            else None
        )
    except SheetReadError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    finally:
        for upload in (afterproof, pdm_library, beforeproof):
            if upload is not None:
                upload.file.close()

    rows = classification_service.classify(afterproof_rows, pdm_rows, beforeproof_rows)
    return ClassificationsResponse(classification_details=[row.to_row() for row in rows])


@router.post("/report", response_model=ReportResponse)
def report(
    payload: ReportRequest,
    row_validator: QCRowTableValidator = Depends(get_row_table_validator),
    report_service: ReportService = Depends(get_report_service),
) -> ReportResponse:
    """
    Group canonical rows by PDM number and validate each group.
    """

    _ensure_rows_valid(
        row_validator,
        [("classificationDetails", payload.classification_details, HEADING_TABLE_WIDTH, True)],
    )
    rows = [CanonicalRow.from_row(row) for row in payload.classification_details]
    return _report_response(report_service.build_report(rows))


@router.post("/export", response_class=StreamingResponse, response_model=None)
def export(
    payload: ExportRequest,
    row_validator: QCRowTableValidator = Depends(get_row_table_validator),
    export_service: ExportService = Depends(get_export_service),
) -> StreamingResponse | JSONResponse:
    """
    Build the report and download it as an .xlsx workbook.
    """

    _ensure_rows_valid(
        row_validator,
        [("classificationDetails", payload.classification_details, HEADING_TABLE_WIDTH, True)],
    )

    try:
        artifact = export_service.generate(
            classification_details=payload.classification_details,
            account_details=_account_details(payload.account_details),
            company_profile=payload.company_profile,
            filename=payload.filename,
        )
    except QCExportError as exc:
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"message": str(exc), "errors": {}},
        )

    return _to_xlsx_streaming(artifact)


@router.get("/config", response_model=QCConfigResponse)
def qc_config(
    validation_settings: QCValidationSettings = Depends(get_qc_validation_settings),
    export_settings: QCExportSettings = Depends(get_qc_export_settings),
    ingestion_settings: QCIngestionSettings = Depends(get_qc_ingestion_settings),
    ai_settings: AIReviewSettings = Depends(get_ai_review_settings),
) -> QCConfigResponse:
    """
    Return the effective QC settings. Secrets are never included.
    """

    return QCConfigResponse(
        quality_control={
            "validation": {
                "forbiddenBrands": list(validation_settings.forbidden_brands),
                "forbiddenUrlWords": dict(validation_settings.forbidden_url_words),
                "qualityValues": list(validation_settings.quality_values),
                "forbiddenQualityValues": list(validation_settings.forbidden_quality_values),
                "maxHeadings": validation_settings.max_headings,
                "minWordCount": validation_settings.min_word_count,
                "maxWordCount": validation_settings.max_word_count,
            },
            "export": {
                "fontFamily": export_settings.font_family,
                "fontSize": export_settings.font_size,
                "headerBgColor": export_settings.header_bg_color,
                "defaultFilename": export_settings.default_filename,
            },
            "ingestion": {
                "maxRows": ingestion_settings.max_rows,
                "maxCellLength": ingestion_settings.max_cell_length,
            },
            "aiReview": {
                "enabled": ai_settings.is_active,
                "model": ai_settings.model,
                "batchSize": ai_settings.batch_size,
                "maxSyncDescriptions": ai_settings.max_sync_descriptions,
                "maxAsyncDescriptions": ai_settings.max_async_descriptions,
            },
        }
    )


# ---------------------------------------------------------------------------
# AI review endpoints
# ---------------------------------------------------------------------------


@router.post("/ai-validate", response_model=AIValidateResponse)
def ai_validate(
    payload: AIValidateRequest,
    review_service: AIReviewService = Depends(get_ai_review_service),
) -> AIValidateResponse:
    """
    Review up to `AI_REVIEW_MAX_SYNC_DESCRIPTIONS` descriptions in-request.
    """

    max_descriptions = review_service.settings.max_sync_descriptions
    if len(payload.pdm_descriptions) > max_descriptions:
        return AIValidateResponse(
            warning=f"Too many PDM descriptions. Maximum {max_descriptions} per request.",
            enabled=True,
        )

    outcome = review_service.validate_descriptions(payload.pdm_descriptions)
    return AIValidateResponse(results=list(outcome.results), warning=outcome.warning, enabled=outcome.enabled)


@router.post(
    "/ai-validate/start",
    response_model=AIValidateStartResponse,
    response_model_exclude_none=True,
)
def ai_validate_start(
    payload: AIValidateStartRequest,
    executor: FastAPIBackgroundTaskExecutor = Depends(get_review_task_executor),
    job_service: AIReviewJobService = Depends(get_ai_review_job_service),
    ai_settings: AIReviewSettings = Depends(get_ai_review_settings),
) -> AIValidateStartResponse:
    """
    Queue a background review and return its job id, or cached results.
    """

    if not payload.pdm_descriptions:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="pdmDescriptions must contain at least one description.",
        )
    if len(payload.pdm_descriptions) > ai_settings.max_async_descriptions:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Too many PDM descriptions. Maximum {ai_settings.max_async_descriptions} per request.",
        )

    started = job_service.start(descriptions=payload.pdm_descriptions, executor=executor)
    return AIValidateStartResponse.model_validate(started)


@router.get("/ai-validate/status/{task_id}", response_model=AIValidateStatusResponse)
def ai_validate_status(
    task_id: str,
    job_service: AIReviewJobService = Depends(get_ai_review_job_service),
) -> AIValidateStatusResponse:
    return AIValidateStatusResponse.model_validate(job_service.status(task_id))
