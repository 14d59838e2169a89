"""
pdm_qc/schemas/quality_control.py

Request and response schemas for the quality-control endpoints.

Wire names are camelCase to match the host application's table export;
Python attributes stay snake_case and are populated through aliases.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from ai_review.schema import ReviewResult

# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


class ClassificationsRequest(BaseModel):
    """
    Afterproof rows (required), PDM library rows, and beforeproof rows.
    """

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    data_table_data: list[Any] = Field(..., alias="dataTableData")
    data_table_pdm_data: list[Any] | None = Field(default=None, alias="dataTablePDMData")
    pulldata_backup_table_data: list[Any] | None = Field(default=None, alias="pulldataBackupTableData")


class AccountDetailsPayload(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    account_name: str | None = Field(default=None, alias="accountName", max_length=255)
    account_id: str | None = Field(default=None, alias="accountId", max_length=100)
    editor_name: str | None = Field(default=None, alias="editorName", max_length=255)
    qc_name: str | None = Field(default=None, alias="qcName", max_length=255)


class ReportRequest(BaseModel):
    """
    Canonical eleven-column classification rows plus optional account data.
    """

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    classification_details: list[Any] = Field(..., alias="classificationDetails")
    account_details: AccountDetailsPayload | None = Field(default=None, alias="accountDetails")
    company_profile: str | None = Field(default=None, alias="companyProfile", max_length=20000)


class ExportRequest(ReportRequest):
    filename: str | None = Field(default=None, max_length=255)


class AIValidateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    pdm_descriptions: dict[str, Any] = Field(default_factory=dict, alias="pdmDescriptions")


class AIValidateStartRequest(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    pdm_descriptions: dict[str, str] = Field(..., alias="pdmDescriptions")


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


class ClassificationsResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    classification_details: list[list[str]] = Field(default_factory=list, alias="classificationDetails")


class HeadingSummaryResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    type: str
    url: str
    family: str
    company_type: str = Field(..., alias="companyType")
    quality: str


class PdmGroupResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    headings: list[HeadingSummaryResponse] = Field(default_factory=list)
    assigned_urls: list[str] = Field(default_factory=list, alias="assignedUrls")
    families: list[str] = Field(default_factory=list)
    pdm_text: str = Field(..., alias="pdmText")
    pdm_text_status: str = Field(..., alias="pdmTextStatus")
    word_count: int = Field(..., ge=0, alias="wordCount")
    display_common_family: str = Field(..., alias="displayCommonFamily")
    display_company_type: str = Field(..., alias="displayCompanyType")
    display_quality: str = Field(..., alias="displayQuality")
    word_count_warning: bool = Field(default=False, alias="wordCountWarning")


class ValidationResultResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    pdm_number: str = Field(..., alias="pdmNumber")
    errors: list[str] = Field(default_factory=list)


class ReportSummaryResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    total_grouped_pdms: int = Field(..., ge=0, alias="totalGroupedPDMs")
    total_existing_headings: int = Field(..., ge=0, alias="totalExistingHeadings")
    unique_existing_links: int = Field(..., ge=0, alias="uniqueExistingLinks")
    total_added_headings: int = Field(..., ge=0, alias="totalAddedHeadings")
    unique_added_links: int = Field(..., ge=0, alias="uniqueAddedLinks")
    total_unsupported_headings: int = Field(..., ge=0, alias="totalUnsupportedHeadings")
    total_deleted_headings: int = Field(..., ge=0, alias="totalDeletedHeadings")


class ExceptionHeadingResponse(BaseModel):
    """
    Row of the unsupported or unprocessed heading lists.
    """

    model_config = ConfigDict(populate_by_name=True)

    heading_id: str = Field(..., alias="headingId")
    heading_name: str = Field(..., alias="headingName")
    family: str
    error: str


class NoPdmHeadingResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    heading_id: str = Field(..., alias="headingId")
    heading_name: str = Field(..., alias="headingName")
    family: str


class DeletedHeadingResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    heading_id: str = Field(..., alias="headingId")
    heading_name: str = Field(..., alias="headingName")
    assigned_url: str = Field(..., alias="assignedUrl")
    family: str
    hqs: str


class ReportResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    pdm_groups: dict[str, PdmGroupResponse] = Field(default_factory=dict, alias="pdmGroups")
    validation_results: list[ValidationResultResponse] = Field(default_factory=list, alias="validationResults")
    summary: ReportSummaryResponse
    unsupported_headings: list[ExceptionHeadingResponse] = Field(default_factory=list, alias="unsupportedHeadings")
    unprocessed_headings: list[ExceptionHeadingResponse] = Field(default_factory=list, alias="unprocessedHeadings")
    no_pdm_headings: list[NoPdmHeadingResponse] = Field(default_factory=list, alias="noPdmHeadings")
    deleted_headings: list[DeletedHeadingResponse] = Field(default_factory=list, alias="deletedHeadings")


class QCConfigResponse(BaseModel):
    """
    Effective, non-secret runtime settings.
    """

    model_config = ConfigDict(populate_by_name=True)

    quality_control: dict[str, Any] = Field(default_factory=dict, alias="qualityControl")


class AIValidateResponse(BaseModel):
    results: list[ReviewResult] = Field(default_factory=list)
    warning: str | None = None
    enabled: bool = True


class AIValidateStartResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    enabled: bool
    cached: bool | None = None
    job_id: str | None = Field(default=None, alias="jobId")
    total_batches: int | None = Field(default=None, ge=0, alias="totalBatches")
    results: list[ReviewResult] | None = None
    warning: str | None = None


class AIValidateStatusResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    status: str
    completed_batches: int = Field(..., ge=0, alias="completedBatches")
    total_batches: int = Field(..., ge=0, alias="totalBatches")
    results: list[ReviewResult] = Field(default_factory=list)
    warning: str | None = None
    enabled: bool = True
