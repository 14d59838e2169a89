"""
pdm_qc/domain/report.py

Value objects produced by the report builder and the PDM validator.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class PdmTextStatus(str, Enum):
    OK = "ok"
    NO_PDM_FOR_HEADING = "no_pdm_for_heading"
    PDM_TEXT_MISSING_IN_LIBRARY = "pdm_text_missing_in_library"


@dataclass(frozen=True)
class HeadingSummary:
    """
    One member heading of a PDM group.
    """

    name: str
    type: str
    url: str
    family: str
    company_type: str
    quality: str


@dataclass(frozen=True)
class PdmGroup:
    """
    All included headings that share one PDM number, with display fields
    derived from the members.
    """

    pdm_number: str
    headings: tuple[HeadingSummary, ...]
    assigned_urls: tuple[str, ...]
    families: tuple[str, ...]
    pdm_text: str
    pdm_text_status: PdmTextStatus
    word_count: int
    display_common_family: str
    display_company_type: str
    display_quality: str
    word_count_warning: bool = False


@dataclass(frozen=True)
class ValidationResult:
    """
    Ordered error messages for one PDM group. Never produced empty.
    """

    pdm_number: str
    errors: tuple[str, ...]


@dataclass(frozen=True)
class UnsupportedHeading:
    heading_id: str
    heading_name: str
    family: str
    error: str


@dataclass(frozen=True)
class UnprocessedHeading:
    heading_id: str
    heading_name: str
    family: str
    error: str


@dataclass(frozen=True)
class NoPdmHeading:
    heading_id: str
    heading_name: str
    family: str


@dataclass(frozen=True)
class DeletedHeading:
    heading_id: str
    heading_name: str
    assigned_url: str
    family: str
    quality: str


@dataclass(frozen=True)
class ReportSummary:
    total_grouped_pdms: int = 0
    total_existing_headings: int = 0
    unique_existing_links: int = 0
    total_added_headings: int = 0
    unique_added_links: int = 0
    total_unsupported_headings: int = 0
    total_deleted_headings: int = 0


@dataclass(frozen=True)
class Report:
    """
    Complete QC report for one account.

    `pdm_groups` preserves first-seen order of PDM numbers.
    """

    pdm_groups: dict[str, PdmGroup] = field(default_factory=dict)
    validation_results: tuple[ValidationResult, ...] = ()
    summary: ReportSummary = field(default_factory=ReportSummary)
    unsupported_headings: tuple[UnsupportedHeading, ...] = ()
    unprocessed_headings: tuple[UnprocessedHeading, ...] = ()
    no_pdm_headings: tuple[NoPdmHeading, ...] = ()
    deleted_headings: tuple[DeletedHeading, ...] = ()
