"""
pdm_qc/services/export_service.py

Renders a QC report as a multi-sheet `.xlsx` workbook.

Sheet order
-----------
Account Summary
Unsupported Headings          (only when non-empty)
Unprocessed Headings          (only when non-empty)
Headings with No PDM Number   (only when non-empty)
Deleted Headings              (only when non-empty)
PDM Details
Primary Validation
Classification Details

The workbook is built in memory and returned as bytes; nothing is written
to disk. Report generation is independent of rendering, so a failure here
never invalidates the report itself.
"""

from __future__ import annotations

import io
import logging
import re
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from datetime import date, datetime, timezone
from functools import lru_cache
from typing import Any

from openpyxl import Workbook
from openpyxl.cell.cell import ILLEGAL_CHARACTERS_RE
from openpyxl.styles import Font, PatternFill
from openpyxl.utils import get_column_letter
from openpyxl.utils.exceptions import IllegalCharacterError
from openpyxl.worksheet.worksheet import Worksheet

from pdm_qc.config import QCExportSettings, get_qc_export_settings
from pdm_qc.domain.report import PdmGroup, Report, ValidationResult
from pdm_qc.domain.rows import NO_URL_ASSIGNED, CanonicalRow, cell_text, is_raw_row
from pdm_qc.services.report_service import ReportService, get_report_service

logger = logging.getLogger(__name__)

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

NOT_PROVIDED = "Not provided"
MAX_SHEET_TITLE_LENGTH = 31
MAX_COLUMN_WIDTH = 80

_FILENAME_PATTERN = re.compile(r"[^A-Za-z0-9 _.-]")
_SHEET_TITLE_PATTERN = re.compile(r"[\\/?*:\[\]]")

PDM_DETAILS_HEADER = [
    "SDMS Data",
    "",
    "Production Errors",
    "QC Comment",
    "QC Updates",
    "Editor Name",
    "QC Name",
    "Editor Status",
    "QC Status",
]

CLASSIFICATION_DETAILS_HEADER = [
    "classificationId",
    "classification",
    "category",
    "family",
    "rankPoints",
    "companyType",
    "siteLink",
    "quality",
    "profileDescription",
    "pdmText",
    "headingType",
]


class QCExportError(RuntimeError):
    """
    Raised when the workbook cannot be produced.
    """


@dataclass(frozen=True)
class AccountDetails:
    account_name: str | None = None
    account_id: str | None = None
    editor_name: str | None = None
    qc_name: str | None = None


@dataclass(frozen=True)
class ExportArtifact:
    """
    In-memory workbook ready to stream.
    """

    filename: str
    content: bytes
    media_type: str = XLSX_MEDIA_TYPE
    report: Report | None = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def build_export_filename(requested: str | None, *, today: date, default: str = "QC_Report") -> str:
    """
    Keep `[A-Za-z0-9 _.-]` from the requested name and append `_Mon-DD-YYYY.xlsx`.
    """

    base = _FILENAME_PATTERN.sub("", requested or "").strip() or default
    return f"{base}_{today.strftime('%b-%d-%Y')}.xlsx"


def sanitize_sheet_title(title: str) -> str:
    clean = _SHEET_TITLE_PATTERN.sub("", title).strip() or "Sheet"
    return clean[:MAX_SHEET_TITLE_LENGTH]


def _text(value: Any) -> str:
    if isinstance(value, str):
        return value
    return cell_text([value], 0)


def _blank_row(width: int = len(PDM_DETAILS_HEADER)) -> list[str]:
    return [""] * width


def _padded(values: Sequence[str], width: int = len(PDM_DETAILS_HEADER)) -> list[str]:
    return list(values) + [""] * (width - len(values))


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class ExportService:
    """
    Builds the report and renders it into a workbook.
    """

    def __init__(
        self,
        *,
        report_service: ReportService | None = None,
        settings: QCExportSettings | None = None,
    ) -> None:
        self._report_service = report_service or get_report_service()
        self._settings = settings or get_qc_export_settings()

    def generate(
        self,
        *,
        classification_details: Iterable[CanonicalRow | Sequence[Any]],
        account_details: AccountDetails | None = None,
        company_profile: str | None = None,
        filename: str | None = None,
        today: date | None = None,
    ) -> ExportArtifact:
        rows = [
            row if isinstance(row, CanonicalRow) else CanonicalRow.from_row(row)
            for row in classification_details
            if isinstance(row, CanonicalRow) or is_raw_row(row)
        ]
        account = account_details or AccountDetails()
        report = self._report_service.build_report(rows)

        sheets: list[tuple[str, list[list[str]]]] = [
            ("Account Summary", self._account_summary_rows(report, account, company_profile or "")),
        ]
        sheets.extend(self._exception_sheets(report))
        sheets.append(("PDM Details", self._pdm_details_rows(report.pdm_groups, account)))
        sheets.append(("Primary Validation", self._primary_validation_rows(report.validation_results)))
        sheets.append(
            ("Classification Details", [CLASSIFICATION_DETAILS_HEADER] + [row.to_row() for row in rows])
        )

        export_date = today or datetime.now(timezone.utc).date()
        resolved_filename = build_export_filename(
            filename,
            today=export_date,
            default=self._settings.default_filename,
        )

        try:
            content = self.render_workbook(sheets)
        except (OSError, ValueError, IllegalCharacterError) as exc:
            logger.exception("QC export rendering failed filename=%r", resolved_filename)
            raise QCExportError("QC export could not be generated. Please try again later.") from exc

        logger.info(
            "QC export generated filename=%r sheets=%d groups=%d bytes=%d",
            resolved_filename,
            len(sheets),
            len(report.pdm_groups),
            len(content),
        )
        return ExportArtifact(filename=resolved_filename, content=content, report=report)

    # --- sheet content -------------------------------------------------------

    @staticmethod
    def _account_summary_rows(report: Report, account: AccountDetails, company_profile: str) -> list[list[str]]:
        summary = report.summary
        return [
            ["Summary", ""],
            ["Account Name", account.account_name if account.account_name is not None else NOT_PROVIDED],
            ["Account ID", account.account_id if account.account_id is not None else NOT_PROVIDED],
            ["Editor Name", account.editor_name if account.editor_name is not None else NOT_PROVIDED],
            ["QC Name", account.qc_name if account.qc_name is not None else NOT_PROVIDED],
            ["", ""],
            ["Total Grouped PDMs", str(summary.total_grouped_pdms)],
            ["Total Existing Headings", str(summary.total_existing_headings)],
            ["Unique Links for Existing Headings", str(summary.unique_existing_links)],
            ["Total Added Headings", str(summary.total_added_headings)],
            ["Unique Links for Added Headings", str(summary.unique_added_links)],
            ["Total unsupported heading", str(summary.total_unsupported_headings)],
            ["Total Deleted Headings", str(summary.total_deleted_headings)],
            ["", ""],
            ["Company Profile Description", company_profile if company_profile else NOT_PROVIDED],
        ]

    @staticmethod
    def _exception_sheets(report: Report) -> list[tuple[str, list[list[str]]]]:
        sheets: list[tuple[str, list[list[str]]]] = []

        if report.unsupported_headings:
            sheets.append(
                (
                    "Unsupported Headings",
                    [["Heading ID", "Heading Name", "Family", "Error"]]
                    + [
                        [item.heading_id, item.heading_name, item.family, item.error or "OK"]
                        for item in report.unsupported_headings
                    ],
                )
            )
        if report.unprocessed_headings:
            sheets.append(
                (
                    "Unprocessed Headings",
                    [["Heading ID", "Heading Name", "Family", "Error"]]
                    + [
                        [item.heading_id, item.heading_name, item.family, item.error or "OK"]
                        for item in report.unprocessed_headings
                    ],
                )
            )
        if report.no_pdm_headings:
            sheets.append(
                (
                    "Headings with No PDM Number",
                    [["Heading ID", "Heading Name", "Family"]]
                    + [[item.heading_id, item.heading_name, item.family] for item in report.no_pdm_headings],
                )
            )
        if report.deleted_headings:
            sheets.append(
                (
                    "Deleted Headings",
                    [["Heading ID", "Heading Name", "Assigned URL", "Family", "HQS"]]
                    + [
                        [item.heading_id, item.heading_name, item.assigned_url, item.family, item.quality]
                        for item in report.deleted_headings
                    ],
                )
            )
        return sheets

    @staticmethod
    def _pdm_details_rows(pdm_groups: Mapping[str, PdmGroup], account: AccountDetails) -> list[list[str]]:
        rows: list[list[str]] = [list(PDM_DETAILS_HEADER)]
        editor_name = account.editor_name or ""
        qc_name = account.qc_name or ""

        for pdm_number, group in pdm_groups.items():
            rows.append(_padded([pdm_number]))
            for heading in group.headings:
                label = f"{heading.type} Heading" if heading.type.strip() else "Heading"
                rows.append(_padded([label, heading.name]))

            first_url = group.assigned_urls[0] if group.assigned_urls else NO_URL_ASSIGNED
            rows.append(_padded(["Assigned URL", first_url]))
            rows.append(_padded(["Common Family", group.display_common_family]))
            rows.append(_padded(["Company Type", group.display_company_type]))
            rows.append(_padded(["Type of Proof", group.display_quality]))
            rows.append(["PDM Description", group.pdm_text, "", "", "", editor_name, qc_name, "", ""])
            rows.append(_blank_row())
            rows.append(_blank_row())

        if len(rows) == 1:
            rows.append(_padded(["PDM Details", "No data available"]))
        return rows

    @staticmethod
    def _primary_validation_rows(results: Sequence[ValidationResult]) -> list[list[str]]:
        rows: list[list[str]] = [["Primary Validation", ""]]
        if not results:
            rows.append(["All PDM sections passed validation.", ""])
            return rows

        for result in results:
            rows.append([result.pdm_number, ""])
            rows.extend(["", error] for error in result.errors)
            rows.append(["", ""])
        return rows

    # --- rendering -----------------------------------------------------------

    def render_workbook(self, sheets: Sequence[tuple[str, list[list[str]]]]) -> bytes:
        workbook = Workbook()
        workbook.remove(workbook.active)

        for title, rows in sheets:
            worksheet = workbook.create_sheet(title=sanitize_sheet_title(title))
            self._write_rows(worksheet, rows)

        buffer = io.BytesIO()
        workbook.save(buffer)
        return buffer.getvalue()

    def _write_rows(self, worksheet: Worksheet, rows: Sequence[Sequence[Any]]) -> None:
        body_font = Font(name=self._settings.font_family, size=self._settings.font_size)
        header_font = Font(name=self._settings.font_family, size=self._settings.font_size, bold=True)
        header_fill = PatternFill("solid", fgColor=self._settings.header_bg_color)

        widths: dict[int, int] = {}
        for row_index, values in enumerate(rows, start=1):
            for column_index, value in enumerate(values, start=1):
                text = ILLEGAL_CHARACTERS_RE.sub("", _text(value))
                cell = worksheet.cell(row=row_index, column=column_index, value=text)
                # Literal text only; a leading "=" must never become a formula.
                cell.data_type = "s"
                if row_index == 1:
                    cell.font = header_font
                    cell.fill = header_fill
                else:
                    cell.font = body_font
                longest_line = max((len(line) for line in text.splitlines()), default=0)
                widths[column_index] = max(widths.get(column_index, 0), longest_line)

        for column_index, width in widths.items():
            worksheet.column_dimensions[get_column_letter(column_index)].width = min(width + 2, MAX_COLUMN_WIDTH)


@lru_cache(maxsize=1)
def get_export_service() -> ExportService:
    """
    FastAPI dependency factory for the workbook exporter.
    """

    return ExportService()
