"""
tests/test_export_service.py

Pytest unit tests for ExportService.

Workbooks are rendered in memory and read back with openpyxl.

Coverage
--------
- Filename sanitising and date suffix
- Sheet order; exception sheets only when non-empty
- Account summary placeholders
- PDM Details block layout and the empty-state row
- Primary Validation messages
- Formula-looking text stays literal
- Rendering failures surface as QCExportError
"""

from __future__ import annotations

import io
from datetime import date

import pytest
from openpyxl import load_workbook

from pdm_qc.config import QCExportSettings, QCValidationSettings
from pdm_qc.domain.rows import NO_PDM_FOR_HEADING, CanonicalRow
from pdm_qc.services.export_service import (
    CLASSIFICATION_DETAILS_HEADER,
    AccountDetails,
    ExportService,
    QCExportError,
    build_export_filename,
    sanitize_sheet_title,
)
from pdm_qc.services.report_service import ReportService

TODAY = date(2024, 3, 5)
TEXT = "Premium widgets description text."


def _row(name: str, **overrides: str) -> CanonicalRow:
    values = dict(
        classification_id="00000001",
        classification_name=name,
        category="Hardware",
        family="Tools",
        rank_points="10",
        company_type="Manufacturer",
        site_link="https://example.com/widgets",
        quality="Verified",
        profile_description="100",
        pdm_text=TEXT,
        heading_type="Added",
    )
    values.update(overrides)
    return CanonicalRow(**values)


def _values(content: bytes, sheet: str) -> list[tuple]:
    workbook = load_workbook(io.BytesIO(content))
    return list(workbook[sheet].iter_rows(values_only=True))


@pytest.fixture()
def svc() -> ExportService:
    return ExportService(
        report_service=ReportService(settings=QCValidationSettings()),
        settings=QCExportSettings(),
    )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class TestHelpers:
    def test_filename_keeps_safe_characters_and_appends_date(self) -> None:
        assert build_export_filename("Acme QC", today=TODAY) == "Acme QC_Mar-05-2024.xlsx"
        assert build_export_filename("a/b:c*", today=TODAY) == "abc_Mar-05-2024.xlsx"

    def test_filename_falls_back_to_default(self) -> None:
        assert build_export_filename(None, today=TODAY) == "QC_Report_Mar-05-2024.xlsx"
        assert build_export_filename("???", today=TODAY, default="Report") == "Report_Mar-05-2024.xlsx"

    def test_sanitize_sheet_title(self) -> None:
        assert sanitize_sheet_title("A/B [x]") == "AB x"
        assert len(sanitize_sheet_title("x" * 40)) == 31


# ---------------------------------------------------------------------------
# generate
# ---------------------------------------------------------------------------


class TestGenerate:
    def test_minimal_workbook_sheets_and_placeholders(self, svc: ExportService) -> None:
        artifact = svc.generate(classification_details=[], today=TODAY)

        workbook = load_workbook(io.BytesIO(artifact.content))
        assert workbook.sheetnames == [
            "Account Summary",
            "PDM Details",
            "Primary Validation",
            "Classification Details",
        ]
        assert artifact.filename == "QC_Report_Mar-05-2024.xlsx"

        summary = _values(artifact.content, "Account Summary")
        assert summary[1][:2] == ("Account Name", "Not provided")
        assert summary[-1][:2] == ("Company Profile Description", "Not provided")

        details = _values(artifact.content, "PDM Details")
        assert details[1][:2] == ("PDM Details", "No data available")

        validation = _values(artifact.content, "Primary Validation")
        assert validation[1][0] == "All PDM sections passed validation."

    def test_exception_sheets_follow_summary_in_order(self, svc: ExportService) -> None:
        rows = [
            _row("Kept"),
            _row("Bare", quality="Unsupported", site_link="", profile_description="", company_type="", pdm_text=NO_PDM_FOR_HEADING),
            _row("Orphan", profile_description="", pdm_text=NO_PDM_FOR_HEADING),
            _row("Gone", heading_type="Deleted", classification_id="00000999"),
        ]

        artifact = svc.generate(classification_details=rows, today=TODAY)
        workbook = load_workbook(io.BytesIO(artifact.content))

        assert workbook.sheetnames == [
            "Account Summary",
            "Unsupported Headings",
            "Headings with No PDM Number",
            "Deleted Headings",
            "PDM Details",
            "Primary Validation",
            "Classification Details",
        ]
        unsupported = _values(artifact.content, "Unsupported Headings")
        assert unsupported[1] == ("00000001", "Bare", "Tools", "OK")
        deleted = _values(artifact.content, "Deleted Headings")
        assert deleted[0] == ("Heading ID", "Heading Name", "Assigned URL", "Family", "HQS")
        assert deleted[1] == ("00000999", "Gone", "https://example.com/widgets", "Tools", "Verified")

    def test_pdm_details_block(self, svc: ExportService) -> None:
        account = AccountDetails(account_name="Acme", editor_name="Eve", qc_name="Quinn")
        artifact = svc.generate(
            classification_details=[_row("Widgets"), _row("Gadgets", heading_type="Existing")],
            account_details=account,
            company_profile="We make widgets.",
            filename="Acme QC",
            today=TODAY,
        )

        assert artifact.filename == "Acme QC_Mar-05-2024.xlsx"
        details = _values(artifact.content, "PDM Details")
        labels = [row[0] for row in details[1:9]]
        assert labels == [
            "100",
            "Added Heading",
            "Existing Heading",
            "Assigned URL",
            "Common Family",
            "Company Type",
            "Type of Proof",
            "PDM Description",
        ]
        description = details[8]
        assert description[1] == TEXT
        assert description[5:7] == ("Eve", "Quinn")

        summary = _values(artifact.content, "Account Summary")
        assert summary[1][:2] == ("Account Name", "Acme")
        assert summary[2][:2] == ("Account ID", "Not provided")
        assert summary[-1][:2] == ("Company Profile Description", "We make widgets.")

    def test_primary_validation_lists_errors_per_group(self, svc: ExportService) -> None:
        rows = [_row("A"), _row("B", site_link="")]
        artifact = svc.generate(classification_details=rows, today=TODAY)

        validation = _values(artifact.content, "Primary Validation")
        assert validation[1][0] == "100"
        assert validation[2][1] == "B: No URL assigned."
        assert artifact.report is not None
        assert artifact.report.validation_results[0].pdm_number == "100"

    def test_classification_details_are_written_verbatim(self, svc: ExportService) -> None:
        raw = _row("=SUM(A1)").to_row()
        artifact = svc.generate(classification_details=[raw, None, "junk"], today=TODAY)

        workbook = load_workbook(io.BytesIO(artifact.content))
        sheet = workbook["Classification Details"]
        assert [cell.value for cell in sheet[1]] == CLASSIFICATION_DETAILS_HEADER
        assert sheet.max_row == 2
        name_cell = sheet.cell(row=2, column=2)
        assert name_cell.value == "=SUM(A1)"
        assert name_cell.data_type == "s"

    def test_header_row_is_bold(self, svc: ExportService) -> None:
        artifact = svc.generate(classification_details=[], today=TODAY)
        sheet = load_workbook(io.BytesIO(artifact.content))["Classification Details"]
        assert sheet.cell(row=1, column=1).font.b is True
        assert sheet.cell(row=1, column=1).fill.fgColor.rgb.endswith("D3D3D3")

    def test_render_failure_raises_export_error(self, svc: ExportService, monkeypatch: pytest.MonkeyPatch) -> None:
        def _boom(sheets):
            raise ValueError("bad sheet")

        monkeypatch.setattr(svc, "render_workbook", _boom)

        with pytest.raises(QCExportError, match="could not be generated"):
            svc.generate(classification_details=[_row("A")], today=TODAY)
