"""
pdm_qc/domain package marker.
"""

from pdm_qc.domain.report import (
    DeletedHeading,
    HeadingSummary,
    NoPdmHeading,
    PdmGroup,
    PdmTextStatus,
    Report,
    ReportSummary,
    UnprocessedHeading,
    UnsupportedHeading,
    ValidationResult,
)
from pdm_qc.domain.rows import AfterproofRow, BeforeproofRow, CanonicalRow, PdmLookupRow

__all__ = [
    "AfterproofRow",
    "BeforeproofRow",
    "CanonicalRow",
    "DeletedHeading",
    "HeadingSummary",
    "NoPdmHeading",
    "PdmGroup",
    "PdmLookupRow",
    "PdmTextStatus",
    "Report",
    "ReportSummary",
    "UnprocessedHeading",
    "UnsupportedHeading",
    "ValidationResult",
]
