"""
pdm_qc/schemas package marker.
"""

from pdm_qc.schemas.quality_control import (
    AIValidateRequest,
    AIValidateResponse,
    AIValidateStartRequest,
    AIValidateStartResponse,
    AIValidateStatusResponse,
    ClassificationsRequest,
    ClassificationsResponse,
    ExportRequest,
    QCConfigResponse,
    ReportRequest,
    ReportResponse,
)

__all__ = [
    "AIValidateRequest",
    "AIValidateResponse",
    "AIValidateStartRequest",
    "AIValidateStartResponse",
    "AIValidateStatusResponse",
    "ClassificationsRequest",
    "ClassificationsResponse",
    "ExportRequest",
    "QCConfigResponse",
    "ReportRequest",
    "ReportResponse",
]
