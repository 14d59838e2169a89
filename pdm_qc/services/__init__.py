"""
pdm_qc/services package marker.
"""

from pdm_qc.services.ai_review_service import (
    AIReviewJobService,
    AIReviewService,
    get_ai_review_job_service,
    get_ai_review_service,
)
from pdm_qc.services.classification_service import ClassificationService, get_classification_service
from pdm_qc.services.export_service import ExportService, QCExportError, get_export_service
from pdm_qc.services.report_service import ReportService, get_report_service
from pdm_qc.services.sheet_ingestion_service import (
    SheetIngestionService,
    SheetReadError,
    get_sheet_ingestion_service,
)

__all__ = [
    "AIReviewJobService",
    "AIReviewService",
    "get_ai_review_job_service",
    "get_ai_review_service",
    "ClassificationService",
    "get_classification_service",
    "ExportService",
    "QCExportError",
    "get_export_service",
    "ReportService",
    "get_report_service",
    "SheetIngestionService",
    "SheetReadError",
    "get_sheet_ingestion_service",
]
