"""
pdm_qc/validators package marker.
"""

from pdm_qc.validators.pdm_validator import PdmValidator, ValidationContext
from pdm_qc.validators.row_validator import QCRowTableValidator, RowShapeError, RowTableValidationError

__all__ = [
    "PdmValidator",
    "QCRowTableValidator",
    "RowShapeError",
    "RowTableValidationError",
    "ValidationContext",
]
