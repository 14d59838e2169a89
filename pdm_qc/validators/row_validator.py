"""
pdm_qc/validators/row_validator.py

Shape checks for positional row tables received at the request boundary.

The classifier itself tolerates malformed entries by skipping them; these
checks let the HTTP layer reject a payload up front with precise locations.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from functools import lru_cache
from typing import Any

from pdm_qc.config import get_qc_ingestion_settings

MAX_REPORTED_ERRORS = 200


@dataclass(frozen=True)
class RowShapeError:
    """
    One row- or cell-level shape violation.
    """

    field: str
    message: str
    row_index: int | None = None
    cell_index: int | None = None

    @property
    def location(self) -> str:
        parts = [self.field]
        if self.row_index is not None:
            parts.append(str(self.row_index))
        if self.cell_index is not None:
            parts.append(str(self.cell_index))
        return ".".join(parts)


class RowTableValidationError(ValueError):
    """
    Raised when one or more submitted tables fail shape validation.
    """

    def __init__(self, *, errors: list[RowShapeError]) -> None:
        super().__init__(f"Row table validation failed with {len(errors)} error(s).")
        self.errors = tuple(errors)

    def to_dict(self) -> dict[str, object]:
        return {
            "message": str(self),
            "errors": [
                {
                    "field": error.field,
                    "location": error.location,
                    "rowIndex": error.row_index,
                    "cellIndex": error.cell_index,
                    "message": error.message,
                }
                for error in self.errors
            ],
        }


def _is_scalar(value: Any) -> bool:
    return value is None or isinstance(value, (str, int, float, bool))


class QCRowTableValidator:
    """
    Validates row count, row width, and cell contents of positional tables.
    """

    def __init__(self, *, max_rows: int, max_cell_length: int) -> None:
        self._max_rows = max(1, max_rows)
        self._max_cell_length = max(1, max_cell_length)

    def validate_table(
        self,
        *,
        field: str,
        rows: Any,
        expected_columns: int,
        required: bool = False,
    ) -> list[RowShapeError]:
        if rows is None:
            if required:
                return [RowShapeError(field=field, message="This table is required.")]
            return []
        if not isinstance(rows, (list, tuple)):
            return [RowShapeError(field=field, message="Table must be a list of rows.")]
        if required and not rows:
            return [RowShapeError(field=field, message="Table must contain at least one row.")]
        if len(rows) > self._max_rows:
            return [
                RowShapeError(
                    field=field,
                    message=f"Table must not contain more than {self._max_rows} rows.",
                )
            ]

        errors: list[RowShapeError] = []
        for row_index, row in enumerate(rows):
            if not isinstance(row, (list, tuple)):
                errors.append(RowShapeError(field=field, row_index=row_index, message="Each row must be an array."))
                continue

            if len(row) != expected_columns:
                errors.append(
                    RowShapeError(
                        field=field,
                        row_index=row_index,
                        message=f"Each row must contain exactly {expected_columns} columns.",
                    )
                )

            for cell_index, cell in enumerate(row):
                if not _is_scalar(cell):
                    errors.append(
                        RowShapeError(
                            field=field,
                            row_index=row_index,
                            cell_index=cell_index,
                            message="Each cell must be a scalar value or null.",
                        )
                    )
                elif isinstance(cell, str) and len(cell) > self._max_cell_length:
                    errors.append(
                        RowShapeError(
                            field=field,
                            row_index=row_index,
                            cell_index=cell_index,
                            message="Cell value exceeds max supported length.",
                        )
                    )
        return errors

    def ensure_valid(self, tables: Iterable[tuple[str, Any, int, bool]]) -> None:
        """
        Validate several `(field, rows, expected_columns, required)` tables and
        raise one RowTableValidationError covering all of them.
        """

        errors: list[RowShapeError] = []
        for field, rows, expected_columns, required in tables:
            errors.extend(
                self.validate_table(
                    field=field,
                    rows=rows,
                    expected_columns=expected_columns,
                    required=required,
                )
            )
        if errors:
            raise RowTableValidationError(errors=errors[:MAX_REPORTED_ERRORS])


@lru_cache(maxsize=1)
def get_row_table_validator() -> QCRowTableValidator:
    """
    FastAPI dependency factory using environment limits.
    """

    settings = get_qc_ingestion_settings()
    return QCRowTableValidator(max_rows=settings.max_rows, max_cell_length=settings.max_cell_length)
