"""
pdm_qc/services/sheet_ingestion_service.py

Reads uploaded spreadsheets into positional string rows for the classifier.

The first row of every upload is treated as a header and dropped. Cells are
read as text, blanks become "", fully empty rows are skipped, and each row
is padded or truncated to the table width.
"""

from __future__ import annotations

import csv
import io
import logging
import zipfile
from functools import lru_cache
from pathlib import PurePath

import pandas as pd
from fastapi import UploadFile

from pdm_qc.config import QCIngestionSettings, get_qc_ingestion_settings

logger = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS = frozenset({".csv", ".xlsx"})


class SheetReadError(ValueError):
    """
    Raised when an upload cannot be read as a row table.
    """


class SheetIngestionService:
    """
    Converts CSV/XLSX uploads into lists of string cells.
    """

    def __init__(self, *, settings: QCIngestionSettings | None = None) -> None:
        self._settings = settings or get_qc_ingestion_settings()

    def read_upload(self, upload: UploadFile, *, expected_columns: int) -> list[list[str]]:
        raw_file = upload.file
        raw_file.seek(0)
        return self.read_bytes(
            raw_file.read(),
            filename=upload.filename or "",
            expected_columns=expected_columns,
        )

    def read_bytes(self, data: bytes, *, filename: str, expected_columns: int) -> list[list[str]]:
        extension = PurePath(filename.strip().lower()).suffix
        if extension not in SUPPORTED_EXTENSIONS:
            raise SheetReadError(
                f"Unsupported file type {extension or filename!r}. Allowed: {sorted(SUPPORTED_EXTENSIONS)}."
            )
        if not data:
            raise SheetReadError(f"Uploaded file {filename!r} is empty.")

        if extension == ".csv":
            records = self._read_csv_records(data, filename=filename)
        else:
            records = self._read_xlsx_records(data, filename=filename)
        rows = self._normalize_rows(records, expected_columns=expected_columns)

        if len(rows) > self._settings.max_rows:
            raise SheetReadError(
                f"Uploaded file {filename!r} has {len(rows)} rows; at most {self._settings.max_rows} are allowed."
            )

        logger.info(
            "Read spreadsheet upload filename=%r rows=%d columns=%d",
            filename,
            len(rows),
            expected_columns,
        )
        return rows

    @staticmethod
    def _read_csv_records(data: bytes, *, filename: str) -> list[list[str]]:
        # Rows are kept positional at their own width; a short header never re-indexes the data.
        try:
            text_stream = io.StringIO(data.decode("utf-8-sig"), newline="")
            records = [record for record in csv.reader(text_stream) if record]
        except UnicodeDecodeError as exc:
            raise SheetReadError(f"Uploaded file {filename!r} must be UTF-8 encoded.") from exc
        except csv.Error as exc:
            raise SheetReadError(f"Uploaded file {filename!r} could not be parsed.") from exc

        if not records:
            raise SheetReadError(f"Uploaded file {filename!r} has no rows.")
        return records[1:]

    @staticmethod
    def _read_xlsx_records(data: bytes, *, filename: str) -> list[list[str]]:
        try:
            frame = pd.read_excel(io.BytesIO(data), dtype=str, keep_default_na=False, header=0, engine="openpyxl")
        except (ValueError, OSError, KeyError, zipfile.BadZipFile) as exc:
            raise SheetReadError(f"Uploaded file {filename!r} could not be parsed.") from exc

        cleaned = frame.fillna("")
        return [[str(value) for value in values] for values in cleaned.itertuples(index=False, name=None)]

    def _normalize_rows(self, records: list[list[str]], *, expected_columns: int) -> list[list[str]]:
        max_cell_length = self._settings.max_cell_length

        rows: list[list[str]] = []
        for cells in records:
            if not any(cell.strip() for cell in cells):
                continue
            cells = [cell[:max_cell_length] for cell in cells[:expected_columns]]
            cells.extend([""] * (expected_columns - len(cells)))
            rows.append(cells)
        return rows


@lru_cache(maxsize=1)
def get_sheet_ingestion_service() -> SheetIngestionService:
    """
    FastAPI dependency factory for spreadsheet uploads.
    """

    return SheetIngestionService()
