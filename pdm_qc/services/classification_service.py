"""
pdm_qc/services/classification_service.py

Classifier stage: turns afterproof, PDM library, and beforeproof tables into
canonical rows tagged Added / Existing / Deleted with resolved PDM text.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Mapping, Sequence
from functools import lru_cache
from typing import Any, TypeVar

from pdm_qc.domain.rows import (
    AFTERPROOF_COLUMNS,
    BEFOREPROOF_COLUMNS,
    HEADING_TYPE_ADDED,
    HEADING_TYPE_DELETED,
    HEADING_TYPE_EXISTING,
    NO_PDM_FOR_HEADING,
    PDM_LIBRARY_COLUMNS,
    PDM_TEXT_NOT_IN_LIBRARY,
    AfterproofRow,
    BeforeproofRow,
    CanonicalRow,
    PdmLookupRow,
    is_numeric_text,
    is_raw_row,
)

logger = logging.getLogger(__name__)

_FIRST_NUMBER_PATTERN = re.compile(r"\d+")
_NON_DIGIT_PATTERN = re.compile(r"[^0-9]")

RowT = TypeVar("RowT", AfterproofRow, BeforeproofRow, PdmLookupRow)


def format_heading_id(raw_id: str) -> str:
    """
    Normalize a heading id to eight zero-padded digits.

    >>> format_heading_id("ID:42")
    '00000042'
    """

    digits = _NON_DIGIT_PATTERN.sub("", raw_id.replace("ID:", ""))
    return digits.rjust(8, "0")


def extract_first_number(text: str) -> str:
    match = _FIRST_NUMBER_PATTERN.search(text)
    return match.group(0) if match else ""


def resolve_pdm_text(profile_description: str, pdm_lookup: Mapping[str, str]) -> str:
    """
    Resolve the description text for one PDM number.

    Blank or non-numeric numbers yield the "no PDM" sentinel; numbers absent
    from the library yield the "not in library" sentinel.
    """

    key = profile_description.strip().lower()
    if not key or not is_numeric_text(key):
        return NO_PDM_FOR_HEADING
    if key in pdm_lookup:
        return pdm_lookup[key]
    return PDM_TEXT_NOT_IN_LIBRARY


def build_pdm_lookup(pdm_rows: Iterable[PdmLookupRow]) -> dict[str, str]:
    """
    Map lowercased, trimmed PDM numbers to text. Later rows win.
    """

    lookup: dict[str, str] = {}
    for row in pdm_rows:
        key = row.pdm_number.strip().lower()
        if key:
            lookup[key] = row.text
    return lookup


def coerce_rows(
    entries: Iterable[Any] | None,
    row_type: type[RowT],
    columns: Mapping[str, int],
) -> list[RowT]:
    """
    Accept typed rows or positional cell lists. Anything else is skipped.
    """

    coerced: list[RowT] = []
    for entry in entries or ():
        if isinstance(entry, row_type):
            coerced.append(entry)
        elif is_raw_row(entry):
            coerced.append(row_type.from_row(entry, columns))
    return coerced


class ClassificationService:
    """
    Stateless classifier. Each call works on fresh collections.
    """

    def classify(
        self,
        afterproof_rows: Iterable[AfterproofRow | Sequence[Any]] | None,
        pdm_rows: Iterable[PdmLookupRow | Sequence[Any]] | None,
        beforeproof_rows: Iterable[BeforeproofRow | Sequence[Any]] | None = None,
        *,
        afterproof_columns: Mapping[str, int] = AFTERPROOF_COLUMNS,
        beforeproof_columns: Mapping[str, int] = BEFOREPROOF_COLUMNS,
        pdm_columns: Mapping[str, int] = PDM_LIBRARY_COLUMNS,
    ) -> list[CanonicalRow]:
        """
        Produce canonical rows: current headings first, then deleted ones.
        """

        afterproof = coerce_rows(afterproof_rows, AfterproofRow, afterproof_columns)
        beforeproof = coerce_rows(beforeproof_rows, BeforeproofRow, beforeproof_columns)
        pdm_lookup = build_pdm_lookup(coerce_rows(pdm_rows, PdmLookupRow, pdm_columns))

        beforeproof_names = {
            name
            for name in (row.classification_name.strip().lower() for row in beforeproof)
            if name
        }

        canonical_rows = [
            self._to_canonical(
                row,
                pdm_lookup=pdm_lookup,
                heading_type=self._heading_type(
                    row.classification_name,
                    beforeproof_names=beforeproof_names,
                    has_beforeproof=bool(beforeproof),
                ),
            )
            for row in afterproof
        ]

        deleted_rows: list[CanonicalRow] = []
        if beforeproof:
            deleted_rows = self._deleted_rows(afterproof, beforeproof, pdm_lookup=pdm_lookup)

        logger.info(
            "Classified headings current=%d deleted=%d library_entries=%d",
            len(canonical_rows),
            len(deleted_rows),
            len(pdm_lookup),
        )
        return canonical_rows + deleted_rows

    @staticmethod
    def _heading_type(name: str, *, beforeproof_names: set[str], has_beforeproof: bool) -> str:
        if not has_beforeproof:
            return HEADING_TYPE_ADDED
        normalized = name.strip().lower()
        if not normalized:
            return ""
        return HEADING_TYPE_EXISTING if normalized in beforeproof_names else HEADING_TYPE_ADDED

    @staticmethod
    def _to_canonical(row: AfterproofRow, *, pdm_lookup: Mapping[str, str], heading_type: str) -> CanonicalRow:
        profile_description = row.profile_description
        if not profile_description and row.definition:
            profile_description = extract_first_number(row.definition)

        return CanonicalRow(
            classification_id=format_heading_id(row.classification_id) if row.classification_id else "",
            classification_name=row.classification_name,
            category=row.category,
            family=row.family,
            rank_points=row.rank_points,
            company_type=row.company_type,
            site_link=row.site_link,
            quality=row.quality,
            profile_description=profile_description,
            pdm_text=resolve_pdm_text(profile_description, pdm_lookup),
            heading_type=heading_type,
        )

    @staticmethod
    def _deleted_rows(
        afterproof: Sequence[AfterproofRow],
        beforeproof: Sequence[BeforeproofRow],
        *,
        pdm_lookup: Mapping[str, str],
    ) -> list[CanonicalRow]:
        current_names = {
            name
            for name in (row.classification_name.strip().lower() for row in afterproof)
            if name
        }

        deleted: list[CanonicalRow] = []
        for row in beforeproof:
            name = row.classification_name.strip()
            if not name or name.lower() in current_names:
                continue
            deleted.append(
                CanonicalRow(
                    classification_id=format_heading_id(row.classification_id.strip()),
                    classification_name=name,
                    category=row.category,
                    family=row.family,
                    rank_points=row.rank_points,
                    company_type=row.company_type,
                    site_link=row.site_link,
                    quality=row.quality,
                    profile_description=row.profile_description,
                    pdm_text=resolve_pdm_text(row.profile_description, pdm_lookup),
                    heading_type=HEADING_TYPE_DELETED,
                )
            )
        return deleted


@lru_cache(maxsize=1)
def get_classification_service() -> ClassificationService:
    """
    FastAPI dependency factory for the classifier.
    """

    return ClassificationService()
