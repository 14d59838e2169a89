"""
pdm_qc/domain/rows.py

Typed row records for the classification stage.

Host tables arrive as positional cell lists. They are converted into the
dataclasses below exactly once, at the ingestion boundary, using a column
layout that callers may override.
"""

from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, fields
from typing import Any

HEADING_TYPE_ADDED = "Added"
HEADING_TYPE_EXISTING = "Existing"
HEADING_TYPE_DELETED = "Deleted"

NO_PDM_FOR_HEADING = "This Heading does not have PDM"
PDM_TEXT_NOT_IN_LIBRARY = "This PDM number does not have PDM text in Library"
NO_URL_ASSIGNED = "No URL assigned"

HEADING_TABLE_WIDTH = 11
PDM_LIBRARY_TABLE_WIDTH = 5

AFTERPROOF_COLUMNS: Mapping[str, int] = {
    "classification_name": 0,
    "classification_id": 1,
    "definition": 2,
    "category": 3,
    "family": 4,
    "rank_points": 5,
    "company_type": 6,
    "profile_description": 7,
    "site_link": 8,
    "quality": 9,
}

BEFOREPROOF_COLUMNS: Mapping[str, int] = dict(AFTERPROOF_COLUMNS)

PDM_LIBRARY_COLUMNS: Mapping[str, int] = {
    "pdm_number": 0,
    "text": 2,
}


def cell_text(row: Sequence[Any], index: int) -> str:
    """
    Return one cell as text. Missing, null, and non-scalar cells read as "".
    """

    if index < 0 or index >= len(row):
        return ""
    value = row[index]
    if value is None:
        return ""
    if isinstance(value, bool):
        return "1" if value else ""
    if isinstance(value, float):
        return str(int(value)) if value.is_integer() else str(value)
    if isinstance(value, (str, int)):
        return str(value)
    return ""


_NUMERIC_PATTERN = re.compile(r"^[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?$")


def is_numeric_text(value: str) -> bool:
    """
    Return True for decimal or scientific notation numbers, ignoring
    surrounding whitespace.
    """

    return bool(_NUMERIC_PATTERN.match(value.strip()))


def is_no_url(url: str) -> bool:
    trimmed = url.strip()
    return not trimmed or trimmed.lower() == NO_URL_ASSIGNED.lower()


def is_raw_row(value: object) -> bool:
    return isinstance(value, (list, tuple))


def _read_fields(row: Sequence[Any], columns: Mapping[str, int]) -> dict[str, str]:
    return {name: cell_text(row, index) for name, index in columns.items()}


@dataclass(frozen=True)
class AfterproofRow:
    """
    One heading in the current revision of an account.
    """

    classification_name: str = ""
    classification_id: str = ""
    definition: str = ""
    category: str = ""
    family: str = ""
    rank_points: str = ""
    company_type: str = ""
    profile_description: str = ""
    site_link: str = ""
    quality: str = ""

    @classmethod
    def from_row(
        cls,
        row: Sequence[Any],
        columns: Mapping[str, int] = AFTERPROOF_COLUMNS,
    ):
        known = {item.name for item in fields(cls)}
        values = {name: value for name, value in _read_fields(row, columns).items() if name in known}
        return cls(**values)


@dataclass(frozen=True)
class BeforeproofRow(AfterproofRow):
    """
    One heading in the previous revision. Only used to tag and to
    synthesize deleted headings.
    """

    @classmethod
    def from_row(
        cls,
        row: Sequence[Any],
        columns: Mapping[str, int] = BEFOREPROOF_COLUMNS,
    ):
        return super().from_row(row, columns)


@dataclass(frozen=True)
class PdmLookupRow:
    """
    One entry of the PDM description library.
    """

    pdm_number: str = ""
    text: str = ""

    @classmethod
    def from_row(
        cls,
        row: Sequence[Any],
        columns: Mapping[str, int] = PDM_LIBRARY_COLUMNS,
    ) -> PdmLookupRow:
        values = _read_fields(row, columns)
        return cls(pdm_number=values.get("pdm_number", ""), text=values.get("text", ""))


CANONICAL_COLUMNS: tuple[str, ...] = (
    "classification_id",
    "classification_name",
    "category",
    "family",
    "rank_points",
    "company_type",
    "site_link",
    "quality",
    "profile_description",
    "pdm_text",
    "heading_type",
)


@dataclass(frozen=True)
class CanonicalRow:
    """
    Classifier output consumed by the report builder.
    """

    classification_id: str = ""
    classification_name: str = ""
    category: str = ""
    family: str = ""
    rank_points: str = ""
    company_type: str = ""
    site_link: str = ""
    quality: str = ""
    profile_description: str = ""
    pdm_text: str = ""
    heading_type: str = ""

    def to_row(self) -> list[str]:
        """
        Return the fixed eleven-column layout used by the report endpoint
        and the "Classification Details" sheet.
        """

        return [getattr(self, name) for name in CANONICAL_COLUMNS]

    @classmethod
    def from_row(cls, row: Sequence[Any]) -> CanonicalRow:
        return cls(**{name: cell_text(row, index) for index, name in enumerate(CANONICAL_COLUMNS)})
