"""
pdm_qc/services/report_service.py

Grouper/Reporter stage.

Partitions canonical rows into exception buckets, groups the remaining
headings by PDM number, derives majority display fields, and runs the PDM
validator over the finished groups. Every call builds its own accumulators,
so one service instance can serve concurrent requests.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any

from pdm_qc.config import QCValidationSettings, get_qc_validation_settings
from pdm_qc.domain.majority import majority_or_fallback, split_families, strict_majorities
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
)
from pdm_qc.domain.rows import (
    NO_PDM_FOR_HEADING,
    NO_URL_ASSIGNED,
    PDM_TEXT_NOT_IN_LIBRARY,
    CanonicalRow,
    is_no_url,
    is_numeric_text,
    is_raw_row,
)
from pdm_qc.validators.pdm_validator import PdmValidator

logger = logging.getLogger(__name__)

NO_COMMON_FAMILY = "No common family"


def resolve_pdm_text_status(pdm_text: str) -> PdmTextStatus:
    trimmed = pdm_text.strip()
    if not trimmed or trimmed == PDM_TEXT_NOT_IN_LIBRARY:
        return PdmTextStatus.PDM_TEXT_MISSING_IN_LIBRARY
    if trimmed == NO_PDM_FOR_HEADING:
        return PdmTextStatus.NO_PDM_FOR_HEADING
    return PdmTextStatus.OK


def word_count(text: str) -> int:
    return len(text.split())


def common_family(families: Sequence[str]) -> str:
    """
    Join every family carried by a strict majority of members, or return
    "No common family".
    """

    if not families:
        return NO_COMMON_FAMILY
    member_sets = [split_families(family) for family in families]
    winners = strict_majorities(
        (family for member in member_sets for family in member),
        population=len(families),
    )
    return ", ".join(winners) if winners else NO_COMMON_FAMILY


# ---------------------------------------------------------------------------
# Accumulators
# ---------------------------------------------------------------------------


@dataclass
class _GroupAccumulator:
    headings: list[HeadingSummary] = field(default_factory=list)
    assigned_urls: list[str] = field(default_factory=list)
    families: list[str] = field(default_factory=list)
    pdm_texts: dict[str, None] = field(default_factory=dict)


@dataclass
class _ReportAccumulator:
    groups: dict[str, _GroupAccumulator] = field(default_factory=dict)
    unsupported: list[UnsupportedHeading] = field(default_factory=list)
    unprocessed: list[UnprocessedHeading] = field(default_factory=list)
    no_pdm: list[NoPdmHeading] = field(default_factory=list)
    deleted: list[DeletedHeading] = field(default_factory=list)
    added_names: set[str] = field(default_factory=set)
    existing_names: set[str] = field(default_factory=set)
    added_links: set[str] = field(default_factory=set)
    existing_links: set[str] = field(default_factory=set)

    def track_name(self, heading_type: str, name: str) -> None:
        if not name:
            return
        if "added" in heading_type:
            self.added_names.add(name)
        else:
            self.existing_names.add(name)


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class ReportService:
    """
    Builds the QC report for one set of canonical rows.
    """

    def __init__(
        self,
        *,
        settings: QCValidationSettings | None = None,
        validator: PdmValidator | None = None,
    ) -> None:
        self._settings = settings or get_qc_validation_settings()
        self._validator = validator or PdmValidator(settings=self._settings)

    def build_report(self, canonical_rows: Iterable[CanonicalRow | Sequence[Any]] | None) -> Report:
        """
        Group rows, finalize groups, and validate them.

        Raw eleven-column rows are accepted alongside CanonicalRow instances;
        any other entry is skipped.
        """

        accumulator = _ReportAccumulator()
        for entry in canonical_rows or ():
            if isinstance(entry, CanonicalRow):
                row = entry
            elif is_raw_row(entry):
                row = CanonicalRow.from_row(entry)
            else:
                continue
            self._route_row(row, accumulator)

        pdm_groups = {
            pdm_number: self._finalize_group(pdm_number, group)
            for pdm_number, group in accumulator.groups.items()
        }
        validation_results = self._validator.validate(pdm_groups)

        summary = ReportSummary(
            total_grouped_pdms=len(pdm_groups),
            total_existing_headings=len(accumulator.existing_names),
            unique_existing_links=len(accumulator.existing_links),
            total_added_headings=len(accumulator.added_names),
            unique_added_links=len(accumulator.added_links),
            total_unsupported_headings=len(accumulator.unsupported),
            total_deleted_headings=len(accumulator.deleted),
        )

        logger.info(
            "Built QC report groups=%d failing_groups=%d unsupported=%d unprocessed=%d no_pdm=%d deleted=%d",
            len(pdm_groups),
            len(validation_results),
            len(accumulator.unsupported),
            len(accumulator.unprocessed),
            len(accumulator.no_pdm),
            len(accumulator.deleted),
        )

        return Report(
            pdm_groups=pdm_groups,
            validation_results=tuple(validation_results),
            summary=summary,
            unsupported_headings=tuple(accumulator.unsupported),
            unprocessed_headings=tuple(accumulator.unprocessed),
            no_pdm_headings=tuple(accumulator.no_pdm),
            deleted_headings=tuple(accumulator.deleted),
        )

    def _route_row(self, row: CanonicalRow, accumulator: _ReportAccumulator) -> None:
        heading_type = row.heading_type.strip().lower()

        if "deleted" in heading_type:
            accumulator.deleted.append(
                DeletedHeading(
                    heading_id=row.classification_id,
                    heading_name=row.classification_name,
                    assigned_url=row.site_link,
                    family=row.family,
                    quality=row.quality,
                )
            )
            return

        if "added" not in heading_type and "existing" not in heading_type:
            return

        quality = row.quality.strip().lower()
        has_pdm_number = is_numeric_text(row.profile_description)

        if quality in {"unsupported", "unprocessed"}:
            present = []
            if not is_no_url(row.site_link):
                present.append("URL")
            if row.profile_description.strip():
                present.append("PDM Number")
            if row.company_type.strip():
                present.append("Company Type")
            error = f"Has: {', '.join(present)}" if present else ""

            accumulator.track_name(heading_type, row.classification_name)
            if quality == "unsupported":
                accumulator.unsupported.append(
                    UnsupportedHeading(
                        heading_id=row.classification_id,
                        heading_name=row.classification_name,
                        family=row.family,
                        error=error,
                    )
                )
            else:
                accumulator.unprocessed.append(
                    UnprocessedHeading(
                        heading_id=row.classification_id,
                        heading_name=row.classification_name,
                        family=row.family,
                        error=error,
                    )
                )
        elif not has_pdm_number:
            accumulator.track_name(heading_type, row.classification_name)
            accumulator.no_pdm.append(
                NoPdmHeading(
                    heading_id=row.classification_id,
                    heading_name=row.classification_name,
                    family=row.family,
                )
            )
        elif "added" in heading_type:
            accumulator.added_names.add(row.classification_name)
            if row.site_link:
                accumulator.added_links.add(row.site_link)
        else:
            accumulator.existing_names.add(row.classification_name)
            if row.site_link:
                accumulator.existing_links.add(row.site_link)

        if has_pdm_number:
            group = accumulator.groups.setdefault(row.profile_description, _GroupAccumulator())
            group.headings.append(
                HeadingSummary(
                    name=row.classification_name,
                    type=row.heading_type,
                    url=row.site_link,
                    family=row.family,
                    company_type=row.company_type,
                    quality=row.quality,
                )
            )
            group.assigned_urls.append(row.site_link or NO_URL_ASSIGNED)
            group.families.append(row.family)
            if row.pdm_text:
                group.pdm_texts.setdefault(row.pdm_text, None)

    def _finalize_group(self, pdm_number: str, group: _GroupAccumulator) -> PdmGroup:
        texts = list(group.pdm_texts)
        if len(texts) > 1:
            logger.warning(
                "PDM group carries divergent texts pdm_number=%r distinct_texts=%d; keeping the first",
                pdm_number,
                len(texts),
            )
        pdm_text = texts[0] if texts else ""
        status = resolve_pdm_text_status(pdm_text)
        is_ok = status is PdmTextStatus.OK
        count = word_count(pdm_text) if is_ok else 0
        member_count = len(group.headings)

        return PdmGroup(
            pdm_number=pdm_number,
            headings=tuple(group.headings),
            assigned_urls=tuple(group.assigned_urls),
            families=tuple(group.families),
            pdm_text=pdm_text if is_ok else "",
            pdm_text_status=status,
            word_count=count,
            display_common_family=common_family(group.families),
            display_company_type=majority_or_fallback(
                (heading.company_type for heading in group.headings),
                population=member_count,
            ),
            display_quality=majority_or_fallback(
                (heading.quality for heading in group.headings),
                population=member_count,
            ),
            word_count_warning=is_ok
            and not (self._settings.min_word_count <= count <= self._settings.max_word_count),
        )


@lru_cache(maxsize=1)
def get_report_service() -> ReportService:
    """
    FastAPI dependency factory for the report builder.
    """

    return ReportService()
