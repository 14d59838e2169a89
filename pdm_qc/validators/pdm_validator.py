"""
pdm_qc/validators/pdm_validator.py

Rule checks over finalized PDM groups.

Violations are returned as data: one ValidationResult per failing group,
carrying its messages in a fixed check order. Groups that pass every check
produce no result. Nothing in this module raises for bad PDM content.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from urllib.parse import urlsplit

from pdm_qc.config import QCValidationSettings, get_qc_validation_settings
from pdm_qc.domain.majority import (
    NOT_SPECIFIED,
    casefold_key,
    split_families,
    strict_majorities,
    strict_majority,
)
from pdm_qc.domain.report import HeadingSummary, PdmGroup, PdmTextStatus, ValidationResult
from pdm_qc.domain.rows import NO_URL_ASSIGNED, is_no_url

logger = logging.getLogger(__name__)

PDM_TEXT_NOT_FOUND = "PDM text not found in library."
DUPLICATE_PDM = "Duplicate PDM found!"
EXTRA_SPACES = "PDM Text contains extra spaces."
EDGE_SPACES = "PDM Text has leading/trailing spaces."

URL_EXEMPT_QUALITIES = frozenset({"unsupported", "supported by profile content"})

_URL_PATTERN = re.compile(
    r"(https?://)?([a-zA-Z0-9-]+\.)*[a-zA-Z0-9-]+\.[a-zA-Z]{2,}"
    r"(/[a-zA-Z0-9\-._~:/?#\[\]@!$&'()*+,;=]*)?",
    re.IGNORECASE,
)
_EXTRA_SPACES_PATTERN = re.compile(r"\s{2,}", re.ASCII)
_LARGE_NUMBER_PATTERN = re.compile(r"\b(?<![\d.])(\d{4,})(?![\d.])\b", re.ASCII)


@dataclass(frozen=True)
class UrlCheck:
    is_valid: bool
    message: str


@dataclass
class ValidationContext:
    """
    Per-call accumulator threaded through the checks.

    A new context is created for every `validate()` call and never shared.
    """

    reference_domain: str | None = None
    seen_texts: set[str] = field(default_factory=set)


# ---------------------------------------------------------------------------
# URL helpers
# ---------------------------------------------------------------------------


def extract_domain(url: str) -> str | None:
    """
    Return the lowercased host without a leading "www.", or None when the
    URL has no parseable host.
    """

    try:
        host = urlsplit(url.strip()).hostname
    except ValueError:
        return None
    if not host or not host.strip():
        return None
    host = host.strip().lower()
    if host.startswith("www."):
        host = host[len("www."):]
    return host or None


def check_url(url: str, forbidden_url_words: Mapping[str, str]) -> UrlCheck:
    """
    Structural URL check. The first failing rule decides the message.
    """

    if not url.strip():
        return UrlCheck(is_valid=False, message="")

    lowered = url.lower()
    for word, message in forbidden_url_words.items():
        if word and word.lower() in lowered:
            return UrlCheck(is_valid=False, message=message)

    if not _URL_PATTERN.fullmatch(url):
        return UrlCheck(is_valid=False, message="Incorrect URL structure")
    if not url.startswith(("http://", "https://")):
        return UrlCheck(is_valid=False, message="Missing http:// or https://")
    if url.startswith("http://"):
        return UrlCheck(is_valid=False, message="HTTP link found (less secure)")
    return UrlCheck(is_valid=True, message="Valid URL!")


def determine_reference_domain(pdm_groups: Mapping[str, PdmGroup]) -> str | None:
    """
    Pick the domain used by the most groups. Ties go to the domain whose
    first group comes earliest.
    """

    group_counts: dict[str, int] = {}
    first_index: dict[str, int] = {}
    for index, group in enumerate(pdm_groups.values()):
        domains: dict[str, None] = {}
        for heading in group.headings:
            if is_no_url(heading.url):
                continue
            domain = extract_domain(heading.url)
            if domain is not None:
                domains.setdefault(domain, None)
        for domain in domains:
            group_counts[domain] = group_counts.get(domain, 0) + 1
            first_index.setdefault(domain, index)

    if not group_counts:
        return None
    return min(group_counts, key=lambda domain: (-group_counts[domain], first_index[domain]))


def _member_link(heading: HeadingSummary) -> str:
    return NO_URL_ASSIGNED if is_no_url(heading.url) else heading.url


def _family_label(family: str) -> str:
    return family if family else "No family"


def _normalize_company_type(value: str) -> str:
    trimmed = value.strip()
    if not trimmed or trimmed == "Not specified":
        return ""
    parts = sorted(part.strip().lower() for part in trimmed.split(",") if part.strip())
    return ", ".join(parts)


# ---------------------------------------------------------------------------
# Validator
# ---------------------------------------------------------------------------


class PdmValidator:
    """
    Applies the PDM rule set to every group in insertion order.
    """

    def __init__(self, *, settings: QCValidationSettings | None = None) -> None:
        self._settings = settings or get_qc_validation_settings()

    def validate(self, pdm_groups: Mapping[str, PdmGroup]) -> list[ValidationResult]:
        context = ValidationContext(reference_domain=determine_reference_domain(pdm_groups))
        results: list[ValidationResult] = []

        for pdm_number, group in pdm_groups.items():
            errors = self.validate_group(str(pdm_number), group, context)
            if errors:
                results.append(ValidationResult(pdm_number=str(pdm_number), errors=tuple(errors)))

        logger.debug(
            "Validated PDM groups total=%d failing=%d reference_domain=%r",
            len(pdm_groups),
            len(results),
            context.reference_domain,
        )
        return results

    def validate_group(self, pdm_number: str, group: PdmGroup, context: ValidationContext) -> list[str]:
        if group.pdm_text_status == PdmTextStatus.PDM_TEXT_MISSING_IN_LIBRARY:
            return [PDM_TEXT_NOT_FOUND]

        headings = list(group.headings)
        links = [_member_link(heading) for heading in headings]
        text = group.pdm_text

        errors: list[str] = []
        errors.extend(self._links_consistency(headings, links))
        errors.extend(self._family_consistency(headings))
        errors.extend(self._url_and_domain(headings, links, context.reference_domain))
        errors.extend(self._text_formatting(text))
        errors.extend(self._duplicate_text(text, group.pdm_text_status, context))
        errors.extend(self._forbidden_brands(text))
        errors.extend(self._large_numbers(text))
        errors.extend(self._max_headings(headings))
        errors.extend(self._company_type_consistency(headings))
        errors.extend(self._quality_allow_list(headings))
        errors.extend(self._quality_consistency(headings))
        errors.extend(self._special_quality_integrity(headings, pdm_number))
        return errors

    # --- per-check helpers ---------------------------------------------------

    @staticmethod
    def _links_consistency(headings: Sequence[HeadingSummary], links: Sequence[str]) -> list[str]:
        assigned = [link for link in links if link != NO_URL_ASSIGNED]
        if len(assigned) <= 1:
            return []

        first_link = assigned[0]
        mismatched = [
            f"{heading.name} ({link})"
            for heading, link in zip(headings, links)
            if link != NO_URL_ASSIGNED and link != first_link
        ]
        if not mismatched:
            return []
        return ["Headings have different links: " + "; ".join(mismatched)]

    @staticmethod
    def _family_consistency(headings: Sequence[HeadingSummary]) -> list[str]:
        member_sets = [split_families(heading.family) for heading in headings]
        majority = strict_majorities(
            (family for member in member_sets for family in member),
            population=len(headings),
        )

        if majority:
            lacking = [
                f"{heading.name} ({_family_label(heading.family)})"
                for heading, families in zip(headings, member_sets)
                if not set(families) & set(majority)
            ]
            if not lacking:
                return []
            return ["No common family for " + "; ".join(lacking)]

        described = [f"{heading.name} ({_family_label(heading.family)})" for heading in headings]
        return ["No common family found among " + "; ".join(described)]

    def _url_and_domain(
        self,
        headings: Sequence[HeadingSummary],
        links: Sequence[str],
        reference_domain: str | None,
    ) -> list[str]:
        errors: list[str] = []
        for heading, url in zip(headings, links):
            if url == NO_URL_ASSIGNED:
                if heading.quality.strip().lower() not in URL_EXEMPT_QUALITIES:
                    errors.append(f"{heading.name}: No URL assigned.")
                continue

            url_check = check_url(url, self._settings.forbidden_url_words)
            if not url_check.is_valid:
                errors.append(f"{heading.name}: {url_check.message}")

            domain = extract_domain(url)
            if reference_domain is not None and domain is not None and domain != reference_domain:
                errors.append(
                    f"{heading.name}: Domain mismatch. Expected domain is {reference_domain}, found {domain}."
                )
        return errors

    @staticmethod
    def _text_formatting(text: str) -> list[str]:
        errors: list[str] = []
        if _EXTRA_SPACES_PATTERN.search(text):
            errors.append(EXTRA_SPACES)
        if text != text.strip():
            errors.append(EDGE_SPACES)
        return errors

    @staticmethod
    def _duplicate_text(text: str, status: PdmTextStatus, context: ValidationContext) -> list[str]:
        if status != PdmTextStatus.OK or not text.strip():
            return []
        if text in context.seen_texts:
            return [DUPLICATE_PDM]
        context.seen_texts.add(text)
        return []

    def _forbidden_brands(self, text: str) -> list[str]:
        found = [
            brand
            for brand in self._settings.forbidden_brands
            if brand.strip()
            and re.search(rf"\b{re.escape(brand)}(?:®)?\b", text, re.IGNORECASE)
        ]
        if not found:
            return []
        return [f"PDM Text contains forbidden brand names: {', '.join(found)}."]

    @staticmethod
    def _large_numbers(text: str) -> list[str]:
        numbers = list(dict.fromkeys(_LARGE_NUMBER_PATTERN.findall(text)))
        if not numbers:
            return []
        return [f"PDM Text contains large numbers without commas: {', '.join(numbers)}."]

    def _max_headings(self, headings: Sequence[HeadingSummary]) -> list[str]:
        limit = self._settings.max_headings
        if len(headings) <= limit:
            return []
        return [f"Too many headings ({len(headings)}). Max allowed: {limit}."]

    @staticmethod
    def _company_type_consistency(headings: Sequence[HeadingSummary]) -> list[str]:
        if len(headings) < 2:
            return []

        normalized = [_normalize_company_type(heading.company_type) for heading in headings]
        reference = normalized[0]
        errors: list[str] = []

        if not reference:
            errors.append(
                "Company Type mismatch.\n"
                f'Heading 1 "{headings[0].name}" is missing Company Type (used as reference).'
            )

        for position in range(1, len(headings)):
            heading = headings[position]
            current = normalized[position]
            if not current:
                errors.append(
                    "Company Type mismatch.\n"
                    f'Heading {position + 1} "{heading.name}" is missing Company Type.'
                )
                continue
            if reference and current != reference:
                errors.append(
                    "Company Type mismatch.\n"
                    f'Reference (Heading 1): "{headings[0].company_type}".\n'
                    f"Mismatch: {heading.name} ({heading.company_type})"
                )
        return errors

    def _quality_allow_list(self, headings: Sequence[HeadingSummary]) -> list[str]:
        allowed = {value.strip().lower() for value in self._settings.quality_values if value.strip()}
        forbidden = {
            value.strip().lower() for value in self._settings.forbidden_quality_values if value.strip()
        }
        if not allowed and not forbidden:
            return []

        errors: list[str] = []
        for heading in headings:
            quality = heading.quality.strip()
            if not quality:
                continue
            if quality.lower() in forbidden:
                errors.append(f'Heading "{heading.name}": Type of Proof "{quality}" is not allowed.')
            elif allowed and quality.lower() not in allowed:
                errors.append(f'Heading "{heading.name}" has invalid Type of Proof value: "{quality}".')
        return errors

    @staticmethod
    def _quality_consistency(headings: Sequence[HeadingSummary]) -> list[str]:
        rated = [(heading.name, heading.quality.strip()) for heading in headings if heading.quality.strip()]
        if not rated:
            return []

        # Blanks are tallied as "Not specified" against a threshold of half the rated headings.
        majority = strict_majority(
            (heading.quality.strip() or NOT_SPECIFIED for heading in headings),
            population=len(rated),
            key=casefold_key,
        )
        if majority is not None:
            mismatched = [
                f"{name} ({quality})" for name, quality in rated if quality.lower() != majority.lower()
            ]
            if not mismatched:
                return []
            return [
                "Type of Proof mismatch.\n"
                f'Majority is "{majority}".\n'
                "Mismatches: " + "\n".join(mismatched)
            ]

        if len(rated) > 1:
            return ["Type of Proof mismatch.\n" + ";\n".join(f"{name} ({quality})" for name, quality in rated)]
        return []

    @staticmethod
    def _special_quality_integrity(headings: Sequence[HeadingSummary], pdm_number: str) -> list[str]:
        errors: list[str] = []
        for heading in headings:
            quality = heading.quality.strip().lower()
            if quality == "unsupported":
                present = []
                if not is_no_url(heading.url):
                    present.append("URL")
                if pdm_number.strip():
                    present.append("PDM Number")
                if heading.company_type.strip():
                    present.append("Company Type")
                if present:
                    errors.append(f'Heading "{heading.name}" is "Unsupported" but has: {", ".join(present)}.')
            elif quality == "supported by profile content" and not is_no_url(heading.url):
                errors.append(f'Heading "{heading.name}" is "Supported by Profile Content" but has: URL.')
        return errors
