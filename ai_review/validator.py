"""Validation layer for raw AI review output.

Parses the model's JSON object and maps it back onto the requested PDM keys.
"""

import json
import logging
import re
from typing import Any, Dict, List, Optional, Sequence

from ai_review.schema import ReviewIssue, ReviewResult

logger = logging.getLogger(__name__)

_FIRST_DIGIT_RUN = re.compile(r"\d+")


class ReviewOutputValidationError(Exception):
    """Raised when AI review output cannot be used.

    Attributes:
        stage: Which step failed ("empty", "format", "json_parse", "schema"
            or "key_mapping").
        errors: List of human-readable error descriptions.
        raw_response: The original string that failed validation.
    """

    def __init__(
        self,
        stage: str,
        errors: List[str],
        raw_response: str,
    ) -> None:
        self.stage = stage
        self.errors = errors
        self.raw_response = raw_response
        message = (
            f"AI review output validation failed at stage '{stage}': "
            + "; ".join(errors)
        )
        super().__init__(message)


def _strip_markdown_fences(text: str) -> str:
    """Remove optional markdown code fences wrapping JSON.

    Args:
        text: Raw model response string.

    Returns:
        The text with leading/trailing code fences removed, if present.
    """
    stripped = text.strip()
    match = re.match(
        r"^```(?:json)?\s*\n?(.*?)\n?\s*```$",
        stripped,
        re.DOTALL | re.IGNORECASE,
    )
    if match:
        return match.group(1).strip()
    return stripped


def normalize_pdm_key(value: str) -> str:
    """Return the first run of digits in a key, or the lowercased key."""
    trimmed = value.strip()
    if not trimmed:
        return ""
    match = _FIRST_DIGIT_RUN.search(trimmed)
    if match:
        return match.group(0)
    return trimmed.lower()


def _resolve_key(
    raw_key: str,
    requested: Dict[str, None],
    normalized_lookup: Dict[str, List[str]],
) -> Optional[str]:
    if raw_key in requested:
        return raw_key
    normalized = normalize_pdm_key(raw_key)
    if not normalized:
        return None
    matches = normalized_lookup.get(normalized, [])
    return matches[0] if len(matches) == 1 else None


def _clean_strings(values: Any) -> List[str]:
    if not isinstance(values, list):
        return []
    cleaned = [value.strip() for value in values if isinstance(value, str)]
    return [value for value in cleaned if value]


def _normalize_issue(raw: Any) -> Optional[ReviewIssue]:
    if not isinstance(raw, dict) or not isinstance(raw.get("text"), str):
        return None
    text = raw["text"].strip()
    if not text:
        return None
    return ReviewIssue(
        text=text,
        flags=_clean_strings(raw.get("flags")),
        suggestions=_clean_strings(raw.get("suggestions")),
    )


def parse_review_response(raw_response: str, requested_keys: Sequence[str]) -> List[ReviewResult]:
    """Parse a raw review response into one result per requested key.

    Steps:
        1. Strip optional markdown fences.
        2. Parse as a JSON object.
        3. Resolve each response key to a requested key, exactly or by its
           first digit run when that run identifies one requested key.
        4. Keep issues with string text, trimmed, without duplicates.

    Args:
        raw_response: The raw string returned by the review adapter.
        requested_keys: PDM numbers sent in the prompt, in output order.

    Returns:
        One ReviewResult per requested key; keys the model skipped get an
        empty issue list.

    Raises:
        ReviewOutputValidationError: If the response is empty, not a JSON
            object, or none of its keys map to a requested key.
    """
    cleaned = _strip_markdown_fences(raw_response or "")
    if not cleaned:
        raise ReviewOutputValidationError(
            stage="empty",
            errors=["response text is empty"],
            raw_response=raw_response or "",
        )

    try:
        data = json.loads(cleaned)
    except (json.JSONDecodeError, TypeError) as exc:
        raise ReviewOutputValidationError(
            stage="json_parse",
            errors=[str(exc)],
            raw_response=raw_response,
        ) from exc

    if not isinstance(data, dict):
        raise ReviewOutputValidationError(
            stage="schema",
            errors=["top-level JSON must be an object"],
            raw_response=raw_response,
        )

    requested: Dict[str, None] = dict.fromkeys(str(key) for key in requested_keys)
    normalized_lookup: Dict[str, List[str]] = {}
    for key in requested:
        normalized = normalize_pdm_key(key)
        if normalized:
            normalized_lookup.setdefault(normalized, []).append(key)

    issues_by_key: Dict[str, List[ReviewIssue]] = {}
    matched_keys = 0
    for raw_key, raw_issues in data.items():
        if not isinstance(raw_issues, list):
            continue
        resolved = _resolve_key(str(raw_key), requested, normalized_lookup)
        if resolved is None:
            continue
        matched_keys += 1

        bucket = issues_by_key.setdefault(resolved, [])
        for raw_issue in raw_issues:
            issue = _normalize_issue(raw_issue)
            if issue is not None and issue not in bucket:
                bucket.append(issue)

    if matched_keys == 0:
        logger.warning(
            "AI review response did not map to requested keys requested=%s received=%s",
            list(requested),
            [str(key) for key in data],
        )
        raise ReviewOutputValidationError(
            stage="key_mapping",
            errors=["no response key matched a requested PDM number"],
            raw_response=raw_response,
        )

    return [
        ReviewResult(pdm_num=key, ai_errors=issues_by_key.get(key, []))
        for key in requested
    ]
