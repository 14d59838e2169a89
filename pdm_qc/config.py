"""
pdm_qc/config.py

Environment-driven configuration for the quality-control pipeline.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path

logger = logging.getLogger(__name__)

GEMINI_DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"


def load_env_files() -> None:
    """
    Load simple KEY=VALUE pairs from `.env` and `.env.local` (if present).
    Existing process environment variables are not overwritten.
    """

    project_root = Path(__file__).resolve().parents[1]
    for filename in (".env", ".env.local"):
        env_path = project_root / filename
        if not env_path.exists():
            continue

        for raw_line in env_path.read_text(encoding="utf-8").splitlines():
            line = raw_line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue

            key, value = line.split("=", 1)
            key = key.strip()
            value = value.strip().strip('"').strip("'")
            if key and key not in os.environ:
                os.environ[key] = value


@lru_cache(maxsize=1)
def _load_env_once() -> None:
    """
    Ensure project `.env` files are loaded once before reading settings.
    """

    load_env_files()


def _get_bool_env(name: str, default: bool) -> bool:
    """
    Read a boolean from environment variables with safe fallback.
    """

    _load_env_once()
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    return raw_value.strip().lower() in {"1", "true", "yes", "on"}


def _get_int_env(name: str, default: int) -> int:
    """
    Read an integer from environment variables with safe fallback.
    """

    _load_env_once()
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    try:
        return int(raw_value)
    except ValueError:
        return default


def _get_float_env(name: str, default: float) -> float:
    """
    Read a float from environment variables with safe fallback.
    """

    _load_env_once()
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    try:
        return float(raw_value)
    except ValueError:
        return default


def _get_str_env(name: str, default: str) -> str:
    """
    Read a string from environment variables with fallback.
    """

    _load_env_once()
    value = os.getenv(name)
    if value is None:
        return default
    stripped = value.strip()
    return stripped if stripped else default


def _get_list_env(name: str) -> tuple[str, ...]:
    """
    Read a comma-separated list, dropping blank entries.
    """

    _load_env_once()
    raw_value = os.getenv(name)
    if raw_value is None:
        return ()
    return tuple(item.strip() for item in raw_value.split(",") if item.strip())


def _get_mapping_env(name: str) -> dict[str, str]:
    """
    Read a JSON object of string pairs. Malformed values yield an empty mapping.
    """

    _load_env_once()
    raw_value = os.getenv(name)
    if raw_value is None or not raw_value.strip():
        return {}
    try:
        parsed = json.loads(raw_value)
    except ValueError:
        logger.warning("Ignoring malformed JSON mapping env=%s", name)
        return {}
    if not isinstance(parsed, dict):
        logger.warning("Ignoring non-object JSON mapping env=%s", name)
        return {}
    return {str(key): str(value) for key, value in parsed.items() if str(key)}


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class QCValidationSettings:
    """
    Rule tables and limits used by the PDM validator.

    Empty collections disable the corresponding check.
    """

    forbidden_brands: tuple[str, ...] = ()
    forbidden_url_words: dict[str, str] = field(default_factory=dict)
    quality_values: tuple[str, ...] = ()
    forbidden_quality_values: tuple[str, ...] = ()
    max_headings: int = 8
    min_word_count: int = 20
    max_word_count: int = 115


@lru_cache(maxsize=1)
def get_qc_validation_settings() -> QCValidationSettings:
    """
    Return cached validator settings.
    """

    return QCValidationSettings(
        forbidden_brands=_get_list_env("QC_FORBIDDEN_BRANDS"),
        forbidden_url_words=_get_mapping_env("QC_FORBIDDEN_URL_WORDS"),
        quality_values=_get_list_env("QC_QUALITY_VALUES"),
        forbidden_quality_values=_get_list_env("QC_FORBIDDEN_QUALITY_VALUES"),
        max_headings=max(1, _get_int_env("QC_MAX_HEADINGS", 8)),
        min_word_count=max(0, _get_int_env("QC_MIN_WORD_COUNT", 20)),
        max_word_count=max(0, _get_int_env("QC_MAX_WORD_COUNT", 115)),
    )


# ---------------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class QCExportSettings:
    """
    Workbook styling for the QC export.
    """

    font_family: str = "Calibri"
    font_size: int = 11
    header_bg_color: str = "D3D3D3"
    default_filename: str = "QC_Report"


@lru_cache(maxsize=1)
def get_qc_export_settings() -> QCExportSettings:
    """
    Return cached export settings.
    """

    return QCExportSettings(
        font_family=_get_str_env("QC_EXPORT_FONT_FAMILY", "Calibri"),
        font_size=max(1, _get_int_env("QC_EXPORT_FONT_SIZE", 11)),
        header_bg_color=_get_str_env("QC_EXPORT_HEADER_BG_COLOR", "D3D3D3").lstrip("#").upper(),
        default_filename=_get_str_env("QC_EXPORT_DEFAULT_FILENAME", "QC_Report"),
    )


# ---------------------------------------------------------------------------
# Ingestion
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class QCIngestionSettings:
    """
    Limits applied to row tables at the request boundary.
    """

    max_rows: int = 15000
    max_cell_length: int = 20000
    max_company_profile_length: int = 20000


@lru_cache(maxsize=1)
def get_qc_ingestion_settings() -> QCIngestionSettings:
    """
    Return cached ingestion settings.
    """

    return QCIngestionSettings(
        max_rows=max(1, _get_int_env("QC_MAX_ROWS", 15000)),
        max_cell_length=max(1, _get_int_env("QC_MAX_CELL_LENGTH", 20000)),
        max_company_profile_length=max(1, _get_int_env("QC_MAX_COMPANY_PROFILE_LENGTH", 20000)),
    )


# ---------------------------------------------------------------------------
# AI review
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AIReviewSettings:
    """
    Runtime settings for the optional AI text review.
    """

    enabled: bool = True
    api_key: str = ""
    model: str = "gemini-2.5-flash"
    base_url: str = GEMINI_DEFAULT_BASE_URL
    verify_ssl: bool = True
    timeout_seconds: float = 120.0
    max_attempts: int = 3
    backoff_initial_seconds: float = 0.5
    backoff_multiplier: float = 2.0
    batch_size: int = 25
    cache_ttl_seconds: int = 900
    max_sync_descriptions: int = 100
    max_async_descriptions: int = 200
    task_ttl_seconds: int = 1200
    max_description_chars: int = 5000

    @property
    def is_active(self) -> bool:
        return self.enabled and bool(self.api_key.strip())


@lru_cache(maxsize=1)
def get_ai_review_settings() -> AIReviewSettings:
    """
    Return cached AI review settings.
    """

    return AIReviewSettings(
        enabled=_get_bool_env("AI_REVIEW_ENABLED", True),
        api_key=_get_str_env("GEMINI_API_KEY", ""),
        model=_get_str_env("GEMINI_MODEL", "gemini-2.5-flash"),
        base_url=_get_str_env("GEMINI_BASE_URL", GEMINI_DEFAULT_BASE_URL).rstrip("/"),
        verify_ssl=_get_bool_env("GEMINI_VERIFY_SSL", True),
        timeout_seconds=max(1.0, _get_float_env("AI_REVIEW_TIMEOUT_SECONDS", 120.0)),
        max_attempts=max(1, _get_int_env("AI_REVIEW_MAX_ATTEMPTS", 3)),
        backoff_initial_seconds=max(0.0, _get_float_env("AI_REVIEW_BACKOFF_INITIAL_SECONDS", 0.5)),
        backoff_multiplier=max(1.0, _get_float_env("AI_REVIEW_BACKOFF_MULTIPLIER", 2.0)),
        batch_size=max(1, _get_int_env("AI_REVIEW_BATCH_SIZE", 25)),
        cache_ttl_seconds=max(0, _get_int_env("AI_REVIEW_CACHE_TTL_SECONDS", 900)),
        max_sync_descriptions=max(1, _get_int_env("AI_REVIEW_MAX_SYNC_DESCRIPTIONS", 100)),
        max_async_descriptions=max(1, _get_int_env("AI_REVIEW_MAX_ASYNC_DESCRIPTIONS", 200)),
        task_ttl_seconds=max(1, _get_int_env("AI_REVIEW_TASK_TTL_SECONDS", 1200)),
        max_description_chars=max(1, _get_int_env("AI_REVIEW_MAX_DESCRIPTION_CHARS", 5000)),
    )
