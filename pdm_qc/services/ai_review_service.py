"""
pdm_qc/services/ai_review_service.py

Optional AI text review of PDM descriptions, synchronous and as a polled
background job.

Results for an identical (filtered) description set are cached in memory
for `AI_REVIEW_CACHE_TTL_SECONDS`. Failures never raise to the caller; they
surface as a user-facing `warning` next to whatever results were produced.
"""

from __future__ import annotations

import hashlib
import json
import logging
import threading
import time
import uuid
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Protocol

from fastapi import BackgroundTasks

from ai_review.adapter import BaseReviewAdapter, GeminiReviewAdapter, ReviewTransportError
from ai_review.prompt_builder import ReviewPromptBuilder
from ai_review.schema import ReviewResult
from ai_review.validator import ReviewOutputValidationError, parse_review_response
from pdm_qc.config import AIReviewSettings, get_ai_review_settings

logger = logging.getLogger(__name__)

CACHE_KEY_PREFIX = "ai_review_"

WARNING_UNAVAILABLE = "AI validation temporarily unavailable. Please try again later."
WARNING_UNEXPECTED_FORMAT = "AI returned an unexpected response format. Please try again."
WARNING_EMPTY_RESPONSE = "AI returned an empty response. Please try again."
WARNING_INVALID_RESPONSE = "AI returned an invalid response. Please try again."
WARNING_TASK_NOT_FOUND = "AI validation session not found. Please try again."
WARNING_TASK_FAILED = "AI validation failed. Please try again."

_STAGE_WARNINGS = {
    "empty": WARNING_EMPTY_RESPONSE,
    "format": WARNING_UNEXPECTED_FORMAT,
    "key_mapping": WARNING_UNEXPECTED_FORMAT,
    "json_parse": WARNING_INVALID_RESPONSE,
    "schema": WARNING_INVALID_RESPONSE,
}

STATUS_PENDING = "pending"
STATUS_PROCESSING = "processing"
STATUS_COMPLETE = "complete"
STATUS_FAILED = "failed"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def filter_descriptions(descriptions: Mapping[Any, Any]) -> dict[str, str]:
    """
    Trim descriptions and drop blank or non-text entries, keeping key order.
    """

    filtered: dict[str, str] = {}
    for pdm_number, text in descriptions.items():
        if not isinstance(text, str):
            continue
        trimmed = text.strip()
        if trimmed:
            filtered[str(pdm_number)] = trimmed
    return filtered


def build_cache_key(filtered: Mapping[str, str]) -> str:
    digest = hashlib.md5(json.dumps(dict(filtered)).encode("utf-8")).hexdigest()
    return f"{CACHE_KEY_PREFIX}{digest}"


def chunk_descriptions(filtered: Mapping[str, str], batch_size: int) -> list[dict[str, str]]:
    items = list(filtered.items())
    size = max(1, batch_size)
    return [dict(items[start : start + size]) for start in range(0, len(items), size)]


def warning_for(error: ReviewOutputValidationError) -> str:
    return _STAGE_WARNINGS.get(error.stage, WARNING_INVALID_RESPONSE)


def serialize_results(results: tuple[ReviewResult, ...] | list[ReviewResult]) -> list[dict[str, Any]]:
    return [result.model_dump(by_alias=True) for result in results]


@dataclass(frozen=True)
class AIReviewOutcome:
    """
    Result of one synchronous review call.
    """

    results: tuple[ReviewResult, ...] = ()
    warning: str | None = None
    enabled: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "results": serialize_results(self.results),
            "warning": self.warning,
            "enabled": self.enabled,
        }


class ReviewResultCache:
    """
    Thread-safe in-memory TTL cache of review outcomes.
    """

    def __init__(self, *, ttl_seconds: int, clock: Callable[[], float] = time.monotonic) -> None:
        self._ttl_seconds = max(0, ttl_seconds)
        self._clock = clock
        self._entries: dict[str, tuple[float, tuple[ReviewResult, ...]]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> tuple[ReviewResult, ...] | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, results = entry
            if expires_at <= self._clock():
                del self._entries[key]
                return None
            return results

    def put(self, key: str, results: tuple[ReviewResult, ...]) -> None:
        with self._lock:
            now = self._clock()
            self._prune_expired(now)
            self._entries[key] = (now + self._ttl_seconds, results)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _prune_expired(self, now: float) -> None:
        expired = [key for key, (expires_at, _) in self._entries.items() if expires_at <= now]
        for key in expired:
            del self._entries[key]

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


# ---------------------------------------------------------------------------
# Synchronous review
# ---------------------------------------------------------------------------


class AIReviewService:
    """
    Batches descriptions through the prompt builder, adapter and parser.
    """

    def __init__(
        self,
        *,
        settings: AIReviewSettings | None = None,
        adapter: BaseReviewAdapter | None = None,
        prompt_builder: ReviewPromptBuilder | None = None,
        cache: ReviewResultCache | None = None,
    ) -> None:
        self._settings = settings or get_ai_review_settings()
        self._adapter = adapter or GeminiReviewAdapter(self._settings)
        self._prompt_builder = prompt_builder or ReviewPromptBuilder(self._settings.max_description_chars)
        self._cache = cache if cache is not None else ReviewResultCache(ttl_seconds=self._settings.cache_ttl_seconds)

    @property
    def settings(self) -> AIReviewSettings:
        return self._settings

    @property
    def is_enabled(self) -> bool:
        return self._settings.is_active

    def cached_results(self, cache_key: str) -> tuple[ReviewResult, ...] | None:
        return self._cache.get(cache_key)

    def store_results(self, cache_key: str, results: tuple[ReviewResult, ...]) -> None:
        self._cache.put(cache_key, results)

    def batches(self, filtered: Mapping[str, str]) -> list[dict[str, str]]:
        return chunk_descriptions(filtered, self._settings.batch_size)

    def review_batch(self, batch: Mapping[str, str]) -> list[ReviewResult]:
        """
        Review one batch.

        Raises ReviewTransportError when the backend is unreachable and
        ReviewOutputValidationError when its answer cannot be used.
        """

        prompt = self._prompt_builder.build(batch)
        raw_response = self._adapter.generate(prompt)
        return parse_review_response(raw_response, list(batch))

    def validate_descriptions(self, descriptions: Mapping[Any, Any]) -> AIReviewOutcome:
        if not self.is_enabled:
            return AIReviewOutcome(enabled=False)

        filtered = filter_descriptions(descriptions)
        if not filtered:
            return AIReviewOutcome()

        cache_key = build_cache_key(filtered)
        cached = self._cache.get(cache_key)
        if cached is not None:
            logger.info("AI review cache hit descriptions=%d", len(filtered))
            return AIReviewOutcome(results=cached)

        results: list[ReviewResult] = []
        first_warning: str | None = None
        batches = self.batches(filtered)
        try:
            for index, batch in enumerate(batches, start=1):
                try:
                    results.extend(self.review_batch(batch))
                except ReviewOutputValidationError as exc:
                    logger.warning(
                        "AI review batch rejected batch=%d/%d stage=%s errors=%s",
                        index,
                        len(batches),
                        exc.stage,
                        exc.errors,
                    )
                    if first_warning is None:
                        first_warning = warning_for(exc)
        except ReviewTransportError as exc:
            logger.warning("AI review unavailable descriptions=%d error=%s", len(filtered), exc)
            return AIReviewOutcome(warning=WARNING_UNAVAILABLE)

        if first_warning is not None and not results:
            return AIReviewOutcome(warning=first_warning)

        outcome = AIReviewOutcome(results=tuple(results))
        self._cache.put(cache_key, outcome.results)
        logger.info(
            "AI review completed descriptions=%d batches=%d results=%d",
            len(filtered),
            len(batches),
            len(results),
        )
        return outcome


# ---------------------------------------------------------------------------
# Background review jobs
# ---------------------------------------------------------------------------


class ReviewTaskExecutor(Protocol):
    def submit(self, task: Callable[..., None], *args: Any, **kwargs: Any) -> None:
        ...


class FastAPIBackgroundTaskExecutor:
    def __init__(self, background_tasks: BackgroundTasks) -> None:
        self._background_tasks = background_tasks

    def submit(self, task: Callable[..., None], *args: Any, **kwargs: Any) -> None:
        self._background_tasks.add_task(task, *args, **kwargs)


@dataclass
class ReviewTask:
    task_id: str
    total_batches: int
    expires_at: float
    status: str = STATUS_PENDING
    completed_batches: int = 0
    results: list[ReviewResult] = field(default_factory=list)
    warning: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "completedBatches": self.completed_batches,
            "totalBatches": self.total_batches,
            "results": serialize_results(self.results),
            "warning": self.warning,
            "enabled": True,
        }


class AIReviewJobService:
    """
    Runs review batches in the background and tracks per-task progress.

    Tasks live in memory and expire `AI_REVIEW_TASK_TTL_SECONDS` after
    creation; expired tasks are pruned whenever a new one starts.
    """

    def __init__(
        self,
        *,
        review_service: AIReviewService | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._review_service = review_service or get_ai_review_service()
        self._clock = clock
        self._tasks: dict[str, ReviewTask] = {}
        self._lock = threading.Lock()

    def start(self, *, descriptions: Mapping[Any, Any], executor: ReviewTaskExecutor) -> dict[str, Any]:
        if not self._review_service.is_enabled:
            return {"enabled": False}

        filtered = filter_descriptions(descriptions)
        if not filtered:
            return {"enabled": True, "cached": True, "results": [], "warning": None}

        cache_key = build_cache_key(filtered)
        cached = self._review_service.cached_results(cache_key)
        if cached is not None:
            return {
                "enabled": True,
                "cached": True,
                "results": serialize_results(cached),
                "warning": None,
            }

        batches = self._review_service.batches(filtered)
        task = ReviewTask(
            task_id=str(uuid.uuid4()),
            total_batches=len(batches),
            expires_at=self._clock() + self._review_service.settings.task_ttl_seconds,
        )
        with self._lock:
            self._prune_expired()
            self._tasks[task.task_id] = task

        try:
            executor.submit(self._run_task, task.task_id, batches, cache_key)
        except Exception:
            self._update(task.task_id, status=STATUS_FAILED, warning=WARNING_TASK_FAILED)
            raise

        logger.info("AI review job queued id=%s batches=%d", task.task_id, len(batches))
        return {
            "enabled": True,
            "cached": False,
            "jobId": task.task_id,
            "totalBatches": len(batches),
        }

    def status(self, task_id: str) -> dict[str, Any]:
        with self._lock:
            task = self._tasks.get(task_id)
            if task is not None and task.expires_at <= self._clock():
                del self._tasks[task_id]
                task = None
            if task is None:
                return {
                    "status": STATUS_FAILED,
                    "warning": WARNING_TASK_NOT_FOUND,
                    "enabled": True,
                    "completedBatches": 0,
                    "totalBatches": 0,
                    "results": [],
                }
            return task.to_dict()

    def _run_task(self, task_id: str, batches: list[dict[str, str]], cache_key: str) -> None:
        if not self._update(task_id, status=STATUS_PROCESSING):
            logger.info("AI review job skipped because it expired id=%s", task_id)
            return

        results: list[ReviewResult] = []
        try:
            for index, batch in enumerate(batches, start=1):
                try:
                    results.extend(self._review_service.review_batch(batch))
                except (ReviewTransportError, ReviewOutputValidationError) as exc:
                    logger.warning(
                        "AI review job batch failed id=%s batch=%d/%d error=%s",
                        task_id,
                        index,
                        len(batches),
                        exc,
                    )
                self._update(task_id, completed_batches=index, results=list(results))

            self._review_service.store_results(cache_key, tuple(results))
            self._update(task_id, status=STATUS_COMPLETE)
            logger.info("AI review job completed id=%s results=%d", task_id, len(results))
        except Exception:
            logger.exception("AI review job failed id=%s", task_id)
            self._update(task_id, status=STATUS_FAILED, warning=WARNING_TASK_FAILED)

    def _update(self, task_id: str, **changes: Any) -> bool:
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None:
                return False
            for name, value in changes.items():
                setattr(task, name, value)
            return True

    def _prune_expired(self) -> None:
        now = self._clock()
        expired = [task_id for task_id, task in self._tasks.items() if task.expires_at <= now]
        for task_id in expired:
            del self._tasks[task_id]


@lru_cache(maxsize=1)
def get_ai_review_service() -> AIReviewService:
    """
    FastAPI dependency factory for synchronous AI review.
    """

    return AIReviewService()


@lru_cache(maxsize=1)
def get_ai_review_job_service() -> AIReviewJobService:
    """
    FastAPI dependency factory for background AI review jobs.
    """

    return AIReviewJobService()
