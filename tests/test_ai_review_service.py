"""
tests/test_ai_review_service.py

Pytest unit tests for AIReviewService and AIReviewJobService.

Adapters are scripted in-process and background jobs run through
executors that either run immediately or hold the task until asked.

Coverage
--------
- Disabled review, empty input, filtering, cache keys, batching
- Result caching and expiry
- Partial and total batch failures, transport failures
- Job lifecycle: queued, processing, complete, failed, not found, expired
"""

from __future__ import annotations

import json
from typing import Any, Callable

import pytest

from ai_review.adapter import BaseReviewAdapter, MockReviewAdapter, ReviewTransportError
from pdm_qc.config import AIReviewSettings
from pdm_qc.services.ai_review_service import (
    CACHE_KEY_PREFIX,
    STATUS_COMPLETE,
    STATUS_FAILED,
    STATUS_PENDING,
    WARNING_INVALID_RESPONSE,
    WARNING_TASK_FAILED,
    WARNING_TASK_NOT_FOUND,
    WARNING_UNAVAILABLE,
    AIReviewJobService,
    AIReviewService,
    ReviewResultCache,
    build_cache_key,
    chunk_descriptions,
    filter_descriptions,
)

ISSUE = {"text": "Spelling: 'recieve' should be 'receive'", "flags": ["Grammar"], "suggestions": ["receive"]}


class _ScriptedAdapter(BaseReviewAdapter):
    """Returns or raises the queued outcomes in order."""

    def __init__(self, outcomes: list[Any]) -> None:
        self._outcomes = list(outcomes)
        self.calls = 0

    def generate(self, prompt: str) -> str:
        self.calls += 1
        outcome = self._outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class _ImmediateExecutor:
    def submit(self, task: Callable[..., None], *args: Any, **kwargs: Any) -> None:
        task(*args, **kwargs)


class _DeferredExecutor:
    def __init__(self) -> None:
        self.pending: list[tuple[Callable[..., None], tuple, dict]] = []

    def submit(self, task: Callable[..., None], *args: Any, **kwargs: Any) -> None:
        self.pending.append((task, args, kwargs))

    def run_all(self) -> None:
        for task, args, kwargs in self.pending:
            task(*args, **kwargs)
        self.pending.clear()


class _FailingExecutor:
    def submit(self, task: Callable[..., None], *args: Any, **kwargs: Any) -> None:
        raise RuntimeError("executor unavailable")


class _Clock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def _settings(**overrides: Any) -> AIReviewSettings:
    values: dict[str, Any] = {"api_key": "k", "batch_size": 25, "cache_ttl_seconds": 60, "task_ttl_seconds": 120}
    values.update(overrides)
    return AIReviewSettings(**values)


def _service(adapter: BaseReviewAdapter, clock: _Clock | None = None, **overrides: Any) -> AIReviewService:
    settings = _settings(**overrides)
    cache = ReviewResultCache(ttl_seconds=settings.cache_ttl_seconds, clock=clock or _Clock())
    return AIReviewService(settings=settings, adapter=adapter, cache=cache)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class TestHelpers:
    def test_filter_descriptions(self) -> None:
        filtered = filter_descriptions({"1": " a ", "2": "  ", "3": None, 4: "b", "5": 7})
        assert filtered == {"1": "a", "4": "b"}

    def test_build_cache_key(self) -> None:
        key = build_cache_key({"1": "a"})
        assert key.startswith(CACHE_KEY_PREFIX)
        assert key == build_cache_key({"1": "a"})
        assert key != build_cache_key({"1": "b"})

    def test_chunk_descriptions(self) -> None:
        chunks = chunk_descriptions({"1": "a", "2": "b", "3": "c"}, 2)
        assert chunks == [{"1": "a", "2": "b"}, {"3": "c"}]
        assert chunk_descriptions({}, 2) == []

    def test_cache_expires(self) -> None:
        clock = _Clock()
        cache = ReviewResultCache(ttl_seconds=10, clock=clock)
        cache.put("k", ())

        assert cache.get("k") == ()
        clock.now += 10
        assert cache.get("k") is None

    def test_cache_put_drops_expired_entries(self) -> None:
        clock = _Clock()
        cache = ReviewResultCache(ttl_seconds=10, clock=clock)
        for index in range(100):
            cache.put(f"old-{index}", ())
        clock.now += 5
        cache.put("recent", ())

        clock.now += 5
        cache.put("new", ())

        assert len(cache) == 2
        assert cache.get("recent") == ()
        assert cache.get("old-0") is None


# ---------------------------------------------------------------------------
# Synchronous review
# ---------------------------------------------------------------------------


class TestValidateDescriptions:
    def test_disabled_without_key_or_flag(self) -> None:
        adapter = MockReviewAdapter()
        assert _service(adapter, api_key="").validate_descriptions({"1": "a"}).to_dict() == {
            "results": [],
            "warning": None,
            "enabled": False,
        }
        assert _service(adapter, enabled=False).validate_descriptions({"1": "a"}).enabled is False
        assert adapter.prompts == []

    def test_empty_input_short_circuits(self) -> None:
        adapter = MockReviewAdapter()
        outcome = _service(adapter).validate_descriptions({"1": "  ", "2": None})

        assert outcome.to_dict() == {"results": [], "warning": None, "enabled": True}
        assert adapter.prompts == []

    def test_results_are_serialized_with_aliases(self) -> None:
        adapter = _ScriptedAdapter([json.dumps({"100": [ISSUE], "200": []})])

        outcome = _service(adapter).validate_descriptions({"100": "We recieve orders.", "200": "Fine."})

        assert outcome.to_dict() == {
            "results": [
                {"pdmNum": "100", "aiErrors": [ISSUE]},
                {"pdmNum": "200", "aiErrors": []},
            ],
            "warning": None,
            "enabled": True,
        }

    def test_identical_input_is_served_from_cache(self) -> None:
        adapter = MockReviewAdapter()
        svc = _service(adapter)

        first = svc.validate_descriptions({"100": "Text."})
        second = svc.validate_descriptions({"100": " Text. "})

        assert first == second
        assert len(adapter.prompts) == 1

    def test_cache_entry_expires(self) -> None:
        adapter = MockReviewAdapter()
        clock = _Clock()
        svc = _service(adapter, clock=clock)

        svc.validate_descriptions({"100": "Text."})
        clock.now += 61
        svc.validate_descriptions({"100": "Text."})

        assert len(adapter.prompts) == 2

    def test_descriptions_are_batched(self) -> None:
        adapter = MockReviewAdapter()
        outcome = _service(adapter, batch_size=2).validate_descriptions({"1": "a", "2": "b", "3": "c"})

        assert len(adapter.prompts) == 2
        assert [result.pdm_num for result in outcome.results] == ["1", "2", "3"]

    def test_partial_batch_failure_keeps_other_results(self) -> None:
        adapter = _ScriptedAdapter(["not json", json.dumps({"2": [ISSUE]})])

        outcome = _service(adapter, batch_size=1).validate_descriptions({"1": "a", "2": "b"})

        assert outcome.warning is None
        assert [result.pdm_num for result in outcome.results] == ["2"]

    def test_all_batches_failing_returns_warning_and_skips_cache(self) -> None:
        adapter = _ScriptedAdapter(["not json", "still not json"])
        svc = _service(adapter)

        first = svc.validate_descriptions({"1": "a"})
        second = svc.validate_descriptions({"1": "a"})

        assert first.warning == WARNING_INVALID_RESPONSE
        assert first.results == ()
        assert second.warning == WARNING_INVALID_RESPONSE
        assert adapter.calls == 2

    def test_transport_failure_returns_unavailable_warning(self) -> None:
        adapter = _ScriptedAdapter([ReviewTransportError("down")])

        outcome = _service(adapter).validate_descriptions({"1": "a"})

        assert outcome.to_dict() == {"results": [], "warning": WARNING_UNAVAILABLE, "enabled": True}


# ---------------------------------------------------------------------------
# Background jobs
# ---------------------------------------------------------------------------


class TestAIReviewJobService:
    def _jobs(self, adapter: BaseReviewAdapter, clock: _Clock, **overrides: Any) -> AIReviewJobService:
        return AIReviewJobService(review_service=_service(adapter, clock=clock, **overrides), clock=clock)

    def test_disabled(self) -> None:
        jobs = self._jobs(MockReviewAdapter(), _Clock(), enabled=False)
        assert jobs.start(descriptions={"1": "a"}, executor=_ImmediateExecutor()) == {"enabled": False}

    def test_empty_input_returns_cached_empty_result(self) -> None:
        jobs = self._jobs(MockReviewAdapter(), _Clock())
        assert jobs.start(descriptions={"1": ""}, executor=_ImmediateExecutor()) == {
            "enabled": True,
            "cached": True,
            "results": [],
            "warning": None,
        }

    def test_job_runs_to_completion_and_fills_cache(self) -> None:
        adapter = MockReviewAdapter()
        jobs = self._jobs(adapter, _Clock(), batch_size=1)

        started = jobs.start(descriptions={"1": "a", "2": "b"}, executor=_ImmediateExecutor())

        assert started["enabled"] is True
        assert started["cached"] is False
        assert started["totalBatches"] == 2
        status = jobs.status(started["jobId"])
        assert status == {
            "status": STATUS_COMPLETE,
            "completedBatches": 2,
            "totalBatches": 2,
            "results": [{"pdmNum": "1", "aiErrors": []}, {"pdmNum": "2", "aiErrors": []}],
            "warning": None,
            "enabled": True,
        }

        again = jobs.start(descriptions={"1": "a", "2": "b"}, executor=_ImmediateExecutor())
        assert again["cached"] is True
        assert again["results"] == status["results"]
        assert len(adapter.prompts) == 2

    def test_status_is_pending_until_the_task_runs(self) -> None:
        executor = _DeferredExecutor()
        jobs = self._jobs(MockReviewAdapter(), _Clock())

        started = jobs.start(descriptions={"1": "a"}, executor=executor)

        assert jobs.status(started["jobId"])["status"] == STATUS_PENDING
        executor.run_all()
        assert jobs.status(started["jobId"])["status"] == STATUS_COMPLETE

    def test_batch_errors_do_not_fail_the_job(self) -> None:
        adapter = _ScriptedAdapter([ReviewTransportError("down"), json.dumps({"2": [ISSUE]})])
        jobs = self._jobs(adapter, _Clock(), batch_size=1)

        started = jobs.start(descriptions={"1": "a", "2": "b"}, executor=_ImmediateExecutor())
        status = jobs.status(started["jobId"])

        assert status["status"] == STATUS_COMPLETE
        assert status["completedBatches"] == 2
        assert [result["pdmNum"] for result in status["results"]] == ["2"]

    def test_unexpected_error_marks_job_failed(self) -> None:
        adapter = _ScriptedAdapter([KeyError("boom")])
        jobs = self._jobs(adapter, _Clock())

        started = jobs.start(descriptions={"1": "a"}, executor=_ImmediateExecutor())
        status = jobs.status(started["jobId"])

        assert status["status"] == STATUS_FAILED
        assert status["warning"] == WARNING_TASK_FAILED

    def test_submit_failure_is_raised_and_recorded(self, monkeypatch: pytest.MonkeyPatch) -> None:
        jobs = self._jobs(MockReviewAdapter(), _Clock())
        task_ids: list[str] = []
        monkeypatch.setattr(
            "pdm_qc.services.ai_review_service.uuid.uuid4",
            lambda: task_ids.append("fixed-id") or "fixed-id",
        )

        with pytest.raises(RuntimeError, match="executor unavailable"):
            jobs.start(descriptions={"1": "a"}, executor=_FailingExecutor())

        assert task_ids == ["fixed-id"]
        assert jobs.status("fixed-id")["warning"] == WARNING_TASK_FAILED

    def test_unknown_task(self) -> None:
        jobs = self._jobs(MockReviewAdapter(), _Clock())
        assert jobs.status("missing") == {
            "status": STATUS_FAILED,
            "warning": WARNING_TASK_NOT_FOUND,
            "enabled": True,
            "completedBatches": 0,
            "totalBatches": 0,
            "results": [],
        }

    def test_expired_task_is_not_found(self) -> None:
        clock = _Clock()
        jobs = self._jobs(MockReviewAdapter(), clock)

        started = jobs.start(descriptions={"1": "a"}, executor=_ImmediateExecutor())
        clock.now += 120

        assert jobs.status(started["jobId"])["warning"] == WARNING_TASK_NOT_FOUND

    def test_expired_task_is_skipped_when_it_finally_runs(self) -> None:
        clock = _Clock()
        executor = _DeferredExecutor()
        adapter = MockReviewAdapter()
        jobs = self._jobs(adapter, clock)

        started = jobs.start(descriptions={"1": "a"}, executor=executor)
        clock.now += 121
        jobs.start(descriptions={"2": "b"}, executor=_DeferredExecutor())
        executor.run_all()

        assert adapter.prompts == []
        assert jobs.status(started["jobId"])["warning"] == WARNING_TASK_NOT_FOUND
