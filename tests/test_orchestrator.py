"""Tests for concurrent multi-provider fetch orchestration."""

import asyncio

import pytest

from longbox.models.failure import (
    AllProvidersUnavailableError,
    IssueNotFoundError,
    ProviderNotFoundError,
    ProviderTimeoutError,
    ProviderUnavailableError,
)
from longbox.sync.cache import ResponseCache
from longbox.sync.clock import ManualClock
from longbox.sync.orchestrator import FetchOrchestrator
from longbox.sync.worker_pool import WorkerPool


@pytest.fixture
def build(clock: ManualClock):
    """Build an orchestrator around the given providers."""

    def _build(*providers, pool_size: int = 4, deadline: float = 5.0, provider_timeout=5.0):
        return FetchOrchestrator(
            providers,
            ResponseCache(clock=clock),
            WorkerPool(pool_size),
            deadline=deadline,
            provider_timeout=provider_timeout,
            negative_ttl=0,
            clock=clock,
        )

    return _build


class TestFetchAll:
    async def test_collects_every_provider(self, build, fake_provider, make_record) -> None:
        """All providers answering yields one record each."""
        metron = fake_provider("metron", make_record("metron", title="Chapter One"))
        comicvine = fake_provider("comicvine", make_record("comicvine", title="Chapter 1"))

        result = await build(metron, comicvine).fetch_all("saga", "1")

        assert sorted(result.succeeded) == ["comicvine", "metron"]
        assert result.errors == []
        assert not result.is_partial

    async def test_partial_result_on_single_failure(
        self, build, fake_provider, make_record
    ) -> None:
        """One provider down still returns the other's record."""
        metron = fake_provider("metron", make_record("metron", title="Chapter One"))
        comicvine = fake_provider("comicvine", ProviderUnavailableError("comicvine"))

        result = await build(metron, comicvine).fetch_all("saga", "1")

        assert result.succeeded == ["metron"]
        assert [e.provider_id for e in result.errors] == ["comicvine"]
        assert result.is_partial

    async def test_all_unavailable(self, build, fake_provider) -> None:
        """Every provider failing raises AllProvidersUnavailableError with each cause."""
        metron = fake_provider("metron", ProviderUnavailableError("metron"))
        comicvine = fake_provider("comicvine", ProviderUnavailableError("comicvine"))

        with pytest.raises(AllProvidersUnavailableError) as exc_info:
            await build(metron, comicvine).fetch_all("saga", "1")

        assert sorted(e.provider_id for e in exc_info.value.errors) == ["comicvine", "metron"]
        assert exc_info.value.status_code == 503

    async def test_all_not_found(self, build, fake_provider) -> None:
        """Every provider answering NotFound means the issue does not exist."""
        metron = fake_provider("metron", ProviderNotFoundError("metron"))
        comicvine = fake_provider("comicvine", ProviderNotFoundError("comicvine"))

        with pytest.raises(IssueNotFoundError):
            await build(metron, comicvine).fetch_all("saga", "999")

    async def test_not_found_mixed_with_outage_is_unavailable(
        self, build, fake_provider
    ) -> None:
        """An outage alongside NotFound means no data, not no issue."""
        metron = fake_provider("metron", ProviderNotFoundError("metron"))
        comicvine = fake_provider("comicvine", ProviderUnavailableError("comicvine"))

        with pytest.raises(AllProvidersUnavailableError):
            await build(metron, comicvine).fetch_all("saga", "1")

    async def test_unexpected_error_is_absorbed(self, build, fake_provider, make_record) -> None:
        """A provider bug is contained as unavailability of that provider."""
        metron = fake_provider("metron", make_record("metron"))
        comicvine = fake_provider("comicvine", RuntimeError("parser bug"))

        result = await build(metron, comicvine).fetch_all("saga", "1")

        assert isinstance(result.errors[0], ProviderUnavailableError)
        assert "parser bug" in result.errors[0].detail

    async def test_issue_number_is_normalized(self, build, fake_provider, make_record) -> None:
        """'001' and '1' address the same issue."""
        metron = fake_provider("metron", make_record("metron"))

        result = await build(metron).fetch_all("saga", "001")

        assert result.issue_number == "1"


class TestDeadlines:
    async def test_orchestration_deadline_cancels_slow_provider(
        self, build, fake_provider, make_record
    ) -> None:
        """A provider still running at the deadline is cancelled and reported as timed out."""
        metron = fake_provider("metron", make_record("metron"))
        comicvine = fake_provider("comicvine", make_record("comicvine"), delay=30)

        result = await build(metron, comicvine, deadline=0.05).fetch_all("saga", "1")
        await asyncio.sleep(0.01)

        assert result.succeeded == ["metron"]
        assert result.timed_out == ["comicvine"]
        assert comicvine.cancelled

    async def test_provider_timeout(self, build, fake_provider, make_record) -> None:
        """A single slow provider call hits its own timeout before the overall deadline."""
        metron = fake_provider("metron", make_record("metron"))
        comicvine = fake_provider("comicvine", make_record("comicvine"), delay=30)

        orchestrator = build(metron, comicvine, deadline=5.0, provider_timeout=0.05)
        result = await orchestrator.fetch_all("saga", "1")

        assert isinstance(result.errors[0], ProviderTimeoutError)
        assert result.errors[0].provider_id == "comicvine"

    async def test_every_provider_timing_out_is_unavailable(
        self, build, fake_provider, make_record
    ) -> None:
        """Timeouts on every provider surface as AllProvidersUnavailableError."""
        metron = fake_provider("metron", make_record("metron"), delay=30)

        with pytest.raises(AllProvidersUnavailableError):
            await build(metron, deadline=0.05).fetch_all("saga", "1")

    async def test_caller_cancellation_reaches_providers(
        self, build, fake_provider, make_record
    ) -> None:
        """Cancelling fetch_all cancels the provider fetches it started."""
        metron = fake_provider("metron", make_record("metron"), delay=30)
        orchestrator = build(metron)

        task = asyncio.create_task(orchestrator.fetch_all("saga", "1"))
        await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        await asyncio.sleep(0.01)
        assert metron.cancelled


class TestConcurrency:
    async def test_worker_pool_bounds_in_flight_fetches(
        self, clock: ManualClock, fake_provider, make_record
    ) -> None:
        """No more than pool-size provider fetches run at once."""
        providers = [
            fake_provider(pid, make_record(pid), delay=0.01) for pid in ("a", "b", "c", "d")
        ]
        pool = WorkerPool(2)
        orchestrator = FetchOrchestrator(
            providers, ResponseCache(clock=clock), pool, deadline=5, provider_timeout=5, clock=clock
        )

        result = await orchestrator.fetch_all("saga", "1")

        assert len(result.records) == 4
        assert pool.peak_in_flight == 2

    async def test_concurrent_requests_share_provider_calls(
        self, build, fake_provider, make_record
    ) -> None:
        """Simultaneous syncs of one issue call each provider once."""
        metron = fake_provider("metron", make_record("metron"), delay=0.01)
        orchestrator = build(metron)

        results = await asyncio.gather(*(orchestrator.fetch_all("saga", "1") for _ in range(5)))

        assert metron.calls == 1
        assert all(r.succeeded == ["metron"] for r in results)

    async def test_cached_answer_reused_until_refresh(
        self, build, fake_provider, make_record
    ) -> None:
        """A second fetch is served from cache; refresh=True goes upstream again."""
        metron = fake_provider("metron", make_record("metron"))
        orchestrator = build(metron)

        await orchestrator.fetch_all("saga", "1")
        await orchestrator.fetch_all("saga", "1")
        assert metron.calls == 1

        await orchestrator.fetch_all("saga", "1", refresh=True)
        assert metron.calls == 2


class TestConstruction:
    def test_requires_providers(self, clock: ManualClock) -> None:
        with pytest.raises(ValueError):
            FetchOrchestrator([], ResponseCache(clock=clock), WorkerPool(1))

    def test_rejects_duplicate_provider_ids(self, clock: ManualClock, fake_provider) -> None:
        with pytest.raises(ValueError, match="Duplicate"):
            FetchOrchestrator(
                [fake_provider("metron", None), fake_provider("metron", None)],
                ResponseCache(clock=clock),
                WorkerPool(1),
            )
