"""
Fetch Orchestrator: Concurrent Multi-Provider Fetch.

Fans one (series, issue) request out to every configured provider through
the shared worker pool and response cache, then gathers whatever came back.

INVARIANTS:
- Concurrency is bounded by the WorkerPool, never by the provider count
- One provider failing never fails the whole fetch
- Only when EVERY provider fails does fetch_all raise:
  IssueNotFoundError if all said NotFound, else AllProvidersUnavailableError
- Providers still pending at the orchestration deadline become
  ProviderTimeoutError and are cancelled without blocking the others
- Cancelling fetch_all cancels its provider fetches; a shared cache fetch
  survives while other callers still wait on it
"""

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

from longbox.config import settings
from longbox.models.catalog import normalize_issue_number
from longbox.models.failure import (
    AllProvidersUnavailableError,
    IssueNotFoundError,
    ProviderError,
    ProviderNotFoundError,
    ProviderTimeoutError,
    ProviderUnavailableError,
)
from longbox.models.provider_record import ProviderRecord
from longbox.providers.base import ProviderClient
from longbox.sync.cache import ResponseCache
from longbox.sync.clock import Clock, SystemClock
from longbox.sync.worker_pool import WorkerPool

logger = logging.getLogger(__name__)


@dataclass
class FetchResult:
    """Everything one orchestration gathered."""

    series_key: str
    issue_number: str
    records: list[ProviderRecord] = field(default_factory=list)
    errors: list[ProviderError] = field(default_factory=list)
    elapsed: float = 0.0

    @property
    def succeeded(self) -> list[str]:
        return [r.provider_id for r in self.records]

    @property
    def timed_out(self) -> list[str]:
        return [e.provider_id for e in self.errors if isinstance(e, ProviderTimeoutError)]

    @property
    def is_partial(self) -> bool:
        return bool(self.records) and bool(self.errors)


class FetchOrchestrator:
    """
    Coordinates provider clients for one issue at a time.

    Args:
        providers: Provider clients, in configured order
        cache: Shared response cache (single-flight per provider+issue)
        pool: Shared worker pool
        deadline: Wall-clock budget for a whole fetch_all call
        provider_timeout: Budget for a single provider fetch, retries included
        negative_ttl: Seconds to remember NotFound answers (0 disables)
    """

    def __init__(
        self,
        providers: Sequence[ProviderClient],
        cache: ResponseCache,
        pool: WorkerPool,
        *,
        deadline: float | None = None,
        provider_timeout: float | None = None,
        negative_ttl: float | None = None,
        clock: Clock | None = None,
    ) -> None:
        if not providers:
            raise ValueError("At least one provider is required")
        ids = [p.provider_id for p in providers]
        if len(set(ids)) != len(ids):
            raise ValueError(f"Duplicate provider ids: {ids}")

        self.providers = list(providers)
        self._cache = cache
        self._pool = pool
        self.deadline = settings.orchestration_deadline_seconds if deadline is None else deadline
        self.provider_timeout = (
            settings.provider_call_timeout_seconds if provider_timeout is None else provider_timeout
        )
        self.negative_ttl = (
            settings.negative_cache_ttl_seconds if negative_ttl is None else negative_ttl
        )
        self._clock = clock or SystemClock()

    @property
    def provider_ids(self) -> list[str]:
        return [p.provider_id for p in self.providers]

    @staticmethod
    def cache_key(provider_id: str, series_key: str, issue_number: str) -> str:
        return f"{provider_id}:{series_key}:{issue_number}"

    def invalidate(self, series_key: str, issue_number: str) -> int:
        """Forget cached answers for one issue across every provider."""
        number = normalize_issue_number(issue_number)
        return sum(
            self._cache.invalidate(self.cache_key(p.provider_id, series_key, number))
            for p in self.providers
        )

    async def fetch_all(
        self, series_key: str, issue_number: str, refresh: bool = False
    ) -> FetchResult:
        """
        Fetch one issue from every provider concurrently.

        Args:
            series_key: Canonical series key
            issue_number: Issue number (normalized before use)
            refresh: Invalidate cached answers first (user-initiated refresh)

        Returns:
            FetchResult with at least one record

        Raises:
            IssueNotFoundError: Every provider answered NotFound
            AllProvidersUnavailableError: Every provider failed, not all NotFound
        """
        number = normalize_issue_number(issue_number)
        if refresh:
            self.invalidate(series_key, number)

        start = self._clock.monotonic()
        tasks = {
            asyncio.create_task(self._fetch_one(provider, series_key, number)): provider
            for provider in self.providers
        }

        try:
            _done, pending = await asyncio.wait(list(tasks), timeout=self.deadline)
        except asyncio.CancelledError:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        result = FetchResult(series_key=series_key, issue_number=number)
        for task, provider in tasks.items():
            if task in pending:
                result.errors.append(ProviderTimeoutError(provider.provider_id, self.deadline))
                continue

            exc = task.exception()
            if exc is None:
                result.records.append(task.result())
            elif isinstance(exc, ProviderError):
                result.errors.append(exc)
            else:
                logger.error(
                    "PROVIDER_UNEXPECTED_ERROR",
                    extra={"provider": provider.provider_id, "error": repr(exc)},
                )
                result.errors.append(
                    ProviderUnavailableError(provider.provider_id, detail=repr(exc))
                )

        result.elapsed = self._clock.monotonic() - start

        for error in result.errors:
            logger.warning(
                "PROVIDER_FAILURE_ABSORBED",
                extra={
                    "provider": error.provider_id,
                    "kind": error.kind.value,
                    "series_key": series_key,
                    "issue_number": number,
                },
            )

        if not result.records:
            if all(isinstance(e, ProviderNotFoundError) for e in result.errors):
                raise IssueNotFoundError(series_key, number)
            raise AllProvidersUnavailableError(series_key, number, result.errors)

        return result

    async def _fetch_one(
        self, provider: ProviderClient, series_key: str, issue_number: str
    ) -> ProviderRecord:
        key = self.cache_key(provider.provider_id, series_key, issue_number)
        async with self._pool.slot():
            try:
                async with asyncio.timeout(self.provider_timeout):
                    record: ProviderRecord = await self._cache.get_or_fetch(
                        key,
                        ttl=provider.record_ttl,
                        fetch_fn=lambda: provider.fetch_issue(series_key, issue_number),
                        negative_ttl=self.negative_ttl or None,
                        negative_types=(ProviderNotFoundError,),
                    )
                    return record
            except TimeoutError as e:
                raise ProviderTimeoutError(provider.provider_id, self.provider_timeout) from e
