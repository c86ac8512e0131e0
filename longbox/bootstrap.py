"""Assembly of the fetch and reconciliation pipeline around a collection graph."""

from dataclasses import dataclass

import httpx

from longbox.config import Settings, settings
from longbox.providers.registry import build_providers
from longbox.services.catalog_sync import CatalogSync
from longbox.services.collection_graph import CollectionGraph
from longbox.services.reconciliation import PrecedencePolicy, ReconciliationEngine
from longbox.sync.cache import ResponseCache
from longbox.sync.clock import Clock, SystemClock
from longbox.sync.orchestrator import FetchOrchestrator
from longbox.sync.rate_limiter import RateLimiter
from longbox.sync.worker_pool import WorkerPool

USER_AGENT = "Longbox/0.1 (comic collection manager)"


@dataclass
class SyncComponents:
    rate_limiter: RateLimiter
    cache: ResponseCache
    worker_pool: WorkerPool
    orchestrator: FetchOrchestrator
    catalog_sync: CatalogSync


def build_http_client(config: Settings = settings) -> httpx.AsyncClient:
    """Shared HTTP client for every provider."""
    return httpx.AsyncClient(
        timeout=config.http_timeout_seconds,
        headers={"User-Agent": USER_AGENT, "Accept": "application/json"},
        follow_redirects=True,
    )


def build_sync_components(
    http_client: httpx.AsyncClient,
    graph: CollectionGraph,
    config: Settings = settings,
    clock: Clock | None = None,
) -> SyncComponents:
    """Wire limiter, providers, cache, pool, orchestrator and reconciliation together."""
    clock = clock or SystemClock()
    rate_limiter = RateLimiter(clock=clock, default_timeout=config.admission_wait_seconds)
    providers = build_providers(http_client, rate_limiter, graph, config=config, clock=clock)
    cache = ResponseCache(clock=clock)
    worker_pool = WorkerPool(config.worker_pool_size)
    orchestrator = FetchOrchestrator(
        providers,
        cache,
        worker_pool,
        deadline=config.orchestration_deadline_seconds,
        provider_timeout=config.provider_call_timeout_seconds,
        negative_ttl=config.negative_cache_ttl_seconds,
        clock=clock,
    )
    engine = ReconciliationEngine(
        PrecedencePolicy(provider_order=tuple(orchestrator.provider_ids))
    )
    return SyncComponents(
        rate_limiter=rate_limiter,
        cache=cache,
        worker_pool=worker_pool,
        orchestrator=orchestrator,
        catalog_sync=CatalogSync(orchestrator, engine, graph),
    )
