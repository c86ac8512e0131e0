"""Tests for the HTTP API."""

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from longbox.api.dependencies import get_catalog_sync, get_graph
from longbox.db import save_changes
from longbox.db.database import get_session
from longbox.main import app
from longbox.models.db import Base, EditionDB, OwnershipDB, SeriesDB
from longbox.models.failure import ProviderNotFoundError, ProviderUnavailableError
from longbox.services.catalog_sync import CatalogSync
from longbox.services.collection_graph import CollectionGraph
from longbox.services.reconciliation import ReconciliationEngine
from longbox.sync.cache import ResponseCache
from longbox.sync.clock import ManualClock
from longbox.sync.orchestrator import FetchOrchestrator
from longbox.sync.rate_limiter import RateLimiter
from longbox.sync.worker_pool import WorkerPool


@pytest.fixture
async def async_engine():
    """Create an in-memory SQLite engine for testing."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(async_engine):
    return async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def providers(fake_provider, make_record):
    """Metron and Comic Vine fakes answering for Saga #1."""
    return [
        fake_provider("metron", make_record("metron", title="Chapter One", series_name="Saga")),
        fake_provider(
            "comicvine",
            make_record("comicvine", title="Chapter 1", cover_image="https://cv.test/1.jpg"),
        ),
    ]


@pytest.fixture
def catalog_sync(saga_graph: CollectionGraph, clock: ManualClock, providers) -> CatalogSync:
    orchestrator = FetchOrchestrator(
        providers,
        ResponseCache(clock=clock),
        WorkerPool(2),
        deadline=5,
        provider_timeout=5,
        negative_ttl=0,
        clock=clock,
    )
    return CatalogSync(orchestrator, ReconciliationEngine(), saga_graph)


@pytest.fixture
async def client(session_factory, saga_graph: CollectionGraph, catalog_sync: CatalogSync):
    """Async test client with the database and collection graph overridden."""
    async with session_factory() as session:
        await save_changes(session, saga_graph.drain_changes())
        await session.commit()

    async def override_get_session():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_graph] = lambda: saga_graph
    app.dependency_overrides[get_catalog_sync] = lambda: catalog_sync

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


async def _count(session_factory, model) -> int:
    async with session_factory() as session:
        return await session.scalar(select(func.count()).select_from(model))


class TestHealth:
    async def test_health(self, client: AsyncClient) -> None:
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    async def test_ready_checks_database(self, client: AsyncClient) -> None:
        response = await client.get("/ready")

        assert response.status_code == 200
        assert response.json() == {"status": "ready", "database": "connected"}

    async def test_sync_status(
        self, client: AsyncClient, catalog_sync: CatalogSync, clock: ManualClock
    ) -> None:
        """Status reports token availability and cache counters."""
        limiter = RateLimiter(clock=clock)
        limiter.configure("metron", capacity=5, refill_rate=0.5)
        limiter.configure("comicvine", capacity=10, refill_rate=0.05)
        app.state.rate_limiter = limiter
        app.state.cache = catalog_sync.orchestrator._cache
        app.state.worker_pool = WorkerPool(2)
        app.state.catalog_sync = catalog_sync

        response = await client.get("/status/sync")

        assert response.status_code == 200
        data = response.json()
        assert data["providers"] == ["metron", "comicvine"]
        assert data["tokens_available"] == {"metron": 5.0, "comicvine": 10.0}
        assert data["cache"]["fetches"] == 0


class TestSeriesEndpoints:
    async def test_create_series(self, client: AsyncClient, session_factory) -> None:
        response = await client.post(
            "/series",
            json={"key": "paper-girls", "name": "Paper Girls", "external_ids": {"metron": "7"}},
        )

        assert response.status_code == 201
        assert response.json()["external_ids"] == {"metron": "7"}
        assert await _count(session_factory, SeriesDB) == 2

    async def test_duplicate_series_conflicts(self, client: AsyncClient) -> None:
        """Registering an existing key is a 409 known failure."""
        response = await client.post("/series", json={"key": "saga", "name": "Saga"})

        assert response.status_code == 409
        data = response.json()
        assert set(data) == {"outcome", "failure"}
        assert data["outcome"] == "known_failure"
        assert data["failure"]["kind"] == "duplicate_key"

    async def test_get_series(self, client: AsyncClient) -> None:
        response = await client.get("/series/saga")

        assert response.status_code == 200
        data = response.json()
        assert data["name"] == "Saga"
        assert [i["number"] for i in data["issues"]] == ["1", "1.5", "2", "3"]

    async def test_unknown_series_is_404(self, client: AsyncClient) -> None:
        response = await client.get("/series/nope")

        assert response.status_code == 404
        assert response.json()["failure"]["kind"] == "not_found"

    async def test_set_external_id(self, client: AsyncClient) -> None:
        response = await client.put(
            "/series/saga/external-ids/gcd", json={"external_id": "61447"}
        )

        assert response.status_code == 200
        assert response.json()["external_ids"]["gcd"] == "61447"


class TestOwnershipAndCompleteness:
    async def test_ownership_drives_completeness(
        self, client: AsyncClient, session_factory
    ) -> None:
        """Owning 1 and 2 of [1, 1.5, 2, 3] reports 50% with 1.5 and 3 missing."""
        for number in ("1", "2"):
            response = await client.put(
                f"/ownership/saga/1/{number}/original", json={"state": "owned"}
            )
            assert response.status_code == 200

        response = await client.get(
            "/series/saga/completeness", params={"edition_line": "original"}
        )

        assert response.status_code == 200
        data = response.json()
        assert data["percentage"] == 50.0
        assert data["missing_issues"] == ["1.5", "3"]
        assert data["missing_by_volume"] == {"1": ["1.5", "3"]}
        assert await _count(session_factory, OwnershipDB) == 2

    async def test_sold_without_acquisition_is_422(self, client: AsyncClient) -> None:
        response = await client.put("/ownership/saga/1/1/original", json={"state": "sold"})

        assert response.status_code == 422
        assert response.json()["failure"]["kind"] == "validation_failed"

    async def test_invalid_state_rejected(self, client: AsyncClient) -> None:
        response = await client.put("/ownership/saga/1/1/original", json={"state": "lost"})

        assert response.status_code == 422

    async def test_ownership_of_unknown_issue_is_404(self, client: AsyncClient) -> None:
        response = await client.put("/ownership/saga/1/99/original", json={"state": "owned"})

        assert response.status_code == 404

    async def test_get_and_clear_ownership(self, client: AsyncClient) -> None:
        await client.put("/ownership/saga/1/001/original", json={"state": "read"})

        fetched = await client.get("/ownership/saga/1/1/original")
        assert fetched.json()["state"] == "read"

        cleared = await client.delete("/ownership/saga/1/1/original")
        assert cleared.json() == {"cleared": True}

        assert (await client.get("/ownership/saga/1/1/original")).json() is None

    async def test_breakdown_by_edition_line(self, client: AsyncClient) -> None:
        await client.put("/ownership/saga/1/1/original", json={"state": "owned"})
        await client.put("/ownership/saga/1/2/facsimile", json={"state": "owned"})

        response = await client.get("/series/saga/breakdown")

        lines = response.json()["lines"]
        assert set(lines) == {"facsimile", "original"}
        assert lines["original"]["percentage"] == 25.0

    async def test_completeness_of_empty_series(self, client: AsyncClient) -> None:
        await client.post("/series", json={"key": "paper-girls", "name": "Paper Girls"})

        response = await client.get("/series/paper-girls/completeness")

        assert response.json()["percentage"] == 0.0
        assert response.json()["missing_issues"] == []


class TestSyncEndpoint:
    async def test_sync_creates_edition(
        self, client: AsyncClient, session_factory, saga_graph: CollectionGraph
    ) -> None:
        response = await client.post("/sync/saga/1")

        assert response.status_code == 200
        data = response.json()
        assert sorted(data["providers_succeeded"]) == ["comicvine", "metron"]
        assert not data["partial"]
        assert data["editions"][0]["created"] is True
        assert data["editions"][0]["title"] == "Chapter One"
        assert await _count(session_factory, EditionDB) == 1

    async def test_partial_sync_reports_failed_provider(
        self, client: AsyncClient, providers
    ) -> None:
        providers[1].outcome = ProviderUnavailableError("comicvine")

        response = await client.post("/sync/saga/1")

        assert response.status_code == 200
        assert response.json()["partial"] is True
        assert response.json()["providers_failed"] == {"comicvine": "service_unavailable"}

    async def test_all_providers_down_is_503(self, client: AsyncClient, providers) -> None:
        for provider in providers:
            provider.outcome = ProviderUnavailableError(provider.provider_id)

        response = await client.post("/sync/saga/1")

        assert response.status_code == 503
        assert response.json()["failure"]["kind"] == "all_providers_unavailable"

    async def test_unknown_issue_is_404(self, client: AsyncClient, providers) -> None:
        for provider in providers:
            provider.outcome = ProviderNotFoundError(provider.provider_id)

        response = await client.post("/sync/saga/404")

        assert response.status_code == 404
