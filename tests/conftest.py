import asyncio
from datetime import UTC, date, datetime, timedelta

import pytest

from longbox.models.provider_record import ProviderRecord
from longbox.services.collection_graph import CollectionGraph
from longbox.sync.clock import ManualClock

FETCHED_AT = datetime(2024, 1, 1, tzinfo=UTC)


def _make_record(
    provider_id: str = "metron",
    series_key: str = "saga",
    issue_number: str = "1",
    volume: int | None = 1,
    edition_line: str = "original",
    fetched_at: datetime = FETCHED_AT,
    **fields,
) -> ProviderRecord:
    """Build a ProviderRecord with sensible defaults."""
    return ProviderRecord(
        provider_id=provider_id,
        series_key=series_key,
        volume=volume,
        issue_number=issue_number,
        edition_line=edition_line,
        fetched_at=fetched_at,
        ttl_seconds=3600,
        **fields,
    )


@pytest.fixture
def make_record():
    """Factory for ProviderRecords: make_record("comicvine", title="X")."""
    return _make_record


@pytest.fixture
def clock() -> ManualClock:
    """Virtual clock starting at 2024-01-01T00:00:00Z."""
    return ManualClock()


@pytest.fixture
def graph(clock: ManualClock) -> CollectionGraph:
    """Empty collection graph on the manual clock."""
    return CollectionGraph(clock=clock)


@pytest.fixture
def saga_graph(graph: CollectionGraph) -> CollectionGraph:
    """Graph with the series 'saga' holding issues 1, 1.5, 2 and 3 in volume 1."""
    graph.add_series("saga", "Saga", external_ids={"metron": "42", "comicvine": "4050-49901"})
    for offset, number in enumerate(["1", "1.5", "2", "3"]):
        graph.add_issue("saga", 1, number, date(2012, 3, 14) + timedelta(days=30 * offset))
    return graph


class FakeProvider:
    """
    Stand-in provider client for orchestration tests.

    outcome is a ProviderRecord to return or an exception to raise; delay
    holds the fetch open for that many real seconds.
    """

    def __init__(self, provider_id: str, outcome, delay: float = 0.0, record_ttl: float = 3600):
        self.provider_id = provider_id
        self.outcome = outcome
        self.delay = delay
        self.record_ttl = record_ttl
        self.calls = 0
        self.cancelled = False

    async def fetch_issue(self, series_key: str, issue_number: str) -> ProviderRecord:
        self.calls += 1
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            else:
                await asyncio.sleep(0)
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        if isinstance(self.outcome, BaseException):
            raise self.outcome
        return self.outcome


@pytest.fixture
def fake_provider():
    """Factory for FakeProvider instances."""
    return FakeProvider
