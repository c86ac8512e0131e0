"""
Catalog sync: fetch one issue from every provider and fold it into the graph.

Records are grouped by (volume, edition line) before reconciliation, so a
provider reporting a different volume or a reprint line produces its own
Edition instead of being merged into the wrong one. Records from providers
that do not number volumes (Comic Vine) take the volume the other providers
reported, falling back to the series' latest known volume.
"""

import logging
from collections import defaultdict
from collections.abc import Sequence
from dataclasses import dataclass, field, replace

from longbox.config import DEFAULT_VOLUME
from longbox.models.provider_record import ProviderRecord
from longbox.services.collection_graph import CollectionGraph
from longbox.services.reconciliation import ReconcileOutcome, ReconciliationEngine
from longbox.sync.orchestrator import FetchOrchestrator

logger = logging.getLogger(__name__)


@dataclass
class SyncOutcome:
    """Summary of one sync_issue() call."""

    series_key: str
    issue_number: str
    providers_succeeded: list[str] = field(default_factory=list)
    providers_failed: dict[str, str] = field(default_factory=dict)
    outcomes: list[ReconcileOutcome] = field(default_factory=list)

    @property
    def is_partial(self) -> bool:
        return bool(self.providers_failed)

    @property
    def changed(self) -> bool:
        return any(o.changed for o in self.outcomes)


class CatalogSync:
    """Wires the fetch orchestrator to the reconciliation engine."""

    def __init__(
        self,
        orchestrator: FetchOrchestrator,
        engine: ReconciliationEngine,
        graph: CollectionGraph,
    ) -> None:
        self.orchestrator = orchestrator
        self.engine = engine
        self.graph = graph

    async def sync_issue(
        self, series_key: str, issue_number: str, refresh: bool = False
    ) -> SyncOutcome:
        """
        Fetch, reconcile and store one issue.

        A partial fetch still reconciles what arrived; fields only the failed
        providers could supply keep their stored values.

        Raises:
            IssueNotFoundError: No provider knows the issue
            AllProvidersUnavailableError: Nothing could be fetched
        """
        fetched = await self.orchestrator.fetch_all(series_key, issue_number, refresh=refresh)

        outcome = SyncOutcome(
            series_key=series_key,
            issue_number=fetched.issue_number,
            providers_succeeded=fetched.succeeded,
            providers_failed={e.provider_id: e.kind.value for e in fetched.errors},
        )

        groups: dict[tuple[int, str], list[ProviderRecord]] = defaultdict(list)
        for record in self._assign_volumes(series_key, fetched.records):
            groups[(record.volume, record.edition_line)].append(record)

        for volume, edition_line in sorted(groups):
            outcome.outcomes.append(
                await self.engine.apply(self.graph, groups[(volume, edition_line)])
            )

        logger.info(
            "ISSUE_SYNCED",
            extra={
                "series_key": series_key,
                "issue_number": fetched.issue_number,
                "providers": fetched.succeeded,
                "partial": fetched.is_partial,
                "changed": outcome.changed,
            },
        )
        return outcome

    def _assign_volumes(
        self, series_key: str, records: Sequence[ProviderRecord]
    ) -> list[ProviderRecord]:
        """Give volumeless records the volume this issue belongs to."""
        if all(r.volume is not None for r in records):
            return list(records)

        reported = {r.volume for r in records if r.volume is not None}
        series = self.graph.find_series(series_key)
        known = series.volumes if series else set()
        if reported:
            # Prefer a reported volume the series already has
            volume = max(reported & known or reported)
        else:
            volume = max(known, default=DEFAULT_VOLUME)

        return [r if r.volume is not None else replace(r, volume=volume) for r in records]
