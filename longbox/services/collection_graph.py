"""
Collection Graph: Series -> Issues -> Editions -> Ownership.

The single in-memory owner of long-lived catalog and ownership state.
Catalog fields change only through reconciliation writes; ownership only
through user actions. Every mutation is recorded in a MutationSet that the
persistence layer drains with save_changes().

INVARIANTS:
- Series keys are unique
- (series_key, volume, number) is unique per Issue
- At most one Edition per (Issue, edition line); never without its Issue
- SOLD/TRADED ownership requires acquired_at < disposed_at
- Violations raise DuplicateKeyError / OwnershipValidationError and are
  never merged silently

CONCURRENCY:
issue_lock(key) hands out one asyncio.Lock per Issue so reconcile-and-store
of one Issue is serialized while different Issues proceed in parallel.
"""

import asyncio
import bisect
import logging
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field, replace
from datetime import UTC, date, datetime
from typing import Any

from longbox.models.catalog import (
    DISPOSED_STATES,
    Edition,
    FieldProvenance,
    Issue,
    IssueKey,
    OwnershipRecord,
    OwnershipState,
    Series,
    issue_sort_key,
    normalize_issue_number,
)
from longbox.models.failure import (
    CatalogLookupError,
    DuplicateKeyError,
    OwnershipValidationError,
)
from longbox.providers.base import SeriesMapping
from longbox.sync.clock import Clock, SystemClock

logger = logging.getLogger(__name__)

EditionKey = tuple[IssueKey, str]


def _issue_order(key: IssueKey) -> tuple[Any, ...]:
    return (key.volume, issue_sort_key(key.number))


def _as_utc(value: datetime | None) -> datetime | None:
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)


@dataclass
class MutationSet:
    """Entities created or changed since the last drain, keyed by natural key."""

    series: dict[str, Series] = field(default_factory=dict)
    issues: dict[IssueKey, Issue] = field(default_factory=dict)
    editions: dict[EditionKey, Edition] = field(default_factory=dict)
    ownership: dict[EditionKey, OwnershipRecord] = field(default_factory=dict)
    removed_ownership: set[EditionKey] = field(default_factory=set)

    def __len__(self) -> int:
        return (
            len(self.series)
            + len(self.issues)
            + len(self.editions)
            + len(self.ownership)
            + len(self.removed_ownership)
        )

    @property
    def is_empty(self) -> bool:
        return len(self) == 0


class CollectionGraph:
    """In-memory catalog and ownership model with invariant-checked mutations."""

    def __init__(self, clock: Clock | None = None) -> None:
        self._clock = clock or SystemClock()
        self._series: dict[str, Series] = {}
        self._issues: dict[IssueKey, Issue] = {}
        self._editions: dict[IssueKey, dict[str, Edition]] = {}
        self._ownership: dict[EditionKey, OwnershipRecord] = {}
        self._locks: dict[IssueKey, asyncio.Lock] = {}
        self._changes = MutationSet()

    # --- Loading ---

    @classmethod
    def from_records(
        cls,
        series: Iterable[Series],
        issues: Iterable[Issue],
        editions: Iterable[Edition],
        ownership: Iterable[OwnershipRecord],
        clock: Clock | None = None,
    ) -> "CollectionGraph":
        """Rebuild a graph from persisted records without recording mutations."""
        graph = cls(clock=clock)
        for s in series:
            graph.add_series(s.key, s.name, volumes=s.volumes, external_ids=s.external_ids)
        for issue in issues:
            graph.add_issue(
                issue.series_key, issue.volume, issue.number, issue.publication_date
            )
        for edition in editions:
            graph.add_edition(edition)
        for record in ownership:
            graph._put_ownership(record)
        graph._changes = MutationSet()
        return graph

    # --- Locking ---

    def issue_lock(self, key: IssueKey) -> asyncio.Lock:
        """Mutual-exclusion lock for writes to one Issue."""
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    # --- Series ---

    def add_series(
        self,
        key: str,
        name: str,
        volumes: Iterable[int] = (),
        external_ids: Mapping[str, str] | None = None,
    ) -> Series:
        if key in self._series:
            raise DuplicateKeyError("Series", key)
        series = Series(
            key=key,
            name=name,
            volumes=set(volumes),
            external_ids=dict(external_ids or {}),
        )
        self._series[key] = series
        self._changes.series[key] = series
        return series

    def find_series(self, key: str) -> Series | None:
        return self._series.get(key)

    def get_series(self, key: str) -> Series:
        series = self._series.get(key)
        if series is None:
            raise CatalogLookupError("Series", key)
        return series

    def list_series(self) -> list[Series]:
        return sorted(self._series.values(), key=lambda s: s.key)

    def set_external_id(self, series_key: str, provider_id: str, external_id: str) -> None:
        """Record where a series lives on one provider."""
        series = self.get_series(series_key)
        if series.external_ids.get(provider_id) != external_id:
            series.external_ids[provider_id] = external_id
            self._changes.series[series_key] = series

    def provider_index(self, provider_id: str) -> "ProviderSeriesIndex":
        """Live series-key -> SeriesMapping view for one provider client."""
        return ProviderSeriesIndex(self, provider_id)

    # --- Issues ---

    def add_issue(
        self,
        series_key: str,
        volume: int,
        number: str,
        publication_date: date | None = None,
    ) -> Issue:
        series = self.get_series(series_key)
        key = IssueKey(series_key, volume, normalize_issue_number(number))
        if key in self._issues:
            raise DuplicateKeyError("Issue", key)

        issue = Issue(key=key, publication_date=publication_date)
        self._issues[key] = issue
        bisect.insort(series.issue_keys, key, key=_issue_order)
        if volume not in series.volumes:
            series.volumes.add(volume)
            self._changes.series[series_key] = series
        self._changes.issues[key] = issue
        return issue

    def find_issue(self, key: IssueKey) -> Issue | None:
        return self._issues.get(key)

    def get_issue(self, key: IssueKey) -> Issue:
        issue = self._issues.get(key)
        if issue is None:
            raise CatalogLookupError("Issue", key)
        return issue

    def set_publication_date(self, key: IssueKey, publication_date: date) -> None:
        issue = self.get_issue(key)
        if issue.publication_date != publication_date:
            issue.publication_date = publication_date
            self._changes.issues[key] = issue

    def list_issues(self, series_key: str, volume: int | None = None) -> list[Issue]:
        """Issues of a series in (volume, issue number) order."""
        series = self.get_series(series_key)
        return [
            self._issues[key]
            for key in series.issue_keys
            if volume is None or key.volume == volume
        ]

    # --- Editions ---

    def add_edition(self, edition: Edition) -> Edition:
        self.get_issue(edition.issue_key)
        lines = self._editions.setdefault(edition.issue_key, {})
        if edition.edition_line in lines:
            raise DuplicateKeyError("Edition", (edition.issue_key, edition.edition_line))

        if edition.updated_at is None:
            edition = replace(edition, updated_at=self._clock.now())
        lines[edition.edition_line] = edition
        self._changes.editions[(edition.issue_key, edition.edition_line)] = edition
        return edition

    def find_edition(self, key: IssueKey, edition_line: str) -> Edition | None:
        return self._editions.get(key, {}).get(edition_line)

    def get_edition(self, key: IssueKey, edition_line: str) -> Edition:
        edition = self.find_edition(key, edition_line)
        if edition is None:
            raise CatalogLookupError("Edition", (key, edition_line))
        return edition

    def editions_for(self, key: IssueKey) -> list[Edition]:
        return sorted(self._editions.get(key, {}).values(), key=lambda e: e.edition_line)

    def update_edition(
        self,
        key: IssueKey,
        edition_line: str,
        changes: Mapping[str, Any],
        provenance: Mapping[str, FieldProvenance],
        source_provider: str | None = None,
    ) -> Edition:
        """
        Apply field changes to an existing Edition.

        Only fields whose value actually differs are written; updated_at moves
        only when at least one did.
        """
        edition = self.get_edition(key, edition_line)
        changed = {f: v for f, v in changes.items() if getattr(edition, f) != v}
        if not changed:
            return edition

        for field_name, value in changed.items():
            setattr(edition, field_name, value)
            if field_name in provenance:
                edition.provenance[field_name] = provenance[field_name]
        if source_provider is not None:
            edition.source_provider = source_provider
        edition.updated_at = self._clock.now()
        self._changes.editions[(key, edition_line)] = edition

        logger.info(
            "EDITION_UPDATED",
            extra={
                "issue": f"{key.series_key} v{key.volume} #{key.number}",
                "edition_line": edition_line,
                "fields": sorted(changed),
            },
        )
        return edition

    def edition_lines(self, series_key: str) -> list[str]:
        """Every edition line catalogued or owned for a series."""
        series = self.get_series(series_key)
        lines: set[str] = set()
        for key in series.issue_keys:
            lines.update(self._editions.get(key, {}))
        lines.update(line for (key, line) in self._ownership if key.series_key == series_key)
        return sorted(lines)

    # --- Ownership ---

    def get_ownership(self, key: IssueKey, edition_line: str) -> OwnershipRecord | None:
        return self._ownership.get((key, edition_line))

    def ownership_for_series(self, series_key: str) -> list[OwnershipRecord]:
        return [
            record
            for (key, _line), record in self._ownership.items()
            if key.series_key == series_key
        ]

    def set_ownership(
        self,
        key: IssueKey,
        edition_line: str,
        state: OwnershipState,
        acquired_at: datetime | None = None,
        disposed_at: datetime | None = None,
    ) -> OwnershipRecord:
        """
        Record a user's state for one (Issue, edition line).

        Acquisition timestamps carry forward from a previous, undisposed
        record. OWNED/READ default acquired_at to now. SOLD/TRADED require an
        acquisition (given or carried forward) strictly before disposal,
        and default disposed_at to now.

        Raises:
            CatalogLookupError: Issue does not exist
            OwnershipValidationError: Timestamp rules violated
        """
        self.get_issue(key)
        previous = self._ownership.get((key, edition_line))
        now = self._clock.now()
        # A disposed copy's acquisition does not carry over to a re-acquisition
        carried = (
            previous.acquired_at
            if previous is not None and previous.state not in DISPOSED_STATES
            else None
        )
        acquired = _as_utc(acquired_at) or carried
        disposed = _as_utc(disposed_at)

        if state in DISPOSED_STATES:
            if acquired is None:
                raise OwnershipValidationError(
                    f"Cannot mark as {state.value} without a prior acquisition.",
                    detail=f"{key} line={edition_line}",
                )
            disposed = disposed or now
            if acquired >= disposed:
                raise OwnershipValidationError(
                    "Acquisition must precede disposal.",
                    detail=f"acquired_at={acquired.isoformat()} disposed_at={disposed.isoformat()}",
                )
        elif state == OwnershipState.WISHLIST:
            if disposed is not None:
                raise OwnershipValidationError("A wishlist entry cannot have a disposal date.")
            acquired = None
        else:
            if disposed is not None:
                raise OwnershipValidationError(
                    f"A {state.value} entry cannot have a disposal date."
                )
            acquired = acquired or now

        record = OwnershipRecord(
            issue_key=key,
            edition_line=edition_line,
            state=state,
            acquired_at=acquired,
            disposed_at=disposed,
            updated_at=now,
        )
        self._put_ownership(record)
        return record

    def clear_ownership(self, key: IssueKey, edition_line: str) -> bool:
        if self._ownership.pop((key, edition_line), None) is None:
            return False
        self._changes.ownership.pop((key, edition_line), None)
        self._changes.removed_ownership.add((key, edition_line))
        return True

    def _put_ownership(self, record: OwnershipRecord) -> None:
        edition_key = (record.issue_key, record.edition_line)
        self._ownership[edition_key] = record
        self._changes.ownership[edition_key] = record
        self._changes.removed_ownership.discard(edition_key)

    # --- Persistence boundary ---

    @property
    def pending_changes(self) -> MutationSet:
        return self._changes

    def drain_changes(self) -> MutationSet:
        """Hand accumulated mutations to the store and start a fresh set."""
        changes, self._changes = self._changes, MutationSet()
        return changes

    def restore_changes(self, changes: MutationSet) -> None:
        """
        Put back a drained set whose save failed.

        Anything recorded since the drain is newer and wins over the restored
        entries for the same key.
        """
        current = self._changes
        for key, series in changes.series.items():
            current.series.setdefault(key, series)
        for key, issue in changes.issues.items():
            current.issues.setdefault(key, issue)
        for key, edition in changes.editions.items():
            current.editions.setdefault(key, edition)
        for key, record in changes.ownership.items():
            if key not in current.removed_ownership:
                current.ownership.setdefault(key, record)
        for key in changes.removed_ownership:
            if key not in current.ownership:
                current.removed_ownership.add(key)
        logger.warning("CHANGES_RESTORED", extra={"count": len(changes)})


class ProviderSeriesIndex(Mapping[str, SeriesMapping]):
    """
    Read-only view of the graph's series for one provider.

    Maps canonical series key -> SeriesMapping using the provider id recorded
    on each Series and the series' latest known volume, if any.
    """

    def __init__(self, graph: CollectionGraph, provider_id: str) -> None:
        self._graph = graph
        self._provider_id = provider_id

    def __getitem__(self, series_key: str) -> SeriesMapping:
        series = self._graph.find_series(series_key)
        if series is None or self._provider_id not in series.external_ids:
            raise KeyError(series_key)
        return SeriesMapping(
            provider_series_id=series.external_ids[self._provider_id],
            volume=max(series.volumes) if series.volumes else None,
        )

    def __iter__(self) -> Iterator[str]:
        return (
            s.key for s in self._graph.list_series() if self._provider_id in s.external_ids
        )

    def __len__(self) -> int:
        return sum(1 for _ in self)
