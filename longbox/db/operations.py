"""
Database operations for the collection graph.

The graph lives in memory; the database is its durable copy. load_graph()
rebuilds the graph at startup and save_changes() writes a drained
MutationSet back using select-then-update upserts on natural keys.
"""

from datetime import UTC, datetime

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from longbox.models.catalog import (
    Edition,
    FieldProvenance,
    Issue,
    IssueKey,
    OwnershipRecord,
    OwnershipState,
    Series,
)
from longbox.models.db import EditionDB, IssueDB, OwnershipDB, SeriesDB
from longbox.services.collection_graph import CollectionGraph, MutationSet
from longbox.sync.clock import Clock


def _utc(value: datetime | None) -> datetime | None:
    # SQLite hands timezone-aware columns back naive
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)


# --- Loading ---


async def load_graph(session: AsyncSession, clock: Clock | None = None) -> CollectionGraph:
    """Rebuild the in-memory collection graph from every stored row."""
    series_rows = (await session.execute(select(SeriesDB))).scalars().all()
    issue_rows = (await session.execute(select(IssueDB))).scalars().all()
    edition_rows = (await session.execute(select(EditionDB))).scalars().all()
    ownership_rows = (await session.execute(select(OwnershipDB))).scalars().all()

    return CollectionGraph.from_records(
        series=[series_to_model(row) for row in series_rows],
        issues=[issue_to_model(row) for row in issue_rows],
        editions=[edition_to_model(row) for row in edition_rows],
        ownership=[ownership_to_model(row) for row in ownership_rows],
        clock=clock,
    )


def series_to_model(row: SeriesDB) -> Series:
    """Convert a database series to a domain model."""
    return Series(
        key=row.key,
        name=row.name,
        volumes=set(row.volumes or ()),
        external_ids=dict(row.external_ids or {}),
    )


def issue_to_model(row: IssueDB) -> Issue:
    """Convert a database issue to a domain model."""
    return Issue(
        key=IssueKey(row.series_key, row.volume, row.number),
        publication_date=row.publication_date,
    )


def edition_to_model(row: EditionDB) -> Edition:
    """Convert a database edition to a domain model."""
    return Edition(
        issue_key=IssueKey(row.series_key, row.volume, row.number),
        edition_line=row.edition_line,
        title=row.title,
        cover_date=row.cover_date,
        store_date=row.store_date,
        creators=tuple(row.creators or ()),
        cover_image=row.cover_image,
        source_provider=row.source_provider,
        provenance={
            name: FieldProvenance.from_dict(data) for name, data in (row.provenance or {}).items()
        },
        updated_at=_utc(row.updated_at),
    )


def ownership_to_model(row: OwnershipDB) -> OwnershipRecord:
    """Convert a database ownership row to a domain model."""
    return OwnershipRecord(
        issue_key=IssueKey(row.series_key, row.volume, row.number),
        edition_line=row.edition_line,
        state=OwnershipState(row.state),
        acquired_at=_utc(row.acquired_at),
        disposed_at=_utc(row.disposed_at),
        updated_at=_utc(row.updated_at),
    )


# --- Saving ---


async def save_changes(session: AsyncSession, changes: MutationSet) -> int:
    """
    Persist a drained MutationSet.

    Parents are written before children so foreign keys always resolve.

    Returns:
        Number of rows inserted, updated or deleted.
    """
    for series in changes.series.values():
        await upsert_series(session, series)
    for issue in changes.issues.values():
        await upsert_issue(session, issue)
    for edition in changes.editions.values():
        await upsert_edition(session, edition)
    for record in changes.ownership.values():
        await upsert_ownership(session, record)
    for key, edition_line in changes.removed_ownership:
        await delete_ownership(session, key, edition_line)

    await session.flush()
    return len(changes)


async def persist_changes(session: AsyncSession, graph: CollectionGraph) -> int:
    """
    Save and commit the graph's pending changes.

    If the save or the commit fails, the changes go back to the graph so the
    next successful save writes them.

    Returns:
        Number of rows inserted, updated or deleted.
    """
    changes = graph.drain_changes()
    if changes.is_empty:
        return 0
    try:
        count = await save_changes(session, changes)
        await session.commit()
    except BaseException:
        graph.restore_changes(changes)
        raise
    return count


async def upsert_series(session: AsyncSession, series: Series) -> SeriesDB:
    """Insert or update a series by key."""
    result = await session.execute(select(SeriesDB).where(SeriesDB.key == series.key))
    existing = result.scalar_one_or_none()

    if existing:
        existing.name = series.name
        existing.volumes = sorted(series.volumes)
        existing.external_ids = dict(series.external_ids)
        return existing

    row = SeriesDB(
        key=series.key,
        name=series.name,
        volumes=sorted(series.volumes),
        external_ids=dict(series.external_ids),
    )
    session.add(row)
    await session.flush()
    return row


async def upsert_issue(session: AsyncSession, issue: Issue) -> IssueDB:
    """Insert or update an issue by (series_key, volume, number)."""
    result = await session.execute(
        select(IssueDB).where(
            IssueDB.series_key == issue.series_key,
            IssueDB.volume == issue.volume,
            IssueDB.number == issue.number,
        )
    )
    existing = result.scalar_one_or_none()

    if existing:
        existing.publication_date = issue.publication_date
        return existing

    row = IssueDB(
        series_key=issue.series_key,
        volume=issue.volume,
        number=issue.number,
        publication_date=issue.publication_date,
    )
    session.add(row)
    await session.flush()
    return row


async def upsert_edition(session: AsyncSession, edition: Edition) -> EditionDB:
    """Insert or update an edition by (issue key, edition line)."""
    key = edition.issue_key
    result = await session.execute(
        select(EditionDB).where(
            EditionDB.series_key == key.series_key,
            EditionDB.volume == key.volume,
            EditionDB.number == key.number,
            EditionDB.edition_line == edition.edition_line,
        )
    )
    row = result.scalar_one_or_none()
    if row is None:
        row = EditionDB(
            series_key=key.series_key,
            volume=key.volume,
            number=key.number,
            edition_line=edition.edition_line,
        )
        session.add(row)

    row.title = edition.title
    row.cover_date = edition.cover_date
    row.store_date = edition.store_date
    row.creators = list(edition.creators)
    row.cover_image = edition.cover_image
    row.source_provider = edition.source_provider
    row.provenance = {name: p.to_dict() for name, p in edition.provenance.items()}
    row.updated_at = edition.updated_at
    await session.flush()
    return row


async def upsert_ownership(session: AsyncSession, record: OwnershipRecord) -> OwnershipDB:
    """Insert or update an ownership record by (issue key, edition line)."""
    key = record.issue_key
    result = await session.execute(
        select(OwnershipDB).where(
            OwnershipDB.series_key == key.series_key,
            OwnershipDB.volume == key.volume,
            OwnershipDB.number == key.number,
            OwnershipDB.edition_line == record.edition_line,
        )
    )
    row = result.scalar_one_or_none()
    if row is None:
        row = OwnershipDB(
            series_key=key.series_key,
            volume=key.volume,
            number=key.number,
            edition_line=record.edition_line,
        )
        session.add(row)

    row.state = record.state.value
    row.acquired_at = record.acquired_at
    row.disposed_at = record.disposed_at
    row.updated_at = record.updated_at
    await session.flush()
    return row


async def delete_ownership(session: AsyncSession, key: IssueKey, edition_line: str) -> bool:
    """
    Delete one ownership record.

    Returns True if a row was deleted.
    """
    result = await session.execute(
        delete(OwnershipDB).where(
            OwnershipDB.series_key == key.series_key,
            OwnershipDB.volume == key.volume,
            OwnershipDB.number == key.number,
            OwnershipDB.edition_line == edition_line,
        )
    )
    # rowcount is available on DELETE results; type stubs incomplete for async
    return int(result.rowcount) > 0  # type: ignore[attr-defined]
