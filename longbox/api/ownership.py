"""
Ownership API endpoints.

Records a user's state (wishlist, owned, read, sold, traded) for one
(issue, edition line).
"""

from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from longbox.api.dependencies import get_graph
from longbox.db import persist_changes
from longbox.db.database import get_session
from longbox.models.catalog import (
    IssueKey,
    OwnershipRecord,
    OwnershipState,
    normalize_issue_number,
)
from longbox.services.collection_graph import CollectionGraph

router = APIRouter(prefix="/ownership", tags=["ownership"])


class OwnershipRequest(BaseModel):
    """Request model for setting ownership state."""

    state: OwnershipState
    acquired_at: datetime | None = Field(
        default=None,
        description="Defaults to now for owned/read; carried forward when omitted",
    )
    disposed_at: datetime | None = Field(
        default=None,
        description="Only valid for sold/traded; defaults to now",
    )


class OwnershipResponse(BaseModel):
    """Response model for one ownership record."""

    series_key: str
    volume: int
    number: str
    edition_line: str
    state: OwnershipState
    acquired_at: datetime | None = None
    disposed_at: datetime | None = None
    updated_at: datetime | None = None


class ClearResponse(BaseModel):
    """Response model for clearing ownership."""

    cleared: bool


def _to_response(record: OwnershipRecord) -> OwnershipResponse:
    key = record.issue_key
    return OwnershipResponse(
        series_key=key.series_key,
        volume=key.volume,
        number=key.number,
        edition_line=record.edition_line,
        state=record.state,
        acquired_at=record.acquired_at,
        disposed_at=record.disposed_at,
        updated_at=record.updated_at,
    )


@router.put(
    "/{series_key}/{volume}/{number}/{edition_line}",
    response_model=OwnershipResponse,
)
async def set_ownership(
    series_key: str,
    volume: int,
    number: str,
    edition_line: str,
    request: OwnershipRequest,
    graph: Annotated[CollectionGraph, Depends(get_graph)],
    session: Annotated[AsyncSession, Depends(get_session)],
) -> OwnershipResponse:
    """
    Set ownership of one edition of an issue.

    Sold and traded require an acquisition date before the disposal date,
    either in the request or from an earlier owned/read record (422 if not).
    """
    key = IssueKey(series_key, volume, normalize_issue_number(number))
    async with graph.issue_lock(key):
        record = graph.set_ownership(
            key,
            edition_line,
            request.state,
            acquired_at=request.acquired_at,
            disposed_at=request.disposed_at,
        )
    await persist_changes(session, graph)
    return _to_response(record)


@router.get(
    "/{series_key}/{volume}/{number}/{edition_line}",
    response_model=OwnershipResponse | None,
)
async def get_ownership(
    series_key: str,
    volume: int,
    number: str,
    edition_line: str,
    graph: Annotated[CollectionGraph, Depends(get_graph)],
) -> OwnershipResponse | None:
    """Get ownership of one edition, or null if none is recorded."""
    key = IssueKey(series_key, volume, normalize_issue_number(number))
    graph.get_issue(key)
    record = graph.get_ownership(key, edition_line)
    return _to_response(record) if record else None


@router.delete(
    "/{series_key}/{volume}/{number}/{edition_line}",
    response_model=ClearResponse,
)
async def clear_ownership(
    series_key: str,
    volume: int,
    number: str,
    edition_line: str,
    graph: Annotated[CollectionGraph, Depends(get_graph)],
    session: Annotated[AsyncSession, Depends(get_session)],
) -> ClearResponse:
    """Forget ownership of one edition entirely."""
    key = IssueKey(series_key, volume, normalize_issue_number(number))
    async with graph.issue_lock(key):
        cleared = graph.clear_ownership(key, edition_line)
    await persist_changes(session, graph)
    return ClearResponse(cleared=cleared)
