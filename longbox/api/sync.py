"""
Sync API endpoint.

Fetches one issue from every configured provider, reconciles the answers
and stores the result. Partial provider failure still returns 200 with the
failed providers listed.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from longbox.api.dependencies import get_catalog_sync
from longbox.db import persist_changes
from longbox.db.database import get_session
from longbox.services.catalog_sync import CatalogSync

router = APIRouter(prefix="/sync", tags=["sync"])


class EditionChange(BaseModel):
    """What a sync did to one edition."""

    volume: int
    edition_line: str
    created: bool
    changed_fields: list[str] = Field(default_factory=list)
    source_provider: str | None = None
    title: str | None = None


class SyncResponse(BaseModel):
    """Response model for an issue sync."""

    series_key: str
    issue_number: str
    providers_succeeded: list[str]
    providers_failed: dict[str, str] = Field(
        default_factory=dict,
        description="Provider id -> failure kind",
    )
    partial: bool
    editions: list[EditionChange] = Field(default_factory=list)


@router.post("/{series_key}/{issue_number}", response_model=SyncResponse)
async def sync_issue(
    series_key: str,
    issue_number: str,
    catalog_sync: Annotated[CatalogSync, Depends(get_catalog_sync)],
    session: Annotated[AsyncSession, Depends(get_session)],
    refresh: Annotated[bool, Query(description="Bypass cached provider answers")] = False,
) -> SyncResponse:
    """
    Sync one issue from all providers.

    Returns 404 if no provider knows the issue and 503 if no provider could
    be reached.
    """
    outcome = await catalog_sync.sync_issue(series_key, issue_number, refresh=refresh)
    await persist_changes(session, catalog_sync.graph)

    return SyncResponse(
        series_key=outcome.series_key,
        issue_number=outcome.issue_number,
        providers_succeeded=outcome.providers_succeeded,
        providers_failed=outcome.providers_failed,
        partial=outcome.is_partial,
        editions=[
            EditionChange(
                volume=o.edition.issue_key.volume,
                edition_line=o.edition.edition_line,
                created=o.created_edition,
                changed_fields=list(o.changed_fields),
                source_provider=o.edition.source_provider,
                title=o.edition.title,
            )
            for o in outcome.outcomes
        ],
    )
