"""
Series API endpoints.

Registers series with their provider identifiers, lists their issues and
reports collection completeness.
"""

from datetime import date
from typing import Annotated

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from longbox.analysis.completeness import calculate_completeness, edition_line_breakdown
from longbox.api.dependencies import get_graph
from longbox.db import persist_changes
from longbox.db.database import get_session
from longbox.models.completeness import CompletenessReport
from longbox.services.collection_graph import CollectionGraph

router = APIRouter(prefix="/series", tags=["series"])


class SeriesCreateRequest(BaseModel):
    """Request model for registering a series."""

    key: str = Field(..., min_length=1, max_length=255, examples=["saga"])
    name: str = Field(..., min_length=1, max_length=255, examples=["Saga"])
    volumes: list[int] = Field(default_factory=list)
    external_ids: dict[str, str] = Field(
        default_factory=dict,
        description="Provider id -> that provider's series identifier",
        examples=[{"comicvine": "4050-49901", "metron": "42"}],
    )


class ExternalIdRequest(BaseModel):
    """Request model for mapping a series to a provider's identifier."""

    external_id: str = Field(..., min_length=1)


class IssueSummary(BaseModel):
    """One issue with the edition lines it is cataloged on."""

    volume: int
    number: str
    publication_date: date | None = None
    edition_lines: list[str] = Field(default_factory=list)


class SeriesResponse(BaseModel):
    """Response model for a series and its issues."""

    key: str
    name: str
    volumes: list[int]
    external_ids: dict[str, str]
    issues: list[IssueSummary] = Field(default_factory=list)


class CompletenessResponse(BaseModel):
    """Response model for a completeness report."""

    series_key: str
    edition_line: str | None
    volume: int | None
    owned_count: int
    total_count: int
    percentage: float
    missing_issues: list[str] = Field(
        description="Missing issue numbers in (volume, number) order; may repeat across volumes",
    )
    missing_by_volume: dict[int, list[str]] = Field(
        description="Missing issue numbers per volume",
    )


class BreakdownResponse(BaseModel):
    """Response model for per-edition-line completeness."""

    series_key: str
    lines: dict[str, CompletenessResponse] = Field(default_factory=dict)


def _series_response(graph: CollectionGraph, key: str) -> SeriesResponse:
    series = graph.get_series(key)
    issues = [
        IssueSummary(
            volume=issue.volume,
            number=issue.number,
            publication_date=issue.publication_date,
            edition_lines=[e.edition_line for e in graph.editions_for(issue.key)],
        )
        for issue in graph.list_issues(key)
    ]
    return SeriesResponse(
        key=series.key,
        name=series.name,
        volumes=sorted(series.volumes),
        external_ids=dict(series.external_ids),
        issues=issues,
    )


def _completeness_response(report: CompletenessReport) -> CompletenessResponse:
    return CompletenessResponse(
        series_key=report.series_key,
        edition_line=report.edition_line,
        volume=report.volume,
        owned_count=report.owned_count,
        total_count=report.total_count,
        percentage=report.percentage,
        missing_issues=report.missing_issues,
        missing_by_volume=report.missing_by_volume,
    )


@router.post("", response_model=SeriesResponse, status_code=status.HTTP_201_CREATED)
async def create_series(
    request: SeriesCreateRequest,
    graph: Annotated[CollectionGraph, Depends(get_graph)],
    session: Annotated[AsyncSession, Depends(get_session)],
) -> SeriesResponse:
    """
    Register a series.

    Fails with 409 if the key is already taken.
    """
    graph.add_series(
        request.key, request.name, volumes=request.volumes, external_ids=request.external_ids
    )
    await persist_changes(session, graph)
    return _series_response(graph, request.key)


@router.get("/{series_key}", response_model=SeriesResponse)
async def get_series(
    series_key: str,
    graph: Annotated[CollectionGraph, Depends(get_graph)],
) -> SeriesResponse:
    """Get a series with its issues in (volume, issue number) order."""
    return _series_response(graph, series_key)


@router.put("/{series_key}/external-ids/{provider_id}", response_model=SeriesResponse)
async def set_external_id(
    series_key: str,
    provider_id: str,
    request: ExternalIdRequest,
    graph: Annotated[CollectionGraph, Depends(get_graph)],
    session: Annotated[AsyncSession, Depends(get_session)],
) -> SeriesResponse:
    """Map a series to a provider's series identifier."""
    graph.set_external_id(series_key, provider_id, request.external_id)
    await persist_changes(session, graph)
    return _series_response(graph, series_key)


@router.get("/{series_key}/completeness", response_model=CompletenessResponse)
async def get_completeness(
    series_key: str,
    graph: Annotated[CollectionGraph, Depends(get_graph)],
    edition_line: Annotated[str | None, Query()] = None,
    volume: Annotated[int | None, Query(ge=1)] = None,
) -> CompletenessResponse:
    """
    Completeness of a series for one edition line.

    Omit edition_line to count ownership on any line. Omit volume to cover
    every volume of the series.
    """
    report = calculate_completeness(graph, series_key, edition_line, volume)
    return _completeness_response(report)


@router.get("/{series_key}/breakdown", response_model=BreakdownResponse)
async def get_breakdown(
    series_key: str,
    graph: Annotated[CollectionGraph, Depends(get_graph)],
    volume: Annotated[int | None, Query(ge=1)] = None,
) -> BreakdownResponse:
    """Completeness for every edition line the series is cataloged or owned on."""
    reports = edition_line_breakdown(graph, series_key, volume)
    return BreakdownResponse(
        series_key=series_key,
        lines={line: _completeness_response(r) for line, r in reports.items()},
    )
