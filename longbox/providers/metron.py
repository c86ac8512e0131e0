"""
Metron provider client.

API docs: https://metron.cloud/docs/
Rate limit: 30 requests/minute, 10,000/day. HTTP basic auth.

Issue lookup is two requests: a filtered list to find the issue id, then
the detail endpoint for credits and titles. Both draw from the bucket.
"""

import logging
from typing import Any

import httpx

from longbox.models.catalog import normalize_issue_number
from longbox.models.failure import ProviderNotFoundError
from longbox.models.provider_record import ProviderRecord
from longbox.providers.base import (
    ProviderClient,
    SeriesMapping,
    clean_text,
    format_creator,
    parse_date,
)

logger = logging.getLogger(__name__)


class MetronClient(ProviderClient):
    """Looks issues up by Metron series id and issue number."""

    provider_id = "metron"

    def __init__(self, *args: Any, username: str, password: str, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        if username:
            self.auth = httpx.BasicAuth(username, password)
        else:
            logger.warning("METRON_NO_CREDENTIALS")

    async def _fetch_once(
        self, series_key: str, mapping: SeriesMapping, issue_number: str
    ) -> ProviderRecord:
        listing = await self._get_json(
            "issue/",
            params={"series_id": mapping.provider_series_id, "number": issue_number},
        )
        summary = next(
            (
                r
                for r in listing.get("results") or []
                if normalize_issue_number(str(r.get("number", ""))) == issue_number
            ),
            None,
        )
        if summary is None:
            raise ProviderNotFoundError(
                self.provider_id,
                detail=f"series {mapping.provider_series_id} has no issue {issue_number}",
            )

        detail = await self._get_json(f"issue/{summary['id']}/")
        return self._normalize(series_key, mapping, detail)

    def _normalize(
        self, series_key: str, mapping: SeriesMapping, issue: dict[str, Any]
    ) -> ProviderRecord:
        series = issue.get("series") or {}
        volume = series.get("volume") or mapping.volume

        story_titles = [t for t in issue.get("name") or [] if t]
        title = clean_text(issue.get("title")) or clean_text("; ".join(story_titles))

        creators = tuple(
            sorted(
                format_creator(
                    credit["creator"],
                    [role.get("name", "") for role in credit.get("role") or []],
                )
                for credit in issue.get("credits") or []
                if credit.get("creator")
            )
        )

        return self._record(
            series_key,
            int(volume) if volume is not None else None,
            str(issue.get("number")),
            series_name=clean_text(series.get("name")),
            title=title,
            cover_date=parse_date(issue.get("cover_date")),
            store_date=parse_date(issue.get("store_date")),
            creators=creators,
            cover_image=clean_text(issue.get("image")),
            external_id=str(issue["id"]) if issue.get("id") is not None else None,
        )
