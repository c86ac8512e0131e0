"""
Comic Vine provider client.

API docs: https://comicvine.gamespot.com/api/documentation
Rate limit: 200 requests/hour per resource (non-commercial keys).

Comic Vine wraps every answer in an envelope whose own `status_code`
(1 = OK, 101 = object not found, 107 = rate limited) matters as much as the
HTTP status.
"""

import logging
from typing import Any

from longbox.models.catalog import normalize_issue_number
from longbox.models.failure import (
    FailureKind,
    ProviderError,
    ProviderNotFoundError,
    UpstreamRateLimitedError,
)
from longbox.models.provider_record import ProviderRecord
from longbox.providers.base import (
    ProviderClient,
    SeriesMapping,
    clean_text,
    format_creator,
    parse_date,
)

logger = logging.getLogger(__name__)

CV_STATUS_OK = 1
CV_STATUS_INVALID_KEY = 100
CV_STATUS_NOT_FOUND = 101
CV_STATUS_RATE_LIMITED = 107

ISSUE_FIELDS = "id,name,issue_number,cover_date,store_date,image,person_credits,volume"


class ComicVineClient(ProviderClient):
    """Looks issues up by Comic Vine volume id and issue number."""

    provider_id = "comicvine"

    def __init__(self, *args: Any, api_key: str, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.api_key = api_key
        if not api_key:
            logger.warning("COMICVINE_NO_API_KEY")

    async def _fetch_once(
        self, series_key: str, mapping: SeriesMapping, issue_number: str
    ) -> ProviderRecord:
        volume_id = mapping.provider_series_id.removeprefix("4050-")
        payload = await self._get_json(
            "issues/",
            params={
                "api_key": self.api_key,
                "format": "json",
                "filter": f"volume:{volume_id},issue_number:{issue_number}",
                "field_list": ISSUE_FIELDS,
            },
        )
        self._check_envelope(payload)

        match = self._select_issue(payload.get("results") or [], issue_number)
        if match is None:
            raise ProviderNotFoundError(
                self.provider_id, detail=f"volume {volume_id} has no issue {issue_number}"
            )
        return self._normalize(series_key, mapping, match)

    def _check_envelope(self, payload: dict[str, Any]) -> None:
        status = payload.get("status_code")
        if status == CV_STATUS_OK:
            return
        if status == CV_STATUS_NOT_FOUND:
            raise ProviderNotFoundError(self.provider_id, detail=payload.get("error"))
        if status == CV_STATUS_RATE_LIMITED:
            raise UpstreamRateLimitedError(self.provider_id)
        raise ProviderError(
            self.provider_id,
            kind=FailureKind.SERVICE_UNAVAILABLE,
            message="Comic Vine returned an error envelope.",
            detail=f"status_code={status} error={payload.get('error')}",
        )

    @staticmethod
    def _select_issue(results: list[dict[str, Any]], issue_number: str) -> dict[str, Any] | None:
        for result in results:
            raw = result.get("issue_number")
            if raw is not None and normalize_issue_number(str(raw)) == issue_number:
                return result
        return None

    def _normalize(
        self, series_key: str, mapping: SeriesMapping, issue: dict[str, Any]
    ) -> ProviderRecord:
        credits = issue.get("person_credits") or []
        creators = tuple(
            sorted(
                format_creator(c["name"], str(c.get("role") or "").split(","))
                for c in credits
                if c.get("name")
            )
        )
        image = issue.get("image") or {}

        # Comic Vine models each reboot as its own volume id and has no volume number
        return self._record(
            series_key,
            None,
            str(issue.get("issue_number")),
            series_name=clean_text((issue.get("volume") or {}).get("name")),
            title=clean_text(issue.get("name")),
            cover_date=parse_date(issue.get("cover_date")),
            store_date=parse_date(issue.get("store_date")),
            creators=creators,
            cover_image=clean_text(image.get("original_url")),
            external_id=f"4000-{issue['id']}" if issue.get("id") is not None else None,
        )
