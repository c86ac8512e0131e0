"""
Provider Client capability interface.

Every catalog provider is a ProviderClient subclass. Provider-specific
URLs, field names, status codes and enumerations are handled ONLY inside
the subclass; everything downstream sees ProviderRecord.

Each outbound HTTP request:
1. Acquires a permit from the provider's token bucket
2. Classifies the HTTP outcome into the failure taxonomy
3. Is retried (whole fetch) by the retry state machine for transient errors
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date
from typing import Any

import httpx

from longbox.config import DEFAULT_EDITION_LINE, settings
from longbox.models.catalog import normalize_issue_number
from longbox.models.failure import (
    FailureKind,
    ProviderError,
    ProviderNotFoundError,
    ProviderUnavailableError,
    UpstreamRateLimitedError,
)
from longbox.models.provider_record import ProviderRecord
from longbox.sync.clock import Clock, SystemClock
from longbox.sync.rate_limiter import RateLimiter
from longbox.sync.retry import RetryPolicy, run_with_retry

logger = logging.getLogger(__name__)

# Providers throttle with either of these
THROTTLE_STATUS_CODES = frozenset({420, 429})


@dataclass(frozen=True)
class SeriesMapping:
    """Where a canonical series lives on one provider, and its latest known volume."""

    provider_series_id: str
    volume: int | None = None


def parse_date(value: Any) -> date | None:
    """Parse provider dates ("2012-03-14", "2012-03", "") into a date."""
    if not value:
        return None
    text = str(value).strip()[:10]
    try:
        if len(text) == 7:
            return date.fromisoformat(f"{text}-01")
        return date.fromisoformat(text)
    except ValueError:
        return None


def clean_text(value: Any) -> str | None:
    """Collapse whitespace; empty strings become None."""
    if value is None:
        return None
    text = " ".join(str(value).split())
    return text or None


def format_creator(name: str, roles: list[str]) -> str:
    """Canonical creator credit: "Name (role, role)" with roles lowercased and sorted."""
    cleaned = sorted({r.strip().lower() for r in roles if r and r.strip()})
    if not cleaned:
        return name
    return f"{name} ({', '.join(cleaned)})"


def parse_retry_after(response: httpx.Response) -> float | None:
    header = response.headers.get("Retry-After")
    if header is None:
        return None
    try:
        return max(0.0, float(header))
    except ValueError:
        return None


class ProviderClient(ABC):
    """
    One external catalog provider.

    Subclasses implement _fetch_once() using self._get_json().
    """

    provider_id: str = ""
    auth: httpx.Auth | None = None

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        rate_limiter: RateLimiter,
        series_ids: Mapping[str, SeriesMapping],
        *,
        base_url: str,
        edition_line: str = DEFAULT_EDITION_LINE,
        record_ttl: float | None = None,
        retry_policy: RetryPolicy | None = None,
        admission_timeout: float | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._http = http_client
        self._rate_limiter = rate_limiter
        self._series_ids = series_ids
        self.base_url = base_url.rstrip("/")
        self.edition_line = edition_line
        self.record_ttl = settings.record_ttl_seconds if record_ttl is None else record_ttl
        self.retry_policy = retry_policy or RetryPolicy()
        self.admission_timeout = admission_timeout
        self._clock = clock or SystemClock()

    def __repr__(self) -> str:
        return f"<{type(self).__name__}(provider_id={self.provider_id}, line={self.edition_line})>"

    async def fetch_issue(self, series_key: str, issue_number: str) -> ProviderRecord:
        """
        Fetch and normalize one issue.

        Raises:
            ProviderNotFoundError: Provider has no such series or issue (not retried)
            RateLimitedError: Throttled locally or upstream after all retries
            ProviderUnavailableError: Provider kept failing after all retries
        """
        number = normalize_issue_number(issue_number)
        mapping = self._series_ids.get(series_key)
        if mapping is None:
            raise ProviderNotFoundError(
                self.provider_id, detail=f"series '{series_key}' is not mapped"
            )

        return await run_with_retry(
            lambda: self._fetch_once(series_key, mapping, number),
            policy=self.retry_policy,
            clock=self._clock,
            label=f"{self.provider_id}:{series_key}#{number}",
        )

    @abstractmethod
    async def _fetch_once(
        self, series_key: str, mapping: SeriesMapping, issue_number: str
    ) -> ProviderRecord:
        """Single attempt at fetching and normalizing one issue."""

    async def _get_json(self, path: str, params: dict[str, Any] | None = None) -> Any:
        """Rate-limited GET returning decoded JSON, with status classification."""
        await self._rate_limiter.acquire(self.provider_id, timeout=self.admission_timeout)

        url = f"{self.base_url}/{path.lstrip('/')}"
        try:
            if self.auth is None:
                response = await self._http.get(url, params=params)
            else:
                response = await self._http.get(url, params=params, auth=self.auth)
        except httpx.TransportError as e:
            raise ProviderUnavailableError(
                self.provider_id, detail=f"{type(e).__name__}: {e}"
            ) from e

        self._raise_for_status(response)

        try:
            return response.json()
        except ValueError as e:
            raise ProviderUnavailableError(self.provider_id, detail="invalid JSON body") from e

    def _raise_for_status(self, response: httpx.Response) -> None:
        code = response.status_code
        if code < 400:
            return
        if code == 404:
            raise ProviderNotFoundError(self.provider_id, detail=str(response.url))
        if code in THROTTLE_STATUS_CODES:
            retry_after = parse_retry_after(response)
            if retry_after:
                self._rate_limiter.penalize(self.provider_id, retry_after)
            raise UpstreamRateLimitedError(self.provider_id, retry_after=retry_after)
        if code >= 500:
            raise ProviderUnavailableError(self.provider_id, detail=f"HTTP {code}")

        # 400/401/403 and friends: retrying will not help
        logger.error(
            "PROVIDER_REJECTED_REQUEST",
            extra={"provider": self.provider_id, "status_code": code},
        )
        raise ProviderError(
            self.provider_id,
            kind=FailureKind.SERVICE_UNAVAILABLE,
            message=f"{self.provider_id} rejected the request.",
            detail=f"HTTP {code}",
        )

    def _record(
        self,
        series_key: str,
        volume: int | None,
        issue_number: str,
        **fields: Any,
    ) -> ProviderRecord:
        """Stamp a normalized record with provider identity, fetch time and TTL."""
        return ProviderRecord(
            provider_id=self.provider_id,
            series_key=series_key,
            volume=volume,
            issue_number=normalize_issue_number(issue_number),
            edition_line=self.edition_line,
            fetched_at=self._clock.now(),
            ttl_seconds=self.record_ttl,
            **fields,
        )
