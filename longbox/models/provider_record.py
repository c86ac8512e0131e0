"""
Normalized provider payload.

A ProviderRecord is what every provider client hands back, whatever the
upstream schema looked like. Records are consumed by reconciliation and
then dropped; only their provenance survives on the Edition.
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any


@dataclass(frozen=True, slots=True)
class ProviderRecord:
    """
    One provider's view of one issue on one edition line.

    Attributes:
        provider_id: Short provider identity ("comicvine", "metron")
        series_key: Canonical series key the record was fetched for
        volume: Series volume (reboot number) as reported by the provider,
            or None when the provider does not number volumes
        issue_number: Normalized issue number
        edition_line: Publishing track this record describes
        fetched_at: When the record was fetched (UTC)
        ttl_seconds: How long the record stays fresh
        external_id: Provider-side identifier, for auditing
    """

    provider_id: str
    series_key: str
    volume: int | None
    issue_number: str
    edition_line: str
    fetched_at: datetime
    ttl_seconds: float
    series_name: str | None = None
    title: str | None = None
    cover_date: date | None = None
    store_date: date | None = None
    creators: tuple[str, ...] = ()
    cover_image: str | None = None
    external_id: str | None = None

    @property
    def expires_at(self) -> datetime:
        return self.fetched_at + timedelta(seconds=self.ttl_seconds)

    def is_fresh(self, now: datetime) -> bool:
        """True while the record is within its freshness TTL."""
        return now < self.expires_at

    def field_value(self, field_name: str) -> Any:
        """Value of a catalog field, or None when the provider left it empty."""
        value = getattr(self, field_name)
        if value in ("", (), None):
            return None
        return value
