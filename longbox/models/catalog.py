"""
Canonical Catalog Models.

The long-lived shapes owned by the collection graph:
Series -> Issue -> Edition, plus per-(Issue, edition line) ownership.

INVARIANTS:
- (series_key, volume, number) uniquely identifies an Issue
- An Edition always belongs to an existing Issue
- SOLD/TRADED ownership carries an acquisition timestamp strictly
  before its disposal timestamp
"""

import re
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, NamedTuple

# Leading numeric part of an issue number: "12", "1.5", "-1", "0.1"
_NUMERIC_PREFIX = re.compile(r"^\s*(-?\d+(?:\.\d+)?)\s*(.*)$")

_FRACTION_GLYPHS = {"½": "0.5", "¼": "0.25", "¾": "0.75"}


def issue_sort_key(number: str) -> tuple[int, Decimal, str]:
    """
    Sort key placing issue numbers in numeric order.

    Fractional numbers land between integers ("1" < "1.5" < "2").
    Suffixed numbers follow their base ("5" < "5A" < "6"). Numbers with no
    numeric prefix ("Annual") sort after every numbered issue, by text.
    """
    text = number.strip()
    for glyph, value in _FRACTION_GLYPHS.items():
        text = text.replace(glyph, value)

    match = _NUMERIC_PREFIX.match(text)
    if match:
        try:
            return (0, Decimal(match.group(1)), match.group(2).lower())
        except InvalidOperation:
            pass
    return (1, Decimal(0), text.lower())


def normalize_issue_number(number: str) -> str:
    """Canonical spelling of an issue number ("001" -> "1", "1.50" -> "1.5")."""
    text = number.strip()
    match = _NUMERIC_PREFIX.match(text)
    if not match:
        return text
    numeric, suffix = match.groups()
    value = Decimal(numeric)
    if value == value.to_integral_value():
        canonical = str(int(value))
    else:
        canonical = format(value.normalize(), "f")
    return f"{canonical}{suffix.strip()}"


class IssueKey(NamedTuple):
    """Natural key of an Issue."""

    series_key: str
    volume: int
    number: str


class OwnershipState(str, Enum):
    """User-facing state of one owned (or wanted) edition."""

    WISHLIST = "wishlist"
    OWNED = "owned"
    READ = "read"
    SOLD = "sold"
    TRADED = "traded"


# States that count toward completeness
HELD_STATES = frozenset({OwnershipState.OWNED, OwnershipState.READ})

# States that require a prior acquisition
DISPOSED_STATES = frozenset({OwnershipState.SOLD, OwnershipState.TRADED})


@dataclass
class Series:
    """
    A publishing run, possibly rebooted across several volumes.

    issue_keys is kept in (volume, issue number) order. external_ids maps
    provider id -> that provider's series identifier.
    """

    key: str
    name: str
    volumes: set[int] = field(default_factory=set)
    issue_keys: list[IssueKey] = field(default_factory=list)
    external_ids: dict[str, str] = field(default_factory=dict)


@dataclass
class Issue:
    """One logical issue of a series volume."""

    key: IssueKey
    publication_date: date | None = None

    @property
    def series_key(self) -> str:
        return self.key.series_key

    @property
    def volume(self) -> int:
        return self.key.volume

    @property
    def number(self) -> str:
        return self.key.number


@dataclass(frozen=True)
class FieldProvenance:
    """
    Audit trail for one reconciled field.

    Attributes:
        field_name: Canonical field this entry describes
        provider_id: Provider whose value won
        value: The winning value
        fetched_at: When the winning record was fetched
        contributors: Every provider that supplied a non-empty value
        tie_break: None when precedence decided outright; otherwise
            "most_recent" or "configured_order"
        overridden: (provider_id, value) pairs that lost to the winner
    """

    field_name: str
    provider_id: str
    value: Any
    fetched_at: datetime
    contributors: tuple[str, ...] = ()
    tie_break: str | None = None
    overridden: tuple[tuple[str, Any], ...] = ()

    def to_dict(self) -> dict[str, Any]:
        """JSON-safe representation for persistence."""
        return {
            "field_name": self.field_name,
            "provider_id": self.provider_id,
            "value": _jsonable(self.value),
            "fetched_at": self.fetched_at.isoformat(),
            "contributors": list(self.contributors),
            "tie_break": self.tie_break,
            "overridden": [[provider, _jsonable(value)] for provider, value in self.overridden],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FieldProvenance":
        field_name = data["field_name"]
        return cls(
            field_name=field_name,
            provider_id=data["provider_id"],
            value=_restore(field_name, data["value"]),
            fetched_at=datetime.fromisoformat(data["fetched_at"]),
            contributors=tuple(data.get("contributors", ())),
            tie_break=data.get("tie_break"),
            overridden=tuple(
                (provider, _restore(field_name, value))
                for provider, value in data.get("overridden", ())
            ),
        )


@dataclass
class Edition:
    """
    A realization of an Issue on one edition line.

    Attributes:
        issue_key: Parent issue
        edition_line: Publishing track ("original", "reprint", a language code, ...)
        source_provider: Provider that supplied the most winning fields
        provenance: Field name -> FieldProvenance
        updated_at: Last time a catalog field actually changed
    """

    issue_key: IssueKey
    edition_line: str
    title: str | None = None
    cover_date: date | None = None
    store_date: date | None = None
    creators: tuple[str, ...] = ()
    cover_image: str | None = None
    source_provider: str | None = None
    provenance: dict[str, FieldProvenance] = field(default_factory=dict)
    updated_at: datetime | None = None


# Catalog fields reconciled across providers
CATALOG_FIELDS: tuple[str, ...] = ("title", "cover_date", "store_date", "creators", "cover_image")


@dataclass
class OwnershipRecord:
    """A user's state for one (Issue, edition line)."""

    issue_key: IssueKey
    edition_line: str
    state: OwnershipState
    acquired_at: datetime | None = None
    disposed_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_held(self) -> bool:
        return self.state in HELD_STATES


def _jsonable(value: Any) -> Any:
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, tuple):
        return list(value)
    return value


def _restore(field_name: str, value: Any) -> Any:
    if value is None:
        return None
    if field_name in ("cover_date", "store_date"):
        return date.fromisoformat(value)
    if field_name == "creators":
        return tuple(value)
    return value
