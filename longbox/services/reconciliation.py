"""
Reconciliation Engine: Field-Level Merge of Provider Records.

Turns several providers' records for the same (series, volume, issue,
edition line) into one canonical Edition and writes it to the graph.

RULES (per field):
1. Providers are ranked by the field's configured precedence; providers not
   listed rank below every listed one, equally
2. The best-ranked provider supplying a non-empty value wins
3. Equal rank with conflicting values: the most recently fetched record
   wins; equal fetch times fall back to configured provider order
4. Every tie-break is recorded in provenance, never dropped

WRITES:
- Unknown (series, volume, issue) -> new Issue and Edition
- Known Issue -> only fields whose new, non-empty value differs are written,
  so a provider outage never blanks existing data and unchanged fields never
  move updated_at

reconcile() is pure and order-independent: the same records in any order
yield the same Edition.
"""

import logging
from collections import Counter
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from longbox.config import DEFAULT_FIELD_PRECEDENCE
from longbox.models.catalog import CATALOG_FIELDS, Edition, FieldProvenance, IssueKey
from longbox.models.failure import ReconciliationError
from longbox.models.provider_record import ProviderRecord
from longbox.services.collection_graph import CollectionGraph

logger = logging.getLogger(__name__)

TIE_MOST_RECENT = "most_recent"
TIE_CONFIGURED_ORDER = "configured_order"


@dataclass(frozen=True)
class PrecedencePolicy:
    """
    Provider precedence per catalog field.

    Attributes:
        fields: Field name -> provider ids, highest precedence first
        provider_order: Configured provider order, the final tie-breaker.
            Providers missing here order after listed ones, alphabetically.
    """

    fields: Mapping[str, tuple[str, ...]] = field(
        default_factory=lambda: dict(DEFAULT_FIELD_PRECEDENCE)
    )
    provider_order: tuple[str, ...] = ()

    def rank(self, field_name: str, provider_id: str) -> int:
        order = self.fields.get(field_name, ())
        try:
            return order.index(provider_id)
        except ValueError:
            return len(order)

    def order_key(self, provider_id: str) -> tuple[int, str]:
        try:
            return (self.provider_order.index(provider_id), provider_id)
        except ValueError:
            return (len(self.provider_order), provider_id)


@dataclass
class ReconcileOutcome:
    """What one apply() did to the graph."""

    edition: Edition
    created_issue: bool = False
    created_edition: bool = False
    changed_fields: tuple[str, ...] = ()

    @property
    def changed(self) -> bool:
        return self.created_edition or bool(self.changed_fields)


@dataclass(frozen=True)
class _Candidate:
    rank: int
    record: ProviderRecord
    value: Any


class ReconciliationEngine:
    """Deterministic merge plus minimal-diff writes into the collection graph."""

    def __init__(self, policy: PrecedencePolicy | None = None) -> None:
        self.policy = policy or PrecedencePolicy()

    def _sort_key(self, candidate: _Candidate) -> tuple[Any, ...]:
        # Best rank, then most recent fetch, then configured order
        return (
            candidate.rank,
            -candidate.record.fetched_at.timestamp(),
            self.policy.order_key(candidate.record.provider_id),
        )

    def reconcile(self, records: Sequence[ProviderRecord]) -> Edition:
        """
        Merge provider records into one canonical Edition (not yet stored).

        Raises:
            ReconciliationError: No records, records describing different
                issues / edition lines, or records without a volume
        """
        if not records:
            raise ReconciliationError("Nothing to reconcile.")

        identities = {
            (r.series_key, r.volume, r.issue_number, r.edition_line) for r in records
        }
        if len(identities) > 1:
            raise ReconciliationError(
                "Provider records describe different issues.",
                detail=", ".join(sorted(f"{s} v{v} #{n} [{line}]" for s, v, n, line in identities)),
            )
        series_key, volume, number, edition_line = identities.pop()
        if volume is None:
            raise ReconciliationError(
                "Provider records carry no volume.",
                detail=f"{series_key} #{number} [{edition_line}]",
            )

        values: dict[str, Any] = {}
        provenance: dict[str, FieldProvenance] = {}
        for field_name in CATALOG_FIELDS:
            entry = self._resolve_field(field_name, records)
            if entry is None:
                continue
            values[field_name] = entry.value
            provenance[field_name] = entry

        return Edition(
            issue_key=IssueKey(series_key, volume, number),
            edition_line=edition_line,
            source_provider=self._source_provider(provenance, records),
            provenance=provenance,
            **values,
        )

    def _resolve_field(
        self, field_name: str, records: Sequence[ProviderRecord]
    ) -> FieldProvenance | None:
        candidates = sorted(
            (
                _Candidate(self.policy.rank(field_name, r.provider_id), r, value)
                for r in records
                if (value := r.field_value(field_name)) is not None
            ),
            key=self._sort_key,
        )
        if not candidates:
            return None

        winner = candidates[0]
        tie_break: str | None = None
        rivals = [
            c for c in candidates[1:] if c.rank == winner.rank and c.value != winner.value
        ]
        if rivals:
            same_time = any(c.record.fetched_at == winner.record.fetched_at for c in rivals)
            tie_break = TIE_CONFIGURED_ORDER if same_time else TIE_MOST_RECENT
            logger.info(
                "RECONCILE_TIE",
                extra={
                    "field": field_name,
                    "winner": winner.record.provider_id,
                    "rivals": [c.record.provider_id for c in rivals],
                    "tie_break": tie_break,
                },
            )

        contributors: list[str] = []
        for c in candidates:
            if c.record.provider_id not in contributors:
                contributors.append(c.record.provider_id)

        return FieldProvenance(
            field_name=field_name,
            provider_id=winner.record.provider_id,
            value=winner.value,
            fetched_at=winner.record.fetched_at,
            contributors=tuple(contributors),
            tie_break=tie_break,
            overridden=tuple(
                (c.record.provider_id, c.value) for c in candidates[1:] if c.value != winner.value
            ),
        )

    def _source_provider(
        self,
        provenance: Mapping[str, FieldProvenance],
        records: Sequence[ProviderRecord],
    ) -> str:
        wins = Counter(p.provider_id for p in provenance.values())
        providers = {r.provider_id for r in records}
        return min(providers, key=lambda p: (-wins[p], self.policy.order_key(p)))

    @staticmethod
    def _series_name(records: Sequence[ProviderRecord]) -> str | None:
        for record in sorted(records, key=lambda r: r.provider_id):
            if record.series_name:
                return record.series_name
        return None

    async def apply(
        self, graph: CollectionGraph, records: Sequence[ProviderRecord]
    ) -> ReconcileOutcome:
        """
        Reconcile records and store the result, holding the Issue's lock.

        Raises:
            ReconciliationError: Records disagree on identity
            DuplicateKeyError: Graph invariant violated (never merged silently)
        """
        merged = self.reconcile(records)
        key = merged.issue_key
        async with graph.issue_lock(key):
            return self._write(graph, merged, self._series_name(records))

    def _write(
        self, graph: CollectionGraph, merged: Edition, series_name: str | None
    ) -> ReconcileOutcome:
        key = merged.issue_key
        publication_date = merged.store_date or merged.cover_date

        created_issue = False
        issue = graph.find_issue(key)
        if issue is None:
            if graph.find_series(key.series_key) is None:
                graph.add_series(key.series_key, series_name or key.series_key)
            issue = graph.add_issue(key.series_key, key.volume, key.number, publication_date)
            created_issue = True
        elif issue.publication_date is None and publication_date is not None:
            graph.set_publication_date(key, publication_date)

        existing = graph.find_edition(key, merged.edition_line)
        if existing is None:
            edition = graph.add_edition(merged)
            logger.info(
                "EDITION_CREATED",
                extra={
                    "issue": f"{key.series_key} v{key.volume} #{key.number}",
                    "edition_line": merged.edition_line,
                    "source_provider": merged.source_provider,
                },
            )
            return ReconcileOutcome(
                edition=edition,
                created_issue=created_issue,
                created_edition=True,
                changed_fields=tuple(merged.provenance),
            )

        changes = {
            f: getattr(merged, f)
            for f in merged.provenance
            if getattr(existing, f) != getattr(merged, f)
        }
        source = merged.source_provider if changes else None
        edition = graph.update_edition(
            key, merged.edition_line, changes, merged.provenance, source_provider=source
        )
        return ReconcileOutcome(edition=edition, changed_fields=tuple(changes))
