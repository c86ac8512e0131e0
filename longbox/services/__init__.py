"""
Longbox services.

Catalog model, provider reconciliation and sync orchestration.
"""

from longbox.services.catalog_sync import CatalogSync, SyncOutcome
from longbox.services.collection_graph import CollectionGraph, MutationSet
from longbox.services.reconciliation import (
    PrecedencePolicy,
    ReconcileOutcome,
    ReconciliationEngine,
)

__all__ = [
    "CatalogSync",
    "CollectionGraph",
    "MutationSet",
    "PrecedencePolicy",
    "ReconcileOutcome",
    "ReconciliationEngine",
    "SyncOutcome",
]
