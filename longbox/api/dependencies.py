"""
Request-scoped access to the long-lived components built at startup.

main.lifespan() stores them on app.state; tests replace these getters via
app.dependency_overrides.
"""

from fastapi import Request

from longbox.services.catalog_sync import CatalogSync
from longbox.services.collection_graph import CollectionGraph


def get_graph(request: Request) -> CollectionGraph:
    graph: CollectionGraph = request.app.state.graph
    return graph


def get_catalog_sync(request: Request) -> CatalogSync:
    catalog_sync: CatalogSync = request.app.state.catalog_sync
    return catalog_sync
