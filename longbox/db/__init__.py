from longbox.db.database import get_session, init_db
from longbox.db.operations import (
    delete_ownership,
    load_graph,
    persist_changes,
    save_changes,
    upsert_edition,
    upsert_issue,
    upsert_ownership,
    upsert_series,
)

__all__ = [
    "delete_ownership",
    "get_session",
    "init_db",
    "load_graph",
    "persist_changes",
    "save_changes",
    "upsert_edition",
    "upsert_issue",
    "upsert_ownership",
    "upsert_series",
]
