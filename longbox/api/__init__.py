from longbox.api.health import router as health_router
from longbox.api.ownership import router as ownership_router
from longbox.api.series import router as series_router
from longbox.api.sync import router as sync_router

__all__ = [
    "health_router",
    "ownership_router",
    "series_router",
    "sync_router",
]
