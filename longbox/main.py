from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from importlib.metadata import version as pkg_version

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from longbox.api import health_router, ownership_router, series_router, sync_router
from longbox.bootstrap import build_http_client, build_sync_components
from longbox.config import settings
from longbox.db import load_graph
from longbox.db.database import async_session_factory, init_db
from longbox.models.failure import KnownError


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup/shutdown."""
    await init_db()
    async with async_session_factory() as session:
        graph = await load_graph(session)

    async with build_http_client() as http_client:
        components = build_sync_components(http_client, graph)
        app.state.graph = graph
        app.state.rate_limiter = components.rate_limiter
        app.state.cache = components.cache
        app.state.worker_pool = components.worker_pool
        app.state.catalog_sync = components.catalog_sync
        yield


async def known_error_handler(_request: Request, exc: KnownError) -> JSONResponse:
    """Render a KnownError as an ApiResponse envelope with its status code."""
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_response().model_dump(mode="json"),
    )


app = FastAPI(
    title=settings.app_name,
    version=pkg_version("longbox"),
    lifespan=lifespan,
)

app.add_exception_handler(KnownError, known_error_handler)  # type: ignore[arg-type]

app.include_router(health_router)
app.include_router(ownership_router)
app.include_router(series_router)
app.include_router(sync_router)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Tighten in production
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)
