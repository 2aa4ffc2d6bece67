from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from log_indexer.app.config import ApiSettings
from log_indexer.app.domain.errors import StorageError
from log_indexer.app.domain.ports.out import LogStore
from log_indexer.app.infrastructure.db.engine import create_app_async_engine
from log_indexer.app.infrastructure.factories.log_store_factory import log_store_factory
from log_indexer.app.interface.api.cache import TtlCache
from log_indexer.app.interface.api.routes import router


def create_app(
    *,
    settings: ApiSettings,
    store: LogStore | None = None,
    backend: str = "sqlalchemy",
) -> FastAPI:
    """
    Read-only JSON API over the indexed logs.

    When no store is given, one is opened on settings.db_path for the
    lifetime of the application.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if store is not None:
            app.state.store = store
            yield
            return

        engine = create_app_async_engine(db_path=settings.db_path)
        try:
            app.state.store = log_store_factory(backend=backend, engine=engine)
            # the API may start before the indexer has created the tables
            await app.state.store.init_schema()
            yield
        finally:
            await engine.dispose()

    app = FastAPI(title="Contract log indexer API", lifespan=lifespan)
    app.state.db_path = Path(settings.db_path)
    app.state.cache_ms = settings.cache_ms
    app.state.cache = TtlCache(ttl=settings.cache_ms / 1000)
    if store is not None:
        app.state.store = store

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.allow_origin],
        allow_methods=["GET", "OPTIONS"],
        allow_headers=["Content-Type"],
    )

    @app.middleware("http")
    async def no_store(request: Request, call_next):  # type: ignore[no-untyped-def]
        response = await call_next(request)
        response.headers["Cache-Control"] = "no-store"
        return response

    @app.exception_handler(StarletteHTTPException)
    async def http_error(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
        message = "Not found" if exc.status_code == 404 else str(exc.detail)
        return JSONResponse({"ok": False, "error": message}, status_code=exc.status_code)

    @app.exception_handler(StorageError)
    async def storage_error(_request: Request, exc: StorageError) -> JSONResponse:
        return JSONResponse({"ok": False, "error": str(exc)}, status_code=500)

    app.include_router(router)
    return app
