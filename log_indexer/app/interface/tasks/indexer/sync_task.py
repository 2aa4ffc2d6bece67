from __future__ import annotations

from log_indexer.app.config import IndexerSettings
from log_indexer.app.domain.models import SyncReport
from log_indexer.app.infrastructure.db.engine import create_app_async_engine
from log_indexer.app.infrastructure.factories.log_store_factory import log_store_factory
from log_indexer.app.infrastructure.factories.sync_orchestrator_factory import (
    create_http_client,
    sync_orchestrator_factory,
)


async def sync_once_task(
    *,
    settings: IndexerSettings,
    backend: str = "sqlalchemy",
) -> SyncReport:
    """
    Task: one catch-up pass from the stored checkpoint to the current head.

    Errors propagate so the caller can exit non-zero.
    """
    engine = create_app_async_engine(db_path=settings.db_path)
    try:
        store = log_store_factory(backend=backend, engine=engine)
        await store.init_schema()

        async with create_http_client(settings) as http:
            orchestrator = sync_orchestrator_factory(settings=settings, store=store, http=http)
            return await orchestrator.sync_once()
    finally:
        await engine.dispose()


async def watch_task(
    *,
    settings: IndexerSettings,
    backend: str = "sqlalchemy",
    max_passes: int | None = None,
) -> None:
    """
    Task: poll forever, one pass every WATCH_INTERVAL seconds.

    Only startup failures (configuration, schema) escape; pass errors are
    logged by the orchestrator.
    """
    engine = create_app_async_engine(db_path=settings.db_path)
    try:
        store = log_store_factory(backend=backend, engine=engine)
        await store.init_schema()

        async with create_http_client(settings) as http:
            orchestrator = sync_orchestrator_factory(settings=settings, store=store, http=http)
            await orchestrator.run_forever(
                interval=settings.watch_interval,
                max_passes=max_passes,
            )
    finally:
        await engine.dispose()
