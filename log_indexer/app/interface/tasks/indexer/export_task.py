from __future__ import annotations

from pathlib import Path

from log_indexer.app.application.services.export_logs import export_logs
from log_indexer.app.infrastructure.db.engine import create_app_async_engine
from log_indexer.app.infrastructure.factories.log_store_factory import log_store_factory


async def export_json_task(
    *,
    db_path: Path,
    out_path: Path,
    backend: str = "sqlalchemy",
) -> int:
    """Task: dump every stored log to `out_path` as a JSON array."""
    engine = create_app_async_engine(db_path=db_path)
    try:
        store = log_store_factory(backend=backend, engine=engine)
        await store.init_schema()
        return await export_logs(store=store, out_path=out_path)
    finally:
        await engine.dispose()
