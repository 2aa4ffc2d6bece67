from __future__ import annotations

from pathlib import Path
from typing import Any

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine


def _enable_wal(dbapi_connection: Any, _connection_record: Any) -> None:
    cursor = dbapi_connection.cursor()
    try:
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA synchronous=NORMAL")
    finally:
        cursor.close()


def create_app_async_engine(*, db_path: Path | str, echo: bool = False) -> AsyncEngine:
    """
    Factory for the AsyncEngine backing the single-file log store.

    Every connection switches the database to WAL so the query server can
    read while the indexer writes.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{db_path}",
        echo=echo,
    )
    event.listen(engine.sync_engine, "connect", _enable_wal)
    return engine
