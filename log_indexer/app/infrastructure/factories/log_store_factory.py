from __future__ import annotations

from typing import Callable, Dict

from sqlalchemy.ext.asyncio import AsyncEngine

from log_indexer.app.domain.ports.out import LogStore
from log_indexer.app.infrastructure.adapters.sqlalchemy_log_store import SqlAlchemyLogStore


LogStoreFactory = Callable[[AsyncEngine], LogStore]

_LOG_STORE_REGISTRY: Dict[str, LogStoreFactory] = {
    "sqlalchemy": lambda engine: SqlAlchemyLogStore(engine=engine),
}


def log_store_factory(
    backend: str,
    engine: AsyncEngine,
) -> LogStore:
    try:
        factory = _LOG_STORE_REGISTRY[backend]
    except KeyError:
        raise ValueError(f"Unsupported log store backend: {backend!r}")
    return factory(engine)
