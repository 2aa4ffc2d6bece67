from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator, Sequence
from contextlib import contextmanager
from typing import Any, Final

from sqlalchemy import Row, func, select
from sqlalchemy.dialects.sqlite import insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from log_indexer.app.domain.errors import StorageError
from log_indexer.app.domain.models import LogRecord
from log_indexer.app.infrastructure.db.db_base import BaseDB
from log_indexer.app.infrastructure.db.models.logs import LogDB
from log_indexer.app.infrastructure.db.models.meta import MetaDB


logger = logging.getLogger(__name__)

CHECKPOINT_KEY: Final[str] = "last_block"

# 12 bound parameters per row; stays under SQLITE_MAX_VARIABLE_NUMBER (999)
# on older SQLite builds.
_INSERT_ROWS_PER_STATEMENT: Final[int] = 80

_LOGS_TABLE = LogDB.__table__


def _chunks(seq: Sequence[Any], size: int) -> Iterable[Sequence[Any]]:
    for i in range(0, len(seq), size):
        yield seq[i : i + size]


@contextmanager
def _storage_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except SQLAlchemyError as exc:
        raise StorageError(f"{operation} failed: {exc}") from exc


def _record_to_row(record: LogRecord) -> dict[str, Any]:
    return {
        "block_number": record.block_number,
        "block_hash": record.block_hash,
        "tx_hash": record.transaction_hash,
        "tx_index": record.transaction_index,
        "log_index": record.log_index,
        "address": record.contract_address,
        "event_name": record.event_name,
        "topic0": record.topic0,
        "topics_json": list(record.topics),
        "data": record.data,
        "decoded_json": record.decoded_args,
        "timestamp": record.timestamp,
    }


def _row_to_record(row: Row[Any]) -> LogRecord:
    return LogRecord(
        block_number=row.block_number,
        block_hash=row.block_hash,
        transaction_hash=row.tx_hash,
        transaction_index=row.tx_index,
        log_index=row.log_index,
        contract_address=row.address,
        event_name=row.event_name,
        topic0=row.topic0,
        topics=tuple(row.topics_json or ()),
        data=row.data,
        decoded_args=row.decoded_json,
        timestamp=row.timestamp,
    )


class SqlAlchemyLogStore:
    """
    SQLite/SQLAlchemy implementation of LogStore.

    Strategy:
    - logs are inserted with INSERT ... ON CONFLICT (tx_hash, log_index) DO NOTHING,
      so duplicates within or across batches collapse silently;
    - a whole batch runs in a single transaction, so either all of its rows
      become visible or none do;
    - the checkpoint is a single row in the meta table.

    Any SQLAlchemy failure is re-raised as StorageError.
    """

    def __init__(self, *, engine: AsyncEngine) -> None:
        self._engine = engine

    async def init_schema(self) -> None:
        with _storage_errors("Schema initialisation"):
            async with self._engine.begin() as conn:
                await conn.run_sync(BaseDB.metadata.create_all)

    async def insert_batch(self, records: Sequence[LogRecord]) -> int:
        if not records:
            return 0

        rows = [_record_to_row(r) for r in records]
        inserted = 0

        with _storage_errors(f"Inserting {len(rows)} logs"):
            async with self._engine.begin() as conn:
                for chunk in _chunks(rows, _INSERT_ROWS_PER_STATEMENT):
                    stmt = (
                        insert(LogDB)
                        .values(list(chunk))
                        .on_conflict_do_nothing(index_elements=[LogDB.tx_hash, LogDB.log_index])
                    )
                    result = await conn.execute(stmt)
                    inserted += max(result.rowcount or 0, 0)

        logger.debug(
            "Batch stored: received=%s, inserted=%s, duplicates=%s",
            len(rows),
            inserted,
            len(rows) - inserted,
        )
        return inserted

    async def get_checkpoint(self) -> int | None:
        with _storage_errors("Reading checkpoint"):
            async with self._engine.connect() as conn:
                value = await conn.scalar(
                    select(MetaDB.value).where(MetaDB.key == CHECKPOINT_KEY)
                )
        return int(value) if value is not None else None

    async def set_checkpoint(self, block: int) -> None:
        if block < 0:
            raise ValueError("Checkpoint must be non-negative")

        stmt = insert(MetaDB).values(key=CHECKPOINT_KEY, value=str(block))
        stmt = stmt.on_conflict_do_update(
            index_elements=[MetaDB.key],
            set_={"value": stmt.excluded.value},
        )
        with _storage_errors("Persisting checkpoint"):
            async with self._engine.begin() as conn:
                await conn.execute(stmt)

    async def seed_checkpoint(self, block: int) -> int:
        """Store `block` as checkpoint unless one exists; return the effective value."""
        stmt = (
            insert(MetaDB)
            .values(key=CHECKPOINT_KEY, value=str(block))
            .on_conflict_do_nothing(index_elements=[MetaDB.key])
        )
        with _storage_errors("Seeding checkpoint"):
            async with self._engine.begin() as conn:
                await conn.execute(stmt)

        checkpoint = await self.get_checkpoint()
        return block if checkpoint is None else checkpoint

    async def query_latest(self, *, limit: int) -> list[LogRecord]:
        stmt = (
            select(_LOGS_TABLE)
            .order_by(LogDB.block_number.desc(), LogDB.log_index.desc())
            .limit(limit)
        )
        return await self._fetch_records(stmt, "Querying latest logs")

    async def query_by_event_name(self, *, name: str, limit: int) -> list[LogRecord]:
        stmt = (
            select(_LOGS_TABLE)
            .where(LogDB.event_name == name)
            .order_by(LogDB.block_number.desc(), LogDB.log_index.desc())
            .limit(limit)
        )
        return await self._fetch_records(stmt, f"Querying {name!r} logs")

    async def export_all(self) -> list[LogRecord]:
        stmt = select(_LOGS_TABLE).order_by(
            LogDB.block_number.asc(),
            LogDB.tx_hash.asc(),
            LogDB.log_index.asc(),
        )
        return await self._fetch_records(stmt, "Exporting logs")

    async def count(self) -> int:
        with _storage_errors("Counting logs"):
            async with self._engine.connect() as conn:
                total = await conn.scalar(select(func.count()).select_from(LogDB))
        return int(total or 0)

    async def _fetch_records(self, stmt: Any, operation: str) -> list[LogRecord]:
        with _storage_errors(operation):
            async with self._engine.connect() as conn:
                result = await conn.execute(stmt)
                rows = result.all()
        return [_row_to_record(r) for r in rows]
