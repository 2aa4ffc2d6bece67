from __future__ import annotations

from typing import Any

from sqlalchemy import JSON, BigInteger, Index, Integer, PrimaryKeyConstraint, Text
from sqlalchemy.orm import Mapped, mapped_column

from log_indexer.app.infrastructure.db.db_base import BaseDB


class LogDB(BaseDB):
    """
    Append-only mirror of the event logs emitted by the tracked contract.

    Each row represents a single log entry as returned by the block-explorer
    API, uniquely identified by (tx_hash, log_index). Rows are never updated
    or deleted; re-inserting an existing key is a no-op.

    Topics and data are stored verbatim (hex strings) so that logs outside
    the configured ABI can still be audited or re-decoded later. Decoded
    arguments are stored as JSON with wide integers as decimal strings.
    """

    __tablename__ = "logs"
    __table_args__ = (
        # Natural key, stable across re-fetches of the same block range
        PrimaryKeyConstraint("tx_hash", "log_index"),

        # Dashboard-style lookups: latest N, by event name, by time
        Index("idx_logs_block", "block_number"),
        Index("idx_logs_event", "event_name"),
        Index("idx_logs_time", "timestamp"),
    )

    # -------------------------------------------------------------------------
    # Block / transaction context
    # -------------------------------------------------------------------------

    """Number of the block in which the log was emitted."""
    block_number: Mapped[int] = mapped_column(BigInteger, nullable=False)

    """Hash of the block, when the explorer returns it."""
    block_hash: Mapped[str | None] = mapped_column(Text, nullable=True)

    """Hash of the transaction that emitted the log (0x hex)."""
    tx_hash: Mapped[str] = mapped_column(Text, nullable=False)

    """Index of the transaction within the block."""
    tx_index: Mapped[int | None] = mapped_column(Integer, nullable=True)

    """Index of the log within the block."""
    log_index: Mapped[int] = mapped_column(Integer, nullable=False)

    # -------------------------------------------------------------------------
    # Log payload
    # -------------------------------------------------------------------------

    """Checksummed address of the emitting contract."""
    address: Mapped[str] = mapped_column(Text, nullable=False)

    """Decoded event name; NULL when the log matched no ABI event."""
    event_name: Mapped[str | None] = mapped_column(Text, nullable=True)

    """Raw topic0 (event signature hash)."""
    topic0: Mapped[str | None] = mapped_column(Text, nullable=True)

    """All topics, verbatim and in order."""
    topics_json: Mapped[list[str]] = mapped_column(JSON, nullable=False)

    """ABI-encoded non-indexed payload (0x hex), verbatim."""
    data: Mapped[str] = mapped_column(Text, nullable=False)

    """Decoded named arguments; NULL when decoding failed."""
    decoded_json: Mapped[dict[str, Any] | None] = mapped_column(JSON(none_as_null=True), nullable=True)

    """Block timestamp (unix seconds), best-effort."""
    timestamp: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
