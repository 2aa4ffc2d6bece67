from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class LogRecord:
    """
    One on-chain event occurrence as mirrored in the local store.

    Identified by (transaction_hash, log_index). A record whose topics did not
    match the configured ABI keeps event_name/decoded_args as None while
    topics and data are preserved verbatim.
    """

    block_number: int
    transaction_hash: str
    log_index: int
    contract_address: str
    topics: tuple[str, ...]
    data: str
    block_hash: str | None = None
    transaction_index: int | None = None
    event_name: str | None = None
    topic0: str | None = None
    decoded_args: dict[str, Any] | None = None
    timestamp: int | None = None

    @property
    def key(self) -> tuple[str, int]:
        return self.transaction_hash, self.log_index


@dataclass(frozen=True)
class DecodedEvent:
    event_name: str
    args: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class DecodeFailure:
    reason: str


DecodeResult = DecodedEvent | DecodeFailure


@dataclass(frozen=True)
class ScanWindow:
    from_block: int
    to_block: int

    @property
    def size(self) -> int:
        return self.to_block - self.from_block + 1

    def validate(self) -> None:
        if self.from_block < 0 or self.to_block < 0:
            raise ValueError("Block numbers must be non-negative")
        if self.from_block > self.to_block:
            raise ValueError("from_block must be <= to_block")


@dataclass(frozen=True)
class SyncReport:
    """Outcome of a single catch-up pass."""

    head: int
    from_block: int
    checkpoint: int
    inserted: int = 0
    windows: int = 0
    up_to_date: bool = False
