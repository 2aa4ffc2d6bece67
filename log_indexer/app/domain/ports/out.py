from __future__ import annotations

from collections.abc import Awaitable, Callable, Sequence
from typing import Any, Protocol

from log_indexer.app.domain.models import DecodeResult, LogRecord


Sleep = Callable[[float], Awaitable[None]]


class EventDecoder(Protocol):
    def decode(self, *, topics: Sequence[str], data: str) -> DecodeResult:
        """
        Decode a raw log (topics + data) against the configured ABI.

        Return:
          - DecodedEvent with the event name and named arguments
          - DecodeFailure for logs that match no known event

        Must never raise for well-formed or malformed input.
        """
        ...


class LogClient(Protocol):
    """
    Port for the upstream block-explorer log API.

    Implementations normalise every response into either a list of raw log
    dicts or an UpstreamError subclass, retrying transient failures
    internally.
    """

    async def fetch_logs(
        self,
        *,
        address: str,
        from_block: int,
        to_block: int,
    ) -> list[dict[str, Any]]:
        ...

    async def fetch_head_block_number(self) -> int:
        ...


class LogStore(Protocol):
    """
    Port for the durable, deduplicated log mirror and its sync checkpoint.

    insert_batch is all-or-nothing per call and silently ignores records
    whose (transaction_hash, log_index) is already stored. Failures surface
    as StorageError.
    """

    async def init_schema(self) -> None: ...

    async def insert_batch(self, records: Sequence[LogRecord]) -> int: ...

    async def get_checkpoint(self) -> int | None: ...

    async def set_checkpoint(self, block: int) -> None: ...

    async def seed_checkpoint(self, block: int) -> int: ...

    async def query_latest(self, *, limit: int) -> list[LogRecord]: ...

    async def query_by_event_name(self, *, name: str, limit: int) -> list[LogRecord]: ...

    async def export_all(self) -> list[LogRecord]: ...

    async def count(self) -> int: ...


class RangeScanner(Protocol):
    async def scan_range(self, *, from_block: int, to_block: int) -> int:
        """
        Fetch, decode and store every log in [from_block, to_block].

        Returns the number of newly inserted records. Upstream failures are
        absorbed; only StorageError escapes.
        """
        ...
