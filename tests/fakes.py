"""In-memory stand-ins for the indexer ports, shared by the unit tests."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from eth_abi import encode as abi_encode
from eth_utils import encode_hex, keccak, to_checksum_address

from log_indexer.app.domain.errors import RateLimitedError, StorageError, TransportError
from log_indexer.app.domain.models import LogRecord


CONTRACT = to_checksum_address("0x1111111111111111111111111111111111111111")
USER = to_checksum_address("0x2222222222222222222222222222222222222222")
REFERRER = to_checksum_address("0x3333333333333333333333333333333333333333")

DEPOSIT_TOPIC0 = encode_hex(keccak(text="Deposit(address,uint256,uint256)"))
REGISTER_TOPIC0 = encode_hex(keccak(text="Register(address,address)"))

DOLLARDEX_ABI: list[dict[str, Any]] = [
    {
        "anonymous": False,
        "inputs": [
            {"indexed": True, "name": "user", "type": "address"},
            {"indexed": False, "name": "amount", "type": "uint256"},
            {"indexed": False, "name": "timestamp", "type": "uint256"},
        ],
        "name": "Deposit",
        "type": "event",
    },
    {
        "anonymous": False,
        "inputs": [
            {"indexed": True, "name": "user", "type": "address"},
            {"indexed": True, "name": "referrer", "type": "address"},
        ],
        "name": "Register",
        "type": "event",
    },
    {
        "inputs": [],
        "name": "totalDeposited",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
]


class Sleeps:
    """Records requested delays instead of sleeping."""

    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.calls.append(delay)


def address_topic(address: str) -> str:
    return encode_hex(abi_encode(["address"], [address]))


def deposit_raw_log(
    *,
    block: int,
    log_index: int,
    tx_hash: str | None = None,
    amount: int = 10**18,
    timestamp: int = 1_700_000_000,
    user: str = USER,
    hex_fields: bool = True,
) -> dict[str, Any]:
    """Explorer-shaped getLogs entry for a Deposit event."""
    fmt = hex if hex_fields else str
    return {
        "address": CONTRACT.lower(),
        "topics": [DEPOSIT_TOPIC0, address_topic(user)],
        "data": encode_hex(abi_encode(["uint256", "uint256"], [amount, timestamp])),
        "blockNumber": fmt(block),
        "blockHash": "0x" + f"{block:064x}",
        "timeStamp": fmt(timestamp),
        "gasPrice": "0x3b9aca00",
        "gasUsed": "0x1d8a8",
        "logIndex": fmt(log_index),
        "transactionHash": tx_hash or "0x" + f"{block:032x}{log_index:032x}",
        "transactionIndex": fmt(0),
    }


def make_record(
    *,
    block: int,
    log_index: int,
    tx_hash: str | None = None,
    event_name: str | None = "Deposit",
    decoded_args: dict[str, Any] | None = None,
    timestamp: int | None = 1_700_000_000,
) -> LogRecord:
    topics = (DEPOSIT_TOPIC0, address_topic(USER))
    return LogRecord(
        block_number=block,
        transaction_hash=tx_hash or "0x" + f"{block:032x}{log_index:032x}",
        log_index=log_index,
        contract_address=CONTRACT,
        topics=topics,
        data="0x",
        event_name=event_name,
        topic0=topics[0],
        decoded_args=(
            decoded_args
            if decoded_args is not None or event_name is None
            else {"user": USER, "amount": "1000", "timestamp": "1700000000"}
        ),
        timestamp=timestamp,
    )


class FakeLogStore:
    """Dict-backed LogStore with the same dedup and checkpoint semantics."""

    def __init__(self) -> None:
        self.records: dict[tuple[str, int], LogRecord] = {}
        self.checkpoint: int | None = None
        self.checkpoint_history: list[int] = []
        self.insert_calls = 0
        self.fail_inserts_after: int | None = None

    async def init_schema(self) -> None:
        return None

    async def insert_batch(self, records: Sequence[LogRecord]) -> int:
        self.insert_calls += 1
        if self.fail_inserts_after is not None and self.insert_calls > self.fail_inserts_after:
            raise StorageError("disk full")
        inserted = 0
        for record in records:
            if record.key not in self.records:
                self.records[record.key] = record
                inserted += 1
        return inserted

    async def get_checkpoint(self) -> int | None:
        return self.checkpoint

    async def set_checkpoint(self, block: int) -> None:
        self.checkpoint = block
        self.checkpoint_history.append(block)

    async def seed_checkpoint(self, block: int) -> int:
        if self.checkpoint is None:
            self.checkpoint = block
        return self.checkpoint

    def _latest(self, records: list[LogRecord], limit: int) -> list[LogRecord]:
        return sorted(records, key=lambda r: (r.block_number, r.log_index), reverse=True)[:limit]

    async def query_latest(self, *, limit: int) -> list[LogRecord]:
        return self._latest(list(self.records.values()), limit)

    async def query_by_event_name(self, *, name: str, limit: int) -> list[LogRecord]:
        return self._latest([r for r in self.records.values() if r.event_name == name], limit)

    async def export_all(self) -> list[LogRecord]:
        return sorted(
            self.records.values(),
            key=lambda r: (r.block_number, r.transaction_hash, r.log_index),
        )

    async def count(self) -> int:
        return len(self.records)

    def blocks(self) -> set[int]:
        return {r.block_number for r in self.records.values()}


class FakeLogClient:
    """
    Simulated explorer: one Deposit log per block in `log_blocks`.

    Windows larger than `fail_above` raise RateLimitedError; `head_errors`
    makes the next N head queries fail.
    """

    def __init__(
        self,
        *,
        head: int,
        log_blocks: Sequence[int] = (),
        fail_above: int | None = None,
        head_errors: int = 0,
    ) -> None:
        self.head = head
        self.log_blocks = sorted(log_blocks)
        self.fail_above = fail_above
        self.head_errors = head_errors
        self.requests: list[tuple[int, int]] = []
        self.failed_requests: list[tuple[int, int]] = []

    async def fetch_logs(self, *, address: str, from_block: int, to_block: int) -> list[dict[str, Any]]:
        size = to_block - from_block + 1
        if self.fail_above is not None and size > self.fail_above:
            self.failed_requests.append((from_block, to_block))
            raise RateLimitedError("Max rate limit reached")
        self.requests.append((from_block, to_block))
        return [
            deposit_raw_log(block=b, log_index=0)
            for b in self.log_blocks
            if from_block <= b <= to_block
        ]

    async def fetch_head_block_number(self) -> int:
        if self.head_errors > 0:
            self.head_errors -= 1
            raise TransportError("HTTP 502")
        return self.head
