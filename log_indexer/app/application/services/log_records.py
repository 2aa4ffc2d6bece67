from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any

from eth_utils import is_address, to_checksum_address

from log_indexer.app.domain.models import DecodedEvent, LogRecord
from log_indexer.app.domain.ports.out import EventDecoder


logger = logging.getLogger(__name__)


def parse_quantity(value: Any) -> int | None:
    """
    Parse an explorer quantity given as 0x-hex, decimal string or int.

    Returns None for missing, unparseable or negative values. "0x" alone is
    zero.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value >= 0 else None
    text = str(value).strip()
    if not text:
        return None
    try:
        if text.lower().startswith("0x"):
            return int(text, 16) if len(text) > 2 else 0
        number = int(text)
    except ValueError:
        return None
    return number if number >= 0 else None


def normalize_raw_log(
    raw: Mapping[str, Any],
    *,
    decoder: EventDecoder,
    default_address: str,
) -> LogRecord | None:
    """
    Turn one explorer log entry into a LogRecord, decoding it on the way.

    Entries without a natural key (transactionHash, logIndex) or a block
    number are skipped (None). Decode failures still produce a record, with
    event_name and decoded_args left empty.
    """
    tx_hash = str(raw.get("transactionHash") or "").strip()
    log_index = parse_quantity(raw.get("logIndex"))
    block_number = parse_quantity(raw.get("blockNumber"))
    if not tx_hash or log_index is None or block_number is None:
        logger.warning(
            "Skipping explorer log without natural key: tx=%r logIndex=%r block=%r",
            raw.get("transactionHash"),
            raw.get("logIndex"),
            raw.get("blockNumber"),
        )
        return None

    topics_raw = raw.get("topics")
    topics = tuple(str(t) for t in topics_raw if t is not None) if isinstance(topics_raw, list) else ()
    data = str(raw.get("data") or "0x")

    address = str(raw.get("address") or default_address)
    if is_address(address):
        address = to_checksum_address(address)

    decoded = decoder.decode(topics=topics, data=data)
    if isinstance(decoded, DecodedEvent):
        event_name: str | None = decoded.event_name
        decoded_args: dict[str, Any] | None = decoded.args
    else:
        logger.debug("Undecoded log %s/%s: %s", tx_hash, log_index, decoded.reason)
        event_name = None
        decoded_args = None

    block_hash = raw.get("blockHash")

    return LogRecord(
        block_number=block_number,
        block_hash=str(block_hash) if block_hash else None,
        transaction_hash=tx_hash,
        transaction_index=parse_quantity(raw.get("transactionIndex")),
        log_index=log_index,
        contract_address=address,
        event_name=event_name,
        topic0=topics[0] if topics else None,
        topics=topics,
        data=data,
        decoded_args=decoded_args,
        timestamp=parse_quantity(raw.get("timeStamp")),
    )


def normalize_raw_logs(
    raws: Iterable[Mapping[str, Any]],
    *,
    decoder: EventDecoder,
    default_address: str,
) -> list[LogRecord]:
    records = []
    for raw in raws:
        record = normalize_raw_log(raw, decoder=decoder, default_address=default_address)
        if record is not None:
            records.append(record)
    return records
