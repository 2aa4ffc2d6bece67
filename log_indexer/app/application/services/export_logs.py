from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from log_indexer.app.domain.models import LogRecord
from log_indexer.app.domain.ports.out import LogStore


logger = logging.getLogger(__name__)


def record_to_export_row(record: LogRecord) -> dict[str, Any]:
    return {
        "block_number": record.block_number,
        "tx_hash": record.transaction_hash,
        "log_index": record.log_index,
        "event_name": record.event_name,
        "timestamp": record.timestamp,
        "decoded": record.decoded_args,
    }


async def export_logs(*, store: LogStore, out_path: Path) -> int:
    """
    Dump the whole store to a JSON file, ordered by (block, tx hash, log index).

    Returns the number of exported rows.
    """
    records = await store.export_all()
    rows = [record_to_export_row(r) for r in records]

    out_path.parent.mkdir(parents=True, exist_ok=True)
    out_path.write_text(json.dumps(rows, indent=2), encoding="utf-8")

    logger.info("Exported %s rows -> %s", len(rows), out_path)
    return len(rows)
