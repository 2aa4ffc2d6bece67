from __future__ import annotations

import math
from typing import Any, Final

from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse

from log_indexer.app.domain.errors import StorageError
from log_indexer.app.domain.models import LogRecord
from log_indexer.app.domain.ports.out import LogStore
from log_indexer.app.interface.api.cache import TtlCache


DEPOSIT_EVENT: Final[str] = "Deposit"

router = APIRouter(prefix="/api")


def clamp_int(value: Any, default: int, low: int, high: int) -> int:
    """Parse `value` as a number and clamp it; unparseable input gives `default`."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if not math.isfinite(number):
        return default
    return max(low, min(high, math.floor(number)))


def _as_int(value: Any, default: int) -> int:
    try:
        return int(value) if value else default
    except (TypeError, ValueError):
        return default


def _store(request: Request) -> LogStore:
    return request.app.state.store


def _cache(request: Request) -> TtlCache:
    return request.app.state.cache


def _deposit_row(record: LogRecord) -> dict[str, Any]:
    decoded = record.decoded_args or {}
    ts = record.timestamp or 0
    return {
        "event": DEPOSIT_EVENT,
        "blockNumber": record.block_number,
        "tx": record.transaction_hash,
        "logIndex": record.log_index,
        "ts": ts,
        "user": str(decoded.get("user") or ""),
        "amount": str(decoded.get("amount") or "0"),
        "timestamp": _as_int(decoded.get("timestamp"), ts),
    }


def _event_row(record: LogRecord) -> dict[str, Any]:
    return {
        "event": record.event_name,
        "blockNumber": record.block_number,
        "tx": record.transaction_hash,
        "logIndex": record.log_index,
        "ts": record.timestamp or 0,
        "decoded": record.decoded_args,
    }


@router.get("/health")
async def health(request: Request) -> dict[str, Any]:
    try:
        # health checks hit this often; count(*) goes through the cache
        rows: int | None = await _cache(request).get_or_compute("health:rows", _store(request).count)
    except StorageError:
        rows = None
    return {
        "ok": True,
        "db": str(request.app.state.db_path),
        "cacheMs": request.app.state.cache_ms,
        "rows": rows,
    }


@router.get("/deposits")
async def latest_deposits(request: Request, limit: str | None = Query(None)) -> dict[str, Any]:
    n = clamp_int(limit, 18, 1, 200)

    async def _load() -> list[dict[str, Any]]:
        records = await _store(request).query_by_event_name(name=DEPOSIT_EVENT, limit=n)
        return [_deposit_row(r) for r in records]

    rows = await _cache(request).get_or_compute(f"deposits:{n}", _load)
    return {"ok": True, "rows": rows}


@router.get("/events", response_model=None)
async def latest_events(
    request: Request,
    name: str | None = Query(None),
    limit: str | None = Query(None),
) -> dict[str, Any] | JSONResponse:
    event_name = (name or "").strip()
    if not event_name:
        return JSONResponse({"ok": False, "error": "Missing ?name=EventName"}, status_code=400)

    n = clamp_int(limit, 100, 1, 500)

    async def _load() -> list[dict[str, Any]]:
        records = await _store(request).query_by_event_name(name=event_name, limit=n)
        return [_event_row(r) for r in records]

    rows = await _cache(request).get_or_compute(f"events:{event_name}:{n}", _load)
    return {"ok": True, "rows": rows}
