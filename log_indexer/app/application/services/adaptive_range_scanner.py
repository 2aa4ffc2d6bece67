from __future__ import annotations

import asyncio
import logging
import random
from collections import deque
from typing import Final

from log_indexer.app.domain.errors import UpstreamError
from log_indexer.app.domain.models import ScanWindow
from log_indexer.app.domain.ports.out import EventDecoder, LogClient, LogStore, RangeScanner, Sleep
from log_indexer.app.application.services.log_records import normalize_raw_logs


logger = logging.getLogger(__name__)

_GROWTH_FACTOR: Final[float] = 1.35
_FAILURE_BACKOFF: Final[float] = 1.0
_MIN_WINDOW_EXTRA_BACKOFF: Final[float] = 2.5
_BACKOFF_JITTER: Final[float] = 0.8


class AdaptiveRangeScanner(RangeScanner):
    """
    Walks a block range in sub-windows sized to what the explorer tolerates.

    Policy:
    - success: store the window's logs, move on, grow the window x1.35;
    - upstream failure: halve the window (floored at min_window), back off
      (longer at the floor) and retry the same cursor;
    - a response that hits the explorer result cap is treated as truncated
      and re-requested with a smaller window.

    Blocks are never skipped. Only StorageError escapes.
    """

    def __init__(
        self,
        *,
        client: LogClient,
        decoder: EventDecoder,
        store: LogStore,
        address: str,
        max_window: int,
        min_window: int,
        result_cap: int = 1000,
        sleep: Sleep = asyncio.sleep,
        rng: random.Random | None = None,
    ) -> None:
        if min_window <= 0 or max_window <= 0:
            raise ValueError("window sizes must be positive")
        if min_window > max_window:
            raise ValueError("min_window must be <= max_window")
        self._client = client
        self._decoder = decoder
        self._store = store
        self._address = address
        self._max_window = max_window
        self._min_window = min_window
        self._result_cap = result_cap
        self._sleep = sleep
        self._rng = rng or random.Random()
        self.window_history: deque[int] = deque(maxlen=1024)

    async def scan_range(self, *, from_block: int, to_block: int) -> int:
        ScanWindow(from_block=from_block, to_block=to_block).validate()

        window = min(self._max_window, to_block - from_block + 1)
        cursor = from_block
        total_inserted = 0

        while cursor <= to_block:
            current = ScanWindow(from_block=cursor, to_block=min(cursor + window - 1, to_block))
            self.window_history.append(current.size)

            try:
                raw_logs = await self._client.fetch_logs(
                    address=self._address,
                    from_block=current.from_block,
                    to_block=current.to_block,
                )
            except UpstreamError as exc:
                window = self._shrink(window)
                backoff = self._backoff(window)
                logger.warning(
                    "Explorer issue on blocks [%s, %s] (%s). Shrinking window to %s blocks, retrying in %.2fs",
                    current.from_block,
                    current.to_block,
                    exc,
                    window,
                    backoff,
                )
                await self._sleep(backoff)
                continue

            if len(raw_logs) >= self._result_cap and window > self._min_window:
                window = self._shrink(window)
                logger.warning(
                    "Blocks [%s, %s] returned %s logs (cap %s); result likely truncated, retrying with window %s",
                    current.from_block,
                    current.to_block,
                    len(raw_logs),
                    self._result_cap,
                    window,
                )
                continue

            if len(raw_logs) >= self._result_cap:
                logger.warning(
                    "Blocks [%s, %s] hit the result cap (%s) at the minimum window; accepting as is",
                    current.from_block,
                    current.to_block,
                    self._result_cap,
                )

            records = normalize_raw_logs(raw_logs, decoder=self._decoder, default_address=self._address)
            total_inserted += await self._store.insert_batch(records)

            cursor = current.to_block + 1
            if window < self._max_window:
                window = min(self._max_window, max(window + 1, int(window * _GROWTH_FACTOR)))

        return total_inserted

    def _shrink(self, window: int) -> int:
        return max(self._min_window, window // 2)

    def _backoff(self, window: int) -> float:
        extra = _MIN_WINDOW_EXTRA_BACKOFF if window <= self._min_window else 0.0
        return _FAILURE_BACKOFF + extra + self._rng.uniform(0, _BACKOFF_JITTER)
