from __future__ import annotations

import asyncio
import logging
from typing import Final

from log_indexer.app.domain.errors import StorageError
from log_indexer.app.domain.models import ScanWindow, SyncReport
from log_indexer.app.domain.ports.out import LogClient, LogStore, RangeScanner, Sleep


logger = logging.getLogger(__name__)

_WINDOW_PACING: Final[float] = 0.3


class SyncOrchestrator:
    """
    Drives catch-up passes from the persisted checkpoint to the chain head.

    A pass re-scans `overlap` blocks below the checkpoint (explorers lag
    behind the head), walks the gap in outer windows and persists the
    checkpoint only after each outer window's logs are stored. The
    checkpoint never moves backwards.
    """

    def __init__(
        self,
        *,
        client: LogClient,
        scanner: RangeScanner,
        store: LogStore,
        start_block: int,
        outer_window: int,
        overlap: int,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        if outer_window <= 0:
            raise ValueError("outer_window must be positive")
        if overlap < 0 or start_block < 0:
            raise ValueError("overlap and start_block must be non-negative")
        self._client = client
        self._scanner = scanner
        self._store = store
        self._start_block = start_block
        self._outer_window = outer_window
        self._overlap = overlap
        self._sleep = sleep

    async def sync_once(self) -> SyncReport:
        head = await self._client.fetch_head_block_number()

        checkpoint = await self._store.seed_checkpoint(self._start_block)
        from_block = max(0, checkpoint - self._overlap)

        if from_block > head:
            logger.info("Up to date: head=%s checkpoint=%s", head, checkpoint)
            return SyncReport(head=head, from_block=from_block, checkpoint=checkpoint, up_to_date=True)

        logger.info(
            "Syncing blocks [%s, %s] (checkpoint=%s, outer_window=%s)",
            from_block,
            head,
            checkpoint,
            self._outer_window,
        )

        inserted = 0
        windows = 0
        start = from_block
        while start <= head:
            window = ScanWindow(from_block=start, to_block=min(start + self._outer_window - 1, head))

            count = await self._scanner.scan_range(
                from_block=window.from_block,
                to_block=window.to_block,
            )
            inserted += count
            windows += 1
            logger.info("Indexed blocks %s-%s: +%s logs", window.from_block, window.to_block, count)

            next_checkpoint = window.to_block + 1
            if next_checkpoint > checkpoint:
                await self._store.set_checkpoint(next_checkpoint)
                checkpoint = next_checkpoint
            else:
                logger.debug(
                    "Keeping checkpoint %s (window ended at %s)",
                    checkpoint,
                    window.to_block,
                )

            start = window.to_block + 1
            if start <= head:
                await self._sleep(_WINDOW_PACING)

        logger.info("Sync complete: head=%s checkpoint=%s inserted=%s", head, checkpoint, inserted)
        return SyncReport(
            head=head,
            from_block=from_block,
            checkpoint=checkpoint,
            inserted=inserted,
            windows=windows,
        )

    async def run_forever(self, *, interval: float, max_passes: int | None = None) -> None:
        """
        Repeat sync_once every `interval` seconds.

        Errors of a single pass are logged and the loop carries on;
        `max_passes` bounds the loop for tooling and tests.
        """
        logger.info("Watch mode: syncing every %.1fs", interval)
        passes = 0
        while max_passes is None or passes < max_passes:
            passes += 1
            try:
                await self.sync_once()
            except StorageError:
                logger.exception("Storage failure during sync pass; checkpoint not advanced past stored logs")
            except Exception as exc:
                logger.error("Sync error: %s", exc)

            if max_passes is None or passes < max_passes:
                await self._sleep(interval)
