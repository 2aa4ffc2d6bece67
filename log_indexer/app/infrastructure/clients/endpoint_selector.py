from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence


logger = logging.getLogger(__name__)


class EndpointSelector:
    """
    Ordered list of explorer gateway URLs with explicit fail-over state.

    Built once at startup and handed to the client. Tracks the endpoint in
    use, the last endpoint that answered successfully and when it did so.
    After `reuse_window` seconds without a success the selector returns to
    the preferred (first) endpoint.
    """

    def __init__(
        self,
        endpoints: Sequence[str],
        *,
        reuse_window: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        urls = [u.strip() for u in endpoints if u and u.strip()]
        if not urls:
            raise ValueError("At least one explorer endpoint is required")
        self._endpoints = urls
        self._reuse_window = reuse_window
        self._clock = clock
        self._index = 0
        self.last_good_url: str | None = None
        self.last_success_at: float | None = None

    @property
    def endpoints(self) -> list[str]:
        return list(self._endpoints)

    def current(self) -> str:
        stale = (
            self.last_success_at is not None
            and self._clock() - self.last_success_at > self._reuse_window
        )
        if self._index != 0 and stale:
            logger.info("Falling back to preferred explorer endpoint %s", self._endpoints[0])
            self._index = 0
        return self._endpoints[self._index]

    def mark_success(self, url: str) -> None:
        self.last_good_url = url
        self.last_success_at = self._clock()

    def mark_failure(self, url: str) -> None:
        if len(self._endpoints) == 1 or self._endpoints[self._index] != url:
            return
        self._index = (self._index + 1) % len(self._endpoints)
        logger.warning(
            "Explorer endpoint %s failed; switching to %s",
            url,
            self._endpoints[self._index],
        )
