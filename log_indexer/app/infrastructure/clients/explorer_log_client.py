from __future__ import annotations

import asyncio
import json
import logging
import random
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Final

import httpx

from log_indexer.app.domain.errors import (
    RateLimitedError,
    TransportError,
    UpstreamError,
    UpstreamRejectedError,
)
from log_indexer.app.domain.ports.out import LogClient, Sleep
from log_indexer.app.infrastructure.clients.endpoint_selector import EndpointSelector
from log_indexer.app.infrastructure.clients.retry import RetryPolicy, with_retry


logger = logging.getLogger(__name__)

RATE_LIMIT_PHRASES: Final[tuple[str, ...]] = (
    "rate limit",
    "max rate limit",
    "please try again later",
)

_PACING_BASE: Final[float] = 0.26
_PACING_JITTER: Final[float] = 0.12


class ResponseOutcome(str, Enum):
    OK = "ok"
    EMPTY = "empty"
    RATE_LIMITED = "rate_limited"
    REJECTED = "rejected"
    TRANSPORT_ERROR = "transport_error"


@dataclass(frozen=True)
class ExplorerResponse:
    outcome: ResponseOutcome
    status_code: int
    body: dict[str, Any] = field(default_factory=dict)
    message: str = ""

    @property
    def result(self) -> Any:
        return self.body.get("result")


def _mentions_rate_limit(*texts: Any) -> bool:
    for text in texts:
        if isinstance(text, str):
            lowered = text.lower()
            if any(phrase in lowered for phrase in RATE_LIMIT_PHRASES):
                return True
    return False


def classify_response(status_code: int, body_text: str) -> ExplorerResponse:
    """
    Map one explorer HTTP response onto a single outcome.

    The explorer embeds its own status/message fields and often answers
    HTTP 200 for failures, so the body is inspected regardless of the HTTP
    status. Rate limits are only recognisable by their English wording.
    """
    try:
        body = json.loads(body_text)
    except ValueError:
        if _mentions_rate_limit(body_text):
            return ExplorerResponse(ResponseOutcome.RATE_LIMITED, status_code, message=body_text[:200])
        return ExplorerResponse(
            ResponseOutcome.TRANSPORT_ERROR,
            status_code,
            message=f"HTTP {status_code}: unparseable body {body_text[:120]!r}",
        )

    if not isinstance(body, dict):
        return ExplorerResponse(
            ResponseOutcome.TRANSPORT_ERROR,
            status_code,
            message=f"HTTP {status_code}: unexpected body type {type(body).__name__}",
        )

    message = str(body.get("message") or "")
    result = body.get("result")

    error = body.get("error")
    error_message = error.get("message") if isinstance(error, dict) else None

    if _mentions_rate_limit(message, result, error_message):
        return ExplorerResponse(
            ResponseOutcome.RATE_LIMITED,
            status_code,
            body,
            str(result if isinstance(result, str) else message or error_message),
        )

    if not 200 <= status_code < 300:
        return ExplorerResponse(ResponseOutcome.TRANSPORT_ERROR, status_code, body, f"HTTP {status_code} {message}".strip())

    if error is not None:
        return ExplorerResponse(ResponseOutcome.TRANSPORT_ERROR, status_code, body, f"RPC error: {error_message or error}")

    if str(body.get("status")) == "0":
        if "no records" in message.lower():
            return ExplorerResponse(ResponseOutcome.EMPTY, status_code, body, message)
        if isinstance(result, str) and result:
            return ExplorerResponse(ResponseOutcome.REJECTED, status_code, body, result)
        return ExplorerResponse(ResponseOutcome.EMPTY, status_code, body, message)

    return ExplorerResponse(ResponseOutcome.OK, status_code, body, message)


def _is_transient(exc: BaseException) -> bool:
    return isinstance(exc, (RateLimitedError, TransportError))


class ExplorerLogClient(LogClient):
    """
    Etherscan-compatible (v2 multichain) implementation of LogClient.

    Fetches:
      - module=logs&action=getLogs -> list of raw log dicts
      - module=proxy&action=eth_blockNumber -> head block number

    Rate limits and transport/format failures are retried with exponential
    backoff; a NOTOK diagnostic is raised at once as UpstreamRejectedError.
    """

    def __init__(
        self,
        *,
        http: httpx.AsyncClient,
        endpoints: EndpointSelector,
        api_key: str,
        chain_id: int,
        max_retries: int = 8,
        sleep: Sleep = asyncio.sleep,
        rng: random.Random | None = None,
    ) -> None:
        self._http = http
        self._endpoints = endpoints
        self._api_key = api_key
        self._chain_id = chain_id
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._policy = RetryPolicy(max_retries=max_retries, is_retryable=_is_transient)

    async def fetch_logs(
        self,
        *,
        address: str,
        from_block: int,
        to_block: int,
    ) -> list[dict[str, Any]]:
        params = {
            "module": "logs",
            "action": "getLogs",
            "fromBlock": from_block,
            "toBlock": to_block,
            "address": address,
        }

        def _extract(response: ExplorerResponse) -> list[dict[str, Any]]:
            if response.outcome is ResponseOutcome.EMPTY:
                return []
            if not isinstance(response.result, list):
                raise TransportError(f"getLogs returned non-list result: {response.result!r:.120}")
            return [entry for entry in response.result if isinstance(entry, dict)]

        logs = await with_retry(
            lambda: self._call(params, _extract),
            self._policy,
            description=f"getLogs [{from_block}, {to_block}]",
            sleep=self._sleep,
        )
        logger.debug("getLogs [%s, %s] -> %s entries", from_block, to_block, len(logs))
        return logs

    async def fetch_head_block_number(self) -> int:
        params = {"module": "proxy", "action": "eth_blockNumber"}

        def _extract(response: ExplorerResponse) -> int:
            value = response.result
            if not isinstance(value, str) or not value.startswith("0x"):
                raise TransportError(f"eth_blockNumber missing/invalid result: {response.body!r:.200}")
            try:
                return int(value, 16)
            except ValueError as exc:
                raise TransportError(f"eth_blockNumber result is not hex: {value!r}") from exc

        return await with_retry(
            lambda: self._call(params, _extract),
            self._policy,
            description="eth_blockNumber",
            sleep=self._sleep,
        )

    async def _call(
        self,
        params: dict[str, Any],
        extract: Callable[[ExplorerResponse], Any],
    ) -> Any:
        # every attempt is paced to stay under the explorer's per-second cap
        await self._sleep(_PACING_BASE + self._rng.uniform(0, _PACING_JITTER))
        url = self._endpoints.current()
        query = {"chainid": self._chain_id, **params, "apikey": self._api_key}

        try:
            http_response = await self._http.get(
                url,
                params=query,
                headers={"accept": "application/json"},
            )
        except httpx.HTTPError as exc:
            self._endpoints.mark_failure(url)
            raise TransportError(f"{type(exc).__name__}: {exc}") from exc

        response = classify_response(http_response.status_code, http_response.text)

        if response.outcome is ResponseOutcome.RATE_LIMITED:
            raise RateLimitedError(response.message or "rate limited")
        if response.outcome is ResponseOutcome.TRANSPORT_ERROR:
            self._endpoints.mark_failure(url)
            raise TransportError(response.message)
        if response.outcome is ResponseOutcome.REJECTED:
            raise UpstreamRejectedError(response.message)

        try:
            value = extract(response)
        except UpstreamError:
            self._endpoints.mark_failure(url)
            raise

        self._endpoints.mark_success(url)
        return value
