import json
import random
from collections.abc import Callable

import httpx
import pytest

from log_indexer.app.domain.errors import RateLimitedError, TransportError, UpstreamRejectedError
from log_indexer.app.infrastructure.clients.endpoint_selector import EndpointSelector
from log_indexer.app.infrastructure.clients.explorer_log_client import (
    ExplorerLogClient,
    ResponseOutcome,
    classify_response,
)

from tests.fakes import CONTRACT, deposit_raw_log


PRIMARY = "https://primary.example/v2/api"
FALLBACK = "https://fallback.example/api"

OK_EMPTY_LIST = {"status": "1", "message": "OK", "result": []}
NO_RECORDS = {"status": "0", "message": "No records found", "result": []}
RATE_LIMITED = {"status": "0", "message": "NOTOK", "result": "Max rate limit reached"}
QUERY_TIMEOUT = {
    "status": "0",
    "message": "NOTOK",
    "result": "Query Timeout occured. Please select a smaller result dataset",
}


@pytest.mark.parametrize(
    "status_code, body, outcome",
    [
        (200, json.dumps(OK_EMPTY_LIST), ResponseOutcome.OK),
        (200, json.dumps({"jsonrpc": "2.0", "id": 1, "result": "0x10"}), ResponseOutcome.OK),
        (200, json.dumps(NO_RECORDS), ResponseOutcome.EMPTY),
        (200, json.dumps({"status": "0", "message": "NOTOK", "result": ""}), ResponseOutcome.EMPTY),
        (200, json.dumps(RATE_LIMITED), ResponseOutcome.RATE_LIMITED),
        (
            200,
            json.dumps({"status": "0", "message": "NOTOK", "result": "Max calls per sec rate limit reached (5/sec)"}),
            ResponseOutcome.RATE_LIMITED,
        ),
        (429, "Too many requests, rate limit exceeded", ResponseOutcome.RATE_LIMITED),
        (200, json.dumps(QUERY_TIMEOUT), ResponseOutcome.REJECTED),
        (502, "<html>Bad gateway</html>", ResponseOutcome.TRANSPORT_ERROR),
        (500, json.dumps(OK_EMPTY_LIST), ResponseOutcome.TRANSPORT_ERROR),
        (
            200,
            json.dumps({"jsonrpc": "2.0", "error": {"code": -32000, "message": "boom"}}),
            ResponseOutcome.TRANSPORT_ERROR,
        ),
        (200, json.dumps([1, 2]), ResponseOutcome.TRANSPORT_ERROR),
    ],
)
def test_classify_response(status_code, body, outcome):
    assert classify_response(status_code, body).outcome is outcome


def test_rejected_response_carries_the_diagnostic():
    response = classify_response(200, json.dumps(QUERY_TIMEOUT))

    assert response.message.startswith("Query Timeout")


class Explorer:
    """Scripted explorer: pops one (status, body) per request, repeating the last."""

    def __init__(self, responses: list[tuple[int, object]] | None = None, by_host: dict[str, tuple[int, object]] | None = None) -> None:
        self.responses = list(responses or [])
        self.by_host = by_host or {}
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.host in self.by_host:
            status, body = self.by_host[request.url.host]
        else:
            status, body = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(body, str):
            return httpx.Response(status, text=body)
        return httpx.Response(status, json=body)


def _client(
    http: httpx.AsyncClient,
    sleeps: Callable,
    *,
    endpoints: tuple[str, ...] = (PRIMARY,),
    max_retries: int = 8,
) -> ExplorerLogClient:
    return ExplorerLogClient(
        http=http,
        endpoints=EndpointSelector(list(endpoints)),
        api_key="KEY",
        chain_id=56,
        max_retries=max_retries,
        sleep=sleeps,
        rng=random.Random(1),
    )


@pytest.mark.asyncio
async def test_fetch_logs_sends_query_and_returns_entries(sleeps):
    logs = [deposit_raw_log(block=100, log_index=0), deposit_raw_log(block=101, log_index=2)]
    explorer = Explorer([(200, {"status": "1", "message": "OK", "result": logs + ["junk"]})])

    async with httpx.AsyncClient(transport=httpx.MockTransport(explorer)) as http:
        result = await _client(http, sleeps).fetch_logs(address=CONTRACT, from_block=100, to_block=199)

    assert result == logs
    (request,) = explorer.requests
    assert str(request.url).startswith(PRIMARY)
    assert request.headers["accept"] == "application/json"
    assert dict(request.url.params) == {
        "chainid": "56",
        "module": "logs",
        "action": "getLogs",
        "fromBlock": "100",
        "toBlock": "199",
        "address": CONTRACT,
        "apikey": "KEY",
    }


@pytest.mark.asyncio
async def test_fetch_logs_paces_every_call(sleeps):
    explorer = Explorer([(200, OK_EMPTY_LIST)])

    async with httpx.AsyncClient(transport=httpx.MockTransport(explorer)) as http:
        await _client(http, sleeps).fetch_logs(address=CONTRACT, from_block=1, to_block=2)

    assert len(sleeps.calls) == 1
    assert 0.26 <= sleeps.calls[0] <= 0.38


@pytest.mark.asyncio
async def test_no_records_is_an_empty_list(sleeps):
    explorer = Explorer([(200, NO_RECORDS)])

    async with httpx.AsyncClient(transport=httpx.MockTransport(explorer)) as http:
        assert await _client(http, sleeps).fetch_logs(address=CONTRACT, from_block=1, to_block=2) == []


@pytest.mark.asyncio
async def test_rate_limit_is_retried_with_backoff(sleeps):
    explorer = Explorer([(200, RATE_LIMITED), (200, RATE_LIMITED), (200, OK_EMPTY_LIST)])

    async with httpx.AsyncClient(transport=httpx.MockTransport(explorer)) as http:
        result = await _client(http, sleeps).fetch_logs(address=CONTRACT, from_block=1, to_block=2)

    assert result == []
    assert len(explorer.requests) == 3
    pace_1, first_backoff, pace_2, second_backoff, pace_3 = sleeps.calls
    assert all(0.26 <= pace <= 0.38 for pace in (pace_1, pace_2, pace_3))
    assert 0.7 <= first_backoff <= 1.1
    assert 1.4 <= second_backoff <= 1.8


@pytest.mark.asyncio
async def test_rate_limit_exhaustion_raises(sleeps):
    explorer = Explorer([(200, RATE_LIMITED)])

    async with httpx.AsyncClient(transport=httpx.MockTransport(explorer)) as http:
        with pytest.raises(RateLimitedError):
            await _client(http, sleeps, max_retries=2).fetch_logs(address=CONTRACT, from_block=1, to_block=2)

    assert len(explorer.requests) == 3


@pytest.mark.asyncio
async def test_rejected_query_is_not_retried(sleeps):
    explorer = Explorer([(200, QUERY_TIMEOUT)])

    async with httpx.AsyncClient(transport=httpx.MockTransport(explorer)) as http:
        with pytest.raises(UpstreamRejectedError, match="Query Timeout"):
            await _client(http, sleeps).fetch_logs(address=CONTRACT, from_block=1, to_block=2)

    assert len(explorer.requests) == 1


@pytest.mark.asyncio
async def test_non_list_result_is_a_transport_error(sleeps):
    explorer = Explorer([(200, {"status": "1", "message": "OK", "result": "surprise"})])

    async with httpx.AsyncClient(transport=httpx.MockTransport(explorer)) as http:
        with pytest.raises(TransportError, match="non-list"):
            await _client(http, sleeps, max_retries=0).fetch_logs(address=CONTRACT, from_block=1, to_block=2)


@pytest.mark.asyncio
async def test_connection_errors_are_retried(sleeps):
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        if calls["n"] == 1:
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(200, json=OK_EMPTY_LIST)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
        assert await _client(http, sleeps).fetch_logs(address=CONTRACT, from_block=1, to_block=2) == []

    assert calls["n"] == 2


@pytest.mark.asyncio
async def test_head_block_number_is_parsed_from_hex(sleeps):
    explorer = Explorer([(200, {"jsonrpc": "2.0", "id": 83, "result": "0x2a"})])

    async with httpx.AsyncClient(transport=httpx.MockTransport(explorer)) as http:
        assert await _client(http, sleeps).fetch_head_block_number() == 42

    params = explorer.requests[0].url.params
    assert params["module"] == "proxy"
    assert params["action"] == "eth_blockNumber"


@pytest.mark.asyncio
async def test_head_fetch_is_paced(sleeps):
    explorer = Explorer([(200, {"jsonrpc": "2.0", "id": 83, "result": "0x2a"})])

    async with httpx.AsyncClient(transport=httpx.MockTransport(explorer)) as http:
        await _client(http, sleeps).fetch_head_block_number()

    assert len(sleeps.calls) == 1
    assert 0.26 <= sleeps.calls[0] <= 0.38


@pytest.mark.asyncio
@pytest.mark.parametrize("result", ["latest", "0xzz", None])
async def test_invalid_head_is_a_transport_error(sleeps, result):
    explorer = Explorer([(200, {"jsonrpc": "2.0", "id": 83, "result": result})])

    async with httpx.AsyncClient(transport=httpx.MockTransport(explorer)) as http:
        with pytest.raises(TransportError):
            await _client(http, sleeps, max_retries=0).fetch_head_block_number()


@pytest.mark.asyncio
async def test_failing_endpoint_fails_over_to_the_next(sleeps):
    explorer = Explorer(
        by_host={
            "primary.example": (502, "<html>Bad gateway</html>"),
            "fallback.example": (200, {"jsonrpc": "2.0", "id": 83, "result": "0x10"}),
        }
    )

    async with httpx.AsyncClient(transport=httpx.MockTransport(explorer)) as http:
        client = _client(http, sleeps, endpoints=(PRIMARY, FALLBACK))
        assert await client.fetch_head_block_number() == 16
        assert await client.fetch_head_block_number() == 16

    assert [r.url.host for r in explorer.requests] == [
        "primary.example",
        "fallback.example",
        "fallback.example",
    ]


@pytest.mark.asyncio
async def test_rate_limit_does_not_switch_endpoint(sleeps):
    explorer = Explorer([(200, RATE_LIMITED), (200, {"jsonrpc": "2.0", "id": 83, "result": "0x1"})])

    async with httpx.AsyncClient(transport=httpx.MockTransport(explorer)) as http:
        client = _client(http, sleeps, endpoints=(PRIMARY, FALLBACK))
        assert await client.fetch_head_block_number() == 1

    assert [r.url.host for r in explorer.requests] == ["primary.example", "primary.example"]
