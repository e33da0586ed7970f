"""Tests for the retrying HTTP transport and cancellation."""

from __future__ import annotations

import asyncio

import httpx
import pytest

from bookmark_curator.errors import ErrorCode, OperationCancelledError, ProviderError
from bookmark_curator.transport import (
    CancellationToken,
    RetryPolicy,
    fetch_with_retry,
    post_json,
    run_cancellable,
)

URL = "https://api.example/v1/generate"
FAST = RetryPolicy(retries=2, backoff_seconds=0.0, timeout=5.0)


def _client(statuses: list[int], calls: list[int]) -> httpx.AsyncClient:
    def handler(request: httpx.Request) -> httpx.Response:
        status = statuses[min(len(calls), len(statuses) - 1)]
        calls.append(status)
        return httpx.Response(status, json={"ok": status == 200}, request=request)

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_retries_server_errors_then_succeeds() -> None:
    calls: list[int] = []
    async with _client([503, 500, 200], calls) as client:
        response = await fetch_with_retry(client, "POST", URL, json={}, policy=FAST)
    if response.status_code != 200 or calls != [503, 500, 200]:
        msg = f"Expected two retries then success, saw {calls}"
        raise AssertionError(msg)


@pytest.mark.asyncio
async def test_rate_limit_is_retried_but_client_errors_are_not() -> None:
    calls: list[int] = []
    async with _client([429, 200], calls) as client:
        await fetch_with_retry(client, "POST", URL, policy=FAST)
    if calls != [429, 200]:
        msg = f"429 should be retried: {calls}"
        raise AssertionError(msg)

    calls = []
    async with _client([401, 200], calls) as client:
        response = await fetch_with_retry(client, "POST", URL, policy=FAST)
    if response.status_code != 401 or calls != [401]:
        msg = f"401 must be returned without retry: {calls}"
        raise AssertionError(msg)


@pytest.mark.asyncio
async def test_exhausted_retries_return_last_response() -> None:
    calls: list[int] = []
    async with _client([502], calls) as client:
        with pytest.raises(ProviderError) as excinfo:
            await post_json(client, URL, {}, provider="ollama", policy=FAST)
    if len(calls) != FAST.retries + 1:
        msg = f"Expected {FAST.retries + 1} attempts, saw {len(calls)}"
        raise AssertionError(msg)
    if excinfo.value.code is not ErrorCode.NETWORK_ERROR or excinfo.value.status != 502:
        msg = f"5xx maps to NETWORK_ERROR: {excinfo.value}"
        raise AssertionError(msg)


@pytest.mark.asyncio
async def test_transport_failure_becomes_network_error() -> None:
    attempts: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(request.url.path)
        msg = "connection refused"
        raise httpx.ConnectError(msg, request=request)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        with pytest.raises(ProviderError) as excinfo:
            await post_json(client, URL, {}, provider="anthropic", policy=FAST)
    if excinfo.value.code is not ErrorCode.NETWORK_ERROR or len(attempts) != 3:
        msg = f"Transport errors are retried then reported: {excinfo.value}, {attempts}"
        raise AssertionError(msg)


@pytest.mark.asyncio
async def test_status_classification_and_bad_json() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("missing"):
            return httpx.Response(404, text="nope", request=request)
        return httpx.Response(200, text="not json", request=request)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        with pytest.raises(ProviderError) as missing:
            await post_json(client, URL + "/missing", {}, provider="gemini", policy=FAST)
        with pytest.raises(ProviderError) as garbled:
            await post_json(client, URL, {}, provider="gemini", policy=FAST)
    if missing.value.code is not ErrorCode.ENDPOINT_NOT_FOUND or missing.value.provider != "gemini":
        raise AssertionError("404 maps to ENDPOINT_NOT_FOUND with provider")
    if garbled.value.code is not ErrorCode.PARSE_ERROR:
        raise AssertionError("Non-JSON body maps to PARSE_ERROR")


@pytest.mark.asyncio
async def test_cancellation_abandons_work() -> None:
    token = CancellationToken()

    async def _slow() -> str:
        await asyncio.sleep(10)
        return "late"

    task = asyncio.ensure_future(run_cancellable(_slow(), token))
    await asyncio.sleep(0)
    token.cancel("stop")
    with pytest.raises(OperationCancelledError, match="stop"):
        await task

    with pytest.raises(OperationCancelledError):
        await run_cancellable(_slow(), token)


@pytest.mark.asyncio
async def test_run_cancellable_passes_results_through() -> None:
    async def _value() -> int:
        return 7

    if await run_cancellable(_value(), CancellationToken()) != 7:
        raise AssertionError("Result should pass through when not cancelled")
    if await run_cancellable(_value(), None) != 7:
        raise AssertionError("A missing token means no cancellation")
    if RetryPolicy(backoff_seconds=1.0).delay_for(2) != 4.0:
        raise AssertionError("Backoff doubles per attempt")
