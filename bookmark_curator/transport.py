"""Retrying HTTP transport and cooperative cancellation for provider calls.

Provider adapters call :func:`post_json`, which retries 5xx/429 responses and
transport failures with exponential backoff, never retries other 4xx responses,
and abandons the request as soon as the run's :class:`CancellationToken` fires.
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, TypeVar

import httpx

from .config import REQUEST_TIMEOUT_SECONDS, TRANSPORT_BACKOFF_SECONDS, TRANSPORT_RETRIES
from .errors import (
    ErrorCode,
    OperationCancelledError,
    ProviderError,
    classify_status,
    is_client_error,
)

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import Awaitable

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

_RATE_LIMITED = 429
_SERVER_ERROR = 500
_RAW_BODY_LIMIT = 2000


class CancellationToken:
    """Shared cancellation signal fanned out to every batch of a run."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "Operation cancelled") -> None:
        """Fire the signal; later calls keep the first reason."""
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    async def wait(self) -> None:
        await self._event.wait()

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise OperationCancelledError(self.reason or "Operation cancelled")


@dataclass(slots=True, frozen=True)
class RetryPolicy:
    """Retry and timeout settings for one adapter."""

    retries: int = TRANSPORT_RETRIES
    backoff_seconds: float = TRANSPORT_BACKOFF_SECONDS
    timeout: float = REQUEST_TIMEOUT_SECONDS

    def delay_for(self, attempt: int) -> float:
        """Backoff before retry number ``attempt + 1``."""
        return self.backoff_seconds * (2**attempt)


async def run_cancellable(awaitable: Awaitable[T], token: CancellationToken | None) -> T:
    """Await ``awaitable`` but abandon it as soon as ``token`` fires."""
    if token is None:
        return await awaitable
    if token.cancelled:
        if inspect.iscoroutine(awaitable):
            awaitable.close()
        token.raise_if_cancelled()
    work = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(token.wait())
    try:
        done, _ = await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        work.cancel()
        raise
    finally:
        waiter.cancel()
    if work in done:
        return work.result()
    work.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await work
    raise OperationCancelledError(token.reason or "Operation cancelled")


async def fetch_with_retry(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    json: object = None,
    headers: dict[str, str] | None = None,
    params: dict[str, str] | None = None,
    policy: RetryPolicy | None = None,
    cancel_token: CancellationToken | None = None,
) -> httpx.Response:
    """Issue a request, retrying server errors, rate limits and transport failures.

    Client errors other than 429 are returned to the caller untouched. Once the
    retry budget is spent the last response is returned (or the last transport
    error re-raised). Cancellation is never retried.
    """
    policy = policy or RetryPolicy()
    last_error: Exception | None = None

    for attempt in range(policy.retries + 1):
        try:
            response = await run_cancellable(
                client.request(
                    method, url, json=json, headers=headers, params=params, timeout=policy.timeout,
                ),
                cancel_token,
            )
        except httpx.TransportError as exc:
            last_error = exc
            if attempt >= policy.retries:
                raise
            delay = policy.delay_for(attempt)
            LOGGER.warning(
                "Request to %s failed (%s); retry %d/%d in %.1fs",
                url,
                exc.__class__.__name__,
                attempt + 1,
                policy.retries,
                delay,
            )
            await run_cancellable(asyncio.sleep(delay), cancel_token)
            continue

        status = response.status_code
        if is_client_error(status) and status != _RATE_LIMITED:
            return response
        if (status >= _SERVER_ERROR or status == _RATE_LIMITED) and attempt < policy.retries:
            delay = policy.delay_for(attempt)
            LOGGER.warning(
                "HTTP %d from %s; retry %d/%d in %.1fs",
                status,
                url,
                attempt + 1,
                policy.retries,
                delay,
            )
            await run_cancellable(asyncio.sleep(delay), cancel_token)
            continue
        return response

    if last_error is not None:
        raise last_error
    msg = f"No response received from {url}"
    raise ProviderError(ErrorCode.NETWORK_ERROR, msg)


def raise_for_provider_status(response: httpx.Response, provider: str | None = None) -> httpx.Response:
    """Convert a non-2xx response into a :class:`ProviderError`."""
    if response.is_success:
        return response
    status = response.status_code
    raise ProviderError(
        classify_status(status),
        f"HTTP {status}: {response.reason_phrase}",
        provider,
        status,
        raw=response.text[:_RAW_BODY_LIMIT],
    )


async def post_json(
    client: httpx.AsyncClient,
    url: str,
    payload: dict[str, Any],
    *,
    provider: str,
    headers: dict[str, str] | None = None,
    params: dict[str, str] | None = None,
    policy: RetryPolicy | None = None,
    cancel_token: CancellationToken | None = None,
) -> dict[str, Any]:
    """POST a JSON payload and return the decoded JSON object body."""
    try:
        response = await fetch_with_retry(
            client,
            "POST",
            url,
            json=payload,
            headers=headers,
            params=params,
            policy=policy,
            cancel_token=cancel_token,
        )
    except httpx.TransportError as exc:
        message = str(exc) or exc.__class__.__name__
        raise ProviderError(ErrorCode.NETWORK_ERROR, message, provider) from exc

    raise_for_provider_status(response, provider)
    try:
        data = response.json()
    except ValueError as exc:
        msg = "Response body is not valid JSON"
        raise ProviderError(ErrorCode.PARSE_ERROR, msg, provider, response.status_code) from exc
    if not isinstance(data, dict):
        msg = "Response body is not a JSON object"
        raise ProviderError(ErrorCode.PARSE_ERROR, msg, provider, response.status_code, raw=data)
    return data
