from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Mapping, TypeVar
from urllib.parse import urlencode

import httpx

from .config import DEFAULT_HEADERS, POST_HEADERS, STREAM_HEADERS
from .errors import (
    AccessDeniedError,
    ConnectionFailedError,
    HttpStatusError,
    NetworkError,
    RequestCancelledError,
    RequestTimeoutError,
)
from .models import StreamResponse
from .session import SessionContext
from .urls import validate_url

logger = logging.getLogger(__name__)

T = TypeVar("T")

BLOCK_PAGE_MARKERS = ("Access Denied", "403 Forbidden")


def raise_if_cancelled(cancel: asyncio.Event | None) -> None:
    if cancel is not None and cancel.is_set():
        raise RequestCancelledError("Operation cancelled")


async def sleep_or_cancel(delay_s: float, cancel: asyncio.Event | None) -> None:
    if cancel is None:
        await asyncio.sleep(max(0.0, delay_s))
        return
    raise_if_cancelled(cancel)
    try:
        await asyncio.wait_for(cancel.wait(), timeout=max(0.0, delay_s))
    except asyncio.TimeoutError:
        return
    raise RequestCancelledError("Operation cancelled")


async def wait_or_cancel(awaitable: Awaitable[T], cancel: asyncio.Event | None) -> T:
    """Await ``awaitable`` unless ``cancel`` fires first.

    On cancellation only this caller's wait is abandoned; a shielded task
    behind ``awaitable`` keeps running for anyone else awaiting it.
    """
    if cancel is None:
        return await awaitable
    if cancel.is_set():
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        raise RequestCancelledError("Operation cancelled")
    task = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(cancel.wait())
    try:
        done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        task.cancel()
        raise
    finally:
        waiter.cancel()
    if task not in done:
        task.cancel()
        raise RequestCancelledError("Operation cancelled")
    return task.result()


async def _wait_for_rate_limit(ctx: SessionContext, cancel: asyncio.Event | None) -> None:
    async with ctx.state.request_lock:
        elapsed = time.monotonic() - ctx.state.last_request_time
        wait_s = ctx.config.rate_limit_delay_s - elapsed
        if wait_s > 0:
            logger.debug("Rate limit: waiting %.3fs", wait_s)
            await sleep_or_cancel(wait_s, cancel)
        ctx.state.last_request_time = time.monotonic()


def _check_block_page(response: httpx.Response) -> None:
    text = response.text
    if any(marker in text for marker in BLOCK_PAGE_MARKERS):
        raise AccessDeniedError(f"Access denied for {response.url} - you may be rate limited")


async def _send_once(
    ctx: SessionContext,
    request: httpx.Request,
    *,
    stream: bool,
) -> httpx.Response:
    url = str(request.url)
    try:
        response = await ctx.client.send(request, stream=stream)
    except httpx.TimeoutException as exc:
        raise RequestTimeoutError(f"Request to {url} timed out") from exc
    except httpx.TransportError as exc:
        raise ConnectionFailedError(f"Connection to {url} failed: {exc}") from exc

    if response.status_code >= 400:
        await response.aclose()
        raise HttpStatusError(response.status_code, url)
    if not stream:
        _check_block_page(response)
    return response


async def _send_with_retries(
    ctx: SessionContext,
    method: str,
    url: str,
    *,
    headers: dict[str, str],
    params: Mapping[str, str] | None = None,
    content: str | None = None,
    timeout_s: float,
    stream: bool = False,
    cancel: asyncio.Event | None = None,
) -> httpx.Response:
    total_attempts = max(1, ctx.config.max_retries + 1)
    last_error: NetworkError | None = None

    async with ctx.guard.shared():
        for attempt in range(total_attempts):
            raise_if_cancelled(cancel)
            await _wait_for_rate_limit(ctx, cancel)
            request = ctx.client.build_request(
                method,
                url,
                headers=headers,
                params=params,
                content=content,
                timeout=timeout_s,
            )
            try:
                return await _send_once(ctx, request, stream=stream)
            except NetworkError as exc:
                if not exc.retryable:
                    raise
                last_error = exc

            if attempt < total_attempts - 1:
                logger.warning(
                    "%s %s failed (%s); retry %d/%d in %.1fs",
                    method,
                    url,
                    last_error,
                    attempt + 1,
                    total_attempts - 1,
                    ctx.config.retry_delay_s,
                )
                await sleep_or_cancel(ctx.config.retry_delay_s, cancel)

    raise last_error or NetworkError(f"{method} {url} failed after {total_attempts} attempts")


def _merge_headers(
    ctx: SessionContext,
    defaults: Mapping[str, str],
    referer: str,
    overrides: Mapping[str, str] | None,
) -> dict[str, str]:
    headers = {"User-Agent": ctx.config.user_agent, **defaults, "Referer": referer}
    if overrides:
        headers.update(overrides)
    return headers


async def make_request(
    ctx: SessionContext,
    url: str,
    *,
    headers: Mapping[str, str] | None = None,
    params: Mapping[str, str] | None = None,
    timeout_s: float | None = None,
    cancel: asyncio.Event | None = None,
) -> httpx.Response:
    validate_url(url, ctx.config.allowed_domains)
    return await _send_with_retries(
        ctx,
        "GET",
        url,
        headers=_merge_headers(ctx, DEFAULT_HEADERS, ctx.config.base_url, headers),
        params=params,
        timeout_s=timeout_s or ctx.config.request_timeout_s,
        cancel=cancel,
    )


async def make_post(
    ctx: SessionContext,
    url: str,
    data: Mapping[str, str] | str,
    *,
    headers: Mapping[str, str] | None = None,
    timeout_s: float | None = None,
    cancel: asyncio.Event | None = None,
) -> httpx.Response:
    validate_url(url, ctx.config.allowed_domains)
    body = data if isinstance(data, str) else urlencode(data)
    return await _send_with_retries(
        ctx,
        "POST",
        url,
        headers=_merge_headers(
            ctx, POST_HEADERS, f"{ctx.config.forum_url}/index.php?login/", headers
        ),
        content=body,
        timeout_s=timeout_s or ctx.config.request_timeout_s,
        cancel=cancel,
    )


async def make_stream_request(
    ctx: SessionContext,
    url: str,
    *,
    headers: Mapping[str, str] | None = None,
    timeout_s: float | None = None,
    cancel: asyncio.Event | None = None,
) -> StreamResponse:
    """Open a streaming GET; the body is not read until the caller iterates it."""
    validate_url(url, ctx.config.allowed_domains)
    response = await _send_with_retries(
        ctx,
        "GET",
        url,
        headers=_merge_headers(ctx, STREAM_HEADERS, ctx.config.base_url, headers),
        timeout_s=timeout_s or ctx.config.stream_timeout_s,
        stream=True,
        cancel=cancel,
    )
    return StreamResponse(
        status=response.status_code,
        headers=dict(response.headers),
        _response=response,
    )
