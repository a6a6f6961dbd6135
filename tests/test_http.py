import asyncio
import time

import httpx
import pytest
from conftest import BASE, StubSite, make_ctx

from khinsider_scraper.errors import (
    AccessDeniedError,
    ConnectionFailedError,
    HttpStatusError,
    RequestCancelledError,
    RequestTimeoutError,
    ValidationError,
)
from khinsider_scraper.http import make_post, make_request, make_stream_request
from khinsider_scraper.session import SessionGuard, reset_http_context


@pytest.mark.asyncio
async def test_get_sends_default_and_override_headers(site, ctx):
    site.pages["/page"] = "<html>ok</html>"

    response = await make_request(ctx, f"{BASE}/page", headers={"X-Test": "1"})

    assert response.text == "<html>ok</html>"
    sent = site.requests[0]
    assert sent.headers["user-agent"] == ctx.config.user_agent
    assert sent.headers["referer"] == BASE
    assert sent.headers["x-test"] == "1"


@pytest.mark.asyncio
async def test_disallowed_url_is_rejected_before_any_request(site, ctx):
    with pytest.raises(ValidationError):
        await make_request(ctx, "https://evil.example/page")
    assert site.requests == []


@pytest.mark.asyncio
async def test_server_errors_are_retried_then_surfaced():
    site = StubSite(default_status=503)
    ctx = make_ctx(site, max_retries=2)

    with pytest.raises(HttpStatusError) as info:
        await make_request(ctx, f"{BASE}/flaky")

    assert info.value.status == 503
    assert info.value.retryable is True
    assert len(site.requests) == 3


@pytest.mark.asyncio
async def test_server_error_recovers_on_retry():
    calls = {"n": 0}

    def handler(request):
        calls["n"] += 1
        if calls["n"] == 1:
            return httpx.Response(502)
        return httpx.Response(200, text="second time lucky")

    ctx = make_ctx(handler, max_retries=3)
    response = await make_request(ctx, f"{BASE}/flaky")

    assert response.text == "second time lucky"
    assert calls["n"] == 2


@pytest.mark.asyncio
async def test_client_errors_are_not_retried():
    site = StubSite(default_status=404)
    ctx = make_ctx(site, max_retries=3)

    with pytest.raises(HttpStatusError) as info:
        await make_request(ctx, f"{BASE}/missing")

    assert info.value.status == 404
    assert info.value.retryable is False
    assert len(site.requests) == 1


@pytest.mark.asyncio
async def test_timeouts_and_connection_errors_are_translated_and_retried():
    attempts = []

    def timing_out(request):
        attempts.append(request)
        raise httpx.ReadTimeout("too slow", request=request)

    ctx = make_ctx(timing_out, max_retries=1)
    with pytest.raises(RequestTimeoutError):
        await make_request(ctx, f"{BASE}/slow")
    assert len(attempts) == 2

    def refusing(request):
        raise httpx.ConnectError("refused", request=request)

    ctx = make_ctx(refusing, max_retries=0)
    with pytest.raises(ConnectionFailedError):
        await make_request(ctx, f"{BASE}/down")


@pytest.mark.asyncio
async def test_block_page_raises_access_denied(site, ctx):
    site.pages["/blocked"] = "<h1>Access Denied</h1>"

    with pytest.raises(AccessDeniedError):
        await make_request(ctx, f"{BASE}/blocked")
    assert len(site.requests) == 1


@pytest.mark.asyncio
async def test_redirect_to_disallowed_host_is_blocked(site, ctx):
    site.pages["/jump"] = httpx.Response(302, headers={"Location": "https://evil.example/x"})

    with pytest.raises(ValidationError):
        await make_request(ctx, f"{BASE}/jump")
    assert all(r.url.host != "evil.example" for r in site.requests)


@pytest.mark.asyncio
async def test_cookies_round_trip_and_reset_clears_them(site, ctx):
    site.pages["/set"] = httpx.Response(
        200, text="ok", headers={"Set-Cookie": "xf_session=abc123; Path=/"}
    )
    site.pages["/echo"] = "ok"

    await make_request(ctx, f"{BASE}/set")
    await make_request(ctx, f"{BASE}/echo")
    assert "xf_session=abc123" in site.requests[-1].headers.get("cookie", "")

    ctx.state.is_logged_in = True
    reset_http_context(ctx)
    assert ctx.state.is_logged_in is False
    assert len(ctx.cookie_jar) == 0

    await make_request(ctx, f"{BASE}/echo")
    assert "xf_session" not in site.requests[-1].headers.get("cookie", "")


@pytest.mark.asyncio
async def test_post_sends_urlencoded_form(site, ctx):
    site.pages["/forums/index.php?login/login"] = "done"

    await make_post(ctx, f"{BASE}/forums/index.php?login/login", {"login": "me", "remember": "1"})

    sent = site.requests[0]
    assert sent.method == "POST"
    assert sent.headers["content-type"] == "application/x-www-form-urlencoded"
    assert sent.content == b"login=me&remember=1"


@pytest.mark.asyncio
async def test_requests_are_spaced_by_rate_limit():
    stamps = []

    def handler(request):
        stamps.append(time.monotonic())
        return httpx.Response(200, text="ok")

    ctx = make_ctx(handler, rate_limit_delay_s=0.05)
    await asyncio.gather(*(make_request(ctx, f"{BASE}/p{i}") for i in range(3)))

    assert len(stamps) == 3
    gaps = [b - a for a, b in zip(stamps, stamps[1:])]
    assert all(gap >= 0.045 for gap in gaps)
    assert ctx.state.last_request_time > 0


@pytest.mark.asyncio
async def test_cancel_event_stops_before_and_between_attempts():
    site = StubSite(default_status=500)
    ctx = make_ctx(site, max_retries=5, retry_delay_s=30)
    cancel = asyncio.Event()
    cancel.set()

    with pytest.raises(RequestCancelledError):
        await make_request(ctx, f"{BASE}/x", cancel=cancel)
    assert site.requests == []

    cancel = asyncio.Event()

    def fail_and_cancel(request):
        cancel.set()
        return httpx.Response(500)

    ctx = make_ctx(fail_and_cancel, max_retries=5, retry_delay_s=30)
    with pytest.raises(RequestCancelledError):
        await asyncio.wait_for(make_request(ctx, f"{BASE}/x", cancel=cancel), timeout=5)


@pytest.mark.asyncio
async def test_stream_request_exposes_unbuffered_body(site, ctx):
    payload = b"ID3" + b"\x00" * 4096
    site.pages["/soundtracks/a.mp3"] = httpx.Response(
        200, content=payload, headers={"Content-Type": "audio/mpeg"}
    )

    stream = await make_stream_request(ctx, f"{BASE}/soundtracks/a.mp3")
    async with stream:
        assert stream.status == 200
        assert stream.headers["content-type"] == "audio/mpeg"
        body = b"".join([chunk async for chunk in stream.aiter_bytes()])

    assert body == payload
    assert site.requests[0].headers["accept"] == "*/*"


@pytest.mark.asyncio
async def test_stream_request_raises_on_error_status():
    ctx = make_ctx(StubSite(default_status=403))
    with pytest.raises(HttpStatusError):
        await make_stream_request(ctx, f"{BASE}/soundtracks/a.mp3")


@pytest.mark.asyncio
async def test_exclusive_section_blocks_shared_entries_until_released():
    guard = SessionGuard()
    order = []

    async def writer():
        async with guard.exclusive():
            order.append("exclusive-start")
            async with guard.shared():
                order.append("own-request")
            await asyncio.sleep(0.01)
            order.append("exclusive-end")

    async def reader():
        await asyncio.sleep(0)
        async with guard.shared():
            order.append("shared")

    await asyncio.gather(writer(), reader())
    assert order == ["exclusive-start", "own-request", "exclusive-end", "shared"]


@pytest.mark.asyncio
async def test_negative_retry_count_still_makes_one_attempt_and_raises_last_error():
    site = StubSite(default_status=502)
    ctx = make_ctx(site, max_retries=-3)

    with pytest.raises(HttpStatusError) as info:
        await make_request(ctx, f"{BASE}/flaky")

    assert info.value.status == 502
    assert len(site.requests) == 1
