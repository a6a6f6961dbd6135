from __future__ import annotations

from typing import Callable

import httpx
import pytest

from khinsider_scraper.session import SessionContext, create_context

BASE = "https://downloads.khinsider.com"


class StubSite:
    """MockTransport handler serving canned pages keyed by path + query."""

    def __init__(self, pages: dict | None = None, default_status: int = 404) -> None:
        self.pages: dict[str, object] = dict(pages or {})
        self.default_status = default_status
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        page = self.pages.get(request.url.raw_path.decode())
        if page is None:
            return httpx.Response(self.default_status, text="missing")
        if callable(page):
            return page(request)
        if isinstance(page, httpx.Response):
            return page
        return httpx.Response(200, text=page)

    def paths(self) -> list[str]:
        return [r.url.raw_path.decode() for r in self.requests]


def make_ctx(
    handler: Callable[[httpx.Request], httpx.Response],
    **overrides: object,
) -> SessionContext:
    overrides.setdefault("rate_limit_delay_s", 0)
    overrides.setdefault("retry_delay_s", 0)
    return create_context(transport=httpx.MockTransport(handler), **overrides)


@pytest.fixture
def site() -> StubSite:
    return StubSite()


@pytest.fixture
def ctx(site: StubSite) -> SessionContext:
    return make_ctx(site)
