from __future__ import annotations

import asyncio
import contextvars
import dataclasses
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator

import httpx

from .config import ScraperConfig
from .urls import validate_url

logger = logging.getLogger(__name__)

_exclusive_holder: contextvars.ContextVar[SessionGuard | None] = contextvars.ContextVar(
    "khinsider_exclusive_holder", default=None
)


class SessionGuard:
    """Shared/exclusive access to one session's cookies and auth state.

    Ordinary requests enter in shared mode and may overlap. Login and logout
    take the guard exclusively; requests made by the exclusive holder's own
    task pass straight through.
    """

    def __init__(self) -> None:
        self._cond = asyncio.Condition()
        self._active = 0
        self._exclusive = False
        self._waiting_exclusive = 0

    def held_by_current_task(self) -> bool:
        return _exclusive_holder.get() is self

    @asynccontextmanager
    async def shared(self) -> AsyncIterator[None]:
        if self.held_by_current_task():
            yield
            return
        async with self._cond:
            await self._cond.wait_for(
                lambda: not self._exclusive and self._waiting_exclusive == 0
            )
            self._active += 1
        try:
            yield
        finally:
            async with self._cond:
                self._active -= 1
                self._cond.notify_all()

    @asynccontextmanager
    async def exclusive(self) -> AsyncIterator[None]:
        if self.held_by_current_task():
            yield
            return
        async with self._cond:
            self._waiting_exclusive += 1
            try:
                await self._cond.wait_for(lambda: not self._exclusive and self._active == 0)
            finally:
                self._waiting_exclusive -= 1
            self._exclusive = True
        token = _exclusive_holder.set(self)
        try:
            yield
        finally:
            _exclusive_holder.reset(token)
            async with self._cond:
                self._exclusive = False
                self._cond.notify_all()


@dataclass(slots=True)
class SessionState:
    is_logged_in: bool = False
    last_request_time: float = 0.0
    request_lock: asyncio.Lock = field(default_factory=asyncio.Lock)


@dataclass(slots=True)
class SessionContext:
    config: ScraperConfig
    state: SessionState
    client: httpx.AsyncClient
    guard: SessionGuard = field(default_factory=SessionGuard)

    @property
    def cookie_jar(self) -> httpx.Cookies:
        return self.client.cookies

    async def aclose(self) -> None:
        await self.client.aclose()


def _allow_list_hook(allowed_domains: tuple[str, ...]):
    async def check_request(request: httpx.Request) -> None:
        # Redirect hops pass through here as well.
        validate_url(str(request.url), allowed_domains)

    return check_request


def create_context(
    config: ScraperConfig | None = None,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
    **overrides: object,
) -> SessionContext:
    """Create a fresh, logged-out session.

    ``overrides`` are ``ScraperConfig`` field values applied over ``config``
    (or the defaults). ``transport`` is handed to the httpx client, which is
    how tests plug in ``httpx.MockTransport``.
    """
    full_config = config or ScraperConfig()
    if overrides:
        if "allowed_domains" in overrides:
            overrides["allowed_domains"] = tuple(overrides["allowed_domains"])  # type: ignore[arg-type]
        full_config = dataclasses.replace(full_config, **overrides)

    client = httpx.AsyncClient(
        transport=transport,
        cookies=httpx.Cookies(),
        follow_redirects=True,
        timeout=full_config.request_timeout_s,
        event_hooks={"request": [_allow_list_hook(full_config.allowed_domains)]},
    )
    return SessionContext(config=full_config, state=SessionState(), client=client)


def reset_http_context(ctx: SessionContext) -> None:
    """Discard every session cookie and mark the context logged out."""
    ctx.client.cookies.clear()
    ctx.state.is_logged_in = False
    logger.debug("Session cookies cleared for %s", ctx.config.base_url)
