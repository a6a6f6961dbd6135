from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, TypeVar

import httpx

from . import albums, auth, search, tracks, years
from .cache import AsyncCache
from .config import ScraperConfig
from .http import make_stream_request, wait_or_cancel
from .models import (
    AlbumInfo,
    AlbumListItem,
    BulkDownloadUrls,
    LoginResult,
    RecentAlbum,
    ScrapedTrack,
    SearchResult,
    StreamResponse,
    TrackUrls,
)
from .session import SessionContext, create_context
from .urls import build_url, validate_url

T = TypeVar("T")


def _is_empty(result: object) -> bool:
    if isinstance(result, AlbumInfo):
        return not result.images and not result.metadata_lines
    return not result


class KhinsiderScraper:
    """One logical browser session against the site.

    With ``cache_ttl_s`` > 0, years, year listings, album info and track
    lists are cached in-process and identical concurrent lookups share a
    single fetch. Empty results are not cached.
    """

    def __init__(
        self,
        config: ScraperConfig | None = None,
        *,
        cache_ttl_s: float = 0,
        cache_max_size: int = 200,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.ctx: SessionContext = create_context(config, transport=transport)
        self.config = self.ctx.config
        self.cache_ttl_s = cache_ttl_s
        self._cache: AsyncCache[tuple, object] | None = None
        if cache_ttl_s > 0:
            self._cache = AsyncCache(max_size=cache_max_size, default_ttl_s=cache_ttl_s)

    async def __aenter__(self) -> KhinsiderScraper:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._cache is not None:
            self._cache.destroy()
        await self.ctx.aclose()

    async def _cached(
        self,
        key: tuple,
        fetch: Callable[[asyncio.Event | None], Awaitable[T]],
        cancel: asyncio.Event | None,
    ) -> T:
        if self._cache is None:
            return await fetch(cancel)
        # The shared fetch ignores every caller's cancel event; each caller
        # only abandons its own wait.
        result = await wait_or_cancel(self._cache.get_or_set(key, lambda: fetch(None)), cancel)
        if _is_empty(result):
            # Degraded lookups come back empty; let the next caller retry.
            self._cache.delete(key)
        return result  # type: ignore[return-value]

    def clear_cache(self) -> None:
        if self._cache is not None:
            self._cache.clear()

    @property
    def base_url(self) -> str:
        return self.config.base_url

    @property
    def is_logged_in(self) -> bool:
        return self.ctx.state.is_logged_in

    def validate_url(self, url: str) -> str:
        return validate_url(url, self.config.allowed_domains)

    def build_url(self, href: str | None) -> str | None:
        return build_url(href, self.config.base_url, self.config.allowed_domains)

    async def login(self, username: str, password: str) -> LoginResult:
        return await auth.login(self.ctx, username, password)

    async def check_login_status(self) -> bool:
        return await auth.check_login_status(self.ctx)

    async def logout(self) -> None:
        await auth.logout(self.ctx)

    async def search_albums(
        self, query: str, *, cancel: asyncio.Event | None = None
    ) -> list[SearchResult]:
        return await search.search_albums(self.ctx, query, cancel=cancel)

    async def get_years(self, *, cancel: asyncio.Event | None = None) -> list[str]:
        return await self._cached(
            ("years",), lambda c: years.get_years(self.ctx, cancel=c), cancel
        )

    async def get_albums_by_year(
        self, year: str, *, cancel: asyncio.Event | None = None
    ) -> list[AlbumListItem]:
        return await self._cached(
            ("year", year),
            lambda c: years.get_albums_by_year(self.ctx, year, cancel=c),
            cancel,
        )

    async def get_album_info(
        self, album_url: str, *, cancel: asyncio.Event | None = None
    ) -> AlbumInfo:
        return await self._cached(
            ("album_info", album_url),
            lambda c: albums.get_album_info(self.ctx, album_url, cancel=c),
            cancel,
        )

    async def get_album_tracks(
        self, album_url: str, *, cancel: asyncio.Event | None = None
    ) -> list[ScrapedTrack]:
        return await self._cached(
            ("album_tracks", album_url),
            lambda c: albums.get_album_tracks(self.ctx, album_url, cancel=c),
            cancel,
        )

    async def get_album_download_id(
        self, album_url: str, *, cancel: asyncio.Event | None = None
    ) -> str | None:
        return await albums.get_album_download_id(self.ctx, album_url, cancel=cancel)

    async def get_bulk_download_urls(
        self, album_url: str, *, cancel: asyncio.Event | None = None
    ) -> BulkDownloadUrls:
        return await albums.get_bulk_download_urls(self.ctx, album_url, cancel=cancel)

    async def get_recent_albums(
        self, *, cancel: asyncio.Event | None = None
    ) -> list[RecentAlbum]:
        return await albums.get_recent_albums(self.ctx, cancel=cancel)

    async def get_track_direct_url(
        self, track_page_url: str, *, cancel: asyncio.Event | None = None
    ) -> TrackUrls:
        return await tracks.get_track_direct_url(self.ctx, track_page_url, cancel=cancel)

    async def make_stream_request(
        self,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        timeout_s: float | None = None,
        cancel: asyncio.Event | None = None,
    ) -> StreamResponse:
        return await make_stream_request(
            self.ctx, url, headers=headers, timeout_s=timeout_s, cancel=cancel
        )
