from __future__ import annotations

import asyncio
import logging

from .config import MAX_RECENT_ALBUMS
from .errors import RequestCancelledError
from .extraction import (
    extract_add_album_href,
    extract_album_download_id,
    extract_zip_links,
    parse_album_info,
    parse_html,
    parse_recent_albums,
    parse_track_rows,
    resolve_link,
)
from .http import make_request
from .models import AlbumInfo, BulkDownloadUrls, RecentAlbum, ScrapedTrack
from .session import SessionContext

logger = logging.getLogger(__name__)


async def _fetch_document(ctx: SessionContext, url: str, cancel: asyncio.Event | None):
    response = await make_request(ctx, url, cancel=cancel)
    return parse_html(response.text)


async def get_album_info(
    ctx: SessionContext,
    album_url: str,
    *,
    cancel: asyncio.Event | None = None,
) -> AlbumInfo:
    try:
        doc = await _fetch_document(ctx, album_url, cancel)
        return parse_album_info(doc, ctx.config.base_url, ctx.config.allowed_domains)
    except RequestCancelledError:
        raise
    except Exception:
        logger.exception("Failed to get album info for %s", album_url)
        return AlbumInfo()


async def get_album_tracks(
    ctx: SessionContext,
    album_url: str,
    *,
    cancel: asyncio.Event | None = None,
) -> list[ScrapedTrack]:
    try:
        doc = await _fetch_document(ctx, album_url, cancel)
        return parse_track_rows(doc, ctx.config.base_url, ctx.config.allowed_domains)
    except RequestCancelledError:
        raise
    except Exception:
        logger.exception("Failed to get album tracks for %s", album_url)
        return []


async def get_album_download_id(
    ctx: SessionContext,
    album_url: str,
    *,
    cancel: asyncio.Event | None = None,
) -> str | None:
    try:
        doc = await _fetch_document(ctx, album_url, cancel)
        return extract_album_download_id(doc)
    except RequestCancelledError:
        raise
    except Exception as exc:
        logger.error("get_album_download_id failed for %s: %s", album_url, exc)
        return None


async def get_bulk_download_urls(
    ctx: SessionContext,
    album_url: str,
    *,
    cancel: asyncio.Event | None = None,
) -> BulkDownloadUrls:
    """Album ZIP links, following the add-album page when the album page has none."""
    base_url = ctx.config.base_url
    allowed = ctx.config.allowed_domains
    try:
        doc = await _fetch_document(ctx, album_url, cancel)
        urls = extract_zip_links(doc, base_url, allowed)
        if urls.mp3_url or urls.flac_url:
            return urls

        add_album_url = resolve_link(extract_add_album_href(doc), base_url, allowed)
        if add_album_url is None:
            return urls
        download_page = await _fetch_document(ctx, add_album_url, cancel)
        return extract_zip_links(download_page, base_url, allowed, unlabelled_as_mp3=True)
    except RequestCancelledError:
        raise
    except Exception as exc:
        logger.error("Failed to get bulk download URLs for %s: %s", album_url, exc)
        return BulkDownloadUrls()


async def get_recent_albums(
    ctx: SessionContext,
    *,
    cancel: asyncio.Event | None = None,
) -> list[RecentAlbum]:
    try:
        doc = await _fetch_document(ctx, ctx.config.base_url, cancel)
        return parse_recent_albums(
            doc, ctx.config.base_url, ctx.config.allowed_domains, MAX_RECENT_ALBUMS
        )
    except RequestCancelledError:
        raise
    except Exception as exc:
        logger.error("Failed to get recent albums: %s", exc)
        return []
