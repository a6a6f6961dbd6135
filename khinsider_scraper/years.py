from __future__ import annotations

import asyncio
import logging

from .config import MAX_EMPTY_PAGES, MAX_PAGES
from .errors import RequestCancelledError
from .extraction import extract_years, has_next_page, parse_album_rows, parse_html, sort_years
from .http import make_request, raise_if_cancelled
from .models import AlbumListItem
from .session import SessionContext

logger = logging.getLogger(__name__)


def year_page_url(base_url: str, year: str, page: int) -> str:
    if page == 1:
        return f"{base_url}/game-soundtracks/year/{year}/"
    return f"{base_url}/game-soundtracks/year/{year}?page={page}"


async def get_years(ctx: SessionContext, *, cancel: asyncio.Event | None = None) -> list[str]:
    try:
        response = await make_request(ctx, f"{ctx.config.base_url}/album-years", cancel=cancel)
        return sort_years(extract_years(parse_html(response.text)))
    except RequestCancelledError:
        raise
    except Exception:
        logger.exception("Failed to get years")
        return []


async def get_albums_by_year(
    ctx: SessionContext,
    year: str,
    *,
    max_pages: int = MAX_PAGES,
    max_empty_pages: int = MAX_EMPTY_PAGES,
    cancel: asyncio.Event | None = None,
) -> list[AlbumListItem]:
    """Crawl every listing page for ``year``, sorted by title.

    Stops on the first page without a next-page signal, after
    ``max_empty_pages`` empty pages in a row, or after ``max_pages`` fetches.
    """
    try:
        albums: list[AlbumListItem] = []
        empty_page_count = 0
        pages_fetched = 0
        page = 1

        while True:
            if pages_fetched >= max_pages:
                logger.warning("Reached max page limit (%d) for year %s", max_pages, year)
                break
            raise_if_cancelled(cancel)

            response = await make_request(
                ctx, year_page_url(ctx.config.base_url, year, page), cancel=cancel
            )
            pages_fetched += 1
            doc = parse_html(response.text)
            page_albums = parse_album_rows(
                doc, year, ctx.config.base_url, ctx.config.allowed_domains
            )

            if page_albums:
                empty_page_count = 0
                albums.extend(page_albums)
            else:
                empty_page_count += 1
                if empty_page_count >= max_empty_pages:
                    logger.debug("%d empty pages in a row for year %s", empty_page_count, year)
                    break

            if not has_next_page(doc, year, page):
                break
            page += 1

        albums.sort(key=lambda album: album.title.casefold())
        return albums
    except RequestCancelledError:
        raise
    except Exception:
        logger.exception("Error fetching albums for year %s", year)
        return []
