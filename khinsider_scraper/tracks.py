from __future__ import annotations

import asyncio
import logging

from .errors import RequestCancelledError
from .extraction import extract_track_urls, parse_html
from .http import make_request
from .models import TrackUrls
from .session import SessionContext

logger = logging.getLogger(__name__)


async def get_track_direct_url(
    ctx: SessionContext,
    track_page_url: str,
    *,
    cancel: asyncio.Event | None = None,
) -> TrackUrls:
    """Resolve playable MP3/FLAC URLs from a track page.

    MP3 comes from ``<audio><source>`` first, then the first ``.mp3`` link.
    Candidates outside the allow-list are skipped, not raised.
    """
    try:
        response = await make_request(ctx, track_page_url, cancel=cancel)
        return extract_track_urls(
            parse_html(response.text), ctx.config.base_url, ctx.config.allowed_domains
        )
    except RequestCancelledError:
        raise
    except Exception:
        logger.exception("Failed to get track direct URL for %s", track_page_url)
        return TrackUrls()
