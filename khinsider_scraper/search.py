from __future__ import annotations

import asyncio
import logging

from .config import MAX_QUERY_LENGTH
from .errors import RequestCancelledError, ValidationError
from .extraction import parse_html, parse_search_rows, sanitize_query
from .http import make_request
from .models import SearchResult
from .session import SessionContext

logger = logging.getLogger(__name__)

# Whitespace only; \x1c-\x1f must survive trimming so the length check sees them.
TRIM_CHARS = (
    " \t\n\r\x0b\x0c\xa0\ufeff\u1680\u2000\u2001\u2002\u2003\u2004\u2005"
    "\u2006\u2007\u2008\u2009\u200a\u2028\u2029\u202f\u205f\u3000"
)


async def search_albums(
    ctx: SessionContext,
    query: str,
    *,
    cancel: asyncio.Event | None = None,
) -> list[SearchResult]:
    if not query or not isinstance(query, str):
        return []

    trimmed = query.strip(TRIM_CHARS)
    if not trimmed:
        return []
    # Length is checked before control characters are stripped.
    if len(trimmed) > MAX_QUERY_LENGTH:
        raise ValidationError(f"Search query too long (max {MAX_QUERY_LENGTH} characters)")

    sanitized = sanitize_query(trimmed)
    if not sanitized:
        return []

    try:
        response = await make_request(
            ctx,
            f"{ctx.config.base_url}/search",
            params={"search": sanitized},
            cancel=cancel,
        )
        return parse_search_rows(
            parse_html(response.text), ctx.config.base_url, ctx.config.allowed_domains
        )
    except RequestCancelledError:
        raise
    except Exception as exc:
        logger.error("Search error for query %r: %s", trimmed, exc)
        return []
