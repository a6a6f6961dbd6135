from __future__ import annotations

import asyncio
import logging

from .errors import AuthError, RequestCancelledError
from .extraction import (
    LOGGED_IN_MARKER,
    extract_csrf_token,
    extract_login_error,
    looks_logged_in,
    parse_html,
)
from .http import make_post, make_request
from .models import LoginResult
from .session import SessionContext, reset_http_context

logger = logging.getLogger(__name__)


async def login(
    ctx: SessionContext,
    username: str,
    password: str,
    *,
    cancel: asyncio.Event | None = None,
) -> LoginResult:
    """Log into the forum; raises ``AuthError`` when the site rejects the login.

    Any failure leaves the context logged out.
    """
    async with ctx.guard.exclusive():
        try:
            login_page = await make_request(
                ctx, f"{ctx.config.forum_url}/index.php?login/", cancel=cancel
            )
            token = extract_csrf_token(parse_html(login_page.text))
            if not token:
                raise AuthError("Could not find CSRF token on the login page")

            form = {
                "login": username,
                "password": password,
                "remember": "1",
                "_xfToken": token,
                "_xfRedirect": ctx.config.base_url,
            }
            response = await make_post(
                ctx, f"{ctx.config.forum_url}/index.php?login/login", form, cancel=cancel
            )

            html = response.text
            doc = parse_html(html)
            error_message = extract_login_error(doc)
            if error_message is not None:
                raise AuthError(error_message or "Login failed")

            ctx.state.is_logged_in = looks_logged_in(doc, html)
            if ctx.state.is_logged_in:
                logger.info("Logged in as %s", username)
            else:
                logger.warning("Login response for %s carried no session marker", username)
            return LoginResult(success=ctx.state.is_logged_in)
        except BaseException:
            ctx.state.is_logged_in = False
            raise


async def check_login_status(
    ctx: SessionContext,
    *,
    cancel: asyncio.Event | None = None,
) -> bool:
    try:
        response = await make_request(ctx, f"{ctx.config.forum_url}/", cancel=cancel)
    except RequestCancelledError:
        raise
    except Exception as exc:
        logger.warning("Failed to check login status: %s", exc)
        ctx.state.is_logged_in = False
        return False

    ctx.state.is_logged_in = LOGGED_IN_MARKER in response.text
    return ctx.state.is_logged_in


async def logout(ctx: SessionContext) -> None:
    async with ctx.guard.exclusive():
        reset_http_context(ctx)
    logger.info("Logged out")
