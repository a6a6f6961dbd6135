from __future__ import annotations


class ScraperError(Exception):
    code: str = "SCRAPER_ERROR"
    retryable: bool = False

    def __init__(self, message: str, *, retryable: bool | None = None) -> None:
        super().__init__(message)
        if retryable is not None:
            self.retryable = retryable


class ValidationError(ScraperError):
    code = "VALIDATION_ERROR"


class AuthError(ScraperError):
    code = "AUTH_ERROR"


class RequestCancelledError(ScraperError):
    code = "CANCELLED"


class NetworkError(ScraperError):
    code = "NETWORK_ERROR"
    retryable = True


class RequestTimeoutError(NetworkError):
    code = "TIMEOUT"


class ConnectionFailedError(NetworkError):
    code = "CONNECTION_ERROR"


class HttpStatusError(NetworkError):
    code = "HTTP_STATUS"

    def __init__(self, status: int, url: str) -> None:
        super().__init__(
            f"HTTP {status} error for {url}",
            retryable=status >= 500 or status == 429,
        )
        self.status = status
        self.url = url


class AccessDeniedError(NetworkError):
    code = "ACCESS_DENIED"
    retryable = False
