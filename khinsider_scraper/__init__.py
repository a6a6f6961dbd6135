from .cache import AsyncCache, LRUCache, memoize_with_ttl
from .config import ScraperConfig
from .errors import (
    AccessDeniedError,
    AuthError,
    ConnectionFailedError,
    HttpStatusError,
    NetworkError,
    RequestCancelledError,
    RequestTimeoutError,
    ScraperError,
    ValidationError,
)
from .models import (
    AlbumInfo,
    AlbumListItem,
    BulkDownloadUrls,
    LoginResult,
    MetadataLine,
    RecentAlbum,
    ScrapedTrack,
    SearchResult,
    StreamResponse,
    TrackUrls,
)
from .scraper import KhinsiderScraper
from .session import SessionContext, create_context, reset_http_context
from .urls import build_url, validate_url

__all__ = [
    "KhinsiderScraper",
    "ScraperConfig",
    "SessionContext",
    "create_context",
    "reset_http_context",
    "validate_url",
    "build_url",
    "LRUCache",
    "AsyncCache",
    "memoize_with_ttl",
    "AlbumInfo",
    "AlbumListItem",
    "BulkDownloadUrls",
    "LoginResult",
    "MetadataLine",
    "RecentAlbum",
    "ScrapedTrack",
    "SearchResult",
    "StreamResponse",
    "TrackUrls",
    "ScraperError",
    "ValidationError",
    "AuthError",
    "NetworkError",
    "RequestTimeoutError",
    "ConnectionFailedError",
    "HttpStatusError",
    "AccessDeniedError",
    "RequestCancelledError",
]
