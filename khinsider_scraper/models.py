from __future__ import annotations

from dataclasses import dataclass, field
from typing import AsyncIterator

import httpx


@dataclass(slots=True, frozen=True)
class AlbumListItem:
    title: str
    url: str
    platform: str
    year: str


@dataclass(slots=True, frozen=True)
class SearchResult:
    title: str
    url: str
    platform: str
    type: str
    year: str


@dataclass(slots=True, frozen=True)
class RecentAlbum:
    title: str
    url: str


@dataclass(slots=True, frozen=True)
class ScrapedTrack:
    name: str
    duration: str
    size: str
    mp3_size: str
    flac_size: str
    page_url: str


@dataclass(slots=True, frozen=True)
class TrackUrls:
    mp3: str | None = None
    flac: str | None = None


@dataclass(slots=True, frozen=True)
class BulkDownloadUrls:
    mp3_url: str | None = None
    flac_url: str | None = None


@dataclass(slots=True, frozen=True)
class MetadataLine:
    label: str
    value: str


@dataclass(slots=True, frozen=True)
class AlbumInfo:
    images: list[str] = field(default_factory=list)
    metadata: dict[str, str] = field(default_factory=dict)
    metadata_lines: list[MetadataLine] = field(default_factory=list)


@dataclass(slots=True, frozen=True)
class LoginResult:
    success: bool


@dataclass(slots=True)
class StreamResponse:
    """An open streaming response; the caller must consume or close it."""

    status: int
    headers: dict[str, str]
    _response: httpx.Response

    def aiter_bytes(self, chunk_size: int | None = None) -> AsyncIterator[bytes]:
        return self._response.aiter_bytes(chunk_size)

    async def aclose(self) -> None:
        await self._response.aclose()

    async def __aenter__(self) -> StreamResponse:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()
