from __future__ import annotations

import logging
import re
from typing import Iterable, Sequence

from bs4 import BeautifulSoup, Tag

from .errors import ValidationError
from .models import (
    AlbumInfo,
    AlbumListItem,
    BulkDownloadUrls,
    MetadataLine,
    RecentAlbum,
    ScrapedTrack,
    SearchResult,
    TrackUrls,
)
from .urls import build_url

logger = logging.getLogger(__name__)

ALBUM_LINK_SELECTOR = 'a[href*="/game-soundtracks/album/"]'
YEAR_LINK_SELECTOR = 'a[href*="/game-soundtracks/year/"]'
CSRF_TOKEN_SELECTOR = 'input[name="_xfToken"]'
LOGIN_ERROR_SELECTOR = ".blockMessage--error"
LOGGED_IN_MARKER = 'data-logged-in="true"'
UNKNOWN_YEAR = "0000"

YEAR_HREF_RE = re.compile(r"/year/(\d{4})/?$")
ADD_ALBUM_RE = re.compile(r"/cp/add_album/(\d+)")
CONTROL_CHARS_RE = re.compile(r"[\x00-\x1f\x7f]")

IMAGE_LINK_SELECTOR = 'a[href$=".jpg"], a[href$=".png"], a[href$=".gif"], a[href$=".jpeg"]'
PLATFORM_LINK_SELECTOR = (
    'a[href*="/browse/"], a[href*="/pc-"], a[href*="/nintendo-"], '
    'a[href*="/playstation-"], a[href*="/xbox-"], a[href*="/sega-"]'
)
YEAR_META_RE = re.compile(r"Year:\s*(\d{4})", re.IGNORECASE)
CATALOG_META_RE = re.compile(
    r"Catalog(?:\s*Number)?:\s*([^\n]+?)(?=\s*(?:Published|Developed|Number|Total|Date|Album|$))",
    re.IGNORECASE,
)
FILES_META_RE = re.compile(r"Number of Files:\s*(\d+)", re.IGNORECASE)
SIZE_META_RE = re.compile(r"Total Filesize:\s*([^\n]+?)(?=\s*Date|\s*Album|\s*$)", re.IGNORECASE)
DATE_META_RE = re.compile(r"Date Added:\s*([A-Za-z]+ \d+[a-z]*, \d{4})", re.IGNORECASE)


def parse_html(html: str) -> BeautifulSoup:
    return BeautifulSoup(html, "lxml")


def node_text(node: Tag | None) -> str:
    if node is None:
        return ""
    return node.get_text().strip()


def _cell_text(cells: Sequence[Tag], index: int) -> str:
    if index >= len(cells):
        return ""
    return node_text(cells[index])


def resolve_link(href: str | None, base_url: str, allowed_domains: Iterable[str]) -> str | None:
    """``build_url`` for link harvesting: off-allow-list links are dropped."""
    try:
        return build_url(href, base_url, allowed_domains)
    except ValidationError as exc:
        logger.debug("Skipping link %r: %s", href, exc)
        return None


def sanitize_query(query: str) -> str:
    return CONTROL_CHARS_RE.sub("", query)


# Years and listings


def extract_years(doc: BeautifulSoup) -> list[str]:
    years: list[str] = []
    seen = set()
    for link in doc.select(YEAR_LINK_SELECTOR):
        match = YEAR_HREF_RE.search(link.get("href") or "")
        if not match:
            continue
        year = match.group(1)
        if year in seen:
            continue
        seen.add(year)
        years.append(year)
    return years


def sort_years(years: Iterable[str]) -> list[str]:
    """Newest first; the unknown-year bucket always goes last."""
    years = list(years)
    ordered = sorted((y for y in years if y != UNKNOWN_YEAR), reverse=True)
    if UNKNOWN_YEAR in years:
        ordered.append(UNKNOWN_YEAR)
    return ordered


def pick_album_link(row: Tag) -> tuple[str, str] | None:
    """Return ``(title, href)`` of the album anchor with the longest text.

    Listing rows often carry both a short and a fully qualified link to the
    same album; the longer text is the real title.
    """
    best_title = ""
    best_href: str | None = None
    for link in row.select(ALBUM_LINK_SELECTOR):
        text = node_text(link)
        href = link.get("href")
        if text and href and len(text) > len(best_title):
            best_title = text
            best_href = href
    if best_href is None:
        return None
    return best_title, best_href


def parse_album_rows(
    doc: BeautifulSoup,
    year: str,
    base_url: str,
    allowed_domains: Iterable[str],
) -> list[AlbumListItem]:
    albums: list[AlbumListItem] = []
    for row in doc.select("table.albumList tr"):
        cells = row.find_all("td")
        if not cells:
            continue
        picked = pick_album_link(row)
        if picked is None:
            continue
        title, href = picked
        url = resolve_link(href, base_url, allowed_domains)
        if url is None:
            continue
        albums.append(
            AlbumListItem(
                title=title,
                url=url,
                platform=_cell_text(cells, 1) or "Unknown",
                year=year,
            )
        )
    return albums


def has_next_page(doc: BeautifulSoup, year: str, page: int) -> bool:
    """Check the next-page signals in order; any one of them is enough."""
    next_page = page + 1
    href_patterns = (
        f'a[href*="year/{year}?page={next_page}"]',
        f'a[href*="year/{year}/?page={next_page}"]',
    )
    for selector in href_patterns:
        if doc.select_one(selector) is not None:
            return True

    pagination_texts = [node_text(a) for a in doc.select(".pagination a")]
    for wanted in (str(next_page), "Next", ">"):
        if wanted in pagination_texts:
            return True
    return False


# Search


def parse_search_rows(
    doc: BeautifulSoup,
    base_url: str,
    allowed_domains: Iterable[str],
) -> list[SearchResult]:
    results: list[SearchResult] = []
    for row in doc.select("table.albumList tr"):
        cells = row.find_all("td")
        if len(cells) < 4:
            continue
        picked = pick_album_link(row)
        if picked is None:
            continue
        title, href = picked
        url = resolve_link(href, base_url, allowed_domains)
        if url is None:
            continue
        results.append(
            SearchResult(
                title=title,
                url=url,
                platform=_cell_text(cells, 1) or "Unknown",
                type=_cell_text(cells, 2) or "Soundtrack",
                year=_cell_text(cells, 3) or "Unknown",
            )
        )
    return results


# Login


def extract_csrf_token(doc: BeautifulSoup) -> str | None:
    field = doc.select_one(CSRF_TOKEN_SELECTOR)
    if field is None:
        return None
    return field.get("value") or None


def extract_login_error(doc: BeautifulSoup) -> str | None:
    """Message of the error block, "" if the block is empty, None if absent."""
    block = doc.select_one(LOGIN_ERROR_SELECTOR)
    if block is None:
        return None
    return node_text(block)


def looks_logged_in(doc: BeautifulSoup, raw_html: str) -> bool:
    return doc.select_one('a[href*="logout"]') is not None or LOGGED_IN_MARKER in raw_html


# Album pages


def parse_album_info(
    doc: BeautifulSoup,
    base_url: str,
    allowed_domains: Iterable[str],
) -> AlbumInfo:
    images: list[str] = []
    for link in doc.select(IMAGE_LINK_SELECTOR):
        href = link.get("href") or ""
        if "vgmtreasurechest.com" not in href and "/soundtracks/" not in href:
            continue
        url = resolve_link(href, base_url, allowed_domains)
        if url and "/thumbs/" not in url and url not in images:
            images.append(url)

    lines: list[MetadataLine] = []
    content = doc.select_one("#pageContent")
    if content is not None:
        platforms: list[str] = []
        for link in content.select(PLATFORM_LINK_SELECTOR):
            text = node_text(link)
            if text and text not in platforms:
                platforms.append(text)
        if platforms:
            lines.append(MetadataLine("Platforms", ", ".join(platforms)))

        text = content.get_text()
        for label, pattern in (("Year", YEAR_META_RE), ("Catalog", CATALOG_META_RE)):
            match = pattern.search(text)
            if match:
                lines.append(MetadataLine(label, match.group(1).strip()))

        for label, selector in (
            ("Developer", 'a[href*="/developer/"]'),
            ("Publisher", 'a[href*="/publisher/"]'),
        ):
            link = content.select_one(selector)
            if link is not None:
                lines.append(MetadataLine(label, node_text(link)))

        for label, pattern in (
            ("Files", FILES_META_RE),
            ("Size", SIZE_META_RE),
            ("Added", DATE_META_RE),
        ):
            match = pattern.search(text)
            if match:
                lines.append(MetadataLine(label, match.group(1).strip()))

        type_link = content.select_one('a[href*="/ost"], a[href*="/gamerip"]')
        if type_link is not None:
            lines.append(MetadataLine("Type", node_text(type_link)))

    return AlbumInfo(
        images=images,
        metadata={line.label: line.value for line in lines},
        metadata_lines=lines,
    )


def parse_track_rows(
    doc: BeautifulSoup,
    base_url: str,
    allowed_domains: Iterable[str],
) -> list[ScrapedTrack]:
    rows = doc.select("#songlist tr")
    if not rows:
        return []

    header_texts = [node_text(th).lower() for th in rows[0].find_all("th")]
    offset = 1 if ("cd" in header_texts or "disc" in header_texts) else 0
    name_idx, duration_idx, mp3_idx, flac_idx = (i + offset for i in (2, 3, 4, 5))

    tracks: list[ScrapedTrack] = []
    for row in rows:
        cells = row.find_all("td")
        if len(cells) < 5 or name_idx >= len(cells):
            continue

        name_cell = cells[name_idx]
        link = name_cell.find("a")
        name = node_text(link) or node_text(name_cell)
        href = link.get("href") if link is not None else None
        page_url = resolve_link(href, base_url, allowed_domains)
        if not name or not page_url:
            continue

        duration = _linked_cell_text(cells, duration_idx)
        mp3_size = _linked_cell_text(cells, mp3_idx)
        flac_size = _linked_cell_text(cells, flac_idx)
        tracks.append(
            ScrapedTrack(
                name=name,
                duration=duration or "Unknown",
                size=mp3_size or "Unknown",
                mp3_size=mp3_size or "Unknown",
                flac_size=flac_size or "Unknown",
                page_url=page_url,
            )
        )
    return tracks


def _linked_cell_text(cells: Sequence[Tag], index: int) -> str:
    if index >= len(cells):
        return ""
    cell = cells[index]
    return node_text(cell.find("a")) or node_text(cell)


def extract_album_download_id(doc: BeautifulSoup) -> str | None:
    link = doc.select_one('a[href*="/cp/add_album/"]')
    if link is None:
        return None
    match = ADD_ALBUM_RE.search(link.get("href") or "")
    return match.group(1) if match else None


def extract_add_album_href(doc: BeautifulSoup) -> str | None:
    link = doc.select_one('a[href*="/cp/add_album/"]')
    return link.get("href") if link is not None else None


def extract_zip_links(
    doc: BeautifulSoup,
    base_url: str,
    allowed_domains: Iterable[str],
    *,
    unlabelled_as_mp3: bool = False,
) -> BulkDownloadUrls:
    mp3_url: str | None = None
    flac_url: str | None = None
    for link in doc.select('a[href*=".zip"]'):
        href = link.get("href") or ""
        url = resolve_link(href, base_url, allowed_domains)
        if url is None:
            continue
        text = node_text(link).lower()
        if "flac" in text or "flac" in href:
            flac_url = url
        elif "mp3" in text or "mp3" in href:
            mp3_url = url
        elif unlabelled_as_mp3 and mp3_url is None:
            mp3_url = url
    return BulkDownloadUrls(mp3_url=mp3_url, flac_url=flac_url)


def parse_recent_albums(
    doc: BeautifulSoup,
    base_url: str,
    allowed_domains: Iterable[str],
    limit: int,
) -> list[RecentAlbum]:
    albums: list[RecentAlbum] = []
    selector = f".latestalbums {ALBUM_LINK_SELECTOR}, .albumList {ALBUM_LINK_SELECTOR}"
    for link in doc.select(selector):
        title = node_text(link)
        if not title:
            continue
        url = resolve_link(link.get("href"), base_url, allowed_domains)
        if url is None:
            continue
        albums.append(RecentAlbum(title=title, url=url))
        if len(albums) >= limit:
            break
    return albums


# Track pages


def extract_track_urls(
    doc: BeautifulSoup,
    base_url: str,
    allowed_domains: Iterable[str],
) -> TrackUrls:
    mp3_url: str | None = None

    source = doc.select_one("audio source")
    if source is not None:
        mp3_url = resolve_link(source.get("src"), base_url, allowed_domains)

    if mp3_url is None:
        link = doc.select_one('a[href*=".mp3"]')
        if link is not None:
            mp3_url = resolve_link(link.get("href"), base_url, allowed_domains)

    flac_url: str | None = None
    link = doc.select_one('a[href*=".flac"]')
    if link is not None:
        flac_url = resolve_link(link.get("href"), base_url, allowed_domains)

    return TrackUrls(mp3=mp3_url, flac=flac_url)
