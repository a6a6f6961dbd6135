import asyncio

import httpx
import pytest
from conftest import BASE, StubSite, make_ctx

from khinsider_scraper.errors import RequestCancelledError, ValidationError
from khinsider_scraper.search import search_albums
from khinsider_scraper.years import get_albums_by_year, get_years, year_page_url

YEAR_1998 = "/game-soundtracks/year/1998"


def listing(*titles, pagination=""):
    rows = "".join(
        f'<tr><td><a href="/game-soundtracks/album/{t.lower().replace(" ", "-")}">{t}</a></td>'
        f"<td>PS1</td></tr>"
        for t in titles
    )
    return f'<table class="albumList"><tr><th>Title</th></tr>{rows}</table>{pagination}'


def test_year_page_urls():
    assert year_page_url(BASE, "1998", 1) == f"{BASE}/game-soundtracks/year/1998/"
    assert year_page_url(BASE, "1998", 4) == f"{BASE}/game-soundtracks/year/1998?page=4"


@pytest.mark.asyncio
async def test_get_years_sorts_newest_first_with_unknown_last(site, ctx):
    site.pages["/album-years"] = """
        <a href="/game-soundtracks/year/0000/">Unknown</a>
        <a href="/game-soundtracks/year/1998/">1998</a>
    """

    assert await get_years(ctx) == ["1998", "0000"]


@pytest.mark.asyncio
async def test_get_years_degrades_to_empty_list():
    ctx = make_ctx(StubSite(default_status=500), max_retries=1)
    assert await get_years(ctx) == []


@pytest.mark.asyncio
async def test_albums_follow_next_link_and_sort_by_title(site, ctx):
    site.pages[f"{YEAR_1998}/"] = listing(
        "Zelda", pagination='<div class="pagination"><a href="#">Next</a></div>'
    )
    site.pages[f"{YEAR_1998}?page=2"] = listing("actraiser", "Final Fantasy VII")

    albums = await get_albums_by_year(ctx, "1998")

    assert [a.title for a in albums] == ["actraiser", "Final Fantasy VII", "Zelda"]
    assert albums[1].url == f"{BASE}/game-soundtracks/album/final-fantasy-vii"
    assert albums[1].platform == "PS1"
    assert site.paths() == [f"{YEAR_1998}/", f"{YEAR_1998}?page=2"]


@pytest.mark.asyncio
async def test_crawl_stops_after_consecutive_empty_pages():
    requests = []

    def empty_with_next(request):
        requests.append(request)
        page = int(request.url.params.get("page", "1"))
        more = f'<a href="/game-soundtracks/year/1998?page={page + 1}">more</a>'
        return httpx.Response(200, text=listing(pagination=more))

    ctx = make_ctx(empty_with_next)

    assert await get_albums_by_year(ctx, "1998") == []
    assert len(requests) == 3


@pytest.mark.asyncio
async def test_crawl_respects_page_cap():
    requests = []

    def endless(request):
        requests.append(request)
        page = int(request.url.params.get("page", "1"))
        more = f'<a href="/game-soundtracks/year/1998?page={page + 1}">more</a>'
        return httpx.Response(200, text=listing(f"Album {page}", pagination=more))

    ctx = make_ctx(endless)
    albums = await get_albums_by_year(ctx, "1998", max_pages=4)

    assert len(requests) == 4
    assert [a.title for a in albums] == ["Album 1", "Album 2", "Album 3", "Album 4"]


@pytest.mark.asyncio
async def test_crawl_failure_returns_empty_list():
    ctx = make_ctx(StubSite(default_status=404))
    assert await get_albums_by_year(ctx, "1998") == []


@pytest.mark.asyncio
async def test_crawl_cancellation_is_not_swallowed():
    cancel = asyncio.Event()
    requests = []

    def first_page_then_cancel(request):
        requests.append(request)
        cancel.set()
        more = '<a href="/game-soundtracks/year/1998?page=2">more</a>'
        return httpx.Response(200, text=listing("Chrono Trigger", pagination=more))

    ctx = make_ctx(first_page_then_cancel)
    with pytest.raises(RequestCancelledError):
        await get_albums_by_year(ctx, "1998", cancel=cancel)
    assert len(requests) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("query", ["", "   ", None, 42])
async def test_blank_or_non_string_query_makes_no_request(site, ctx, query):
    assert await search_albums(ctx, query) == []
    assert site.requests == []


@pytest.mark.asyncio
async def test_overlong_query_is_rejected(site, ctx):
    with pytest.raises(ValidationError):
        await search_albums(ctx, "a" * 201)
    assert site.requests == []


@pytest.mark.asyncio
async def test_control_only_query_makes_no_request(site, ctx):
    assert await search_albums(ctx, "\x00\x01") == []
    assert site.requests == []


@pytest.mark.asyncio
async def test_search_sends_sanitized_query_and_parses_rows():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(
            200,
            text="""
            <table class="albumList">
              <tr><th>Title</th><th>Platform</th><th>Type</th><th>Year</th></tr>
              <tr>
                <td><a href="/game-soundtracks/album/ff7">Final Fantasy VII</a></td>
                <td>PS1</td><td>Soundtrack</td><td>1997</td>
              </tr>
            </table>
            """,
        )

    ctx = make_ctx(handler)
    results = await search_albums(ctx, "  final\x00 fantasy ")

    assert seen[0].url.path == "/search"
    assert seen[0].url.params["search"] == "final fantasy"
    assert [(r.title, r.platform, r.year) for r in results] == [
        ("Final Fantasy VII", "PS1", "1997")
    ]
    assert results[0].url == f"{BASE}/game-soundtracks/album/ff7"


@pytest.mark.asyncio
async def test_search_failure_returns_empty_list():
    ctx = make_ctx(StubSite(default_status=500), max_retries=0)
    assert await search_albums(ctx, "mega man") == []


@pytest.mark.asyncio
async def test_non_empty_page_resets_the_empty_page_count():
    requests = []
    titles_by_page = {1: (), 2: ("Chrono Trigger",), 3: (), 4: (), 5: ("Earthbound",)}

    def handler(request):
        requests.append(request)
        page = int(request.url.params.get("page", "1"))
        more = ""
        if page < 5:
            more = f'<a href="/game-soundtracks/year/1998?page={page + 1}">more</a>'
        return httpx.Response(200, text=listing(*titles_by_page[page], pagination=more))

    ctx = make_ctx(handler)
    albums = await get_albums_by_year(ctx, "1998")

    assert len(requests) == 5
    assert [a.title for a in albums] == ["Chrono Trigger", "Earthbound"]


@pytest.mark.asyncio
async def test_length_check_counts_trailing_control_characters(site, ctx):
    with pytest.raises(ValidationError):
        await search_albums(ctx, "a" + "\x1f" * 200)
    assert site.requests == []
