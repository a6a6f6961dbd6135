import asyncio
import json
import logging
import os
from dataclasses import asdict
from pathlib import Path
from pprint import pprint

from khinsider_scraper import KhinsiderScraper, ScraperConfig

SAMPLE_QUERY = os.getenv("KHINSIDER_SAMPLE_QUERY", "final fantasy")


async def inspect_album(scraper: KhinsiderScraper, album_url: str, output_dir: Path):
    print("\n" + "=" * 80)
    print(f"ALBUM: {album_url}")

    info = await scraper.get_album_info(album_url)
    print("\n--- METADATA ---")
    for line in info.metadata_lines:
        print(f"{line.label}: {line.value}")
    print(f"Images: {len(info.images)}")

    tracks = await scraper.get_album_tracks(album_url)
    print(f"\n--- TRACKS ({len(tracks)}) ---")
    for track in tracks[:5]:
        print(f"{track.name} [{track.duration}] mp3={track.mp3_size} flac={track.flac_size}")

    track_urls = None
    if tracks:
        track_urls = await scraper.get_track_direct_url(tracks[0].page_url)
        print("\n--- FIRST TRACK URLS ---")
        pprint(asdict(track_urls))

    bulk = await scraper.get_bulk_download_urls(album_url)
    print("\n--- BULK DOWNLOAD ---")
    pprint(asdict(bulk))

    album_data = {
        "url": album_url,
        "info": asdict(info),
        "tracks": [asdict(t) for t in tracks],
        "first_track_urls": asdict(track_urls) if track_urls else None,
        "bulk": asdict(bulk),
    }
    filename = output_dir / f"album_{album_url.rstrip('/').rsplit('/', 1)[-1]}.json"
    with open(filename, "w") as f:
        json.dump(album_data, f, indent=2)
    print(f"\n✓ Saved album data to {filename}")


async def main():
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    output_dir = Path("scrape_samples")
    output_dir.mkdir(exist_ok=True)
    print(f"Output directory: {output_dir.absolute()}\n")

    async with KhinsiderScraper(ScraperConfig.from_env(), cache_ttl_s=600) as scraper:
        username = os.getenv("KHINSIDER_USERNAME")
        password = os.getenv("KHINSIDER_PASSWORD")
        if username and password:
            try:
                result = await scraper.login(username, password)
                print(f"Login success: {result.success}")
            except Exception as e:
                print(f"✗ Login failed: {e}")

        years = await scraper.get_years()
        print(f"Years ({len(years)}): {years[:10]} ...")

        recent = await scraper.get_recent_albums()
        print(f"\nRecent albums ({len(recent)}):")
        for album in recent[:5]:
            print(f"- {album.title}")

        results = await scraper.search_albums(SAMPLE_QUERY)
        print(f"\nSearch '{SAMPLE_QUERY}' -> {len(results)} results")
        for result in results[:5]:
            print(f"- {result.title} ({result.platform}, {result.type}, {result.year})")

        for result in results[:2]:
            try:
                await inspect_album(scraper, result.url, output_dir)
            except Exception as e:
                print(f"\n✗ Error inspecting {result.url}: {e}")
                continue

        if scraper.is_logged_in:
            await scraper.logout()

    print("\n" + "=" * 80)
    print(f"DONE - files saved in: {output_dir.absolute()}")


if __name__ == "__main__":
    asyncio.run(main())
