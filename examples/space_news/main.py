#!/usr/bin/env python3
"""
Space News Digest

Fetches recent space news articles and their thumbnails, four requests at
a time, and writes a markdown digest in article order.

APIs used:
- Spaceflight News API: https://api.spaceflightnewsapi.net/v4/docs/

Demonstrates:
- add() + start() for a fixed list of requests
- add_now() for follow-up work discovered while running
- A post-batch delay to stay polite to the API
"""

import asyncio
import json
from pathlib import Path

import httpx

import runbatch

# Configuration
OUTPUT_DIR = Path("output")
ARTICLE_COUNT = 12
API_URL = "https://api.spaceflightnewsapi.net/v4/articles/"


async def fetch_json(client: httpx.AsyncClient, url: str, **params) -> dict:
    resp = await client.get(url, params=params, timeout=15)
    resp.raise_for_status()
    return resp.json()


async def download(client: httpx.AsyncClient, url: str, path: Path) -> Path:
    resp = await client.get(url, timeout=30, follow_redirects=True)
    resp.raise_for_status()
    path.write_bytes(resp.content)
    return path


async def run() -> None:
    OUTPUT_DIR.mkdir(exist_ok=True)

    async with httpx.AsyncClient() as client:
        # --- Article pages: fixed list, ordered results ---
        pages = runbatch.BatchQueue(concurrency=4, delay=0.5)
        for offset in range(0, ARTICLE_COUNT, 4):
            pages.add(lambda offset=offset: fetch_json(
                client, API_URL, limit=4, offset=offset, ordering="-published_at",
            ))

        print("Fetching articles...", flush=True)
        responses = await pages.start()
        articles = [a for page in responses for a in page.get("results", [])]
        (OUTPUT_DIR / "articles.json").write_text(json.dumps(articles, indent=2))
        print(f"  ✓ Got {len(articles)} articles", flush=True)

        # --- Images: dispatched as soon as each one is queued ---
        images = runbatch.BatchQueue(concurrency=4)
        done = asyncio.get_running_loop().create_future()

        @images.on_complete
        def images_done(paths):
            done.set_result(paths)

        @images.on_error
        def images_failed(error):
            done.set_exception(error)

        with_images = [a for a in articles if a.get("image_url")]
        for i, article in enumerate(with_images):
            ext = Path(article["image_url"].split("?")[0]).suffix or ".jpg"
            images.add_now(lambda url=article["image_url"], path=OUTPUT_DIR / f"image_{i}{ext}": (
                download(client, url, path)
            ))

        paths = await done if with_images else []
        print(f"  ✓ Downloaded {len(paths)} images", flush=True)

    # --- Report ---
    lines = ["# Space News Digest", ""]
    image_for = {article["id"]: path for article, path in zip(with_images, paths)}
    for article in articles:
        lines.append(f"## {article['title']}")
        if article["id"] in image_for:
            lines.append(f"![]({image_for[article['id']].name})")
        lines.append(article.get("summary", ""))
        lines.append(f"[Read more]({article['url']})")
        lines.append("")

    report = OUTPUT_DIR / "digest.md"
    report.write_text("\n".join(lines))
    print(f"Wrote {report}", flush=True)


def main():
    asyncio.run(run())


if __name__ == "__main__":
    main()
