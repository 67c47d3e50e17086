import asyncio
import os
import threading
from functools import partial
from http.server import SimpleHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path

import pytest

from contactcrawl.pipeline.orchestrator import ContactCrawler, CrawlState
from contactcrawl.schemas import CrawlRequest

skip_live = pytest.mark.skipif(
    os.getenv("CCC_RUN_PW_TESTS", "0") != "1",
    reason="Set CCC_RUN_PW_TESTS=1 to run live Playwright crawl tests"
)


SITE = {
    "index.html": (
        "<html><body><h1>Riverside Skating Club</h1>"
        '<a href="/gallery.html">Gallery</a>'
        '<a href="/coaches.html">Our Coaches</a>'
        "<p>General questions: info@riverside-skating.org</p></body></html>"
    ),
    "coaches.html": (
        "<html><body><p>Jane Doe - Head Coach<br>jane.doe@riverside-skating.org</p>"
        "<script>document.body.insertAdjacentHTML('beforeend',"
        " '<p>Sam Lee - Assistant Coach<br>sam.lee@riverside-skating.org</p>');</script>"
        "</body></html>"
    ),
    "gallery.html": "<html><body><img src='/logo@2x.png'></body></html>",
}


@pytest.fixture
def local_site(tmp_path: Path):
    for name, html in SITE.items():
        (tmp_path / name).write_text(html, encoding="utf-8")
    handler = partial(SimpleHTTPRequestHandler, directory=str(tmp_path))
    server = ThreadingHTTPServer(("127.0.0.1", 0), handler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        yield f"http://127.0.0.1:{server.server_address[1]}/index.html"
    finally:
        server.shutdown()


@skip_live
def test_live_crawl_renders_and_prioritizes(local_site):
    async def go():
        async with ContactCrawler() as crawler:
            return await crawler.scrape(CrawlRequest(seed_url=local_site, mode="standard"))

    result = asyncio.run(go())
    emails = {c.email: c for c in result.contacts}

    assert result.state == CrawlState.SUCCEEDED
    assert "info@riverside-skating.org" in emails
    assert emails["jane.doe@riverside-skating.org"].name == "Jane Doe"
    assert emails["jane.doe@riverside-skating.org"].title == "Head Coach"
    assert "sam.lee@riverside-skating.org" in emails
