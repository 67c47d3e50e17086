import asyncio

import pytest
from unittest.mock import AsyncMock, MagicMock, patch
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeout

from contactcrawl.config import FetchTier
from contactcrawl.pipeline.fetchers.playwright import (
    BrowserHandle,
    BrowserLaunchError,
    FetchErrorKind,
    PlaywrightFetcher,
)
from contactcrawl.schemas import BrowserEngine


URL = "https://rink.org/coaches"


def make_page(status=200, html="<html><body>Coach</body></html>"):
    page = MagicMock()
    response = MagicMock()
    response.status = status
    page.goto = AsyncMock(return_value=response)
    page.content = AsyncMock(return_value=html)
    page.title = AsyncMock(return_value="Coaches")
    page.wait_for_load_state = AsyncMock()
    page.evaluate = AsyncMock()
    page.wait_for_timeout = AsyncMock()
    page.close = AsyncMock()
    page.url = URL
    return page, response


def make_stack(page):
    context = MagicMock()
    context.new_page = AsyncMock(return_value=page)
    context.route = AsyncMock()
    context.close = AsyncMock()

    browser = MagicMock()
    browser.new_context = AsyncMock(return_value=context)
    browser.close = AsyncMock()

    playwright = MagicMock()
    playwright.chromium.launch = AsyncMock(return_value=browser)
    playwright.firefox.launch = AsyncMock(return_value=browser)
    playwright.stop = AsyncMock()

    starter = MagicMock()
    starter.start = AsyncMock(return_value=playwright)
    return starter, playwright, browser, context


def run_fetch(mock_async_playwright, page, tier=FetchTier.FULL, timeout_ms=20000):
    starter, playwright, browser, context = make_stack(page)
    mock_async_playwright.return_value = starter

    async def go():
        handle = BrowserHandle()
        fetcher = PlaywrightFetcher(handle, tier=tier, backoff_s=0)
        await fetcher.open()
        try:
            return await fetcher.fetch(URL, timeout_ms)
        finally:
            await fetcher.close()
            await handle.close()

    return asyncio.run(go()), playwright, browser, context


@patch('contactcrawl.pipeline.fetchers.playwright.async_playwright')
def test_fetch_success(mock_async_playwright):
    page, _ = make_page()
    result, playwright, browser, context = run_fetch(mock_async_playwright, page)

    assert result.success is True
    assert result.status_code == 200
    assert result.html == "<html><body>Coach</body></html>"
    assert result.page_title == "Coaches"
    assert result.final_url == URL
    assert result.error is None
    assert result.attempts == 1
    page.goto.assert_awaited_once_with(URL, wait_until="load", timeout=20000)
    page.wait_for_load_state.assert_awaited_once_with("networkidle", timeout=5000)
    page.close.assert_awaited()
    context.route.assert_awaited_once()
    context.close.assert_awaited_once()
    browser.close.assert_awaited_once()
    playwright.stop.assert_awaited_once()


@patch('contactcrawl.pipeline.fetchers.playwright.async_playwright')
def test_fast_tier_skips_network_idle_wait(mock_async_playwright):
    page, _ = make_page()
    result, *_ = run_fetch(mock_async_playwright, page, tier=FetchTier.FAST, timeout_ms=10000)

    assert result.success is True
    page.goto.assert_awaited_once_with(URL, wait_until="domcontentloaded", timeout=10000)
    page.wait_for_load_state.assert_not_awaited()


@patch('contactcrawl.pipeline.fetchers.playwright.async_playwright')
def test_fast_tier_scrolls_when_few_emails(mock_async_playwright):
    page, _ = make_page()
    page.content.side_effect = [
        "<html><body>Coaches</body></html>",
        "<html><body>Coaches<footer>office@rink.org</footer></body></html>",
    ]
    result, *_ = run_fetch(mock_async_playwright, page, tier=FetchTier.FAST, timeout_ms=10000)

    assert result.success is True
    assert "office@rink.org" in result.html
    page.evaluate.assert_awaited_once_with("window.scrollBy(0, 2000)")
    page.wait_for_timeout.assert_awaited_once_with(500)


@patch('contactcrawl.pipeline.fetchers.playwright.async_playwright')
def test_fast_tier_no_scroll_when_enough_emails(mock_async_playwright):
    page, _ = make_page(html="<p>jane@rink.org</p><p>sam@rink.org</p>")
    result, *_ = run_fetch(mock_async_playwright, page, tier=FetchTier.FAST)

    assert result.success is True
    page.evaluate.assert_not_awaited()


@patch('contactcrawl.pipeline.fetchers.playwright.async_playwright')
def test_fast_tier_scroll_failure_keeps_first_dom(mock_async_playwright):
    page, _ = make_page()
    page.evaluate.side_effect = PlaywrightError("Execution context was destroyed")
    result, *_ = run_fetch(mock_async_playwright, page, tier=FetchTier.FAST)

    assert result.success is True
    assert result.html == "<html><body>Coach</body></html>"


@patch('contactcrawl.pipeline.fetchers.playwright.async_playwright')
def test_full_tier_does_not_scroll(mock_async_playwright):
    page, _ = make_page()
    run_fetch(mock_async_playwright, page)
    page.evaluate.assert_not_awaited()


@patch('contactcrawl.pipeline.fetchers.playwright.async_playwright')
def test_network_idle_timeout_is_not_a_failure(mock_async_playwright):
    page, _ = make_page()
    page.wait_for_load_state.side_effect = PlaywrightTimeout("Timeout 5000ms exceeded")
    result, *_ = run_fetch(mock_async_playwright, page)

    assert result.success is True
    assert result.html is not None


@patch('contactcrawl.pipeline.fetchers.playwright.async_playwright')
def test_timeout_retried_then_fails(mock_async_playwright):
    page, _ = make_page()
    page.goto.side_effect = PlaywrightTimeout("Timeout 20000ms exceeded")
    result, *_ = run_fetch(mock_async_playwright, page)

    assert result.success is False
    assert result.error_kind == FetchErrorKind.TIMEOUT
    assert result.attempts == 2
    assert page.goto.await_count == 2
    assert page.close.await_count == 2


@patch('contactcrawl.pipeline.fetchers.playwright.async_playwright')
def test_navigation_error_then_success(mock_async_playwright):
    page, response = make_page()
    page.goto.side_effect = [PlaywrightError("net::ERR_CONNECTION_RESET"), response]
    result, *_ = run_fetch(mock_async_playwright, page)

    assert result.success is True
    assert result.attempts == 2


@patch('contactcrawl.pipeline.fetchers.playwright.async_playwright')
def test_http_error_not_retried(mock_async_playwright):
    page, _ = make_page(status=404)
    result, *_ = run_fetch(mock_async_playwright, page)

    assert result.success is False
    assert result.status_code == 404
    assert result.error_kind == FetchErrorKind.HTTP_ERROR
    assert page.goto.await_count == 1
    page.content.assert_not_awaited()


@patch('contactcrawl.pipeline.fetchers.playwright.async_playwright')
def test_no_response(mock_async_playwright):
    page, _ = make_page()
    page.goto.return_value = None
    result, *_ = run_fetch(mock_async_playwright, page)

    assert result.success is False
    assert result.html is None
    assert result.error_kind == FetchErrorKind.NO_RESPONSE
    assert "No response received" in result.error


@patch('contactcrawl.pipeline.fetchers.playwright.async_playwright')
def test_launch_failure_raises(mock_async_playwright):
    page, _ = make_page()
    starter, playwright, _, _ = make_stack(page)
    playwright.chromium.launch.side_effect = Exception("Executable doesn't exist")
    mock_async_playwright.return_value = starter

    async def go():
        handle = BrowserHandle()
        fetcher = PlaywrightFetcher(handle)
        with pytest.raises(BrowserLaunchError):
            await fetcher.open()
        return handle

    handle = asyncio.run(go())
    assert handle.is_launched is False
    assert handle.ref_count == 0
    playwright.stop.assert_awaited_once()


@patch('contactcrawl.pipeline.fetchers.playwright.async_playwright')
def test_handle_shared_and_reference_counted(mock_async_playwright):
    page, _ = make_page()
    starter, playwright, browser, _ = make_stack(page)
    mock_async_playwright.return_value = starter

    async def go():
        handle = BrowserHandle(BrowserEngine.FIREFOX)
        a = PlaywrightFetcher(handle)
        b = PlaywrightFetcher(handle)
        await a.open()
        await b.open()
        counts = [handle.ref_count]
        await a.close()
        counts.append(handle.ref_count)
        await b.close()
        counts.append(handle.ref_count)
        closed_before_owner = browser.close.await_count
        await handle.close()
        return counts, closed_before_owner

    counts, closed_before_owner = asyncio.run(go())
    assert counts == [2, 1, 0]
    assert closed_before_owner == 0
    playwright.firefox.launch.assert_awaited_once_with(headless=True)
    browser.close.assert_awaited_once()


def test_fetch_before_open_raises():
    fetcher = PlaywrightFetcher(BrowserHandle())
    with pytest.raises(RuntimeError):
        asyncio.run(fetcher.fetch(URL, 1000))


@pytest.mark.parametrize("tier, resource_type, url, aborted", [
    (FetchTier.FULL, "image", "https://rink.org/logo.png", True),
    (FetchTier.FULL, "font", "https://fonts.example/a.woff2", True),
    (FetchTier.FULL, "script", "https://www.googletagmanager.com/gtm.js", True),
    (FetchTier.FULL, "stylesheet", "https://rink.org/site.css", False),
    (FetchTier.FAST, "stylesheet", "https://rink.org/site.css", True),
    (FetchTier.FULL, "document", "https://rink.org/coaches", False),
])
def test_route_blocking(tier, resource_type, url, aborted):
    route = MagicMock()
    route.request.resource_type = resource_type
    route.request.url = url
    route.abort = AsyncMock()
    route.continue_ = AsyncMock()

    fetcher = PlaywrightFetcher(BrowserHandle(), tier=tier)
    asyncio.run(fetcher._route_handler(route))

    if aborted:
        route.abort.assert_awaited_once()
        route.continue_.assert_not_awaited()
    else:
        route.continue_.assert_awaited_once()
        route.abort.assert_not_awaited()
