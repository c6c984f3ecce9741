"""Tests for the connection, tab and session manager."""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from chrome_render.connection import ConnectedBrowser, ConnectionManager, Endpoint, Tab
from chrome_render.errors import ConnectionLostError, GenerationTimeoutError, TargetCrashedError
from chrome_render.generation_state import GenerationState


def make_tab() -> Tab:
    page = MagicMock()
    page.close = AsyncMock()
    context = MagicMock()
    context.close = AsyncMock()
    return Tab(context=context, page=page)


def lost_state(error: Exception) -> GenerationState:
    state = GenerationState()
    state.fail(error)
    return state


def test_endpoint_defaults():
    assert Endpoint.of(None, None).url == "http://localhost:9222"
    assert Endpoint.of("chrome", None).url == "http://chrome:9222"
    assert Endpoint.of(None, 9333).url == "http://localhost:9333"


@pytest.mark.asyncio
async def test_connect_over_cdp():
    browser = MagicMock()
    browser.version = "131.0.6778.69"
    playwright = MagicMock()
    playwright.chromium.connect_over_cdp = AsyncMock(return_value=browser)
    playwright.stop = AsyncMock()

    with patch("chrome_render.browser_launcher.async_playwright") as async_playwright:
        async_playwright.return_value.start = AsyncMock(return_value=playwright)
        connected = await ConnectionManager().connect(Endpoint("chrome", 9333))

    playwright.chromium.connect_over_cdp.assert_awaited_once_with("http://chrome:9333")
    assert connected.browser is browser


@pytest.mark.asyncio
async def test_failed_connect_stops_driver():
    playwright = MagicMock()
    playwright.chromium.connect_over_cdp = AsyncMock(side_effect=ConnectionRefusedError("refused"))
    playwright.stop = AsyncMock()

    with patch("chrome_render.browser_launcher.async_playwright") as async_playwright:
        async_playwright.return_value.start = AsyncMock(return_value=playwright)
        with pytest.raises(ConnectionRefusedError):
            await ConnectionManager().connect(Endpoint())

    playwright.stop.assert_awaited_once()


@pytest.mark.asyncio
async def test_cancelled_connect_stops_driver():
    playwright = MagicMock()
    playwright.chromium.connect_over_cdp = AsyncMock(side_effect=asyncio.CancelledError())
    playwright.stop = AsyncMock()

    with patch("chrome_render.browser_launcher.async_playwright") as async_playwright:
        async_playwright.return_value.start = AsyncMock(return_value=playwright)
        with pytest.raises(asyncio.CancelledError):
            await ConnectionManager().connect(Endpoint())

    playwright.stop.assert_awaited_once()


@pytest.mark.asyncio
async def test_disconnect_is_idempotent_and_never_raises():
    browser = MagicMock()
    browser.close = AsyncMock(side_effect=Exception("already gone"))
    playwright = MagicMock()
    playwright.stop = AsyncMock()
    connected = ConnectedBrowser(playwright, browser, Endpoint())

    await connected.disconnect()
    await connected.disconnect()

    browser.close.assert_awaited_once()
    playwright.stop.assert_awaited_once()


@pytest.mark.asyncio
async def test_open_tab_uses_fresh_context():
    page = MagicMock()
    context = MagicMock()
    context.new_page = AsyncMock(return_value=page)
    browser = MagicMock()
    browser.new_context = AsyncMock(return_value=context)

    tab = await ConnectionManager().open_tab(browser)

    assert tab.context is context
    assert tab.page is page
    assert not tab.closed


@pytest.mark.asyncio
async def test_open_tab_failure_closes_context():
    context = MagicMock()
    context.new_page = AsyncMock(side_effect=RuntimeError("no page"))
    context.close = AsyncMock()
    browser = MagicMock()
    browser.new_context = AsyncMock(return_value=context)

    with pytest.raises(RuntimeError):
        await ConnectionManager().open_tab(browser)

    context.close.assert_awaited_once()


@pytest.mark.asyncio
async def test_open_session_binds_to_tab():
    tab = make_tab()
    session = MagicMock()
    tab.context.new_cdp_session = AsyncMock(return_value=session)

    assert await ConnectionManager().open_session(tab) is session
    tab.context.new_cdp_session.assert_awaited_once_with(tab.page)


@pytest.mark.asyncio
async def test_close_tab_is_idempotent():
    tab = make_tab()
    manager = ConnectionManager()

    await manager.close_tab(tab, GenerationState())
    await manager.close_tab(tab, GenerationState())

    tab.page.close.assert_awaited_once()
    tab.context.close.assert_awaited_once()
    assert tab.closed


@pytest.mark.asyncio
async def test_close_tab_skipped_after_connection_lost():
    tab = make_tab()

    await ConnectionManager().close_tab(tab, lost_state(ConnectionLostError()))

    tab.page.close.assert_not_awaited()
    tab.context.close.assert_not_awaited()


@pytest.mark.asyncio
async def test_close_tab_after_crash_still_closes_context():
    tab = make_tab()
    tab.page.close = AsyncMock(side_effect=Exception("Target crashed"))

    await ConnectionManager().close_tab(tab, lost_state(TargetCrashedError()))

    tab.context.close.assert_awaited_once()


@pytest.mark.asyncio
async def test_close_tab_after_timeout_closes_everything():
    tab = make_tab()

    await ConnectionManager().close_tab(tab, lost_state(GenerationTimeoutError()))

    tab.page.close.assert_awaited_once()


@pytest.mark.asyncio
async def test_close_tab_without_tab():
    await ConnectionManager().close_tab(None, GenerationState())


@pytest.mark.asyncio
async def test_close_session_detaches():
    session = MagicMock()
    session.detach = AsyncMock(side_effect=Exception("Target closed"))

    await ConnectionManager().close_session(session, GenerationState())

    session.detach.assert_awaited_once()


@pytest.mark.asyncio
async def test_close_session_skipped_after_connection_lost():
    session = MagicMock()
    session.detach = AsyncMock()

    await ConnectionManager().close_session(session, lost_state(ConnectionLostError()))
    await ConnectionManager().close_session(None, GenerationState())

    session.detach.assert_not_awaited()


@pytest.mark.asyncio
async def test_cancel_during_driver_start_stops_driver_before_connecting():
    playwright = MagicMock()
    playwright.chromium.connect_over_cdp = AsyncMock()
    playwright.stop = AsyncMock()
    started = asyncio.Event()
    release = asyncio.Event()

    async def start() -> MagicMock:
        started.set()
        await release.wait()
        return playwright

    with patch("chrome_render.browser_launcher.async_playwright") as async_playwright:
        async_playwright.return_value.start = AsyncMock(side_effect=start)
        connect = asyncio.ensure_future(ConnectionManager().connect(Endpoint()))
        await started.wait()
        connect.cancel()
        await asyncio.sleep(0)
        release.set()
        with pytest.raises(asyncio.CancelledError):
            await connect

    playwright.stop.assert_awaited_once()
    playwright.chromium.connect_over_cdp.assert_not_awaited()
