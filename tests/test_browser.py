"""Tests for the browser session."""

import json
from unittest.mock import AsyncMock, Mock, patch

import pytest
from playwright.async_api import Error as PlaywrightError

from hassink.browser import BrowserSession


@pytest.fixture
def page():
    page = AsyncMock()
    return page


@pytest.fixture
def session(make_settings, make_target, page):
    settings = make_settings([make_target(1)], language="de", theme="eink")
    session = BrowserSession(settings)
    session.context = Mock()
    session.context.new_page = AsyncMock(return_value=page)
    return session


class TestAuthenticate:
    @pytest.mark.asyncio
    async def test_writes_session_to_local_storage(self, session, page):
        await session.authenticate()

        page.goto.assert_awaited_once()
        assert page.goto.await_args.args[0] == "http://hass.local:8123"
        script, arguments = page.evaluate.await_args.args
        assert "localStorage.setItem" in script
        tokens = json.loads(arguments[0])
        assert tokens == {
            'hassUrl': "http://hass.local:8123",
            'access_token': "secret-token",
            'token_type': "Bearer",
        }
        assert json.loads(arguments[1]) == "de"
        assert json.loads(arguments[2]) == "eink"
        assert session.authenticated is True
        page.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_retries_after_context_destroyed(self, session, page):
        page.evaluate.side_effect = [PlaywrightError("Execution context was destroyed"), None]

        await session.authenticate()

        assert page.evaluate.await_count == 2
        page.wait_for_load_state.assert_awaited_once()
        assert page.wait_for_load_state.await_args.args[0] == 'networkidle'
        assert session.authenticated is True

    @pytest.mark.asyncio
    async def test_gives_up_after_three_attempts(self, session, page):
        page.evaluate.side_effect = PlaywrightError("Execution context was destroyed")

        with pytest.raises(PlaywrightError):
            await session.authenticate()

        assert page.evaluate.await_count == 3
        assert session.authenticated is False
        page.close.assert_awaited_once()


class TestLaunchArgs:
    def test_default_args(self, make_settings, make_target):
        session = BrowserSession(make_settings([make_target(1)], language="fr"))
        assert session.launch_args() == ['--disable-dev-shm-usage', '--no-sandbox', '--lang=fr']

    def test_ignoring_certificates(self, make_settings, make_target):
        session = BrowserSession(make_settings([make_target(1)], ignore_certificate_errors=True))
        assert '--ignore-certificate-errors' in session.launch_args()


class TestClose:
    @pytest.mark.asyncio
    async def test_close_tolerates_errors(self, session):
        browser = AsyncMock()
        browser.close.side_effect = PlaywrightError("already closed")
        playwright = AsyncMock()
        session.browser = browser
        session.playwright = playwright
        session.authenticated = True
        session._pids = {1234}

        with patch('hassink.browser._kill_processes') as kill:
            await session.close()

        browser.close.assert_awaited_once()
        playwright.stop.assert_awaited_once()
        kill.assert_called_once_with({1234})
        assert session.browser is None
        assert session.context is None
        assert session.authenticated is False

    @pytest.mark.asyncio
    async def test_context_manager_closes(self, session):
        with patch.object(session, 'close', AsyncMock()) as close:
            async with session:
                pass

        close.assert_awaited_once()
