"""Browser process lifecycle and Home Assistant session bootstrapping"""

import asyncio
import json
import logging
from typing import Optional, Set

import psutil
from playwright.async_api import (
    Browser,
    BrowserContext,
    Error as PlaywrightError,
    Page,
    Playwright,
    TimeoutError as PlaywrightTimeoutError,
    async_playwright,
)

from .config import Settings
from .retry import retry_async

logger = logging.getLogger(__name__)

AUTH_ATTEMPTS = 3
CLOSE_TIMEOUT = 10  # seconds

STORE_SESSION_SCRIPT = """
([hassTokens, selectedLanguage, selectedTheme]) => {
    localStorage.setItem("hassTokens", hassTokens);
    localStorage.setItem("selectedLanguage", selectedLanguage);
    localStorage.setItem("selectedTheme", selectedTheme);
}
"""


def _browser_processes() -> Set[int]:
    """PIDs of Chromium processes descended from this process"""
    try:
        children = psutil.Process().children(recursive=True)
    except psutil.Error as e:
        logger.debug(f"[BROWSER] Could not list child processes: {e}")
        return set()

    pids = set()
    for child in children:
        try:
            name = child.name().lower()
        except psutil.Error:
            continue
        if 'chrom' in name or 'headless_shell' in name:
            pids.add(child.pid)
    return pids


def _kill_processes(pids: Set[int]):
    for pid in pids:
        try:
            process = psutil.Process(pid)
            if process.status() == psutil.STATUS_ZOMBIE:
                continue
            logger.warning(f"[BROWSER] Killing lingering browser process {pid}")
            process.kill()
        except psutil.NoSuchProcess:
            continue
        except psutil.Error as e:
            logger.error(f"[BROWSER] Failed to kill browser process {pid}: {e}")


class BrowserSession:
    """
    One Chromium process plus the browser context every capture shares

    Local storage lives in the context, so the session tokens written by
    authenticate() are visible to every page opened afterwards.
    """

    def __init__(self, settings: Settings):
        self.settings = settings
        self.playwright: Optional[Playwright] = None
        self.browser: Optional[Browser] = None
        self.context: Optional[BrowserContext] = None
        self.authenticated = False
        self._pids: Set[int] = set()

    @classmethod
    async def launch(cls, settings: Settings) -> 'BrowserSession':
        session = cls(settings)
        await session.start()
        return session

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    def launch_args(self):
        args = [
            '--disable-dev-shm-usage',
            '--no-sandbox',
            f'--lang={self.settings.language}',
        ]
        if self.settings.ignore_certificate_errors:
            args.append('--ignore-certificate-errors')
        return args

    async def start(self):
        """Start Playwright, launch Chromium and open the shared context"""
        logger.info("Starting browser...")
        existing = _browser_processes()
        self.playwright = await async_playwright().start()

        try:
            self.browser = await self.playwright.chromium.launch(
                headless=not self.settings.debug,
                args=self.launch_args(),
                timeout=self.settings.browser_launch_timeout,
            )
            self.context = await self.browser.new_context(
                ignore_https_errors=self.settings.ignore_certificate_errors,
                locale=self.settings.language,
                timezone_id=self.settings.timezone,
                device_scale_factor=1.0,
            )
        except Exception as e:
            error_msg = str(e)
            if "Executable doesn't exist" in error_msg:
                logger.error("Playwright browser not installed. Please run: playwright install chromium")
            await self.close()
            raise

        self._pids = _browser_processes() - existing

    async def new_page(self) -> Page:
        return await self.context.new_page()

    async def authenticate(self):
        """
        Write the access token, language and theme into local storage

        Home Assistant may redirect on the client right after the first load,
        which destroys the execution context mid-write; the write is retried
        after the page settles.
        """
        credentials = self.settings.credentials
        timeout = self.settings.rendering_timeout

        logger.info(f"Visiting '{credentials.base_url}' to login...")
        page = await self.new_page()

        try:
            await page.goto(credentials.base_url, timeout=timeout)

            hass_tokens = {
                'hassUrl': credentials.base_url,
                'access_token': credentials.access_token,
                'token_type': 'Bearer',
            }
            arguments = [
                json.dumps(hass_tokens),
                json.dumps(credentials.language),
                json.dumps(credentials.theme),
            ]

            async def write_session():
                await page.evaluate(STORE_SESSION_SCRIPT, arguments)

            async def wait_for_settle(attempt: int, error: BaseException):
                try:
                    await page.wait_for_load_state('networkidle', timeout=timeout)
                except PlaywrightTimeoutError:
                    logger.warning("Page did not settle before retrying authentication")

            logger.info("Adding authentication entry to browser's local storage...")
            await retry_async(
                write_session,
                attempts=AUTH_ATTEMPTS,
                retry_on=(PlaywrightError,),
                before_retry=wait_for_settle,
                description="Writing authentication entry",
            )
            self.authenticated = True

        finally:
            await page.close()

    async def close(self):
        """
        Close the browser and stop Playwright

        Chromium processes still alive afterwards are killed so each render
        cycle leaves no browser behind.
        """
        if self.browser is not None:
            try:
                await asyncio.wait_for(self.browser.close(), timeout=CLOSE_TIMEOUT)
            except (PlaywrightError, asyncio.TimeoutError) as e:
                logger.error(f"[BROWSER] Failed to close browser cleanly: {e}")
            self.browser = None
            self.context = None

        if self.playwright is not None:
            try:
                await asyncio.wait_for(self.playwright.stop(), timeout=CLOSE_TIMEOUT)
            except (PlaywrightError, asyncio.TimeoutError) as e:
                logger.error(f"[BROWSER] Failed to stop Playwright: {e}")
            self.playwright = None

        _kill_processes(self._pids)
        self._pids = set()
        self.authenticated = False
