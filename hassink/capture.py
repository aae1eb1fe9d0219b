"""Capture of a single dashboard target with Playwright"""

import asyncio
import json
import logging
import time
from pathlib import Path

from playwright.async_api import (
    BrowserContext,
    Error as PlaywrightError,
    Page,
    TimeoutError as PlaywrightTimeoutError,
)

from .config import Settings, TargetConfig

logger = logging.getLogger(__name__)

PAGE_INFO_SCRIPT = """
(marker) => ({
    url: window.location.href,
    title: document.title,
    userAgent: navigator.userAgent,
    language: navigator.language,
    timezone: Intl.DateTimeFormat().resolvedOptions().timeZone,
    hasMarker: !!document.querySelector(marker),
    hasLovelace: !!document.querySelector('hui-view, hui-panel-view'),
    themeInfo: {
        selectedTheme: localStorage.getItem('selectedTheme'),
        hasTokens: !!localStorage.getItem('hassTokens')
    }
})
"""


def remaining_ms(deadline: float) -> int:
    """Milliseconds left until a time.monotonic() deadline, never less than 1"""
    return max(int((deadline - time.monotonic()) * 1000), 1)


def zoom_css(scaling: float) -> str:
    return f"""
        body {{
          zoom: {scaling * 100:g}%;
          overflow: hidden;
        }}"""


class CaptureSession:
    """
    Drives one browser tab per target: emulate, navigate, wait, screenshot

    capture() never raises; a False result means no screenshot was written.
    """

    def __init__(self, settings: Settings, context: BrowserContext):
        self.settings = settings
        self.context = context

    def _attach_debug_listeners(self, page: Page):
        page.on('console', lambda msg: logger.info(f"[BROWSER] {msg.type.upper()}: {msg.text}"))
        page.on('pageerror', lambda error: logger.error(f"[PAGE ERROR] {error}"))
        page.on('requestfailed', lambda request: logger.warning(f"[REQUEST FAILED] {request.url}: {request.failure}"))

    async def _log_page_info(self, page: Page):
        try:
            info = await page.evaluate(PAGE_INFO_SCRIPT, self.settings.marker_selector)
            logger.info(f"[DEBUG] Page info: {json.dumps(info, indent=2)}")
        except PlaywrightError as e:
            logger.warning(f"[DEBUG] Could not read page info: {e}")

    async def capture(self, target: TargetConfig, url: str, path: Path) -> bool:
        """
        Render a target's URL into a PNG screenshot at path

        Args:
            target: Target whose viewport, colour scheme, zoom and delay apply
            url: Fully qualified dashboard URL
            path: Where the raw screenshot is written

        Returns:
            True if the screenshot was written
        """
        timeout = self.settings.rendering_timeout
        width, height = target.viewport
        page = None

        try:
            page = await self.context.new_page()

            if self.settings.debug:
                self._attach_debug_listeners(page)
                logger.info(f"[DEBUG] Browser viewport will be: {width}x{height}")
                logger.info(f"[DEBUG] Timezone: {self.settings.timezone}, Language: {self.settings.language}")

            await page.emulate_media(color_scheme=target.prefers_color_scheme)
            await page.set_viewport_size({'width': width, 'height': height})

            # Navigation and both load waits share one timeout
            logger.info(f"Navigating to {url}...")
            deadline = time.monotonic() + timeout / 1000
            await page.goto(url, wait_until='domcontentloaded', timeout=remaining_ms(deadline))
            await page.wait_for_load_state('load', timeout=remaining_ms(deadline))
            await page.wait_for_load_state('networkidle', timeout=remaining_ms(deadline))

            logger.info(f"Waiting for {self.settings.marker_selector} element...")
            await page.wait_for_selector(self.settings.marker_selector, state='attached', timeout=timeout)

            if self.settings.debug:
                await self._log_page_info(page)

            await page.add_style_tag(content=zoom_css(target.scaling))

            if target.rendering_delay > 0:
                logger.info(f"Waiting {target.rendering_delay}ms before screenshot...")
                await asyncio.sleep(target.rendering_delay / 1000)

            logger.info("Taking screenshot...")
            await page.screenshot(
                path=str(path),
                type='png',
                clip={'x': 0, 'y': 0, 'width': width, 'height': height},
            )

            logger.info(f"Successfully rendered screenshot for {url}")
            return True

        except PlaywrightTimeoutError as e:
            logger.error(f"Timed out rendering {url}: {e}")
            return False
        except Exception as e:
            logger.error(f"Failed to render {url}: {e}")
            return False
        finally:
            # Pages stay open in debug mode for inspection
            if page is not None and not self.settings.debug:
                try:
                    await page.close()
                except PlaywrightError as e:
                    logger.warning(f"Failed to close page for {url}: {e}")
