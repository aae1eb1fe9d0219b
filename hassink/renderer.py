"""Render cycles: capture and convert every configured target in order"""

import asyncio
import logging
import time
from pathlib import Path
from typing import Awaitable, Callable, Dict, Optional

from .battery import BatteryStore
from .browser import BrowserSession
from .capture import CaptureSession
from .config import Settings, TargetConfig
from .errors import ConversionError
from .image_processor import convert_file
from .webhook import BackgroundTasks, relay_battery_state

logger = logging.getLogger(__name__)

TEARDOWN_PAUSE = 1.0  # seconds for the OS to reclaim browser resources


class Renderer:
    """
    Runs render cycles over all targets

    Targets are processed strictly in order, one at a time, sharing a single
    browser. A failing target keeps its previous image and the cycle moves on.
    """

    def __init__(
        self,
        settings: Settings,
        battery_store: BatteryStore,
        tasks: Optional[BackgroundTasks] = None,
        session_factory: Callable[[Settings], Awaitable[BrowserSession]] = BrowserSession.launch,
        capture_factory=CaptureSession,
        teardown_pause: float = TEARDOWN_PAUSE,
    ):
        self.settings = settings
        self.battery_store = battery_store
        self.tasks = tasks if tasks is not None else BackgroundTasks()
        self.session_factory = session_factory
        self.capture_factory = capture_factory
        self.teardown_pause = teardown_pause
        self.last_render_duration: Dict[int, float] = {}

    async def open_session(self) -> BrowserSession:
        """Launch a browser and authenticate it; the caller owns the result"""
        session = await self.session_factory(self.settings)
        try:
            await session.authenticate()
        except BaseException:
            await session.close()
            raise
        return session

    async def render_cycle(self, session: Optional[BrowserSession] = None) -> Dict[int, bool]:
        """
        Render every target once

        Args:
            session: A long-lived authenticated browser to reuse. When omitted
                a browser is launched for this cycle and torn down afterwards.

        Returns:
            Mapping of target index to whether its image was updated
        """
        owns_session = session is None
        if owns_session:
            try:
                session = await self.open_session()
            except Exception as e:
                logger.error(f"Failed to start browser for render cycle: {e}")
                return {}

        results = {}
        try:
            for target in self.settings.targets:
                results[target.index] = await self.render_target(session, target)
        finally:
            if owns_session:
                await session.close()
                await asyncio.sleep(self.teardown_pause)

        return results

    async def render_target(self, session: BrowserSession, target: TargetConfig) -> bool:
        """Capture, convert and relay telemetry for one target"""
        url = self.settings.url_for(target)
        artifact_path = target.artifact_path
        temp_path = target.temp_path
        start_time = time.time()

        try:
            artifact_path.parent.mkdir(parents=True, exist_ok=True)

            logger.info(f"Rendering {url} to image...")
            capture = self.capture_factory(self.settings, session.context)
            captured = await capture.capture(target, url, temp_path)
            if not captured or not temp_path.exists():
                logger.error(f"No screenshot produced for {url}, keeping previous image")
                return False

            logger.info(f"Converting rendered screenshot of {url}...")
            await asyncio.to_thread(convert_file, temp_path, artifact_path, target)

        except (ConversionError, OSError) as e:
            logger.error(f"Failed to convert {url}: {e}")
            return False
        finally:
            self._remove_temp(temp_path)

        duration = time.time() - start_time
        self.last_render_duration[target.index] = duration
        logger.info(f"Finished {url} in {duration:.2f}s")

        self.relay_battery(target)
        return True

    def relay_battery(self, target: TargetConfig) -> bool:
        """Send the device's battery state to Home Assistant without waiting"""
        if not target.battery_webhook or not self.battery_store.has_level(target.index):
            return False

        relay_battery_state(
            self.tasks,
            self.settings.base_url,
            target.battery_webhook,
            target.index,
            self.battery_store.get(target.index),
            verify_ssl=not self.settings.ignore_certificate_errors,
        )
        return True

    @staticmethod
    def _remove_temp(path: Path):
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Failed to remove temporary file {path}: {e}")
