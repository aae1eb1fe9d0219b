"""Cron driven scheduling of render cycles"""

import asyncio
import logging
import time
from datetime import datetime
from typing import Optional

from croniter import croniter

from .browser import BrowserSession
from .config import Settings
from .renderer import Renderer

logger = logging.getLogger(__name__)


class RenderScheduler:
    """
    Decides when render cycles run

    Daemon mode renders once at startup and then on every cron firing, each
    cycle with its own browser. Debug mode renders once in a headed browser
    that stays open afterwards. A firing that arrives while a cycle is still
    running is skipped.
    """

    def __init__(self, settings: Settings, renderer: Renderer):
        self.settings = settings
        self.renderer = renderer
        self.tasks = renderer.tasks
        self.cycle_count = 0
        self.skipped_count = 0
        self.last_cycle_finished: Optional[datetime] = None
        self._lock = asyncio.Lock()
        self._cron_task: Optional[asyncio.Task] = None
        self._debug_session: Optional[BrowserSession] = None

    @property
    def is_rendering(self) -> bool:
        return self._lock.locked()

    async def run_cycle(self, session: Optional[BrowserSession] = None) -> bool:
        """Run one render cycle unless one is already in flight"""
        if self._lock.locked():
            self.skipped_count += 1
            logger.warning("[CRON] Previous render cycle still running, skipping this one")
            return False

        async with self._lock:
            self.cycle_count += 1
            start_time = time.time()
            try:
                results = await self.renderer.render_cycle(session)
            except Exception as e:
                logger.error(f"Render cycle {self.cycle_count} failed: {e}", exc_info=True)
                return False

            self.last_cycle_finished = datetime.now()
            succeeded = sum(1 for ok in results.values() if ok)
            logger.info(
                f"Render cycle {self.cycle_count} finished in {time.time() - start_time:.2f}s "
                f"({succeeded}/{len(self.settings.targets)} targets updated)"
            )
            return True

    async def start(self):
        if self.settings.debug:
            logger.info("Debug mode active, will only render once in non-headless mode and keep pages open")
            self._debug_session = await self.renderer.open_session()
            self.tasks.spawn(self.run_cycle(self._debug_session), name="debug-render")
            return

        logger.info("Starting first render...")
        await self.run_cycle()

        logger.info(f"Starting rendering cronjob ({self.settings.cron_job})...")
        self._cron_task = asyncio.create_task(self._cron_loop(), name="render-cron")

    async def _cron_loop(self):
        schedule = croniter(self.settings.cron_job, datetime.now())
        while True:
            next_run = schedule.get_next(datetime)
            delay = (next_run - datetime.now()).total_seconds()
            if delay < 0:
                # Fell behind (e.g. after a suspend); resume from now
                schedule = croniter(self.settings.cron_job, datetime.now())
                continue

            logger.debug(f"[CRON] Next render at {next_run}")
            await asyncio.sleep(delay)
            self.tasks.spawn(self.run_cycle(), name="render-cycle")

    async def stop(self):
        if self._cron_task is not None:
            self._cron_task.cancel()
            await asyncio.gather(self._cron_task, return_exceptions=True)
            self._cron_task = None

        await self.tasks.drain()

        if self._debug_session is not None:
            await self._debug_session.close()
            self._debug_session = None
