"""Relay of device battery state to Home Assistant webhooks"""

import asyncio
import logging
from typing import Awaitable, Optional, Set

import aiohttp

from .battery import BatteryState

logger = logging.getLogger(__name__)

WEBHOOK_TIMEOUT = 10  # seconds


class BackgroundTasks:
    """Holds references to fire-and-forget tasks until they finish"""

    def __init__(self):
        self._tasks: Set[asyncio.Task] = set()

    def spawn(self, coro: Awaitable, name: Optional[str] = None) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        if name:
            task.set_name(name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def __len__(self) -> int:
        return len(self._tasks)

    async def drain(self, timeout: float = 5.0):
        """Wait for outstanding tasks at shutdown, cancelling stragglers"""
        if not self._tasks:
            return
        done, pending = await asyncio.wait(set(self._tasks), timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)


def webhook_url(base_url: str, webhook_id: str) -> str:
    return f"{base_url.rstrip('/')}/api/webhook/{webhook_id}"


async def post_battery_state(
    base_url: str,
    webhook_id: str,
    index: int,
    state: BatteryState,
    verify_ssl: bool = True,
) -> bool:
    """
    POST the battery state of one target to its webhook

    Never raises; failures are logged.

    Returns:
        True if Home Assistant accepted the update
    """
    url = webhook_url(base_url, webhook_id)
    payload = state.to_payload()

    try:
        timeout = aiohttp.ClientTimeout(total=WEBHOOK_TIMEOUT)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.post(
                url,
                json=payload,
                headers={'Content-Type': 'application/json'},
                ssl=verify_ssl,
            ) as response:
                if response.status < 200 or response.status >= 300:
                    logger.error(
                        f"[WEBHOOK] Update device {index} at {url} status {response.status}: {response.reason}"
                    )
                    return False
                logger.debug(f"[WEBHOOK] Sent {payload} for device {index}")
                return True

    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
        logger.error(f"[WEBHOOK] Update device {index} at {url} error: {e}")
        return False


def relay_battery_state(
    tasks: BackgroundTasks,
    base_url: str,
    webhook_id: str,
    index: int,
    state: BatteryState,
    verify_ssl: bool = True,
) -> asyncio.Task:
    """Start the webhook POST in the background and return without waiting"""
    return tasks.spawn(
        post_battery_state(base_url, webhook_id, index, state, verify_ssl),
        name=f"battery-webhook-{index}",
    )
