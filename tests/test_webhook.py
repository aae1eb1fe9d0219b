"""Tests for the battery webhook relay."""

import asyncio

import pytest
import pytest_asyncio
from aiohttp import web

from hassink.battery import BatteryState
from hassink.webhook import BackgroundTasks, post_battery_state, relay_battery_state, webhook_url


@pytest_asyncio.fixture
async def webhook_server():
    """Local Home Assistant stand-in recording webhook payloads."""
    received = []
    responses = {'status': 200}

    async def handle(request):
        received.append((request.match_info['webhook_id'], await request.json()))
        return web.Response(status=responses['status'])

    app = web.Application()
    app.router.add_post('/api/webhook/{webhook_id}', handle)
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, '127.0.0.1', 0)
    await site.start()
    port = runner.addresses[0][1]

    yield f"http://127.0.0.1:{port}", received, responses

    await runner.cleanup()


class TestPostBatteryState:
    @pytest.mark.asyncio
    async def test_posts_payload(self, webhook_server):
        base_url, received, _ = webhook_server

        ok = await post_battery_state(base_url, "kindle", 1, BatteryState(42, True))

        assert ok is True
        assert received == [("kindle", {'batteryLevel': 42, 'isCharging': True})]

    @pytest.mark.asyncio
    async def test_error_status_is_reported(self, webhook_server, caplog):
        base_url, received, responses = webhook_server
        responses['status'] = 500

        ok = await post_battery_state(base_url, "kindle", 2, BatteryState(42, False))

        assert ok is False
        assert "[WEBHOOK] Update device 2" in caplog.text

    @pytest.mark.asyncio
    async def test_connection_failure_does_not_raise(self, unused_tcp_port):
        ok = await post_battery_state(f"http://127.0.0.1:{unused_tcp_port}", "kindle", 1, BatteryState(42))
        assert ok is False

    def test_webhook_url(self):
        assert webhook_url("http://hass:8123/", "abc") == "http://hass:8123/api/webhook/abc"


class TestBackgroundTasks:
    @pytest.mark.asyncio
    async def test_relay_runs_in_background(self, webhook_server):
        base_url, received, _ = webhook_server
        tasks = BackgroundTasks()

        task = relay_battery_state(tasks, base_url, "kindle", 3, BatteryState(10, False))

        assert len(tasks) == 1
        assert await task is True
        assert len(tasks) == 0
        assert received == [("kindle", {'batteryLevel': 10, 'isCharging': False})]

    @pytest.mark.asyncio
    async def test_drain_cancels_stragglers(self):
        tasks = BackgroundTasks()
        task = tasks.spawn(asyncio.sleep(60), name="slow")

        await tasks.drain(timeout=0.01)

        assert task.cancelled()

    @pytest.mark.asyncio
    async def test_drain_waits_for_quick_tasks(self):
        tasks = BackgroundTasks()
        task = tasks.spawn(asyncio.sleep(0, result="done"))

        await tasks.drain()

        assert task.result() == "done"
        assert len(tasks) == 0
