"""HTTP endpoints serving rendered images and accepting device telemetry"""

import logging
import mimetypes
import os
from contextlib import asynccontextmanager
from datetime import datetime
from email.utils import formatdate
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, HTTPException, Query
from fastapi.responses import Response

from .battery import BatteryStore
from .config import Settings, TargetConfig
from .errors import PathTraversalError
from .scheduler import RenderScheduler

logger = logging.getLogger(__name__)

CONFIG_CACHE_SECONDS = 300


def parse_page_number(page: str, target_count: int) -> Optional[int]:
    """1-based target index from a URL segment, or None if it is not valid"""
    if not (page.isascii() and page.isdigit()):
        return None
    number = int(page)
    if number < 1 or number > target_count:
        return None
    return number


def resolve_config_path(root: Path, sub_path: str) -> Path:
    """
    Map a sub-path onto a file under root

    Raises:
        PathTraversalError: If the path could escape root
    """
    if '\\' in sub_path or '\x00' in sub_path:
        raise PathTraversalError(f"Invalid characters in path: {sub_path!r}")
    if sub_path.startswith('/') or os.path.isabs(sub_path):
        raise PathTraversalError(f"Absolute path not allowed: {sub_path!r}")
    if '..' in sub_path.split('/'):
        raise PathTraversalError(f"Parent directory segment not allowed: {sub_path!r}")

    root = root.resolve()
    candidate = (root / sub_path).resolve()
    if candidate != root and root not in candidate.parents:
        raise PathTraversalError(f"Path escapes config root: {sub_path!r}")
    return candidate


def read_artifact(target: TargetConfig):
    """Read an artifact and its modification time from the same open file"""
    with open(target.artifact_path, 'rb') as f:
        stat = os.fstat(f.fileno())
        return f.read(), stat.st_mtime


def create_app(
    settings: Settings,
    battery_store: Optional[BatteryStore] = None,
    scheduler: Optional[RenderScheduler] = None,
) -> FastAPI:
    """
    Build the FastAPI application

    The scheduler, if given, is started when the app starts (the first render
    completes before requests are served) and stopped on shutdown.
    """
    if battery_store is None:
        battery_store = BatteryStore()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if scheduler is not None:
            await scheduler.start()
        logger.info(f"hassInk server started with {len(settings.targets)} targets")
        try:
            yield
        finally:
            if scheduler is not None:
                await scheduler.stop()

    app = FastAPI(title="hassInk Server", lifespan=lifespan)
    app.state.settings = settings
    app.state.battery_store = battery_store
    app.state.scheduler = scheduler

    @app.get("/api/status")
    def get_status():
        """Artifact, battery and scheduler state for every target"""
        batteries = battery_store.snapshot()
        targets = []
        for target in settings.targets:
            path = target.artifact_path
            try:
                modified = datetime.fromtimestamp(path.stat().st_mtime).isoformat()
            except OSError:
                modified = None
            battery = batteries.get(target.index)
            targets.append({
                'index': target.index,
                'url': target.screenshot_url,
                'image': str(path),
                'last_modified': modified,
                'battery': battery.to_payload() if battery else None,
            })

        status = {
            'targets': targets,
            'rendering': scheduler.is_rendering if scheduler else False,
        }
        if scheduler is not None:
            status['cycles'] = scheduler.cycle_count
            status['skipped_cycles'] = scheduler.skipped_count
            status['last_cycle_finished'] = (
                scheduler.last_cycle_finished.isoformat() if scheduler.last_cycle_finished else None
            )
        return status

    @app.get("/config/{file_path:path}")
    def get_config_file(file_path: str):
        """Serve a file from the config root"""
        try:
            path = resolve_config_path(Path(settings.config_root), file_path)
        except PathTraversalError as e:
            logger.warning(f"Rejected config request: {e}")
            raise HTTPException(status_code=403, detail="Forbidden")

        try:
            data = path.read_bytes()
        except (FileNotFoundError, IsADirectoryError, NotADirectoryError):
            raise HTTPException(status_code=404, detail="File not found")
        except OSError as e:
            logger.error(f"Failed to read config file {path}: {e}")
            raise HTTPException(status_code=500, detail="Failed to read file")

        media_type = mimetypes.guess_type(path.name)[0] or 'application/octet-stream'
        return Response(
            content=data,
            media_type=media_type,
            headers={'Cache-Control': f'public, max-age={CONFIG_CACHE_SECONDS}'},
        )

    def serve_image(page: str, battery_level: Optional[str], is_charging: Optional[str]) -> Response:
        number = parse_page_number(page, len(settings.targets))
        if number is None:
            logger.info(f"Invalid request for page '{page}'")
            raise HTTPException(status_code=400, detail="Invalid request")

        target = settings.target(number)
        try:
            data, modified = read_artifact(target)
        except OSError:
            logger.warning(f"Image {number} not available at {target.artifact_path}")
            raise HTTPException(status_code=404, detail="Image not found")

        logger.info(f"Image {number} was accessed")
        battery_store.update(number, battery_level, is_charging)

        return Response(
            content=data,
            media_type=target.media_type,
            headers={'Last-Modified': formatdate(modified, usegmt=True)},
        )

    @app.get("/")
    def get_first_image(
        battery_level: Optional[str] = Query(default=None, alias="batteryLevel"),
        is_charging: Optional[str] = Query(default=None, alias="isCharging"),
    ):
        """Latest image for target 1"""
        return serve_image("1", battery_level, is_charging)

    @app.get("/{page}")
    def get_image(
        page: str,
        battery_level: Optional[str] = Query(default=None, alias="batteryLevel"),
        is_charging: Optional[str] = Query(default=None, alias="isCharging"),
    ):
        """Latest image for a target, reporting battery telemetry if given"""
        return serve_image(page, battery_level, is_charging)

    return app
