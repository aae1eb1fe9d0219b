"""Service entry point: load configuration, wire components, serve"""

import logging

import uvicorn

from .battery import BatteryStore
from .config import load_settings
from .errors import ConfigError
from .renderer import Renderer
from .scheduler import RenderScheduler
from .server import create_app
from .webhook import BackgroundTasks

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

logger = logging.getLogger(__name__)


def configure_logging(level: str = "INFO"):
    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)
    logging.getLogger().setLevel(getattr(logging, level.upper(), logging.INFO))


def build_app(settings):
    """Wire the shared battery store and background tasks into renderer and server"""
    battery_store = BatteryStore()
    renderer = Renderer(settings, battery_store, BackgroundTasks())
    scheduler = RenderScheduler(settings, renderer)
    return create_app(settings, battery_store, scheduler)


def main() -> int:
    configure_logging()

    try:
        settings = load_settings()
    except ConfigError as e:
        logger.error(f"Please check your configuration: {e}")
        return 1

    configure_logging(settings.log_level)
    logger.info(f"Log level set to {settings.log_level}")

    app = build_app(settings)
    uvicorn.run(app, host="0.0.0.0", port=settings.port, log_level="info")
    return 0
