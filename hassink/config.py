"""
Configuration for hassInk

Settings come from environment-style key/value pairs. Keys ending in a numeric
suffix (``_2``, ``_3``, ...) configure additional targets; any value a
suffixed target does not set falls back to the unsuffixed key. An optional
flat YAML file with the same keys supplies values the environment does not.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

import yaml
from croniter import croniter

from .errors import ConfigError

logger = logging.getLogger(__name__)

# Constants
CONFIG_FILE = "config.yaml"
DEFAULT_CRON_JOB = "* * * * *"
DEFAULT_PORT = 5000
DEFAULT_RENDERING_TIMEOUT = 10000  # milliseconds
DEFAULT_BROWSER_LAUNCH_TIMEOUT = 30000  # milliseconds
DEFAULT_MARKER_SELECTOR = "home-assistant"
COLOR_SCHEMES = ("light", "dark", "no-preference")

_TRUE_VALUES = ("true", "1", "yes", "on")
_FALSE_VALUES = ("false", "0", "no", "off")


@dataclass(frozen=True)
class TargetConfig:
    """One configured dashboard view, identified by its 1-based index"""

    index: int
    screenshot_url: str
    output_path: str
    image_format: str = "png"
    rendering_delay: int = 0  # milliseconds
    width: int = 600
    height: int = 800
    grayscale_depth: int = 8
    remove_gamma: bool = False
    black_level: str = "0%"
    white_level: str = "100%"
    dither: bool = False
    color_mode: str = "GrayScale"
    prefers_color_scheme: str = "light"
    rotation: int = 0
    scaling: float = 1.0
    battery_webhook: Optional[str] = None
    saturation: float = 1.0
    contrast: float = 1.0

    @property
    def artifact_path(self) -> Path:
        """Final image file served to devices"""
        return Path(f"{self.output_path}.{self.image_format}")

    @property
    def temp_path(self) -> Path:
        """Raw screenshot written by the browser before conversion"""
        return Path(f"{self.artifact_path}.temp")

    @property
    def media_type(self) -> str:
        """Content type sent to devices, built from the format name as configured"""
        return f"image/{self.image_format}"

    @property
    def is_grayscale(self) -> bool:
        return self.color_mode.lower() == "grayscale"

    @property
    def viewport(self) -> Tuple[int, int]:
        """Capture size; width and height swap when the rotation is a quarter turn"""
        if self.rotation % 180 != 0:
            return self.height, self.width
        return self.width, self.height

    @property
    def levels(self) -> Tuple[float, float]:
        """Black and white levels as fractions of the full range"""
        return parse_percentage(self.black_level), parse_percentage(self.white_level)


@dataclass(frozen=True)
class SessionCredentials:
    """Values written into the browser's local storage once per browser process"""

    base_url: str
    access_token: str
    language: str
    theme: str
    timezone: str


@dataclass(frozen=True)
class Settings:
    """Process-wide settings plus the ordered list of targets"""

    base_url: str
    access_token: str
    targets: Tuple[TargetConfig, ...]
    cron_job: str = DEFAULT_CRON_JOB
    port: int = DEFAULT_PORT
    rendering_timeout: int = DEFAULT_RENDERING_TIMEOUT
    browser_launch_timeout: int = DEFAULT_BROWSER_LAUNCH_TIMEOUT
    language: str = "en"
    theme: str = ""
    debug: bool = False
    ignore_certificate_errors: bool = False
    timezone: str = "Europe/Berlin"
    marker_selector: str = DEFAULT_MARKER_SELECTOR
    config_root: str = "config"
    log_level: str = "INFO"

    @property
    def credentials(self) -> SessionCredentials:
        return SessionCredentials(
            base_url=self.base_url,
            access_token=self.access_token,
            language=self.language,
            theme=self.theme,
            timezone=self.timezone,
        )

    def target(self, number: int) -> TargetConfig:
        """Look up a target by its 1-based index"""
        return self.targets[number - 1]

    def url_for(self, target: TargetConfig) -> str:
        return f"{self.base_url}{target.screenshot_url}"


def parse_percentage(value: Any) -> float:
    """Parse '25%' (or a bare 25) into 0.25"""
    text = str(value).strip()
    if text.endswith('%'):
        text = text[:-1].strip()
    try:
        number = float(text)
    except ValueError:
        raise ConfigError(f"Invalid percentage: {value!r}")
    if not 0 <= number <= 100:
        raise ConfigError(f"Percentage out of range [0%, 100%]: {value!r}")
    return number / 100


def _parse_int(key: str, value: Any) -> int:
    try:
        return int(str(value).strip())
    except ValueError:
        raise ConfigError(f"{key} must be an integer, got {value!r}")


def _parse_float(key: str, value: Any) -> float:
    try:
        return float(str(value).strip())
    except ValueError:
        raise ConfigError(f"{key} must be a number, got {value!r}")


def _parse_bool(key: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE_VALUES:
        return True
    if text in _FALSE_VALUES:
        return False
    raise ConfigError(f"{key} must be true or false, got {value!r}")


class _Values:
    """Lookup over merged key/value pairs where empty strings count as unset"""

    def __init__(self, values: Mapping[str, Any]):
        self.values = values

    def get(self, key: str, suffix: str = "") -> Optional[Any]:
        for name in (key + suffix, key):
            value = self.values.get(name)
            if value is not None and value != "":
                return value
        return None

    def exact(self, key: str) -> Optional[Any]:
        value = self.values.get(key)
        if value is None or value == "":
            return None
        return value

    def string(self, key: str, default: str, suffix: str = "") -> str:
        value = self.get(key, suffix)
        return default if value is None else str(value).strip()

    def integer(self, key: str, default: int, suffix: str = "") -> int:
        value = self.get(key, suffix)
        return default if value is None else _parse_int(key + suffix, value)

    def number(self, key: str, default: float, suffix: str = "") -> float:
        value = self.get(key, suffix)
        return default if value is None else _parse_float(key + suffix, value)

    def flag(self, key: str, default: bool, suffix: str = "") -> bool:
        value = self.get(key, suffix)
        return default if value is None else _parse_bool(key + suffix, value)


def load_config_file(config_path: str) -> Dict[str, Any]:
    """Load a flat mapping of configuration keys from a YAML file, if it exists"""
    path = Path(config_path)
    if not path.exists():
        logger.debug(f"No config file at {path}, using environment only")
        return {}

    try:
        with open(path, 'r') as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse {path}: {e}")

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a mapping of configuration keys")

    logger.info(f"Loaded {len(data)} keys from {path}")
    return {str(key): value for key, value in data.items()}


def _load_target(values: _Values, index: int, screenshot_url: str) -> TargetConfig:
    suffix = "" if index == 1 else f"_{index}"

    # The default output path is per target and never inherited from target 1
    output_path = values.exact(f"OUTPUT_PATH{suffix}")
    if output_path is None:
        output_path = f"output/cover{suffix}"

    return TargetConfig(
        index=index,
        screenshot_url=screenshot_url,
        output_path=str(output_path),
        image_format=values.string("IMAGE_FORMAT", "png", suffix),
        rendering_delay=values.integer("RENDERING_DELAY", 0, suffix),
        width=values.integer("RENDERING_SCREEN_WIDTH", 600, suffix),
        height=values.integer("RENDERING_SCREEN_HEIGHT", 800, suffix),
        grayscale_depth=values.integer("GRAYSCALE_DEPTH", 8, suffix),
        remove_gamma=values.flag("REMOVE_GAMMA", False, suffix),
        black_level=values.string("BLACK_LEVEL", "0%", suffix),
        white_level=values.string("WHITE_LEVEL", "100%", suffix),
        dither=values.flag("DITHER", False, suffix),
        color_mode=values.string("COLOR_MODE", "GrayScale", suffix),
        prefers_color_scheme=values.string("PREFERS_COLOR_SCHEME", "light", suffix),
        rotation=values.integer("ROTATION", 0, suffix),
        scaling=values.number("SCALING", 1.0, suffix),
        battery_webhook=values.string("HA_BATTERY_WEBHOOK", "", suffix) or None,
        saturation=values.number("SATURATION", 1.0, suffix),
        contrast=values.number("CONTRAST", 1.0, suffix),
    )


def load_targets(values: _Values) -> Tuple[TargetConfig, ...]:
    """Enumerate targets until the first index without a screenshot URL"""
    targets = []
    index = 1
    while True:
        suffix = "" if index == 1 else f"_{index}"
        screenshot_url = values.exact(f"HA_SCREENSHOT_URL{suffix}")
        if screenshot_url is None:
            break
        targets.append(_load_target(values, index, str(screenshot_url).strip()))
        index += 1
    return tuple(targets)


def validate_target(target: TargetConfig):
    """Reject a target configuration that cannot be rendered"""
    if target.rotation % 90 != 0:
        raise ConfigError(f"Invalid rotation value for entry {target.index}: {target.rotation}")
    if target.width <= 0 or target.height <= 0:
        raise ConfigError(f"Invalid screen size for entry {target.index}: {target.width}x{target.height}")
    if target.scaling <= 0:
        raise ConfigError(f"Invalid scaling for entry {target.index}: {target.scaling}")
    if target.rendering_delay < 0:
        raise ConfigError(f"Invalid rendering delay for entry {target.index}: {target.rendering_delay}")
    if target.grayscale_depth <= 0:
        raise ConfigError(f"Invalid grayscale depth for entry {target.index}: {target.grayscale_depth}")
    if target.prefers_color_scheme not in COLOR_SCHEMES:
        raise ConfigError(
            f"Invalid color scheme for entry {target.index}: {target.prefers_color_scheme}. "
            f"Expected one of {', '.join(COLOR_SCHEMES)}"
        )
    black, white = target.levels
    if white <= black:
        raise ConfigError(
            f"White level must be above black level for entry {target.index}: "
            f"{target.black_level} / {target.white_level}"
        )


def validate_settings(settings: Settings):
    if not settings.targets:
        raise ConfigError("No targets configured. Set HA_SCREENSHOT_URL to at least one dashboard path")
    for target in settings.targets:
        validate_target(target)
    if not croniter.is_valid(settings.cron_job):
        raise ConfigError(f"Invalid cron expression: {settings.cron_job!r}")
    if settings.rendering_timeout <= 0 or settings.browser_launch_timeout <= 0:
        raise ConfigError("Timeouts must be positive")


def load_settings(environ: Optional[Mapping[str, Any]] = None, config_path: Optional[str] = None) -> Settings:
    """
    Build and validate the settings for this process

    Args:
        environ: Key/value source, defaults to the process environment
        config_path: Optional YAML file; defaults to CONFIG_FILE or config.yaml

    Raises:
        ConfigError: If the configuration is incomplete or invalid
    """
    if environ is None:
        environ = os.environ

    merged: Dict[str, Any] = {}
    merged.update(load_config_file(config_path or environ.get("CONFIG_FILE") or CONFIG_FILE))
    merged.update(environ)
    values = _Values(merged)

    settings = Settings(
        base_url=values.string("HA_BASE_URL", "").rstrip('/'),
        access_token=values.string("HA_ACCESS_TOKEN", ""),
        targets=load_targets(values),
        cron_job=values.string("CRON_JOB", DEFAULT_CRON_JOB),
        port=values.integer("PORT", DEFAULT_PORT),
        rendering_timeout=values.integer("RENDERING_TIMEOUT", DEFAULT_RENDERING_TIMEOUT),
        browser_launch_timeout=values.integer("BROWSER_LAUNCH_TIMEOUT", DEFAULT_BROWSER_LAUNCH_TIMEOUT),
        language=values.string("LANGUAGE", "en"),
        theme=values.string("HA_THEME", ""),
        debug=values.flag("DEBUG", False),
        ignore_certificate_errors=values.flag("UNSAFE_IGNORE_CERTIFICATE_ERRORS", False),
        timezone=values.string("TZ", "Europe/Berlin"),
        marker_selector=values.string("MARKER_SELECTOR", DEFAULT_MARKER_SELECTOR),
        config_root=values.string("CONFIG_ROOT", "config"),
        log_level=values.string("LOG_LEVEL", "INFO").upper(),
    )
    validate_settings(settings)

    logger.info(
        f"Loaded config: {len(settings.targets)} targets, cron='{settings.cron_job}', "
        f"port={settings.port}, debug={settings.debug}"
    )
    return settings
