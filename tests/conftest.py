"""Pytest configuration and shared fixtures."""

import io

import numpy as np
import pytest
from PIL import Image

from hassink.config import Settings, TargetConfig


# ============================================================================
# Configuration Fixtures
# ============================================================================


@pytest.fixture
def make_target(tmp_path):
    """Factory for targets whose images live under tmp_path."""

    def _make(index: int = 1, **overrides) -> TargetConfig:
        values = {
            'index': index,
            'screenshot_url': f"/lovelace/{index}",
            'output_path': str(tmp_path / "output" / f"cover_{index}"),
        }
        values.update(overrides)
        return TargetConfig(**values)

    return _make


@pytest.fixture
def make_settings(tmp_path):
    """Factory for settings around a list of targets."""

    def _make(targets, **overrides) -> Settings:
        values = {
            'base_url': "http://hass.local:8123",
            'access_token': "secret-token",
            'targets': tuple(targets),
            'config_root': str(tmp_path / "config"),
        }
        values.update(overrides)
        return Settings(**values)

    return _make


# ============================================================================
# Image Fixtures
# ============================================================================


def encode_png(img: Image.Image) -> bytes:
    output = io.BytesIO()
    img.save(output, format='PNG')
    return output.getvalue()


@pytest.fixture
def gray_image() -> Image.Image:
    """32x16 horizontal grayscale ramp."""
    row = np.arange(0, 256, 8, dtype=np.uint8)
    return Image.fromarray(np.tile(row, (16, 1)))


@pytest.fixture
def color_image() -> Image.Image:
    """40x20 RGB image with a black marker pixel in the top-left corner."""
    pixels = np.zeros((20, 40, 3), dtype=np.uint8)
    pixels[..., 0] = np.linspace(0, 255, 40, dtype=np.uint8)[None, :]
    pixels[..., 1] = np.linspace(0, 255, 20, dtype=np.uint8)[:, None]
    pixels[..., 2] = 200
    pixels[0, 0] = (0, 0, 0)
    return Image.fromarray(pixels)


@pytest.fixture
def png_bytes():
    return encode_png
