"""
hassInk - Home Assistant dashboard renderer for eInk devices

Periodically captures a Home Assistant dashboard with Playwright, converts the
screenshot into a low colour depth image and serves the latest image per
target to devices that poll for it.
"""

__version__ = "1.0.0"
