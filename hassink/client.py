#!/usr/bin/env python3
"""
Test Client for hassInk Server

A command-line client that exercises the HTTP endpoints the way an eInk
device does: fetch the image for a target while reporting battery telemetry,
check invalid targets are rejected, read the status endpoint and fetch a
config file.
"""

import argparse
import io
import sys
from typing import Optional

import requests
from PIL import Image


class Colors:
    """ANSI color codes for terminal output"""
    GREEN = '\033[92m'
    YELLOW = '\033[93m'
    RED = '\033[91m'
    BLUE = '\033[94m'
    CYAN = '\033[96m'
    RESET = '\033[0m'
    BOLD = '\033[1m'


class HassInkTestClient:
    """Test client for hassInk server API"""

    def __init__(self, server_url: str, page: int = 1, battery_level: Optional[int] = None,
                 is_charging: Optional[bool] = None):
        self.server_url = server_url.rstrip('/')
        self.page = page
        self.battery_level = battery_level
        self.is_charging = is_charging
        self.session = requests.Session()

    def _print_status(self, message: str, status: str = "INFO"):
        """Print formatted status message"""
        if status == "OK":
            color = Colors.GREEN
            symbol = "✓"
        elif status == "ERROR":
            color = Colors.RED
            symbol = "✗"
        elif status == "WARN":
            color = Colors.YELLOW
            symbol = "⚠"
        else:
            color = Colors.BLUE
            symbol = "ℹ"

        print(f"{color}{Colors.BOLD}[{symbol} {status}]{Colors.RESET} {message}")

    def _print_section(self, title: str):
        """Print section header"""
        print(f"\n{Colors.CYAN}{Colors.BOLD}{'='*60}{Colors.RESET}")
        print(f"{Colors.CYAN}{Colors.BOLD}{title}{Colors.RESET}")
        print(f"{Colors.CYAN}{Colors.BOLD}{'='*60}{Colors.RESET}\n")

    def telemetry_params(self) -> dict:
        params = {}
        if self.battery_level is not None:
            params['batteryLevel'] = self.battery_level
        if self.is_charging is not None:
            params['isCharging'] = 'Yes' if self.is_charging else 'No'
        return params

    def test_get_image(self) -> bool:
        """Test GET /{page}, reporting telemetry and decoding the result"""
        self._print_section("TEST: Get Image")

        try:
            url = f"{self.server_url}/{self.page}"
            params = self.telemetry_params()

            self._print_status(f"Requesting image from {url}", "INFO")
            if params:
                self._print_status(f"Telemetry: {params}", "INFO")

            response = self.session.get(url, params=params, timeout=10)

            if response.status_code != 200:
                self._print_status(f"Failed with status {response.status_code}: {response.text}", "ERROR")
                return False

            content_type = response.headers.get('Content-Type', '')
            last_modified = response.headers.get('Last-Modified', 'N/A')
            self._print_status(f"Content-Type: {content_type}, Last-Modified: {last_modified}", "INFO")

            img = Image.open(io.BytesIO(response.content))
            img.load()
            self._print_status(f"Image size: {img.size}, mode: {img.mode}, {len(response.content)} bytes", "OK")
            return True

        except Exception as e:
            self._print_status(f"Exception: {e}", "ERROR")
            return False

    def test_invalid_page(self) -> bool:
        """Test that an out of range page is rejected with 400"""
        self._print_section("TEST: Invalid Page")

        try:
            url = f"{self.server_url}/0"
            response = self.session.get(url, timeout=10)

            if response.status_code == 400:
                self._print_status("Page 0 rejected with 400", "OK")
                return True
            self._print_status(f"Expected 400, got {response.status_code}", "ERROR")
            return False

        except Exception as e:
            self._print_status(f"Exception: {e}", "ERROR")
            return False

    def test_get_status(self) -> bool:
        """Test GET /api/status"""
        self._print_section("TEST: Get Status")

        try:
            response = self.session.get(f"{self.server_url}/api/status", timeout=10)

            if response.status_code != 200:
                self._print_status(f"Failed with status {response.status_code}: {response.text}", "ERROR")
                return False

            data = response.json()
            for target in data.get('targets', []):
                battery = target.get('battery') or {}
                self._print_status(
                    f"Target {target['index']}: last modified {target.get('last_modified') or 'never'}, "
                    f"battery {battery.get('batteryLevel', 'N/A')}%",
                    "INFO"
                )
            self._print_status(f"Rendering now: {data.get('rendering')}", "OK")
            return True

        except Exception as e:
            self._print_status(f"Exception: {e}", "ERROR")
            return False

    def test_get_config_file(self, path: str) -> bool:
        """Test GET /config/{path}"""
        self._print_section("TEST: Get Config File")

        try:
            url = f"{self.server_url}/config/{path}"
            self._print_status(f"Requesting {url}", "INFO")
            response = self.session.get(url, timeout=10)

            if response.status_code == 200:
                self._print_status(
                    f"Received {len(response.content)} bytes "
                    f"({response.headers.get('Content-Type')}, {response.headers.get('Cache-Control')})",
                    "OK"
                )
                return True
            self._print_status(f"Failed with status {response.status_code}: {response.text}", "ERROR")
            return False

        except Exception as e:
            self._print_status(f"Exception: {e}", "ERROR")
            return False

    def run_full_test(self, config_file: Optional[str] = None) -> bool:
        """Run complete test workflow"""
        print(f"\n{Colors.BOLD}{'='*60}")
        print("hassInk Test Client")
        print(f"{'='*60}{Colors.RESET}")
        print(f"Server: {self.server_url}")
        print(f"Page: {self.page}")
        print(f"{'='*60}\n")

        results = {
            'get_image': self.test_get_image(),
            'invalid_page': self.test_invalid_page(),
            'get_status': self.test_get_status(),
        }
        if config_file:
            results['get_config_file'] = self.test_get_config_file(config_file)

        self._print_section("TEST SUMMARY")

        passed = sum(1 for v in results.values() if v)
        total = len(results)

        for test_name, passed_test in results.items():
            status = "OK" if passed_test else "ERROR"
            self._print_status(f"{test_name}: {'PASSED' if passed_test else 'FAILED'}", status)

        print()
        if passed == total:
            self._print_status(f"All {total} tests PASSED", "OK")
        else:
            self._print_status(f"{passed}/{total} tests passed, {total - passed} failed", "ERROR")

        return passed == total


def main():
    parser = argparse.ArgumentParser(
        description='Test client for hassInk server API',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Basic test with default settings
  hassink-test-client

  # Fetch the second target and report a battery level of 80%
  hassink-test-client --page 2 --battery-level 80 --charging

  # Also fetch a file from the config directory
  hassink-test-client --config-file readme.txt
        """
    )

    parser.add_argument(
        '--server',
        default='http://localhost:5000',
        help='Server URL (default: http://localhost:5000)'
    )

    parser.add_argument(
        '--page',
        type=int,
        default=1,
        help='Target index to fetch (default: 1)'
    )

    parser.add_argument(
        '--battery-level',
        type=int,
        default=None,
        help='Battery level to report (0-100)'
    )

    charging = parser.add_mutually_exclusive_group()
    charging.add_argument(
        '--charging',
        dest='is_charging',
        action='store_const',
        const=True,
        help='Report the device as charging'
    )
    charging.add_argument(
        '--not-charging',
        dest='is_charging',
        action='store_const',
        const=False,
        help='Report the device as not charging'
    )

    parser.add_argument(
        '--config-file',
        default=None,
        help='Path under /config/ to fetch'
    )

    args = parser.parse_args()

    try:
        client = HassInkTestClient(
            server_url=args.server,
            page=args.page,
            battery_level=args.battery_level,
            is_charging=args.is_charging,
        )
        success = client.run_full_test(config_file=args.config_file)
        sys.exit(0 if success else 1)

    except KeyboardInterrupt:
        print(f"\n{Colors.YELLOW}Test interrupted by user{Colors.RESET}")
        sys.exit(130)
    except Exception as e:
        print(f"\n{Colors.RED}{Colors.BOLD}Fatal error: {e}{Colors.RESET}")
        sys.exit(1)


if __name__ == '__main__':
    main()
