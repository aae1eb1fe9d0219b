"""Tests for the HTTP endpoints."""

import logging
from email.utils import parsedate_to_datetime

import pytest
from fastapi.testclient import TestClient

from hassink.battery import BatteryState, BatteryStore
from hassink.errors import PathTraversalError
from hassink.server import create_app, parse_page_number, resolve_config_path


@pytest.fixture
def targets(make_target):
    return [make_target(1), make_target(2, image_format="bmp")]


@pytest.fixture
def settings(make_settings, targets, tmp_path):
    config_root = tmp_path / "config"
    config_root.mkdir()
    (config_root / "readme.txt").write_text("hello from config")
    (config_root / "themes").mkdir()
    (config_root / "themes" / "eink.yaml").write_text("eink: {}\n")
    return make_settings(targets)


@pytest.fixture
def battery_store():
    return BatteryStore()


@pytest.fixture
def client(settings, battery_store):
    return TestClient(create_app(settings, battery_store))


def _write_artifact(target, data: bytes = b"\x89PNG fake image") -> bytes:
    target.artifact_path.parent.mkdir(parents=True, exist_ok=True)
    target.artifact_path.write_bytes(data)
    return data


class TestImageEndpoint:
    @pytest.mark.parametrize("path", ["/0", "/-1", "/abc", "/3", "/1.5", "/01x"])
    def test_invalid_index_is_rejected(self, client, path):
        response = client.get(path)
        assert response.status_code == 400

    def test_missing_artifact_is_404(self, client):
        response = client.get("/1")
        assert response.status_code == 404

    def test_serves_latest_artifact(self, client, targets):
        data = _write_artifact(targets[0])

        response = client.get("/1")

        assert response.status_code == 200
        assert response.content == data
        assert response.headers["content-type"] == "image/png"
        assert response.headers["content-length"] == str(len(data))
        modified = parsedate_to_datetime(response.headers["last-modified"])
        assert modified.timestamp() == pytest.approx(targets[0].artifact_path.stat().st_mtime, abs=1)

    def test_root_serves_first_target(self, client, targets):
        data = _write_artifact(targets[0])

        response = client.get("/")

        assert response.status_code == 200
        assert response.content == data

    def test_content_type_follows_target_format(self, client, targets):
        _write_artifact(targets[1], b"BM fake bitmap")

        response = client.get("/2")

        assert response.status_code == 200
        assert response.headers["content-type"] == "image/bmp"


class TestBatteryTelemetry:
    def test_request_records_battery_state(self, client, targets, battery_store):
        _write_artifact(targets[0])

        response = client.get("/1", params={'batteryLevel': "42", 'isCharging': "Yes"})

        assert response.status_code == 200
        assert battery_store.get(1) == BatteryState(battery_level=42, is_charging=True)

    def test_repeated_telemetry_is_not_logged_again(self, client, targets, caplog):
        _write_artifact(targets[0])
        caplog.set_level(logging.INFO, logger="hassink.battery")
        client.get("/1?batteryLevel=42&isCharging=Yes")
        caplog.clear()

        client.get("/1?batteryLevel=42&isCharging=Yes")

        assert [r for r in caplog.records if r.name == "hassink.battery"] == []

    def test_root_records_telemetry_for_first_target(self, client, targets, battery_store):
        _write_artifact(targets[0])

        client.get("/", params={'batteryLevel': "15", 'isCharging': "0"})

        assert battery_store.get(1) == BatteryState(battery_level=15, is_charging=False)

    def test_missing_artifact_records_nothing(self, client, battery_store):
        response = client.get("/1", params={'batteryLevel': "42", 'isCharging': "Yes"})

        assert response.status_code == 404
        assert battery_store.snapshot() == {}

    def test_invalid_level_is_ignored(self, client, targets, battery_store):
        _write_artifact(targets[0])

        response = client.get("/1", params={'batteryLevel': "high", 'isCharging': "Yes"})

        assert response.status_code == 200
        assert not battery_store.has_level(1)

    def test_invalid_index_records_nothing(self, client, battery_store):
        client.get("/9", params={'batteryLevel': "50"})
        assert battery_store.snapshot() == {}


class TestConfigEndpoint:
    def test_serves_file_with_cache_header(self, client):
        response = client.get("/config/readme.txt")

        assert response.status_code == 200
        assert response.text == "hello from config"
        assert response.headers["content-type"].startswith("text/plain")
        assert response.headers["cache-control"] == "public, max-age=300"

    def test_serves_nested_file(self, client):
        response = client.get("/config/themes/eink.yaml")
        assert response.status_code == 200

    def test_missing_file_is_404(self, client):
        response = client.get("/config/missing.txt")
        assert response.status_code == 404

    def test_directory_is_404(self, client):
        response = client.get("/config/themes")
        assert response.status_code == 404

    def test_traversal_is_403(self, client):
        response = client.get("/config/..%2F..%2Fetc%2Fpasswd")
        assert response.status_code == 403

    def test_backslash_is_403(self, client):
        response = client.get("/config/..%5C..%5Cetc%5Cpasswd")
        assert response.status_code == 403


class TestResolveConfigPath:
    def test_resolves_inside_root(self, tmp_path):
        assert resolve_config_path(tmp_path, "a/b.txt") == (tmp_path / "a" / "b.txt").resolve()

    @pytest.mark.parametrize("sub_path", [
        "../../etc/passwd",
        "themes/../../secret",
        "/etc/passwd",
        "..\\secret",
        "a\x00b",
    ])
    def test_rejects_escaping_paths(self, tmp_path, sub_path):
        with pytest.raises(PathTraversalError):
            resolve_config_path(tmp_path, sub_path)

    def test_rejects_symlink_out_of_root(self, tmp_path):
        root = tmp_path / "root"
        root.mkdir()
        outside = tmp_path / "outside.txt"
        outside.write_text("secret")
        (root / "link.txt").symlink_to(outside)

        with pytest.raises(PathTraversalError):
            resolve_config_path(root, "link.txt")


class TestStatusEndpoint:
    def test_reports_targets_and_battery(self, client, targets, battery_store):
        _write_artifact(targets[0])
        battery_store.update(1, "80", "No")

        response = client.get("/api/status")

        assert response.status_code == 200
        data = response.json()
        assert data['rendering'] is False
        assert [t['index'] for t in data['targets']] == [1, 2]
        assert data['targets'][0]['last_modified'] is not None
        assert data['targets'][0]['battery'] == {'batteryLevel': 80, 'isCharging': False}
        assert data['targets'][1]['last_modified'] is None
        assert data['targets'][1]['battery'] is None


class TestParsePageNumber:
    @pytest.mark.parametrize("page,expected", [
        ("1", 1),
        ("2", 2),
        ("0", None),
        ("3", None),
        ("-1", None),
        ("+1", None),
        ("1e0", None),
        ("١", None),
    ])
    def test_parse(self, page, expected):
        assert parse_page_number(page, 2) == expected
