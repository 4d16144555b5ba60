"""Shared fixtures for the fingerprint locator test suite."""

import pytest

from ble_fingerprint_locator.config_manager import ConfigManager
from ble_fingerprint_locator.models import BeaconReading, FingerprintCsvRow
from ble_fingerprint_locator.session import FingerprintSession

UUID = "aaaaaaaa-bbbb-cccc-dddd-eeeeeeeeeeee"


def make_row(
    major,
    minor,
    rssi,
    timestamp="2024-01-01T00:00:00.000Z",
    plan_id="P1",
    x=0.5,
    y=0.5,
    point_id="a1",
    mode="live",
):
    return FingerprintCsvRow(
        timestamp=timestamp,
        plan_id=plan_id,
        point_id=point_id,
        point_name=point_id.upper(),
        x_norm=x,
        y_norm=y,
        uuid=UUID,
        major=major,
        minor=minor,
        rssi=rssi,
        mode=mode,
    )


def make_reading(major, minor, rssi, last_seen=0.0):
    return BeaconReading(uuid=UUID, major=major, minor=minor, rssi=rssi, last_seen=last_seen)


@pytest.fixture
def config(tmp_path):
    cfg = ConfigManager(str(tmp_path / "config.yaml"))
    cfg.config["paths"]["dataset"] = str(tmp_path / "data" / "dataset.json")
    cfg.config["paths"]["anchors"] = str(tmp_path / "data" / "anchors.csv")
    cfg.config["session"]["selected_plan"] = "P1"
    cfg.config["beacon"]["uuid"] = UUID
    cfg.save_config()
    return cfg


@pytest.fixture
def session(config):
    s = FingerprintSession(config)
    s.load()
    return s
