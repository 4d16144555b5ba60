"""Tests for the YAML configuration manager."""

import pytest
import yaml

from ble_fingerprint_locator.config_manager import ConfigManager


class TestConfigManager:
    def test_creates_default_file(self, tmp_path):
        path = tmp_path / "cfg" / "config.yaml"
        cfg = ConfigManager(str(path))
        assert path.exists()
        assert cfg.get_knn_config() == {"k": 5, "alpha": 0.35}
        assert cfg.get_capture_config()["offline_policy"] == "discard"

    def test_merges_missing_keys(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(yaml.dump({"knn": {"k": 3}}), encoding="utf-8")
        cfg = ConfigManager(str(path))
        assert cfg.get_knn_config()["k"] == 3
        assert cfg.get_knn_config()["alpha"] == 0.35
        assert cfg.get_mqtt_config()["port"] == 1883

    def test_env_override(self, tmp_path, monkeypatch):
        monkeypatch.setenv("BLE_FP_KNN_K", "7")
        monkeypatch.setenv("BLE_FP_CAPTURE_WINDOW", "not-a-number")
        cfg = ConfigManager(str(tmp_path / "config.yaml"))
        assert cfg.get_knn_config()["k"] == 7
        # 无法转换时保留原始字符串，由采集窗口裁剪逻辑兜底
        assert cfg.get_capture_config()["window_seconds"] == "not-a-number"

    def test_invalid_yaml_falls_back(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("knn: [unclosed", encoding="utf-8")
        cfg = ConfigManager(str(path))
        assert cfg.get_knn_config()["k"] == 5

    def test_setters_persist(self, tmp_path):
        path = tmp_path / "config.yaml"
        cfg = ConfigManager(str(path))
        cfg.set_knn_config(3, 0.5)
        cfg.set_selected_plan("ENG4_SOUTH")
        reloaded = ConfigManager(str(path))
        assert reloaded.get_knn_config() == {"k": 3, "alpha": 0.5}
        assert reloaded.get_selected_plan() == "ENG4_SOUTH"

    def test_invalid_knn_values(self, tmp_path):
        cfg = ConfigManager(str(tmp_path / "config.yaml"))
        with pytest.raises(ValueError):
            cfg.set_knn_config(0, 0.5)
        with pytest.raises(ValueError):
            cfg.set_knn_config(3, 2.0)
