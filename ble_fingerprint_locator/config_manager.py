from __future__ import annotations

import copy
import logging
import os
import yaml

from typing import Callable, Any

logger = logging.getLogger(__name__)


def _env_or_default(env_key: str, default: Any, cast: Callable[[str], Any] = str) -> Any:
    v = os.environ.get(env_key)
    if v is not None:
        try:
            return cast(v)
        except Exception:
            return v
    return default


DEFAULT_CONFIG_PATH = _env_or_default(
    "BLE_FP_CONFIG",
    os.path.join(".", "config", "config.yaml"),
)


class ConfigManager:
    """配置管理类，负责读写YAML配置文件"""

    def __init__(self, config_file: str | None = None, persist: bool = True):
        self.config_file = config_file or DEFAULT_CONFIG_PATH
        self.persist = persist
        self.default_config = {
            "mqtt": {
                "ip": _env_or_default("BLE_FP_MQTT_IP", "localhost"),
                "port": _env_or_default("BLE_FP_MQTT_PORT", 1883, int),
                "uplink_topic": _env_or_default("BLE_FP_MQTT_UPLINK_TOPIC", "/device/position/{deviceId}"),
                "downlink_topic": _env_or_default("BLE_FP_MQTT_DOWNLINK_TOPIC", "/device/blueTooth/station/+"),
            },
            "beacon": {
                "uuid": _env_or_default("BLE_FP_BEACON_UUID", "AAAAAAAA-BBBB-CCCC-DDDD-EEEEEEEEEEEE"),
                # 超过该秒数未更新的实时读数不参与定位
                "reading_ttl": _env_or_default("BLE_FP_READING_TTL", 5.0, float),
            },
            "knn": {
                "k": _env_or_default("BLE_FP_KNN_K", 5, int),
                "alpha": _env_or_default("BLE_FP_KNN_ALPHA", 0.35, float),
            },
            "capture": {
                "window_seconds": _env_or_default("BLE_FP_CAPTURE_WINDOW", 8, int),
                "offline_timeout": _env_or_default("BLE_FP_OFFLINE_TIMEOUT", 3.0, float),
                "offline_policy": _env_or_default("BLE_FP_OFFLINE_POLICY", "discard"),
            },
            "paths": {
                "dataset": _env_or_default(
                    "BLE_FP_PATH_DATASET", os.path.join(".", "data", "dataset.json")
                ),
                "anchors": _env_or_default(
                    "BLE_FP_PATH_ANCHORS", os.path.join(".", "data", "anchors.csv")
                ),
            },
            "session": {
                "selected_plan": _env_or_default("BLE_FP_SELECTED_PLAN", "ENG4_NORTH"),
            },
            "logging": {
                "level": _env_or_default("BLE_FP_LOG_LEVEL", "INFO"),
            },
        }
        self.load_config()

    def load_config(self) -> None:
        """加载配置文件，如果不存在则创建默认配置"""
        try:
            if os.path.exists(self.config_file):
                with open(self.config_file, "r", encoding="utf-8") as f:
                    self.config = yaml.safe_load(f) or {}
                self._merge_default_config()
            else:
                self.config = copy.deepcopy(self.default_config)
                self.save_config()
        except (OSError, yaml.YAMLError) as e:
            # 发生异常时回退到默认配置
            logger.warning("读取配置失败，使用默认配置: %s", e)
            self.config = copy.deepcopy(self.default_config)
            self.save_config()

    def _merge_default_config(self) -> None:
        def merge_dict(default, current):
            for key, value in default.items():
                if key not in current:
                    current[key] = copy.deepcopy(value)
                elif isinstance(value, dict) and isinstance(current[key], dict):
                    merge_dict(value, current[key])

        merge_dict(self.default_config, self.config)

    def save_config(self) -> None:
        if not self.persist:
            return
        try:
            os.makedirs(os.path.dirname(self.config_file) or ".", exist_ok=True)
            with open(self.config_file, "w", encoding="utf-8") as f:
                yaml.dump(
                    self.config,
                    f,
                    default_flow_style=False,
                    allow_unicode=True,
                    indent=2,
                )
        except OSError as e:
            logger.warning("保存配置失败: %s", e)

    # ---------- Accessors ----------
    def get_mqtt_config(self):
        return self.config["mqtt"]

    def get_beacon_config(self):
        return self.config["beacon"]

    def get_knn_config(self):
        return self.config["knn"]

    def get_capture_config(self):
        return self.config["capture"]

    def get_paths(self):
        return self.config.get("paths", {})

    def get_dataset_path(self):
        return self.get_paths()["dataset"]

    def get_anchors_path(self):
        return self.get_paths()["anchors"]

    def get_selected_plan(self) -> str:
        return str(self.config["session"]["selected_plan"])

    def get_log_level(self) -> str:
        return str(self.config.get("logging", {}).get("level", "INFO"))

    def set_knn_config(self, k: int, alpha: float):
        if k < 1:
            raise ValueError(f"k must be >= 1, got k={k}")
        if not 0.0 <= alpha <= 1.0:
            raise ValueError(f"alpha must be in [0, 1], got alpha={alpha}")
        self.config["knn"]["k"] = k
        self.config["knn"]["alpha"] = alpha
        self.save_config()

    def set_selected_plan(self, plan_id: str):
        self.config["session"]["selected_plan"] = plan_id
        self.save_config()
