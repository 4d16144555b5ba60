from __future__ import annotations

from datetime import datetime
import json
import logging
import threading
import time
from typing import Callable, Dict, List, Optional

import paho.mqtt.client as mqtt
from paho.mqtt.client import MQTTMessage

from .capture import CaptureSession
from .config_manager import ConfigManager
from .knn import neighbor_keys_missing
from .models import BeaconReading, BeaconScan, PositionEstimate, normalize_uuid
from .session import FingerprintSession


logger = logging.getLogger(__name__)


class MQTTDataProcessor:
    def __init__(
        self,
        config_manager: ConfigManager,
        session: Optional[FingerprintSession] = None,
        capture: Optional[CaptureSession] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.lock = threading.Lock()
        self.config_manager = config_manager
        self.clock = clock
        self.client: Optional[mqtt.Client] = None

        # 指纹会话（数据集 + KNN 缓存）
        if session is None:
            session = FingerprintSession(self.config_manager)
            session.load()
        self.session = session

        beacon_config = self.config_manager.get_beacon_config()
        self.uuid_filter = normalize_uuid(str(beacon_config.get("uuid", "")))
        self.reading_ttl = float(beacon_config.get("reading_ttl", 5.0))

        # 每个设备当前可见的信标读数（按 key 覆盖）与上一次平滑结果
        self.live_readings: Dict[str, Dict[str, BeaconReading]] = {}
        self.previous_estimates: Dict[str, PositionEstimate] = {}

        # 采集模式：读数同时送入采集会话
        self.capture = capture

    # ---------- Core processing ----------
    def ingest(self, scan: BeaconScan) -> List[BeaconReading]:
        """更新设备的实时读数表并剔除过期读数，返回当前有效读数"""
        now = self.clock()
        table = self.live_readings.setdefault(scan.device_id, {})
        for reading in scan:
            if self.uuid_filter and normalize_uuid(reading.uuid) != self.uuid_filter:
                continue
            table[reading.key] = reading
            if self.capture is not None:
                self.capture.observe(reading.key, reading.rssi, now)
        for key in [k for k, r in table.items() if now - r.last_seen > self.reading_ttl]:
            del table[key]
        return sorted(table.values(), key=lambda r: r.key)

    def calculate_location(self, scan: BeaconScan) -> Optional[PositionEstimate]:
        try:
            readings = self.ingest(scan)
            previous = self.previous_estimates.get(scan.device_id)
            estimate = self.session.locate(readings, previous)
            if estimate is None:
                logger.debug("设备 %s 暂无位置估计（读数=%d）", scan.device_id, len(readings))
                return None

            cache = self.session.cache
            if cache is not None and logger.isEnabledFor(logging.DEBUG):
                missing = neighbor_keys_missing(readings, cache.beacon_keys)
                logger.debug("设备 %s 缺失信标 %d 个: %s", scan.device_id, len(missing), missing)

            self.previous_estimates[scan.device_id] = estimate
            logger.info(
                "位置计算成功: 设备=%s (%.4f, %.4f), 置信度=%.3f, 信标数=%d",
                scan.device_id,
                estimate.x,
                estimate.y,
                estimate.confidence,
                len(readings),
            )
            return estimate
        except Exception as e:
            logger.exception("位置计算出错: %s", e)
            return None

    def handle_payload(self, payload: str) -> Optional[PositionEstimate]:
        with self.lock:
            scan = BeaconScan.parse(payload, seen_at=self.clock())
            if scan is None or scan.is_empty:
                logger.warning("消息解析无有效信标数据: %s", payload)
                return None
            estimate = self.calculate_location(scan)
            if estimate is not None:
                self.publish_estimate(scan.device_id, estimate)
            return estimate

    def publish_estimate(self, device_id: str, estimate: PositionEstimate) -> None:
        if self.client is None:
            return
        mqtt_config = self.config_manager.get_mqtt_config()
        topic = mqtt_config.get("uplink_topic", "/device/position/{deviceId}")
        message = json.dumps(
            {
                "deviceId": device_id,
                "planID": self.session.selected_plan,
                **estimate.to_dict(),
                "timestamp": datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
            }
        )
        self.client.publish(topic.format(deviceId=device_id), message)

    # ---------- MQTT ----------
    def _connect(self) -> mqtt.Client:
        client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2)
        client.on_connect = self.on_connect
        client.on_message = self.on_message
        mqtt_config = self.config_manager.get_mqtt_config()
        client.connect(mqtt_config["ip"], int(mqtt_config["port"]), 60)
        logger.info("连接到MQTT服务器 %s:%s", mqtt_config["ip"], mqtt_config["port"])
        self.client = client
        return client

    def start_mqtt_client(self):
        try:
            self._connect().loop_forever()
        except OSError as e:
            logger.error("MQTT连接错误: %s", e)

    def start_background(self) -> bool:
        """后台线程运行网络循环（采集模式使用）"""
        try:
            self._connect().loop_start()
            return True
        except OSError as e:
            logger.error("MQTT连接错误: %s", e)
            return False

    def stop_mqtt_client(self):
        if self.client is not None:
            try:
                self.client.disconnect()
                self.client.loop_stop()
                logger.info("MQTT连接已断开")
            except Exception as e:
                logger.error("断开MQTT连接时出错: %s", e)

    # ---------- MQTT handlers ----------
    def on_connect(self, client, userdata, flags, reason_code, properties=None):
        if not reason_code.is_failure:
            logger.info("成功连接到MQTT服务器")
            mqtt_config = self.config_manager.get_mqtt_config()
            topic = mqtt_config.get("downlink_topic", "/device/blueTooth/station/+")
            client.subscribe(topic)
            self.current_topic = topic
            logger.info("已订阅主题: %s", topic)
        else:
            logger.error("连接失败，返回码: %s", reason_code)

    def on_message(self, client, userdata, msg: MQTTMessage):
        try:
            payload = msg.payload.decode("utf-8")
            self.handle_payload(payload)
        except Exception as e:
            logger.exception("处理消息时出错: %s", e)
