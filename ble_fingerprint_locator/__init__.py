"""BLE Fingerprint Locator package.

This package provides:
- ConfigManager: YAML-based configuration management
- build_dataset: fingerprint rows -> fixed-length training vectors
- build_knn_cache / regress_knn: z-scored KNN position regression
- CaptureSession: timed per-beacon median capture
- FingerprintSession: anchors, dataset and KNN cache with save-on-mutation
- MQTTDataProcessor: MQTT ingestion of live beacon readings
"""

from .config_manager import ConfigManager
from .capture import CaptureSession, OfflinePolicy
from .dataset import build_dataset
from .knn import KnnCache, build_knn_cache, build_live_vector, regress_knn
from .models import RSSI_FLOOR
from .mqtt_processor import MQTTDataProcessor
from .session import FingerprintSession

__all__ = [
    "ConfigManager",
    "CaptureSession",
    "OfflinePolicy",
    "build_dataset",
    "KnnCache",
    "build_knn_cache",
    "build_live_vector",
    "regress_knn",
    "RSSI_FLOOR",
    "MQTTDataProcessor",
    "FingerprintSession",
]
