from __future__ import annotations

from dataclasses import dataclass, asdict, field
from enum import Enum
from typing import Any, Dict, Generic, List, Optional, TypeVar

# 未收到信标时使用的 RSSI 下限值 (dBm)
RSSI_FLOOR = -100

IBEACON_PREFIX = "4c000215"

T = TypeVar("T")


def beacon_key(major: int, minor: int) -> str:
    return f"{major}_{minor}"


def normalize_uuid(value: str) -> str:
    return value.strip().lower()


@dataclass(frozen=True)
class AnchorPoint:
    """
    参考点（平面图归一化坐标，范围 [0,1]）
    """

    id: str
    plan_id: str
    name: str
    x_norm: float
    y_norm: float


@dataclass(frozen=True)
class BeaconIdentity:
    uuid: str
    major: int
    minor: int

    @property
    def key(self) -> str:
        return beacon_key(self.major, self.minor)

    @classmethod
    def from_manufacturer_data(cls, hex_data: str) -> Optional["BeaconIdentity"]:
        """从 iBeacon 厂商数据（十六进制）中解析 uuid/major/minor"""
        hex_data = hex_data.lower()
        idx = hex_data.find(IBEACON_PREFIX)
        if idx < 0:
            return None
        body = hex_data[idx + len(IBEACON_PREFIX):]
        uuid_hex = body[:32]
        if len(uuid_hex) < 32 or len(body) < 40:
            return None
        try:
            major = int(body[32:36], 16)
            minor = int(body[36:40], 16)
        except ValueError:
            return None
        uuid = "-".join(
            [uuid_hex[0:8], uuid_hex[8:12], uuid_hex[12:16], uuid_hex[16:20], uuid_hex[20:32]]
        )
        return cls(uuid=uuid, major=major, minor=minor)


@dataclass(frozen=True)
class BeaconReading:
    uuid: str
    major: int
    minor: int
    rssi: int
    last_seen: float = 0.0

    @property
    def key(self) -> str:
        return beacon_key(self.major, self.minor)


@dataclass(frozen=True)
class FingerprintCsvRow:
    """
    一条原始观测记录（每个信标一行）
    """

    timestamp: str
    plan_id: str
    point_id: str
    point_name: str
    x_norm: float
    y_norm: float
    uuid: str
    major: int
    minor: int
    rssi: float
    mode: str

    @property
    def key(self) -> str:
        return beacon_key(self.major, self.minor)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "planID": self.plan_id,
            "pointID": self.point_id,
            "pointName": self.point_name,
            "xNorm": self.x_norm,
            "yNorm": self.y_norm,
            "uuid": self.uuid,
            "major": self.major,
            "minor": self.minor,
            "rssi": self.rssi,
            "mode": self.mode,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "FingerprintCsvRow":
        rssi = float(d["rssi"])
        return cls(
            timestamp=str(d["timestamp"]),
            plan_id=str(d["planID"]),
            point_id=str(d.get("pointID", "")),
            point_name=str(d.get("pointName", "")),
            x_norm=float(d["xNorm"]),
            y_norm=float(d["yNorm"]),
            uuid=str(d.get("uuid", "")),
            major=int(d["major"]),
            minor=int(d["minor"]),
            rssi=int(rssi) if rssi.is_integer() else rssi,
            mode=str(d.get("mode", "")),
        )


@dataclass(frozen=True)
class TrainingSample:
    timestamp: str
    plan_id: str
    x_norm: float
    y_norm: float
    vector: List[float]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "planID": self.plan_id,
            "xNorm": self.x_norm,
            "yNorm": self.y_norm,
            "vector": list(self.vector),
        }


@dataclass
class TrainingDataset:
    """
    训练数据集：rows 为唯一数据源，beacon_keys/samples 均由 rows 推导
    """

    beacon_keys: List[str] = field(default_factory=list)
    samples: List[TrainingSample] = field(default_factory=list)
    rows: List[FingerprintCsvRow] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return len(self.rows) == 0

    def plan_ids(self) -> List[str]:
        return sorted({s.plan_id for s in self.samples})


@dataclass(frozen=True)
class PositionEstimate:
    x: float
    y: float
    confidence: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class ParseStatus(Enum):
    ACCEPTED = "accepted"
    REJECTED = "rejected"


@dataclass(frozen=True)
class ParseResult(Generic[T]):
    """
    解析结果：accepted 时携带 value，rejected 时携带原因
    """

    status: ParseStatus
    value: Optional[T] = None
    reason: str = ""
    line: str = ""

    @property
    def ok(self) -> bool:
        return self.status is ParseStatus.ACCEPTED

    @classmethod
    def accepted(cls, value: T) -> "ParseResult[T]":
        return cls(status=ParseStatus.ACCEPTED, value=value)

    @classmethod
    def rejected(cls, reason: str, line: str = "") -> "ParseResult[T]":
        return cls(status=ParseStatus.REJECTED, reason=reason, line=line)


@dataclass(frozen=True)
class BeaconScan:
    """
    一次上报的蓝牙扫描记录
    格式：uuid,major,minor,rssi;uuid,major,minor,rssi;...;deviceId
    """

    device_id: str
    readings: List[BeaconReading]

    def __len__(self) -> int:
        return len(self.readings)

    def __iter__(self):
        return iter(self.readings)

    @property
    def is_empty(self) -> bool:
        return len(self) == 0

    @classmethod
    def parse(cls, data_str: str, seen_at: float = 0.0) -> Optional["BeaconScan"]:
        parts = data_str.strip().split(";")
        if len(parts) < 2:
            return None
        device_id = parts[-1].strip()
        if not device_id:
            return None
        readings: List[BeaconReading] = []
        for item in parts[:-1]:
            fields = [f.strip() for f in item.split(",")]
            if len(fields) != 4:
                continue
            uuid, major_str, minor_str, rssi_str = fields
            try:
                major = int(major_str)
                minor = int(minor_str)
                rssi = int(rssi_str)
            except ValueError:
                continue
            readings.append(
                BeaconReading(uuid=uuid, major=major, minor=minor, rssi=rssi, last_seen=seen_at)
            )
        return cls(device_id=device_id, readings=readings)
