"""
定时窗口中值采集

状态机：IDLE -> CAPTURING(remaining) -> FINALIZING -> IDLE
- start(): 重置缓冲区并开始倒计时（采集中再次 start 会重新开始）
- observe(): 异步到达的 (beacon_key, rssi) 写入当前会话缓冲区
- tick(): 每秒一次；倒计时归零时结束窗口
- cancel(): 提前结束，按已采集数据立即计算中值
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Dict, FrozenSet, Iterable, List, Mapping, Optional, Set

from .filters import median_rssi
from .models import AnchorPoint, BeaconReading, FingerprintCsvRow

logger = logging.getLogger(__name__)

MIN_WINDOW_SECONDS = 2
MAX_WINDOW_SECONDS = 30
DEFAULT_WINDOW_SECONDS = 8
DEFAULT_OFFLINE_TIMEOUT = 3.0
LIVE_MODE = "live"


class CaptureState(Enum):
    IDLE = "idle"
    CAPTURING = "capturing"
    FINALIZING = "finalizing"


class OfflinePolicy(Enum):
    # 窗口中途离线超时的信标整体丢弃
    DISCARD = "discard"
    # 保留离线前的读数直到窗口结束
    RETAIN = "retain"


def clamp_window(value, default: int = DEFAULT_WINDOW_SECONDS) -> int:
    """采集窗口限制在 [2,30] 秒；无法解析或为 0 时使用默认值"""
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        seconds = 0.0
    if not math.isfinite(seconds) or seconds == 0:
        seconds = default
    return int(max(MIN_WINDOW_SECONDS, min(MAX_WINDOW_SECONDS, math.floor(seconds + 0.5))))


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"


@dataclass(frozen=True)
class CaptureResult:
    window_seconds: int
    medians: Dict[str, float]
    counts: Dict[str, int]
    discarded: FrozenSet[str] = frozenset()
    cancelled: bool = False

    @property
    def mode(self) -> str:
        return f"median{self.window_seconds}s"

    @property
    def is_empty(self) -> bool:
        return len(self.medians) == 0


@dataclass
class CaptureSession:
    offline_timeout: float = DEFAULT_OFFLINE_TIMEOUT
    policy: OfflinePolicy = OfflinePolicy.DISCARD
    clock: Callable[[], float] = time.monotonic

    state: CaptureState = field(default=CaptureState.IDLE, init=False)
    remaining: int = field(default=0, init=False)
    window_seconds: int = field(default=DEFAULT_WINDOW_SECONDS, init=False)
    last_result: Optional[CaptureResult] = field(default=None, init=False)
    _samples: Dict[str, List[float]] = field(default_factory=dict, init=False)
    _last_seen: Dict[str, float] = field(default_factory=dict, init=False)
    _discarded: Set[str] = field(default_factory=set, init=False)

    @property
    def is_capturing(self) -> bool:
        return self.state is CaptureState.CAPTURING

    @property
    def discarded(self) -> FrozenSet[str]:
        return frozenset(self._discarded)

    def counts(self) -> Dict[str, int]:
        return {key: len(values) for key, values in self._samples.items()}

    # ---------- Transitions ----------
    def start(self, window_seconds=DEFAULT_WINDOW_SECONDS) -> int:
        if self.is_capturing:
            logger.info("已有采集进行中，重新开始")
        self.window_seconds = clamp_window(window_seconds)
        self.remaining = self.window_seconds
        self._samples = {}
        self._last_seen = {}
        self._discarded = set()
        self.last_result = None
        self.state = CaptureState.CAPTURING
        logger.info("开始采集，窗口 %ss，离线策略 %s", self.window_seconds, self.policy.value)
        return self.window_seconds

    def observe(self, key: str, rssi: float, now: Optional[float] = None) -> bool:
        """记录一次观测；返回是否写入了采集缓冲区"""
        now = self.clock() if now is None else now
        self._last_seen[key] = now
        if not self.is_capturing or key in self._discarded:
            return False
        self._samples.setdefault(key, []).append(rssi)
        return True

    def observe_readings(self, readings: Iterable[BeaconReading], now: Optional[float] = None) -> int:
        return sum(1 for r in readings if self.observe(r.key, r.rssi, now))

    def tick(self, now: Optional[float] = None) -> Optional[CaptureResult]:
        """每秒调用一次；窗口结束时返回结果"""
        if not self.is_capturing:
            return None
        now = self.clock() if now is None else now
        if self.remaining <= 1:
            return self._finalize(now, cancelled=False)
        self._check_offline(now)
        self.remaining -= 1
        return None

    def cancel(self, now: Optional[float] = None) -> Optional[CaptureResult]:
        if not self.is_capturing:
            return None
        now = self.clock() if now is None else now
        logger.info("提前结束采集，剩余 %ss", self.remaining)
        return self._finalize(now, cancelled=True)

    # ---------- Internals ----------
    def _check_offline(self, now: float) -> None:
        if self.policy is not OfflinePolicy.DISCARD:
            return
        for key, last_seen in self._last_seen.items():
            if key not in self._discarded and now - last_seen > self.offline_timeout:
                self._discarded.add(key)
                logger.warning("信标 %s 离线超过 %ss，本次采集丢弃", key, self.offline_timeout)

    def _finalize(self, now: float, cancelled: bool) -> CaptureResult:
        self.state = CaptureState.FINALIZING
        self._check_offline(now)

        medians: Dict[str, float] = {}
        for key, values in self._samples.items():
            if key in self._discarded:
                continue
            med = median_rssi(values)
            if med is not None:
                medians[key] = med

        result = CaptureResult(
            window_seconds=self.window_seconds,
            medians=medians,
            counts=self.counts(),
            discarded=frozenset(self._discarded),
            cancelled=cancelled,
        )
        self.remaining = 0
        self.last_result = result
        self.state = CaptureState.IDLE
        logger.info("采集完成: 信标数=%d, 丢弃=%d", len(medians), len(result.discarded))
        return result


# ---------- Rows ----------
def _split_key(key: str) -> tuple[int, int]:
    major, minor = key.split("_", 1)
    return int(major), int(minor)


def capture_rows(
    anchor: AnchorPoint,
    medians: Mapping[str, float],
    mode: str,
    uuid: str = "",
    timestamp: Optional[str] = None,
) -> List[FingerprintCsvRow]:
    """把一次采集（中值或实时快照）转换为指纹行，同一时刻共享 timestamp"""
    timestamp = timestamp or utc_timestamp()
    rows: List[FingerprintCsvRow] = []
    for key in sorted(medians):
        major, minor = _split_key(key)
        rows.append(
            FingerprintCsvRow(
                timestamp=timestamp,
                plan_id=anchor.plan_id,
                point_id=anchor.id,
                point_name=anchor.name,
                x_norm=anchor.x_norm,
                y_norm=anchor.y_norm,
                uuid=uuid,
                major=major,
                minor=minor,
                rssi=medians[key],
                mode=mode,
            )
        )
    return rows


def snapshot_rows(
    anchor: AnchorPoint, readings: Iterable[BeaconReading], timestamp: Optional[str] = None
) -> List[FingerprintCsvRow]:
    """当前实时读数快照（mode=live）"""
    timestamp = timestamp or utc_timestamp()
    return [
        FingerprintCsvRow(
            timestamp=timestamp,
            plan_id=anchor.plan_id,
            point_id=anchor.id,
            point_name=anchor.name,
            x_norm=anchor.x_norm,
            y_norm=anchor.y_norm,
            uuid=r.uuid,
            major=r.major,
            minor=r.minor,
            rssi=r.rssi,
            mode=LIVE_MODE,
        )
        for r in sorted(readings, key=lambda r: r.key)
    ]
