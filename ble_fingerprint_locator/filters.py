from __future__ import annotations

import math
from typing import Optional, Sequence

import numpy as np

from .models import PositionEstimate


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def median_rssi(values: Sequence[float]) -> Optional[float]:
    """
    RSSI 中值：
    - 奇数个：取中间值
    - 偶数个：中间两个值的平均，四舍五入为整数（.5 向上取整）
    - 空序列：返回 None
    """
    if len(values) == 0:
        return None
    ordered = np.sort(np.asarray(values, dtype=float))
    mid = len(ordered) // 2
    if len(ordered) % 2 == 0:
        return round_half_up((ordered[mid - 1] + ordered[mid]) / 2)
    value = float(ordered[mid])
    return int(value) if value.is_integer() else value


def clamp_unit(value: float) -> float:
    return max(0.0, min(1.0, value))


def ema_smooth(
    previous: Optional[PositionEstimate], x: float, y: float, alpha: float
) -> tuple[float, float]:
    """指数平滑：smoothed = previous + alpha * (raw - previous)"""
    if previous is None:
        return x, y
    return (
        previous.x + alpha * (x - previous.x),
        previous.y + alpha * (y - previous.y),
    )
