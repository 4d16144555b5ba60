"""
KNN 指纹定位：特征标准化缓存、实时向量对齐与加权回归

- build_knn_cache: 按平面图过滤样本，去掉该平面图从未观测到的信标维度，计算每维均值/总体标准差并做 z-score
- build_live_vector: 按缓存的信标顺序对齐实时读数，缺失信标填 RSSI_FLOOR
- regress_knn: 反距离加权 KNN + 坐标裁剪 + 指数平滑
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np

from .filters import clamp_unit, ema_smooth
from .models import RSSI_FLOOR, BeaconReading, PositionEstimate, TrainingDataset

STD_EPSILON = 1e-6
WEIGHT_EPSILON = 1e-3
DEFAULT_K = 5
DEFAULT_ALPHA = 0.35


@dataclass(frozen=True)
class KnnCache:
    """
    单个平面图的 KNN 搜索结构

    Attributes:
        plan_id: 缓存对应的平面图
        mean: 每维均值, shape (N,)
        std: 每维总体标准差 + STD_EPSILON, shape (N,)
        train_x: 标准化后的训练矩阵, shape (M, N)
        train_y: 训练样本位置 (x_norm, y_norm), shape (M, 2)
        beacon_keys: 构建时的信标顺序快照，距离计算以此为准
    """

    plan_id: str
    mean: np.ndarray
    std: np.ndarray
    train_x: np.ndarray
    train_y: np.ndarray
    beacon_keys: Tuple[str, ...]

    @property
    def n_samples(self) -> int:
        return self.train_x.shape[0]

    def standardize(self, vector: np.ndarray) -> np.ndarray:
        return (vector - self.mean) / self.std


def _plan_features(dataset: TrainingDataset, plan_id: str):
    filtered = [s for s in dataset.samples if s.plan_id == plan_id]
    if not filtered or not dataset.beacon_keys:
        return filtered, np.empty((0, 0)), []

    features = np.array([s.vector for s in filtered], dtype=float)
    if features.shape[1] != len(dataset.beacon_keys):
        raise ValueError(
            f"样本向量长度 {features.shape[1]} 与信标数 {len(dataset.beacon_keys)} 不一致"
        )
    # 只保留该平面图样本中实际观测到的信标维度
    observed = np.any(features != RSSI_FLOOR, axis=0)
    keys = [key for key, seen in zip(dataset.beacon_keys, observed) if seen]
    return filtered, features[:, observed], keys


def plan_beacon_keys(dataset: TrainingDataset, plan_id: str) -> List[str]:
    """指定平面图参与距离计算的信标顺序"""
    return _plan_features(dataset, plan_id)[2]


def build_knn_cache(dataset: TrainingDataset, plan_id: str) -> Optional[KnnCache]:
    """构建指定平面图的缓存；没有样本或没有观测到的信标时返回 None"""
    filtered, features, keys = _plan_features(dataset, plan_id)
    if not filtered or not keys:
        return None

    mean = features.mean(axis=0)
    std = features.std(axis=0, ddof=0) + STD_EPSILON
    train_x = (features - mean) / std
    train_y = np.array([[s.x_norm, s.y_norm] for s in filtered], dtype=float)

    return KnnCache(
        plan_id=plan_id,
        mean=mean,
        std=std,
        train_x=train_x,
        train_y=train_y,
        beacon_keys=tuple(keys),
    )


def build_live_vector(readings: Sequence[BeaconReading], beacon_keys: Sequence[str]) -> np.ndarray:
    by_key = {r.key: r.rssi for r in readings}
    return np.array([by_key.get(key, RSSI_FLOOR) for key in beacon_keys], dtype=float)


def pairwise_distances(z: np.ndarray, train_x: np.ndarray) -> np.ndarray:
    """实时向量到每个训练样本的欧氏距离, shape (M,)"""
    if z.shape[0] != train_x.shape[1]:
        raise ValueError(
            f"Incompatible dimensions: z has {z.shape[0]} features, "
            f"train_x has {train_x.shape[1]} features per row"
        )
    return np.linalg.norm(train_x - z, axis=1)


def regress_knn(
    cache: KnnCache,
    readings: Sequence[BeaconReading],
    previous: Optional[PositionEstimate] = None,
    k: int = DEFAULT_K,
    alpha: float = DEFAULT_ALPHA,
) -> Optional[PositionEstimate]:
    """
    反距离加权 KNN 回归

    1. 无实时读数：返回 None（调用方保留上一次显示值）
    2. 对齐并标准化实时向量
    3. 计算到所有训练样本的欧氏距离，升序取前 min(k, M) 个
    4. 权重 w = 1 / (d + WEIGHT_EPSILON)，加权平均位置
    5. 坐标裁剪到 [0,1]，存在 previous 时做指数平滑
    6. confidence = 1 / (1 + 平均近邻距离)
    """
    if k < 1:
        raise ValueError(f"k must be >= 1, got k={k}")
    if not 0.0 <= alpha <= 1.0:
        raise ValueError(f"alpha must be in [0, 1], got alpha={alpha}")
    if len(readings) == 0 or cache.n_samples == 0:
        return None

    live = cache.standardize(build_live_vector(readings, cache.beacon_keys))
    distances = pairwise_distances(live, cache.train_x)

    order = np.argsort(distances, kind="stable")[: min(k, len(distances))]
    neighbor_distances = distances[order]
    neighbor_positions = cache.train_y[order]

    weights = 1.0 / (neighbor_distances + WEIGHT_EPSILON)
    weights_sum = float(np.sum(weights))
    if weights_sum == 0 or not np.isfinite(weights_sum):
        return None

    raw = np.sum(weights[:, np.newaxis] * neighbor_positions, axis=0) / weights_sum
    x, y = ema_smooth(previous, clamp_unit(float(raw[0])), clamp_unit(float(raw[1])), alpha)

    avg_distance = float(np.mean(neighbor_distances))
    return PositionEstimate(x=x, y=y, confidence=1.0 / (1.0 + avg_distance))


def neighbor_keys_missing(readings: Sequence[BeaconReading], beacon_keys: Sequence[str]) -> List[str]:
    """返回缓存中存在但当前未观测到的信标（按缓存顺序）"""
    seen = {r.key for r in readings}
    return [key for key in beacon_keys if key not in seen]
