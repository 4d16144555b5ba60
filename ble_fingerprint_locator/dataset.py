from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List

import pandas as pd

from .filters import median_rssi
from .models import RSSI_FLOOR, FingerprintCsvRow, TrainingDataset, TrainingSample

logger = logging.getLogger(__name__)

# 同一采集时刻的分组键
SAMPLE_COLUMNS = ["timestamp", "plan_id", "x_norm", "y_norm"]


def empty_dataset() -> TrainingDataset:
    return TrainingDataset(beacon_keys=[], samples=[], rows=[])


def _rows_frame(rows: List[FingerprintCsvRow]) -> pd.DataFrame:
    return pd.DataFrame(
        {
            "timestamp": [r.timestamp for r in rows],
            "plan_id": [r.plan_id for r in rows],
            "x_norm": [float(r.x_norm) for r in rows],
            "y_norm": [float(r.y_norm) for r in rows],
            "key": [r.key for r in rows],
            "rssi": [float(r.rssi) for r in rows],
        }
    )


def build_dataset(rows: Iterable[FingerprintCsvRow]) -> TrainingDataset:
    """
    由原始观测行构建训练数据集：
    1. beacon_keys 为所有行中出现的 major_minor 去重后升序排列
    2. 按 (timestamp, plan_id, x_norm, y_norm) 分组，每组为一次采集时刻
    3. 组内每个信标取 RSSI 中值，未出现的信标填 RSSI_FLOOR
    输出与行的到达顺序无关。
    """
    rows = list(rows)
    if not rows:
        return empty_dataset()

    beacon_keys = sorted({r.key for r in rows})
    frame = _rows_frame(rows)

    medians = (
        frame.groupby(SAMPLE_COLUMNS + ["key"])["rssi"]
        .agg(lambda s: median_rssi(s.tolist()))
        .astype("float64")
    )
    matrix = medians.unstack("key").reindex(columns=beacon_keys).fillna(float(RSSI_FLOOR))

    samples: List[TrainingSample] = []
    for (timestamp, plan_id, x_norm, y_norm), values in zip(matrix.index, matrix.to_numpy()):
        samples.append(
            TrainingSample(
                timestamp=str(timestamp),
                plan_id=str(plan_id),
                x_norm=float(x_norm),
                y_norm=float(y_norm),
                vector=[float(v) for v in values],
            )
        )

    logger.debug("数据集重建完成: 行数=%d, 样本数=%d, 信标数=%d", len(rows), len(samples), len(beacon_keys))
    return TrainingDataset(beacon_keys=beacon_keys, samples=samples, rows=rows)


def append_rows(dataset: TrainingDataset, rows: Iterable[FingerprintCsvRow]) -> TrainingDataset:
    return build_dataset([*dataset.rows, *rows])


def replace_rows(rows: Iterable[FingerprintCsvRow]) -> TrainingDataset:
    return build_dataset(rows)


# ---------- Persistence ----------
def dataset_to_dict(dataset: TrainingDataset) -> Dict[str, Any]:
    return {
        "beaconKeys": list(dataset.beacon_keys),
        "samples": [s.to_dict() for s in dataset.samples],
        "rows": [r.to_dict() for r in dataset.rows],
    }


def dataset_from_dict(data: Dict[str, Any]) -> TrainingDataset:
    """从持久化字典恢复数据集；beaconKeys/samples 一律由 rows 重新推导"""
    rows: List[FingerprintCsvRow] = []
    for item in data.get("rows", []) or []:
        try:
            rows.append(FingerprintCsvRow.from_dict(item))
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("忽略无效的持久化行: %s (%s)", item, e)
    dataset = build_dataset(rows)
    stored_keys = data.get("beaconKeys")
    if stored_keys is not None and list(stored_keys) != dataset.beacon_keys:
        logger.info("持久化的 beaconKeys 与行数据不一致，已按行重新计算")
    return dataset


def summarize(dataset: TrainingDataset) -> pd.DataFrame:
    """按平面图统计样本数、参考点数与行数"""
    columns = ["plan_id", "samples", "points", "rows"]
    if dataset.is_empty:
        return pd.DataFrame(columns=columns)
    rows = pd.DataFrame(
        {"plan_id": [r.plan_id for r in dataset.rows], "point_id": [r.point_id for r in dataset.rows]}
    )
    per_plan = rows.groupby("plan_id").agg(points=("point_id", "nunique"), rows=("point_id", "size"))
    samples = pd.Series([s.plan_id for s in dataset.samples]).value_counts()
    per_plan["samples"] = samples.reindex(per_plan.index).fillna(0).astype(int)
    return per_plan.reset_index()[columns]
