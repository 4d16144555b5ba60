from __future__ import annotations

import json
import logging
import os
import secrets
import time
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence

from .anchor_store import AnchorStore
from .capture import CaptureResult, capture_rows, snapshot_rows
from .config_manager import ConfigManager
from .dataset import append_rows, dataset_from_dict, dataset_to_dict, empty_dataset, replace_rows
from .knn import KnnCache, build_knn_cache, plan_beacon_keys, regress_knn
from .models import AnchorPoint, BeaconReading, FingerprintCsvRow, PositionEstimate, TrainingDataset
from .records import (
    accepted_rows,
    parse_csv_text,
    parse_jsonl_text,
    rows_to_csv,
    rows_to_jsonl,
)

logger = logging.getLogger(__name__)

FORMATS = ("csv", "jsonl")


def create_id() -> str:
    return f"{int(time.time() * 1000)}-{secrets.token_hex(6)}"


@dataclass(frozen=True)
class ImportReport:
    accepted: int
    rejected: int


class FingerprintSession:
    """
    指纹会话：持有参考点、训练数据集、当前平面图与 KNN 缓存

    启动时 load()，数据集或平面图每次变更都会立即保存并重建缓存，
    定位调用始终使用与当前 (数据集, 平面图) 一致的缓存。
    """

    def __init__(self, config_manager: ConfigManager):
        self.config_manager = config_manager
        self.dataset_path = self.config_manager.get_dataset_path()
        self.anchors = AnchorStore(self.config_manager.get_anchors_path())
        self.dataset: TrainingDataset = empty_dataset()
        self.selected_plan = self.config_manager.get_selected_plan()

        knn_config = self.config_manager.get_knn_config()
        self.k = int(knn_config.get("k", 5))
        self.alpha = float(knn_config.get("alpha", 0.35))

        self._cache: Optional[KnnCache] = None

    # ---------- Load/Save ----------
    def load(self) -> None:
        self.anchors.load()
        self.dataset = self._read_dataset()
        self._rebuild_cache()
        logger.info(
            "会话已加载: 参考点=%d, 行数=%d, 样本数=%d",
            len(self.anchors),
            len(self.dataset.rows),
            len(self.dataset.samples),
        )

    def _read_dataset(self) -> TrainingDataset:
        if not os.path.exists(self.dataset_path):
            return empty_dataset()
        try:
            with open(self.dataset_path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("读取数据集失败，使用空数据集: %s", e)
            return empty_dataset()
        if not isinstance(data, dict):
            logger.warning("数据集格式无效，使用空数据集: %s", self.dataset_path)
            return empty_dataset()
        return dataset_from_dict(data)

    def save_dataset(self) -> None:
        # 整体重写：先写临时文件再替换
        os.makedirs(os.path.dirname(self.dataset_path) or ".", exist_ok=True)
        tmp_path = f"{self.dataset_path}.tmp"
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(dataset_to_dict(self.dataset), f, ensure_ascii=False)
        os.replace(tmp_path, self.dataset_path)

    # ---------- Cache ----------
    @property
    def cache(self) -> Optional[KnnCache]:
        return self._cache

    def is_cache_current(self) -> bool:
        if self._cache is None:
            return build_knn_cache(self.dataset, self.selected_plan) is None
        return self._cache.plan_id == self.selected_plan and self._cache.beacon_keys == tuple(
            plan_beacon_keys(self.dataset, self.selected_plan)
        )

    def _rebuild_cache(self) -> None:
        self._cache = build_knn_cache(self.dataset, self.selected_plan)
        if self._cache is None:
            logger.info("平面图 %s 训练数据不足，暂无法定位", self.selected_plan)
        else:
            logger.info(
                "KNN 缓存已重建: 平面图=%s, 样本数=%d, 信标数=%d",
                self.selected_plan,
                self._cache.n_samples,
                len(self._cache.beacon_keys),
            )

    def select_plan(self, plan_id: str) -> None:
        if plan_id == self.selected_plan:
            return
        self.selected_plan = plan_id
        self.config_manager.set_selected_plan(plan_id)
        self._rebuild_cache()

    # ---------- Dataset mutations ----------
    def _set_dataset(self, dataset: TrainingDataset) -> None:
        self.dataset = dataset
        self.save_dataset()
        self._rebuild_cache()

    def append_rows(self, rows: Iterable[FingerprintCsvRow]) -> int:
        rows = list(rows)
        if rows:
            self._set_dataset(append_rows(self.dataset, rows))
        return len(rows)

    def replace_rows(self, rows: Iterable[FingerprintCsvRow]) -> int:
        rows = list(rows)
        self._set_dataset(replace_rows(rows))
        return len(rows)

    def clear_dataset(self) -> None:
        self._set_dataset(empty_dataset())

    # ---------- Import/Export ----------
    def import_text(self, content: str, fmt: str = "csv", replace: bool = False) -> ImportReport:
        if fmt not in FORMATS:
            raise ValueError(f"Unsupported format: '{fmt}'. Use one of {FORMATS}.")
        results = parse_csv_text(content) if fmt == "csv" else parse_jsonl_text(content)
        rows, rejected = accepted_rows(results)
        if rejected:
            logger.warning("导入时拒绝了 %d 条无效记录", rejected)
        if replace:
            self.replace_rows(rows)
        else:
            self.append_rows(rows)
        accepted = len(results) - rejected
        logger.info("导入完成: 格式=%s, 接受=%d, 行数=%d", fmt, accepted, len(rows))
        return ImportReport(accepted=accepted, rejected=rejected)

    def export_text(self, fmt: str = "csv") -> str:
        if fmt not in FORMATS:
            raise ValueError(f"Unsupported format: '{fmt}'. Use one of {FORMATS}.")
        if fmt == "csv":
            return rows_to_csv(self.dataset.rows)
        return rows_to_jsonl(self.dataset.rows)

    # ---------- Anchors ----------
    def add_anchor(self, plan_id: str, name: str, x_norm: float, y_norm: float) -> AnchorPoint:
        anchor = AnchorPoint(id=create_id(), plan_id=plan_id, name=name, x_norm=x_norm, y_norm=y_norm)
        self.anchors.add(anchor)
        return self.anchors.get(anchor.id) or anchor

    def require_anchor(self, anchor_id: str) -> AnchorPoint:
        anchor = self.anchors.get(anchor_id)
        if anchor is None:
            raise KeyError(f"Unknown anchor point: {anchor_id}")
        return anchor

    # ---------- Capture ----------
    def record_capture(self, anchor_id: str, result: CaptureResult, uuid: str = "") -> List[FingerprintCsvRow]:
        """把一次中值采集结果写入数据集"""
        anchor = self.require_anchor(anchor_id)
        if result.is_empty:
            logger.warning("采集结果为空，未写入数据集")
            return []
        rows = capture_rows(anchor, result.medians, result.mode, uuid=uuid)
        self.append_rows(rows)
        return rows

    def record_snapshot(self, anchor_id: str, readings: Sequence[BeaconReading]) -> List[FingerprintCsvRow]:
        """把当前实时读数快照写入数据集（mode=live）"""
        anchor = self.require_anchor(anchor_id)
        rows = snapshot_rows(anchor, readings)
        self.append_rows(rows)
        return rows

    # ---------- Localisation ----------
    def locate(
        self, readings: Sequence[BeaconReading], previous: Optional[PositionEstimate] = None
    ) -> Optional[PositionEstimate]:
        if self._cache is None:
            return None
        return regress_knn(self._cache, readings, previous=previous, k=self.k, alpha=self.alpha)
