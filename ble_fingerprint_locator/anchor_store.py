from __future__ import annotations

import logging
import os
from typing import Dict, List, Optional, cast

import pandas as pd

from .models import AnchorPoint

logger = logging.getLogger(__name__)

COLUMNS = ["plan_id", "name", "x_norm", "y_norm"]


class AnchorStore:
    """管理参考点的存储与访问（pandas + CSV），每次修改立即保存"""

    def __init__(self, csv_path: str):
        # 使用 DataFrame 管理，索引为 id
        self._df = pd.DataFrame(columns=COLUMNS)
        self._df.index.name = "id"
        self.csv_path = csv_path

    # ---- Utils ----
    def _normalize_df(self, df: pd.DataFrame) -> pd.DataFrame:
        if "id" not in df.columns:
            raise KeyError("CSV 文件缺少 'id' 列")
        for col in ["plan_id", "name"]:
            if col not in df.columns:
                df[col] = ""
            df[col] = df[col].fillna("").astype(str)
        for col in ["x_norm", "y_norm"]:
            if col not in df.columns:
                df[col] = float("nan")
            df[col] = pd.to_numeric(df[col], errors="coerce")
        # 坐标非法的参考点直接丢弃，其余裁剪到 [0,1]
        df = df.dropna(subset=["x_norm", "y_norm"]).copy()
        df["x_norm"] = df["x_norm"].clip(0.0, 1.0)
        df["y_norm"] = df["y_norm"].clip(0.0, 1.0)
        df = df[["id"] + COLUMNS]
        df = df.drop_duplicates(subset=["id"], keep="last").set_index("id")
        df = df.astype({"x_norm": "float64", "y_norm": "float64"}, copy=False)
        df.index = df.index.astype(str)
        df.index.name = "id"
        return df

    # ---- Load/Save ----
    def load(self) -> None:
        if not os.path.exists(self.csv_path):
            logger.info("参考点文件不存在，使用空列表: %s", self.csv_path)
            return
        try:
            df = pd.read_csv(self.csv_path, dtype={"id": str, "plan_id": str, "name": str})
            self._df = self._normalize_df(df)
        except (OSError, KeyError, ValueError, pd.errors.ParserError) as e:
            logger.warning("读取参考点文件失败，使用空列表: %s", e)

    def save(self) -> None:
        os.makedirs(os.path.dirname(self.csv_path) or ".", exist_ok=True)
        # 保存为 CSV（将索引写为列 id）
        self._df.to_csv(self.csv_path, index=True, index_label="id", encoding="utf-8")

    # ---- CRUD ----
    def add(self, anchor: AnchorPoint) -> None:
        # 新增或覆盖
        self._df.loc[anchor.id, COLUMNS] = [
            anchor.plan_id,
            anchor.name,
            min(1.0, max(0.0, float(anchor.x_norm))),
            min(1.0, max(0.0, float(anchor.y_norm))),
        ]
        self.save()

    def move(self, anchor_id: str, x_norm: float, y_norm: float) -> bool:
        if anchor_id not in self._df.index:
            return False
        self._df.loc[anchor_id, ["x_norm", "y_norm"]] = [
            min(1.0, max(0.0, float(x_norm))),
            min(1.0, max(0.0, float(y_norm))),
        ]
        self.save()
        return True

    def rename(self, anchor_id: str, name: str) -> bool:
        if anchor_id not in self._df.index:
            return False
        self._df.loc[anchor_id, "name"] = name
        self.save()
        return True

    def delete(self, anchor_id: str) -> bool:
        if anchor_id in self._df.index:
            self._df = self._df.drop(index=anchor_id)
            self.save()
            return True
        return False

    # ---- Accessors ----
    def __len__(self) -> int:
        return len(self._df)

    def has(self, anchor_id: str) -> bool:
        return anchor_id in self._df.index

    def _to_anchor(self, anchor_id: str, row: pd.Series) -> AnchorPoint:
        return AnchorPoint(
            id=str(anchor_id),
            plan_id=str(row.at["plan_id"]),
            name=str(row.at["name"]),
            x_norm=float(row.at["x_norm"]),
            y_norm=float(row.at["y_norm"]),
        )

    def get(self, anchor_id: str) -> Optional[AnchorPoint]:
        if anchor_id not in self._df.index:
            return None
        return self._to_anchor(anchor_id, cast(pd.Series, self._df.loc[anchor_id]))

    def all(self) -> Dict[str, AnchorPoint]:
        result: Dict[str, AnchorPoint] = {}
        for anchor_id, row in self._df.iterrows():
            result[str(anchor_id)] = self._to_anchor(str(anchor_id), cast(pd.Series, row))
        return result

    def for_plan(self, plan_id: str) -> List[AnchorPoint]:
        return [a for a in self.all().values() if a.plan_id == plan_id]
