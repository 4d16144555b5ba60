"""
CSV / JSONL 指纹记录的导入导出

CSV 按列位置解析（不依赖表头名称）；xNorm、yNorm、rssi 不是有限数值的行被拒绝。
JSONL 每行一个采集时刻，readings 为 [{deviceId, rssi}]，deviceId 即信标 major_minor。
"""

from __future__ import annotations

import io
import json
import logging
import math
import re
from typing import Any, Dict, Iterable, List, Optional, Tuple

import pandas as pd

from .models import FingerprintCsvRow, ParseResult

logger = logging.getLogger(__name__)

CSV_HEADER = "timestamp,planID,pointID,pointName,xNorm,yNorm,uuid,major,minor,rssi,mode"
CSV_COLUMNS = CSV_HEADER.split(",")
DEVICE_ID_PATTERN = re.compile(r"(-?[0-9]+)_(-?[0-9]+)")


def _finite(value: Any) -> Optional[float]:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    return number


def _rssi_value(number: float) -> float:
    return int(number) if number.is_integer() else number


def _format_number(value: float) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


# ---------- CSV ----------
def rows_to_csv(rows: Iterable[FingerprintCsvRow]) -> str:
    """导出 CSV 文本（含表头），坐标保留 6 位小数，含逗号的字段自动加引号"""
    frame = pd.DataFrame(
        [
            [
                r.timestamp,
                r.plan_id,
                r.point_id,
                r.point_name,
                f"{r.x_norm:.6f}",
                f"{r.y_norm:.6f}",
                r.uuid,
                str(r.major),
                str(r.minor),
                _format_number(r.rssi),
                r.mode,
            ]
            for r in rows
        ],
        columns=CSV_COLUMNS,
    )
    return frame.to_csv(index=False, lineterminator="\n").rstrip("\n")


def _read_csv_frame(content: str) -> pd.DataFrame:
    # 按位置读取：首行为表头直接跳过，多余字段截断，缺失字段补空
    frame = pd.read_csv(
        io.StringIO(content),
        header=None,
        skiprows=1,
        names=CSV_COLUMNS,
        index_col=False,
        dtype=str,
        keep_default_na=False,
        skip_blank_lines=True,
        skipinitialspace=True,
        engine="python",
        on_bad_lines=lambda fields: fields[: len(CSV_COLUMNS)],
    )
    return frame.fillna("")


def _parse_csv_fields(fields: List[str]) -> ParseResult[FingerprintCsvRow]:
    line = ",".join(fields)
    timestamp, plan_id, point_id, point_name, x_str, y_str, uuid, major_str, minor_str, rssi_str, mode = fields

    x_norm = _finite(x_str)
    y_norm = _finite(y_str)
    rssi = _finite(rssi_str)
    if x_norm is None or y_norm is None:
        return ParseResult.rejected("坐标不是有限数值", line)
    if rssi is None:
        return ParseResult.rejected("RSSI 不是有限数值", line)
    major = _finite(major_str)
    minor = _finite(minor_str)
    if major is None or minor is None:
        return ParseResult.rejected("major/minor 无效", line)

    return ParseResult.accepted(
        FingerprintCsvRow(
            timestamp=timestamp,
            plan_id=plan_id,
            point_id=point_id,
            point_name=point_name,
            x_norm=x_norm,
            y_norm=y_norm,
            uuid=uuid,
            major=int(major),
            minor=int(minor),
            rssi=_rssi_value(rssi),
            mode=mode,
        )
    )


def parse_csv_text(content: str) -> List[ParseResult[FingerprintCsvRow]]:
    """解析 CSV 文本，首行视为表头跳过；空行忽略"""
    lines = [line for line in content.splitlines() if line.strip()]
    if len(lines) < 2:
        return []
    frame = _read_csv_frame("\n".join(lines))
    return [
        _parse_csv_fields([str(value).strip() for value in values])
        for values in frame.itertuples(index=False, name=None)
    ]


def parse_csv_line(line: str) -> ParseResult[FingerprintCsvRow]:
    """解析单条数据行（不含表头）"""
    results = parse_csv_text(f"{CSV_HEADER}\n{line}")
    if not results:
        return ParseResult.rejected("空行", line)
    return results[0]


# ---------- JSONL ----------
def parse_jsonl_line(line: str) -> ParseResult[List[FingerprintCsvRow]]:
    """解析一行 JSONL 采集记录，展开为每个信标一行"""
    try:
        record = json.loads(line)
    except json.JSONDecodeError as e:
        return ParseResult.rejected(f"JSON 解析失败: {e.msg}", line)
    if not isinstance(record, dict):
        return ParseResult.rejected("记录不是 JSON 对象", line)

    readings = record.get("readings")
    if not isinstance(readings, list) or not readings:
        return ParseResult.rejected("缺少 readings", line)
    x_norm = _finite(record.get("xNorm"))
    y_norm = _finite(record.get("yNorm"))
    if x_norm is None or y_norm is None:
        return ParseResult.rejected("坐标不是有限数值", line)

    rows: List[FingerprintCsvRow] = []
    for reading in readings:
        if not isinstance(reading, dict):
            return ParseResult.rejected("reading 不是 JSON 对象", line)
        device_id = str(reading.get("deviceId", ""))
        match = DEVICE_ID_PATTERN.fullmatch(device_id.strip())
        if match is None:
            return ParseResult.rejected(f"deviceId 不是 major_minor 格式: {device_id}", line)
        rssi = _finite(reading.get("rssi"))
        if rssi is None:
            return ParseResult.rejected("RSSI 不是有限数值", line)
        rows.append(
            FingerprintCsvRow(
                timestamp=str(record.get("timestamp", "")),
                plan_id=str(record.get("planID", "")),
                point_id=str(record.get("pointID", "")),
                point_name=str(record.get("pointName", "")),
                x_norm=x_norm,
                y_norm=y_norm,
                uuid=str(record.get("uuid", "")),
                major=int(match.group(1)),
                minor=int(match.group(2)),
                rssi=_rssi_value(rssi),
                mode=str(record.get("mode", "")),
            )
        )
    return ParseResult.accepted(rows)


def parse_jsonl_text(content: str) -> List[ParseResult[List[FingerprintCsvRow]]]:
    lines = [line.strip() for line in content.splitlines()]
    return [parse_jsonl_line(line) for line in lines if line]


def rows_to_jsonl(rows: Iterable[FingerprintCsvRow]) -> str:
    """按采集时刻（timestamp/plan/point/坐标/mode/uuid）合并行，每组输出一行 JSON"""
    groups: Dict[Tuple[Any, ...], Dict[str, Any]] = {}
    for r in rows:
        group_key = (r.timestamp, r.plan_id, r.point_id, r.x_norm, r.y_norm, r.mode, r.uuid)
        record = groups.get(group_key)
        if record is None:
            record = {
                "timestamp": r.timestamp,
                "planID": r.plan_id,
                "pointID": r.point_id,
                "pointName": r.point_name,
                "xNorm": r.x_norm,
                "yNorm": r.y_norm,
                "uuid": r.uuid,
                "mode": r.mode,
                "readings": [],
            }
            groups[group_key] = record
        record["readings"].append({"deviceId": r.key, "rssi": r.rssi})
    return "\n".join(json.dumps(record, ensure_ascii=False) for record in groups.values())


# ---------- Helpers ----------
def accepted_rows(results: Iterable[ParseResult[Any]]) -> Tuple[List[FingerprintCsvRow], int]:
    """
    汇总解析结果，返回 (合法行, 被拒绝条数)；
    JSONL 的结果值为行列表，会被展开。
    """
    rows: List[FingerprintCsvRow] = []
    rejected = 0
    for result in results:
        if not result.ok:
            rejected += 1
            logger.debug("拒绝记录: %s | %s", result.reason, result.line)
            continue
        if isinstance(result.value, list):
            rows.extend(result.value)
        else:
            rows.append(result.value)
    return rows, rejected
