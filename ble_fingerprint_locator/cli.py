from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading
import time

from .capture import CaptureSession, OfflinePolicy
from .config_manager import ConfigManager
from .dataset import summarize
from .mqtt_processor import MQTTDataProcessor
from .session import FORMATS, FingerprintSession

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def setup_logging(level: str | int = logging.INFO) -> None:
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(level=level, format=LOG_FORMAT, force=True)


def _open_session(config: ConfigManager) -> FingerprintSession:
    session = FingerprintSession(config)
    session.load()
    return session


def run_mqtt(args, config: ConfigManager):
    processor = MQTTDataProcessor(config)

    t = threading.Thread(target=processor.start_mqtt_client, daemon=True)
    t.start()

    # graceful shutdown
    def handle_sigint(sig, frame):
        processor.stop_mqtt_client()
        sys.exit(0)

    signal.signal(signal.SIGINT, handle_sigint)
    signal.signal(signal.SIGTERM, handle_sigint)

    t.join()


def run_import(args, config: ConfigManager):
    session = _open_session(config)
    with open(args.file, "r", encoding="utf-8") as f:
        content = f.read()
    report = session.import_text(content, fmt=args.format, replace=args.replace)
    print(f"已导入 {report.accepted} 条记录（拒绝 {report.rejected} 条）")


def run_export(args, config: ConfigManager):
    session = _open_session(config)
    content = session.export_text(fmt=args.format)
    with open(args.file, "w", encoding="utf-8") as f:
        f.write(content)
    print(f"已导出 {len(session.dataset.rows)} 行到 {args.file}")


def run_info(args, config: ConfigManager):
    session = _open_session(config)
    print(f"当前平面图: {session.selected_plan}")
    print(f"信标数: {len(session.dataset.beacon_keys)}")
    plans = session.dataset.plan_ids()
    print("已有平面图: " + (", ".join(plans) if plans else "无"))
    table = summarize(session.dataset)
    print(table.to_string(index=False) if not table.empty else "数据集为空")
    cache = session.cache
    print("KNN 缓存: " + (f"{cache.n_samples} 个样本" if cache is not None else "无（训练数据不足）"))


def run_select_plan(args, config: ConfigManager):
    session = _open_session(config)
    session.select_plan(args.plan)
    print(f"当前平面图: {session.selected_plan}")


def run_anchors(args, config: ConfigManager):
    session = _open_session(config)
    match args.action:
        case "list":
            anchors = session.anchors.all().values()
            for a in anchors:
                if args.plan and a.plan_id != args.plan:
                    continue
                print(f"{a.id}\t{a.plan_id}\t{a.name}\tx={a.x_norm:.4f}\ty={a.y_norm:.4f}")
        case "add":
            anchor = session.add_anchor(args.plan or session.selected_plan, args.name, args.x, args.y)
            print(f"已添加参考点 {anchor.name}: {anchor.id}")
        case "move":
            if not session.anchors.move(args.id, args.x, args.y):
                raise SystemExit(f"参考点不存在: {args.id}")
            print(f"已移动参考点 {args.id}")
        case "remove":
            if not session.anchors.delete(args.id):
                raise SystemExit(f"参考点不存在: {args.id}")
            print(f"已删除参考点 {args.id}")


def run_capture(args, config: ConfigManager):
    session = _open_session(config)
    anchor = session.require_anchor(args.anchor)
    capture_config = config.get_capture_config()
    capture = CaptureSession(
        offline_timeout=float(capture_config.get("offline_timeout", 3.0)),
        policy=OfflinePolicy(capture_config.get("offline_policy", "discard")),
    )
    processor = MQTTDataProcessor(config, session=session, capture=capture)
    if not processor.start_background():
        raise SystemExit(1)

    seconds = args.seconds if args.seconds is not None else capture_config.get("window_seconds", 8)
    with processor.lock:
        window = capture.start(seconds)
    print(f"在参考点 {anchor.name} 采集 {window}s ...")

    result = None
    try:
        while result is None:
            time.sleep(1.0)
            with processor.lock:
                result = capture.tick()
    except KeyboardInterrupt:
        # 提前结束时按已采集数据计算中值
        with processor.lock:
            result = capture.cancel()
    finally:
        processor.stop_mqtt_client()

    if result is None or result.is_empty:
        print("未采集到有效信标数据")
        return
    for key in sorted(result.medians):
        print(f"{key}\tmedian={result.medians[key]}\tn={result.counts.get(key, 0)}")
    if result.discarded:
        print(f"离线丢弃: {', '.join(sorted(result.discarded))}")
    rows = session.record_capture(anchor.id, result, uuid=str(config.get_beacon_config().get("uuid", "")))
    print(f"已写入 {len(rows)} 行（{result.mode}）")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="ble-fingerprint-locator", description="BLE Fingerprint Locator CLI")
    parser.add_argument("--config", default=None, help="配置文件路径，默认读取 ./config/config.yaml 或环境变量 BLE_FP_CONFIG")
    parser.add_argument("--log-level", default=None, help="日志级别，默认读取配置 logging.level")
    sub = parser.add_subparsers(dest="cmd")

    p_run = sub.add_parser("run", help="运行 MQTT 实时定位服务")
    p_run.set_defaults(func=run_mqtt)

    p_import = sub.add_parser("import", help="导入 CSV/JSONL 指纹记录")
    p_import.add_argument("file")
    p_import.add_argument("--format", choices=FORMATS, default="csv")
    p_import.add_argument("--replace", action="store_true", help="替换现有数据集而不是追加")
    p_import.set_defaults(func=run_import)

    p_export = sub.add_parser("export", help="导出指纹记录")
    p_export.add_argument("file")
    p_export.add_argument("--format", choices=FORMATS, default="csv")
    p_export.set_defaults(func=run_export)

    p_info = sub.add_parser("info", help="显示数据集概况")
    p_info.set_defaults(func=run_info)

    p_plan = sub.add_parser("select-plan", help="切换当前平面图")
    p_plan.add_argument("plan")
    p_plan.set_defaults(func=run_select_plan)

    p_anchors = sub.add_parser("anchors", help="管理参考点")
    anchors_sub = p_anchors.add_subparsers(dest="action", required=True)
    a_list = anchors_sub.add_parser("list")
    a_list.add_argument("--plan", default=None)
    a_add = anchors_sub.add_parser("add")
    a_add.add_argument("--plan", default=None)
    a_add.add_argument("--name", required=True)
    a_add.add_argument("--x", type=float, required=True)
    a_add.add_argument("--y", type=float, required=True)
    a_move = anchors_sub.add_parser("move")
    a_move.add_argument("id")
    a_move.add_argument("--x", type=float, required=True)
    a_move.add_argument("--y", type=float, required=True)
    a_remove = anchors_sub.add_parser("remove")
    a_remove.add_argument("id")
    p_anchors.set_defaults(func=run_anchors)

    p_capture = sub.add_parser("capture", help="在参考点进行定时中值采集")
    p_capture.add_argument("anchor", help="参考点 id")
    p_capture.add_argument("--seconds", type=float, default=None, help="采集窗口（2-30 秒）")
    p_capture.set_defaults(func=run_capture)

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    config = ConfigManager(args.config)
    setup_logging(args.log_level or config.get_log_level())
    # 无子命令/无参数时默认启动服务器
    if not hasattr(args, "func"):
        return run_mqtt(args, config)
    return args.func(args, config)


if __name__ == "__main__":
    main()
