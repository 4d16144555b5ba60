"""End-to-end tests for the offline CLI commands."""

from conftest import make_row
from ble_fingerprint_locator.cli import main
from ble_fingerprint_locator.records import CSV_HEADER, rows_to_csv


def _argv(config, *args):
    return ["--config", config.config_file, "--log-level", "WARNING", *args]


class TestCli:
    def test_import_info_export(self, config, tmp_path, capsys):
        src = tmp_path / "in.csv"
        rows = [
            make_row(1, 1, -50, timestamp="t1", x=0.1, y=0.1),
            make_row(1, 2, -80, timestamp="t1", x=0.1, y=0.1),
        ]
        src.write_text(rows_to_csv(rows) + "\nt2,P1,a1,A1,nan,0.1,u,1,1,-60,live\n", encoding="utf-8")

        main(_argv(config, "import", str(src)))
        assert "已导入 2 条记录" in capsys.readouterr().out

        main(_argv(config, "info"))
        out = capsys.readouterr().out
        assert "信标数: 2" in out
        assert "已有平面图: P1" in out
        assert "KNN 缓存: 1 个样本" in out

        dst = tmp_path / "out.csv"
        main(_argv(config, "export", str(dst)))
        lines = dst.read_text(encoding="utf-8").splitlines()
        assert lines[0] == CSV_HEADER
        assert len(lines) == 3

    def test_anchors_and_plan(self, config, capsys):
        main(_argv(config, "anchors", "add", "--name", "Door", "--x", "0.3", "--y", "0.6"))
        capsys.readouterr()
        main(_argv(config, "anchors", "list", "--plan", "P1"))
        out = capsys.readouterr().out
        assert "Door" in out
        assert "x=0.3000" in out

        main(_argv(config, "select-plan", "P2"))
        assert "当前平面图: P2" in capsys.readouterr().out
