"""Unit tests for CSV / JSONL record parsing and export."""

import json
from dataclasses import replace

from conftest import make_row
from ble_fingerprint_locator.models import ParseStatus
from ble_fingerprint_locator.records import (
    CSV_HEADER,
    accepted_rows,
    parse_csv_line,
    parse_csv_text,
    parse_jsonl_line,
    parse_jsonl_text,
    rows_to_csv,
    rows_to_jsonl,
)


class TestCsvExport:
    def test_header_and_six_decimals(self):
        text = rows_to_csv([make_row(1, 2, -65, x=0.25, y=1 / 3)])
        lines = text.split("\n")
        assert lines[0] == CSV_HEADER
        fields = lines[1].split(",")
        assert fields[4] == "0.250000"
        assert fields[5] == "0.333333"
        assert fields[7:10] == ["1", "2", "-65"]

    def test_export_then_import_keeps_rows(self):
        rows = [make_row(1, 2, -65, x=0.25, y=0.5), make_row(3, 4, -71, x=0.25, y=0.5)]
        parsed, rejected = accepted_rows(parse_csv_text(rows_to_csv(rows)))
        assert rejected == 0
        assert parsed == rows

    def test_comma_in_point_name_is_quoted(self):
        row = replace(make_row(1, 2, -65, x=0.25, y=0.5), point_name="Room 1, east")
        text = rows_to_csv([row])
        assert '"Room 1, east"' in text.split("\n")[1]
        parsed, rejected = accepted_rows(parse_csv_text(text))
        assert rejected == 0
        assert parsed == [row]

    def test_empty_export_is_header_only(self):
        assert rows_to_csv([]) == CSV_HEADER


class TestCsvImport:
    def test_positional_parse(self):
        result = parse_csv_line("t1, P1, a1, A1, 0.1, 0.2, uuid, 7, 9, -61, live")
        assert result.ok
        row = result.value
        assert (row.plan_id, row.point_id, row.point_name) == ("P1", "a1", "A1")
        assert row.key == "7_9"
        assert row.rssi == -61

    def test_header_is_skipped_even_if_renamed(self):
        text = "a,b,c,d,e,f,g,h,i,j,k\nt1,P1,a1,A1,0.1,0.2,u,1,2,-60,live\n"
        results = parse_csv_text(text)
        assert len(results) == 1
        assert results[0].ok

    def test_non_finite_values_rejected(self):
        bad_x = parse_csv_line("t1,P1,a1,A1,abc,0.2,u,1,2,-60,live")
        bad_rssi = parse_csv_line("t1,P1,a1,A1,0.1,0.2,u,1,2,nan,live")
        bad_y = parse_csv_line("t1,P1,a1,A1,0.1,inf,u,1,2,-60,live")
        for result in (bad_x, bad_rssi, bad_y):
            assert result.status is ParseStatus.REJECTED
            assert result.reason

    def test_short_line_rejected(self):
        assert not parse_csv_line("t1,P1,a1").ok

    def test_accepted_count_and_blank_lines(self):
        text = "\n".join(
            [
                CSV_HEADER,
                "t1,P1,a1,A1,0.1,0.2,u,1,2,-60,live",
                "",
                "t1,P1,a1,A1,x,0.2,u,1,2,-60,live",
                "t1,P1,a1,A1,0.1,0.2,u,1,3,-62,live",
            ]
        )
        rows, rejected = accepted_rows(parse_csv_text(text))
        assert len(rows) == 2
        assert rejected == 1

    def test_header_only(self):
        assert parse_csv_text(CSV_HEADER) == []


class TestJsonl:
    def test_line_expands_to_rows(self):
        line = json.dumps(
            {
                "timestamp": "t1",
                "planID": "P1",
                "pointID": "a1",
                "xNorm": 0.3,
                "yNorm": 0.4,
                "mode": "median8s",
                "readings": [{"deviceId": "1_2", "rssi": -60}, {"deviceId": "1_3", "rssi": -70}],
            }
        )
        result = parse_jsonl_line(line)
        assert result.ok
        assert [r.key for r in result.value] == ["1_2", "1_3"]
        assert all(r.mode == "median8s" for r in result.value)

    def test_invalid_lines_are_skipped(self):
        good = json.dumps({"xNorm": 0.1, "yNorm": 0.1, "readings": [{"deviceId": "1_2", "rssi": -60}]})
        text = "\n".join(
            [
                good,
                "{not json",
                json.dumps({"xNorm": 0.1, "yNorm": 0.1}),
                json.dumps({"xNorm": 0.1, "yNorm": 0.1, "readings": [{"deviceId": "AA:BB", "rssi": -60}]}),
                json.dumps([1, 2]),
            ]
        )
        results = parse_jsonl_text(text)
        assert [r.ok for r in results] == [True, False, False, False, False]
        rows, rejected = accepted_rows(results)
        assert len(rows) == 1
        assert rejected == 4

    def test_non_ascii_digit_device_id_rejected(self):
        bad = json.dumps({"xNorm": 0.1, "yNorm": 0.1, "readings": [{"deviceId": "²_1", "rssi": -60}]})
        good = json.dumps({"xNorm": 0.1, "yNorm": 0.1, "readings": [{"deviceId": "1_2", "rssi": -60}]})
        results = parse_jsonl_text(f"{bad}\n{good}")
        assert [r.ok for r in results] == [False, True]
        assert "deviceId" in results[0].reason
        rows, rejected = accepted_rows(results)
        assert [r.key for r in rows] == ["1_2"]
        assert rejected == 1

    def test_export_groups_capture_instants(self):
        rows = [
            make_row(1, 2, -60, timestamp="t1"),
            make_row(1, 3, -70, timestamp="t1"),
            make_row(1, 2, -62, timestamp="t2"),
        ]
        lines = rows_to_jsonl(rows).split("\n")
        assert len(lines) == 2
        first = json.loads(lines[0])
        assert first["readings"] == [{"deviceId": "1_2", "rssi": -60}, {"deviceId": "1_3", "rssi": -70}]
        reparsed, rejected = accepted_rows(parse_jsonl_text("\n".join(lines)))
        assert rejected == 0
        assert sorted((r.timestamp, r.key, r.rssi) for r in reparsed) == sorted(
            (r.timestamp, r.key, r.rssi) for r in rows
        )
