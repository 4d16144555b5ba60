"""Tests for the pandas-backed anchor point store."""

from ble_fingerprint_locator.anchor_store import AnchorStore
from ble_fingerprint_locator.models import AnchorPoint


def _anchor(anchor_id="a1", plan_id="P1", x=0.2, y=0.4):
    return AnchorPoint(id=anchor_id, plan_id=plan_id, name=anchor_id.upper(), x_norm=x, y_norm=y)


class TestAnchorStore:
    def test_missing_file_is_empty(self, tmp_path):
        store = AnchorStore(str(tmp_path / "anchors.csv"))
        store.load()
        assert len(store) == 0
        assert store.all() == {}

    def test_add_saves_and_reloads(self, tmp_path):
        path = str(tmp_path / "anchors.csv")
        store = AnchorStore(path)
        store.add(_anchor("a1"))
        store.add(_anchor("a2", plan_id="P2", x=0.9, y=0.1))

        reloaded = AnchorStore(path)
        reloaded.load()
        assert reloaded.get("a1") == _anchor("a1")
        assert [a.id for a in reloaded.for_plan("P2")] == ["a2"]

    def test_coordinates_clamped(self, tmp_path):
        store = AnchorStore(str(tmp_path / "anchors.csv"))
        store.add(_anchor("a1", x=1.5, y=-0.2))
        anchor = store.get("a1")
        assert (anchor.x_norm, anchor.y_norm) == (1.0, 0.0)

    def test_move_rename_delete(self, tmp_path):
        store = AnchorStore(str(tmp_path / "anchors.csv"))
        store.add(_anchor("a1"))
        assert store.move("a1", 0.6, 0.7)
        assert store.rename("a1", "Lobby")
        anchor = store.get("a1")
        assert (anchor.x_norm, anchor.y_norm, anchor.name) == (0.6, 0.7, "Lobby")
        assert store.delete("a1")
        assert not store.has("a1")
        assert not store.move("a1", 0.1, 0.1)
        assert not store.delete("a1")

    def test_invalid_rows_dropped_on_load(self, tmp_path):
        path = tmp_path / "anchors.csv"
        path.write_text(
            "id,plan_id,name,x_norm,y_norm\n"
            "a1,P1,Door,0.1,0.2\n"
            "a2,P1,Bad,abc,0.2\n",
            encoding="utf-8",
        )
        store = AnchorStore(str(path))
        store.load()
        assert list(store.all()) == ["a1"]
