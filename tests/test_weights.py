"""
Tests for weight table persistence and the refreshing WeightStore.
"""
import pytest

from intake.consensus.models import WeightTable
from intake.consensus.weights import WeightStore, current_or_uniform, dump_weight_table, load_weight_table
from intake.errors import WeightTableError

from conftest import weight_table


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def write_table(path, version, status="approved", weights=None):
    dump_weight_table(weight_table(weights or {"sku": {"r1": 1.5}}, version=version, status=status), path)


class TestPersistence:
    def test_dump_then_load(self, tmp_path):
        path = tmp_path / "nested" / "weights.yaml"
        write_table(path, "v1")
        table = load_weight_table(path)
        assert table.version == "v1"
        assert table.weight("sku", "r1") == 1.5
        assert table.weight("sku", "r2") == 1.0
        assert [p.name for p in path.parent.iterdir()] == ["weights.yaml"]

    def test_pending_table_is_rejected_at_runtime(self, tmp_path):
        path = tmp_path / "weights.yaml"
        write_table(path, "v2", status="pending")
        with pytest.raises(WeightTableError, match="only approved tables"):
            load_weight_table(path)
        assert load_weight_table(path, require_approved=False).status == "pending"

    @pytest.mark.parametrize("text", ["- just\n- a list\n", "version: [unclosed\n", "status: approved\n"])
    def test_invalid_files(self, tmp_path, text):
        path = tmp_path / "weights.yaml"
        path.write_text(text, encoding="utf-8")
        with pytest.raises(WeightTableError):
            load_weight_table(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(WeightTableError, match="Cannot read"):
            load_weight_table(tmp_path / "absent.yaml")

    def test_mean_weight(self):
        table = weight_table({"sku": {"r1": 2.0}, "quantity": {"r1": 1.0}})
        assert table.mean_weight("r1") == pytest.approx(1.5)
        assert table.mean_weight("r2") == 1.0


class TestWeightStore:
    def test_missing_file_serves_uniform(self, tmp_path):
        store = WeightStore(tmp_path / "absent.yaml")
        assert store.current().version == "default"
        assert current_or_uniform(None).version == "default"

    def test_refresh_after_interval(self, tmp_path):
        path = tmp_path / "weights.yaml"
        write_table(path, "v1")
        clock = FakeClock()
        store = WeightStore(path, refresh_seconds=60, clock=clock)
        assert store.current().version == "v1"

        write_table(path, "v2")
        clock.now += 30
        assert store.current().version == "v1"
        clock.now += 31
        assert store.current().version == "v2"

    def test_broken_file_keeps_previous_snapshot(self, tmp_path):
        path = tmp_path / "weights.yaml"
        write_table(path, "v1")
        store = WeightStore(path, refresh_seconds=0)
        path.write_text("version: [broken\n", encoding="utf-8")
        assert store.refresh() is False
        assert store.current().version == "v1"

        write_table(path, "v3", status="pending")
        assert store.refresh() is False
        assert store.current().version == "v1"

    def test_invalid_file_at_startup_serves_uniform(self, tmp_path):
        path = tmp_path / "weights.yaml"
        path.write_text("not: [valid\n", encoding="utf-8")
        assert WeightStore(path).current().version == "default"

    def test_snapshot_is_immutable_object(self, tmp_path):
        path = tmp_path / "weights.yaml"
        write_table(path, "v1")
        store = WeightStore(path, refresh_seconds=0)
        held = store.current()
        write_table(path, "v2", weights={"sku": {"r1": 9.0}})
        store.refresh()
        assert held.version == "v1"
        assert held.weight("sku", "r1") == 1.5
        with pytest.raises(Exception):
            held.version = "changed"

    def test_swap(self, tmp_path):
        store = WeightStore(tmp_path / "absent.yaml")
        store.swap(WeightTable(version="manual", status="approved"))
        assert store.current().version == "manual"
        with pytest.raises(WeightTableError):
            store.swap(WeightTable(version="draft", status="pending"))
        assert store.current().version == "manual"
