"""Tests for the eviction engine and its strategies."""

import pytest

from wsclean.eviction import (
    EvictionEngine,
    FreePercentageStrategy,
    UnusedStrategy,
    available_percentage,
)
from wsclean.exceptions import WorkspaceIOError
from wsclean.fs import DiskStat
from wsclean.registry import Registry, spec_path


@pytest.fixture
def registry(tmp_path, now, days_ago):
    """Registry with three workspaces inserted out of last-used order."""
    registry = Registry.create_empty(tmp_path, now=now)
    registry.upsert("b", 300, now=days_ago(5))
    registry.upsert("c", 500, now=days_ago(1))
    registry.upsert("a", 150, now=days_ago(10))
    registry.persist(tmp_path)
    return registry


def make_engine(tmp_path, registry, disk):
    return EvictionEngine(tmp_path, registry, stat_provider=disk.stat, remover=disk.remove)


class TestAvailablePercentage:
    @pytest.mark.parametrize(
        "total,free,expected",
        [
            (1000, 250, 25),
            (1000, 1000, 100),
            (1000, 0, 0),
            (200, 1, 1),  # 0.5 rounds up
            (0, 0, 0),
        ],
    )
    def test_direct(self, total, free, expected):
        assert available_percentage(DiskStat(total, free)) == expected

    @pytest.mark.parametrize(
        "total,free,expected",
        [
            (1000, 800, 75),
            (1000, 500, 0),
            (1000, 250, -200),
            (1000, 1000, 100),
            (1000, 0, 0),
        ],
    )
    def test_legacy(self, total, free, expected):
        assert available_percentage(DiskStat(total, free), "legacy") == expected

    def test_unknown_formula(self):
        with pytest.raises(ValueError):
            available_percentage(DiskStat(1, 1), "median")


class TestFreePercentageStrategy:
    def test_no_eviction_when_target_met(self, tmp_path, registry, fake_disk):
        before = spec_path(tmp_path).read_text()
        disk = fake_disk(total=1000, free=400)

        report = make_engine(tmp_path, registry, disk).apply(FreePercentageStrategy(40))

        assert report.evicted == []
        assert report.available_before == report.available_after == 40
        assert disk.removed == []
        assert set(registry.workspaces) == {"a", "b", "c"}
        assert spec_path(tmp_path).read_text() == before

    def test_evicts_oldest_first_until_target_met(self, tmp_path, registry, fake_disk):
        disk = fake_disk(total=1000, free=100, sizes={"a": 150, "b": 300, "c": 500})

        report = make_engine(tmp_path, registry, disk).apply(FreePercentageStrategy(30))

        # a frees 15% (25% total), b brings it to 55%; c is never touched
        assert report.evicted == ["a", "b"]
        assert disk.removed == ["a", "b"]
        assert set(registry.workspaces) == {"c"}
        assert report.available_before == 10
        assert report.available_after == 55
        assert set(Registry.load(tmp_path).workspaces) == {"c"}

    def test_newer_workspace_survives_when_oldest_is_enough(self, tmp_path, registry, fake_disk):
        disk = fake_disk(total=1000, free=100, sizes={"a": 300, "b": 300, "c": 500})

        report = make_engine(tmp_path, registry, disk).apply(FreePercentageStrategy(30))

        assert report.evicted == ["a"]
        assert set(registry.workspaces) == {"b", "c"}

    def test_rechecks_availability_before_each_candidate(self, tmp_path, registry, fake_disk):
        disk = fake_disk(total=1000, free=100, sizes={"a": 150, "b": 300, "c": 500})

        make_engine(tmp_path, registry, disk).apply(FreePercentageStrategy(30))

        # initial check, before a, before b, before c (target met, stop)
        assert disk.stat_calls == 4

    def test_unreachable_target_evicts_everything(self, tmp_path, registry, fake_disk):
        disk = fake_disk(total=1000, free=0, sizes={"a": 10, "b": 10, "c": 10})

        report = make_engine(tmp_path, registry, disk).apply(FreePercentageStrategy(90))

        assert report.evicted == ["a", "b", "c"]
        assert registry.workspaces == {}
        assert report.available_after == 3

    def test_legacy_formula(self, tmp_path, registry, fake_disk):
        # legacy: 100 - (1000 - 800) / 800 * 100 = 75
        disk = fake_disk(total=1000, free=800, sizes={"a": 150})

        report = make_engine(tmp_path, registry, disk).apply(FreePercentageStrategy(80, formula="legacy"))

        assert report.available_before == 75
        assert report.evicted == ["a"]
        assert report.available_after == 95

    def test_stat_failure_propagates(self, tmp_path, registry, fake_disk):
        def broken_stat(path):
            raise WorkspaceIOError("Failed to create stats with error: boom", path=path)

        engine = EvictionEngine(tmp_path, registry, stat_provider=broken_stat, remover=fake_disk(1, 1).remove)

        with pytest.raises(WorkspaceIOError):
            engine.apply(FreePercentageStrategy(50))


class TestUnusedStrategy:
    def test_threshold_is_strict(self, tmp_path, now, days_ago, fake_disk):
        registry = Registry.create_empty(tmp_path, now=now)
        registry.upsert("stale", 1, now=days_ago(31))
        registry.upsert("recent", 1, now=days_ago(29))
        registry.upsert("boundary", 1, now=days_ago(30))
        disk = fake_disk(total=1000, free=500)

        report = make_engine(tmp_path, registry, disk).apply(UnusedStrategy(30, now=now))

        assert report.evicted == ["stale"]
        assert disk.removed == ["stale"]
        assert set(registry.workspaces) == {"recent", "boundary"}
        assert set(Registry.load(tmp_path).workspaces) == {"recent", "boundary"}

    def test_zero_days_evicts_anything_used_before_now(self, tmp_path, registry, now, fake_disk):
        disk = fake_disk(total=1000, free=500)

        report = make_engine(tmp_path, registry, disk).apply(UnusedStrategy(0, now=now))

        assert report.evicted == ["a", "b", "c"]

    def test_does_not_query_disk(self, tmp_path, registry, now, fake_disk):
        disk = fake_disk(total=1000, free=500)

        make_engine(tmp_path, registry, disk).apply(UnusedStrategy(7, now=now))

        assert disk.stat_calls == 0

    @pytest.mark.parametrize("days", [3000000, 10**12])
    def test_days_beyond_calendar_range_evict_nothing(self, tmp_path, registry, now, fake_disk, days):
        disk = fake_disk(total=1000, free=500)

        report = make_engine(tmp_path, registry, disk).apply(UnusedStrategy(days, now=now))

        assert report.evicted == []
        assert set(Registry.load(tmp_path).workspaces) == {"a", "b", "c"}


class TestEvictionEngine:
    def test_removal_failure_still_removes_entry(self, tmp_path, registry, now, fake_disk):
        def failing_remover(path):
            raise PermissionError(13, "Permission denied", str(path))

        engine = EvictionEngine(tmp_path, registry, stat_provider=fake_disk(1000, 500).stat, remover=failing_remover)

        report = engine.apply(UnusedStrategy(7, now=now))

        assert report.evicted == ["a"]
        assert report.failed_removals == ["a"]
        assert "a" not in registry.workspaces
        assert "a" not in Registry.load(tmp_path).workspaces

    def test_default_remover_deletes_directory(self, tmp_path, registry, now, make_workspace_dir, fake_disk):
        path = make_workspace_dir("a", {"data/file.bin": 64})
        engine = EvictionEngine(tmp_path, registry, stat_provider=fake_disk(1000, 500).stat)

        engine.apply(UnusedStrategy(7, now=now))

        assert not path.exists()

    def test_chained_strategies_share_registry(self, tmp_path, registry, now, monkeypatch, fake_disk):
        persisted = []
        original_persist = Registry.persist

        def counting_persist(self, root):
            persisted.append(sorted(self.workspaces))
            return original_persist(self, root)

        monkeypatch.setattr(Registry, "persist", counting_persist)
        disk = fake_disk(total=1000, free=100, sizes={"a": 150, "b": 300, "c": 500})
        engine = make_engine(tmp_path, registry, disk)

        reports = engine.apply_all([FreePercentageStrategy(20), UnusedStrategy(3, now=now)])

        assert [r.strategy for r in reports] == ["perecentage", "unused"]
        assert reports[0].evicted == ["a"]
        assert reports[1].evicted == ["b"]
        assert persisted == [["b", "c"], ["c"]]
