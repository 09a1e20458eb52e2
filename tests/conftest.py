"""Test configuration and fixtures."""

from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, List, Optional

import pytest

from wsclean.config import Settings
from wsclean.fs import DiskStat

NOW = datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeDisk:
    """In-memory filesystem stats: removing a workspace frees its recorded size."""

    def __init__(self, total: int, free: int, sizes: Optional[Dict[str, int]] = None):
        self.total = total
        self.free = free
        self.sizes = sizes or {}
        self.removed: List[str] = []
        self.stat_calls = 0

    def stat(self, path) -> DiskStat:
        self.stat_calls += 1
        return DiskStat(total_bytes=self.total, free_bytes=self.free)

    def remove(self, path) -> None:
        name = Path(path).name
        self.removed.append(name)
        self.free += self.sizes.get(name, 0)


@pytest.fixture
def fake_disk():
    """Factory for FakeDisk instances passed to the eviction engine."""

    def _create_disk(total: int, free: int, sizes: Optional[Dict[str, int]] = None) -> FakeDisk:
        return FakeDisk(total, free, sizes)

    return _create_disk


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep the invoking shell's variables out of every test."""
    for field in Settings.model_fields.values():
        monkeypatch.delenv(field.alias, raising=False)


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def days_ago():
    """Return a helper producing timestamps relative to NOW."""

    def _days_ago(days: float) -> datetime:
        return NOW - timedelta(days=days)

    return _days_ago


@pytest.fixture
def make_workspace_dir(tmp_path):
    """Create a workspace subdirectory with files of the given sizes."""

    def _make(key: str, files: Optional[Dict[str, int]] = None, root: Optional[Path] = None) -> Path:
        base = (root or tmp_path) / key
        base.mkdir(parents=True, exist_ok=True)
        for rel_path, size in (files or {}).items():
            target = base / rel_path
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(b"x" * size)
        return base

    return _make
