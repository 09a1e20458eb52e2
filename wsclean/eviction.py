"""Eviction engine: ordering candidates and applying cleaning strategies.

Every strategy walks the registry's workspaces oldest-used first, removes
the workspace directory, then drops the registry entry. The engine persists
the registry once after each strategy pass so chained strategies each leave
a consistent spec file behind.
"""

import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Union

from .config import AvailabilityFormula
from .fs import DiskStat, get_disk_stat, remove_workspace_dir
from .registry import Registry, Workspace, utcnow, validate_key

logger = logging.getLogger(__name__)

STRATEGY_FREE_PERCENTAGE = "perecentage"
STRATEGY_UNUSED = "unused"

StatProvider = Callable[[Path], DiskStat]
Remover = Callable[[Path], None]


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def available_percentage(disk_stat: DiskStat, formula: AvailabilityFormula = "direct") -> int:
    """Percentage of the filesystem considered available.

    ``direct`` is ``free / total * 100``. ``legacy`` reproduces the historical
    percentage-change arithmetic ``100 - (total - free) / free * 100``, which
    drops much faster than the free ratio and is undefined for ``free == 0``
    (reported as 0 here).

    Args:
        disk_stat: Current total/free bytes
        formula: "direct" or "legacy"

    Returns:
        Rounded percentage (half rounds up)
    """
    total, free = disk_stat.total_bytes, disk_stat.free_bytes
    if formula == "legacy":
        if free <= 0:
            return 0
        return 100 - _round_half_up((total - free) / free * 100)
    if formula != "direct":
        raise ValueError(f"Unknown availability formula: {formula}")
    if total <= 0:
        return 0
    return _round_half_up(free / total * 100)


@dataclass
class EvictionReport:
    """Outcome of one strategy pass."""

    strategy: str
    evicted: List[str] = field(default_factory=list)
    failed_removals: List[str] = field(default_factory=list)
    available_before: Optional[int] = None
    available_after: Optional[int] = None


class CleaningStrategy(ABC):
    """A single eviction policy applied by the engine."""

    name: str = ""

    @abstractmethod
    def apply(self, engine: "EvictionEngine", report: EvictionReport) -> None:
        """Evict workspaces through ``engine``, recording results in ``report``."""


class FreePercentageStrategy(CleaningStrategy):
    """Evict oldest-used workspaces until enough of the disk is free."""

    name = STRATEGY_FREE_PERCENTAGE

    def __init__(self, percentage: int, formula: AvailabilityFormula = "direct"):
        self.percentage = percentage
        self.formula = formula

    def _available(self, engine: "EvictionEngine") -> int:
        available = available_percentage(engine.disk_stat(), self.formula)
        logger.info("Available space: %d%%", available)
        return available

    def apply(self, engine: "EvictionEngine", report: EvictionReport) -> None:
        logger.info("Keeping at least %d%% available", self.percentage)
        available = self._available(engine)
        report.available_before = available

        if available >= self.percentage:
            report.available_after = available
            return

        logger.info("%d%% > %d%%, starting to clean", self.percentage, available)
        for workspace in engine.candidates():
            # Each deletion changes availability, so re-check before every candidate
            available = self._available(engine)
            if available >= self.percentage:
                break
            logger.info(
                "Checking key: %s, size: %d, last-used: %s",
                workspace.key,
                workspace.size,
                workspace.last_used.isoformat(),
            )
            engine.evict(workspace, report)
        else:
            available = self._available(engine)

        report.available_after = available


class UnusedStrategy(CleaningStrategy):
    """Evict workspaces whose last use is more than N days ago."""

    name = STRATEGY_UNUSED

    def __init__(self, days: int, now: Optional[datetime] = None):
        self.days = days
        self.now = now

    def apply(self, engine: "EvictionEngine", report: EvictionReport) -> None:
        now = self.now or utcnow()
        logger.info("Cleaning workspaces that were not used for the last %d days", self.days)
        try:
            max_idle = timedelta(days=self.days)
        except OverflowError:
            logger.info("%d days exceeds any representable idle time, nothing is stale", self.days)
            return

        for workspace in engine.candidates():
            if now - workspace.last_used > max_idle:
                logger.info(
                    "Workspace %s was last used at %s, deleting",
                    workspace.key,
                    workspace.last_used.isoformat(),
                )
                engine.evict(workspace, report)


class EvictionEngine:
    """Applies cleaning strategies to a registry rooted at ``root``."""

    def __init__(
        self,
        root: Union[str, Path],
        registry: Registry,
        stat_provider: StatProvider = get_disk_stat,
        remover: Remover = remove_workspace_dir,
    ):
        self.root = Path(root)
        self.registry = registry
        self._stat_provider = stat_provider
        self._remover = remover

    def candidates(self) -> List[Workspace]:
        """Current eviction candidates, oldest-used first."""
        return self.registry.sorted_by_last_used()

    def disk_stat(self) -> DiskStat:
        return self._stat_provider(self.root)

    def evict(self, workspace: Workspace, report: EvictionReport) -> None:
        """Delete a workspace directory and drop its registry entry.

        A failed directory removal is logged and recorded but does not stop
        the pass; the registry entry is removed either way.
        """
        path = self.root / validate_key(workspace.key)
        logger.info("Cleaning workspace %s", workspace.key)
        try:
            self._remover(path)
        except OSError as e:
            logger.warning("Failed to delete %s: %s (registry entry removed anyway)", path, e)
            report.failed_removals.append(workspace.key)

        self.registry.remove(workspace.key)
        report.evicted.append(workspace.key)

    def apply(self, strategy: CleaningStrategy) -> EvictionReport:
        """Run one strategy pass and persist the registry afterwards.

        Raises:
            WorkspaceIOError: If disk stats cannot be read or the spec cannot be written
        """
        logger.info("Cleaning workspaces with strategy %s", strategy.name)
        report = EvictionReport(strategy=strategy.name)
        strategy.apply(self, report)
        self.registry.persist(self.root)
        if report.evicted:
            logger.info("Strategy %s evicted %d workspace(s)", strategy.name, len(report.evicted))
        return report

    def apply_all(self, strategies: Sequence[CleaningStrategy]) -> List[EvictionReport]:
        """Run strategies in order against the same in-memory registry."""
        return [self.apply(strategy) for strategy in strategies]


__all__ = [
    "STRATEGY_FREE_PERCENTAGE",
    "STRATEGY_UNUSED",
    "CleaningStrategy",
    "EvictionEngine",
    "EvictionReport",
    "FreePercentageStrategy",
    "UnusedStrategy",
    "available_percentage",
]
