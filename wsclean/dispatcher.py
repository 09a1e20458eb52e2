"""Maps a command name and its settings onto registry and engine calls."""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional

from .config import Settings
from .eviction import (
    STRATEGY_FREE_PERCENTAGE,
    STRATEGY_UNUSED,
    CleaningStrategy,
    EvictionEngine,
    EvictionReport,
    FreePercentageStrategy,
    StatProvider,
    UnusedStrategy,
)
from .exceptions import WsCleanError
from .fs import calculate_directory_size, get_disk_stat, remove_workspace_dir
from .registry import Registry, utcnow, validate_key

logger = logging.getLogger(__name__)


class Command(str, Enum):
    INIT = "init"
    UPDATE = "update"
    CLEAN = "clean"


@dataclass
class CommandResult:
    """Tagged outcome of a dispatched command.

    ``ok`` is False exactly when ``error`` is set. Callers decide how to
    surface a failure; the CLI maps it to exit code 1.
    """

    ok: bool
    command: Optional[str]
    message: str = ""
    error: Optional[WsCleanError] = None
    reports: List[EvictionReport] = field(default_factory=list)

    @property
    def exit_code(self) -> int:
        return 0 if self.ok else 1

    @classmethod
    def failure(cls, command: Optional[str], error: WsCleanError) -> "CommandResult":
        return cls(ok=False, command=command, message=str(error), error=error)


def run_init(root: Path, now: Optional[datetime] = None) -> CommandResult:
    Registry.create_empty(root, now=now)
    return CommandResult(ok=True, command=Command.INIT.value, message=f"Initialized empty registry in {root}")


def run_update(root: Path, key: str, now: Optional[datetime] = None) -> CommandResult:
    registry = Registry.load(root)
    validate_key(key)
    size = calculate_directory_size(root / key)
    logger.info("Directory %s, Size %d", root / key, size)
    workspace, created = registry.upsert(key, size, now=now)
    registry.persist(root)
    action = "Created" if created else "Updated"
    return CommandResult(
        ok=True,
        command=Command.UPDATE.value,
        message=f"{action} workspace {workspace.key} ({workspace.size} bytes)",
    )


def build_strategy(name: str, settings: Settings, now: Optional[datetime] = None) -> Optional[CleaningStrategy]:
    """Build the strategy called ``name`` from its settings.

    Returns None for unknown names.

    Raises:
        ConfigurationError: If the strategy's parameter is not set or not a valid integer
    """
    if name == STRATEGY_FREE_PERCENTAGE:
        return FreePercentageStrategy(
            settings.require("percentage_to_keep_available"),
            formula=settings.availability_formula,
        )
    if name == STRATEGY_UNUSED:
        return UnusedStrategy(settings.require("unused_n_days"), now=now)
    return None


def run_clean(
    root: Path,
    settings: Settings,
    now: Optional[datetime] = None,
    stat_provider: StatProvider = get_disk_stat,
    remover: Callable[[Path], None] = remove_workspace_dir,
) -> CommandResult:
    """Load the registry once and apply each requested strategy in order.

    A strategy's parameter is only required when that strategy is reached,
    so earlier passes are already persisted if a later one is misconfigured.
    """
    strategy_names = settings.strategies
    registry = Registry.load(root)
    engine = EvictionEngine(root, registry, stat_provider=stat_provider, remover=remover)
    now = now or utcnow()

    reports = []
    for name in strategy_names:
        strategy = build_strategy(name, settings, now=now)
        if strategy is None:
            logger.warning("Unknown cleaning strategy %r, skipping", name)
            continue
        reports.append(engine.apply(strategy))

    evicted = sum(len(report.evicted) for report in reports)
    return CommandResult(
        ok=True,
        command=Command.CLEAN.value,
        message=f"Evicted {evicted} workspace(s), {len(registry.workspaces)} remaining",
        reports=reports,
    )


def dispatch(
    settings: Settings,
    now: Optional[datetime] = None,
    stat_provider: StatProvider = get_disk_stat,
    remover: Callable[[Path], None] = remove_workspace_dir,
) -> CommandResult:
    """Run the command named by ``settings.command``.

    This is the only layer that turns exceptions into results: any
    ``WsCleanError`` raised below becomes a failed ``CommandResult``.
    Unrecognized commands succeed without doing anything.

    Args:
        settings: Invocation settings
        now: Time used for timestamps and staleness checks (defaults to now)
        stat_provider: Filesystem stat provider used by the clean command
        remover: Directory removal primitive used by the clean command

    Returns:
        CommandResult describing the outcome
    """
    command = settings.command
    try:
        command = settings.require("command")
        root = Path(settings.require("workspace"))
        logger.info("Running command: %s where workspace=%s", command, root)

        if command == Command.INIT.value:
            return run_init(root, now=now)
        if command == Command.UPDATE.value:
            return run_update(root, settings.require("key"), now=now)
        if command == Command.CLEAN.value:
            return run_clean(root, settings, now=now, stat_provider=stat_provider, remover=remover)
    except WsCleanError as e:
        return CommandResult.failure(command, e)

    logger.warning("Unknown command %r, nothing to do", command)
    return CommandResult(ok=True, command=command, message=f"Unknown command {command!r}, nothing to do")


__all__ = [
    "Command",
    "CommandResult",
    "build_strategy",
    "dispatch",
    "run_clean",
    "run_init",
    "run_update",
]
