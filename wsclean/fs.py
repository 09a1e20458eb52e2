"""Filesystem primitives: disk statistics, directory sizes and removal."""

import logging
import os
import shutil
import stat
from dataclasses import dataclass
from pathlib import Path
from typing import Union

from .exceptions import WorkspaceIOError

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


@dataclass(frozen=True)
class DiskStat:
    """Snapshot of total and free bytes for one filesystem."""

    total_bytes: int
    free_bytes: int


def get_disk_stat(path: PathLike) -> DiskStat:
    """Return total/free bytes for the filesystem containing ``path``.

    Free bytes are what unprivileged users can allocate; blocks reserved for
    root are not counted as free.

    Args:
        path: Any path on the filesystem to inspect

    Returns:
        DiskStat snapshot

    Raises:
        WorkspaceIOError: If the filesystem cannot be queried
    """
    try:
        usage = shutil.disk_usage(path)
    except OSError as e:
        raise WorkspaceIOError(f"Failed to create stats with error: {e}", path=path) from e

    disk_stat = DiskStat(total_bytes=int(usage.total), free_bytes=int(usage.free))
    logger.debug("Disk stat for %s: total=%d free=%d", path, disk_stat.total_bytes, disk_stat.free_bytes)
    return disk_stat


def _raise_walk_error(error: OSError) -> None:
    raise error


def calculate_directory_size(path: PathLike) -> int:
    """Sum the size of every non-directory entry below ``path``.

    Symlinks are not followed; a link contributes its own size. If ``path``
    is a file, its size is returned.

    Args:
        path: Directory (or file) to measure

    Returns:
        Total size in bytes

    Raises:
        WorkspaceIOError: On any traversal error; no partial result is returned
    """
    try:
        root_stat = os.lstat(path)
        if not stat.S_ISDIR(root_stat.st_mode):
            return root_stat.st_size

        size = 0
        for dirpath, dirnames, filenames in os.walk(path, onerror=_raise_walk_error):
            for name in filenames:
                size += os.lstat(os.path.join(dirpath, name)).st_size
            # os.walk lists symlinks to directories as dirnames without descending
            for name in dirnames:
                entry = os.path.join(dirpath, name)
                if os.path.islink(entry):
                    size += os.lstat(entry).st_size
        return size
    except OSError as e:
        raise WorkspaceIOError(f"Failed to calculate size of directory with error: {e}", path=path) from e


def remove_workspace_dir(path: PathLike) -> None:
    """Remove a workspace directory tree.

    A path that no longer exists counts as removed. A plain file or symlink
    at the path is unlinked.

    Raises:
        OSError: If the tree exists but cannot be removed
    """
    target = Path(path)
    if target.is_symlink() or target.is_file():
        target.unlink(missing_ok=True)
        return
    try:
        shutil.rmtree(path)
    except FileNotFoundError:
        logger.debug("Workspace directory %s already gone", path)
