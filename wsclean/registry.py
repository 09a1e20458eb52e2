"""Workspace registry persisted as ``workspace.json`` at the workspace root."""

import logging
import os
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .exceptions import ConfigurationError, SpecFormatError, WorkspaceIOError

logger = logging.getLogger(__name__)

SPEC_FILE_NAME = "workspace.json"

# Registries written by earlier releases carry nanosecond fractions
_FRACTION_RE = re.compile(r"\.(\d+)")
_ZERO_TIME = datetime(1, 1, 1, tzinfo=timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value):
    """Parse RFC 3339 strings (``Z`` suffix, any fraction length) into aware datetimes.

    Naive datetimes are assumed to be UTC. Values that are neither strings nor
    datetimes are passed through for pydantic to validate.
    """
    if isinstance(value, str):
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        text = _FRACTION_RE.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)
        value = datetime.fromisoformat(text)
    if isinstance(value, datetime) and value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def spec_path(root: Union[str, Path]) -> Path:
    """Path of the spec file for a workspace root."""
    return Path(root) / SPEC_FILE_NAME


def validate_key(key: str) -> str:
    """Ensure a workspace key names exactly one subdirectory of the root.

    Raises:
        ConfigurationError: If the key is empty, ``.``/``..`` or contains a separator
    """
    separators = [sep for sep in (os.sep, os.altsep, "/") if sep]
    if not key or key in (".", "..") or any(sep in key for sep in separators):
        raise ConfigurationError(f"Invalid workspace key {key!r}: must be a single directory name")
    return key


class Workspace(BaseModel):
    """A tracked subdirectory with its size and usage timestamps."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    size: int = Field(default=0, ge=0, description="Size of the workspace directory in bytes")
    key: str = Field(default="", description="Subdirectory name under the workspace root")
    last_used: datetime = Field(..., alias="last-used", description="Last time the workspace was updated")
    creation_time: datetime = Field(..., alias="creation-time", description="First time the workspace was seen")

    @field_validator("last_used", "creation_time", mode="before")
    @classmethod
    def parse_datetime(cls, v):
        return parse_timestamp(v)


class Registry(BaseModel):
    """All tracked workspaces plus the registry's own creation time.

    The persisted file is the only state carried between invocations: load it
    at the start of an operation, mutate in memory, persist at the end.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    workspaces: Dict[str, Workspace] = Field(default_factory=dict)
    creation_time: datetime = Field(default=_ZERO_TIME, alias="CreationTime")

    @field_validator("workspaces", mode="before")
    @classmethod
    def default_workspaces(cls, v):
        """Treat ``"workspaces": null`` as an empty mapping."""
        return {} if v is None else v

    @field_validator("creation_time", mode="before")
    @classmethod
    def parse_datetime(cls, v):
        return parse_timestamp(v)

    def model_post_init(self, __context) -> None:
        for key, workspace in self.workspaces.items():
            if not workspace.key:
                workspace.key = key

    @classmethod
    def create_empty(cls, root: Union[str, Path], now: Optional[datetime] = None) -> "Registry":
        """Create an empty registry and persist it, replacing any existing spec.

        Args:
            root: Workspace root directory
            now: Creation time (defaults to the current UTC time)

        Returns:
            The new registry

        Raises:
            WorkspaceIOError: If the spec file cannot be written
        """
        registry = cls(creation_time=now or utcnow())
        registry.persist(root)
        return registry

    @classmethod
    def load(cls, root: Union[str, Path]) -> "Registry":
        """Load the registry persisted under ``root``.

        There is no fallback to an empty registry: run ``init`` first.

        Raises:
            WorkspaceIOError: If the spec file is missing or unreadable
            SpecFormatError: If the spec file is not UTF-8 JSON describing a registry
        """
        path = spec_path(root)
        try:
            raw = path.read_text(encoding="utf-8")
        except OSError as e:
            raise WorkspaceIOError(f"Failed to load spec file with error: {e}", path=path) from e
        except UnicodeDecodeError as e:
            raise SpecFormatError(f"Failed to load spec file {path} with error: {e}") from e

        try:
            registry = cls.model_validate_json(raw)
        except ValidationError as e:
            raise SpecFormatError(f"Failed to load spec file {path} with error: {e}") from e

        logger.debug("Loaded %d workspace(s) from %s", len(registry.workspaces), path)
        return registry

    def persist(self, root: Union[str, Path]) -> Path:
        """Overwrite the spec file with the full registry.

        The JSON is written to a temporary sibling and moved into place, so a
        failed write leaves the previous file intact.

        Raises:
            WorkspaceIOError: If the file cannot be written
        """
        path = spec_path(root)
        payload = self.model_dump_json(by_alias=True, indent=2)
        tmp = path.with_suffix(".tmp")
        try:
            tmp.write_text(payload, encoding="utf-8")
            os.replace(str(tmp), str(path))
        except OSError as e:
            tmp.unlink(missing_ok=True)
            raise WorkspaceIOError(f"Failed to write spec to file with error: {e}", path=path) from e

        logger.debug("Persisted %d workspace(s) to %s", len(self.workspaces), path)
        return path

    def upsert(self, key: str, size: int, now: Optional[datetime] = None) -> Tuple[Workspace, bool]:
        """Insert a new workspace or refresh an existing one.

        New keys get ``creation_time == last_used == now``. Existing keys only
        have ``size`` and ``last_used`` refreshed.

        Returns:
            Tuple of (workspace, created)
        """
        validate_key(key)
        now = now or utcnow()

        workspace = self.workspaces.get(key)
        if workspace is None:
            logger.info("Key %s not exist, creating", key)
            workspace = Workspace(key=key, size=size, last_used=now, creation_time=now)
            self.workspaces[key] = workspace
            return workspace, True

        logger.info("Updating key %s", key)
        workspace.size = size
        workspace.last_used = now
        return workspace, False

    def remove(self, key: str) -> Optional[Workspace]:
        """Drop a workspace entry. Files on disk are left alone."""
        return self.workspaces.pop(key, None)

    def sorted_by_last_used(self) -> List[Workspace]:
        """Workspaces ordered oldest-used first; ties keep mapping order."""
        return sorted(self.workspaces.values(), key=lambda ws: ws.last_used)

    @property
    def total_size(self) -> int:
        return sum(ws.size for ws in self.workspaces.values())


__all__ = [
    "SPEC_FILE_NAME",
    "Registry",
    "Workspace",
    "parse_timestamp",
    "spec_path",
    "utcnow",
    "validate_key",
]
