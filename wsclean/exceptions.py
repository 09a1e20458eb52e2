"""Custom exception classes for wsclean."""


class WsCleanError(RuntimeError):
    """Base class for every failure the dispatcher turns into a non-zero exit."""


class ConfigurationError(WsCleanError):
    """Raised when a required setting is missing or invalid."""


class WorkspaceIOError(WsCleanError):
    """Raised when a filesystem operation fails (stat, walk, read or write).

    Attributes:
        path: Path the failing operation was working on
    """

    def __init__(self, message: str, path=None):
        super().__init__(message)
        self.path = path


class SpecFormatError(WsCleanError):
    """Raised when the persisted workspace spec cannot be parsed."""
