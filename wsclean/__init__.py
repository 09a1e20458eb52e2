"""wsclean: disk-usage workspace tracking and eviction."""

import logging
import os
import sys

__version__ = "0.1.0"

# Configure logging to stderr (keep stdout clean for command output)
_log_level = os.environ.get("WSCLEAN_LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=getattr(logging, _log_level, logging.INFO),
    format="%(levelname)s: %(name)s: %(message)s",
    stream=sys.stderr,
)
