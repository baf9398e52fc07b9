# =============================================================================
# Logging — Root Handler Setup
# =============================================================================
#
# Shared by the API process (app/main.py) and the worker
# (app/workers/worker.py). Modules log through logging.getLogger(__name__);
# this only installs the single stdout handler and its line format.
# =============================================================================

import logging
import sys


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging with a consistent single-line format."""
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        stream=sys.stdout,
    )
    # httpx logs every completion-service request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


__all__ = ["configure_logging"]
