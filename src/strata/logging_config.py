"""Logging setup for the strata CLI.

Normal runs print bare messages to stderr next to command output. Verbose
runs and the optional log file add a timestamp and the emitting module, so
replay anomalies and write-queue retries can be traced back to a seq.
"""

import sys
from pathlib import Path

from loguru import logger

PLAIN_FORMAT = "{level.icon} {message}"
TRACE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <7} | {name}:{line} | {message}"


def configure_logging(*, verbose: bool = False, log_file: Path | None = None) -> None:
    """Replace loguru's sinks: stderr, plus a debug-level file when ``log_file`` is set."""
    logger.remove()
    if verbose:
        logger.add(sys.stderr, level="DEBUG", format=TRACE_FORMAT)
    else:
        logger.add(sys.stderr, level="INFO", format=PLAIN_FORMAT)
    if log_file is not None:
        logger.add(log_file, level="DEBUG", format=TRACE_FORMAT, rotation="5 MB", retention=3)
