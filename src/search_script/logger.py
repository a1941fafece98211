"""Logging setup shared by every module.

Modules import ``logging`` from here so that the handler and format are in
place before the first ``getLogger`` call:

    from search_script.logger import logging

    logger = logging.getLogger(__name__)
"""

import logging
import sys
from pathlib import Path

LOG_FORMAT = "%(asctime)s %(levelname)s [%(threadName)s] %(name)s: %(message)s"

# --level values accepted on the command line
LOG_LEVELS: dict[int, int] = {
    0: logging.DEBUG,
    1: logging.INFO,
    2: logging.WARNING,
    3: logging.ERROR,
    4: logging.CRITICAL,
}

LOG_TARGET_STDOUT = "stdout"
LOG_TARGET_STDERR = "stderr"

logging.basicConfig(level=logging.INFO, format=LOG_FORMAT, stream=sys.stderr)


def configure_logging(target: str = LOG_TARGET_STDERR, level: int = 1) -> None:
    """Route log output to stdout, stderr or a file and set the level.

    Raises:
        ValueError: If the level is not one of LOG_LEVELS.
        OSError: If the log file cannot be opened.
    """
    if level not in LOG_LEVELS:
        raise ValueError(f"Unsupported log level: {level}. Expected 0 to {max(LOG_LEVELS)}")

    if target == LOG_TARGET_STDOUT:
        handler: logging.Handler = logging.StreamHandler(sys.stdout)
    elif target == LOG_TARGET_STDERR:
        handler = logging.StreamHandler(sys.stderr)
    else:
        handler = logging.FileHandler(Path(target), encoding="utf-8")

    handler.setFormatter(logging.Formatter(LOG_FORMAT))

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
        existing.close()
    root.addHandler(handler)
    root.setLevel(LOG_LEVELS[level])
