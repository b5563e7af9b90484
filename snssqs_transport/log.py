"""Logging setup for the transport scripts.

The transport only ever calls ``logging.getLogger``; handlers belong to the
hosting process. The scripts call ``setup_logging`` once at startup.
"""

import logging
import sys

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

# Logged per request at DEBUG; kept at WARNING whatever the process level
QUIET_LOGGERS = ("botocore", "boto3", "urllib3")


def setup_logging(level: str = "INFO") -> None:
    """Send every record at ``level`` or above to stdout."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))

    root = logging.getLogger()
    root.setLevel(level.upper())
    root.handlers = [handler]

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
