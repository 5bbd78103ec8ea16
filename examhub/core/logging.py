"""
Logging setup: plain text for local runs, JSON lines for deployments.
"""
import logging
import sys

from pythonjsonlogger import jsonlogger

from examhub.core.config import settings

TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
JSON_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"


def configure_logging(level: str = None, fmt: str = None) -> None:
    """Configure the root logger once per process."""
    level = (level or settings.LOG_LEVEL).upper()
    fmt = (fmt or settings.LOG_FORMAT).lower()

    handler = logging.StreamHandler(sys.stdout)
    if fmt == "json":
        handler.setFormatter(jsonlogger.JsonFormatter(JSON_FORMAT))
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT))

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(getattr(logging, level, logging.INFO))
