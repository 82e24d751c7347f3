"""Logging setup shared by the scanner, the scheduler and the CLI."""
from __future__ import annotations

import logging
import sys
from typing import Any, MutableMapping, Optional, TextIO, Tuple

LOG_FORMAT = "%(asctime)s %(levelname)-8s [%(name)s] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
ROOT_LOGGER = "assetsweep"


def setup_logging(level: int = logging.INFO, stream: Optional[TextIO] = None) -> None:
    """Attach one stderr handler to the ``assetsweep`` logger.

    Repeated calls change the level only.
    """
    root = logging.getLogger(ROOT_LOGGER)
    root.setLevel(level)
    if root.handlers:
        return
    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    root.addHandler(handler)
    root.propagate = False


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")


class JobLogAdapter(logging.LoggerAdapter):
    """Prefixes every message with the short id of a scan job."""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
        return f"[job {self.extra['job_id'][:8]}] {msg}", kwargs


def job_logger(logger: logging.Logger, job_id: str) -> JobLogAdapter:
    return JobLogAdapter(logger, {"job_id": job_id})
