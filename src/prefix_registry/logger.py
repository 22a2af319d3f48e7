"""Structured logging for registry components.

One JSON object per line, UTC timestamps. Logs go to stderr so CLI
output on stdout stays machine-readable.
"""

from __future__ import annotations

import json
import logging
import os
import sys
import time
from typing import Optional


ROOT_LOGGER = "prefix_registry"


class JsonFormatter(logging.Formatter):
    """Render each record as a single JSON object."""

    converter = time.gmtime

    def __init__(self) -> None:
        super().__init__(datefmt="%Y-%m-%dT%H:%M:%SZ")

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "name": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry)


def get_logger(
    name: str = ROOT_LOGGER,
    level: Optional[int] = None,
    to_file: Optional[str] = None,
) -> logging.Logger:
    """Return a logger under the registry namespace.

    Handlers are attached once, to the root registry logger; child
    loggers propagate to it.
    """
    root = logging.getLogger(ROOT_LOGGER)
    if not root.handlers:
        formatter = JsonFormatter()
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(formatter)
        root.addHandler(handler)
        root.setLevel(logging.INFO)

        if to_file:
            os.makedirs(os.path.dirname(to_file) or ".", exist_ok=True)
            file_handler = logging.FileHandler(to_file)
            file_handler.setFormatter(formatter)
            root.addHandler(file_handler)

    if level is not None:
        root.setLevel(level)

    if name == ROOT_LOGGER:
        return root
    if not name.startswith(ROOT_LOGGER + "."):
        name = f"{ROOT_LOGGER}.{name}"
    return logging.getLogger(name)
