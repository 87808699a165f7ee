"""
Incrementally written JSON array files for request and block traces.
"""

import json
import logging
import os
from typing import Any, Optional

from common.errors import ConfigurationError

logger = logging.getLogger(__name__)


class JsonArrayLog:
    """Append-only JSON array on disk.

    The opening bracket is written on creation and the closing bracket on close,
    with elements separated by ``,\\n`` in between. The file is created exclusively,
    so an existing trace from an earlier run is never overwritten.
    """

    def __init__(self, path: str):
        self.path = path
        self._count = 0
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        try:
            self._file = open(path, "x", encoding="utf-8")
        except FileExistsError as e:
            raise ConfigurationError(f"{path}: trace file already exists") from e
        self._file.write("[\n")
        self._file.flush()
        logger.debug(f"Opened trace log {path}")

    def append(self, element: Any) -> None:
        """Write one element and flush it to disk."""
        if self._file is None:
            raise ValueError(f"{self.path}: trace log is closed")
        if self._count > 0:
            self._file.write(",\n")
        self._file.write(json.dumps(element, indent=4, default=str))
        self._file.flush()
        self._count += 1

    def close(self) -> None:
        if self._file is None:
            return
        self._file.write("\n]\n")
        self._file.close()
        self._file = None
        logger.debug(f"Closed trace log {self.path} with {self._count} elements")

    @property
    def count(self) -> int:
        return self._count

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


def open_trace_log(logdir: Optional[str], filename: str) -> Optional[JsonArrayLog]:
    """Open ``<logdir>/<filename>`` when a log directory is configured."""
    if not logdir:
        return None
    return JsonArrayLog(os.path.join(logdir, filename))
