"""
Scoped ownership of transient local files.

A job opens one TempFiles scope, registers every file it writes (converted
images, downloaded videos) plus the original uploads it was handed, and the
scope deletes all of them on exit, whichever branch the job took.
"""

import os
import logging
from typing import Iterable

logger = logging.getLogger(__name__)


class TempFiles:
    def __init__(self, paths: Iterable[str] = ()):
        self._paths: list[str] = []
        for path in paths:
            self.register(path)

    @property
    def paths(self) -> list[str]:
        return list(self._paths)

    def register(self, path: str) -> str:
        if path not in self._paths:
            self._paths.append(path)
        return path

    def cleanup(self) -> int:
        """Delete every registered file that still exists. Returns the count removed."""
        removed = 0
        for path in self._paths:
            if not os.path.exists(path):
                continue
            try:
                os.remove(path)
                removed += 1
            except OSError as e:
                # Keep going: one locked file must not strand the rest
                logger.warning(f"Could not remove temp file {path}: {e}")
        self._paths.clear()
        return removed

    def __enter__(self) -> "TempFiles":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        removed = self.cleanup()
        if removed:
            logger.info(f"Removed {removed} temp file(s)")
