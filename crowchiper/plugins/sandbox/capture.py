"""
Bounded capture of guest stderr.

The guest's stderr is redirected to a private temp file. Only the first
``capacity`` bytes are ever read back; anything written after the buffer
is full is ignored, while the engine error for the call is still reported.
"""

from __future__ import annotations

import os
import tempfile
import weakref
from pathlib import Path

import structlog

logger = structlog.get_logger(__name__)


def _remove(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning("Failed to remove stderr capture", path=str(path), error=str(e))


class StderrCapture:
    """Per-instance stderr buffer with a fixed capacity."""

    def __init__(self, capacity: int):
        self.capacity = capacity
        fd, name = tempfile.mkstemp(prefix="crowchiper-plugin-", suffix=".stderr")
        os.close(fd)
        self.path = Path(name)
        self._finalizer = weakref.finalize(self, _remove, self.path)

    def __len__(self) -> int:
        try:
            size = self.path.stat().st_size
        except FileNotFoundError:
            return 0
        return min(size, self.capacity)

    def contents(self) -> bytes:
        """Everything captured so far, up to capacity."""
        try:
            with open(self.path, "rb") as f:
                return f.read(self.capacity)
        except FileNotFoundError:
            return b""

    def snapshot(self) -> int:
        """Offset to pass to :meth:`text_since` after the next guest call."""
        return len(self)

    def text_since(self, offset: int) -> str:
        """Text written after ``offset``, decoded leniently."""
        return self.contents()[offset:].decode("utf-8", errors="replace")

    @property
    def closed(self) -> bool:
        return not self._finalizer.alive

    def close(self) -> None:
        self._finalizer()
