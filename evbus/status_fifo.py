"""Non-blocking status reporting through a named pipe."""

from __future__ import annotations

import errno
import os
from typing import Optional


class StatusFifo:
    """Writes status messages to a FIFO; stops silently once the reader is gone."""

    def __init__(self, fd: Optional[int] = None) -> None:
        self._fd = fd
        self._disabled = fd is None

    @classmethod
    def create_from_path(cls, fifo_path: str) -> "StatusFifo":
        """Open the FIFO at ``fifo_path``; an empty path gives a disabled instance."""
        if not fifo_path:
            return cls()
        try:
            fd = os.open(fifo_path, os.O_WRONLY | os.O_NONBLOCK)
        except OSError as exc:
            if exc.errno == errno.ENXIO:
                reason = "fifo not opened for read?"
            else:
                reason = "fifo file not created with mkfifo?"
            raise RuntimeError(f"Failed to open status fifo at {fifo_path} ({reason})") from exc
        return cls(fd)

    @property
    def disabled(self) -> bool:
        return self._disabled

    def update(self, message: str) -> None:
        """Write ``message``; on failure, disable all further writes."""
        if self._disabled or self._fd is None:
            return
        try:
            os.write(self._fd, message.encode())
        except OSError:
            self._disabled = True

    def close(self) -> None:
        """Close the FIFO if it was opened."""
        if self._fd is not None:
            os.close(self._fd)
            self._fd = None
        self._disabled = True

    def __enter__(self) -> "StatusFifo":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()