"""A worker thread that can be asked to stop."""

from __future__ import annotations

import threading
from collections.abc import Callable
from typing import Optional


class StoppableThread:
    """Runs one target at a time; the target polls :meth:`should_exit` to finish."""

    def __init__(self) -> None:
        self._thread: Optional[threading.Thread] = None
        self._exit = threading.Event()

    def start(self, target: Callable[[], object]) -> None:
        """Stop any running target, then run ``target`` in a new thread."""
        self.stop()
        self._thread = threading.Thread(target=target, daemon=True)
        self._thread.start()

    def stop(self) -> None:
        """Signal the running target to exit and wait for it."""
        if self._thread is not None:
            self._exit.set()
            self._thread.join()
            self._thread = None
        self._exit.clear()

    def should_exit(self) -> bool:
        """Tell whether the target has been asked to finish."""
        return self._exit.is_set()

    def __enter__(self) -> "StoppableThread":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()