"""
Process-wide running state shared between the UI thread and the RPC loop.
"""

from __future__ import annotations

import logging
import threading

logger = logging.getLogger(__name__)


class RunningTracker:
    """
    Quit flag and exit code shared by every component.

    Copies of the reference are handed to the supervisor, the RPC handler and
    the UI. The quit flag is a ``threading.Event``; the exit code is a single
    attribute store, so both are safe to read from any thread without extra
    locking. Later writes to the exit code simply win.
    """

    def __init__(self) -> None:
        self._quitting = threading.Event()
        self._exit_code = 0

    def quit_with_code(self, code: int, reason: str) -> None:
        """
        Record an exit code and request quit.

        Args:
            code: Process exit code (0-255)
            reason: Human-readable reason, logged

        Raises:
            ValueError: If code is outside 0-255
        """
        if not 0 <= code <= 255:
            raise ValueError(f"exit code must be 0-255, got {code}")
        self._exit_code = code
        self.request_quit()
        logger.info(f"Quit with code {code}: {reason}")

    def request_quit(self) -> None:
        self._quitting.set()

    def quit_requested(self) -> bool:
        return self._quitting.is_set()

    def exit_code(self) -> int:
        return self._exit_code
