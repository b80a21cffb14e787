"""
Event delivery from the connection supervisor to the UI layer.

The supervisor runs on the runtime's event loop thread while the UI drains
events from its own thread, so the channel is a thread-safe queue with
fire-and-forget sends.
"""

from __future__ import annotations

import logging
import math
import queue
import time
from typing import List, Optional, Protocol

from neobridge.types import Event, ReconnectStart, ReconnectStop

logger = logging.getLogger(__name__)


class EventSink(Protocol):
    """Non-blocking event consumer; returns False if the event was dropped."""

    def send(self, event: Event) -> bool:
        ...


class EventChannel:
    """
    Unbounded multi-producer queue of UI events.

    ``send`` never blocks. Once the channel is closed, sends are dropped and
    report False, mirroring a proxy whose event loop has gone away.
    """

    def __init__(self) -> None:
        self._queue: "queue.SimpleQueue[Event]" = queue.SimpleQueue()
        self._closed = False

    def send(self, event: Event) -> bool:
        if self._closed:
            logger.debug(f"Dropping {type(event).__name__}, channel closed")
            return False
        self._queue.put(event)
        return True

    def recv(self, timeout: Optional[float] = None) -> Optional[Event]:
        """
        Return the next event.

        Args:
            timeout: Seconds to wait (None waits forever)

        Returns:
            The event, or None if the timeout expired
        """
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain(self) -> List[Event]:
        """Return every queued event without waiting."""
        events = []
        while True:
            try:
                events.append(self._queue.get_nowait())
            except queue.Empty:
                return events

    def close(self) -> None:
        self._closed = True

    @property
    def closed(self) -> bool:
        return self._closed


class ReconnectIndicator:
    """
    State behind the "Reconnecting to ... in Ns" overlay.

    Drawing belongs to the renderer; this class only tracks the countdown and
    the spinner angle so the renderer can stay stateless.
    """

    def __init__(self) -> None:
        self.active = False
        self.address = ""
        self.angle = 0.0
        self._end_time = time.monotonic()

    def start(self, address: str, wait: float) -> None:
        self.address = address
        self._end_time = time.monotonic() + wait
        self.angle = 0.0
        self.active = True

    def stop(self) -> None:
        self.active = False

    @property
    def is_active(self) -> bool:
        return self.active

    def update(self, dt: float) -> None:
        """Advance the spinner by ``dt`` seconds, one turn per second."""
        if self.active:
            self.angle += dt * math.pi * 2.0
            self.angle %= math.pi * 2.0

    def remaining_seconds(self) -> int:
        remaining = max(0.0, self._end_time - time.monotonic())
        return math.ceil(remaining)

    def status_text(self) -> str:
        return f"Reconnecting to {self.address} in {self.remaining_seconds()}s"

    def apply(self, event: Event) -> bool:
        """
        Update from a supervisor event.

        Returns:
            True if the event changed the indicator
        """
        if isinstance(event, ReconnectStart):
            self.start(event.address, event.wait)
            return True
        if isinstance(event, ReconnectStop):
            self.stop()
            return True
        return False
