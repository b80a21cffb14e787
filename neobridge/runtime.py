"""
Runtime host: runs the connection machinery on a background event loop.

Usage:
    runtime = BridgeRuntime()
    runtime.launch(handler, GridSize(120, 40), running, settings, events)
    ...
    while (event := events.recv()) is not None:
        ...
    runtime.shutdown()
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import logging
import threading
from typing import Any, Coroutine, Optional, Set, TypeVar

from neobridge.config import BridgeSettings, SettingsStore, create_nvim_command
from neobridge.events import EventSink
from neobridge.running import RunningTracker
from neobridge.types import GridSize
from neobridge._core.lifecycle import CommandBuilder
from neobridge._core.rpc import RpcClient, RpcHandler
from neobridge._core.supervisor import (
    ConnectionSupervisor,
    CurrentConnection,
    SupervisorTiming,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class BridgeRuntime:
    """
    Owns the event loop thread that every session task runs on.

    ``launch`` returns once the work is scheduled. In embedded mode the first
    launch is awaited so startup errors reach the caller; server mode reports
    connection trouble only through events.
    """

    def __init__(self, timing: Optional[SupervisorTiming] = None) -> None:
        self.timing = timing
        self.current = CurrentConnection()
        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(
            target=self._run_loop,
            name="neobridge-runtime",
            daemon=True,
        )
        self._tasks: Set[concurrent.futures.Future[Any]] = set()
        self._running: Optional[RunningTracker] = None
        self._closed = False
        self._thread.start()

    def _run_loop(self) -> None:
        asyncio.set_event_loop(self._loop)
        self._loop.run_forever()

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        return self._loop

    @property
    def current_connection(self) -> Optional[RpcClient]:
        """The RPC client of the live session, if any."""
        return self.current.get()

    def launch(
        self,
        handler: Optional[RpcHandler],
        grid_size: Optional[GridSize],
        running: RunningTracker,
        settings: BridgeSettings,
        events: EventSink,
        settings_store: Optional[SettingsStore] = None,
        command_builder: CommandBuilder = create_nvim_command,
    ) -> None:
        """
        Start the backend session.

        Args:
            handler: Receives backend notifications and requests
            grid_size: Initial grid size (clamped; None uses the default)
            running: Shared running state
            settings: Bridge settings
            events: Where UI events are delivered
            settings_store: Initial settings source (default: options store)
            command_builder: Builds the embedded launch command

        Raises:
            LaunchError: Embedded mode only, if the first launch fails
            RuntimeError: If the runtime has been shut down
        """
        if self._closed:
            raise RuntimeError("BridgeRuntime has been shut down")
        self._running = running

        supervisor = ConnectionSupervisor(
            handler=handler,
            grid_size=grid_size,
            settings=settings,
            events=events,
            running=running,
            current=self.current,
            settings_store=settings_store,
            command_builder=command_builder,
            timing=self.timing,
        )

        if settings.server is not None:
            self._spawn(supervisor.run_with_reconnect())
        else:
            session = self.call(supervisor.launch())
            self._spawn(supervisor.run(session))

    def call(self, coro: Coroutine[Any, Any, T], timeout: Optional[float] = None) -> T:
        """
        Run a coroutine on the runtime loop and wait for its result.

        Must not be called from the loop thread itself.
        """
        future = asyncio.run_coroutine_threadsafe(coro, self._loop)
        return future.result(timeout=timeout)

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> concurrent.futures.Future[Any]:
        future = asyncio.run_coroutine_threadsafe(coro, self._loop)
        self._tasks.add(future)
        future.add_done_callback(self._task_done)
        return future

    def _task_done(self, future: concurrent.futures.Future[Any]) -> None:
        self._tasks.discard(future)
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            logger.error(f"Supervisor task failed: {error!r}")

    def shutdown(self, timeout: float = 2.0) -> None:
        """
        Request quit, cancel outstanding work and stop the loop thread.

        Safe to call more than once.
        """
        if self._closed:
            return
        self._closed = True
        if self._running is not None:
            self._running.request_quit()

        async def cancel_all() -> None:
            current = asyncio.current_task()
            tasks = [t for t in asyncio.all_tasks() if t is not current]
            for task in tasks:
                task.cancel()
            if tasks:
                await asyncio.wait(tasks, timeout=timeout)

        try:
            self.call(cancel_all(), timeout=timeout + 1.0)
        except (concurrent.futures.TimeoutError, RuntimeError) as e:
            logger.warning(f"Runtime tasks did not stop cleanly: {e}")
        self._loop.call_soon_threadsafe(self._loop.stop)
        self._thread.join(timeout=timeout)
        if not self._thread.is_alive():
            self._loop.close()

    def __enter__(self) -> "BridgeRuntime":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.shutdown()
