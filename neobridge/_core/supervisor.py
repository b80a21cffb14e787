"""
Connection supervision for neobridge.

Two run modes:
- Embedded (run once): wait for the backend to exit, then report it
- Server (run with reconnect): retry with exponential backoff until a
  connection succeeds, then watch it with liveness pings

Both modes finish the same way: drain stderr, clear the current connection
and emit ``NeovimExited``.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass
from typing import Optional

from neobridge.config import (
    BridgeSettings,
    OptionStore,
    SettingsStore,
    create_nvim_command,
)
from neobridge.errors import BridgeError, SettingsSyncError, TransportClosedError
from neobridge.events import EventSink
from neobridge.running import RunningTracker
from neobridge.types import (
    GridSize,
    NeovimExited,
    ReconnectStart,
    ReconnectStop,
    RedrawRequested,
)
from neobridge._core.health import check_backend_version, ping
from neobridge._core.lifecycle import (
    CommandBuilder,
    Session,
    create_session,
    resolve_instance,
)
from neobridge._core.rpc import RpcClient, RpcHandler
from neobridge._core.setup import (
    attach_ui,
    setup_client_state,
    show_error_message,
    sync_initial_settings,
)
from neobridge._core.tasks import drain_task, wait_first

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SupervisorTiming:
    """
    Time bounds used by the supervisor, in seconds.

    Attributes:
        ping_interval: Delay between liveness pings
        ping_timeout: A ping slower than this tears the connection down
        drain_timeout: Wait for the stderr relay after the session ends
        exit_grace: Wait for the stream after the process exits first
        backoff_base: First reconnect delay
        backoff_cap: Largest reconnect delay
        version_attempts: Version check attempts per launch
        version_interval: Delay between version check attempts
        version_timeout: Bound on each version check request
        quit_poll: How often a backoff sleep checks for quit
    """
    ping_interval: float = 5.0
    ping_timeout: float = 2.0
    drain_timeout: float = 0.5
    exit_grace: float = 0.5
    backoff_base: float = 1.0
    backoff_cap: float = 30.0
    version_attempts: int = 5
    version_interval: float = 0.5
    version_timeout: float = 10.0
    quit_poll: float = 0.05


def next_backoff(current: float, cap: float = 30.0) -> float:
    """Double the delay, never exceeding ``cap``."""
    return min(current * 2, cap)


async def sleep_unless_quit(
    seconds: float,
    running: RunningTracker,
    poll: float = 0.05,
) -> bool:
    """
    Sleep for ``seconds`` unless quit is requested first.

    Returns:
        True if the sleep was cut short by a quit request
    """
    loop = asyncio.get_running_loop()
    deadline = loop.time() + seconds
    while not running.quit_requested():
        remaining = deadline - loop.time()
        if remaining <= 0:
            return False
        await asyncio.sleep(min(poll, remaining))
    return True


class CurrentConnection:
    """
    The connection UI commands are sent to, if any.

    Set when a session finishes its handshake, cleared when it ends. Read
    from the UI thread, hence the lock.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._rpc: Optional[RpcClient] = None

    def set(self, rpc: RpcClient) -> None:
        with self._lock:
            self._rpc = rpc

    def clear(self) -> None:
        with self._lock:
            self._rpc = None

    def get(self) -> Optional[RpcClient]:
        with self._lock:
            return self._rpc


class ConnectionSupervisor:
    """
    Launches sessions and watches them until they end.

    A supervisor is reused across reconnects so the backoff state survives
    between calls to ``run_with_reconnect``.
    """

    def __init__(
        self,
        handler: Optional[RpcHandler],
        grid_size: Optional[GridSize],
        settings: BridgeSettings,
        events: EventSink,
        running: RunningTracker,
        current: Optional[CurrentConnection] = None,
        settings_store: Optional[SettingsStore] = None,
        command_builder: CommandBuilder = create_nvim_command,
        timing: Optional[SupervisorTiming] = None,
    ):
        self.handler = handler
        self.grid_size = grid_size
        self.settings = settings
        self.events = events
        self.running = running
        self.current = current or CurrentConnection()
        self.settings_store = settings_store or OptionStore(settings)
        self.command_builder = command_builder
        self.timing = timing or SupervisorTiming()
        self.backoff = self.timing.backoff_base
        self.attempts = 0

    async def launch(self) -> Session:
        """
        Create a session and run the full handshake.

        On any failure the partially set up session is closed before the
        error propagates.

        Raises:
            LaunchError: One of its subclasses, naming the failed step
        """
        instance = resolve_instance(self.settings, self.command_builder)
        session = await create_session(instance, self.handler)
        try:
            api_info = await check_backend_version(
                session.rpc,
                attempts=self.timing.version_attempts,
                interval=self.timing.version_interval,
                request_timeout=self.timing.version_timeout,
            )
            logger.info(f"neobridge registered to nvim with channel id {api_info.channel}")
            await setup_client_state(
                session.rpc,
                self.settings.handle_clipboard,
                api_info,
                self.settings,
            )
            try:
                await sync_initial_settings(session.rpc, self.settings_store)
            except SettingsSyncError as e:
                await self._report_error(session, e)
                raise
            await attach_ui(session.rpc, self.grid_size, self.settings)
        except (Exception, asyncio.CancelledError):
            await session.close()
            raise
        return session

    async def _report_error(self, session: Session, error: BridgeError) -> None:
        try:
            await asyncio.wait_for(
                show_error_message(session.rpc, [str(error)]),
                timeout=self.timing.ping_timeout,
            )
        except (BridgeError, asyncio.TimeoutError) as e:
            logger.debug(f"Could not show error in backend: {e}")

    async def run(self, session: Session) -> None:
        """
        Supervise an embedded session until it ends. Never retries.
        """
        self.current.set(session.rpc)
        try:
            if session.process is not None:
                # Some backends exit without closing their stdout, so the process
                # exit is raced against the stream.
                winner = await wait_first(session.io_task, session.wait_exited())
                if winner == 1:
                    logger.warning(
                        f"The backend process quit before the IO stream, "
                        f"waiting {self.timing.exit_grace}s"
                    )
                    done, _ = await asyncio.wait(
                        {session.io_task}, timeout=self.timing.exit_grace
                    )
                    if not done:
                        logger.info("The IO stream was never closed, forcing exit")
                        session.abort()
            else:
                await session.wait_closed()
        except asyncio.CancelledError:
            await self._teardown(session)
            raise
        await self._finish(session)

    async def run_server(self, session: Session) -> None:
        """
        Watch a server session with liveness pings until it ends.

        Returns after the session is gone; reconnecting again is the
        caller's decision.
        """
        logger.debug("Monitoring server connection")
        try:
            while True:
                winner = await wait_first(
                    session.io_task,
                    asyncio.sleep(self.timing.ping_interval),
                )
                if winner == 0:
                    logger.debug("Server connection closed")
                    break
                try:
                    alive = await ping(session.rpc, timeout=self.timing.ping_timeout)
                except TransportClosedError:
                    # The read loop has finished; the next race picks it up
                    continue
                if not alive:
                    logger.warning("Connection ping timed out, aborting I/O task")
                    session.abort()
                    break
        except asyncio.CancelledError:
            await self._teardown(session)
            raise

        await self._finish(session)
        logger.debug("Server session ended")

    async def run_with_reconnect(self) -> None:
        """
        Connect to the configured server, retrying with exponential backoff.

        Stops without emitting anything further once quit is requested.
        """
        address = self.settings.server or ""
        logger.debug(f"Starting reconnect loop for {address}")
        while not self.running.quit_requested():
            self.attempts += 1
            logger.debug(f"Attempting connection to {address} (attempt {self.attempts})")
            try:
                session = await self.launch()
            except Exception as e:
                logger.error(f"Failed to connect: {e}")
            else:
                logger.info(f"Connected to {address}")
                self.backoff = self.timing.backoff_base
                self.attempts = 0
                self.current.set(session.rpc)
                self.events.send(ReconnectStop())
                self.events.send(RedrawRequested())
                await self.run_server(session)
                return

            wait = self.backoff
            self.events.send(ReconnectStart(address=address, wait=int(wait)))
            self.events.send(RedrawRequested())
            logger.debug(f"Retrying in {int(wait)}s")
            if await sleep_unless_quit(wait, self.running, self.timing.quit_poll):
                break
            self.backoff = next_backoff(wait, self.timing.backoff_cap)

        logger.debug("Reconnect loop stopped, quit requested")

    async def _teardown(self, session: Session) -> None:
        # Cancelled, e.g. by runtime shutdown: stop the backend, no events
        await session.close()
        self.current.clear()

    async def _finish(self, session: Session) -> None:
        if session.process is not None and session.process.returncode is None:
            try:
                await asyncio.wait_for(
                    session.wait_exited(), timeout=self.timing.exit_grace
                )
            except asyncio.TimeoutError:
                logger.info("The backend process outlived its IO stream, stopping it")
                await session.close()
        if not await drain_task(session.stderr_task, self.timing.drain_timeout):
            logger.warning("The stderr relay did not finish in time")
        session.rpc.close()
        self.current.clear()
        self.events.send(NeovimExited())
