"""
Backend lifecycle management for neobridge.

Handles:
- Choosing between an embedded backend and a remote server
- Spawning the embedded process / dialing the server
- Wiring the msgpack-RPC client to the transport
- Relaying backend stderr to the log
"""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass
from typing import Any, Callable, Optional, Tuple

from neobridge.config import BridgeSettings, create_nvim_command
from neobridge.errors import ConnectError, SpawnError
from neobridge.types import EmbeddedInstance, Instance, LaunchCommand, ServerInstance
from neobridge._core.rpc import RpcClient, RpcHandler
from neobridge._core.tasks import drain_task

logger = logging.getLogger(__name__)

CommandBuilder = Callable[[BridgeSettings], LaunchCommand]

# How long a closing session waits for the backend to exit before killing it
_TERMINATE_TIMEOUT = 2.0


def resolve_instance(
    settings: BridgeSettings,
    command_builder: CommandBuilder = create_nvim_command,
) -> Instance:
    """
    Decide how to reach the backend.

    Args:
        settings: Bridge settings
        command_builder: Builds the embedded launch command

    Returns:
        ServerInstance if a server address is configured, else EmbeddedInstance
    """
    if settings.server is not None:
        return ServerInstance(address=settings.server)
    return EmbeddedInstance(command=command_builder(settings))


def parse_tcp_address(address: str) -> Optional[Tuple[str, int]]:
    """
    Split ``host:port`` into its parts.

    Returns:
        (host, port), or None if the address is a socket path

    Raises:
        ConnectError: If the port is out of range
    """
    if os.sep in address or address.startswith("."):
        return None
    host, sep, port = address.rpartition(":")
    if not sep or not port.isdigit():
        return None
    port_number = int(port)
    if not 0 < port_number <= 65535:
        raise ConnectError(f"Invalid port in server address: {address}")
    # [::1]:6666
    host = host.strip("[]") or "localhost"
    return host, port_number


async def start_backend_process(command: LaunchCommand) -> asyncio.subprocess.Process:
    """
    Spawn the embedded backend with piped stdio.

    Raises:
        SpawnError: If the process cannot be started
    """
    try:
        process = await asyncio.create_subprocess_exec(
            *command.argv,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=command.cwd,
            env=command.env,
        )
    except (OSError, ValueError) as e:
        raise SpawnError(f"Failed to start {command.argv[0]}: {e}") from e

    logger.info(f"Started backend process (PID: {process.pid}): {' '.join(command.argv)}")
    return process


async def connect_to_server(
    address: str,
) -> Tuple[asyncio.StreamReader, asyncio.StreamWriter]:
    """
    Open a stream to a listening backend.

    Raises:
        ConnectError: If the address is invalid or the connection fails
    """
    tcp = parse_tcp_address(address)
    try:
        if tcp is not None:
            host, port = tcp
            reader, writer = await asyncio.open_connection(host, port)
        else:
            reader, writer = await asyncio.open_unix_connection(address)
    except (OSError, NotImplementedError) as e:
        raise ConnectError(f"Failed to connect to {address}: {e}") from e

    logger.info(f"Connected to backend at {address}")
    return reader, writer


async def relay_stderr(stream: asyncio.StreamReader) -> None:
    """Forward backend stderr to the log until the stream closes."""
    while True:
        line = await stream.readline()
        if not line:
            break
        text = line.decode("utf-8", errors="replace").rstrip()
        if text:
            logger.debug(f"backend stderr: {text}")


@dataclass
class Session:
    """
    A live connection to the backend.

    Attributes:
        rpc: msgpack-RPC client, shared by everyone who talks to the backend
        io_task: The read loop; its completion means the transport closed
        process: Child process (embedded mode only)
        stderr_task: stderr relay (embedded mode only)
    """
    rpc: RpcClient
    io_task: "asyncio.Task[None]"
    process: Optional[asyncio.subprocess.Process] = None
    stderr_task: Optional["asyncio.Task[None]"] = None

    @property
    def is_alive(self) -> bool:
        return not self.io_task.done()

    async def wait_closed(self) -> None:
        """Wait until the transport closes (or the read loop is aborted)."""
        await asyncio.wait({self.io_task})

    async def wait_exited(self) -> int:
        """
        Wait for the embedded process to exit.

        Raises:
            RuntimeError: If this session has no process
        """
        if self.process is None:
            raise RuntimeError("Session has no backend process")
        return await self.process.wait()

    def abort(self) -> None:
        """Forcibly stop the read loop."""
        self.io_task.cancel()

    async def close(self) -> None:
        """Tear everything down: read loop, transport, process, relay."""
        self.abort()
        self.rpc.close()
        if self.process is not None and self.process.returncode is None:
            try:
                self.process.terminate()
            except ProcessLookupError:
                pass
            try:
                await asyncio.wait_for(self.process.wait(), timeout=_TERMINATE_TIMEOUT)
            except asyncio.TimeoutError:
                self.process.kill()
                await self.process.wait()
        await drain_task(self.io_task, 0)
        await drain_task(self.stderr_task, 0)


async def create_session(instance: Instance, handler: Optional[RpcHandler]) -> Session:
    """
    Start or dial the backend and begin reading from it.

    Args:
        instance: Where the backend lives
        handler: Receives backend notifications and requests

    Returns:
        Session with a running read loop

    Raises:
        SpawnError: Embedded backend failed to start
        ConnectError: Server could not be reached
    """
    if isinstance(instance, EmbeddedInstance):
        process = await start_backend_process(instance.command)
        assert process.stdout is not None and process.stdin is not None
        rpc = RpcClient(process.stdout, process.stdin, handler)
        stderr_task: Optional[asyncio.Task[Any]] = None
        if process.stderr is not None:
            stderr_task = asyncio.create_task(relay_stderr(process.stderr))
        io_task = asyncio.create_task(rpc.run())
        return Session(rpc=rpc, io_task=io_task, process=process, stderr_task=stderr_task)
    elif isinstance(instance, ServerInstance):
        reader, writer = await connect_to_server(instance.address)
        rpc = RpcClient(reader, writer, handler)
        io_task = asyncio.create_task(rpc.run())
        return Session(rpc=rpc, io_task=io_task)
    else:
        raise TypeError(f"Unknown backend instance: {instance!r}")
