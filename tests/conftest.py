"""
Pytest configuration for neobridge tests.
"""

import asyncio
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Set, Tuple

import msgpack
import pytest

from neobridge.config import BridgeSettings
from neobridge.types import LaunchCommand
from neobridge._core.rpc import RpcClient

# Note: With pytest-asyncio in auto mode, no event_loop fixture needed

FAKE_NVIM = Path(__file__).parent / "fake_nvim.py"


class FakeBackend:
    """
    In-process msgpack-RPC backend listening on 127.0.0.1.

    Answers the handful of calls the handshake makes and records every
    request and notification it receives.
    """

    def __init__(self, version: Tuple[int, int, int] = (0, 10, 0), channel: int = 3):
        self.version = version
        self.channel = channel
        self.calls: List[Tuple[str, List[Any]]] = []
        self.variables: Dict[str, Any] = {}
        self.errors: Dict[str, Any] = {}
        self.stall: Set[str] = set()
        self.client_responses: Dict[int, "asyncio.Future[Any]"] = {}
        self.writers: List[asyncio.StreamWriter] = []
        self.connections = 0
        self._server: Optional[asyncio.AbstractServer] = None
        self._next_id = 100

    async def start(self) -> None:
        self._server = await asyncio.start_server(self._serve, "127.0.0.1", 0)

    @property
    def port(self) -> int:
        assert self._server is not None
        return self._server.sockets[0].getsockname()[1]

    @property
    def address(self) -> str:
        return f"127.0.0.1:{self.port}"

    @property
    def methods(self) -> List[str]:
        return [method for method, _ in self.calls]

    async def _serve(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self.connections += 1
        self.writers.append(writer)
        unpacker = msgpack.Unpacker(raw=False)
        try:
            while True:
                data = await reader.read(65536)
                if not data:
                    break
                unpacker.feed(data)
                for message in unpacker:
                    await self._handle(writer, message)
        except ConnectionError:
            pass
        finally:
            writer.close()

    async def _handle(self, writer: asyncio.StreamWriter, message: List[Any]) -> None:
        if message[0] == 0:
            _, msgid, method, args = message
            self.calls.append((method, args))
            if method in self.stall:
                return
            error, result = self.respond(method, args)
            writer.write(msgpack.packb([1, msgid, error, result], use_bin_type=True))
            await writer.drain()
        elif message[0] == 1:
            _, msgid, error, result = message
            future = self.client_responses.pop(msgid, None)
            if future is not None:
                future.set_result((error, result))
        elif message[0] == 2:
            self.calls.append((message[1], message[2]))

    def respond(self, method: str, args: List[Any]) -> Tuple[Any, Any]:
        if method in self.errors:
            return self.errors[method], None
        if method == "nvim_get_api_info":
            major, minor, patch = self.version
            metadata = {"version": {"major": major, "minor": minor, "patch": patch}}
            return None, [self.channel, metadata]
        if method == "nvim_get_var":
            if args[0] in self.variables:
                return None, self.variables[args[0]]
            return [0, f"Key not found: {args[0]}"], None
        if method == "nvim_set_var":
            self.variables[args[0]] = args[1]
        return None, None

    async def request_client(self, method: str, *args: Any) -> Tuple[Any, Any]:
        """Send a request to the most recent client and wait for the answer."""
        msgid = self._next_id
        self._next_id += 1
        future = asyncio.get_running_loop().create_future()
        self.client_responses[msgid] = future
        writer = self.writers[-1]
        writer.write(msgpack.packb([0, msgid, method, list(args)], use_bin_type=True))
        await writer.drain()
        return await asyncio.wait_for(future, timeout=2.0)

    async def notify_client(self, method: str, *args: Any) -> None:
        writer = self.writers[-1]
        writer.write(msgpack.packb([2, method, list(args)], use_bin_type=True))
        await writer.drain()

    def disconnect_clients(self) -> None:
        for writer in self.writers:
            writer.close()
        self.writers.clear()

    async def stop(self) -> None:
        self.disconnect_clients()
        if self._server is not None:
            self._server.close()
            try:
                await asyncio.wait_for(self._server.wait_closed(), timeout=1.0)
            except asyncio.TimeoutError:
                pass
            self._server = None


@pytest.fixture
async def backend_factory():
    """Start FakeBackends with custom versions; all are stopped afterwards."""
    backends = []

    async def make(version=(0, 10, 0), channel=3):
        backend = FakeBackend(version=version, channel=channel)
        await backend.start()
        backends.append(backend)
        return backend

    yield make
    for backend in backends:
        await backend.stop()


@pytest.fixture
async def fake_backend(backend_factory):
    """Running FakeBackend reporting version 0.10.0."""
    return await backend_factory()


@pytest.fixture
async def rpc_client(fake_backend):
    """RpcClient connected to fake_backend with its read loop running."""
    reader, writer = await asyncio.open_connection("127.0.0.1", fake_backend.port)
    client = RpcClient(reader, writer)
    io_task = asyncio.create_task(client.run())
    yield client
    client.close()
    io_task.cancel()
    await asyncio.gather(io_task, return_exceptions=True)


@pytest.fixture
def server_settings(fake_backend):
    """Settings pointing at fake_backend."""
    return BridgeSettings(server=fake_backend.address)


@pytest.fixture
def fake_nvim_builder():
    """Factory of command builders that spawn tests/fake_nvim.py instead of nvim."""

    def make(*args: str):
        def build(settings: BridgeSettings) -> LaunchCommand:
            return LaunchCommand(argv=[sys.executable, str(FAKE_NVIM), *args])

        return build

    return make
