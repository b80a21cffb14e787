"""Tests for neobridge._core.lifecycle module."""

import asyncio
import logging
import sys
from unittest.mock import MagicMock, patch

import pytest

from neobridge.config import BridgeSettings
from neobridge.errors import ConnectError, SpawnError
from neobridge.types import EmbeddedInstance, LaunchCommand, ServerInstance
from neobridge._core.lifecycle import (
    Session,
    connect_to_server,
    create_session,
    parse_tcp_address,
    relay_stderr,
    resolve_instance,
    start_backend_process,
)


class TestResolveInstance:
    """Tests for resolve_instance function."""

    def test_server_when_address_set(self):
        instance = resolve_instance(BridgeSettings(server="127.0.0.1:6666"))
        assert instance == ServerInstance(address="127.0.0.1:6666")

    def test_embedded_by_default(self):
        instance = resolve_instance(BridgeSettings())
        assert isinstance(instance, EmbeddedInstance)
        assert instance.command.argv == ["nvim", "--embed"]

    def test_uses_command_builder(self):
        builder = MagicMock(return_value=LaunchCommand(argv=["custom"]))
        settings = BridgeSettings()
        instance = resolve_instance(settings, builder)
        builder.assert_called_once_with(settings)
        assert instance.command.argv == ["custom"]

    def test_builder_not_called_for_server(self):
        builder = MagicMock()
        resolve_instance(BridgeSettings(server="host:1"), builder)
        builder.assert_not_called()

    def test_builder_errors_propagate(self):
        builder = MagicMock(side_effect=RuntimeError("no nvim"))
        with pytest.raises(RuntimeError, match="no nvim"):
            resolve_instance(BridgeSettings(), builder)


class TestParseTcpAddress:
    """Tests for parse_tcp_address function."""

    def test_host_port(self):
        assert parse_tcp_address("127.0.0.1:6666") == ("127.0.0.1", 6666)

    def test_hostname(self):
        assert parse_tcp_address("devbox:7777") == ("devbox", 7777)

    def test_ipv6(self):
        assert parse_tcp_address("[::1]:6666") == ("::1", 6666)

    def test_empty_host(self):
        assert parse_tcp_address(":6666") == ("localhost", 6666)

    def test_socket_path(self):
        assert parse_tcp_address("/tmp/nvim.sock") is None

    def test_relative_socket(self):
        assert parse_tcp_address("nvim.sock") is None

    def test_port_out_of_range(self):
        with pytest.raises(ConnectError):
            parse_tcp_address("127.0.0.1:70000")


class TestStartBackendProcess:
    """Tests for start_backend_process function."""

    @pytest.mark.asyncio
    async def test_returns_process(self):
        with patch("asyncio.create_subprocess_exec") as mock_exec:
            mock_process = MagicMock()
            mock_process.pid = 12345
            mock_exec.return_value = mock_process

            result = await start_backend_process(LaunchCommand(argv=["nvim", "--embed"]))

            assert result is mock_process

    @pytest.mark.asyncio
    async def test_pipes_stdio(self):
        with patch("asyncio.create_subprocess_exec") as mock_exec:
            mock_exec.return_value = MagicMock()

            await start_backend_process(
                LaunchCommand(argv=["nvim", "--embed"], cwd="/tmp", env={"A": "1"})
            )

            args, kwargs = mock_exec.call_args
            assert args == ("nvim", "--embed")
            assert kwargs["stdin"] == asyncio.subprocess.PIPE
            assert kwargs["stdout"] == asyncio.subprocess.PIPE
            assert kwargs["stderr"] == asyncio.subprocess.PIPE
            assert kwargs["cwd"] == "/tmp"
            assert kwargs["env"] == {"A": "1"}

    @pytest.mark.asyncio
    async def test_missing_binary_raises_spawn_error(self):
        command = LaunchCommand(argv=["/nonexistent/neobridge-test-nvim", "--embed"])
        with pytest.raises(SpawnError, match="nonexistent"):
            await start_backend_process(command)


class TestConnectToServer:
    """Tests for connect_to_server function."""

    @pytest.mark.asyncio
    async def test_connects_over_tcp(self, fake_backend):
        reader, writer = await connect_to_server(fake_backend.address)
        assert isinstance(reader, asyncio.StreamReader)
        writer.close()

    @pytest.mark.asyncio
    async def test_refused_raises_connect_error(self, fake_backend):
        address = fake_backend.address
        await fake_backend.stop()
        with pytest.raises(ConnectError, match="Failed to connect"):
            await connect_to_server(address)

    @pytest.mark.asyncio
    async def test_missing_socket_raises_connect_error(self, tmp_path):
        with pytest.raises(ConnectError):
            await connect_to_server(str(tmp_path / "missing.sock"))

    @pytest.mark.asyncio
    @pytest.mark.skipif(sys.platform == "win32", reason="Unix sockets only")
    async def test_connects_over_unix_socket(self, tmp_path):
        path = str(tmp_path / "nvim.sock")
        server = await asyncio.start_unix_server(lambda r, w: w.close(), path=path)
        try:
            reader, writer = await connect_to_server(path)
            writer.close()
        finally:
            server.close()


class TestRelayStderr:
    """Tests for relay_stderr function."""

    @pytest.mark.asyncio
    async def test_lines_logged(self, caplog):
        stream = asyncio.StreamReader()
        stream.feed_data(b"first line\n\nsecond line\n")
        stream.feed_eof()
        with caplog.at_level(logging.DEBUG, logger="neobridge._core.lifecycle"):
            await relay_stderr(stream)
        assert "backend stderr: first line" in caplog.text
        assert "backend stderr: second line" in caplog.text


class TestCreateSession:
    """Tests for create_session function."""

    @pytest.mark.asyncio
    async def test_server_session(self, fake_backend):
        session = await create_session(ServerInstance(address=fake_backend.address), None)
        try:
            assert session.process is None
            assert session.stderr_task is None
            assert session.is_alive
            result = await session.rpc.request("nvim_get_api_info")
            assert result[0] == fake_backend.channel
        finally:
            await session.close()
        assert not session.is_alive

    @pytest.mark.asyncio
    async def test_server_session_detects_close(self, fake_backend):
        session = await create_session(ServerInstance(address=fake_backend.address), None)
        await session.rpc.request("nvim_get_api_info")
        fake_backend.disconnect_clients()
        await asyncio.wait_for(session.wait_closed(), timeout=2.0)
        assert not session.is_alive
        with pytest.raises(RuntimeError):
            await session.wait_exited()

    @pytest.mark.asyncio
    async def test_server_refused(self, fake_backend):
        address = fake_backend.address
        await fake_backend.stop()
        with pytest.raises(ConnectError):
            await create_session(ServerInstance(address=address), None)

    @pytest.mark.asyncio
    async def test_embedded_session(self, fake_nvim_builder):
        command = fake_nvim_builder("0.10.0")(BridgeSettings())
        session = await create_session(EmbeddedInstance(command=command), None)
        try:
            assert session.process is not None
            assert session.stderr_task is not None
            result = await asyncio.wait_for(
                session.rpc.request("nvim_get_api_info"), timeout=5.0
            )
            assert result[1]["version"]["minor"] == 10
        finally:
            await session.close()
        assert session.process.returncode is not None

    @pytest.mark.asyncio
    async def test_embedded_spawn_failure(self):
        command = LaunchCommand(argv=["/nonexistent/neobridge-test-nvim"])
        with pytest.raises(SpawnError):
            await create_session(EmbeddedInstance(command=command), None)

    @pytest.mark.asyncio
    async def test_unknown_instance(self):
        with pytest.raises(TypeError):
            await create_session(object(), None)


class TestSession:
    """Tests for Session methods with mocked parts."""

    @pytest.mark.asyncio
    async def test_close_kills_stubborn_process(self):
        waits = []

        async def wait():
            waits.append(1)
            if len(waits) == 1:
                await asyncio.Event().wait()
            return -9

        io_task = asyncio.create_task(asyncio.Event().wait())
        process = MagicMock()
        process.returncode = None
        process.wait = wait
        rpc = MagicMock()
        session = Session(rpc=rpc, io_task=io_task, process=process)

        with patch("neobridge._core.lifecycle._TERMINATE_TIMEOUT", 0.05):
            await session.close()

        process.terminate.assert_called_once()
        process.kill.assert_called_once()
        rpc.close.assert_called_once()
        assert io_task.cancelled()

    @pytest.mark.asyncio
    async def test_abort_cancels_read_loop(self):
        io_task = asyncio.create_task(asyncio.Event().wait())
        session = Session(rpc=MagicMock(), io_task=io_task)
        session.abort()
        await session.wait_closed()
        assert io_task.cancelled()
