"""
msgpack-RPC client used for every backend transport.

Message shapes:
    request:      [0, msgid, method, params]
    response:     [1, msgid, error, result]
    notification: [2, method, params]

Usage:
    rpc = RpcClient(reader, writer, handler)
    io_task = asyncio.create_task(rpc.run())
    channel, metadata = await rpc.request("nvim_get_api_info")
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional, Set, Tuple

import msgpack

from neobridge.errors import RpcError, TransportClosedError

logger = logging.getLogger(__name__)

REQUEST = 0
RESPONSE = 1
NOTIFICATION = 2

_READ_CHUNK_SIZE = 64 * 1024


class RpcHandler:
    """
    Receives traffic initiated by the backend.

    Subclass and override. Notifications are delivered in arrival order on
    the read loop, so a slow ``handle_notification`` delays everything behind
    it. Requests each run in their own task; the return value becomes the
    response and a raised ``RpcError`` becomes the error payload.
    """

    async def handle_notification(
        self, rpc: "RpcClient", method: str, args: List[Any]
    ) -> None:
        pass

    async def handle_request(
        self, rpc: "RpcClient", method: str, args: List[Any]
    ) -> Any:
        raise RpcError(method, f"Unknown method: {method}")


class RpcClient:
    """
    Async msgpack-RPC endpoint over a pair of asyncio streams.

    Any number of tasks may call ``request``/``notify`` concurrently; writes
    are serialized by a lock. Once the read loop ends every pending and
    future call fails with ``TransportClosedError``.
    """

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        handler: Optional[RpcHandler] = None,
    ) -> None:
        self._reader = reader
        self._writer = writer
        self._handler = handler or RpcHandler()
        self._pending: Dict[int, Tuple[str, asyncio.Future[Any]]] = {}
        self._next_id = 0
        self._write_lock = asyncio.Lock()
        self._closed = False
        self._request_tasks: Set[asyncio.Task[None]] = set()

    @property
    def is_closed(self) -> bool:
        return self._closed

    async def request(self, method: str, *args: Any) -> Any:
        """
        Call ``method`` and wait for its response.

        Raises:
            RpcError: If the backend returned an error
            TransportClosedError: If the transport is or becomes closed
        """
        if self._closed:
            raise TransportClosedError(method)

        msgid = self._next_id
        self._next_id = (self._next_id + 1) & 0xFFFFFFFF
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._pending[msgid] = (method, future)
        try:
            await self._send([REQUEST, msgid, method, list(args)], method)
            return await future
        finally:
            self._pending.pop(msgid, None)

    async def notify(self, method: str, *args: Any) -> None:
        """Send a notification; no response is expected."""
        if self._closed:
            raise TransportClosedError(method)
        await self._send([NOTIFICATION, method, list(args)], method)

    async def _send(self, message: List[Any], method: str) -> None:
        payload = msgpack.packb(message, use_bin_type=True)
        async with self._write_lock:
            if self._closed:
                raise TransportClosedError(method)
            try:
                self._writer.write(payload)
                await self._writer.drain()
            except (ConnectionError, OSError) as e:
                raise TransportClosedError(method, str(e)) from e

    async def run(self) -> None:
        """
        Read loop. Returns when the transport reaches end of stream.

        Cancelling the task running this coroutine tears the client down the
        same way a closed stream does.
        """
        unpacker = msgpack.Unpacker(
            raw=False,
            strict_map_key=False,
            unicode_errors="surrogateescape",
        )
        try:
            while True:
                data = await self._reader.read(_READ_CHUNK_SIZE)
                if not data:
                    logger.debug("RPC transport reached end of stream")
                    break
                unpacker.feed(data)
                for message in unpacker:
                    await self._dispatch(message)
        except Exception as e:
            logger.warning(f"RPC read loop failed: {e}")
        finally:
            self._mark_closed()

    async def _dispatch(self, message: Any) -> None:
        if not isinstance(message, (list, tuple)) or not message:
            logger.warning(f"Ignoring malformed RPC message: {message!r}")
            return

        kind = message[0]
        if kind == RESPONSE and len(message) == 4:
            self._handle_response(message[1], message[2], message[3])
        elif kind == REQUEST and len(message) == 4:
            task = asyncio.create_task(
                self._serve_request(message[1], message[2], message[3])
            )
            self._request_tasks.add(task)
            task.add_done_callback(self._request_tasks.discard)
        elif kind == NOTIFICATION and len(message) == 3:
            try:
                await self._handler.handle_notification(
                    self, message[1], list(message[2] or [])
                )
            except Exception:
                logger.exception(f"Notification handler failed for {message[1]}")
        else:
            logger.warning(f"Ignoring unknown RPC message type {kind!r}")

    def _handle_response(self, msgid: Any, error: Any, result: Any) -> None:
        entry = self._pending.get(msgid)
        if entry is None:
            logger.debug(f"Dropping response for unknown request {msgid}")
            return
        method, future = entry
        if future.done():
            return
        if error is not None:
            future.set_exception(RpcError(method, error))
        else:
            future.set_result(result)

    async def _serve_request(self, msgid: int, method: str, params: Any) -> None:
        error: Any = None
        result: Any = None
        try:
            result = await self._handler.handle_request(self, method, list(params or []))
        except RpcError as e:
            error = e.error
        except Exception as e:
            logger.exception(f"Request handler failed for {method}")
            error = str(e)

        try:
            await self._send([RESPONSE, msgid, error, result], method)
        except TransportClosedError:
            logger.debug(f"Could not answer {method}, transport closed")

    def _mark_closed(self) -> None:
        self._closed = True
        for method, future in list(self._pending.values()):
            if not future.done():
                future.set_exception(TransportClosedError(method))
        self._pending.clear()
        for task in list(self._request_tasks):
            task.cancel()

    def close(self) -> None:
        """Close the write side. The read loop ends once the peer hangs up."""
        if not self._writer.is_closing():
            self._writer.close()
