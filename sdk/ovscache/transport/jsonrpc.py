"""
JSON-RPC transport to an OVSDB server.

Speaks the OVSDB wire protocol (RFC 7047) over a TCP or Unix stream socket:
- get_schema, monitor and transact requests
- update notifications, queued in arrival order
- echo requests, answered so the server keeps the session open

Messages are JSON objects written back to back with no framing, so the
reader splits them on brace depth and keeps any incomplete tail. A message
that is not valid JSON closes the connection. A well-formed message that
cannot be handled is logged and dropped.

Invariants:
    - One reader task owns the socket's read side
    - When the connection drops every pending request fails with
      ConnectionError and the update stream ends
    - Nothing is retried or reconnected here
"""

from __future__ import annotations

import asyncio
import codecs
import json
import logging
import re
from typing import Any, AsyncIterator, Dict, List, Optional

from ..config import ConnectionTarget, TransportKind
from ..errors import ConnectionError, ProtocolError
from ..updates import TableUpdates

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 64 * 1024
MAX_BUFFER_SIZE = 64 * 1024 * 1024  # 64MB

_END = object()

_NON_SPACE = re.compile(r"\S")
_STRUCTURAL = re.compile(r'[{}\[\]"]')
_STRING_SPECIAL = re.compile(r'["\\]')


class MessageFramer:
    """Splits a stream of back-to-back JSON objects into complete texts.

    Each character is scanned once: nesting depth is tracked outside
    strings and a text is complete when its outermost object closes. Partial
    texts are kept as a list of pieces and joined only when complete.

    Raises ProtocolError for data that can never become a JSON-RPC message,
    such as anything other than "{" between messages.
    """

    def __init__(self) -> None:
        self._pieces: List[str] = []
        self._pending = 0
        self._depth = 0
        self._in_string = False
        self._escape = False

    @property
    def pending(self) -> int:
        """Characters held for an incomplete message."""
        return self._pending

    def feed(self, chunk: str) -> List[str]:
        """Consume decoded text and return every message it completes."""
        messages: List[str] = []
        start = 0
        pos = 0
        end = len(chunk)

        while pos < end:
            if self._escape:
                self._escape = False
                pos += 1
                continue

            if self._in_string:
                match = _STRING_SPECIAL.search(chunk, pos)
                if match is None:
                    pos = end
                elif match.group() == "\\":
                    self._escape = True
                    pos = match.end()
                else:
                    self._in_string = False
                    pos = match.end()
                continue

            if self._depth == 0:
                match = _NON_SPACE.search(chunk, pos)
                if match is None:
                    start = pos = end
                    continue
                if match.group() != "{":
                    snippet = chunk[match.start() : match.start() + 32]
                    raise ProtocolError(f"Unexpected data between messages: {snippet!r}")
                start = match.start()
                self._depth = 1
                pos = match.end()
                continue

            match = _STRUCTURAL.search(chunk, pos)
            if match is None:
                pos = end
                continue
            pos = match.end()
            char = match.group()
            if char == '"':
                self._in_string = True
            elif char in "{[":
                self._depth += 1
            else:
                self._depth -= 1
                if self._depth == 0:
                    messages.append("".join(self._pieces) + chunk[start:pos])
                    self._pieces = []
                    self._pending = 0
                    start = pos

        if self._depth > 0 and start < end:
            self._pieces.append(chunk[start:])
            self._pending += end - start
        return messages


class JsonRpcTransport:
    """OVSDB transport over an asyncio stream.

    Thread safety:
        Must be used from the event loop that called connect().

    Example:
        >>> transport = JsonRpcTransport(resolve_endpoint("tcp", "127.0.0.1:6640"))
        >>> await transport.connect()
        >>> initial = await transport.monitor_all("Open_vSwitch")
    """

    def __init__(self, target: ConnectionTarget, *, monitor_id: str = "ovscache") -> None:
        """Initialize the transport.

        Args:
            target: Where to connect
            monitor_id: JSON value identifying our monitor in update notifications
        """
        self.target = target
        self.monitor_id = monitor_id
        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None
        self._reader_task: Optional[asyncio.Task] = None
        self._pending: Dict[int, asyncio.Future] = {}
        self._next_id = 0
        self._updates: asyncio.Queue = asyncio.Queue()
        self._connected = False
        self._shut_down = False

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        """Open the socket and start the reader task."""
        if self._connected:
            return

        try:
            if self.target.kind == TransportKind.TCP:
                reader, writer = await asyncio.open_connection(self.target.host, self.target.port)
            else:
                reader, writer = await asyncio.open_unix_connection(self.target.path)
        except OSError as e:
            raise ConnectionError(
                f"Failed to connect: {e}",
                address=self.target.address,
            ) from e

        self._reader = reader
        self._writer = writer
        self._connected = True
        self._shut_down = False
        self._reader_task = asyncio.create_task(self._read_loop(), name="ovscache-jsonrpc-reader")
        logger.info("Connected to database server", extra={"address": self.target.address})

    async def close(self) -> None:
        """Close the socket, failing pending requests and ending updates()."""
        if self._reader_task is not None:
            self._reader_task.cancel()
            try:
                await self._reader_task
            except asyncio.CancelledError:
                pass
            self._reader_task = None

        self._shutdown(ConnectionError("Connection closed", address=self.target.address))

        if self._writer is not None:
            self._writer.close()
            try:
                await self._writer.wait_closed()
            except OSError as e:
                logger.debug(f"Error while closing socket: {e}")
            self._writer = None
            logger.info("Disconnected from database server", extra={"address": self.target.address})

    async def monitor_all(self, database: str) -> TableUpdates:
        """Fetch the schema, then monitor every column of every table."""
        schema = await self._call("get_schema", [database])
        if not isinstance(schema, dict) or not isinstance(schema.get("tables"), dict):
            raise ProtocolError(f"Malformed schema for database '{database}'")

        requests = {
            table: {"columns": sorted(definition.get("columns", {}))}
            for table, definition in schema["tables"].items()
        }
        result = await self._call("monitor", [database, self.monitor_id, requests])
        return TableUpdates.from_json(result)

    async def transact(self, database: str, operations: List[Dict[str, Any]]) -> List[Any]:
        result = await self._call("transact", [database, *operations])
        if not isinstance(result, list):
            raise ProtocolError(f"transact reply must be an array, got {type(result).__name__}")
        return result

    async def updates(self) -> AsyncIterator[TableUpdates]:
        while True:
            batch = await self._updates.get()
            if batch is _END:
                # Leave the marker for any later iterator
                self._updates.put_nowait(_END)
                return
            yield batch

    async def _call(self, method: str, params: List[Any]) -> Any:
        """Send a request and wait for its response."""
        if not self._connected or self._writer is None:
            raise ConnectionError("Not connected", address=self.target.address)

        self._next_id += 1
        request_id = self._next_id
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future

        try:
            self._send({"method": method, "params": params, "id": request_id})
            await self._writer.drain()
        except OSError as e:
            self._pending.pop(request_id, None)
            raise ConnectionError(
                f"{method} request failed: {e}", address=self.target.address
            ) from e

        return await future

    def _send(self, message: Dict[str, Any]) -> None:
        assert self._writer is not None
        self._writer.write(json.dumps(message).encode("utf-8"))

    async def _read_loop(self) -> None:
        assert self._reader is not None
        decoder = codecs.getincrementaldecoder("utf-8")()
        framer = MessageFramer()
        reason = "Connection to database server lost"

        try:
            while True:
                chunk = await self._reader.read(READ_CHUNK_SIZE)
                if not chunk:
                    break
                for text in framer.feed(decoder.decode(chunk)):
                    self._handle(text)
                if framer.pending > MAX_BUFFER_SIZE:
                    raise ProtocolError("Incoming message exceeds buffer limit")
        except (OSError, UnicodeDecodeError, ProtocolError) as e:
            reason = f"Connection to database server lost: {e}"
            logger.error(reason, extra={"address": self.target.address})
        finally:
            self._shutdown(ConnectionError(reason, address=self.target.address))

    def _handle(self, text: str) -> None:
        """Parse and dispatch one complete message.

        A syntax error means the stream is out of step and is fatal. Any
        other failure is confined to the message that caused it.
        """
        try:
            message = json.loads(text)
        except json.JSONDecodeError as e:
            raise ProtocolError(f"Malformed JSON-RPC message: {e}") from e

        try:
            self._dispatch(message)
        except Exception as e:
            logger.error(
                f"Dropping message that failed to dispatch: {e}",
                exc_info=True,
                extra={"address": self.target.address},
            )

    def _dispatch(self, message: Any) -> None:
        if not isinstance(message, dict):
            logger.warning(f"Ignoring non-object message: {message!r}")
            return

        method = message.get("method")
        if method == "update":
            self._on_update(message.get("params"))
        elif method == "echo":
            self._send({"id": message.get("id"), "result": message.get("params", []), "error": None})
        elif method is not None:
            logger.debug(f"Ignoring notification '{method}'")
        else:
            self._on_response(message)

    def _on_update(self, params: Any) -> None:
        if not isinstance(params, list) or len(params) != 2:
            logger.warning(f"Ignoring malformed update notification: {params!r}")
            return
        if params[0] != self.monitor_id:
            logger.debug(f"Ignoring update for monitor {params[0]!r}")
            return
        try:
            batch = TableUpdates.from_json(params[1])
        except ProtocolError as e:
            logger.error(f"Dropping malformed update batch: {e.message}")
            return
        self._updates.put_nowait(batch)

    def _on_response(self, message: Dict[str, Any]) -> None:
        future = self._pending.pop(message.get("id"), None)
        if future is None or future.done():
            logger.warning(f"Response for unknown request id {message.get('id')!r}")
            return
        error = message.get("error")
        if error is not None:
            future.set_exception(ProtocolError(f"Server returned error: {error}"))
        else:
            future.set_result(message.get("result"))

    def _shutdown(self, error: ConnectionError) -> None:
        if self._shut_down:
            return
        self._shut_down = True
        self._connected = False
        for future in self._pending.values():
            if not future.done():
                future.set_exception(error)
        self._pending.clear()
        self._updates.put_nowait(_END)
