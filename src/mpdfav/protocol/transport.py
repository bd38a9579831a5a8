"""Line-oriented TCP transport with ordered request/response pipelining."""

from __future__ import annotations

import asyncio
import logging

from .errors import ConnectError, ProtocolError, TransportError
from .messages import GREETING_PREFIX, OK, is_ack

_logger = logging.getLogger("mpdfav.transport")

# Tag values (comments, lyrics) can exceed the 64 KiB asyncio default.
READ_LIMIT = 4 * 1024 * 1024


class _Sequencer:
    """Hands out increasing ids and lets responses run strictly in id order."""

    def __init__(self):
        self._next = 0
        self._current = 0
        self._waiters: dict[int, asyncio.Future[None]] = {}

    def next_id(self) -> int:
        id = self._next
        self._next += 1
        return id

    async def start(self, id: int) -> None:
        """Wait until it is ``id``'s turn."""
        assert id < self._next, f"response {id} was never requested"
        assert id >= self._current, f"response {id} already consumed"
        if id == self._current:
            return
        waiter = asyncio.get_running_loop().create_future()
        self._waiters[id] = waiter
        try:
            await waiter
        finally:
            self._waiters.pop(id, None)

    def end(self, id: int) -> None:
        """Mark ``id`` consumed and wake whoever is next."""
        assert id == self._current, (
            f"response {id} ended out of order (expected {self._current})"
        )
        self._current += 1
        waiter = self._waiters.get(self._current)
        if waiter is not None and not waiter.done():
            waiter.set_result(None)


class LineTransport:
    """One socket to the daemon, exchanging protocol lines."""

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        host: str,
        port: int,
        greeting: str,
        limit: int = READ_LIMIT,
    ):
        self.host = host
        self.port = port
        self.greeting = greeting
        self.limit = limit
        self._reader = reader
        self._writer = writer
        self._sequencer = _Sequencer()
        self._skipping: set[asyncio.Future] = set()
        self._closed = False

    @classmethod
    async def dial(
        cls,
        host: str,
        port: int,
        greeting_prefix: str = GREETING_PREFIX,
        timeout: float | None = None,
        limit: int = READ_LIMIT,
    ) -> LineTransport:
        """Connect and validate the daemon's greeting line.

        ``limit`` is the longest reply line accepted before the connection
        is considered broken.
        """
        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(host, port, limit=limit), timeout=timeout
            )
        except (OSError, asyncio.TimeoutError) as e:
            raise ConnectError(f"Cannot connect to {host}:{port}: {e}") from e

        transport = cls(reader, writer, host, port, greeting="", limit=limit)
        try:
            greeting = await asyncio.wait_for(transport.read_line(), timeout=timeout)
        except (TransportError, ProtocolError, asyncio.TimeoutError) as e:
            await transport.close()
            raise ConnectError(f"No greeting from {host}:{port}: {e}") from e

        if not greeting.startswith(greeting_prefix):
            await transport.close()
            raise ConnectError(f"Unexpected greeting from {host}:{port}: {greeting!r}")

        transport.greeting = greeting
        _logger.debug(f"Connected to {host}:{port} ({greeting})")
        return transport

    async def duplicate(self, timeout: float | None = None) -> LineTransport:
        """Open a second socket to the same endpoint."""
        prefix = " ".join(self.greeting.split(" ", 2)[:2]) or GREETING_PREFIX
        return await self.dial(
            self.host, self.port, greeting_prefix=prefix, timeout=timeout, limit=self.limit
        )

    @property
    def server_version(self) -> str:
        """Daemon version announced in the greeting, e.g. ``0.23.5``."""
        parts = self.greeting.split(" ", 2)
        return parts[2] if len(parts) > 2 else ""

    @property
    def closed(self) -> bool:
        return self._closed

    async def read_line(self) -> str:
        """Read one line, without its terminator.

        A line that is not valid UTF-8 is consumed and reported as a
        :class:`ProtocolError`; the stream stays in sync.
        """
        try:
            raw = await self._reader.readline()
        except (OSError, asyncio.IncompleteReadError) as e:
            raise TransportError(f"Read failed: {e}") from e
        except (ValueError, asyncio.LimitOverrunError) as e:
            # readline() has discarded buffered data; framing is lost.
            raise TransportError(f"Reply line longer than {self.limit} bytes: {e}") from e
        if not raw.endswith(b"\n"):
            raise TransportError("Connection closed by daemon")
        try:
            return raw[:-1].decode("utf-8")
        except UnicodeDecodeError as e:
            raise ProtocolError(
                f"Reply line is not valid UTF-8: {raw[:-1]!r}",
                line=raw[:-1].decode("utf-8", errors="replace"),
            ) from e

    async def cmd(self, text: str, reply: bool = True) -> int:
        """Write one command line and return the id bracketing its response."""
        if self._closed:
            raise TransportError("Connection is closed")
        id = self._sequencer.next_id()
        try:
            self._writer.write(text.encode("utf-8") + b"\n")
            await self._writer.drain()
        except OSError as e:
            raise TransportError(f"Write failed: {e}") from e
        except asyncio.CancelledError:
            # The line is already buffered, so the daemon will answer it.
            self.skip_response(id, reply=reply)
            raise
        return id

    async def start_response(self, id: int) -> None:
        await self._sequencer.start(id)

    def end_response(self, id: int) -> None:
        self._sequencer.end(id)

    def skip_response(self, id: int, reply: bool = True) -> None:
        """Give up on ``id``: its turn is still taken, in the background.

        Whatever is left of the reply (up to ``OK`` or an ``ACK`` line) is
        read and dropped so the next response starts on its own first
        line. Pass ``reply=False`` for commands that get no reply of their
        own, such as ``noidle``.
        """
        task = asyncio.ensure_future(self._skip(id, reply))
        self._skipping.add(task)
        task.add_done_callback(self._skipping.discard)

    async def _skip(self, id: int, reply: bool) -> None:
        await self._sequencer.start(id)
        try:
            while reply:
                try:
                    line = await self.read_line()
                except ProtocolError:
                    continue
                if line == OK or is_ack(line):
                    break
        except TransportError as e:
            _logger.warning(f"Lost connection while skipping response {id}: {e}")
        finally:
            self._sequencer.end(id)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for task in self._skipping:
            task.cancel()
        self._writer.close()
        try:
            await self._writer.wait_closed()
        except OSError:
            pass
