"""MPD command client with idle/notify support."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from enum import Enum
from typing import AsyncIterator

from .errors import MPDError, ProtocolError, TransportError
from .idle import IdleSubscription, dispatch
from .messages import (
    INFO_FIELD_SEP,
    OK,
    ChannelMessage,
    Info,
    format_command,
    is_ack,
    parse_sticker,
    protocol_error,
)
from .transport import LineTransport

_logger = logging.getLogger("mpdfav.client")

DEFAULT_HOST = "localhost"
DEFAULT_PORT = 6600


class ConnectionMode(str, Enum):
    """Whether the connection is blocked in the idle command."""

    NORMAL = "normal"
    WAITING = "waiting"


def _subsystem_name(subsystem: str) -> str:
    return str(getattr(subsystem, "value", subsystem))


def _ends_reply(line: str | None) -> bool:
    return line is None or line == OK or is_ack(line)


class MPDClient:
    """Client for one MPD connection.

    Every command goes through :meth:`cmd`, which interrupts a pending
    ``idle`` first: the daemon would otherwise read the next line as part
    of the idle command.
    """

    def __init__(self, transport: LineTransport, logger: logging.Logger | None = None):
        self._transport = transport
        self._log = logger or _logger
        self.mode = ConnectionMode.NORMAL
        self._issue_lock = asyncio.Lock()
        self._subscriptions: list[IdleSubscription] = []
        self._idle_task: asyncio.Task | None = None
        self._idle_subsystems: tuple[str, ...] = ()
        self._idle_error: MPDError | None = None
        self._quit = False

    @classmethod
    async def connect(
        cls,
        host: str = DEFAULT_HOST,
        port: int = DEFAULT_PORT,
        logger: logging.Logger | None = None,
        timeout: float | None = None,
    ) -> MPDClient:
        """Dial the daemon and validate its greeting."""
        transport = await LineTransport.dial(host, port, timeout=timeout)
        return cls(transport, logger=logger)

    async def duplicate(self, timeout: float | None = None) -> MPDClient:
        """Open an independent connection to the same daemon."""
        transport = await self._transport.duplicate(timeout=timeout)
        return type(self)(transport, logger=self._log)

    @property
    def host(self) -> str:
        return self._transport.host

    @property
    def port(self) -> int:
        return self._transport.port

    @property
    def server_version(self) -> str:
        return self._transport.server_version

    @property
    def closed(self) -> bool:
        return self._transport.closed

    # -- command issuance --------------------------------------------------

    async def cmd(self, text: str) -> int:
        """Send a command and return the id bracketing its response."""
        async with self._issue_lock:
            if self.mode is ConnectionMode.WAITING:
                await self._no_idle()
            self._log.debug(f"cmd: {text}")
            return await self._transport.cmd(text)

    async def _no_idle(self) -> None:
        # noidle has no reply of its own; its turn comes once the idle
        # reply has been consumed by the idle loop.
        id = await self._transport.cmd("noidle", reply=False)
        await self._start_response(id, reply=False)
        self._transport.end_response(id)

    async def _start_response(self, id: int, reply: bool = True) -> None:
        try:
            await self._transport.start_response(id)
        except asyncio.CancelledError:
            self._transport.skip_response(id, reply=reply)
            raise

    def _finish_response(self, id: int, error: BaseException) -> None:
        """Release ``id`` after ``error`` interrupted reading its reply.

        A protocol error is fatal to the command, not to the connection:
        the rest of the reply is dropped so later commands stay in sync.
        """
        if isinstance(error, asyncio.CancelledError) or (
            isinstance(error, ProtocolError) and not _ends_reply(error.line)
        ):
            self._transport.skip_response(id)
        else:
            self._transport.end_response(id)

    @asynccontextmanager
    async def _response(self, text: str) -> AsyncIterator[None]:
        id = await self.cmd(text)
        await self._start_response(id)
        try:
            yield
        except BaseException as e:
            self._finish_response(id, e)
            raise
        self._transport.end_response(id)

    async def _read_line(self) -> str:
        return await self._transport.read_line()

    async def _read_info(self, operation: str) -> Info:
        info = Info()
        while True:
            line = await self._read_line()
            if line == OK:
                return info
            if is_ack(line):
                raise protocol_error(operation, line)
            info.add_line(line)

    async def _expect_ok(self, operation: str) -> None:
        line = await self._read_line()
        if line != OK:
            raise protocol_error(operation, line)

    # -- commands ----------------------------------------------------------

    async def status(self) -> Info:
        async with self._response("status"):
            return await self._read_info("Status")

    async def current_song(self) -> Info:
        async with self._response("currentsong"):
            return await self._read_info("CurrentSong")

    async def sticker_get(self, sticker_type: str, uri: str, name: str) -> str:
        """Return a sticker value, or ``""`` if the sticker is not set."""
        async with self._response(format_command("sticker get", sticker_type, uri, name)):
            line = await self._read_line()
            parsed = parse_sticker(line)
            if parsed is None:
                if line == OK:
                    return ""
                if is_ack(line) and "no such sticker" in line:
                    return ""
                raise protocol_error("StickerGet", line)
            key, value = parsed
            if key != name:
                raise protocol_error("StickerGet", line)
            ok_line = await self._read_line()
            if ok_line != OK:
                raise ProtocolError(
                    f"StickerGet didn't receive OK line: {ok_line}", line=ok_line
                )
            return value

    async def sticker_set(self, sticker_type: str, uri: str, name: str, value: str) -> None:
        async with self._response(
            format_command("sticker set", sticker_type, uri, name, value)
        ):
            await self._expect_ok("StickerSet")

    async def subscribe(self, channel: str) -> None:
        async with self._response(format_command("subscribe", channel)):
            await self._expect_ok("Subscribe")

    async def unsubscribe(self, channel: str) -> None:
        async with self._response(format_command("unsubscribe", channel)):
            await self._expect_ok("Unsubscribe")

    async def send_message(self, channel: str, text: str) -> None:
        async with self._response(format_command("sendmessage", channel, text)):
            await self._expect_ok("SendMessage")

    async def read_messages(self) -> list[ChannelMessage]:
        """Read every message pending on the subscribed channels."""
        messages: list[ChannelMessage] = []
        async with self._response("readmessages"):
            while True:
                channel_line = await self._read_line()
                if channel_line == OK:
                    return messages
                if is_ack(channel_line):
                    raise protocol_error("ReadMessages", channel_line)
                message_line = await self._read_line()
                if message_line == OK or is_ack(message_line):
                    raise protocol_error("ReadMessages", message_line)
                messages.append(ChannelMessage.from_lines(channel_line, message_line))

    # -- idle --------------------------------------------------------------

    def idle(self, *subsystems: str) -> asyncio.Future[str]:
        """Register a one-shot subscription for subsystem changes.

        The returned future resolves with the name of the first matching
        subsystem reported by the daemon. With no arguments any subsystem
        matches. The idle loop is started on first use; resubscribe after
        each delivery to keep listening.
        """
        future: asyncio.Future[str] = asyncio.get_running_loop().create_future()
        subscription = IdleSubscription(
            future, frozenset(_subsystem_name(s) for s in subsystems)
        )
        if self._idle_error is not None:
            subscription.fail(self._idle_error)
        elif self._quit:
            subscription.cancel()
        else:
            self._subscriptions.append(subscription)
            self.start_idle()
        return future

    def start_idle(self, *subsystems: str) -> None:
        """Start the idle loop, optionally restricted to some subsystems."""
        if self._idle_task is not None:
            return
        self._idle_subsystems = tuple(_subsystem_name(s) for s in subsystems)
        self._idle_task = asyncio.create_task(self._idle_loop())

    async def _idle_loop(self) -> None:
        try:
            while True:
                changed = await self._wait_for_change()
                if changed is None:
                    break
                if not changed:
                    self._log.debug("Idle interrupted")
                for subsystem in changed:
                    self._log.debug(f"Subsystem changed: {subsystem}")
                    self._subscriptions = dispatch(self._subscriptions, subsystem)
                if self._quit:
                    break
        except MPDError as e:
            self._log.error(f"Idle loop failed: {e}")
            self._idle_error = e
            for subscription in self._subscriptions:
                subscription.fail(e)
            self._subscriptions = []

    async def _wait_for_change(self) -> list[str] | None:
        """Run one idle command; None if shutdown was requested first."""
        async with self._issue_lock:
            if self._quit:
                return None
            id = await self._transport.cmd(" ".join(["idle", *self._idle_subsystems]))
            self.mode = ConnectionMode.WAITING
        self._log.debug("Entering idle mode")

        await self._start_response(id)
        try:
            changed = await self._read_changes()
        except BaseException as e:
            self._finish_response(id, e)
            raise
        else:
            self._transport.end_response(id)
        finally:
            self.mode = ConnectionMode.NORMAL
        return changed

    async def _read_changes(self) -> list[str]:
        changed = []
        while True:
            line = await self._read_line()
            if line == OK:
                return changed
            key, sep, value = line.partition(INFO_FIELD_SEP)
            if key != "changed" or not sep:
                raise protocol_error("Idle", line)
            changed.append(value)

    # -- shutdown ----------------------------------------------------------

    async def close(self) -> None:
        """Interrupt idle mode, say goodbye and close the socket."""
        if self._transport.closed:
            return
        self._quit = True
        try:
            async with self._response("close"):
                pass
        except TransportError as e:
            self._log.debug(f"Connection already gone on close: {e}")
        finally:
            if self._idle_task is not None:
                await self._idle_task
            for subscription in self._subscriptions:
                subscription.cancel()
            self._subscriptions = []
            await self._transport.close()
