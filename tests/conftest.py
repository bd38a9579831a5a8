"""Pytest configuration and fixtures for mpdfav tests."""

from __future__ import annotations

import asyncio
import shlex
from pathlib import Path
from typing import Callable, Generator

import pytest
import pytest_asyncio

from mpdfav.protocol import MPDClient


class FakeSession:
    """Server side of one client connection."""

    def __init__(self, server: FakeMPD, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        self.server = server
        self.reader = reader
        self.writer = writer
        self.lines: asyncio.Queue[str | None] = asyncio.Queue()
        self.pending: set[str] = set()
        self.wake = asyncio.Event()
        self.channels: set[str] = set()
        self.messages: list[tuple[str, str]] = []

    def notify(self, subsystem: str) -> None:
        self.pending.add(subsystem)
        self.wake.set()

    def take(self, subsystems: tuple[str, ...]) -> list[str]:
        changed = sorted(s for s in self.pending if not subsystems or s in subsystems)
        self.pending.difference_update(changed)
        return changed

    def write(self, *lines: str | bytes) -> None:
        for line in lines:
            data = line if isinstance(line, bytes) else line.encode("utf-8")
            self.writer.write(data + b"\n")

    async def pump(self) -> None:
        """Feed incoming lines to the command loop; None marks EOF."""
        try:
            while True:
                raw = await self.reader.readline()
                if not raw:
                    break
                await self.lines.put(raw.decode("utf-8").rstrip("\n"))
        except ConnectionError:
            pass
        await self.lines.put(None)


class FakeMPD:
    """In-process MPD speaking just enough of the protocol for the client.

    ``replies`` maps a command name to raw lines sent back once instead of
    the normal handling, for scripting error paths.
    """

    def __init__(self, greeting: str = "OK MPD 0.23.5"):
        self.greeting = greeting
        self.status: dict[str, str] = {"volume": "80", "state": "stop"}
        self.current_song: dict[str, str] = {}
        self.stickers: dict[str, dict[str, str]] = {}
        self.replies: dict[str, list[str | bytes]] = {}
        self.commands: list[str] = []
        self.violations: list[str] = []
        self.sessions: list[FakeSession] = []
        self.port = 0
        self._server: asyncio.AbstractServer | None = None

    async def start(self) -> None:
        self._server = await asyncio.start_server(self._handle, "127.0.0.1", 0)
        self.port = self._server.sockets[0].getsockname()[1]

    async def stop(self) -> None:
        self.drop_connections()
        if self._server:
            self._server.close()
            await self._server.wait_closed()

    def drop_connections(self) -> None:
        for session in list(self.sessions):
            session.writer.close()

    def notify(self, subsystem: str) -> None:
        for session in self.sessions:
            session.notify(subsystem)

    def play(
        self,
        file: str,
        songid: int,
        elapsed: int,
        total: int,
        state: str = "play",
        title: str | None = None,
    ) -> None:
        self.status = {
            "volume": "80",
            "state": state,
            "song": "0",
            "songid": str(songid),
            "time": f"{elapsed}:{total}",
        }
        self.current_song = {
            "file": file,
            "Title": title or Path(file).stem,
            "Id": str(songid),
        }

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        session = FakeSession(self, reader, writer)
        self.sessions.append(session)
        pump = asyncio.create_task(session.pump())
        session.write(self.greeting)
        try:
            while True:
                line = await session.lines.get()
                if line is None:
                    break
                self.commands.append(line)
                if not await self._dispatch(session, line):
                    break
                await writer.drain()
        except ConnectionError:
            pass
        finally:
            pump.cancel()
            self.sessions.remove(session)
            writer.close()

    async def _dispatch(self, session: FakeSession, line: str) -> bool:
        args = shlex.split(line)
        name = args[0]
        if name in self.replies:
            session.write(*self.replies.pop(name))
            return True
        if name == "noidle":
            return True
        if name == "close":
            return False
        handler = getattr(self, f"_cmd_{name}", None)
        if handler is None:
            session.write(f'ACK [5@0] {{}} unknown command "{name}"')
            return True
        return await handler(session, *args[1:])

    async def _cmd_status(self, session: FakeSession) -> bool:
        session.write(*(f"{k}: {v}" for k, v in self.status.items()), "OK")
        return True

    async def _cmd_currentsong(self, session: FakeSession) -> bool:
        session.write(*(f"{k}: {v}" for k, v in self.current_song.items()), "OK")
        return True

    async def _cmd_sticker(self, session: FakeSession, action: str, stype: str, uri: str, name: str, *value: str) -> bool:
        if action == "get":
            if name in self.stickers.get(uri, {}):
                session.write(f"sticker: {name}={self.stickers[uri][name]}", "OK")
            else:
                session.write("ACK [50@0] {sticker} no such sticker")
        elif action == "set":
            self.stickers.setdefault(uri, {})[name] = value[0]
            session.write("OK")
        return True

    async def _cmd_subscribe(self, session: FakeSession, channel: str) -> bool:
        session.channels.add(channel)
        session.write("OK")
        return True

    async def _cmd_unsubscribe(self, session: FakeSession, channel: str) -> bool:
        session.channels.discard(channel)
        session.write("OK")
        return True

    async def _cmd_sendmessage(self, session: FakeSession, channel: str, text: str) -> bool:
        targets = [s for s in self.sessions if channel in s.channels]
        if not targets:
            session.write("ACK [50@0] {sendmessage} nobody is subscribed to this channel")
            return True
        for target in targets:
            target.messages.append((channel, text))
            target.notify("message")
        session.write("OK")
        return True

    async def _cmd_readmessages(self, session: FakeSession) -> bool:
        for channel, text in session.messages:
            session.write(f"channel: {channel}", f"message: {text}")
        session.messages.clear()
        session.write("OK")
        return True

    async def _cmd_idle(self, session: FakeSession, *subsystems: str) -> bool:
        while True:
            changed = session.take(subsystems)
            if changed:
                session.write(*(f"changed: {s}" for s in changed), "OK")
                return True
            session.wake.clear()
            line_task = asyncio.ensure_future(session.lines.get())
            wake_task = asyncio.ensure_future(session.wake.wait())
            await asyncio.wait({line_task, wake_task}, return_when=asyncio.FIRST_COMPLETED)
            wake_task.cancel()
            if line_task.done():
                line = line_task.result()
                if line is None:
                    return False
                self.commands.append(line)
                if line != "noidle":
                    # MPD drops clients that send anything else while idle
                    self.violations.append(line)
                    return False
                changed = session.take(subsystems)
                session.write(*(f"changed: {s}" for s in changed), "OK")
                return True
            line_task.cancel()


@pytest_asyncio.fixture
async def mpd_server() -> FakeMPD:
    """A running fake MPD on an ephemeral port."""
    server = FakeMPD()
    await server.start()
    yield server
    await server.stop()


@pytest_asyncio.fixture
async def client(mpd_server: FakeMPD) -> MPDClient:
    """A client connected to the fake MPD."""
    mpd = await MPDClient.connect("127.0.0.1", mpd_server.port)
    yield mpd
    await mpd.close()


@pytest.fixture
def wait_until() -> Callable:
    """Poll a predicate until it holds, failing after a timeout."""

    async def _wait(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not met in time")
            await asyncio.sleep(0.01)

    return _wait


@pytest.fixture(autouse=True)
def isolated_env(tmp_path: Path, monkeypatch) -> Generator[Path, None, None]:
    """Keep config, state and MPD_* environment away from the real user."""
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setenv("XDG_STATE_HOME", str(tmp_path / "state"))
    monkeypatch.delenv("MPD_HOST", raising=False)
    monkeypatch.delenv("MPD_PORT", raising=False)
    yield tmp_path


@pytest_asyncio.fixture
async def make_server():
    """Factory for extra fake servers (custom greeting, throwaway ports)."""
    servers: list[FakeMPD] = []

    async def _make(greeting: str = "OK MPD 0.23.5") -> FakeMPD:
        server = FakeMPD(greeting=greeting)
        await server.start()
        servers.append(server)
        return server

    yield _make
    for server in servers:
        await server.stop()
