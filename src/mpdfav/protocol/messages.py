"""Reply types and line grammar for the MPD protocol."""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum

from .errors import ProtocolError

GREETING_PREFIX = "OK MPD"
OK = "OK"
INFO_FIELD_SEP = ": "
STICKER_SONG_TYPE = "song"

_ACK_RE = re.compile(r"^ACK \[(\d+)@(\d+)\] \{([^}]*)\} ?(.*)$")
_STICKER_RE = re.compile(r"^sticker: ([^=]+)=(.*)$")
_CHANNEL_RE = re.compile(r"^channel: (.+)$")
_MESSAGE_RE = re.compile(r"^message: (.+)$")


class Subsystem(str, Enum):
    """Subsystem names reported by the idle command."""

    DATABASE = "database"
    UPDATE = "update"
    STORED_PLAYLIST = "stored_playlist"
    PLAYLIST = "playlist"
    PLAYER = "player"
    MIXER = "mixer"
    OUTPUT = "output"
    OPTIONS = "options"
    PARTITION = "partition"
    STICKER = "sticker"
    SUBSCRIPTION = "subscription"
    MESSAGE = "message"


class Info(dict):
    """One parsed multi-line reply block (``key: value`` lines)."""

    def add_line(self, line: str) -> None:
        """Parse a ``key: value`` line into the mapping.

        Only the first separator splits; the value is kept verbatim,
        embedded colons included.
        """
        key, sep, value = line.partition(INFO_FIELD_SEP)
        if not sep:
            raise ProtocolError(f"Invalid info line: {line}", line=line)
        self[key] = value

    def progress(self) -> tuple[int, int]:
        """Return ``(elapsed, total)`` seconds from the ``time`` field."""
        elapsed, sep, total = self.get("time", "").partition(":")
        if not sep:
            return 0, 0
        try:
            return int(float(elapsed)), int(float(total))
        except ValueError:
            return 0, 0

    @classmethod
    def from_lines(cls, lines: list[str]) -> Info:
        info = cls()
        for line in lines:
            info.add_line(line)
        return info


@dataclass(frozen=True)
class ChannelMessage:
    """A message read from a client-to-client channel."""

    channel: str
    message: str

    @classmethod
    def from_lines(cls, channel_line: str, message_line: str) -> ChannelMessage:
        channel = _CHANNEL_RE.match(channel_line)
        message = _MESSAGE_RE.match(message_line)
        if channel is None or message is None:
            raise ProtocolError(
                f"ReadMessages: bad channel/message response: {channel_line},{message_line}",
                line=channel_line if channel is None else message_line,
            )
        return cls(channel=channel.group(1), message=message.group(1))


@dataclass(frozen=True)
class Ack:
    """Parsed error reply: ``ACK [code@index] {command} message``."""

    code: int
    index: int
    command: str
    message: str

    @classmethod
    def parse(cls, line: str) -> Ack | None:
        match = _ACK_RE.match(line)
        if match is None:
            return None
        return cls(
            code=int(match.group(1)),
            index=int(match.group(2)),
            command=match.group(3),
            message=match.group(4),
        )


def is_ack(line: str) -> bool:
    """Whether the line is an error-shaped reply."""
    return line.startswith("ACK ")


def protocol_error(operation: str, line: str) -> ProtocolError:
    """Build the error for an unexpected reply line to ``operation``."""
    return ProtocolError(f"{operation}: {line}", line=line, ack=Ack.parse(line))


def parse_sticker(line: str) -> tuple[str, str] | None:
    """Split a ``sticker: name=value`` line, or None if it doesn't match."""
    match = _STICKER_RE.match(line)
    if match is None:
        return None
    return match.group(1), match.group(2)


def quote(arg: str) -> str:
    """Quote a command argument, escaping backslashes and double quotes."""
    escaped = arg.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def format_command(name: str, *args: str) -> str:
    """Build a command line from a name and quoted arguments."""
    return " ".join([name, *(quote(a) for a in args)])
