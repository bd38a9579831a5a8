"""MPD protocol - line transport, command client and idle notifications."""

from .client import DEFAULT_HOST, DEFAULT_PORT, ConnectionMode, MPDClient
from .errors import (
    ConnectError,
    DataFormatError,
    MPDError,
    ProtocolError,
    TransportError,
)
from .idle import IdleSubscription, dispatch
from .messages import (
    GREETING_PREFIX,
    STICKER_SONG_TYPE,
    Ack,
    ChannelMessage,
    Info,
    Subsystem,
    format_command,
    quote,
)
from .transport import LineTransport

__all__ = [
    "DEFAULT_HOST",
    "DEFAULT_PORT",
    "GREETING_PREFIX",
    "STICKER_SONG_TYPE",
    "Ack",
    "ChannelMessage",
    "ConnectError",
    "ConnectionMode",
    "DataFormatError",
    "IdleSubscription",
    "Info",
    "LineTransport",
    "MPDClient",
    "MPDError",
    "ProtocolError",
    "Subsystem",
    "TransportError",
    "dispatch",
    "format_command",
    "quote",
]
