"""Error types raised by the MPD protocol client."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .messages import Ack


class MPDError(Exception):
    """Base class for all client errors."""


class ConnectError(MPDError):
    """Endpoint unreachable or the greeting was not recognized."""


class TransportError(MPDError):
    """Socket read/write failed mid-session. The connection is unusable."""


class ProtocolError(MPDError):
    """A reply did not match the grammar expected for the issued command."""

    def __init__(self, message: str, line: str | None = None, ack: Ack | None = None):
        super().__init__(message)
        self.line = line
        self.ack = ack


class DataFormatError(MPDError, ValueError):
    """A stored value could not be interpreted (e.g. a non-numeric counter)."""
