"""mpdfav daemon - long-running services on top of the MPD client."""

from .main import DaemonRunner, main
from .playcount import (
    PLAYCOUNT_STICKER,
    PlaycountTracker,
    SongStatusInfo,
    considered_played,
    inc_playcount,
    read_playcount,
)

__all__ = [
    "main",
    "DaemonRunner",
    "PlaycountTracker",
    "SongStatusInfo",
    "PLAYCOUNT_STICKER",
    "considered_played",
    "inc_playcount",
    "read_playcount",
]
