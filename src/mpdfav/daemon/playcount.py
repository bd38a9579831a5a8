"""Playcount tracking: count a song once it has been played to (nearly) the end."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from ..protocol.client import MPDClient
from ..protocol.errors import DataFormatError, MPDError
from ..protocol.messages import STICKER_SONG_TYPE, Info, Subsystem

_logger = logging.getLogger("mpdfav.playcount")

SONG_PLAYED_THRESHOLD = 10  # seconds
POLL_INTERVAL = 0.9  # seconds
PLAYCOUNT_STICKER = "playcount"


@dataclass
class SongStatusInfo:
    """Last seen player status and current song."""

    status: Info = field(default_factory=Info)
    song: Info = field(default_factory=Info)


def considered_played(status: Info, limit: int = SONG_PLAYED_THRESHOLD) -> bool:
    """Whether the song in ``status`` was played close enough to its end."""
    elapsed, total = status.progress()
    if total == 0 or elapsed == 0:
        return False
    return (total - elapsed) < limit


async def read_playcount(client: MPDClient, file: str, sticker: str = PLAYCOUNT_STICKER) -> int:
    """Return the stored playcount for ``file`` (0 when never counted)."""
    value = await client.sticker_get(STICKER_SONG_TYPE, file, sticker)
    if not value:
        return 0
    try:
        return int(value)
    except ValueError as e:
        raise DataFormatError(f"Playcount of {file} is not a number: {value!r}") from e


async def inc_playcount(client: MPDClient, song: Info, sticker: str = PLAYCOUNT_STICKER) -> int:
    """Increment the playcount sticker of ``song`` and return the new value.

    Not atomic across the read and the write; callers serialize increments.
    """
    file = song["file"]
    count = await read_playcount(client, file, sticker) + 1
    await client.sticker_set(STICKER_SONG_TYPE, file, sticker, str(count))
    return count


class PlaycountTracker:
    """Watches the player and bumps a song's playcount when it was played.

    Status is polled on a timer while playing, and on every ``player``
    idle notification received on a dedicated connection.
    """

    def __init__(
        self,
        client: MPDClient,
        threshold: int = SONG_PLAYED_THRESHOLD,
        poll_interval: float = POLL_INTERVAL,
        sticker: str = PLAYCOUNT_STICKER,
        logger: logging.Logger | None = None,
    ):
        self.client = client
        self.threshold = threshold
        self.poll_interval = poll_interval
        self.sticker = sticker
        self.info = SongStatusInfo()
        self.poll_suppressed = False
        self._log = logger or _logger
        self._idle_client: MPDClient | None = None
        self._stopping = asyncio.Event()

    async def start(self) -> None:
        """Open the idle connection and take the initial snapshot."""
        self._idle_client = await self.client.duplicate()
        self.info.status = await self.client.status()
        self.info.song = await self.client.current_song()
        self.poll_suppressed = self.info.status.get("state") != "play"

    async def check_song_change(self) -> int | None:
        """Fetch status; count the previous song if it changed after being played.

        Returns the new playcount when one was recorded.
        """
        status = await self.client.status()
        playcount = None
        if status.get("songid") != self.info.status.get("songid"):
            if considered_played(self.info.status, self.threshold):
                playcount = await inc_playcount(self.client, self.info.song, self.sticker)
                self._log.info(
                    f"Playcounts: {self.info.song.get('Title', self.info.song.get('file'))} "
                    f"playcount={playcount}"
                )
        self.info.status = status
        return playcount

    async def update(self) -> int | None:
        """One state update step."""
        playcount = await self.check_song_change()
        # Stored after the check: it is already the next song playing.
        self.info.song = await self.client.current_song()
        return playcount

    async def run(self) -> None:
        """Track playcounts until :meth:`stop` is called."""
        if self._idle_client is None:
            await self.start()
        assert self._idle_client is not None

        notification = self._idle_client.idle(Subsystem.PLAYER)
        ticker = asyncio.ensure_future(asyncio.sleep(self.poll_interval))
        stopping = asyncio.ensure_future(self._stopping.wait())
        try:
            while True:
                await asyncio.wait(
                    {notification, ticker, stopping},
                    return_when=asyncio.FIRST_COMPLETED,
                )
                if stopping.done():
                    break
                if notification.done():
                    notification.result()
                    await self._update("idle")
                    notification = self._idle_client.idle(Subsystem.PLAYER)
                    self.poll_suppressed = self.info.status.get("state") != "play"
                if ticker.done():
                    if not self.poll_suppressed:
                        await self._update("poll")
                    ticker = asyncio.ensure_future(asyncio.sleep(self.poll_interval))
        finally:
            ticker.cancel()
            stopping.cancel()
            await self.close()

    async def _update(self, trigger: str) -> None:
        try:
            await self.update()
        except MPDError as e:
            self._log.error(f"Playcount update ({trigger}) failed: {e}")
            raise

    def stop(self) -> None:
        self._stopping.set()

    async def close(self) -> None:
        if self._idle_client is not None:
            await self._idle_client.close()
