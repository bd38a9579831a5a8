"""mpdfav daemon main entry point."""

from __future__ import annotations

import asyncio
import logging
import signal
import sys

from ..config import Config, get_log_file, load_config
from ..protocol.client import MPDClient
from ..protocol.errors import MPDError
from .playcount import PlaycountTracker


class DaemonRunner:
    """Main mpdfav process: connects to MPD and runs the enabled services."""

    def __init__(self, config: Config | None = None):
        self.config = config or load_config()
        self.client: MPDClient | None = None
        self.tracker: PlaycountTracker | None = None
        self._tracker_task: asyncio.Future | None = None
        self._shutdown_event = asyncio.Event()
        self._logger = logging.getLogger("mpdfav.daemon")

    def _setup_logging(self) -> None:
        """Set up logging to file and stderr."""
        log_file = get_log_file(self.config)
        log_file.parent.mkdir(parents=True, exist_ok=True)

        level = getattr(logging, self.config.daemon.log_level.upper(), logging.INFO)

        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )

        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)

        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)

        root_logger = logging.getLogger("mpdfav")
        root_logger.setLevel(level)
        root_logger.addHandler(file_handler)
        root_logger.addHandler(console_handler)

    def _setup_signal_handlers(self) -> None:
        """Set up signal handlers for graceful shutdown."""
        loop = asyncio.get_running_loop()

        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self._signal_handler)

    def _remove_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()

        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.remove_signal_handler(sig)

    def _signal_handler(self) -> None:
        """Handle shutdown signal."""
        self._logger.info("Received shutdown signal")
        self._shutdown_event.set()

    async def start(self) -> None:
        """Connect to MPD and start the services."""
        mpd = self.config.mpd
        self._logger.info(f"Connecting to MPD at {mpd.host}:{mpd.port}")
        self.client = await MPDClient.connect(mpd.host, mpd.port, timeout=mpd.timeout)
        self._logger.info(f"Connected to MPD {self.client.server_version}")

        if self.config.playcount.enabled:
            pc = self.config.playcount
            self.tracker = PlaycountTracker(
                self.client,
                threshold=pc.threshold,
                poll_interval=pc.poll_interval,
                sticker=pc.sticker,
            )
            await self.tracker.start()
            self._logger.info("Started Playcounts service")

    async def stop(self) -> None:
        """Stop the services and disconnect."""
        self._logger.info("Stopping mpdfav")
        if self.tracker:
            self.tracker.stop()
        if self._tracker_task and not self._tracker_task.done():
            await self._tracker_task
        if self.client:
            await self.client.close()
        self._logger.info("mpdfav stopped")

    async def run(self) -> None:
        """Run until a shutdown signal or a fatal service error."""
        self._setup_signal_handlers()
        shutdown = asyncio.ensure_future(self._shutdown_event.wait())
        try:
            await self.start()

            waiters = {shutdown}
            if self.tracker:
                self._tracker_task = asyncio.ensure_future(self.tracker.run())
                waiters.add(self._tracker_task)

            done, _ = await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
            for task in done:
                task.result()
        finally:
            shutdown.cancel()
            await self.stop()
            self._remove_signal_handlers()


async def async_main(config: Config | None = None) -> None:
    """Async entry point."""
    runner = DaemonRunner(config)
    runner._setup_logging()
    await runner.run()


def main(config: Config | None = None) -> None:
    """Main entry point for mpdfav-daemon."""
    try:
        asyncio.run(async_main(config))
    except KeyboardInterrupt:
        pass
    except MPDError as e:
        logging.getLogger("mpdfav.daemon").error(f"Fatal: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
