import asyncio
import signal
from typing import Optional

import uvicorn

from .api import create_app
from .config import Settings
from .consumer import FeedConsumer
from .cursor_store import CursorStore
from .handles import HandleCache
from .logging_setup import configure_logging, get_logger
from .publisher import TwitPublisher
from .repository import create_repository


log = get_logger(__name__)


class Service:
    """Composition root: builds every component once and owns their lifecycle.

    Shutdown order matters: the consumer flushes its cursor before the
    upstream connection closes, and the repository closes last.
    """

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        log.info("service_start", service=settings.service_name)

        self.repository = create_repository(settings)
        self.handles = HandleCache()
        self.cursor_store = CursorStore(
            settings.jetstream_cursor_file,
            delay=settings.cursor_flush_delay,
        )
        self.consumer = FeedConsumer(
            settings=settings,
            repository=self.repository,
            cursor_store=self.cursor_store,
            handles=self.handles,
        )
        self.publisher = TwitPublisher(self.repository, self.handles)

        self.app = create_app(
            self.repository,
            consumer=self.consumer,
            metrics_enabled=settings.metrics_enabled,
            service_name=settings.service_name,
        )
        config = uvicorn.Config(
            self.app,
            host=settings.http_host,
            port=settings.http_port,
            log_level=settings.log_level.lower(),
            access_log=False,
        )
        self.server = uvicorn.Server(config)

        self.stop_event = asyncio.Event()
        self._server_task: Optional[asyncio.Task] = None

    async def start(self) -> None:
        await self.consumer.start()

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, self._handle_signal)

        self._server_task = asyncio.create_task(self.server.serve())

    def _handle_signal(self) -> None:
        self.stop_event.set()

    async def stop(self) -> None:
        await self.consumer.stop()

        self.server.should_exit = True
        if self._server_task is not None:
            try:
                await self._server_task
            except Exception as e:
                log.warning("http_server_stop_failed", error=str(e))

        self.repository.close()
        log.info("service_stop")

    async def run(self) -> None:
        """Start the service and wait until stop signal; then perform a graceful shutdown."""
        await self.start()

        # uvicorn may claim SIGINT/SIGTERM itself, so its exit also means stop
        waiter = asyncio.create_task(self.stop_event.wait())
        await asyncio.wait({waiter, self._server_task}, return_when=asyncio.FIRST_COMPLETED)
        waiter.cancel()

        await self.stop()


def main() -> None:
    settings = Settings()
    configure_logging(settings.log_level, settings.log_format)
    asyncio.run(Service(settings).run())
