"""Websocket client for the Bluesky Jetstream firehose."""

import asyncio
from typing import Any, Awaitable, Callable, Iterable, Optional
from urllib.parse import urlencode, urlparse, urlunparse, parse_qsl

import websockets
from websockets.exceptions import ConnectionClosed, InvalidHandshake

from .logging_setup import get_logger
from .metrics import jetstream_connected

log = get_logger(__name__)

MessageHandler = Callable[[Any], Awaitable[None]]

# Frames carrying whole records can exceed the websockets 1 MiB default
MAX_FRAME_SIZE = 4 * 1024 * 1024


class JetstreamClient:
    """Single Jetstream subscription with reconnect and exponential backoff.

    Messages are dispatched to ``on_message`` one at a time, in arrival order.
    On reconnect the subscription resumes from ``cursor``, which the owner
    advances as it processes events.
    """

    def __init__(
        self,
        endpoint: str,
        wanted_collections: Iterable[str],
        on_message: MessageHandler,
        cursor: Optional[int] = None,
        reconnect_delay: float = 5.0,
        max_reconnect_delay: float = 60.0,
        on_open: Optional[Callable[[], None]] = None,
        on_close: Optional[Callable[[], None]] = None,
        on_error: Optional[Callable[[Exception, Optional[int]], None]] = None,
        connect: Callable[..., Any] = websockets.connect,
    ):
        self.endpoint = endpoint
        self.wanted_collections = list(wanted_collections)
        self.on_message = on_message
        self.cursor = cursor
        self.reconnect_delay = reconnect_delay
        self.max_reconnect_delay = max_reconnect_delay
        self.on_open = on_open
        self.on_close = on_close
        self.on_error = on_error
        self._connect = connect

        self.connected = False
        self.messages_received = 0
        self._ws = None
        self._stop_requested = asyncio.Event()

    def build_url(self) -> str:
        parsed = urlparse(self.endpoint)
        query = parse_qsl(parsed.query)
        query.extend(("wantedCollections", collection) for collection in self.wanted_collections)
        if self.cursor is not None:
            query.append(("cursor", str(self.cursor)))
        return urlunparse(parsed._replace(query=urlencode(query)))

    def advance(self, cursor: int) -> None:
        if self.cursor is None or cursor > self.cursor:
            self.cursor = cursor

    async def run(self) -> None:
        """Consume until ``close`` is called, reconnecting on failures."""
        delay = self.reconnect_delay

        while not self._stop_requested.is_set():
            try:
                await self._run_once()
                delay = self.reconnect_delay
            except (ConnectionClosed, InvalidHandshake, OSError, asyncio.TimeoutError) as e:
                self._report_error(e)
            except Exception as e:
                log.error("jetstream_unexpected_error", error=str(e))
                self._report_error(e)

            if self._stop_requested.is_set():
                break

            log.info("jetstream_reconnecting", delay=delay, cursor=self.cursor)
            try:
                await asyncio.wait_for(self._stop_requested.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass
            delay = min(delay * 2, self.max_reconnect_delay)

        log.info("jetstream_stopped", cursor=self.cursor)

    async def _run_once(self) -> None:
        url = self.build_url()
        log.info("jetstream_connecting", endpoint=self.endpoint, cursor=self.cursor or "latest")

        async with self._connect(url, max_size=MAX_FRAME_SIZE) as ws:
            self._ws = ws
            self._set_connected(True)
            if self.on_open:
                self.on_open()
            try:
                async for message in ws:
                    self.messages_received += 1
                    try:
                        await self.on_message(message)
                    except Exception as e:
                        log.error("jetstream_handler_failed", error=str(e))
                    if self._stop_requested.is_set():
                        break
            finally:
                self._ws = None
                self._set_connected(False)
                if self.on_close:
                    self.on_close()

    def _set_connected(self, value: bool) -> None:
        self.connected = value
        jetstream_connected.set(1 if value else 0)

    def _report_error(self, error: Exception) -> None:
        if self.on_error:
            self.on_error(error, self.cursor)
        else:
            log.error("jetstream_error", error=str(error), cursor=self.cursor)

    async def close(self) -> None:
        """Request shutdown and close the live socket, if any."""
        self._stop_requested.set()
        ws = self._ws
        if ws is not None:
            try:
                await ws.close()
            except Exception as e:
                log.warning("jetstream_close_failed", error=str(e))
