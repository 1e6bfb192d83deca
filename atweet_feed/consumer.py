"""Jetstream consumer feeding twits and retwits into the local timeline."""

import asyncio
from enum import Enum
from typing import Any, Callable, Optional

from .config import ConfigurationError, Settings, validate_endpoint
from .cursor_store import CursorStore
from .events import (
    WANTED_COLLECTIONS,
    IdentityUpdated,
    RetwitCreated,
    Skipped,
    TwitCreated,
    decode_frame,
    iso_from_time_us,
)
from .handles import HandleCache
from .jetstream import JetstreamClient
from .logging_setup import get_logger
from .metrics import events_total, items_stored_total, jetstream_cursor, store_errors_total
from .repository import TwitRepository
from .types import FeedItem, FeedItemType

log = get_logger(__name__)


class ConsumerState(str, Enum):
    DISABLED = "disabled"
    IDLE = "idle"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"


class FeedConsumer:
    """Owns the one Jetstream subscription and the cursor watermark.

    Events are handled one at a time. Every accepted create advances the
    cursor, including ones whose repository write failed, so a single bad
    record never wedges ingestion.
    """

    def __init__(
        self,
        settings: Settings,
        repository: TwitRepository,
        cursor_store: CursorStore,
        handles: HandleCache,
        client_factory: Callable[..., Any] = JetstreamClient,
    ):
        self.settings = settings
        self.repository = repository
        self.cursor_store = cursor_store
        self.handles = handles
        self.client_factory = client_factory

        self.client: Optional[JetstreamClient] = None
        self.state = ConsumerState.DISABLED if not settings.jetstream_enabled else ConsumerState.IDLE
        self.start_cursor: Optional[int] = None
        self._task: Optional[asyncio.Task] = None

    def resolve_start_cursor(self) -> Optional[int]:
        """Explicit configuration wins, then the persisted cursor, else live."""
        if self.settings.jetstream_initial_cursor is not None:
            return self.settings.jetstream_initial_cursor
        return self.cursor_store.read_persisted()

    async def start(self) -> None:
        if not self.settings.jetstream_enabled:
            log.info("jetstream_disabled")
            self.state = ConsumerState.DISABLED
            return
        if self._task is not None:
            return

        try:
            endpoint = validate_endpoint(self.settings.jetstream_endpoint)
        except ConfigurationError as e:
            log.error("jetstream_init_failed", error=str(e))
            self.state = ConsumerState.DISABLED
            return

        self.start_cursor = self.resolve_start_cursor()
        self.client = self.client_factory(
            endpoint=endpoint,
            wanted_collections=WANTED_COLLECTIONS,
            on_message=self.handle_message,
            cursor=self.start_cursor,
            reconnect_delay=self.settings.reconnect_delay,
            max_reconnect_delay=self.settings.max_reconnect_delay,
            on_open=self._on_open,
            on_close=self._on_close,
            on_error=self._on_error,
        )
        self.state = ConsumerState.CONNECTING
        self._task = asyncio.create_task(self.client.run())

    def _on_open(self) -> None:
        self.state = ConsumerState.OPEN
        log.info(
            "jetstream_connected",
            endpoint=self.settings.jetstream_endpoint,
            cursor=self.client.cursor if self.client else None,
        )

    def _on_close(self) -> None:
        self.state = ConsumerState.CLOSED
        log.warning("jetstream_connection_closed")

    def _on_error(self, error: Exception, cursor: Optional[int]) -> None:
        self.state = ConsumerState.CONNECTING
        log.error("jetstream_error", error=str(error), cursor=cursor)

    async def handle_message(self, raw: Any) -> None:
        event = decode_frame(raw)

        if isinstance(event, TwitCreated):
            events_total.labels(kind="twit").inc()
            self._handle_twit(event)
        elif isinstance(event, RetwitCreated):
            events_total.labels(kind="retwit").inc()
            self._handle_retwit(event)
        elif isinstance(event, IdentityUpdated):
            events_total.labels(kind="identity").inc()
            self.handles.remember(event.did, event.handle)
        else:
            events_total.labels(kind="skipped").inc()
            self._handle_skipped(event)

    def _handle_twit(self, event: TwitCreated) -> None:
        self.handles.remember(event.did, event.handle_hint)

        item = FeedItem(
            type=FeedItemType.TWIT,
            author_did=event.did,
            author_handle=self.handles.resolve(event.did),
            cid=event.cid,
            uri=event.uri,
            indexed_at=iso_from_time_us(event.time_us),
            record_created_at=event.record_created_at,
        )
        self._store(item)
        self._advance(event.time_us)

    def _handle_retwit(self, event: RetwitCreated) -> None:
        self.handles.remember(event.did, event.handle_hint)

        subject = self.repository.get_by_uri(event.subject_uri)
        if subject is None:
            log.debug("retwit_subject_unknown", uri=event.uri, subject_uri=event.subject_uri)
            subject_did = event.subject_did
            subject_handle = subject_did
            subject_created_at = event.record_created_at
        else:
            subject_did = subject.author_did
            subject_handle = subject.author_handle
            subject_created_at = subject.record_created_at

        item = FeedItem(
            type=FeedItemType.RETWIT,
            author_did=subject_did,
            author_handle=subject_handle,
            cid=event.cid,
            uri=event.uri,
            indexed_at=iso_from_time_us(event.time_us),
            record_created_at=event.record_created_at,
            reshared_by_did=event.did,
            reshared_by_handle=self.handles.resolve(event.did),
            subject_uri=event.subject_uri,
            subject_cid=event.subject_cid,
            subject_record_created_at=subject_created_at,
        )
        self._store(item)
        self._advance(event.time_us)

    def _handle_skipped(self, event: Skipped) -> None:
        if event.time_us is None:
            log.debug("jetstream_event_ignored", reason=event.reason)
            return
        log.warning("jetstream_event_dropped", reason=event.reason, uri=event.uri)
        self._advance(event.time_us)

    def _store(self, item: FeedItem) -> None:
        try:
            self.repository.add(item)
            items_stored_total.inc()
        except Exception as e:
            store_errors_total.inc()
            log.error("jetstream_persist_failed", uri=item.uri, error=str(e))

    def _advance(self, time_us: int) -> None:
        self.cursor_store.schedule_advance(time_us)
        jetstream_cursor.set(time_us)
        if self.client is not None:
            self.client.advance(time_us)

    async def stop(self) -> None:
        """Flush the cursor, then close the upstream connection."""
        if self.client is None:
            return

        self.cursor_store.flush_immediately()
        await self.client.close()

        if self._task is not None:
            try:
                await asyncio.wait_for(self._task, timeout=5.0)
            except asyncio.TimeoutError:
                self._task.cancel()
                log.warning("jetstream_stop_timeout")
            self._task = None

        self.state = ConsumerState.CLOSED
        log.info("jetstream_consumer_stopped", cursor=self.cursor_store.latest)
