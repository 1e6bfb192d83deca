"""Durable SQLite backend for the twit repository, built on peewee."""

import os
import threading
from datetime import datetime, timezone
from typing import Any, Optional

import peewee
from playhouse.migrate import SqliteMigrator, migrate

from .logging_setup import get_logger
from .repository import (
    MAX_BUFFER,
    TwitRepository,
    cursor_from_id,
    normalize_limit,
    parse_cursor,
)
from .types import FeedItem, FeedItemType, ListResult

log = get_logger(__name__)

DEFAULT_DATABASE_FILE = ".data/twits.sqlite"
TABLE_NAME = "twits"

# Columns introduced after the first schema; added in place on open
OPTIONAL_COLUMNS = (
    "type",
    "reshared_by_did",
    "reshared_by_handle",
    "subject_uri",
    "subject_cid",
    "subject_record_created_at",
)


class Twit(peewee.Model):
    id = peewee.AutoField()

    type = peewee.CharField(null=True, default=FeedItemType.TWIT.value)
    author_did = peewee.CharField()
    author_handle = peewee.CharField()
    cid = peewee.CharField()
    indexed_at = peewee.CharField(index=True)
    record_created_at = peewee.CharField()
    uri = peewee.CharField(unique=True)

    # Retwit metadata
    reshared_by_did = peewee.CharField(null=True, default=None)
    reshared_by_handle = peewee.CharField(null=True, default=None)
    subject_uri = peewee.CharField(null=True, default=None)
    subject_cid = peewee.CharField(null=True, default=None)
    subject_record_created_at = peewee.CharField(null=True, default=None)

    class Meta:
        table_name = TABLE_NAME


def _ensure_directory_exists(file_path: str) -> None:
    directory = os.path.dirname(file_path)
    if directory:
        os.makedirs(directory, exist_ok=True)


def _bind_model(database: peewee.Database):
    """Return a Twit model bound to ``database`` without touching the shared class."""

    class BoundTwit(Twit):
        class Meta:
            table_name = TABLE_NAME

    BoundTwit._meta.set_database(database)
    return BoundTwit


def _to_feed_item(row) -> FeedItem:
    return FeedItem(
        type=row.type or FeedItemType.TWIT.value,
        author_did=row.author_did,
        author_handle=row.author_handle,
        cid=row.cid,
        uri=row.uri,
        indexed_at=row.indexed_at,
        record_created_at=row.record_created_at,
        reshared_by_did=row.reshared_by_did,
        reshared_by_handle=row.reshared_by_handle,
        subject_uri=row.subject_uri,
        subject_cid=row.subject_cid,
        subject_record_created_at=row.subject_record_created_at,
    )


class SqliteTwitRepository(TwitRepository):
    """Timeline buffer persisted in a WAL-mode SQLite table.

    The autoincrement ``id`` is the insertion sequence used for ordering and
    page cursors. Each ``list`` is a single SELECT, so a page is a consistent
    snapshot even while the consumer is writing.

    One connection is shared by every thread and a lock serializes access
    to it; API reads arrive from a threadpool.
    """

    def __init__(
        self,
        database_file: str = DEFAULT_DATABASE_FILE,
        max_buffer: int = MAX_BUFFER,
    ):
        self.database_file = database_file
        self.max_buffer = max(1, max_buffer)
        self._lock = threading.RLock()

        if database_file != ":memory:":
            _ensure_directory_exists(database_file)

        self.db = peewee.SqliteDatabase(
            database_file,
            pragmas={"journal_mode": "wal", "synchronous": "normal"},
            thread_safe=False,
            check_same_thread=False,
        )
        self.model = _bind_model(self.db)

        with self._lock:
            self.db.connect(reuse_if_open=True)
            self.db.create_tables([self.model], safe=True)
            self._migrate()

    def _migrate(self) -> None:
        existing = {column.name for column in self.db.get_columns(TABLE_NAME)}
        missing = [name for name in OPTIONAL_COLUMNS if name not in existing]
        if not missing:
            return

        migrator = SqliteMigrator(self.db)
        with self.db.atomic():
            migrate(
                *[
                    migrator.add_column(TABLE_NAME, name, self.model._meta.fields[name])
                    for name in missing
                ]
            )
        log.info("sqlite_schema_migrated", path=self.database_file, added=missing)

    def add(self, item: FeedItem) -> None:
        model = self.model
        data = item.model_dump(mode="json")
        if not data.get("indexed_at"):
            data["indexed_at"] = datetime.now(timezone.utc).isoformat()

        with self._lock, self.db.atomic():
            model.insert(**data).on_conflict_ignore().execute()

            newest = (
                model.select(model.id)
                .order_by(model.id.desc())
                .limit(self.max_buffer)
            )
            model.delete().where(model.id.not_in(newest)).execute()

    def list(self, cursor: Optional[str] = None, limit: Any = None) -> ListResult:
        model = self.model
        page_size = normalize_limit(limit)
        cursor_id = parse_cursor(cursor)

        query = model.select().order_by(model.id.desc()).limit(page_size)
        if cursor_id is not None:
            query = query.where(model.id < cursor_id)

        with self._lock:
            rows = list(query)
        next_cursor = cursor_from_id(rows[-1].id) if len(rows) == page_size else None

        return ListResult(items=[_to_feed_item(row) for row in rows], next_cursor=next_cursor)

    def get_by_uri(self, uri: str) -> Optional[FeedItem]:
        with self._lock:
            row = self.model.get_or_none(self.model.uri == uri)
        return _to_feed_item(row) if row is not None else None

    def clear(self) -> None:
        with self._lock:
            self.model.delete().execute()

    def close(self) -> None:
        with self._lock:
            if not self.db.is_closed():
                self.db.close()
