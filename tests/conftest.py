import itertools
from typing import Callable, List, Tuple

import pytest

from atweet_feed.config import Settings
from atweet_feed.memory_repository import InMemoryTwitRepository
from atweet_feed.sqlite_repository import SqliteTwitRepository
from atweet_feed.types import FeedItem, FeedItemType

_counter = itertools.count()


def build_item(**overrides) -> FeedItem:
    n = next(_counter)
    values = {
        "type": FeedItemType.TWIT,
        "author_did": "did:plc:test",
        "author_handle": "test.handle",
        "cid": f"cid-{n}",
        "uri": f"at://did:plc:test/com.atweet.twit/{n}",
        "indexed_at": "2024-01-01T00:00:00.000Z",
        "record_created_at": "2024-01-01T00:00:00.000Z",
    }
    values.update(overrides)
    return FeedItem(**values)


@pytest.fixture
def make_item() -> Callable[..., FeedItem]:
    return build_item


class FakeTimer:
    def __init__(self, scheduler: "FakeScheduler", delay: float, callback):
        self.scheduler = scheduler
        self.delay = delay
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeScheduler:
    """Collects timers instead of waiting on a clock; ``fire`` runs them."""

    def __init__(self) -> None:
        self.timers: List[FakeTimer] = []

    def call_later(self, delay, callback) -> FakeTimer:
        timer = FakeTimer(self, delay, callback)
        self.timers.append(timer)
        return timer

    @property
    def armed(self) -> List[FakeTimer]:
        return [t for t in self.timers if not t.cancelled]

    def fire(self) -> None:
        pending, self.timers = self.armed, []
        for timer in pending:
            timer.callback()


@pytest.fixture
def scheduler() -> FakeScheduler:
    return FakeScheduler()


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        jetstream_enabled=True,
        jetstream_endpoint="wss://jetstream.example.com/subscribe",
        jetstream_initial_cursor=None,
        jetstream_cursor_file=str(tmp_path / "jetstream.cursor"),
        twit_repository_backend="memory",
        twit_repository_file=str(tmp_path / "twits.sqlite"),
        max_buffer=500,
    )


@pytest.fixture(params=["memory", "sqlite"])
def repository(request, tmp_path):
    if request.param == "memory":
        repo = InMemoryTwitRepository(max_buffer=10)
    else:
        repo = SqliteTwitRepository(database_file=str(tmp_path / "twits.sqlite"), max_buffer=10)
    yield repo
    repo.close()


def drain(repository, limit=None) -> Tuple[List[FeedItem], int]:
    """Follow cursors to the end; returns all items and the number of calls."""
    items: List[FeedItem] = []
    cursor = None
    calls = 0
    while True:
        calls += 1
        page = repository.list(cursor=cursor, limit=limit)
        items.extend(page.items)
        if page.next_cursor is None:
            return items, calls
        cursor = page.next_cursor
        assert calls < 1000
