"""In-process ring buffer backend for the twit repository."""

import threading
from collections import deque
from typing import Any, Deque, Dict, Optional, Tuple

from .repository import (
    MAX_BUFFER,
    TwitRepository,
    cursor_from_id,
    normalize_limit,
    parse_cursor,
)
from .types import FeedItem, ListResult


class InMemoryTwitRepository(TwitRepository):
    """Keeps the newest ``max_buffer`` items in memory, newest first."""

    def __init__(self, max_buffer: int = MAX_BUFFER):
        self.max_buffer = max(1, max_buffer)
        self._items: Deque[Tuple[int, FeedItem]] = deque()
        self._by_uri: Dict[str, Tuple[int, FeedItem]] = {}
        self._next_seq = 1
        self._lock = threading.Lock()

    def add(self, item: FeedItem) -> None:
        with self._lock:
            if item.uri in self._by_uri:
                return

            seq = self._next_seq
            self._next_seq += 1
            entry = (seq, item)
            self._items.appendleft(entry)
            self._by_uri[item.uri] = entry

            while len(self._items) > self.max_buffer:
                _, evicted = self._items.pop()
                self._by_uri.pop(evicted.uri, None)

    def list(self, cursor: Optional[str] = None, limit: Any = None) -> ListResult:
        page_size = normalize_limit(limit)
        cursor_id = parse_cursor(cursor)

        with self._lock:
            if cursor_id is None:
                candidates = list(self._items)
            else:
                # Sequences strictly decrease from left to right
                candidates = [entry for entry in self._items if entry[0] < cursor_id]

        page = candidates[:page_size]
        next_cursor = None
        if len(page) == page_size and len(candidates) > page_size:
            next_cursor = cursor_from_id(page[-1][0])

        return ListResult(items=[item for _, item in page], next_cursor=next_cursor)

    def get_by_uri(self, uri: str) -> Optional[FeedItem]:
        with self._lock:
            entry = self._by_uri.get(uri)
        return entry[1] if entry is not None else None

    def clear(self) -> None:
        with self._lock:
            self._items.clear()
            self._by_uri.clear()
            self._next_seq = 1

    def __len__(self) -> int:
        return len(self._items)
