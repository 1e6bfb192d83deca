"""Twit repository contract, pagination helpers and backend factory."""

import math
import re
from abc import ABC, abstractmethod
from typing import Any, Optional

from .logging_setup import get_logger
from .types import FeedItem, ListResult

log = get_logger(__name__)

DEFAULT_LIMIT = 20
MAX_LIMIT = 50
MAX_BUFFER = 500

BACKEND_MEMORY = "memory"
BACKEND_SQLITE = "sqlite"

_LEADING_INT = re.compile(r"\s*[+-]?[0-9]+")
_CURSOR_DIGITS = re.compile(r"[0-9]+")


def _parse_leading_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if math.isfinite(value) else None
    if isinstance(value, str):
        match = _LEADING_INT.match(value)
        return int(match.group(0)) if match else None
    return None


def normalize_limit(limit: Any = None) -> int:
    """Clamp a requested page size to [1, MAX_LIMIT]; junk means the default.

    Strings are read up to the first non-digit, so "2.5" is a page of 2.
    """
    parsed = _parse_leading_int(limit)
    if parsed is None:
        parsed = DEFAULT_LIMIT
    return min(max(parsed or DEFAULT_LIMIT, 1), MAX_LIMIT)


def parse_cursor(cursor: Optional[str]) -> Optional[int]:
    """Decode an opaque page cursor into the internal sequence id."""
    if not isinstance(cursor, str) or not _CURSOR_DIGITS.fullmatch(cursor):
        return None
    return int(cursor)


def cursor_from_id(seq: Optional[int]) -> Optional[str]:
    if not isinstance(seq, int) or seq <= 0:
        return None
    return str(seq)


class TwitRepository(ABC):
    """Ordered, deduplicated, bounded buffer of feed items.

    Items are listed newest first by insertion sequence. Adding an item whose
    ``uri`` is already stored is a no-op.
    """

    @abstractmethod
    def add(self, item: FeedItem) -> None:
        ...

    @abstractmethod
    def list(self, cursor: Optional[str] = None, limit: Any = None) -> ListResult:
        ...

    @abstractmethod
    def get_by_uri(self, uri: str) -> Optional[FeedItem]:
        ...

    @abstractmethod
    def clear(self) -> None:
        ...

    def close(self) -> None:
        """Release backend resources."""


def create_repository(settings) -> TwitRepository:
    """Build the storage backend selected by ``settings.twit_repository_backend``."""
    backend = (settings.twit_repository_backend or BACKEND_MEMORY).strip().lower()

    if backend == BACKEND_SQLITE:
        from .sqlite_repository import SqliteTwitRepository

        log.info("repository_selected", backend=backend, path=settings.twit_repository_file)
        return SqliteTwitRepository(
            database_file=settings.twit_repository_file,
            max_buffer=settings.max_buffer,
        )

    if backend != BACKEND_MEMORY:
        log.warning("unknown_repository_backend", backend=backend, fallback=BACKEND_MEMORY)

    from .memory_repository import InMemoryTwitRepository

    log.info("repository_selected", backend=BACKEND_MEMORY)
    return InMemoryTwitRepository(max_buffer=settings.max_buffer)
