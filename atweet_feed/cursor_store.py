"""File-backed persistence for the Jetstream cursor."""

import asyncio
import os
from enum import Enum
from typing import Any, Callable, Optional, Protocol

from .logging_setup import get_logger

log = get_logger(__name__)

DEFAULT_FLUSH_DELAY = 1.0


class TimerHandle(Protocol):
    def cancel(self) -> None:
        ...


class Scheduler(Protocol):
    def call_later(self, delay: float, callback: Callable[[], Any]) -> TimerHandle:
        ...


class _LoopScheduler:
    """Schedules on the running asyncio loop, resolved at arm time."""

    def call_later(self, delay: float, callback: Callable[[], Any]) -> TimerHandle:
        return asyncio.get_running_loop().call_later(delay, callback)


class CursorState(str, Enum):
    IDLE = "idle"
    PENDING = "pending"


class CursorStore:
    """Debounced cursor persistence.

    ``schedule_advance`` updates the in-memory value right away and arms at
    most one timer; the timer writes whatever value is latest when it fires.
    ``flush_immediately`` cancels the timer and writes synchronously.
    Write failures are logged and swallowed.
    """

    def __init__(
        self,
        path: str,
        delay: float = DEFAULT_FLUSH_DELAY,
        scheduler: Optional[Scheduler] = None,
    ):
        self.path = os.path.abspath(path)
        self.delay = delay
        self.scheduler = scheduler or _LoopScheduler()
        self._latest: Optional[int] = None
        self._timer: Optional[TimerHandle] = None
        self.last_saved: Optional[int] = None

    @property
    def state(self) -> CursorState:
        return CursorState.PENDING if self._timer is not None else CursorState.IDLE

    @property
    def latest(self) -> Optional[int]:
        return self._latest

    def read_persisted(self) -> Optional[int]:
        """Load the saved cursor; a missing or corrupt file means no cursor."""
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                raw = f.read().strip()
        except FileNotFoundError:
            return None
        except OSError as e:
            log.warning("cursor_read_failed", path=self.path, error=str(e))
            return None

        try:
            value = int(raw)
        except ValueError:
            log.warning("cursor_file_corrupt", path=self.path, content=raw[:64])
            return None

        if value < 0:
            log.warning("cursor_file_corrupt", path=self.path, content=raw[:64])
            return None

        log.info("cursor_loaded", path=self.path, cursor=value)
        return value

    def schedule_advance(self, cursor: int) -> None:
        self._latest = cursor
        if self._timer is not None:
            return

        try:
            self._timer = self.scheduler.call_later(self.delay, self._on_timer)
        except RuntimeError as e:
            # No running loop to debounce on; persist now rather than lose it
            log.warning("cursor_schedule_failed", error=str(e))
            self._write()

    def flush_immediately(self) -> None:
        self.cancel()
        self._write()

    def cancel(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_timer(self) -> None:
        self._timer = None
        self._write()

    def _write(self) -> None:
        if self._latest is None:
            return

        cursor = self._latest
        tmp_path = f"{self.path}.tmp"
        try:
            directory = os.path.dirname(self.path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                f.write(f"{cursor}\n")
            os.replace(tmp_path, self.path)
        except OSError as e:
            log.warning("cursor_persist_failed", path=self.path, cursor=cursor, error=str(e))
            return

        self.last_saved = cursor
        log.debug("cursor_persisted", path=self.path, cursor=cursor)
