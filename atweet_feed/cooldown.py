"""Per-account posting cooldown."""

import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, Optional

COOLDOWN_SECONDS = 5


def _iso(epoch_seconds: float) -> str:
    moment = datetime.fromtimestamp(epoch_seconds, tz=timezone.utc)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass(frozen=True)
class CooldownStatus:
    active: bool
    expires_at: Optional[str] = None
    remaining_ms: int = 0


class CooldownTracker:
    def __init__(self, seconds: float = COOLDOWN_SECONDS, clock: Callable[[], float] = time.time):
        self.seconds = seconds
        self.clock = clock
        self._expires: Dict[str, float] = {}

    def _purge_if_expired(self, did: str) -> Optional[float]:
        expires_at = self._expires.get(did)
        if expires_at is None:
            return None
        if expires_at <= self.clock():
            del self._expires[did]
            return None
        return expires_at

    def status(self, did: str) -> CooldownStatus:
        expires_at = self._purge_if_expired(did)
        if expires_at is None:
            return CooldownStatus(active=False)
        remaining_ms = max(0, round((expires_at - self.clock()) * 1000))
        return CooldownStatus(active=True, expires_at=_iso(expires_at), remaining_ms=remaining_ms)

    def begin(self, did: str) -> str:
        expires_at = self.clock() + self.seconds
        self._expires[did] = expires_at
        return _iso(expires_at)
