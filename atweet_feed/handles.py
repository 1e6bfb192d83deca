"""Process-lifetime DID to handle cache."""

from typing import Dict, Optional

INVALID_HANDLE = "handle.invalid"


class HandleCache:
    """Maps account DIDs to handles, last write wins, never invalidated."""

    def __init__(self) -> None:
        self._handles: Dict[str, str] = {}

    def resolve(self, did: str) -> str:
        """Return the cached handle, or the DID itself when unknown."""
        return self._handles.get(did, did)

    def remember(self, did: str, handle: Optional[str]) -> bool:
        if not did or not handle or handle == INVALID_HANDLE:
            return False
        self._handles[did] = handle
        return True

    def __contains__(self, did: str) -> bool:
        return did in self._handles

    def __len__(self) -> int:
        return len(self._handles)
