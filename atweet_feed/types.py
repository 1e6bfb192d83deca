"""Type definitions for the atweet feed service."""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict

TWIT_COLLECTION = "com.atweet.twit"
RETWIT_COLLECTION = "com.atweet.retwit"


class FeedItemType(str, Enum):
    TWIT = "twit"
    RETWIT = "retwit"


class FeedItem(BaseModel):
    """A twit or retwit as stored in the local timeline.

    For a retwit, ``author_did``/``author_handle`` identify the author of the
    reshared twit and ``reshared_by_*`` identify the account that reshared it.
    """

    model_config = ConfigDict(frozen=True)

    type: FeedItemType = FeedItemType.TWIT
    author_did: str
    author_handle: str
    cid: str
    uri: str
    indexed_at: str  # ISO 8601, when we observed the event
    record_created_at: str  # ISO 8601, author supplied

    reshared_by_did: Optional[str] = None
    reshared_by_handle: Optional[str] = None
    subject_uri: Optional[str] = None
    subject_cid: Optional[str] = None
    subject_record_created_at: Optional[str] = None

    @property
    def is_retwit(self) -> bool:
        return self.type == FeedItemType.RETWIT


class ListResult(BaseModel):
    """One page of the timeline."""

    items: List[FeedItem]
    next_cursor: Optional[str] = None
