"""Publishing twits and retwits to the user's own repository on their PDS.

The caller supplies an already authenticated atproto ``Client``. After the
PDS accepts a record it is added to the local timeline right away, so the
author sees it before Jetstream echoes it back (the echo is then a no-op).
"""

from datetime import datetime, timezone
from typing import Callable, Optional

from atproto import Client, models
from atproto.exceptions import AtProtocolError

from .cooldown import CooldownTracker
from .handles import HandleCache
from .logging_setup import get_logger
from .repository import TwitRepository
from .types import RETWIT_COLLECTION, TWIT_COLLECTION, FeedItem, FeedItemType

log = get_logger(__name__)


class PublishError(Exception):
    """The PDS rejected or failed to store a record."""


class CooldownActiveError(PublishError):
    def __init__(self, did: str, expires_at: Optional[str]):
        super().__init__(f"Posting cooldown active for {did} until {expires_at}")
        self.did = did
        self.expires_at = expires_at


class RetwitTargetNotFoundError(PublishError):
    def __init__(self, uri: str):
        super().__init__(f"Unknown retwit target: {uri}")
        self.uri = uri


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class TwitPublisher:
    def __init__(
        self,
        repository: TwitRepository,
        handles: HandleCache,
        cooldowns: Optional[CooldownTracker] = None,
        now: Callable[[], str] = _now_iso,
    ):
        self.repository = repository
        self.handles = handles
        self.cooldowns = cooldowns or CooldownTracker()
        self.now = now

    def _check_cooldown(self, did: str) -> None:
        status = self.cooldowns.status(did)
        if status.active:
            raise CooldownActiveError(did, status.expires_at)

    def _create_record(self, client: Client, did: str, collection: str, record: dict):
        try:
            return client.com.atproto.repo.create_record(
                models.ComAtprotoRepoCreateRecord.Data(
                    repo=did,
                    collection=collection,
                    record=record,
                )
            )
        except AtProtocolError as e:
            log.error("publish_failed", did=did, collection=collection, error=str(e))
            raise PublishError(f"Failed to create {collection} record") from e

    def _add_locally(self, item: FeedItem) -> None:
        try:
            self.repository.add(item)
        except Exception as e:
            # The record is live on the PDS; Jetstream will deliver it later
            log.error("publish_local_add_failed", uri=item.uri, error=str(e))

    def post_twit(self, client: Client, did: str, handle: str) -> FeedItem:
        self._check_cooldown(did)
        self.handles.remember(did, handle)

        created_at = self.now()
        response = self._create_record(
            client,
            did,
            TWIT_COLLECTION,
            {"$type": TWIT_COLLECTION, "createdAt": created_at, "handle": handle},
        )

        item = FeedItem(
            type=FeedItemType.TWIT,
            author_did=did,
            author_handle=self.handles.resolve(did),
            cid=str(response.cid),
            uri=response.uri,
            indexed_at=self.now(),
            record_created_at=created_at,
        )
        self._add_locally(item)
        self.cooldowns.begin(did)
        log.info("twit_published", uri=item.uri, did=did)
        return item

    def post_retwit(
        self,
        client: Client,
        did: str,
        handle: str,
        subject_uri: str,
        subject_cid: Optional[str] = None,
    ) -> FeedItem:
        self._check_cooldown(did)

        target = self.repository.get_by_uri(subject_uri)
        if target is None:
            raise RetwitTargetNotFoundError(subject_uri)

        # Resharing a retwit reshares the twit underneath it
        if target.is_retwit and target.subject_uri:
            original = self.repository.get_by_uri(target.subject_uri)
            subject_uri = target.subject_uri
            stored_cid = target.subject_cid or target.cid
            subject_created_at = target.subject_record_created_at or target.record_created_at
            if original is not None:
                stored_cid = original.cid
                subject_created_at = original.record_created_at
        else:
            stored_cid = target.cid
            subject_created_at = target.record_created_at

        if subject_cid and subject_cid != stored_cid:
            log.warning(
                "retwit_cid_mismatch",
                subject_uri=subject_uri,
                supplied=subject_cid,
                stored=stored_cid,
            )

        self.handles.remember(did, handle)
        created_at = self.now()
        response = self._create_record(
            client,
            did,
            RETWIT_COLLECTION,
            {
                "$type": RETWIT_COLLECTION,
                "createdAt": created_at,
                "handle": handle,
                "subject": {"uri": subject_uri, "cid": stored_cid},
            },
        )

        item = FeedItem(
            type=FeedItemType.RETWIT,
            author_did=target.author_did,
            author_handle=target.author_handle,
            cid=str(response.cid),
            uri=response.uri,
            indexed_at=self.now(),
            record_created_at=created_at,
            reshared_by_did=did,
            reshared_by_handle=self.handles.resolve(did),
            subject_uri=subject_uri,
            subject_cid=stored_cid,
            subject_record_created_at=subject_created_at,
        )
        self._add_locally(item)
        self.cooldowns.begin(did)
        log.info("retwit_published", uri=item.uri, subject_uri=subject_uri, did=did)
        return item

