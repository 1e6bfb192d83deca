"""Decoding of Jetstream frames into the events the consumer acts on.

Every frame decodes to exactly one of ``TwitCreated``, ``RetwitCreated``,
``IdentityUpdated`` or ``Skipped``. Required fields are validated here so the
handlers never probe optional attributes.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Union

from atproto import AtUri
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .types import RETWIT_COLLECTION, TWIT_COLLECTION

WANTED_COLLECTIONS = (TWIT_COLLECTION, RETWIT_COLLECTION)
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class _Wire(BaseModel):
    model_config = ConfigDict(extra="ignore")


class JetstreamCommit(_Wire):
    operation: str
    collection: str
    rkey: str
    cid: Optional[Any] = None
    record: Optional[Dict[str, Any]] = None


class JetstreamIdentity(_Wire):
    did: str
    handle: Optional[str] = None


class JetstreamFrame(_Wire):
    """Envelope only; the payload is validated once we know what it is."""

    did: str
    time_us: int
    kind: str
    commit: Optional[Any] = None
    identity: Optional[Any] = None


class RetwitSubject(_Wire):
    uri: str = Field(min_length=1)
    cid: str = Field(min_length=1)


@dataclass(frozen=True)
class TwitCreated:
    did: str
    time_us: int
    uri: str
    cid: str
    record_created_at: str
    handle_hint: Optional[str] = None


@dataclass(frozen=True)
class RetwitCreated:
    did: str
    time_us: int
    uri: str
    cid: str
    record_created_at: str
    subject_uri: str
    subject_cid: str
    subject_did: str
    handle_hint: Optional[str] = None


@dataclass(frozen=True)
class IdentityUpdated:
    did: str
    handle: Optional[str]
    time_us: int


@dataclass(frozen=True)
class Skipped:
    """A frame we do not act on.

    ``time_us`` is set when the frame was a wanted create that can never
    become valid, so the consumer still advances past it.
    """

    reason: str
    time_us: Optional[int] = None
    uri: Optional[str] = None


JetstreamEvent = Union[TwitCreated, RetwitCreated, IdentityUpdated, Skipped]


def iso_from_time_us(time_us: int) -> str:
    """Render a microsecond epoch as an ISO 8601 string with millisecond precision."""
    moment = _EPOCH + timedelta(milliseconds=time_us // 1000)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def build_uri(did: str, collection: str, rkey: str) -> str:
    return f"at://{did}/{collection}/{rkey}"


def _content_id(value: Any, fallback: str) -> str:
    if isinstance(value, str) and value:
        return value
    # Some encoders ship the CID as a {"$link": "..."} object
    if isinstance(value, dict) and isinstance(value.get("$link"), str):
        return value["$link"]
    return fallback


def _handle_hint(record: Dict[str, Any]) -> Optional[str]:
    handle = record.get("handle")
    return handle if isinstance(handle, str) and handle else None


def decode_frame(raw: Union[str, bytes, Dict[str, Any]]) -> JetstreamEvent:
    try:
        if isinstance(raw, dict):
            frame = JetstreamFrame.model_validate(raw)
        else:
            frame = JetstreamFrame.model_validate_json(raw)
    except ValidationError as e:
        return Skipped(reason=f"invalid_frame: {e.error_count()} errors")

    if frame.kind == "identity":
        try:
            identity = JetstreamIdentity.model_validate(frame.identity)
        except ValidationError:
            return Skipped(reason="identity_without_payload")
        return IdentityUpdated(
            did=identity.did or frame.did,
            handle=identity.handle,
            time_us=frame.time_us,
        )

    if frame.kind != "commit" or not isinstance(frame.commit, dict):
        return Skipped(reason=f"unhandled_kind:{frame.kind}")

    collection = frame.commit.get("collection")
    operation = frame.commit.get("operation")
    if collection not in WANTED_COLLECTIONS:
        return Skipped(reason=f"unwanted_collection:{collection}")
    if operation != "create":
        return Skipped(reason=f"ignored_operation:{operation}")

    # A wanted create that can never decode still moves the cursor past it
    try:
        commit = JetstreamCommit.model_validate(frame.commit)
    except ValidationError as e:
        return Skipped(reason=f"malformed_create: {e.error_count()} errors", time_us=frame.time_us)

    uri = build_uri(frame.did, commit.collection, commit.rkey)
    cid = _content_id(commit.cid, uri)
    record = commit.record or {}

    created_at = record.get("createdAt")
    if not isinstance(created_at, str) or not created_at:
        created_at = iso_from_time_us(frame.time_us)

    if commit.collection == TWIT_COLLECTION:
        return TwitCreated(
            did=frame.did,
            time_us=frame.time_us,
            uri=uri,
            cid=cid,
            record_created_at=created_at,
            handle_hint=_handle_hint(record),
        )

    try:
        subject = RetwitSubject.model_validate(record.get("subject"))
    except ValidationError:
        return Skipped(reason="retwit_missing_subject", time_us=frame.time_us, uri=uri)

    try:
        if not subject.uri.startswith("at://"):
            raise ValueError(subject.uri)
        subject_did = AtUri.from_str(subject.uri).host
    except Exception:
        return Skipped(reason="retwit_malformed_subject_uri", time_us=frame.time_us, uri=uri)

    return RetwitCreated(
        did=frame.did,
        time_us=frame.time_us,
        uri=uri,
        cid=cid,
        record_created_at=created_at,
        subject_uri=subject.uri,
        subject_cid=subject.cid,
        subject_did=subject_did,
        handle_hint=_handle_hint(record),
    )
