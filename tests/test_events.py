import json

import pytest

from atweet_feed.events import (
    IdentityUpdated,
    RetwitCreated,
    Skipped,
    TwitCreated,
    decode_frame,
    iso_from_time_us,
)

TIME_US = 1725911162329308


def commit_frame(collection="com.atweet.twit", operation="create", record=None, cid="bafytwit", did="did:plc:alice"):
    return {
        "did": did,
        "time_us": TIME_US,
        "kind": "commit",
        "commit": {
            "rev": "3l3qo2vutsw2b",
            "operation": operation,
            "collection": collection,
            "rkey": "3l3qo2vuowo2b",
            "record": record if record is not None else {},
            "cid": cid,
        },
    }


def test_iso_from_time_us() -> None:
    assert iso_from_time_us(TIME_US) == "2024-09-09T19:46:02.329Z"


def test_decodes_twit_from_json_text() -> None:
    raw = json.dumps(
        commit_frame(record={"$type": "com.atweet.twit", "createdAt": "2024-09-09T19:46:00.000Z", "handle": "alice.test"})
    )

    event = decode_frame(raw)

    assert event == TwitCreated(
        did="did:plc:alice",
        time_us=TIME_US,
        uri="at://did:plc:alice/com.atweet.twit/3l3qo2vuowo2b",
        cid="bafytwit",
        record_created_at="2024-09-09T19:46:00.000Z",
        handle_hint="alice.test",
    )


def test_twit_falls_back_to_event_time_and_uri() -> None:
    event = decode_frame(commit_frame(record={}, cid=None))

    assert isinstance(event, TwitCreated)
    assert event.record_created_at == "2024-09-09T19:46:02.329Z"
    assert event.cid == event.uri
    assert event.handle_hint is None


def test_decodes_retwit() -> None:
    subject_uri = "at://did:plc:bob/com.atweet.twit/abc"
    event = decode_frame(
        commit_frame(
            collection="com.atweet.retwit",
            record={"subject": {"uri": subject_uri, "cid": "bafysubject"}, "createdAt": "2024-09-09T19:46:01.000Z"},
            cid="bafyretwit",
        )
    )

    assert isinstance(event, RetwitCreated)
    assert event.uri == "at://did:plc:alice/com.atweet.retwit/3l3qo2vuowo2b"
    assert event.subject_uri == subject_uri
    assert event.subject_cid == "bafysubject"
    assert event.subject_did == "did:plc:bob"


@pytest.mark.parametrize(
    "record, reason",
    [
        ({}, "retwit_missing_subject"),
        ({"subject": {"uri": "at://did:plc:bob/com.atweet.twit/abc"}}, "retwit_missing_subject"),
        ({"subject": {"cid": "bafysubject"}}, "retwit_missing_subject"),
        ({"subject": {"uri": "", "cid": "bafysubject"}}, "retwit_missing_subject"),
        ({"subject": "at://did:plc:bob/com.atweet.twit/abc"}, "retwit_missing_subject"),
        ({"subject": {"uri": "not a uri", "cid": "bafysubject"}}, "retwit_malformed_subject_uri"),
    ],
)
def test_malformed_retwit_is_skipped_with_cursor(record, reason) -> None:
    event = decode_frame(commit_frame(collection="com.atweet.retwit", record=record))

    assert isinstance(event, Skipped)
    assert event.reason == reason
    assert event.time_us == TIME_US


@pytest.mark.parametrize("collection", ["com.atweet.twit", "com.atweet.retwit"])
@pytest.mark.parametrize(
    "breakage",
    [
        lambda commit: commit.update(record="oops"),
        lambda commit: commit.pop("rkey"),
        lambda commit: commit.update(rkey=None),
    ],
)
def test_malformed_create_is_skipped_with_cursor(collection, breakage) -> None:
    frame = commit_frame(collection=collection)
    breakage(frame["commit"])

    event = decode_frame(json.dumps(frame))

    assert isinstance(event, Skipped)
    assert event.reason.startswith("malformed_create")
    assert event.time_us == TIME_US


@pytest.mark.parametrize("operation", ["update", "delete"])
def test_non_create_operations_are_ignored(operation) -> None:
    event = decode_frame(commit_frame(operation=operation))

    assert isinstance(event, Skipped)
    assert event.time_us is None


def test_unwanted_collection_is_ignored() -> None:
    event = decode_frame(commit_frame(collection="app.bsky.feed.post"))
    assert isinstance(event, Skipped)
    assert event.time_us is None


def test_decodes_identity() -> None:
    event = decode_frame(
        {
            "did": "did:plc:alice",
            "time_us": TIME_US,
            "kind": "identity",
            "identity": {"did": "did:plc:alice", "handle": "alice.test", "seq": 1, "time": "2024-09-09T19:46:02.102Z"},
        }
    )

    assert event == IdentityUpdated(did="did:plc:alice", handle="alice.test", time_us=TIME_US)


@pytest.mark.parametrize(
    "raw",
    [
        "not json",
        b"{}",
        {"did": "did:plc:alice", "kind": "commit"},
        {"did": "did:plc:alice", "time_us": TIME_US, "kind": "account", "account": {"active": True}},
        {"did": "did:plc:alice", "time_us": TIME_US, "kind": "identity"},
    ],
)
def test_unusable_frames_are_skipped(raw) -> None:
    event = decode_frame(raw)
    assert isinstance(event, Skipped)
    assert event.time_us is None
