from atweet_feed.handles import INVALID_HANDLE, HandleCache


def test_unknown_did_resolves_to_itself() -> None:
    assert HandleCache().resolve("did:plc:alice") == "did:plc:alice"


def test_last_write_wins() -> None:
    cache = HandleCache()
    assert cache.remember("did:plc:alice", "alice.test")
    assert cache.remember("did:plc:alice", "alice.example")
    assert cache.resolve("did:plc:alice") == "alice.example"
    assert len(cache) == 1


def test_placeholder_and_empty_handles_are_ignored() -> None:
    cache = HandleCache()
    cache.remember("did:plc:alice", "alice.test")

    assert not cache.remember("did:plc:alice", INVALID_HANDLE)
    assert not cache.remember("did:plc:alice", "")
    assert not cache.remember("did:plc:alice", None)
    assert cache.resolve("did:plc:alice") == "alice.test"
    assert "did:plc:bob" not in cache
