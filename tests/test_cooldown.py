from atweet_feed.cooldown import COOLDOWN_SECONDS, CooldownTracker


class FakeClock:
    def __init__(self, now=1_700_000_000.0):
        self.now = now

    def __call__(self):
        return self.now


def test_unknown_account_has_no_cooldown() -> None:
    tracker = CooldownTracker(clock=FakeClock())
    status = tracker.status("did:plc:alice")
    assert not status.active
    assert status.expires_at is None
    assert status.remaining_ms == 0


def test_begin_starts_cooldown() -> None:
    clock = FakeClock()
    tracker = CooldownTracker(clock=clock)

    expires_at = tracker.begin("did:plc:alice")
    clock.now += 2

    status = tracker.status("did:plc:alice")
    assert status.active
    assert status.expires_at == expires_at
    assert expires_at.endswith("Z")
    assert status.remaining_ms == (COOLDOWN_SECONDS - 2) * 1000


def test_cooldown_expires() -> None:
    clock = FakeClock()
    tracker = CooldownTracker(clock=clock)
    tracker.begin("did:plc:alice")

    clock.now += COOLDOWN_SECONDS

    assert not tracker.status("did:plc:alice").active


def test_cooldowns_are_per_account() -> None:
    tracker = CooldownTracker(clock=FakeClock())
    tracker.begin("did:plc:alice")
    assert not tracker.status("did:plc:bob").active
