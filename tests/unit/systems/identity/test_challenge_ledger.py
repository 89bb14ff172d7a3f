"""
Unit tests for ChallengeLedger: issue, single use, expiry.
"""

from __future__ import annotations

from kairos.systems.identity.challenge import CHALLENGE_PREFIX, ChallengeLedger


class FakeClock:
    def __init__(self, now: int = 1_700_000_000_000) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now


class TestIssue:
    def test_challenges_are_unique(self):
        ledger = ChallengeLedger()
        issued = {ledger.issue() for _ in range(50)}
        assert len(issued) == 50

    def test_challenge_format(self):
        clock = FakeClock()
        challenge = ChallengeLedger(clock=clock).issue("door-7")
        assert challenge.startswith(f"{CHALLENGE_PREFIX}-door-7-{clock.now}-")

    def test_outstanding_is_bounded(self):
        ledger = ChallengeLedger(max_outstanding=3)
        first = ledger.issue()
        for _ in range(3):
            ledger.issue()
        assert ledger.stats["outstanding"] == 3
        assert ledger.consume(first) is False


class TestConsume:
    def test_accepted_once(self):
        ledger = ChallengeLedger()
        challenge = ledger.issue()
        assert ledger.consume(challenge) is True
        assert ledger.consume(challenge) is False

    def test_unknown_rejected(self):
        assert ChallengeLedger().consume("KairOS-Auth-any-0-deadbeef") is False

    def test_expired_rejected(self):
        clock = FakeClock()
        ledger = ChallengeLedger(validity_window_s=60, clock=clock)
        challenge = ledger.issue()
        clock.now += 61_000
        assert ledger.consume(challenge) is False

    def test_within_window_accepted(self):
        clock = FakeClock()
        ledger = ChallengeLedger(validity_window_s=60, clock=clock)
        challenge = ledger.issue()
        clock.now += 59_000
        assert ledger.consume(challenge) is True

    def test_enforcement_off_accepts_anything(self):
        ledger = ChallengeLedger(enforce_single_use=False)
        assert ledger.consume("anything") is True
        assert ledger.consume("anything") is True

    def test_prune_removes_expired(self):
        clock = FakeClock()
        ledger = ChallengeLedger(validity_window_s=1, clock=clock)
        ledger.issue()
        ledger.issue()
        clock.now += 5_000
        fresh = ledger.issue()
        assert ledger.prune() == 2
        assert ledger.consume(fresh) is True
