"""
Test nonce ledger
"""
from datetime import datetime, timedelta, timezone

from paysync.services.nonce_ledger import NonceLedger


class FakeClock:
    def __init__(self):
        self.now = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class TestNonceLedger:
    def test_mark_then_has(self):
        ledger = NonceLedger(timedelta(minutes=5), clock=FakeClock())
        assert not ledger.has("shop", "n1")
        ledger.mark("shop", "n1")
        assert ledger.has("shop", "n1")

    def test_nonces_scoped_per_key_label(self):
        ledger = NonceLedger(timedelta(minutes=5), clock=FakeClock())
        ledger.mark("shop", "n1")
        assert not ledger.has("other", "n1")

    def test_entry_kept_through_window(self):
        clock = FakeClock()
        ledger = NonceLedger(timedelta(minutes=5), clock=clock)
        ledger.mark("shop", "n1")
        clock.advance(minutes=5)
        assert ledger.has("shop", "n1")

    def test_entry_evicted_after_window(self):
        """Entries older than the window are purged lazily"""
        clock = FakeClock()
        ledger = NonceLedger(timedelta(minutes=5), clock=clock)
        ledger.mark("shop", "n1")
        ledger.mark("shop", "n2")
        clock.advance(minutes=5, microseconds=1)
        assert not ledger.has("shop", "n1")
        assert len(ledger) == 0

    def test_reset(self):
        ledger = NonceLedger(timedelta(minutes=5), clock=FakeClock())
        ledger.mark("shop", "n1")
        ledger.reset()
        assert len(ledger) == 0
