"""Unit tests for auth/otp.py -- the in-memory OTP store.

Covers:
- generate() replaces any live record and emails the code
- verify() outcomes: MATCH, MISMATCH with remaining attempts, LOCKED, EXPIRED, NOT_FOUND
- lockout and expiry delete the record
- is_verified() only after a successful verify, and never after expiry
- wrong codes never undo a verified record
- consume_verified() redeems a verification exactly once
- delivery failure keeps the record usable (sent=False)
- concurrent wrong guesses never exceed the attempt cap
"""

from __future__ import annotations

import threading

import pytest

from auth.models import OTPPurpose, OTPStatus
from auth.otp import OTPStore
from conftest import RecordingMailer


class FakeClock:
    def __init__(self, start: float = 1_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(mailer: RecordingMailer, clock: FakeClock) -> OTPStore:
    return OTPStore(mailer=mailer, ttl_seconds=600, max_attempts=5, clock=clock)


def _wrong(code: str) -> str:
    return "000000" if code != "000000" else "111111"


class TestGenerate:
    def test_code_is_six_digits_and_emailed(self, store: OTPStore, mailer: RecordingMailer) -> None:
        issued = store.generate("ann@x.com", OTPPurpose.registration)
        assert len(issued.code) == 6 and issued.code.isdigit()
        assert issued.sent is True
        assert mailer.last_code("ann@x.com") == issued.code
        assert "Verify Your Email" in mailer.sent[-1][1]

    def test_expiry_is_ttl_from_now(self, store: OTPStore, clock: FakeClock) -> None:
        issued = store.generate("ann@x.com", "verification")
        assert issued.expires_at == clock.now + 600

    def test_subject_is_normalised(self, store: OTPStore) -> None:
        issued = store.generate("  Ann@X.com ", "verification")
        assert store.verify("ann@x.com", issued.code).status is OTPStatus.MATCH

    def test_regenerate_replaces_previous_code(self, store: OTPStore) -> None:
        first = store.generate("ann@x.com", "verification")
        second = store.generate("ann@x.com", "verification")
        assert len(store) == 1
        if first.code != second.code:
            assert store.verify("ann@x.com", first.code).status is OTPStatus.MISMATCH
        assert store.verify("ann@x.com", second.code).status is OTPStatus.MATCH

    def test_regenerate_resets_attempts(self, store: OTPStore) -> None:
        issued = store.generate("ann@x.com", "verification")
        for _ in range(4):
            store.verify("ann@x.com", _wrong(issued.code))
        fresh = store.generate("ann@x.com", "verification")
        result = store.verify("ann@x.com", _wrong(fresh.code))
        assert result.remaining_attempts == 4

    def test_unknown_purpose_rejected(self, store: OTPStore) -> None:
        with pytest.raises(ValueError):
            store.generate("ann@x.com", "login")

    def test_delivery_failure_keeps_record(self, store: OTPStore, mailer: RecordingMailer) -> None:
        mailer.fail = True
        issued = store.generate("ann@x.com", "forgot-password")
        assert issued.sent is False
        assert store.has_pending("ann@x.com")
        assert store.verify("ann@x.com", issued.code).status is OTPStatus.MATCH

    def test_mailer_exception_reported_as_not_sent(self, clock: FakeClock) -> None:
        class Exploding:
            def send_email(self, to: str, subject: str, html_body: str) -> bool:
                raise RuntimeError("smtp down")

        store = OTPStore(mailer=Exploding(), clock=clock)
        issued = store.generate("ann@x.com", "verification")
        assert issued.sent is False
        assert store.has_pending("ann@x.com")

    def test_no_mailer_means_not_sent(self, clock: FakeClock) -> None:
        issued = OTPStore(clock=clock).generate("ann@x.com", "verification")
        assert issued.sent is False


class TestVerify:
    def test_match_marks_verified(self, store: OTPStore) -> None:
        issued = store.generate("ann@x.com", "registration")
        assert not store.is_verified("ann@x.com")
        result = store.verify("ann@x.com", issued.code)
        assert result.ok
        assert result.purpose == "registration"
        assert store.is_verified("ann@x.com")

    def test_mismatch_counts_down(self, store: OTPStore) -> None:
        issued = store.generate("ann@x.com", "verification")
        remaining = [store.verify("ann@x.com", _wrong(issued.code)).remaining_attempts for _ in range(4)]
        assert remaining == [4, 3, 2, 1]

    def test_fifth_wrong_attempt_locks_and_deletes(self, store: OTPStore) -> None:
        issued = store.generate("ann@x.com", "verification")
        for _ in range(4):
            assert store.verify("ann@x.com", _wrong(issued.code)).status is OTPStatus.MISMATCH
        assert store.verify("ann@x.com", _wrong(issued.code)).status is OTPStatus.LOCKED
        # The correct code no longer works; the record is gone.
        assert store.verify("ann@x.com", issued.code).status is OTPStatus.NOT_FOUND
        assert not store.has_pending("ann@x.com")

    def test_expired_code_deleted(self, store: OTPStore, clock: FakeClock) -> None:
        issued = store.generate("ann@x.com", "verification")
        clock.advance(601)
        result = store.verify("ann@x.com", issued.code)
        assert result.status is OTPStatus.EXPIRED
        assert store.verify("ann@x.com", issued.code).status is OTPStatus.NOT_FOUND

    def test_code_valid_at_exact_expiry(self, store: OTPStore, clock: FakeClock) -> None:
        issued = store.generate("ann@x.com", "verification")
        clock.advance(600)
        assert store.verify("ann@x.com", issued.code).status is OTPStatus.MATCH

    def test_not_found_without_generate(self, store: OTPStore) -> None:
        assert store.verify("nobody@x.com", "123456").status is OTPStatus.NOT_FOUND

    def test_verified_flag_lapses_on_expiry(self, store: OTPStore, clock: FakeClock) -> None:
        issued = store.generate("ann@x.com", "forgot-password")
        store.verify("ann@x.com", issued.code)
        clock.advance(601)
        assert not store.is_verified("ann@x.com")

    def test_wrong_codes_after_match_keep_verified(self, store: OTPStore) -> None:
        issued = store.generate("ann@x.com", "forgot-password")
        store.verify("ann@x.com", issued.code)
        statuses = [store.verify("ann@x.com", _wrong(issued.code)).status for _ in range(5)]
        assert statuses == [OTPStatus.MISMATCH] * 5
        assert store.is_verified("ann@x.com")

    def test_clear_removes_record(self, store: OTPStore) -> None:
        issued = store.generate("ann@x.com", "verification")
        store.verify("ann@x.com", issued.code)
        store.clear("ann@x.com")
        assert not store.is_verified("ann@x.com")
        assert store.verify("ann@x.com", issued.code).status is OTPStatus.NOT_FOUND


class TestHousekeeping:
    def test_remaining_seconds(self, store: OTPStore, clock: FakeClock) -> None:
        assert store.remaining_seconds("ann@x.com") is None
        store.generate("ann@x.com", "verification")
        clock.advance(100)
        assert store.remaining_seconds("ann@x.com") == 500

    def test_remaining_seconds_rounds_up(self, store: OTPStore, clock: FakeClock) -> None:
        store.generate("ann@x.com", "verification")
        clock.advance(599.6)
        assert store.has_pending("ann@x.com")
        assert store.remaining_seconds("ann@x.com") == 1

    def test_consume_verified_once(self, store: OTPStore) -> None:
        issued = store.generate("ann@x.com", "forgot-password")
        assert not store.consume_verified("ann@x.com")
        store.verify("ann@x.com", issued.code)
        assert store.consume_verified("ann@x.com")
        assert not store.consume_verified("ann@x.com")
        assert not store.has_pending("ann@x.com")

    def test_consume_verified_after_expiry(self, store: OTPStore, clock: FakeClock) -> None:
        issued = store.generate("ann@x.com", "forgot-password")
        store.verify("ann@x.com", issued.code)
        clock.advance(601)
        assert not store.consume_verified("ann@x.com")

    def test_purge_expired(self, store: OTPStore, clock: FakeClock) -> None:
        store.generate("old@x.com", "verification")
        clock.advance(500)
        store.generate("new@x.com", "verification")
        clock.advance(200)
        assert store.purge_expired() == 1
        assert not store.has_pending("old@x.com")
        assert store.has_pending("new@x.com")


def test_concurrent_wrong_guesses_respect_cap(mailer: RecordingMailer) -> None:
    """Many threads guessing at once: exactly one LOCKED, never more than max_attempts counted."""
    store = OTPStore(mailer=mailer, max_attempts=5)
    issued = store.generate("ann@x.com", "verification")
    wrong = _wrong(issued.code)
    results = []
    results_lock = threading.Lock()
    barrier = threading.Barrier(20)

    def guess() -> None:
        barrier.wait()
        status = store.verify("ann@x.com", wrong).status
        with results_lock:
            results.append(status)

    threads = [threading.Thread(target=guess) for _ in range(20)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert results.count(OTPStatus.MISMATCH) == 4
    assert results.count(OTPStatus.LOCKED) == 1
    assert results.count(OTPStatus.NOT_FOUND) == 15


def test_independent_subjects_do_not_interfere(store: OTPStore) -> None:
    ann = store.generate("ann@x.com", "verification")
    bob = store.generate("bob@x.com", "verification")
    for _ in range(5):
        store.verify("ann@x.com", _wrong(ann.code))
    assert store.verify("bob@x.com", bob.code).status is OTPStatus.MATCH


def test_concurrent_consume_redeems_once(mailer: RecordingMailer) -> None:
    store = OTPStore(mailer=mailer)
    issued = store.generate("ann@x.com", "forgot-password")
    store.verify("ann@x.com", issued.code)
    results = []
    results_lock = threading.Lock()
    barrier = threading.Barrier(10)

    def consume() -> None:
        barrier.wait()
        consumed = store.consume_verified("ann@x.com")
        with results_lock:
            results.append(consumed)

    threads = [threading.Thread(target=consume) for _ in range(10)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert results.count(True) == 1
