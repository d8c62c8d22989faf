"""
auth/otp.py -- In-memory one-time passcode store.

Each subject (a normalised email address) has at most one live OTPRecord.
generate() replaces any prior record; verify() counts failed attempts and
deletes the record on lockout or expiry; clear() deletes unconditionally.
consume_verified() checks and deletes a verified record in one step.

State machine per subject:
    NONE --generate--> ISSUED --correct code--> VERIFIED
    ISSUED --wrong code, attempts < cap--> ISSUED
    ISSUED --wrong code, attempts = cap--> NONE
    VERIFIED --wrong code--> VERIFIED
    ISSUED/VERIFIED --expiry or clear--> NONE

Concurrency:
  Records live in a fixed number of shards, each a dict guarded by its own
  threading.Lock. A subject always maps to the same shard, so the
  read-increment-compare in verify() is a single critical section per
  subject, while subjects on different shards never block each other.
  Email delivery happens after the shard lock is released.

Lifecycle: one OTPStore is created in the API lifespan and lives for the
whole process. Expired records are purged lazily on access and by
purge_expired(), which the lifespan calls periodically.
"""

from __future__ import annotations

import hmac
import logging
import math
import secrets
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager

from auth.mailer import Mailer, render_otp_email
from auth.models import IssuedOTP, OTPPurpose, OTPRecord, OTPStatus, OTPVerification
from core.config import Settings

logger = logging.getLogger("mediavault.auth.otp")

_DEFAULT_SHARDS = 64


def normalize_subject(subject: str) -> str:
    return subject.strip().lower()


def _new_code(length: int) -> str:
    return "".join(secrets.choice("0123456789") for _ in range(length))


class _Shard:
    __slots__ = ("lock", "records")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.records: dict[str, OTPRecord] = {}


class OTPStore:
    """Thread-safe OTP store keyed by subject.

    Usage:
        store = OTPStore(mailer=SmtpMailer(settings))
        issued = store.generate("ann@x.com", "registration")
        result = store.verify("ann@x.com", "123456")
        if result.ok: ...
    """

    def __init__(
        self,
        mailer: Mailer | None = None,
        ttl_seconds: int = 600,
        max_attempts: int = 5,
        code_length: int = 6,
        app_name: str = "MediaVault",
        clock: Callable[[], float] = time.time,
        shards: int = _DEFAULT_SHARDS,
    ) -> None:
        self._mailer = mailer
        self.ttl_seconds = ttl_seconds
        self.max_attempts = max_attempts
        self._code_length = code_length
        self._app_name = app_name
        self._clock = clock
        self._shards = [_Shard() for _ in range(max(1, shards))]

    @classmethod
    def from_settings(cls, settings: Settings, mailer: Mailer | None = None) -> OTPStore:
        return cls(
            mailer=mailer,
            ttl_seconds=settings.otp_ttl_seconds,
            max_attempts=settings.otp_max_attempts,
            code_length=settings.otp_length,
            app_name=settings.app_name,
        )

    @contextmanager
    def _locked(self, subject: str) -> Iterator[dict[str, OTPRecord]]:
        shard = self._shards[hash(subject) % len(self._shards)]
        with shard.lock:
            yield shard.records

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def generate(self, subject: str, purpose: str | OTPPurpose) -> IssuedOTP:
        """Issue a fresh code for subject, replacing any live record, and email it.

        Raises ValueError for an unknown purpose. A delivery failure is
        reported through IssuedOTP.sent; the stored record stays valid.
        """
        purpose = OTPPurpose(purpose).value
        subject = normalize_subject(subject)
        now = self._clock()
        record = OTPRecord(
            subject=subject,
            code=_new_code(self._code_length),
            purpose=purpose,
            issued_at=now,
            expires_at=now + self.ttl_seconds,
        )
        with self._locked(subject) as records:
            records[subject] = record
        logger.info("OTP issued for %s (purpose=%s)", subject, purpose)

        sent = self._dispatch(record)
        return IssuedOTP(code=record.code, purpose=purpose, expires_at=record.expires_at, sent=sent)

    def verify(self, subject: str, code: str) -> OTPVerification:
        """Check code against the live record for subject.

        MISMATCH increments the attempt counter; the attempt that reaches
        max_attempts deletes the record and returns LOCKED. EXPIRED also
        deletes the record. MATCH marks the record verified and keeps it
        until clear() or expiry; wrong codes against a verified record are
        reported as MISMATCH without being counted.
        """
        subject = normalize_subject(subject)
        code = str(code).strip()
        with self._locked(subject) as records:
            record = records.get(subject)
            if record is None:
                return OTPVerification(OTPStatus.NOT_FOUND)

            if record.is_expired(self._clock()):
                del records[subject]
                return OTPVerification(OTPStatus.EXPIRED, purpose=record.purpose)

            if not hmac.compare_digest(record.code.encode(), code.encode()):
                if record.verified:
                    # VERIFIED ends only through clear() or expiry.
                    return OTPVerification(
                        OTPStatus.MISMATCH,
                        purpose=record.purpose,
                        remaining_attempts=self.max_attempts - record.attempts,
                    )
                record.attempts += 1
                if record.attempts >= self.max_attempts:
                    del records[subject]
                    logger.warning("OTP locked for %s after %d failed attempts", subject, record.attempts)
                    return OTPVerification(OTPStatus.LOCKED, purpose=record.purpose, remaining_attempts=0)
                return OTPVerification(
                    OTPStatus.MISMATCH,
                    purpose=record.purpose,
                    remaining_attempts=self.max_attempts - record.attempts,
                )

            record.verified = True
            return OTPVerification(OTPStatus.MATCH, purpose=record.purpose)

    def is_verified(self, subject: str) -> bool:
        """True iff a non-expired record exists with verified=True. Purges on expiry."""
        record = self._live_record(normalize_subject(subject))
        return record is not None and record.verified

    def consume_verified(self, subject: str) -> bool:
        """Delete the live record iff it is verified. True when a record was consumed.

        Check and delete share one shard lock, so one verification is
        redeemed by at most one caller.
        """
        subject = normalize_subject(subject)
        with self._locked(subject) as records:
            record = records.get(subject)
            if record is None or not record.verified:
                return False
            del records[subject]
            return not record.is_expired(self._clock())

    def has_pending(self, subject: str) -> bool:
        """True iff a non-expired record exists, verified or not."""
        return self._live_record(normalize_subject(subject)) is not None

    def remaining_seconds(self, subject: str) -> int | None:
        """Whole seconds until the live record expires, or None when there is none."""
        record = self._live_record(normalize_subject(subject))
        if record is None:
            return None
        remaining = math.ceil(record.expires_at - self._clock())
        return remaining if remaining > 0 else None

    def clear(self, subject: str) -> None:
        subject = normalize_subject(subject)
        with self._locked(subject) as records:
            records.pop(subject, None)

    def purge_expired(self) -> int:
        """Delete every expired record. Returns the number removed."""
        now = self._clock()
        removed = 0
        for shard in self._shards:
            with shard.lock:
                expired = [key for key, rec in shard.records.items() if rec.is_expired(now)]
                for key in expired:
                    del shard.records[key]
                removed += len(expired)
        if removed:
            logger.info("Purged %d expired OTP records", removed)
        return removed

    def __len__(self) -> int:
        return sum(len(shard.records) for shard in self._shards)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _live_record(self, subject: str) -> OTPRecord | None:
        with self._locked(subject) as records:
            record = records.get(subject)
            if record is None:
                return None
            if record.is_expired(self._clock()):
                del records[subject]
                return None
            return record

    def _dispatch(self, record: OTPRecord) -> bool:
        if self._mailer is None:
            logger.warning("No mailer configured -- OTP for %s not delivered", record.subject)
            return False
        subject_line, body = render_otp_email(record.purpose, record.code, self.ttl_seconds, self._app_name)
        try:
            return bool(self._mailer.send_email(record.subject, subject_line, body))
        except Exception:
            # Delivery must never corrupt store state; the caller sees sent=False.
            logger.exception("Mailer raised while sending OTP to %s", record.subject)
            return False
