"""One-time code policy shared by phone verification and document signing.

Both flows generate a numeric code, deliver it by SMS, keep a confirmable
record and check it later. They only differ in the knobs kept here: whether
the code is hashed at rest, how long it lives, how often it may be resent and
how many wrong guesses a record tolerates.
"""

from __future__ import annotations

import hmac
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta

from turcrm.core.config import Settings, settings
from turcrm.core.security import hash_password, verify_password
from turcrm.models.common import as_utc, utcnow


@dataclass(frozen=True)
class OtpPolicy:
    name: str
    hash_codes: bool
    ttl: timedelta
    resend_window: timedelta | None = None
    resend_limit: int | None = None
    max_attempts: int | None = None
    digits: int = 6

    @property
    def throttled(self) -> bool:
        return self.resend_window is not None and self.resend_limit is not None

    def expires_at(self, sent_at: datetime) -> datetime:
        return as_utc(sent_at) + self.ttl

    def is_expired(self, expires_at: datetime | None, *, now: datetime | None = None) -> bool:
        if expires_at is None:
            return True
        return (now or utcnow()) >= as_utc(expires_at)

    def attempts_exhausted(self, attempts: int) -> bool:
        return self.max_attempts is not None and int(attempts or 0) >= self.max_attempts


def strict_policy(cfg: Settings = settings) -> OtpPolicy:
    return OtpPolicy(
        name="phone_verification",
        hash_codes=True,
        ttl=timedelta(minutes=cfg.VERIFICATION_CODE_TTL_MINUTES),
        resend_window=timedelta(minutes=cfg.VERIFICATION_RESEND_WINDOW_MINUTES),
        resend_limit=cfg.VERIFICATION_RESEND_LIMIT,
        max_attempts=cfg.VERIFICATION_MAX_ATTEMPTS,
        digits=cfg.OTP_CODE_DIGITS,
    )


def relaxed_policy(cfg: Settings = settings) -> OtpPolicy:
    return OtpPolicy(
        name="document_signing",
        hash_codes=False,
        ttl=timedelta(minutes=cfg.SIGNING_CODE_TTL_MINUTES),
        digits=cfg.OTP_CODE_DIGITS,
    )


def generate_code(policy: OtpPolicy) -> str:
    return f"{secrets.randbelow(10 ** policy.digits):0{policy.digits}d}"


def seal_code(policy: OtpPolicy, code: str) -> str:
    if policy.hash_codes:
        return hash_password(code)
    return code


def normalize_code(raw: str | None) -> str:
    return "".join(ch for ch in str(raw or "").strip() if ch.isdigit())


def code_matches(policy: OtpPolicy, stored: str, supplied: str | None) -> bool:
    code = normalize_code(supplied)
    if len(code) != policy.digits or not stored:
        return False
    if policy.hash_codes:
        return verify_password(code, stored)
    return hmac.compare_digest(stored.encode("utf-8"), code.encode("utf-8"))
