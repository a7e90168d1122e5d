from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import func, update
from sqlalchemy.orm import Session

from turcrm.core.config import settings
from turcrm.core.errors import (
    CodeExpired,
    CodeInvalid,
    InvalidInput,
    NotFound,
    ResendThrottled,
    TooManyAttempts,
)
from turcrm.models.common import utcnow
from turcrm.models.user import User
from turcrm.models.user_verification import UserVerification
from turcrm.services.otp_policy import OtpPolicy, code_matches, generate_code, seal_code, strict_policy
from turcrm.services.security_audit import ACTION_PHONE_CONFIRM, record_security_event
from turcrm.services.sms_service import normalize_phone, render_sms_text, send_sms

logger = logging.getLogger("turcrm.otp.verification")


class PhoneVerificationService:
    """Phone ownership check used to activate freshly registered accounts.

    Codes are hashed at rest, sends are throttled per user inside a trailing
    window and each record tolerates a limited number of wrong guesses.

    The throttle count and the attempt counter are not linearizable: two
    concurrent wrong guesses may both pass the cap check before either
    increment lands. Counters only grow, so the worst case is the cap firing
    one attempt late.
    """

    def __init__(self, policy: OtpPolicy | None = None, *, sms_template: str | None = None):
        self.policy = policy or strict_policy()
        self.sms_template = sms_template if sms_template is not None else settings.VERIFICATION_SMS_TEMPLATE

    def _resolve_phone(self, db: Session, user: User, phone: str | None) -> str:
        supplied = normalize_phone(phone)
        stored = normalize_phone(user.phone)
        if supplied and stored and supplied != stored:
            raise InvalidInput("Телефон не совпадает с указанным при регистрации")
        resolved = supplied or stored
        if not resolved:
            raise InvalidInput('Поле "phone" обязательно')
        if not stored:
            user.phone = resolved
            db.add(user)
        return resolved

    def _recent_sends(self, db: Session, user_id: uuid.UUID, now: datetime) -> int:
        since = now - self.policy.resend_window
        return int(
            db.query(func.count(UserVerification.id))
            .filter(UserVerification.user_id == user_id, UserVerification.sent_at >= since)
            .scalar()
            or 0
        )

    def send_code(self, db: Session, user_id: uuid.UUID, phone: str | None = None) -> dict[str, Any]:
        user = db.get(User, user_id)
        if user is None:
            raise NotFound("Пользователь не найден")
        target = self._resolve_phone(db, user, phone)

        now = utcnow()
        if self.policy.throttled and self._recent_sends(db, user.id, now) >= self.policy.resend_limit:
            logger.info("verification send throttled user_id=%s", user.id)
            raise ResendThrottled()

        code = generate_code(self.policy)
        delivery = send_sms(phone=target, text=render_sms_text(self.sms_template, code=code))

        row = UserVerification(
            user_id=user.id,
            code_hash=seal_code(self.policy, code),
            sent_at=now,
            expires_at=self.policy.expires_at(now),
            confirmed=False,
            attempts=0,
        )
        db.add(row)
        db.commit()
        logger.info("verification code sent user_id=%s message_id=%s", user.id, delivery.get("message_id") or "-")
        return {
            "status": "sent",
            "ttl_seconds": int(self.policy.ttl.total_seconds()),
            "message_id": delivery.get("message_id"),
        }

    def resend_code(self, db: Session, user_id: uuid.UUID, phone: str | None = None) -> dict[str, Any]:
        # Every resend mints a new code; the throttle in send_code covers both paths.
        return self.send_code(db, user_id, phone)

    def _latest(self, db: Session, user_id: uuid.UUID) -> UserVerification | None:
        return (
            db.query(UserVerification)
            .filter(UserVerification.user_id == user_id)
            .order_by(UserVerification.sent_at.desc(), UserVerification.created_at.desc())
            .first()
        )

    def _register_failed_attempt(self, db: Session, row: UserVerification, now: datetime) -> int:
        db.execute(
            update(UserVerification)
            .where(UserVerification.id == row.id)
            .values(attempts=UserVerification.attempts + 1, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        attempts = int(
            db.query(UserVerification.attempts).filter(UserVerification.id == row.id).scalar() or 0
        )
        if self.policy.attempts_exhausted(attempts):
            db.execute(
                update(UserVerification)
                .where(UserVerification.id == row.id)
                .values(expires_at=now)
                .execution_options(synchronize_session=False)
            )
        return attempts

    def confirm_code(self, db: Session, user_id: uuid.UUID, code: str) -> User:
        row = self._latest(db, user_id)
        if row is None or bool(row.confirmed):
            raise CodeInvalid()
        now = utcnow()
        if self.policy.is_expired(row.expires_at, now=now):
            raise CodeExpired()
        if self.policy.attempts_exhausted(row.attempts):
            raise TooManyAttempts()

        if not code_matches(self.policy, row.code_hash, code):
            attempts = self._register_failed_attempt(db, row, now)
            exhausted = self.policy.attempts_exhausted(attempts)
            record_security_event(
                db,
                action=ACTION_PHONE_CONFIRM,
                allowed=False,
                subject=str(user_id),
                actor_user_id=user_id,
                reason="too_many_attempts" if exhausted else "code_invalid",
                details={"attempts": attempts},
            )
            db.commit()
            logger.info("verification code mismatch user_id=%s attempts=%s", user_id, attempts)
            if exhausted:
                raise TooManyAttempts()
            raise CodeInvalid()

        user = db.get(User, user_id)
        if user is None:
            raise NotFound("Пользователь не найден")
        row.confirmed = True
        row.confirmed_at = now
        db.add(row)
        if not bool(user.is_verified):
            user.is_verified = True
            user.verified_at = now
            db.add(user)
        record_security_event(
            db,
            action=ACTION_PHONE_CONFIRM,
            allowed=True,
            subject=str(user_id),
            actor_user_id=user_id,
            actor_role=user.role,
        )
        db.commit()
        db.refresh(user)
        logger.info("phone verified user_id=%s", user_id)
        return user
