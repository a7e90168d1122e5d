from __future__ import annotations

import logging
import uuid
from typing import Any

from sqlalchemy.orm import Session

from turcrm.core.config import settings
from turcrm.core.errors import InvalidInput, NotFound, TrustError
from turcrm.models.common import utcnow
from turcrm.models.document import Document
from turcrm.models.sms_confirmation import SmsConfirmation
from turcrm.services.document_flow import DocumentFlow
from turcrm.services.otp_policy import OtpPolicy, code_matches, generate_code, normalize_code, relaxed_policy
from turcrm.services.security_audit import ACTION_SIGNING_CONFIRM, record_security_event
from turcrm.services.sms_service import normalize_phone, render_sms_text, send_sms

logger = logging.getLogger("turcrm.otp.signing")


class SigningConfirmationService:
    """SMS confirmation that signs a document.

    Codes are kept in clear so that a resend can deliver the same code again.
    There is no throttle and no attempt counter; a wrong, expired or already
    used code simply does not match.
    """

    def __init__(
        self,
        flow: DocumentFlow | None = None,
        policy: OtpPolicy | None = None,
        *,
        sms_template: str | None = None,
    ):
        self.flow = flow or DocumentFlow()
        self.policy = policy or relaxed_policy()
        self.sms_template = sms_template if sms_template is not None else settings.SIGNING_SMS_TEMPLATE

    def _is_live(self, row: SmsConfirmation) -> bool:
        return not bool(row.confirmed) and not self.policy.is_expired(self.policy.expires_at(row.sent_at))

    def latest(self, db: Session, document_id: uuid.UUID) -> SmsConfirmation:
        row = (
            db.query(SmsConfirmation)
            .filter(SmsConfirmation.document_id == document_id)
            .order_by(SmsConfirmation.sent_at.desc(), SmsConfirmation.created_at.desc())
            .first()
        )
        if row is None:
            raise NotFound("SMS по документу не найдено")
        return row

    def send_code(self, db: Session, document_id: uuid.UUID, phone: str | None) -> dict[str, Any]:
        if db.get(Document, document_id) is None:
            raise NotFound("Документ не найден")
        target = normalize_phone(phone)
        if not target:
            raise InvalidInput('Поле "phone" обязательно')

        code = generate_code(self.policy)
        delivery = send_sms(phone=target, text=render_sms_text(self.sms_template, code=code))
        now = utcnow()
        row = SmsConfirmation(
            document_id=document_id,
            phone=target,
            code=code,
            sent_at=now,
            confirmed=False,
            confirmed_at=None,
        )
        db.add(row)
        db.commit()
        logger.info("signing code sent document_id=%s message_id=%s", document_id, delivery.get("message_id") or "-")
        return {
            "status": "sent",
            "resent": False,
            "ttl_seconds": int(self.policy.ttl.total_seconds()),
            "message_id": delivery.get("message_id"),
        }

    def resend_code(self, db: Session, document_id: uuid.UUID, phone: str | None = None) -> dict[str, Any]:
        try:
            existing = self.latest(db, document_id)
        except NotFound:
            existing = None
        if existing is None or not self._is_live(existing):
            if not normalize_phone(phone):
                raise InvalidInput("Нет действующего кода: для повторной отправки нужен телефон")
            return self.send_code(db, document_id, phone)

        delivery = send_sms(phone=existing.phone, text=render_sms_text(self.sms_template, code=existing.code))
        logger.info("signing code resent document_id=%s message_id=%s", document_id, delivery.get("message_id") or "-")
        return {
            "status": "sent",
            "resent": True,
            "ttl_seconds": int(self.policy.ttl.total_seconds()),
            "message_id": delivery.get("message_id"),
        }

    def confirm_code(self, db: Session, document_id: uuid.UUID, code: str) -> bool:
        supplied = normalize_code(code)
        if not supplied:
            return False
        candidates = (
            db.query(SmsConfirmation)
            .filter(
                SmsConfirmation.document_id == document_id,
                SmsConfirmation.code == supplied,
                SmsConfirmation.confirmed.is_(False),
            )
            .order_by(SmsConfirmation.sent_at.desc())
            .all()
        )
        row = next(
            (c for c in candidates if self._is_live(c) and code_matches(self.policy, c.code, supplied)),
            None,
        )
        if row is None:
            logger.info("signing code did not match document_id=%s", document_id)
            return False

        row.confirmed = True
        row.confirmed_at = utcnow()
        db.add(row)
        try:
            self.flow.sign_by_confirmation(db, document_id, commit=False)
        except TrustError:
            db.rollback()
            logger.warning("signing confirmation rejected by document state document_id=%s", document_id)
            raise
        record_security_event(
            db,
            action=ACTION_SIGNING_CONFIRM,
            allowed=True,
            subject=str(document_id),
            details={"phone": row.phone},
        )
        db.commit()
        logger.info("document signed by sms document_id=%s", document_id)
        return True

    def delete_for_document(self, db: Session, document_id: uuid.UUID) -> int:
        deleted = (
            db.query(SmsConfirmation)
            .filter(SmsConfirmation.document_id == document_id)
            .delete(synchronize_session=False)
        )
        db.commit()
        logger.info("signing confirmations deleted document_id=%s count=%s", document_id, deleted)
        return int(deleted or 0)
