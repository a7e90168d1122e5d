from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from turcrm.core.config import settings
from turcrm.core.deps import client_ip, get_verification_service
from turcrm.core.errors import Conflict, InvalidInput
from turcrm.core.rbac import Role
from turcrm.core.security import hash_password
from turcrm.db.session import get_db
from turcrm.models.user import User
from turcrm.schemas.auth import CodeSentOut, ConfirmIn, ConfirmOut, RegisterIn, RegisterOut, ResendIn
from turcrm.services.rate_limit import enforce_rate_limit
from turcrm.services.sms_service import SmsDeliveryError, normalize_phone
from turcrm.services.token_service import normalize_email
from turcrm.services.verification_service import PhoneVerificationService

router = APIRouter()
logger = logging.getLogger("turcrm.registration")


@router.post("", response_model=RegisterOut, status_code=201)
def register(
    payload: RegisterIn,
    db: Session = Depends(get_db),
    verification: PhoneVerificationService = Depends(get_verification_service),
):
    email = normalize_email(payload.email)
    if "@" not in email:
        raise InvalidInput("Некорректный email")
    phone = normalize_phone(payload.phone)
    if not phone:
        raise InvalidInput('Поле "phone" обязательно')
    if db.query(User.id).filter(User.email == email).first() is not None:
        raise Conflict("Пользователь с таким email уже зарегистрирован")

    # Self-registration never grants more than the base role.
    user = User(
        email=email,
        company_name=(payload.company_name or "").strip() or None,
        password_hash=hash_password(payload.password),
        role=int(Role.SALES),
        phone=phone,
        is_verified=False,
        refresh_revoked=False,
    )
    db.add(user)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise Conflict("Пользователь с таким email уже зарегистрирован") from exc
    db.refresh(user)
    logger.info("user registered user_id=%s", user.id)

    try:
        sent = verification.send_code(db, user.id, phone)
    except SmsDeliveryError as exc:
        db.rollback()
        logger.warning("verification sms failed after registration user_id=%s error=%s", user.id, exc)
        return RegisterOut(user_id=user.id, verification_sent=False, error=str(exc))
    return RegisterOut(user_id=user.id, verification_sent=True, ttl_seconds=sent["ttl_seconds"])


@router.post("/confirm", response_model=ConfirmOut)
def confirm(
    payload: ConfirmIn,
    db: Session = Depends(get_db),
    verification: PhoneVerificationService = Depends(get_verification_service),
):
    user = verification.confirm_code(db, payload.user_id, payload.code)
    return ConfirmOut(user_id=user.id, is_verified=bool(user.is_verified), verified_at=user.verified_at)


@router.post("/resend", response_model=CodeSentOut)
def resend(
    payload: ResendIn,
    request: Request,
    db: Session = Depends(get_db),
    verification: PhoneVerificationService = Depends(get_verification_service),
):
    enforce_rate_limit(
        "register_resend",
        limit=settings.RESEND_RATE_LIMIT,
        client_ip=client_ip(request),
        subject=str(payload.user_id),
    )
    sent = verification.resend_code(db, payload.user_id, payload.phone)
    return CodeSentOut(status=sent["status"], ttl_seconds=sent["ttl_seconds"], resent=True)
