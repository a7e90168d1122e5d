from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from turcrm.core.deps import get_signing_service, require_writer
from turcrm.db.session import get_db
from turcrm.schemas.auth import CodeSentOut
from turcrm.schemas.sms import SmsConfirmationOut, SmsConfirmIn, SmsConfirmOut, SmsResendIn, SmsSendIn
from turcrm.services.document_flow import Actor
from turcrm.services.signing_service import SigningConfirmationService

router = APIRouter()


def _require_document_access(
    db: Session, signing: SigningConfirmationService, document_id: UUID, actor: Actor
) -> None:
    # Same visibility as reading the document: sales only reach their own deals.
    signing.flow.get_document(db, document_id, actor)


@router.post("/send", response_model=CodeSentOut)
def send_code(
    payload: SmsSendIn,
    db: Session = Depends(get_db),
    signing: SigningConfirmationService = Depends(get_signing_service),
    actor: Actor = Depends(require_writer),
):
    _require_document_access(db, signing, payload.document_id, actor)
    sent = signing.send_code(db, payload.document_id, payload.phone)
    return CodeSentOut(status=sent["status"], ttl_seconds=sent["ttl_seconds"], resent=sent["resent"])


@router.post("/resend", response_model=CodeSentOut)
def resend_code(
    payload: SmsResendIn,
    db: Session = Depends(get_db),
    signing: SigningConfirmationService = Depends(get_signing_service),
    actor: Actor = Depends(require_writer),
):
    _require_document_access(db, signing, payload.document_id, actor)
    sent = signing.resend_code(db, payload.document_id, payload.phone)
    return CodeSentOut(status=sent["status"], ttl_seconds=sent["ttl_seconds"], resent=sent["resent"])


@router.post("/confirm", response_model=SmsConfirmOut)
def confirm_code(
    payload: SmsConfirmIn,
    db: Session = Depends(get_db),
    signing: SigningConfirmationService = Depends(get_signing_service),
    actor: Actor = Depends(require_writer),
):
    _require_document_access(db, signing, payload.document_id, actor)
    confirmed = signing.confirm_code(db, payload.document_id, payload.code)
    return SmsConfirmOut(document_id=payload.document_id, confirmed=confirmed)


@router.get("/latest/{document_id}", response_model=SmsConfirmationOut)
def latest_confirmation(
    document_id: UUID,
    db: Session = Depends(get_db),
    signing: SigningConfirmationService = Depends(get_signing_service),
    actor: Actor = Depends(require_writer),
):
    _require_document_access(db, signing, document_id, actor)
    return signing.latest(db, document_id)


@router.delete("/{document_id}")
def delete_confirmations(
    document_id: UUID,
    db: Session = Depends(get_db),
    signing: SigningConfirmationService = Depends(get_signing_service),
    actor: Actor = Depends(require_writer),
):
    _require_document_access(db, signing, document_id, actor)
    return {"status": "deleted", "deleted": signing.delete_for_document(db, document_id)}
