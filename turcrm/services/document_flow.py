"""Legal lifecycle of a document.

    draft -> under_review -> approved | returned -> signed

``signed`` is terminal. A document reaches it either through ``sign`` (a
senior role acting explicitly) or through ``sign_by_confirmation``, which is
only called after a correct SMS signing code and therefore skips role checks.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from sqlalchemy.orm import Session

from turcrm.core.config import settings
from turcrm.core.errors import Forbidden, InvalidInput, InvalidState, NotFound
from turcrm.core.rbac import Role, can_review, can_sign, is_elevated, is_read_only
from turcrm.models.common import utcnow
from turcrm.models.deal import Deal
from turcrm.models.document import Document, DocumentStatus
from turcrm.models.document_status_history import REVIEW_COMMENT_MAX_LENGTH, DocumentStatusHistory
from turcrm.services.security_audit import ACTION_DOCUMENT_TRANSITION, record_security_event

logger = logging.getLogger("turcrm.documents")

TEMPLATE_DOC_TYPES = {"contract", "invoice"}

VIA_MANUAL = "manual"
VIA_SMS = "sms"

# Renders the file for a freshly created document (PDF pipeline lives outside the core).
DocumentRenderer = Callable[[Document, Deal], None]


class ReviewAction(str, Enum):
    APPROVE = "approve"
    RETURN = "return"


_REVIEW_TARGETS = {
    ReviewAction.APPROVE: DocumentStatus.APPROVED,
    ReviewAction.RETURN: DocumentStatus.RETURNED,
}

_SIGNABLE = frozenset({DocumentStatus.APPROVED, DocumentStatus.RETURNED})


@dataclass(frozen=True)
class Actor:
    user_id: uuid.UUID
    role: Role


class DocumentFlow:
    def __init__(self, *, sign_from_under_review: bool | None = None):
        if sign_from_under_review is None:
            sign_from_under_review = bool(settings.SIGN_BY_CONFIRMATION_FROM_UNDER_REVIEW)
        self.sign_from_under_review = sign_from_under_review

    @property
    def confirmation_sources(self) -> frozenset[DocumentStatus]:
        if self.sign_from_under_review:
            return _SIGNABLE | {DocumentStatus.UNDER_REVIEW}
        return _SIGNABLE

    # --- lookups ---

    def _document_or_404(self, db: Session, document_id: uuid.UUID) -> Document:
        doc = db.get(Document, document_id)
        if doc is None:
            raise NotFound("Документ не найден")
        return doc

    def _deal_or_404(self, db: Session, deal_id: uuid.UUID) -> Deal:
        deal = db.get(Deal, deal_id)
        if deal is None:
            raise NotFound("Сделка не найдена")
        return deal

    def _require_owner_or_elevated(self, deal: Deal, actor: Actor) -> None:
        if is_elevated(actor.role):
            return
        if deal.owner_id is None or deal.owner_id != actor.user_id:
            raise Forbidden()

    def get_document(self, db: Session, document_id: uuid.UUID, actor: Actor) -> Document:
        doc = self._document_or_404(db, document_id)
        if actor.role == Role.SALES:
            deal = self._deal_or_404(db, doc.deal_id)
            if deal.owner_id != actor.user_id:
                raise Forbidden()
        return doc

    # --- transitions ---

    def _apply(
        self,
        db: Session,
        doc: Document,
        to_status: DocumentStatus,
        *,
        actor: Actor | None,
        via: str,
        comment: str | None = None,
    ) -> Document:
        from_status = doc.status
        now = utcnow()
        doc.status = to_status
        doc.signed_at = now if to_status == DocumentStatus.SIGNED else None
        db.add(doc)
        db.add(
            DocumentStatusHistory(
                document_id=doc.id,
                from_status=from_status.value if from_status else None,
                to_status=to_status.value,
                changed_by_user_id=actor.user_id if actor else None,
                via=via,
                comment=comment,
            )
        )
        record_security_event(
            db,
            action=ACTION_DOCUMENT_TRANSITION,
            allowed=True,
            subject=str(doc.id),
            actor_user_id=actor.user_id if actor else None,
            actor_role=actor.role if actor else "SYSTEM",
            details={"from": from_status.value if from_status else None, "to": to_status.value, "via": via},
        )
        db.flush()
        logger.info(
            "document transition id=%s %s->%s via=%s",
            doc.id,
            from_status.value if from_status else "-",
            to_status.value,
            via,
        )
        return doc

    def _finish(self, db: Session, doc: Document, commit: bool) -> Document:
        if commit:
            db.commit()
            db.refresh(doc)
        return doc

    def submit(self, db: Session, document_id: uuid.UUID, actor: Actor, *, commit: bool = True) -> Document:
        if is_read_only(actor.role):
            raise Forbidden("Роль только для чтения")
        doc = self._document_or_404(db, document_id)
        deal = self._deal_or_404(db, doc.deal_id)
        self._require_owner_or_elevated(deal, actor)
        if doc.status != DocumentStatus.DRAFT:
            raise InvalidState("Отправить на проверку можно только черновик")
        self._apply(db, doc, DocumentStatus.UNDER_REVIEW, actor=actor, via=VIA_MANUAL)
        return self._finish(db, doc, commit)

    def review(
        self,
        db: Session,
        document_id: uuid.UUID,
        action: ReviewAction | str,
        actor: Actor,
        *,
        comment: str | None = None,
        commit: bool = True,
    ) -> Document:
        if not can_review(actor.role):
            raise Forbidden()
        try:
            review_action = ReviewAction(str(getattr(action, "value", action) or "").strip().lower())
        except ValueError as exc:
            raise InvalidInput('Поле "action" должно быть approve или return') from exc
        if comment is not None and len(comment) > REVIEW_COMMENT_MAX_LENGTH:
            raise InvalidInput(f"Комментарий длиннее {REVIEW_COMMENT_MAX_LENGTH} символов")
        doc = self._document_or_404(db, document_id)
        if doc.status != DocumentStatus.UNDER_REVIEW:
            raise InvalidState("Документ не находится на проверке")
        self._apply(db, doc, _REVIEW_TARGETS[review_action], actor=actor, via=VIA_MANUAL, comment=comment)
        return self._finish(db, doc, commit)

    def sign(self, db: Session, document_id: uuid.UUID, actor: Actor, *, commit: bool = True) -> Document:
        if not can_sign(actor.role):
            raise Forbidden()
        doc = self._document_or_404(db, document_id)
        if doc.status not in _SIGNABLE:
            raise InvalidState("Подписать можно только одобренный или возвращенный документ")
        self._apply(db, doc, DocumentStatus.SIGNED, actor=actor, via=VIA_MANUAL)
        return self._finish(db, doc, commit)

    def sign_by_confirmation(self, db: Session, document_id: uuid.UUID, *, commit: bool = True) -> Document:
        """Signs after a correct SMS code. Callers must have verified the code."""
        doc = self._document_or_404(db, document_id)
        if doc.status not in self.confirmation_sources:
            raise InvalidState("Документ нельзя подписать в текущем статусе")
        self._apply(db, doc, DocumentStatus.SIGNED, actor=None, via=VIA_SMS)
        return self._finish(db, doc, commit)

    # --- creation ---

    def create_from_template(
        self,
        db: Session,
        deal_id: uuid.UUID,
        doc_type: str,
        actor: Actor,
        *,
        renderer: DocumentRenderer | None = None,
    ) -> Document:
        if is_read_only(actor.role):
            raise Forbidden("Роль только для чтения")
        kind = str(doc_type or "").strip().lower()
        if kind not in TEMPLATE_DOC_TYPES:
            raise InvalidInput("Неподдерживаемый doc_type")
        deal = self._deal_or_404(db, deal_id)
        if actor.role == Role.SALES and deal.owner_id != actor.user_id:
            raise Forbidden()

        doc = Document(
            deal_id=deal.id,
            doc_type=kind,
            file_path=f"/{kind}_deal_{deal.id}.pdf",
            status=DocumentStatus.DRAFT,
            signed_at=None,
        )
        db.add(doc)
        db.flush()
        if renderer is not None:
            renderer(doc, deal)
        db.add(
            DocumentStatusHistory(
                document_id=doc.id,
                from_status=None,
                to_status=DocumentStatus.DRAFT.value,
                changed_by_user_id=actor.user_id,
                via=VIA_MANUAL,
                comment=f"created from {kind} template",
            )
        )
        db.commit()
        db.refresh(doc)
        logger.info("document created from template id=%s deal_id=%s type=%s", doc.id, deal.id, kind)
        return doc
