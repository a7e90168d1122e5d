from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from turcrm.core.deps import get_current_actor, get_document_flow
from turcrm.db.session import get_db
from turcrm.schemas.documents import DocumentOut, FromTemplateIn, ReviewIn
from turcrm.services.document_flow import Actor, DocumentFlow

router = APIRouter()


@router.post("/from-template", response_model=DocumentOut, status_code=201)
def create_from_template(
    payload: FromTemplateIn,
    db: Session = Depends(get_db),
    flow: DocumentFlow = Depends(get_document_flow),
    actor: Actor = Depends(get_current_actor),
):
    return flow.create_from_template(db, payload.deal_id, payload.doc_type, actor)


@router.get("/{document_id}", response_model=DocumentOut)
def get_document(
    document_id: UUID,
    db: Session = Depends(get_db),
    flow: DocumentFlow = Depends(get_document_flow),
    actor: Actor = Depends(get_current_actor),
):
    return flow.get_document(db, document_id, actor)


@router.post("/{document_id}/submit", response_model=DocumentOut)
def submit_document(
    document_id: UUID,
    db: Session = Depends(get_db),
    flow: DocumentFlow = Depends(get_document_flow),
    actor: Actor = Depends(get_current_actor),
):
    return flow.submit(db, document_id, actor)


@router.post("/{document_id}/review", response_model=DocumentOut)
def review_document(
    document_id: UUID,
    payload: ReviewIn,
    db: Session = Depends(get_db),
    flow: DocumentFlow = Depends(get_document_flow),
    actor: Actor = Depends(get_current_actor),
):
    return flow.review(db, document_id, payload.action, actor, comment=payload.comment)


@router.post("/{document_id}/sign", response_model=DocumentOut)
def sign_document(
    document_id: UUID,
    db: Session = Depends(get_db),
    flow: DocumentFlow = Depends(get_document_flow),
    actor: Actor = Depends(get_current_actor),
):
    return flow.sign(db, document_id, actor)
