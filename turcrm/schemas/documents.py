from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from turcrm.models.document import DocumentStatus
from turcrm.models.document_status_history import REVIEW_COMMENT_MAX_LENGTH
from turcrm.services.document_flow import ReviewAction


class ReviewIn(BaseModel):
    action: ReviewAction
    comment: Optional[str] = Field(default=None, max_length=REVIEW_COMMENT_MAX_LENGTH)


class FromTemplateIn(BaseModel):
    deal_id: UUID
    doc_type: str = Field(min_length=1, max_length=100)


class DocumentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    deal_id: UUID
    doc_type: str
    file_path: Optional[str] = None
    status: DocumentStatus
    signed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
