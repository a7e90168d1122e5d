import uuid
from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.dialects.postgresql import UUID
from turcrm.db.session import Base
from turcrm.models.common import UUIDMixin, TimestampMixin

REVIEW_COMMENT_MAX_LENGTH = 400

class DocumentStatusHistory(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "document_status_history"
    document_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), index=True, nullable=False)
    from_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    to_status: Mapped[str] = mapped_column(String(20), nullable=False)
    changed_by_user_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True)
    via: Mapped[str] = mapped_column(String(20), nullable=False, default="manual")  # manual|sms
    comment: Mapped[str | None] = mapped_column(String(REVIEW_COMMENT_MAX_LENGTH), nullable=True)
