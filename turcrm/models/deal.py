import uuid

from sqlalchemy import String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column
from turcrm.db.session import Base
from turcrm.models.common import UUIDMixin, TimestampMixin

# Deals are owned by the CRUD layer; the trust core only reads ownership.
class Deal(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "deals"
    owner_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True, index=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    amount: Mapped[str] = mapped_column(String(20), nullable=False, default="0")
    currency: Mapped[str] = mapped_column(String(10), nullable=False, default="KZT")
    status: Mapped[str | None] = mapped_column(String(100), nullable=True)
