from __future__ import annotations

import uuid

from sqlalchemy import Boolean, JSON, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from turcrm.db.session import Base
from turcrm.models.common import TimestampMixin, UUIDMixin


class SecurityAuditLog(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "security_audit_log"

    actor_user_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True, index=True)
    actor_role: Mapped[str] = mapped_column(String(30), nullable=False)
    actor_ip: Mapped[str | None] = mapped_column(String(64), nullable=True)

    action: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    # email for logins, document id for transitions and signing codes
    subject: Mapped[str] = mapped_column(String(255), nullable=False, default="", index=True)

    allowed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    reason: Mapped[str | None] = mapped_column(String(400), nullable=True)
    details: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
