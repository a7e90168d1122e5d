from __future__ import annotations

import logging
import uuid
from datetime import timedelta
from typing import Any

from sqlalchemy import func, inspect
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from turcrm.core.rbac import parse_role
from turcrm.models.common import utcnow
from turcrm.models.security_audit_log import SecurityAuditLog

logger = logging.getLogger(__name__)

SUSPICIOUS_LOGIN_WINDOW_MINUTES = 10
SUSPICIOUS_LOGIN_THRESHOLD = 5

ACTION_LOGIN = "LOGIN"
ACTION_REFRESH = "REFRESH_ROTATE"
ACTION_REVOKE = "REFRESH_REVOKE"
ACTION_PHONE_CONFIRM = "PHONE_CONFIRM"
ACTION_SIGNING_CONFIRM = "SIGNING_CONFIRM"
ACTION_DOCUMENT_TRANSITION = "DOCUMENT_TRANSITION"


def _uuid_or_none(raw: str | uuid.UUID | None) -> uuid.UUID | None:
    if raw is None:
        return None
    if isinstance(raw, uuid.UUID):
        return raw
    try:
        return uuid.UUID(str(raw))
    except (TypeError, ValueError):
        return None


def _role_label(raw: str | int | None) -> str:
    if raw is None or raw == "":
        return "ANONYMOUS"
    try:
        return parse_role(raw).name
    except ValueError:
        return str(raw).strip().upper()[:30] or "UNKNOWN"


def _safe_details(details: dict[str, Any] | None) -> dict[str, Any]:
    if not isinstance(details, dict):
        return {}
    safe: dict[str, Any] = {}
    for key, value in details.items():
        if value is None or isinstance(value, (str, int, float, bool)):
            safe[str(key)] = value
        else:
            safe[str(key)] = str(value)
    return safe


def _emit_suspicious_login_alert(db: Session, *, subject: str, actor_ip: str | None) -> None:
    if not subject:
        return
    since = utcnow() - timedelta(minutes=SUSPICIOUS_LOGIN_WINDOW_MINUTES)
    denied_count = int(
        db.query(func.count(SecurityAuditLog.id))
        .filter(
            SecurityAuditLog.created_at >= since,
            SecurityAuditLog.action == ACTION_LOGIN,
            SecurityAuditLog.allowed.is_(False),
            SecurityAuditLog.subject == subject,
        )
        .scalar()
        or 0
    )
    if denied_count >= SUSPICIOUS_LOGIN_THRESHOLD:
        logger.warning(
            "SECURITY_ALERT repeated failed logins subject=%s ip=%s count=%s window_min=%s",
            subject,
            actor_ip or "-",
            denied_count,
            SUSPICIOUS_LOGIN_WINDOW_MINUTES,
        )


def record_security_event(
    db: Session,
    *,
    action: str,
    allowed: bool,
    subject: str | None = None,
    actor_user_id: str | uuid.UUID | None = None,
    actor_role: str | int | None = None,
    actor_ip: str | None = None,
    reason: str | None = None,
    details: dict[str, Any] | None = None,
    persist_now: bool = False,
) -> None:
    """Adds an audit row to the current transaction.

    The row is flushed, not committed, unless ``persist_now`` is set; failed
    attempts are usually recorded right before an error is raised, so callers
    pass ``persist_now=True`` there.
    """
    # Security telemetry must not block business flow if DB log write fails.
    try:
        # Inspect through the session connection; a pooled checkout would roll back its pending updates.
        if not inspect(db.connection()).has_table(SecurityAuditLog.__tablename__):
            return
        row = SecurityAuditLog(
            actor_user_id=_uuid_or_none(actor_user_id),
            actor_role=_role_label(actor_role),
            actor_ip=str(actor_ip or "").strip() or None,
            action=str(action or "").strip().upper() or "UNKNOWN",
            subject=str(subject or "").strip()[:255],
            allowed=bool(allowed),
            reason=(str(reason)[:400] if reason is not None else None),
            details=_safe_details(details),
        )
        db.add(row)
        db.flush()

        if not bool(allowed) and row.action == ACTION_LOGIN:
            _emit_suspicious_login_alert(db, subject=row.subject, actor_ip=row.actor_ip)

        if persist_now:
            db.commit()
    except SQLAlchemyError:
        logger.warning("security_audit_write_failed action=%s", action, exc_info=True)
        if persist_now:
            try:
                db.rollback()
            except SQLAlchemyError:
                logger.debug("security_audit_rollback_failed", exc_info=True)
