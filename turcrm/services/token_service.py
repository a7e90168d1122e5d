"""Access/refresh credential issuance.

Access tokens are short-lived HS256 JWTs carrying the user id and role.
Refresh tokens are opaque random strings stored on the user row; every use
swaps the stored value with a conditional UPDATE so that a token can be
exchanged at most once, no matter how many requests race with it.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from functools import lru_cache

from jose import ExpiredSignatureError, JWTError
from sqlalchemy import update
from sqlalchemy.orm import Session

from turcrm.core.config import Settings, settings
from turcrm.core.errors import (
    InvalidCredentials,
    NotFound,
    NotVerified,
    TokenExpired,
    TokenInvalid,
    TokenRevoked,
)
from turcrm.core.rbac import Role, parse_role
from turcrm.core.security import create_jwt, decode_jwt, hash_password, new_refresh_token, verify_password
from turcrm.models.common import as_utc, utcnow
from turcrm.models.user import User
from turcrm.services.security_audit import (
    ACTION_LOGIN,
    ACTION_REFRESH,
    ACTION_REVOKE,
    record_security_event,
)

logger = logging.getLogger("turcrm.auth")

ACCESS_TOKEN_TYPE = "access"


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    access_expires_in: int
    refresh_expires_at: datetime
    user_id: uuid.UUID
    role: Role


@dataclass(frozen=True)
class AccessClaims:
    user_id: uuid.UUID
    role: Role


def normalize_email(raw: str | None) -> str:
    return str(raw or "").strip().lower()


@lru_cache(maxsize=1)
def _dummy_password_hash() -> str:
    # Verified against for unknown emails so both failure paths cost the same.
    return hash_password("turcrm-dummy-password")


class TokenIssuer:
    def __init__(
        self,
        *,
        secret: str,
        access_ttl: timedelta,
        refresh_ttl: timedelta,
        refresh_bytes: int = 32,
        algorithm: str = "HS256",
    ):
        if not str(secret or "").strip():
            raise ValueError("JWT signing secret must not be empty")
        if refresh_bytes < 32:
            raise ValueError("Refresh tokens need at least 256 bits of entropy")
        self._secret = secret
        self._algorithm = algorithm
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl
        self.refresh_bytes = refresh_bytes

    @classmethod
    def from_settings(cls, cfg: Settings = settings) -> "TokenIssuer":
        return cls(
            secret=cfg.JWT_SECRET,
            access_ttl=timedelta(minutes=cfg.ACCESS_TOKEN_TTL_MINUTES),
            refresh_ttl=timedelta(days=cfg.REFRESH_TOKEN_TTL_DAYS),
            refresh_bytes=cfg.REFRESH_TOKEN_BYTES,
            algorithm=cfg.JWT_ALGORITHM,
        )

    # --- access tokens ---

    def issue_access(self, user: User) -> str:
        return create_jwt(
            {"sub": str(user.id), "role": int(parse_role(user.role)), "type": ACCESS_TOKEN_TYPE},
            self._secret,
            self.access_ttl,
            algorithm=self._algorithm,
        )

    def decode_access(self, token: str) -> AccessClaims:
        raw = str(token or "").strip()
        if not raw:
            raise TokenInvalid()
        try:
            claims = decode_jwt(raw, self._secret, algorithm=self._algorithm)
        except ExpiredSignatureError as exc:
            raise TokenExpired() from exc
        except JWTError as exc:
            raise TokenInvalid() from exc
        if claims.get("type") != ACCESS_TOKEN_TYPE:
            raise TokenInvalid()
        try:
            return AccessClaims(user_id=uuid.UUID(str(claims.get("sub"))), role=parse_role(claims.get("role")))
        except ValueError as exc:
            raise TokenInvalid() from exc

    # --- refresh lifecycle ---

    def _pair_for(self, user: User, refresh_token: str, refresh_expires_at: datetime) -> TokenPair:
        return TokenPair(
            access_token=self.issue_access(user),
            refresh_token=refresh_token,
            access_expires_in=int(self.access_ttl.total_seconds()),
            refresh_expires_at=refresh_expires_at,
            user_id=user.id,
            role=parse_role(user.role),
        )

    def login(self, db: Session, email: str, password: str, *, client_ip: str | None = None) -> TokenPair:
        email_norm = normalize_email(email)
        user = db.query(User).filter(User.email == email_norm).first() if email_norm else None

        if user is None:
            verify_password(str(password or ""), _dummy_password_hash())
            self._login_denied(db, email_norm, client_ip, reason="invalid_credentials")
            raise InvalidCredentials()
        if not user.password_hash or not verify_password(str(password or ""), user.password_hash):
            self._login_denied(db, email_norm, client_ip, reason="invalid_credentials", user=user)
            raise InvalidCredentials()
        if not bool(user.is_verified):
            self._login_denied(db, email_norm, client_ip, reason="not_verified", user=user)
            raise NotVerified()

        now = utcnow()
        refresh_token = new_refresh_token(self.refresh_bytes)
        refresh_expires_at = now + self.refresh_ttl
        user.refresh_token = refresh_token
        user.refresh_expires_at = refresh_expires_at
        user.refresh_revoked = False
        db.add(user)
        record_security_event(
            db,
            action=ACTION_LOGIN,
            allowed=True,
            subject=email_norm,
            actor_user_id=user.id,
            actor_role=user.role,
            actor_ip=client_ip,
        )
        db.commit()
        logger.info("login ok user_id=%s role=%s", user.id, user.role)
        return self._pair_for(user, refresh_token, refresh_expires_at)

    def _login_denied(
        self,
        db: Session,
        email: str,
        client_ip: str | None,
        *,
        reason: str,
        user: User | None = None,
    ) -> None:
        logger.info("login denied reason=%s user_id=%s", reason, user.id if user else "-")
        record_security_event(
            db,
            action=ACTION_LOGIN,
            allowed=False,
            subject=email,
            actor_user_id=user.id if user else None,
            actor_role=user.role if user else None,
            actor_ip=client_ip,
            reason=reason,
            persist_now=True,
        )

    def _swap_refresh(
        self,
        db: Session,
        *,
        old_token: str,
        new_token: str,
        new_expires_at: datetime,
        now: datetime,
    ) -> bool:
        """Compare-and-swap of the stored refresh token; ``True`` only for the single winner."""
        result = db.execute(
            update(User)
            .where(
                User.refresh_token == old_token,
                User.refresh_revoked.is_(False),
                User.refresh_expires_at > now,
            )
            .values(refresh_token=new_token, refresh_expires_at=new_expires_at, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        return int(result.rowcount or 0) == 1

    def rotate(self, db: Session, old_token: str, *, client_ip: str | None = None) -> TokenPair:
        """Exchanges a live refresh token for a new pair.

        A token that was rotated away or cleared by ``revoke`` is no longer stored
        and reports ``TokenInvalid``. ``TokenRevoked`` covers tokens that are still
        stored but flagged ``refresh_revoked`` in place by an administrator.
        """
        old = str(old_token or "").strip()
        if not old:
            raise TokenInvalid()
        user = db.query(User).filter(User.refresh_token == old).first()
        if user is None:
            raise TokenInvalid()
        if bool(user.refresh_revoked):
            raise TokenRevoked()
        now = utcnow()
        expires_at = as_utc(user.refresh_expires_at)
        if expires_at is None or expires_at <= now:
            raise TokenExpired()

        new_token = new_refresh_token(self.refresh_bytes)
        new_expires_at = now + self.refresh_ttl
        if not self._swap_refresh(db, old_token=old, new_token=new_token, new_expires_at=new_expires_at, now=now):
            db.rollback()
            logger.warning("refresh rotation lost the race user_id=%s", user.id)
            raise TokenInvalid()

        record_security_event(
            db,
            action=ACTION_REFRESH,
            allowed=True,
            subject=str(user.id),
            actor_user_id=user.id,
            actor_role=user.role,
            actor_ip=client_ip,
        )
        db.commit()
        db.refresh(user)
        return self._pair_for(user, new_token, new_expires_at)

    def revoke(self, db: Session, user_id: uuid.UUID, *, actor_user_id: uuid.UUID | None = None) -> None:
        result = db.execute(
            update(User)
            .where(User.id == user_id)
            .values(refresh_token=None, refresh_expires_at=None, refresh_revoked=True, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if int(result.rowcount or 0) == 0:
            db.rollback()
            raise NotFound("Пользователь не найден")
        record_security_event(
            db,
            action=ACTION_REVOKE,
            allowed=True,
            subject=str(user_id),
            actor_user_id=actor_user_id or user_id,
        )
        db.commit()
        logger.info("refresh revoked user_id=%s", user_id)
