from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from turcrm.core.config import settings
from turcrm.core.deps import client_ip, get_current_actor, get_token_issuer
from turcrm.db.session import get_db
from turcrm.schemas.auth import LoginIn, RefreshIn, TokenPairOut
from turcrm.services.document_flow import Actor
from turcrm.services.rate_limit import enforce_rate_limit
from turcrm.services.token_service import TokenIssuer, TokenPair, normalize_email

router = APIRouter()


def _pair_out(pair: TokenPair) -> TokenPairOut:
    return TokenPairOut(
        access_token=pair.access_token,
        refresh_token=pair.refresh_token,
        expires_in=pair.access_expires_in,
        refresh_expires_at=pair.refresh_expires_at,
        user_id=pair.user_id,
        role=int(pair.role),
    )


@router.post("/login", response_model=TokenPairOut)
def login(
    payload: LoginIn,
    request: Request,
    db: Session = Depends(get_db),
    issuer: TokenIssuer = Depends(get_token_issuer),
):
    ip = client_ip(request)
    enforce_rate_limit("login", limit=settings.LOGIN_RATE_LIMIT, client_ip=ip, subject=normalize_email(payload.email))
    return _pair_out(issuer.login(db, payload.email, payload.password, client_ip=ip))


@router.post("/refresh", response_model=TokenPairOut)
def refresh(
    payload: RefreshIn,
    request: Request,
    db: Session = Depends(get_db),
    issuer: TokenIssuer = Depends(get_token_issuer),
):
    ip = client_ip(request)
    enforce_rate_limit("refresh", limit=settings.REFRESH_RATE_LIMIT, client_ip=ip)
    return _pair_out(issuer.rotate(db, payload.refresh_token, client_ip=ip))


@router.post("/logout")
def logout(
    db: Session = Depends(get_db),
    issuer: TokenIssuer = Depends(get_token_issuer),
    actor: Actor = Depends(get_current_actor),
):
    issuer.revoke(db, actor.user_id, actor_user_id=actor.user_id)
    return {"status": "logged_out"}
