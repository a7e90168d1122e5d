from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from turcrm.core.errors import Forbidden, TokenInvalid
from turcrm.core.rbac import is_read_only
from turcrm.services.document_flow import Actor, DocumentFlow
from turcrm.services.signing_service import SigningConfirmationService
from turcrm.services.token_service import TokenIssuer
from turcrm.services.verification_service import PhoneVerificationService

bearer = HTTPBearer(auto_error=False)

# Services are built per request from the current settings.
def get_token_issuer() -> TokenIssuer:
    return TokenIssuer.from_settings()

def get_verification_service() -> PhoneVerificationService:
    return PhoneVerificationService()

def get_document_flow() -> DocumentFlow:
    return DocumentFlow()

def get_signing_service(flow: DocumentFlow = Depends(get_document_flow)) -> SigningConfirmationService:
    return SigningConfirmationService(flow)

def get_current_actor(
    creds: HTTPAuthorizationCredentials = Depends(bearer),
    issuer: TokenIssuer = Depends(get_token_issuer),
) -> Actor:
    if not creds or not str(creds.credentials or "").strip():
        raise TokenInvalid("Отсутствует токен авторизации")
    claims = issuer.decode_access(creds.credentials)
    return Actor(user_id=claims.user_id, role=claims.role)

def require_writer(actor: Actor = Depends(get_current_actor)) -> Actor:
    if is_read_only(actor.role):
        raise Forbidden("Роль только для чтения")
    return actor

def client_ip(request: Request) -> str:
    xff = str(request.headers.get("x-forwarded-for") or "").strip()
    if xff:
        first = xff.split(",")[0].strip()
        if first:
            return first
    client = request.client
    return str(client.host if client else "unknown")
