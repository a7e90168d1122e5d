from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field


class LoginIn(BaseModel):
    email: str = Field(min_length=3, max_length=255)
    password: str = Field(min_length=1, max_length=255)


class RefreshIn(BaseModel):
    refresh_token: str = Field(min_length=1, max_length=256)


class TokenPairOut(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int
    refresh_expires_at: datetime
    user_id: UUID
    role: int


class RegisterIn(BaseModel):
    email: str = Field(min_length=3, max_length=255)
    password: str = Field(min_length=8, max_length=255)
    phone: str = Field(min_length=5, max_length=30)
    company_name: Optional[str] = Field(default=None, max_length=255)


class RegisterOut(BaseModel):
    user_id: UUID
    verification_sent: bool
    ttl_seconds: Optional[int] = None
    error: Optional[str] = None


class ConfirmIn(BaseModel):
    user_id: UUID
    code: str = Field(min_length=1, max_length=16)


class ConfirmOut(BaseModel):
    user_id: UUID
    is_verified: bool
    verified_at: Optional[datetime] = None


class ResendIn(BaseModel):
    user_id: UUID
    phone: Optional[str] = Field(default=None, max_length=30)


class CodeSentOut(BaseModel):
    status: str
    ttl_seconds: int
    resent: bool = False
