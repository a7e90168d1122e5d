from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class SmsSendIn(BaseModel):
    document_id: UUID
    phone: str = Field(min_length=5, max_length=30)


class SmsResendIn(BaseModel):
    document_id: UUID
    phone: Optional[str] = Field(default=None, max_length=30)


class SmsConfirmIn(BaseModel):
    document_id: UUID
    code: str = Field(min_length=1, max_length=16)


class SmsConfirmOut(BaseModel):
    document_id: UUID
    confirmed: bool


class SmsConfirmationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    document_id: UUID
    phone: str
    sent_at: datetime
    confirmed: bool
    confirmed_at: Optional[datetime] = None
