"""Pydantic schemas for signup and signup completion."""

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class SignupRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    username: str = Field(..., max_length=128)
    password: str = Field(..., max_length=1024)
    host: str | None = Field(None, max_length=512)
    invitation_code: str | None = Field(None, alias="invitationCode", max_length=64)
    email_address: str | None = Field(None, alias="emailAddress", max_length=320)
    hcaptcha_response: str | None = Field(None, alias="hcaptcha-response")
    g_recaptcha_response: str | None = Field(None, alias="g-recaptcha-response")
    turnstile_response: str | None = Field(None, alias="turnstile-response")
    m_captcha_response: str | None = Field(None, alias="m-captcha-response")


class SignupPendingRequest(BaseModel):
    code: str = Field(..., max_length=64)


class AccountResponse(BaseModel):
    """A newly created account, including its one-time API secret."""

    id: uuid.UUID
    username: str
    host: str | None
    is_root: bool = Field(..., serialization_alias="isRoot")
    created_at: datetime = Field(..., serialization_alias="createdAt")
    token: str


class EmailAddressAvailableResponse(BaseModel):
    available: bool
    reason: str | None = None


class SigninResponse(BaseModel):
    id: str
    i: str
