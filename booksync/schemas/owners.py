from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from booksync.models.enums import AuthMethod


class RegisterOwnerRequest(BaseModel):
    email: str = Field(min_length=3, max_length=320, pattern=r"^[^@\s]+@[^@\s]+$")
    display_name: str | None = Field(default=None, max_length=200)


class OwnerOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    email: str
    display_name: str | None
    created_at: datetime


class StoreCredentialsRequest(BaseModel):
    access_token: str = Field(min_length=1)
    refresh_token: str | None = None
    expires_in: int | None = Field(default=None, ge=1)
    auth_method: AuthMethod = AuthMethod.web


class CredentialStatusResponse(BaseModel):
    connected: bool
    auth_method: AuthMethod | None = None
    has_refresh_token: bool = False
    readable: bool = False
    access_token_expires_at: datetime | None = None
    reconnect_required: bool = True
