from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class AccountCreateRequest(BaseModel):
    username: str
    display_name: str | None = None
    wallet_address: str | None = None
    stx_address: str | None = None


class PersonaCreateRequest(BaseModel):
    username: str
    display_name: str | None = None
    wallet_address: str | None = None
    stx_address: str | None = None


class PersonaResponse(BaseModel):
    id: str
    account_id: str
    username: str
    display_name: str
    wallet_address: str | None
    stx_address: str | None
    is_default: bool
    is_active: bool
    is_placeholder: bool
    balance: int
    created_at: datetime


class AccountCreateResponse(BaseModel):
    account_id: str
    access_token: str
    token_type: str = "bearer"
    persona: PersonaResponse


class PersonaDeleteResponse(BaseModel):
    persona_id: str
    account_deleted: bool


class UsernameCheckResponse(BaseModel):
    username: str
    available: bool
    reason: str | None = None


class BalanceResponse(BaseModel):
    persona_id: str
    spendable: int = Field(description="Settled earnings that can be withdrawn, in minor units")
    held: int = Field(description="Earnings held in treasury until the placeholder is resolved")
