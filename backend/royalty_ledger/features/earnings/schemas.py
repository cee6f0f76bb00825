from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class EarningPostRequest(BaseModel):
    beneficiary_wallet: str
    amount: int = Field(gt=0)
    source_type: str
    source_id: str | None = None
    tx_ref: str | None = None


class SaleRecordRequest(BaseModel):
    content_id: str
    composition_amount: int = Field(ge=0)
    production_amount: int = Field(ge=0)
    source_type: str
    tx_ref: str | None = None


class EarningResponse(BaseModel):
    id: str
    persona_id: str | None
    beneficiary_ref: str
    amount: int
    source_type: str
    source_id: str | None
    status: str
    tx_hash: str | None
    resolved_persona_id: str | None
    resolved_at: datetime | None
    created_at: datetime


class EarningPostResponse(EarningResponse):
    created: bool
    materialized_placeholder_id: str | None = None


class SaleResponse(BaseModel):
    content_id: str
    earnings: list[EarningResponse]
    retained: int


class TreasuryHoldingResponse(BaseModel):
    persona_id: str
    label: str
    username: str
    wallet_address: str | None
    held: int
    claimed: int
    content_ids: list[str]
    is_resolved: bool
    claimed_at: datetime | None
