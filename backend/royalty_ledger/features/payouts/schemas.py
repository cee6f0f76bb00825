from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class WithdrawRequest(BaseModel):
    destination_address: str
    amount: int = Field(gt=0)


class ReconcileRequest(BaseModel):
    executed: bool
    tx_ref: str | None = None
    reason: str | None = None


class WithdrawalResponse(BaseModel):
    id: str
    persona_id: str
    destination_address: str
    chain: str
    amount: int
    status: str
    tx_hash: str | None
    error: str | None
    attempts: int
    created_at: datetime
    updated_at: datetime
