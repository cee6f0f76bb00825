from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class ClaimLinkRequest(BaseModel):
    recipient_name: str | None = None


class ClaimLinkResponse(BaseModel):
    token: str
    claim_url: str
    expires_at: datetime
    is_existing: bool


class ClaimPreviewResponse(BaseModel):
    display_name: str
    username: str
    held: int
    content_count: int
    expires_at: datetime
    recipient_name: str | None


class ClaimRedeemRequest(BaseModel):
    persona_id: str


class LinkRequest(BaseModel):
    target_persona_id: str


class MergeRequest(BaseModel):
    owner_persona_id: str


class ResolutionResponse(BaseModel):
    placeholder_id: str
    target_persona_id: str
    resolution: str
    amount: int
    earnings_moved: int
    content_rewritten: int
