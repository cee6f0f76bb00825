from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from royalty_ledger.features.splits.resolver import NormalizedSplit, RawSplitEntry


class SplitEntryIn(BaseModel):
    wallet: str | None = None
    name: str | None = None
    percentage: float = Field(ge=0, le=100)
    create_persona: bool = False

    def to_raw(self) -> RawSplitEntry:
        return RawSplitEntry(
            wallet=self.wallet,
            name=self.name,
            percentage=self.percentage,
            create_persona=self.create_persona,
        )


class SplitEntryOut(BaseModel):
    wallet: str
    percentage: int
    name: str | None = None
    kind: str

    @classmethod
    def from_split(cls, split: NormalizedSplit) -> "SplitEntryOut":
        return cls(
            wallet=split.wallet,
            percentage=split.percentage,
            name=split.name,
            kind=split.to_record()["beneficiary"]["kind"],
        )


class SplitResolveRequest(BaseModel):
    uploader_wallet: str
    entries: list[SplitEntryIn] = Field(default_factory=list)
    ai_assisted: bool = False
    ai_generated: bool = False
    split_type: str = "composition"


class SplitResolveResponse(BaseModel):
    entries: list[SplitEntryOut]
    total: int


class ContentUploadRequest(BaseModel):
    persona_id: str
    title: str
    composition: list[SplitEntryIn] = Field(default_factory=list)
    production: list[SplitEntryIn] = Field(default_factory=list)
    ai_assisted: bool = False
    ai_generated: bool = False


class PendingCollaboratorResponse(BaseModel):
    id: str
    name: str
    percentage: int
    split_type: str
    position: int
    status: str


class ContentResponse(BaseModel):
    id: str
    uploader_persona_id: str
    title: str
    composition: list[SplitEntryOut]
    production: list[SplitEntryOut]
    ai_assisted: bool
    ai_generated: bool
    pending_collaborators: list[PendingCollaboratorResponse] = Field(default_factory=list)
    placeholder_persona_ids: list[str] = Field(default_factory=list)
    created_at: datetime
