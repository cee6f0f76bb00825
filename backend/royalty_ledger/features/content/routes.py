from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from royalty_ledger.features.content.schemas import (
    ContentResponse,
    ContentUploadRequest,
    PendingCollaboratorResponse,
    SplitEntryOut,
    SplitResolveRequest,
    SplitResolveResponse,
)
from royalty_ledger.features.content.services import resolve_splits, upload_content
from royalty_ledger.features.splits.resolver import SplitType, apply_ai_policy, group_total
from royalty_ledger.platform.context import LedgerContext, get_ledger
from royalty_ledger.platform.db.models import Account, PendingCollaborator
from royalty_ledger.platform.db.session import get_session
from royalty_ledger.platform.errors import ValidationError
from royalty_ledger.platform.security import get_current_account
from royalty_ledger.platform.services.catalog import splits_from_record

router = APIRouter()


def _pending_response(row: PendingCollaborator) -> PendingCollaboratorResponse:
    return PendingCollaboratorResponse(
        id=row.id,
        name=row.name,
        percentage=row.percentage,
        split_type=row.split_type,
        position=row.position,
        status=row.status,
    )


@router.post("/splits/resolve", response_model=SplitResolveResponse)
async def preview_splits(
    body: SplitResolveRequest,
    account: Account = Depends(get_current_account),
    ledger: LedgerContext = Depends(get_ledger),
) -> SplitResolveResponse:
    try:
        split_type = SplitType(body.split_type)
    except ValueError as exc:
        raise ValidationError(f"Unknown split type: {body.split_type}") from exc

    entries = resolve_splits(ledger, [entry.to_raw() for entry in body.entries], body.uploader_wallet)
    if split_type is SplitType.PRODUCTION:
        entries = apply_ai_policy(
            entries,
            ai_assisted=body.ai_assisted,
            ai_generated=body.ai_generated,
            ai_label=ledger.settings.ai_beneficiary,
        )

    return SplitResolveResponse(entries=[SplitEntryOut.from_split(e) for e in entries], total=group_total(entries))


@router.post("/content", response_model=ContentResponse)
async def create_content(
    body: ContentUploadRequest,
    account: Account = Depends(get_current_account),
    ledger: LedgerContext = Depends(get_ledger),
) -> ContentResponse:
    result = await upload_content(
        ledger,
        account_id=account.id,
        uploader_persona_id=body.persona_id,
        title=body.title,
        composition=[entry.to_raw() for entry in body.composition],
        production=[entry.to_raw() for entry in body.production],
        ai_assisted=body.ai_assisted,
        ai_generated=body.ai_generated,
    )

    content = result.content
    return ContentResponse(
        id=content.id,
        uploader_persona_id=content.uploader_persona_id,
        title=content.title,
        composition=[SplitEntryOut.from_split(e) for e in result.composition],
        production=[SplitEntryOut.from_split(e) for e in result.production],
        ai_assisted=content.ai_assisted,
        ai_generated=content.ai_generated,
        pending_collaborators=[_pending_response(row) for row in result.pending_collaborators],
        placeholder_persona_ids=[p.id for p in result.placeholders],
        created_at=content.created_at,
    )


@router.get("/content/{content_id}", response_model=ContentResponse)
async def get_content(
    content_id: str,
    session: AsyncSession = Depends(get_session),
    ledger: LedgerContext = Depends(get_ledger),
) -> ContentResponse:
    content = await ledger.catalog.require_content(session, content_id)
    groups = splits_from_record(content.splits)
    pending = await session.execute(
        select(PendingCollaborator)
        .where(PendingCollaborator.content_id == content.id)
        .order_by(PendingCollaborator.split_type, PendingCollaborator.position)
    )

    return ContentResponse(
        id=content.id,
        uploader_persona_id=content.uploader_persona_id,
        title=content.title,
        composition=[SplitEntryOut.from_split(e) for e in groups[SplitType.COMPOSITION]],
        production=[SplitEntryOut.from_split(e) for e in groups[SplitType.PRODUCTION]],
        ai_assisted=content.ai_assisted,
        ai_generated=content.ai_generated,
        pending_collaborators=[_pending_response(row) for row in pending.scalars().all()],
        created_at=content.created_at,
    )
