from fastapi import APIRouter, Depends

from royalty_ledger.features.resolution.schemas import (
    ClaimLinkRequest,
    ClaimLinkResponse,
    ClaimPreviewResponse,
    ClaimRedeemRequest,
    LinkRequest,
    MergeRequest,
    ResolutionResponse,
)
from royalty_ledger.features.resolution.services import (
    ResolutionResult,
    generate_claim_link,
    link_placeholder,
    merge_placeholder,
    preview_claim,
    redeem_claim,
)
from royalty_ledger.platform.context import LedgerContext, get_ledger
from royalty_ledger.platform.db.models import Account
from royalty_ledger.platform.security import get_current_account

router = APIRouter()


def _resolution_response(result: ResolutionResult) -> ResolutionResponse:
    return ResolutionResponse(
        placeholder_id=result.placeholder_id,
        target_persona_id=result.target_persona_id,
        resolution=result.resolution,
        amount=result.amount,
        earnings_moved=result.earnings_moved,
        content_rewritten=result.content_rewritten,
    )


@router.post("/placeholders/{placeholder_id}/claim-link", response_model=ClaimLinkResponse)
async def create_claim_link(
    placeholder_id: str,
    body: ClaimLinkRequest | None = None,
    account: Account = Depends(get_current_account),
    ledger: LedgerContext = Depends(get_ledger),
) -> ClaimLinkResponse:
    link = await generate_claim_link(
        ledger,
        placeholder_id=placeholder_id,
        account_id=account.id,
        recipient_name=body.recipient_name if body is not None else None,
    )
    return ClaimLinkResponse(token=link.token, claim_url=link.url, expires_at=link.expires_at, is_existing=link.is_existing)


@router.get("/claims/{token}", response_model=ClaimPreviewResponse)
async def get_claim(token: str, ledger: LedgerContext = Depends(get_ledger)) -> ClaimPreviewResponse:
    preview = await preview_claim(ledger, token)
    return ClaimPreviewResponse(**preview.__dict__)


@router.post("/claims/{token}/redeem", response_model=ResolutionResponse)
async def redeem(
    token: str,
    body: ClaimRedeemRequest,
    account: Account = Depends(get_current_account),
    ledger: LedgerContext = Depends(get_ledger),
) -> ResolutionResponse:
    result = await redeem_claim(ledger, token=token, persona_id=body.persona_id, account_id=account.id)
    return _resolution_response(result)


@router.post("/placeholders/{placeholder_id}/link", response_model=ResolutionResponse)
async def link(
    placeholder_id: str,
    body: LinkRequest,
    account: Account = Depends(get_current_account),
    ledger: LedgerContext = Depends(get_ledger),
) -> ResolutionResponse:
    result = await link_placeholder(
        ledger,
        placeholder_id=placeholder_id,
        target_persona_id=body.target_persona_id,
        account_id=account.id,
    )
    return _resolution_response(result)


@router.post("/placeholders/{placeholder_id}/merge", response_model=ResolutionResponse)
async def merge(
    placeholder_id: str,
    body: MergeRequest,
    account: Account = Depends(get_current_account),
    ledger: LedgerContext = Depends(get_ledger),
) -> ResolutionResponse:
    result = await merge_placeholder(
        ledger,
        placeholder_id=placeholder_id,
        owner_persona_id=body.owner_persona_id,
        account_id=account.id,
    )
    return _resolution_response(result)
