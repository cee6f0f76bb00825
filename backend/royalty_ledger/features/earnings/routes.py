from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from royalty_ledger.features.earnings.schemas import (
    EarningPostRequest,
    EarningPostResponse,
    EarningResponse,
    SaleRecordRequest,
    SaleResponse,
    TreasuryHoldingResponse,
)
from royalty_ledger.features.earnings.services import get_balance, list_earnings, list_treasury, post_earning, record_sale
from royalty_ledger.features.personas.schemas import BalanceResponse
from royalty_ledger.features.personas.services import get_persona
from royalty_ledger.platform.context import LedgerContext, get_ledger
from royalty_ledger.platform.db.models import Account, Earning
from royalty_ledger.platform.db.session import get_session
from royalty_ledger.platform.errors import PermissionDeniedError
from royalty_ledger.platform.security import get_current_account, require_internal_key

router = APIRouter()


def earning_response(earning: Earning) -> EarningResponse:
    return EarningResponse(
        id=earning.id,
        persona_id=earning.persona_id,
        beneficiary_ref=earning.beneficiary_ref,
        amount=int(earning.amount),
        source_type=earning.source_type,
        source_id=earning.source_id,
        status=earning.status,
        tx_hash=earning.tx_hash,
        resolved_persona_id=earning.resolved_persona_id,
        resolved_at=earning.resolved_at,
        created_at=earning.created_at,
    )


@router.post("/earnings", response_model=EarningPostResponse, dependencies=[Depends(require_internal_key)])
async def create_earning(
    body: EarningPostRequest,
    ledger: LedgerContext = Depends(get_ledger),
) -> EarningPostResponse:
    posted = await post_earning(
        ledger,
        beneficiary=body.beneficiary_wallet,
        amount=body.amount,
        source_type=body.source_type,
        source_id=body.source_id,
        tx_ref=body.tx_ref,
    )
    return EarningPostResponse(
        **earning_response(posted.earning).model_dump(),
        created=posted.created,
        materialized_placeholder_id=posted.materialized_placeholder_id,
    )


@router.post("/sales", response_model=SaleResponse, dependencies=[Depends(require_internal_key)])
async def create_sale(
    body: SaleRecordRequest,
    ledger: LedgerContext = Depends(get_ledger),
) -> SaleResponse:
    sale = await record_sale(
        ledger,
        content_id=body.content_id,
        composition_amount=body.composition_amount,
        production_amount=body.production_amount,
        source_type=body.source_type,
        tx_ref=body.tx_ref,
    )
    return SaleResponse(
        content_id=sale.content_id,
        earnings=[earning_response(e) for e in sale.earnings],
        retained=sale.retained,
    )


@router.get("/personas/{persona_id}/balance", response_model=BalanceResponse)
async def persona_balance(
    persona_id: str,
    account: Account = Depends(get_current_account),
    session: AsyncSession = Depends(get_session),
    ledger: LedgerContext = Depends(get_ledger),
) -> BalanceResponse:
    await _require_owner(session, persona_id, account.id)
    balance = await get_balance(ledger, persona_id)
    return BalanceResponse(persona_id=balance.persona_id, spendable=balance.spendable, held=balance.held)


@router.get("/personas/{persona_id}/earnings", response_model=list[EarningResponse])
async def persona_earnings(
    persona_id: str,
    account: Account = Depends(get_current_account),
    session: AsyncSession = Depends(get_session),
    ledger: LedgerContext = Depends(get_ledger),
) -> list[EarningResponse]:
    await _require_owner(session, persona_id, account.id)
    return [earning_response(e) for e in await list_earnings(ledger, persona_id)]


@router.get("/treasury", response_model=list[TreasuryHoldingResponse])
async def treasury(
    account: Account = Depends(get_current_account),
    ledger: LedgerContext = Depends(get_ledger),
) -> list[TreasuryHoldingResponse]:
    holdings = await list_treasury(ledger, account.id)
    return [TreasuryHoldingResponse(**holding.__dict__) for holding in holdings]


async def _require_owner(session: AsyncSession, persona_id: str, account_id: str) -> None:
    # Resolved placeholders stay readable by their owner.
    persona = await get_persona(session, persona_id)
    if persona.account_id != account_id:
        raise PermissionDeniedError("You do not own this persona")
