from fastapi import APIRouter, Depends

from royalty_ledger.features.payouts.schemas import ReconcileRequest, WithdrawalResponse, WithdrawRequest
from royalty_ledger.features.payouts.services import (
    get_withdrawal,
    list_open_withdrawals,
    reconcile_withdrawal,
    retry_withdrawal,
    withdraw,
)
from royalty_ledger.platform.context import LedgerContext, get_ledger
from royalty_ledger.platform.db.models import Account, Withdrawal
from royalty_ledger.platform.security import get_current_account, require_internal_key

router = APIRouter()


def withdrawal_response(withdrawal: Withdrawal) -> WithdrawalResponse:
    return WithdrawalResponse(
        id=withdrawal.id,
        persona_id=withdrawal.persona_id,
        destination_address=withdrawal.destination_address,
        chain=withdrawal.chain,
        amount=int(withdrawal.amount),
        status=withdrawal.status,
        tx_hash=withdrawal.tx_hash,
        error=withdrawal.error,
        attempts=int(withdrawal.attempts),
        created_at=withdrawal.created_at,
        updated_at=withdrawal.updated_at,
    )


@router.post("/personas/{persona_id}/withdraw", response_model=WithdrawalResponse)
async def create_withdrawal(
    persona_id: str,
    body: WithdrawRequest,
    account: Account = Depends(get_current_account),
    ledger: LedgerContext = Depends(get_ledger),
) -> WithdrawalResponse:
    withdrawal = await withdraw(
        ledger,
        persona_id=persona_id,
        account_id=account.id,
        destination_address=body.destination_address,
        amount=body.amount,
    )
    return withdrawal_response(withdrawal)


@router.get("/withdrawals/{withdrawal_id}", response_model=WithdrawalResponse)
async def read_withdrawal(
    withdrawal_id: str,
    account: Account = Depends(get_current_account),
    ledger: LedgerContext = Depends(get_ledger),
) -> WithdrawalResponse:
    return withdrawal_response(await get_withdrawal(ledger, withdrawal_id, account_id=account.id))


@router.get("/withdrawals", response_model=list[WithdrawalResponse], dependencies=[Depends(require_internal_key)])
async def open_withdrawals(ledger: LedgerContext = Depends(get_ledger)) -> list[WithdrawalResponse]:
    return [withdrawal_response(w) for w in await list_open_withdrawals(ledger)]


@router.post("/withdrawals/{withdrawal_id}/retry", response_model=WithdrawalResponse, dependencies=[Depends(require_internal_key)])
async def retry(withdrawal_id: str, ledger: LedgerContext = Depends(get_ledger)) -> WithdrawalResponse:
    return withdrawal_response(await retry_withdrawal(ledger, withdrawal_id))


@router.post("/withdrawals/{withdrawal_id}/reconcile", response_model=WithdrawalResponse, dependencies=[Depends(require_internal_key)])
async def reconcile(
    withdrawal_id: str,
    body: ReconcileRequest,
    ledger: LedgerContext = Depends(get_ledger),
) -> WithdrawalResponse:
    withdrawal = await reconcile_withdrawal(
        ledger,
        withdrawal_id,
        executed=body.executed,
        tx_ref=body.tx_ref,
        reason=body.reason,
    )
    return withdrawal_response(withdrawal)
