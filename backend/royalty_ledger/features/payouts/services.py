"""Withdrawals of spendable balance to an external address.

The amount is reserved (debited and written to ``withdrawals``) in its own
transaction before the payment service is called, so a crash mid-call still
leaves a durable record. Only a definitive rejection of the first attempt
refunds the reservation. An unknown outcome parks it as
``pending_reconciliation``, and from then on only an operator can refund it.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
import enum
import logging

from sqlalchemy import and_, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from royalty_ledger.features.earnings.services import credit_balance
from royalty_ledger.features.personas.services import get_owned_persona
from royalty_ledger.platform import events
from royalty_ledger.platform.context import LedgerContext
from royalty_ledger.platform.db.models import Persona, Withdrawal
from royalty_ledger.platform.errors import (
    ConflictError,
    InsufficientFundsError,
    NotFoundError,
    PaymentRejectedError,
    PendingReconciliationError,
    ValidationError,
)
from royalty_ledger.platform.services.chain import Chain, chain_of
from royalty_ledger.platform.services.payments import PaymentOutcomeUnknown, PaymentRejected

logger = logging.getLogger(__name__)


class WithdrawalStatus(str, enum.Enum):
    RESERVED = "reserved"
    COMPLETED = "completed"
    REFUNDED = "refunded"
    PENDING_RECONCILIATION = "pending_reconciliation"


OPEN_STATUSES = (WithdrawalStatus.RESERVED.value, WithdrawalStatus.PENDING_RECONCILIATION.value)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _awaiting_reconciliation(ctx: LedgerContext, now: datetime):
    """Withdrawals no request is still executing: parked ones, and reservations left behind by a crash."""
    stale_before = now - timedelta(seconds=ctx.settings.withdrawal_stale_after_seconds)
    return or_(
        Withdrawal.status == WithdrawalStatus.PENDING_RECONCILIATION.value,
        and_(Withdrawal.status == WithdrawalStatus.RESERVED.value, Withdrawal.updated_at < stale_before),
    )


def persona_chains(persona: Persona) -> set[Chain]:
    chains = set()
    if persona.wallet_address:
        chains.add(Chain.SUI)
    if persona.stx_address:
        chains.add(Chain.STACKS)
    return chains


def _destination_chain(persona: Persona, destination_address: str) -> Chain:
    chains = persona_chains(persona)
    if not chains:
        raise ValidationError("Persona has no wallet to withdraw from")

    chain = chain_of((destination_address or "").strip())
    if chain is None:
        raise ValidationError("Invalid destination address")
    if chain not in chains:
        raise ValidationError(f"Destination must be a {' or '.join(sorted(c.value for c in chains))} address")
    return chain


async def _reserve(
    session: AsyncSession,
    *,
    persona_id: str,
    account_id: str,
    destination_address: str,
    amount: int,
) -> Withdrawal:
    persona = await get_owned_persona(session, persona_id, account_id)
    if persona.is_placeholder:
        raise ValidationError("Placeholder funds must be resolved before they can be withdrawn")
    chain = _destination_chain(persona, destination_address)

    # Check and debit in one statement; a concurrent withdrawal sees the new balance.
    debited = await session.execute(
        update(Persona)
        .where(Persona.id == persona.id, Persona.is_active.is_(True), Persona.balance >= amount)
        .values(balance=Persona.balance - amount)
        .returning(Persona.balance)
    )
    if debited.scalar_one_or_none() is None:
        raise InsufficientFundsError("Insufficient balance")

    withdrawal = Withdrawal(
        persona_id=persona.id,
        destination_address=destination_address.strip(),
        chain=chain.value,
        amount=amount,
        status=WithdrawalStatus.RESERVED.value,
        attempts=1,
    )
    session.add(withdrawal)
    await session.flush()
    return withdrawal


async def _close(ctx: LedgerContext, withdrawal_id: str, condition, values: dict, *, refund: bool = False) -> Withdrawal | None:
    async with ctx.sessionmaker() as session:
        async with session.begin():
            result = await session.execute(
                update(Withdrawal)
                .where(Withdrawal.id == withdrawal_id, condition)
                .values(**values, updated_at=_utcnow())
            )
            if result.rowcount != 1:
                return None
            withdrawal = await session.get(Withdrawal, withdrawal_id, populate_existing=True)
            if refund:
                await credit_balance(session, withdrawal.persona_id, withdrawal.amount)
    return withdrawal


async def _settle(ctx: LedgerContext, withdrawal_id: str, *, tx_ref: str, condition=None) -> Withdrawal:
    withdrawal = await _close(
        ctx,
        withdrawal_id,
        Withdrawal.status.in_(OPEN_STATUSES) if condition is None else condition,
        {"status": WithdrawalStatus.COMPLETED.value, "tx_hash": tx_ref, "error": None},
    )
    if withdrawal is None:
        raise ConflictError("Withdrawal is no longer open")

    logger.info("Withdrawal %s completed: %d to %s (%s)", withdrawal.id, withdrawal.amount, withdrawal.destination_address, tx_ref)
    await ctx.events.publish(
        events.WITHDRAWAL_COMPLETED,
        {"withdrawal_id": withdrawal.id, "persona_id": withdrawal.persona_id, "amount": withdrawal.amount, "tx_hash": tx_ref},
    )
    return withdrawal


async def _refund(ctx: LedgerContext, withdrawal_id: str, *, reason: str, condition=None) -> Withdrawal:
    withdrawal = await _close(
        ctx,
        withdrawal_id,
        Withdrawal.status.in_(OPEN_STATUSES) if condition is None else condition,
        {"status": WithdrawalStatus.REFUNDED.value, "error": reason},
        refund=True,
    )
    if withdrawal is None:
        raise ConflictError("Withdrawal is no longer open")

    logger.info("Withdrawal %s refunded: %s", withdrawal.id, reason)
    await ctx.events.publish(
        events.WITHDRAWAL_REFUNDED,
        {"withdrawal_id": withdrawal.id, "persona_id": withdrawal.persona_id, "amount": withdrawal.amount, "reason": reason},
    )
    return withdrawal


async def _park(ctx: LedgerContext, withdrawal_id: str, *, reason: str) -> None:
    async with ctx.sessionmaker() as session:
        async with session.begin():
            await session.execute(
                update(Withdrawal)
                .where(Withdrawal.id == withdrawal_id, Withdrawal.status.in_(OPEN_STATUSES))
                .values(status=WithdrawalStatus.PENDING_RECONCILIATION.value, error=reason, updated_at=_utcnow())
            )

    logger.warning("Withdrawal %s parked for reconciliation: %s", withdrawal_id, reason)
    await ctx.events.publish(events.WITHDRAWAL_PENDING_RECONCILIATION, {"withdrawal_id": withdrawal_id, "reason": reason})


async def _execute(ctx: LedgerContext, withdrawal: Withdrawal, *, first_attempt: bool) -> Withdrawal:
    try:
        tx_ref = await ctx.payments.execute(
            destination_address=withdrawal.destination_address,
            amount=withdrawal.amount,
            chain=withdrawal.chain,
            idempotency_key=withdrawal.id,
        )
    except PaymentRejected as exc:
        if first_attempt:
            await _refund(ctx, withdrawal.id, reason=str(exc))
            raise PaymentRejectedError(f"Withdrawal failed: {exc}") from exc
        # An earlier attempt may have executed; a failed retry says nothing about it.
        await _park(ctx, withdrawal.id, reason=f"retry rejected: {exc}")
        raise PendingReconciliationError(
            "Retry was rejected but an earlier attempt may have gone through; it will be reconciled",
            withdrawal_id=withdrawal.id,
        ) from exc
    except PaymentOutcomeUnknown as exc:
        await _park(ctx, withdrawal.id, reason=str(exc))
        raise PendingReconciliationError(
            "Withdrawal submitted but not confirmed; it will be reconciled",
            withdrawal_id=withdrawal.id,
        ) from exc

    return await _settle(ctx, withdrawal.id, tx_ref=tx_ref)


async def withdraw(
    ctx: LedgerContext,
    *,
    persona_id: str,
    account_id: str,
    destination_address: str,
    amount: int,
) -> Withdrawal:
    """Move ``amount`` of a persona's spendable balance off-platform.

    Returns the completed withdrawal; its ``tx_hash`` is the transaction
    reference from the payment service.
    """
    if not isinstance(amount, int) or isinstance(amount, bool) or amount <= 0:
        raise ValidationError("Amount must be a positive integer of minor units")

    async with ctx.sessionmaker() as session:
        async with session.begin():
            withdrawal = await _reserve(
                session,
                persona_id=persona_id,
                account_id=account_id,
                destination_address=destination_address,
                amount=amount,
            )

    logger.info("Reserved %d from persona %s for withdrawal %s", amount, persona_id, withdrawal.id)
    return await _execute(ctx, withdrawal, first_attempt=True)


async def get_withdrawal(ctx: LedgerContext, withdrawal_id: str, *, account_id: str | None = None) -> Withdrawal:
    async with ctx.sessionmaker() as session:
        withdrawal = await session.get(Withdrawal, withdrawal_id)
        if withdrawal is None:
            raise NotFoundError("Withdrawal not found")
        if account_id is not None:
            await get_owned_persona(session, withdrawal.persona_id, account_id)
    return withdrawal


async def _not_reconcilable(ctx: LedgerContext, withdrawal_id: str) -> Exception:
    async with ctx.sessionmaker() as session:
        existing = await session.get(Withdrawal, withdrawal_id)
    if existing is None:
        return NotFoundError("Withdrawal not found")
    if existing.status == WithdrawalStatus.RESERVED.value:
        return ConflictError("Withdrawal is still being executed")
    return ConflictError(f"Withdrawal is already {existing.status}")


async def retry_withdrawal(ctx: LedgerContext, withdrawal_id: str) -> Withdrawal:
    """Call the payment service again for a withdrawal whose outcome is unknown.

    The withdrawal ID is reused as the idempotency key, so a transfer that did
    go through the first time is not executed twice. The row goes back to
    ``reserved`` while the call runs, which keeps a concurrent retry or
    reconciliation off it. A retry never refunds.
    """
    async with ctx.sessionmaker() as session:
        async with session.begin():
            result = await session.execute(
                update(Withdrawal)
                .where(Withdrawal.id == withdrawal_id, _awaiting_reconciliation(ctx, _utcnow()))
                .values(
                    status=WithdrawalStatus.RESERVED.value,
                    attempts=Withdrawal.attempts + 1,
                    updated_at=_utcnow(),
                )
            )
            claimed = result.rowcount == 1
            if claimed:
                withdrawal = await session.get(Withdrawal, withdrawal_id, populate_existing=True)
    if not claimed:
        raise await _not_reconcilable(ctx, withdrawal_id)

    logger.info("Retrying withdrawal %s (attempt %d)", withdrawal.id, withdrawal.attempts)
    return await _execute(ctx, withdrawal, first_attempt=False)


async def reconcile_withdrawal(ctx: LedgerContext, withdrawal_id: str, *, executed: bool, tx_ref: str | None = None, reason: str | None = None) -> Withdrawal:
    """Record the outcome an operator established for a withdrawal awaiting reconciliation."""
    if executed and not tx_ref:
        raise ValidationError("A transaction reference is required to confirm a withdrawal")

    condition = _awaiting_reconciliation(ctx, _utcnow())
    try:
        if executed:
            return await _settle(ctx, withdrawal_id, tx_ref=tx_ref, condition=condition)
        return await _refund(ctx, withdrawal_id, reason=reason or "Reconciled as failed", condition=condition)
    except ConflictError:
        raise await _not_reconcilable(ctx, withdrawal_id) from None


async def list_open_withdrawals(ctx: LedgerContext) -> list[Withdrawal]:
    async with ctx.sessionmaker() as session:
        result = await session.execute(
            select(Withdrawal).where(Withdrawal.status.in_(OPEN_STATUSES)).order_by(Withdrawal.created_at)
        )
        return list(result.scalars().all())
