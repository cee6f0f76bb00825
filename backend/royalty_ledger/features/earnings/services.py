"""Escrow ledger: posting earnings and reading balances.

An earning is routed when it is posted. A wallet owned by an active persona
(directly or through a wallet alias) is paid straight into that persona's
balance; a placeholder persona only accrues held earnings, which the
resolution flows later move to a real persona. Anything that cannot be routed
is still written down as ``unresolved`` so no amount is ever dropped.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
import hashlib
import logging

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from royalty_ledger.features.earnings.status import EarningSource, EarningStatus, parse_source
from royalty_ledger.features.personas.services import (
    create_placeholder_persona,
    find_active_persona_by_wallet,
    find_alias_target,
    get_persona,
)
from royalty_ledger.features.splits.beneficiary import (
    AiBeneficiary,
    Beneficiary,
    Named,
    PlaceholderPersona,
    ResolvedWallet,
    parse_beneficiary,
    to_wire,
)
from royalty_ledger.features.splits.resolver import SplitType
from royalty_ledger.platform import events
from royalty_ledger.platform.context import LedgerContext
from royalty_ledger.platform.db.models import Earning, PendingCollaborator, Persona
from royalty_ledger.platform.db.upsert import insert_or_ignore
from royalty_ledger.platform.errors import IdempotencyConflictError, InvariantViolation, NotFoundError, ValidationError

logger = logging.getLogger(__name__)


HISTORY_LIMIT = 50


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Balance:
    persona_id: str
    spendable: int
    held: int


@dataclass
class PostedEarning:
    earning: Earning
    created: bool
    materialized_placeholder_id: str | None = None


@dataclass
class SaleResult:
    content_id: str
    earnings: list[Earning] = field(default_factory=list)
    retained: int = 0


@dataclass(frozen=True)
class _Route:
    persona: Persona | None
    status: EarningStatus
    materialized: bool = False


class _DuplicateDelivery(Exception):
    """Raised inside a posting transaction to discard it in favour of an earlier post."""


def earning_key(source_id: str | None, source_type: EarningSource, payee_ref: str, tx_ref: str | None) -> str:
    raw = "|".join([source_id or "", source_type.value, payee_ref, tx_ref or ""])
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def split_slot(split_type: SplitType, position: int) -> str:
    return f"slot:{split_type.value}:{position}"


async def _find_by_key(session: AsyncSession, key: str) -> Earning | None:
    result = await session.execute(select(Earning).where(Earning.idempotency_key == key))
    return result.scalar_one_or_none()


def _ensure_same_amount(existing: Earning, amount: int) -> None:
    if existing.amount != amount:
        raise IdempotencyConflictError(
            f"Earning already posted for this sale with amount {existing.amount}, not {amount}"
        )


async def credit_balance(session: AsyncSession, persona_id: str, amount: int) -> int:
    result = await session.execute(
        update(Persona)
        .where(Persona.id == persona_id)
        .values(balance=Persona.balance + amount)
        .returning(Persona.balance)
    )
    balance = result.scalar_one_or_none()
    if balance is None:
        raise InvariantViolation(f"Persona {persona_id} vanished while being credited")
    return int(balance)


async def _route_to_persona(session: AsyncSession, persona: Persona) -> _Route:
    if persona.is_placeholder:
        # Serializes with resolution, which holds the same row lock.
        persona = await get_persona(session, persona.id, for_update=True)
        if persona.is_active:
            return _Route(persona=persona, status=EarningStatus.HELD_IN_TREASURY)
    elif persona.is_active:
        return _Route(persona=persona, status=EarningStatus.PAID)

    target = await find_alias_target(session, persona.wallet_address) if persona.wallet_address else None
    if target is None or target.is_placeholder:
        return _Route(persona=None, status=EarningStatus.UNRESOLVED)
    return _Route(persona=target, status=EarningStatus.PAID)


async def _route_wallet(session: AsyncSession, address: str) -> _Route:
    persona = await find_active_persona_by_wallet(session, address)
    if persona is None:
        persona = await find_alias_target(session, address)
    if persona is None:
        return _Route(persona=None, status=EarningStatus.UNRESOLVED)
    return await _route_to_persona(session, persona)


async def _route_named(ctx: LedgerContext, session: AsyncSession, name: str, source_id: str | None) -> _Route:
    content = await ctx.catalog.get_content(session, source_id) if source_id else None
    if content is None:
        logger.warning("No content %s to resolve pending collaborator %r against", source_id, name)
        return _Route(persona=None, status=EarningStatus.UNRESOLVED)

    # Pending rows before persona rows, the same order resolution locks them in.
    result = await session.execute(
        select(PendingCollaborator)
        .where(PendingCollaborator.content_id == content.id, PendingCollaborator.name == name)
        .order_by(PendingCollaborator.id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    rows = list(result.scalars().all())

    resolved_id = next((row.resolved_persona_id for row in rows if row.resolved_persona_id), None)
    if resolved_id is None and not rows:
        # Posted without an upload-time row; reuse whoever an earlier post created.
        earlier = await session.execute(
            select(Earning.persona_id)
            .where(
                Earning.source_id == content.id,
                Earning.beneficiary_ref == to_wire(Named(name=name)),
                Earning.persona_id.is_not(None),
            )
            .order_by(Earning.created_at)
            .limit(1)
        )
        resolved_id = earlier.scalar_one_or_none()
    if resolved_id is not None:
        return await _route_to_persona(session, await get_persona(session, resolved_id))

    account_id = await ctx.catalog.uploader_account_id(session, content)
    if account_id is None:
        return _Route(persona=None, status=EarningStatus.UNRESOLVED)

    placeholder = await create_placeholder_persona(
        session,
        ctx.wallets,
        account_id=account_id,
        name=name,
        attempts=ctx.settings.username_suffix_attempts,
    )

    now = _utcnow()
    for row in rows:
        row.status = "resolved"
        row.resolved_persona_id = placeholder.id
        row.resolved_at = now

    return _Route(persona=placeholder, status=EarningStatus.HELD_IN_TREASURY, materialized=True)


async def _route(ctx: LedgerContext, session: AsyncSession, beneficiary: Beneficiary, source_id: str | None) -> _Route:
    if isinstance(beneficiary, ResolvedWallet):
        return await _route_wallet(session, beneficiary.address)
    if isinstance(beneficiary, PlaceholderPersona):
        persona = await session.get(Persona, beneficiary.persona_id)
        if persona is None:
            return await _route_wallet(session, beneficiary.address)
        return await _route_to_persona(session, persona)
    if isinstance(beneficiary, Named):
        return await _route_named(ctx, session, beneficiary.name, source_id)
    raise ValidationError("The AI share is retained by the platform and cannot be posted")


def _coerce_beneficiary(ctx: LedgerContext, beneficiary: Beneficiary | str) -> Beneficiary:
    if isinstance(beneficiary, str):
        beneficiary = parse_beneficiary(beneficiary, ai_label=ctx.settings.ai_beneficiary)
    if isinstance(beneficiary, AiBeneficiary):
        raise ValidationError("The AI share is retained by the platform and cannot be posted")
    return beneficiary


async def post_earning(
    ctx: LedgerContext,
    *,
    beneficiary: Beneficiary | str,
    amount: int,
    source_type: str | EarningSource,
    source_id: str | None,
    tx_ref: str | None = None,
    slot: str | None = None,
) -> PostedEarning:
    """Record one beneficiary's share of one revenue event.

    Re-posting the same (source, source type, beneficiary, transaction) returns
    the original earning and changes nothing; re-posting it with a different
    amount is an :class:`IdempotencyConflictError`.

    ``slot`` names the split entry a sale share comes from. When given it
    replaces the beneficiary in the idempotency key, because resolving a
    placeholder rewrites the entry's beneficiary but never its slot.
    """
    if not isinstance(amount, int) or isinstance(amount, bool) or amount <= 0:
        raise ValidationError("Amount must be a positive integer of minor units")

    source = source_type if isinstance(source_type, EarningSource) else parse_source(source_type)
    parsed = _coerce_beneficiary(ctx, beneficiary)
    beneficiary_ref = to_wire(parsed)
    key = earning_key(source_id, source, slot or beneficiary_ref, tx_ref)

    try:
        async with ctx.sessionmaker() as session:
            async with session.begin():
                existing = await _find_by_key(session, key)
                if existing is not None:
                    _ensure_same_amount(existing, amount)
                    return PostedEarning(earning=existing, created=False)

                route = await _route(ctx, session, parsed, source_id)

                earning_id = await insert_or_ignore(
                    session,
                    Earning,
                    {
                        "idempotency_key": key,
                        "persona_id": route.persona.id if route.persona is not None else None,
                        "beneficiary_ref": beneficiary_ref,
                        "amount": amount,
                        "source_type": source.value,
                        "source_id": source_id,
                        "status": route.status.value,
                        "tx_hash": tx_ref,
                        "created_at": _utcnow(),
                    },
                    conflict_columns=["idempotency_key"],
                    returning=Earning.id,
                )
                if earning_id is None:
                    raise _DuplicateDelivery()

                if route.status is EarningStatus.PAID:
                    await credit_balance(session, route.persona.id, amount)

                earning = await session.get(Earning, earning_id)
    except _DuplicateDelivery:
        async with ctx.sessionmaker() as session:
            existing = await _find_by_key(session, key)
        if existing is None:
            raise InvariantViolation("Conflicting earning disappeared after a duplicate delivery")
        _ensure_same_amount(existing, amount)
        return PostedEarning(earning=existing, created=False)

    if route.status is EarningStatus.UNRESOLVED:
        logger.warning("Earning %s of %d for %s could not be routed; held as unresolved", earning.id, amount, beneficiary_ref)
    else:
        logger.info(
            "Posted earning %s: %d to persona %s (%s)",
            earning.id,
            amount,
            route.persona.id,
            route.status.value,
        )

    materialized_id = route.persona.id if route.materialized else None
    if materialized_id is not None:
        logger.info("Materialized placeholder persona @%s for %s", route.persona.username, beneficiary_ref)
        await ctx.events.publish(
            events.PLACEHOLDER_MATERIALIZED,
            {"persona_id": materialized_id, "account_id": route.persona.account_id, "content_id": source_id},
        )

    await ctx.events.publish(
        events.EARNING_POSTED,
        {
            "earning_id": earning.id,
            "persona_id": earning.persona_id,
            "amount": earning.amount,
            "status": earning.status,
            "source_type": earning.source_type,
            "source_id": earning.source_id,
        },
    )

    return PostedEarning(earning=earning, created=True, materialized_placeholder_id=materialized_id)


async def record_sale(
    ctx: LedgerContext,
    *,
    content_id: str,
    composition_amount: int,
    production_amount: int,
    source_type: str | EarningSource,
    tx_ref: str | None = None,
) -> SaleResult:
    """Post one earning per split entry, each group against its own amount."""
    if composition_amount < 0 or production_amount < 0:
        raise ValidationError("Sale amounts must not be negative")

    async with ctx.sessionmaker() as session:
        groups = await ctx.catalog.get_splits(session, content_id)

    sale = SaleResult(content_id=content_id)
    for split_type, group_amount in ((SplitType.COMPOSITION, composition_amount), (SplitType.PRODUCTION, production_amount)):
        posted = 0
        for position, entry in enumerate(groups[split_type]):
            share = group_amount * entry.percentage // 100
            if isinstance(entry.beneficiary, AiBeneficiary) or share <= 0:
                continue

            result = await post_earning(
                ctx,
                beneficiary=entry.beneficiary,
                amount=share,
                source_type=source_type,
                source_id=content_id,
                tx_ref=tx_ref,
                slot=split_slot(split_type, position),
            )
            sale.earnings.append(result.earning)
            posted += share

        sale.retained += group_amount - posted

    return sale


async def held_balance(session: AsyncSession, persona_id: str) -> int:
    result = await session.execute(
        select(func.coalesce(func.sum(Earning.amount), 0)).where(
            Earning.persona_id == persona_id,
            Earning.status == EarningStatus.HELD_IN_TREASURY.value,
        )
    )
    return int(result.scalar() or 0)


async def get_balance(ctx: LedgerContext, persona_id: str) -> Balance:
    async with ctx.sessionmaker() as session:
        persona = await session.get(Persona, persona_id)
        if persona is None:
            raise NotFoundError("Persona not found")
        held = await held_balance(session, persona_id)
    return Balance(persona_id=persona_id, spendable=int(persona.balance), held=held)


async def list_earnings(ctx: LedgerContext, persona_id: str, *, limit: int = HISTORY_LIMIT) -> list[Earning]:
    async with ctx.sessionmaker() as session:
        result = await session.execute(
            select(Earning)
            .where(or_(Earning.persona_id == persona_id, Earning.resolved_persona_id == persona_id))
            .order_by(Earning.created_at.desc(), Earning.id)
            .limit(limit)
        )
        return list(result.scalars().all())


@dataclass(frozen=True)
class TreasuryHolding:
    persona_id: str
    label: str
    username: str
    wallet_address: str | None
    held: int
    claimed: int
    content_ids: list[str]
    is_resolved: bool
    claimed_at: datetime | None


async def list_treasury(ctx: LedgerContext, account_id: str) -> list[TreasuryHolding]:
    """Holdings of every placeholder the account created, resolved ones included."""
    async with ctx.sessionmaker() as session:
        result = await session.execute(
            select(Persona)
            .where(Persona.account_id == account_id, Persona.is_placeholder.is_(True))
            .order_by(Persona.created_at)
        )
        placeholders = list(result.scalars().all())
        if not placeholders:
            return []

        ids = [p.id for p in placeholders]
        totals = await session.execute(
            select(Earning.persona_id, Earning.status, func.sum(Earning.amount), func.max(Earning.resolved_at))
            .where(Earning.persona_id.in_(ids))
            .group_by(Earning.persona_id, Earning.status)
        )
        sources = await session.execute(
            select(Earning.persona_id, Earning.source_id).where(Earning.persona_id.in_(ids), Earning.source_id.is_not(None)).distinct()
        )
        named = await session.execute(
            select(PendingCollaborator.resolved_persona_id, PendingCollaborator.content_id)
            .where(PendingCollaborator.resolved_persona_id.in_(ids))
            .distinct()
        )

    held: dict[str, int] = {}
    claimed: dict[str, int] = {}
    claimed_at: dict[str, datetime] = {}
    for persona_id, status, amount, resolved_at in totals.all():
        if status == EarningStatus.HELD_IN_TREASURY.value:
            held[persona_id] = int(amount or 0)
        elif status == EarningStatus.CLAIMED.value:
            claimed[persona_id] = int(amount or 0)
            if resolved_at is not None:
                claimed_at[persona_id] = resolved_at

    content_ids: dict[str, set[str]] = {p.id: set() for p in placeholders}
    for persona_id, source_id in sources.all():
        content_ids[persona_id].add(source_id)
    for persona_id, content_id in named.all():
        if persona_id in content_ids:
            content_ids[persona_id].add(content_id)

    return [
        TreasuryHolding(
            persona_id=p.id,
            label=p.display_name,
            username=p.username,
            wallet_address=p.wallet_address,
            held=held.get(p.id, 0),
            claimed=claimed.get(p.id, 0),
            content_ids=sorted(content_ids[p.id]),
            is_resolved=not p.is_active,
            claimed_at=claimed_at.get(p.id) or (p.deactivated_at if not p.is_active else None),
        )
        for p in placeholders
    ]
