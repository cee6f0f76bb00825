"""Placeholder resolution: invite-claim, link-to-existing and merge.

All three end in the same fund transition. With the placeholder row locked,
every held earning is marked claimed by the target, their sum is credited to
the target in one conditional update, the placeholder is deactivated and its
wallet becomes an alias for the target so later earnings route straight to it.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
import logging
import secrets

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from royalty_ledger.features.earnings.services import credit_balance, held_balance
from royalty_ledger.features.earnings.status import EarningStatus, ensure_transition
from royalty_ledger.features.personas.services import assign_wallet, get_owned_persona, get_persona
from royalty_ledger.features.splits.beneficiary import ResolvedWallet
from royalty_ledger.features.splits.resolver import SplitType
from royalty_ledger.platform import events
from royalty_ledger.platform.context import LedgerContext
from royalty_ledger.platform.db.models import ClaimToken, Earning, PendingCollaborator, Persona, WalletAlias
from royalty_ledger.platform.db.upsert import insert_or_ignore
from royalty_ledger.platform.errors import (
    AlreadyResolvedError,
    ClaimAlreadyRedeemedError,
    ClaimExpiredError,
    InvariantViolation,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)

logger = logging.getLogger(__name__)


# No 0/O or 1/I/L, so tokens survive being read aloud or retyped.
TOKEN_ALPHABET = "ABCDEFGHJKMNPQRSTUVWXYZ23456789"

CLAIM = "claim"
LINK = "link"
MERGE = "merge"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _aware(value: datetime) -> datetime:
    # SQLite hands back naive datetimes for timezone-aware columns.
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


def generate_token(length: int) -> str:
    return "".join(secrets.choice(TOKEN_ALPHABET) for _ in range(length))


@dataclass(frozen=True)
class ClaimLink:
    token: str
    url: str
    expires_at: datetime
    is_existing: bool


@dataclass(frozen=True)
class ClaimPreview:
    display_name: str
    username: str
    held: int
    content_count: int
    expires_at: datetime
    recipient_name: str | None


@dataclass(frozen=True)
class ResolutionResult:
    placeholder_id: str
    target_persona_id: str
    resolution: str
    amount: int
    earnings_moved: int
    content_rewritten: int = 0


def claim_url(ctx: LedgerContext, token: str) -> str:
    return f"{ctx.settings.app_url.rstrip('/')}/claim/{token}"


async def _owned_placeholder(session: AsyncSession, placeholder_id: str, account_id: str) -> Persona:
    placeholder = await get_persona(session, placeholder_id)
    if placeholder.account_id != account_id:
        raise PermissionDeniedError("You do not own this placeholder")
    if not placeholder.is_placeholder:
        raise ValidationError("Persona is not a placeholder")
    if not placeholder.is_active:
        raise AlreadyResolvedError("Placeholder has already been resolved")
    return placeholder


async def _lock_pair(session: AsyncSession, placeholder_id: str, target_id: str) -> tuple[Persona, Persona]:
    if placeholder_id == target_id:
        raise ValidationError("A placeholder cannot be resolved into itself")

    # Fixed lock order keeps two resolutions touching the same rows from deadlocking.
    locked = {}
    for persona_id in sorted((placeholder_id, target_id)):
        locked[persona_id] = await get_persona(session, persona_id, for_update=True)
    return locked[placeholder_id], locked[target_id]


async def _lock_pending(session: AsyncSession, placeholder_id: str) -> list[PendingCollaborator]:
    # Pending rows are locked before persona rows, matching earning posts for a named collaborator.
    result = await session.execute(
        select(PendingCollaborator)
        .where(PendingCollaborator.resolved_persona_id == placeholder_id)
        .order_by(PendingCollaborator.id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def _transfer_held_funds(
    session: AsyncSession,
    *,
    placeholder_id: str,
    target_id: str,
    resolution: str,
) -> ResolutionResult:
    await _lock_pending(session, placeholder_id)
    placeholder, target = await _lock_pair(session, placeholder_id, target_id)

    if not placeholder.is_placeholder:
        raise ValidationError("Persona is not a placeholder")
    if not placeholder.is_active:
        raise AlreadyResolvedError("Placeholder has already been resolved")
    if not target.is_active or target.is_placeholder:
        raise ValidationError("Funds can only be resolved to an active, real persona")
    if placeholder.balance != 0:
        logger.error("Placeholder %s carries a spendable balance of %d", placeholder.id, placeholder.balance)
        raise InvariantViolation("Placeholder persona has a spendable balance")

    held = await session.execute(
        select(Earning)
        .where(Earning.persona_id == placeholder.id, Earning.status == EarningStatus.HELD_IN_TREASURY.value)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    earnings = list(held.scalars().all())
    total = sum(int(e.amount) for e in earnings)
    if total < 0 or any(e.amount <= 0 for e in earnings):
        logger.error("Placeholder %s holds non-positive earnings", placeholder.id)
        raise InvariantViolation("Held earnings must be positive")

    now = _utcnow()
    if earnings:
        claimed = ensure_transition(EarningStatus.HELD_IN_TREASURY, EarningStatus.CLAIMED)
        moved = await session.execute(
            update(Earning)
            .where(
                Earning.id.in_([e.id for e in earnings]),
                Earning.status == EarningStatus.HELD_IN_TREASURY.value,
            )
            .values(status=claimed.value, resolved_persona_id=target.id, resolved_at=now)
        )
        if moved.rowcount != len(earnings):
            logger.error("Resolution of %s moved %d of %d held earnings", placeholder.id, moved.rowcount, len(earnings))
            raise InvariantViolation("Held earnings changed during resolution")

    before = int(target.balance)
    after = await credit_balance(session, target.id, total) if total else before
    if after != before + total:
        logger.error("Resolution of %s: target balance %d, expected %d", placeholder.id, after, before + total)
        raise InvariantViolation("Resolution would not conserve funds")

    placeholder.is_active = False
    placeholder.is_default = False
    placeholder.deactivated_at = now

    if placeholder.wallet_address:
        alias = await insert_or_ignore(
            session,
            WalletAlias,
            {
                "alias_wallet": placeholder.wallet_address,
                "resolved_persona_id": target.id,
                "resolution": resolution,
                "created_at": now,
            },
            conflict_columns=["alias_wallet"],
            returning=WalletAlias.alias_wallet,
        )
        if alias is None:
            logger.error("Wallet %s of placeholder %s is already aliased", placeholder.wallet_address, placeholder.id)
            raise InvariantViolation("Placeholder wallet is already aliased")

    await session.execute(
        update(PendingCollaborator)
        .where(PendingCollaborator.resolved_persona_id == placeholder.id)
        .values(resolved_persona_id=target.id)
    )

    await session.flush()
    return ResolutionResult(
        placeholder_id=placeholder.id,
        target_persona_id=target.id,
        resolution=resolution,
        amount=total,
        earnings_moved=len(earnings),
    )


async def _announce(ctx: LedgerContext, result: ResolutionResult) -> None:
    logger.info(
        "Resolved placeholder %s into %s by %s: %d across %d earnings",
        result.placeholder_id,
        result.target_persona_id,
        result.resolution,
        result.amount,
        result.earnings_moved,
    )
    await ctx.events.publish(
        events.PLACEHOLDER_RESOLVED,
        {
            "placeholder_id": result.placeholder_id,
            "target_persona_id": result.target_persona_id,
            "resolution": result.resolution,
            "amount": result.amount,
        },
    )


async def generate_claim_link(ctx: LedgerContext, *, placeholder_id: str, account_id: str, recipient_name: str | None = None) -> ClaimLink:
    now = _utcnow()
    async with ctx.sessionmaker() as session:
        async with session.begin():
            placeholder = await _owned_placeholder(session, placeholder_id, account_id)

            result = await session.execute(
                select(ClaimToken)
                .where(ClaimToken.placeholder_persona_id == placeholder.id, ClaimToken.redeemed_at.is_(None))
                .order_by(ClaimToken.created_at.desc())
            )
            for existing in result.scalars().all():
                if _aware(existing.expires_at) > now:
                    return ClaimLink(
                        token=existing.token,
                        url=claim_url(ctx, existing.token),
                        expires_at=_aware(existing.expires_at),
                        is_existing=True,
                    )

            expires_at = now + timedelta(days=ctx.settings.claim_token_ttl_days)
            token = generate_token(ctx.settings.claim_token_length)
            session.add(
                ClaimToken(
                    token=token,
                    placeholder_persona_id=placeholder.id,
                    account_id=account_id,
                    recipient_name=recipient_name or placeholder.display_name,
                    expires_at=expires_at,
                    created_at=now,
                )
            )

    logger.info("Generated claim link for placeholder @%s", placeholder.username)
    return ClaimLink(token=token, url=claim_url(ctx, token), expires_at=expires_at, is_existing=False)


async def _get_token(session: AsyncSession, token: str, *, for_update: bool = False) -> ClaimToken:
    stmt = select(ClaimToken).where(ClaimToken.token == token)
    if for_update:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    result = await session.execute(stmt)
    claim = result.scalar_one_or_none()
    if claim is None:
        raise NotFoundError("Invalid claim link")
    return claim


def _check_redeemable(claim: ClaimToken, now: datetime) -> None:
    if claim.redeemed_at is not None:
        raise ClaimAlreadyRedeemedError("This claim link has already been used")
    if _aware(claim.expires_at) < now:
        raise ClaimExpiredError("This claim link has expired")


async def preview_claim(ctx: LedgerContext, token: str) -> ClaimPreview:
    async with ctx.sessionmaker() as session:
        claim = await _get_token(session, token)
        _check_redeemable(claim, _utcnow())

        placeholder = await get_persona(session, claim.placeholder_persona_id)
        held = await held_balance(session, placeholder.id)
        content = await ctx.catalog.content_referencing(session, placeholder.account_id, placeholder.wallet_address) if placeholder.wallet_address else []
        named = await session.execute(
            select(func.count(func.distinct(PendingCollaborator.content_id))).where(
                PendingCollaborator.resolved_persona_id == placeholder.id
            )
        )

    return ClaimPreview(
        display_name=placeholder.display_name,
        username=placeholder.username,
        held=held,
        content_count=max(len(content), int(named.scalar() or 0)),
        expires_at=_aware(claim.expires_at),
        recipient_name=claim.recipient_name,
    )


async def redeem_claim(ctx: LedgerContext, *, token: str, persona_id: str, account_id: str) -> ResolutionResult:
    """Redeem a claim link exactly once on behalf of ``persona_id``."""
    now = _utcnow()
    async with ctx.sessionmaker() as session:
        async with session.begin():
            claim = await _get_token(session, token, for_update=True)
            _check_redeemable(claim, now)

            if claim.account_id == account_id:
                raise ValidationError("You cannot claim your own placeholder; merge it instead")

            await get_owned_persona(session, persona_id, account_id)

            marked = await session.execute(
                update(ClaimToken)
                .where(ClaimToken.id == claim.id, ClaimToken.redeemed_at.is_(None))
                .values(redeemed_at=now, redeemed_by_persona_id=persona_id)
            )
            if marked.rowcount != 1:
                raise ClaimAlreadyRedeemedError("This claim link has already been used")

            result = await _transfer_held_funds(
                session,
                placeholder_id=claim.placeholder_persona_id,
                target_id=persona_id,
                resolution=CLAIM,
            )

    await _announce(ctx, result)
    return result


async def link_placeholder(ctx: LedgerContext, *, placeholder_id: str, target_persona_id: str, account_id: str) -> ResolutionResult:
    async with ctx.sessionmaker() as session:
        async with session.begin():
            await _owned_placeholder(session, placeholder_id, account_id)

            target = await get_persona(session, target_persona_id)
            if target.account_id == account_id:
                raise ValidationError("That persona is yours; merge the placeholder instead")
            if target.is_placeholder or not target.is_active:
                raise ValidationError("Placeholders can only be linked to an active, real persona")

            result = await _transfer_held_funds(
                session,
                placeholder_id=placeholder_id,
                target_id=target.id,
                resolution=LINK,
            )

    await _announce(ctx, result)
    return result


async def merge_placeholder(ctx: LedgerContext, *, placeholder_id: str, owner_persona_id: str, account_id: str) -> ResolutionResult:
    """Fold a placeholder into one of the caller's own personas.

    Besides moving held funds, every split entry that pays the placeholder is
    rewritten to pay the owner's persona directly.
    """
    async with ctx.sessionmaker() as session:
        async with session.begin():
            placeholder = await _owned_placeholder(session, placeholder_id, account_id)
            target = await get_owned_persona(session, owner_persona_id, account_id)
            if target.is_placeholder:
                raise ValidationError("Placeholders can only be merged into a real persona")

            pending_rows = await _lock_pending(session, placeholder.id)

            if not target.wallet_address:
                target = await assign_wallet(session, ctx.wallets, persona_id=target.id, account_id=account_id)

            result = await _transfer_held_funds(
                session,
                placeholder_id=placeholder.id,
                target_id=target.id,
                resolution=MERGE,
            )

            rewritten = 0
            if placeholder.wallet_address:
                for content in await ctx.catalog.content_referencing(session, account_id, placeholder.wallet_address):
                    rewritten += await ctx.catalog.rewrite_split_beneficiary(
                        session, content.id, placeholder.wallet_address, target.wallet_address
                    )

            for row in pending_rows:
                replaced = await ctx.catalog.replace_entry(
                    session,
                    row.content_id,
                    SplitType(row.split_type),
                    row.position,
                    ResolvedWallet(address=target.wallet_address),
                    expected_name=row.name,
                )
                rewritten += int(replaced)

    result = replace(result, content_rewritten=rewritten)
    await _announce(ctx, result)
    return result
