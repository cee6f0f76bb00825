from __future__ import annotations

from datetime import datetime, timezone
import logging
import re

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from royalty_ledger.features.earnings.status import EarningStatus
from royalty_ledger.platform.db.models import Account, Earning, Persona, WalletAlias
from royalty_ledger.platform.db.upsert import insert_or_ignore
from royalty_ledger.platform.errors import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    UsernameExhaustedError,
    ValidationError,
    WalletAlreadyAssignedError,
)
from royalty_ledger.platform.services.chain import is_valid_stacks_address, is_valid_sui_address
from royalty_ledger.platform.services.wallets import WalletGenerator

logger = logging.getLogger(__name__)


PLACEHOLDER_SUFFIX = "-tbd"
USERNAME_MAX_LENGTH = 30

_USERNAME_PATTERN = re.compile(r"^[a-z0-9_-]+$")
_PLACEHOLDER_USERNAME = re.compile(r"-tbd(-\d+)?$")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def sanitize_username(name: str) -> str:
    value = (name or "").lower().strip()
    value = re.sub(r"[^a-z0-9\s-]", "", value)
    value = re.sub(r"\s+", "-", value)
    value = re.sub(r"-+", "-", value)
    value = value.strip("-")
    return value[:USERNAME_MAX_LENGTH]


def placeholder_base_username(name: str) -> str:
    base = sanitize_username(name)
    if len(base) < 3:
        base = f"collab-{base or 'user'}"
    return f"{base}{PLACEHOLDER_SUFFIX}"


def placeholder_username_candidates(name: str, attempts: int) -> list[str]:
    base = placeholder_base_username(name)
    return [base] + [f"{base}-{suffix}" for suffix in range(1, attempts + 1)]


def is_placeholder_username(username: str) -> bool:
    return bool(_PLACEHOLDER_USERNAME.search(username or ""))


def validate_username(username: str) -> str:
    value = (username or "").strip().lower()
    if len(value) < 3:
        raise ValidationError("Username must be at least 3 characters")
    if len(value) > USERNAME_MAX_LENGTH:
        raise ValidationError(f"Username must be at most {USERNAME_MAX_LENGTH} characters")
    if not _USERNAME_PATTERN.match(value):
        raise ValidationError("Username may only contain lowercase letters, numbers, hyphens and underscores")
    if is_placeholder_username(value):
        raise ValidationError("Usernames ending in -tbd are reserved for collaborator placeholders")
    return value


async def create_account(session: AsyncSession) -> Account:
    account = Account()
    session.add(account)
    await session.flush()
    return account


async def get_persona(session: AsyncSession, persona_id: str, *, for_update: bool = False) -> Persona:
    stmt = select(Persona).where(Persona.id == persona_id)
    if for_update:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    result = await session.execute(stmt)
    persona = result.scalar_one_or_none()
    if persona is None:
        raise NotFoundError("Persona not found")
    return persona


async def get_owned_persona(session: AsyncSession, persona_id: str, account_id: str) -> Persona:
    persona = await get_persona(session, persona_id)
    if persona.account_id != account_id:
        raise PermissionDeniedError("You do not own this persona")
    if not persona.is_active:
        raise NotFoundError("Persona not found")
    return persona


async def find_active_persona_by_wallet(session: AsyncSession, address: str) -> Persona | None:
    result = await session.execute(
        select(Persona)
        .where(
            (Persona.wallet_address == address) | (Persona.stx_address == address),
            Persona.is_active.is_(True),
        )
        .limit(1)
    )
    return result.scalar_one_or_none()


async def find_alias_target(session: AsyncSession, address: str) -> Persona | None:
    result = await session.execute(
        select(Persona)
        .join(WalletAlias, WalletAlias.resolved_persona_id == Persona.id)
        .where(WalletAlias.alias_wallet == address, Persona.is_active.is_(True))
    )
    return result.scalar_one_or_none()


async def wallet_in_use(session: AsyncSession, address: str) -> bool:
    result = await session.execute(
        select(Persona.id).where((Persona.wallet_address == address) | (Persona.stx_address == address)).limit(1)
    )
    return result.scalar_one_or_none() is not None


async def username_available(session: AsyncSession, username: str) -> bool:
    result = await session.execute(select(Persona.id).where(Persona.username == username).limit(1))
    return result.scalar_one_or_none() is None


async def create_persona(
    session: AsyncSession,
    *,
    account_id: str,
    username: str,
    display_name: str | None = None,
    wallet_address: str | None = None,
    stx_address: str | None = None,
) -> Persona:
    username = validate_username(username)

    if wallet_address is not None and not is_valid_sui_address(wallet_address):
        raise ValidationError("Invalid wallet address")
    if stx_address is not None and not is_valid_stacks_address(stx_address):
        raise ValidationError("Invalid Stacks address")

    account = await session.get(Account, account_id)
    if account is None or account.deleted_at is not None:
        raise NotFoundError("Account not found")

    active_count = await session.execute(
        select(func.count()).select_from(Persona).where(Persona.account_id == account_id, Persona.is_active.is_(True))
    )
    is_first = int(active_count.scalar() or 0) == 0

    for address in (wallet_address, stx_address):
        if address is not None and await wallet_in_use(session, address):
            raise ConflictError("Wallet already belongs to another persona")

    persona_id = await insert_or_ignore(
        session,
        Persona,
        {
            "account_id": account_id,
            "username": username,
            "display_name": (display_name or username).strip(),
            "wallet_address": wallet_address,
            "stx_address": stx_address,
            "is_default": is_first,
            "is_active": True,
            "is_placeholder": False,
            "balance": 0,
        },
        conflict_columns=["username"],
        returning=Persona.id,
    )
    if persona_id is None:
        raise ConflictError("Username already taken")

    logger.info("Created persona @%s for account %s", username, account_id)
    return await get_persona(session, persona_id)


async def create_placeholder_persona(
    session: AsyncSession,
    wallets: WalletGenerator,
    *,
    account_id: str,
    name: str,
    attempts: int = 99,
) -> Persona:
    display_name = name.strip()
    if not display_name:
        raise ValidationError("Collaborator name is required")

    created = await wallets.create_wallet()

    for username in placeholder_username_candidates(display_name, attempts):
        persona_id = await insert_or_ignore(
            session,
            Persona,
            {
                "account_id": account_id,
                "username": username,
                "display_name": display_name,
                "wallet_address": created.wallet_address,
                "wallet_key_encrypted": created.encrypted_key,
                "is_default": False,
                "is_active": True,
                "is_placeholder": True,
                "balance": 0,
            },
            conflict_columns=["username"],
            returning=Persona.id,
        )
        if persona_id is not None:
            logger.info("Created placeholder persona @%s for collaborator %r", username, display_name)
            return await get_persona(session, persona_id)

    raise UsernameExhaustedError(f"Could not generate a unique username for {display_name!r}")


async def assign_wallet(
    session: AsyncSession,
    wallets: WalletGenerator,
    *,
    persona_id: str,
    account_id: str,
) -> Persona:
    persona = await get_owned_persona(session, persona_id, account_id)
    if persona.wallet_address:
        raise WalletAlreadyAssignedError("Persona already has a wallet")

    created = await wallets.create_wallet()
    result = await session.execute(
        update(Persona)
        .where(Persona.id == persona_id, Persona.wallet_address.is_(None))
        .values(wallet_address=created.wallet_address, wallet_key_encrypted=created.encrypted_key)
    )
    if result.rowcount != 1:
        raise WalletAlreadyAssignedError("Persona already has a wallet")

    logger.info("Assigned wallet %s to persona @%s", created.wallet_address, persona.username)
    return await get_persona(session, persona_id, for_update=True)


async def deactivate_persona(session: AsyncSession, *, persona_id: str, account_id: str) -> bool:
    """Soft-delete a persona; returns True when the account went with it."""
    persona = await get_owned_persona(session, persona_id, account_id)
    persona = await get_persona(session, persona.id, for_update=True)

    held = await session.execute(
        select(func.count())
        .select_from(Earning)
        .where(Earning.persona_id == persona.id, Earning.status == EarningStatus.HELD_IN_TREASURY.value)
    )
    if persona.balance > 0 or int(held.scalar() or 0) > 0:
        raise ConflictError("Persona still has funds; withdraw or resolve them first")

    now = _utcnow()
    persona.is_active = False
    persona.deactivated_at = now
    was_default = persona.is_default
    persona.is_default = False
    await session.flush()

    remaining = await session.execute(
        select(Persona)
        .where(Persona.account_id == account_id, Persona.is_active.is_(True))
        .order_by(Persona.created_at)
    )
    others = list(remaining.scalars().all())

    if not others:
        account = await session.get(Account, account_id)
        if account is not None:
            account.deleted_at = now
        logger.info("Deleted persona @%s and its account %s", persona.username, account_id)
        return True

    if was_default:
        human = [p for p in others if not p.is_placeholder]
        (human or others)[0].is_default = True

    logger.info("Deleted persona @%s", persona.username)
    return False
