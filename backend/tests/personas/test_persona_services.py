import pytest

from royalty_ledger.features.personas.services import (
    assign_wallet,
    create_account,
    create_persona,
    create_placeholder_persona,
    deactivate_persona,
    placeholder_base_username,
    placeholder_username_candidates,
    sanitize_username,
    validate_username,
)
from royalty_ledger.platform.db.models import Account, Persona
from royalty_ledger.platform.errors import (
    ConflictError,
    NotFoundError,
    UsernameExhaustedError,
    ValidationError,
    WalletAlreadyAssignedError,
)
from royalty_ledger.platform.services.chain import is_valid_sui_address

from conftest import WALLET_A, make_persona, reload


def test_sanitize_username() -> None:
    assert sanitize_username("  Alex   Kim! ") == "alex-kim"
    assert sanitize_username("DJ--Snake__") == "dj-snake"
    assert len(sanitize_username("x" * 80)) == 30


def test_placeholder_usernames() -> None:
    assert placeholder_base_username("Alex") == "alex-tbd"
    assert placeholder_base_username("Al") == "collab-al-tbd"
    assert placeholder_base_username("!!") == "collab-user-tbd"
    assert placeholder_username_candidates("Alex", 3) == ["alex-tbd", "alex-tbd-1", "alex-tbd-2", "alex-tbd-3"]


@pytest.mark.parametrize("username", ["ab", "has space", "UPPER!", "alex-tbd", "alex-tbd-4", "x" * 31])
def test_validate_username_rejects(username: str) -> None:
    with pytest.raises(ValidationError):
        validate_username(username)


def test_validate_username_normalizes_case() -> None:
    assert validate_username("Alex_Kim") == "alex_kim"


@pytest.mark.asyncio
async def test_first_persona_is_default(ledger) -> None:
    first = await make_persona(ledger, "first-one")
    second = await make_persona(ledger, "second-one", account_id=first.account_id)

    assert first.is_default is True
    assert second.is_default is False


@pytest.mark.asyncio
async def test_duplicate_username_and_wallet_conflict(ledger) -> None:
    first = await make_persona(ledger, "taken-name", wallet_address=WALLET_A)

    with pytest.raises(ConflictError):
        await make_persona(ledger, "taken-name")
    with pytest.raises(ConflictError):
        await make_persona(ledger, "other-name", wallet_address=WALLET_A)

    assert first.username == "taken-name"


@pytest.mark.asyncio
async def test_placeholder_username_collisions_get_suffixes(ledger) -> None:
    owner = await make_persona(ledger, "owner")

    async with ledger.sessionmaker() as session:
        async with session.begin():
            first = await create_placeholder_persona(session, ledger.wallets, account_id=owner.account_id, name="Alex")
            second = await create_placeholder_persona(session, ledger.wallets, account_id=owner.account_id, name="Alex")

    assert first.username == "alex-tbd"
    assert second.username == "alex-tbd-1"
    assert first.is_placeholder and second.is_placeholder
    assert first.is_default is False
    assert is_valid_sui_address(first.wallet_address)
    assert first.wallet_address != second.wallet_address
    assert first.wallet_key_encrypted


@pytest.mark.asyncio
async def test_placeholder_username_exhaustion(ledger) -> None:
    owner = await make_persona(ledger, "owner")

    async with ledger.sessionmaker() as session:
        async with session.begin():
            await create_placeholder_persona(session, ledger.wallets, account_id=owner.account_id, name="Sam", attempts=1)
            await create_placeholder_persona(session, ledger.wallets, account_id=owner.account_id, name="Sam", attempts=1)

    with pytest.raises(UsernameExhaustedError):
        async with ledger.sessionmaker() as session:
            async with session.begin():
                await create_placeholder_persona(session, ledger.wallets, account_id=owner.account_id, name="Sam", attempts=1)


@pytest.mark.asyncio
async def test_wallet_is_assigned_once(ledger) -> None:
    persona = await make_persona(ledger, "no-wallet")

    async with ledger.sessionmaker() as session:
        async with session.begin():
            updated = await assign_wallet(session, ledger.wallets, persona_id=persona.id, account_id=persona.account_id)

    assert is_valid_sui_address(updated.wallet_address)

    with pytest.raises(WalletAlreadyAssignedError):
        async with ledger.sessionmaker() as session:
            async with session.begin():
                await assign_wallet(session, ledger.wallets, persona_id=persona.id, account_id=persona.account_id)


@pytest.mark.asyncio
async def test_deleting_default_moves_flag(ledger) -> None:
    first = await make_persona(ledger, "main-persona")
    second = await make_persona(ledger, "side-persona", account_id=first.account_id)

    async with ledger.sessionmaker() as session:
        async with session.begin():
            account_deleted = await deactivate_persona(session, persona_id=first.id, account_id=first.account_id)

    assert account_deleted is False
    assert (await reload(ledger, Persona, first.id)).is_active is False
    assert (await reload(ledger, Persona, second.id)).is_default is True


@pytest.mark.asyncio
async def test_deleting_last_persona_deletes_account(ledger) -> None:
    only = await make_persona(ledger, "lonely")

    async with ledger.sessionmaker() as session:
        async with session.begin():
            account_deleted = await deactivate_persona(session, persona_id=only.id, account_id=only.account_id)

    assert account_deleted is True
    assert (await reload(ledger, Account, only.account_id)).deleted_at is not None

    with pytest.raises(NotFoundError):
        async with ledger.sessionmaker() as session:
            async with session.begin():
                await create_persona(session, account_id=only.account_id, username="comeback")


@pytest.mark.asyncio
async def test_persona_with_funds_cannot_be_deleted(ledger) -> None:
    rich = await make_persona(ledger, "rich-persona", balance=500)

    with pytest.raises(ConflictError):
        async with ledger.sessionmaker() as session:
            async with session.begin():
                await deactivate_persona(session, persona_id=rich.id, account_id=rich.account_id)


@pytest.mark.asyncio
async def test_new_account_has_no_personas(ledger) -> None:
    async with ledger.sessionmaker() as session:
        async with session.begin():
            account = await create_account(session)

    assert (await reload(ledger, Account, account.id)).deleted_at is None
