from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from royalty_ledger.features.personas.schemas import (
    AccountCreateRequest,
    AccountCreateResponse,
    PersonaCreateRequest,
    PersonaDeleteResponse,
    PersonaResponse,
    UsernameCheckResponse,
)
from royalty_ledger.features.personas.services import (
    assign_wallet,
    create_account,
    create_persona,
    deactivate_persona,
    username_available,
    validate_username,
)
from royalty_ledger.platform.context import LedgerContext, get_ledger
from royalty_ledger.platform.db.models import Account, Persona
from royalty_ledger.platform.db.session import get_session
from royalty_ledger.platform.errors import ValidationError
from royalty_ledger.platform.security import create_access_token, get_current_account

router = APIRouter()


def persona_response(persona: Persona) -> PersonaResponse:
    return PersonaResponse(
        id=persona.id,
        account_id=persona.account_id,
        username=persona.username,
        display_name=persona.display_name,
        wallet_address=persona.wallet_address,
        stx_address=persona.stx_address,
        is_default=persona.is_default,
        is_active=persona.is_active,
        is_placeholder=persona.is_placeholder,
        balance=int(persona.balance),
        created_at=persona.created_at,
    )


@router.post("/accounts", response_model=AccountCreateResponse)
async def register_account(
    body: AccountCreateRequest,
    session: AsyncSession = Depends(get_session),
) -> AccountCreateResponse:
    account = await create_account(session)
    persona = await create_persona(
        session,
        account_id=account.id,
        username=body.username,
        display_name=body.display_name,
        wallet_address=body.wallet_address,
        stx_address=body.stx_address,
    )
    await session.commit()

    return AccountCreateResponse(
        account_id=account.id,
        access_token=create_access_token(account.id),
        persona=persona_response(persona),
    )


@router.post("/personas", response_model=PersonaResponse)
async def add_persona(
    body: PersonaCreateRequest,
    account: Account = Depends(get_current_account),
    session: AsyncSession = Depends(get_session),
) -> PersonaResponse:
    persona = await create_persona(
        session,
        account_id=account.id,
        username=body.username,
        display_name=body.display_name,
        wallet_address=body.wallet_address,
        stx_address=body.stx_address,
    )
    await session.commit()
    return persona_response(persona)


@router.get("/personas/check-username", response_model=UsernameCheckResponse)
async def check_username(username: str, session: AsyncSession = Depends(get_session)) -> UsernameCheckResponse:
    try:
        normalized = validate_username(username)
    except ValidationError as exc:
        return UsernameCheckResponse(username=username, available=False, reason=exc.detail)

    available = await username_available(session, normalized)
    return UsernameCheckResponse(
        username=normalized,
        available=available,
        reason=None if available else "Username already taken",
    )


@router.post("/personas/{persona_id}/wallet", response_model=PersonaResponse)
async def generate_wallet(
    persona_id: str,
    account: Account = Depends(get_current_account),
    session: AsyncSession = Depends(get_session),
    ledger: LedgerContext = Depends(get_ledger),
) -> PersonaResponse:
    persona = await assign_wallet(session, ledger.wallets, persona_id=persona_id, account_id=account.id)
    await session.commit()
    return persona_response(persona)


@router.delete("/personas/{persona_id}", response_model=PersonaDeleteResponse)
async def delete_persona(
    persona_id: str,
    account: Account = Depends(get_current_account),
    session: AsyncSession = Depends(get_session),
) -> PersonaDeleteResponse:
    account_deleted = await deactivate_persona(session, persona_id=persona_id, account_id=account.id)
    await session.commit()
    return PersonaDeleteResponse(persona_id=persona_id, account_deleted=account_deleted)
