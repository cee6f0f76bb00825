import json
import os

import httpx
import pytest
import pytest_asyncio
from sqlalchemy import text

from royalty_ledger.features.personas.services import create_account, create_persona
from royalty_ledger.platform.config import Settings
from royalty_ledger.platform.context import LedgerContext
from royalty_ledger.platform.db.init_db import create_all
from royalty_ledger.platform.db.models import Persona
from royalty_ledger.platform.db.session import build_engine, build_sessionmaker
from royalty_ledger.platform.events import EventPublisher
from royalty_ledger.platform.services.catalog import ContentCatalog
from royalty_ledger.platform.services.payments import PaymentExecutionClient
from royalty_ledger.platform.services.wallets import WalletGenerator


WALLET_A = "0x" + "a1" * 32
WALLET_B = "0x" + "b2" * 32
WALLET_C = "0x" + "c3" * 32
OUTSIDE_WALLET = "0x" + "d4" * 32


class RecordingRedis:
    def __init__(self) -> None:
        self.pushed: list[tuple[str, dict]] = []

    async def rpush(self, key: str, message: str) -> int:
        self.pushed.append((key, json.loads(message)))
        return len(self.pushed)

    async def aclose(self) -> None:
        return None

    def event_types(self) -> list[str]:
        return [message["type"] for _, message in self.pushed]


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}",
        redis_url=None,
        internal_api_key="internal-test-key",
        payment_service_url=None,
        wallet_encryption_secret="test-wallet-secret",
        app_url="https://app.test",
    )


@pytest.fixture
def redis_log() -> RecordingRedis:
    return RecordingRedis()


def _context(settings: Settings, engine, redis_log: RecordingRedis) -> LedgerContext:
    return LedgerContext(
        settings=settings,
        engine=engine,
        sessionmaker=build_sessionmaker(engine),
        catalog=ContentCatalog(),
        payments=PaymentExecutionClient(base_url="", api_key=None, timeout_seconds=5),
        events=EventPublisher(redis_log, settings.events_queue_key),
        wallets=WalletGenerator(settings.wallet_encryption_secret),
    )


@pytest_asyncio.fixture
async def ledger(test_settings, redis_log):
    engine = build_engine(test_settings.database_url)
    await create_all(engine)
    try:
        yield _context(test_settings, engine, redis_log)
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def pg_ledger(test_settings, redis_log):
    """A ledger on a fresh PostgreSQL schema, where row locks are real."""
    database_url = os.environ.get("DATABASE_URL")
    if not database_url or not database_url.startswith("postgresql"):
        pytest.skip("DATABASE_URL does not point at PostgreSQL")

    engine = build_engine(database_url)
    async with engine.begin() as connection:
        await connection.execute(text("DROP SCHEMA IF EXISTS public CASCADE"))
        await connection.execute(text("CREATE SCHEMA public"))
    await create_all(engine)
    try:
        yield _context(test_settings, engine, redis_log)
    finally:
        await engine.dispose()


def payments_with(handler) -> PaymentExecutionClient:
    return PaymentExecutionClient(
        base_url="http://payments.test",
        api_key="payments-key",
        timeout_seconds=5,
        transport=httpx.MockTransport(handler),
    )


async def make_persona(
    ctx: LedgerContext,
    username: str,
    *,
    account_id: str | None = None,
    wallet_address: str | None = None,
    stx_address: str | None = None,
    balance: int = 0,
) -> Persona:
    async with ctx.sessionmaker() as session:
        async with session.begin():
            if account_id is None:
                account_id = (await create_account(session)).id
            persona = await create_persona(
                session,
                account_id=account_id,
                username=username,
                wallet_address=wallet_address,
                stx_address=stx_address,
            )
            persona.balance = balance
    return persona


async def reload(ctx: LedgerContext, model, pk):
    async with ctx.sessionmaker() as session:
        return await session.get(model, pk)
