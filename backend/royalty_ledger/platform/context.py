from __future__ import annotations

from dataclasses import dataclass

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from royalty_ledger.platform.config import Settings
from royalty_ledger.platform.db.session import build_engine, build_sessionmaker
from royalty_ledger.platform.events import EventPublisher
from royalty_ledger.platform.redis import build_redis
from royalty_ledger.platform.services.catalog import ContentCatalog
from royalty_ledger.platform.services.payments import PaymentExecutionClient
from royalty_ledger.platform.services.wallets import WalletGenerator


@dataclass
class LedgerContext:
    """Everything a ledger operation needs, built once per process."""

    settings: Settings
    engine: AsyncEngine
    sessionmaker: async_sessionmaker[AsyncSession]
    catalog: ContentCatalog
    payments: PaymentExecutionClient
    events: EventPublisher
    wallets: WalletGenerator

    @classmethod
    def from_settings(cls, settings: Settings) -> "LedgerContext":
        engine = build_engine(settings.database_url, echo=settings.database_echo)
        return cls(
            settings=settings,
            engine=engine,
            sessionmaker=build_sessionmaker(engine),
            catalog=ContentCatalog(),
            payments=PaymentExecutionClient(
                base_url=settings.payment_service_url or "",
                api_key=settings.payment_service_api_key,
                timeout_seconds=settings.payment_timeout_seconds,
            ),
            events=EventPublisher(build_redis(settings.redis_url), settings.events_queue_key),
            wallets=WalletGenerator(settings.wallet_encryption_secret),
        )

    async def aclose(self) -> None:
        await self.events.aclose()
        await self.engine.dispose()


def get_ledger(request: Request) -> LedgerContext:
    return request.app.state.ledger
