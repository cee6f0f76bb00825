from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from royalty_ledger.features.splits.beneficiary import (
    Beneficiary,
    Named,
    PlaceholderPersona,
    ResolvedWallet,
    address_of,
)
from royalty_ledger.features.splits.resolver import NormalizedSplit, SplitType
from royalty_ledger.platform.db.models import Content, Persona
from royalty_ledger.platform.errors import NotFoundError

logger = logging.getLogger(__name__)


def splits_to_record(composition: list[NormalizedSplit], production: list[NormalizedSplit]) -> dict:
    return {
        SplitType.COMPOSITION.value: [entry.to_record() for entry in composition],
        SplitType.PRODUCTION.value: [entry.to_record() for entry in production],
    }


def splits_from_record(record: dict | None) -> dict[SplitType, list[NormalizedSplit]]:
    record = record or {}
    return {
        split_type: [NormalizedSplit.from_record(item) for item in record.get(split_type.value) or []]
        for split_type in SplitType
    }


class ContentCatalog:
    """Content records and the split definitions they carry.

    Every method runs inside the caller's session so catalog writes commit or
    roll back together with the ledger change that caused them.
    """

    async def get_content(self, session: AsyncSession, content_id: str) -> Content | None:
        return await session.get(Content, content_id)

    async def require_content(self, session: AsyncSession, content_id: str) -> Content:
        content = await self.get_content(session, content_id)
        if content is None:
            raise NotFoundError("Content not found")
        return content

    async def get_splits(self, session: AsyncSession, content_id: str) -> dict[SplitType, list[NormalizedSplit]]:
        content = await self.require_content(session, content_id)
        return splits_from_record(content.splits)

    async def create_content(
        self,
        session: AsyncSession,
        *,
        uploader_persona_id: str,
        title: str,
        composition: list[NormalizedSplit],
        production: list[NormalizedSplit],
        ai_assisted: bool = False,
        ai_generated: bool = False,
    ) -> Content:
        content = Content(
            uploader_persona_id=uploader_persona_id,
            title=title,
            splits=splits_to_record(composition, production),
            ai_assisted=ai_assisted,
            ai_generated=ai_generated,
        )
        session.add(content)
        await session.flush()
        return content

    async def uploader_account_id(self, session: AsyncSession, content: Content) -> str | None:
        result = await session.execute(select(Persona.account_id).where(Persona.id == content.uploader_persona_id))
        return result.scalar_one_or_none()

    async def contents_for_account(self, session: AsyncSession, account_id: str) -> list[Content]:
        result = await session.execute(
            select(Content)
            .join(Persona, Persona.id == Content.uploader_persona_id)
            .where(Persona.account_id == account_id)
            .order_by(Content.created_at)
        )
        return list(result.scalars().all())

    async def content_referencing(self, session: AsyncSession, account_id: str, wallet: str) -> list[Content]:
        return [
            content
            for content in await self.contents_for_account(session, account_id)
            if any(address_of(entry.beneficiary) == wallet for group in splits_from_record(content.splits).values() for entry in group)
        ]

    async def rewrite_split_beneficiary(self, session: AsyncSession, content_id: str, old_wallet: str, new_wallet: str) -> int:
        """Point every split entry paying ``old_wallet`` at ``new_wallet``.

        Returns the number of entries rewritten.
        """
        content = await self.require_content(session, content_id)
        groups = splits_from_record(content.splits)

        rewritten = 0
        for split_type, entries in groups.items():
            updated: list[NormalizedSplit] = []
            for entry in entries:
                if address_of(entry.beneficiary) == old_wallet:
                    entry = NormalizedSplit(beneficiary=ResolvedWallet(address=new_wallet), percentage=entry.percentage, name=entry.name)
                    rewritten += 1
                updated.append(entry)
            groups[split_type] = updated

        if rewritten:
            # JSON columns only notice reassignment, not in-place edits.
            content.splits = splits_to_record(groups[SplitType.COMPOSITION], groups[SplitType.PRODUCTION])
            logger.info("Rewrote %d split entries on content %s", rewritten, content_id)
        return rewritten

    async def replace_entry(
        self,
        session: AsyncSession,
        content_id: str,
        split_type: SplitType,
        position: int,
        beneficiary: Beneficiary,
        *,
        expected_name: str | None = None,
    ) -> bool:
        content = await self.require_content(session, content_id)
        groups = splits_from_record(content.splits)
        entries = groups[split_type]

        if position < 0 or position >= len(entries):
            return False

        current = entries[position]
        if expected_name is not None:
            named = current.beneficiary if isinstance(current.beneficiary, Named) else None
            if named is None or named.name != expected_name:
                return False

        entries[position] = NormalizedSplit(beneficiary=beneficiary, percentage=current.percentage, name=current.name)
        content.splits = splits_to_record(groups[SplitType.COMPOSITION], groups[SplitType.PRODUCTION])
        return True


def placeholder_beneficiary(persona: Persona) -> PlaceholderPersona:
    return PlaceholderPersona(persona_id=persona.id, address=persona.wallet_address)
