from __future__ import annotations

from dataclasses import dataclass, field, replace
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from royalty_ledger.features.personas.services import assign_wallet, create_placeholder_persona, get_owned_persona
from royalty_ledger.features.splits.beneficiary import Named
from royalty_ledger.features.splits.resolver import (
    NormalizedSplit,
    RawSplitEntry,
    SplitType,
    apply_ai_policy,
    resolve_split_group,
)
from royalty_ledger.platform import events
from royalty_ledger.platform.context import LedgerContext
from royalty_ledger.platform.db.models import Content, PendingCollaborator, Persona
from royalty_ledger.platform.errors import ValidationError
from royalty_ledger.platform.services.catalog import placeholder_beneficiary

logger = logging.getLogger(__name__)


@dataclass
class UploadResult:
    content: Content
    composition: list[NormalizedSplit]
    production: list[NormalizedSplit]
    pending_collaborators: list[PendingCollaborator] = field(default_factory=list)
    placeholders: list[Persona] = field(default_factory=list)


def resolve_splits(
    ctx: LedgerContext,
    raw_group: list[RawSplitEntry],
    uploader_wallet: str,
) -> list[NormalizedSplit]:
    return resolve_split_group(raw_group, uploader_wallet, max_entries=ctx.settings.max_split_entries)


async def _materialize(
    ctx: LedgerContext,
    session: AsyncSession,
    entries: list[NormalizedSplit],
    *,
    account_id: str,
    created: list[Persona],
) -> list[NormalizedSplit]:
    materialized: list[NormalizedSplit] = []
    for entry in entries:
        if entry.create_persona and isinstance(entry.beneficiary, Named):
            persona = await create_placeholder_persona(
                session,
                ctx.wallets,
                account_id=account_id,
                name=entry.beneficiary.name,
                attempts=ctx.settings.username_suffix_attempts,
            )
            created.append(persona)
            entry = replace(entry, beneficiary=placeholder_beneficiary(persona), create_persona=False)
        materialized.append(entry)
    return materialized


def _pending_rows(
    content: Content,
    split_type: SplitType,
    entries: list[NormalizedSplit],
    account_id: str,
) -> list[PendingCollaborator]:
    return [
        PendingCollaborator(
            content_id=content.id,
            created_by_account_id=account_id,
            name=entry.beneficiary.name,
            percentage=entry.percentage,
            split_type=split_type.value,
            position=position,
        )
        for position, entry in enumerate(entries)
        if isinstance(entry.beneficiary, Named)
    ]


async def upload_content(
    ctx: LedgerContext,
    *,
    account_id: str,
    uploader_persona_id: str,
    title: str,
    composition: list[RawSplitEntry],
    production: list[RawSplitEntry],
    ai_assisted: bool = False,
    ai_generated: bool = False,
) -> UploadResult:
    """Normalize both split groups and persist the content record.

    Entries flagged ``create_persona`` become placeholder personas right away;
    any other named entry is recorded as a pending collaborator and only gets
    a placeholder when its first earning arrives.
    """
    title = (title or "").strip()
    if not title:
        raise ValidationError("Title is required")

    async with ctx.sessionmaker() as session:
        async with session.begin():
            uploader = await get_owned_persona(session, uploader_persona_id, account_id)
            if uploader.is_placeholder:
                raise ValidationError("Placeholders cannot upload content")
            if not uploader.wallet_address:
                uploader = await assign_wallet(session, ctx.wallets, persona_id=uploader.id, account_id=account_id)

            composition_splits = resolve_splits(ctx, composition, uploader.wallet_address)
            production_splits = apply_ai_policy(
                resolve_splits(ctx, production, uploader.wallet_address),
                ai_assisted=ai_assisted,
                ai_generated=ai_generated,
                ai_label=ctx.settings.ai_beneficiary,
            )

            placeholders: list[Persona] = []
            composition_splits = await _materialize(ctx, session, composition_splits, account_id=account_id, created=placeholders)
            production_splits = await _materialize(ctx, session, production_splits, account_id=account_id, created=placeholders)

            content = await ctx.catalog.create_content(
                session,
                uploader_persona_id=uploader.id,
                title=title,
                composition=composition_splits,
                production=production_splits,
                ai_assisted=ai_assisted,
                ai_generated=ai_generated,
            )

            pending = _pending_rows(content, SplitType.COMPOSITION, composition_splits, account_id)
            pending += _pending_rows(content, SplitType.PRODUCTION, production_splits, account_id)
            session.add_all(pending)
            await session.flush()

    logger.info(
        "Uploaded content %s by @%s with %d pending collaborators and %d new placeholders",
        content.id,
        uploader.username,
        len(pending),
        len(placeholders),
    )
    for persona in placeholders:
        await ctx.events.publish(
            events.PLACEHOLDER_MATERIALIZED,
            {"persona_id": persona.id, "account_id": account_id, "content_id": content.id},
        )

    return UploadResult(
        content=content,
        composition=composition_splits,
        production=production_splits,
        pending_collaborators=pending,
        placeholders=placeholders,
    )
