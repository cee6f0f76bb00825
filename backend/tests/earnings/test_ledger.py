import asyncio

import pytest
from sqlalchemy import select

from royalty_ledger.features.content.services import upload_content
from royalty_ledger.features.earnings.services import (
    get_balance,
    list_earnings,
    list_treasury,
    post_earning,
    record_sale,
)
from royalty_ledger.features.earnings.status import EarningSource, EarningStatus
from royalty_ledger.features.splits.beneficiary import PlaceholderPersona
from royalty_ledger.features.splits.resolver import RawSplitEntry, SplitType
from royalty_ledger.platform import events
from royalty_ledger.platform.db.models import Earning, PendingCollaborator, Persona
from royalty_ledger.platform.errors import IdempotencyConflictError, ValidationError

from conftest import OUTSIDE_WALLET, WALLET_A, WALLET_B, make_persona, reload


TEN_DOLLARS = 10_000_000
THREE_DOLLARS = 3_000_000


async def _earnings(ledger) -> list[Earning]:
    async with ledger.sessionmaker() as session:
        result = await session.execute(select(Earning).order_by(Earning.created_at))
        return list(result.scalars().all())


async def _pending(ledger, content_id: str) -> list[PendingCollaborator]:
    async with ledger.sessionmaker() as session:
        result = await session.execute(select(PendingCollaborator).where(PendingCollaborator.content_id == content_id))
        return list(result.scalars().all())


@pytest.mark.asyncio
async def test_upload_without_splits_pays_uploader(ledger) -> None:
    uploader = await make_persona(ledger, "uploader", wallet_address=WALLET_A)

    result = await upload_content(
        ledger,
        account_id=uploader.account_id,
        uploader_persona_id=uploader.id,
        title="First Track",
        composition=[],
        production=[],
    )

    assert [(s.wallet, s.percentage) for s in result.composition] == [(WALLET_A, 100)]
    assert [(s.wallet, s.percentage) for s in result.production] == [(WALLET_A, 100)]
    assert result.pending_collaborators == []


@pytest.mark.asyncio
async def test_upload_assigns_missing_uploader_wallet(ledger) -> None:
    uploader = await make_persona(ledger, "walletless")

    result = await upload_content(
        ledger,
        account_id=uploader.account_id,
        uploader_persona_id=uploader.id,
        title="Lazy Wallet",
        composition=[],
        production=[],
    )

    refreshed = await reload(ledger, Persona, uploader.id)
    assert refreshed.wallet_address is not None
    assert result.composition[0].wallet == refreshed.wallet_address


@pytest.mark.asyncio
async def test_named_collaborator_materializes_on_first_earning(ledger, redis_log) -> None:
    uploader = await make_persona(ledger, "uploader", wallet_address=WALLET_A)
    upload = await upload_content(
        ledger,
        account_id=uploader.account_id,
        uploader_persona_id=uploader.id,
        title="Pending Alex",
        composition=[RawSplitEntry(name="Alex", percentage=30)],
        production=[],
    )

    assert [(s.wallet, s.percentage) for s in upload.composition] == [("pending:Alex", 30)]
    assert [(row.name, row.percentage, row.split_type) for row in upload.pending_collaborators] == [
        ("Alex", 30, "composition")
    ]

    sale = await record_sale(
        ledger,
        content_id=upload.content.id,
        composition_amount=TEN_DOLLARS,
        production_amount=0,
        source_type="download_sale",
        tx_ref="tx-1",
    )

    assert len(sale.earnings) == 1
    earning = sale.earnings[0]
    assert earning.amount == THREE_DOLLARS
    assert earning.status == EarningStatus.HELD_IN_TREASURY.value
    assert sale.retained == TEN_DOLLARS - THREE_DOLLARS

    placeholder = await reload(ledger, Persona, earning.persona_id)
    assert placeholder.is_placeholder is True
    assert placeholder.account_id == uploader.account_id
    assert placeholder.username == "alex-tbd"
    assert placeholder.balance == 0

    balance = await get_balance(ledger, placeholder.id)
    assert (balance.spendable, balance.held) == (0, THREE_DOLLARS)

    rows = await _pending(ledger, upload.content.id)
    assert [(row.status, row.resolved_persona_id) for row in rows] == [("resolved", placeholder.id)]

    assert events.PLACEHOLDER_MATERIALIZED in redis_log.event_types()
    assert events.EARNING_POSTED in redis_log.event_types()


@pytest.mark.asyncio
async def test_later_sales_reuse_the_materialized_placeholder(ledger) -> None:
    uploader = await make_persona(ledger, "uploader", wallet_address=WALLET_A)
    upload = await upload_content(
        ledger,
        account_id=uploader.account_id,
        uploader_persona_id=uploader.id,
        title="Two Sales",
        composition=[RawSplitEntry(wallet=WALLET_A, percentage=70), RawSplitEntry(name="Alex", percentage=30)],
        production=[],
    )

    first = await record_sale(
        ledger, content_id=upload.content.id, composition_amount=TEN_DOLLARS, production_amount=0,
        source_type="download_sale", tx_ref="tx-1",
    )
    second = await record_sale(
        ledger, content_id=upload.content.id, composition_amount=TEN_DOLLARS, production_amount=0,
        source_type="download_sale", tx_ref="tx-2",
    )

    alex_first = [e for e in first.earnings if e.beneficiary_ref == "pending:Alex"][0]
    alex_second = [e for e in second.earnings if e.beneficiary_ref == "pending:Alex"][0]
    assert alex_first.persona_id == alex_second.persona_id

    balance = await get_balance(ledger, alex_first.persona_id)
    assert balance.held == 2 * THREE_DOLLARS

    uploader_balance = await get_balance(ledger, uploader.id)
    assert uploader_balance.spendable == 2 * 7_000_000


@pytest.mark.asyncio
async def test_paid_earning_credits_balance(ledger) -> None:
    artist = await make_persona(ledger, "artist", wallet_address=WALLET_B)

    posted = await post_earning(
        ledger,
        beneficiary=WALLET_B,
        amount=2_500_000,
        source_type=EarningSource.STREAM_ROYALTY,
        source_id="content-1",
        tx_ref="tx-1",
    )

    assert posted.created is True
    assert posted.earning.status == EarningStatus.PAID.value
    assert posted.earning.persona_id == artist.id
    assert (await get_balance(ledger, artist.id)).spendable == 2_500_000


@pytest.mark.asyncio
async def test_stacks_address_routes_to_persona(ledger) -> None:
    stx = "SP2J6ZY48GV1EZ5V2V5RB9MP66SW86PYKKNRV9EJ7"
    persona = await make_persona(ledger, "stacker", stx_address=stx)

    posted = await post_earning(ledger, beneficiary=stx, amount=100, source_type="download_sale", source_id="c-1")

    assert posted.earning.persona_id == persona.id
    assert posted.earning.status == EarningStatus.PAID.value


@pytest.mark.asyncio
async def test_reposting_is_idempotent(ledger) -> None:
    artist = await make_persona(ledger, "artist", wallet_address=WALLET_B)
    kwargs = dict(beneficiary=WALLET_B, amount=500, source_type="download_sale", source_id="c-1", tx_ref="tx-9")

    first = await post_earning(ledger, **kwargs)
    second = await post_earning(ledger, **kwargs)

    assert second.created is False
    assert second.earning.id == first.earning.id
    assert len(await _earnings(ledger)) == 1
    assert (await get_balance(ledger, artist.id)).spendable == 500


@pytest.mark.asyncio
async def test_reposting_with_different_amount_conflicts(ledger) -> None:
    artist = await make_persona(ledger, "artist", wallet_address=WALLET_B)
    await post_earning(ledger, beneficiary=WALLET_B, amount=500, source_type="download_sale", source_id="c-1", tx_ref="tx-9")

    with pytest.raises(IdempotencyConflictError):
        await post_earning(ledger, beneficiary=WALLET_B, amount=700, source_type="download_sale", source_id="c-1", tx_ref="tx-9")

    assert (await get_balance(ledger, artist.id)).spendable == 500


@pytest.mark.asyncio
async def test_concurrent_duplicate_deliveries_post_once(ledger) -> None:
    artist = await make_persona(ledger, "artist", wallet_address=WALLET_B)
    kwargs = dict(beneficiary=WALLET_B, amount=800, source_type="download_sale", source_id="c-2", tx_ref="tx-race")

    results = await asyncio.gather(*(post_earning(ledger, **kwargs) for _ in range(3)))

    assert sum(1 for r in results if r.created) == 1
    assert len({r.earning.id for r in results}) == 1
    assert (await get_balance(ledger, artist.id)).spendable == 800


@pytest.mark.asyncio
async def test_unknown_wallet_is_recorded_as_unresolved(ledger) -> None:
    posted = await post_earning(
        ledger, beneficiary=OUTSIDE_WALLET, amount=1234, source_type="download_sale", source_id="c-3", tx_ref="tx-1"
    )

    assert posted.earning.status == EarningStatus.UNRESOLVED.value
    assert posted.earning.persona_id is None
    assert posted.earning.amount == 1234


@pytest.mark.asyncio
async def test_pending_name_without_content_is_unresolved(ledger) -> None:
    posted = await post_earning(
        ledger, beneficiary="pending:Ghost", amount=99, source_type="download_sale", source_id="missing-content"
    )

    assert posted.earning.status == EarningStatus.UNRESOLVED.value


@pytest.mark.asyncio
@pytest.mark.parametrize("amount", [0, -5, 1.5, True])
async def test_invalid_amounts_are_rejected(ledger, amount) -> None:
    with pytest.raises(ValidationError):
        await post_earning(ledger, beneficiary=WALLET_B, amount=amount, source_type="download_sale", source_id="c-1")


@pytest.mark.asyncio
async def test_ai_beneficiary_cannot_be_posted(ledger) -> None:
    with pytest.raises(ValidationError):
        await post_earning(ledger, beneficiary="AI", amount=100, source_type="download_sale", source_id="c-1")


@pytest.mark.asyncio
async def test_unknown_source_type_is_rejected(ledger) -> None:
    with pytest.raises(ValidationError):
        await post_earning(ledger, beneficiary=WALLET_B, amount=100, source_type="tip", source_id="c-1")


@pytest.mark.asyncio
async def test_sale_posts_groups_independently_and_retains_ai_share(ledger) -> None:
    uploader = await make_persona(ledger, "producer", wallet_address=WALLET_A)
    artist = await make_persona(ledger, "writer", wallet_address=WALLET_B)
    upload = await upload_content(
        ledger,
        account_id=uploader.account_id,
        uploader_persona_id=uploader.id,
        title="AI Assisted",
        composition=[RawSplitEntry(wallet=WALLET_B, percentage=100)],
        production=[RawSplitEntry(wallet=WALLET_A, percentage=100)],
        ai_assisted=True,
    )
    assert [(s.wallet, s.percentage) for s in upload.production] == [(WALLET_A, 50), ("AI", 50)]

    sale = await record_sale(
        ledger,
        content_id=upload.content.id,
        composition_amount=1000,
        production_amount=2000,
        source_type="download_sale",
        tx_ref="tx-1",
    )

    assert sorted(e.amount for e in sale.earnings) == [1000, 1000]
    assert sale.retained == 1000
    assert (await get_balance(ledger, artist.id)).spendable == 1000
    assert (await get_balance(ledger, uploader.id)).spendable == 1000


@pytest.mark.asyncio
async def test_same_wallet_in_both_groups_is_paid_both_shares(ledger) -> None:
    uploader = await make_persona(ledger, "solo", wallet_address=WALLET_A)
    upload = await upload_content(
        ledger,
        account_id=uploader.account_id,
        uploader_persona_id=uploader.id,
        title="Solo",
        composition=[],
        production=[],
    )

    for _ in range(2):
        sale = await record_sale(
            ledger,
            content_id=upload.content.id,
            composition_amount=1000,
            production_amount=1000,
            source_type="download_sale",
            tx_ref="tx-1",
        )

    assert [e.amount for e in sale.earnings] == [1000, 1000]
    assert len(await _earnings(ledger)) == 2
    assert (await get_balance(ledger, uploader.id)).spendable == 2000


@pytest.mark.asyncio
async def test_create_persona_flag_materializes_at_upload(ledger) -> None:
    uploader = await make_persona(ledger, "uploader", wallet_address=WALLET_A)

    upload = await upload_content(
        ledger,
        account_id=uploader.account_id,
        uploader_persona_id=uploader.id,
        title="Immediate Placeholder",
        composition=[RawSplitEntry(wallet=WALLET_A, percentage=50), RawSplitEntry(name="Jo", percentage=50, create_persona=True)],
        production=[],
    )

    assert len(upload.placeholders) == 1
    placeholder = upload.placeholders[0]
    assert placeholder.username == "collab-jo-tbd"
    assert upload.composition[1].beneficiary == PlaceholderPersona(persona_id=placeholder.id, address=placeholder.wallet_address)
    assert upload.pending_collaborators == []

    async with ledger.sessionmaker() as session:
        splits = await ledger.catalog.get_splits(session, upload.content.id)
    assert splits[SplitType.COMPOSITION][1].wallet == placeholder.wallet_address

    sale = await record_sale(
        ledger, content_id=upload.content.id, composition_amount=600, production_amount=0,
        source_type="download_sale", tx_ref="tx-1",
    )
    held = [e for e in sale.earnings if e.persona_id == placeholder.id]
    assert [(e.amount, e.status) for e in held] == [(300, EarningStatus.HELD_IN_TREASURY.value)]


@pytest.mark.asyncio
async def test_upload_rejects_invalid_wallet(ledger) -> None:
    uploader = await make_persona(ledger, "uploader", wallet_address=WALLET_A)

    with pytest.raises(ValidationError):
        await upload_content(
            ledger,
            account_id=uploader.account_id,
            uploader_persona_id=uploader.id,
            title="Broken",
            composition=[RawSplitEntry(wallet="nope", percentage=100)],
            production=[],
        )


@pytest.mark.asyncio
async def test_treasury_lists_placeholder_holdings(ledger) -> None:
    uploader = await make_persona(ledger, "uploader", wallet_address=WALLET_A)
    upload = await upload_content(
        ledger,
        account_id=uploader.account_id,
        uploader_persona_id=uploader.id,
        title="Treasury",
        composition=[RawSplitEntry(name="Alex", percentage=30)],
        production=[],
    )
    await record_sale(
        ledger, content_id=upload.content.id, composition_amount=TEN_DOLLARS, production_amount=0,
        source_type="download_sale", tx_ref="tx-1",
    )

    holdings = await list_treasury(ledger, uploader.account_id)

    assert len(holdings) == 1
    holding = holdings[0]
    assert holding.label == "Alex"
    assert holding.held == THREE_DOLLARS
    assert holding.claimed == 0
    assert holding.content_ids == [upload.content.id]
    assert holding.is_resolved is False

    history = await list_earnings(ledger, holding.persona_id)
    assert [e.beneficiary_ref for e in history] == ["pending:Alex"]
