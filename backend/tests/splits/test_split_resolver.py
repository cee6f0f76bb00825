import pytest

from royalty_ledger.features.splits.beneficiary import MAX_NAME_LENGTH, AiBeneficiary, Named, ResolvedWallet
from royalty_ledger.features.splits.resolver import (
    NormalizedSplit,
    RawSplitEntry,
    apply_ai_policy,
    group_total,
    resolve_split_group,
)
from royalty_ledger.platform.errors import ValidationError

from conftest import WALLET_A, WALLET_B, WALLET_C


def test_empty_group_pays_uploader_everything() -> None:
    splits = resolve_split_group([], WALLET_A)

    assert [(s.wallet, s.percentage) for s in splits] == [(WALLET_A, 100)]


def test_named_entry_becomes_pending_beneficiary() -> None:
    splits = resolve_split_group([RawSplitEntry(name="Alex", percentage=30)], WALLET_A)

    assert len(splits) == 1
    assert splits[0].beneficiary == Named(name="Alex")
    assert splits[0].wallet == "pending:Alex"
    assert splits[0].percentage == 30
    assert splits[0].name == "Alex"


def test_pending_wallet_string_is_parsed_at_the_boundary() -> None:
    splits = resolve_split_group([RawSplitEntry(wallet="pending:Sam", percentage=40)], WALLET_A)

    assert splits[0].beneficiary == Named(name="Sam")


def test_first_entry_without_wallet_or_name_defaults_to_uploader() -> None:
    splits = resolve_split_group(
        [RawSplitEntry(percentage=60), RawSplitEntry(wallet=WALLET_B, percentage=40)],
        WALLET_A,
    )

    assert [(s.beneficiary, s.percentage) for s in splits] == [
        (ResolvedWallet(address=WALLET_A), 60),
        (ResolvedWallet(address=WALLET_B), 40),
    ]


def test_later_entry_without_wallet_or_name_is_rejected() -> None:
    with pytest.raises(ValidationError):
        resolve_split_group(
            [RawSplitEntry(wallet=WALLET_B, percentage=50), RawSplitEntry(percentage=50)],
            WALLET_A,
        )


def test_zero_percentage_entries_are_dropped() -> None:
    splits = resolve_split_group(
        [RawSplitEntry(wallet=WALLET_B, percentage=100), RawSplitEntry(name="Nobody", percentage=0)],
        WALLET_A,
    )

    assert [s.wallet for s in splits] == [WALLET_B]


def test_rounding_never_exceeds_the_input_total() -> None:
    splits = resolve_split_group(
        [
            RawSplitEntry(wallet=WALLET_A, percentage=33.5),
            RawSplitEntry(wallet=WALLET_B, percentage=33.5),
            RawSplitEntry(wallet=WALLET_C, percentage=33),
        ],
        WALLET_A,
    )

    assert group_total(splits) == 100
    assert all(isinstance(s.percentage, int) for s in splits)


@pytest.mark.parametrize(
    "percentages",
    [
        [10.4, 20.4, 30.4],
        [49.5, 49.5],
        [0.5, 0.5, 0.5],
        [99.9],
        [33.3, 33.3, 33.3],
    ],
)
def test_group_total_stays_within_the_input_sum(percentages: list[float]) -> None:
    wallets = [WALLET_A, WALLET_B, WALLET_C]
    raw = [RawSplitEntry(wallet=wallets[i], percentage=p) for i, p in enumerate(percentages)]

    splits = resolve_split_group(raw, WALLET_A)

    assert group_total(splits) <= sum(percentages)


def test_percentages_over_one_hundred_are_rejected() -> None:
    with pytest.raises(ValidationError):
        resolve_split_group(
            [RawSplitEntry(wallet=WALLET_B, percentage=70), RawSplitEntry(name="Alex", percentage=40)],
            WALLET_A,
        )


def test_negative_percentage_is_rejected() -> None:
    with pytest.raises(ValidationError):
        resolve_split_group([RawSplitEntry(wallet=WALLET_B, percentage=-5)], WALLET_A)


def test_group_size_is_capped() -> None:
    raw = [RawSplitEntry(name=f"Collab {i}", percentage=10) for i in range(4)]

    with pytest.raises(ValidationError):
        resolve_split_group(raw, WALLET_A, max_entries=3)


def test_invalid_uploader_wallet_is_rejected() -> None:
    with pytest.raises(ValidationError):
        resolve_split_group([], "not-a-wallet")


def test_invalid_entry_wallet_is_rejected() -> None:
    with pytest.raises(ValidationError):
        resolve_split_group([RawSplitEntry(wallet="0x1234", percentage=50)], WALLET_A)


@pytest.mark.parametrize(
    "entry",
    [
        RawSplitEntry(name="x" * (MAX_NAME_LENGTH + 1), percentage=30),
        RawSplitEntry(wallet="pending:" + "x" * (MAX_NAME_LENGTH + 1), percentage=30),
    ],
)
def test_overlong_pending_name_is_rejected(entry: RawSplitEntry) -> None:
    with pytest.raises(ValidationError):
        resolve_split_group([entry], WALLET_A)


def test_longest_allowed_pending_name_is_kept() -> None:
    name = "x" * MAX_NAME_LENGTH

    splits = resolve_split_group([RawSplitEntry(name=name, percentage=30)], WALLET_A)

    assert splits[0].beneficiary == Named(name=name)


def test_create_persona_flag_only_sticks_to_named_entries() -> None:
    splits = resolve_split_group(
        [
            RawSplitEntry(wallet=WALLET_B, percentage=50, create_persona=True),
            RawSplitEntry(name="Alex", percentage=50, create_persona=True),
        ],
        WALLET_A,
    )

    assert [s.create_persona for s in splits] == [False, True]


def test_ai_assisted_production_splits_half_to_ai() -> None:
    production = resolve_split_group([RawSplitEntry(wallet=WALLET_A, percentage=100)], WALLET_A)

    splits = apply_ai_policy(production, ai_assisted=True, ai_generated=False)

    assert [(s.wallet, s.percentage) for s in splits] == [(WALLET_A, 50), ("AI", 50)]


def test_ai_generated_production_goes_entirely_to_ai() -> None:
    production = resolve_split_group([RawSplitEntry(wallet=WALLET_B, percentage=100)], WALLET_A)

    splits = apply_ai_policy(production, ai_assisted=True, ai_generated=True)

    assert len(splits) == 1
    assert splits[0].beneficiary == AiBeneficiary()
    assert splits[0].percentage == 100


def test_human_production_is_left_alone() -> None:
    production = resolve_split_group([RawSplitEntry(wallet=WALLET_B, percentage=70)], WALLET_A)

    assert apply_ai_policy(production, ai_assisted=False, ai_generated=False) == production


def test_ai_assisted_uses_configured_label() -> None:
    production = [NormalizedSplit(beneficiary=ResolvedWallet(address=WALLET_B), percentage=60)]

    splits = apply_ai_policy(production, ai_assisted=True, ai_generated=False, ai_label="MODEL")

    assert splits[-1].wallet == "MODEL"
    assert splits[0].percentage == 30


def test_records_survive_storage_format() -> None:
    split = NormalizedSplit(beneficiary=Named(name="Alex"), percentage=30, name="Alex")

    record = split.to_record()

    assert record == {"beneficiary": {"kind": "named", "name": "Alex"}, "percentage": 30, "name": "Alex"}
    assert NormalizedSplit.from_record(record) == split
