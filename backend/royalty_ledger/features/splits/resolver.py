"""Normalization of raw split groups into wallet-addressed entries.

Everything here is pure: persona materialization and pending-collaborator
bookkeeping happen in ``royalty_ledger.features.content.services`` once the
normalized entries exist.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
import enum
import math

from royalty_ledger.features.splits.beneficiary import (
    DEFAULT_AI_LABEL,
    PENDING_PREFIX,
    AiBeneficiary,
    Beneficiary,
    Named,
    ResolvedWallet,
    from_record,
    named_beneficiary,
    to_record,
    to_wire,
)
from royalty_ledger.platform.errors import ValidationError
from royalty_ledger.platform.services.chain import is_valid_address


DEFAULT_MAX_ENTRIES = 3
AI_ASSISTED_SHARE = 50


class SplitType(str, enum.Enum):
    COMPOSITION = "composition"
    PRODUCTION = "production"


@dataclass(frozen=True)
class RawSplitEntry:
    wallet: str | None = None
    name: str | None = None
    percentage: float = 0
    create_persona: bool = False


@dataclass(frozen=True)
class NormalizedSplit:
    beneficiary: Beneficiary
    percentage: int
    name: str | None = None
    create_persona: bool = False

    @property
    def wallet(self) -> str:
        return to_wire(self.beneficiary)

    def to_record(self) -> dict:
        record = {"beneficiary": to_record(self.beneficiary), "percentage": self.percentage}
        if self.name:
            record["name"] = self.name
        return record

    @classmethod
    def from_record(cls, record: dict) -> "NormalizedSplit":
        return cls(
            beneficiary=from_record(record["beneficiary"]),
            percentage=int(record["percentage"]),
            name=record.get("name"),
        )


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _round_group(percentages: list[float]) -> list[int]:
    """Round each share to the nearest integer without exceeding the input total.

    Plain half-up rounding can gain a point across a group (33.5 + 33.5 + 33);
    the entries rounded up the most give that point back first.
    """
    rounded = [_round_half_up(p) for p in percentages]
    ceiling = math.floor(sum(percentages) + 1e-9)

    while sum(rounded) > ceiling:
        index = max(range(len(rounded)), key=lambda i: (rounded[i] - percentages[i], -i))
        rounded[index] -= 1

    return rounded


def _validate_percentage(value: float, position: int) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Split entry {position + 1} has an invalid percentage") from exc
    if math.isnan(number) or math.isinf(number):
        raise ValidationError(f"Split entry {position + 1} has an invalid percentage")
    if number < 0 or number > 100:
        raise ValidationError(f"Split entry {position + 1} percentage must be between 0 and 100")
    return number


def _beneficiary_for(entry: RawSplitEntry, position: int, uploader_wallet: str) -> Beneficiary:
    wallet = (entry.wallet or "").strip()
    name = (entry.name or "").strip()

    if wallet:
        if wallet.lower().startswith(PENDING_PREFIX):
            return named_beneficiary(wallet[len(PENDING_PREFIX):], label=f"Split entry {position + 1}")
        if not is_valid_address(wallet):
            raise ValidationError(f"Split entry {position + 1} has an invalid wallet address: {wallet}")
        return ResolvedWallet(address=wallet)

    if name:
        return named_beneficiary(name, label=f"Split entry {position + 1}")

    if position == 0:
        return ResolvedWallet(address=uploader_wallet)

    raise ValidationError(f"Split entry {position + 1} needs a wallet or a name")


def resolve_split_group(
    raw_group: list[RawSplitEntry],
    uploader_wallet: str,
    *,
    max_entries: int = DEFAULT_MAX_ENTRIES,
) -> list[NormalizedSplit]:
    if not uploader_wallet or not is_valid_address(uploader_wallet):
        raise ValidationError(f"Invalid uploader wallet address: {uploader_wallet}")

    if not raw_group:
        return [NormalizedSplit(beneficiary=ResolvedWallet(address=uploader_wallet), percentage=100)]

    if len(raw_group) > max_entries:
        raise ValidationError(f"A split group may have at most {max_entries} entries")

    percentages = [_validate_percentage(entry.percentage, i) for i, entry in enumerate(raw_group)]
    if sum(percentages) > 100 + 1e-9:
        raise ValidationError("Split percentages must not add up to more than 100")

    beneficiaries = [_beneficiary_for(entry, i, uploader_wallet) for i, entry in enumerate(raw_group)]
    rounded = _round_group(percentages)

    normalized: list[NormalizedSplit] = []
    for entry, beneficiary, percentage in zip(raw_group, beneficiaries, rounded):
        if percentage <= 0:
            continue

        name = (entry.name or "").strip() or None
        if isinstance(beneficiary, Named):
            name = beneficiary.name

        create_persona = bool(entry.create_persona) and isinstance(beneficiary, Named)
        normalized.append(
            NormalizedSplit(
                beneficiary=beneficiary,
                percentage=percentage,
                name=name,
                create_persona=create_persona,
            )
        )

    return normalized


def apply_ai_policy(
    production: list[NormalizedSplit],
    *,
    ai_assisted: bool,
    ai_generated: bool,
    ai_label: str = DEFAULT_AI_LABEL,
) -> list[NormalizedSplit]:
    ai_entry = NormalizedSplit(beneficiary=AiBeneficiary(label=ai_label), percentage=100)

    if ai_generated:
        return [ai_entry]

    if not ai_assisted:
        return list(production)

    # Halved shares are not renormalized; existing records carry the same drift.
    halved = [replace(entry, percentage=_round_half_up(entry.percentage / 2)) for entry in production]
    halved = [entry for entry in halved if entry.percentage > 0]
    return halved + [replace(ai_entry, percentage=AI_ASSISTED_SHARE)]


def group_total(entries: list[NormalizedSplit]) -> int:
    return sum(entry.percentage for entry in entries)
