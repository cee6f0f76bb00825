"""Who a split entry pays.

Wallet strings such as ``pending:Alex`` only exist at the API boundary; they
are parsed into one of the beneficiary types below as soon as they arrive and
stored as tagged records, never as prefixed strings.
"""

from __future__ import annotations

from dataclasses import dataclass

from royalty_ledger.platform.errors import ValidationError
from royalty_ledger.platform.services.chain import is_valid_address


PENDING_PREFIX = "pending:"
DEFAULT_AI_LABEL = "AI"
# Fits pending_collaborators.name and, with the prefix, earnings.beneficiary_ref.
MAX_NAME_LENGTH = 200


@dataclass(frozen=True)
class ResolvedWallet:
    address: str


@dataclass(frozen=True)
class Named:
    name: str


@dataclass(frozen=True)
class PlaceholderPersona:
    persona_id: str
    address: str


@dataclass(frozen=True)
class AiBeneficiary:
    label: str = DEFAULT_AI_LABEL


Beneficiary = ResolvedWallet | Named | PlaceholderPersona | AiBeneficiary


def named_beneficiary(name: str | None, *, label: str = "Pending beneficiary") -> Named:
    value = (name or "").strip()
    if not value:
        raise ValidationError(f"{label} needs a name")
    if len(value) > MAX_NAME_LENGTH:
        raise ValidationError(f"{label} name must be at most {MAX_NAME_LENGTH} characters")
    return Named(name=value)


def parse_beneficiary(raw: str, *, ai_label: str = DEFAULT_AI_LABEL) -> Beneficiary:
    value = (raw or "").strip()
    if not value:
        raise ValidationError("Beneficiary wallet is required")

    if value.lower().startswith(PENDING_PREFIX):
        return named_beneficiary(value[len(PENDING_PREFIX):])

    if value == ai_label:
        return AiBeneficiary(label=ai_label)

    if is_valid_address(value):
        return ResolvedWallet(address=value)

    raise ValidationError(f"Invalid wallet address: {value}")


def to_wire(beneficiary: Beneficiary) -> str:
    if isinstance(beneficiary, ResolvedWallet):
        return beneficiary.address
    if isinstance(beneficiary, PlaceholderPersona):
        return beneficiary.address
    if isinstance(beneficiary, Named):
        return f"{PENDING_PREFIX}{beneficiary.name}"
    if isinstance(beneficiary, AiBeneficiary):
        return beneficiary.label
    raise TypeError(f"Unknown beneficiary: {beneficiary!r}")


def address_of(beneficiary: Beneficiary) -> str | None:
    if isinstance(beneficiary, (ResolvedWallet, PlaceholderPersona)):
        return beneficiary.address
    return None


def to_record(beneficiary: Beneficiary) -> dict:
    if isinstance(beneficiary, ResolvedWallet):
        return {"kind": "wallet", "address": beneficiary.address}
    if isinstance(beneficiary, PlaceholderPersona):
        return {"kind": "placeholder", "persona_id": beneficiary.persona_id, "address": beneficiary.address}
    if isinstance(beneficiary, Named):
        return {"kind": "named", "name": beneficiary.name}
    if isinstance(beneficiary, AiBeneficiary):
        return {"kind": "ai", "label": beneficiary.label}
    raise TypeError(f"Unknown beneficiary: {beneficiary!r}")


def from_record(record: dict) -> Beneficiary:
    kind = record.get("kind") if isinstance(record, dict) else None
    if kind == "wallet":
        return ResolvedWallet(address=str(record["address"]))
    if kind == "placeholder":
        return PlaceholderPersona(persona_id=str(record["persona_id"]), address=str(record["address"]))
    if kind == "named":
        return Named(name=str(record["name"]))
    if kind == "ai":
        return AiBeneficiary(label=str(record.get("label") or DEFAULT_AI_LABEL))
    raise ValidationError(f"Unknown beneficiary kind: {kind!r}")
