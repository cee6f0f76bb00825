"""Earning statuses and the moves allowed between them.

Statuses are stored as strings but never handled as free text: anything read
from a request or a row goes through :func:`parse_status` first.
"""

from __future__ import annotations

import enum

from royalty_ledger.platform.errors import InvariantViolation, ValidationError


class EarningStatus(str, enum.Enum):
    PAID = "paid"
    HELD_IN_TREASURY = "held_in_treasury"
    CLAIMED = "claimed"
    UNRESOLVED = "unresolved"


class EarningSource(str, enum.Enum):
    DOWNLOAD_SALE = "download_sale"
    REMIX_ROYALTY = "generational_remix_royalty"
    STREAM_ROYALTY = "stream_royalty"


_TRANSITIONS: dict[EarningStatus, frozenset[EarningStatus]] = {
    EarningStatus.PAID: frozenset(),
    EarningStatus.CLAIMED: frozenset(),
    EarningStatus.HELD_IN_TREASURY: frozenset({EarningStatus.CLAIMED}),
    # operators may route an unresolved earning once its beneficiary is known
    EarningStatus.UNRESOLVED: frozenset({EarningStatus.PAID, EarningStatus.HELD_IN_TREASURY}),
}


def parse_status(value: str) -> EarningStatus:
    try:
        return EarningStatus(value)
    except ValueError as exc:
        raise ValidationError(f"Unknown earning status: {value!r}") from exc


def parse_source(value: str) -> EarningSource:
    try:
        return EarningSource(value)
    except ValueError as exc:
        raise ValidationError(f"Unknown earning source type: {value!r}") from exc


def can_transition(current: EarningStatus, target: EarningStatus) -> bool:
    return target in _TRANSITIONS[current]


def ensure_transition(current: str | EarningStatus, target: EarningStatus) -> EarningStatus:
    status = parse_status(current) if isinstance(current, str) else current
    if not can_transition(status, target):
        raise InvariantViolation(f"Earning cannot move from {status.value} to {target.value}")
    return target


def is_terminal(status: EarningStatus) -> bool:
    return not _TRANSITIONS[status]
