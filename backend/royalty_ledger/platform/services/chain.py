from __future__ import annotations

import enum
import re


_SUI_ADDRESS = re.compile(r"^0x[a-fA-F0-9]{64}$")
_STACKS_ADDRESS = re.compile(r"^S[PMTN][0-9A-Z]{37,40}$")


class Chain(str, enum.Enum):
    SUI = "sui"
    STACKS = "stacks"


def is_valid_sui_address(address: str) -> bool:
    return isinstance(address, str) and bool(_SUI_ADDRESS.match(address))


def is_valid_stacks_address(address: str) -> bool:
    return isinstance(address, str) and bool(_STACKS_ADDRESS.match(address))


def chain_of(address: str) -> Chain | None:
    if is_valid_sui_address(address):
        return Chain.SUI
    if is_valid_stacks_address(address):
        return Chain.STACKS
    return None


def is_valid_address(address: str) -> bool:
    return chain_of(address) is not None

