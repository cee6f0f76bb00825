from dataclasses import dataclass
import asyncio

from Crypto.Hash import BLAKE2b
from Crypto.PublicKey import ECC

from royalty_ledger.platform.config import settings


# SUI signature scheme flag for Ed25519 keys.
_ED25519_FLAG = b"\x00"
_KEY_PROTECTION = "PBKDF2WithHMAC-SHA1AndAES128-CBC"


@dataclass(frozen=True)
class CreatedWallet:
    wallet_address: str
    encrypted_key: str


def sui_address_from_public_key(public_key: bytes) -> str:
    if len(public_key) != 32:
        raise ValueError("Ed25519 public key must be 32 bytes")

    h = BLAKE2b.new(digest_bits=256)
    h.update(_ED25519_FLAG + public_key)
    return "0x" + h.hexdigest()


def _raw_public_key(key: ECC.EccKey) -> bytes:
    # SubjectPublicKeyInfo for Ed25519 ends with the 32 raw key bytes.
    return key.public_key().export_key(format="DER")[-32:]


class WalletGenerator:
    def __init__(self, encryption_secret: str | None = None) -> None:
        self._secret = encryption_secret or settings.wallet_encryption_secret

    def _generate(self) -> CreatedWallet:
        key = ECC.generate(curve="Ed25519")
        address = sui_address_from_public_key(_raw_public_key(key))
        encrypted = key.export_key(format="PEM", passphrase=self._secret, protection=_KEY_PROTECTION)
        return CreatedWallet(wallet_address=address, encrypted_key=encrypted)

    async def create_wallet(self) -> CreatedWallet:
        return await asyncio.to_thread(self._generate)

    def decrypt_key(self, encrypted_key: str) -> ECC.EccKey:
        return ECC.import_key(encrypted_key, passphrase=self._secret)

    def address_for_key(self, key: ECC.EccKey) -> str:
        return sui_address_from_public_key(_raw_public_key(key))
