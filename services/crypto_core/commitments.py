# crypto_core/commitments.py
from __future__ import annotations

import hashlib
import secrets
from typing import Dict

HEX_ID_BYTES = 32


def sha256(b: bytes) -> bytes:
    return hashlib.sha256(b).digest()


def to_hex_id(b: bytes) -> str:
    return "0x" + b.hex()


def from_hex_id(s: str) -> bytes:
    return bytes.fromhex(s[2:] if s.startswith("0x") else s)


def is_hex_id(s: str, n_bytes: int = HEX_ID_BYTES) -> bool:
    if not isinstance(s, str) or not s.startswith("0x") or len(s) != 2 + 2 * n_bytes:
        return False
    try:
        bytes.fromhex(s[2:])
    except ValueError:
        return False
    return True


def random_hex_id(n_bytes: int = HEX_ID_BYTES) -> str:
    return to_hex_id(secrets.token_bytes(n_bytes))


def make_commitment(secret: bytes, amount: int, nonce: bytes, owner: str) -> str:
    """
    C = H("cipherpay-note-v1" | secret | amount_be16 | nonce | H(owner))

    `amount` is an integer in the asset's smallest unit; 16 bytes covers any
    realistic supply and rejects negatives.
    """
    if amount < 0:
        raise ValueError("amount must be non-negative")
    owner_tag = sha256(owner.encode("utf-8"))
    return to_hex_id(
        sha256(b"cipherpay-note-v1|" + secret + amount.to_bytes(16, "big") + nonce + owner_tag)
    )


def make_nullifier(secret: bytes, commitment: str) -> str:
    return to_hex_id(sha256(b"cipherpay-nullifier-v1|" + secret + from_hex_id(commitment)))


def new_note_material(amount: int, owner: str) -> Dict[str, str]:
    """Fresh secret/nonce plus the commitment and nullifier they bind."""
    secret = secrets.token_bytes(32)
    nonce = secrets.token_bytes(16)
    commitment = make_commitment(secret, amount, nonce, owner)
    return {
        "secret_hex": secret.hex(),
        "nonce_hex": nonce.hex(),
        "commitment": commitment,
        "nullifier": make_nullifier(secret, commitment),
    }
