# crypto_core/stealth.py
"""
One-time stealth recipients for Solana (ed25519) addresses.

Sender: ephemeral X25519 key, ECDH against the recipient's ed25519 key
converted to curve25519, HKDF to a 32-byte tag, stealth address = base58(H(tag)).
Recipient: same shared secret from their ed25519 secret key and the
published ephemeral public key.
"""
from __future__ import annotations

import hashlib
from dataclasses import dataclass
from typing import Tuple

import base58
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from nacl.bindings import (
    crypto_scalarmult,
    crypto_sign_ed25519_pk_to_curve25519,
    crypto_sign_ed25519_sk_to_curve25519,
)
from nacl.exceptions import CryptoError
from nacl.public import PrivateKey
from nacl.secret import SecretBox
from nacl.utils import random as nacl_random

STEALTH_INFO = b"cipherpay-stealth-v1|"


@dataclass(frozen=True)
class StealthOutput:
    stealth_address: str
    ephemeral_pub_b58: str
    shared_key: bytes


def _derive_key(shared: bytes, recipient_pub32: bytes) -> bytes:
    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=32,
        salt=None,
        info=STEALTH_INFO + recipient_pub32,
    )
    return hkdf.derive(shared)


def _stealth_from_key(key32: bytes) -> str:
    return base58.b58encode(hashlib.sha256(b"stealth|" + key32).digest()).decode()


def recipient_curve_pub(recipient_b58: str) -> bytes:
    """ed25519 public key -> curve25519. Raises ValueError for off-curve keys (e.g. PDAs)."""
    pub32 = base58.b58decode(recipient_b58)
    if len(pub32) != 32:
        raise ValueError("recipient key must be 32 bytes")
    try:
        return crypto_sign_ed25519_pk_to_curve25519(pub32)
    except CryptoError as e:
        raise ValueError(f"recipient key is not a valid ed25519 point: {e}") from e


def generate_stealth_for_recipient(recipient_b58: str) -> StealthOutput:
    curve_pk = recipient_curve_pub(recipient_b58)
    eph = PrivateKey.generate()
    shared = crypto_scalarmult(bytes(eph), curve_pk)
    key = _derive_key(shared, base58.b58decode(recipient_b58))
    return StealthOutput(
        stealth_address=_stealth_from_key(key),
        ephemeral_pub_b58=base58.b58encode(bytes(eph.public_key)).decode(),
        shared_key=key,
    )


def derive_stealth_from_recipient_secret(ed_sk_64: bytes, ephemeral_pub_b58: str) -> Tuple[str, bytes]:
    """Recipient side: recompute (stealth_address, shared_key) from their secret key."""
    curve_sk = crypto_sign_ed25519_sk_to_curve25519(ed_sk_64)
    shared = crypto_scalarmult(curve_sk, base58.b58decode(ephemeral_pub_b58))
    key = _derive_key(shared, ed_sk_64[32:])
    return _stealth_from_key(key), key


def xchacha_encrypt(key32: bytes, plaintext: bytes) -> Tuple[bytes, bytes]:
    sb = SecretBox(key32)
    nonce = nacl_random(24)
    ct = sb.encrypt(plaintext, nonce)
    return nonce, ct[24:]


def xchacha_decrypt(key32: bytes, nonce24: bytes, ciphertext: bytes) -> bytes:
    sb = SecretBox(key32)
    return sb.decrypt(nonce24 + ciphertext)
