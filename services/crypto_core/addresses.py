# crypto_core/addresses.py
from __future__ import annotations

import re
import secrets

import base58
from nacl.signing import SigningKey

EVM_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


def is_solana_address(s: str) -> bool:
    if not isinstance(s, str) or not 32 <= len(s) <= 44:
        return False
    try:
        return len(base58.b58decode(s)) == 32
    except ValueError:
        return False


def is_evm_address(s: str) -> bool:
    return isinstance(s, str) and bool(EVM_ADDRESS_RE.match(s))


def is_valid_address(s: str, chain_type: str) -> bool:
    if chain_type == "solana":
        return is_solana_address(s)
    if chain_type == "ethereum":
        return is_evm_address(s)
    return False


def random_address(chain_type: str) -> str:
    """Syntactically valid, meaningless address (simulated wallets)."""
    if chain_type == "ethereum":
        return "0x" + secrets.token_hex(20)
    # on-curve ed25519 key, so it can also receive stealth transfers
    return base58.b58encode(bytes(SigningKey.generate().verify_key)).decode()
