import os
import sys

import base58
import pytest
from nacl.signing import SigningKey


def pytest_configure():
    # Ensure the repo root is importable so `services.*` / `clients.*` resolve
    root = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
    if root not in sys.path:
        sys.path.insert(0, root)


@pytest.fixture
def recipient_key() -> SigningKey:
    return SigningKey.generate()


@pytest.fixture
def recipient(recipient_key: SigningKey) -> str:
    """A Solana address that is a real ed25519 point (stealth-capable)."""
    return base58.b58encode(bytes(recipient_key.verify_key)).decode()


@pytest.fixture
def evm_recipient() -> str:
    return "0x" + "ab" * 20
