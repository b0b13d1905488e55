# services/wallet_core/wallet_session.py
from __future__ import annotations

import asyncio
from typing import Optional

from services.logging_config import get_logger
from services.wallet_core.contracts import WalletProvider
from services.wallet_core.errors import CipherPayError, NotConnected, WalletConnectionError

logger = get_logger("wallet_session")


def _short(addr: Optional[str]) -> str:
    return f"{addr[:4]}…{addr[-5:]}" if addr and len(addr) > 10 else str(addr)


class WalletSession:
    """
    Connection state for the holder's signer.

    The stored address is the single source of truth for whether
    spend-affecting operations are permitted.
    """

    def __init__(self, provider: WalletProvider):
        self._provider = provider
        self._address: Optional[str] = None
        self._lock = asyncio.Lock()

    async def connect(self) -> str:
        async with self._lock:
            if self._address is not None:
                return self._address
            try:
                address = await self._provider.connect()
            except WalletConnectionError:
                raise
            except Exception as e:
                logger.error(f"Wallet connection failed: {e}")
                raise WalletConnectionError(f"Signer refused connection: {e}") from e
            if not address:
                raise WalletConnectionError("Signer returned no address")
            self._address = address
            logger.info(f"Wallet connected: {_short(address)}")
            return address

    async def disconnect(self) -> None:
        async with self._lock:
            if self._address is None:
                return
            try:
                await self._provider.disconnect()
            finally:
                self._address = None
            logger.info("Wallet disconnected")

    def get_address(self) -> Optional[str]:
        return self._address

    @property
    def is_connected(self) -> bool:
        return self._address is not None

    def require_connected(self) -> str:
        if self._address is None:
            raise NotConnected("Wallet is not connected")
        return self._address

    async def sign_and_send_deposit(self, amount: int, commitment: str) -> str:
        address = self.require_connected()
        try:
            return await self._provider.sign_and_send_deposit_tx(address, amount, commitment)
        except CipherPayError:
            raise
        except Exception as e:
            raise WalletConnectionError(f"Signer failed to send deposit: {e}") from e
