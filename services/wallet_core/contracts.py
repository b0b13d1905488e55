# services/wallet_core/contracts.py
"""
Capability contracts every backend provides.

A backend is a bundle of four collaborators: the signer (wallet), the
prover, the view-key manager and the relay. Callers only ever see these
interfaces; which implementation sits behind them is fixed once when the
backend is built.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional

from services.wallet_core.models import (
    Groth16Proof,
    MerklePath,
    MerkleRoot,
    Note,
    PaymentProof,
    SubmitReceipt,
    TransferProof,
    TransferProofInput,
    TxStatus,
)


class WalletProvider(ABC):
    @abstractmethod
    async def connect(self) -> str:
        """Connect to the signer and return the holder's public address."""

    @abstractmethod
    async def disconnect(self) -> None:
        ...

    @abstractmethod
    def get_public_address(self) -> Optional[str]:
        ...

    @abstractmethod
    async def sign_and_send_deposit_tx(self, to: str, amount: int, commitment: str) -> str:
        """Sign and broadcast a deposit of `amount` creating `commitment`; returns a tx reference."""


class Prover(ABC):
    @abstractmethod
    async def generate_transfer_proof(self, proof_input: TransferProofInput) -> TransferProof:
        ...

    @abstractmethod
    async def verify_proof(self, proof: Groth16Proof, public_signals: List[str], verifier_key: Dict[str, Any]) -> bool:
        """Pure check of a structurally valid proof."""


class ViewKeyManager(ABC):
    @abstractmethod
    def export_view_key(self) -> str:
        ...

    @abstractmethod
    def generate_proof_of_payment(self, note: Note) -> PaymentProof:
        ...

    @abstractmethod
    def verify_proof_of_payment(self, proof: PaymentProof, note: Note, view_key: str) -> bool:
        ...


class Relay(ABC):
    @abstractmethod
    async def fetch_root(self) -> MerkleRoot:
        ...

    @abstractmethod
    async def get_path(self, commitment: str) -> MerklePath:
        ...

    @abstractmethod
    async def submit(self, payload: Dict[str, Any], idempotency_key: str) -> SubmitReceipt:
        ...

    @abstractmethod
    async def check_status(self, tx_hash: str) -> TxStatus:
        ...

    def read_budget(self, per_call: float) -> float:
        """Wall-clock allowance for one read, including any internal retries."""
        return per_call

    async def aclose(self) -> None:
        return None


class Backend(ABC):
    """One complete implementation of the capability surface."""

    name: str = "backend"

    wallet: WalletProvider
    prover: Prover
    view_keys: ViewKeyManager
    relay: Relay

    async def start_event_monitoring(self) -> None:
        return None

    async def stop_event_monitoring(self) -> None:
        return None

    async def initial_notes(self) -> Iterable[Note]:
        """Notes the backend already knows about at startup."""
        return []

    async def aclose(self) -> None:
        await self.relay.aclose()
