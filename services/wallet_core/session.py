# services/wallet_core/session.py
"""
Process-level wallet session.

Owns the one Note Store, the selected backend and the components built on
it. Created uninitialized; `initialize()` selects the backend once, loads
known notes and wires the components together. `destroy()` tears it all
down so the session can be initialized again (for example after
`update_config`). A backend passed to the constructor belongs to the
caller and is never closed by the session.
"""
from __future__ import annotations

import asyncio
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from services.crypto_core.commitments import new_note_material
from services.logging_config import get_logger
from services.wallet_core.config import CipherPayConfig
from services.wallet_core.contracts import Backend
from services.wallet_core.errors import (
    ConfigurationError,
    SessionNotInitialized,
    ValidationError,
)
from services.wallet_core.history import TransferHistory
from services.wallet_core.merkle_client import MerkleQueryClient
from services.wallet_core.models import (
    MerklePath,
    MerkleRoot,
    Note,
    PaymentProof,
    SubmitReceipt,
    Transaction,
    TransferProof,
    TransferProofInput,
    TxStatus,
)
from services.wallet_core.note_store import NoteStore
from services.wallet_core.orchestrator import TransactionOrchestrator
from services.wallet_core.proof_gateway import ProofGateway
from services.wallet_core.selector import select_backend
from services.wallet_core.wallet_session import WalletSession

logger = get_logger("session")


class SessionState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    INITIALIZED = "initialized"


class CipherPaySession:
    def __init__(
        self,
        config: Optional[Union[CipherPayConfig, Mapping[str, Any]]] = None,
        *,
        backend: Optional[Backend] = None,
        sdk: Optional[Any] = None,
    ):
        if config is None:
            config = CipherPayConfig()
        elif not isinstance(config, CipherPayConfig):
            config = CipherPayConfig.from_mapping(config)
        self.config = config
        self._injected_backend = backend
        self._sdk = sdk
        self._lock = asyncio.Lock()
        self.state = SessionState.UNINITIALIZED
        self._reset()

    def _reset(self) -> None:
        self.backend: Optional[Backend] = None
        self.notes: Optional[NoteStore] = None
        self.gateway: Optional[ProofGateway] = None
        self.merkle: Optional[MerkleQueryClient] = None
        self.wallet: Optional[WalletSession] = None
        self.history: Optional[TransferHistory] = None
        self.orchestrator: Optional[TransactionOrchestrator] = None

    # ===== lifecycle =====
    @property
    def is_initialized(self) -> bool:
        return self.state is SessionState.INITIALIZED

    async def initialize(self) -> None:
        async with self._lock:
            if self.state is SessionState.INITIALIZED:
                return
            self.state = SessionState.INITIALIZING
            try:
                await self._build()
            except BaseException:
                backend = self.backend
                self._reset()
                self.state = SessionState.UNINITIALIZED
                if backend is not None and backend is not self._injected_backend:
                    await backend.aclose()
                raise
            self.state = SessionState.INITIALIZED
            logger.info(f"Session initialized (backend={self.backend.name}, chain={self.config.chain_type})")

    async def _build(self) -> None:
        cfg = self.config
        self.backend = self._injected_backend or select_backend(cfg, self._sdk)

        self.notes = NoteStore(cfg.notes_state_path)
        loaded = 0
        for note in await self.backend.initial_notes():
            if note.commitment not in self.notes:
                self.notes.add_note(note)
                loaded += 1
        if loaded:
            logger.info(f"Loaded {loaded} note(s) from backend")

        self.gateway = ProofGateway(self.backend.prover, self.backend.view_keys, default_timeout=cfg.proof_timeout)
        self.merkle = MerkleQueryClient(
            self.backend.relay,
            timeout=cfg.request_timeout,
            enable_caching=cfg.enable_caching,
            cache_max_size=cfg.cache_config.max_size,
            cache_ttl_ms=cfg.cache_config.default_ttl,
        )
        self.wallet = WalletSession(self.backend.wallet)
        self.history = TransferHistory()
        self.orchestrator = TransactionOrchestrator(
            self.notes,
            self.gateway,
            self.merkle,
            self.wallet,
            self.backend.relay,
            chain_type=cfg.chain_type,
            selection=cfg.note_selection,
            enable_stealth=cfg.enable_stealth_addresses,
            enable_compliance=cfg.enable_compliance,
            verify_before_submit=cfg.verify_before_submit,
            proof_timeout=cfg.proof_timeout,
            request_timeout=cfg.request_timeout,
            history=self.history,
        )
        await self.backend.start_event_monitoring()

    async def destroy(self) -> None:
        async with self._lock:
            if self.state is SessionState.UNINITIALIZED:
                return
            backend = self.backend
            try:
                if self.wallet is not None and self.wallet.is_connected:
                    await self.wallet.disconnect()
                if backend is not None:
                    await backend.stop_event_monitoring()
            finally:
                self._reset()
                self.state = SessionState.UNINITIALIZED
                if backend is not None and backend is not self._injected_backend:
                    await backend.aclose()
            logger.info("Session destroyed")

    def update_config(self, **changes: Any) -> CipherPayConfig:
        """New settings take effect on the next `initialize()`."""
        self.config = self.config.updated(**changes)
        return self.config

    async def __aenter__(self) -> "CipherPaySession":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.destroy()

    def _require(self) -> TransactionOrchestrator:
        if self.state is not SessionState.INITIALIZED or self.orchestrator is None:
            raise SessionNotInitialized("Call initialize() first")
        return self.orchestrator

    # ===== wallet =====
    async def connect_wallet(self) -> str:
        self._require()
        return await self.wallet.connect()

    async def disconnect_wallet(self) -> None:
        self._require()
        await self.wallet.disconnect()

    def get_public_address(self) -> Optional[str]:
        self._require()
        return self.wallet.get_address()

    def is_connected(self) -> bool:
        return self.is_initialized and self.wallet is not None and self.wallet.is_connected

    # ===== notes =====
    def add_note(self, note: Union[Note, Mapping[str, Any]]) -> Note:
        self._require()
        return self.notes.add_note(note)

    def get_spendable_notes(self) -> List[Note]:
        self._require()
        return self.notes.get_spendable_notes()

    def get_all_notes(self) -> List[Note]:
        self._require()
        return self.notes.get_all_notes()

    def get_balance(self) -> int:
        self._require()
        return self.notes.get_balance()

    # ===== transfers =====
    async def create_transfer(self, recipient: str, amount: int, **kwargs: Any) -> Transaction:
        return await self._require().create_transfer(recipient, amount, **kwargs)

    async def submit_transfer(self, tx: Transaction) -> SubmitReceipt:
        return await self._require().submit_transfer(tx)

    def abandon_transfer(self, tx: Transaction) -> None:
        self._require().abandon_transfer(tx)

    def reconcile_transfer(self, tx: Transaction) -> None:
        self._require().reconcile_transfer(tx)

    async def transfer(self, recipient: str, amount: int, **kwargs: Any) -> SubmitReceipt:
        return await self._require().transfer(recipient, amount, **kwargs)

    async def withdraw(self, amount: int, recipient: str, **kwargs: Any) -> SubmitReceipt:
        return await self._require().withdraw(amount, recipient, **kwargs)

    async def check_transaction_status(self, tx_hash: str, *, timeout: Optional[float] = None) -> TxStatus:
        return await self._require().check_status(tx_hash, timeout=timeout)

    async def deposit(self, amount: int) -> Note:
        """
        Shield `amount` into a fresh note owned by the connected address.
        The note is stored only after the signer reports the deposit sent.
        """
        self._require()
        owner = self.wallet.require_connected()
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise ValidationError(f"Deposit amount must be a positive integer, got {amount!r}")
        m = new_note_material(amount, owner)
        tx_ref = await self.wallet.sign_and_send_deposit(amount, m["commitment"])
        note = self.notes.add_note(
            Note(
                commitment=m["commitment"],
                nullifier=m["nullifier"],
                amount=amount,
                owner=owner,
                secret_hex=m["secret_hex"],
            )
        )
        self.merkle.invalidate()
        logger.info(f"Deposit of {amount} sent ({tx_ref})")
        return note

    # ===== proofs =====
    async def generate_proof(
        self, proof_input: Union[TransferProofInput, Mapping[str, Any]], *, timeout: Optional[float] = None
    ) -> TransferProof:
        self._require()
        return await self.gateway.generate_transfer_proof(proof_input, timeout=timeout)

    async def verify_proof(self, proof: Any, public_signals: Sequence[str], verifier_key: Mapping[str, Any]) -> bool:
        self._require()
        return await self.gateway.verify_transfer_proof(proof, public_signals, verifier_key)

    def export_view_key(self) -> str:
        self._require()
        return self.gateway.export_view_key()

    def generate_proof_of_payment(self, note: Union[Note, Mapping[str, Any]]) -> PaymentProof:
        self._require()
        return self.gateway.generate_payment_proof(note)

    def verify_proof_of_payment(self, proof: Any, note: Union[Note, Mapping[str, Any]], view_key: str) -> bool:
        self._require()
        return self.gateway.verify_payment_proof(proof, note, view_key)

    # ===== merkle =====
    async def fetch_merkle_root(self) -> MerkleRoot:
        self._require()
        return await self.merkle.fetch_root()

    async def get_merkle_path(self, commitment: str) -> MerklePath:
        self._require()
        return await self.merkle.get_path(commitment)

    def get_cache_stats(self) -> Optional[Dict[str, Any]]:
        self._require()
        return self.merkle.get_cache_stats()

    # ===== reporting =====
    def generate_compliance_report(self, start_ms: Optional[int] = None, end_ms: Optional[int] = None) -> Dict[str, Any]:
        self._require()
        if not self.config.enable_compliance:
            raise ConfigurationError("Compliance is disabled for this session")
        return self.history.compliance_report(start_ms, end_ms)

    def get_service_status(self) -> Dict[str, Any]:
        status: Dict[str, Any] = {
            "initialized": self.is_initialized,
            "backend": self.config.backend,
            "chain_type": self.config.chain_type,
            "connected": False,
            "address": None,
            "balance": 0,
            "notes": 0,
            "spendable_notes": 0,
            "in_flight": None,
            "cache": None,
        }
        if not self.is_initialized:
            return status
        spendable = self.notes.get_spendable_notes()
        in_flight = self.orchestrator.in_flight
        status.update(
            backend=self.backend.name,
            connected=self.wallet.is_connected,
            address=self.wallet.get_address(),
            balance=sum(n.amount for n in spendable),
            notes=len(self.notes),
            spendable_notes=len(spendable),
            in_flight=in_flight.id if in_flight else None,
            cache=self.merkle.get_cache_stats(),
        )
        return status
