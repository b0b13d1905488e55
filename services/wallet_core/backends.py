# services/wallet_core/backends.py
"""
Simulated backend. *** NON-PRODUCTION ONLY ***

Produces syntactically valid but cryptographically meaningless values.
Proofs are self-consistent (pi_c binds the rest of the proof), so a
tampered proof verifies False; an optional deterministic failure rate
reproduces flaky verifiers without making results non-repeatable.
"""
from __future__ import annotations

import asyncio
import hashlib
import hmac
import json
import secrets
import time
from typing import Any, Dict, Iterable, List, Optional

from services.crypto_core.addresses import random_address
from services.crypto_core.commitments import new_note_material, random_hex_id
from services.crypto_core.merkle import verify_merkle
from services.logging_config import get_logger
from services.relay.simulated_relay import SimulatedLedger, SimulatedRelay
from services.wallet_core.config import CipherPayConfig
from services.wallet_core.contracts import Backend, Prover, ViewKeyManager, WalletProvider
from services.wallet_core.errors import ProofGenerationError, WalletConnectionError
from services.wallet_core.models import (
    Groth16Proof,
    Note,
    PaymentProof,
    TransferProof,
    TransferProofInput,
)

logger = get_logger("backend.simulated")

DEMO_NOTE_AMOUNTS = (1_000_000_000_000_000_000, 500_000_000_000_000_000)


def _h(*parts: str) -> str:
    return "0x" + hashlib.sha256("|".join(parts).encode()).hexdigest()


class SimulatedWallet(WalletProvider):
    def __init__(self, ledger: SimulatedLedger, chain_type: str = "solana", refuse: bool = False):
        self._ledger = ledger
        self._chain_type = chain_type
        self._address: Optional[str] = None
        self.refuse = refuse

    async def connect(self) -> str:
        if self.refuse:
            raise WalletConnectionError("User rejected the connection request")
        self._address = random_address(self._chain_type)
        return self._address

    async def disconnect(self) -> None:
        self._address = None

    def get_public_address(self) -> Optional[str]:
        return self._address

    async def sign_and_send_deposit_tx(self, to: str, amount: int, commitment: str) -> str:
        if self._address is None:
            raise WalletConnectionError("Wallet not connected")
        self._ledger.insert_commitment(commitment)
        return self._ledger.record_tx("deposit")


class SimulatedProver(Prover):
    def __init__(
        self,
        wasm_path: str = "./transfer.wasm",
        zkey_path: str = "./transfer.zkey",
        *,
        failure_rate: float = 0.0,
        latency: float = 0.0,
    ):
        self.wasm_path = wasm_path
        self.zkey_path = zkey_path
        self.failure_rate = failure_rate
        self.latency = latency
        self.verifier_key: Dict[str, Any] = {
            "protocol": "groth16",
            "curve": "bn128",
            "circuit": "transfer",
            "id": _h("vk", wasm_path, zkey_path),
        }

    @staticmethod
    def _binding(pi_a: List[str], pi_b: List[List[str]], signals: List[str], vk: Dict[str, Any]) -> str:
        blob = json.dumps([pi_a, pi_b, signals, vk], sort_keys=True, separators=(",", ":"))
        return _h("pi_c", blob)

    @staticmethod
    def _check_input(inp: TransferProofInput) -> None:
        if sum(inp.input_amounts) < inp.amount:
            raise ProofGenerationError("Input notes do not cover the transfer amount")
        if inp.merkle_paths:
            if len(inp.merkle_paths) != len(inp.input_commitments):
                raise ProofGenerationError("One Merkle path is required per input note")
            for c, p in zip(inp.input_commitments, inp.merkle_paths):
                if p.commitment != c or not verify_merkle(c, p.siblings, p.path_indices, p.root):
                    raise ProofGenerationError(f"Merkle path does not open to the root for {c}")
                if inp.merkle_root and p.root != inp.merkle_root:
                    raise ProofGenerationError(f"Merkle path for {c} opens to a different root than the witness root")

    async def generate_transfer_proof(self, proof_input: TransferProofInput) -> TransferProof:
        self._check_input(proof_input)
        if self.latency:
            await asyncio.sleep(self.latency)
        nonce = secrets.token_hex(16)
        pi_a = [_h("pi_a", nonce)]
        pi_b = [[_h("pi_b", nonce)]]
        signals = [
            proof_input.merkle_root or "0x0",
            *proof_input.nullifiers,
            *proof_input.output_commitments,
            _h("amount", str(proof_input.amount), proof_input.recipient),
        ]
        pi_c = [self._binding(pi_a, pi_b, signals, self.verifier_key)]
        return TransferProof(
            proof=Groth16Proof(pi_a=pi_a, pi_b=pi_b, pi_c=pi_c),
            public_signals=signals,
            verifier_key=dict(self.verifier_key),
        )

    async def verify_proof(self, proof: Groth16Proof, public_signals: List[str], verifier_key: Dict[str, Any]) -> bool:
        expected = self._binding(proof.pi_a, proof.pi_b, public_signals, verifier_key)
        if proof.pi_c != [expected]:
            return False
        if self.failure_rate > 0:
            # deterministic in the inputs, so repeated checks agree
            return int(expected[2:4], 16) / 256.0 >= self.failure_rate
        return True


class SimulatedViewKeys(ViewKeyManager):
    def __init__(self, view_key: Optional[str] = None):
        self._view_key = view_key or random_hex_id()

    def export_view_key(self) -> str:
        return self._view_key

    @staticmethod
    def _tag(view_key: str, note: Note) -> str:
        msg = f"cipherpay-pop-v1|{note.commitment}|{note.amount}".encode()
        return "0x" + hmac.new(view_key.encode(), msg, hashlib.sha256).hexdigest()

    def generate_proof_of_payment(self, note: Note) -> PaymentProof:
        return PaymentProof(
            proof=self._tag(self._view_key, note),
            metadata={"noteId": note.commitment, "timestamp": int(time.time() * 1000)},
        )

    def verify_proof_of_payment(self, proof: PaymentProof, note: Note, view_key: str) -> bool:
        if proof.metadata.get("noteId", note.commitment) != note.commitment:
            return False
        return hmac.compare_digest(proof.proof, self._tag(view_key, note))


class SimulatedBackend(Backend):
    name = "simulated"

    def __init__(self, config: CipherPayConfig, ledger: Optional[SimulatedLedger] = None):
        self.config = config
        self.ledger = ledger or SimulatedLedger()
        self.wallet = SimulatedWallet(self.ledger, config.chain_type)
        self.prover = SimulatedProver(
            config.circuits.transfer.wasm_url,
            config.circuits.transfer.zkey_url,
            failure_rate=config.mock_verify_failure_rate,
        )
        self.view_keys = SimulatedViewKeys()
        self.relay = SimulatedRelay(self.ledger, confirmations=config.simulated_confirmations)

    async def initial_notes(self) -> Iterable[Note]:
        if not self.config.seed_demo_notes:
            return []
        notes = []
        for amount in DEMO_NOTE_AMOUNTS:
            m = new_note_material(amount, "demo")
            self.ledger.insert_commitment(m["commitment"])
            notes.append(
                Note(
                    commitment=m["commitment"],
                    nullifier=m["nullifier"],
                    amount=amount,
                    owner="demo",
                    secret_hex=m["secret_hex"],
                )
            )
        logger.info(f"Seeded {len(notes)} demo notes")
        return notes
