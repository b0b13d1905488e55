# services/wallet_core/models.py
from __future__ import annotations

import time
import uuid
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, conint, constr


def _now_ms() -> int:
    return int(time.time() * 1000)


class _Model(BaseModel):
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)


class _Frozen(BaseModel):
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True, frozen=True)


# =========================
# Notes
# =========================

class Note(_Model):
    """One unit of shielded value held locally."""
    commitment: constr(min_length=1) = Field(..., description="Public note identifier (hex).")
    nullifier: constr(min_length=1) = Field(..., description="Revealed only when the note is spent.")
    amount: conint(ge=0) = Field(..., description="Smallest asset unit.")
    encrypted_note: str = Field("", description="Opaque ciphertext; not interpreted by the core.")
    spent: bool = False
    owner: Optional[str] = Field(None, description="Address the note was issued to.")
    secret_hex: Optional[str] = Field(None, description="Note opening secret, when known locally.")


# =========================
# Merkle
# =========================

class MerkleRoot(_Frozen):
    root: Optional[str] = Field(None, description="Current tree root (hex); None for an empty tree.")
    leaf_count: conint(ge=0) = 0

    @property
    def is_empty(self) -> bool:
        return self.leaf_count == 0 or not self.root


class MerklePath(_Frozen):
    commitment: str
    leaf_index: conint(ge=0)
    siblings: List[str]
    path_indices: List[conint(ge=0, le=1)]
    root: str


# =========================
# Proofs
# =========================

class Groth16Proof(_Frozen):
    pi_a: List[str] = Field(..., min_length=1)
    pi_b: List[List[str]] = Field(..., min_length=1)
    pi_c: List[str] = Field(..., min_length=1)


class TransferProof(_Frozen):
    proof: Groth16Proof
    public_signals: List[str] = Field(default_factory=list)
    verifier_key: Dict[str, Any] = Field(default_factory=dict)


class PaymentProof(_Frozen):
    proof: str
    metadata: Dict[str, Any] = Field(default_factory=dict)


class TransferProofInput(_Frozen):
    """Witness handed to the prover for a transfer."""
    amount: conint(gt=0)
    recipient: constr(min_length=1)
    nullifiers: List[str] = Field(..., min_length=1)
    input_commitments: List[str] = Field(..., min_length=1)
    input_amounts: List[conint(ge=0)] = Field(..., min_length=1)
    output_commitments: List[str] = Field(default_factory=list)
    merkle_root: Optional[str] = None
    merkle_paths: List[MerklePath] = Field(default_factory=list)


# =========================
# Transactions
# =========================

class TransferKind(str, Enum):
    TRANSFER = "transfer"
    WITHDRAW = "withdraw"


class TransferState(str, Enum):
    FORM = "form"
    PROVING = "proving"
    SUBMITTING = "submitting"
    ACCEPTED = "accepted"
    SETTLED = "settled"
    FAILED = "failed"


class TxStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class StealthMetadata(_Frozen):
    stealth_address: str
    ephemeral_pub: str


class ComplianceMetadata(_Frozen):
    checked: bool = True
    source: str = "cipherpay-core"
    timestamp: int = Field(default_factory=_now_ms)


class Transaction(_Model):
    """
    One shielded transfer attempt. Lives only for the submission round-trip;
    the Note Store is the durable state.
    """
    id: str = Field(default_factory=lambda: "tx_" + uuid.uuid4().hex)
    kind: TransferKind = TransferKind.TRANSFER
    recipient: str
    amount: conint(gt=0)
    timestamp: int = Field(default_factory=_now_ms)
    state: TransferState = TransferState.FORM
    input_commitments: List[str] = Field(default_factory=list)
    nullifiers: List[str] = Field(default_factory=list)
    recipient_commitment: Optional[str] = None
    change_note: Optional[Note] = None
    proof: Optional[TransferProof] = None
    stealth: Optional[StealthMetadata] = None
    recipient_ciphertext: Optional[str] = Field(None, description="Output note opening, sealed to the recipient.")
    compliance: Optional[ComplianceMetadata] = None
    tx_hash: Optional[str] = None
    error: Optional[str] = None

    @property
    def idempotency_key(self) -> str:
        return self.id

    def relay_payload(self) -> Dict[str, Any]:
        """Wire body for the relay. Never includes note secrets."""
        return {
            "id": self.id,
            "kind": self.kind.value,
            "recipient": self.stealth.stealth_address if self.stealth else self.recipient,
            "amount": str(self.amount),
            "timestamp": self.timestamp,
            "nullifiers": list(self.nullifiers),
            "outputCommitments": [c for c in (self.recipient_commitment,
                                              self.change_note.commitment if self.change_note else None) if c],
            "proof": self.proof.model_dump(by_alias=True) if self.proof else None,
            "ephemeralPub": self.stealth.ephemeral_pub if self.stealth else None,
            "encryptedOutput": self.recipient_ciphertext,
            "compliance": self.compliance.model_dump() if self.compliance else None,
        }


class SubmitReceipt(_Frozen):
    tx_hash: str
    status: TxStatus
    transaction_id: str
