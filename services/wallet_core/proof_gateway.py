# services/wallet_core/proof_gateway.py
"""
Proof generation and verification for transfers and payment attestations.

Verification never raises for a proof that is well-formed but wrong: it
returns False. VerificationError is reserved for inputs that are not a
proof at all, so "proof invalid" and "verifier broken" stay distinguishable.
"""
from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Mapping, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from services.logging_config import get_logger
from services.wallet_core.contracts import Prover, ViewKeyManager
from services.wallet_core.errors import (
    BackendError,
    CipherPayError,
    ProofGenerationError,
    VerificationError,
)
from services.wallet_core.models import (
    Groth16Proof,
    Note,
    PaymentProof,
    TransferProof,
    TransferProofInput,
)

logger = get_logger("proof_gateway")

ProofLike = Union[TransferProof, Groth16Proof, Mapping[str, Any]]


def _coerce_groth16(proof: ProofLike) -> Groth16Proof:
    if isinstance(proof, TransferProof):
        return proof.proof
    if isinstance(proof, Groth16Proof):
        return proof
    if not isinstance(proof, Mapping):
        raise VerificationError(f"Proof must be a mapping, got {type(proof).__name__}")
    body = proof.get("proof", proof)
    try:
        return Groth16Proof.model_validate(body)
    except PydanticValidationError as e:
        raise VerificationError(f"Malformed transfer proof: {e.error_count()} structural error(s)") from e


def _coerce_note(note: Union[Note, Mapping[str, Any]]) -> Note:
    if isinstance(note, Note):
        return note
    if not isinstance(note, Mapping):
        raise ProofGenerationError(f"Note must be a mapping, got {type(note).__name__}")
    missing = [k for k in ("commitment", "amount") if note.get(k) in (None, "")]
    if missing:
        raise ProofGenerationError(f"Note lacks required field(s): {', '.join(missing)}")
    try:
        return Note.model_validate({"nullifier": "-", **note})
    except PydanticValidationError as e:
        raise ProofGenerationError(f"Malformed note: {e}") from e


class ProofGateway:
    def __init__(self, prover: Prover, view_keys: ViewKeyManager, *, default_timeout: Optional[float] = 60.0):
        self._prover = prover
        self._view_keys = view_keys
        self._default_timeout = default_timeout

    # ---------- transfer proofs ----------
    async def generate_transfer_proof(
        self,
        proof_input: Union[TransferProofInput, Mapping[str, Any]],
        *,
        timeout: Optional[float] = None,
    ) -> TransferProof:
        """
        Produce a transfer proof. Bounded by `timeout` (or the gateway default);
        cancellation of the awaiting task propagates unchanged.
        """
        if isinstance(proof_input, TransferProofInput):
            inp = proof_input
        else:
            try:
                inp = TransferProofInput.model_validate(dict(proof_input))
            except (PydanticValidationError, TypeError, ValueError) as e:
                raise ProofGenerationError(f"Malformed proof input: {e}") from e
        if len(inp.nullifiers) != len(inp.input_commitments) or len(inp.input_amounts) != len(inp.input_commitments):
            raise ProofGenerationError("Each spent commitment needs exactly one nullifier and amount")

        limit = timeout if timeout is not None else self._default_timeout
        try:
            proof = await asyncio.wait_for(self._prover.generate_transfer_proof(inp), timeout=limit)
        except asyncio.TimeoutError as e:
            raise ProofGenerationError(f"Proof generation timed out after {limit}s") from e
        except ProofGenerationError:
            raise
        except CipherPayError as e:
            raise ProofGenerationError(f"Prover failed: {e}") from e
        except Exception as e:
            logger.error(f"Prover backend failure: {e}", exc_info=True)
            raise ProofGenerationError(f"Prover failed: {e}") from e
        logger.info(f"Transfer proof generated ({len(inp.input_commitments)} input note(s))")
        return proof

    async def verify_transfer_proof(
        self,
        proof: ProofLike,
        public_signals: List[str],
        verifier_key: Dict[str, Any],
    ) -> bool:
        body = _coerce_groth16(proof)
        if not isinstance(public_signals, (list, tuple)) or not all(isinstance(s, str) for s in public_signals):
            raise VerificationError("public_signals must be a list of strings")
        if not isinstance(verifier_key, Mapping):
            raise VerificationError("verifier_key must be a mapping")
        try:
            return bool(await self._prover.verify_proof(body, list(public_signals), dict(verifier_key)))
        except VerificationError:
            raise
        except Exception as e:
            raise BackendError(f"Verifier failed: {e}") from e

    # ---------- payment proofs ----------
    def generate_payment_proof(self, note: Union[Note, Mapping[str, Any]]) -> PaymentProof:
        n = _coerce_note(note)
        try:
            return self._view_keys.generate_proof_of_payment(n)
        except CipherPayError:
            raise
        except Exception as e:
            raise ProofGenerationError(f"Payment proof failed: {e}") from e

    def verify_payment_proof(
        self,
        proof: Union[PaymentProof, Mapping[str, Any]],
        note: Union[Note, Mapping[str, Any]],
        view_key: str,
    ) -> bool:
        if isinstance(proof, PaymentProof):
            p = proof
        else:
            try:
                p = PaymentProof.model_validate(proof)
            except PydanticValidationError as e:
                raise VerificationError(f"Malformed payment proof: {e.error_count()} structural error(s)") from e
        try:
            n = _coerce_note(note)
        except ProofGenerationError as e:
            raise VerificationError(str(e)) from e
        if not isinstance(view_key, str) or not view_key:
            raise VerificationError("view_key must be a non-empty string")
        try:
            return bool(self._view_keys.verify_proof_of_payment(p, n, view_key))
        except VerificationError:
            raise
        except Exception as e:
            raise BackendError(f"Payment verifier failed: {e}") from e

    def export_view_key(self) -> str:
        return self._view_keys.export_view_key()
