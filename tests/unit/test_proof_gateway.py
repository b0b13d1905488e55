from __future__ import annotations

import asyncio

import pytest

from services.crypto_core.commitments import new_note_material
from services.crypto_core.merkle import MerkleTree
from services.wallet_core.backends import SimulatedProver, SimulatedViewKeys
from services.wallet_core.errors import BackendError, ProofGenerationError, VerificationError
from services.wallet_core.models import MerklePath, Note, TransferProofInput
from services.wallet_core.proof_gateway import ProofGateway


def _proof_input(amount: int = 10, note_amount: int = 10) -> TransferProofInput:
    m = new_note_material(note_amount, "me")
    tree = MerkleTree([m["commitment"]])
    siblings, bits = tree.get_proof(0)
    path = MerklePath(commitment=m["commitment"], leaf_index=0, siblings=siblings,
                      path_indices=bits, root=tree.root())
    return TransferProofInput(
        amount=amount,
        recipient="someone",
        nullifiers=[m["nullifier"]],
        input_commitments=[m["commitment"]],
        input_amounts=[note_amount],
        output_commitments=[new_note_material(amount, "someone")["commitment"]],
        merkle_root=tree.root(),
        merkle_paths=[path],
    )


def _gateway(**prover_kw) -> ProofGateway:
    return ProofGateway(SimulatedProver(**prover_kw), SimulatedViewKeys("vk-test"))


class ExplodingProver(SimulatedProver):
    async def generate_transfer_proof(self, proof_input):
        raise RuntimeError("wasm crashed")

    async def verify_proof(self, proof, public_signals, verifier_key):
        raise RuntimeError("verifier offline")


def test_generated_proof_verifies_and_is_stable():
    gw = _gateway()

    async def scenario():
        proof = await gw.generate_transfer_proof(_proof_input())
        first = await gw.verify_transfer_proof(proof, proof.public_signals, proof.verifier_key)
        second = await gw.verify_transfer_proof(proof, proof.public_signals, proof.verifier_key)
        return first, second

    assert asyncio.run(scenario()) == (True, True)


def test_truncated_proof_raises_and_tampered_proof_is_false():
    gw = _gateway()

    async def scenario():
        proof = await gw.generate_transfer_proof(_proof_input())
        with pytest.raises(VerificationError):
            await gw.verify_transfer_proof({"pi_a": proof.proof.pi_a}, proof.public_signals, proof.verifier_key)
        with pytest.raises(VerificationError):
            await gw.verify_transfer_proof("not a proof", proof.public_signals, proof.verifier_key)

        body = proof.proof.model_dump()
        body["pi_c"] = ["0x" + "00" * 32]
        return await gw.verify_transfer_proof(body, proof.public_signals, proof.verifier_key)

    assert asyncio.run(scenario()) is False


def test_wrong_signals_do_not_verify():
    gw = _gateway()

    async def scenario():
        proof = await gw.generate_transfer_proof(_proof_input())
        return await gw.verify_transfer_proof(proof, proof.public_signals[:-1] + ["0x1"], proof.verifier_key)

    assert asyncio.run(scenario()) is False


def test_malformed_public_signals_raise():
    gw = _gateway()

    async def scenario():
        proof = await gw.generate_transfer_proof(_proof_input())
        await gw.verify_transfer_proof(proof, [1, 2], proof.verifier_key)

    with pytest.raises(VerificationError):
        asyncio.run(scenario())


def test_prover_rejects_uncovered_amount():
    gw = _gateway()
    with pytest.raises(ProofGenerationError):
        asyncio.run(gw.generate_transfer_proof(_proof_input(amount=11, note_amount=10)))


def test_malformed_input_mapping():
    gw = _gateway()
    with pytest.raises(ProofGenerationError):
        asyncio.run(gw.generate_transfer_proof({"amount": 0, "recipient": "x"}))


def test_mismatched_nullifier_count():
    gw = _gateway()
    inp = _proof_input()
    bad = inp.model_copy(update={"nullifiers": inp.nullifiers * 2})
    with pytest.raises(ProofGenerationError):
        asyncio.run(gw.generate_transfer_proof(bad))


def test_paths_must_open_to_the_witness_root():
    gw = _gateway()
    inp = _proof_input()
    stale = inp.model_copy(update={"merkle_root": "0x" + "11" * 32})
    with pytest.raises(ProofGenerationError, match="different root"):
        asyncio.run(gw.generate_transfer_proof(stale))


def test_proof_timeout():
    gw = _gateway(latency=5.0)
    with pytest.raises(ProofGenerationError, match="timed out"):
        asyncio.run(gw.generate_transfer_proof(_proof_input(), timeout=0.05))


def test_backend_failures_are_wrapped():
    gw = ProofGateway(ExplodingProver(), SimulatedViewKeys())

    with pytest.raises(ProofGenerationError, match="wasm crashed"):
        asyncio.run(gw.generate_transfer_proof(_proof_input()))
    with pytest.raises(BackendError):
        asyncio.run(gw.verify_transfer_proof({"pi_a": ["1"], "pi_b": [["2"]], "pi_c": ["3"]}, [], {}))


def test_payment_proof_round_trip():
    gw = _gateway()
    note = Note(commitment="0xabc", nullifier="0xdef", amount=42)
    proof = gw.generate_payment_proof(note)

    assert proof.metadata["noteId"] == "0xabc"
    assert gw.verify_payment_proof(proof, note, gw.export_view_key()) is True
    assert gw.verify_payment_proof(proof, note, "other-view-key") is False
    assert gw.verify_payment_proof(proof, note.model_copy(update={"amount": 43}), "vk-test") is False


def test_payment_proof_accepts_minimal_note_mapping():
    gw = _gateway()
    proof = gw.generate_payment_proof({"commitment": "0x01", "amount": 5})
    assert gw.verify_payment_proof(proof.model_dump(), {"commitment": "0x01", "amount": 5}, "vk-test")


def test_payment_proof_missing_fields():
    gw = _gateway()
    with pytest.raises(ProofGenerationError):
        gw.generate_payment_proof({"commitment": "0x01"})
    with pytest.raises(VerificationError):
        gw.verify_payment_proof({"metadata": {}}, {"commitment": "0x01", "amount": 1}, "vk-test")
    with pytest.raises(VerificationError):
        gw.verify_payment_proof({"proof": "0x00"}, {"amount": 1}, "vk-test")
