from __future__ import annotations

import asyncio
import json
from types import SimpleNamespace
from typing import List

import pytest

from services.crypto_core.commitments import new_note_material
from services.relay.simulated_relay import SimulatedRelay
from services.wallet_core.backends import SimulatedBackend, SimulatedProver
from services.wallet_core.config import CipherPayConfig
from services.wallet_core.errors import (
    InsufficientBalance,
    InvalidRecipient,
    NotConnected,
    ProofGenerationError,
    SubmissionRejected,
    TransferInProgress,
    UnavailableError,
    ValidationError,
)
from services.wallet_core.merkle_client import MerkleQueryClient
from services.wallet_core.models import MerkleRoot, Note, TransferKind, TransferState, TxStatus
from services.wallet_core.note_store import NoteStore
from services.wallet_core.orchestrator import TransactionOrchestrator
from services.wallet_core.proof_gateway import ProofGateway
from services.wallet_core.wallet_session import WalletSession


class CountingProver(SimulatedProver):
    def __init__(self, **kw):
        super().__init__(**kw)
        self.calls = 0
        self.inputs = []

    async def generate_transfer_proof(self, proof_input):
        self.calls += 1
        self.inputs.append(proof_input)
        return await super().generate_transfer_proof(proof_input)


class RejectingRelay(SimulatedRelay):
    async def submit(self, payload, idempotency_key):
        raise SubmissionRejected("invalid proof")


class StaleRootRelay(SimulatedRelay):
    """Serves a root frozen at construction while paths track the live tree."""

    def __init__(self, ledger):
        super().__init__(ledger)
        self.root_reads = 0
        self.stale = MerkleRoot(root="0x" + "00" * 32, leaf_count=1)

    async def fetch_root(self):
        self.root_reads += 1
        return self.stale


class FlakyRelay(SimulatedRelay):
    """Drops the first submission on the floor, then behaves."""

    def __init__(self, ledger):
        super().__init__(ledger)
        self.keys: List[str] = []

    async def submit(self, payload, idempotency_key):
        self.keys.append(idempotency_key)
        if len(self.keys) == 1:
            raise UnavailableError("connection reset")
        return await super().submit(payload, idempotency_key)


def _stack(prover=None, relay_cls=None, **overrides):
    config = CipherPayConfig.from_mapping(overrides)
    backend = SimulatedBackend(config)
    prover = prover or CountingProver()
    relay = relay_cls(backend.ledger) if relay_cls else backend.relay
    notes = NoteStore()
    gateway = ProofGateway(prover, backend.view_keys, default_timeout=config.proof_timeout)
    merkle = MerkleQueryClient(relay)
    wallet = WalletSession(backend.wallet)
    orch = TransactionOrchestrator(
        notes, gateway, merkle, wallet, relay,
        chain_type=config.chain_type,
        selection=config.note_selection,
        enable_stealth=config.enable_stealth_addresses,
        enable_compliance=config.enable_compliance,
        verify_before_submit=config.verify_before_submit,
        proof_timeout=config.proof_timeout,
        request_timeout=config.request_timeout,
    )
    return SimpleNamespace(config=config, backend=backend, prover=prover, relay=relay,
                           notes=notes, merkle=merkle, wallet=wallet, orch=orch)


def _fund(s, amount: int, owner: str = "me") -> Note:
    """Put a note both on the simulated ledger and in the local store."""
    m = new_note_material(amount, owner)
    s.backend.ledger.insert_commitment(m["commitment"])
    return s.notes.add_note(Note(commitment=m["commitment"], nullifier=m["nullifier"],
                                 amount=amount, owner=owner, secret_hex=m["secret_hex"]))


def _snapshot(s):
    return [n.model_dump() for n in s.notes.get_all_notes()]


def test_transfer_spends_both_notes_and_keeps_change(recipient):
    s = _stack()
    a = _fund(s, 1_000_000_000)
    b = _fund(s, 500_000_000)

    async def scenario():
        await s.wallet.connect()
        tx = await s.orch.create_transfer(recipient, 1_200_000_000)
        receipt = await s.orch.submit_transfer(tx)
        return tx, receipt

    tx, receipt = asyncio.run(scenario())

    assert tx.state is TransferState.SETTLED
    assert tx.tx_hash == receipt.tx_hash
    assert tx.input_commitments == [a.commitment, b.commitment]
    assert s.notes.get_note(a.commitment).spent
    assert s.notes.get_note(b.commitment).spent
    spendable = s.notes.get_spendable_notes()
    assert [n.amount for n in spendable] == [300_000_000]
    assert spendable[0].commitment == tx.change_note.commitment
    assert s.notes.get_balance() == 300_000_000
    assert s.orch.in_flight is None
    assert {a.nullifier, b.nullifier} <= s.backend.ledger.nullifiers
    assert len(s.orch.history) == 1


def test_stealth_recipient_and_sealed_output(recipient):
    s = _stack()
    _fund(s, 100)

    async def scenario():
        await s.wallet.connect()
        return await s.orch.create_transfer(recipient, 40)

    tx = asyncio.run(scenario())
    payload = tx.relay_payload()
    assert tx.stealth is not None
    assert payload["recipient"] == tx.stealth.stealth_address != recipient
    assert payload["ephemeralPub"] == tx.stealth.ephemeral_pub
    assert payload["encryptedOutput"]
    assert payload["amount"] == "40"
    assert len(payload["outputCommitments"]) == 2


def test_payload_never_carries_note_secrets(recipient):
    s = _stack()
    funded = _fund(s, 100)

    async def scenario():
        await s.wallet.connect()
        return await s.orch.create_transfer(recipient, 60)

    tx = asyncio.run(scenario())
    blob = json.dumps(tx.relay_payload())
    assert funded.secret_hex not in blob
    assert tx.change_note.secret_hex not in blob


@pytest.mark.parametrize("amount", [0, -5, 1.5, True, "10"])
def test_bad_amount_rejected_before_proving(recipient, amount):
    s = _stack()
    _fund(s, 100)

    async def scenario():
        await s.wallet.connect()
        await s.orch.create_transfer(recipient, amount)

    with pytest.raises(ValidationError):
        asyncio.run(scenario())
    assert s.prover.calls == 0
    assert s.orch.in_flight is None


def test_requires_connected_wallet(recipient):
    s = _stack()
    _fund(s, 100)
    with pytest.raises(NotConnected):
        asyncio.run(s.orch.create_transfer(recipient, 10))


def test_no_notes_means_insufficient_balance(recipient):
    s = _stack()

    async def scenario():
        await s.wallet.connect()
        await s.orch.create_transfer(recipient, 1)

    with pytest.raises(InsufficientBalance):
        asyncio.run(scenario())
    assert s.prover.calls == 0


def test_amount_above_balance(recipient):
    s = _stack()
    _fund(s, 10)

    async def scenario():
        await s.wallet.connect()
        await s.orch.create_transfer(recipient, 11)

    with pytest.raises(InsufficientBalance):
        asyncio.run(scenario())


@pytest.mark.parametrize("bad", ["", "not-base58-0OIl", "0x" + "ab" * 20, 12345])
def test_invalid_recipient(bad):
    s = _stack()
    _fund(s, 10)

    async def scenario():
        await s.wallet.connect()
        await s.orch.create_transfer(bad, 5)

    with pytest.raises(InvalidRecipient):
        asyncio.run(scenario())
    assert s.prover.calls == 0


def test_ethereum_chain_skips_stealth(evm_recipient):
    s = _stack(chain_type="ethereum")
    _fund(s, 10)

    async def scenario():
        await s.wallet.connect()
        tx = await s.orch.create_transfer(evm_recipient, 10)
        await s.orch.submit_transfer(tx)
        return tx

    tx = asyncio.run(scenario())
    assert tx.stealth is None
    assert tx.relay_payload()["recipient"] == evm_recipient


def test_exact_amount_produces_no_change(recipient):
    s = _stack()
    n = _fund(s, 250)

    async def scenario():
        await s.wallet.connect()
        tx = await s.orch.create_transfer(recipient, 250)
        await s.orch.submit_transfer(tx)
        return tx

    tx = asyncio.run(scenario())
    assert tx.change_note is None
    assert s.notes.get_balance() == 0
    assert s.notes.get_all_notes() == [s.notes.get_note(n.commitment)]


def test_second_transfer_blocked_while_first_in_flight(recipient):
    s = _stack()
    _fund(s, 100)
    _fund(s, 100)

    async def scenario():
        await s.wallet.connect()
        first = await s.orch.create_transfer(recipient, 50)
        with pytest.raises(TransferInProgress):
            await s.orch.create_transfer(recipient, 50)
        s.orch.abandon_transfer(first)
        second = await s.orch.create_transfer(recipient, 50)
        return first, second

    first, second = asyncio.run(scenario())
    assert first.state is TransferState.FAILED
    assert first.error == "abandoned"
    assert second.input_commitments == first.input_commitments
    assert s.notes.get_balance() == 200


def test_rejected_submission_leaves_store_untouched(recipient):
    s = _stack(relay_cls=RejectingRelay)
    _fund(s, 100)
    before = _snapshot(s)

    async def scenario():
        await s.wallet.connect()
        tx = await s.orch.create_transfer(recipient, 30)
        with pytest.raises(SubmissionRejected):
            await s.orch.submit_transfer(tx)
        return tx

    tx = asyncio.run(scenario())
    assert _snapshot(s) == before
    assert tx.state is TransferState.FAILED
    assert s.orch.in_flight is None
    assert len(s.orch.history) == 0


def test_unavailable_submission_can_be_resubmitted(recipient):
    s = _stack(relay_cls=FlakyRelay)
    _fund(s, 100)
    before = _snapshot(s)

    async def scenario():
        await s.wallet.connect()
        tx = await s.orch.create_transfer(recipient, 30)
        with pytest.raises(UnavailableError):
            await s.orch.submit_transfer(tx)
        assert tx.state is TransferState.SUBMITTING
        assert s.orch.in_flight is tx
        assert _snapshot(s) == before
        await s.orch.submit_transfer(tx)
        return tx

    tx = asyncio.run(scenario())
    assert tx.state is TransferState.SETTLED
    assert s.relay.keys == [tx.id, tx.id]
    assert s.notes.get_balance() == 70


def test_submit_requires_the_in_flight_transaction(recipient):
    s = _stack()
    _fund(s, 100)

    async def scenario():
        await s.wallet.connect()
        tx = await s.orch.create_transfer(recipient, 30)
        await s.orch.submit_transfer(tx)
        await s.orch.submit_transfer(tx)

    with pytest.raises(ValidationError):
        asyncio.run(scenario())
    assert s.notes.get_balance() == 70


def test_cancellation_during_proving_leaves_store_untouched(recipient):
    s = _stack(prover=CountingProver(latency=5.0))
    _fund(s, 100)
    before = _snapshot(s)

    async def scenario():
        await s.wallet.connect()
        task = asyncio.create_task(s.orch.create_transfer(recipient, 30))
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(scenario())
    assert _snapshot(s) == before
    assert s.orch.in_flight is None


def test_self_verification_failure_aborts(recipient):
    s = _stack(prover=CountingProver(failure_rate=1.0))
    _fund(s, 100)

    async def scenario():
        await s.wallet.connect()
        await s.orch.create_transfer(recipient, 30)

    with pytest.raises(ProofGenerationError):
        asyncio.run(scenario())
    assert s.orch.in_flight is None
    assert s.notes.get_balance() == 100


def test_smallest_first_policy(recipient):
    s = _stack(note_selection="smallest_first")
    big = _fund(s, 500)
    small = _fund(s, 20)
    mid = _fund(s, 60)

    async def scenario():
        await s.wallet.connect()
        return await s.orch.create_transfer(recipient, 70)

    tx = asyncio.run(scenario())
    assert tx.input_commitments == [small.commitment, mid.commitment]
    assert big.commitment not in tx.input_commitments


def test_preselected_notes(recipient):
    s = _stack()
    _fund(s, 500)
    chosen = _fund(s, 80)

    async def scenario():
        await s.wallet.connect()
        tx = await s.orch.create_transfer(recipient, 50, notes=[chosen.commitment])
        s.orch.abandon_transfer(tx)
        with pytest.raises(InsufficientBalance):
            await s.orch.create_transfer(recipient, 100, notes=[chosen.commitment])
        with pytest.raises(ValidationError):
            await s.orch.create_transfer(recipient, 50, notes=["0xmissing"])
        return tx

    tx = asyncio.run(scenario())
    assert tx.input_commitments == [chosen.commitment]
    assert tx.change_note.amount == 30


def test_withdraw_skips_stealth(recipient):
    s = _stack()
    _fund(s, 100)

    async def scenario():
        await s.wallet.connect()
        await s.orch.withdraw(40, recipient)

    asyncio.run(scenario())
    item = s.orch.history.items()[0]
    assert item.kind == TransferKind.WITHDRAW.value
    assert item.recipient == recipient
    assert s.notes.get_balance() == 60


def test_compliance_metadata_toggle(recipient):
    on = _stack()
    off = _stack(enable_compliance=False)
    for s in (on, off):
        _fund(s, 10)

    async def scenario(s):
        await s.wallet.connect()
        return await s.orch.create_transfer(recipient, 5)

    assert asyncio.run(scenario(on)).compliance.checked is True
    assert asyncio.run(scenario(off)).compliance is None


def test_check_status(recipient):
    s = _stack()
    _fund(s, 10)

    async def scenario():
        await s.wallet.connect()
        receipt = await s.orch.transfer(recipient, 5)
        status = await s.orch.check_status(receipt.tx_hash)
        with pytest.raises(ValidationError):
            await s.orch.check_status("")
        return status

    assert asyncio.run(scenario()) is TxStatus.CONFIRMED


def test_unknown_selection_policy():
    with pytest.raises(ValueError):
        TransactionOrchestrator(None, None, None, None, None, selection="random")


def test_witness_root_matches_paths_after_tree_grows(recipient):
    s = _stack()
    _fund(s, 100)

    async def scenario():
        await s.wallet.connect()
        cached = await s.merkle.fetch_root()
        s.backend.ledger.insert_commitment(new_note_material(5, "someone-else")["commitment"])
        await s.orch.create_transfer(recipient, 40)
        return cached

    cached = asyncio.run(scenario())
    proof_input = s.prover.inputs[0]
    assert proof_input.merkle_root != cached.root
    assert all(p.root == proof_input.merkle_root for p in proof_input.merkle_paths)


def test_witness_gives_up_when_root_never_matches(recipient):
    s = _stack(relay_cls=StaleRootRelay)
    _fund(s, 100)

    async def scenario():
        await s.wallet.connect()
        await s.orch.create_transfer(recipient, 40)

    with pytest.raises(UnavailableError):
        asyncio.run(scenario())
    assert s.relay.root_reads == 2
    assert s.prover.calls == 0
    assert s.orch.in_flight is None


def test_accepted_transfer_keeps_guard_until_reconciled(recipient):
    s = _stack()
    _fund(s, 100)
    real_settle = s.notes.settle
    failures = []

    def flaky_settle(spent, appended):
        if not failures:
            failures.append(1)
            raise OSError("disk full")
        return real_settle(spent, appended)

    s.notes.settle = flaky_settle

    async def scenario():
        await s.wallet.connect()
        tx = await s.orch.create_transfer(recipient, 30)
        with pytest.raises(OSError):
            await s.orch.submit_transfer(tx)
        assert tx.state is TransferState.ACCEPTED
        assert tx.tx_hash
        assert s.orch.in_flight is tx
        with pytest.raises(TransferInProgress):
            await s.orch.create_transfer(recipient, 10)
        with pytest.raises(ValidationError):
            s.orch.abandon_transfer(tx)
        with pytest.raises(ValidationError):
            await s.orch.submit_transfer(tx)
        s.orch.reconcile_transfer(tx)
        return tx

    tx = asyncio.run(scenario())
    assert tx.state is TransferState.SETTLED
    assert tx.error is None
    assert s.orch.in_flight is None
    assert s.notes.get_balance() == 70
    assert len(s.orch.history) == 1
