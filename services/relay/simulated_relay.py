# services/relay/simulated_relay.py
"""
In-memory stand-in for the relay and the on-chain note tree.

NOT FOR PRODUCTION. Values are syntactically valid but carry no
cryptographic meaning. The ledger does enforce the bookkeeping rules a real
relay enforces (unique commitments, single-use nullifiers, idempotent
submission) so that flows exercised against it behave like the real thing.
"""
from __future__ import annotations

from typing import Any, Dict, List, Set

from services.crypto_core.commitments import random_hex_id
from services.crypto_core.merkle import MerkleTree
from services.logging_config import get_logger
from services.wallet_core.contracts import Relay
from services.wallet_core.errors import CommitmentNotFound, SubmissionRejected, UnknownTransaction
from services.wallet_core.models import MerklePath, MerkleRoot, SubmitReceipt, TxStatus

logger = get_logger("relay.simulated")


class SimulatedLedger:
    """Shared state between the simulated wallet (deposits) and relay (spends)."""

    def __init__(self) -> None:
        self.tree = MerkleTree()
        self.nullifiers: Set[str] = set()
        self.txs: Dict[str, Dict[str, Any]] = {}
        self.by_idempotency_key: Dict[str, str] = {}

    def insert_commitment(self, commitment: str) -> int:
        if commitment in self.tree:
            raise SubmissionRejected(f"Commitment already in tree: {commitment}")
        return self.tree.append(commitment)

    def record_tx(self, kind: str) -> str:
        tx_hash = random_hex_id()
        self.txs[tx_hash] = {"kind": kind, "polls": 0, "status": TxStatus.PENDING}
        return tx_hash


class SimulatedRelay(Relay):
    def __init__(self, ledger: SimulatedLedger, confirmations: int = 1) -> None:
        self.ledger = ledger
        self.confirmations = confirmations

    async def fetch_root(self) -> MerkleRoot:
        tree = self.ledger.tree
        return MerkleRoot(root=tree.root() if len(tree) else None, leaf_count=len(tree))

    async def get_path(self, commitment: str) -> MerklePath:
        tree = self.ledger.tree
        idx = tree.index_of(commitment)
        if idx is None:
            raise CommitmentNotFound(f"Commitment not in tree: {commitment}")
        siblings, bits = tree.get_proof(idx)
        return MerklePath(
            commitment=commitment,
            leaf_index=idx,
            siblings=siblings,
            path_indices=bits,
            root=tree.root(),
        )

    async def submit(self, payload: Dict[str, Any], idempotency_key: str) -> SubmitReceipt:
        ledger = self.ledger
        prior = ledger.by_idempotency_key.get(idempotency_key)
        if prior is not None:
            logger.info(f"Duplicate submission {idempotency_key}; returning {prior}")
            return SubmitReceipt(tx_hash=prior, status=ledger.txs[prior]["status"], transaction_id=idempotency_key)

        nullifiers: List[str] = list(payload.get("nullifiers") or [])
        outputs: List[str] = list(payload.get("outputCommitments") or [])
        if not payload.get("proof"):
            raise SubmissionRejected("Missing proof")
        if not nullifiers:
            raise SubmissionRejected("Transaction spends no notes")
        if len(set(nullifiers)) != len(nullifiers):
            raise SubmissionRejected("Duplicate nullifier in transaction")
        spent = [n for n in nullifiers if n in ledger.nullifiers]
        if spent:
            raise SubmissionRejected(f"Nullifier already spent: {spent[0]}")
        clash = [c for c in outputs if c in ledger.tree]
        if clash:
            raise SubmissionRejected(f"Commitment already in tree: {clash[0]}")

        ledger.nullifiers.update(nullifiers)
        for c in outputs:
            ledger.tree.append(c)
        tx_hash = ledger.record_tx(str(payload.get("kind", "transfer")))
        ledger.by_idempotency_key[idempotency_key] = tx_hash
        return SubmitReceipt(tx_hash=tx_hash, status=TxStatus.PENDING, transaction_id=idempotency_key)

    async def check_status(self, tx_hash: str) -> TxStatus:
        tx = self.ledger.txs.get(tx_hash)
        if tx is None:
            raise UnknownTransaction(f"Relay has no transaction {tx_hash}")
        if tx["status"] is TxStatus.PENDING:
            tx["polls"] += 1
            if tx["polls"] >= self.confirmations:
                tx["status"] = TxStatus.CONFIRMED
        return tx["status"]
