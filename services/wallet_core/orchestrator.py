# services/wallet_core/orchestrator.py
"""
Transfer orchestration: select notes, prove, submit, reconcile.

Per attempt:  form -> proving -> submitting -> accepted -> settled | failed

- Note Store changes only after the relay accepts a submission, and then all
  at once (inputs spent + change appended) via `NoteStore.settle`.
- One transfer may be in flight per orchestrator. A second `create_transfer`
  while one is created-but-unsettled fails with TransferInProgress, so two
  attempts can never select the same notes.
- A submission that fails in transport (UnavailableError) keeps the attempt
  in `submitting`; resubmitting the same Transaction reuses its idempotency key.
- If the relay accepts but the local settle fails, the attempt stays
  `accepted` and keeps the in-flight guard until `reconcile_transfer`
  succeeds.
"""
from __future__ import annotations

import asyncio
import base64
import json
from typing import Any, Dict, List, Optional, Sequence, Tuple

from services.crypto_core.addresses import is_valid_address
from services.crypto_core.commitments import new_note_material
from services.crypto_core.splits import POLICIES, SelectionPolicy
from services.crypto_core.stealth import generate_stealth_for_recipient, xchacha_encrypt
from services.logging_config import get_logger
from services.wallet_core.contracts import Relay
from services.wallet_core.errors import (
    InsufficientBalance,
    InvalidRecipient,
    NoteNotFound,
    ProofGenerationError,
    SubmissionRejected,
    TransferInProgress,
    UnavailableError,
    ValidationError,
)
from services.wallet_core.history import TransferHistory
from services.wallet_core.merkle_client import MerkleQueryClient
from services.wallet_core.models import (
    ComplianceMetadata,
    MerklePath,
    MerkleRoot,
    Note,
    StealthMetadata,
    SubmitReceipt,
    Transaction,
    TransferKind,
    TransferProofInput,
    TransferState,
    TxStatus,
)
from services.wallet_core.note_store import NoteStore
from services.wallet_core.proof_gateway import ProofGateway
from services.wallet_core.wallet_session import WalletSession

logger = get_logger("orchestrator")


def _seal_output(key32: bytes, material: Dict[str, str], amount: int) -> str:
    plaintext = json.dumps(
        {"amount": str(amount), "secret": material["secret_hex"], "nonce": material["nonce_hex"]},
        separators=(",", ":"),
    ).encode()
    nonce, ct = xchacha_encrypt(key32, plaintext)
    return base64.b64encode(nonce + ct).decode()


class TransactionOrchestrator:
    def __init__(
        self,
        notes: NoteStore,
        gateway: ProofGateway,
        merkle: MerkleQueryClient,
        wallet: WalletSession,
        relay: Relay,
        *,
        chain_type: str = "solana",
        selection: str = "insertion_order",
        enable_stealth: bool = True,
        enable_compliance: bool = True,
        verify_before_submit: bool = True,
        proof_timeout: Optional[float] = None,
        request_timeout: float = 10.0,
        history: Optional[TransferHistory] = None,
    ):
        if selection not in POLICIES:
            raise ValueError(f"Unknown note selection policy: {selection}")
        self.notes = notes
        self.gateway = gateway
        self.merkle = merkle
        self.wallet = wallet
        self.relay = relay
        self.chain_type = chain_type
        self.selection_policy: SelectionPolicy = POLICIES[selection]
        self.enable_stealth = enable_stealth
        self.enable_compliance = enable_compliance
        self.verify_before_submit = verify_before_submit
        self.proof_timeout = proof_timeout
        self.request_timeout = request_timeout
        self.history = history if history is not None else TransferHistory()
        self._in_flight: Optional[Transaction] = None

    @property
    def in_flight(self) -> Optional[Transaction]:
        return self._in_flight

    # ===== validation =====
    def _validate_amount(self, amount: Any) -> int:
        if isinstance(amount, bool) or not isinstance(amount, int):
            raise ValidationError(f"Amount must be an integer number of base units, got {amount!r}")
        if amount <= 0:
            raise ValidationError("Amount must be greater than zero")
        balance = self.notes.get_balance()
        if amount > balance:
            raise InsufficientBalance(f"Requested {amount} but spendable balance is {balance}")
        return amount

    def _validate_recipient(self, recipient: Any) -> str:
        if not isinstance(recipient, str) or not is_valid_address(recipient.strip(), self.chain_type):
            raise InvalidRecipient(f"Not a valid {self.chain_type} address: {recipient!r}")
        return recipient.strip()

    def _select(self, amount: int, preselected: Optional[Sequence[str]]) -> List[Note]:
        if preselected is not None:
            if len(set(preselected)) != len(preselected):
                raise ValidationError("Pre-selected notes contain duplicates")
            chosen = []
            for c in preselected:
                note = self.notes.get_note(c)
                if note.spent:
                    raise ValidationError(f"Pre-selected note already spent: {c}")
                chosen.append(note)
            total = sum(n.amount for n in chosen)
            if not chosen or total < amount:
                raise InsufficientBalance(f"Pre-selected notes cover {total} of {amount}")
            return chosen

        chosen, total = self.selection_policy(self.notes.get_spendable_notes(), amount)
        if not chosen:
            raise InsufficientBalance(f"Spendable notes cannot cover {amount}")
        return chosen

    # ===== create =====
    async def create_transfer(
        self,
        recipient: str,
        amount: int,
        *,
        notes: Optional[Sequence[str]] = None,
        kind: TransferKind = TransferKind.TRANSFER,
        timeout: Optional[float] = None,
    ) -> Transaction:
        """
        Build and prove a transfer of `amount` to `recipient`.

        Note selection: the commitments in `notes` when given, otherwise the
        configured policy (default: insertion order until the running sum
        covers `amount`). The returned Transaction is in `submitting` state
        and holds the in-flight guard until submitted or abandoned.
        """
        owner = self.wallet.require_connected()
        amount = self._validate_amount(amount)
        recipient = self._validate_recipient(recipient)

        if self._in_flight is not None:
            raise TransferInProgress(f"Transfer {self._in_flight.id} is still in flight")
        tx = Transaction(kind=kind, recipient=recipient, amount=amount)
        self._in_flight = tx
        try:
            await self._prepare(tx, owner, notes, timeout)
        except BaseException as e:
            tx.state = TransferState.FAILED
            tx.error = str(e) or type(e).__name__
            self._in_flight = None
            if isinstance(e, asyncio.CancelledError):
                logger.info(f"Transfer {tx.id} cancelled during {kind.value} preparation")
            else:
                logger.warning(f"Transfer {tx.id} failed before submission: {tx.error}")
            raise
        return tx

    async def _prepare(self, tx: Transaction, owner: str, preselected: Optional[Sequence[str]], timeout: Optional[float]) -> None:
        stealth_key: Optional[bytes] = None
        if self.enable_stealth and tx.kind is TransferKind.TRANSFER and self.chain_type == "solana":
            try:
                out = generate_stealth_for_recipient(tx.recipient)
            except ValueError as e:
                raise InvalidRecipient(f"Cannot derive stealth address for {tx.recipient}: {e}") from e
            tx.stealth = StealthMetadata(stealth_address=out.stealth_address, ephemeral_pub=out.ephemeral_pub_b58)
            stealth_key = out.shared_key

        try:
            selected = self._select(tx.amount, preselected)
        except NoteNotFound as e:
            raise ValidationError(str(e)) from e
        total = sum(n.amount for n in selected)
        tx.input_commitments = [n.commitment for n in selected]

        tx.state = TransferState.PROVING
        root, paths = await self._witness(selected, timeout)

        out_owner = tx.stealth.stealth_address if tx.stealth else tx.recipient
        out_material = new_note_material(tx.amount, out_owner)
        tx.recipient_commitment = out_material["commitment"]
        if stealth_key is not None:
            tx.recipient_ciphertext = _seal_output(stealth_key, out_material, tx.amount)

        change = total - tx.amount
        outputs = [out_material["commitment"]]
        if change > 0:
            ch = new_note_material(change, owner)
            tx.change_note = Note(
                commitment=ch["commitment"],
                nullifier=ch["nullifier"],
                amount=change,
                owner=owner,
                secret_hex=ch["secret_hex"],
            )
            outputs.append(ch["commitment"])

        proof_input = TransferProofInput(
            amount=tx.amount,
            recipient=out_owner,
            nullifiers=[n.nullifier for n in selected],
            input_commitments=tx.input_commitments,
            input_amounts=[n.amount for n in selected],
            output_commitments=outputs,
            merkle_root=root.root,
            merkle_paths=paths,
        )
        proof = await self.gateway.generate_transfer_proof(
            proof_input, timeout=timeout if timeout is not None else self.proof_timeout
        )
        if self.verify_before_submit:
            ok = await self.gateway.verify_transfer_proof(proof, proof.public_signals, proof.verifier_key)
            if not ok:
                raise ProofGenerationError("Generated proof failed local verification")

        tx.proof = proof
        tx.nullifiers = list(proof_input.nullifiers)
        if self.enable_compliance:
            tx.compliance = ComplianceMetadata()
        tx.state = TransferState.SUBMITTING
        logger.info(
            f"Transfer {tx.id} ready: amount={tx.amount} inputs={len(selected)} change={change}"
        )

    async def _witness(self, selected: Sequence[Note], timeout: Optional[float]) -> Tuple[MerkleRoot, List[MerklePath]]:
        """Root and paths that all open to the same tree state."""
        for attempt in range(2):
            root = await self.merkle.fetch_root(timeout=timeout)
            paths = [await self.merkle.get_path(n.commitment, timeout=timeout) for n in selected]
            if all(p.root == root.root for p in paths):
                return root, paths
            logger.info(f"Merkle root moved while reading paths (attempt {attempt + 1}); refetching")
            self.merkle.invalidate()
        raise UnavailableError("Merkle tree kept changing while building the proof witness")

    # ===== submit =====
    async def submit_transfer(self, tx: Transaction) -> SubmitReceipt:
        self.wallet.require_connected()
        if tx is not self._in_flight or tx.state is not TransferState.SUBMITTING:
            raise ValidationError(f"Transaction {tx.id} is not awaiting submission (state={tx.state.value})")

        try:
            receipt = await asyncio.wait_for(
                self.relay.submit(tx.relay_payload(), tx.idempotency_key),
                timeout=self.request_timeout,
            )
        except asyncio.TimeoutError as e:
            logger.warning(f"Submission of {tx.id} timed out; outcome unknown, resubmit the same transaction")
            raise UnavailableError(f"Submission timed out after {self.request_timeout}s") from e
        except UnavailableError:
            logger.warning(f"Submission of {tx.id} did not reach the relay; resubmit the same transaction")
            raise
        except SubmissionRejected as e:
            self._fail(tx, str(e))
            raise
        except Exception as e:
            self._fail(tx, str(e))
            raise SubmissionRejected(f"Submission failed: {e}") from e

        tx.tx_hash = receipt.tx_hash
        tx.state = TransferState.ACCEPTED
        self._settle(tx)
        return receipt

    def _settle(self, tx: Transaction) -> None:
        try:
            self.notes.settle(tx.input_commitments, [tx.change_note] if tx.change_note else [])
        except Exception as e:
            tx.error = str(e)
            logger.error(f"Relay accepted {tx.id} ({tx.tx_hash}) but local settle failed: {e}", exc_info=True)
            raise
        tx.error = None
        tx.state = TransferState.SETTLED
        self._in_flight = None
        self.merkle.invalidate()
        self.history.record(tx)
        logger.info(f"Transfer {tx.id} settled as {tx.tx_hash}")

    def reconcile_transfer(self, tx: Transaction) -> None:
        """Retry the local settle of a transfer the relay already accepted."""
        if tx is not self._in_flight or tx.state is not TransferState.ACCEPTED:
            raise ValidationError(f"Transaction {tx.id} is not awaiting reconciliation (state={tx.state.value})")
        self._settle(tx)

    def _fail(self, tx: Transaction, reason: str) -> None:
        tx.state = TransferState.FAILED
        tx.error = reason
        if self._in_flight is tx:
            self._in_flight = None
        logger.warning(f"Transfer {tx.id} failed: {reason}")

    def abandon_transfer(self, tx: Transaction) -> None:
        """Drop a created-but-unsubmitted transfer. The Note Store is not touched."""
        if tx.state in (TransferState.SETTLED, TransferState.FAILED):
            return
        if tx.state is TransferState.ACCEPTED:
            raise ValidationError(f"Transaction {tx.id} was accepted by the relay; reconcile it instead")
        self._fail(tx, "abandoned")

    # ===== status / one-shot flows =====
    async def check_status(self, tx_ref: str, *, timeout: Optional[float] = None) -> TxStatus:
        if not tx_ref:
            raise ValidationError("Transaction reference is required")
        limit = timeout if timeout is not None else self.request_timeout
        try:
            return await asyncio.wait_for(self.relay.check_status(tx_ref), timeout=limit)
        except asyncio.TimeoutError as e:
            raise UnavailableError(f"Status check timed out after {limit}s") from e

    async def transfer(self, recipient: str, amount: int, **kwargs: Any) -> SubmitReceipt:
        """create + submit. On UnavailableError the attempt stays in `in_flight` for resubmission."""
        tx = await self.create_transfer(recipient, amount, **kwargs)
        return await self.submit_transfer(tx)

    async def withdraw(self, amount: int, recipient: str, **kwargs: Any) -> SubmitReceipt:
        return await self.transfer(recipient, amount, kind=TransferKind.WITHDRAW, **kwargs)
