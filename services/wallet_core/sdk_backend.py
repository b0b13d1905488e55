# services/wallet_core/sdk_backend.py
"""
Real backend: every capability delegates to the external CipherPay SDK.

The SDK is duck-typed. Expected surface:

    sdk.wallet_provider.connect() / disconnect() / get_public_address()
    sdk.wallet_provider.sign_and_send_deposit_tx(to, amount, commitment)
    sdk.zk_prover.generate_transfer_proof(input_dict) -> {proof, publicSignals, verifierKey}
    sdk.zk_prover.verify_proof(proof, public_signals, verifier_key) -> bool
    sdk.view_key_manager.export_view_key() / generate_proof_of_payment(note) / verify_proof_of_payment(...)
    sdk.start_event_monitoring() / stop_event_monitoring() / destroy()      (optional)
    sdk.get_notes()                                                         (optional)

Any method may be sync or async. SDK failures are wrapped in the core's
typed errors, never swallowed. Merkle and transaction traffic goes to the
relay over HTTP.
"""
from __future__ import annotations

import importlib
import inspect
from typing import Any, Callable, Dict, Iterable, List, Optional

from pydantic import ValidationError as PydanticValidationError

from services.logging_config import get_logger
from services.relay.relay_client import RelayClient
from services.wallet_core.config import CipherPayConfig
from services.wallet_core.contracts import Backend, Prover, ViewKeyManager, WalletProvider
from services.wallet_core.errors import (
    BackendError,
    CipherPayError,
    ConfigurationError,
    ProofGenerationError,
    WalletConnectionError,
)
from services.wallet_core.models import (
    Groth16Proof,
    Note,
    PaymentProof,
    TransferProof,
    TransferProofInput,
)

logger = get_logger("backend.sdk")


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


def load_sdk_factory(target: str) -> Callable[[Dict[str, Any]], Any]:
    """Resolve 'package.module:callable'."""
    module_name, sep, attr = target.partition(":")
    if not sep or not module_name or not attr:
        raise ConfigurationError(f"sdk_factory must look like 'module:callable', got {target!r}")
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ConfigurationError(f"Cannot import SDK module {module_name!r}: {e}") from e
    factory = getattr(module, attr, None)
    if not callable(factory):
        raise ConfigurationError(f"SDK factory {target!r} is not callable")
    return factory


def _proof_from_sdk(raw: Any) -> TransferProof:
    if isinstance(raw, TransferProof):
        return raw
    if not isinstance(raw, dict):
        raise ProofGenerationError(f"SDK returned a {type(raw).__name__} instead of a proof")
    try:
        return TransferProof(
            proof=Groth16Proof.model_validate(raw.get("proof")),
            public_signals=[str(s) for s in raw.get("publicSignals", raw.get("public_signals", []))],
            verifier_key=dict(raw.get("verifierKey", raw.get("verifier_key", {})) or {}),
        )
    except (PydanticValidationError, TypeError, ValueError) as e:
        raise ProofGenerationError(f"SDK returned a malformed proof: {e}") from e


class SdkWallet(WalletProvider):
    def __init__(self, sdk: Any):
        self._wp = sdk.wallet_provider

    async def connect(self) -> str:
        try:
            await _maybe_await(self._wp.connect())
            return await _maybe_await(self._wp.get_public_address())
        except CipherPayError:
            raise
        except Exception as e:
            raise WalletConnectionError(f"SDK wallet connect failed: {e}") from e

    async def disconnect(self) -> None:
        try:
            await _maybe_await(self._wp.disconnect())
        except Exception as e:
            raise BackendError(f"SDK wallet disconnect failed: {e}") from e

    def get_public_address(self) -> Optional[str]:
        return self._wp.get_public_address()

    async def sign_and_send_deposit_tx(self, to: str, amount: int, commitment: str) -> str:
        try:
            return str(await _maybe_await(self._wp.sign_and_send_deposit_tx(to, str(amount), commitment)))
        except Exception as e:
            raise BackendError(f"SDK deposit failed: {e}") from e


class SdkProver(Prover):
    def __init__(self, sdk: Any):
        self._prover = sdk.zk_prover

    async def generate_transfer_proof(self, proof_input: TransferProofInput) -> TransferProof:
        payload = proof_input.model_dump()
        payload["amount"] = str(proof_input.amount)
        payload["input_amounts"] = [str(a) for a in proof_input.input_amounts]
        try:
            raw = await _maybe_await(self._prover.generate_transfer_proof(payload))
        except Exception as e:
            raise ProofGenerationError(f"SDK prover failed: {e}") from e
        return _proof_from_sdk(raw)

    async def verify_proof(self, proof: Groth16Proof, public_signals: List[str], verifier_key: Dict[str, Any]) -> bool:
        try:
            return bool(await _maybe_await(
                self._prover.verify_proof(proof.model_dump(), public_signals, verifier_key)
            ))
        except Exception as e:
            raise BackendError(f"SDK verifier failed: {e}") from e


class SdkViewKeys(ViewKeyManager):
    def __init__(self, sdk: Any):
        self._vkm = sdk.view_key_manager

    def export_view_key(self) -> str:
        try:
            key = self._vkm.export_view_key()
        except Exception as e:
            raise BackendError(f"SDK view key export failed: {e}") from e
        if not key:
            raise BackendError("SDK returned no view key")
        return key

    def generate_proof_of_payment(self, note: Note) -> PaymentProof:
        try:
            raw = self._vkm.generate_proof_of_payment(note.model_dump(exclude={"secret_hex"}))
        except Exception as e:
            raise ProofGenerationError(f"SDK payment proof failed: {e}") from e
        try:
            return PaymentProof.model_validate(raw)
        except PydanticValidationError as e:
            raise ProofGenerationError(f"SDK returned a malformed payment proof: {e}") from e

    def verify_proof_of_payment(self, proof: PaymentProof, note: Note, view_key: str) -> bool:
        return bool(self._vkm.verify_proof_of_payment(
            proof.model_dump(), note.model_dump(exclude={"secret_hex"}), view_key
        ))


class SdkBackend(Backend):
    name = "real"

    def __init__(self, sdk: Any, config: CipherPayConfig, relay: Optional[RelayClient] = None):
        self.sdk = sdk
        self.config = config
        self.wallet = SdkWallet(sdk)
        self.prover = SdkProver(sdk)
        self.view_keys = SdkViewKeys(sdk)
        self.relay = relay or RelayClient(
            config.relayer_url,
            api_key=config.relayer_api_key,
            timeout=config.request_timeout,
            max_retries=config.max_retries,
            backoff=config.retry_backoff,
        )
        self._monitoring = False

    async def start_event_monitoring(self) -> None:
        fn = getattr(self.sdk, "start_event_monitoring", None)
        if fn is None or self._monitoring:
            return
        try:
            await _maybe_await(fn())
        except Exception as e:
            raise BackendError(f"SDK event monitoring failed to start: {e}") from e
        self._monitoring = True
        logger.info("SDK event monitoring started")

    async def stop_event_monitoring(self) -> None:
        fn = getattr(self.sdk, "stop_event_monitoring", None)
        if fn is None or not self._monitoring:
            return
        try:
            await _maybe_await(fn())
        finally:
            self._monitoring = False
        logger.info("SDK event monitoring stopped")

    async def initial_notes(self) -> Iterable[Note]:
        fn = getattr(self.sdk, "get_notes", None)
        if fn is None:
            return []
        try:
            raw = await _maybe_await(fn())
        except Exception as e:
            raise BackendError(f"SDK note sync failed: {e}") from e
        notes = []
        for item in raw or []:
            try:
                notes.append(item if isinstance(item, Note) else Note.model_validate(item))
            except PydanticValidationError as e:
                raise BackendError(f"SDK returned a malformed note: {e}") from e
        return notes

    async def aclose(self) -> None:
        try:
            await self.relay.aclose()
        finally:
            fn = getattr(self.sdk, "destroy", None)
            if fn is not None:
                await _maybe_await(fn())
