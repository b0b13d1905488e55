# services/relay/relay_client.py
from __future__ import annotations

from typing import Any, Dict, Optional, Tuple
from urllib.parse import quote

import httpx
from pydantic import ValidationError as PydanticValidationError

from services.logging_config import get_logger
from services.relay.http_retry import retry_async
from services.relay.schemas_relay import PathRes, RootRes, StatusRes, SubmitRes
from services.wallet_core.contracts import Relay
from services.wallet_core.errors import (
    BackendError,
    CommitmentNotFound,
    SubmissionRejected,
    UnavailableError,
    UnknownTransaction,
)
from services.wallet_core.models import MerklePath, MerkleRoot, SubmitReceipt, TxStatus

logger = get_logger("relay.client")

STATUS_MAP = {
    "pending": TxStatus.PENDING,
    "submitted": TxStatus.PENDING,
    "success": TxStatus.CONFIRMED,
    "confirmed": TxStatus.CONFIRMED,
    "finalized": TxStatus.CONFIRMED,
    "failed": TxStatus.FAILED,
    "error": TxStatus.FAILED,
}


def _looks_not_found(err: Optional[str]) -> bool:
    return bool(err) and "not found" in err.lower()


class RelayClient(Relay):
    """
    JSON-over-HTTP client for the relay service.

    Endpoints
    - GET  /merkle/root                 -> {success, root, leafCount}
    - GET  /merkle/path/{commitment}    -> {success, path: {siblings, pathIndices, root, leafIndex}}
    - POST /transactions                -> {success, txHash, status}   (Idempotency-Key header)
    - GET  /transactions/{txHash}       -> {success, status}

    Reads are retried with exponential backoff on transport failures and 5xx.
    Submission is attempted exactly once per call.
    """

    def __init__(
        self,
        base_url: str,
        *,
        api_key: Optional[str] = None,
        timeout: float = 10.0,
        max_retries: int = 3,
        backoff: float = 0.5,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        if not base_url:
            raise ValueError("base_url is required")
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._max_retries = max_retries
        self._backoff = backoff
        headers = {"Accept": "application/json"}
        if api_key:
            headers["X-API-Key"] = api_key
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._headers = headers

    def read_budget(self, per_call: float) -> float:
        attempts = max(1, self._max_retries)
        sleeps = sum(self._backoff * (2 ** i) for i in range(attempts - 1))
        return attempts * max(per_call, self._timeout) + sleeps

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "RelayClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    # --------------- transport ---------------
    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Tuple[int, Dict[str, Any]]:
        url = f"{self._base_url}{path}"
        try:
            r = await self._client.request(
                method,
                url,
                json=json,
                headers={**self._headers, **(headers or {})},
                timeout=self._timeout,
            )
        except httpx.TimeoutException as e:
            raise UnavailableError(f"Relay timeout on {method} {path}") from e
        except httpx.TransportError as e:
            raise UnavailableError(f"Relay unreachable on {method} {path}: {e}") from e

        if r.status_code >= 500 or r.status_code == 429:
            raise UnavailableError(f"Relay returned HTTP {r.status_code} on {method} {path}")
        try:
            body = r.json()
        except ValueError as e:
            if r.status_code >= 400:
                return r.status_code, {}
            raise UnavailableError(f"Relay returned non-JSON body on {method} {path}") from e
        if not isinstance(body, dict):
            raise UnavailableError(f"Relay returned unexpected payload on {method} {path}")
        return r.status_code, body

    async def _read(self, path: str, description: str) -> Tuple[int, Dict[str, Any]]:
        return await retry_async(
            lambda: self._request("GET", path),
            max_retries=self._max_retries,
            backoff=self._backoff,
            description=description,
        )

    # --------------- Merkle ---------------
    async def fetch_root(self) -> MerkleRoot:
        _code, body = await self._read("/merkle/root", "Fetch Merkle root")
        try:
            res = RootRes.model_validate(body)
        except PydanticValidationError as e:
            raise UnavailableError(f"Malformed root response: {e}") from e
        if not res.success:
            raise BackendError(f"Relay refused root fetch: {res.error}")
        return MerkleRoot(root=res.root, leaf_count=res.leaf_count)

    async def get_path(self, commitment: str) -> MerklePath:
        code, body = await self._read(f"/merkle/path/{quote(commitment, safe='')}", "Fetch Merkle path")
        if code == 404:
            raise CommitmentNotFound(f"Commitment not in tree: {commitment}")
        try:
            res = PathRes.model_validate(body)
        except PydanticValidationError as e:
            raise UnavailableError(f"Malformed path response: {e}") from e
        if not res.success:
            if _looks_not_found(res.error):
                raise CommitmentNotFound(f"Commitment not in tree: {commitment}")
            raise BackendError(f"Relay refused path fetch: {res.error}")
        if res.path is None:
            raise CommitmentNotFound(f"Commitment not in tree: {commitment}")
        p = res.path
        return MerklePath(
            commitment=commitment,
            leaf_index=p.leaf_index,
            siblings=p.siblings,
            path_indices=p.path_indices,
            root=p.root,
        )

    # --------------- transactions ---------------
    async def submit(self, payload: Dict[str, Any], idempotency_key: str) -> SubmitReceipt:
        code, body = await self._request(
            "POST",
            "/transactions",
            json=payload,
            headers={"Idempotency-Key": idempotency_key},
        )
        if code >= 400:
            raise SubmissionRejected(str(body.get("error") or f"Relay rejected transaction (HTTP {code})"))
        try:
            res = SubmitRes.model_validate(body)
        except PydanticValidationError as e:
            raise SubmissionRejected(f"Malformed submission response: {e}") from e
        if not res.success:
            raise SubmissionRejected(res.error or f"Relay rejected transaction (HTTP {code})")
        if not res.tx_hash:
            raise SubmissionRejected("Relay accepted transaction without a txHash")
        logger.info(f"Relay accepted {payload.get('id')} as {res.tx_hash}")
        return SubmitReceipt(
            tx_hash=res.tx_hash,
            status=STATUS_MAP.get((res.status or "pending").lower(), TxStatus.PENDING),
            transaction_id=str(payload.get("id", idempotency_key)),
        )

    async def check_status(self, tx_hash: str) -> TxStatus:
        code, body = await self._read(f"/transactions/{quote(tx_hash, safe='')}", "Check tx status")
        if code == 404:
            raise UnknownTransaction(f"Relay has no transaction {tx_hash}")
        try:
            res = StatusRes.model_validate(body)
        except PydanticValidationError as e:
            raise UnavailableError(f"Malformed status response: {e}") from e
        if not res.success:
            if _looks_not_found(res.error):
                raise UnknownTransaction(f"Relay has no transaction {tx_hash}")
            raise BackendError(f"Relay refused status check: {res.error}")
        status = STATUS_MAP.get((res.status or "").lower())
        if status is None:
            raise BackendError(f"Unrecognized transaction status: {res.status!r}")
        return status
