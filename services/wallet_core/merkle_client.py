# services/wallet_core/merkle_client.py
from __future__ import annotations

import asyncio
import time
from collections import OrderedDict
from typing import Any, Dict, Optional, Tuple

from services.logging_config import get_logger
from services.wallet_core.contracts import Relay
from services.wallet_core.errors import UnavailableError
from services.wallet_core.models import MerklePath, MerkleRoot

logger = get_logger("merkle_client")

_ROOT_KEY = "__root__"


class _TTLCache:
    """LRU map whose entries expire `ttl` seconds after insertion."""

    def __init__(self, max_size: int, ttl: float):
        self.max_size = max_size
        self.ttl = ttl
        self._data: "OrderedDict[str, Tuple[float, Any]]" = OrderedDict()
        self.hits = 0
        self.misses = 0

    def get(self, key: str) -> Optional[Any]:
        item = self._data.get(key)
        if item is None or item[0] < time.monotonic():
            if item is not None:
                del self._data[key]
            self.misses += 1
            return None
        self._data.move_to_end(key)
        self.hits += 1
        return item[1]

    def put(self, key: str, value: Any) -> None:
        if self.max_size <= 0:
            return
        self._data[key] = (time.monotonic() + self.ttl, value)
        self._data.move_to_end(key)
        while len(self._data) > self.max_size:
            self._data.popitem(last=False)

    def clear(self) -> None:
        self._data.clear()

    def __len__(self) -> int:
        return len(self._data)


class MerkleQueryClient:
    """
    Read-only view of the note-commitment tree served by the relay.

    Results may be cached; `invalidate()` must be called whenever the tree is
    known to have grown (after an accepted submission or deposit).
    """

    def __init__(
        self,
        relay: Relay,
        *,
        timeout: float = 10.0,
        enable_caching: bool = True,
        cache_max_size: int = 1000,
        cache_ttl_ms: int = 300_000,
    ):
        self._relay = relay
        self._timeout = timeout
        self._cache = _TTLCache(cache_max_size, cache_ttl_ms / 1000.0) if enable_caching else None

    async def _bounded(self, coro, timeout: Optional[float], what: str):
        limit = self._relay.read_budget(timeout if timeout is not None else self._timeout)
        try:
            return await asyncio.wait_for(coro, timeout=limit)
        except asyncio.TimeoutError as e:
            raise UnavailableError(f"{what} timed out after {limit}s") from e

    async def fetch_root(self, *, timeout: Optional[float] = None) -> MerkleRoot:
        if self._cache is not None:
            cached = self._cache.get(_ROOT_KEY)
            if cached is not None:
                return cached
        root = await self._bounded(self._relay.fetch_root(), timeout, "Merkle root fetch")
        if self._cache is not None and not root.is_empty:
            self._cache.put(_ROOT_KEY, root)
        return root

    async def get_path(self, commitment: str, *, timeout: Optional[float] = None) -> MerklePath:
        if self._cache is not None:
            cached = self._cache.get(commitment)
            if cached is not None:
                return cached
        path = await self._bounded(self._relay.get_path(commitment), timeout, "Merkle path fetch")
        if self._cache is not None:
            self._cache.put(commitment, path)
        return path

    def invalidate(self) -> None:
        if self._cache is not None:
            self._cache.clear()
            logger.debug("Merkle cache invalidated")

    def get_cache_stats(self) -> Optional[Dict[str, Any]]:
        if self._cache is None:
            return None
        return {
            "size": len(self._cache),
            "max_size": self._cache.max_size,
            "ttl_ms": int(self._cache.ttl * 1000),
            "hits": self._cache.hits,
            "misses": self._cache.misses,
        }
