# services/wallet_core/history.py
from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict

from services.wallet_core.models import Transaction


class SettledTransfer(BaseModel):
    model_config = ConfigDict(frozen=True)

    transaction_id: str
    tx_hash: str
    kind: str
    recipient: str
    amount: int
    change: int
    inputs: int
    timestamp: int
    compliance_checked: bool


class TransferHistory:
    """Append-only record of transfers the relay accepted in this session."""

    def __init__(self) -> None:
        self._items: List[SettledTransfer] = []

    def record(self, tx: Transaction) -> SettledTransfer:
        item = SettledTransfer(
            transaction_id=tx.id,
            tx_hash=tx.tx_hash or "",
            kind=tx.kind.value,
            recipient=tx.recipient,
            amount=tx.amount,
            change=tx.change_note.amount if tx.change_note else 0,
            inputs=len(tx.input_commitments),
            timestamp=tx.timestamp,
            compliance_checked=tx.compliance is not None,
        )
        self._items.append(item)
        return item

    def items(self, start_ms: Optional[int] = None, end_ms: Optional[int] = None) -> List[SettledTransfer]:
        return [
            i for i in self._items
            if (start_ms is None or i.timestamp >= start_ms) and (end_ms is None or i.timestamp <= end_ms)
        ]

    def compliance_report(self, start_ms: Optional[int] = None, end_ms: Optional[int] = None) -> Dict[str, Any]:
        rows = self.items(start_ms, end_ms)
        return {
            "period": {"start": start_ms, "end": end_ms},
            "count": len(rows),
            "total_transferred": sum(r.amount for r in rows if r.kind == "transfer"),
            "total_withdrawn": sum(r.amount for r in rows if r.kind == "withdraw"),
            "unchecked": sum(1 for r in rows if not r.compliance_checked),
            "transactions": [r.model_dump() for r in rows],
        }

    def __len__(self) -> int:
        return len(self._items)
