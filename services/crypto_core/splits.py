# crypto_core/splits.py
"""
Note-selection policies.

Each policy takes the spendable notes in insertion order and a target
amount and returns (chosen, total). An empty selection with total 0 means
the notes cannot cover the target.
"""
from __future__ import annotations

from typing import Callable, Dict, List, Sequence, Tuple, TypeVar

N = TypeVar("N")

SelectionPolicy = Callable[[Sequence[N], int], Tuple[List[N], int]]


def _amount(n) -> int:
    return int(n["amount"] if isinstance(n, dict) else n.amount)


def _take_until(ordered: Sequence[N], target: int) -> Tuple[List[N], int]:
    total = 0
    chosen: List[N] = []
    for n in ordered:
        chosen.append(n)
        total += _amount(n)
        if total >= target:
            return chosen, total
    return [], 0


def select_in_insertion_order(notes: Sequence[N], target: int) -> Tuple[List[N], int]:
    """Walk notes oldest-first until the running sum reaches `target`."""
    return _take_until(list(notes), target)


def greedy_coin_select(notes: Sequence[N], target: int) -> Tuple[List[N], int]:
    """Smallest-first: spends dust before large notes. Ties keep insertion order."""
    return _take_until(sorted(notes, key=_amount), target)


POLICIES: Dict[str, SelectionPolicy] = {
    "insertion_order": select_in_insertion_order,
    "smallest_first": greedy_coin_select,
}
