# services/wallet_core/note_store.py
"""
Local store of shielded notes.

Notes keep insertion order. Reads return copies so that nothing outside
the store can flip a `spent` flag. `spent` only ever goes False -> True.
Optionally mirrored to a JSON state file, rewritten after every mutation.
"""
from __future__ import annotations

import json
import os
import threading
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Union

from services.logging_config import get_logger
from services.wallet_core.errors import AlreadySpent, DuplicateCommitment, NoteNotFound
from services.wallet_core.models import Note

logger = get_logger("note_store")

STATE_VERSION = 1


class NoteStore:
    def __init__(self, state_path: Optional[Union[str, os.PathLike]] = None):
        self._notes: Dict[str, Note] = {}
        self._lock = threading.RLock()
        self._state_path = Path(state_path) if state_path else None
        if self._state_path is not None:
            self._load()

    # ---------- persistence ----------
    def _load(self) -> None:
        if not self._state_path.exists():
            return
        raw = json.loads(self._state_path.read_text())
        for item in raw.get("notes", []):
            note = Note.model_validate(item)
            if note.commitment in self._notes:
                raise DuplicateCommitment(f"Duplicate commitment in state file: {note.commitment}")
            self._notes[note.commitment] = note
        logger.info(f"Loaded {len(self._notes)} notes from {self._state_path}")

    def _save(self) -> None:
        if self._state_path is None:
            return
        self._state_path.parent.mkdir(parents=True, exist_ok=True)
        blob = {"version": STATE_VERSION, "notes": [n.model_dump() for n in self._notes.values()]}
        tmp = self._state_path.with_suffix(self._state_path.suffix + ".tmp")
        tmp.write_text(json.dumps(blob, indent=2))
        os.replace(tmp, self._state_path)

    # ---------- writes ----------
    def add_note(self, note: Union[Note, dict]) -> Note:
        n = note.model_copy() if isinstance(note, Note) else Note.model_validate(note)
        with self._lock:
            if n.commitment in self._notes:
                raise DuplicateCommitment(f"Note already held: {n.commitment}")
            self._notes[n.commitment] = n
            self._save()
        logger.debug(f"Note added: {n.commitment[:12]}… amount={n.amount}")
        return n.model_copy()

    def mark_spent(self, commitment: str) -> None:
        with self._lock:
            note = self._require_unspent(commitment)
            note.spent = True
            self._save()

    def settle(self, spent_commitments: Sequence[str], new_notes: Iterable[Note] = ()) -> None:
        """
        Apply one accepted transfer: mark every input spent and append outputs.

        All checks run before any mutation, so either the whole transfer is
        applied or the store is left exactly as it was.
        """
        new_notes = [n.model_copy() for n in new_notes]
        with self._lock:
            if len(set(spent_commitments)) != len(spent_commitments):
                raise AlreadySpent("Transfer spends the same note twice")
            for c in spent_commitments:
                self._require_unspent(c)
            seen = set()
            for n in new_notes:
                if n.commitment in self._notes or n.commitment in seen:
                    raise DuplicateCommitment(f"Note already held: {n.commitment}")
                seen.add(n.commitment)

            for c in spent_commitments:
                self._notes[c].spent = True
            for n in new_notes:
                self._notes[n.commitment] = n
            self._save()
        logger.info(f"Settled: spent={len(spent_commitments)} added={len(new_notes)}")

    def _require_unspent(self, commitment: str) -> Note:
        note = self._notes.get(commitment)
        if note is None:
            raise NoteNotFound(f"No note with commitment {commitment}")
        if note.spent:
            raise AlreadySpent(f"Note already spent: {commitment}")
        return note

    # ---------- reads ----------
    def get_note(self, commitment: str) -> Note:
        with self._lock:
            note = self._notes.get(commitment)
            if note is None:
                raise NoteNotFound(f"No note with commitment {commitment}")
            return note.model_copy()

    def get_spendable_notes(self) -> List[Note]:
        with self._lock:
            return [n.model_copy() for n in self._notes.values() if not n.spent]

    def get_all_notes(self) -> List[Note]:
        with self._lock:
            return [n.model_copy() for n in self._notes.values()]

    def get_balance(self) -> int:
        with self._lock:
            return sum(n.amount for n in self._notes.values() if not n.spent)

    def __len__(self) -> int:
        return len(self._notes)

    def __contains__(self, commitment: str) -> bool:
        return commitment in self._notes
