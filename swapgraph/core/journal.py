"""
swapgraph/core/journal.py

Append-only event journal.

append_all() MUST, in this order:
  1. Acquire lock
  2. Drop events whose event_id is already journaled (replay dedupe)
  3. Wrap each remaining event in a JournalEntry chained to the previous
     entry (causal_hash) and sign it
  4. Write all new lines in a single append (when file-backed)
  5. Advance in-memory state only after the write succeeded

A failed write raises JournalError and leaves the journal unchanged, so the
caller can abandon the operation without any visible side effect.
"""

import json
import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Set

from swapgraph.core.canonical import canonical_hash, canonicalize
from swapgraph.core.crypto import Ed25519KeyManager
from swapgraph.core.exceptions import JournalError
from swapgraph.core.models import Event


logger = logging.getLogger(__name__)

GENESIS_HASH = "0" * 64


@dataclass
class JournalEntry:
    sequence:          int
    event_id:          str
    type:              str
    correlation_id:    str
    occurred_at:       str
    payload:           Dict[str, Any]
    causal_hash:       str
    signer_public_key: str
    signature:         Optional[str] = None

    # ── Construction ──────────────────────────────────────────

    @classmethod
    def create(
        cls,
        event:       Event,
        sequence:    int,
        key_manager: Ed25519KeyManager,
        prev:        Optional["JournalEntry"],
    ) -> "JournalEntry":
        entry = cls(
            sequence=          sequence,
            event_id=          event.event_id,
            type=              event.type,
            correlation_id=    event.correlation_id,
            occurred_at=       event.occurred_at,
            payload=           event.payload,
            causal_hash=       cls.expected_causal_hash(prev),
            signer_public_key= key_manager.public_key_hex,
        )
        entry.signature = key_manager.sign(entry.canonical_bytes())
        return entry

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "JournalEntry":
        return cls(
            sequence=          data["sequence"],
            event_id=          data["event_id"],
            type=              data["type"],
            correlation_id=    data["correlation_id"],
            occurred_at=       data["occurred_at"],
            payload=           data.get("payload", {}),
            causal_hash=       data["causal_hash"],
            signer_public_key= data["signer_public_key"],
            signature=         data.get("signature"),
        )

    # ── Contracts ─────────────────────────────────────────────

    def to_signing_dict(self) -> Dict[str, Any]:
        """Signed and chained surface: every field except signature."""
        return {
            "sequence":          self.sequence,
            "event_id":          self.event_id,
            "type":              self.type,
            "correlation_id":    self.correlation_id,
            "occurred_at":       self.occurred_at,
            "payload":           self.payload,
            "causal_hash":       self.causal_hash,
            "signer_public_key": self.signer_public_key,
        }

    def to_dict(self) -> Dict[str, Any]:
        d = self.to_signing_dict()
        d["signature"] = self.signature
        return d

    def to_event(self) -> Dict[str, Any]:
        return {"event_id": self.event_id, "type": self.type, "payload": self.payload}

    def canonical_bytes(self) -> bytes:
        return canonicalize(self.to_signing_dict())

    @staticmethod
    def expected_causal_hash(prev: Optional["JournalEntry"]) -> str:
        if prev is None:
            return GENESIS_HASH
        return canonical_hash(prev.to_signing_dict())

    # ── Verification ──────────────────────────────────────────

    def verify_signature(self) -> bool:
        if not self.signature:
            return False
        return Ed25519KeyManager.verify_detached(
            self.canonical_bytes(), self.signature, self.signer_public_key
        )

    def verify_chain(self, prev: Optional["JournalEntry"]) -> bool:
        return self.causal_hash == JournalEntry.expected_causal_hash(prev)


class EventJournal:
    """
    Signed, hash-chained, deduplicated event journal.

    In-memory by default; pass `path` to also persist as JSONL. A file-backed
    journal restores its chain state and seen event ids on construction.
    Thread-safe within one process.
    """

    def __init__(
        self,
        key_manager: Ed25519KeyManager,
        path:        Optional[str] = None,
    ) -> None:
        self.key_manager = key_manager

        self._lock:       threading.Lock         = threading.Lock()
        self._entries:    List[JournalEntry]     = []
        self._seen_ids:   Set[str]               = set()
        self._last_entry: Optional[JournalEntry] = None

        self._path: Optional[Path] = Path(path) if path else None
        if self._path is not None:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._restore_state()

    # ── Public API ────────────────────────────────────────────

    def append(self, event: Event) -> Optional[JournalEntry]:
        """Append one event. Returns None when the event_id was already journaled."""
        appended = self.append_all([event])
        return appended[0] if appended else None

    def append_all(self, events: Iterable[Event]) -> List[JournalEntry]:
        events = list(events)
        if not events:
            return []

        with self._lock:
            batch: List[JournalEntry] = []
            batch_ids: Set[str] = set()
            prev = self._last_entry
            sequence = len(self._entries)

            for event in events:
                if event.event_id in self._seen_ids or event.event_id in batch_ids:
                    logger.debug("journal: duplicate event %s dropped", event.event_id)
                    continue
                entry = JournalEntry.create(event, sequence, self.key_manager, prev)
                batch.append(entry)
                batch_ids.add(event.event_id)
                prev = entry
                sequence += 1

            if not batch:
                return []

            self._write(batch)

            self._entries.extend(batch)
            self._seen_ids.update(batch_ids)
            self._last_entry = batch[-1]
            return list(batch)

    def contains(self, event_id: str) -> bool:
        with self._lock:
            return event_id in self._seen_ids

    def entries(self) -> List[JournalEntry]:
        with self._lock:
            return list(self._entries)

    def events(
        self,
        event_type:     Optional[str] = None,
        correlation_id: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Event envelopes {event_id, type, payload}, optionally filtered."""
        with self._lock:
            return [
                e.to_event() for e in self._entries
                if (event_type is None or e.type == event_type)
                and (correlation_id is None or e.correlation_id == correlation_id)
            ]

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def verify_chain(self) -> bool:
        """True iff every entry's sequence, causal_hash and signature hold."""
        entries = self.entries()
        for i, entry in enumerate(entries):
            prev = entries[i - 1] if i > 0 else None
            if entry.sequence != i:
                return False
            if not entry.verify_chain(prev):
                return False
            if not entry.verify_signature():
                return False
        return True

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "entries":          len(self._entries),
                "last_event_id":    self._last_entry.event_id if self._last_entry else None,
                "head_hash":        (
                    canonical_hash(self._last_entry.to_signing_dict())
                    if self._last_entry else GENESIS_HASH
                ),
                "journal_file":     str(self._path) if self._path else None,
                "signer_public_key": self.key_manager.public_key_hex,
            }

    # ── Internal ──────────────────────────────────────────────

    def _write(self, batch: List[JournalEntry]) -> None:
        if self._path is None:
            return
        lines = "".join(json.dumps(e.to_dict(), sort_keys=True) + "\n" for e in batch)
        try:
            with open(self._path, "a", encoding="utf-8") as f:
                f.write(lines)
        except OSError as exc:
            raise JournalError(
                "journal write failed",
                {"path": str(self._path), "error": str(exc)},
                reason_code="journal_write_failed",
            ) from exc

    def _restore_state(self) -> None:
        """
        Reload entries from an existing journal file.
        A corrupt line stops the restore; entries before it are kept and a
        warning is logged so the operator can run `swapgraph verify`.
        """
        if self._path is None or not self._path.exists():
            return

        with open(self._path, "r", encoding="utf-8") as f:
            for line_num, raw in enumerate(f, 1):
                raw = raw.strip()
                if not raw:
                    continue
                try:
                    entry = JournalEntry.from_dict(json.loads(raw))
                except (ValueError, KeyError) as exc:
                    logger.warning(
                        "journal: could not restore %s at line %d: %s",
                        self._path, line_num, exc,
                    )
                    break
                self._entries.append(entry)
                self._seen_ids.add(entry.event_id)
                self._last_entry = entry

        if self._entries:
            logger.info("journal: restored %d entries from %s", len(self._entries), self._path)
