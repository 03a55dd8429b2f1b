"""
swapgraph/core/replay.py

Offline verification of a JSONL event journal.

Checks, in one sequential pass:
    1. Sequence  → entry i carries sequence i
    2. Chain     → causal_hash == SHA-256(JCS(prev signing dict))
    3. Signature → Ed25519 over the entry's canonical bytes
    4. Dedupe    → no event_id appears twice

Malformed lines are load errors (ValueError), not violations: a journal that
cannot be parsed cannot be verified.
"""

import json
import logging
from collections import defaultdict
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

from swapgraph.core.journal import JournalEntry


logger = logging.getLogger(__name__)


@dataclass
class JournalViolation:
    """A single detected violation in the journal."""
    at_sequence:    int
    event_id:       str
    violation_type: str   # "sequence_gap" | "chain_break" | "invalid_signature" | "duplicate_event"
    detail:         str


@dataclass
class ReplaySummary:
    total_entries:      int
    chain_valid:        bool
    violations:         List[JournalViolation]
    valid_signatures:   int
    invalid_signatures: int
    event_type_counts:  Dict[str, int]
    cycles_seen:        List[str]
    signers_seen:       List[str]
    first_occurred_at:  Optional[str]
    last_occurred_at:   Optional[str]
    head_hash:          Optional[str]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class JournalReplay:
    """
    Usage:
        replay = JournalReplay()
        replay.load(Path("journal.jsonl"))
        summary = replay.verify()
    """

    def __init__(self) -> None:
        self.entries:    List[JournalEntry]     = []
        self.violations: List[JournalViolation] = []
        self._path:      Optional[Path]         = None

    def load(self, path: Path) -> None:
        """
        Raises:
            FileNotFoundError  journal file does not exist
            ValueError         malformed JSON or missing fields
        """
        path          = Path(path)
        self._path    = path
        self.entries  = []
        self.violations = []

        if not path.exists():
            raise FileNotFoundError(f"Journal not found: {path}")

        with open(path, "r", encoding="utf-8") as f:
            for line_num, raw in enumerate(f, 1):
                raw = raw.strip()
                if not raw:
                    continue
                try:
                    data = json.loads(raw)
                except json.JSONDecodeError as e:
                    raise ValueError(f"Malformed JSON at journal line {line_num}: {e}") from e
                try:
                    self.entries.append(JournalEntry.from_dict(data))
                except KeyError as e:
                    raise ValueError(f"Missing journal field at line {line_num}: {e}") from e

        logger.debug("replay: loaded %d entries from %s", len(self.entries), path)

    def verify(self) -> ReplaySummary:
        self.violations = []
        seen_ids:   Set[str]       = set()
        counts:     Dict[str, int] = defaultdict(int)
        valid_sigs   = 0
        invalid_sigs = 0

        for i, entry in enumerate(self.entries):
            prev = self.entries[i - 1] if i > 0 else None
            counts[entry.type] += 1

            if entry.sequence != i:
                self._violation(entry, "sequence_gap", f"Expected sequence {i}, got {entry.sequence}")

            if not entry.verify_chain(prev):
                expected = JournalEntry.expected_causal_hash(prev)
                self._violation(
                    entry, "chain_break",
                    f"causal_hash mismatch: expected ...{expected[-12:]}, "
                    f"got ...{str(entry.causal_hash)[-12:]}",
                )

            if entry.event_id in seen_ids:
                self._violation(entry, "duplicate_event", f"event_id {entry.event_id} appears more than once")
            seen_ids.add(entry.event_id)

            if entry.verify_signature():
                valid_sigs += 1
            else:
                invalid_sigs += 1
                self._violation(
                    entry, "invalid_signature",
                    f"Signature invalid (signer: {str(entry.signer_public_key)[:16]}...)",
                )

        head_hash = None
        if self.entries:
            head_hash = JournalEntry.expected_causal_hash(self.entries[-1])

        return ReplaySummary(
            total_entries=      len(self.entries),
            chain_valid=        not self.violations,
            violations=         list(self.violations),
            valid_signatures=   valid_sigs,
            invalid_signatures= invalid_sigs,
            event_type_counts=  dict(counts),
            cycles_seen=        sorted({
                e.correlation_id[len("corr_"):]
                for e in self.entries
                if e.correlation_id.startswith("corr_cycle_")
            }),
            signers_seen=       sorted({e.signer_public_key for e in self.entries}),
            first_occurred_at=  self.entries[0].occurred_at if self.entries else None,
            last_occurred_at=   self.entries[-1].occurred_at if self.entries else None,
            head_hash=          head_hash,
        )

    def export_json(self, output_path: Path, summary: Optional[ReplaySummary] = None) -> None:
        summary = summary or self.verify()
        report = {
            "journal": str(self._path) if self._path else None,
            "summary": summary.to_dict(),
        }
        with open(output_path, "w", encoding="utf-8") as f:
            json.dump(report, f, indent=2, sort_keys=True)

    def _violation(self, entry: JournalEntry, violation_type: str, detail: str) -> None:
        self.violations.append(JournalViolation(
            at_sequence=    entry.sequence,
            event_id=       entry.event_id,
            violation_type= violation_type,
            detail=         detail,
        ))
