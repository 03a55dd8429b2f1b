"""
tests/test_journal.py

EventJournal append/dedupe/persistence and offline JournalReplay.

Run:
    pytest tests/test_journal.py -v --tb=short
"""

import json

import pytest

from swapgraph.core.crypto import Ed25519KeyManager
from swapgraph.core.journal import GENESIS_HASH, EventJournal
from swapgraph.core.models import Event
from swapgraph.core.replay import JournalReplay

from helpers.factories import SEED, T0, at


@pytest.fixture
def key():
    return Ed25519KeyManager.from_private_bytes(SEED)


def event(n, subject="cycle_x", event_type="cycle.state_changed"):
    return Event.create(event_type, subject, f"state:{n}", at(n), {"n": n})


def write_journal(key, path, count=3):
    journal = EventJournal(key, path=str(path))
    journal.append_all(event(n) for n in range(count))
    return journal


def read_lines(path):
    return path.read_text(encoding="utf-8").splitlines()


def violation_types(path):
    replay = JournalReplay()
    replay.load(path)
    return {v.violation_type for v in replay.verify().violations}


# ─────────────────────────────────────────────────────────────
# EventJournal
# ─────────────────────────────────────────────────────────────

class TestEventJournal:

    def test_first_entry_chains_to_genesis(self, key):
        journal = EventJournal(key)
        entry = journal.append(event(0))
        assert entry.sequence == 0
        assert entry.causal_hash == GENESIS_HASH
        assert entry.verify_signature()

    def test_duplicate_event_id_is_dropped(self, key):
        journal = EventJournal(key)
        assert journal.append(event(0)) is not None
        assert journal.append(event(0)) is None
        assert len(journal) == 1

    def test_duplicates_inside_one_batch(self, key):
        journal = EventJournal(key)
        appended = journal.append_all([event(0), event(1), event(0)])
        assert [e.sequence for e in appended] == [0, 1]

    def test_event_ids_are_stable(self):
        assert event(3).event_id == event(3).event_id
        assert event(3).event_id.startswith("evt_")
        assert event(3).event_id != event(3, subject="cycle_y").event_id
        assert event(3).correlation_id == "corr_cycle_x"

    def test_filters(self, key):
        journal = EventJournal(key)
        journal.append(event(0))
        journal.append(event(1, subject="cycle_y"))
        journal.append(event(2, event_type="receipt.created"))
        assert len(journal.events("receipt.created")) == 1
        assert len(journal.events(correlation_id="corr_cycle_y")) == 1
        assert journal.events("receipt.created")[0]["payload"] == {"n": 2}
        assert journal.contains(event(1, subject="cycle_y").event_id)

    def test_chain_verifies(self, key):
        journal = EventJournal(key)
        journal.append_all(event(n) for n in range(5))
        assert journal.verify_chain()
        stats = journal.get_stats()
        assert stats["entries"] == 5
        assert stats["head_hash"] != GENESIS_HASH
        assert stats["journal_file"] is None

    def test_file_restore_keeps_chain_and_dedupe(self, key, tmp_path):
        path = tmp_path / "journal.jsonl"
        first = write_journal(key, path)
        head = first.get_stats()["head_hash"]

        reopened = EventJournal(key, path=str(path))
        assert len(reopened) == 3
        assert reopened.get_stats()["head_hash"] == head
        assert reopened.append(event(1)) is None
        assert reopened.append(event(3)).sequence == 3
        assert len(read_lines(path)) == 4
        assert reopened.verify_chain()

    def test_restore_stops_at_corrupt_line(self, key, tmp_path):
        path = tmp_path / "journal.jsonl"
        write_journal(key, path)
        with open(path, "a", encoding="utf-8") as f:
            f.write("{not json\n")
        assert len(EventJournal(key, path=str(path))) == 3


# ─────────────────────────────────────────────────────────────
# JournalReplay
# ─────────────────────────────────────────────────────────────

class TestJournalReplay:

    def test_clean_journal(self, key, tmp_path):
        path = tmp_path / "journal.jsonl"
        journal = write_journal(key, path)
        replay = JournalReplay()
        replay.load(path)
        summary = replay.verify()
        assert summary.chain_valid
        assert summary.total_entries == 3
        assert summary.valid_signatures == 3
        assert summary.cycles_seen == ["cycle_x"]
        assert summary.signers_seen == [key.public_key_hex]
        assert summary.first_occurred_at == T0
        assert summary.head_hash == journal.get_stats()["head_hash"]

    def test_tampered_payload(self, key, tmp_path):
        path = tmp_path / "journal.jsonl"
        write_journal(key, path)
        lines = read_lines(path)
        data = json.loads(lines[0])
        data["payload"]["n"] = 99
        lines[0] = json.dumps(data)
        path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        assert violation_types(path) == {"invalid_signature", "chain_break"}

    def test_removed_line(self, key, tmp_path):
        path = tmp_path / "journal.jsonl"
        write_journal(key, path)
        lines = read_lines(path)
        del lines[1]
        path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        assert violation_types(path) == {"sequence_gap", "chain_break"}

    def test_duplicated_line(self, key, tmp_path):
        path = tmp_path / "journal.jsonl"
        write_journal(key, path)
        lines = read_lines(path)
        path.write_text("\n".join(lines + [lines[-1]]) + "\n", encoding="utf-8")
        assert violation_types(path) == {"sequence_gap", "chain_break", "duplicate_event"}

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            JournalReplay().load(tmp_path / "absent.jsonl")

    def test_malformed_line_is_a_load_error(self, tmp_path):
        path = tmp_path / "journal.jsonl"
        path.write_text("{oops\n", encoding="utf-8")
        with pytest.raises(ValueError):
            JournalReplay().load(path)

    def test_export_json(self, key, tmp_path):
        path = tmp_path / "journal.jsonl"
        write_journal(key, path)
        replay = JournalReplay()
        replay.load(path)
        out = tmp_path / "report.json"
        replay.export_json(out)
        report = json.loads(out.read_text(encoding="utf-8"))
        assert report["journal"] == str(path)
        assert report["summary"]["chain_valid"] is True
        assert report["summary"]["event_type_counts"] == {"cycle.state_changed": 3}
