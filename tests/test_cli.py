"""
tests/test_cli.py

`swapgraph match` and `swapgraph verify` through click's CliRunner.

Exit codes under test:
    verify  0 valid, 1 violations, 2 missing or malformed journal
    match   0 run ok, 1 error result, 2 bad input
"""

import json

import pytest
import yaml
from click.testing import CliRunner

from swapgraph.cli import cli
from swapgraph.core.crypto import Ed25519KeyManager
from swapgraph.core.journal import EventJournal
from swapgraph.core.models import Event

from helpers.factories import SEED, at, scenario_intents


@pytest.fixture
def runner(monkeypatch):
    monkeypatch.delenv("SWAPGRAPH_CONFIG", raising=False)
    return CliRunner()


@pytest.fixture
def journal_file(tmp_path):
    path = tmp_path / "events.jsonl"
    journal = EventJournal(Ed25519KeyManager.from_private_bytes(SEED), path=str(path))
    journal.append_all(
        Event.create("cycle.state_changed", "cycle_x", f"state:{n}", at(n), {"n": n})
        for n in range(4)
    )
    return path


@pytest.fixture
def intents_file(tmp_path):
    path = tmp_path / "intents.yaml"
    path.write_text(yaml.safe_dump({"intents": scenario_intents()}), encoding="utf-8")
    return path


def tamper(path):
    lines = path.read_text(encoding="utf-8").splitlines()
    data = json.loads(lines[2])
    data["payload"]["n"] = 42
    lines[2] = json.dumps(data)
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")


# ─────────────────────────────────────────────────────────────
# verify
# ─────────────────────────────────────────────────────────────

class TestVerify:

    def test_valid_journal(self, runner, journal_file):
        result = runner.invoke(cli, ["verify", str(journal_file), "--no-color"])
        assert result.exit_code == 0, result.output
        assert "VALID" in result.output
        assert "cycle_x" in result.output

    def test_tampered_journal(self, runner, journal_file):
        tamper(journal_file)
        result = runner.invoke(cli, ["verify", str(journal_file), "--no-color"])
        assert result.exit_code == 1
        assert "INVALID" in result.output

    def test_json_output(self, runner, journal_file):
        tamper(journal_file)
        result = runner.invoke(cli, ["verify", str(journal_file), "--format", "json"])
        report = json.loads(result.stdout)["swapgraph_verify"]
        assert report["journal_valid"] is False
        assert report["total_entries"] == 4
        assert {v["violation_type"] for v in report["violations"]} == {"invalid_signature", "chain_break"}

    def test_compact_output(self, runner, journal_file):
        result = runner.invoke(cli, ["verify", str(journal_file), "--format", "compact", "--no-color"])
        assert result.output.startswith("VALID")
        assert "events.jsonl" in result.output

    def test_quiet(self, runner, journal_file):
        result = runner.invoke(cli, ["verify", str(journal_file), "--quiet"])
        assert result.exit_code == 0
        assert result.output == ""

    def test_export(self, runner, journal_file, tmp_path):
        report = tmp_path / "report.json"
        result = runner.invoke(cli, ["verify", str(journal_file), "--quiet", "--export", str(report)])
        assert result.exit_code == 0
        assert json.loads(report.read_text(encoding="utf-8"))["summary"]["total_entries"] == 4

    def test_missing_journal(self, runner, tmp_path):
        result = runner.invoke(cli, ["verify", str(tmp_path / "absent.jsonl"), "--format", "json"])
        assert result.exit_code == 2
        assert json.loads(result.stdout)["swapgraph_verify"]["journal_valid"] is False

    def test_malformed_journal(self, runner, tmp_path):
        path = tmp_path / "bad.jsonl"
        path.write_text("{nope\n", encoding="utf-8")
        assert runner.invoke(cli, ["verify", str(path), "--quiet"]).exit_code == 2


# ─────────────────────────────────────────────────────────────
# match
# ─────────────────────────────────────────────────────────────

class TestMatch:

    def test_json_output(self, runner, intents_file):
        result = runner.invoke(cli, ["match", str(intents_file), "--format", "json"])
        assert result.exit_code == 0, result.output
        out = json.loads(result.stdout)
        assert out["ok"] is True
        assert out["body"]["stats"]["selected_proposals_count"] == 2
        assert out["rejected_intents"] == []
        assert sorted(len(p["participants"]) for p in out["proposals"]) == [2, 3]

    def test_human_output(self, runner, intents_file):
        result = runner.invoke(cli, ["match", str(intents_file)])
        assert result.exit_code == 0, result.output
        assert "run mrun_000001" in result.output
        assert "intent_a -> intent_b -> intent_c" in result.output

    def test_journal_then_verify(self, runner, intents_file, tmp_path):
        journal = tmp_path / "out" / "events.jsonl"
        matched = runner.invoke(cli, ["match", str(intents_file), "--journal", str(journal)])
        assert matched.exit_code == 0, matched.output
        assert len(journal.read_text(encoding="utf-8").splitlines()) == 7

        verified = runner.invoke(cli, ["verify", str(journal), "--quiet"])
        assert verified.exit_code == 0

    def test_signing_key_is_created_then_reused(self, runner, intents_file, tmp_path):
        key_path = tmp_path / "keys" / "signing.pem"
        signers = []
        for n in range(2):
            journal = tmp_path / f"events_{n}.jsonl"
            result = runner.invoke(cli, [
                "match", str(intents_file), "--journal", str(journal), "--key", str(key_path),
            ])
            assert result.exit_code == 0, result.output
            first_line = json.loads(journal.read_text(encoding="utf-8").splitlines()[0])
            signers.append(first_line["signer_public_key"])

        assert key_path.exists()
        assert signers[0] == signers[1] == Ed25519KeyManager.from_file(key_path).public_key_hex

    def test_unreadable_key(self, runner, intents_file, tmp_path):
        key_path = tmp_path / "signing.pem"
        key_path.write_text("not a key\n", encoding="utf-8")
        result = runner.invoke(cli, ["match", str(intents_file), "--key", str(key_path)])
        assert result.exit_code == 2

    def test_bounds_from_flags(self, runner, intents_file):
        result = runner.invoke(cli, ["match", str(intents_file), "--max-cycle-length", "2", "--format", "json"])
        out = json.loads(result.stdout)
        assert out["body"]["stats"]["candidate_cycles"] == 1

    def test_invalid_bounds_is_an_error_result(self, runner, intents_file):
        result = runner.invoke(cli, ["match", str(intents_file), "--max-cycle-length", "1", "--format", "json"])
        assert result.exit_code == 1
        assert json.loads(result.stdout)["error"]["code"] == "CONSTRAINT_VIOLATION"

    def test_bare_list_input(self, runner, tmp_path):
        path = tmp_path / "intents.json"
        path.write_text(json.dumps(scenario_intents()[3:]), encoding="utf-8")
        result = runner.invoke(cli, ["match", str(path), "--format", "json"])
        assert json.loads(result.stdout)["body"]["stats"]["selected_proposals_count"] == 1

    def test_bad_input(self, runner, tmp_path):
        path = tmp_path / "intents.yaml"
        path.write_text("just a string\n", encoding="utf-8")
        result = runner.invoke(cli, ["match", str(path)])
        assert result.exit_code == 2

    def test_config_file(self, runner, intents_file, tmp_path):
        config = tmp_path / "swapgraph.yaml"
        config.write_text("matching:\n  selection_mode: greedy\n", encoding="utf-8")
        result = runner.invoke(cli, ["match", str(intents_file), "--config", str(config), "--format", "json"])
        assert json.loads(result.stdout)["body"]["diagnostics"]["selection"]["method"] == "greedy"
