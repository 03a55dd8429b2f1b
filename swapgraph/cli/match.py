"""
swapgraph/cli/match.py

swapgraph match: load intents from a JSON or YAML file and run one matching
pass against a fresh in-memory marketplace.

Input file, either a bare list of intents or:

    intents:
      - id: intent_a
        actor: {type: user, id: alice}
        give: [{asset_id: sword, value: 100}]
        want: {any_of: [{asset_id: shield}]}
    asset_values: {sword: 100}

Exit codes:
    0  matching run succeeded
    1  matching run returned an error result
    2  input or configuration error
"""

import json
import sys
from pathlib import Path
from typing import Any, Dict, Optional

import click
import yaml

from swapgraph.core.config import SwapGraphConfig
from swapgraph.core.crypto import Ed25519KeyManager
from swapgraph.core.exceptions import SwapGraphError
from swapgraph.marketplace import Marketplace


CLI_OPERATOR = {"type": "operator", "id": "cli"}


def _load_input(path: Path) -> Dict[str, Any]:
    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f)
    if isinstance(raw, list):
        raw = {"intents": raw}
    if not isinstance(raw, dict) or not isinstance(raw.get("intents", []), list):
        raise ValueError(f"{path}: expected a list of intents or a mapping with 'intents'")
    return raw


def _load_key(path: Path) -> Ed25519KeyManager:
    """Load the signing key at path, creating it on first use."""
    if path.exists():
        return Ed25519KeyManager.from_file(path)
    key = Ed25519KeyManager.generate()
    key.save(path)
    return key


@click.command(name="match")
@click.argument("intents_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--config", "config_path", type=click.Path(exists=True, dir_okay=False), default=None,
              help="YAML configuration file (defaults to $SWAPGRAPH_CONFIG).")
@click.option("--max-cycle-length", type=int, default=None, help="Longest cycle to consider.")
@click.option("--max-candidates", type=int, default=None, help="Cycle enumeration ceiling.")
@click.option("--timeout-ms", type=int, default=None, help="Cycle search deadline in milliseconds.")
@click.option("--journal", "journal_path", type=click.Path(dir_okay=False), default=None,
              help="Append emitted events to this JSONL journal.")
@click.option("--key", "key_path", type=click.Path(dir_okay=False), default=None,
              help="Ed25519 PEM signing key for journal entries; created when missing.")
@click.option(
    "--format", "fmt",
    type=click.Choice(["human", "json"], case_sensitive=False),
    default="human",
    show_default=True,
)
def match_command(
    intents_file:     str,
    config_path:      Optional[str],
    max_cycle_length: Optional[int],
    max_candidates:   Optional[int],
    timeout_ms:       Optional[int],
    journal_path:     Optional[str],
    key_path:         Optional[str],
    fmt:              str,
) -> None:
    """Run a matching pass over INTENTS_FILE and print the selected proposals."""
    try:
        config = SwapGraphConfig.from_yaml(Path(config_path)) if config_path else SwapGraphConfig.from_env()
        if journal_path:
            config.journal.path = journal_path
        data = _load_input(Path(intents_file))
        key_manager = _load_key(Path(key_path)) if key_path else None
        market = Marketplace(config, key_manager)
        rejected = [r for r in market.load_intents(data.get("intents", [])) if not r]
    except (OSError, ValueError, yaml.YAMLError, SwapGraphError) as e:
        click.echo(f"ERROR: {e}", err=True)
        sys.exit(2)

    bounds = {
        name: value for name, value in (
            ("max_cycle_length", max_cycle_length),
            ("max_candidates", max_candidates),
            ("timeout_ms", timeout_ms),
        )
        if value is not None
    }
    payload: Dict[str, Any] = {"bounds": bounds}
    if data.get("asset_values"):
        payload["asset_values"] = data["asset_values"]

    result = market.matching.run(CLI_OPERATOR, payload)

    if fmt == "json":
        out = result.to_dict()
        out["rejected_intents"] = [r.error for r in rejected]
        if result:
            out["proposals"] = [
                market.matching.get_proposal(pid).to_dict()
                for pid in result.body["selected_proposal_ids"]
            ]
        click.echo(json.dumps(out, indent=2, sort_keys=True))
    else:
        _output_human(market, result, rejected)

    sys.exit(0 if result else 1)


def _output_human(market: Marketplace, result, rejected) -> None:
    for r in rejected:
        click.echo(f"rejected intent: {r.error['message']}", err=True)
    if not result:
        click.echo(f"matching failed: {result.code} ({result.reason_code}): {result.error['message']}", err=True)
        return

    body = result.body
    stats = body["stats"]
    diagnostics = body["diagnostics"]
    click.echo(f"run {body['run_id']}")
    click.echo(
        f"  cycles {stats['candidate_cycles']}  proposals {stats['candidate_proposals']}  "
        f"selected {stats['selected_proposals_count']}  "
        f"({diagnostics['selection']['method']}, total score {diagnostics['selection']['total_score']})"
    )
    if diagnostics["max_cycles_reached"] or diagnostics["timeout_reached"]:
        click.echo(
            f"  truncated: max_cycles_reached={diagnostics['max_cycles_reached']} "
            f"timeout_reached={diagnostics['timeout_reached']}"
        )
    shadow = body.get("shadow")
    if shadow:
        if shadow.get("ok"):
            click.echo(f"  shadow {shadow['shadow_method']}: delta {shadow['score_delta']}, identical={shadow['identical']}")
        else:
            click.echo(f"  shadow failed: {shadow['error']['type']}")

    for proposal_id in body["selected_proposal_ids"]:
        proposal = market.matching.get_proposal(proposal_id)
        chain = " -> ".join(p.intent_id for p in proposal.participants)
        click.echo(f"  {proposal_id}  score {proposal.confidence_score}  {chain}")
