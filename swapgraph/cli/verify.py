"""
swapgraph/cli/verify.py

swapgraph verify: offline check of an event journal.

Usage:
    swapgraph verify <journal>                       Human output (default)
    swapgraph verify <journal> --format json         Machine-readable JSON
    swapgraph verify <journal> --format compact      One-line pipeline output
    swapgraph verify <journal> --export report.json  Export full report
    swapgraph verify <journal> --quiet               Exit code only
    swapgraph verify <journal> --no-color            Disable ANSI

Exit codes:
    0  Journal fully valid (sequence + chain + signatures + unique event ids)
    1  Journal has violations
    2  Error (file missing, malformed JSON)
"""

import json
import sys
import time
from pathlib import Path
from typing import Optional

import click

from swapgraph.core.replay import JournalReplay, ReplaySummary


class _Color:
    """ANSI wrapper. Disabled when stdout is not a TTY or with --no-color."""
    _on: bool = True

    @classmethod
    def configure(cls, enabled: bool) -> None:
        cls._on = enabled and sys.stdout.isatty()

    @classmethod
    def _wrap(cls, code: str, s: str) -> str:
        return f"\033[{code}m{s}\033[0m" if cls._on else s

    @classmethod
    def green(cls, s: str) -> str:
        return cls._wrap("32", s)

    @classmethod
    def red(cls, s: str) -> str:
        return cls._wrap("31", s)

    @classmethod
    def yellow(cls, s: str) -> str:
        return cls._wrap("33", s)

    @classmethod
    def cyan(cls, s: str) -> str:
        return cls._wrap("36", s)

    @classmethod
    def bold(cls, s: str) -> str:
        return cls._wrap("1", s)

    @classmethod
    def dim(cls, s: str) -> str:
        return cls._wrap("2", s)


def _row(label: str, mark: str, value: str) -> str:
    return f"  {_Color.dim(f'{label:<14}')}  {mark}  {value}"


def _row_ok(label: str, value: str) -> str:
    return _row(label, _Color.green("OK  "), value)


def _row_fail(label: str, value: str) -> str:
    return _row(label, _Color.red("FAIL"), value)


def _row_info(label: str, value: str) -> str:
    return _row(label, "    ", _Color.dim(value))


@click.command(name="verify")
@click.argument("journal", type=click.Path(exists=False))
@click.option(
    "--format", "fmt",
    type=click.Choice(["human", "json", "compact"], case_sensitive=False),
    default="human",
    show_default=True,
    help="Output format: human, json (automation) or compact (pipelines).",
)
@click.option(
    "--export", "export_path",
    type=click.Path(),
    default=None,
    metavar="PATH",
    help="Write the full verification report to a JSON file.",
)
@click.option(
    "--quiet",
    is_flag=True,
    default=False,
    help="Suppress output. Exit code only (0=valid, 1=invalid, 2=error).",
)
@click.option("--no-color", is_flag=True, default=False, help="Disable ANSI color output.")
def verify_command(
    journal:     str,
    fmt:         str,
    export_path: Optional[str],
    quiet:       bool,
    no_color:    bool,
) -> None:
    """
    Verify an event journal: sequence, hash chain, signatures, event ids.

    JOURNAL is the path to a .jsonl journal written by EventJournal.
    """
    _Color.configure(not no_color)
    journal_path = Path(journal)

    if not journal_path.exists():
        _emit_error(f"Journal not found: {journal}", fmt, quiet)
        sys.exit(2)

    replay  = JournalReplay()
    t_start = time.perf_counter()
    try:
        replay.load(journal_path)
        summary = replay.verify()
    except (FileNotFoundError, ValueError) as e:
        _emit_error(str(e), fmt, quiet)
        sys.exit(2)
    elapsed = time.perf_counter() - t_start

    valid = not summary.violations

    if export_path:
        try:
            replay.export_json(Path(export_path), summary)
        except OSError as e:
            if not quiet:
                click.echo(_Color.yellow(f"\n  Export failed: {e}"), err=True)

    if quiet:
        sys.exit(0 if valid else 1)

    if fmt == "json":
        _output_json(summary, journal_path, elapsed, export_path, valid)
    elif fmt == "compact":
        _output_compact(summary, journal_path, elapsed, valid)
    else:
        _output_human(summary, journal_path, elapsed, export_path, valid)

    sys.exit(0 if valid else 1)


def _output_human(
    summary:      ReplaySummary,
    journal_path: Path,
    elapsed:      float,
    export_path:  Optional[str],
    valid:        bool,
) -> None:
    bar_heavy = "=" * 64
    bar_light = "-" * 64

    click.echo()
    click.echo(_Color.bold(f"  {bar_heavy}"))
    click.echo(_Color.bold("  SwapGraph  ·  Event Journal Verification"))
    click.echo(_Color.bold(f"  {bar_heavy}"))
    click.echo()

    total = summary.total_entries
    click.echo(_row_info("Journal", str(journal_path)))
    click.echo(_row_info("Entries", f"{total:,}"))
    click.echo(_row_info("Cycles", ", ".join(summary.cycles_seen) or "-"))
    click.echo()

    by_type = {}
    for v in summary.violations:
        by_type.setdefault(v.violation_type, []).append(v)

    if "chain_break" in by_type:
        click.echo(_row_fail("Chain", _Color.red(f"{len(by_type['chain_break'])} break(s)")))
    else:
        click.echo(_row_ok("Chain", "intact"))

    if summary.invalid_signatures:
        click.echo(_row_fail(
            "Signatures",
            f"{summary.valid_signatures:,} valid  " + _Color.red(f"{summary.invalid_signatures:,} INVALID"),
        ))
    else:
        click.echo(_row_ok("Signatures", f"{summary.valid_signatures:,} / {total:,} valid"))

    if "sequence_gap" in by_type:
        click.echo(_row_fail("Sequence", _Color.red(f"{len(by_type['sequence_gap'])} gap(s)")))
    else:
        click.echo(_row_ok("Sequence", f"0 .. {total - 1:,}" if total else "empty journal"))

    if "duplicate_event" in by_type:
        click.echo(_row_fail("Event ids", _Color.red(f"{len(by_type['duplicate_event'])} duplicate(s)")))
    else:
        click.echo(_row_ok("Event ids", "unique"))

    click.echo()
    if summary.first_occurred_at:
        click.echo(_row_info("First event", summary.first_occurred_at))
    if summary.last_occurred_at:
        click.echo(_row_info("Last event", summary.last_occurred_at))
    if summary.head_hash:
        click.echo(_row_info("Chain head", _Color.cyan(summary.head_hash[:16] + "..." + summary.head_hash[-8:])))
    if summary.event_type_counts:
        click.echo(_row_info("Event types", "  ".join(
            f"{k}: {v:,}" for k, v in sorted(summary.event_type_counts.items())
        )))
    click.echo(_row_info("Verified", f"{elapsed:.3f}s"))
    if export_path:
        click.echo(_row_info("Exported", export_path))
    click.echo()

    if summary.violations:
        click.echo(f"  {bar_light}")
        for v in summary.violations:
            click.echo(f"  {_Color.red(str(v.at_sequence)):>6}  {_Color.yellow(f'{v.violation_type:<18}')}  {v.detail}")
        click.echo(f"  {bar_light}")
        click.echo()

    click.echo(f"  {bar_light}")
    if valid:
        click.echo(_Color.green(_Color.bold("  VALID  ·  0 violations")))
    else:
        click.echo(_Color.red(_Color.bold(f"  INVALID  ·  {len(summary.violations)} violation(s)")))
    click.echo(f"  {bar_light}")
    click.echo()


def _output_json(
    summary:      ReplaySummary,
    journal_path: Path,
    elapsed:      float,
    export_path:  Optional[str],
    valid:        bool,
) -> None:
    out = {
        "swapgraph_verify": {
            "journal":            str(journal_path),
            "journal_valid":      valid,
            "chain_valid":        summary.chain_valid,
            "total_entries":      summary.total_entries,
            "valid_signatures":   summary.valid_signatures,
            "invalid_signatures": summary.invalid_signatures,
            "violation_count":    len(summary.violations),
            "event_type_counts":  summary.event_type_counts,
            "cycles_seen":        summary.cycles_seen,
            "signers_seen":       summary.signers_seen,
            "first_occurred_at":  summary.first_occurred_at,
            "last_occurred_at":   summary.last_occurred_at,
            "chain_head_hash":    summary.head_hash,
            "elapsed_seconds":    round(elapsed, 3),
            "export_path":        export_path,
            "violations": [
                {
                    "at_sequence":    v.at_sequence,
                    "event_id":       v.event_id,
                    "violation_type": v.violation_type,
                    "detail":         v.detail,
                }
                for v in summary.violations
            ],
        }
    }
    click.echo(json.dumps(out, indent=2))


def _output_compact(summary: ReplaySummary, journal_path: Path, elapsed: float, valid: bool) -> None:
    """
    VALID    events.jsonl  120 entries  0 violations  0.041s
    INVALID  events.jsonl   80 entries  2 violation(s)  0.030s
    """
    status = _Color.green(f"{'VALID':<8}") if valid else _Color.red(f"{'INVALID':<8}")
    count = "0 violations" if valid else _Color.red(f"{len(summary.violations)} violation(s)")
    click.echo(
        f"{status}  {journal_path.name:<30}  {summary.total_entries:>8,} entries  {count}  {elapsed:.3f}s"
    )


def _emit_error(msg: str, fmt: str, quiet: bool) -> None:
    if quiet:
        return
    if fmt == "json":
        click.echo(json.dumps({
            "swapgraph_verify": {
                "error":         msg,
                "chain_valid":   False,
                "journal_valid": False,
            }
        }))
    else:
        click.echo(_Color.red(f"\n  ERROR: {msg}\n"), err=True)
