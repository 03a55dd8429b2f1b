"""
swapgraph/cli/__init__.py

Root click group for the `swapgraph` command, registered in pyproject.toml as:

    [project.scripts]
    swapgraph = "swapgraph.cli:cli"

New commands live in their own module under swapgraph/cli/ and are added
with cli.add_command() below.
"""

import logging

import click

from swapgraph.cli.match import match_command
from swapgraph.cli.verify import verify_command


LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Route swapgraph loggers to stderr at `level`."""
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT, force=True)


@click.group()
@click.version_option(package_name="swapgraph")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    show_default=True,
    help="Log level for diagnostics written to stderr.",
)
def cli(log_level: str) -> None:
    """
    SwapGraph: multi-party barter matching and settlement.

    \b
    Commands:
      match     Run one matching pass over an intents file.
      verify    Verify an event journal: sequence, chain, signatures.

    \b
    Quick start:
      swapgraph match intents.yaml --max-cycle-length 3
      swapgraph match intents.json --format json --journal events.jsonl --key signing.pem
      swapgraph verify events.jsonl
      swapgraph verify events.jsonl --quiet && echo "clean"
    """
    configure_logging(log_level)


cli.add_command(match_command)
cli.add_command(verify_command)
