"""
swapgraph/__init__.py

SwapGraph: multi-party barter matching and settlement.

Intents go in, intent-disjoint cycle proposals come out of a matching run,
and each accepted proposal is driven through escrow to a signed receipt.
Every state change lands in a signed, hash-chained event journal.
"""

__version__ = "0.1.0"

from swapgraph.core.config import SwapGraphConfig
from swapgraph.core.crypto import Ed25519KeyManager
from swapgraph.core.exceptions import SwapGraphError
from swapgraph.core.journal import EventJournal
from swapgraph.core.models import OperationResult
from swapgraph.marketplace import Marketplace
from swapgraph.settlement.receipts import verify_receipt

__all__ = [
    "Marketplace",
    "SwapGraphConfig",
    "EventJournal",
    "Ed25519KeyManager",
    "OperationResult",
    "SwapGraphError",
    "verify_receipt",
]
