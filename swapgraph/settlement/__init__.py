"""
SwapGraph Settlement

CommitService accepts a persisted proposal; SettlementEngine drives the
accepted cycle through escrow to a signed receipt.

Invariants:
- settlement state only moves forward
- a cycle has at most one receipt
- a failed call changes nothing
"""

from swapgraph.settlement.commit import CommitService
from swapgraph.settlement.engine import SettlementEngine
from swapgraph.settlement.receipts import ReceiptSigner, verify_receipt

__all__ = ["CommitService", "SettlementEngine", "ReceiptSigner", "verify_receipt"]
