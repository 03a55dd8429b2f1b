"""
SwapGraph State Store

Records live in a StateStore; every mutating operation goes through an
OperationRunner so writes, idempotency records and events commit together.
"""

from swapgraph.store.operations import OperationRunner
from swapgraph.store.state import KeyedLocks, StateStore, Transaction

__all__ = ["StateStore", "Transaction", "KeyedLocks", "OperationRunner"]
