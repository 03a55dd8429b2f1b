"""
swapgraph/store/operations.py

The boundary every mutating operation goes through.

execute() MUST, in this order:
  1. Lock the operation's keys (plus the idempotency scope key)
  2. On a known scope key: replay the stored result, or reject a different
     payload with IDEMPOTENCY_KEY_REUSE_PAYLOAD_MISMATCH
  3. Run the handler against a fresh Transaction
  4. On SwapGraphError: drop staged writes and events, keep the error result
  5. Stage the idempotency record next to the state writes
  6. Append events to the journal (deduplicated by event_id)
  7. Apply all staged writes to the store as one unit

If step 6 fails nothing is applied and no idempotency record exists, so a
retry runs the operation again.
"""

import copy
import logging
from contextlib import ExitStack
from typing import Any, Callable, Dict, Iterable, Optional

from swapgraph.core.exceptions import IdempotencyConflictError, JournalError, SwapGraphError
from swapgraph.core.idempotency import payload_hash, scope_key
from swapgraph.core.journal import EventJournal
from swapgraph.core.models import Actor, IdempotencyRecord, OperationResult
from swapgraph.store.state import StateStore, Transaction


logger = logging.getLogger(__name__)

Handler = Callable[[Transaction], Dict[str, Any]]


class OperationRunner:

    def __init__(self, store: StateStore, journal: EventJournal) -> None:
        self.store   = store
        self.journal = journal

    def execute(
        self,
        operation:       str,
        actor:           Actor,
        payload:         Any,
        idempotency_key: Optional[str],
        lock_keys:       Iterable[str],
        handler:         Handler,
    ) -> OperationResult:
        keys = list(lock_keys)
        scope: Optional[str] = None
        digest = payload_hash(payload)
        if idempotency_key:
            scope = scope_key(actor, operation, idempotency_key)
            keys.append(f"idem:{scope}")

        with ExitStack() as stack:
            stack.enter_context(self.store.locks.hold(*keys))

            if scope is not None:
                existing: Optional[IdempotencyRecord] = self.store.get("idempotency", scope)
                if existing is not None:
                    if existing.payload_hash == digest:
                        logger.info("%s: replay of %s", operation, scope)
                        return OperationResult.from_dict(existing.result, replayed=True)
                    err = IdempotencyConflictError(
                        "Idempotency key reused with a different payload",
                        {
                            "scope_key":     scope,
                            "original_hash": existing.payload_hash,
                            "new_hash":      digest,
                        },
                        reason_code="idempotency_payload_mismatch",
                    )
                    return OperationResult(ok=False, error=err.to_error())

            tx = Transaction(
                self.store,
                lambda *extra: stack.enter_context(self.store.locks.hold(*extra)),
            )
            try:
                body = handler(tx)
                result = OperationResult(ok=True, body=body)
            except SwapGraphError as exc:
                tx.rollback()
                logger.info("%s rejected: %s", operation, exc)
                result = OperationResult(ok=False, error=exc.to_error())
            except Exception:
                tx.rollback()
                logger.exception("%s failed unexpectedly", operation)
                err = SwapGraphError("internal error", {"operation": operation}, reason_code="internal_error")
                return OperationResult(ok=False, error=err.to_error())

            stored = copy.deepcopy(result.to_dict())
            if scope is not None:
                tx.put("idempotency", scope, IdempotencyRecord(
                    scope_key=    scope,
                    payload_hash= digest,
                    result=       stored,
                ))

            try:
                self.journal.append_all(tx.events)
            except JournalError as exc:
                logger.error("%s: %s", operation, exc)
                return OperationResult(ok=False, error=exc.to_error())

            self.store.apply(tx.writes)
            return OperationResult.from_dict(copy.deepcopy(stored))
