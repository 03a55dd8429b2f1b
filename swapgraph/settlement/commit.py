"""
swapgraph/settlement/commit.py

Acceptance of a persisted proposal: the Commit record that authorizes
settlement.

accept() checks, in order:
    proposal exists                       NOT_FOUND
    payload proposal_id matches           CONSTRAINT_VIOLATION
    no commit yet                         CONFLICT (commit_exists)
    proposal not expired                  EXPIRED (proposal_expired)
    every intent reserved for proposal    RESERVATION_CONFLICT

Two concurrent accepts serialize on the cycle lock; the loser sees the
winner's commit.
"""

import logging
from typing import Any, Dict, Optional

from swapgraph.core.exceptions import (
    ConflictError,
    ExpiredError,
    NotFoundError,
    PreconditionFailedError,
    ReservationConflictError,
    ValidationError,
)
from swapgraph.core.journal import EventJournal
from swapgraph.core.models import (
    Actor,
    Commit,
    CommitPhase,
    CycleProposal,
    Event,
    EventType,
    OperationResult,
)
from swapgraph.core.time import is_at_or_after
from swapgraph.matching.service import occurred, release_reservations
from swapgraph.store.operations import OperationRunner
from swapgraph.store.state import StateStore, Transaction


logger = logging.getLogger(__name__)

ACCEPT_OPERATION  = "cycleProposals.accept"
DECLINE_OPERATION = "cycleProposals.decline"

PROPOSED = "proposed"


def cycle_lock(cycle_id: str) -> str:
    return f"cycle:{cycle_id}"


def state_changed(cycle_id: str, from_state: str, to_state: str, now: str, **extra) -> Event:
    """One cycle.state_changed event per (cycle, target state)."""
    payload = {"cycle_id": cycle_id, "from_state": from_state, "to_state": to_state}
    payload.update(extra)
    return Event.create(EventType.CYCLE_STATE_CHANGED, cycle_id, f"state:{to_state}", now, payload)


def load_proposal(tx: Transaction, proposal_id: str) -> CycleProposal:
    proposal = tx.get("proposals", proposal_id)
    if proposal is None:
        raise NotFoundError(
            f"proposal '{proposal_id}' not found",
            {"proposal_id": proposal_id},
            reason_code="proposal_not_found",
        )
    return proposal


class CommitService:

    def __init__(self, store: StateStore, journal: EventJournal) -> None:
        self.store   = store
        self._runner = OperationRunner(store, journal)

    def accept(
        self,
        actor:           Any,
        proposal_id:     str,
        payload:         Optional[Dict[str, Any]] = None,
        idempotency_key: Optional[str] = None,
        occurred_at:     Optional[str] = None,
    ) -> OperationResult:
        actor = Actor.coerce(actor)
        payload = payload if payload is not None else {"proposal_id": proposal_id}
        return self._runner.execute(
            ACCEPT_OPERATION, actor, payload, idempotency_key, [cycle_lock(proposal_id)],
            lambda tx: self._accept(tx, actor, proposal_id, payload, occurred_at),
        )

    def decline(
        self,
        actor:           Any,
        proposal_id:     str,
        idempotency_key: Optional[str] = None,
        occurred_at:     Optional[str] = None,
    ) -> OperationResult:
        """Cancel a proposal before settlement starts and release its intents."""
        actor = Actor.coerce(actor)
        return self._runner.execute(
            DECLINE_OPERATION, actor, {"proposal_id": proposal_id}, idempotency_key,
            [cycle_lock(proposal_id)],
            lambda tx: self._decline(tx, actor, proposal_id, occurred_at),
        )

    def get_commit(self, proposal_id: str) -> Optional[Commit]:
        return self.store.get("commits", proposal_id)

    # ── Handlers ──────────────────────────────────────────────

    def _accept(
        self,
        tx:          Transaction,
        actor:       Actor,
        proposal_id: str,
        payload:     Dict[str, Any],
        occurred_at: Optional[str],
    ) -> Dict[str, Any]:
        now = occurred(occurred_at)
        proposal = load_proposal(tx, proposal_id)

        requested = payload.get("proposal_id") if isinstance(payload, dict) else None
        if requested != proposal_id:
            raise ValidationError(
                "payload.proposal_id does not match the proposal being accepted",
                {"proposal_id": proposal_id, "payload_proposal_id": requested},
                reason_code="proposal_id_mismatch",
            )

        existing: Optional[Commit] = tx.get("commits", proposal_id)
        if existing is not None:
            raise ConflictError(
                "proposal already has a commit",
                {"proposal_id": proposal_id, "phase": existing.phase},
                reason_code="commit_exists",
            )

        if is_at_or_after(now, proposal.expires_at):
            raise ExpiredError(
                "proposal has expired",
                {"proposal_id": proposal_id, "expires_at": proposal.expires_at},
                reason_code="proposal_expired",
            )

        unreserved = [
            intent_id for intent_id in proposal.intent_ids
            if tx.get("reservations", intent_id) != proposal_id
        ]
        if unreserved:
            raise ReservationConflictError(
                "intents are no longer reserved for this proposal",
                {"proposal_id": proposal_id, "intent_ids": unreserved},
                reason_code="reservation_conflict",
            )

        commit = Commit(
            proposal_id= proposal_id,
            phase=       CommitPhase.ACCEPTED,
            accepted_by= actor,
            created_at=  now,
            accepted_at= now,
            updated_at=  now,
        )
        tx.put("commits", proposal_id, commit)
        tx.emit(state_changed(
            proposal_id, PROPOSED, CommitPhase.ACCEPTED, now, accepted_by=actor.to_dict(),
        ))
        logger.info("proposal %s accepted by %s", proposal_id, actor.key)
        return {"commit": commit.to_dict()}

    def _decline(
        self,
        tx:          Transaction,
        actor:       Actor,
        proposal_id: str,
        occurred_at: Optional[str],
    ) -> Dict[str, Any]:
        now = occurred(occurred_at)
        proposal = load_proposal(tx, proposal_id)

        commit: Optional[Commit] = tx.get("commits", proposal_id)
        if commit is not None and commit.phase == CommitPhase.CANCELLED:
            return {"commit": commit.to_dict(), "released_intent_ids": []}
        if commit is not None and commit.phase != CommitPhase.ACCEPTED:
            raise PreconditionFailedError(
                "settlement has already started",
                {"proposal_id": proposal_id, "phase": commit.phase},
                reason_code="settlement_started",
            )

        from_state = commit.phase if commit is not None else PROPOSED
        if commit is None:
            commit = Commit(
                proposal_id= proposal_id,
                phase=       CommitPhase.CANCELLED,
                accepted_by= actor,
                created_at=  now,
                accepted_at= now,
                updated_at=  now,
            )
        else:
            commit.phase = CommitPhase.CANCELLED
            commit.updated_at = now

        tx.put("commits", proposal_id, commit)
        released = release_reservations(tx, proposal, "declined", now)
        tx.emit(state_changed(
            proposal_id, from_state, CommitPhase.CANCELLED, now, declined_by=actor.to_dict(),
        ))
        logger.info("proposal %s declined by %s", proposal_id, actor.key)
        return {"commit": commit.to_dict(), "released_intent_ids": released}
