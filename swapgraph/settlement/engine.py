"""
swapgraph/settlement/engine.py

Settlement state machine for an accepted cycle.

    accepted ─start─▶ escrow.pending ─begin_execution─▶ escrow.executing ─complete─▶ completed
                            │
                            └─expire_deposit_window─▶ failed

Rules:
    - state only moves forward (TimelineState.ORDER); terminal states never change
    - each state change stages exactly one cycle.state_changed event
    - completed and failed each issue one signed SwapReceipt; a cycle has at most one
    - once failed, no leg can be deposited again
    - a rejected call writes nothing; the whole transition commits as one unit

Legs: participant i hands its `give` to participant i+1 (wrapping), so the
legs cover every participant exactly once.
"""

import logging
from typing import Any, Dict, List, Optional

from swapgraph.core.config import SettlementConfig
from swapgraph.core.exceptions import (
    ConflictError,
    ExpiredError,
    IntegrityError,
    NotFoundError,
    PreconditionFailedError,
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
    IntentStatus,
    LegStatus,
    OperationResult,
    ReceiptState,
    SettlementLeg,
    SettlementTimeline,
    SwapReceipt,
    TimelineState,
)
from swapgraph.core.time import add_seconds, is_at_or_after, normalize_timestamp
from swapgraph.matching.service import occurred, release_reservations
from swapgraph.settlement.commit import cycle_lock, load_proposal, state_changed
from swapgraph.settlement.receipts import ReceiptSigner
from swapgraph.store.operations import OperationRunner
from swapgraph.store.state import StateStore, Transaction


logger = logging.getLogger(__name__)

START_OPERATION     = "settlement.start"
DEPOSIT_OPERATION   = "settlement.depositConfirmed"
EXECUTE_OPERATION   = "settlement.beginExecution"
COMPLETE_OPERATION  = "settlement.complete"
EXPIRE_OPERATION    = "settlement.expireDepositWindow"

DEPOSIT_TIMEOUT = "deposit_timeout"


def build_legs(proposal: CycleProposal, deadline: str) -> List[SettlementLeg]:
    participants = proposal.participants
    legs: List[SettlementLeg] = []
    for i, giver in enumerate(participants):
        receiver = participants[(i + 1) % len(participants)]
        legs.append(SettlementLeg(
            leg_id=              f"leg_{proposal.id}_{i}",
            intent_id=           giver.intent_id,
            from_actor=          giver.actor,
            to_actor=            receiver.actor,
            assets=              list(giver.give),
            deposit_deadline_at= deadline,
        ))
    return legs


class SettlementEngine:
    """
    One instance per store. Every operation returns an OperationResult;
    rejected transitions carry {code, message, details{reason_code}}.
    """

    def __init__(
        self,
        store:   StateStore,
        journal: EventJournal,
        signer:  ReceiptSigner,
        config:  Optional[SettlementConfig] = None,
    ) -> None:
        self.store   = store
        self.signer  = signer
        self.config  = config or SettlementConfig()
        self.config.validate()
        self._runner = OperationRunner(store, journal)

    # ── Operations ────────────────────────────────────────────

    def start(
        self,
        actor:           Any,
        cycle_id:        str,
        payload:         Optional[Dict[str, Any]] = None,
        idempotency_key: Optional[str] = None,
        occurred_at:     Optional[str] = None,
    ) -> OperationResult:
        """payload: {deposit_deadline_at?}; default is occurred_at + deposit window."""
        payload = payload or {}
        return self._execute(
            START_OPERATION, actor, cycle_id, payload, idempotency_key,
            lambda tx: self._start(tx, cycle_id, payload, occurred_at),
        )

    def deposit_confirmed(
        self,
        actor:           Any,
        cycle_id:        str,
        leg_id:          str,
        deposit_ref:     str,
        idempotency_key: Optional[str] = None,
        occurred_at:     Optional[str] = None,
    ) -> OperationResult:
        payload = {"leg_id": leg_id, "deposit_ref": deposit_ref}
        return self._execute(
            DEPOSIT_OPERATION, actor, cycle_id, payload, idempotency_key,
            lambda tx: self._deposit(tx, cycle_id, leg_id, deposit_ref, occurred_at),
        )

    def begin_execution(
        self,
        actor:           Any,
        cycle_id:        str,
        idempotency_key: Optional[str] = None,
        occurred_at:     Optional[str] = None,
    ) -> OperationResult:
        return self._execute(
            EXECUTE_OPERATION, actor, cycle_id, {}, idempotency_key,
            lambda tx: self._begin_execution(tx, cycle_id, occurred_at),
        )

    def complete(
        self,
        actor:           Any,
        cycle_id:        str,
        idempotency_key: Optional[str] = None,
        occurred_at:     Optional[str] = None,
    ) -> OperationResult:
        return self._execute(
            COMPLETE_OPERATION, actor, cycle_id, {}, idempotency_key,
            lambda tx: self._complete(tx, cycle_id, occurred_at),
        )

    def expire_deposit_window(
        self,
        actor:           Any,
        cycle_id:        str,
        now:             Optional[str] = None,
        idempotency_key: Optional[str] = None,
        occurred_at:     Optional[str] = None,
    ) -> OperationResult:
        """
        Fail the cycle when now >= deposit_deadline_at and some leg is still
        undeposited. Anything else is a no-op body {no_op: True, reason}.
        """
        return self._execute(
            EXPIRE_OPERATION, actor, cycle_id, {"now": now}, idempotency_key,
            lambda tx: self._expire(tx, cycle_id, now or occurred_at),
        )

    # ── Reads ─────────────────────────────────────────────────

    def get_timeline(self, cycle_id: str) -> Optional[SettlementTimeline]:
        return self.store.get("timelines", cycle_id)

    def get_receipt(self, cycle_id: str) -> Optional[SwapReceipt]:
        return self.store.get("receipts", cycle_id)

    # ── Handlers ──────────────────────────────────────────────

    def _execute(self, operation, actor, cycle_id, payload, idempotency_key, handler) -> OperationResult:
        # the hashed request carries cycle_id, so one key never covers two cycles
        actor = Actor.coerce(actor)
        return self._runner.execute(
            operation, actor, dict(payload, cycle_id=cycle_id), idempotency_key,
            [cycle_lock(cycle_id)], handler,
        )

    def _start(
        self,
        tx:          Transaction,
        cycle_id:    str,
        payload:     Dict[str, Any],
        occurred_at: Optional[str],
    ) -> Dict[str, Any]:
        now = occurred(occurred_at)
        commit: Optional[Commit] = tx.get("commits", cycle_id)
        if commit is None:
            raise NotFoundError(
                f"no commit for cycle '{cycle_id}'",
                {"cycle_id": cycle_id},
                reason_code="commit_not_found",
            )

        existing = tx.get("timelines", cycle_id)
        if existing is not None:
            return {"timeline": existing.to_dict(), "no_op": True}

        if commit.phase != CommitPhase.ACCEPTED:
            raise PreconditionFailedError(
                "commit is not in the accepted phase",
                {"cycle_id": cycle_id, "phase": commit.phase},
                reason_code="commit_not_accepted",
            )

        proposal = load_proposal(tx, cycle_id)
        deadline = self._deadline(payload, now)
        timeline = SettlementTimeline(
            cycle_id=            cycle_id,
            state=               TimelineState.PENDING,
            legs=                build_legs(proposal, deadline),
            deposit_deadline_at= deadline,
            created_at=          now,
            updated_at=          now,
        )
        tx.put("timelines", cycle_id, timeline)
        self._advance_commit(tx, commit, CommitPhase.PENDING, now)
        tx.emit(state_changed(
            cycle_id, CommitPhase.ACCEPTED, TimelineState.PENDING, now,
            deposit_deadline_at=deadline, leg_ids=[leg.leg_id for leg in timeline.legs],
        ))
        logger.info("settlement %s started with %d legs, deadline %s", cycle_id, len(timeline.legs), deadline)
        return {"timeline": timeline.to_dict()}

    def _deposit(
        self,
        tx:          Transaction,
        cycle_id:    str,
        leg_id:      str,
        deposit_ref: str,
        occurred_at: Optional[str],
    ) -> Dict[str, Any]:
        now = occurred(occurred_at)
        if not isinstance(deposit_ref, str) or not deposit_ref:
            raise ValidationError(
                "deposit_ref must be a non-empty string",
                {"leg_id": leg_id},
                reason_code="invalid_request",
            )
        timeline = self._load_timeline(tx, cycle_id)
        if timeline.state == TimelineState.FAILED:
            raise ExpiredError(
                "settlement has failed; deposits are closed",
                {"cycle_id": cycle_id, "failure_reason": timeline.failure_reason},
                reason_code="settlement_failed",
            )

        leg = timeline.leg(leg_id)
        if leg is None:
            raise NotFoundError(
                f"leg '{leg_id}' not found",
                {"cycle_id": cycle_id, "leg_id": leg_id},
                reason_code="leg_not_found",
            )
        if leg.deposit_ref is not None:
            if leg.deposit_ref == deposit_ref:
                return {"timeline": timeline.to_dict(), "no_op": True}
            raise ConflictError(
                "leg already deposited under a different deposit_ref",
                {"cycle_id": cycle_id, "leg_id": leg_id, "deposit_ref": leg.deposit_ref},
                reason_code="deposit_ref_conflict",
            )
        if timeline.state != TimelineState.PENDING:
            raise PreconditionFailedError(
                "deposits are only accepted while escrow is pending",
                {"cycle_id": cycle_id, "state": timeline.state},
                reason_code="invalid_state",
            )
        if is_at_or_after(now, timeline.deposit_deadline_at):
            raise ExpiredError(
                "deposit window has elapsed",
                {"cycle_id": cycle_id, "deposit_deadline_at": timeline.deposit_deadline_at},
                reason_code="deposit_window_expired",
            )

        leg.status       = LegStatus.DEPOSITED
        leg.deposit_ref  = deposit_ref
        leg.deposited_at = now
        timeline.updated_at = now
        tx.put("timelines", cycle_id, timeline)
        tx.emit(Event.create(
            EventType.DEPOSIT_CONFIRMED, cycle_id, f"deposit:{leg_id}", now,
            {"cycle_id": cycle_id, "leg_id": leg_id, "deposit_ref": deposit_ref},
        ))
        logger.debug("settlement %s: leg %s deposited (%s)", cycle_id, leg_id, deposit_ref)
        return {"timeline": timeline.to_dict()}

    def _begin_execution(self, tx: Transaction, cycle_id: str, occurred_at: Optional[str]) -> Dict[str, Any]:
        now = occurred(occurred_at)
        timeline = self._load_timeline(tx, cycle_id)
        if timeline.state == TimelineState.EXECUTING:
            return {"timeline": timeline.to_dict(), "no_op": True}
        if timeline.state != TimelineState.PENDING:
            raise PreconditionFailedError(
                "execution can only begin from escrow.pending",
                {"cycle_id": cycle_id, "state": timeline.state},
                reason_code="invalid_state",
            )
        outstanding = timeline.outstanding_legs()
        if outstanding:
            raise PreconditionFailedError(
                "not all legs are deposited",
                {"cycle_id": cycle_id, "outstanding_legs": outstanding},
                reason_code="legs_not_deposited",
            )

        self._transition(tx, timeline, TimelineState.EXECUTING, now)
        self._advance_commit(tx, self._load_commit(tx, cycle_id), CommitPhase.EXECUTING, now)
        tx.emit(state_changed(cycle_id, TimelineState.PENDING, TimelineState.EXECUTING, now))
        logger.info("settlement %s executing", cycle_id)
        return {"timeline": timeline.to_dict()}

    def _complete(self, tx: Transaction, cycle_id: str, occurred_at: Optional[str]) -> Dict[str, Any]:
        now = occurred(occurred_at)
        timeline = self._load_timeline(tx, cycle_id)
        if timeline.state == TimelineState.COMPLETED:
            receipt = tx.get("receipts", cycle_id)
            return {"timeline": timeline.to_dict(), "receipt": receipt.to_dict(), "no_op": True}
        if timeline.state != TimelineState.EXECUTING:
            raise PreconditionFailedError(
                "completion requires escrow.executing",
                {"cycle_id": cycle_id, "state": timeline.state},
                reason_code="invalid_state",
            )

        for leg in timeline.legs:
            leg.status      = LegStatus.RELEASED
            leg.release_ref = f"rel_{leg.leg_id}"
        self._transition(tx, timeline, TimelineState.COMPLETED, now)
        self._advance_commit(tx, self._load_commit(tx, cycle_id), CommitPhase.COMPLETED, now)

        proposal = load_proposal(tx, cycle_id)
        release_reservations(tx, proposal, "fulfilled", now, status=IntentStatus.FULFILLED)
        tx.emit(state_changed(cycle_id, TimelineState.EXECUTING, TimelineState.COMPLETED, now))
        receipt = self._issue_receipt(tx, timeline, proposal, ReceiptState.SETTLED, now)
        logger.info("settlement %s completed, receipt %s", cycle_id, receipt.id)
        return {"timeline": timeline.to_dict(), "receipt": receipt.to_dict()}

    def _expire(self, tx: Transaction, cycle_id: str, now: Optional[str]) -> Dict[str, Any]:
        now = occurred(now)
        timeline = self._load_timeline(tx, cycle_id)

        reason = None
        if timeline.state == TimelineState.FAILED:
            reason = "already_failed"
        elif timeline.state != TimelineState.PENDING:
            reason = "not_pending"
        elif not is_at_or_after(now, timeline.deposit_deadline_at):
            reason = "deadline_not_reached"
        elif timeline.all_deposited():
            reason = "all_legs_deposited"
        if reason is not None:
            return {"timeline": timeline.to_dict(), "no_op": True, "reason": reason}

        refunded: List[str] = []
        for leg in timeline.legs:
            if leg.status == LegStatus.DEPOSITED:
                leg.status     = LegStatus.REFUNDED
                leg.refund_ref = f"ref_{leg.leg_id}"
                refunded.append(leg.leg_id)
        timeline.failure_reason = DEPOSIT_TIMEOUT
        self._transition(tx, timeline, TimelineState.FAILED, now)
        self._advance_commit(tx, self._load_commit(tx, cycle_id), CommitPhase.FAILED, now)

        proposal = load_proposal(tx, cycle_id)
        release_reservations(tx, proposal, "settlement_failed", now)
        tx.emit(state_changed(
            cycle_id, TimelineState.PENDING, TimelineState.FAILED, now,
            reason_code=DEPOSIT_TIMEOUT, refunded_legs=refunded,
        ))
        receipt = self._issue_receipt(tx, timeline, proposal, ReceiptState.FAILED, now, DEPOSIT_TIMEOUT)
        logger.info("settlement %s failed (deposit_timeout), %d legs refunded", cycle_id, len(refunded))
        return {"timeline": timeline.to_dict(), "receipt": receipt.to_dict()}

    # ── Internals ─────────────────────────────────────────────

    def _deadline(self, payload: Dict[str, Any], now: str) -> str:
        explicit = payload.get("deposit_deadline_at")
        if explicit is None:
            return add_seconds(now, self.config.deposit_window_seconds)
        try:
            return normalize_timestamp(explicit)
        except ValueError as exc:
            raise ValidationError(
                "deposit_deadline_at is not a valid timestamp",
                {"deposit_deadline_at": explicit},
                reason_code="invalid_timestamp",
            ) from exc

    def _load_timeline(self, tx: Transaction, cycle_id: str) -> SettlementTimeline:
        timeline = tx.get("timelines", cycle_id)
        if timeline is None:
            raise NotFoundError(
                f"no settlement timeline for cycle '{cycle_id}'",
                {"cycle_id": cycle_id},
                reason_code="timeline_not_found",
            )
        return timeline

    def _load_commit(self, tx: Transaction, cycle_id: str) -> Commit:
        commit = tx.get("commits", cycle_id)
        if commit is None:
            raise IntegrityError(
                "settlement timeline has no commit",
                {"cycle_id": cycle_id},
                reason_code="commit_missing",
            )
        return commit

    def _transition(self, tx: Transaction, timeline: SettlementTimeline, target: str, now: str) -> None:
        if TimelineState.ORDER[target] <= TimelineState.ORDER[timeline.state]:
            raise IntegrityError(
                "settlement state cannot move backwards",
                {"cycle_id": timeline.cycle_id, "from_state": timeline.state, "to_state": target},
                reason_code="non_monotonic_transition",
            )
        timeline.state      = target
        timeline.updated_at = now
        tx.put("timelines", timeline.cycle_id, timeline)

    def _advance_commit(self, tx: Transaction, commit: Commit, phase: str, now: str) -> None:
        commit.phase      = phase
        commit.updated_at = now
        tx.put("commits", commit.proposal_id, commit)

    def _issue_receipt(
        self,
        tx:          Transaction,
        timeline:    SettlementTimeline,
        proposal:    CycleProposal,
        final_state: str,
        now:         str,
        reason_code: Optional[str] = None,
    ) -> SwapReceipt:
        if tx.get("receipts", timeline.cycle_id) is not None:
            raise IntegrityError(
                "cycle already has a receipt",
                {"cycle_id": timeline.cycle_id},
                reason_code="receipt_exists",
            )
        receipt = self.signer.issue(
            cycle_id=    timeline.cycle_id,
            final_state= final_state,
            intent_ids=  proposal.intent_ids,
            asset_ids=   [a.asset_id for leg in timeline.legs for a in leg.assets],
            created_at=  now,
            reason_code= reason_code,
        )
        tx.put("receipts", timeline.cycle_id, receipt)
        tx.emit(Event.create(
            EventType.RECEIPT_CREATED, timeline.cycle_id, f"receipt:{final_state}", now,
            {"cycle_id": timeline.cycle_id, "receipt_id": receipt.id, "final_state": final_state},
        ))
        return receipt
