"""
swapgraph/intents/service.py

Swap intent lifecycle outside matching and settlement: create, cancel, read.

Intent writes share the "matching" lock with matching runs, so a run's
snapshot never races an intent being created or cancelled.
"""

import logging
from typing import Any, Dict, List, Optional

from swapgraph.core.exceptions import ConflictError, ForbiddenError, NotFoundError, ValidationError
from swapgraph.core.journal import EventJournal
from swapgraph.core.models import Actor, IntentStatus, OperationResult, SwapIntent
from swapgraph.core.time import normalize_timestamp
from swapgraph.matching.service import MATCHING_LOCK, occurred
from swapgraph.store.operations import OperationRunner
from swapgraph.store.state import StateStore, Transaction


logger = logging.getLogger(__name__)

CREATE_OPERATION = "swapIntents.create"
CANCEL_OPERATION = "swapIntents.cancel"


class IntentService:

    def __init__(self, store: StateStore, journal: EventJournal) -> None:
        self.store   = store
        self._runner = OperationRunner(store, journal)

    def create(
        self,
        actor:           Any,
        payload:         Dict[str, Any],
        idempotency_key: Optional[str] = None,
        occurred_at:     Optional[str] = None,
    ) -> OperationResult:
        """
        payload: {intent: {id?, give, want, value_band?, max_cycle_length?, expires_at?}}
        The intent is owned by the calling actor; an explicit intent.actor
        naming someone else is FORBIDDEN.
        """
        actor = Actor.coerce(actor)
        return self._runner.execute(
            CREATE_OPERATION, actor, payload, idempotency_key, [MATCHING_LOCK],
            lambda tx: self._create(tx, actor, payload, occurred_at),
        )

    def cancel(
        self,
        actor:           Any,
        intent_id:       str,
        idempotency_key: Optional[str] = None,
        occurred_at:     Optional[str] = None,
    ) -> OperationResult:
        actor = Actor.coerce(actor)
        return self._runner.execute(
            CANCEL_OPERATION, actor, {"intent_id": intent_id}, idempotency_key, [MATCHING_LOCK],
            lambda tx: self._cancel(tx, actor, intent_id, occurred_at),
        )

    def get(self, intent_id: str) -> Optional[SwapIntent]:
        return self.store.get("intents", intent_id)

    def list(self, actor: Any = None) -> List[SwapIntent]:
        intents = self.store.values("intents")
        if actor is None:
            return intents
        owner = Actor.coerce(actor)
        return [i for i in intents if i.actor == owner]

    # ── Handlers ──────────────────────────────────────────────

    def _create(
        self,
        tx:          Transaction,
        actor:       Actor,
        payload:     Dict[str, Any],
        occurred_at: Optional[str],
    ) -> Dict[str, Any]:
        occurred(occurred_at)
        raw = payload.get("intent") if isinstance(payload, dict) else None
        if not isinstance(raw, dict):
            raise ValidationError("payload.intent must be an object", reason_code="invalid_request")

        raw = dict(raw)
        if raw.get("actor") is not None and Actor.coerce(raw["actor"]) != actor:
            raise ForbiddenError(
                "intents can only be created for the calling actor",
                {"actor": actor.to_dict()},
                reason_code="actor_mismatch",
            )
        raw["actor"] = actor.to_dict()
        raw["status"] = IntentStatus.ACTIVE
        if raw.get("id") is None:
            number = (tx.get("counters", "intent") or 0) + 1
            tx.put("counters", "intent", number)
            raw["id"] = f"intent_{number:06d}"

        intent = SwapIntent.from_dict(raw)
        if intent.expires_at is not None:
            try:
                intent.expires_at = normalize_timestamp(intent.expires_at)
            except ValueError as exc:
                raise ValidationError(
                    "intent.expires_at is not a valid timestamp",
                    {"intent_id": intent.id, "expires_at": intent.expires_at},
                    reason_code="invalid_timestamp",
                ) from exc
        if tx.get("intents", intent.id) is not None:
            raise ConflictError(
                f"intent '{intent.id}' already exists",
                {"intent_id": intent.id},
                reason_code="intent_exists",
            )
        tx.put("intents", intent.id, intent)
        logger.info("intent %s created by %s", intent.id, actor.key)
        return {"intent": intent.to_dict()}

    def _cancel(
        self,
        tx:          Transaction,
        actor:       Actor,
        intent_id:   str,
        occurred_at: Optional[str],
    ) -> Dict[str, Any]:
        occurred(occurred_at)
        intent: Optional[SwapIntent] = tx.get("intents", intent_id)
        if intent is None:
            raise NotFoundError(f"intent '{intent_id}' not found", {"intent_id": intent_id})
        if intent.actor != actor:
            raise ForbiddenError(
                "only the owning actor may cancel an intent",
                {"intent_id": intent_id},
                reason_code="not_intent_owner",
            )
        if intent.status == IntentStatus.RESERVED:
            raise ConflictError(
                "intent is reserved by a proposal",
                {"intent_id": intent_id, "proposal_id": tx.get("reservations", intent_id)},
                reason_code="intent_reserved",
            )
        if intent.status == IntentStatus.FULFILLED:
            raise ConflictError(
                "intent has already been fulfilled",
                {"intent_id": intent_id},
                reason_code="intent_fulfilled",
            )
        if intent.status != IntentStatus.CANCELLED:
            intent.status = IntentStatus.CANCELLED
            tx.put("intents", intent_id, intent)
            logger.info("intent %s cancelled", intent_id)
        return {"intent": intent.to_dict()}
