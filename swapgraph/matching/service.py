"""
swapgraph/matching/service.py

Matching runs: intent snapshot → graph → cycles → proposals → selection,
persisted with reservations and events.

run() order of work, all inside one operation:
    1. Lock "matching" (runs and intent writes are serialized)
    2. Lock every open proposal's cycle, then expire or replace them,
       releasing their reservations
    3. Snapshot matchable intents and build the graph
    4. Enumerate cycles under the bounds, build proposals, skip stale ones
    5. Select an intent-disjoint set; run the shadow comparison
    6. Persist proposals, reserve their intents, record the MatchingRun

An open proposal is one that still holds reservations and has no commit.
"""

import logging
import time
from typing import Any, Callable, Dict, List, Optional

from swapgraph.core.canonical import canonical_hash
from swapgraph.core.config import MatchingConfig
from swapgraph.core.exceptions import ValidationError
from swapgraph.core.journal import EventJournal
from swapgraph.core.models import (
    Actor,
    CycleProposal,
    Event,
    EventType,
    IntentStatus,
    MatchingRun,
    OperationResult,
)
from swapgraph.core.time import is_at_or_after, normalize_timestamp
from swapgraph.matching.cycles import cycle_key, find_cycles
from swapgraph.matching.graph import build_intent_graph, is_matchable
from swapgraph.matching.proposals import build_proposal
from swapgraph.matching.selection import Candidate, select
from swapgraph.matching.shadow import ShadowSelector, run_shadow
from swapgraph.matching.values import missing_values
from swapgraph.store.operations import OperationRunner
from swapgraph.store.state import StateStore, Transaction


logger = logging.getLogger(__name__)

RUN_OPERATION    = "marketplaceMatching.run"
EXPIRE_OPERATION = "marketplaceMatching.expireProposals"

MATCHING_LOCK = "matching"

_BOUND_KEYS = ("max_cycle_length", "max_candidates", "timeout_ms")


def occurred(value: Optional[str]) -> str:
    try:
        return normalize_timestamp(value)
    except ValueError as exc:
        raise ValidationError(
            "occurred_at is not a valid timestamp",
            {"occurred_at": value},
            reason_code="invalid_timestamp",
        ) from exc


class MatchingService:

    def __init__(
        self,
        store:           StateStore,
        journal:         EventJournal,
        config:          Optional[MatchingConfig] = None,
        clock:           Callable[[], float] = time.monotonic,
        shadow_selector: Optional[ShadowSelector] = None,
    ) -> None:
        self.store   = store
        self.journal = journal
        self.config  = config or MatchingConfig()
        self.config.validate()
        self._clock           = clock
        self._shadow_selector = shadow_selector
        self._runner          = OperationRunner(store, journal)

    # ── Operations ────────────────────────────────────────────

    def run(
        self,
        actor:           Any,
        payload:         Optional[Dict[str, Any]] = None,
        idempotency_key: Optional[str] = None,
        occurred_at:     Optional[str] = None,
    ) -> OperationResult:
        """
        payload: {bounds?: {max_cycle_length, max_candidates, timeout_ms},
                  asset_values?: {asset_id: value}}
        body:    {run_id, selected_proposal_ids, stats, diagnostics, shadow}
        """
        actor = Actor.coerce(actor)
        payload = payload or {}
        return self._runner.execute(
            RUN_OPERATION, actor, payload, idempotency_key, [MATCHING_LOCK],
            lambda tx: self._run(tx, actor, payload, occurred_at),
        )

    def expire_proposals(
        self,
        actor:           Any,
        now:             Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> OperationResult:
        """Release reservations of open proposals whose expires_at has passed."""
        actor = Actor.coerce(actor)
        return self._runner.execute(
            EXPIRE_OPERATION, actor, {"now": now}, idempotency_key, [MATCHING_LOCK],
            lambda tx: self._expire_only(tx, now),
        )

    # ── Reads ─────────────────────────────────────────────────

    def get_run(self, run_id: str) -> Optional[MatchingRun]:
        return self.store.get("runs", run_id)

    def get_proposal(self, proposal_id: str) -> Optional[CycleProposal]:
        return self.store.get("proposals", proposal_id)

    def open_proposal_ids(self) -> List[str]:
        reserved_for = {pid for _, pid in self.store.items("reservations")}
        return sorted(pid for pid in reserved_for if self.store.get("commits", pid) is None)

    # ── Handlers ──────────────────────────────────────────────

    def _expire_only(self, tx: Transaction, now: Optional[str]) -> Dict[str, Any]:
        now = occurred(now)
        expired, _ = self._release_open_proposals(tx, now, replace=False)
        return {"expired_proposal_ids": expired, "expired_proposals_count": len(expired)}

    def _run(
        self,
        tx:          Transaction,
        actor:       Actor,
        payload:     Dict[str, Any],
        occurred_at: Optional[str],
    ) -> Dict[str, Any]:
        now = occurred(occurred_at)
        bounds = _parse_bounds(payload, self.config)
        asset_values = _parse_asset_values(payload)

        expired, replaced = self._release_open_proposals(tx, now, replace=True)

        intents = tx.values("intents")
        matchable = [i for i in intents if is_matchable(i, now) is None]
        # unvalued intents stay in the graph; cycles through them are skipped
        unvalued: Dict[str, List[str]] = {}
        for intent in matchable:
            missing = missing_values(intent.give, asset_values)
            if missing:
                unvalued[intent.id] = missing
        if matchable and len(unvalued) == len(matchable):
            raise ValidationError(
                "no asset values available for active intents",
                {"asset_ids": sorted({a for ids in unvalued.values() for a in ids})},
                reason_code="marketplace_matching_asset_values_missing",
            )

        snapshot_hash = canonical_hash({
            "intents":      [i.to_dict() for i in matchable],
            "asset_values": asset_values,
            "bounds":       bounds,
        })

        graph = build_intent_graph(matchable, asset_values, now)
        search = find_cycles(
            graph,
            max_cycle_length= bounds["max_cycle_length"],
            max_cycles=       bounds["max_candidates"],
            timeout_ms=       bounds["timeout_ms"],
            clock=            self._clock,
        )

        run_number = (tx.get("counters", "matching_run") or 0) + 1
        run_id = f"mrun_{run_number:06d}"

        proposals: Dict[str, CycleProposal] = {}
        skipped: List[Dict[str, Any]] = []
        for cycle in search.cycles:
            built = build_proposal(
                cycle, graph.intents, asset_values,
                now=                  now,
                run_id=               run_id,
                proposal_ttl_seconds= self.config.proposal_ttl_seconds,
                fee_rate=             self.config.fee_rate,
            )
            if not built:
                skipped.append({"cycle": cycle_key(cycle), "reason": built.reason})
                logger.debug("matching: skipped %s (%s)", cycle_key(cycle), built.reason)
                continue
            proposals[built.proposal.id] = built.proposal

        candidates = [Candidate.from_proposal(p) for p in proposals.values()]
        selection = select(
            candidates,
            mode=             self.config.selection_mode,
            exact_limit=      self.config.exact_selection_limit,
            max_search_nodes= self.config.max_search_nodes,
            max_passes=       self.config.local_search_max_passes,
        )
        shadow = (
            run_shadow(candidates, selection, self._shadow_selector)
            if self.config.shadow_enabled else None
        )

        for proposal_id in selection.selected_ids:
            self._persist_proposal(tx, proposals[proposal_id], now)

        stats = {
            "candidate_cycles":         len(search.cycles),
            "candidate_proposals":      len(proposals),
            "selected_proposals_count": len(selection.selected_ids),
            "replaced_proposals_count": len(replaced),
            "expired_proposals_count":  len(expired),
        }
        diagnostics = {
            "max_cycles_reached": search.max_cycles_reached,
            "timeout_reached":    search.timeout_reached,
            "graph": {
                "vertices": len(graph.intents),
                "edges":    graph.edge_count,
                "excluded": len(graph.excluded),
            },
            "bounds":    bounds,
            "skipped":   skipped,
            "unvalued_intents": dict(sorted(unvalued.items())),
            "selection": selection.to_dict(),
        }

        run = MatchingRun(
            run_id=                run_id,
            snapshot_hash=         snapshot_hash,
            selected_proposal_ids= list(selection.selected_ids),
            stats=                 stats,
            diagnostics=           diagnostics,
            shadow=                shadow,
            requested_by=          actor,
            created_at=            now,
        )
        tx.put("runs", run_id, run)
        tx.put("counters", "matching_run", run_number)

        logger.info(
            "matching %s: %d cycles, %d proposals, %d selected (replaced=%d, expired=%d, truncated=%s)",
            run_id, stats["candidate_cycles"], stats["candidate_proposals"],
            stats["selected_proposals_count"], len(replaced), len(expired), search.truncated,
        )

        return {
            "run_id":                run_id,
            "selected_proposal_ids": list(selection.selected_ids),
            "stats":                 stats,
            "diagnostics":           diagnostics,
            "shadow":                shadow,
        }

    # ── Internals ─────────────────────────────────────────────

    def _persist_proposal(self, tx: Transaction, proposal: CycleProposal, now: str) -> None:
        tx.put("proposals", proposal.id, proposal)
        tx.emit(Event.create(
            EventType.PROPOSAL_CREATED, proposal.id, "created", now,
            {
                "proposal_id":      proposal.id,
                "run_id":           proposal.run_id,
                "intent_ids":       proposal.intent_ids,
                "confidence_score": proposal.confidence_score,
                "expires_at":       proposal.expires_at,
            },
        ))
        for intent_id in proposal.intent_ids:
            intent = tx.get("intents", intent_id)
            intent.status = IntentStatus.RESERVED
            tx.put("intents", intent_id, intent)
            tx.put("reservations", intent_id, proposal.id)
            tx.emit(Event.create(
                EventType.INTENT_RESERVED, proposal.id, f"reserved:{intent_id}", now,
                {"intent_id": intent_id, "proposal_id": proposal.id},
            ))

    def _release_open_proposals(self, tx: Transaction, now: str, replace: bool):
        """
        Expire (and, with replace=True, supersede) every open proposal.
        Returns (expired_ids, replaced_ids).
        """
        candidates = sorted({pid for _, pid in self.store.items("reservations")})
        tx.lock(*[f"cycle:{pid}" for pid in candidates])

        expired: List[str] = []
        replaced: List[str] = []
        for proposal_id in candidates:
            if tx.get("commits", proposal_id) is not None:
                continue
            proposal = tx.get("proposals", proposal_id)
            if proposal is None:
                continue
            if is_at_or_after(now, proposal.expires_at):
                reason = "expired"
                expired.append(proposal_id)
            elif replace:
                reason = "replaced"
                replaced.append(proposal_id)
            else:
                continue
            release_reservations(tx, proposal, reason, now)

        return expired, replaced


def release_reservations(
    tx:       Transaction,
    proposal: CycleProposal,
    reason:   str,
    now:      str,
    status:   str = IntentStatus.ACTIVE,
) -> List[str]:
    """
    Drop this proposal's reservations and move its intents to `status`.
    Intents reserved for some other proposal are left alone.
    """
    released: List[str] = []
    for intent_id in proposal.intent_ids:
        if tx.get("reservations", intent_id) != proposal.id:
            continue
        tx.delete("reservations", intent_id)
        intent = tx.get("intents", intent_id)
        if intent is not None and intent.status == IntentStatus.RESERVED:
            intent.status = status
            tx.put("intents", intent_id, intent)
        released.append(intent_id)
        tx.emit(Event.create(
            EventType.INTENT_UNRESERVED, proposal.id, f"unreserved:{intent_id}:{reason}", now,
            {"intent_id": intent_id, "proposal_id": proposal.id, "reason": reason},
        ))
    return released


def _int_bound(bounds: Dict[str, Any], name: str, default: int, minimum: int) -> int:
    value = bounds.get(name, default)
    if isinstance(value, bool) or not isinstance(value, int) or value < minimum:
        raise ValidationError(
            f"bounds.{name} must be an integer >= {minimum}",
            {"field": f"bounds.{name}", "value": value},
            reason_code="marketplace_matching_invalid_request",
        )
    return value


def _validate_mapping(value: Any, name: str) -> Dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValidationError(
            f"{name} must be an object",
            {"field": name},
            reason_code="marketplace_matching_invalid_request",
        )
    return value


def _reject_unknown(mapping: Dict[str, Any], allowed, name: str) -> None:
    unknown = sorted(set(mapping) - set(allowed))
    if unknown:
        raise ValidationError(
            f"unknown fields in {name}",
            {"fields": unknown},
            reason_code="marketplace_matching_invalid_request",
        )


def _bounds_defaults(config: MatchingConfig) -> Dict[str, int]:
    return {
        "max_cycle_length": config.max_cycle_length,
        "max_candidates":   config.max_enumerated_cycles,
        "timeout_ms":       config.timeout_ms,
    }


def _parse_bounds(payload: Dict[str, Any], config: MatchingConfig) -> Dict[str, int]:
    _reject_unknown(payload, ("bounds", "asset_values"), "request")
    raw = _validate_mapping(payload.get("bounds"), "bounds")
    _reject_unknown(raw, _BOUND_KEYS, "bounds")
    defaults = _bounds_defaults(config)
    return {
        "max_cycle_length": _int_bound(raw, "max_cycle_length", defaults["max_cycle_length"], 2),
        "max_candidates":   _int_bound(raw, "max_candidates", defaults["max_candidates"], 1),
        "timeout_ms":       _int_bound(raw, "timeout_ms", defaults["timeout_ms"], 0),
    }


def _parse_asset_values(payload: Dict[str, Any]) -> Dict[str, float]:
    raw = _validate_mapping(payload.get("asset_values"), "asset_values")
    values: Dict[str, float] = {}
    for asset_id, value in raw.items():
        if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
            raise ValidationError(
                "asset_values entries must be non-negative numbers",
                {"asset_id": asset_id, "value": value},
                reason_code="marketplace_matching_invalid_request",
            )
        values[str(asset_id)] = value
    return values
