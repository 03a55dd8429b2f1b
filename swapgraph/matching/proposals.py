"""
swapgraph/matching/proposals.py

Turn a candidate cycle into a scored CycleProposal.

build_proposal() never raises for a stale or unsatisfiable cycle: it returns
ProposalResult(ok=False, reason=...) and the caller skips the candidate.

Score (deterministic, 4 decimal places):
    ratio_i    = min(given_i, received_i) / max(given_i, received_i)
    fairness   = mean(ratio_i)
    length     = max(0, 1 - 0.05 * (L - 2))
    confidence = round(fairness * length, 4)
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional

from swapgraph.core.canonical import short_hash
from swapgraph.core.models import CycleProposal, Participant, SwapIntent
from swapgraph.core.time import add_seconds, parse_timestamp, utc_timestamp
from swapgraph.matching.cycles import Cycle, cycle_key
from swapgraph.matching.graph import is_matchable
from swapgraph.matching.values import AssetValues, missing_values, value_of_assets


logger = logging.getLogger(__name__)

SCORE_PLACES       = 4
LENGTH_PENALTY     = 0.05


class SkipReason:
    DUPLICATE_INTENT          = "duplicate_intent"
    INTENT_MISSING            = "intent_missing"
    INTENT_NOT_ACTIVE         = "intent_not_active"
    INTENT_EXPIRED            = "intent_expired"
    MAX_CYCLE_LENGTH_EXCEEDED = "max_cycle_length_exceeded"
    ASSET_VALUE_MISSING       = "asset_value_missing"
    WANT_UNMET                = "want_unmet"
    VALUE_BAND_UNMET          = "value_band_unmet"


@dataclass
class ProposalResult:
    ok:       bool
    proposal: Optional[CycleProposal] = None
    reason:   Optional[str]           = None
    detail:   Optional[Dict]          = None

    def __bool__(self) -> bool:
        return self.ok


def proposal_id_for(cycle: Cycle, run_id: Optional[str] = None) -> str:
    key = cycle_key(cycle)
    return f"cycle_{short_hash(key if run_id is None else f'{run_id}|{key}')}"


def _skip(reason: str, **detail) -> ProposalResult:
    return ProposalResult(ok=False, reason=reason, detail=detail or None)


def score_cycle(give_values: List[float], receive_values: List[float]) -> float:
    ratios = []
    for given, received in zip(give_values, receive_values):
        hi = max(given, received)
        ratios.append(1.0 if hi <= 0 else min(given, received) / hi)
    if not ratios:
        return 0.0
    fairness = sum(ratios) / len(ratios)
    length_factor = max(0.0, 1.0 - LENGTH_PENALTY * (len(ratios) - 2))
    return round(fairness * length_factor, SCORE_PLACES)


def value_spread(receive_values: List[float]) -> float:
    if not receive_values:
        return 0.0
    mean = sum(receive_values) / len(receive_values)
    if mean <= 0:
        return 0.0
    return round((max(receive_values) - min(receive_values)) / mean, SCORE_PLACES)


def build_proposal(
    cycle:                Cycle,
    intents_by_id:        Mapping[str, SwapIntent],
    asset_values:         Optional[AssetValues] = None,
    now:                  Optional[str] = None,
    run_id:               Optional[str] = None,
    proposal_ttl_seconds: int = 3_600,
    fee_rate:             float = 0.01,
) -> ProposalResult:
    length = len(cycle)
    if length < 2 or len(set(cycle)) != length:
        return _skip(SkipReason.DUPLICATE_INTENT, cycle=list(cycle))

    intents: List[SwapIntent] = []
    for intent_id in cycle:
        intent = intents_by_id.get(intent_id)
        if intent is None:
            return _skip(SkipReason.INTENT_MISSING, intent_id=intent_id)
        reason = is_matchable(intent, now)
        if reason == "expired":
            return _skip(SkipReason.INTENT_EXPIRED, intent_id=intent_id)
        if reason is not None:
            return _skip(SkipReason.INTENT_NOT_ACTIVE, intent_id=intent_id, status=intent.status)
        if intent.max_cycle_length is not None and intent.max_cycle_length < length:
            return _skip(
                SkipReason.MAX_CYCLE_LENGTH_EXCEEDED,
                intent_id=intent_id, max_cycle_length=intent.max_cycle_length,
            )
        missing = missing_values(intent.give, asset_values)
        if missing:
            return _skip(SkipReason.ASSET_VALUE_MISSING, intent_id=intent_id, asset_ids=missing)
        intents.append(intent)

    give_values = [value_of_assets(i.give, asset_values) for i in intents]

    participants: List[Participant] = []
    for i, intent in enumerate(intents):
        giver = intents[i - 1]          # predecessor gives to this intent
        if not intent.want.satisfied_by(giver.give):
            return _skip(SkipReason.WANT_UNMET, giver=giver.id, receiver=intent.id)
        received = give_values[i - 1]
        if intent.value_band is not None and not intent.value_band.contains(received):
            return _skip(SkipReason.VALUE_BAND_UNMET, giver=giver.id, receiver=intent.id, value=received)
        participants.append(Participant(
            actor=         intent.actor,
            intent_id=     intent.id,
            give=          list(intent.give),
            receive=       list(giver.give),
            give_value=    give_values[i],
            receive_value= received,
        ))

    receive_values = [p.receive_value for p in participants]
    confidence = score_cycle(give_values, receive_values)
    spread = value_spread(receive_values)

    now = now or utc_timestamp()
    expiries = [i.expires_at for i in intents if i.expires_at]
    expires_at = (
        min(expiries, key=parse_timestamp) if expiries
        else add_seconds(now, proposal_ttl_seconds)
    )

    fee_breakdown = [
        {
            "actor":     p.actor.to_dict(),
            "intent_id": p.intent_id,
            "fee":       round(p.receive_value * fee_rate, 2),
        }
        for p in participants
    ]
    explainability = [
        "All wants satisfied within explicit constraints",
        f"cycle_length={length}",
        f"value_spread={spread}",
        f"confidence_score={confidence}",
    ]

    proposal = CycleProposal(
        id=               proposal_id_for(cycle, run_id),
        participants=     participants,
        confidence_score= confidence,
        value_spread=     spread,
        expires_at=       expires_at,
        fee_breakdown=    fee_breakdown,
        explainability=   explainability,
        run_id=           run_id,
        created_at=       now,
    )
    return ProposalResult(ok=True, proposal=proposal)
