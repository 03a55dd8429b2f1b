"""
swapgraph/core/models.py

SwapGraph data model.

Every record is a dataclass with to_dict() / from_dict(). to_dict() output is
JSON-primitive so it can pass through canonical.canonicalize() for hashing
and signing. Records read from the store are copies; services build new
versions and hand them back to the store as one unit.

Record vocabulary (status / phase / state strings) is fixed by the constant
classes below. Anything else is rejected at from_dict() time.
"""

import hashlib
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from swapgraph.core.exceptions import ValidationError


# ─────────────────────────────────────────────────────────────
# Vocabulary
# ─────────────────────────────────────────────────────────────

class IntentStatus:
    ACTIVE    = "active"
    RESERVED  = "reserved"
    CANCELLED = "cancelled"
    FULFILLED = "fulfilled"


_INTENT_STATUSES = {
    IntentStatus.ACTIVE,
    IntentStatus.RESERVED,
    IntentStatus.CANCELLED,
    IntentStatus.FULFILLED,
}


class CommitPhase:
    ACCEPTED  = "accepted"
    PENDING   = "escrow.pending"
    EXECUTING = "escrow.executing"
    COMPLETED = "completed"
    FAILED    = "failed"
    CANCELLED = "cancelled"


class TimelineState:
    """
    Settlement timeline states. Forward-only:

        escrow.pending → escrow.executing → completed
        escrow.pending → failed
    """
    PENDING   = "escrow.pending"
    EXECUTING = "escrow.executing"
    COMPLETED = "completed"
    FAILED    = "failed"

    TERMINAL = frozenset({"completed", "failed"})

    # Rank used to assert monotonic progress.
    ORDER = {
        "accepted":         0,
        "escrow.pending":   1,
        "escrow.executing": 2,
        "completed":        3,
        "failed":           3,
    }


class LegStatus:
    PENDING   = "pending"
    DEPOSITED = "deposited"
    RELEASED  = "released"
    REFUNDED  = "refunded"


class ReceiptState:
    SETTLED = "settled"
    FAILED  = "failed"


class EventType:
    PROPOSAL_CREATED          = "proposal.created"
    INTENT_RESERVED           = "intent.reserved"
    INTENT_UNRESERVED         = "intent.unreserved"
    CYCLE_STATE_CHANGED       = "cycle.state_changed"
    DEPOSIT_CONFIRMED         = "settlement.deposit_confirmed"
    RECEIPT_CREATED           = "receipt.created"


def _require(data: Dict[str, Any], key: str, record: str) -> Any:
    if not isinstance(data, dict):
        raise ValidationError(
            f"{record} must be an object",
            {"got": type(data).__name__},
            reason_code="invalid_request",
        )
    if key not in data or data[key] is None:
        raise ValidationError(
            f"{record}.{key} is required",
            {"field": f"{record}.{key}"},
            reason_code="invalid_request",
        )
    return data[key]


# ─────────────────────────────────────────────────────────────
# Actors and assets
# ─────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Actor:
    type: str
    id:   str

    @property
    def key(self) -> str:
        return f"{self.type}:{self.id}"

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "id": self.id}

    @classmethod
    def coerce(cls, value: Any) -> "Actor":
        if isinstance(value, Actor):
            return value
        return cls(
            type= str(_require(value, "type", "actor")),
            id=   str(_require(value, "id", "actor")),
        )


@dataclass
class Asset:
    asset_id: str
    platform: Optional[str]   = None
    category: Optional[str]   = None
    value:    Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Asset":
        asset_id = str(_require(data, "asset_id", "asset"))
        value = data.get("value", data.get("estimated_value_usd"))
        if value is not None and (isinstance(value, bool) or not isinstance(value, (int, float))):
            raise ValidationError(
                "asset.value must be a number",
                {"asset_id": data.get("asset_id"), "value": value},
                reason_code="invalid_request",
            )
        return cls(
            asset_id= asset_id,
            platform= data.get("platform"),
            category= data.get("category"),
            value=    value,
        )


@dataclass
class AssetMatcher:
    """Matches an asset when every field set here equals the asset's field."""
    asset_id: Optional[str] = None
    platform: Optional[str] = None
    category: Optional[str] = None

    def matches(self, asset: Asset) -> bool:
        if self.asset_id is None and self.platform is None and self.category is None:
            return False
        if self.asset_id is not None and asset.asset_id != self.asset_id:
            return False
        if self.platform is not None and asset.platform != self.platform:
            return False
        if self.category is not None and asset.category != self.category:
            return False
        return True

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AssetMatcher":
        if not isinstance(data, dict):
            raise ValidationError("want matcher must be an object", reason_code="invalid_request")
        return cls(
            asset_id= data.get("asset_id"),
            platform= data.get("platform"),
            category= data.get("category"),
        )


@dataclass
class WantSpec:
    any_of: List[AssetMatcher] = field(default_factory=list)

    def satisfied_by(self, assets: List[Asset]) -> bool:
        return any(m.matches(a) for a in assets for m in self.any_of)

    def to_dict(self) -> Dict[str, Any]:
        return {"any_of": [m.to_dict() for m in self.any_of]}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WantSpec":
        matchers = _require(data, "any_of", "want")
        if not isinstance(matchers, list) or not matchers:
            raise ValidationError(
                "want.any_of must be a non-empty list",
                reason_code="invalid_request",
            )
        return cls(any_of=[AssetMatcher.from_dict(m) for m in matchers])


@dataclass
class ValueBand:
    min_value: Optional[float] = None
    max_value: Optional[float] = None

    def contains(self, value: float) -> bool:
        if self.min_value is not None and value < self.min_value:
            return False
        if self.max_value is not None and value > self.max_value:
            return False
        return True

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["ValueBand"]:
        if data is None:
            return None
        return cls(min_value=data.get("min_value"), max_value=data.get("max_value"))


# ─────────────────────────────────────────────────────────────
# Intents
# ─────────────────────────────────────────────────────────────

@dataclass
class SwapIntent:
    id:               str
    actor:            Actor
    give:             List[Asset]
    want:             WantSpec
    status:           str                 = IntentStatus.ACTIVE
    value_band:       Optional[ValueBand] = None
    max_cycle_length: Optional[int]       = None
    expires_at:       Optional[str]       = None

    @property
    def is_final(self) -> bool:
        return self.status in (IntentStatus.CANCELLED, IntentStatus.FULFILLED)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id":               self.id,
            "actor":            self.actor.to_dict(),
            "give":             [a.to_dict() for a in self.give],
            "want":             self.want.to_dict(),
            "status":           self.status,
            "value_band":       self.value_band.to_dict() if self.value_band else None,
            "max_cycle_length": self.max_cycle_length,
            "expires_at":       self.expires_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SwapIntent":
        give = _require(data, "give", "intent")
        if not isinstance(give, list) or not give:
            raise ValidationError(
                "intent.give must be a non-empty list",
                {"intent_id": data.get("id")},
                reason_code="invalid_request",
            )
        status = data.get("status") or IntentStatus.ACTIVE
        if status not in _INTENT_STATUSES:
            raise ValidationError(
                f"intent.status '{status}' is not valid",
                {"intent_id": data.get("id"), "valid": sorted(_INTENT_STATUSES)},
                reason_code="invalid_request",
            )
        max_len = data.get("max_cycle_length")
        if max_len is not None and (isinstance(max_len, bool) or not isinstance(max_len, int) or max_len < 2):
            raise ValidationError(
                "intent.max_cycle_length must be an integer >= 2",
                {"intent_id": data.get("id"), "max_cycle_length": max_len},
                reason_code="invalid_request",
            )
        return cls(
            id=               str(_require(data, "id", "intent")),
            actor=            Actor.coerce(_require(data, "actor", "intent")),
            give=             [Asset.from_dict(a) for a in give],
            want=             WantSpec.from_dict(_require(data, "want", "intent")),
            status=           status,
            value_band=       ValueBand.from_dict(data.get("value_band")),
            max_cycle_length= max_len,
            expires_at=       data.get("expires_at"),
        )


# ─────────────────────────────────────────────────────────────
# Proposals and runs
# ─────────────────────────────────────────────────────────────

@dataclass
class Participant:
    actor:         Actor
    intent_id:     str
    give:          List[Asset]
    receive:       List[Asset]
    give_value:    float
    receive_value: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "actor":         self.actor.to_dict(),
            "intent_id":     self.intent_id,
            "give":          [a.to_dict() for a in self.give],
            "receive":       [a.to_dict() for a in self.receive],
            "give_value":    self.give_value,
            "receive_value": self.receive_value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Participant":
        return cls(
            actor=         Actor.coerce(data["actor"]),
            intent_id=     data["intent_id"],
            give=          [Asset.from_dict(a) for a in data["give"]],
            receive=       [Asset.from_dict(a) for a in data["receive"]],
            give_value=    data["give_value"],
            receive_value= data["receive_value"],
        )


@dataclass
class CycleProposal:
    id:               str
    participants:     List[Participant]
    confidence_score: float
    value_spread:     float
    expires_at:       str
    fee_breakdown:    List[Dict[str, Any]] = field(default_factory=list)
    explainability:   List[str]            = field(default_factory=list)
    run_id:           Optional[str]        = None
    created_at:       Optional[str]        = None

    @property
    def intent_ids(self) -> List[str]:
        return [p.intent_id for p in self.participants]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id":               self.id,
            "participants":     [p.to_dict() for p in self.participants],
            "confidence_score": self.confidence_score,
            "value_spread":     self.value_spread,
            "expires_at":       self.expires_at,
            "fee_breakdown":    [dict(f) for f in self.fee_breakdown],
            "explainability":   list(self.explainability),
            "run_id":           self.run_id,
            "created_at":       self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CycleProposal":
        return cls(
            id=               data["id"],
            participants=     [Participant.from_dict(p) for p in data["participants"]],
            confidence_score= data["confidence_score"],
            value_spread=     data["value_spread"],
            expires_at=       data["expires_at"],
            fee_breakdown=    list(data.get("fee_breakdown", [])),
            explainability=   list(data.get("explainability", [])),
            run_id=           data.get("run_id"),
            created_at=       data.get("created_at"),
        )


@dataclass
class MatchingRun:
    run_id:                str
    snapshot_hash:         str
    selected_proposal_ids: List[str]
    stats:                 Dict[str, int]
    diagnostics:           Dict[str, Any]
    shadow:                Optional[Dict[str, Any]]
    requested_by:          Actor
    created_at:            str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id":                self.run_id,
            "snapshot_hash":         self.snapshot_hash,
            "selected_proposal_ids": list(self.selected_proposal_ids),
            "stats":                 dict(self.stats),
            "diagnostics":           self.diagnostics,
            "shadow":                self.shadow,
            "requested_by":          self.requested_by.to_dict(),
            "created_at":            self.created_at,
        }


# ─────────────────────────────────────────────────────────────
# Commit and settlement
# ─────────────────────────────────────────────────────────────

@dataclass
class Commit:
    proposal_id: str
    phase:       str
    accepted_by: Actor
    created_at:  str
    accepted_at: str
    updated_at:  str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "proposal_id": self.proposal_id,
            "phase":       self.phase,
            "accepted_by": self.accepted_by.to_dict(),
            "created_at":  self.created_at,
            "accepted_at": self.accepted_at,
            "updated_at":  self.updated_at,
        }


@dataclass
class SettlementLeg:
    leg_id:              str
    intent_id:           str
    from_actor:          Actor
    to_actor:            Actor
    assets:              List[Asset]
    deposit_deadline_at: str
    status:              str           = LegStatus.PENDING
    deposit_ref:         Optional[str] = None
    deposited_at:        Optional[str] = None
    release_ref:         Optional[str] = None
    refund_ref:          Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "leg_id":              self.leg_id,
            "intent_id":           self.intent_id,
            "from_actor":          self.from_actor.to_dict(),
            "to_actor":            self.to_actor.to_dict(),
            "assets":              [a.to_dict() for a in self.assets],
            "deposit_deadline_at": self.deposit_deadline_at,
            "status":              self.status,
            "deposit_ref":         self.deposit_ref,
            "deposited_at":        self.deposited_at,
            "release_ref":         self.release_ref,
            "refund_ref":          self.refund_ref,
        }


@dataclass
class SettlementTimeline:
    cycle_id:            str
    state:               str
    legs:                List[SettlementLeg]
    deposit_deadline_at: str
    created_at:          str
    updated_at:          str
    failure_reason:      Optional[str] = None

    def outstanding_legs(self) -> List[str]:
        return [leg.leg_id for leg in self.legs if leg.status != LegStatus.DEPOSITED]

    def all_deposited(self) -> bool:
        return all(leg.status == LegStatus.DEPOSITED for leg in self.legs)

    def leg(self, leg_id: str) -> Optional[SettlementLeg]:
        for leg in self.legs:
            if leg.leg_id == leg_id:
                return leg
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cycle_id":            self.cycle_id,
            "state":               self.state,
            "legs":                [leg.to_dict() for leg in self.legs],
            "deposit_deadline_at": self.deposit_deadline_at,
            "created_at":          self.created_at,
            "updated_at":          self.updated_at,
            "failure_reason":      self.failure_reason,
        }


@dataclass
class SwapReceipt:
    id:          str
    cycle_id:    str
    final_state: str
    intent_ids:  List[str]
    asset_ids:   List[str]
    created_at:  str
    reason_code: Optional[str]            = None
    signature:   Optional[Dict[str, str]] = None

    def to_signing_dict(self) -> Dict[str, Any]:
        """Every field except the signature. This is what gets signed."""
        return {
            "id":          self.id,
            "cycle_id":    self.cycle_id,
            "final_state": self.final_state,
            "intent_ids":  list(self.intent_ids),
            "asset_ids":   list(self.asset_ids),
            "created_at":  self.created_at,
            "reason_code": self.reason_code,
        }

    def to_dict(self) -> Dict[str, Any]:
        d = self.to_signing_dict()
        d["signature"] = dict(self.signature) if self.signature else None
        return d

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SwapReceipt":
        return cls(
            id=          data["id"],
            cycle_id=    data["cycle_id"],
            final_state= data["final_state"],
            intent_ids=  list(data["intent_ids"]),
            asset_ids=   list(data["asset_ids"]),
            created_at=  data["created_at"],
            reason_code= data.get("reason_code"),
            signature=   data.get("signature"),
        )


# ─────────────────────────────────────────────────────────────
# Events, idempotency, operation results
# ─────────────────────────────────────────────────────────────

def stable_event_id(event_type: str, correlation_id: str, key: str) -> str:
    """Same (type, correlation, key) always yields the same event id."""
    digest = hashlib.sha256(f"{event_type}|{correlation_id}|{key}".encode("utf-8")).hexdigest()
    return f"evt_{digest[:24]}"


def correlation_id_for(record_id: str) -> str:
    return f"corr_{record_id}"


@dataclass
class Event:
    event_id:       str
    type:           str
    correlation_id: str
    occurred_at:    str
    payload:        Dict[str, Any]

    @classmethod
    def create(
        cls,
        event_type:  str,
        subject_id:  str,
        key:         str,
        occurred_at: str,
        payload:     Dict[str, Any],
    ) -> "Event":
        correlation_id = correlation_id_for(subject_id)
        return cls(
            event_id=       stable_event_id(event_type, correlation_id, key),
            type=           event_type,
            correlation_id= correlation_id,
            occurred_at=    occurred_at,
            payload=        payload,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_id":       self.event_id,
            "type":           self.type,
            "correlation_id": self.correlation_id,
            "occurred_at":    self.occurred_at,
            "payload":        self.payload,
        }


@dataclass
class IdempotencyRecord:
    scope_key:    str
    payload_hash: str
    result:       Dict[str, Any]


@dataclass
class OperationResult:
    """
    Outcome of a mutating operation. Returned, never raised.
    bool(result) is True iff ok.
    """
    ok:       bool
    body:     Optional[Dict[str, Any]] = None
    error:    Optional[Dict[str, Any]] = None
    replayed: bool                     = False

    def __bool__(self) -> bool:
        return self.ok

    @property
    def code(self) -> Optional[str]:
        return self.error["code"] if self.error else None

    @property
    def reason_code(self) -> Optional[str]:
        if not self.error:
            return None
        return self.error.get("details", {}).get("reason_code")

    def to_dict(self) -> Dict[str, Any]:
        return {"ok": self.ok, "body": self.body, "error": self.error}

    @classmethod
    def from_dict(cls, data: Dict[str, Any], replayed: bool = False) -> "OperationResult":
        return cls(
            ok=       data["ok"],
            body=     data.get("body"),
            error=    data.get("error"),
            replayed= replayed,
        )
