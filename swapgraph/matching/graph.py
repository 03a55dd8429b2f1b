"""
swapgraph/matching/graph.py

Directed want-graph over active intents.

Edge A → B exists iff A's give satisfies B's want and, when B carries a
value band, the value of A's give lies inside it. A gives to B, so in a
cycle every participant gives to its successor and receives from its
predecessor.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from swapgraph.core.models import IntentStatus, SwapIntent
from swapgraph.core.time import is_at_or_after
from swapgraph.matching.values import AssetValues, value_of_assets


logger = logging.getLogger(__name__)


@dataclass
class IntentGraph:
    intents: Dict[str, SwapIntent]                   # vertex id → intent
    edges:   Dict[str, List[str]]                    # id → sorted successor ids
    excluded: Dict[str, str] = field(default_factory=dict)   # id → reason

    @property
    def vertex_ids(self) -> List[str]:
        return sorted(self.intents)

    def successors(self, intent_id: str) -> List[str]:
        return self.edges.get(intent_id, [])

    def has_edge(self, source: str, target: str) -> bool:
        return target in self.edges.get(source, [])

    @property
    def edge_count(self) -> int:
        return sum(len(v) for v in self.edges.values())


def is_matchable(intent: SwapIntent, now: Optional[str] = None) -> Optional[str]:
    """None when the intent may be matched, otherwise the exclusion reason."""
    if intent.status != IntentStatus.ACTIVE:
        return f"status_{intent.status}"
    if now is not None and intent.expires_at is not None and is_at_or_after(now, intent.expires_at):
        return "expired"
    return None


def gives_to(
    giver:        SwapIntent,
    receiver:     SwapIntent,
    asset_values: Optional[AssetValues] = None,
) -> bool:
    """True iff giver's offer satisfies receiver's want (and value band)."""
    if giver.id == receiver.id:
        return False
    if not receiver.want.satisfied_by(giver.give):
        return False
    if receiver.value_band is not None:
        value = value_of_assets(giver.give, asset_values)
        if value is None or not receiver.value_band.contains(value):
            return False
    return True


def build_intent_graph(
    intents:      Iterable[SwapIntent],
    asset_values: Optional[AssetValues] = None,
    now:          Optional[str] = None,
) -> IntentGraph:
    vertices: Dict[str, SwapIntent] = {}
    excluded: Dict[str, str] = {}
    for intent in intents:
        reason = is_matchable(intent, now)
        if reason is None:
            vertices[intent.id] = intent
        else:
            excluded[intent.id] = reason

    ordered = sorted(vertices)
    edges: Dict[str, List[str]] = {}
    for source in ordered:
        giver = vertices[source]
        edges[source] = [
            target for target in ordered
            if gives_to(giver, vertices[target], asset_values)
        ]

    graph = IntentGraph(intents=vertices, edges=edges, excluded=excluded)
    logger.debug(
        "graph: %d vertices, %d edges, %d excluded",
        len(vertices), graph.edge_count, len(excluded),
    )
    return graph
