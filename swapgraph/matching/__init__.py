"""
SwapGraph Matching Engine

    graph       intents → directed want-graph
    cycles      bounded simple-cycle enumeration
    proposals   cycle → scored CycleProposal (or a skip reason)
    selection   intent-disjoint selection: greedy baseline and optimizer
    shadow      non-authoritative comparison of the two selectors
    service     MatchingService: persisted, idempotent matching runs
"""

from swapgraph.matching.cycles import find_cycles
from swapgraph.matching.graph import build_intent_graph
from swapgraph.matching.proposals import build_proposal
from swapgraph.matching.selection import Candidate, greedy_select, optimize_selection
from swapgraph.matching.service import MatchingService
from swapgraph.matching.shadow import run_shadow

__all__ = [
    "MatchingService",
    "build_intent_graph",
    "find_cycles",
    "build_proposal",
    "Candidate",
    "greedy_select",
    "optimize_selection",
    "run_shadow",
]
