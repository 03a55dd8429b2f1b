"""
swapgraph/matching/selection.py

Intent-disjoint proposal selection.

Two pure functions over the same candidate list:

    greedy_select()       baseline: score desc, proposal id asc, take when
                          no intent conflict.
    optimize_selection()  authoritative: per conflict component, exact
                          branch-and-bound seeded with the greedy answer when
                          the component is small, greedy + exchange local
                          search otherwise.

Guarantees of optimize_selection():
    total_units >= greedy total_units for every input
        (each component starts from its greedy answer and only accepts
         strictly better replacements; greedy decisions never cross
         component boundaries)
    identical output for identical candidates, in any input order
        (candidates are sorted by (-units, proposal_id) before anything else)
    exact for every component of size <= exact_limit whose search finished
        inside max_search_nodes (method "exact"; otherwise "exact_budget" or
        "local_search")

Scores are compared as integer units (score * 10_000) so sums are exact.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, List, Optional, Set

from swapgraph.core.models import CycleProposal


logger = logging.getLogger(__name__)

SCORE_SCALE = 10_000


def score_units(score: float) -> int:
    return int(round(score * SCORE_SCALE))


@dataclass(frozen=True)
class Candidate:
    proposal_id: str
    intent_ids:  FrozenSet[str]
    score:       float

    @property
    def units(self) -> int:
        return score_units(self.score)

    @classmethod
    def from_proposal(cls, proposal: CycleProposal) -> "Candidate":
        return cls(
            proposal_id= proposal.id,
            intent_ids=  frozenset(proposal.intent_ids),
            score=       proposal.confidence_score,
        )


@dataclass
class SelectionResult:
    selected_ids: List[str]
    total_units:  int
    method:       str
    trace:        List[Dict] = field(default_factory=list)
    components:   List[Dict] = field(default_factory=list)

    @property
    def total_score(self) -> float:
        return round(self.total_units / SCORE_SCALE, 4)

    @property
    def exact(self) -> bool:
        return all(c["method"] == "exact" for c in self.components)

    def to_dict(self) -> Dict:
        return {
            "selected_ids": list(self.selected_ids),
            "total_score":  self.total_score,
            "total_units":  self.total_units,
            "method":       self.method,
            "exact":        self.exact,
            "components":   [dict(c) for c in self.components],
        }


def order_candidates(candidates: Iterable[Candidate]) -> List[Candidate]:
    """Sort by (-units, proposal_id); first occurrence of a duplicate id wins."""
    seen: Set[str] = set()
    unique: List[Candidate] = []
    for c in sorted(candidates, key=lambda c: (-c.units, c.proposal_id)):
        if c.proposal_id in seen:
            continue
        seen.add(c.proposal_id)
        unique.append(c)
    return unique


# ── Greedy baseline ───────────────────────────────────────────

def greedy_select(candidates: Iterable[Candidate]) -> SelectionResult:
    ordered = order_candidates(candidates)
    picked  = _greedy_indices(ordered)
    owner: Dict[str, str] = {}
    trace: List[Dict] = []

    for i, c in enumerate(ordered):
        if i in picked:
            for intent_id in c.intent_ids:
                owner[intent_id] = c.proposal_id
        else:
            blocking = sorted({owner[x] for x in c.intent_ids if x in owner})
            trace.append({
                "proposal_id": c.proposal_id,
                "skipped":     "intent_conflict",
                "conflicts_with": blocking,
            })

    return SelectionResult(
        selected_ids= [ordered[i].proposal_id for i in sorted(picked)],
        total_units=  sum(ordered[i].units for i in picked),
        method=       "greedy",
        trace=        trace,
        components=   [{"size": len(ordered), "method": "greedy"}] if ordered else [],
    )


def _greedy_indices(ordered: List[Candidate]) -> Set[int]:
    used: Set[str] = set()
    picked: Set[int] = set()
    for i, c in enumerate(ordered):
        if used.isdisjoint(c.intent_ids):
            picked.add(i)
            used |= c.intent_ids
    return picked


# ── Optimizer ─────────────────────────────────────────────────

def optimize_selection(
    candidates:       Iterable[Candidate],
    exact_limit:      int = 20,
    max_search_nodes: int = 200_000,
    max_passes:       int = 25,
) -> SelectionResult:
    ordered = order_candidates(candidates)
    selected: Set[int] = set()
    components: List[Dict] = []

    for members in _conflict_components(ordered):
        sub = [ordered[i] for i in members]
        baseline = _greedy_indices(sub)

        if len(sub) == 1:
            local, method = {0}, "exact"
        elif len(sub) <= exact_limit:
            local, finished = _branch_and_bound(sub, baseline, max_search_nodes)
            method = "exact" if finished else "exact_budget"
        else:
            local = _local_search(sub, baseline, max_passes)
            method = "local_search"

        gain = sum(sub[i].units for i in local) - sum(sub[i].units for i in baseline)
        components.append({
            "size":            len(sub),
            "method":          method,
            "gain_over_greedy": gain,
        })
        selected.update(members[i] for i in local)

    result = SelectionResult(
        selected_ids= [ordered[i].proposal_id for i in sorted(selected)],
        total_units=  sum(ordered[i].units for i in selected),
        method=       "optimizer",
        components=   components,
    )
    logger.debug(
        "selection: %d of %d candidates, total_units=%d, components=%d",
        len(selected), len(ordered), result.total_units, len(components),
    )
    return result


def _conflict_components(ordered: List[Candidate]) -> List[List[int]]:
    """Indices grouped by shared intents (union-find), each group ascending."""
    parent = list(range(len(ordered)))

    def find(x: int) -> int:
        while parent[x] != x:
            parent[x] = parent[parent[x]]
            x = parent[x]
        return x

    first_owner: Dict[str, int] = {}
    for i, c in enumerate(ordered):
        for intent_id in sorted(c.intent_ids):
            j = first_owner.setdefault(intent_id, i)
            if j != i:
                ri, rj = find(i), find(j)
                if ri != rj:
                    parent[max(ri, rj)] = min(ri, rj)

    groups: Dict[int, List[int]] = {}
    for i in range(len(ordered)):
        groups.setdefault(find(i), []).append(i)
    return [groups[root] for root in sorted(groups)]


class _BudgetExhausted(Exception):
    pass


def _branch_and_bound(sub: List[Candidate], baseline: Set[int], max_nodes: int):
    """Returns (best index set, finished). best is never worse than baseline."""
    n = len(sub)
    units = [c.units for c in sub]
    suffix = [0] * (n + 1)
    for i in range(n - 1, -1, -1):
        suffix[i] = suffix[i + 1] + max(units[i], 0)

    best_set: Set[int] = set(baseline)
    best_units = sum(units[i] for i in baseline)
    nodes = 0

    def dfs(i: int, used: FrozenSet[str], chosen: List[int], total: int) -> None:
        nonlocal best_set, best_units, nodes
        nodes += 1
        if nodes > max_nodes:
            raise _BudgetExhausted()
        if total > best_units:
            best_units = total
            best_set = set(chosen)
        if i == n or total + suffix[i] <= best_units:
            return
        c = sub[i]
        if used.isdisjoint(c.intent_ids):
            chosen.append(i)
            dfs(i + 1, used | c.intent_ids, chosen, total + units[i])
            chosen.pop()
        dfs(i + 1, used, chosen, total)

    try:
        dfs(0, frozenset(), [], 0)
        return best_set, True
    except _BudgetExhausted:
        logger.warning("selection: exact search budget of %d nodes exhausted (component size %d)", max_nodes, n)
        return best_set, False


def _local_search(sub: List[Candidate], baseline: Set[int], max_passes: int) -> Set[int]:
    """
    Exchange improvement over the greedy answer: force one unselected
    candidate in, drop everything it conflicts with, refill greedily in
    candidate order, and keep the result only when the total strictly rises.
    Each accepted move raises the total, so the loop terminates.
    """
    units = [c.units for c in sub]
    selected: Set[int] = set(baseline)
    best = sum(units[i] for i in selected)

    def refill(chosen: Set[int]) -> Set[int]:
        used: Set[str] = set()
        for i in chosen:
            used |= sub[i].intent_ids
        for k, c in enumerate(sub):
            if k not in chosen and used.isdisjoint(c.intent_ids):
                chosen.add(k)
                used |= c.intent_ids
        return chosen

    for _ in range(max_passes):
        improved = False
        for j, c in enumerate(sub):
            if j in selected:
                continue
            trial = {k for k in selected if sub[k].intent_ids.isdisjoint(c.intent_ids)}
            trial.add(j)
            trial = refill(trial)
            total = sum(units[k] for k in trial)
            if total > best:
                selected, best, improved = trial, total, True
        if not improved:
            break

    return selected


def select(
    candidates:       Iterable[Candidate],
    mode:             str = "optimizer",
    exact_limit:      int = 20,
    max_search_nodes: int = 200_000,
    max_passes:       int = 25,
) -> SelectionResult:
    if mode == "greedy":
        return greedy_select(candidates)
    return optimize_selection(candidates, exact_limit, max_search_nodes, max_passes)
