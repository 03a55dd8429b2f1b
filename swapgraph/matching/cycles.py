"""
swapgraph/matching/cycles.py

Bounded enumeration of simple directed cycles in the intent graph.

Search:
    1. Strongly connected components (iterative Tarjan). A cycle never
       leaves its component, so singleton components are skipped.
    2. For each vertex s in sorted id order, DFS within s's component over
       vertices with id > s only. Every simple cycle is therefore found
       exactly once, already rotated to start at its smallest id.
    3. Successors are visited in sorted order and the final list is sorted
       by (length, "a>b>c"), so output is identical for identical input.

Safety limits stop the search early and are reported, never silent:
    max_cycles  → max_cycles_reached
    timeout_ms  → timeout_reached
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Set, Tuple

from swapgraph.matching.graph import IntentGraph


logger = logging.getLogger(__name__)

Cycle = Tuple[str, ...]


def cycle_key(cycle: Cycle) -> str:
    return ">".join(cycle)


def canonical_rotation(cycle: Cycle) -> Cycle:
    """Rotate so the smallest intent id comes first."""
    if not cycle:
        return cycle
    i = cycle.index(min(cycle))
    return tuple(cycle[i:]) + tuple(cycle[:i])


@dataclass
class CycleSearchResult:
    cycles:             List[Cycle] = field(default_factory=list)
    max_cycles_reached: bool        = False
    timeout_reached:    bool        = False
    components:         int         = 0

    @property
    def truncated(self) -> bool:
        return self.max_cycles_reached or self.timeout_reached


def strongly_connected_components(graph: IntentGraph) -> List[List[str]]:
    """Iterative Tarjan. Each component is sorted; components sorted by first id."""
    index_of: Dict[str, int] = {}
    lowlink:  Dict[str, int] = {}
    on_stack: Set[str]       = set()
    stack:    List[str]      = []
    result:   List[List[str]] = []
    counter = 0

    for root in graph.vertex_ids:
        if root in index_of:
            continue
        work: List[Tuple[str, int]] = [(root, 0)]
        while work:
            node, child_i = work[-1]
            if child_i == 0:
                index_of[node] = lowlink[node] = counter
                counter += 1
                stack.append(node)
                on_stack.add(node)

            successors = graph.successors(node)
            advanced = False
            while child_i < len(successors):
                nxt = successors[child_i]
                child_i += 1
                if nxt not in index_of:
                    work[-1] = (node, child_i)
                    work.append((nxt, 0))
                    advanced = True
                    break
                if nxt in on_stack:
                    lowlink[node] = min(lowlink[node], index_of[nxt])
            if advanced:
                continue

            work.pop()
            if work:
                parent = work[-1][0]
                lowlink[parent] = min(lowlink[parent], lowlink[node])

            if lowlink[node] == index_of[node]:
                component: List[str] = []
                while True:
                    member = stack.pop()
                    on_stack.discard(member)
                    component.append(member)
                    if member == node:
                        break
                result.append(sorted(component))

    result.sort(key=lambda c: c[0])
    return result


class _Stop(Exception):
    pass


def find_cycles(
    graph:            IntentGraph,
    max_cycle_length: int,
    max_cycles:       int,
    timeout_ms:       Optional[int] = None,
    clock:            Callable[[], float] = time.monotonic,
) -> CycleSearchResult:
    """
    Enumerate simple cycles of length 2..max_cycle_length.

    `clock` returns seconds; tests inject a fake one to exercise the deadline.
    timeout_ms=None disables the deadline.
    """
    result = CycleSearchResult()
    if max_cycle_length < 2:
        return result

    deadline = None if timeout_ms is None else clock() + timeout_ms / 1000.0
    components = [c for c in strongly_connected_components(graph) if len(c) > 1]
    result.components = len(components)
    found: List[Cycle] = []

    def check_deadline() -> None:
        if deadline is not None and clock() > deadline:
            result.timeout_reached = True
            raise _Stop()

    def record(path: List[str]) -> None:
        if len(found) >= max_cycles:
            result.max_cycles_reached = True
            raise _Stop()
        found.append(tuple(path))

    def search(start: str, members: Set[str], path: List[str], on_path: Set[str]) -> None:
        for nxt in graph.successors(path[-1]):
            check_deadline()
            if nxt == start:
                if len(path) >= 2:
                    record(path)
                continue
            if nxt <= start or nxt not in members or nxt in on_path:
                continue
            if len(path) >= max_cycle_length:
                continue
            path.append(nxt)
            on_path.add(nxt)
            search(start, members, path, on_path)
            on_path.discard(nxt)
            path.pop()

    try:
        for component in components:
            members = set(component)
            for start in component:
                check_deadline()
                search(start, members, [start], {start})
    except _Stop:
        logger.warning(
            "cycle search truncated after %d cycles (max_cycles_reached=%s, timeout_reached=%s)",
            len(found), result.max_cycles_reached, result.timeout_reached,
        )

    result.cycles = sorted(found, key=lambda c: (len(c), cycle_key(c)))
    logger.debug("cycles: %d found in %d components", len(result.cycles), result.components)
    return result
