"""
swapgraph/matching/shadow.py

Non-authoritative comparison of the two selection algorithms.

The shadow path runs the algorithm that did NOT produce the authoritative
selection over the same candidates and reports how the two differ. Its
failures are caught here, logged, and returned as a diagnostic record; they
never reach the matching run.
"""

import logging
from typing import Any, Callable, Dict, List, Optional

from swapgraph.matching.selection import (
    Candidate,
    SelectionResult,
    greedy_select,
    optimize_selection,
)


logger = logging.getLogger(__name__)

ShadowSelector = Callable[[List[Candidate]], SelectionResult]


def default_shadow_selector(authoritative_method: str) -> ShadowSelector:
    if authoritative_method == "greedy":
        return lambda cands: optimize_selection(cands)
    return greedy_select


def compare_selections(primary: SelectionResult, shadow: SelectionResult) -> Dict[str, Any]:
    primary_ids = set(primary.selected_ids)
    shadow_ids  = set(shadow.selected_ids)
    return {
        "ok":                        True,
        "authoritative_method":      primary.method,
        "shadow_method":             shadow.method,
        "authoritative_total_score": primary.total_score,
        "shadow_total_score":        shadow.total_score,
        "score_delta":               round((primary.total_units - shadow.total_units) / 10_000, 4),
        "authoritative_count":       len(primary_ids),
        "shadow_count":              len(shadow_ids),
        "overlap_count":             len(primary_ids & shadow_ids),
        "only_authoritative":        sorted(primary_ids - shadow_ids),
        "only_shadow":               sorted(shadow_ids - primary_ids),
        "identical":                 primary_ids == shadow_ids,
    }


def run_shadow(
    candidates: List[Candidate],
    primary:    SelectionResult,
    selector:   Optional[ShadowSelector] = None,
) -> Dict[str, Any]:
    """Always returns a record; never raises."""
    selector = selector or default_shadow_selector(primary.method)
    try:
        shadow = selector(list(candidates))
        return compare_selections(primary, shadow)
    except Exception as exc:
        logger.warning("shadow selection failed: %s: %s", type(exc).__name__, exc)
        return {
            "ok":                   False,
            "authoritative_method": primary.method,
            "error": {
                "type":    type(exc).__name__,
                "message": str(exc),
            },
        }
