"""
tests/test_selection.py

Intent-disjoint selection and the shadow comparison.

Laws:
    optimizer total >= greedy total, for every input
    no intent appears in two selected proposals
    identical candidates in any order give an identical selection
    a failing shadow selector never reaches the caller
"""

import random
from typing import List

import pytest

from swapgraph.matching.selection import (
    Candidate,
    greedy_select,
    optimize_selection,
    select,
)
from swapgraph.matching.shadow import compare_selections, run_shadow


def cand(proposal_id: str, intents: str, score: float) -> Candidate:
    return Candidate(proposal_id, frozenset(intents.split(",")), score)


@pytest.fixture
def greedy_trap() -> List[Candidate]:
    """Greedy takes the single best proposal; the two smaller ones together beat it."""
    return [
        cand("c1", "a,b", 0.9),
        cand("c2", "a", 0.6),
        cand("c3", "b", 0.6),
    ]


def random_candidates(seed: int, count: int = 24, intents: int = 14) -> List[Candidate]:
    rng = random.Random(seed)
    pool = [f"i{k:02d}" for k in range(intents)]
    out = []
    for n in range(count):
        members = rng.sample(pool, rng.randint(2, 3))
        out.append(Candidate(f"p{n:03d}", frozenset(members), round(rng.uniform(0.3, 1.0), 4)))
    return out


def assert_disjoint(candidates: List[Candidate], selected_ids: List[str]) -> None:
    by_id = {c.proposal_id: c for c in candidates}
    seen = set()
    for proposal_id in selected_ids:
        intents = by_id[proposal_id].intent_ids
        assert seen.isdisjoint(intents), f"{proposal_id} reuses {seen & intents}"
        seen |= intents


# ─────────────────────────────────────────────────────────────
# Greedy baseline
# ─────────────────────────────────────────────────────────────

class TestGreedy:

    def test_score_then_id_order(self):
        result = greedy_select([
            cand("b", "x", 0.5),
            cand("a", "x", 0.5),
            cand("c", "y", 0.4),
        ])
        assert result.selected_ids == ["a", "c"]
        assert result.total_units == 9000
        assert result.trace == [{"proposal_id": "b", "skipped": "intent_conflict", "conflicts_with": ["a"]}]

    def test_empty(self):
        result = greedy_select([])
        assert result.selected_ids == []
        assert result.total_score == 0.0

    def test_greedy_falls_into_trap(self, greedy_trap):
        assert greedy_select(greedy_trap).selected_ids == ["c1"]


# ─────────────────────────────────────────────────────────────
# Optimizer
# ─────────────────────────────────────────────────────────────

class TestOptimizer:

    def test_exact_beats_greedy_trap(self, greedy_trap):
        result = optimize_selection(greedy_trap)
        assert result.selected_ids == ["c2", "c3"]
        assert result.total_score == 1.2
        assert result.exact
        assert result.components == [{"size": 3, "method": "exact", "gain_over_greedy": 3000}]

    def test_local_search_escapes_greedy_trap(self, greedy_trap):
        result = optimize_selection(greedy_trap, exact_limit=2)
        assert result.components[0]["method"] == "local_search"
        assert result.selected_ids == ["c2", "c3"]
        assert not result.exact

    def test_budget_exhaustion_keeps_greedy_floor(self, greedy_trap):
        result = optimize_selection(greedy_trap, max_search_nodes=1)
        assert result.components[0]["method"] == "exact_budget"
        assert result.total_units >= greedy_select(greedy_trap).total_units

    def test_independent_components(self):
        candidates = [
            cand("left1", "a,b", 0.9), cand("left2", "a", 0.6), cand("left3", "b", 0.6),
            cand("right", "z", 0.3),
        ]
        result = optimize_selection(candidates)
        assert result.selected_ids == ["left2", "left3", "right"]
        assert [c["size"] for c in result.components] == [3, 1]

    def test_duplicate_ids_are_collapsed(self):
        result = optimize_selection([cand("p", "a", 0.5), cand("p", "b", 0.7)])
        assert result.selected_ids == ["p"]
        assert result.total_units == 7000

    @pytest.mark.parametrize("seed", range(40))
    def test_score_floor_and_disjointness(self, seed):
        candidates = random_candidates(seed)
        greedy = greedy_select(candidates)
        optimized = optimize_selection(candidates)
        assert optimized.total_units >= greedy.total_units
        assert_disjoint(candidates, optimized.selected_ids)
        assert_disjoint(candidates, greedy.selected_ids)

    @pytest.mark.parametrize("seed", range(10))
    def test_local_search_score_floor(self, seed):
        candidates = random_candidates(seed, count=40, intents=18)
        optimized = optimize_selection(candidates, exact_limit=3)
        assert optimized.total_units >= greedy_select(candidates).total_units
        assert_disjoint(candidates, optimized.selected_ids)

    def test_deterministic_under_shuffle(self):
        candidates = random_candidates(99, count=30)
        expected = optimize_selection(candidates)
        rng = random.Random(1)
        for _ in range(10):
            shuffled = list(candidates)
            rng.shuffle(shuffled)
            again = optimize_selection(shuffled)
            assert again.selected_ids == expected.selected_ids
            assert again.to_dict() == expected.to_dict()

    def test_select_mode(self, greedy_trap):
        assert select(greedy_trap, mode="greedy").method == "greedy"
        assert select(greedy_trap).method == "optimizer"


# ─────────────────────────────────────────────────────────────
# Shadow
# ─────────────────────────────────────────────────────────────

class TestShadow:

    def test_default_shadow_of_optimizer_is_greedy(self, greedy_trap):
        primary = optimize_selection(greedy_trap)
        report = run_shadow(greedy_trap, primary)
        assert report["ok"]
        assert report["shadow_method"] == "greedy"
        assert report["score_delta"] == 0.3
        assert report["only_authoritative"] == ["c2", "c3"]
        assert report["only_shadow"] == ["c1"]
        assert not report["identical"]

    def test_default_shadow_of_greedy_is_optimizer(self, greedy_trap):
        report = run_shadow(greedy_trap, greedy_select(greedy_trap))
        assert report["shadow_method"] == "optimizer"
        assert report["score_delta"] == -0.3

    def test_identical_selections(self):
        candidates = [cand("p", "a", 0.5)]
        report = compare_selections(greedy_select(candidates), optimize_selection(candidates))
        assert report["identical"]
        assert report["overlap_count"] == 1

    def test_failure_is_recorded_not_raised(self, greedy_trap):
        def broken(_candidates):
            raise RuntimeError("legacy selector crashed")

        primary = optimize_selection(greedy_trap)
        report = run_shadow(greedy_trap, primary, selector=broken)
        assert report == {
            "ok": False,
            "authoritative_method": "optimizer",
            "error": {"type": "RuntimeError", "message": "legacy selector crashed"},
        }
        assert primary.selected_ids == ["c2", "c3"]
