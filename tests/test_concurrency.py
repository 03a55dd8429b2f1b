"""
tests/test_concurrency.py

Concurrency safety for the journal and the per-cycle settlement locks.
Simultaneous writers must neither lose nor corrupt journal lines, and
racing deposits on one leg must leave exactly one deposit_ref.

Run:
    pytest tests/test_concurrency.py -v --tb=short
"""

import threading

import pytest

from swapgraph.core.crypto import Ed25519KeyManager
from swapgraph.core.journal import EventJournal
from swapgraph.core.models import Event, EventType
from swapgraph.core.replay import JournalReplay

from helpers.factories import OPERATOR, at, make_market, proposal_for, run_matching, scenario_intents


def _run_threads(count, target):
    barrier = threading.Barrier(count)
    errors = []

    def wrapped(n):
        try:
            barrier.wait()
            target(n)
        except Exception as e:
            errors.append(f"{type(e).__name__}: {e}")

    threads = [threading.Thread(target=wrapped, args=(n,)) for n in range(count)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    return errors


class TestJournalConcurrency:

    def test_concurrent_appends_no_corruption(self, tmp_path):
        path = tmp_path / "events.jsonl"
        journal = EventJournal(Ed25519KeyManager.generate(), path=str(path))

        def write_10(n):
            for i in range(10):
                journal.append(Event.create("cycle.state_changed", f"cycle_{n}", f"state:{i}", at(i), {"i": i}))

        errors = _run_threads(4, write_10)
        assert errors == [], f"Concurrent appends raised: {errors}"

        replay = JournalReplay()
        try:
            replay.load(path)
        except ValueError as e:
            pytest.fail(f"Concurrent appends corrupted the journal: {e}")
        summary = replay.verify()

        assert summary.total_entries == 40, "entries were lost"
        assert summary.chain_valid, [v.detail for v in summary.violations]
        assert journal.verify_chain()

    def test_racing_duplicates_are_journaled_once(self):
        journal = EventJournal(Ed25519KeyManager.generate())
        same = Event.create("receipt.created", "cycle_x", "receipt:settled", at(0), {})

        errors = _run_threads(8, lambda _n: journal.append(same))
        assert errors == []
        assert len(journal) == 1


class TestSettlementConcurrency:

    @pytest.fixture
    def started(self):
        market = make_market(scenario_intents())
        triangle = proposal_for(market, run_matching(market).body, "intent_a")
        market.commits.accept(OPERATOR, triangle.id, occurred_at=at(10))
        market.settlement.start(OPERATOR, triangle.id, occurred_at=at(20))
        return market, triangle

    def test_racing_deposits_on_one_leg(self, started):
        market, triangle = started
        leg_id = f"leg_{triangle.id}_0"
        results = []
        lock = threading.Lock()

        def deposit(n):
            r = market.settlement.deposit_confirmed(OPERATOR, triangle.id, leg_id, f"dep_{n}", occurred_at=at(30))
            with lock:
                results.append(r)

        errors = _run_threads(8, deposit)
        assert errors == []

        winners = [r for r in results if r.ok]
        assert len(winners) == 1
        assert {r.reason_code for r in results if not r.ok} == {"deposit_ref_conflict"}
        events = market.journal.events(EventType.DEPOSIT_CONFIRMED, correlation_id=f"corr_{triangle.id}")
        assert len(events) == 1
        assert market.settlement.get_timeline(triangle.id).legs[0].deposit_ref == events[0]["payload"]["deposit_ref"]

    def test_expiry_racing_last_deposit(self, started):
        """Either the last deposit lands or the window expires; never both."""
        market, triangle = started
        deadline = market.settlement.get_timeline(triangle.id).deposit_deadline_at
        for i in (0, 1):
            market.settlement.deposit_confirmed(OPERATOR, triangle.id, f"leg_{triangle.id}_{i}", f"dep_{i}", occurred_at=at(30))

        def race(n):
            if n % 2:
                market.settlement.expire_deposit_window(OPERATOR, triangle.id, now=deadline)
            else:
                market.settlement.deposit_confirmed(
                    OPERATOR, triangle.id, f"leg_{triangle.id}_2", "dep_2", occurred_at=at(40),
                )

        errors = _run_threads(6, race)
        assert errors == []

        timeline = market.settlement.get_timeline(triangle.id)
        if timeline.state == "failed":
            assert timeline.legs[2].deposit_ref is None
            assert market.settlement.get_receipt(triangle.id).final_state == "failed"
        else:
            assert timeline.state == "escrow.pending"
            assert timeline.all_deposited()
            assert market.settlement.get_receipt(triangle.id) is None
