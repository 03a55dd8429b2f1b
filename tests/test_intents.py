"""
tests/test_intents.py

IntentService: create, cancel, ownership, reservation guard.
"""

import pytest

from swapgraph.core.models import IntentStatus

from helpers.factories import actor, at, intent_dict, make_market, run_matching, scenario_intents


@pytest.fixture
def market():
    return make_market()


class TestCreate:

    def test_create_for_calling_actor(self, market):
        result = market.intents.create(actor("alice"), {"intent": intent_dict("i1", "alice", "sword", "shield")})
        assert result.ok
        assert result.body["intent"]["status"] == IntentStatus.ACTIVE
        assert market.intents.get("i1").actor.id == "alice"

    def test_actor_defaults_to_caller(self, market):
        raw = intent_dict("i1", "alice", "sword", "shield")
        del raw["actor"]
        result = market.intents.create(actor("bob"), {"intent": raw})
        assert result.body["intent"]["actor"] == actor("bob")

    def test_generated_ids_are_sequential(self, market):
        raw = intent_dict("unused", "alice", "sword", "shield")
        del raw["id"]
        first = market.intents.create(actor("alice"), {"intent": raw})
        second = market.intents.create(actor("alice"), {"intent": raw})
        assert first.body["intent"]["id"] == "intent_000001"
        assert second.body["intent"]["id"] == "intent_000002"

    def test_status_is_forced_active(self, market):
        raw = intent_dict("i1", "alice", "sword", "shield", status="fulfilled")
        assert market.intents.create(actor("alice"), {"intent": raw}).body["intent"]["status"] == "active"

    def test_creating_for_someone_else_is_forbidden(self, market):
        result = market.intents.create(actor("mallory"), {"intent": intent_dict("i1", "alice", "sword", "shield")})
        assert result.code == "FORBIDDEN"
        assert market.intents.get("i1") is None

    def test_duplicate_id_conflicts(self, market):
        raw = intent_dict("i1", "alice", "sword", "shield")
        market.intents.create(actor("alice"), {"intent": raw})
        again = market.intents.create(actor("alice"), {"intent": raw})
        assert again.code == "CONFLICT"
        assert again.reason_code == "intent_exists"

    @pytest.mark.parametrize("mutate", [
        lambda d: d.pop("give"),
        lambda d: d.update(give=[]),
        lambda d: d.update(want={"any_of": []}),
        lambda d: d.update(max_cycle_length=1),
        lambda d: d.update(expires_at="not-a-time"),
        lambda d: d["give"][0].update(value="cheap"),
    ])
    def test_malformed_intents_are_rejected(self, market, mutate):
        raw = intent_dict("i1", "alice", "sword", "shield")
        mutate(raw)
        result = market.intents.create(actor("alice"), {"intent": raw})
        assert result.code == "CONSTRAINT_VIOLATION"
        assert market.store.count("intents") == 0

    def test_expiry_is_normalized(self, market):
        raw = intent_dict("i1", "alice", "sword", "shield", expires_at="2026-01-01T01:00:00+00:00")
        market.intents.create(actor("alice"), {"intent": raw})
        assert market.intents.get("i1").expires_at == at(3600)

    def test_missing_intent_object(self, market):
        assert market.intents.create(actor("alice"), {}).code == "CONSTRAINT_VIOLATION"


class TestCancel:

    def test_owner_cancels(self, market):
        market.intents.create(actor("alice"), {"intent": intent_dict("i1", "alice", "sword", "shield")})
        result = market.intents.cancel(actor("alice"), "i1")
        assert result.body["intent"]["status"] == IntentStatus.CANCELLED
        assert market.intents.cancel(actor("alice"), "i1").ok

    def test_non_owner_is_forbidden(self, market):
        market.intents.create(actor("alice"), {"intent": intent_dict("i1", "alice", "sword", "shield")})
        result = market.intents.cancel(actor("bob"), "i1")
        assert result.code == "FORBIDDEN"
        assert result.reason_code == "not_intent_owner"

    def test_unknown_intent(self, market):
        assert market.intents.cancel(actor("alice"), "ghost").code == "NOT_FOUND"

    def test_reserved_intent_cannot_be_cancelled(self):
        market = make_market(scenario_intents())
        run_matching(market)
        result = market.intents.cancel(actor("alice"), "intent_a")
        assert result.code == "CONFLICT"
        assert result.reason_code == "intent_reserved"

    def test_cancelled_intent_is_not_matched(self):
        market = make_market(scenario_intents())
        market.intents.cancel(actor("dave"), "intent_d")
        body = run_matching(market).body
        assert body["stats"]["candidate_cycles"] == 1


class TestList:

    def test_list_by_owner(self):
        market = make_market(scenario_intents())
        assert [i.id for i in market.intents.list(actor("bob"))] == ["intent_b"]
        assert len(market.intents.list()) == 5
