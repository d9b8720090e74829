"""
Security tests for window arithmetic under hostile timestamps.

These tests verify that the evaluator:
1. Does not let future-dated requests lock out present traffic
2. Does not let future-dated spend hide from today's cap
3. Does not let backdated requests escape into an expired window
4. Keeps pruned state bounded after a burst of out-of-window events

Failures here mean a caller can steer rate limits or spending caps by
choosing the timestamp on its own requests.
"""

from decimal import Decimal

import pytest

from x402guard.policy import PolicyEngine, StateStore, parse
from x402guard.schema import DecisionReason


@pytest.fixture
def engine() -> PolicyEngine:
    policy = parse(
        """
policies:
  - type: rate_limit
    max_requests: 2
    window_seconds: 60
  - type: spending_cap
    max_amount: 5.00
    currency: USDC
    window_seconds: 3600
"""
    )
    return PolicyEngine(policy, store=StateStore())


class TestFutureDatedEvents:
    """Events stamped after the evaluation time."""

    def test_future_requests_do_not_consume_present_slots(
        self, engine: PolicyEngine, at
    ) -> None:
        """A victim is not rate limited by requests stamped next year."""
        far = 365 * 86400
        for i in range(2):
            engine.evaluate(at(far + i, agent_id="victim", amount=Decimal("0.01")))

        decisions = [
            engine.evaluate(at(i, agent_id="victim", amount=Decimal("0.01"))) for i in range(2)
        ]
        assert all(d.allowed for d in decisions)

    def test_future_spend_does_not_hide(self, engine: PolicyEngine, at) -> None:
        """Present spend is capped even after a request from the future."""
        engine.evaluate(at(10_000, agent_id="a1", amount=Decimal("4.00")))
        assert engine.evaluate(at(0, agent_id="a1", amount=Decimal("4.00"))).allowed
        # The earlier spend is still inside this window
        late = engine.evaluate(at(1_000, agent_id="a1", amount=Decimal("4.00")))
        assert late.reason == DecisionReason.SPENDING_CAP_EXCEEDED


class TestBackdatedEvents:
    """Events stamped before the window."""

    def test_stale_history_expires(self, engine: PolicyEngine, at) -> None:
        """Stale history does not count for a much later request."""
        for i in range(2):
            engine.evaluate(at(1_000 + i, agent_id="a1", amount=Decimal("0.01")))
        assert engine.evaluate(at(1_002, agent_id="a1", amount=Decimal("0.01"))).reason == (
            DecisionReason.RATE_LIMITED
        )
        # Two minutes later the window has moved on
        assert engine.evaluate(at(1_120, agent_id="a1", amount=Decimal("0.01"))).allowed

    def test_pruning_drops_only_expired_events(self) -> None:
        """Reads drop stale events and keep future-dated ones, which do not count."""
        store = StateStore()
        key = "0:agent_id:a1"
        for t in (0, 10, 5_000, 9_999_999):
            store.record(key, t)
        assert store.count_in_window(key, 60, now=5_030) == 1
        assert [e.timestamp for e in store.history(key)] == [5_000, 9_999_999]


class TestOutOfOrderArrival:
    """Requests evaluated in a different order than they were stamped."""

    def test_swapped_requests_do_not_reset_the_window(self, engine: PolicyEngine, at) -> None:
        """A request stamped earlier but evaluated later cannot erase history."""
        reasons = [
            engine.evaluate(at(t, agent_id="a1", amount=Decimal("0.01"))).reason
            for t in (101, 100, 102)
        ]
        assert reasons == [
            DecisionReason.ALLOWED,
            DecisionReason.ALLOWED,
            DecisionReason.RATE_LIMITED,
        ]

    def test_backdated_request_does_not_free_later_slots(self, engine: PolicyEngine, at) -> None:
        """History recorded after a backdated request still counts afterwards."""
        reasons = [
            engine.evaluate(at(t, agent_id="a1", amount=Decimal("0.01"))).reason
            for t in (100, 101, 102, 50, 103)
        ]
        assert reasons[:3] == [
            DecisionReason.ALLOWED,
            DecisionReason.ALLOWED,
            DecisionReason.RATE_LIMITED,
        ]
        assert reasons[4] == DecisionReason.RATE_LIMITED
        assert engine.store.count_in_window("0:agent_id:a1", 60, now=103) == 3

    def test_swapped_spends_stay_capped(self, at) -> None:
        """Spend recorded ahead of an earlier request still counts later on."""
        engine = PolicyEngine(parse(
            "policies:\n"
            "  - {type: spending_cap, max_amount: 5.00, currency: USDC, window_seconds: 3600}\n"
        ))
        assert engine.evaluate(at(10, agent_id="a1", amount=Decimal("3.00"))).allowed
        assert engine.evaluate(at(5, agent_id="a1", amount=Decimal("2.00"))).allowed
        late = engine.evaluate(at(20, agent_id="a1", amount=Decimal("0.01")))
        assert late.reason == DecisionReason.SPENDING_CAP_EXCEEDED


class TestNegativeAmounts:
    """Attempts to credit spend back."""

    def test_negative_amount_denied(self, at) -> None:
        """A negative amount cannot lower the running total."""
        engine = PolicyEngine(parse(
            "policies:\n"
            "  - {type: spending_cap, max_amount: 5.00, currency: USDC, window_seconds: 3600}\n"
        ))
        engine.evaluate(at(0, agent_id="a1", amount=Decimal("5.00")))
        credit = engine.evaluate(at(1, agent_id="a1", amount=Decimal("-5.00")))
        assert credit.allowed is False
        assert credit.reason == DecisionReason.CONFIGURATION_ERROR
        after = engine.evaluate(at(2, agent_id="a1", amount=Decimal("0.01")))
        assert after.reason == DecisionReason.SPENDING_CAP_EXCEEDED
