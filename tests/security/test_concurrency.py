"""
Security tests for concurrent evaluation.

These tests verify that check-then-record is atomic:
1. Concurrent requests never exceed a rate limit
2. Concurrent spends never exceed a spending cap
3. A shared PolicyEngine stays consistent across threads

A failure here means a burst of parallel requests can slip past a limit.
"""

from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal

from x402guard.policy import PolicyEngine, StateStore, parse
from x402guard.schema import DecisionReason

WORKERS = 16
ATTEMPTS = 200
KEY = "0:agent_id:a1"


class TestStoreAtomicity:
    """Tests for StateStore under contention."""

    def test_try_consume_never_overshoots(self) -> None:
        """Exactly max_requests of many parallel attempts succeed."""
        store = StateStore()

        def attempt(_: int) -> bool:
            return store.try_consume(KEY, 60, 10, now=1000.0).allowed

        with ThreadPoolExecutor(max_workers=WORKERS) as pool:
            results = list(pool.map(attempt, range(ATTEMPTS)))

        assert sum(results) == 10
        assert store.count_in_window(KEY, 60, now=1000.0) == 10

    def test_try_spend_never_overshoots(self) -> None:
        """Accepted spend never exceeds the cap."""
        store = StateStore()
        cap = Decimal("5.00")

        def attempt(_: int) -> bool:
            return store.try_spend(KEY, 3600, Decimal("0.25"), cap, now=1000.0).allowed

        with ThreadPoolExecutor(max_workers=WORKERS) as pool:
            results = list(pool.map(attempt, range(ATTEMPTS)))

        assert sum(results) == 20
        assert store.sum_in_window(KEY, 3600, now=1000.0) == cap


class TestEngineConcurrency:
    """Tests for a shared PolicyEngine under contention."""

    def test_rate_limit_holds(self, at) -> None:
        policy = parse(
            """
policies:
  - type: rate_limit
    max_requests: 7
    window_seconds: 60
"""
        )
        engine = PolicyEngine(policy)
        context = at(0, agent_id="a1")

        with ThreadPoolExecutor(max_workers=WORKERS) as pool:
            decisions = list(pool.map(lambda _: engine.evaluate(context), range(ATTEMPTS)))

        allowed = [d for d in decisions if d.allowed]
        assert len(allowed) == 7
        assert all(
            d.reason == DecisionReason.RATE_LIMITED for d in decisions if not d.allowed
        )

    def test_independent_keys_do_not_interfere(self, at) -> None:
        """Each agent gets its own budget under parallel load."""
        policy = parse(
            """
policies:
  - type: spending_cap
    max_amount: 1.00
    currency: USDC
    window_seconds: 60
"""
        )
        engine = PolicyEngine(policy)
        agents = [f"agent-{n}" for n in range(4)]
        contexts = [
            at(0, agent_id=agents[i % len(agents)], amount=Decimal("0.10"))
            for i in range(ATTEMPTS)
        ]

        with ThreadPoolExecutor(max_workers=WORKERS) as pool:
            decisions = list(pool.map(engine.evaluate, contexts))

        for agent in agents:
            allowed = [
                d for c, d in zip(contexts, decisions) if c.agent_id == agent and d.allowed
            ]
            assert len(allowed) == 10
