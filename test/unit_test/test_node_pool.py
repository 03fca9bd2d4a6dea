"""
Unit tests for node pool health tracking and selection
"""

import sys
import unittest
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent.parent))
sys.path.insert(0, str(Path(__file__).parent))

from cosmos_client.infra.node_pool import (
    Endpoint,
    HealthState,
    NodePool,
    NodePoolConfig,
    health_for,
)
from cosmos_client.errors import ConfigurationError, ErrorCode, FatalError, TransientError
from fakes import FakeClock

A = "http://node-a"
B = "http://node-b"
C = "http://node-c"


def make_pool(urls=(A, B), fallback_urls=None, cooldown=30.0):
    clock = FakeClock()
    pool = NodePool(
        list(urls),
        fallback_urls=fallback_urls,
        config=NodePoolConfig(degraded_after=3, unreachable_after=6, cooldown_seconds=cooldown),
        clock=clock,
    )
    return pool, clock


def fail(pool, url, times):
    for _ in range(times):
        pool.report_outcome(url, TransientError.connection_failed(url))


class TestHealthFor(unittest.TestCase):

    def test_thresholds(self):
        self.assertIs(health_for(0, 3, 6), HealthState.HEALTHY)
        self.assertIs(health_for(2, 3, 6), HealthState.HEALTHY)
        self.assertIs(health_for(3, 3, 6), HealthState.DEGRADED)
        self.assertIs(health_for(5, 3, 6), HealthState.DEGRADED)
        self.assertIs(health_for(6, 3, 6), HealthState.UNREACHABLE)


class TestHealthTransitions(unittest.TestCase):
    """Consecutive failures drive Healthy -> Degraded -> Unreachable"""

    def test_three_failures_degrade(self):
        pool, _ = make_pool()
        fail(pool, A, 2)
        self.assertIs(pool.endpoints[0].state, HealthState.HEALTHY)
        fail(pool, A, 1)
        self.assertIs(pool.endpoints[0].state, HealthState.DEGRADED)

    def test_further_failures_make_unreachable(self):
        pool, _ = make_pool()
        fail(pool, A, 6)
        self.assertIs(pool.endpoints[0].state, HealthState.UNREACHABLE)

    def test_single_success_restores_healthy(self):
        pool, _ = make_pool()

        fail(pool, A, 3)
        pool.report_outcome(A)
        self.assertIs(pool.endpoints[0].state, HealthState.HEALTHY)

        fail(pool, A, 6)
        pool.report_outcome(A)
        self.assertIs(pool.endpoints[0].state, HealthState.HEALTHY)
        self.assertEqual(pool.endpoints[0].consecutive_failures, 0)

    def test_success_resets_partial_count(self):
        """Failures must be consecutive to degrade"""
        pool, _ = make_pool()
        fail(pool, A, 2)
        pool.report_outcome(A)
        fail(pool, A, 2)
        self.assertIs(pool.endpoints[0].state, HealthState.HEALTHY)

    def test_fatal_error_does_not_count_against_node(self):
        """A node that answers with a fatal error is still reachable"""
        pool, _ = make_pool()
        for _ in range(10):
            pool.report_outcome(A, FatalError.malformed_request("bad address"))

        endpoint = pool.endpoints[0]
        self.assertIs(endpoint.state, HealthState.HEALTHY)
        self.assertEqual(endpoint.total_errors, 10)
        self.assertEqual(endpoint.consecutive_failures, 0)

    def test_unknown_endpoint_is_ignored(self):
        pool, _ = make_pool()
        pool.report_outcome("http://not-in-pool", TransientError.connection_failed("x"))
        self.assertEqual(len(pool), 2)


class TestSelection(unittest.TestCase):

    def test_healthy_preferred_over_unreachable(self):
        pool, clock = make_pool()
        fail(pool, B, 6)

        for _ in range(20):
            self.assertEqual(pool.select_endpoint().url, A)
            clock.advance(5)

    def test_round_robin_among_equals(self):
        pool, _ = make_pool(urls=(A, B, C))
        picks = [pool.select_endpoint().url for _ in range(6)]
        self.assertEqual(picks, [A, B, C, A, B, C])

    def test_degraded_ranks_below_healthy(self):
        pool, _ = make_pool()
        fail(pool, A, 3)
        self.assertEqual(pool.select_endpoint().url, B)

    def test_exclude_for_failover(self):
        pool, _ = make_pool()
        first = pool.select_endpoint()
        second = pool.select_endpoint(exclude=[first])
        self.assertNotEqual(first.url, second.url)

    def test_exclude_ignored_when_nothing_else_usable(self):
        pool, _ = make_pool(urls=(A,))
        self.assertEqual(pool.select_endpoint(exclude=[A]).url, A)

    def test_primary_before_fallback(self):
        pool, _ = make_pool(urls=(A,), fallback_urls=[B])
        self.assertEqual(pool.select_endpoint().url, A)
        self.assertEqual(pool.select_endpoint().url, A)

        fail(pool, A, 3)
        self.assertEqual(pool.select_endpoint().url, B)

    def test_unreachable_never_chosen_while_another_is_usable(self):
        """Excluding the only usable node does not fall through to an Unreachable one"""
        pool, clock = make_pool(cooldown=30.0)
        fail(pool, B, 6)
        clock.advance(31)
        fail(pool, A, 1)

        self.assertIs(pool.endpoints[0].state, HealthState.HEALTHY)
        for _ in range(5):
            self.assertEqual(pool.select_endpoint(exclude=[A]).url, A)

        # Degraded is still preferred over a cooled-down Unreachable node
        fail(pool, A, 2)
        self.assertEqual(pool.select_endpoint(exclude=[A]).url, A)

    def test_all_unreachable_tries_cooled_down_first(self):
        """With every node Unreachable, one past its cooldown is tried first"""
        pool, clock = make_pool(urls=(A, B, C), cooldown=30.0)
        fail(pool, A, 6)
        clock.advance(20)
        fail(pool, B, 6)
        fail(pool, C, 6)

        clock.advance(11)
        self.assertEqual(pool.select_endpoint().url, A)
        self.assertEqual(pool.select_endpoint(exclude=[A]).url, A)

        clock.advance(20)
        self.assertEqual(pool.select_endpoint(exclude=[A]).url, B)

    def test_all_unreachable_returns_soonest_cooldown(self):
        pool, clock = make_pool()
        fail(pool, B, 6)
        clock.advance(10)
        fail(pool, A, 6)

        with self.assertLogs("cosmos_client.infra.node_pool", level="WARNING"):
            chosen = pool.select_endpoint()
        self.assertEqual(chosen.url, B)

    def test_ranked_endpoints(self):
        pool, _ = make_pool(urls=(A, B, C))
        fail(pool, A, 6)
        fail(pool, B, 3)

        ranked = [e.url for e in pool.ranked_endpoints()]
        self.assertEqual(ranked, [C, B, A])


class TestBlockLag(unittest.TestCase):

    def make_pool(self, lag=10):
        return NodePool(
            [A, B],
            config=NodePoolConfig(degraded_after=3, unreachable_after=6, cooldown_seconds=30.0, block_lag_allowed=lag),
            clock=FakeClock(),
        )

    def test_heights_move_forward(self):
        pool = self.make_pool()
        pool.observe_height(A, 100)
        pool.observe_height(B, 105)
        pool.observe_height(A, 95)

        self.assertEqual(pool.highest_height, 105)
        self.assertEqual(pool.endpoints[0].last_height, 95)

    def test_lagging_node_fails(self):
        pool = self.make_pool(lag=10)
        pool.observe_height(A, 200)

        with self.assertRaises(TransientError) as ctx:
            pool.observe_height(B, 189)

        error = ctx.exception
        self.assertEqual(error.code, ErrorCode.NODE_LAGGING)
        self.assertTrue(error.recoverable)
        self.assertEqual(error.details["highest_height"], 200)
        self.assertEqual(error.details["height"], 189)
        self.assertEqual(pool.highest_height, 200)

    def test_lag_counts_against_node(self):
        pool = self.make_pool(lag=0)
        pool.observe_height(A, 50)
        for _ in range(3):
            try:
                pool.observe_height(B, 49)
            except TransientError as e:
                pool.report_outcome(B, e)

        self.assertIs(pool.endpoints[1].state, HealthState.DEGRADED)
        self.assertEqual({r["url"]: r["last_height"] for r in pool.health_report()}, {A: 50, B: 49})

    def test_invalid_lag(self):
        with self.assertRaises(ConfigurationError):
            NodePoolConfig(3, 6, 30.0, block_lag_allowed=-1)


class TestPoolManagement(unittest.TestCase):

    def test_requires_an_endpoint(self):
        with self.assertRaises(ConfigurationError):
            NodePool([], config=NodePoolConfig(3, 6, 30.0))

    def test_single_url_string(self):
        pool = NodePool(A + "/", config=NodePoolConfig(3, 6, 30.0))
        self.assertEqual([e.url for e in pool.endpoints], [A])

    def test_duplicates_collapsed(self):
        pool, _ = make_pool(urls=(A, A + "/", B))
        self.assertEqual(len(pool), 2)

    def test_add_and_remove(self):
        pool, _ = make_pool(urls=(A,))
        added = pool.add_endpoint(B, is_fallback=True)
        self.assertTrue(added.is_fallback)
        self.assertEqual(len(pool), 2)

        self.assertTrue(pool.remove_endpoint(B))
        self.assertFalse(pool.remove_endpoint(B))
        with self.assertRaises(ConfigurationError):
            pool.remove_endpoint(A)

    def test_invalid_thresholds(self):
        with self.assertRaises(ConfigurationError):
            NodePoolConfig(degraded_after=3, unreachable_after=3, cooldown_seconds=30.0)
        with self.assertRaises(ConfigurationError):
            NodePoolConfig(degraded_after=0, unreachable_after=3, cooldown_seconds=30.0)

    def test_health_report(self):
        pool, clock = make_pool()
        pool.report_outcome(A)
        fail(pool, B, 3)
        clock.advance(4)

        report = {r["url"]: r for r in pool.health_report()}
        self.assertEqual(report[A]["state"], "healthy")
        self.assertEqual(report[A]["total_queries"], 1)
        self.assertIsNone(report[A]["seconds_since_failure"])
        self.assertEqual(report[B]["state"], "degraded")
        self.assertEqual(report[B]["consecutive_failures"], 3)
        self.assertEqual(report[B]["total_errors"], 3)
        self.assertEqual(report[B]["seconds_since_failure"], 4)
        self.assertIn("Failed to connect", report[B]["last_error"])

    def test_endpoint_repr(self):
        self.assertIn("healthy", repr(Endpoint(A)))


if __name__ == "__main__":
    unittest.main()
