"""
Unit tests for retry logic module
"""

import asyncio
import random
import unittest
from unittest.mock import patch

import httpx

from cosmos_client.infra.retry import (
    RetryDecision,
    RetryPolicy,
    classify,
    is_retryable,
    CorrelationContext,
    generate_correlation_id,
    get_correlation_id,
    set_correlation_id,
)
from cosmos_client.errors import (
    TransientError,
    FatalError,
    SequenceConflict,
    RetriesExhausted,
)


class TestClassify(unittest.TestCase):
    """Tests for error classification"""

    def test_deadline_exceeded_is_retryable(self):
        """A request that exceeded its deadline should be retried"""
        error = TransientError.timeout("https://lcd.example.com", 5.0)
        self.assertIs(classify(error), RetryDecision.RETRYABLE)

    def test_asyncio_timeout_is_retryable(self):
        self.assertIs(classify(asyncio.TimeoutError()), RetryDecision.RETRYABLE)

    def test_httpx_errors_are_retryable(self):
        """Raw httpx transport errors should be retryable"""
        request = httpx.Request("GET", "https://lcd.example.com")
        self.assertIs(classify(httpx.ConnectTimeout("slow", request=request)), RetryDecision.RETRYABLE)
        self.assertIs(classify(httpx.ConnectError("refused", request=request)), RetryDecision.RETRYABLE)

    def test_malformed_request_is_fatal(self):
        """A malformed request will fail the same way on every node"""
        error = FatalError.malformed_request("decoding bech32 failed")
        self.assertIs(classify(error), RetryDecision.FATAL)

    def test_sequence_conflict_is_fatal_for_executor(self):
        """Sequence conflicts are handled by the broadcaster, not by blind retries"""
        error = SequenceConflict.from_log("account sequence mismatch, expected 2, got 1")
        self.assertIs(classify(error), RetryDecision.FATAL)

    def test_retries_exhausted_is_fatal(self):
        self.assertIs(classify(RetriesExhausted.after("simulate", 3)), RetryDecision.FATAL)

    def test_keyword_matching_for_plain_exceptions(self):
        """Plain exceptions are classified by message"""
        self.assertTrue(is_retryable(Exception("Network connection failed: ECONNRESET")))
        self.assertTrue(is_retryable(Exception("Service temporarily unavailable: 503")))
        self.assertTrue(is_retryable(Exception("Too many requests, rate limit exceeded")))

    def test_unknown_error_is_fatal(self):
        """Unknown errors should not be retried"""
        self.assertFalse(is_retryable(ValueError("unexpected field in response")))


class TestRetryPolicy(unittest.TestCase):
    """Tests for backoff computation"""

    def test_exponential_growth_and_cap(self):
        policy = RetryPolicy(max_attempts=6, base_delay=0.5, max_delay=3.0, jitter_ratio=0.0)

        self.assertEqual(policy.base_delay_for(1), 0.5)
        self.assertEqual(policy.base_delay_for(2), 1.0)
        self.assertEqual(policy.base_delay_for(3), 2.0)
        self.assertEqual(policy.base_delay_for(4), 3.0)
        self.assertEqual(policy.base_delay_for(10), 3.0)

    def test_jitter_stays_within_bounds(self):
        """Jitter adds at most jitter_ratio of the base delay, never less than the base"""
        policy = RetryPolicy(max_attempts=5, base_delay=0.5, max_delay=8.0, jitter_ratio=0.25)
        rng = random.Random(7)

        for attempt in range(1, 6):
            base = policy.base_delay_for(attempt)
            for _ in range(200):
                delay = policy.next_delay(attempt, rng)
                self.assertGreaterEqual(delay, base)
                self.assertLess(delay, base * 1.25)

    def test_zero_jitter_is_deterministic(self):
        policy = RetryPolicy(max_attempts=3, base_delay=1.0, max_delay=8.0, jitter_ratio=0.0)
        self.assertEqual(policy.next_delay(2), 2.0)

    def test_attempts_remaining(self):
        policy = RetryPolicy(max_attempts=3, base_delay=0.1, max_delay=1.0, jitter_ratio=0.0)

        self.assertTrue(policy.attempts_remaining(1))
        self.assertTrue(policy.attempts_remaining(2))
        self.assertFalse(policy.attempts_remaining(3))

    def test_invalid_values_rejected(self):
        with self.assertRaises(ValueError):
            RetryPolicy(max_attempts=0, base_delay=0.1, max_delay=1.0, jitter_ratio=0.0)
        with self.assertRaises(ValueError):
            RetryPolicy(max_attempts=3, base_delay=0.1, max_delay=1.0, jitter_ratio=-0.1)

    @patch("cosmos_client.infra.retry.global_config")
    def test_defaults_from_global_config(self, mock_config):
        """Unset fields are filled from the global config"""
        mock_config.retry.max_attempts = 4
        mock_config.retry.base_delay = 0.2
        mock_config.retry.max_delay = 2.0
        mock_config.retry.jitter_ratio = 0.1

        policy = RetryPolicy()

        self.assertEqual(policy.max_attempts, 4)
        self.assertEqual(policy.base_delay, 0.2)
        self.assertEqual(policy.max_delay, 2.0)
        self.assertEqual(policy.jitter_ratio, 0.1)

    @patch("cosmos_client.infra.retry.global_config")
    def test_override_wins_over_global_config(self, mock_config):
        mock_config.retry.max_attempts = 4
        mock_config.retry.base_delay = 0.2
        mock_config.retry.max_delay = 2.0
        mock_config.retry.jitter_ratio = 0.1

        policy = RetryPolicy(max_attempts=7)

        self.assertEqual(policy.max_attempts, 7)
        self.assertEqual(policy.base_delay, 0.2)


class TestCorrelationId(unittest.TestCase):
    """Tests for correlation ID helpers"""

    def test_generate_is_unique(self):
        ids = {generate_correlation_id() for _ in range(100)}
        self.assertEqual(len(ids), 100)

    def test_context_sets_and_resets(self):
        self.assertIsNone(get_correlation_id())

        with CorrelationContext("tx") as cid:
            self.assertTrue(cid.startswith("tx_"))
            self.assertEqual(get_correlation_id(), cid)

        self.assertIsNone(get_correlation_id())

    def test_set_returns_token(self):
        token = set_correlation_id("manual")
        try:
            self.assertEqual(get_correlation_id(), "manual")
        finally:
            token.var.reset(token)
        self.assertIsNone(get_correlation_id())

    def test_tasks_do_not_share_ids(self):
        """Each asyncio task sees its own correlation ID"""

        async def worker(prefix):
            with CorrelationContext(prefix) as cid:
                await asyncio.sleep(0)
                return cid == get_correlation_id()

        async def run():
            return await asyncio.gather(*(worker(f"w{i}") for i in range(5)))

        self.assertTrue(all(asyncio.run(run())))


if __name__ == "__main__":
    unittest.main()
