"""
Query Executor

Runs one logical node call against the pool with a deadline per attempt,
retry/backoff on transient failures and failover to a different endpoint.
"""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Awaitable, Callable, Optional, TypeVar

from .node_pool import Endpoint, NodePool
from .retry import RetryDecision, RetryPolicy, classify, _log_with_correlation
from ..errors import CosmosClientError, RetriesExhausted, TransientError
from ..config import config as global_config

logger = logging.getLogger(__name__)

T = TypeVar("T")

Query = Callable[[Endpoint], Awaitable[T]]


class QueryExecutor:
    """
    Pool-aware executor for node calls

    Usage:
        executor = QueryExecutor(pool)

        info = await executor.execute(
            lambda ep: transport.get_account(ep.url, address, executor.timeout),
            "get_account",
        )
    """

    def __init__(
        self,
        pool: NodePool,
        policy: Optional[RetryPolicy] = None,
        timeout: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ):
        """
        Initialize executor

        Args:
            pool: Node pool to select endpoints from
            policy: Retry bounds and backoff (defaults from config)
            timeout: Deadline per attempt in seconds (defaults from config)
            sleep: Awaitable sleep (injectable for tests)
            rng: Random source for jitter
        """
        self._pool = pool
        self._policy = policy or RetryPolicy()
        self._timeout = timeout if timeout is not None else global_config.node.request_timeout
        self._sleep = sleep
        self._rng = rng

    @property
    def pool(self) -> NodePool:
        return self._pool

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    @property
    def timeout(self) -> float:
        return self._timeout

    async def _attempt(self, query: Query, endpoint: Endpoint):
        """Run the query once under the deadline; timeout becomes TransientError"""
        try:
            return await asyncio.wait_for(query(endpoint), timeout=self._timeout)
        except asyncio.TimeoutError as e:
            raise TransientError.timeout(endpoint.url, self._timeout, e)

    async def execute(self, query: Query, operation: str = "query") -> T:
        """
        Execute query with retry and failover.

        Args:
            query: Coroutine function taking the selected Endpoint
            operation: Name for logging and error context

        Returns:
            The query's result from the first successful attempt

        Raises:
            Exception: The first fatal error, unchanged
            RetriesExhausted: Attempt bound reached on retryable errors
        """
        max_attempts = self._policy.max_attempts
        last_error: Optional[BaseException] = None
        last_endpoint: Optional[Endpoint] = None

        for attempt in range(1, max_attempts + 1):
            endpoint = self._pool.select_endpoint(exclude=[last_endpoint] if last_endpoint else ())
            try:
                result = await self._attempt(query, endpoint)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                error = e
            else:
                self._pool.report_outcome(endpoint)
                if attempt > 1:
                    _log_with_correlation(
                        logging.INFO,
                        f"Succeeded on {endpoint.url} after {attempt} attempts",
                        operation,
                        attempt,
                        max_attempts,
                        log=logger,
                    )
                return result

            self._pool.report_outcome(endpoint, error)
            last_error, last_endpoint = error, endpoint
            if isinstance(error, CosmosClientError):
                error.details.setdefault("endpoint", endpoint.url)
                error.details["attempts"] = attempt

            if classify(error) is RetryDecision.FATAL:
                _log_with_correlation(
                    logging.ERROR,
                    f"Fatal error on {endpoint.url}: {error}",
                    operation,
                    attempt,
                    max_attempts,
                    log=logger,
                    error_type="fatal",
                )
                raise error

            if not self._policy.attempts_remaining(attempt):
                break

            delay = self._policy.next_delay(attempt, self._rng)
            _log_with_correlation(
                logging.WARNING,
                f"Retryable error on {endpoint.url}: {error} (retrying in {delay:.2f}s)",
                operation,
                attempt,
                max_attempts,
                log=logger,
                error_type="retryable",
            )
            await self._sleep(delay)

        exhausted = RetriesExhausted.after(
            operation,
            max_attempts,
            last_error=last_error,
            last_endpoint=last_endpoint.url if last_endpoint else None,
        )
        _log_with_correlation(logging.ERROR, exhausted.message, operation, max_attempts, max_attempts, log=logger)
        raise exhausted from last_error

    async def execute_on_each(self, query: Query, operation: str = "query") -> Optional[T]:
        """
        Try every endpoint once, best ranked first.

        Returns the first non-None result, or None if every node answered
        None. Used for lookups where one stale node should not hide a
        result another node already has.

        Raises:
            Exception: The first fatal error, unchanged
            RetriesExhausted: Every endpoint failed with a retryable error
        """
        endpoints = self._pool.ranked_endpoints()
        last_error: Optional[BaseException] = None
        last_endpoint: Optional[Endpoint] = None
        answered = False

        for endpoint in endpoints:
            try:
                result = await self._attempt(query, endpoint)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self._pool.report_outcome(endpoint, e)
                if isinstance(e, CosmosClientError):
                    e.details.setdefault("endpoint", endpoint.url)
                if classify(e) is RetryDecision.FATAL:
                    logger.error(f"[{operation}] fatal error on {endpoint.url}: {e}")
                    raise
                last_error, last_endpoint = e, endpoint
                logger.warning(f"[{operation}] {endpoint.url} failed: {e}")
                continue

            self._pool.report_outcome(endpoint)
            answered = True
            if result is not None:
                return result

        if answered:
            return None
        raise RetriesExhausted.after(
            operation,
            len(endpoints),
            last_error=last_error,
            last_endpoint=last_endpoint.url if last_endpoint else None,
        ) from last_error
