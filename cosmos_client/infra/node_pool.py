"""
Node Pool

Ordered set of node endpoints with health tracking and selection.

Provides:
- Health derived from consecutive failures (Healthy / Degraded / Unreachable)
- Ranking by health, then primary before fallback, then a rotation cursor
- Unreachable nodes are only used when every node is Unreachable, and then
  only once their cooldown has elapsed (or the soonest to expire)
- Failover: callers can exclude the endpoint they just used
- Lag detection: a node reporting a height far below the highest height
  seen so far is treated as failing

The pool does no I/O. Its lock guards counter updates and selection only.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Set, Union

from ..errors import ConfigurationError, TransientError
from ..config import config as global_config
from .retry import RetryDecision, classify

logger = logging.getLogger(__name__)


class HealthState(Enum):
    """Endpoint health"""
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNREACHABLE = "unreachable"


_RANK = {
    HealthState.HEALTHY: 0,
    HealthState.DEGRADED: 1,
    HealthState.UNREACHABLE: 2,
}


def health_for(consecutive_failures: int, degraded_after: int, unreachable_after: int) -> HealthState:
    """Map a consecutive-failure count to a health state"""
    if consecutive_failures >= unreachable_after:
        return HealthState.UNREACHABLE
    if consecutive_failures >= degraded_after:
        return HealthState.DEGRADED
    return HealthState.HEALTHY


@dataclass
class NodePoolConfig:
    """
    Node pool runtime configuration

    Pulls defaults from the global config (cosmos_client.config.NodeConfig).
    """
    degraded_after: int = None
    unreachable_after: int = None
    cooldown_seconds: float = None
    block_lag_allowed: int = None

    def __post_init__(self):
        """Apply defaults from global config for any unset values"""
        if self.degraded_after is None:
            self.degraded_after = global_config.node.degraded_after
        if self.unreachable_after is None:
            self.unreachable_after = global_config.node.unreachable_after
        if self.cooldown_seconds is None:
            self.cooldown_seconds = global_config.node.cooldown_seconds
        if self.block_lag_allowed is None:
            self.block_lag_allowed = global_config.node.block_lag_allowed

        if self.degraded_after < 1:
            raise ConfigurationError.invalid("degraded_after", "must be >= 1")
        if self.unreachable_after <= self.degraded_after:
            raise ConfigurationError.invalid(
                "unreachable_after",
                f"must be greater than degraded_after ({self.degraded_after})",
            )
        if self.cooldown_seconds < 0:
            raise ConfigurationError.invalid("cooldown_seconds", "must be >= 0")
        if self.block_lag_allowed < 0:
            raise ConfigurationError.invalid("block_lag_allowed", "must be >= 0")


class Endpoint:
    """
    One node address plus health bookkeeping

    State is read-only from the outside; only NodePool records outcomes.
    """

    def __init__(
        self,
        url: str,
        is_fallback: bool = False,
        degraded_after: int = 3,
        unreachable_after: int = 6,
    ):
        self.url = url.rstrip("/")
        self.is_fallback = is_fallback
        self._degraded_after = degraded_after
        self._unreachable_after = unreachable_after
        self._consecutive_failures = 0
        self._last_failure_at: Optional[float] = None
        self._last_success_at: Optional[float] = None
        self._total_queries = 0
        self._total_errors = 0
        self._last_error: Optional[str] = None
        self._last_height: Optional[int] = None

    @property
    def state(self) -> HealthState:
        return health_for(self._consecutive_failures, self._degraded_after, self._unreachable_after)

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    @property
    def last_failure_at(self) -> Optional[float]:
        return self._last_failure_at

    @property
    def last_success_at(self) -> Optional[float]:
        return self._last_success_at

    @property
    def total_queries(self) -> int:
        return self._total_queries

    @property
    def total_errors(self) -> int:
        return self._total_errors

    @property
    def last_error(self) -> Optional[str]:
        return self._last_error

    @property
    def last_height(self) -> Optional[int]:
        return self._last_height

    def cooldown_expires_at(self, cooldown_seconds: float) -> float:
        """Monotonic time after which an Unreachable endpoint may be tried again"""
        if self._last_failure_at is None:
            return float("-inf")
        return self._last_failure_at + cooldown_seconds

    def _record_success(self, now: float):
        self._total_queries += 1
        self._consecutive_failures = 0
        self._last_success_at = now

    def _record_failure(self, now: float, error: BaseException, counts_against_node: bool):
        self._total_queries += 1
        self._total_errors += 1
        self._last_error = str(error)
        if counts_against_node:
            self._consecutive_failures += 1
            self._last_failure_at = now

    def __repr__(self) -> str:
        return f"Endpoint({self.url!r}, state={self.state.value}, failures={self._consecutive_failures})"


class NodePool:
    """
    Ranked collection of node endpoints

    Usage:
        pool = NodePool(["https://rpc-a.example.com", "https://rpc-b.example.com"])

        endpoint = pool.select_endpoint()
        try:
            ...
            pool.report_outcome(endpoint)
        except Exception as e:
            pool.report_outcome(endpoint, e)

        # Failover: avoid the node that just failed
        endpoint = pool.select_endpoint(exclude=[endpoint])
    """

    def __init__(
        self,
        urls: Union[str, Iterable[str]],
        fallback_urls: Optional[Iterable[str]] = None,
        config: Optional[NodePoolConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize node pool

        Args:
            urls: Primary node URL or list of URLs
            fallback_urls: Nodes ranked after primaries of equal health
            config: Thresholds and cooldown
            clock: Monotonic time source (injectable for tests)
        """
        self._config = config or NodePoolConfig()
        self._clock = clock
        self._lock = threading.Lock()
        self._endpoints: List[Endpoint] = []
        self._cursor = 0
        self._highest_height: Optional[int] = None

        primary = [urls] if isinstance(urls, str) else list(urls)
        for url in primary:
            self._add(url, is_fallback=False)
        for url in fallback_urls or []:
            self._add(url, is_fallback=True)

        if not self._endpoints:
            raise ConfigurationError.missing("node endpoint (NODE_URLS)")

    @property
    def config(self) -> NodePoolConfig:
        return self._config

    @property
    def endpoints(self) -> List[Endpoint]:
        """Snapshot of endpoints in configured order"""
        with self._lock:
            return list(self._endpoints)

    def __len__(self) -> int:
        return len(self._endpoints)

    def _add(self, url: str, is_fallback: bool) -> Endpoint:
        url = url.rstrip("/")
        for existing in self._endpoints:
            if existing.url == url:
                return existing
        endpoint = Endpoint(
            url,
            is_fallback=is_fallback,
            degraded_after=self._config.degraded_after,
            unreachable_after=self._config.unreachable_after,
        )
        self._endpoints.append(endpoint)
        return endpoint

    def add_endpoint(self, url: str, is_fallback: bool = False) -> Endpoint:
        """Add an endpoint at runtime (returns the existing one for a known URL)"""
        with self._lock:
            endpoint = self._add(url, is_fallback)
        logger.info(f"Node pool: added {'fallback ' if is_fallback else ''}endpoint {endpoint.url}")
        return endpoint

    def remove_endpoint(self, endpoint: Union[Endpoint, str]) -> bool:
        """Remove an endpoint; the last remaining endpoint cannot be removed"""
        url = self._url_of(endpoint)
        with self._lock:
            remaining = [e for e in self._endpoints if e.url != url]
            if len(remaining) == len(self._endpoints):
                return False
            if not remaining:
                raise ConfigurationError.invalid("endpoints", "cannot remove the last node endpoint")
            self._endpoints = remaining
            self._cursor %= len(self._endpoints)
        logger.info(f"Node pool: removed endpoint {url}")
        return True

    @staticmethod
    def _url_of(endpoint: Union[Endpoint, str]) -> str:
        return endpoint.url if isinstance(endpoint, Endpoint) else endpoint.rstrip("/")

    def _eligible(self, endpoint: Endpoint, now: float) -> bool:
        if endpoint.state is not HealthState.UNREACHABLE:
            return True
        return now >= endpoint.cooldown_expires_at(self._config.cooldown_seconds)

    def _pick(self, candidates: List[Endpoint], excluded: Set[str]) -> Endpoint:
        """Best ranked candidate, honouring ``excluded`` while anything else is left"""
        preferred = [e for e in candidates if e.url not in excluded] or candidates

        best = min((_RANK[e.state], e.is_fallback) for e in preferred)
        tied = [e for e in preferred if (_RANK[e.state], e.is_fallback) == best]

        # Rotate among equally ranked endpoints
        n = len(self._endpoints)
        positions = {id(e): i for i, e in enumerate(self._endpoints)}
        choice = min(tied, key=lambda e: (positions[id(e)] - self._cursor) % n)
        self._cursor = (positions[id(choice)] + 1) % n
        return choice

    def select_endpoint(self, exclude: Iterable[Union[Endpoint, str]] = ()) -> Endpoint:
        """
        Select the best endpoint for the next call.

        An Unreachable endpoint is returned only when every endpoint is
        Unreachable. In that case one whose cooldown has elapsed is tried,
        and if all are still cooling down the one whose cooldown expires
        soonest is returned rather than failing.

        Args:
            exclude: Endpoints to avoid (e.g. the one that just failed).
                     Ignored when no other candidate of the same tier is left.

        Returns:
            Selected endpoint
        """
        excluded = {self._url_of(e) for e in exclude}
        with self._lock:
            now = self._clock()
            usable = [e for e in self._endpoints if e.state is not HealthState.UNREACHABLE]
            if usable:
                return self._pick(usable, excluded)

            cooled = [e for e in self._endpoints if self._eligible(e, now)]
            if cooled:
                choice = self._pick(cooled, excluded)
                logger.info(f"Node pool: all endpoints unreachable, retrying {choice.url} after cooldown")
            else:
                cooldown = self._config.cooldown_seconds
                choice = min(self._endpoints, key=lambda e: e.cooldown_expires_at(cooldown))
                logger.warning(
                    f"Node pool: all endpoints unreachable, using {choice.url} "
                    f"(cooldown ends in {choice.cooldown_expires_at(cooldown) - now:.1f}s)"
                )
            return choice

    def ranked_endpoints(self) -> List[Endpoint]:
        """All endpoints, best first (cooling-down Unreachable ones last)"""
        with self._lock:
            now = self._clock()
            return sorted(
                self._endpoints,
                key=lambda e: (not self._eligible(e, now), _RANK[e.state], e.is_fallback),
            )

    def report_outcome(self, endpoint: Union[Endpoint, str], error: Optional[BaseException] = None):
        """
        Record the outcome of a call made against ``endpoint``.

        Success resets the failure counter (back to Healthy from any state).
        A retryable error counts as a consecutive failure. A fatal error
        means the node answered, so it is recorded without counting against
        the node's health.
        """
        url = self._url_of(endpoint)
        with self._lock:
            target = next((e for e in self._endpoints if e.url == url), None)
            if target is None:
                return
            before = target.state
            now = self._clock()
            if error is None:
                target._record_success(now)
            else:
                counts = classify(error) is RetryDecision.RETRYABLE
                target._record_failure(now, error, counts)
            after = target.state
            failures = target.consecutive_failures

        if before is not after:
            level = logging.INFO if after is HealthState.HEALTHY else logging.WARNING
            logger.log(level, f"Node {url}: {before.value} -> {after.value} (consecutive failures: {failures})")
        elif error is not None:
            logger.debug(f"Node {url} error ({failures} consecutive): {error}")

    @property
    def highest_height(self) -> Optional[int]:
        """Highest block height any endpoint has reported"""
        return self._highest_height

    def observe_height(self, endpoint: Union[Endpoint, str], height: int):
        """
        Record the block height a node answered at.

        Heights move the pool's high-water mark forward. A node answering
        more than ``block_lag_allowed`` blocks behind it has stopped syncing.

        Raises:
            TransientError: NODE_LAGGING, so the caller's report_outcome
                counts it against the node and fails over
        """
        url = self._url_of(endpoint)
        with self._lock:
            target = next((e for e in self._endpoints if e.url == url), None)
            if target is not None:
                target._last_height = height
            highest = self._highest_height
            if highest is None or height > highest:
                self._highest_height = height
                return
            lag_allowed = self._config.block_lag_allowed

        if highest - height > lag_allowed:
            logger.warning(f"Node {url}: height {height} is {highest - height} blocks behind {highest}")
            raise TransientError.lagging(url, height, highest, lag_allowed)

    def health_report(self) -> List[Dict[str, object]]:
        """Per-endpoint health summary, in configured order"""
        with self._lock:
            now = self._clock()
            report = []
            for e in self._endpoints:
                report.append({
                    "url": e.url,
                    "fallback": e.is_fallback,
                    "state": e.state.value,
                    "consecutive_failures": e.consecutive_failures,
                    "total_queries": e.total_queries,
                    "total_errors": e.total_errors,
                    "last_error": e.last_error,
                    "last_height": e.last_height,
                    "seconds_since_failure": None if e.last_failure_at is None else now - e.last_failure_at,
                    "seconds_since_success": None if e.last_success_at is None else now - e.last_success_at,
                })
            return report
