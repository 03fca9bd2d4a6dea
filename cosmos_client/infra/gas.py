"""
Gas Estimator

Simulates a transaction through the Query Executor, applies a safety
multiplier to the reported gas and derives the fee. A failed simulation is
propagated as-is; no fallback gas value is ever guessed.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from .query import QueryExecutor
from .transport import NodeTransport
from .tx_builder import TransactionBuilder
from ..types import BuiltTx, SimulationResult
from ..errors import ConfigurationError, FatalError
from ..config import config as global_config

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GasEstimate:
    """Simulated gas, padded limit and resulting fee"""
    gas_used: int
    gas_limit: int
    gas_price: float
    denom: str
    fee_amount: int

    def __str__(self) -> str:
        return f"GasEstimate(used={self.gas_used}, limit={self.gas_limit}, fee={self.fee_amount}{self.denom})"


@dataclass
class GasEstimatorConfig:
    """
    Gas estimator runtime configuration

    Pulls defaults from the global config (cosmos_client.config.GasConfig).
    """
    multiplier: float = None
    gas_price: float = None
    max_gas_price: float = None
    denom: str = None
    fee_escalation_attempts: int = None

    def __post_init__(self):
        """Apply defaults from global config for any unset values"""
        if self.multiplier is None:
            self.multiplier = global_config.gas.multiplier
        if self.gas_price is None:
            self.gas_price = global_config.gas.gas_price
        if self.max_gas_price is None:
            self.max_gas_price = global_config.gas.max_gas_price
        if self.denom is None:
            self.denom = global_config.gas.denom
        if self.fee_escalation_attempts is None:
            self.fee_escalation_attempts = global_config.gas.fee_escalation_attempts

        if self.multiplier <= 1.0:
            raise ConfigurationError.invalid("gas multiplier", f"must be > 1.0, got {self.multiplier}")
        if self.gas_price < 0:
            raise ConfigurationError.invalid("gas price", f"must be >= 0, got {self.gas_price}")
        if self.max_gas_price < self.gas_price:
            self.max_gas_price = self.gas_price


def _ceil_product(a, b) -> int:
    # Decimal keeps e.g. 100000 * 1.3 at exactly 130000
    return int(math.ceil(Decimal(str(a)) * Decimal(str(b))))


class GasEstimator:
    """
    Simulation-based gas estimation

    Usage:
        estimator = GasEstimator(executor, transport, builder)
        estimate = await estimator.estimate(built)
        print(estimate.gas_limit, estimate.fee_amount)
    """

    def __init__(
        self,
        executor: QueryExecutor,
        transport: NodeTransport,
        builder: TransactionBuilder,
        config: Optional[GasEstimatorConfig] = None,
    ):
        self._executor = executor
        self._transport = transport
        self._builder = builder
        self._config = config or GasEstimatorConfig()

    @property
    def config(self) -> GasEstimatorConfig:
        return self._config

    def gas_limit_for(self, gas_used: int) -> int:
        """Pad simulated gas with the configured multiplier"""
        return _ceil_product(gas_used, self._config.multiplier)

    def fee_for(self, gas_limit: int, gas_price: Optional[float] = None) -> int:
        """Fee amount for a gas limit: ceil(gas_limit * gas_price)"""
        price = self._config.gas_price if gas_price is None else gas_price
        return _ceil_product(gas_limit, price)

    def escalated_gas_price(self, attempt: int) -> float:
        """
        Gas price for the n-th insufficient-fee retry.

        Steps linearly from gas_price (attempt 0) to max_gas_price (attempt
        fee_escalation_attempts) and stays there.
        """
        low = self._config.gas_price
        high = self._config.max_gas_price
        steps = max(1, self._config.fee_escalation_attempts)
        if attempt <= 0:
            return low
        return min(high, low + (high - low) / steps * attempt)

    async def simulate(self, sim_bytes: bytes) -> SimulationResult:
        """Run a simulation through the executor (pool + retry)"""
        return await self._executor.execute(
            lambda ep: self._transport.simulate(ep.url, sim_bytes, self._executor.timeout),
            "simulate",
        )

    async def estimate(self, built: BuiltTx, gas_price: Optional[float] = None) -> GasEstimate:
        """
        Estimate gas limit and fee for a built transaction

        Args:
            built: Transaction in the Built stage
            gas_price: Price override (defaults to the request's, then the config's)

        Returns:
            GasEstimate

        Raises:
            FatalError: Simulation reverted or returned no usable gas figure
            RetriesExhausted: No node could run the simulation
        """
        price = gas_price if gas_price is not None else built.gas_price
        if price is None:
            price = self._config.gas_price

        result = await self.simulate(self._builder.simulation_bytes(built))
        if result.gas_used <= 0:
            raise FatalError.invalid_response(f"simulation reported gas_used={result.gas_used}")

        gas_limit = self.gas_limit_for(result.gas_used)
        estimate = GasEstimate(
            gas_used=result.gas_used,
            gas_limit=gas_limit,
            gas_price=price,
            denom=self._config.denom,
            fee_amount=self.fee_for(gas_limit, price),
        )
        logger.info(f"Gas estimated: {estimate} (multiplier={self._config.multiplier})")
        return estimate
