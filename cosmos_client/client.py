"""
CosmosClient - Unified entry point for chain operations

Wires the node pool, executor, sequencer, gas estimator, builder and
broadcaster together from configuration or explicit arguments.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional, Union

from .infra import (
    AccountSequencer,
    Broadcaster,
    BroadcasterConfig,
    GasEstimate,
    GasEstimator,
    GasEstimatorConfig,
    MessageCodec,
    NodePool,
    NodePoolConfig,
    NodeTransport,
    QueryExecutor,
    RestNodeTransport,
    RetryPolicy,
    Signer,
    TransactionBuilder,
    TransactionRequest,
)
from .types import AccountInfo, ChainMessage, SimulationResult, TxOutcome, TxResponse
from .config import config as global_config

logger = logging.getLogger(__name__)


class CosmosClient:
    """
    Unified chain client

    Usage:
        async with CosmosClient(
            ["https://lcd-a.example.com", "https://lcd-b.example.com"],
            chain_id="cosmoshub-4",
        ) as client:
            info = await client.get_account("cosmos1...")
            outcome = await client.broadcast_and_confirm(
                TransactionRequest(messages=[msg]),
                signer,
            )
    """

    def __init__(
        self,
        node_urls: Optional[Union[str, List[str]]] = None,
        chain_id: Optional[str] = None,
        fallback_urls: Optional[Iterable[str]] = None,
        transport: Optional[NodeTransport] = None,
        codec: Optional[MessageCodec] = None,
        pool_config: Optional[NodePoolConfig] = None,
        retry_policy: Optional[RetryPolicy] = None,
        gas_config: Optional[GasEstimatorConfig] = None,
        broadcaster_config: Optional[BroadcasterConfig] = None,
        request_timeout: Optional[float] = None,
    ):
        """
        Initialize CosmosClient

        Args:
            node_urls: Node URL or list of URLs (defaults to NODE_URLS)
            chain_id: Chain ID (defaults to CHAIN_ID)
            fallback_urls: Nodes used after primaries (defaults to NODE_FALLBACK_URLS)
            transport: Node transport (defaults to RestNodeTransport)
            codec: Transaction codec (defaults to JsonTxCodec)
            pool_config: Health thresholds and cooldown
            retry_policy: Retry bounds and backoff
            gas_config: Gas multiplier and prices
            broadcaster_config: Confirmation polling settings
            request_timeout: Deadline per node call in seconds
        """
        if node_urls is None:
            node_urls = global_config.node.urls
        if fallback_urls is None:
            fallback_urls = global_config.node.fallback_urls

        self._pool = NodePool(node_urls, fallback_urls=fallback_urls, config=pool_config)
        self._owns_transport = transport is None
        self._transport = transport or RestNodeTransport()
        if isinstance(self._transport, RestNodeTransport) and self._transport.height_observer is None:
            self._transport.height_observer = self._pool.observe_height
        self._executor = QueryExecutor(self._pool, policy=retry_policy, timeout=request_timeout)
        self._builder = TransactionBuilder(
            chain_id,
            codec=codec,
            denom=gas_config.denom if gas_config else None,
        )
        self._estimator = GasEstimator(self._executor, self._transport, self._builder, config=gas_config)
        self._sequencer = AccountSequencer(self._builder.chain_id, self._fetch_account)
        self._broadcaster = Broadcaster(
            self._executor,
            self._transport,
            self._sequencer,
            self._builder,
            self._estimator,
            config=broadcaster_config,
        )

    @property
    def chain_id(self) -> str:
        return self._builder.chain_id

    @property
    def pool(self) -> NodePool:
        return self._pool

    @property
    def executor(self) -> QueryExecutor:
        return self._executor

    @property
    def sequencer(self) -> AccountSequencer:
        return self._sequencer

    @property
    def estimator(self) -> GasEstimator:
        return self._estimator

    @property
    def builder(self) -> TransactionBuilder:
        return self._builder

    @property
    def broadcaster(self) -> Broadcaster:
        return self._broadcaster

    async def _fetch_account(self, address: str) -> AccountInfo:
        return await self.get_account(address)

    async def get_account(self, address: str) -> AccountInfo:
        """Account number and current on-chain sequence"""
        return await self._executor.execute(
            lambda ep: self._transport.get_account(ep.url, address, self._executor.timeout),
            "get_account",
        )

    async def latest_height(self) -> int:
        """Latest block height; a node far behind the others is failed over"""
        async def query(ep):
            height = await self._transport.latest_height(ep.url, self._executor.timeout)
            self._pool.observe_height(ep, height)
            return height

        return await self._executor.execute(query, "latest_height")

    async def simulate(self, messages: List[ChainMessage], memo: Optional[str] = None) -> SimulationResult:
        """Raw simulation result for a set of messages"""
        built = self._builder.build(TransactionRequest(messages=messages, memo=memo))
        return await self._estimator.simulate(self._builder.simulation_bytes(built))

    async def estimate_gas(self, request: TransactionRequest) -> GasEstimate:
        return await self._estimator.estimate(self._builder.build(request))

    async def get_transaction(self, tx_hash: str, all_nodes: bool = False) -> Optional[TxResponse]:
        """
        Look up a transaction by hash

        Args:
            tx_hash: Transaction hash (hex)
            all_nodes: Ask every node in turn until one knows the transaction

        Returns:
            TxResponse, or None if not found
        """
        tx_hash = tx_hash.upper()
        query = lambda ep: self._transport.get_tx(ep.url, tx_hash, self._executor.timeout)
        if all_nodes:
            return await self._executor.execute_on_each(query, "get_transaction")
        return await self._executor.execute(query, "get_transaction")

    async def broadcast_and_confirm(self, request: TransactionRequest, signer: Signer) -> TxOutcome:
        """Sign, broadcast and wait for inclusion (see Broadcaster)"""
        return await self._broadcaster.broadcast_and_confirm(request, signer)

    def node_health_report(self) -> List[Dict[str, object]]:
        return self._pool.health_report()

    async def close(self):
        """Release the transport if this client created it"""
        if self._owns_transport and isinstance(self._transport, RestNodeTransport):
            await self._transport.aclose()

    async def __aenter__(self) -> "CosmosClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
