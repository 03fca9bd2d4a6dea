"""
Infrastructure layer for the Cosmos client

Provides:
- NodePool: Endpoint health tracking and selection
- RetryPolicy: Error classification and backoff
- QueryExecutor: Pool-aware node calls with retry and failover
- AccountSequencer: Per-account sequence allocation
- TransactionBuilder: Transaction assembly and encoding
- GasEstimator: Simulation-based gas and fee estimation
- Broadcaster: Sign, submit and confirm
- RestNodeTransport: Node wire protocol over httpx
"""

from .node_pool import Endpoint, HealthState, NodePool, NodePoolConfig, health_for
from .retry import (
    RetryDecision,
    RetryPolicy,
    classify,
    is_retryable,
    CorrelationContext,
    generate_correlation_id,
    get_correlation_id,
    set_correlation_id,
)
from .query import QueryExecutor
from .sequencer import AccountSequencer
from .codec import MessageCodec, JsonTxCodec
from .tx_builder import TransactionBuilder, TransactionRequest, UnsignedTx
from .gas import GasEstimator, GasEstimate, GasEstimatorConfig
from .signer import Signer, SignResult, LocalSigner, sign_with
from .transport import NodeTransport, RestNodeTransport
from .broadcaster import Broadcaster, BroadcasterConfig

__all__ = [
    # Node pool
    "Endpoint",
    "HealthState",
    "NodePool",
    "NodePoolConfig",
    "health_for",
    # Retry
    "RetryDecision",
    "RetryPolicy",
    "classify",
    "is_retryable",
    "CorrelationContext",
    "generate_correlation_id",
    "get_correlation_id",
    "set_correlation_id",
    # Execution
    "QueryExecutor",
    "AccountSequencer",
    # Transactions
    "MessageCodec",
    "JsonTxCodec",
    "TransactionBuilder",
    "TransactionRequest",
    "UnsignedTx",
    "GasEstimator",
    "GasEstimate",
    "GasEstimatorConfig",
    "Signer",
    "SignResult",
    "LocalSigner",
    "sign_with",
    "Broadcaster",
    "BroadcasterConfig",
    # Transport
    "NodeTransport",
    "RestNodeTransport",
]
