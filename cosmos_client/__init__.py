"""
Cosmos client - node-pool and transaction-lifecycle engine

Reliable queries and transaction submission against a set of
independently operated Cosmos SDK nodes.

Usage:
    from cosmos_client import CosmosClient, TransactionRequest, ChainMessage

    async with CosmosClient(["https://lcd.example.com"], chain_id="cosmoshub-4") as client:
        outcome = await client.broadcast_and_confirm(
            TransactionRequest(messages=[ChainMessage(type_url, encoded)]),
            signer,
        )
"""

from .client import CosmosClient
from .config import Config, config, get_config, reload_config, setup_logging, enable_file_logging
from .infra import (
    AccountSequencer,
    Broadcaster,
    BroadcasterConfig,
    Endpoint,
    GasEstimate,
    GasEstimator,
    GasEstimatorConfig,
    HealthState,
    JsonTxCodec,
    LocalSigner,
    MessageCodec,
    NodePool,
    NodePoolConfig,
    NodeTransport,
    QueryExecutor,
    RestNodeTransport,
    RetryDecision,
    RetryPolicy,
    Signer,
    SignResult,
    TransactionBuilder,
    TransactionRequest,
    classify,
)
from .types import (
    AccountInfo,
    ChainMessage,
    Coin,
    TxOutcome,
    TxResponse,
    TxStage,
)
from .errors import (
    ErrorCode,
    CosmosClientError,
    TransientError,
    FatalError,
    ChainError,
    SequenceConflict,
    RetriesExhausted,
    OnChainExecutionFailure,
    SignerError,
    ConfigurationError,
)

__version__ = "0.1.0"

__all__ = [
    # Client
    "CosmosClient",
    # Config
    "Config",
    "config",
    "get_config",
    "reload_config",
    "setup_logging",
    "enable_file_logging",
    # Infrastructure
    "AccountSequencer",
    "Broadcaster",
    "BroadcasterConfig",
    "Endpoint",
    "GasEstimate",
    "GasEstimator",
    "GasEstimatorConfig",
    "HealthState",
    "JsonTxCodec",
    "LocalSigner",
    "MessageCodec",
    "NodePool",
    "NodePoolConfig",
    "NodeTransport",
    "QueryExecutor",
    "RestNodeTransport",
    "RetryDecision",
    "RetryPolicy",
    "Signer",
    "SignResult",
    "TransactionBuilder",
    "TransactionRequest",
    "classify",
    # Types
    "AccountInfo",
    "ChainMessage",
    "Coin",
    "TxOutcome",
    "TxResponse",
    "TxStage",
    # Errors
    "ErrorCode",
    "CosmosClientError",
    "TransientError",
    "FatalError",
    "ChainError",
    "SequenceConflict",
    "RetriesExhausted",
    "OnChainExecutionFailure",
    "SignerError",
    "ConfigurationError",
]
