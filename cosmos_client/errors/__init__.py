"""
Error definitions for the Cosmos client
"""

from .exceptions import (
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
    parse_expected_sequence,
    is_sequence_mismatch,
    is_already_in_mempool,
)

__all__ = [
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
    "parse_expected_sequence",
    "is_sequence_mismatch",
    "is_already_in_mempool",
]
