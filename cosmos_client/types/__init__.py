"""
Type definitions for the Cosmos client
"""

from .common import ChainMessage, Coin
from .node import AccountInfo, SimulationResult, BroadcastResponse, TxResponse
from .lifecycle import (
    TxStage,
    TxState,
    BuiltTx,
    SimulatedTx,
    SignedTx,
    BroadcastTx,
    ConfirmedTx,
    FailedTx,
)
from .result import TxOutcome

__all__ = [
    # Common types
    "ChainMessage",
    "Coin",
    # Node responses
    "AccountInfo",
    "SimulationResult",
    "BroadcastResponse",
    "TxResponse",
    # Lifecycle
    "TxStage",
    "TxState",
    "BuiltTx",
    "SimulatedTx",
    "SignedTx",
    "BroadcastTx",
    "ConfirmedTx",
    "FailedTx",
    "TxOutcome",
]
