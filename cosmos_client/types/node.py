"""
Decoded node responses

Only the handful of fields the client reacts to are extracted; everything
else stays in ``raw``.
"""

from dataclasses import dataclass, field
from typing import Optional


@dataclass(frozen=True)
class AccountInfo:
    """Account number and current on-chain sequence"""
    address: str
    account_number: int
    sequence: int


@dataclass(frozen=True)
class SimulationResult:
    """Gas figures returned by a simulate call"""
    gas_used: int
    gas_wanted: int = 0
    raw: dict = field(default_factory=dict, compare=False)


@dataclass(frozen=True)
class BroadcastResponse:
    """
    Synchronous broadcast (CheckTx) result

    A non-zero code means the node refused the transaction before it
    entered the mempool.
    """
    tx_hash: str
    code: int = 0
    codespace: str = ""
    raw_log: str = ""
    raw: dict = field(default_factory=dict, compare=False)

    @property
    def accepted(self) -> bool:
        return self.code == 0


@dataclass(frozen=True)
class TxResponse:
    """Included transaction as returned by get-tx-by-hash"""
    tx_hash: str
    height: int
    code: int = 0
    codespace: str = ""
    raw_log: str = ""
    gas_wanted: Optional[int] = None
    gas_used: Optional[int] = None
    raw: dict = field(default_factory=dict, compare=False)

    @property
    def succeeded(self) -> bool:
        return self.code == 0
