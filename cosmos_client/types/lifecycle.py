"""
Transaction lifecycle stages

Built -> Simulated -> Signed -> Broadcast -> Confirmed | Failed

Each stage is an immutable value. A transition function takes the prior
stage and returns the next one, so e.g. confirming something that was never
broadcast is rejected instead of flipping a status flag. A rebuild after a
sequence conflict starts again from the same BuiltTx.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple, Union

from .common import ChainMessage
from .node import TxResponse


class TxStage(Enum):
    """Transaction lifecycle stage"""
    BUILT = "built"
    SIMULATED = "simulated"
    SIGNED = "signed"
    BROADCAST = "broadcast"
    CONFIRMED = "confirmed"
    FAILED = "failed"


@dataclass(frozen=True)
class BuiltTx:
    """Validated messages plus metadata, no fee or signer info yet"""
    chain_id: str
    messages: Tuple[ChainMessage, ...]
    memo: str = ""
    timeout_height: int = 0
    gas_limit: Optional[int] = None
    fee_amount: Optional[int] = None
    gas_price: Optional[float] = None
    sequence_override: Optional[int] = None

    @property
    def stage(self) -> TxStage:
        return TxStage.BUILT

    @property
    def has_explicit_fee(self) -> bool:
        return self.gas_limit is not None and self.fee_amount is not None


@dataclass(frozen=True)
class SimulatedTx:
    """Gas limit and fee fixed (estimated, or taken from the request)"""
    built: BuiltTx
    gas_limit: int
    fee_amount: int
    denom: str
    gas_price: Optional[float] = None
    gas_used: Optional[int] = None

    @property
    def stage(self) -> TxStage:
        return TxStage.SIMULATED

    @property
    def estimated(self) -> bool:
        return self.gas_used is not None


@dataclass(frozen=True)
class SignedTx:
    """Signed bytes bound to one (account_number, sequence) pair"""
    simulated: SimulatedTx
    account_number: int
    sequence: int
    tx_bytes: bytes
    tx_hash: str

    @property
    def stage(self) -> TxStage:
        return TxStage.SIGNED


@dataclass(frozen=True)
class BroadcastTx:
    """Accepted into a node's mempool, awaiting inclusion"""
    signed: SignedTx
    tx_hash: str
    endpoint: Optional[str] = None

    @property
    def stage(self) -> TxStage:
        return TxStage.BROADCAST

    @property
    def sequence(self) -> int:
        return self.signed.sequence


@dataclass(frozen=True)
class ConfirmedTx:
    """Included with result code 0"""
    broadcast: BroadcastTx
    response: TxResponse

    @property
    def stage(self) -> TxStage:
        return TxStage.CONFIRMED


@dataclass(frozen=True)
class FailedTx:
    """Included with a non-zero result code"""
    broadcast: BroadcastTx
    response: TxResponse

    @property
    def stage(self) -> TxStage:
        return TxStage.FAILED


TxState = Union[BuiltTx, SimulatedTx, SignedTx, BroadcastTx, ConfirmedTx, FailedTx]


def _require(state: object, expected: type, transition: str) -> None:
    if not isinstance(state, expected):
        actual = getattr(state, "stage", None)
        raise TypeError(
            f"{transition}() requires a {expected.__name__}, got "
            f"{actual.value if isinstance(actual, TxStage) else type(state).__name__}"
        )


def simulate(
    built: BuiltTx,
    gas_limit: int,
    fee_amount: int,
    denom: str,
    gas_price: Optional[float] = None,
    gas_used: Optional[int] = None,
) -> SimulatedTx:
    """Built -> Simulated"""
    _require(built, BuiltTx, "simulate")
    if gas_limit <= 0:
        raise ValueError(f"gas_limit must be positive, got {gas_limit}")
    return SimulatedTx(
        built=built,
        gas_limit=gas_limit,
        fee_amount=fee_amount,
        denom=denom,
        gas_price=gas_price,
        gas_used=gas_used,
    )


def sign(
    simulated: SimulatedTx,
    account_number: int,
    sequence: int,
    tx_bytes: bytes,
    tx_hash: str,
) -> SignedTx:
    """Simulated -> Signed"""
    _require(simulated, SimulatedTx, "sign")
    return SignedTx(
        simulated=simulated,
        account_number=account_number,
        sequence=sequence,
        tx_bytes=tx_bytes,
        tx_hash=tx_hash,
    )


def mark_broadcast(signed: SignedTx, tx_hash: str, endpoint: Optional[str] = None) -> BroadcastTx:
    """Signed -> Broadcast"""
    _require(signed, SignedTx, "mark_broadcast")
    return BroadcastTx(signed=signed, tx_hash=tx_hash or signed.tx_hash, endpoint=endpoint)


def confirm(broadcast: BroadcastTx, response: TxResponse) -> ConfirmedTx:
    """Broadcast -> Confirmed"""
    _require(broadcast, BroadcastTx, "confirm")
    if response.code != 0:
        raise ValueError(f"Cannot confirm a transaction with result code {response.code}")
    return ConfirmedTx(broadcast=broadcast, response=response)


def fail(broadcast: BroadcastTx, response: TxResponse) -> FailedTx:
    """Broadcast -> Failed"""
    _require(broadcast, BroadcastTx, "fail")
    if response.code == 0:
        raise ValueError("Cannot fail a transaction that executed successfully")
    return FailedTx(broadcast=broadcast, response=response)
