"""
Result type definitions for submitted transactions
"""

from dataclasses import dataclass
from typing import Optional

from .lifecycle import ConfirmedTx, TxStage


@dataclass
class TxOutcome:
    """
    Confirmed transaction result

    Attributes:
        tx_hash: Transaction hash (upper-case hex)
        height: Block height the transaction was included at
        raw_log: Execution log reported by the chain
        gas_wanted: Gas limit the transaction was signed with
        gas_used: Gas actually consumed
        fee_amount: Fee paid, in fee_denom
        fee_denom: Fee denomination
        account_number: Signer account number
        sequence: Sequence number the transaction consumed
        attempts: Signing/broadcast cycles needed (rebuilds included)
        endpoint: Node that accepted the broadcast
    """
    tx_hash: str
    height: int
    raw_log: str = ""
    gas_wanted: Optional[int] = None
    gas_used: Optional[int] = None
    fee_amount: Optional[int] = None
    fee_denom: Optional[str] = None
    account_number: Optional[int] = None
    sequence: Optional[int] = None
    attempts: int = 1
    endpoint: Optional[str] = None

    @property
    def stage(self) -> TxStage:
        return TxStage.CONFIRMED

    @property
    def is_success(self) -> bool:
        return True

    @classmethod
    def from_confirmed(cls, confirmed: ConfirmedTx, attempts: int = 1) -> "TxOutcome":
        """Create outcome from the final lifecycle stage"""
        broadcast = confirmed.broadcast
        signed = broadcast.signed
        simulated = signed.simulated
        response = confirmed.response
        return cls(
            tx_hash=broadcast.tx_hash,
            height=response.height,
            raw_log=response.raw_log,
            gas_wanted=response.gas_wanted if response.gas_wanted is not None else simulated.gas_limit,
            gas_used=response.gas_used,
            fee_amount=simulated.fee_amount,
            fee_denom=simulated.denom,
            account_number=signed.account_number,
            sequence=signed.sequence,
            attempts=attempts,
            endpoint=broadcast.endpoint,
        )

    def __str__(self) -> str:
        return f"TxOutcome(CONFIRMED, {self.tx_hash[:16]}..., height={self.height})"
