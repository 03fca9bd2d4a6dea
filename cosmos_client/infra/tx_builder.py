"""
Transaction builder

Provides utilities for:
- Validating a transaction request into a BuiltTx
- Assembling the unsigned transaction (fee, gas, signer info)
- Producing sign-doc bytes, signed bytes and the transaction hash
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from .codec import MessageCodec, JsonTxCodec
from ..types import ChainMessage, BuiltTx, SimulatedTx
from ..errors import ConfigurationError, FatalError, ErrorCode
from ..config import config as global_config

logger = logging.getLogger(__name__)


@dataclass
class TransactionRequest:
    """
    What the caller wants submitted

    Attributes:
        messages: Ordered chain messages
        memo: Transaction memo (defaults to the configured memo)
        gas_limit: Explicit gas limit (skips simulation when fee_amount is also set)
        fee_amount: Explicit fee in the configured denom
        gas_price: Gas price override for auto-estimated fees
        sequence_override: Use this sequence instead of reserving one
        timeout_height: Block height after which the tx is invalid (0 = none)
    """
    messages: List[ChainMessage] = field(default_factory=list)
    memo: Optional[str] = None
    gas_limit: Optional[int] = None
    fee_amount: Optional[int] = None
    gas_price: Optional[float] = None
    sequence_override: Optional[int] = None
    timeout_height: int = 0


@dataclass(frozen=True)
class UnsignedTx:
    """
    Fully assembled transaction, ready for the codec

    Signer fields are None for the simulation form.
    """
    chain_id: str
    messages: Tuple[ChainMessage, ...]
    memo: str
    timeout_height: int
    gas_limit: int
    fee_amount: int
    fee_denom: str
    account_number: Optional[int] = None
    sequence: Optional[int] = None
    public_key: Optional[bytes] = None


class TransactionBuilder:
    """
    Transaction assembly

    Usage:
        builder = TransactionBuilder("cosmoshub-4", codec=JsonTxCodec())

        built = builder.build(TransactionRequest(messages=[msg]))
        sim_bytes = builder.simulation_bytes(built)
        unsigned = builder.assemble(simulated, public_key, account_number, sequence)
        signature = signer.sign(builder.sign_bytes(unsigned), signer.key_id).signature
        tx_bytes = builder.encode_signed(unsigned, signature)
    """

    def __init__(
        self,
        chain_id: Optional[str] = None,
        codec: Optional[MessageCodec] = None,
        default_memo: Optional[str] = None,
        denom: Optional[str] = None,
    ):
        self._chain_id = chain_id if chain_id is not None else global_config.tx.chain_id
        if not self._chain_id:
            raise ConfigurationError.missing("chain id (CHAIN_ID)")
        self._codec = codec or JsonTxCodec()
        self._default_memo = default_memo if default_memo is not None else global_config.tx.default_memo
        self._denom = denom or global_config.gas.denom

    @property
    def chain_id(self) -> str:
        return self._chain_id

    @property
    def denom(self) -> str:
        return self._denom

    def build(self, request: TransactionRequest) -> BuiltTx:
        """
        Validate a request into the Built stage

        Raises:
            FatalError: Empty message list or invalid explicit gas/fee values
        """
        messages: Sequence[ChainMessage] = tuple(request.messages)
        if not messages:
            raise FatalError("Transaction has no messages", ErrorCode.TX_INVALID)
        if request.gas_limit is not None and request.gas_limit <= 0:
            raise FatalError(f"Invalid gas limit: {request.gas_limit}", ErrorCode.TX_INVALID)
        if request.fee_amount is not None and request.fee_amount < 0:
            raise FatalError(f"Invalid fee amount: {request.fee_amount}", ErrorCode.TX_INVALID)
        if request.sequence_override is not None and request.sequence_override < 0:
            raise FatalError(f"Invalid sequence override: {request.sequence_override}", ErrorCode.TX_INVALID)

        built = BuiltTx(
            chain_id=self._chain_id,
            messages=messages,
            memo=request.memo if request.memo is not None else self._default_memo,
            timeout_height=request.timeout_height,
            gas_limit=request.gas_limit,
            fee_amount=request.fee_amount,
            gas_price=request.gas_price,
            sequence_override=request.sequence_override,
        )
        logger.debug(f"Built tx: {', '.join(str(m) for m in messages)}")
        return built

    def simulation_tx(self, built: BuiltTx) -> UnsignedTx:
        """Unsigned form used for simulation (no signer info, zero fee)"""
        return UnsignedTx(
            chain_id=built.chain_id,
            messages=built.messages,
            memo=built.memo,
            timeout_height=built.timeout_height,
            gas_limit=0,
            fee_amount=0,
            fee_denom=self._denom,
        )

    def simulation_bytes(self, built: BuiltTx) -> bytes:
        return self._codec.encode_tx(self.simulation_tx(built), b"")

    def assemble(
        self,
        simulated: SimulatedTx,
        public_key: bytes,
        account_number: int,
        sequence: int,
    ) -> UnsignedTx:
        """Bind fee, gas and signer info to the messages"""
        built = simulated.built
        return UnsignedTx(
            chain_id=built.chain_id,
            messages=built.messages,
            memo=built.memo,
            timeout_height=built.timeout_height,
            gas_limit=simulated.gas_limit,
            fee_amount=simulated.fee_amount,
            fee_denom=simulated.denom,
            account_number=account_number,
            sequence=sequence,
            public_key=public_key,
        )

    def sign_bytes(self, unsigned: UnsignedTx) -> bytes:
        return self._codec.encode_sign_doc(unsigned)

    def encode_signed(self, unsigned: UnsignedTx, signature: bytes) -> bytes:
        return self._codec.encode_tx(unsigned, signature)

    @staticmethod
    def tx_hash(tx_bytes: bytes) -> str:
        """Transaction hash as reported by the chain (upper-case hex SHA-256)"""
        return hashlib.sha256(tx_bytes).hexdigest().upper()
