"""
Transaction Broadcaster

Drives a transaction through Built -> Simulated -> Signed -> Broadcast ->
Confirmed | Failed:

1. Estimate gas unless the request fixes both gas and fee
2. Reserve a sequence (or use the request's override)
3. Sign through the injected Signer
4. Broadcast through the Query Executor (pool + retry)
5. Poll by hash with exponential backoff until included or the wait ends

A sequence mismatch releases the reservation and re-signs with a fresh
sequence, a bounded number of times. An insufficient-fee rejection re-signs
at an escalated gas price, also bounded. Cancelling while polling does not
undo a broadcast; the transaction may still be included.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Tuple

from .gas import GasEstimator
from .query import QueryExecutor
from .retry import CorrelationContext, get_correlation_id, _log_with_correlation
from .sequencer import AccountSequencer
from .signer import Signer, sign_with
from .transport import NodeTransport
from .tx_builder import TransactionBuilder, TransactionRequest
from ..types import (
    BroadcastResponse,
    BuiltTx,
    SimulatedTx,
    SignedTx,
    BroadcastTx,
    TxOutcome,
    TxResponse,
)
from ..types import lifecycle
from ..errors import (
    ChainError,
    CosmosClientError,
    OnChainExecutionFailure,
    RetriesExhausted,
    SequenceConflict,
    SignerError,
    is_already_in_mempool,
    is_sequence_mismatch,
)
from ..config import config as global_config

logger = logging.getLogger(__name__)

OPERATION = "broadcast_and_confirm"


@dataclass
class BroadcasterConfig:
    """
    Broadcaster runtime configuration

    Pulls defaults from the global config (cosmos_client.config.TxConfig).
    """
    poll_initial_delay: float = None
    poll_max_delay: float = None
    confirmation_timeout: float = None
    sequence_rebuild_attempts: int = None

    def __post_init__(self):
        """Apply defaults from global config for any unset values"""
        if self.poll_initial_delay is None:
            self.poll_initial_delay = global_config.tx.poll_initial_delay
        if self.poll_max_delay is None:
            self.poll_max_delay = global_config.tx.poll_max_delay
        if self.confirmation_timeout is None:
            self.confirmation_timeout = global_config.tx.confirmation_timeout
        if self.sequence_rebuild_attempts is None:
            self.sequence_rebuild_attempts = global_config.tx.sequence_rebuild_attempts


class Broadcaster:
    """
    Sign, submit and confirm transactions

    Usage:
        broadcaster = Broadcaster(executor, transport, sequencer, builder, estimator)
        outcome = await broadcaster.broadcast_and_confirm(
            TransactionRequest(messages=[msg]),
            signer,
        )
        print(outcome.tx_hash, outcome.height)
    """

    def __init__(
        self,
        executor: QueryExecutor,
        transport: NodeTransport,
        sequencer: AccountSequencer,
        builder: TransactionBuilder,
        estimator: GasEstimator,
        config: Optional[BroadcasterConfig] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._executor = executor
        self._transport = transport
        self._sequencer = sequencer
        self._builder = builder
        self._estimator = estimator
        self._config = config or BroadcasterConfig()
        self._clock = clock
        self._sleep = sleep

    @property
    def config(self) -> BroadcasterConfig:
        return self._config

    async def broadcast_and_confirm(self, request: TransactionRequest, signer: Signer) -> TxOutcome:
        """
        Submit a transaction and wait for it to be included.

        Args:
            request: Messages, memo and optional gas/fee/sequence overrides
            signer: Signing capability for the sending account

        Returns:
            TxOutcome for a transaction included with code 0

        Raises:
            FatalError / ChainError: Rejected before broadcast (never retried)
            SequenceConflict: Mismatch persisted through the allowed rebuilds
            OnChainExecutionFailure: Included, but execution failed
            RetriesExhausted: Outcome unknown (broadcast or confirmation gave up)
        """
        if signer is None:
            raise SignerError.not_configured()

        if get_correlation_id() is None:
            with CorrelationContext("tx"):
                return await self._run(request, signer)
        return await self._run(request, signer)

    async def _run(self, request: TransactionRequest, signer: Signer) -> TxOutcome:
        built = self._builder.build(request)
        broadcast, attempts = await self.submit(built, signer)
        return await self.await_confirmation(broadcast, signer.address, attempts)

    async def _simulate_stage(self, built: BuiltTx, gas_price: Optional[float]) -> SimulatedTx:
        """Built -> Simulated, estimating only what the request leaves open"""
        denom = self._estimator.config.denom
        if built.has_explicit_fee:
            return lifecycle.simulate(built, built.gas_limit, built.fee_amount, denom, gas_price=gas_price)

        price = gas_price if gas_price is not None else self._estimator.config.gas_price
        if built.gas_limit is not None:
            fee = self._estimator.fee_for(built.gas_limit, price)
            return lifecycle.simulate(built, built.gas_limit, fee, denom, gas_price=price)

        estimate = await self._estimator.estimate(built, gas_price=price)
        return lifecycle.simulate(
            built,
            estimate.gas_limit,
            estimate.fee_amount,
            estimate.denom,
            gas_price=estimate.gas_price,
            gas_used=estimate.gas_used,
        )

    def _reprice(self, simulated: SimulatedTx, gas_price: float) -> SimulatedTx:
        return lifecycle.simulate(
            simulated.built,
            simulated.gas_limit,
            self._estimator.fee_for(simulated.gas_limit, gas_price),
            simulated.denom,
            gas_price=gas_price,
            gas_used=simulated.gas_used,
        )

    async def _reserve(self, built: BuiltTx, address: str) -> Tuple[int, int, bool]:
        """(account_number, sequence, reserved_through_sequencer)"""
        if built.sequence_override is not None:
            account_number = await self._sequencer.account_number(address)
            return account_number, built.sequence_override, False
        account_number, sequence = await self._sequencer.reserve(address)
        return account_number, sequence, True

    async def _sign_stage(
        self,
        simulated: SimulatedTx,
        signer: Signer,
        account_number: int,
        sequence: int,
    ) -> SignedTx:
        """Simulated -> Signed"""
        unsigned = self._builder.assemble(simulated, signer.public_key, account_number, sequence)
        result = await sign_with(signer, self._builder.sign_bytes(unsigned))
        tx_bytes = self._builder.encode_signed(unsigned, result.signature)
        return lifecycle.sign(
            simulated,
            account_number=account_number,
            sequence=sequence,
            tx_bytes=tx_bytes,
            tx_hash=self._builder.tx_hash(tx_bytes),
        )

    async def _broadcast_once(self, signed: SignedTx) -> Tuple[BroadcastResponse, str]:
        async def call(endpoint):
            response = await self._transport.broadcast(endpoint.url, signed.tx_bytes, self._executor.timeout)
            return response, endpoint.url

        return await self._executor.execute(call, "broadcast")

    @staticmethod
    def _interpret(response: BroadcastResponse, signed: SignedTx, endpoint: str) -> BroadcastTx:
        """Signed -> Broadcast, or raise the node's rejection"""
        if response.accepted or is_already_in_mempool(response.codespace, response.code):
            if not response.accepted:
                logger.info(f"Transaction {signed.tx_hash} already in mempool ({response.codespace}:{response.code})")
            if response.tx_hash and response.tx_hash != signed.tx_hash:
                logger.warning(f"Node reported hash {response.tx_hash}, computed {signed.tx_hash}; using node's")
            return lifecycle.mark_broadcast(signed, response.tx_hash or signed.tx_hash, endpoint)

        if is_sequence_mismatch(response.codespace, response.code, response.raw_log):
            raise SequenceConflict.from_log(response.raw_log, used_sequence=signed.sequence, endpoint=endpoint)
        raise ChainError.rejected(
            response.codespace,
            response.code,
            response.raw_log,
            tx_hash=signed.tx_hash,
            endpoint=endpoint,
        )

    async def submit(self, built: BuiltTx, signer: Signer) -> Tuple[BroadcastTx, int]:
        """
        Take a built transaction up to the Broadcast stage.

        Returns:
            (BroadcastTx, number of sign/broadcast cycles used)
        """
        address = signer.address
        rebuilds = 0
        escalations = 0
        attempts = 0
        gas_price = built.gas_price
        simulated: Optional[SimulatedTx] = None

        while True:
            attempts += 1
            if simulated is None:
                simulated = await self._simulate_stage(built, gas_price)

            account_number, sequence, reserved = await self._reserve(built, address)
            signed: Optional[SignedTx] = None
            try:
                signed = await self._sign_stage(simulated, signer, account_number, sequence)
                response, endpoint = await self._broadcast_once(signed)
                broadcast = self._interpret(response, signed, endpoint)
            except SequenceConflict as e:
                if reserved:
                    self._sequencer.release_on_failure(address, sequence)
                e.attempts = attempts
                e.details["attempts"] = attempts
                if reserved and rebuilds < self._config.sequence_rebuild_attempts:
                    rebuilds += 1
                    _log_with_correlation(
                        logging.WARNING,
                        f"Sequence mismatch at {sequence} (chain expects {e.expected_sequence}), "
                        f"rebuilding with a fresh sequence",
                        OPERATION,
                        attempts,
                        log=logger,
                    )
                    continue
                _log_with_correlation(logging.ERROR, f"Sequence conflict persists: {e}", OPERATION, attempts, log=logger)
                raise
            except ChainError as e:
                if reserved:
                    self._sequencer.release_on_failure(address, sequence)
                can_escalate = (
                    e.is_insufficient_fee
                    and not built.has_explicit_fee
                    and escalations < self._estimator.config.fee_escalation_attempts
                )
                if can_escalate:
                    escalations += 1
                    gas_price = self._estimator.escalated_gas_price(escalations)
                    simulated = self._reprice(simulated, gas_price)
                    _log_with_correlation(
                        logging.WARNING,
                        f"Insufficient fee, retrying at gas price {gas_price} (fee {simulated.fee_amount}{simulated.denom})",
                        OPERATION,
                        attempts,
                        log=logger,
                    )
                    continue
                _log_with_correlation(logging.ERROR, f"Broadcast rejected: {e}", OPERATION, attempts, log=logger)
                raise
            except RetriesExhausted as e:
                # No node confirmed receipt; the signed bytes may still land
                if reserved:
                    self._sequencer.release_on_failure(address, sequence)
                if signed is not None:
                    e.tx_hash = signed.tx_hash
                    e.details["tx_hash"] = signed.tx_hash
                    e.details["sequence"] = sequence
                _log_with_correlation(
                    logging.ERROR,
                    f"Broadcast outcome unknown for {e.tx_hash} (sequence {sequence}): {e}",
                    OPERATION,
                    attempts,
                    log=logger,
                )
                raise
            except BaseException:
                # Nothing reached a mempool we know of (or the caller cancelled
                # before acceptance); do not keep the number
                if reserved:
                    self._sequencer.release_on_failure(address, sequence)
                raise

            _log_with_correlation(
                logging.INFO,
                f"Broadcast accepted by {broadcast.endpoint}: {broadcast.tx_hash} (sequence {sequence})",
                OPERATION,
                attempts,
                log=logger,
            )
            return broadcast, attempts

    async def poll_once(self, tx_hash: str) -> Optional[TxResponse]:
        """One status lookup by hash through the executor (None = not found yet)"""
        return await self._executor.execute(
            lambda ep: self._transport.get_tx(ep.url, tx_hash, self._executor.timeout),
            "get_tx",
        )

    async def await_confirmation(self, broadcast: BroadcastTx, address: str, attempts: int = 1) -> TxOutcome:
        """
        Poll until the transaction is included or confirmation_timeout passes.

        "Not found" is the expected answer until the next block and is not
        an error. Poll failures are logged and polling continues, fatal ones
        included: one node answering badly says nothing about whether the
        transaction was included, so only the deadline ends the wait. The
        last poll error is kept on the resulting RetriesExhausted
        (``last_error`` and ``details["last_error"]``).

        Cancelling the caller while polling rolls nothing back: the sequence
        is neither confirmed nor released, and the transaction may still be
        included.

        Raises:
            OnChainExecutionFailure: Included with a non-zero code
            RetriesExhausted: Not seen within the wait (outcome unknown)
        """
        tx_hash = broadcast.tx_hash
        start = self._clock()
        deadline = start + self._config.confirmation_timeout
        delay = self._config.poll_initial_delay
        polls = 0
        last_error: Optional[BaseException] = None

        while True:
            remaining = deadline - self._clock()
            if remaining <= 0:
                exhausted = RetriesExhausted.confirmation_timeout(
                    tx_hash,
                    self._clock() - start,
                    polls,
                    last_error=last_error,
                    last_endpoint=broadcast.endpoint,
                )
                _log_with_correlation(logging.ERROR, exhausted.message, OPERATION, attempts, log=logger)
                raise exhausted

            await self._sleep(min(delay, remaining))
            polls += 1

            try:
                response = await self.poll_once(tx_hash)
            except CosmosClientError as e:
                last_error = e
                logger.warning(f"Confirmation poll {polls} for {tx_hash} failed: {e}")
                response = None

            if response is not None:
                return self._finish(broadcast, response, address, attempts)

            logger.debug(f"Transaction {tx_hash} not found yet (poll {polls})")
            delay = min(self._config.poll_max_delay, delay * 2)

    def _finish(self, broadcast: BroadcastTx, response: TxResponse, address: str, attempts: int) -> TxOutcome:
        # Included either way, so the sequence was consumed
        self._sequencer.confirm(address, broadcast.sequence)

        if response.succeeded:
            confirmed = lifecycle.confirm(broadcast, response)
            outcome = TxOutcome.from_confirmed(confirmed, attempts)
            _log_with_correlation(
                logging.INFO,
                f"Confirmed {outcome.tx_hash} at height {outcome.height} (gas {outcome.gas_used}/{outcome.gas_wanted})",
                OPERATION,
                attempts,
                log=logger,
            )
            return outcome

        failed = lifecycle.fail(broadcast, response)
        _log_with_correlation(
            logging.ERROR,
            f"Executed with code {response.codespace}:{response.code} at height {response.height}: {response.raw_log}",
            OPERATION,
            attempts,
            log=logger,
        )
        raise OnChainExecutionFailure(
            tx_hash=failed.broadcast.tx_hash,
            height=failed.response.height,
            code=failed.response.code,
            codespace=failed.response.codespace,
            raw_log=failed.response.raw_log,
            gas_wanted=failed.response.gas_wanted,
            gas_used=failed.response.gas_used,
        )
