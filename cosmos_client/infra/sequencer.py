"""
Account Sequencer

Hands out (account_number, sequence) pairs for signing.

Prevents sequence collisions between concurrent submitters by:
1. Keeping the next sequence per (chain_id, address) locally
2. Taking numbers under a per-account asyncio.Lock (never held across I/O)
3. Re-syncing with the chain only on first use or after a failure

Usage:
    sequencer = AccountSequencer("cosmoshub-4", fetch_account)
    account_number, sequence = await sequencer.reserve(address)
    # ... sign and broadcast ...
    sequencer.confirm(address, sequence)             # accepted
    # or
    sequencer.release_on_failure(address, sequence)  # rejected / mismatch
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, Optional, Set, Tuple

from ..types import AccountInfo

logger = logging.getLogger(__name__)

AccountFetcher = Callable[[str], Awaitable[AccountInfo]]


@dataclass
class AccountRecord:
    lock: asyncio.Lock
    account_number: Optional[int] = None
    next_sequence: Optional[int] = None
    # Bumped on every invalidation so an in-progress refresh can tell it is stale
    generation: int = 0
    in_flight: Set[int] = field(default_factory=set)
    failed: Set[int] = field(default_factory=set)
    # Resolved when the chain fetch every waiter is sharing has finished
    refreshing: Optional[asyncio.Future] = None


class AccountSequencer:
    """
    Per-account sequence allocation with optimistic reservation

    The lock is held only while a number is taken or a fetched account is
    written into the cache. Chain fetches run outside it, and concurrent
    callers that find the cache empty share a single fetch. Nothing is
    locked across signing, broadcast or confirmation polling, so many
    reservations can be in flight at once. confirm() and
    release_on_failure() do not await and run atomically on the event loop.
    """

    def __init__(self, chain_id: str, fetch_account: AccountFetcher):
        """
        Args:
            chain_id: Chain the sequences belong to (part of the cache key)
            fetch_account: Coroutine returning the on-chain AccountInfo
        """
        self._chain_id = chain_id
        self._fetch = fetch_account
        self._accounts: Dict[Tuple[str, str], AccountRecord] = {}

    @property
    def chain_id(self) -> str:
        return self._chain_id

    def _record_for(self, address: str) -> AccountRecord:
        key = (self._chain_id, address)
        rec = self._accounts.get(key)
        if rec is None:
            rec = AccountRecord(lock=asyncio.Lock())
            self._accounts[key] = rec
        return rec

    async def _sync(self, rec: AccountRecord, address: str):
        """Fetch ground truth from the chain without holding rec.lock"""
        pending = rec.refreshing
        if pending is not None:
            # Someone else is already fetching; wait for it, then re-check
            await asyncio.shield(pending)
            return

        pending = asyncio.get_running_loop().create_future()
        rec.refreshing = pending
        generation = rec.generation
        try:
            info = await self._fetch(address)
            async with rec.lock:
                self._apply(rec, address, info, generation)
        finally:
            rec.refreshing = None
            pending.set_result(None)

    @staticmethod
    def _apply(rec: AccountRecord, address: str, info: AccountInfo, generation: int):
        """Write a fetched account into the cache (caller holds rec.lock)"""
        if rec.account_number is None:
            rec.account_number = info.account_number
        elif info.account_number != rec.account_number:
            logger.warning(
                f"Sequencer: {address} reported account_number={info.account_number}, "
                f"keeping first observed {rec.account_number}"
            )

        if rec.generation != generation:
            logger.debug(f"Sequencer: discarding fetch for {address} started before an invalidation")
            return
        if rec.next_sequence is not None:
            return

        rec.failed = {s for s in rec.failed if s >= info.sequence}
        if info.sequence in rec.failed:
            logger.info(f"Sequencer: chain expects previously failed sequence {info.sequence} for {address}")
        rec.next_sequence = info.sequence
        logger.debug(
            f"Sequencer: synced {address} account_number={rec.account_number} sequence={info.sequence}"
        )

    async def reserve(self, address: str) -> Tuple[int, int]:
        """
        Reserve the next sequence number for ``address``.

        Concurrent callers for the same account receive distinct, gapless,
        increasing numbers. The chain is queried only when nothing is cached.

        Returns:
            (account_number, sequence)
        """
        rec = self._record_for(address)
        while True:
            async with rec.lock:
                if rec.next_sequence is not None:
                    sequence = rec.next_sequence
                    rec.next_sequence = sequence + 1
                    rec.in_flight.add(sequence)
                    account_number = rec.account_number
                    break
            await self._sync(rec, address)

        logger.debug(f"Sequencer: reserved {address} sequence={sequence}")
        return account_number, sequence

    async def account_number(self, address: str) -> int:
        """Account number for ``address`` (fetched once, then cached)"""
        rec = self._record_for(address)
        while rec.account_number is None:
            await self._sync(rec, address)
        return rec.account_number

    def confirm(self, address: str, sequence: int):
        """
        Mark a reserved sequence as accepted by the chain.

        Reservation already advanced the counter; this only clears the
        in-flight record.
        """
        rec = self._record_for(address)
        rec.in_flight.discard(sequence)

    def release_on_failure(self, address: str, sequence: int):
        """
        Give up on a reserved sequence.

        The number is recorded as failed and the cached next sequence is
        invalidated, so the next reserve() re-queries the chain instead of
        continuing from a counter that now has a gap.
        """
        rec = self._record_for(address)
        rec.in_flight.discard(sequence)
        rec.failed.add(sequence)
        rec.next_sequence = None
        rec.generation += 1
        logger.info(f"Sequencer: released {address} sequence={sequence}, will re-sync with chain")

    def invalidate(self, address: Optional[str] = None):
        """
        Drop cached sequence state, forcing a chain re-sync.

        Args:
            address: Account to reset. If None, resets all accounts.
        """
        records = [self._record_for(address)] if address else list(self._accounts.values())
        for rec in records:
            rec.next_sequence = None
            rec.generation += 1

    def in_flight(self, address: str) -> Set[int]:
        return set(self._record_for(address).in_flight)

    def failed(self, address: str) -> Set[int]:
        return set(self._record_for(address).failed)

    def cached_next_sequence(self, address: str) -> Optional[int]:
        return self._record_for(address).next_sequence
