"""
In-memory stand-ins for a chain node, clock and sleep used by the unit tests.
"""

import hashlib
import json
from typing import Dict, List, Optional

from cosmos_client.types import AccountInfo, SimulationResult, BroadcastResponse, TxResponse


class FakeClock:
    """Monotonic clock that only moves when told to"""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FakeSleep:
    """Async sleep that records delays and advances a FakeClock instead of waiting"""

    def __init__(self, clock: Optional[FakeClock] = None):
        self.clock = clock
        self.delays: List[float] = []

    async def __call__(self, seconds: float):
        self.delays.append(seconds)
        if self.clock is not None:
            self.clock.advance(seconds)


def sequence_of(tx_bytes: bytes) -> Optional[int]:
    """Signer sequence embedded by JsonTxCodec (None for simulation bytes)"""
    doc = json.loads(tx_bytes)
    infos = doc["auth_info"]["signer_infos"]
    return int(infos[0]["sequence"]) if infos else None


def fee_of(tx_bytes: bytes) -> int:
    doc = json.loads(tx_bytes)
    return int(doc["auth_info"]["fee"]["amount"][0]["amount"])


class FakeChain:
    """
    Scripted node transport backed by a single-account chain

    Broadcasts are checked against the chain's expected sequence the way
    CheckTx does it. Accepted transactions become visible to get_tx after
    ``visible_after_polls`` lookups.
    """

    def __init__(
        self,
        address: str = "cosmos1sender",
        account_number: int = 7,
        sequence: int = 0,
        gas_used: int = 100000,
    ):
        self.address = address
        self.account_number = account_number
        self.sequence = sequence
        self.gas_used = gas_used
        self.height = 100

        self.min_fee: Optional[int] = None
        self.exec_code = 0
        self.exec_codespace = ""
        self.exec_log = "[]"
        self.visible_after_polls = 0
        self.never_include = False

        # endpoint -> exception raised by every call to that endpoint
        self.down: Dict[str, Exception] = {}
        # queued replies/exceptions for broadcast, consumed before normal handling
        self.broadcast_script: List[object] = []
        self.simulate_error: Optional[Exception] = None
        # endpoint -> blocks that node trails the chain by
        self.lag: Dict[str, int] = {}

        self.calls: List[tuple] = []
        self.broadcast_sequences: List[int] = []
        self.included: Dict[str, TxResponse] = {}
        self.polls: Dict[str, int] = {}

    def _enter(self, op: str, endpoint: str):
        self.calls.append((op, endpoint))
        if endpoint in self.down:
            raise self.down[endpoint]

    def calls_for(self, op: str) -> List[str]:
        return [endpoint for name, endpoint in self.calls if name == op]

    async def get_account(self, endpoint: str, address: str, timeout: float) -> AccountInfo:
        self._enter("get_account", endpoint)
        return AccountInfo(address=address, account_number=self.account_number, sequence=self.sequence)

    async def simulate(self, endpoint: str, tx_bytes: bytes, timeout: float) -> SimulationResult:
        self._enter("simulate", endpoint)
        if self.simulate_error is not None:
            raise self.simulate_error
        return SimulationResult(gas_used=self.gas_used, gas_wanted=0)

    async def broadcast(self, endpoint: str, tx_bytes: bytes, timeout: float) -> BroadcastResponse:
        self._enter("broadcast", endpoint)
        used = sequence_of(tx_bytes)
        self.broadcast_sequences.append(used)
        tx_hash = hashlib.sha256(tx_bytes).hexdigest().upper()

        if self.broadcast_script:
            scripted = self.broadcast_script.pop(0)
            if isinstance(scripted, Exception):
                raise scripted
            if scripted is not None:
                if scripted.code == 0 or scripted.code == 19:
                    self._include(tx_hash)
                return scripted

        if used != self.sequence:
            return BroadcastResponse(
                tx_hash=tx_hash,
                code=32,
                codespace="sdk",
                raw_log=f"account sequence mismatch, expected {self.sequence}, got {used}: incorrect account sequence",
            )
        if self.min_fee is not None and fee_of(tx_bytes) < self.min_fee:
            return BroadcastResponse(
                tx_hash=tx_hash,
                code=13,
                codespace="sdk",
                raw_log=f"insufficient fees; got: {fee_of(tx_bytes)}stake required: {self.min_fee}stake: insufficient fee",
            )

        self._include(tx_hash)
        return BroadcastResponse(tx_hash=tx_hash, code=0)

    def _include(self, tx_hash: str):
        self.sequence += 1
        self.height += 1
        if not self.never_include:
            self.included[tx_hash] = TxResponse(
                tx_hash=tx_hash,
                height=self.height,
                code=self.exec_code,
                codespace=self.exec_codespace,
                raw_log=self.exec_log,
                gas_wanted=130000,
                gas_used=98000,
            )

    async def get_tx(self, endpoint: str, tx_hash: str, timeout: float) -> Optional[TxResponse]:
        self._enter("get_tx", endpoint)
        seen = self.polls.get(tx_hash, 0) + 1
        self.polls[tx_hash] = seen
        if seen <= self.visible_after_polls:
            return None
        return self.included.get(tx_hash)

    async def latest_height(self, endpoint: str, timeout: float) -> int:
        self._enter("latest_height", endpoint)
        return self.height - self.lag.get(endpoint, 0)
