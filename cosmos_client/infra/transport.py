"""
Node wire protocol

The client only depends on five logical operations per node:
- account info (account number, current sequence)
- simulate-transaction
- broadcast-transaction (sync mode, returns the CheckTx result)
- get-transaction-by-hash
- latest block height

RestNodeTransport implements them over httpx against the node's
gRPC-gateway REST routes. HTTP and gRPC status failures are converted into
the client error hierarchy here, so callers never see raw httpx errors.
The block height each response was served at is handed to an optional
observer, which the client points at the node pool for lag detection.
"""

from __future__ import annotations

import base64
import logging
from typing import Any, Callable, Dict, Optional, Protocol, Tuple, runtime_checkable

import httpx

from ..errors import (
    TransientError,
    FatalError,
    SequenceConflict,
    is_sequence_mismatch,
)
from ..types import AccountInfo, SimulationResult, BroadcastResponse, TxResponse

logger = logging.getLogger(__name__)

ACCOUNT_PATH = "/cosmos/auth/v1beta1/accounts/{address}"
SIMULATE_PATH = "/cosmos/tx/v1beta1/simulate"
BROADCAST_PATH = "/cosmos/tx/v1beta1/txs"
GET_TX_PATH = "/cosmos/tx/v1beta1/txs/{tx_hash}"
LATEST_BLOCK_PATH = "/cosmos/base/tendermint/v1beta1/blocks/latest"

BROADCAST_MODE_SYNC = "BROADCAST_MODE_SYNC"

# Height the node answered at, forwarded by the gateway from gRPC metadata
BLOCK_HEIGHT_HEADERS = ("x-cosmos-block-height", "grpc-metadata-x-cosmos-block-height")

HeightObserver = Callable[[str, int], None]

# gRPC status codes carried in gateway error bodies
GRPC_NOT_FOUND = 5
GRPC_DEADLINE_EXCEEDED = 4
GRPC_RESOURCE_EXHAUSTED = 8
GRPC_UNIMPLEMENTED = 12
GRPC_UNAVAILABLE = 14

_TRANSIENT_GRPC_CODES = {
    GRPC_DEADLINE_EXCEEDED,
    GRPC_RESOURCE_EXHAUSTED,
    GRPC_UNIMPLEMENTED,
    GRPC_UNAVAILABLE,
}


@runtime_checkable
class NodeTransport(Protocol):
    """
    Protocol for node access

    Every call targets one endpoint and carries its own timeout. Failures
    are raised as TransientError / FatalError / SequenceConflict.
    """

    async def get_account(self, endpoint: str, address: str, timeout: float) -> AccountInfo:
        ...

    async def simulate(self, endpoint: str, tx_bytes: bytes, timeout: float) -> SimulationResult:
        ...

    async def broadcast(self, endpoint: str, tx_bytes: bytes, timeout: float) -> BroadcastResponse:
        ...

    async def get_tx(self, endpoint: str, tx_hash: str, timeout: float) -> Optional[TxResponse]:
        """Return None when the node does not (yet) know the transaction"""
        ...

    async def latest_height(self, endpoint: str, timeout: float) -> int:
        ...


def _as_int(value: Any, default: Optional[int] = 0) -> Optional[int]:
    """Gateway JSON encodes 64-bit integers as strings"""
    if value is None or value == "":
        return default
    return int(value)


def _find_base_account(account: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Locate the BaseAccount fields inside vesting/module account wrappers"""
    if not isinstance(account, dict):
        return None
    if "account_number" in account or "sequence" in account:
        return account
    for key in ("base_account", "base_vesting_account"):
        nested = _find_base_account(account.get(key))
        if nested is not None:
            return nested
    return None


def parse_tx_response(data: Dict[str, Any]) -> TxResponse:
    """Extract the fields the client uses from a gateway tx_response object"""
    return TxResponse(
        tx_hash=(data.get("txhash") or "").upper(),
        height=_as_int(data.get("height")),
        code=_as_int(data.get("code")),
        codespace=data.get("codespace") or "",
        raw_log=data.get("raw_log") or "",
        gas_wanted=_as_int(data.get("gas_wanted"), default=None),
        gas_used=_as_int(data.get("gas_used"), default=None),
        raw=data,
    )


class RestNodeTransport:
    """
    Node transport over the Cosmos gRPC-gateway (REST) routes

    Usage:
        transport = RestNodeTransport()
        info = await transport.get_account("https://lcd.example.com", "cosmos1...", timeout=5.0)
        await transport.aclose()

        # Tests can inject a client built on httpx.MockTransport
        transport = RestNodeTransport(client=httpx.AsyncClient(transport=mock))

    ``height_observer`` is called with (endpoint, height) for every response
    carrying the block height header. It may raise (NodePool.observe_height
    raises for a lagging node) to fail the call.
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        headers: Optional[Dict[str, str]] = None,
        height_observer: Optional[HeightObserver] = None,
    ):
        self._client = client
        self.height_observer = height_observer
        self._owns_client = client is None
        self._headers = {"Content-Type": "application/json", **(headers or {})}

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create the shared HTTP client"""
        if self._client is None:
            self._client = httpx.AsyncClient(headers=self._headers)
        return self._client

    async def aclose(self):
        """Close the HTTP client if this transport created it"""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "RestNodeTransport":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()

    async def _request(
        self,
        method: str,
        endpoint: str,
        path: str,
        timeout: float,
        body: Optional[Dict[str, Any]] = None,
    ) -> Tuple[int, Dict[str, Any]]:
        """Issue one HTTP request; transport-level failures become TransientError"""
        url = f"{endpoint.rstrip('/')}{path}"
        try:
            response = await self._get_client().request(method, url, json=body, timeout=timeout)
        except httpx.TimeoutException as e:
            raise TransientError.timeout(endpoint, timeout, e)
        except httpx.TransportError as e:
            raise TransientError.connection_failed(endpoint, e)

        status = response.status_code
        if status == 429:
            raise TransientError.rate_limited(endpoint)
        if status == 403:
            raise TransientError.forbidden(endpoint)
        if status in (501, 502, 503, 504):
            raise TransientError.unavailable(endpoint, f"HTTP {status}")
        self._observe_height(endpoint, response.headers)

        try:
            payload = response.json()
        except ValueError as e:
            raise FatalError.invalid_response(
                f"HTTP {status} with non-JSON body: {response.text[:200]!r}",
                endpoint=endpoint,
                error=e,
            )
        if not isinstance(payload, dict):
            raise FatalError.invalid_response(f"expected JSON object, got {type(payload).__name__}", endpoint=endpoint)
        return status, payload

    def _observe_height(self, endpoint: str, headers: httpx.Headers):
        if self.height_observer is None:
            return
        value = next((headers[name] for name in BLOCK_HEIGHT_HEADERS if name in headers), None)
        if value is None:
            return
        try:
            height = int(value)
        except ValueError:
            logger.warning(f"Unparsable block height header from {endpoint}: {value!r}")
            return
        self.height_observer(endpoint, height)

    @staticmethod
    def _error_message(payload: Dict[str, Any]) -> str:
        return str(payload.get("message") or payload.get("error") or payload)

    def _raise_for_error(self, status: int, payload: Dict[str, Any], endpoint: str, simulation: bool = False):
        """Convert a non-2xx gateway response into the matching client error"""
        message = self._error_message(payload)
        grpc_code = payload.get("code")

        if is_sequence_mismatch("", 0, message):
            raise SequenceConflict.from_log(message, endpoint=endpoint)
        if isinstance(grpc_code, int) and grpc_code in _TRANSIENT_GRPC_CODES:
            raise TransientError.unavailable(endpoint, message)
        if simulation:
            raise FatalError.simulation_failed(message, endpoint=endpoint)
        if status == 400:
            raise FatalError.malformed_request(message, endpoint=endpoint)
        raise FatalError(f"Node returned HTTP {status}: {message}", endpoint=endpoint)

    @staticmethod
    def _is_not_found(status: int, payload: Dict[str, Any]) -> bool:
        if status == 404 or payload.get("code") == GRPC_NOT_FOUND:
            return True
        return "not found" in str(payload.get("message", "")).lower()

    async def get_account(self, endpoint: str, address: str, timeout: float) -> AccountInfo:
        """Query account number and current sequence"""
        status, payload = await self._request("GET", endpoint, ACCOUNT_PATH.format(address=address), timeout)
        if status >= 400:
            if self._is_not_found(status, payload):
                raise FatalError.account_not_found(address, endpoint=endpoint)
            self._raise_for_error(status, payload, endpoint)

        base = _find_base_account(payload.get("account"))
        if base is None:
            raise FatalError.invalid_response(f"no account fields for {address}", endpoint=endpoint)
        return AccountInfo(
            address=base.get("address") or address,
            account_number=_as_int(base.get("account_number")),
            sequence=_as_int(base.get("sequence")),
        )

    async def simulate(self, endpoint: str, tx_bytes: bytes, timeout: float) -> SimulationResult:
        """Dry-run a transaction and return its gas usage"""
        body = {"tx_bytes": base64.b64encode(tx_bytes).decode("ascii")}
        status, payload = await self._request("POST", endpoint, SIMULATE_PATH, timeout, body=body)
        if status >= 400:
            self._raise_for_error(status, payload, endpoint, simulation=True)

        gas_info = payload.get("gas_info") or {}
        if gas_info.get("gas_used") is None:
            raise FatalError.invalid_response("simulate response has no gas_info.gas_used", endpoint=endpoint)
        return SimulationResult(
            gas_used=_as_int(gas_info.get("gas_used")),
            gas_wanted=_as_int(gas_info.get("gas_wanted")),
            raw=payload,
        )

    async def broadcast(self, endpoint: str, tx_bytes: bytes, timeout: float) -> BroadcastResponse:
        """Submit signed bytes in sync mode; a non-zero code is the node's CheckTx rejection"""
        body = {
            "tx_bytes": base64.b64encode(tx_bytes).decode("ascii"),
            "mode": BROADCAST_MODE_SYNC,
        }
        status, payload = await self._request("POST", endpoint, BROADCAST_PATH, timeout, body=body)
        if status >= 400:
            self._raise_for_error(status, payload, endpoint)

        data = payload.get("tx_response")
        if not isinstance(data, dict):
            raise FatalError.invalid_response("broadcast response has no tx_response", endpoint=endpoint)
        return BroadcastResponse(
            tx_hash=(data.get("txhash") or "").upper(),
            code=_as_int(data.get("code")),
            codespace=data.get("codespace") or "",
            raw_log=data.get("raw_log") or "",
            raw=data,
        )

    async def get_tx(self, endpoint: str, tx_hash: str, timeout: float) -> Optional[TxResponse]:
        """Look up an included transaction; None while it is not yet known"""
        status, payload = await self._request("GET", endpoint, GET_TX_PATH.format(tx_hash=tx_hash), timeout)
        if status >= 400:
            if self._is_not_found(status, payload):
                return None
            self._raise_for_error(status, payload, endpoint)

        data = payload.get("tx_response")
        if not isinstance(data, dict):
            return None
        return parse_tx_response(data)

    async def latest_height(self, endpoint: str, timeout: float) -> int:
        """Height of the node's latest block"""
        status, payload = await self._request("GET", endpoint, LATEST_BLOCK_PATH, timeout)
        if status >= 400:
            self._raise_for_error(status, payload, endpoint)

        block = payload.get("sdk_block") or payload.get("block") or {}
        header = block.get("header") or {}
        if header.get("height") is None:
            raise FatalError.invalid_response("latest block has no header.height", endpoint=endpoint)
        return _as_int(header.get("height"))
