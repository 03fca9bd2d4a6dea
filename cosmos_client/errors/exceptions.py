"""
Exception definitions for the Cosmos client
"""

import re
from enum import Enum
from typing import Optional


class ErrorCode(Enum):
    """
    Unified error codes for chain client operations

    1xxx - Node transport errors
    2xxx - Transaction errors
    3xxx - Query errors
    4xxx - Retry errors
    6xxx - Signer errors
    9xxx - Configuration errors
    """
    # Node transport errors (recoverable)
    NODE_CONNECTION_FAILED = "1001"
    NODE_TIMEOUT = "1002"
    NODE_RATE_LIMITED = "1003"
    NODE_UNAVAILABLE = "1004"
    NODE_FORBIDDEN = "1005"
    NODE_LAGGING = "1006"

    # Transaction errors
    TX_SIMULATION_FAILED = "2001"
    TX_BROADCAST_REJECTED = "2002"
    TX_EXECUTION_FAILED = "2003"
    TX_SEQUENCE_MISMATCH = "2004"
    TX_INSUFFICIENT_FEE = "2005"
    TX_INSUFFICIENT_FUNDS = "2006"
    TX_INVALID = "2007"

    # Query errors
    QUERY_MALFORMED = "3001"
    QUERY_INVALID_RESPONSE = "3002"
    QUERY_ACCOUNT_NOT_FOUND = "3003"
    QUERY_FAILED = "3004"

    # Retry errors
    RETRIES_EXHAUSTED = "4001"

    # Signer errors
    SIGNER_NOT_CONFIGURED = "6001"
    SIGNER_FAILED = "6002"

    # Configuration errors
    CONFIG_INVALID = "9001"
    CONFIG_MISSING = "9002"


# Cosmos SDK error codes in the "sdk" codespace that the client reacts to
SDK_CODESPACE = "sdk"
SDK_UNAUTHORIZED = 4
SDK_INSUFFICIENT_FUNDS = 5
SDK_OUT_OF_GAS = 11
SDK_INSUFFICIENT_FEE = 13
SDK_TX_IN_MEMPOOL = 19
SDK_TX_TOO_LARGE = 21
SDK_INVALID_CHAIN_ID = 28
SDK_TX_TIMEOUT_HEIGHT = 30
SDK_INCORRECT_ACCOUNT_SEQUENCE = 32

MEMPOOL_CODESPACE = "mempool"
MEMPOOL_TX_IN_CACHE = 3

_EXPECTED_SEQUENCE_RE = re.compile(r"account sequence mismatch, expected (\d+)")
_USED_SEQUENCE_RE = re.compile(r"account sequence mismatch, expected \d+, got (\d+)")


class CosmosClientError(Exception):
    """
    Base exception for all chain client errors

    Attributes:
        message: Human-readable error message
        code: Error code for programmatic handling
        recoverable: Whether the error might succeed on retry
        original_error: The underlying exception if any
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode,
        recoverable: bool = False,
        original_error: Optional[Exception] = None,
        details: Optional[dict] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.recoverable = recoverable
        self.original_error = original_error
        self.details = details or {}

    def __str__(self) -> str:
        return f"[{self.code.value}] {self.message}"

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code.value}, message={self.message!r})"

    @property
    def should_retry(self) -> bool:
        """Indicate if the operation should be retried"""
        return self.recoverable


class TransientError(CosmosClientError):
    """
    Network, timeout and overload errors - always recoverable

    Raised when:
    - Connection to a node fails
    - A request exceeds its deadline
    - A node rate limits, forbids or reports itself unavailable
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.NODE_CONNECTION_FAILED,
        original_error: Optional[Exception] = None,
        endpoint: Optional[str] = None,
    ):
        super().__init__(
            message,
            code,
            recoverable=True,
            original_error=original_error,
            details={"endpoint": endpoint} if endpoint else None,
        )
        self.endpoint = endpoint

    @classmethod
    def connection_failed(cls, endpoint: str, error: Exception = None) -> "TransientError":
        return cls(
            f"Failed to connect to node: {endpoint}" + (f" ({error})" if error else ""),
            ErrorCode.NODE_CONNECTION_FAILED,
            original_error=error,
            endpoint=endpoint,
        )

    @classmethod
    def timeout(cls, endpoint: str, timeout_seconds: float, error: Exception = None) -> "TransientError":
        return cls(
            f"Node request timed out after {timeout_seconds}s",
            ErrorCode.NODE_TIMEOUT,
            original_error=error,
            endpoint=endpoint,
        )

    @classmethod
    def rate_limited(cls, endpoint: str) -> "TransientError":
        return cls(
            "Node rate limit exceeded",
            ErrorCode.NODE_RATE_LIMITED,
            endpoint=endpoint,
        )

    @classmethod
    def forbidden(cls, endpoint: str) -> "TransientError":
        return cls(
            "Node refused the request (forbidden)",
            ErrorCode.NODE_FORBIDDEN,
            endpoint=endpoint,
        )

    @classmethod
    def unavailable(cls, endpoint: str, reason: str = "") -> "TransientError":
        return cls(
            f"Node unavailable{': ' + reason if reason else ''}",
            ErrorCode.NODE_UNAVAILABLE,
            endpoint=endpoint,
        )

    @classmethod
    def lagging(cls, endpoint: str, height: int, highest_height: int, lag_allowed: int) -> "TransientError":
        error = cls(
            f"Node is lagging: reported height {height}, already saw {highest_height} "
            f"(allowed lag {lag_allowed})",
            ErrorCode.NODE_LAGGING,
            endpoint=endpoint,
        )
        error.details.update({"height": height, "highest_height": highest_height})
        return error


class FatalError(CosmosClientError):
    """
    Errors that never succeed on retry

    Raised when:
    - A request is malformed or a response cannot be parsed
    - Simulation reverts
    - The account does not exist on chain
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.QUERY_FAILED,
        original_error: Optional[Exception] = None,
        endpoint: Optional[str] = None,
        details: Optional[dict] = None,
    ):
        merged = dict(details or {})
        if endpoint:
            merged["endpoint"] = endpoint
        super().__init__(
            message,
            code,
            recoverable=False,
            original_error=original_error,
            details=merged,
        )
        self.endpoint = endpoint

    @classmethod
    def malformed_request(cls, reason: str, endpoint: str = None) -> "FatalError":
        return cls(f"Malformed request: {reason}", ErrorCode.QUERY_MALFORMED, endpoint=endpoint)

    @classmethod
    def invalid_response(cls, reason: str, endpoint: str = None, error: Exception = None) -> "FatalError":
        return cls(
            f"Invalid node response: {reason}",
            ErrorCode.QUERY_INVALID_RESPONSE,
            original_error=error,
            endpoint=endpoint,
        )

    @classmethod
    def simulation_failed(cls, reason: str, endpoint: str = None) -> "FatalError":
        return cls(
            f"Transaction simulation failed: {reason}",
            ErrorCode.TX_SIMULATION_FAILED,
            endpoint=endpoint,
        )

    @classmethod
    def account_not_found(cls, address: str, endpoint: str = None) -> "FatalError":
        return cls(
            f"Account not found on chain: {address}",
            ErrorCode.QUERY_ACCOUNT_NOT_FOUND,
            endpoint=endpoint,
            details={"address": address},
        )


class ChainError(FatalError):
    """
    The node rejected a transaction with a Cosmos SDK error code

    The codespace/code pair and the raw log are kept exactly as reported.
    """

    def __init__(
        self,
        message: str,
        codespace: str,
        sdk_code: int,
        raw_log: str = "",
        tx_hash: Optional[str] = None,
        endpoint: Optional[str] = None,
    ):
        if codespace == SDK_CODESPACE and sdk_code == SDK_INSUFFICIENT_FEE:
            code = ErrorCode.TX_INSUFFICIENT_FEE
        elif codespace == SDK_CODESPACE and sdk_code == SDK_INSUFFICIENT_FUNDS:
            code = ErrorCode.TX_INSUFFICIENT_FUNDS
        else:
            code = ErrorCode.TX_BROADCAST_REJECTED
        super().__init__(
            message,
            code,
            endpoint=endpoint,
            details={
                "codespace": codespace,
                "sdk_code": sdk_code,
                "raw_log": raw_log,
                "tx_hash": tx_hash,
            },
        )
        self.codespace = codespace
        self.sdk_code = sdk_code
        self.raw_log = raw_log
        self.tx_hash = tx_hash

    @property
    def is_insufficient_fee(self) -> bool:
        return self.code == ErrorCode.TX_INSUFFICIENT_FEE

    @property
    def is_insufficient_funds(self) -> bool:
        return self.code == ErrorCode.TX_INSUFFICIENT_FUNDS

    @classmethod
    def rejected(
        cls,
        codespace: str,
        sdk_code: int,
        raw_log: str,
        tx_hash: str = None,
        endpoint: str = None,
    ) -> "ChainError":
        return cls(
            f"Transaction rejected by node ({codespace}:{sdk_code}): {raw_log}",
            codespace=codespace,
            sdk_code=sdk_code,
            raw_log=raw_log,
            tx_hash=tx_hash,
            endpoint=endpoint,
        )


class SequenceConflict(CosmosClientError):
    """
    Chain reported an account sequence mismatch

    Handled by the broadcaster with a bounded rebuild, surfaced otherwise.
    """

    def __init__(
        self,
        message: str,
        expected_sequence: Optional[int] = None,
        used_sequence: Optional[int] = None,
        endpoint: Optional[str] = None,
        attempts: int = 1,
    ):
        super().__init__(
            message,
            ErrorCode.TX_SEQUENCE_MISMATCH,
            recoverable=False,
            details={
                "expected_sequence": expected_sequence,
                "used_sequence": used_sequence,
                "endpoint": endpoint,
                "attempts": attempts,
            },
        )
        self.expected_sequence = expected_sequence
        self.used_sequence = used_sequence
        self.endpoint = endpoint
        self.attempts = attempts

    @classmethod
    def from_log(
        cls,
        raw_log: str,
        used_sequence: Optional[int] = None,
        endpoint: str = None,
    ) -> "SequenceConflict":
        expected = parse_expected_sequence(raw_log)
        if used_sequence is None:
            match = _USED_SEQUENCE_RE.search(raw_log)
            used_sequence = int(match.group(1)) if match else None
        return cls(
            f"Account sequence mismatch: {raw_log}",
            expected_sequence=expected,
            used_sequence=used_sequence,
            endpoint=endpoint,
        )


class RetriesExhausted(CosmosClientError):
    """
    Attempt bound reached - the outcome is UNKNOWN, not failed

    The node may have acted on a request even though the client stopped
    waiting (e.g. a broadcast transaction can still be included).
    """

    def __init__(
        self,
        message: str,
        operation: str,
        attempts: int,
        last_error: Optional[Exception] = None,
        last_endpoint: Optional[str] = None,
        tx_hash: Optional[str] = None,
    ):
        super().__init__(
            message,
            ErrorCode.RETRIES_EXHAUSTED,
            recoverable=False,
            original_error=last_error,
            details={
                "operation": operation,
                "attempts": attempts,
                "last_endpoint": last_endpoint,
                "last_error": str(last_error) if last_error else None,
                "tx_hash": tx_hash,
            },
        )
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error
        self.last_endpoint = last_endpoint
        self.tx_hash = tx_hash

    @property
    def outcome_unknown(self) -> bool:
        return True

    @classmethod
    def after(
        cls,
        operation: str,
        attempts: int,
        last_error: Exception = None,
        last_endpoint: str = None,
    ) -> "RetriesExhausted":
        msg = f"{operation} gave up after {attempts} attempts"
        if last_endpoint:
            msg += f" (last endpoint: {last_endpoint})"
        if last_error:
            msg += f". Last error: {last_error}"
        return cls(msg, operation, attempts, last_error=last_error, last_endpoint=last_endpoint)

    @classmethod
    def confirmation_timeout(
        cls,
        tx_hash: str,
        waited_seconds: float,
        polls: int,
        last_error: Exception = None,
        last_endpoint: str = None,
    ) -> "RetriesExhausted":
        return cls(
            f"Transaction {tx_hash} not found after waiting {waited_seconds:.1f}s ({polls} polls); "
            f"it may still be included",
            "confirm_transaction",
            polls,
            last_error=last_error,
            last_endpoint=last_endpoint,
            tx_hash=tx_hash,
        )


class OnChainExecutionFailure(CosmosClientError):
    """
    Transaction was included in a block but execution failed

    Delivery succeeded; the chain's own error payload is reported verbatim.
    """

    def __init__(
        self,
        tx_hash: str,
        height: int,
        code: int,
        codespace: str = "",
        raw_log: str = "",
        gas_wanted: Optional[int] = None,
        gas_used: Optional[int] = None,
    ):
        super().__init__(
            raw_log,
            ErrorCode.TX_EXECUTION_FAILED,
            recoverable=False,
            details={
                "tx_hash": tx_hash,
                "height": height,
                "code": code,
                "codespace": codespace,
                "gas_wanted": gas_wanted,
                "gas_used": gas_used,
            },
        )
        self.tx_hash = tx_hash
        self.height = height
        self.chain_code = code
        self.codespace = codespace
        self.raw_log = raw_log
        self.gas_wanted = gas_wanted
        self.gas_used = gas_used


class SignerError(CosmosClientError):
    """
    Signing-related errors

    Raised when:
    - No signer configured
    - Signing operation fails
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.SIGNER_FAILED,
        original_error: Optional[Exception] = None,
    ):
        super().__init__(message, code, recoverable=False, original_error=original_error)

    @classmethod
    def not_configured(cls) -> "SignerError":
        return cls("No signer configured", ErrorCode.SIGNER_NOT_CONFIGURED)

    @classmethod
    def failed(cls, reason: str, error: Exception = None) -> "SignerError":
        return cls(f"Signing failed: {reason}", ErrorCode.SIGNER_FAILED, original_error=error)


class ConfigurationError(CosmosClientError):
    """
    Configuration-related errors

    Raised when:
    - Required configuration is missing
    - Configuration values are invalid
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.CONFIG_INVALID,
    ):
        super().__init__(message, code, recoverable=False)

    @classmethod
    def missing(cls, param: str) -> "ConfigurationError":
        return cls(f"Missing required configuration: {param}", ErrorCode.CONFIG_MISSING)

    @classmethod
    def invalid(cls, param: str, reason: str) -> "ConfigurationError":
        return cls(f"Invalid configuration '{param}': {reason}", ErrorCode.CONFIG_INVALID)


def parse_expected_sequence(raw_log: str) -> Optional[int]:
    """Extract N from 'account sequence mismatch, expected N, got M' (None if absent)"""
    if not raw_log:
        return None
    match = _EXPECTED_SEQUENCE_RE.search(raw_log)
    return int(match.group(1)) if match else None


def is_sequence_mismatch(codespace: str, code: int, raw_log: str = "") -> bool:
    """Check a node-reported error for an account sequence mismatch"""
    if codespace == SDK_CODESPACE and code == SDK_INCORRECT_ACCOUNT_SEQUENCE:
        return True
    return "account sequence mismatch" in (raw_log or "").lower()


def is_already_in_mempool(codespace: str, code: int) -> bool:
    """Tx already known to the node - counts as a successful broadcast"""
    return (
        (codespace == SDK_CODESPACE and code == SDK_TX_IN_MEMPOOL)
        or (codespace == MEMPOOL_CODESPACE and code == MEMPOOL_TX_IN_CACHE)
    )
