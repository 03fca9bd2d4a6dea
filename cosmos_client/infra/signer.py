"""
Transaction signing abstractions

The client never touches key material directly: it hands sign-doc bytes to
a Signer and receives the signature plus the public key it was made with.
"""

from __future__ import annotations

import hashlib
import inspect
import logging
from dataclasses import dataclass
from typing import Awaitable, Protocol, Union, runtime_checkable

from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import decode_dss_signature

from ..errors import SignerError, ConfigurationError

logger = logging.getLogger(__name__)

# secp256k1 group order, used for low-S normalisation
_SECP256K1_N = int("FFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141", 16)


@dataclass(frozen=True)
class SignResult:
    """Signature and the public key that produced it"""
    signature: bytes
    public_key: bytes


@runtime_checkable
class Signer(Protocol):
    """
    Protocol for transaction signers

    Implementations must provide:
    - address: Bech32 account address the signer controls
    - key_id: Identifier of the key to sign with
    - public_key: Compressed public key bytes (embedded in the tx before signing)
    - sign(): Sign raw bytes, synchronously or as a coroutine
    """

    @property
    def address(self) -> str:
        ...

    @property
    def key_id(self) -> str:
        ...

    @property
    def public_key(self) -> bytes:
        ...

    def sign(self, data: bytes, key_id: str) -> Union[SignResult, Awaitable[SignResult]]:
        """
        Sign raw sign-doc bytes

        Args:
            data: Bytes to sign
            key_id: Key identifier

        Returns:
            SignResult (or an awaitable resolving to one)
        """
        ...


async def sign_with(signer: Signer, data: bytes) -> SignResult:
    """
    Call a sync or async signer and validate its answer.

    Raises:
        SignerError: Signer failed or returned a key other than the advertised one
    """
    try:
        result = signer.sign(data, signer.key_id)
        if inspect.isawaitable(result):
            result = await result
    except SignerError:
        raise
    except Exception as e:
        raise SignerError.failed(str(e), e)

    if not isinstance(result, SignResult) or not result.signature:
        raise SignerError.failed("signer returned no signature")
    if result.public_key != signer.public_key:
        raise SignerError.failed("signature public key does not match the signer's advertised key")
    return result


class LocalSigner:
    """
    Local secp256k1 signer

    Produces the 64-byte compact (r || s, low-S) signature over
    SHA-256(data) that Cosmos SDK chains verify.

    Usage:
        signer = LocalSigner.from_hex(private_key_hex, address="cosmos1...")
        result = signer.sign(sign_doc_bytes, signer.key_id)
    """

    def __init__(self, private_key: ec.EllipticCurvePrivateKey, address: str, key_id: str = "default"):
        if not isinstance(private_key.curve, ec.SECP256K1):
            raise ConfigurationError.invalid("private_key", "must be a secp256k1 key")
        if not address:
            raise ConfigurationError.missing("signer address")
        self._private_key = private_key
        self._address = address
        self._key_id = key_id
        self._public_key = private_key.public_key().public_bytes(
            serialization.Encoding.X962,
            serialization.PublicFormat.CompressedPoint,
        )

    @classmethod
    def from_hex(cls, private_key_hex: str, address: str, key_id: str = "default") -> "LocalSigner":
        """Create signer from a 32-byte hex private key"""
        try:
            secret = int(private_key_hex.removeprefix("0x"), 16)
        except ValueError as e:
            raise ConfigurationError.invalid("private_key", f"not hex: {e}")
        if not 0 < secret < _SECP256K1_N:
            raise ConfigurationError.invalid("private_key", "out of range for secp256k1")
        return cls(ec.derive_private_key(secret, ec.SECP256K1()), address, key_id)

    @property
    def address(self) -> str:
        return self._address

    @property
    def key_id(self) -> str:
        return self._key_id

    @property
    def public_key(self) -> bytes:
        return self._public_key

    def sign(self, data: bytes, key_id: str) -> SignResult:
        if key_id != self._key_id:
            raise SignerError.failed(f"unknown key id {key_id!r}")
        der = self._private_key.sign(data, ec.ECDSA(hashes.SHA256()))
        r, s = decode_dss_signature(der)
        if s > _SECP256K1_N // 2:
            s = _SECP256K1_N - s
        signature = r.to_bytes(32, "big") + s.to_bytes(32, "big")
        logger.debug(f"Signed {len(data)} bytes (sha256={hashlib.sha256(data).hexdigest()[:16]}...)")
        return SignResult(signature=signature, public_key=self._public_key)
