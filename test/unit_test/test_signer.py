"""
Test Signer Module

Tests for cosmos_client.infra.signer.
"""

import asyncio
import hashlib
import sys
from pathlib import Path

import pytest
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import encode_dss_signature

# Add parent to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from cosmos_client.infra.signer import LocalSigner, SignResult, Signer, sign_with
from cosmos_client.errors import ConfigurationError, ErrorCode, SignerError

PRIVATE_KEY = "1f" * 32
ADDRESS = "cosmos1sender"
SECP256K1_N = int("FFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141", 16)


def test_signer_protocol():
    """Test LocalSigner satisfies the Signer protocol"""
    print("Testing Signer protocol...")

    signer = LocalSigner.from_hex(PRIVATE_KEY, address=ADDRESS)
    assert isinstance(signer, Signer)
    assert signer.address == ADDRESS
    assert signer.key_id == "default"

    print("  Signer protocol: PASSED")


def test_local_signer_signature_verifies():
    """Signature is 64-byte r||s over SHA-256 and verifies with the public key"""
    print("Testing LocalSigner signature...")

    signer = LocalSigner.from_hex("0x" + PRIVATE_KEY, address=ADDRESS)
    data = b'{"chain_id":"test-1"}'

    result = signer.sign(data, signer.key_id)

    assert len(result.signature) == 64
    assert len(result.public_key) == 33
    assert result.public_key[0] in (2, 3)
    assert result.public_key == signer.public_key

    r = int.from_bytes(result.signature[:32], "big")
    s = int.from_bytes(result.signature[32:], "big")
    public_key = ec.EllipticCurvePublicKey.from_encoded_point(ec.SECP256K1(), result.public_key)
    # Raises InvalidSignature on mismatch
    public_key.verify(encode_dss_signature(r, s), data, ec.ECDSA(hashes.SHA256()))

    print("  LocalSigner signature: PASSED")


def test_local_signer_low_s():
    """Every signature is normalised to the lower half of the curve order"""
    print("Testing low-S normalisation...")

    signer = LocalSigner.from_hex(PRIVATE_KEY, address=ADDRESS)
    for i in range(32):
        data = hashlib.sha256(str(i).encode()).digest()
        signature = signer.sign(data, signer.key_id).signature
        s = int.from_bytes(signature[32:], "big")
        assert 0 < s <= SECP256K1_N // 2

    print("  Low-S normalisation: PASSED")


def test_invalid_private_key():
    print("Testing invalid private keys...")

    with pytest.raises(ConfigurationError):
        LocalSigner.from_hex("not-hex", address=ADDRESS)
    with pytest.raises(ConfigurationError):
        LocalSigner.from_hex("00" * 32, address=ADDRESS)
    with pytest.raises(ConfigurationError):
        LocalSigner.from_hex(PRIVATE_KEY, address="")

    p256 = ec.generate_private_key(ec.SECP256R1())
    with pytest.raises(ConfigurationError):
        LocalSigner(p256, address=ADDRESS)

    print("  Invalid private keys: PASSED")


def test_unknown_key_id():
    signer = LocalSigner.from_hex(PRIVATE_KEY, address=ADDRESS, key_id="validator")

    with pytest.raises(SignerError):
        signer.sign(b"data", "default")


class AsyncSigner:
    """Remote-style signer with a coroutine sign()"""

    def __init__(self, inner, public_key=None, error=None):
        self._inner = inner
        self._public_key = public_key or inner.public_key
        self._error = error

    @property
    def address(self):
        return self._inner.address

    @property
    def key_id(self):
        return self._inner.key_id

    @property
    def public_key(self):
        return self._public_key

    async def sign(self, data, key_id):
        await asyncio.sleep(0)
        if self._error is not None:
            raise self._error
        return self._inner.sign(data, key_id)


def test_sign_with_sync_and_async():
    """sign_with accepts both sync and coroutine signers"""
    print("Testing sign_with...")

    local = LocalSigner.from_hex(PRIVATE_KEY, address=ADDRESS)

    sync_result = asyncio.run(sign_with(local, b"doc"))
    async_result = asyncio.run(sign_with(AsyncSigner(local), b"doc"))

    assert isinstance(sync_result, SignResult)
    assert async_result.public_key == local.public_key

    print("  sign_with: PASSED")


def test_sign_with_wraps_failures():
    print("Testing sign_with failures...")

    local = LocalSigner.from_hex(PRIVATE_KEY, address=ADDRESS)

    with pytest.raises(SignerError) as exc_info:
        asyncio.run(sign_with(AsyncSigner(local, error=RuntimeError("HSM offline")), b"doc"))
    assert exc_info.value.code == ErrorCode.SIGNER_FAILED
    assert "HSM offline" in exc_info.value.message
    assert isinstance(exc_info.value.original_error, RuntimeError)

    # Signer advertising one key but signing with another
    wrong = AsyncSigner(local, public_key=b"\x02" + b"\x00" * 32)
    with pytest.raises(SignerError):
        asyncio.run(sign_with(wrong, b"doc"))

    print("  sign_with failures: PASSED")
