"""
Message codec boundary

The codec turns an assembled transaction into the bytes that get signed and
the bytes that get broadcast. Protobuf encoding is chain specific and lives
outside the client; JsonTxCodec is a deterministic JSON rendition for
gateways that accept it and for tests.
"""

from __future__ import annotations

import base64
import json
from typing import TYPE_CHECKING, Any, Dict, Protocol, runtime_checkable

if TYPE_CHECKING:
    from .tx_builder import UnsignedTx


@runtime_checkable
class MessageCodec(Protocol):
    """Protocol for transaction encoding"""

    def encode_sign_doc(self, unsigned: "UnsignedTx") -> bytes:
        """Bytes the signer signs"""
        ...

    def encode_tx(self, unsigned: "UnsignedTx", signature: bytes) -> bytes:
        """Broadcastable bytes; an empty signature yields simulation bytes"""
        ...


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


class JsonTxCodec:
    """
    Canonical JSON transaction encoding

    Keys are sorted and separators fixed, so the same transaction always
    encodes to the same bytes (and therefore the same hash).
    """

    @staticmethod
    def _dumps(obj: Dict[str, Any]) -> bytes:
        return json.dumps(obj, sort_keys=True, separators=(",", ":")).encode("utf-8")

    @staticmethod
    def _body(unsigned: "UnsignedTx") -> Dict[str, Any]:
        return {
            "messages": [
                {"type_url": m.type_url, "value": _b64(m.value)}
                for m in unsigned.messages
            ],
            "memo": unsigned.memo,
            "timeout_height": str(unsigned.timeout_height),
        }

    @staticmethod
    def _auth_info(unsigned: "UnsignedTx") -> Dict[str, Any]:
        signer_infos = []
        if unsigned.public_key is not None:
            signer_infos.append({
                "public_key": _b64(unsigned.public_key),
                "sequence": str(unsigned.sequence),
            })
        return {
            "signer_infos": signer_infos,
            "fee": {
                "amount": [{"denom": unsigned.fee_denom, "amount": str(unsigned.fee_amount)}],
                "gas_limit": str(unsigned.gas_limit),
            },
        }

    def encode_sign_doc(self, unsigned: "UnsignedTx") -> bytes:
        return self._dumps({
            "body": self._body(unsigned),
            "auth_info": self._auth_info(unsigned),
            "chain_id": unsigned.chain_id,
            "account_number": str(unsigned.account_number),
        })

    def encode_tx(self, unsigned: "UnsignedTx", signature: bytes) -> bytes:
        return self._dumps({
            "body": self._body(unsigned),
            "auth_info": self._auth_info(unsigned),
            "signatures": [_b64(signature)] if signature else [],
        })
