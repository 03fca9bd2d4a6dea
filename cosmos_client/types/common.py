"""
Common type definitions: chain messages and coins
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class ChainMessage:
    """
    A single chain message, already encoded by the message codec

    Attributes:
        type_url: Protobuf Any type URL (e.g. "/cosmos.bank.v1beta1.MsgSend")
        value: Encoded message bytes (opaque to the client)
        description: Human readable summary used in logs
    """
    type_url: str
    value: bytes
    description: str = ""

    def __str__(self) -> str:
        return self.description or self.type_url


@dataclass(frozen=True)
class Coin:
    """Amount of a single denom"""
    denom: str
    amount: int

    def __str__(self) -> str:
        return f"{self.amount}{self.denom}"
