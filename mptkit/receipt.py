"""Ethereum transaction receipts and log blooms."""

from __future__ import annotations

from dataclasses import dataclass, field

from . import rlp
from .keccak import keccak

BLOOM_SIZE = 256
ADDRESS_SIZE = 20
TOPIC_SIZE = 32


def bloom_accrue(bloom: bytes, data: bytes) -> bytes:
    """Return ``bloom`` with the three bits selected by ``keccak(data)`` set."""
    if len(bloom) != BLOOM_SIZE:
        raise ValueError(f"bloom must be {BLOOM_SIZE} bytes, got {len(bloom)}")
    digest = keccak(data)
    result = bytearray(bloom)
    for i in (0, 2, 4):
        bit = int.from_bytes(digest[i : i + 2], "big") & 0x7FF
        result[BLOOM_SIZE - 1 - bit // 8] |= 1 << (bit % 8)
    return bytes(result)


@dataclass
class Log:
    """A log entry emitted by a contract."""

    address: bytes = bytes(ADDRESS_SIZE)
    topics: list[bytes] = field(default_factory=list)
    data: bytes = b""

    def __post_init__(self) -> None:
        self.address = bytes(self.address)
        if len(self.address) != ADDRESS_SIZE:
            raise ValueError(f"address must be {ADDRESS_SIZE} bytes")
        self.topics = [bytes(topic) for topic in self.topics]
        if any(len(topic) != TOPIC_SIZE for topic in self.topics):
            raise ValueError(f"topics must be {TOPIC_SIZE} bytes each")
        self.data = bytes(self.data)

    def _rlp_item(self) -> list:
        return [self.address, list(self.topics), self.data]

    def encode(self) -> bytes:
        """Return the RLP encoding of the log."""
        return rlp.encode(self._rlp_item())


@dataclass
class ReceiptPayload:
    """The RLP-encoded body of a receipt."""

    success: bool = False
    cumulative_gas_used: int = 0
    logs_bloom: bytes = bytes(BLOOM_SIZE)
    logs: list[Log] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.logs_bloom = bytes(self.logs_bloom)
        if len(self.logs_bloom) != BLOOM_SIZE:
            raise ValueError(f"logs bloom must be {BLOOM_SIZE} bytes")
        if self.cumulative_gas_used < 0:
            raise ValueError("cumulative gas used must not be negative")

    def encode(self) -> bytes:
        """Return the RLP encoding of the payload."""
        return rlp.encode(
            [
                bool(self.success),
                self.cumulative_gas_used,
                self.logs_bloom,
                [log._rlp_item() for log in self.logs],
            ]
        )


@dataclass
class Receipt:
    """Result of executing a transaction."""

    tx_type: int = 0
    payload: ReceiptPayload = field(default_factory=ReceiptPayload)

    def __post_init__(self) -> None:
        if not 0 <= self.tx_type <= 0xFF:
            raise ValueError("transaction type must fit in one byte")

    @classmethod
    def create(
        cls, tx_type: int, success: bool, cumulative_gas_used: int, logs: list[Log]
    ) -> Receipt:
        """Build a receipt, computing its logs bloom from ``logs``."""
        bloom = bytes(BLOOM_SIZE)
        for log in logs:
            bloom = bloom_accrue(bloom, log.address)
            for topic in log.topics:
                bloom = bloom_accrue(bloom, topic)
        return cls(
            tx_type=tx_type,
            payload=ReceiptPayload(
                success=success,
                cumulative_gas_used=cumulative_gas_used,
                logs_bloom=bloom,
                logs=list(logs),
            ),
        )

    def encode(self) -> bytes:
        """Return the encoding, prefixed by the type byte for typed receipts."""
        body = self.payload.encode()
        if self.tx_type == 0:
            return body
        return bytes([self.tx_type]) + body