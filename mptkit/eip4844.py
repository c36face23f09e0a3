"""EIP-4844 blob gas helpers and protocol constants."""

from __future__ import annotations

import hashlib

BLOB_GASPRICE_UPDATE_FRACTION = 3_338_477
BLOB_TX_MIN_BLOB_GASPRICE = 1
DATA_GAS_PER_BLOB = 131_072
FIELD_ELEMENTS_PER_BLOB = 4096
FIELD_ELEMENT_BYTES = 32
MAX_BLOBS_PER_BLOCK = 6
MAX_DATA_GAS_PER_BLOCK = MAX_BLOBS_PER_BLOCK * DATA_GAS_PER_BLOB
TARGET_BLOBS_PER_BLOCK = 3
TARGET_DATA_GAS_PER_BLOCK = TARGET_BLOBS_PER_BLOCK * DATA_GAS_PER_BLOB
VERSIONED_HASH_VERSION_KZG = 0x01

BYTES_PER_COMMITMENT = 48


def kzg_to_versioned_hash(commitment: bytes | bytearray | memoryview) -> bytes:
    """Return the versioned hash of a 48-byte KZG commitment."""
    data = bytes(commitment)
    if len(data) != BYTES_PER_COMMITMENT:
        raise ValueError(
            f"KZG commitment must be {BYTES_PER_COMMITMENT} bytes, got {len(data)}"
        )
    digest = hashlib.sha256(data).digest()
    return bytes([VERSIONED_HASH_VERSION_KZG]) + digest[1:]


def fake_exponential(factor: int, numerator: int, denominator: int) -> int:
    """Approximate ``factor * e ** (numerator / denominator)`` with integers."""
    if denominator == 0:
        raise ValueError("denominator must not be zero")
    output = 0
    accumulator = factor * denominator
    i = 1
    while accumulator > 0:
        output += accumulator
        accumulator = (accumulator * numerator) // (denominator * i)
        i += 1
    return output // denominator


def calc_blob_gasprice(excess_blob_gas: int) -> int:
    """Return the blob gas price for the given excess blob gas."""
    if excess_blob_gas < 0:
        raise ValueError("excess blob gas must not be negative")
    return fake_exponential(
        BLOB_TX_MIN_BLOB_GASPRICE, excess_blob_gas, BLOB_GASPRICE_UPDATE_FRACTION
    )


def calculate_excess_blob_gas(parent_excess_blob_gas: int, parent_blob_gas_used: int) -> int:
    """Return the excess blob gas of a block from its parent's values."""
    if parent_excess_blob_gas < 0 or parent_blob_gas_used < 0:
        raise ValueError("blob gas values must not be negative")
    return max(0, parent_excess_blob_gas + parent_blob_gas_used - TARGET_DATA_GAS_PER_BLOCK)