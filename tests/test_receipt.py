import pytest

from mptkit import rlp
from mptkit.receipt import BLOOM_SIZE, Log, Receipt, ReceiptPayload, bloom_accrue

SOURCE_LEGACY_HEX = "f901c58001b9010000000000000010000000000000000000000000000000000000000000000000000000000000000000000000000000000000000000000000000000000000000000000000500000000000000000000000000000000000014000000000000000000000000000000000000000000000000000000000000000000000000000010000080000000000000000000004000000000000000000000000000040000000000000000000000000000800000000000000000000000000000000000000000000000000000400000000000000000000000000000000000000000000000000000000000010000000000000000000000000000000000000000000000000000000000000f8bef85d940000000000000000000000000000000000000011f842a0000000000000000000000000000000000000000000000000000000000000deada0000000000000000000000000000000000000000000000000000000000000beef830100fff85d940000000000000000000000000000000000000111f842a0000000000000000000000000000000000000000000000000000000000000deada0000000000000000000000000000000000000000000000000000000000000beef830100ff"  # noqa: E501

DEAD = bytes.fromhex("000000000000000000000000000000000000000000000000000000000000dead")
BEEF = bytes.fromhex("000000000000000000000000000000000000000000000000000000000000beef")


def _logs():
    return [
        Log(
            address=bytes.fromhex("0000000000000000000000000000000000000011"),
            topics=[DEAD, BEEF],
            data=bytes.fromhex("0100ff"),
        ),
        Log(
            address=bytes.fromhex("0000000000000000000000000000000000000111"),
            topics=[DEAD, BEEF],
            data=bytes.fromhex("0100ff"),
        ),
    ]


def test_legacy():
    receipt = Receipt.create(0, False, 1, _logs())
    assert receipt.encode() == bytes.fromhex(SOURCE_LEGACY_HEX)


def test_eip2930():
    receipt = Receipt.create(1, False, 1, _logs())
    assert receipt.encode() == bytes.fromhex("01" + SOURCE_LEGACY_HEX)


def test_eip1559():
    receipt = Receipt.create(2, False, 1, _logs())
    assert receipt.encode() == bytes.fromhex("02" + SOURCE_LEGACY_HEX)


def test_payload_decodes_to_fields():
    receipt = Receipt.create(0, True, 21000, _logs())
    success, gas, bloom, logs = rlp.decode(receipt.payload.encode())
    assert success == b"\x01"
    assert int.from_bytes(gas, "big") == 21000
    assert bloom == receipt.payload.logs_bloom
    assert logs == [rlp.decode(log.encode()) for log in _logs()]


def test_bloom_accrue_sets_few_bits_and_is_idempotent():
    once = bloom_accrue(bytes(BLOOM_SIZE), b"hello")
    twice = bloom_accrue(once, b"hello")
    bits = sum(bin(byte).count("1") for byte in once)
    assert 1 <= bits <= 3
    assert twice == once


def test_bloom_contains_all_accrued_bits():
    receipt = Receipt.create(0, False, 0, _logs())
    bloom = receipt.payload.logs_bloom
    for log in _logs():
        for item in [log.address, *log.topics]:
            assert bloom_accrue(bloom, item) == bloom


def test_bloom_wrong_size_rejected():
    with pytest.raises(ValueError):
        bloom_accrue(bytes(10), b"x")


def test_default_receipt_roundtrips_through_rlp():
    receipt = Receipt()
    decoded = rlp.decode(receipt.encode())
    assert decoded == [b"", b"", bytes(BLOOM_SIZE), []]


def test_log_validation():
    with pytest.raises(ValueError):
        Log(address=bytes(19))
    with pytest.raises(ValueError):
        Log(topics=[bytes(31)])


def test_receipt_validation():
    with pytest.raises(ValueError):
        Receipt(tx_type=256)
    with pytest.raises(ValueError):
        ReceiptPayload(logs_bloom=bytes(8))
    with pytest.raises(ValueError):
        ReceiptPayload(cumulative_gas_used=-1)