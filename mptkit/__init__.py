"""Merkle Patricia Trie, RLP, receipt and blob-fee primitives for Ethereum data."""

__version__ = "0.1.0"
__all__ = ["eip4844", "keccak", "mpt", "mpt_proof", "nibbles", "receipt", "rlp"]