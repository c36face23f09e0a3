# mptkit

Building blocks for working with Ethereum state data in pure Python:

- `mptkit.keccak` – Keccak-256 hashing (`keccak`, and `KECCAK_EMPTY`, the hash of empty input).
- `mptkit.rlp` – Recursive Length Prefix encoding and decoding (`encode`, `decode`,
  `encode_header`, `length_of_length`, `RlpError`). `encode` takes `bytes`, `str`,
  non-negative `int` and lists or tuples of these; `decode` returns `bytes` and lists.
- `mptkit.nibbles` – nibble helpers for trie paths (`to_nibs`, `to_encoded_path`, `lcp`,
  `prefix_nibs`).
- `mptkit.mpt` – a sparse Merkle Patricia Trie (`MptNode`, `NodeKind`, `NodeReference`,
  `StateAccount`, `EMPTY_ROOT`, and the errors `MptError`, `NodeNotResolvedError`,
  `ValueInBranchError`).
- `mptkit.mpt_proof` – building tries from EIP-1186 proofs (`parse_proof`, `mpt_from_proof`,
  `is_not_included`, `resolve_nodes`, `shorten_node_path`, `proofs_to_tries`,
  `AccountProof`, `StorageProof`, `ProofError`).
- `mptkit.receipt` – transaction receipts and their logs bloom (`Log`, `ReceiptPayload`,
  `Receipt`, `bloom_accrue`).
- `mptkit.eip4844` – blob fee arithmetic, protocol constants and versioned hashes
  (`calc_blob_gasprice`, `calculate_excess_blob_gas`, `fake_exponential`,
  `kzg_to_versioned_hash`).

## Installation

```
pip install mptkit
```

## Using the trie

```python
from mptkit.mpt import MptNode

trie = MptNode.null()
trie.insert(b"dog", b"puppy")
trie.insert(b"horse", b"stallion")

assert trie.get(b"dog") == b"puppy"
print(trie.hash().hex())

# Encode and decode the root node
restored = MptNode.decode(trie.encode())
assert restored.hash() == trie.hash()

trie.delete(b"dog")
```

`insert` returns `False` when the same value is already stored under the key, and
`delete` returns `False` when the key is absent. `insert_rlp` stores the RLP encoding of a
value, and `get_rlp(key, decoder)` applies `decoder` to the stored bytes.

Parts of a trie may be replaced by their hash (digest nodes, made with `MptNode.digest`).
Looking up, inserting or deleting a key that passes through such a node raises
`NodeNotResolvedError`; a key that would put a value inside a branch raises
`ValueInBranchError`. Both derive from `MptError`.

`StateAccount` holds an account's nonce, balance, storage root and code hash, with
`encode()` and `StateAccount.decode(data)` for its RLP form.

## Tries from proofs

`parse_proof` decodes a list of RLP-encoded proof nodes, and `mpt_from_proof` links them
into a single trie rooted at the first node. `is_not_included(key, nodes)` tells whether
such a proof shows a key to be absent. `proofs_to_tries(state_root, parent_proofs, proofs)`
takes mappings from address to `AccountProof` and returns the state trie together with a
storage trie and the proven slot numbers for each address; it raises `ProofError` if a
proof is malformed or a rebuilt trie does not hash to its expected root.

## Receipts

```python
from mptkit.receipt import Log, Receipt

log = Log(address=bytes(20), topics=[bytes(32)], data=b"\x01")
receipt = Receipt.create(2, True, 21000, [log])
encoded = receipt.encode()  # EIP-2718 typed encoding
```

A receipt of type 0 is encoded without the leading type byte.

## What this package does not do

- It does not fetch proofs or blocks from a node; proofs must be supplied as bytes.
- It does not compute KZG commitments or load a trusted setup; `kzg_to_versioned_hash`
  only hashes a 48-byte commitment it is given.
- It provides no command-line program.

## Running the tests

```
pip install -e ".[test]"
pytest
```