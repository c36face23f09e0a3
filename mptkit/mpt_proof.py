"""Building sparse tries from EIP-1186 account and storage proofs."""

from __future__ import annotations

import copy
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Optional

from .keccak import keccak
from .mpt import (
    EMPTY_ROOT,
    MptError,
    MptNode,
    NodeKind,
    NodeReference,
)
from .nibbles import to_encoded_path

_DIGEST_SIZE = 32
_ZERO_HASH = bytes(_DIGEST_SIZE)

StorageEntry = tuple[MptNode, list[int]]


class ProofError(MptError):
    """A proof is malformed or does not match the expected root."""


@dataclass
class StorageProof:
    """Proof of a single storage slot: the slot key and the encoded proof nodes."""

    key: bytes
    proof: list[bytes] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.key = bytes(self.key)
        if len(self.key) != _DIGEST_SIZE:
            raise ValueError(f"storage key must be {_DIGEST_SIZE} bytes")
        self.proof = [bytes(node) for node in self.proof]


@dataclass
class AccountProof:
    """Proof of an account and of some of its storage slots."""

    storage_hash: bytes
    account_proof: list[bytes] = field(default_factory=list)
    storage_proof: list[StorageProof] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.storage_hash = bytes(self.storage_hash)
        if len(self.storage_hash) != _DIGEST_SIZE:
            raise ValueError(f"storage hash must be {_DIGEST_SIZE} bytes")
        self.account_proof = [bytes(node) for node in self.account_proof]
        self.storage_proof = list(self.storage_proof)


def parse_proof(proof: Iterable[bytes]) -> list[MptNode]:
    """Decode each encoded proof node."""
    try:
        return [MptNode.decode(node) for node in proof]
    except MptError as exc:
        raise ProofError(f"invalid proof encoding: {exc}") from exc


def _references(node: Optional[MptNode], digest: bytes) -> bool:
    return node is not None and node.is_digest() and node.hash() == digest


def mpt_from_proof(proof_nodes: Sequence[MptNode]) -> MptNode:
    """Link the proof nodes into one trie, rooted at the first node.

    For an inclusion proof the result holds exactly one leaf with the value.
    """
    successor: Optional[MptNode] = None
    for i in reversed(range(len(proof_nodes))):
        node = proof_nodes[i]
        if successor is None:
            successor = copy.deepcopy(node)
            continue

        ref = successor.reference()
        if not ref.is_digest:
            raise ProofError(f"node {i + 1} in proof is not referenced by hash")

        if node.kind is NodeKind.BRANCH:
            children = [copy.deepcopy(child) for child in node.children]
            position = next(
                (j for j, child in enumerate(children) if _references(child, ref.value)),
                None,
            )
            if position is None:
                raise ProofError(f"node {i} does not reference the successor")
            children[position] = successor
            successor = MptNode.branch(children)
        elif node.kind is NodeKind.EXTENSION:
            if not _references(node.child, ref.value):
                raise ProofError(f"node {i} does not reference the successor")
            successor = MptNode.extension(node.prefix, successor)
        else:
            raise ProofError(f"node {i} has no children to replace")

    return successor if successor is not None else MptNode.null()


def is_not_included(key: bytes, proof_nodes: Sequence[MptNode]) -> bool:
    """Return True if the proof shows that ``key`` is absent from the trie."""
    trie = mpt_from_proof(proof_nodes)
    try:
        value = trie.get(key)
    except MptError as exc:
        raise ProofError(f"proof does not cover the key: {exc}") from exc
    return value is None


def resolve_nodes(root: MptNode, node_store: Mapping[NodeReference, MptNode]) -> MptNode:
    """Return a copy of ``root`` with every digest found in ``node_store`` resolved."""
    kind = root.kind
    if kind is NodeKind.BRANCH:
        return MptNode.branch(
            [
                None if child is None else resolve_nodes(child, node_store)
                for child in root.children
            ]
        )
    if kind is NodeKind.EXTENSION:
        return MptNode.extension(root.prefix, resolve_nodes(root.child, node_store))
    if kind is NodeKind.DIGEST:
        node = node_store.get(NodeReference(root.hash(), is_digest=True))
        if node is not None:
            return resolve_nodes(node, node_store)
    return copy.deepcopy(root)


def shorten_node_path(node: MptNode) -> list[MptNode]:
    """Return every variant of a leaf or extension with a shortened path.

    Deleting keys can lengthen the path of a leaf or extension; these variants
    allow the original nodes to be found again by their reference.
    """
    nibs = node.nibs()
    if node.kind is NodeKind.LEAF:
        return [
            MptNode.leaf(to_encoded_path(nibs[i:], True), node.value)
            for i in range(len(nibs) + 1)
        ]
    if node.kind is NodeKind.EXTENSION:
        return [
            MptNode.extension(to_encoded_path(nibs[i:], False), copy.deepcopy(node.child))
            for i in range(len(nibs) + 1)
        ]
    return []


def _node_from_digest(digest: bytes) -> MptNode:
    if digest in (EMPTY_ROOT, _ZERO_HASH):
        return MptNode.null()
    return MptNode.digest(digest)


def _add_orphaned_leafs(
    key: bytes,
    proof: Sequence[bytes],
    nodes_by_reference: dict[NodeReference, MptNode],
) -> None:
    if not proof:
        return
    proof_nodes = parse_proof(proof)
    if is_not_included(keccak(key), proof_nodes):
        for node in shorten_node_path(proof_nodes[-1]):
            nodes_by_reference[node.reference()] = node


def _collect(
    proof: Sequence[bytes], nodes: dict[NodeReference, MptNode]
) -> Optional[MptNode]:
    proof_nodes = parse_proof(proof)
    mpt_from_proof(proof_nodes)
    for node in proof_nodes:
        nodes[node.reference()] = node
    return proof_nodes[0] if proof_nodes else None


def proofs_to_tries(
    state_root: bytes,
    parent_proofs: Mapping[bytes, AccountProof],
    proofs: Mapping[bytes, AccountProof],
) -> tuple[MptNode, dict[bytes, StorageEntry]]:
    """Build the state trie and the storage tries covered by the proofs.

    ``parent_proofs`` are proofs against ``state_root``; ``proofs`` are the
    proofs of the same addresses after execution, used so that keys can later
    be deleted from the tries.
    """
    state_root = bytes(state_root)
    if not parent_proofs:
        return _node_from_digest(state_root), {}

    storage: dict[bytes, StorageEntry] = {}
    state_nodes: dict[NodeReference, MptNode] = {}
    state_root_node = MptNode.null()

    for address, proof in parent_proofs.items():
        first = _collect(proof.account_proof, state_nodes)
        if first is not None:
            state_root_node = first

        fini_proof = proofs.get(address)
        if fini_proof is None:
            raise ProofError(f"missing final proof for address 0x{bytes(address).hex()}")

        _add_orphaned_leafs(address, fini_proof.account_proof, state_nodes)

        storage_root = proof.storage_hash
        if not proof.storage_proof:
            storage[address] = (_node_from_digest(storage_root), [])
            continue

        storage_nodes: dict[NodeReference, MptNode] = {}
        storage_root_node = MptNode.null()
        for storage_proof in proof.storage_proof:
            first = _collect(storage_proof.proof, storage_nodes)
            if first is not None:
                storage_root_node = first

        for storage_proof in fini_proof.storage_proof:
            _add_orphaned_leafs(storage_proof.key, storage_proof.proof, storage_nodes)

        storage_trie = resolve_nodes(storage_root_node, storage_nodes)
        if storage_trie.hash() != storage_root:
            raise ProofError(
                f"storage trie of 0x{bytes(address).hex()} does not match its storage root"
            )

        slots = [int.from_bytes(p.key, "big") for p in proof.storage_proof]
        storage[address] = (storage_trie, slots)

    state_trie = resolve_nodes(state_root_node, state_nodes)
    if state_trie.hash() != state_root:
        raise ProofError("state trie does not match the state root")

    return state_trie, storage