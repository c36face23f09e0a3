"""Sparse Merkle Patricia Trie as used for Ethereum state and storage."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from . import rlp
from .keccak import KECCAK_EMPTY, keccak
from .nibbles import lcp, prefix_nibs, to_encoded_path, to_nibs

EMPTY_ROOT = bytes.fromhex(
    "56e81f171bcc55a6ff8345e692c0f86e5b48e01b996cadc001622fb5e363b421"
)
"""Root hash of an empty trie."""

_EMPTY_STRING = bytes([rlp.EMPTY_STRING_CODE])
_DIGEST_SIZE = 32
_BRANCH_WIDTH = 16
_LEAF_FLAG = 0x20
_MAX_U64 = (1 << 64) - 1
_MAX_U256 = (1 << 256) - 1


class MptError(Exception):
    """Base class for errors raised by trie operations."""


class NodeNotResolvedError(MptError):
    """An operation reached a sub-trie that is only known by its digest."""

    def __init__(self, digest: bytes) -> None:
        self.digest = bytes(digest)
        super().__init__(f"reached an unresolved node: 0x{self.digest.hex()}")


class ValueInBranchError(MptError):
    """A value would have to be stored in a branch node, which is not supported."""

    def __init__(self) -> None:
        super().__init__("branch node with value")


class NodeKind(Enum):
    """The type of a trie node."""

    NULL = "null"
    BRANCH = "branch"
    LEAF = "leaf"
    EXTENSION = "extension"
    DIGEST = "digest"


@dataclass(frozen=True)
class NodeReference:
    """How a node is referenced from its parent: inline bytes or a Keccak digest."""

    value: bytes
    is_digest: bool = False


def _decode_uint(data: Any, limit: int, name: str) -> int:
    if not isinstance(data, bytes):
        raise MptError(f"{name} must be an RLP string")
    if data and data[0] == 0:
        raise MptError(f"{name} has a leading zero byte")
    value = int.from_bytes(data, "big")
    if value > limit:
        raise MptError(f"{name} is out of range")
    return value


def _decode_hash(data: Any, name: str) -> bytes:
    if not isinstance(data, bytes) or len(data) != _DIGEST_SIZE:
        raise MptError(f"{name} must be {_DIGEST_SIZE} bytes")
    return data


@dataclass
class StateAccount:
    """An account as stored in the Ethereum state trie."""

    nonce: int = 0
    balance: int = 0
    storage_root: bytes = EMPTY_ROOT
    code_hash: bytes = KECCAK_EMPTY

    def __post_init__(self) -> None:
        self.storage_root = bytes(self.storage_root)
        self.code_hash = bytes(self.code_hash)
        if not 0 <= self.nonce <= _MAX_U64:
            raise ValueError("nonce must fit in 64 bits")
        if not 0 <= self.balance <= _MAX_U256:
            raise ValueError("balance must fit in 256 bits")
        if len(self.storage_root) != _DIGEST_SIZE or len(self.code_hash) != _DIGEST_SIZE:
            raise ValueError(f"hashes must be {_DIGEST_SIZE} bytes")

    def encode(self) -> bytes:
        """Return the RLP encoding of the account."""
        return rlp.encode([self.nonce, self.balance, self.storage_root, self.code_hash])

    @classmethod
    def decode(cls, data: bytes | bytearray | memoryview) -> StateAccount:
        """Decode an RLP-encoded account."""
        try:
            item = rlp.decode(data)
        except rlp.RlpError as exc:
            raise MptError(str(exc)) from exc
        if not isinstance(item, list) or len(item) != 4:
            raise MptError("account must be an RLP list of four items")
        return cls(
            nonce=_decode_uint(item[0], _MAX_U64, "nonce"),
            balance=_decode_uint(item[1], _MAX_U256, "balance"),
            storage_root=_decode_hash(item[2], "storage root"),
            code_hash=_decode_hash(item[3], "code hash"),
        )


class MptNode:
    """A node of a sparse Merkle Patricia Trie; the root node stands for the trie.

    Parts of the trie may be replaced by their digest. Operations that need to
    descend into such a part raise :class:`NodeNotResolvedError`. Branch nodes
    never carry values.
    """

    def __init__(self) -> None:
        self._kind = NodeKind.NULL
        self._prefix: Optional[bytes] = None
        self._value: Optional[bytes] = None
        self._child: Optional[MptNode] = None
        self._children: Optional[list[Optional[MptNode]]] = None
        self._digest: Optional[bytes] = None
        self._cached_ref: Optional[NodeReference] = None

    # construction

    @classmethod
    def null(cls) -> MptNode:
        """Return an empty trie."""
        return cls()

    @classmethod
    def leaf(cls, prefix: bytes, value: bytes) -> MptNode:
        """Return a leaf with an encoded path ``prefix`` and ``value``."""
        node = cls()
        node._kind = NodeKind.LEAF
        node._prefix = bytes(prefix)
        node._value = bytes(value)
        return node

    @classmethod
    def extension(cls, prefix: bytes, child: MptNode) -> MptNode:
        """Return an extension with an encoded path ``prefix`` over ``child``."""
        node = cls()
        node._kind = NodeKind.EXTENSION
        node._prefix = bytes(prefix)
        node._child = child
        return node

    @classmethod
    def branch(cls, children: Sequence[Optional[MptNode]]) -> MptNode:
        """Return a branch with sixteen optional children."""
        children = list(children)
        if len(children) != _BRANCH_WIDTH:
            raise ValueError(f"a branch needs {_BRANCH_WIDTH} children, got {len(children)}")
        node = cls()
        node._kind = NodeKind.BRANCH
        node._children = children
        return node

    @classmethod
    def digest(cls, value: bytes) -> MptNode:
        """Return a sub-trie represented only by its 32-byte hash."""
        value = bytes(value)
        if len(value) != _DIGEST_SIZE:
            raise ValueError(f"digest must be {_DIGEST_SIZE} bytes")
        node = cls()
        node._kind = NodeKind.DIGEST
        node._digest = value
        return node

    def _become(self, other: MptNode) -> None:
        self._kind = other._kind
        self._prefix = other._prefix
        self._value = other._value
        self._child = other._child
        self._children = other._children
        self._digest = other._digest
        self._cached_ref = None

    # inspection

    @property
    def kind(self) -> NodeKind:
        """The type of this node."""
        return self._kind

    @property
    def prefix(self) -> Optional[bytes]:
        """The encoded path of a leaf or extension."""
        return self._prefix

    @property
    def value(self) -> Optional[bytes]:
        """The value stored in a leaf."""
        return self._value

    @property
    def child(self) -> Optional[MptNode]:
        """The child of an extension."""
        return self._child

    @property
    def children(self) -> Optional[tuple[Optional[MptNode], ...]]:
        """The sixteen children of a branch."""
        return None if self._children is None else tuple(self._children)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, MptNode):
            return NotImplemented
        return (
            self._kind == other._kind
            and self._prefix == other._prefix
            and self._value == other._value
            and self._child == other._child
            and self._children == other._children
            and self._digest == other._digest
        )

    def __repr__(self) -> str:
        if self._kind is NodeKind.NULL:
            return "MptNode.null()"
        if self._kind is NodeKind.LEAF:
            return f"MptNode.leaf({self._prefix!r}, {self._value!r})"
        if self._kind is NodeKind.EXTENSION:
            return f"MptNode.extension({self._prefix!r}, {self._child!r})"
        if self._kind is NodeKind.BRANCH:
            return f"MptNode.branch({self._children!r})"
        return f"MptNode.digest({self._digest!r})"

    def is_empty(self) -> bool:
        """Return True if the trie holds no key."""
        return self._kind is NodeKind.NULL

    def is_digest(self) -> bool:
        """Return True if the node is only known by its hash."""
        return self._kind is NodeKind.DIGEST

    def nibs(self) -> list[int]:
        """Return the path nibbles of a leaf or extension, else an empty list."""
        if self._kind in (NodeKind.LEAF, NodeKind.EXTENSION):
            return prefix_nibs(self._prefix)
        return []

    def size(self) -> int:
        """Return the number of traversable nodes."""
        if self._kind is NodeKind.BRANCH:
            return 1 + sum(child.size() for child in self._children if child is not None)
        if self._kind is NodeKind.LEAF:
            return 1
        if self._kind is NodeKind.EXTENSION:
            return 1 + self._child.size()
        return 0

    # encoding

    @classmethod
    def decode(cls, data: bytes | bytearray | memoryview) -> MptNode:
        """Decode an RLP-encoded node."""
        data = bytes(data)
        if not data:
            return cls()
        try:
            item = rlp.decode(data)
        except rlp.RlpError as exc:
            raise MptError(str(exc)) from exc
        return cls._from_item(item)

    @classmethod
    def _from_item(cls, item: Any) -> MptNode:
        if isinstance(item, bytes):
            if not item:
                return cls()
            if len(item) == _DIGEST_SIZE:
                return cls.digest(item)
            raise MptError(f"unexpected RLP string of length {len(item)}")
        if len(item) == 2:
            path, second = item
            if not isinstance(path, bytes):
                raise MptError("node path must be an RLP string")
            if not path:
                raise MptError("node path must not be empty")
            if path[0] & _LEAF_FLAG == 0:
                return cls.extension(path, cls._from_item(second))
            if not isinstance(second, bytes):
                raise MptError("leaf value must be an RLP string")
            return cls.leaf(path, second)
        if len(item) == _BRANCH_WIDTH + 1:
            *child_items, value = item
            children = [
                None if child == b"" else cls._from_item(child) for child in child_items
            ]
            if not isinstance(value, bytes):
                raise MptError("branch value must be an RLP string")
            if value:
                raise ValueInBranchError()
            return cls.branch(children)
        raise MptError("incorrect RLP list length")

    def encode(self) -> bytes:
        """Return the RLP encoding of the node."""
        if self._kind is NodeKind.NULL:
            return _EMPTY_STRING
        if self._kind is NodeKind.DIGEST:
            return rlp.encode(self._digest)
        payload = self._payload()
        return rlp.encode_header(len(payload), True) + payload

    def _payload(self) -> bytes:
        if self._kind is NodeKind.BRANCH:
            encoded_children = b"".join(
                _EMPTY_STRING if child is None else child._reference_encode()
                for child in self._children
            )
            # branches in Ethereum carry a value slot, which is always empty here
            return encoded_children + _EMPTY_STRING
        if self._kind is NodeKind.LEAF:
            return rlp.encode(self._prefix) + rlp.encode(self._value)
        return rlp.encode(self._prefix) + self._child._reference_encode()

    def _reference_encode(self) -> bytes:
        ref = self.reference()
        if ref.is_digest:
            return bytes([rlp.EMPTY_STRING_CODE + _DIGEST_SIZE]) + ref.value
        return ref.value

    def reference(self) -> NodeReference:
        """Return how this node is referenced from a parent node."""
        if self._cached_ref is None:
            self._cached_ref = self._calc_reference()
        return self._cached_ref

    def _calc_reference(self) -> NodeReference:
        if self._kind is NodeKind.NULL:
            return NodeReference(_EMPTY_STRING)
        if self._kind is NodeKind.DIGEST:
            return NodeReference(self._digest, is_digest=True)
        encoded = self.encode()
        if len(encoded) < _DIGEST_SIZE:
            return NodeReference(encoded)
        return NodeReference(keccak(encoded), is_digest=True)

    def hash(self) -> bytes:
        """Return the 32-byte root hash of the trie."""
        if self._kind is NodeKind.NULL:
            return EMPTY_ROOT
        ref = self.reference()
        return ref.value if ref.is_digest else keccak(ref.value)

    # lookup

    def get(self, key: bytes) -> Optional[bytes]:
        """Return the value stored under ``key``, or None if it is provably absent."""
        node = self
        nibs = to_nibs(key)
        while True:
            kind = node._kind
            if kind is NodeKind.NULL:
                return None
            if kind is NodeKind.BRANCH:
                if not nibs:
                    return None
                child = node._children[nibs[0]]
                if child is None:
                    return None
                node, nibs = child, nibs[1:]
            elif kind is NodeKind.LEAF:
                return node._value if prefix_nibs(node._prefix) == nibs else None
            elif kind is NodeKind.EXTENSION:
                own = prefix_nibs(node._prefix)
                if nibs[: len(own)] != own:
                    return None
                node, nibs = node._child, nibs[len(own):]
            else:
                raise NodeNotResolvedError(node._digest)

    def get_rlp(self, key: bytes, decoder: Callable[[bytes], Any]) -> Any:
        """Return ``decoder`` applied to the value under ``key``, or None if absent."""
        value = self.get(key)
        if value is None:
            return None
        try:
            return decoder(value)
        except rlp.RlpError as exc:
            raise MptError(str(exc)) from exc

    # mutation

    def clear(self) -> None:
        """Remove every key from the trie."""
        self._become(MptNode())

    def insert(self, key: bytes, value: bytes) -> bool:
        """Store ``value`` under ``key``; return False if it was already stored."""
        value = bytes(value)
        if not value:
            raise ValueError("value must not be empty")
        return self._insert(to_nibs(key), value)

    def insert_rlp(self, key: bytes, value: Any) -> bool:
        """Store the RLP encoding of ``value`` under ``key``."""
        return self._insert(to_nibs(key), rlp.encode(value))

    def insert_rlp_encoded(self, key: bytes, value: bytes) -> bool:
        """Store already RLP-encoded ``value`` under ``key``."""
        return self._insert(to_nibs(key), bytes(value))

    def _insert(self, key_nibs: list[int], value: bytes) -> bool:
        kind = self._kind
        if kind is NodeKind.NULL:
            self._become(MptNode.leaf(to_encoded_path(key_nibs, True), value))
        elif kind is NodeKind.BRANCH:
            if not key_nibs:
                raise ValueInBranchError()
            index, tail = key_nibs[0], key_nibs[1:]
            child = self._children[index]
            if child is None:
                self._children[index] = MptNode.leaf(to_encoded_path(tail, True), value)
            elif not child._insert(tail, value):
                return False
        elif kind is NodeKind.LEAF:
            own = prefix_nibs(self._prefix)
            common = lcp(own, key_nibs)
            if common == len(own) and common == len(key_nibs):
                if self._value == value:
                    return False
                self._become(MptNode.leaf(self._prefix, value))
            elif common == len(own) or common == len(key_nibs):
                raise ValueInBranchError()
            else:
                split = common + 1
                children: list[Optional[MptNode]] = [None] * _BRANCH_WIDTH
                children[own[common]] = MptNode.leaf(
                    to_encoded_path(own[split:], True), self._value
                )
                children[key_nibs[common]] = MptNode.leaf(
                    to_encoded_path(key_nibs[split:], True), value
                )
                self._become(_wrap_branch(own[:common], MptNode.branch(children)))
        elif kind is NodeKind.EXTENSION:
            own = prefix_nibs(self._prefix)
            common = lcp(own, key_nibs)
            if common == len(own):
                if not self._child._insert(key_nibs[common:], value):
                    return False
            elif common == len(key_nibs):
                raise ValueInBranchError()
            else:
                split = common + 1
                children = [None] * _BRANCH_WIDTH
                if split < len(own):
                    children[own[common]] = MptNode.extension(
                        to_encoded_path(own[split:], False), self._child
                    )
                else:
                    children[own[common]] = self._child
                children[key_nibs[common]] = MptNode.leaf(
                    to_encoded_path(key_nibs[split:], True), value
                )
                self._become(_wrap_branch(own[:common], MptNode.branch(children)))
        else:
            raise NodeNotResolvedError(self._digest)

        self._cached_ref = None
        return True

    def delete(self, key: bytes) -> bool:
        """Remove ``key`` from the trie; return False if it was not present."""
        return self._delete(to_nibs(key))

    def _delete(self, key_nibs: list[int]) -> bool:
        kind = self._kind
        if kind is NodeKind.NULL:
            return False
        if kind is NodeKind.BRANCH:
            if not key_nibs:
                raise ValueInBranchError()
            index, tail = key_nibs[0], key_nibs[1:]
            child = self._children[index]
            if child is None or not child._delete(tail):
                return False
            if child.is_empty():
                self._children[index] = None
            remaining = [(i, node) for i, node in enumerate(self._children) if node is not None]
            if len(remaining) == 1:
                self._become(_collapse_orphan(*remaining[0]))
            elif not remaining:
                self._become(MptNode())
        elif kind is NodeKind.LEAF:
            if prefix_nibs(self._prefix) != key_nibs:
                return False
            self._become(MptNode())
        elif kind is NodeKind.EXTENSION:
            own = prefix_nibs(self._prefix)
            if key_nibs[: len(own)] != own:
                return False
            child = self._child
            if not child._delete(key_nibs[len(own):]):
                return False
            # an extension may only point to a branch or a digest
            if child._kind is NodeKind.NULL:
                self._become(MptNode())
            elif child._kind is NodeKind.LEAF:
                self._become(
                    MptNode.leaf(to_encoded_path(own + child.nibs(), True), child._value)
                )
            elif child._kind is NodeKind.EXTENSION:
                self._become(
                    MptNode.extension(to_encoded_path(own + child.nibs(), False), child._child)
                )
        else:
            raise NodeNotResolvedError(self._digest)

        self._cached_ref = None
        return True

    # debugging

    def debug_rlp(self, decoder: Callable[[bytes], Any]) -> list[str]:
        """Return one line per leaf, showing its path and decoded value."""
        nibs = "".join(f"{nib:x}" for nib in self.nibs())
        kind = self._kind
        if kind is NodeKind.NULL:
            return ["Null"]
        if kind is NodeKind.BRANCH:
            lines = []
            for i, child in enumerate(self._children):
                sub = ["None"] if child is None else child.debug_rlp(decoder)
                lines.extend(f"{i:x} {line}" for line in sub)
            return lines
        if kind is NodeKind.LEAF:
            return [f"{nibs} -> {decoder(self._value)!r}"]
        if kind is NodeKind.EXTENSION:
            return [f"{nibs} {line}" for line in self._child.debug_rlp(decoder)]
        return [f"#0x{self._digest.hex()}"]


def _wrap_branch(common_nibs: list[int], branch: MptNode) -> MptNode:
    if common_nibs:
        return MptNode.extension(to_encoded_path(common_nibs, False), branch)
    return branch


def _collapse_orphan(index: int, orphan: MptNode) -> MptNode:
    if orphan.kind is NodeKind.LEAF:
        return MptNode.leaf(to_encoded_path([index, *orphan.nibs()], True), orphan.value)
    if orphan.kind is NodeKind.EXTENSION:
        return MptNode.extension(
            to_encoded_path([index, *orphan.nibs()], False), orphan.child
        )
    return MptNode.extension(to_encoded_path([index], False), orphan)