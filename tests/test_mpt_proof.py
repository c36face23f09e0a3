import pytest

from mptkit.keccak import keccak
from mptkit.mpt import (
    EMPTY_ROOT,
    MptNode,
    NodeKind,
    NodeNotResolvedError,
    StateAccount,
)
from mptkit.mpt_proof import (
    AccountProof,
    ProofError,
    StorageProof,
    is_not_included,
    mpt_from_proof,
    parse_proof,
    proofs_to_tries,
    resolve_nodes,
    shorten_node_path,
)
from mptkit.nibbles import to_encoded_path, to_nibs


def make_proof(trie, key):
    """Encoded nodes along the path of ``key``, root first."""
    nibs = to_nibs(key)
    node = trie
    out = []
    while True:
        out.append(node.encode())
        if node.kind is NodeKind.BRANCH:
            if not nibs or node.children[nibs[0]] is None:
                break
            node, nibs = node.children[nibs[0]], nibs[1:]
        elif node.kind is NodeKind.EXTENSION:
            own = node.nibs()
            if nibs[: len(own)] != own:
                break
            node, nibs = node.child, nibs[len(own):]
        else:
            break
    return out


def all_nodes(trie):
    yield trie
    if trie.kind is NodeKind.BRANCH:
        for child in trie.children:
            if child is not None:
                yield from all_nodes(child)
    elif trie.kind is NodeKind.EXTENSION:
        yield from all_nodes(trie.child)


def value_for(i):
    return bytes([i + 1]) * 40


@pytest.fixture
def trie():
    node = MptNode.null()
    for i in range(20):
        node.insert(keccak(bytes([i])), value_for(i))
    return node


def test_parse_proof_nodes_hash_to_encodings(trie):
    proof = make_proof(trie, keccak(bytes([3])))
    nodes = parse_proof(proof)
    assert len(nodes) == len(proof)
    assert [n.hash() for n in nodes] == [keccak(p) for p in proof]
    assert nodes[0].hash() == trie.hash()


def test_parse_proof_invalid_encoding():
    with pytest.raises(ProofError):
        parse_proof([b"\xf8"])


def test_mpt_from_proof_inclusion(trie):
    key = keccak(bytes([7]))
    proof_trie = mpt_from_proof(parse_proof(make_proof(trie, key)))
    assert proof_trie.hash() == trie.hash()
    assert proof_trie.get(key) == value_for(7)


def test_mpt_from_proof_other_keys_unresolved(trie):
    key = keccak(bytes([7]))
    proof_trie = mpt_from_proof(parse_proof(make_proof(trie, key)))
    other = next(
        keccak(bytes([i])) for i in range(20) if to_nibs(keccak(bytes([i])))[0] != to_nibs(key)[0]
    )
    with pytest.raises(NodeNotResolvedError):
        proof_trie.get(other)


def test_mpt_from_proof_empty_is_null():
    assert mpt_from_proof([]).is_empty()


def test_mpt_from_proof_unrelated_nodes(trie):
    first = parse_proof(make_proof(trie, keccak(bytes([1]))))
    other = MptNode.null()
    other.insert(b"\x01" * 32, b"\x02" * 40)
    with pytest.raises(ProofError):
        mpt_from_proof([first[0], other])


def test_mpt_from_proof_leaf_without_children():
    leaf = MptNode.leaf(to_encoded_path([1, 2], True), b"\x05" * 40)
    with pytest.raises(ProofError):
        mpt_from_proof([leaf, leaf])


def test_is_not_included(trie):
    included = keccak(bytes([5]))
    assert is_not_included(included, parse_proof(make_proof(trie, included))) is False
    absent = keccak(b"absent")
    assert is_not_included(absent, parse_proof(make_proof(trie, absent))) is True


def test_resolve_nodes_restores_full_trie(trie):
    root_only = MptNode.decode(trie.encode())
    store = {node.reference(): node for node in all_nodes(trie)}
    resolved = resolve_nodes(root_only, store)
    assert resolved == trie
    assert resolved.hash() == trie.hash()
    assert resolved.get(keccak(bytes([11]))) == value_for(11)


def test_resolve_nodes_without_store_keeps_digests(trie):
    root_only = MptNode.decode(trie.encode())
    resolved = resolve_nodes(root_only, {})
    assert resolved == root_only
    assert resolved.hash() == trie.hash()


def test_shorten_leaf_path():
    leaf = MptNode.leaf(to_encoded_path([1, 2, 3], True), b"value")
    shortened = shorten_node_path(leaf)
    assert [n.nibs() for n in shortened] == [[1, 2, 3], [2, 3], [3], []]
    assert all(n.kind is NodeKind.LEAF and n.value == b"value" for n in shortened)


def test_shorten_extension_path():
    child = MptNode.digest(b"\x07" * 32)
    ext = MptNode.extension(to_encoded_path([4, 5], False), child)
    shortened = shorten_node_path(ext)
    assert [n.nibs() for n in shortened] == [[4, 5], [5], []]
    assert all(n.kind is NodeKind.EXTENSION and n.child == child for n in shortened)


def test_shorten_branch_is_empty():
    assert shorten_node_path(MptNode.branch([None] * 16)) == []
    assert shorten_node_path(MptNode.null()) == []


def test_proofs_to_tries_without_proofs():
    digest = b"\x42" * 32
    state, storage = proofs_to_tries(digest, {}, {})
    assert state.is_digest() and state.hash() == digest
    assert storage == {}
    assert proofs_to_tries(EMPTY_ROOT, {}, {})[0].is_empty()
    assert proofs_to_tries(bytes(32), {}, {})[0].is_empty()


def _world():
    slot_a = (1).to_bytes(32, "big")
    slot_b = (2).to_bytes(32, "big")
    storage = MptNode.null()
    storage.insert(keccak(slot_a), b"\x0a" * 40)
    storage.insert(keccak(slot_b), b"\x0b" * 40)

    address = b"\x11" * 20
    other = b"\x22" * 20
    state = MptNode.null()
    account = StateAccount(nonce=1, balance=10, storage_root=storage.hash())
    state.insert(keccak(address), account.encode())
    state.insert(keccak(other), StateAccount(nonce=2).encode())
    return state, storage, address, account, slot_a, slot_b


def test_proofs_to_tries_builds_tries():
    state, storage, address, account, slot_a, _ = _world()
    proof = AccountProof(
        storage_hash=storage.hash(),
        account_proof=make_proof(state, keccak(address)),
        storage_proof=[StorageProof(slot_a, make_proof(storage, keccak(slot_a)))],
    )
    state_trie, tries = proofs_to_tries(state.hash(), {address: proof}, {address: proof})
    assert state_trie.hash() == state.hash()
    assert StateAccount.decode(state_trie.get(keccak(address))) == account
    storage_trie, slots = tries[address]
    assert slots == [1]
    assert storage_trie.hash() == storage.hash()
    assert storage_trie.get(keccak(slot_a)) == b"\x0a" * 40


def test_proofs_to_tries_account_without_slots():
    state, storage, address, _, _, _ = _world()
    proof = AccountProof(
        storage_hash=storage.hash(),
        account_proof=make_proof(state, keccak(address)),
    )
    _, tries = proofs_to_tries(state.hash(), {address: proof}, {address: proof})
    storage_trie, slots = tries[address]
    assert slots == []
    assert storage_trie.is_digest() and storage_trie.hash() == storage.hash()


def test_proofs_to_tries_orphaned_leaf_allows_delete():
    state, storage, address, _, slot_a, slot_b = _world()
    post_storage = MptNode.null()
    post_storage.insert(keccak(slot_b), b"\x0b" * 40)

    parent = AccountProof(
        storage_hash=storage.hash(),
        account_proof=make_proof(state, keccak(address)),
        storage_proof=[StorageProof(slot_a, make_proof(storage, keccak(slot_a)))],
    )
    final = AccountProof(
        storage_hash=post_storage.hash(),
        account_proof=make_proof(state, keccak(address)),
        storage_proof=[StorageProof(slot_a, make_proof(post_storage, keccak(slot_a)))],
    )
    _, tries = proofs_to_tries(state.hash(), {address: parent}, {address: final})
    storage_trie, _ = tries[address]
    assert storage_trie.delete(keccak(slot_a)) is True
    assert storage_trie.hash() == post_storage.hash()


def test_proofs_to_tries_wrong_state_root():
    state, storage, address, _, _, _ = _world()
    proof = AccountProof(
        storage_hash=storage.hash(),
        account_proof=make_proof(state, keccak(address)),
    )
    with pytest.raises(ProofError):
        proofs_to_tries(b"\x01" * 32, {address: proof}, {address: proof})


def test_proofs_to_tries_missing_final_proof():
    state, storage, address, _, _, _ = _world()
    proof = AccountProof(
        storage_hash=storage.hash(),
        account_proof=make_proof(state, keccak(address)),
    )
    with pytest.raises(ProofError):
        proofs_to_tries(state.hash(), {address: proof}, {})


def test_storage_proof_rejects_short_key():
    with pytest.raises(ValueError):
        StorageProof(b"\x01", [])