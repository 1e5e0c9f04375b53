import random

import pytest

from ubox.avl import AvlTree, FindMode, blobcmp, strcmp


def int_cmp(a, b):
    return (a > b) - (a < b)


def _height_and_check(node, parent):
    if node is None:
        return 0
    assert node.parent is parent
    assert node.leader
    lh = _height_and_check(node.left, node)
    rh = _height_and_check(node.right, node)
    assert node.balance == rh - lh
    assert abs(node.balance) <= 1
    return 1 + max(lh, rh)


def _inorder(node):
    if node is None:
        return []
    return _inorder(node.left) + [node] + _inorder(node.right)


def check_tree(tree):
    _height_and_check(tree.root, None)
    leaders = [n for n in tree if n.leader]
    assert _inorder(tree.root) == leaders


def test_strcmp_signs():
    assert strcmp("abc", "abd") < 0
    assert strcmp("abd", "abc") > 0
    assert strcmp("abc", "abc") == 0
    assert strcmp(b"a", b"b") < 0


def test_blobcmp_uses_shorter_declared_length():
    a = b"\x00\x00\x00\x06ab"
    b = b"\x00\x00\x00\x06ac"
    assert blobcmp(a, b) < 0
    assert blobcmp(b, a) > 0
    assert blobcmp(a, a) == 0
    short = b"\x00\x00\x00\x04"
    longer = b"\x00\x00\x00\x04zz"
    assert blobcmp(short, longer) == 0


def test_insert_iterates_sorted_and_balanced():
    rng = random.Random(1)
    keys = rng.sample(range(1000), 300)
    tree = AvlTree(int_cmp, False)
    for k in keys:
        tree.insert(k, str(k))
        check_tree(tree)
    assert len(tree) == len(keys)
    assert [n.key for n in tree] == sorted(keys)
    assert [n.key for n in reversed(tree)] == sorted(keys, reverse=True)
    assert all(n.value == str(n.key) for n in tree)


def test_duplicate_rejected_without_dups():
    tree = AvlTree(strcmp, False)
    tree.insert("a")
    with pytest.raises(KeyError):
        tree.insert("a")
    assert len(tree) == 1


def test_duplicates_keep_insertion_order():
    tree = AvlTree(int_cmp, True)
    for k in [5, 3, 8]:
        tree.insert(k, "first")
    tree.insert(5, "second")
    tree.insert(5, "third")
    check_tree(tree)
    fives = [n.value for n in tree if n.key == 5]
    assert fives == ["first", "second", "third"]
    assert tree.find(5).value == "first"


def test_delete_leader_promotes_follower():
    tree = AvlTree(int_cmp, True)
    for k in [1, 2, 3]:
        tree.insert(k)
    leader = tree.find(2)
    follower = tree.insert(2, "dup")
    tree.delete(leader)
    check_tree(tree)
    found = tree.find(2)
    assert found is follower
    assert found.leader
    assert [n.key for n in tree] == [1, 2, 3]


def test_random_deletes_keep_invariants():
    rng = random.Random(7)
    keys = rng.sample(range(500), 200)
    tree = AvlTree(int_cmp, False)
    for k in keys:
        tree.insert(k)
    remaining = set(keys)
    for k in rng.sample(keys, 150):
        tree.delete(tree.find(k))
        remaining.discard(k)
        check_tree(tree)
        assert tree.find(k) is None
    assert [n.key for n in tree] == sorted(remaining)
    assert len(tree) == len(remaining)


def test_random_with_dups_delete_everything():
    rng = random.Random(3)
    tree = AvlTree(int_cmp, True)
    nodes = [tree.insert(rng.randrange(20), i) for i in range(120)]
    check_tree(tree)
    rng.shuffle(nodes)
    for node in nodes:
        tree.delete(node)
        check_tree(tree)
        keys = [n.key for n in tree]
        assert keys == sorted(keys)
    assert tree.is_empty()
    assert tree.first() is None


def test_find_lessequal_and_greaterequal():
    keys = [10, 20, 30, 40]
    tree = AvlTree(int_cmp, False)
    for k in keys:
        tree.insert(k)
    for probe in range(0, 50):
        le = [k for k in keys if k <= probe]
        ge = [k for k in keys if k >= probe]
        node = tree.find_lessequal(probe)
        assert (node.key if node else None) == (le[-1] if le else None)
        node = tree.find_greaterequal(probe)
        assert (node.key if node else None) == (ge[0] if ge else None)


def test_find_lessequal_with_dups_returns_last_equal():
    tree = AvlTree(int_cmp, True)
    tree.insert(1)
    tree.insert(2, "a")
    last = tree.insert(2, "b")
    tree.insert(3)
    assert tree.find_lessequal(2) is last
    assert tree.find_greaterequal(2).value == "a"


def test_lookup_modes():
    tree = AvlTree(int_cmp, False)
    for k in [1, 5, 9]:
        tree.insert(k)
    assert tree.lookup(5, FindMode.EQUAL).key == 5
    assert tree.lookup(6, FindMode.EQUAL) is None
    assert tree.lookup(6, FindMode.LESSEQUAL).key == 5
    assert tree.lookup(6, FindMode.GREATEREQUAL).key == 9


def test_empty_tree_lookups():
    tree = AvlTree(strcmp, False)
    assert tree.find("x") is None
    assert tree.find_lessequal("x") is None
    assert tree.find_greaterequal("x") is None
    assert list(tree) == []
    assert tree.is_empty()


def test_navigation_first_last_next_prev():
    tree = AvlTree(strcmp, False)
    for k in ["b", "a", "c"]:
        tree.insert(k)
    first, last = tree.first(), tree.last()
    assert first.key == "a" and last.key == "c"
    assert tree.is_first(first) and tree.is_last(last)
    assert not tree.is_first(last)
    assert tree.next(first).key == "b"
    assert tree.prev(last).key == "b"
    assert tree.next(last) is None
    assert tree.prev(first) is None


def test_iter_range_subsets():
    tree = AvlTree(int_cmp, False)
    for k in range(10):
        tree.insert(k)
    start, stop = tree.find(3), tree.find(6)
    assert [n.key for n in tree.iter_range(start, stop)] == [3, 4, 5, 6]
    assert [n.key for n in tree.iter_range_reverse(start, stop)] == [6, 5, 4, 3]


def test_iter_range_allows_deleting_current():
    tree = AvlTree(int_cmp, False)
    for k in range(10):
        tree.insert(k)
    for node in tree.iter_range():
        if node.key % 2 == 0:
            tree.delete(node)
    assert [n.key for n in tree] == [1, 3, 5, 7, 9]
    check_tree(tree)


def test_delete_foreign_node_raises():
    a = AvlTree(int_cmp, False)
    b = AvlTree(int_cmp, False)
    node = a.insert(1)
    with pytest.raises(ValueError):
        b.delete(node)
    a.delete(node)
    with pytest.raises(ValueError):
        a.delete(node)


def test_clear_empties_tree():
    tree = AvlTree(int_cmp, False)
    nodes = [tree.insert(k) for k in range(8)]
    tree.clear()
    assert len(tree) == 0
    assert tree.root is None
    assert list(tree) == []
    tree.insert(nodes[0].key)
    assert [n.key for n in tree] == [0]