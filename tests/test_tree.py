# tests/test_tree.py
import pytest

from chain_feed.models.tree import EMPTY_SLOT, OrdinalTree, child_key, split_child_key


def test_append_assigns_dense_indices() -> None:
    tree = OrdinalTree()
    assert tree.append("1", "2") == "1-0"
    assert tree.append("1", "3") == "1-1"
    assert tree.append("discuss:1", "4") == "discuss:1-0"

    assert tree.children("1") == ["2", "3"]
    assert tree.next_index("1") == 2
    assert tree.children("missing") == []


def test_split_child_key_uses_last_dash() -> None:
    assert split_child_key("discuss:v1:5-3") == ("discuss:v1:5", 3)
    assert split_child_key(child_key("a-b", 12)) == ("a-b", 12)


@pytest.mark.parametrize("key", ["abc", "abc-", "abc-x"])
def test_split_child_key_rejects_malformed_keys(key: str) -> None:
    with pytest.raises(ValueError):
        split_child_key(key)


def test_put_rejects_gaps() -> None:
    tree = OrdinalTree()
    tree.put("1-0", "2")
    with pytest.raises(ValueError):
        tree.put("1-2", "3")

    # Overwriting an existing slot is allowed
    tree.put("1-0", EMPTY_SLOT)
    assert tree.slots("1") == [EMPTY_SLOT]


def test_cleared_slots_stay_probeable() -> None:
    tree = OrdinalTree({"1-0": "2", "1-1": "3"})
    tree.put("1-0", EMPTY_SLOT)
    tree.put("1-1", EMPTY_SLOT)

    assert "1-0" in tree and "1-1" in tree
    assert tree.children("1") == []
    assert tree.slots("1") == [EMPTY_SLOT, EMPTY_SLOT]
    # New children continue after the cleared ones
    assert tree.append("1", "4") == "1-2"


def test_to_dict_round_trips_through_constructor() -> None:
    tree = OrdinalTree()
    tree.append("1", "2")
    tree.append("2", "3")

    rebuilt = OrdinalTree(tree.to_dict())
    assert rebuilt.to_dict() == {"1-0": "2", "2-0": "3"}
    assert len(rebuilt) == 2
