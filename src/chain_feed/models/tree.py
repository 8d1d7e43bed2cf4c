"""Ordinal parent -> children adjacency.

Children of a parent are stored under synthetic keys ``"<parent>-<index>"``
with indices assigned densely from 0 in insertion order, so a reader can
list them by probing index 0, 1, 2, ... until a key is missing. A cleared
slot keeps its key with an empty value so probing never stops early.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping

EMPTY_SLOT = ""


def child_key(parent_id: str, index: int) -> str:
    return f"{parent_id}-{index}"


def split_child_key(key: str) -> tuple[str, int]:
    """Split ``"<parent>-<index>"`` back into its parts.

    Parent ids may themselves contain dashes; the index is always the last
    dash-separated component.
    """
    parent_id, sep, index = key.rpartition("-")
    if not sep or not index.isdigit():
        raise ValueError(f"Malformed tree key: {key!r}")
    return parent_id, int(index)


class OrdinalTree:
    """Probe-compatible adjacency with O(1) append and per-parent iteration."""

    def __init__(self, entries: Mapping[str, str] | None = None) -> None:
        self._slots: dict[str, str] = {}
        self._sizes: dict[str, int] = {}
        for key, value in (entries or {}).items():
            self.put(key, value)

    def __len__(self) -> int:
        return len(self._slots)

    def __contains__(self, key: object) -> bool:
        return key in self._slots

    def __iter__(self) -> Iterator[str]:
        return iter(self._slots)

    def get(self, key: str) -> str | None:
        return self._slots.get(key)

    def next_index(self, parent_id: str) -> int:
        return self._sizes.get(parent_id, 0)

    def slots(self, parent_id: str) -> list[str]:
        """All slot values for a parent, cleared ones included."""
        return [self._slots[child_key(parent_id, i)] for i in range(self.next_index(parent_id))]

    def children(self, parent_id: str) -> list[str]:
        return [child for child in self.slots(parent_id) if child != EMPTY_SLOT]

    def append(self, parent_id: str, child_id: str) -> str:
        key = child_key(parent_id, self.next_index(parent_id))
        self.put(key, child_id)
        return key

    def put(self, key: str, value: str) -> None:
        """Write a slot. New slots must extend the parent's range contiguously."""
        parent_id, index = split_child_key(key)
        size = self._sizes.get(parent_id, 0)
        if index > size:
            raise ValueError(f"Non-contiguous ordinal {index} for parent {parent_id!r} (next is {size})")
        self._slots[key] = value
        if index == size:
            self._sizes[parent_id] = size + 1

    def to_dict(self) -> dict[str, str]:
        return dict(self._slots)
