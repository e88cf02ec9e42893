"""Disjoint-set forest with path halving."""

from typing import Dict, Generic, Hashable, List, TypeVar

T = TypeVar("T", bound=Hashable)


class DisjointSet(Generic[T]):
    def __init__(self):
        self._parent: Dict[T, T] = {}

    def __contains__(self, item: T) -> bool:
        return item in self._parent

    def make_set(self, item: T) -> None:
        if item not in self._parent:
            self._parent[item] = item

    def find(self, item: T) -> T:
        parent = self._parent
        while parent[item] != item:
            parent[item] = parent[parent[item]]
            item = parent[item]
        return item

    def union(self, a: T, b: T) -> None:
        root_a = self.find(a)
        root_b = self.find(b)
        if root_a != root_b:
            self._parent[root_a] = root_b

    def groups(self) -> List[List[T]]:
        """Members grouped by root, groups and members in insertion order."""
        out: Dict[T, List[T]] = {}
        for item in self._parent:
            out.setdefault(self.find(item), []).append(item)
        return list(out.values())
