"""
Import graph over local source files and cycle detection.
"""

from __future__ import annotations

import logging
import os
from typing import Dict, Iterable, Iterator, List, Set, Tuple

from .models import LocalModule, SourceFile


logger = logging.getLogger(__name__)


def cycle_severity(length: int) -> str:
    if length <= 3:
        return "high"
    if length <= 5:
        return "medium"
    return "low"


def _canonical(cycle: List[str]) -> Tuple[str, ...]:
    start = cycle.index(min(cycle))
    return tuple(cycle[start:] + cycle[:start])


class ImportGraph:
    """Directed graph; nodes are scanned files, edges resolved local imports."""

    def __init__(self, nodes: Iterable[str] = ()) -> None:
        self.adjacency: Dict[str, Set[str]] = {}
        for node in nodes:
            self.adjacency.setdefault(node, set())

    @classmethod
    def from_sources(cls, sources: Iterable[SourceFile]) -> "ImportGraph":
        sources = list(sources)
        graph = cls(source.path for source in sources)
        for source in sources:
            for reference in source.references:
                if isinstance(reference.resolved, LocalModule):
                    graph.add_edge(source.path, reference.resolved.path)
        return graph

    @property
    def nodes(self) -> List[str]:
        return list(self.adjacency)

    def add_edge(self, source: str, target: str) -> bool:
        """Add ``source -> target`` when both ends are nodes."""
        if source not in self.adjacency or target not in self.adjacency:
            return False
        self.adjacency[source].add(target)
        return True

    def successors(self, node: str) -> List[str]:
        return sorted(self.adjacency.get(node, ()))

    def edges(self) -> Iterator[Tuple[str, str]]:
        for source in sorted(self.adjacency):
            for target in self.successors(source):
                yield source, target

    def find_cycles(self) -> List[List[str]]:
        """Return distinct cycles, each rotated to its smallest node."""
        visited: Set[str] = set()
        found: Set[Tuple[str, ...]] = set()

        for root in sorted(self.adjacency):
            if root in visited:
                continue
            visited.add(root)
            path = [root]
            on_stack = {root: 0}
            stack = [(root, iter(self.successors(root)))]

            while stack:
                node, neighbours = stack[-1]
                for neighbour in neighbours:
                    if neighbour in on_stack:
                        found.add(_canonical(path[on_stack[neighbour]:]))
                    elif neighbour not in visited:
                        visited.add(neighbour)
                        on_stack[neighbour] = len(path)
                        path.append(neighbour)
                        stack.append((neighbour, iter(self.successors(neighbour))))
                        break
                else:
                    stack.pop()
                    path.pop()
                    del on_stack[node]

        cycles = [list(cycle) for cycle in sorted(found)]
        logger.debug("Found %d import cycles", len(cycles))
        return cycles

    def entry_points(self, cycle: Iterable[str]) -> List[str]:
        """Nodes outside ``cycle`` with an edge into it."""
        members = set(cycle)
        return sorted(
            node for node, targets in self.adjacency.items()
            if node not in members and targets & members
        )

    def to_dict(self, root: str) -> Dict[str, List]:
        def rel(path: str) -> str:
            return os.path.relpath(path, root).replace(os.sep, "/")

        return {
            "nodes": [rel(node) for node in self.adjacency],
            "edges": [{"from": rel(source), "to": rel(target)} for source, target in self.edges()],
        }
