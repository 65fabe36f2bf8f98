"""
Permission hierarchy expansion.

Computes the transitive closure of implied permissions with an explicit
worklist and a visited set. Expansion terminates on any input graph,
including malformed cyclic data; the shipped catalog is additionally checked
to be acyclic at import time.
"""
from __future__ import annotations

from collections import deque
from typing import Iterable, Mapping

from authz.auth.permission_catalog import PERMISSION_HIERARCHY


HierarchyGraph = Mapping[str, Iterable[str]]


def expand_permissions(
    permissions: Iterable[str],
    graph: HierarchyGraph | None = None,
) -> frozenset[str]:
    """
    Expand a permission set to its full hierarchy closure.

    Breadth-first walk over the implication graph. Each permission is
    enqueued at most once, so the walk visits every node a bounded number of
    times even when the graph contains cycles.

    Args:
        permissions: Starting permissions
        graph: Implication graph (defaults to the catalog hierarchy)

    Returns:
        Frozen set containing the inputs and every implied permission
    """
    implications = PERMISSION_HIERARCHY if graph is None else graph

    visited: set[str] = set()
    queue: deque[str] = deque()
    for permission in permissions:
        if permission not in visited:
            visited.add(permission)
            queue.append(permission)

    while queue:
        current = queue.popleft()
        for implied in implications.get(current, ()):
            if implied not in visited:
                visited.add(implied)
                queue.append(implied)

    return frozenset(visited)


def expand_permission(permission: str, graph: HierarchyGraph | None = None) -> frozenset[str]:
    """Expand a single permission to its hierarchy closure."""
    return expand_permissions((permission,), graph)


def implied_by(permission: str, graph: HierarchyGraph | None = None) -> frozenset[str]:
    """Permissions that directly or transitively imply ``permission``."""
    implications = PERMISSION_HIERARCHY if graph is None else graph
    return frozenset(
        parent for parent in implications
        if parent != permission and permission in expand_permission(parent, implications)
    )


def find_cycles(graph: HierarchyGraph | None = None) -> list[list[str]]:
    """
    Report cycles in an implication graph.

    Iterative three-colour depth-first search. Each reported cycle is the
    path from the first revisited node back to itself.

    Returns:
        List of cycles (empty when the graph is a DAG)
    """
    implications = PERMISSION_HIERARCHY if graph is None else graph
    white, grey, black = 0, 1, 2
    colour: dict[str, int] = {}
    cycles: list[list[str]] = []

    for root in implications:
        if colour.get(root, white) != white:
            continue
        path: list[str] = [root]
        colour[root] = grey
        stack = [iter(sorted(implications.get(root, ())))]

        while stack:
            child = next(stack[-1], None)
            if child is None:
                stack.pop()
                colour[path.pop()] = black
                continue
            state = colour.get(child, white)
            if state == grey:
                cycles.append(path[path.index(child):] + [child])
            elif state == white:
                colour[child] = grey
                path.append(child)
                stack.append(iter(sorted(implications.get(child, ()))))

    return cycles


def _validate_hierarchy() -> None:
    cycles = find_cycles(PERMISSION_HIERARCHY)
    if cycles:
        raise RuntimeError(
            "Permission hierarchy must be acyclic:\n"
            + "\n".join("  - " + " -> ".join(cycle) for cycle in cycles)
        )


_validate_hierarchy()
