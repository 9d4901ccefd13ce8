"""Lifecycle graphs for entities whose status may only move forward."""
from __future__ import annotations

from typing import Dict, FrozenSet, Optional

from core.entity_types import EntityType

# status -> statuses reachable in one step
Graph = Dict[str, FrozenSet[str]]

PACK_GRAPH: Graph = {
    "RECEIVED": frozenset({"ACTIVE", "RETURNED"}),
    "ACTIVE": frozenset({"DEPLETED", "RETURNED"}),
    "DEPLETED": frozenset(),
    "RETURNED": frozenset(),
}

BUSINESS_DAY_GRAPH: Graph = {
    "OPEN": frozenset({"PENDING_CLOSE", "CLOSED"}),
    "PENDING_CLOSE": frozenset({"CLOSED"}),
    "CLOSED": frozenset(),
}

SHIFT_GRAPH: Graph = {
    "OPEN": frozenset({"CLOSED"}),
    "CLOSED": frozenset(),
}

GAME_GRAPH: Graph = {
    "ACTIVE": frozenset({"INACTIVE", "DISCONTINUED"}),
    "INACTIVE": frozenset({"ACTIVE", "DISCONTINUED"}),
    "DISCONTINUED": frozenset(),
}

USER_GRAPH: Graph = {
    "ACTIVE": frozenset({"INACTIVE"}),
    "INACTIVE": frozenset({"ACTIVE"}),
}

# Bins are cloud-managed reference data and have no lifecycle.
LIFECYCLES: Dict[EntityType, Graph] = {
    EntityType.PACK: PACK_GRAPH,
    EntityType.BUSINESS_DAY: BUSINESS_DAY_GRAPH,
    EntityType.SHIFT: SHIFT_GRAPH,
    EntityType.GAME: GAME_GRAPH,
    EntityType.USER: USER_GRAPH,
}


def _reachable(graph: Graph, start: str, target: str) -> bool:
    seen = {start}
    frontier = [start]
    while frontier:
        node = frontier.pop()
        for nxt in graph.get(node, ()):
            if nxt == target:
                return True
            if nxt not in seen:
                seen.add(nxt)
                frontier.append(nxt)
    return False


def is_terminal(entity_type: EntityType, status: Optional[str]) -> bool:
    graph = LIFECYCLES.get(entity_type)
    if graph is None or status is None:
        return False
    return status in graph and not graph[status]


def transition_allowed(
    entity_type: EntityType, current: Optional[str], incoming: Optional[str]
) -> bool:
    """Return ``True`` when moving from ``current`` to ``incoming`` is a forward move.

    Staying in the same status is always allowed. A remote record may skip
    intermediate states (e.g. RECEIVED straight to DEPLETED when the local
    copy missed the activation) as long as the target is reachable.
    Statuses outside the graph are rejected so typos never land locally.
    """

    graph = LIFECYCLES.get(entity_type)
    if graph is None or current is None or incoming is None:
        return True
    if current == incoming:
        return True
    if incoming not in graph:
        return False
    if current not in graph:
        # legacy local value; accept any known status
        return True
    return _reachable(graph, current, incoming)


__all__ = [
    "BUSINESS_DAY_GRAPH",
    "GAME_GRAPH",
    "LIFECYCLES",
    "PACK_GRAPH",
    "SHIFT_GRAPH",
    "USER_GRAPH",
    "is_terminal",
    "transition_allowed",
]
