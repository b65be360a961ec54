"""
Graph Resolver

Turns the node/connection lists of a workflow into the linear order the run
loop folds over:

1. pick the trigger node(s)
2. breadth-first traversal from the trigger(s) to find reachable nodes
3. drop unreachable nodes and their connections (dead code, not an error)
4. topological sort of the remaining edges (Kahn's algorithm, ties broken
   by first appearance in the connection list)

Every failure here is a GraphValidationError and never retried.
"""

import logging
from collections import deque
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from .exceptions import (
    CyclicDependency,
    GraphValidationError,
    NoReachableConnections,
    NoTriggerFound,
)
from .nodes import ConnectionSpec, NodeSpec

logger = logging.getLogger(__name__)


def find_reachable_nodes(start_ids: Iterable[str], connections: Sequence[ConnectionSpec]) -> Set[str]:
    """Breadth-first set of node ids reachable from ``start_ids`` (inclusive)."""
    adjacency: Dict[str, List[str]] = {}
    for connection in connections:
        adjacency.setdefault(connection.from_node_id, []).append(connection.to_node_id)

    reachable: Set[str] = set()
    queue = deque()
    for start_id in start_ids:
        if start_id not in reachable:
            reachable.add(start_id)
            queue.append(start_id)

    while queue:
        current = queue.popleft()
        for neighbor in adjacency.get(current, []):
            if neighbor not in reachable:
                reachable.add(neighbor)
                queue.append(neighbor)

    return reachable


def topological_sort(edges: Sequence[Tuple[str, str]]) -> List[str]:
    """
    Kahn's algorithm over ``(from, to)`` pairs.

    Nodes are seeded in order of first appearance in ``edges`` so the
    result is deterministic. Duplicate edges are harmless.

    Raises:
        CyclicDependency: if some nodes can never be ordered
    """
    order: List[str] = []
    successors: Dict[str, List[str]] = {}
    in_degree: Dict[str, int] = {}
    seen_edges: Set[Tuple[str, str]] = set()

    for source, target in edges:
        for node_id in (source, target):
            if node_id not in in_degree:
                in_degree[node_id] = 0
                order.append(node_id)
        if (source, target) in seen_edges:
            continue
        seen_edges.add((source, target))
        successors.setdefault(source, []).append(target)
        in_degree[target] += 1

    ready = deque(node_id for node_id in order if in_degree[node_id] == 0)
    sorted_ids: List[str] = []
    while ready:
        node_id = ready.popleft()
        sorted_ids.append(node_id)
        for successor in successors.get(node_id, []):
            in_degree[successor] -= 1
            if in_degree[successor] == 0:
                ready.append(successor)

    if len(sorted_ids) != len(order):
        raise CyclicDependency()

    return sorted_ids


def _select_triggers(nodes: Sequence[NodeSpec], trigger_node_id: Optional[str]) -> List[NodeSpec]:
    if trigger_node_id:
        specified = next((n for n in nodes if n.id == trigger_node_id), None)
        if specified is None:
            raise NoTriggerFound(f"Trigger node with ID {trigger_node_id} not found")
        if not specified.is_trigger:
            raise NoTriggerFound(f"Node with ID {trigger_node_id} is not a trigger node")
        return [specified]

    triggers = [n for n in nodes if n.is_trigger]
    if not triggers:
        raise NoTriggerFound("No trigger node found in workflow")
    return triggers


def resolve_execution_order(
    nodes: Sequence[NodeSpec],
    connections: Sequence[ConnectionSpec],
    trigger_node_id: Optional[str] = None,
) -> List[NodeSpec]:
    """
    Resolve a workflow graph into a dependency-respecting node sequence.

    Args:
        nodes: All nodes of the workflow
        connections: All connections of the workflow
        trigger_node_id: Start only from this trigger (e.g. the schedule
            node that fired); otherwise every trigger node is a root

    Returns:
        Reachable nodes, each exactly once, predecessors first

    Raises:
        GraphValidationError: empty workflow
        NoTriggerFound: no trigger, or the requested one is not a trigger
        NoReachableConnections: several reachable nodes but no connections
        CyclicDependency: reachable nodes form a cycle
    """
    if not nodes:
        raise GraphValidationError("You must have at least one node in your workflow")

    triggers = _select_triggers(nodes, trigger_node_id)
    reachable_ids = find_reachable_nodes([t.id for t in triggers], connections)

    reachable_nodes = [n for n in nodes if n.id in reachable_ids]
    reachable_connections = [
        c for c in connections
        if c.from_node_id in reachable_ids and c.to_node_id in reachable_ids
    ]

    if not reachable_connections and len(reachable_nodes) > len(triggers):
        raise NoReachableConnections("You must have at least one connection between reachable nodes")

    if not reachable_connections:
        return reachable_nodes

    sorted_ids = topological_sort([(c.from_node_id, c.to_node_id) for c in reachable_connections])

    node_map = {n.id: n for n in reachable_nodes}
    ordered = [node_map[node_id] for node_id in sorted_ids if node_id in node_map]

    dropped = len(nodes) - len(ordered)
    if dropped:
        logger.debug(f"Graph resolved: {len(ordered)} nodes in order, {dropped} unreachable")
    return ordered
