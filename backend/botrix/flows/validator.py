# /botrix/flows/validator.py

"""
Pure structural validation for flow graphs.

validate_flow() checks a candidate (nodes, connections) pair before it is
allowed to go live:
- Orphaned nodes (warning)
- Cycles anywhere in the graph (error)
- Nodes unreachable from the start node (error)
- Unknown node types (error)
- Missing title/content (error)
- Structural invariants: one start node, unique ids, connections that point
  at existing nodes (error)

All functions are:
- Pure (no side effects)
- Deterministic (same input = same output)
- Never raising: every finding is returned as data
"""

from collections import deque
from typing import Dict, List, Sequence, Set, TypedDict

from botrix.flows.definitions import VALID_NODE_TYPES
from botrix.models.flow import FlowConnection, FlowNode, START_NODE_ID


class FlowValidationResult(TypedDict):
    """Result of validating a flow. Warnings never block activation."""
    valid: bool
    errors: List[str]
    warnings: List[str]


def build_adjacency(nodes: Sequence[FlowNode], connections: Sequence[FlowConnection]) -> Dict[str, List[str]]:
    """
    Build a directed adjacency list keyed by node id.

    Every node gets an entry, even without outgoing edges. Connection sources
    that are not nodes still get an entry so that traversal sees their edges.
    """
    graph: Dict[str, List[str]] = {node.id: [] for node in nodes}
    for conn in connections:
        graph.setdefault(conn.source, []).append(conn.target)
    return graph


def has_cycle(nodes: Sequence[FlowNode], connections: Sequence[FlowConnection]) -> bool:
    """
    Detect a directed cycle anywhere in the graph.

    A depth-first search is started from every unvisited node, not only from
    start, so cycles among unreachable nodes are found too. The search is
    iterative to stay clear of the recursion limit on long flows.
    """
    graph = build_adjacency(nodes, connections)
    visited: Set[str] = set()
    on_stack: Set[str] = set()

    for root in graph:
        if root in visited:
            continue
        visited.add(root)
        on_stack.add(root)
        stack = [(root, iter(graph.get(root, [])))]
        while stack:
            node_id, neighbors = stack[-1]
            advanced = False
            for neighbor in neighbors:
                if neighbor in on_stack:
                    return True
                if neighbor not in visited:
                    visited.add(neighbor)
                    on_stack.add(neighbor)
                    stack.append((neighbor, iter(graph.get(neighbor, []))))
                    advanced = True
                    break
            if not advanced:
                on_stack.discard(node_id)
                stack.pop()

    return False


def get_reachable_nodes(nodes: Sequence[FlowNode], connections: Sequence[FlowConnection]) -> Set[str]:
    """Breadth-first search from the start node. The start id is always included."""
    graph = build_adjacency(nodes, connections)
    reachable = {START_NODE_ID}
    queue = deque([START_NODE_ID])

    while queue:
        current = queue.popleft()
        for neighbor in graph.get(current, []):
            if neighbor not in reachable:
                reachable.add(neighbor)
                queue.append(neighbor)

    return reachable


def is_valid_node_type(node_type: str) -> bool:
    return node_type in VALID_NODE_TYPES


def validate_flow(nodes: Sequence[FlowNode], connections: Sequence[FlowConnection]) -> FlowValidationResult:
    """
    Validate the structure of a flow.

    Args:
        nodes: The flow's nodes
        connections: The flow's directed connections

    Returns:
        FlowValidationResult with valid=True when no errors were found
    """
    errors: List[str] = []
    warnings: List[str] = []

    # Structural invariants
    start_count = sum(1 for node in nodes if node.id == START_NODE_ID)
    if start_count == 0:
        errors.append(f'Flow must contain a "{START_NODE_ID}" node')
    elif start_count > 1:
        errors.append(f'Flow must contain exactly one "{START_NODE_ID}" node')

    seen_ids: Set[str] = set()
    for node in nodes:
        if node.id in seen_ids:
            errors.append(f'Duplicate node id: {node.id}')
        seen_ids.add(node.id)

    for conn in connections:
        for endpoint in (conn.source, conn.target):
            if endpoint not in seen_ids:
                errors.append(f'Connection "{conn.id}" references unknown node "{endpoint}"')

    # Orphaned nodes: not part of any connection at all
    connected_ids: Set[str] = set()
    for conn in connections:
        connected_ids.add(conn.source)
        connected_ids.add(conn.target)

    for node in nodes:
        if node.id not in connected_ids and node.id != START_NODE_ID:
            warnings.append(f'Node "{node.data.title}" is not connected')

    # Cycles
    if has_cycle(nodes, connections):
        errors.append("Flow contains cycles which are not allowed")

    # Reachability from start
    reachable = get_reachable_nodes(nodes, connections)
    for node in nodes:
        if node.id not in reachable and node.id != START_NODE_ID:
            errors.append(f'Node "{node.data.title}" is unreachable')

    # Node types
    for node in nodes:
        if not is_valid_node_type(node.type):
            errors.append(f"Invalid node type: {node.type}")

    # Required fields
    for node in nodes:
        if not node.data.title or not node.data.content:
            errors.append(f'Node "{node.id}" is missing required fields')

    return {
        "valid": len(errors) == 0,
        "errors": errors,
        "warnings": warnings
    }
