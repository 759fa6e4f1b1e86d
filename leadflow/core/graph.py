from collections import deque
from dataclasses import dataclass, field
from typing import Any

from leadflow.core.models import NodeType


class WorkflowDefinitionError(ValueError):
    """Raised when a workflow graph cannot be run."""

    def __init__(self, errors: list[str]):
        self.errors = errors
        super().__init__("; ".join(errors))


@dataclass
class WorkflowNode:
    id: str
    type: NodeType
    data: dict[str, Any] = field(default_factory=dict)
    label: str | None = None


@dataclass
class WorkflowEdge:
    source: str
    target: str
    id: str | None = None
    source_handle: str | None = None
    label: str | None = None

    @property
    def handle(self) -> str | None:
        """Branch tag of the edge, taken from the handle or, failing that, the label."""
        tag = self.source_handle or self.label
        return tag.lower() if tag else None


class WorkflowGraph:
    """Immutable snapshot of a workflow's nodes and edges.

    Outgoing edges are indexed once by source and by (source, handle) so the
    interpreter never scans the edge list while walking.
    """

    def __init__(self, nodes: list[WorkflowNode], edges: list[WorkflowEdge]):
        self.nodes = {node.id: node for node in nodes}
        self.edges = list(edges)
        self._outgoing: dict[str, list[WorkflowEdge]] = {}
        self._by_handle: dict[tuple[str, str], WorkflowEdge] = {}
        for edge in self.edges:
            self._outgoing.setdefault(edge.source, []).append(edge)
            if edge.handle is not None:
                self._by_handle.setdefault((edge.source, edge.handle), edge)

    @classmethod
    def from_definition(cls, definition: dict) -> "WorkflowGraph":
        errors = validate_workflow(definition)
        if errors:
            raise WorkflowDefinitionError(errors)

        nodes = [
            WorkflowNode(
                id=str(n["id"]),
                type=NodeType(n["type"]),
                data=dict(n.get("data") or {}),
                label=(n.get("data") or {}).get("label"),
            )
            for n in definition["nodes"]
        ]
        edges = [
            WorkflowEdge(
                source=str(e["source"]),
                target=str(e["target"]),
                id=e.get("id"),
                source_handle=e.get("sourceHandle") or e.get("source_handle"),
                label=e.get("label"),
            )
            for e in definition.get("edges", [])
        ]
        return cls(nodes, edges)

    def to_definition(self) -> dict:
        return {
            "nodes": [
                {"id": n.id, "type": n.type.value, "data": n.data}
                for n in self.nodes.values()
            ],
            "edges": [
                {
                    "id": e.id,
                    "source": e.source,
                    "target": e.target,
                    "sourceHandle": e.source_handle,
                    "label": e.label,
                }
                for e in self.edges
            ],
        }

    def trigger_node(self) -> WorkflowNode | None:
        return next(
            (n for n in self.nodes.values() if n.type == NodeType.TRIGGER), None
        )

    def outgoing(self, node_id: str) -> list[WorkflowEdge]:
        return self._outgoing.get(node_id, [])

    def next_node_id(self, node_id: str) -> str | None:
        """Target of the first outgoing edge by insertion order, if any."""
        edges = self.outgoing(node_id)
        return edges[0].target if edges else None

    def branch_target(self, node_id: str, handle: str) -> str | None:
        edge = self._by_handle.get((node_id, handle.lower()))
        return edge.target if edge else None

    def reachable_from(self, node_id: str) -> set[str]:
        seen = {node_id}
        pending = deque([node_id])
        while pending:
            current = pending.popleft()
            for edge in self.outgoing(current):
                if edge.target not in seen:
                    seen.add(edge.target)
                    pending.append(edge.target)
        return seen

    def unreachable_nodes(self) -> list[str]:
        reachable: set[str] = set()
        for node in self.nodes.values():
            if node.type == NodeType.TRIGGER:
                reachable |= self.reachable_from(node.id)
        return [node_id for node_id in self.nodes if node_id not in reachable]


def validate_workflow(definition: dict) -> list[str]:
    """Validate a workflow graph definition. Returns a list of errors (empty = valid)."""
    errors = []

    if "nodes" not in definition:
        errors.append("Workflow must have a 'nodes' field")
        return errors

    nodes = definition["nodes"]
    if not isinstance(nodes, list) or len(nodes) == 0:
        errors.append("'nodes' must be a non-empty list")
        return errors

    edges = definition.get("edges") or []
    if not isinstance(edges, list):
        errors.append("'edges' must be a list")
        return errors

    known_types = {t.value for t in NodeType}
    node_ids = set()
    triggers = 0
    for node in nodes:
        if "id" not in node:
            errors.append("Each node must have an 'id' field")
            continue
        node_type = node.get("type")
        if node_type is None:
            errors.append(f"Node '{node['id']}' must have a 'type' field")
        elif node_type not in known_types:
            errors.append(f"Node '{node['id']}' has unknown type: '{node_type}'")
        elif node_type == NodeType.TRIGGER.value:
            triggers += 1
        if node["id"] in node_ids:
            errors.append(f"Duplicate node ID: '{node['id']}'")
        node_ids.add(node["id"])

    if triggers == 0:
        errors.append("No trigger node found")

    for edge in edges:
        source, target = edge.get("source"), edge.get("target")
        if source is None or target is None:
            errors.append("Each edge must have 'source' and 'target' fields")
            continue
        if source not in node_ids:
            errors.append(f"Edge references unknown source node: '{source}'")
        if target not in node_ids:
            errors.append(f"Edge references unknown target node: '{target}'")

    return errors
