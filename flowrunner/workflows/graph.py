"""
Workflow Graph

Typed representation of the node/edge graph submitted for execution.
Carries validity invariants only; traversal policy lives in the walker.
"""

from collections import Counter
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from flowrunner.exceptions import GraphValidationError


class NodeType(str, Enum):
    """Types of workflow nodes. Adding a member requires adding an executor."""
    TRIGGER = "trigger"
    AGENT = "agent"
    ACTION = "action"
    CONDITION = "condition"
    DELAY = "delay"


class Position(BaseModel):
    """Canvas position. Presentation only, ignored by the engine."""
    x: float = 0.0
    y: float = 0.0


class WorkflowNode(BaseModel):
    """A graph vertex with type-specific configuration in ``data``."""
    model_config = ConfigDict(extra="ignore")

    id: str = Field(..., min_length=1)
    type: NodeType
    data: Dict[str, Any] = Field(default_factory=dict)
    position: Position = Field(default_factory=Position)


class WorkflowEdge(BaseModel):
    """
    A directed arc between two nodes.

    Condition nodes pick their outgoing branch by ``sourceHandle``
    (``"true"`` or ``"false"``).
    """
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str
    source: str
    target: str
    source_handle: Optional[str] = Field(default=None, alias="sourceHandle")
    target_handle: Optional[str] = Field(default=None, alias="targetHandle")


class WorkflowGraph(BaseModel):
    """
    Workflow definition: nodes plus edges.

    Cycles are permitted here; runaway traversal is stopped by the
    coordinator's visited-node guard.
    """
    model_config = ConfigDict(extra="ignore")

    id: str
    name: str = ""
    nodes: List[WorkflowNode] = Field(default_factory=list)
    edges: List[WorkflowEdge] = Field(default_factory=list)

    def find_node(self, node_id: str) -> Optional[WorkflowNode]:
        """Get a node by ID."""
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def edges_from(self, node_id: str) -> List[WorkflowEdge]:
        """Outgoing edges of a node, in submission order."""
        return [edge for edge in self.edges if edge.source == node_id]

    def edges_to(self, node_id: str) -> List[WorkflowEdge]:
        """Incoming edges of a node, in submission order."""
        return [edge for edge in self.edges if edge.target == node_id]

    def validation_errors(self) -> List[str]:
        """
        Collect structural problems.

        Returns list of validation errors (empty when the graph is valid).
        """
        errors = []

        counts = Counter(node.id for node in self.nodes)
        duplicates = sorted(node_id for node_id, count in counts.items() if count > 1)
        if duplicates:
            errors.append(f"Duplicate node ids: {duplicates}")

        node_ids = set(counts)
        for edge in self.edges:
            if edge.source not in node_ids:
                errors.append(f"Edge {edge.id} references non-existent source node: {edge.source}")
            if edge.target not in node_ids:
                errors.append(f"Edge {edge.id} references non-existent target node: {edge.target}")

        return errors

    def validate_structure(self) -> None:
        """
        Validate the graph structure.

        Raises:
            GraphValidationError: If any edge references an unknown node
                or node ids are duplicated
        """
        errors = self.validation_errors()
        if errors:
            raise GraphValidationError(errors)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize graph to the canvas wire format (camelCase handles)."""
        return self.model_dump(mode="json", by_alias=True)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WorkflowGraph":
        """Create graph from the canvas wire format."""
        return cls.model_validate(data)


def build_simple_chain(
    nodes: List[Dict[str, Any]],
    graph_id: str = "chain",
    name: Optional[str] = None,
) -> WorkflowGraph:
    """
    Build a simple sequential chain of nodes.

    Helper for creating linear workflows. Each entry needs at least a
    ``type``; ids default to ``node_<i>``.
    """
    graph = WorkflowGraph(id=graph_id, name=name or f"Chain-{graph_id}")

    prev_node = None
    for i, node_config in enumerate(nodes):
        node_config = dict(node_config)
        node_config.setdefault("id", f"node_{i}")
        node = WorkflowNode.model_validate(node_config)
        graph.nodes.append(node)

        if prev_node:
            graph.edges.append(
                WorkflowEdge(id=f"e_{prev_node}_{node.id}", source=prev_node, target=node.id)
            )

        prev_node = node.id

    return graph
