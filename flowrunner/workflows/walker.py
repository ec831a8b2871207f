"""
Graph Walker

Pure traversal policy: where a run starts and which node follows the
current one. Holds no state; the coordinator owns the cycle guard.
"""

from typing import List, Optional

from .graph import NodeType, WorkflowGraph, WorkflowNode
from .state import NodeResult


class GraphWalker:
    """Selects the start node and the next node for a single-path run."""

    def start(self, nodes: List[WorkflowNode]) -> Optional[str]:
        """
        Pick the start node.

        Returns the first trigger node, else the first node, else None
        when the graph is empty.
        """
        for node in nodes:
            if node.type == NodeType.TRIGGER:
                return node.id
        if nodes:
            return nodes[0].id
        return None

    def next(
        self,
        current_node: WorkflowNode,
        graph: WorkflowGraph,
        last_result: NodeResult,
    ) -> Optional[str]:
        """
        Pick the node that follows ``current_node``.

        Condition nodes follow the edge whose ``sourceHandle`` matches the
        evaluated branch ("true" or "false"). Any other node follows its
        first outgoing edge. Returns None when there is nowhere to go.
        """
        edges = graph.edges_from(current_node.id)

        if current_node.type == NodeType.CONDITION:
            handle = "true" if last_result.branch else "false"
            for edge in edges:
                if edge.source_handle == handle:
                    return edge.target
            return None

        if edges:
            return edges[0].target
        return None
