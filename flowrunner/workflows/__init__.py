"""
Flowrunner Workflow System

Components:
- Graph: Workflow definition (nodes, edges) and structural validation
- Nodes: One executor per node type, with retry policy
- State: Run-scoped execution context and node results
- Walker: Start and next-node selection, condition branching
- Conditions: Condition expression evaluation
"""

from .graph import (
    NodeType,
    Position,
    WorkflowNode,
    WorkflowEdge,
    WorkflowGraph,
    build_simple_chain,
)
from .state import NodeResult, ExecutionContext
from .conditions import evaluate_condition
from .nodes import (
    RetryPolicy,
    BaseNodeExecutor,
    TriggerExecutor,
    AgentExecutor,
    ActionExecutor,
    ConditionExecutor,
    DelayExecutor,
    NodeExecutors,
)
from .walker import GraphWalker

__all__ = [
    # Graph
    "NodeType",
    "Position",
    "WorkflowNode",
    "WorkflowEdge",
    "WorkflowGraph",
    "build_simple_chain",
    # State
    "NodeResult",
    "ExecutionContext",
    # Conditions
    "evaluate_condition",
    # Executors
    "RetryPolicy",
    "BaseNodeExecutor",
    "TriggerExecutor",
    "AgentExecutor",
    "ActionExecutor",
    "ConditionExecutor",
    "DelayExecutor",
    "NodeExecutors",
    # Walker
    "GraphWalker",
]
