"""
Execution State

Run-scoped state for one workflow execution:
- Accumulated variables
- Per-node results in execution order
- Current traversal position and timing

Only the execution coordinator mutates an ExecutionContext.
"""

import copy
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .graph import NodeType


class NodeResult(BaseModel):
    """
    Output of one node's execution.

    Frozen once produced. ``success`` carries the node-kind outcome marker
    (triggered, executed, completed). ``branch`` is only set by condition
    nodes and drives edge selection.

    ``details`` is copied on construction and must be treated as
    read-only; ``to_dict`` hands out independent copies.
    """
    model_config = ConfigDict(frozen=True)

    node_id: str
    node_type: NodeType
    success: bool = True
    output: Any = None
    branch: Optional[bool] = None
    details: Dict[str, Any] = Field(default_factory=dict)
    attempts: int = 1
    started_at: datetime = Field(default_factory=datetime.utcnow)
    completed_at: datetime = Field(default_factory=datetime.utcnow)

    @field_validator("details", mode="before")
    @classmethod
    def copy_details(cls, value: Any) -> Any:
        # Detach from the producer's dict (e.g. an exception's details)
        return copy.deepcopy(value) if isinstance(value, dict) else value

    @property
    def duration_ms(self) -> float:
        return (self.completed_at - self.started_at).total_seconds() * 1000

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for the execution record."""
        data = self.model_dump(mode="json")
        data["duration_ms"] = round(self.duration_ms, 3)
        return data


class ExecutionContext(BaseModel):
    """
    Mutable run state that evolves during execution.

    Created once per run, never shared across runs.
    """
    execution_id: str
    workflow_id: str
    owner_id: str
    start_time: datetime = Field(default_factory=datetime.utcnow)
    current_node_id: Optional[str] = None

    # Variables visible to condition nodes (name -> value)
    variables: Dict[str, Any] = Field(default_factory=dict)

    # Node results (node_id -> result), insertion order = execution order
    results: Dict[str, NodeResult] = Field(default_factory=dict)

    # Number of nodes whose result carried success=False
    unsuccessful_nodes: int = 0

    def has_result(self, node_id: str) -> bool:
        return node_id in self.results

    def record_result(self, result: NodeResult) -> None:
        """
        Append a node result.

        Raises:
            ValueError: If the node already has a result
        """
        if result.node_id in self.results:
            raise ValueError(f"Node {result.node_id} already has a result")
        self.results[result.node_id] = result
        if not result.success:
            self.unsuccessful_nodes += 1

    def set_variable(self, name: str, value: Any) -> None:
        self.variables[name] = value

    def merge_variables(self, values: Dict[str, Any]) -> None:
        self.variables.update(values)

    def get_variable(self, path: str, default: Any = None) -> Any:
        """Get a variable using dot notation for nested values."""
        value: Any = self.variables
        for key in path.split("."):
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default
        return value

    @property
    def completed_count(self) -> int:
        return len(self.results)

    @property
    def visited(self) -> List[str]:
        return list(self.results.keys())

    def elapsed_ms(self, now: Optional[datetime] = None) -> float:
        now = now or datetime.utcnow()
        return (now - self.start_time).total_seconds() * 1000

    def serialized_results(self) -> Dict[str, Dict[str, Any]]:
        """Results in execution order, ready for the execution record."""
        return {node_id: result.to_dict() for node_id, result in self.results.items()}
