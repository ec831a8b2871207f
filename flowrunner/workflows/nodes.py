"""
Workflow Node Executors

One executor per node kind:
- Trigger: Marks that the workflow was triggered
- Agent: Invokes an agent through the agent runtime
- Action: Performs a side effect through the action handler
- Condition: Evaluates a condition and selects a branch
- Delay: Suspends the run for a bounded time

Executors never touch the execution record. They receive the node and
the run context and return a NodeResult, or raise an ExecutionError.
"""

import asyncio
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, Optional, Set

from pydantic import BaseModel

from flowrunner.exceptions import ExecutionError, NodeExecutionError
from flowrunner.logging_config import get_logger
from flowrunner.services.action_handler import ActionHandler, LoggingActionHandler
from flowrunner.services.agent_runtime import AgentRuntime, SimulatedAgentRuntime
from flowrunner.services.analytics_service import (
    AgentAnalyticsEvent,
    AnalyticsRecorder,
    InMemoryAnalytics,
)

from .conditions import evaluate_condition
from .graph import NodeType, WorkflowNode
from .state import ExecutionContext, NodeResult

logger = get_logger(__name__)


class RetryPolicy(BaseModel):
    """
    Per-node retry configuration read from ``node.data``.

    ``retries`` is the number of extra attempts; ``retryDelay`` is the base
    delay in milliseconds, doubled after every failed attempt.
    """
    retries: int = 0
    retry_delay_ms: float = 1000.0

    @classmethod
    def from_node(cls, node: WorkflowNode) -> "RetryPolicy":
        retries = node.data.get("retries", 0) or 0
        retry_delay = node.data.get("retryDelay", 1000.0)
        return cls(retries=max(0, int(retries)), retry_delay_ms=max(0.0, float(retry_delay)))

    def delay_for(self, attempt: int) -> float:
        """Backoff in seconds after the given zero-based attempt."""
        return (self.retry_delay_ms / 1000) * (2 ** attempt)


class BaseNodeExecutor(ABC):
    """
    Base class for node executors.

    Subclasses implement ``_run``. ``execute`` adds the retry policy and
    wraps unexpected failures in NodeExecutionError. ExecutionErrors raised
    by ``_run`` are deterministic and propagate without retry.
    """

    node_type: NodeType

    async def execute(self, node: WorkflowNode, context: ExecutionContext) -> NodeResult:
        policy = RetryPolicy.from_node(node)
        last_error: Optional[Exception] = None

        for attempt in range(policy.retries + 1):
            started_at = datetime.utcnow()
            try:
                result = await self._run(node, context)
            except ExecutionError:
                raise
            except Exception as e:
                last_error = e
                logger.warning(
                    "Node attempt failed",
                    node_id=node.id,
                    node_type=node.type.value,
                    attempt=attempt + 1,
                    max_attempts=policy.retries + 1,
                    error=str(e),
                )
                if attempt < policy.retries:
                    await asyncio.sleep(policy.delay_for(attempt))
                continue

            return result.model_copy(update={
                "attempts": attempt + 1,
                "started_at": started_at,
                "completed_at": datetime.utcnow(),
            })

        raise NodeExecutionError(
            f"Node {node.id} failed after {policy.retries + 1} attempts: {last_error}",
            node_id=node.id,
            attempts=policy.retries + 1,
        )

    @abstractmethod
    async def _run(self, node: WorkflowNode, context: ExecutionContext) -> NodeResult:
        pass


class TriggerExecutor(BaseNodeExecutor):
    """Trigger node - records that the workflow fired. Always succeeds."""

    node_type = NodeType.TRIGGER

    async def _run(self, node: WorkflowNode, context: ExecutionContext) -> NodeResult:
        trigger_type = node.data.get("triggerType", "manual")
        logger.info("Executing trigger", node_id=node.id, trigger_type=trigger_type)
        return NodeResult(
            node_id=node.id,
            node_type=self.node_type,
            success=True,
            details={
                "triggerType": trigger_type,
                "timestamp": datetime.utcnow().isoformat(),
            },
        )


class AgentExecutor(BaseNodeExecutor):
    """
    Agent node - invokes an agent via the agent runtime.

    An unsuccessful invocation is a result, not a fault: the node reports
    success=False and the run continues. Every invocation emits an
    analytics event in a detached task whose failure is only logged.
    """

    node_type = NodeType.AGENT

    def __init__(self, runtime: AgentRuntime, analytics: AnalyticsRecorder):
        self._runtime = runtime
        self._analytics = analytics
        self._pending: Set[asyncio.Task] = set()

    async def _run(self, node: WorkflowNode, context: ExecutionContext) -> NodeResult:
        agent_name = node.data.get("name") or node.id
        logger.info("Executing agent", node_id=node.id, agent=agent_name)

        invocation = await self._runtime.invoke(node.data)

        self._emit_analytics(AgentAnalyticsEvent(
            agent_id=str(node.data.get("id") or node.id),
            outcome="success" if invocation.success else "error",
            response_time_ms=invocation.response_time_ms,
            execution_id=context.execution_id,
        ))

        return NodeResult(
            node_id=node.id,
            node_type=self.node_type,
            success=invocation.success,
            output=invocation.output,
            details={
                "agentName": agent_name,
                "executionTime": round(invocation.response_time_ms, 3),
            },
        )

    def _emit_analytics(self, event: AgentAnalyticsEvent) -> None:
        task = asyncio.create_task(self._analytics.record(event))
        self._pending.add(task)
        task.add_done_callback(self._analytics_done)

    def _analytics_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.warning("Agent analytics emission failed", error=str(error))

    async def drain(self) -> None:
        """Wait for in-flight analytics emissions. Used on shutdown and in tests."""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)


class ActionExecutor(BaseNodeExecutor):
    """Action node - dispatches ``data.actionType`` to the action handler."""

    node_type = NodeType.ACTION

    def __init__(self, handler: ActionHandler):
        self._handler = handler

    async def _run(self, node: WorkflowNode, context: ExecutionContext) -> NodeResult:
        action_type = node.data.get("actionType", "noop")
        payload = await self._handler.perform(action_type, node.data, context)
        return NodeResult(
            node_id=node.id,
            node_type=self.node_type,
            success=True,
            output=payload,
            details={"actionType": action_type, "executed": True},
        )


class ConditionExecutor(BaseNodeExecutor):
    """Condition node - evaluates ``data.condition`` against run variables."""

    node_type = NodeType.CONDITION

    async def _run(self, node: WorkflowNode, context: ExecutionContext) -> NodeResult:
        condition = node.data.get("condition")
        try:
            branch = evaluate_condition(condition, context.variables)
        except ExecutionError as e:
            e.node_id = node.id
            e.details["node_id"] = node.id
            raise

        logger.info("Condition evaluated", node_id=node.id, result=branch)
        return NodeResult(
            node_id=node.id,
            node_type=self.node_type,
            success=True,
            output=branch,
            branch=branch,
            details={"condition": condition, "result": branch},
        )


class DelayExecutor(BaseNodeExecutor):
    """Delay node - sleeps for ``data.duration`` milliseconds."""

    node_type = NodeType.DELAY

    def __init__(self, default_ms: float = 1000.0):
        self._default_ms = default_ms

    async def _run(self, node: WorkflowNode, context: ExecutionContext) -> NodeResult:
        duration = node.data.get("duration") or self._default_ms
        try:
            duration = float(duration)
        except (TypeError, ValueError):
            raise ExecutionError(
                f"Invalid delay duration: {duration!r}",
                node_id=node.id,
            )
        if duration < 0:
            raise ExecutionError(f"Delay duration must not be negative: {duration}", node_id=node.id)

        await asyncio.sleep(duration / 1000)
        return NodeResult(
            node_id=node.id,
            node_type=self.node_type,
            success=True,
            details={"duration": duration, "completed": True},
        )


class NodeExecutors:
    """
    The closed set of executors, one per NodeType.

    Collaborators are injected here and nowhere else.
    """

    def __init__(
        self,
        agent_runtime: Optional[AgentRuntime] = None,
        analytics: Optional[AnalyticsRecorder] = None,
        action_handler: Optional[ActionHandler] = None,
        default_delay_ms: float = 1000.0,
    ):
        self.trigger = TriggerExecutor()
        self.agent = AgentExecutor(
            agent_runtime or SimulatedAgentRuntime(),
            analytics or InMemoryAnalytics(),
        )
        self.action = ActionExecutor(action_handler or LoggingActionHandler())
        self.condition = ConditionExecutor()
        self.delay = DelayExecutor(default_delay_ms)

    def for_type(self, node_type: NodeType) -> BaseNodeExecutor:
        if node_type == NodeType.TRIGGER:
            return self.trigger
        elif node_type == NodeType.AGENT:
            return self.agent
        elif node_type == NodeType.ACTION:
            return self.action
        elif node_type == NodeType.CONDITION:
            return self.condition
        elif node_type == NodeType.DELAY:
            return self.delay
        raise ValueError(f"Unknown node type: {node_type}")

    async def execute(self, node: WorkflowNode, context: ExecutionContext) -> NodeResult:
        return await self.for_type(node.type).execute(node, context)


def publish_output(context: ExecutionContext, result: NodeResult) -> None:
    """Expose agent and action outputs to later nodes as variables."""
    if result.node_type in (NodeType.AGENT, NodeType.ACTION):
        context.set_variable(result.node_id, result.output)
        context.set_variable("last_output", result.output)


def result_summary(result: NodeResult) -> Dict[str, Any]:
    """Compact log fields for a node result."""
    return {
        "node_id": result.node_id,
        "node_type": result.node_type.value,
        "success": result.success,
        "attempts": result.attempts,
        "duration_ms": round(result.duration_ms, 1),
    }
