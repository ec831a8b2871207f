"""
Execution Coordinator

Orchestrates workflow runs: creates the execution record, drives the
graph walker loop in a background task, invokes node executors, persists
progress after every step and finalizes the run.

Status transitions:
    running -> paused -> running
    running | paused -> cancelled
    running -> completed | failed

Pause and stop are cooperative. The run task re-reads the record at every
iteration boundary; a node that is already executing is never preempted.
Every run-side write is conditional on the record still being active, so
nothing is written after a stop except the stop itself.
"""

import asyncio
import contextlib
import functools
import math
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
from uuid import uuid4

from flowrunner.config import Settings
from flowrunner.exceptions import (
    AppException,
    CycleDetectedError,
    ExecutionError,
    ExecutionTimeoutError,
    InvalidStateError,
    NotFoundError,
)
from flowrunner.logging_config import bind_run_context, clear_run_context, get_logger
from flowrunner.middleware.metrics import (
    executions_running,
    executions_started_total,
    record_execution_finished,
    record_node_execution,
)
from flowrunner.schemas.execution import (
    ACTIVE_STATUSES,
    ExecutionMetrics,
    ExecutionRecord,
    ExecutionStatus,
)
from flowrunner.services.action_handler import ActionHandler, LoggingActionHandler
from flowrunner.services.agent_runtime import AgentRuntime, SimulatedAgentRuntime
from flowrunner.services.analytics_service import AnalyticsRecorder, PrometheusAnalytics
from flowrunner.services.execution_store import ExecutionStore
from flowrunner.workflows.graph import WorkflowGraph
from flowrunner.workflows.nodes import NodeExecutors, publish_output, result_summary
from flowrunner.workflows.state import ExecutionContext
from flowrunner.workflows.walker import GraphWalker

logger = get_logger(__name__)


def compute_progress(completed: int, total: int) -> int:
    """Percentage of nodes completed, rounded half up."""
    if total <= 0:
        return 0
    return min(100, int(math.floor(completed / total * 100 + 0.5)))


class ExecutionCoordinator:
    """
    Runs workflow graphs and applies control operations.

    One asyncio task per run; nodes inside a run execute strictly one at
    a time. Runs share nothing but the store.
    """

    def __init__(
        self,
        store: ExecutionStore,
        executors: NodeExecutors,
        walker: Optional[GraphWalker] = None,
        step_delay: float = 1.0,
        max_steps: int = 1000,
        timeout: Optional[float] = None,
        pause_poll_interval: float = 0.5,
        list_limit: int = 50,
    ):
        self._store = store
        self._executors = executors
        self._walker = walker or GraphWalker()
        self._step_delay = step_delay
        self._max_steps = max_steps
        self._timeout = timeout
        self._pause_poll_interval = pause_poll_interval
        self._list_limit = list_limit

        self._running_executions: Dict[str, asyncio.Task] = {}
        self._wakeups: Dict[str, asyncio.Event] = {}

    @property
    def store(self) -> ExecutionStore:
        return self._store

    @property
    def active_count(self) -> int:
        """Number of run tasks alive in this process."""
        return len(self._running_executions)

    # =========================================================================
    # Control operations
    # =========================================================================

    async def execute(
        self,
        graph: WorkflowGraph,
        owner_id: str,
        variables: Optional[Dict[str, Any]] = None,
    ) -> str:
        """
        Start executing a workflow graph.

        Validates the graph, inserts the initial record and schedules the
        run. Returns the execution id without waiting for the run.

        Raises:
            GraphValidationError: If the graph is malformed (no record is created)
        """
        graph.validate_structure()

        execution_id = str(uuid4())
        record = ExecutionRecord(
            id=execution_id,
            workflow_id=graph.id,
            workflow_name=graph.name or None,
            owner_id=owner_id,
            status=ExecutionStatus.RUNNING,
            progress=0,
            metrics=ExecutionMetrics(total_nodes=len(graph.nodes)),
        )
        await self._store.insert(record)

        context = ExecutionContext(
            execution_id=execution_id,
            workflow_id=graph.id,
            owner_id=owner_id,
            start_time=record.start_time,
            variables=dict(variables or {}),
        )

        self._wakeups[execution_id] = asyncio.Event()
        task = asyncio.create_task(self._run(graph, context), name=f"execution-{execution_id}")
        self._running_executions[execution_id] = task
        executions_started_total.inc()
        executions_running.inc()
        # Runs even when the task is cancelled before its first step
        task.add_done_callback(functools.partial(self._run_finished, execution_id))

        logger.info(
            "Workflow execution started",
            execution_id=execution_id,
            workflow_id=graph.id,
            total_nodes=len(graph.nodes),
        )
        return execution_id

    async def pause(self, execution_id: str, owner_id: str) -> ExecutionRecord:
        """Pause a running execution at its next iteration boundary."""
        record = await self._transition(
            execution_id,
            owner_id,
            {"status": ExecutionStatus.PAUSED},
            allowed=(ExecutionStatus.RUNNING,),
            message="Only running executions can be paused",
        )
        logger.info("Workflow execution paused", execution_id=execution_id)
        return record

    async def resume(self, execution_id: str, owner_id: str) -> ExecutionRecord:
        """Resume a paused execution."""
        record = await self._transition(
            execution_id,
            owner_id,
            {"status": ExecutionStatus.RUNNING},
            allowed=(ExecutionStatus.PAUSED,),
            message="Only paused executions can be resumed",
        )
        self._wake(execution_id)
        logger.info("Workflow execution resumed", execution_id=execution_id)
        return record

    async def stop(self, execution_id: str, owner_id: str) -> ExecutionRecord:
        """Cancel a running or paused execution."""
        now = datetime.utcnow()
        record = await self._transition(
            execution_id,
            owner_id,
            {"status": ExecutionStatus.CANCELLED, "end_time": now},
            allowed=(ExecutionStatus.RUNNING, ExecutionStatus.PAUSED),
            message="Cannot stop execution with status: {status}",
        )
        self._wake(execution_id)
        record_execution_finished(
            ExecutionStatus.CANCELLED.value,
            (now - record.start_time).total_seconds(),
        )
        logger.info("Workflow execution stopped", execution_id=execution_id)
        return record

    async def status(self, execution_id: str, owner_id: str) -> ExecutionRecord:
        """Get the current record of an execution."""
        return await self._require(execution_id, owner_id)

    async def list(
        self,
        owner_id: str,
        workflow_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[ExecutionRecord]:
        """Execution history of an owner, newest first."""
        return await self._store.list(owner_id, workflow_id=workflow_id, limit=limit or self._list_limit)

    async def wait_for_completion(
        self,
        execution_id: str,
        timeout: Optional[float] = None,
    ) -> Optional[ExecutionRecord]:
        """
        Wait for an in-process run task to finish.

        Returns the final record. Runs started by another process are not
        awaited; their current record is returned.

        Raises:
            asyncio.TimeoutError: If the run is still going after ``timeout``
        """
        task = self._running_executions.get(execution_id)
        if task is not None:
            done, _ = await asyncio.wait({task}, timeout=timeout)
            if not done:
                raise asyncio.TimeoutError(f"Execution {execution_id} still running after {timeout}s")
        return await self._store.get(execution_id)

    async def shutdown(self) -> None:
        """Cancel in-flight run tasks. Called on application stop."""
        tasks = list(self._running_executions.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        await self._executors.agent.drain()
        logger.info("Execution coordinator shut down", cancelled_runs=len(tasks))

    # =========================================================================
    # Run loop
    # =========================================================================

    async def _run(self, graph: WorkflowGraph, context: ExecutionContext) -> None:
        """Background task body for one run."""
        execution_id = context.execution_id
        bind_run_context(execution_id, context.workflow_id)

        try:
            if self._timeout:
                await asyncio.wait_for(self._walk(graph, context), timeout=self._timeout)
            else:
                await self._walk(graph, context)

        except asyncio.TimeoutError:
            await self._fail(context, ExecutionTimeoutError(self._timeout))

        except ExecutionError as e:
            await self._fail(context, e)

        except asyncio.CancelledError:
            logger.warning("Execution task cancelled", completed_nodes=context.completed_count)
            raise

        except Exception as e:
            logger.exception("Unexpected error during execution", error=str(e))
            await self._fail(context, e)

        finally:
            clear_run_context()

    async def _walk(self, graph: WorkflowGraph, context: ExecutionContext) -> None:
        execution_id = context.execution_id
        total = len(graph.nodes)
        metrics = ExecutionMetrics(total_nodes=total)
        steps = 0

        current_id = self._walker.start(graph.nodes)

        while current_id is not None:
            if not await self._await_runnable(execution_id):
                logger.info("Execution no longer running, exiting", completed_nodes=context.completed_count)
                return

            if context.has_result(current_id):
                raise CycleDetectedError(
                    f"Cycle detected: node {current_id} was already executed",
                    node_id=current_id,
                    path=context.visited + [current_id],
                )

            if steps >= self._max_steps:
                raise CycleDetectedError(
                    f"Execution exceeded the maximum of {self._max_steps} steps",
                    node_id=current_id,
                )

            node = graph.find_node(current_id)
            if node is None:
                raise ExecutionError(f"Node {current_id} not found in workflow", node_id=current_id)

            # Paused or stopped since the check above: go back and wait or exit
            started = await self._store.update(
                execution_id,
                {
                    "current_node": current_id,
                    "progress": compute_progress(context.completed_count, total),
                },
                only_if=(ExecutionStatus.RUNNING,),
            )
            if started is None:
                continue

            steps += 1
            context.current_node_id = current_id
            result = await self._executors.execute(node, context)

            context.record_result(result)
            publish_output(context, result)
            record_node_execution(result.node_type.value, result.success)

            metrics.completed_nodes = context.completed_count
            metrics.error_count = context.unsuccessful_nodes
            written = await self._store.update(
                execution_id,
                {
                    "metrics": metrics.model_copy(),
                    "results": context.serialized_results(),
                },
                only_if=ACTIVE_STATUSES,
            )
            if written is None:
                logger.info(
                    "Execution finalized while node was running, result discarded",
                    node_id=current_id,
                )
                return

            logger.info("Node executed", **result_summary(result))

            current_id = self._walker.next(node, graph, result)
            if current_id is not None and self._step_delay > 0:
                await asyncio.sleep(self._step_delay)

        # Honour a pause or stop that arrived during the last node
        if not await self._await_runnable(execution_id):
            logger.info("Execution no longer running, skipping completion")
            return

        await self._complete(context, metrics)

    async def _await_runnable(self, execution_id: str) -> bool:
        """
        Block while the execution is paused.

        Returns True when the run may continue and False when it must exit
        (cancelled, finalized elsewhere or gone).
        """
        waiting = False
        while True:
            wakeup = self._wakeups.get(execution_id)
            if wakeup is not None:
                wakeup.clear()

            record = await self._store.get(execution_id)
            if record is None:
                return False
            if record.status == ExecutionStatus.RUNNING:
                if waiting:
                    logger.info("Execution continuing after pause")
                return True
            if record.status != ExecutionStatus.PAUSED:
                return False

            if not waiting:
                logger.info("Execution paused, waiting for resume")
                waiting = True

            if wakeup is None:
                await asyncio.sleep(self._pause_poll_interval)
            else:
                with contextlib.suppress(asyncio.TimeoutError):
                    await asyncio.wait_for(wakeup.wait(), timeout=self._pause_poll_interval)

    async def _complete(self, context: ExecutionContext, metrics: ExecutionMetrics) -> None:
        now = datetime.utcnow()
        elapsed_ms = context.elapsed_ms(now)
        completed = context.completed_count

        metrics.completed_nodes = completed
        metrics.error_count = context.unsuccessful_nodes
        metrics.avg_execution_time = round(elapsed_ms / completed, 3) if completed else 0.0

        written = await self._store.update(
            context.execution_id,
            {
                "status": ExecutionStatus.COMPLETED,
                "end_time": now,
                "progress": 100,
                "metrics": metrics,
            },
            only_if=(ExecutionStatus.RUNNING,),
        )
        if written is None:
            logger.info("Execution no longer running, skipping completion")
            return
        record_execution_finished(ExecutionStatus.COMPLETED.value, elapsed_ms / 1000)

        logger.info(
            "Workflow execution completed",
            completed_nodes=completed,
            error_count=metrics.error_count,
            duration_ms=round(elapsed_ms, 1),
        )

    async def _fail(self, context: ExecutionContext, error: Exception) -> None:
        """Mark the run failed. Never overwrites a record finalized elsewhere."""
        execution_id = context.execution_id
        message = error.message if isinstance(error, AppException) else str(error)
        message = message or error.__class__.__name__

        logger.error(
            "Workflow execution failed",
            error=message,
            error_type=error.__class__.__name__,
            node_id=getattr(error, "node_id", None) or context.current_node_id,
        )

        try:
            record = await self._store.get(execution_id)
            if record is None or record.is_terminal:
                return

            now = datetime.utcnow()
            metrics = record.metrics.model_copy(update={"error_count": record.metrics.error_count + 1})
            written = await self._store.update(
                execution_id,
                {
                    "status": ExecutionStatus.FAILED,
                    "end_time": now,
                    "error_details": message,
                    "metrics": metrics,
                    "results": context.serialized_results(),
                },
                only_if=ACTIVE_STATUSES,
            )
            if written is None:
                return
            record_execution_finished(ExecutionStatus.FAILED.value, context.elapsed_ms(now) / 1000)
        except AppException as e:
            logger.error("Could not persist execution failure", error=e.message)

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _require(self, execution_id: str, owner_id: str) -> ExecutionRecord:
        record = await self._store.get(execution_id, owner_id=owner_id)
        if record is None:
            raise NotFoundError("Execution", execution_id)
        return record

    async def _transition(
        self,
        execution_id: str,
        owner_id: str,
        changes: Dict[str, Any],
        allowed: Tuple[ExecutionStatus, ...],
        message: str,
    ) -> ExecutionRecord:
        """
        Apply a control write if the record is in one of ``allowed``.

        The status check is part of the store write, so a transition can
        not land on a record that moved on concurrently.

        Raises:
            NotFoundError: If the execution is unknown or owned by someone else
            InvalidStateError: If the current status does not allow the transition
        """
        record = await self._require(execution_id, owner_id)
        if record.status in allowed:
            written = await self._store.update(execution_id, changes, only_if=allowed)
            if written is not None:
                return written
            record = await self._require(execution_id, owner_id)

        raise InvalidStateError(
            message.format(status=record.status.value),
            current_state=record.status.value,
            allowed_states=[status.value for status in allowed],
        )

    def _run_finished(self, execution_id: str, task: asyncio.Task) -> None:
        self._running_executions.pop(execution_id, None)
        self._wakeups.pop(execution_id, None)
        executions_running.dec()

    def _wake(self, execution_id: str) -> None:
        wakeup = self._wakeups.get(execution_id)
        if wakeup is not None:
            wakeup.set()


def create_coordinator(
    store: ExecutionStore,
    config: Settings,
    agent_runtime: Optional[AgentRuntime] = None,
    analytics: Optional[AnalyticsRecorder] = None,
    action_handler: Optional[ActionHandler] = None,
) -> ExecutionCoordinator:
    """Wire a coordinator and its executors from settings."""
    executors = NodeExecutors(
        agent_runtime=agent_runtime or SimulatedAgentRuntime(
            failure_rate=config.AGENT_FAILURE_RATE,
            min_response_ms=config.AGENT_MIN_RESPONSE_MS,
            max_response_ms=config.AGENT_MAX_RESPONSE_MS,
        ),
        analytics=analytics or PrometheusAnalytics(),
        action_handler=action_handler or LoggingActionHandler(),
        default_delay_ms=config.DEFAULT_DELAY_MS,
    )
    return ExecutionCoordinator(
        store=store,
        executors=executors,
        step_delay=config.EXECUTION_STEP_DELAY_SECONDS,
        max_steps=config.MAX_EXECUTION_STEPS,
        timeout=config.EXECUTION_TIMEOUT_SECONDS,
        pause_poll_interval=config.PAUSE_POLL_INTERVAL_SECONDS,
        list_limit=config.EXECUTION_LIST_LIMIT,
    )
