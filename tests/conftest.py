"""Pytest configuration and fixtures for engine tests"""

from typing import Any, Dict, List

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

from flowrunner.auth.jwt_handler import create_access_token
from flowrunner.dependencies import get_coordinator
from flowrunner.main import app
from flowrunner.services.analytics_service import InMemoryAnalytics
from flowrunner.services.agent_runtime import SimulatedAgentRuntime
from flowrunner.services.execution_coordinator import ExecutionCoordinator
from flowrunner.services.execution_store import InMemoryExecutionStore
from flowrunner.workflows.graph import WorkflowGraph
from flowrunner.workflows.nodes import NodeExecutors


# ==================== Engine Fixtures ====================


@pytest.fixture
def store() -> InMemoryExecutionStore:
    """Fresh in-memory execution store"""
    return InMemoryExecutionStore()


@pytest.fixture
def analytics() -> InMemoryAnalytics:
    """Analytics recorder that keeps events in memory"""
    return InMemoryAnalytics()


@pytest.fixture
def agent_runtime() -> SimulatedAgentRuntime:
    """Deterministic agent runtime that always succeeds"""
    return SimulatedAgentRuntime(failure_rate=0.0, seed=42)


@pytest.fixture
def executors(agent_runtime, analytics) -> NodeExecutors:
    """Node executors with test collaborators and instant delays"""
    return NodeExecutors(
        agent_runtime=agent_runtime,
        analytics=analytics,
        default_delay_ms=0,
    )


@pytest_asyncio.fixture
async def coordinator(store, executors):
    """Coordinator without inter-node throttling"""
    coordinator = ExecutionCoordinator(
        store=store,
        executors=executors,
        step_delay=0,
        pause_poll_interval=0.01,
    )
    yield coordinator
    await coordinator.shutdown()


# ==================== Test Client Fixtures ====================


@pytest.fixture
def owner_id() -> str:
    return "owner-1"


@pytest.fixture
def auth_headers(owner_id) -> Dict[str, str]:
    """Bearer token for ``owner_id``"""
    return {"Authorization": f"Bearer {create_access_token(owner_id)}"}


@pytest_asyncio.fixture
async def test_client(coordinator):
    """Create an async test client with the coordinator overridden"""
    app.dependency_overrides[get_coordinator] = lambda: coordinator

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    # Clean up overrides
    app.dependency_overrides.clear()


# ==================== Sample Data Fixtures ====================


def make_graph(
    nodes: List[Dict[str, Any]],
    edges: List[Dict[str, Any]],
    graph_id: str = "wf-1",
    name: str = "Test Workflow",
) -> WorkflowGraph:
    """Build a graph from canvas-style dicts"""
    return WorkflowGraph.from_dict({"id": graph_id, "name": name, "nodes": nodes, "edges": edges})


@pytest.fixture
def linear_workflow() -> Dict[str, Any]:
    """Trigger -> agent -> action, in canvas wire format"""
    return {
        "id": "wf-linear",
        "name": "Linear Workflow",
        "nodes": [
            {"id": "T1", "type": "trigger", "data": {"triggerType": "manual"}, "position": {"x": 0, "y": 0}},
            {"id": "A1", "type": "agent", "data": {"id": "agent-7", "name": "Researcher"}, "position": {"x": 200, "y": 0}},
            {"id": "X1", "type": "action", "data": {"actionType": "send-email"}, "position": {"x": 400, "y": 0}},
        ],
        "edges": [
            {"id": "e1", "source": "T1", "target": "A1"},
            {"id": "e2", "source": "A1", "target": "X1"},
        ],
    }


@pytest.fixture
def branching_workflow():
    """Factory: trigger -> condition -> A_true | A_false"""
    def _build(condition: Any) -> WorkflowGraph:
        return make_graph(
            nodes=[
                {"id": "T1", "type": "trigger", "data": {}},
                {"id": "C1", "type": "condition", "data": {"condition": condition}},
                {"id": "A_true", "type": "action", "data": {"actionType": "approve"}},
                {"id": "A_false", "type": "action", "data": {"actionType": "reject"}},
            ],
            edges=[
                {"id": "e1", "source": "T1", "target": "C1"},
                {"id": "e2", "source": "C1", "target": "A_true", "sourceHandle": "true"},
                {"id": "e3", "source": "C1", "target": "A_false", "sourceHandle": "false"},
            ],
            graph_id="wf-branch",
        )
    return _build


@pytest.fixture
def graph_factory():
    """Factory building a WorkflowGraph from node and edge dicts"""
    return make_graph
