"""Analytics Service - append-only agent invocation events"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
import structlog

from flowrunner.middleware.metrics import agent_invocations_total, agent_response_time_seconds

logger = structlog.get_logger()


class AgentAnalyticsEvent(BaseModel):
    """One agent invocation as seen by the analytics collaborator."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    agent_id: str
    outcome: str  # "success" | "error"
    response_time_ms: float
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    execution_id: Optional[str] = None


class AnalyticsRecorder(ABC):
    """
    Receives agent analytics events.

    Callers treat recording as fire-and-forget; implementations may raise,
    and the agent executor logs and drops the failure.
    """

    @abstractmethod
    async def record(self, event: AgentAnalyticsEvent) -> None:
        pass


class InMemoryAnalytics(AnalyticsRecorder):
    """Keeps events in a list. Used in development and tests."""

    def __init__(self):
        self.events: List[AgentAnalyticsEvent] = []

    async def record(self, event: AgentAnalyticsEvent) -> None:
        self.events.append(event)

    def for_agent(self, agent_id: str) -> List[AgentAnalyticsEvent]:
        return [event for event in self.events if event.agent_id == agent_id]


class PrometheusAnalytics(AnalyticsRecorder):
    """Feeds agent outcomes into the Prometheus registry."""

    async def record(self, event: AgentAnalyticsEvent) -> None:
        agent_invocations_total.labels(outcome=event.outcome).inc()
        agent_response_time_seconds.observe(event.response_time_ms / 1000)
        logger.debug(
            "Agent analytics recorded",
            agent_id=event.agent_id,
            outcome=event.outcome,
            response_time_ms=round(event.response_time_ms, 1),
        )
