"""
Agent Runtime

Contract for invoking an agent from an agent node, plus the simulated
runtime used until a real agent runtime is wired in.
"""

import asyncio
import random
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from pydantic import BaseModel

from flowrunner.logging_config import get_logger

logger = get_logger(__name__)


class AgentInvocation(BaseModel):
    """Outcome of one agent invocation."""
    success: bool
    response_time_ms: float
    output: Any = None


class AgentRuntime(ABC):
    """Invokes an agent described by an agent node's configuration."""

    @abstractmethod
    async def invoke(self, agent_config: Dict[str, Any]) -> AgentInvocation:
        """
        Invoke an agent.

        Args:
            agent_config: The agent node's data (id, name, role, tools, ...)

        Returns:
            Invocation outcome with timing
        """
        pass


class SimulatedAgentRuntime(AgentRuntime):
    """
    Simulated agent execution.

    Draws a response time uniformly from [min_response_ms, max_response_ms]
    and fails with probability ``failure_rate``. Pass ``seed`` for
    reproducible outcomes. With ``sleep`` enabled the runtime actually waits
    for the drawn response time.
    """

    def __init__(
        self,
        failure_rate: float = 0.1,
        min_response_ms: float = 200.0,
        max_response_ms: float = 1200.0,
        seed: Optional[int] = None,
        sleep: bool = False,
    ):
        if not 0.0 <= failure_rate <= 1.0:
            raise ValueError("failure_rate must be between 0 and 1")
        if min_response_ms > max_response_ms:
            raise ValueError("min_response_ms must not exceed max_response_ms")

        self.failure_rate = failure_rate
        self.min_response_ms = min_response_ms
        self.max_response_ms = max_response_ms
        self._sleep = sleep
        self._random = random.Random(seed)

    async def invoke(self, agent_config: Dict[str, Any]) -> AgentInvocation:
        response_time = self._random.uniform(self.min_response_ms, self.max_response_ms)
        success = self._random.random() >= self.failure_rate
        name = agent_config.get("name") or agent_config.get("id") or "agent"

        if self._sleep:
            await asyncio.sleep(response_time / 1000)

        logger.debug(
            "Simulated agent invocation",
            agent=name,
            success=success,
            response_time_ms=round(response_time, 1),
        )

        if success:
            output = f"Agent {name} executed successfully"
        else:
            output = f"Agent {name} reported an error"

        return AgentInvocation(success=success, response_time_ms=response_time, output=output)
