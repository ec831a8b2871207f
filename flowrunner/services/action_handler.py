"""
Action Handler

Side-effecting operations performed by action nodes (send-email,
call-webhook, ...). The integrations themselves live outside the engine;
this module defines the seam and a logging default.
"""

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Dict

from flowrunner.logging_config import get_logger

if TYPE_CHECKING:
    from flowrunner.workflows.state import ExecutionContext

logger = get_logger(__name__)


class ActionHandler(ABC):
    """Performs a named action against an external system."""

    @abstractmethod
    async def perform(
        self,
        action_type: str,
        data: Dict[str, Any],
        context: "ExecutionContext",
    ) -> Any:
        """
        Perform an action.

        Returns:
            Result payload stored as the node output

        Raises:
            Exception: Any failure; the node executor's retry policy applies
        """
        pass


class LoggingActionHandler(ActionHandler):
    """Records the action and reports completion without side effects."""

    async def perform(
        self,
        action_type: str,
        data: Dict[str, Any],
        context: "ExecutionContext",
    ) -> Any:
        logger.info(
            "Action performed",
            action_type=action_type,
            execution_id=context.execution_id,
        )
        return f"Action {action_type} completed"
