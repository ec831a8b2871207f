"""
Database Models Package

SQLAlchemy ORM models for the execution store.
"""

from .base import Base
from .execution import WorkflowExecution

__all__ = [
    "Base",
    "WorkflowExecution",
]
