"""
API v1 Package

REST API endpoints for the workflow engine - Version 1
"""

from . import health
from . import metrics
from . import executions

__all__ = ["health", "metrics", "executions"]
