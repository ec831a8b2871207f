"""
Flowrunner Workflow Engine

Executes node/edge workflow graphs built in a visual editor as stateful,
resumable, progress-tracked runs.
"""

__version__ = "1.0.0"
