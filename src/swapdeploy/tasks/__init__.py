"""
Dependency-ordered task execution.

Public API:
    - TaskGraph: Worker-pool executor with join/block_on/cancel_pending
    - Task, TaskState, TaskMetric
"""

from .graph import TaskGraph, Task, TaskState, TaskMetric

__all__ = [
    "TaskGraph",
    "Task",
    "TaskState",
    "TaskMetric",
]
