"""
TaskGraph - dependency-ordered execution of named operations on a worker pool.

Guarantees:
    - A task body starts only after every input task succeeded.
    - When an input fails, dependents fail with the same exception without
      being scheduled.
    - join() blocks until every submitted task is terminal.
    - block_on(a, b) yields a task equal to a that resolves only once b has,
      which serialises operations sharing a remote resource.

Tasks can only be built from tasks that already exist in the same graph, so
the dependency relation is acyclic by construction. Already dispatched
bodies are never interrupted; cancel_pending() only prevents bodies that
have not started yet.

Usage:
    with TaskGraph(max_workers=4) as graph:
        data = graph.submit("read", read_file, graph.value(path))
        pushed = graph.submit("push", push, data)
        graph.join()
        pushed.result()
"""

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

from swapdeploy.exceptions import TaskCancelledError

logger = logging.getLogger(__name__)


class TaskState(Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def terminal(self) -> bool:
        return self not in (TaskState.PENDING, TaskState.RUNNING)


@dataclass(frozen=True)
class TaskMetric:
    """Timing of one task. duration_ms is None when the body never ran."""
    name: str
    state: TaskState
    duration_ms: Optional[float]

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "state": self.state.value, "duration_ms": self.duration_ms}


class Task:
    """
    Handle on one unit of work. Created only by TaskGraph.

    result() returns the output value or re-raises the exception that failed
    the task (or one of its ancestors).
    """

    def __init__(self, graph: 'TaskGraph', name: str, future: Future):
        self._graph = graph
        self._future = future
        self.name = name
        self.state = TaskState.PENDING
        self.started_at: Optional[float] = None
        self.finished_at: Optional[float] = None

    def __repr__(self) -> str:
        return f"Task({self.name!r}, {self.state.value})"

    def done(self) -> bool:
        return self._future.done()

    def result(self, timeout: Optional[float] = None) -> Any:
        return self._future.result(timeout)

    def exception(self, timeout: Optional[float] = None) -> Optional[BaseException]:
        return self._future.exception(timeout)

    @property
    def duration_ms(self) -> Optional[float]:
        if self.started_at is None or self.finished_at is None:
            return None
        return (self.finished_at - self.started_at) * 1000.0


class TaskGraph:
    """
    Runs submitted tasks on a fixed-size thread pool.

    Single producer: only the thread that owns the graph submits tasks, while
    many workers resolve them concurrently.
    """

    def __init__(self, max_workers: int = 4, clock: Callable[[], float] = time.monotonic):
        if max_workers < 1:
            raise ValueError(f"max_workers must be positive, got {max_workers}")
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix='swapdeploy-task')
        self._clock = clock
        self._condition = threading.Condition()
        self._outstanding = 0
        self._tasks: list[Task] = []
        self._cancelled = False

    def __enter__(self) -> 'TaskGraph':
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is not None:
            self.cancel_pending()
        self.close()

    def value(self, value: Any, name: str = "value") -> Task:
        """Wrap an already known value as a resolved task."""
        future = Future()
        future.set_result(value)
        task = Task(self, name, future)
        task.state = TaskState.SUCCEEDED
        return task

    def submit(self, name: str, fn: Callable[..., Any], *inputs: Task) -> Task:
        """
        Schedule fn to run with the values of inputs once they all succeed.

        Args:
            name: Task name used in logs and metrics
            fn: Body, called as fn(*input_values)
            inputs: Tasks previously created by this graph

        Returns:
            Task holding fn's output

        Raises:
            ValueError: If an input is not a task of this graph
        """
        self._check_inputs(inputs)

        task = Task(self, name, Future())
        with self._condition:
            self._outstanding += 1
            self._tasks.append(task)

        if not inputs:
            self._dispatch(task, fn, inputs)
            return task

        lock = threading.Lock()
        remaining = [len(inputs)]
        resolved = [False]

        def on_input_done(future: Future) -> None:
            with lock:
                if resolved[0]:
                    return
                remaining[0] -= 1
                failed = future.exception() is not None
                if failed or remaining[0] == 0:
                    resolved[0] = True
                else:
                    return
            if failed:
                self._fail_from_input(task, future.exception())
            else:
                self._dispatch(task, fn, inputs)

        for item in inputs:
            item._future.add_done_callback(on_input_done)
        return task

    def block_on(self, task: Task, on: Task) -> Task:
        """
        Return a task equivalent to task that resolves only after on resolves.

        Fails if either task fails. Not counted by pending_count(): it runs no
        body of its own.
        """
        self._check_inputs((task, on))
        future = Future()
        blocked = Task(self, f"{task.name}|after|{on.name}", future)
        lock = threading.Lock()
        remaining = [2]

        def on_done(done: Future) -> None:
            with lock:
                if future.done():
                    return
                remaining[0] -= 1
                error = done.exception()
                if error is None and remaining[0] > 0:
                    return
                if error is not None:
                    blocked.state = TaskState.CANCELLED if isinstance(error, TaskCancelledError) else TaskState.FAILED
                    future.set_exception(error)
                else:
                    blocked.state = TaskState.SUCCEEDED
                    future.set_result(task._future.result())

        task._future.add_done_callback(on_done)
        on._future.add_done_callback(on_done)
        return blocked

    def join(self, timeout: Optional[float] = None) -> bool:
        """
        Block until every submitted task is terminal.

        Returns:
            True when drained, False if timeout expired first
        """
        with self._condition:
            return self._condition.wait_for(lambda: self._outstanding == 0, timeout)

    def pending_count(self) -> int:
        """Number of submitted tasks that are not terminal yet."""
        with self._condition:
            return self._outstanding

    def cancel_pending(self) -> None:
        """Prevent every task that has not started from running."""
        self._cancelled = True

    def metrics(self) -> list[TaskMetric]:
        with self._condition:
            tasks = list(self._tasks)
        return [TaskMetric(task.name, task.state, task.duration_ms) for task in tasks]

    def close(self) -> None:
        """Wait for dispatched bodies and release the worker pool."""
        self._executor.shutdown(wait=True)

    def _check_inputs(self, inputs) -> None:
        for item in inputs:
            if not isinstance(item, Task):
                raise ValueError(f"Task inputs must be Task objects, got {type(item).__name__}")
            if item._graph is not self:
                raise ValueError(f"Task '{item.name}' belongs to another graph")

    def _dispatch(self, task: Task, fn: Callable[..., Any], inputs) -> None:
        if self._cancelled:
            self._finish(task, TaskState.CANCELLED, error=TaskCancelledError(f"Task '{task.name}' was cancelled"))
            return
        values = [item._future.result() for item in inputs]
        try:
            self._executor.submit(self._run, task, fn, values)
        except RuntimeError as e:
            # Pool already shut down
            self._finish(task, TaskState.CANCELLED, error=TaskCancelledError(f"Task '{task.name}' not started: {e}"))

    def _fail_from_input(self, task: Task, error: BaseException) -> None:
        state = TaskState.CANCELLED if isinstance(error, TaskCancelledError) else TaskState.FAILED
        logger.debug(f"Task '{task.name}' not scheduled: input {state.value} ({error})")
        self._finish(task, state, error=error)

    def _run(self, task: Task, fn: Callable[..., Any], values: list) -> None:
        if self._cancelled:
            self._finish(task, TaskState.CANCELLED, error=TaskCancelledError(f"Task '{task.name}' was cancelled"))
            return

        task.state = TaskState.RUNNING
        task.started_at = self._clock()
        logger.debug(f"Task '{task.name}' started")
        try:
            output = fn(*values)
        except BaseException as e:
            task.finished_at = self._clock()
            logger.debug(f"Task '{task.name}' failed: {e!r}")
            self._finish(task, TaskState.FAILED, error=e)
            if not isinstance(e, Exception):
                raise
        else:
            task.finished_at = self._clock()
            logger.debug(f"Task '{task.name}' finished in {task.duration_ms:.1f} ms")
            self._finish(task, TaskState.SUCCEEDED, output=output)

    def _finish(
        self,
        task: Task,
        state: TaskState,
        output: Any = None,
        error: Optional[BaseException] = None
    ) -> None:
        task.state = state
        if error is not None:
            task._future.set_exception(error)
        else:
            task._future.set_result(output)
        with self._condition:
            self._outstanding -= 1
            self._condition.notify_all()
