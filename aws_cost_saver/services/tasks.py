"""
Hierarchical task tree used by tricks to schedule their work.

A trick returns a ``TaskList`` whose tasks may themselves return nested task
lists. The runner executes each list on a bounded thread pool, records a
``TaskResult`` per task and publishes ``ProgressEvent``s to a channel read by
a single consumer. A failing task never cancels its siblings.
"""
import logging
import queue
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Iterator, List, NoReturn, Optional, Tuple

from .models import ProgressEvent, TaskResult, TaskStatus


logger = logging.getLogger(__name__)

_CLOSED = object()


class TaskSkipped(Exception):
    """Raised through ``TaskHandle.skip`` to end a task as skipped."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class ProgressChannel:
    """Queue of progress events with one reader and many writers."""

    def __init__(self):
        self._queue: queue.Queue = queue.Queue()

    def publish(self, event: ProgressEvent) -> None:
        self._queue.put(event)

    def close(self) -> None:
        self._queue.put(_CLOSED)

    def __iter__(self) -> Iterator[ProgressEvent]:
        """Yield events until the channel is closed."""
        while True:
            event = self._queue.get()
            if event is _CLOSED:
                return
            yield event


class TaskHandle:
    """What a running task can do: report output or skip itself."""

    def __init__(self, path: Tuple[str, ...], channel: Optional[ProgressChannel] = None):
        self.path = path
        self.last_output: Optional[str] = None
        self._channel = channel

    @property
    def title(self) -> str:
        return self.path[-1]

    def output(self, message: str) -> None:
        self.last_output = message
        if self._channel is not None:
            self._channel.publish(ProgressEvent(self.path, TaskStatus.RUNNING, message))

    def skip(self, reason: str) -> NoReturn:
        raise TaskSkipped(reason)


@dataclass
class Task:
    """A titled unit of work, ``run`` may return a nested ``TaskList``."""
    title: str
    run: Callable[[TaskHandle], Optional['TaskList']]


@dataclass
class TaskList:
    """Tasks run together.

    ``concurrency`` bounds parallel tasks (None means no bound, 1 means in
    order). ``exit_on_error`` only applies to sequential lists: once a task
    fails by itself the remaining tasks are recorded as skipped.
    """
    tasks: List[Task] = field(default_factory=list)
    concurrency: Optional[int] = None
    exit_on_error: bool = False

    def add(self, *tasks: Task) -> 'TaskList':
        self.tasks.extend(tasks)
        return self

    def __len__(self) -> int:
        return len(self.tasks)


class TaskRunner:
    """Executes task trees and collects their results."""

    def __init__(self, channel: Optional[ProgressChannel] = None):
        self.channel = channel

    def run(self, task_list: Optional[TaskList], parent_path: Tuple[str, ...] = ()) -> List[TaskResult]:
        """Run every task of a list, returning results in list order."""
        if task_list is None or not task_list.tasks:
            return []

        if task_list.concurrency == 1:
            return self._run_sequential(task_list, parent_path)

        max_workers = len(task_list.tasks)
        if task_list.concurrency is not None:
            max_workers = max(1, min(task_list.concurrency, max_workers))

        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            futures = [
                executor.submit(self.run_task, task, parent_path)
                for task in task_list.tasks
            ]
            return [future.result() for future in futures]

    def run_task(self, task: Task, parent_path: Tuple[str, ...] = ()) -> TaskResult:
        """Run one task and everything it schedules."""
        path = parent_path + (task.title,)
        handle = TaskHandle(path, self.channel)
        started = time.monotonic()
        self._publish(path, TaskStatus.RUNNING)

        try:
            children_list = task.run(handle)
        except TaskSkipped as e:
            logger.debug(f"Skipped {' > '.join(path)}: {e.reason}")
            result = TaskResult(title=task.title, status=TaskStatus.SKIPPED, message=e.reason)
        except Exception as e:
            logger.error(f"Failed {' > '.join(path)}: {e}")
            result = TaskResult(title=task.title, status=TaskStatus.FAILED, message=str(e) or repr(e))
        else:
            children = self.run(children_list, path)
            result = TaskResult(
                title=task.title,
                status=TaskStatus.SUCCEEDED,
                message=handle.last_output,
                children=children,
            )

        result.duration = time.monotonic() - started
        self._publish(path, result.status, result.message)
        return result

    def _run_sequential(self, task_list: TaskList, parent_path: Tuple[str, ...]) -> List[TaskResult]:
        results = []
        stopped = False

        for task in task_list.tasks:
            if stopped:
                result = TaskResult(
                    title=task.title,
                    status=TaskStatus.SKIPPED,
                    message="Skipped, a previous step failed",
                )
                self._publish(parent_path + (task.title,), result.status, result.message)
                results.append(result)
                continue

            result = self.run_task(task, parent_path)
            results.append(result)

            if task_list.exit_on_error and result.status == TaskStatus.FAILED:
                stopped = True

        return results

    def _publish(self, path: Tuple[str, ...], status: TaskStatus, message: Optional[str] = None) -> None:
        if self.channel is not None:
            self.channel.publish(ProgressEvent(path, status, message))
