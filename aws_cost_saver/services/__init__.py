"""Task tree, run results and the conserve/restore pipelines."""

from .models import ProgressEvent, RunOutcome, RunReport, TaskResult, TaskStatus, TrickResult
from .tasks import ProgressChannel, Task, TaskHandle, TaskList, TaskRunner, TaskSkipped

__all__ = [
    'ProgressEvent',
    'RunOutcome',
    'RunReport',
    'TaskResult',
    'TaskStatus',
    'TrickResult',
    'ProgressChannel',
    'Task',
    'TaskHandle',
    'TaskList',
    'TaskRunner',
    'TaskSkipped',
]
