"""
Result models for conserve and restore runs.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Tuple

from ..state.document import StateDocument


class TaskStatus(str, Enum):
    """Lifecycle of one unit of work in the task tree."""
    PENDING = 'pending'
    RUNNING = 'running'
    SUCCEEDED = 'succeeded'
    SKIPPED = 'skipped'
    FAILED = 'failed'


class RunOutcome(str, Enum):
    """Overall classification of a run."""
    SUCCEEDED = 'succeeded'
    PARTIALLY_FAILED = 'partially_failed'
    FAILED = 'failed'


@dataclass
class ProgressEvent:
    """Progress emitted by a unit of work, consumed by a single reader."""
    path: Tuple[str, ...]       # Titles from the trick down to the unit
    status: TaskStatus
    message: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass
class TaskResult:
    """Outcome of one unit of work and of everything it scheduled."""
    title: str
    status: TaskStatus
    message: Optional[str] = None     # Skip reason, error or last output
    children: List['TaskResult'] = field(default_factory=list)
    duration: Optional[float] = None  # Seconds

    @property
    def succeeded(self) -> bool:
        return self.status == TaskStatus.SUCCEEDED

    @property
    def skipped(self) -> bool:
        return self.status == TaskStatus.SKIPPED

    def has_failed(self) -> bool:
        """True if this unit or any unit below it failed."""
        if self.status == TaskStatus.FAILED:
            return True
        return any(child.has_failed() for child in self.children)

    def errors(self) -> List[str]:
        """Error messages of this subtree, depth first."""
        errors = []
        if self.status == TaskStatus.FAILED:
            errors.append(f"{self.title}: {self.message}")
        for child in self.children:
            errors.extend(child.errors())
        return errors

    def count(self, status: TaskStatus) -> int:
        """Number of leaf units in this subtree with the given status."""
        if not self.children:
            return 1 if self.status == status else 0
        return sum(child.count(status) for child in self.children)


@dataclass
class TrickResult:
    """Everything one trick did during a run."""
    machine_name: str
    result: TaskResult

    @property
    def failed(self) -> bool:
        return self.result.has_failed()

    def errors(self) -> List[str]:
        return [f"[{self.machine_name}] {error}" for error in self.result.errors()]


@dataclass
class RunReport:
    """Aggregated result of a conserve or restore run."""
    action: str                       # 'conserve' or 'restore'
    trick_results: List[TrickResult]
    started_at: datetime
    finished_at: Optional[datetime] = None
    document: Optional[StateDocument] = None  # Produced by conserve only

    @property
    def outcome(self) -> RunOutcome:
        return classify_outcome(self.trick_results)

    def failed_tricks(self) -> List[str]:
        return [r.machine_name for r in self.trick_results if r.failed]

    def errors(self) -> List[str]:
        errors = []
        for trick_result in self.trick_results:
            errors.extend(trick_result.errors())
        return errors

    def summary(self) -> Dict[str, int]:
        """Leaf counts by status across all tricks."""
        return {
            status.value: sum(r.result.count(status) for r in self.trick_results)
            for status in (TaskStatus.SUCCEEDED, TaskStatus.SKIPPED, TaskStatus.FAILED)
        }


def classify_outcome(trick_results: List[TrickResult]) -> RunOutcome:
    """Classify a run from its per-trick results.

    All requested tricks failed means the run failed, some failed means it
    partially failed, none failed (including no tricks at all) is success.
    Skips never count as failures.
    """
    failed = [r for r in trick_results if r.failed]

    if not failed:
        return RunOutcome.SUCCEEDED
    if len(failed) == len(trick_results):
        return RunOutcome.FAILED
    return RunOutcome.PARTIALLY_FAILED
