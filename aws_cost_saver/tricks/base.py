"""
Base trick interface shared by every resource category.
"""
import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import (
    Annotated, Any, Callable, ClassVar, Dict, FrozenSet, Generic, Iterable, Iterator,
    List, Optional, Sequence, Tuple, Type, TypeVar,
)

from pydantic import BaseModel, BeforeValidator, ConfigDict, ValidationError
from pydantic.alias_generators import to_camel

from ..core.config import TrickOptions
from ..core.exceptions import ServiceError
from ..services.tasks import Task, TaskHandle, TaskList
from . import tags as tag_filters


logger = logging.getLogger(__name__)


def _recorded_int(value: Any) -> Optional[int]:
    # Anything but a real integer means the value was never recorded
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    return value


RecordedInt = Annotated[Optional[int], BeforeValidator(_recorded_int)]


class ResourceState(BaseModel):
    """One captured resource record.

    Attributes are snake_case in Python and camelCase in the state document.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra='ignore',
    )


StateType = TypeVar('StateType', bound=ResourceState)


class StateCollector(Generic[StateType]):
    """Records captured by one trick, appended from concurrent tasks."""

    def __init__(self, records: Optional[Iterable[StateType]] = None):
        self._records: List[StateType] = list(records or [])
        self._lock = threading.Lock()

    def append(self, record: StateType) -> None:
        with self._lock:
            self._records.append(record)

    def records(self) -> List[StateType]:
        with self._lock:
            return list(self._records)

    def __iter__(self) -> Iterator[StateType]:
        return iter(self.records())

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)


@dataclass
class TrickContext:
    """Scratch space for one trick during one run.

    Fields are filled before any concurrent fan-out reads them and must not
    outlive the run.
    """
    tagged_arns: Optional[FrozenSet[str]] = None
    _memo: Dict[str, Any] = field(default_factory=dict, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    @property
    def filters_by_tags(self) -> bool:
        return self.tagged_arns is not None

    def is_included(self, arn_or_id: str) -> bool:
        """Whether a candidate resource passes the prepared tag lookup."""
        if self.tagged_arns is None:
            return True
        tagged_ids = self.memoize('tagged-ids', lambda: tag_filters.resource_ids(self.tagged_arns))
        return tag_filters.resource_id(arn_or_id) in tagged_ids

    def memoize(self, key: str, factory: Callable[[], Any]) -> Any:
        """Compute a value once per context, later calls reuse it."""
        with self._lock:
            if key not in self._memo:
                self._memo[key] = factory()
            return self._memo[key]


def wait_until(
    condition: Callable[[], bool],
    description: str,
    delay: float = 15,
    max_attempts: int = 40,
) -> None:
    """Poll ``condition`` with a fixed delay until it holds.

    Raises:
        ServiceError: If the condition still does not hold after max_attempts
    """
    for attempt in range(1, max_attempts + 1):
        if condition():
            return
        if attempt < max_attempts:
            time.sleep(delay)

    raise ServiceError(f"Timed out waiting for {description} after {max_attempts} attempts")


class Trick(ABC, Generic[StateType]):
    """Discovers, conserves and restores one category of billable resource."""

    machine_name: ClassVar[str]
    conserve_title: ClassVar[str]
    restore_title: ClassVar[str]
    state_type: ClassVar[Type[ResourceState]]

    # Resource Groups Tagging API types looked up by prepare_tags.
    # Empty when the native list call accepts tag filters itself.
    tagging_resource_types: ClassVar[Tuple[str, ...]] = ()

    # NAT gateway removal confuses infrastructure-as-code tools, opt-in only
    default_enabled: ClassVar[bool] = True

    def __init__(self, client_factory):
        """
        Args:
            client_factory: ClientFactory shared by the run
        """
        self.client_factory = client_factory

    def get_machine_name(self) -> str:
        return self.machine_name

    def new_context(self) -> TrickContext:
        return TrickContext()

    def prepare_tags(
        self,
        task: TaskHandle,
        context: TrickContext,
        options: TrickOptions,
    ) -> Optional[TaskList]:
        """Look up tagged resources once for tricks matching tags locally."""
        if not self.tagging_resource_types:
            task.skip('Tag filters are sent with the list request')

        if not options.has_tag_filters:
            task.skip('No tag filters requested, all resources are included')

        task.output('Looking up tagged resources...')
        context.tagged_arns = tag_filters.fetch_tagged_arns(
            self.client_factory.client('resourcegroupstaggingapi'),
            self.tagging_resource_types,
            options.tags,
        )
        task.output(f"Found {len(context.tagged_arns)} tagged resources")
        return None

    @abstractmethod
    def get_current_state(
        self,
        task: TaskHandle,
        context: TrickContext,
        state: StateCollector,
        options: TrickOptions,
    ) -> Optional[TaskList]:
        """List candidates and schedule one capture task per included resource."""
        pass

    @abstractmethod
    def conserve(
        self,
        task: TaskHandle,
        state: Sequence[StateType],
        options: TrickOptions,
    ) -> Optional[TaskList]:
        """Schedule the cost saving mutation for every captured record."""
        pass

    @abstractmethod
    def restore(
        self,
        task: TaskHandle,
        state: Sequence[StateType],
        options: TrickOptions,
    ) -> Optional[TaskList]:
        """Schedule the inverse mutation for every previously captured record."""
        pass

    def parse_state(self, records: Iterable[Any]) -> Tuple[List[StateType], List[Task]]:
        """Load records of this trick from a state document.

        Returns the valid records, and one failing task per record that does
        not load so the valid ones are still restored.
        """
        parsed = []
        invalid = []
        for record in records:
            try:
                parsed.append(self.state_type.model_validate(record))
            except ValidationError as e:
                invalid.append(self._invalid_record_task(record, e))
        return parsed, invalid

    @staticmethod
    def _invalid_record_task(record: Any, error: ValidationError) -> Task:
        title = '<invalid record>'
        if isinstance(record, dict):
            title = str(
                record.get('name') or record.get('id') or record.get('identifier')
                or record.get('arn') or title
            )
        problems = '; '.join(
            f"{'.'.join(str(part) for part in e['loc']) or 'record'}: {e['msg']}"
            for e in error.errors()
        )

        def run(task: TaskHandle) -> None:
            raise ServiceError(f'Invalid record in state file: {problems}')

        return Task(title=title, run=run)

    def _excluded_task(self, title: str) -> Task:
        """Visible placeholder for a resource left out by tag filters."""
        def run(task: TaskHandle) -> None:
            task.skip('Excluded by tag filters')

        return Task(title=title, run=run)

    def _record_tasks(
        self,
        task: TaskHandle,
        records: Sequence[StateType],
        title: Callable[[StateType], str],
        action: Callable[[TaskHandle, StateType], None],
        concurrency: int,
        empty_message: str,
    ) -> TaskList:
        """One task per record, or skip the parent when there is nothing to do."""
        if not records:
            task.skip(empty_message)

        return TaskList(
            [
                Task(title=title(record), run=lambda t, record=record: action(t, record))
                for record in records
            ],
            concurrency=concurrency,
        )
