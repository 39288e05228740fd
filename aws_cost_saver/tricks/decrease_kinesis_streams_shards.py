"""
Scale Kinesis streams down to a single shard and back on restore.

Kinesis only allows halving or doubling the open shard count in one
``update_shard_count`` call, so both directions go through a sequence of
steps and wait for the stream to settle after each one.
"""
import math
from typing import List, Optional, Sequence

from ..core.config import TrickOptions
from ..core.exceptions import ServiceError
from ..services.tasks import Task, TaskHandle, TaskList
from .base import RecordedInt, ResourceState, StateCollector, Trick, TrickContext


STREAM_WAITER_CONFIG = {'Delay': 15, 'MaxAttempts': 30}


class KinesisStreamState(ResourceState):
    name: str
    state: str
    shards: RecordedInt = None


def halving_steps(shards: int) -> List[int]:
    """Targets that bring ``shards`` down to 1, halving (rounded up) each time.

    >>> halving_steps(13)
    [7, 4, 2, 1]
    """
    steps = []
    target = shards
    while target > 1:
        target = math.ceil(target / 2)
        steps.append(target)
    return steps


def doubling_steps(current: int, original: int) -> List[int]:
    """Targets that bring ``current`` back up to ``original``, at most doubling each time.

    >>> doubling_steps(1, 13)
    [2, 4, 8, 13]
    """
    steps = []
    target = max(current, 1)
    while target < original:
        target = min(target * 2, original)
        steps.append(target)
    return steps


class DecreaseKinesisStreamsShardsTrick(Trick[KinesisStreamState]):
    """Reduces open shards of active streams to 1."""

    machine_name = 'decrease-kinesis-streams-shards'
    conserve_title = 'Decrease Kinesis Streams Shards'
    restore_title = 'Restore Kinesis Streams Shards'
    state_type = KinesisStreamState
    tagging_resource_types = ('kinesis:stream',)

    @property
    def client(self):
        return self.client_factory.client('kinesis')

    def get_current_state(
        self,
        task: TaskHandle,
        context: TrickContext,
        state: StateCollector,
        options: TrickOptions,
    ) -> Optional[TaskList]:
        stream_names = self._list_stream_names(task)

        if not stream_names:
            task.skip('No Kinesis streams found')

        def capture(subtask: TaskHandle, stream_name: str) -> None:
            subtask.output('Fetching stream summary...')
            summary = self._describe_summary(stream_name)

            if not summary.get('StreamStatus'):
                raise ServiceError(f'Unexpected error: StreamStatus is missing for Kinesis stream {stream_name}')

            state.append(KinesisStreamState(
                name=stream_name,
                state=summary['StreamStatus'],
                shards=summary.get('OpenShardCount'),
            ))

        task_list = TaskList(concurrency=10)
        for stream_name in stream_names:
            if not context.is_included(stream_name):
                task_list.add(self._excluded_task(stream_name))
                continue
            task_list.add(Task(title=stream_name, run=lambda t, name=stream_name: capture(t, name)))

        return task_list

    def conserve(
        self,
        task: TaskHandle,
        state: Sequence[KinesisStreamState],
        options: TrickOptions,
    ) -> Optional[TaskList]:
        return self._record_tasks(
            task,
            state,
            title=lambda stream: stream.name,
            action=lambda t, stream: self.conserve_stream(t, stream, options),
            concurrency=5,
            empty_message='No Kinesis streams found',
        )

    def restore(
        self,
        task: TaskHandle,
        state: Sequence[KinesisStreamState],
        options: TrickOptions,
    ) -> Optional[TaskList]:
        return self._record_tasks(
            task,
            state,
            title=lambda stream: stream.name,
            action=lambda t, stream: self.restore_stream(t, stream, options),
            concurrency=5,
            empty_message='No Kinesis streams were conserved',
        )

    def conserve_stream(
        self,
        task: TaskHandle,
        stream_state: KinesisStreamState,
        options: TrickOptions,
    ) -> None:
        if options.dry_run:
            task.skip('Skipped, would decrease shards to 1')

        if stream_state.state != 'ACTIVE':
            task.skip(f'State is not ACTIVE, it is {stream_state.state} instead')

        if stream_state.shards is None or stream_state.shards <= 1:
            task.skip('Shards are already at minimum of 1')

        for step, target in enumerate(halving_steps(stream_state.shards), start=1):
            task.output(f'Step #{step}: decreasing shards to {target}, final target: 1...')
            self._update_shard_count(stream_state.name, target)

        task.output('Decreased number of shards to 1')

    def restore_stream(
        self,
        task: TaskHandle,
        stream_state: KinesisStreamState,
        options: TrickOptions,
    ) -> None:
        if stream_state.shards is None or stream_state.shards <= 1:
            task.skip('Shards were already at minimum of 1')

        current_shards = self._describe_summary(stream_state.name).get('OpenShardCount') or 0
        if current_shards >= stream_state.shards:
            task.skip(
                f'Stream shards are already configured to {current_shards}. '
                f'Previous number of shards: {stream_state.shards}'
            )

        if options.dry_run:
            task.skip(f'Skipped, would increase shards to {stream_state.shards}')

        for step, target in enumerate(doubling_steps(current_shards, stream_state.shards), start=1):
            task.output(f'Step #{step}: increasing shards to {target}, final target: {stream_state.shards}...')
            self._update_shard_count(stream_state.name, target)

        task.output(f'Increased number of shards to {stream_state.shards}')

    def _update_shard_count(self, stream_name: str, target: int) -> None:
        self.client.update_shard_count(
            StreamName=stream_name,
            TargetShardCount=target,
            ScalingType='UNIFORM_SCALING',
        )
        self.client.get_waiter('stream_exists').wait(
            StreamName=stream_name,
            WaiterConfig=STREAM_WAITER_CONFIG,
        )

    def _list_stream_names(self, task: TaskHandle) -> List[str]:
        stream_names = []
        paginator = self.client.get_paginator('list_streams')

        for page_number, page in enumerate(paginator.paginate(), start=1):
            task.output(f'Fetching page {page_number}...')
            stream_names.extend(page.get('StreamNames', []))

        return stream_names

    def _describe_summary(self, stream_name: str) -> dict:
        response = self.client.describe_stream_summary(StreamName=stream_name)
        return response.get('StreamDescriptionSummary', {})
