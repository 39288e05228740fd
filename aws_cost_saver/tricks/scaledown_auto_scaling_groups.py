"""
Scale Auto Scaling groups down to zero and back to their original sizes on restore.
"""
from typing import List, Optional, Sequence

from ..core.config import TrickOptions
from ..core.exceptions import ServiceError
from ..services.tasks import Task, TaskHandle, TaskList
from .base import RecordedInt, ResourceState, StateCollector, Trick, TrickContext
from .tags import native_filters


class AutoScalingGroupState(ResourceState):
    name: str
    desired: RecordedInt = None
    min: RecordedInt = None
    max: RecordedInt = None


def list_auto_scaling_groups(client, task: TaskHandle, options: TrickOptions) -> List[dict]:
    """Every Auto Scaling group, tag filters sent with the request."""
    groups = []
    kwargs = {}
    if options.has_tag_filters:
        kwargs['Filters'] = native_filters(options.tags)

    paginator = client.get_paginator('describe_auto_scaling_groups')
    for page_number, page in enumerate(paginator.paginate(**kwargs), start=1):
        task.output(f'Fetching page {page_number}...')
        groups.extend(page.get('AutoScalingGroups', []))

    return groups


def describe_auto_scaling_group(client, name: str) -> Optional[dict]:
    response = client.describe_auto_scaling_groups(AutoScalingGroupNames=[name])
    for group in response.get('AutoScalingGroups', []):
        return group
    return None


class ScaledownAutoScalingGroupsTrick(Trick[AutoScalingGroupState]):
    """Sets desired, min and max capacity of every group to 0."""

    machine_name = 'scaledown-auto-scaling-groups'
    conserve_title = 'Scale-down Auto Scaling Groups'
    restore_title = 'Restore Auto Scaling Groups'
    state_type = AutoScalingGroupState

    @property
    def client(self):
        return self.client_factory.client('autoscaling')

    def get_current_state(
        self,
        task: TaskHandle,
        context: TrickContext,
        state: StateCollector,
        options: TrickOptions,
    ) -> Optional[TaskList]:
        groups = list_auto_scaling_groups(self.client, task, options)

        if not groups:
            task.skip('No ASG found')

        def capture(subtask: TaskHandle, group: dict) -> None:
            if not group.get('AutoScalingGroupName'):
                raise ServiceError('Unexpected error: AutoScalingGroupName is missing for ASG')

            state.append(AutoScalingGroupState(
                name=group['AutoScalingGroupName'],
                desired=group.get('DesiredCapacity'),
                min=group.get('MinSize'),
                max=group.get('MaxSize'),
            ))

        return TaskList(
            [
                Task(
                    title=group.get('AutoScalingGroupName') or '<no-name>',
                    run=lambda t, group=group: capture(t, group),
                )
                for group in groups
            ],
            concurrency=10,
        )

    def conserve(
        self,
        task: TaskHandle,
        state: Sequence[AutoScalingGroupState],
        options: TrickOptions,
    ) -> Optional[TaskList]:
        return self._record_tasks(
            task,
            state,
            title=lambda group: group.name,
            action=lambda t, group: self.conserve_group(t, group, options),
            concurrency=10,
            empty_message='No auto scaling groups found',
        )

    def restore(
        self,
        task: TaskHandle,
        state: Sequence[AutoScalingGroupState],
        options: TrickOptions,
    ) -> Optional[TaskList]:
        return self._record_tasks(
            task,
            state,
            title=lambda group: group.name,
            action=lambda t, group: self.restore_group(t, group, options),
            concurrency=10,
            empty_message='No auto scaling groups were conserved',
        )

    def conserve_group(
        self,
        task: TaskHandle,
        group_state: AutoScalingGroupState,
        options: TrickOptions,
    ) -> None:
        if group_state.desired == 0 and group_state.min == 0 and group_state.max == 0:
            task.skip('ASG is already scaled down to 0')

        if options.dry_run:
            task.skip('Skipped, would scale down the ASG desired = 0 min = 0 max = 0')

        task.output('Scaling down ASG...')
        self.client.update_auto_scaling_group(
            AutoScalingGroupName=group_state.name,
            DesiredCapacity=0,
            MinSize=0,
            MaxSize=0,
        )

        task.output('Scaled down')

    def restore_group(
        self,
        task: TaskHandle,
        group_state: AutoScalingGroupState,
        options: TrickOptions,
    ) -> None:
        if None in (group_state.desired, group_state.min, group_state.max):
            task.skip(
                f'Skipped, sizes desired = {group_state.desired} min = {group_state.min} '
                f'max = {group_state.max} were not recorded'
            )

        live = describe_auto_scaling_group(self.client, group_state.name)
        if live is None:
            raise ServiceError(f'ASG {group_state.name} no longer exists')

        if (
            live.get('DesiredCapacity') == group_state.desired
            and live.get('MinSize') == group_state.min
            and live.get('MaxSize') == group_state.max
        ):
            task.skip('ASG sizes are already restored')

        if options.dry_run:
            task.skip(
                f'Skipped, would restore the ASG to desired = {group_state.desired} '
                f'min = {group_state.min} max = {group_state.max}'
            )

        task.output('Restoring ASG...')
        self.client.update_auto_scaling_group(
            AutoScalingGroupName=group_state.name,
            DesiredCapacity=group_state.desired,
            MinSize=group_state.min,
            MaxSize=group_state.max,
        )

        task.output('Restored')
