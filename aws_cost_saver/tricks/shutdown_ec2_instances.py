"""
Stop running EC2 instances and start them again on restore.
"""
from typing import List, Optional, Sequence

from ..core.config import TrickOptions
from ..core.exceptions import ServiceError
from ..services.tasks import Task, TaskHandle, TaskList
from .base import ResourceState, StateCollector, Trick, TrickContext
from .tags import native_filters


class EC2InstanceState(ResourceState):
    id: str
    name: str = ''
    state: str


class ShutdownEC2InstancesTrick(Trick[EC2InstanceState]):
    """Stops EC2 instances that are running."""

    machine_name = 'shutdown-ec2-instances'
    conserve_title = 'Shutdown EC2 Instances'
    restore_title = 'Start EC2 Instances'
    state_type = EC2InstanceState

    @property
    def client(self):
        return self.client_factory.client('ec2')

    def get_current_state(
        self,
        task: TaskHandle,
        context: TrickContext,
        state: StateCollector,
        options: TrickOptions,
    ) -> Optional[TaskList]:
        instances = self._list_instances(task, options)

        if not instances:
            task.skip('No EC2 instances found')

        def capture(subtask: TaskHandle, instance: dict) -> None:
            if not instance.get('InstanceId') or not instance.get('State', {}).get('Name'):
                raise ServiceError(f"Unexpected EC2 instance: {instance}")

            state.append(EC2InstanceState(
                id=instance['InstanceId'],
                name=self.get_name_tag(instance.get('Tags')),
                state=instance['State']['Name'],
            ))

        return TaskList(
            [
                Task(
                    title=instance.get('InstanceId') or '<no-instance-id>',
                    run=lambda t, instance=instance: capture(t, instance),
                )
                for instance in instances
            ],
            concurrency=10,
        )

    def conserve(
        self,
        task: TaskHandle,
        state: Sequence[EC2InstanceState],
        options: TrickOptions,
    ) -> Optional[TaskList]:
        return self._record_tasks(
            task,
            state,
            title=lambda instance: f"{instance.id} / {instance.name}",
            action=lambda t, instance: self.conserve_instance(t, instance, options),
            concurrency=10,
            empty_message='No EC2 instances found',
        )

    def restore(
        self,
        task: TaskHandle,
        state: Sequence[EC2InstanceState],
        options: TrickOptions,
    ) -> Optional[TaskList]:
        return self._record_tasks(
            task,
            state,
            title=lambda instance: f"{instance.id} / {instance.name}",
            action=lambda t, instance: self.restore_instance(t, instance, options),
            concurrency=10,
            empty_message='No EC2 instances were conserved',
        )

    def conserve_instance(
        self,
        task: TaskHandle,
        instance_state: EC2InstanceState,
        options: TrickOptions,
    ) -> None:
        if instance_state.state != 'running':
            task.skip(f'Not in a "running" state instead in "{instance_state.state}" state')

        if options.dry_run:
            task.skip('Skipped, would stop the instance')

        task.output('Stopping EC2 instance...')
        self.client.stop_instances(InstanceIds=[instance_state.id])

        task.output('Waiting for EC2 instance to stop...')
        self.client.get_waiter('instance_stopped').wait(
            InstanceIds=[instance_state.id],
            WaiterConfig={'Delay': 10, 'MaxAttempts': 60},
        )

        task.output('Stopped')

    def restore_instance(
        self,
        task: TaskHandle,
        instance_state: EC2InstanceState,
        options: TrickOptions,
    ) -> None:
        if instance_state.state != 'running':
            task.skip(f'Was not in a "running" state instead in "{instance_state.state}" state')

        live_state = self._describe_state(instance_state.id)
        if live_state in ('running', 'pending'):
            task.skip(f'Instance is already {live_state}')

        if options.dry_run:
            task.skip('Skipped, would start the instance')

        task.output('Starting EC2 instance...')
        self.client.start_instances(InstanceIds=[instance_state.id])

        task.output('Waiting for EC2 instance to start...')
        self.client.get_waiter('instance_running').wait(
            InstanceIds=[instance_state.id],
            WaiterConfig={'Delay': 15, 'MaxAttempts': 100},
        )

        task.output('Started')

    def _list_instances(self, task: TaskHandle, options: TrickOptions) -> List[dict]:
        instances = []
        kwargs = {}
        if options.has_tag_filters:
            kwargs['Filters'] = native_filters(options.tags)

        paginator = self.client.get_paginator('describe_instances')
        for page_number, page in enumerate(paginator.paginate(**kwargs), start=1):
            task.output(f'Fetching page {page_number}...')
            for reservation in page.get('Reservations', []):
                instances.extend(reservation.get('Instances', []))

        return instances

    def _describe_state(self, instance_id: str) -> Optional[str]:
        response = self.client.describe_instances(InstanceIds=[instance_id])
        for reservation in response.get('Reservations', []):
            for instance in reservation.get('Instances', []):
                return instance.get('State', {}).get('Name')
        return None

    @staticmethod
    def get_name_tag(tags: Optional[List[dict]]) -> str:
        if not tags:
            return '<no-name>'
        return ' '.join(
            t.get('Value', '') for t in tags if str(t.get('Key', '')).lower() == 'name'
        )
