"""
Suspend Auto Scaling group processes and resume them on restore.

Processes an operator had already suspended are recorded and left alone on
restore, only what this tool suspended gets resumed.
"""
from typing import List, Optional, Sequence

from ..core.config import TrickOptions
from ..core.exceptions import ServiceError
from ..services.tasks import Task, TaskHandle, TaskList
from .base import ResourceState, StateCollector, Trick, TrickContext
from .scaledown_auto_scaling_groups import describe_auto_scaling_group, list_auto_scaling_groups


SCALING_PROCESSES = (
    'Launch',
    'Terminate',
    'AddToLoadBalancer',
    'AlarmNotification',
    'AZRebalance',
    'HealthCheck',
    'InstanceRefresh',
    'ReplaceUnhealthy',
    'ScheduledActions',
)


class SuspendedGroupState(ResourceState):
    name: str
    # Suspended before conserve ran
    suspended_processes: List[str] = []

    def processes_to_suspend(self) -> List[str]:
        return [p for p in SCALING_PROCESSES if p not in self.suspended_processes]


def suspended_process_names(group: dict) -> List[str]:
    return sorted(
        p['ProcessName'] for p in group.get('SuspendedProcesses', []) if p.get('ProcessName')
    )


class SuspendAutoScalingGroupsTrick(Trick[SuspendedGroupState]):
    """Suspends every scaling process of every group."""

    machine_name = 'suspend-auto-scaling-groups'
    conserve_title = 'Suspend Auto Scaling Groups'
    restore_title = 'Resume Auto Scaling Groups'
    state_type = SuspendedGroupState

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

            state.append(SuspendedGroupState(
                name=group['AutoScalingGroupName'],
                suspended_processes=suspended_process_names(group),
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
        state: Sequence[SuspendedGroupState],
        options: TrickOptions,
    ) -> Optional[TaskList]:
        return self._record_tasks(
            task,
            state,
            title=lambda group: group.name,
            action=lambda t, group: self.conserve_processes(t, group, options),
            concurrency=10,
            empty_message='No auto scaling groups found',
        )

    def restore(
        self,
        task: TaskHandle,
        state: Sequence[SuspendedGroupState],
        options: TrickOptions,
    ) -> Optional[TaskList]:
        return self._record_tasks(
            task,
            state,
            title=lambda group: group.name,
            action=lambda t, group: self.restore_processes(t, group, options),
            concurrency=10,
            empty_message='No auto scaling groups were conserved',
        )

    def conserve_processes(
        self,
        task: TaskHandle,
        group_state: SuspendedGroupState,
        options: TrickOptions,
    ) -> None:
        processes = group_state.processes_to_suspend()
        if not processes:
            task.skip('All ASG processes are already suspended')

        if options.dry_run:
            task.skip('Skipped, would suspend ASG processes')

        task.output('Suspending ASG processes...')
        self.client.suspend_processes(
            AutoScalingGroupName=group_state.name,
            ScalingProcesses=processes,
        )

        task.output('Suspended')

    def restore_processes(
        self,
        task: TaskHandle,
        group_state: SuspendedGroupState,
        options: TrickOptions,
    ) -> None:
        live = describe_auto_scaling_group(self.client, group_state.name)
        if live is None:
            raise ServiceError(f'ASG {group_state.name} no longer exists')

        live_suspended = suspended_process_names(live)
        processes = [p for p in group_state.processes_to_suspend() if p in live_suspended]
        if not processes:
            task.skip('ASG processes are already resumed')

        if options.dry_run:
            task.skip('Skipped, would resume ASG processes')

        task.output('Resuming ASG...')
        self.client.resume_processes(
            AutoScalingGroupName=group_state.name,
            ScalingProcesses=processes,
        )

        task.output('Restored')
