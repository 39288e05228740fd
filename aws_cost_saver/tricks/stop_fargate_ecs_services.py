"""
Scale Fargate ECS services to zero tasks, pinning their auto scaling targets at 0/0.
"""
import threading
from typing import List, Optional, Sequence

from ..core.config import TrickOptions
from ..core.exceptions import ServiceError
from ..services.tasks import Task, TaskHandle, TaskList
from .base import RecordedInt, ResourceState, StateCollector, Trick, TrickContext

# describe_services accepts at most 10 services per call
DESCRIBE_CHUNK_SIZE = 10


class ScalableTargetState(ResourceState):
    namespace: str
    resource_id: str
    scalable_dimension: str
    min: RecordedInt = None
    max: RecordedInt = None


class EcsServiceState(ResourceState):
    arn: str
    desired: RecordedInt = None
    scalable_targets: List[ScalableTargetState] = []


class EcsClusterState(ResourceState):
    arn: str
    services: List[EcsServiceState] = []


def service_resource_id(cluster_arn: str, service_arn: str) -> str:
    """Application Auto Scaling resource id of an ECS service."""
    cluster_name = cluster_arn.split('/')[-1]
    service_name = service_arn.split('/')[-1]
    return f'service/{cluster_name}/{service_name}'


def chunks(items: Sequence[str], size: int) -> List[List[str]]:
    return [list(items[i:i + size]) for i in range(0, len(items), size)]


class StopFargateEcsServicesTrick(Trick[EcsClusterState]):
    """Sets the desired count of Fargate services to 0."""

    machine_name = 'stop-fargate-ecs-services'
    conserve_title = 'Stop Fargate ECS Services'
    restore_title = 'Start Fargate ECS Services'
    state_type = EcsClusterState
    tagging_resource_types = ('ecs:service',)

    @property
    def client(self):
        return self.client_factory.client('ecs')

    @property
    def autoscaling_client(self):
        return self.client_factory.client('application-autoscaling')

    def get_current_state(
        self,
        task: TaskHandle,
        context: TrickContext,
        state: StateCollector,
        options: TrickOptions,
    ) -> Optional[TaskList]:
        cluster_arns = self._list_clusters(task)

        if not cluster_arns:
            task.skip('No ECS clusters found')

        return TaskList(
            [
                Task(
                    title=cluster_arn.split('/')[-1],
                    run=lambda t, arn=cluster_arn: self.capture_cluster(t, arn, context, state),
                )
                for cluster_arn in cluster_arns
            ],
            concurrency=3,
        )

    def capture_cluster(
        self,
        task: TaskHandle,
        cluster_arn: str,
        context: TrickContext,
        state: StateCollector,
    ) -> Optional[TaskList]:
        task.output('Fetching services...')
        services = self._describe_all_services(cluster_arn)

        cluster_state = EcsClusterState(arn=cluster_arn, services=[])
        state.append(cluster_state)

        if not services:
            task.skip('No Fargate services found')

        lock = threading.Lock()

        def capture(subtask: TaskHandle, service: dict) -> None:
            if not service.get('serviceArn'):
                raise ServiceError('Unexpected error: serviceArn is missing for ECS service')
            if service.get('desiredCount') is None:
                raise ServiceError('Unexpected error: desiredCount is missing for ECS service')

            subtask.output('Fetching scalable targets...')
            service_state = EcsServiceState(
                arn=service['serviceArn'],
                desired=service['desiredCount'],
                scalable_targets=self._describe_scalable_targets(cluster_arn, service['serviceArn']),
            )
            with lock:
                cluster_state.services.append(service_state)

        task_list = TaskList(concurrency=5)
        for service in services:
            title = service.get('serviceName') or service.get('serviceArn') or '<no-service-arn>'
            if not context.is_included(service.get('serviceArn') or title):
                task_list.add(self._excluded_task(title))
                continue
            task_list.add(Task(title=title, run=lambda t, service=service: capture(t, service)))

        return task_list

    def conserve(
        self,
        task: TaskHandle,
        state: Sequence[EcsClusterState],
        options: TrickOptions,
    ) -> Optional[TaskList]:
        task_list = TaskList(concurrency=10)

        for cluster in state:
            for service in cluster.services:
                task_list.add(Task(
                    title=service_resource_id(cluster.arn, service.arn),
                    run=lambda t, cluster=cluster, service=service: TaskList([
                        Task('Zero desired count', lambda st: self.conserve_service(st, cluster, service, options)),
                        Task('Disable auto scaling', lambda st: self.conserve_scalable_targets(st, cluster, service, options)),
                    ], concurrency=1),
                ))

        if not task_list.tasks:
            task.skip('No Fargate ECS services found')

        return task_list

    def restore(
        self,
        task: TaskHandle,
        state: Sequence[EcsClusterState],
        options: TrickOptions,
    ) -> Optional[TaskList]:
        task_list = TaskList(concurrency=10)

        for cluster in state:
            for service in cluster.services:
                task_list.add(Task(
                    title=service_resource_id(cluster.arn, service.arn),
                    run=lambda t, cluster=cluster, service=service: TaskList([
                        Task('Scalable targets', lambda st: self.restore_scalable_targets(st, cluster, service, options)),
                        Task('Desired count', lambda st: self.restore_service(st, cluster, service, options)),
                    ], concurrency=1),
                ))

        if not task_list.tasks:
            task.skip('No Fargate ECS services were conserved')

        return task_list

    def conserve_service(
        self,
        task: TaskHandle,
        cluster: EcsClusterState,
        service: EcsServiceState,
        options: TrickOptions,
    ) -> None:
        if service.desired == 0:
            task.skip('Desired count is already 0')

        if options.dry_run:
            task.skip('Skipped, would set desired count to 0')

        self.client.update_service(cluster=cluster.arn, service=service.arn, desiredCount=0)
        task.output('Set desired count to 0')

    def conserve_scalable_targets(
        self,
        task: TaskHandle,
        cluster: EcsClusterState,
        service: EcsServiceState,
        options: TrickOptions,
    ) -> None:
        if not service.scalable_targets:
            task.skip('No scalable targets defined')

        if options.dry_run:
            task.skip('Skipped, would set scalable targets to min = 0 max = 0')

        for target in service.scalable_targets:
            self.autoscaling_client.register_scalable_target(
                ServiceNamespace=target.namespace,
                ResourceId=service_resource_id(cluster.arn, service.arn),
                ScalableDimension=target.scalable_dimension,
                MinCapacity=0,
                MaxCapacity=0,
            )

        task.output('Set scalable targets to min = 0 max = 0')

    def restore_service(
        self,
        task: TaskHandle,
        cluster: EcsClusterState,
        service: EcsServiceState,
        options: TrickOptions,
    ) -> None:
        if service.desired is None:
            task.skip('Skipped, desired count was not recorded')

        live_desired = self._describe_desired_count(cluster.arn, service.arn)
        if live_desired == service.desired:
            task.skip(f'Desired count is already {live_desired}')

        if options.dry_run:
            task.skip(f'Skipped, would restore desired count to {service.desired}')

        self.client.update_service(cluster=cluster.arn, service=service.arn, desiredCount=service.desired)
        task.output(f'Restored desired count to {service.desired}')

    def restore_scalable_targets(
        self,
        task: TaskHandle,
        cluster: EcsClusterState,
        service: EcsServiceState,
        options: TrickOptions,
    ) -> None:
        if not service.scalable_targets:
            task.skip('No scalable targets defined')

        targets = [t for t in service.scalable_targets if t.min is not None and t.max is not None]
        if not targets:
            task.skip('Skipped, scalable target capacities were not recorded')

        if options.dry_run:
            task.skip('Skipped, would restore scalable targets')

        for target in targets:
            self.autoscaling_client.register_scalable_target(
                ServiceNamespace=target.namespace,
                ResourceId=service_resource_id(cluster.arn, service.arn),
                ScalableDimension=target.scalable_dimension,
                MinCapacity=target.min,
                MaxCapacity=target.max,
            )

        task.output(f'Restored {len(targets)} scalable targets')

    def _list_clusters(self, task: TaskHandle) -> List[str]:
        cluster_arns = []
        paginator = self.client.get_paginator('list_clusters')

        for page_number, page in enumerate(paginator.paginate(), start=1):
            task.output(f'Fetching page {page_number}...')
            cluster_arns.extend(page.get('clusterArns', []))

        return cluster_arns

    def _describe_all_services(self, cluster_arn: str) -> List[dict]:
        service_arns = []
        paginator = self.client.get_paginator('list_services')
        for page in paginator.paginate(cluster=cluster_arn, launchType='FARGATE'):
            service_arns.extend(page.get('serviceArns', []))

        services = []
        for chunk in chunks(service_arns, DESCRIBE_CHUNK_SIZE):
            response = self.client.describe_services(cluster=cluster_arn, services=chunk)
            services.extend(response.get('services', []))

        return services

    def _describe_scalable_targets(self, cluster_arn: str, service_arn: str) -> List[ScalableTargetState]:
        response = self.autoscaling_client.describe_scalable_targets(
            ServiceNamespace='ecs',
            ResourceIds=[service_resource_id(cluster_arn, service_arn)],
            ScalableDimension='ecs:service:DesiredCount',
        )

        return [
            ScalableTargetState(
                namespace='ecs',
                resource_id=target.get('ResourceId'),
                scalable_dimension=target.get('ScalableDimension'),
                min=target.get('MinCapacity'),
                max=target.get('MaxCapacity'),
            )
            for target in response.get('ScalableTargets', [])
        ]

    def _describe_desired_count(self, cluster_arn: str, service_arn: str) -> Optional[int]:
        response = self.client.describe_services(cluster=cluster_arn, services=[service_arn])
        for service in response.get('services', []):
            return service.get('desiredCount')
        return None
