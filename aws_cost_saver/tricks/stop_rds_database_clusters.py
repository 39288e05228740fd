"""
Stop available Aurora / RDS clusters and start them again on restore.
"""
from typing import List, Optional, Sequence

from botocore.exceptions import ClientError

from ..core.config import TrickOptions
from ..core.exceptions import ServiceError
from ..services.tasks import Task, TaskHandle, TaskList
from .base import ResourceState, StateCollector, Trick, TrickContext, wait_until


class RdsClusterState(ResourceState):
    identifier: str
    status: str


class StopRdsDatabaseClustersTrick(Trick[RdsClusterState]):
    """Stops RDS clusters, their member instances stop with them."""

    machine_name = 'stop-rds-database-clusters'
    conserve_title = 'Stop RDS Database Clusters'
    restore_title = 'Start RDS Database Clusters'
    state_type = RdsClusterState
    tagging_resource_types = ('rds:cluster',)

    @property
    def client(self):
        return self.client_factory.client('rds')

    def get_current_state(
        self,
        task: TaskHandle,
        context: TrickContext,
        state: StateCollector,
        options: TrickOptions,
    ) -> Optional[TaskList]:
        clusters = self._list_clusters(task)

        if not clusters:
            task.skip('No RDS clusters found')

        def capture(subtask: TaskHandle, cluster: dict) -> None:
            if not cluster.get('DBClusterIdentifier'):
                raise ServiceError('Unexpected error: DBClusterIdentifier is missing for RDS cluster')
            if not cluster.get('Status'):
                raise ServiceError('Unexpected error: Status is missing for RDS cluster')

            state.append(RdsClusterState(
                identifier=cluster['DBClusterIdentifier'],
                status=cluster['Status'],
            ))

        task_list = TaskList(concurrency=10)
        for cluster in clusters:
            title = cluster.get('DBClusterIdentifier') or '<no-identifier>'
            if not context.is_included(cluster.get('DBClusterArn') or title):
                task_list.add(self._excluded_task(title))
                continue
            task_list.add(Task(title=title, run=lambda t, cluster=cluster: capture(t, cluster)))

        return task_list

    def conserve(
        self,
        task: TaskHandle,
        state: Sequence[RdsClusterState],
        options: TrickOptions,
    ) -> Optional[TaskList]:
        return self._record_tasks(
            task,
            state,
            title=lambda cluster: cluster.identifier,
            action=lambda t, cluster: self.conserve_cluster(t, cluster, options),
            concurrency=10,
            empty_message='No RDS clusters found',
        )

    def restore(
        self,
        task: TaskHandle,
        state: Sequence[RdsClusterState],
        options: TrickOptions,
    ) -> Optional[TaskList]:
        return self._record_tasks(
            task,
            state,
            title=lambda cluster: cluster.identifier,
            action=lambda t, cluster: self.restore_cluster(t, cluster, options),
            concurrency=10,
            empty_message='No RDS clusters were conserved',
        )

    def conserve_cluster(
        self,
        task: TaskHandle,
        cluster_state: RdsClusterState,
        options: TrickOptions,
    ) -> None:
        if cluster_state.status != 'available':
            task.skip(f'Skipped, current state is not "available" it is "{cluster_state.status}" instead')

        if options.dry_run:
            task.skip('Skipped, would stop the RDS cluster')

        task.output('Stopping RDS cluster...')
        self.client.stop_db_cluster(DBClusterIdentifier=cluster_state.identifier)

        # RDS has no waiter for stopped clusters
        task.output('Waiting for cluster to stop...')
        wait_until(
            lambda: self._describe_status(cluster_state.identifier) == 'stopped',
            f'RDS cluster {cluster_state.identifier} to stop',
            delay=30,
            max_attempts=60,
        )

        task.output('Stopped successfully')

    def restore_cluster(
        self,
        task: TaskHandle,
        cluster_state: RdsClusterState,
        options: TrickOptions,
    ) -> None:
        if cluster_state.status != 'available':
            task.skip(f'Skipped, previous state was not "available" it was "{cluster_state.status}" instead')

        live_status = self._describe_status(cluster_state.identifier)
        if live_status == 'available':
            task.skip('Skipped, cluster is already available')

        if options.dry_run:
            task.skip('Skipped, would start the RDS cluster')

        try:
            task.output('Starting RDS cluster...')
            self.client.start_db_cluster(DBClusterIdentifier=cluster_state.identifier)
        except ClientError as e:
            if e.response.get('Error', {}).get('Code') == 'InvalidDBClusterStateFault':
                task.skip('Skipped, cluster is not in "stopped" state')
            raise

        task.output('Waiting for instances to be available...')
        self.client.get_waiter('db_instance_available').wait(
            Filters=[{'Name': 'db-cluster-id', 'Values': [cluster_state.identifier]}],
            WaiterConfig={'Delay': 30, 'MaxAttempts': 60},
        )

        task.output('Started successfully')

    def _list_clusters(self, task: TaskHandle) -> List[dict]:
        clusters = []
        paginator = self.client.get_paginator('describe_db_clusters')

        for page_number, page in enumerate(paginator.paginate(), start=1):
            task.output(f'Fetching page {page_number}...')
            clusters.extend(page.get('DBClusters', []))

        return clusters

    def _describe_status(self, identifier: str) -> Optional[str]:
        response = self.client.describe_db_clusters(DBClusterIdentifier=identifier)
        for cluster in response.get('DBClusters', []):
            return cluster.get('Status')
        return None
