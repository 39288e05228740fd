"""
Stop available RDS database instances and start them again on restore.
"""
from typing import List, Optional, Sequence

from ..core.config import TrickOptions
from ..core.exceptions import ServiceError
from ..services.tasks import Task, TaskHandle, TaskList
from .base import ResourceState, StateCollector, Trick, TrickContext


class RdsDatabaseState(ResourceState):
    identifier: str
    status: str


class StopRdsDatabaseInstancesTrick(Trick[RdsDatabaseState]):
    """Stops standalone RDS instances (Aurora members are stopped with their cluster)."""

    machine_name = 'stop-rds-database-instances'
    conserve_title = 'Stop RDS Database Instances'
    restore_title = 'Start RDS Database Instances'
    state_type = RdsDatabaseState
    tagging_resource_types = ('rds:db',)

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
        databases = self._list_databases(task)

        if not databases:
            task.skip('No RDS databases found')

        def capture(subtask: TaskHandle, database: dict) -> None:
            if not database.get('DBInstanceIdentifier'):
                raise ServiceError('Unexpected error: DBInstanceIdentifier is missing for RDS database')
            if not database.get('DBInstanceStatus'):
                raise ServiceError('Unexpected error: DBInstanceStatus is missing for RDS database')

            state.append(RdsDatabaseState(
                identifier=database['DBInstanceIdentifier'],
                status=database['DBInstanceStatus'],
            ))

        task_list = TaskList(concurrency=10)
        for database in databases:
            title = database.get('DBInstanceIdentifier') or '<no-identifier>'
            if not context.is_included(database.get('DBInstanceArn') or title):
                task_list.add(self._excluded_task(title))
                continue
            task_list.add(Task(title=title, run=lambda t, database=database: capture(t, database)))

        return task_list

    def conserve(
        self,
        task: TaskHandle,
        state: Sequence[RdsDatabaseState],
        options: TrickOptions,
    ) -> Optional[TaskList]:
        return self._record_tasks(
            task,
            state,
            title=lambda database: database.identifier,
            action=lambda t, database: self.conserve_database(t, database, options),
            concurrency=10,
            empty_message='No RDS databases found',
        )

    def restore(
        self,
        task: TaskHandle,
        state: Sequence[RdsDatabaseState],
        options: TrickOptions,
    ) -> Optional[TaskList]:
        return self._record_tasks(
            task,
            state,
            title=lambda database: database.identifier,
            action=lambda t, database: self.restore_database(t, database, options),
            concurrency=10,
            empty_message='No RDS databases were conserved',
        )

    def conserve_database(
        self,
        task: TaskHandle,
        database_state: RdsDatabaseState,
        options: TrickOptions,
    ) -> None:
        if database_state.status != 'available':
            task.skip(f'Skipped, current state is not "available" it is "{database_state.status}" instead')

        if options.dry_run:
            task.skip('Skipped, would stop the RDS database')

        task.output('Stopping RDS database...')
        self.client.stop_db_instance(DBInstanceIdentifier=database_state.identifier)

        task.output('Stopped successfully')

    def restore_database(
        self,
        task: TaskHandle,
        database_state: RdsDatabaseState,
        options: TrickOptions,
    ) -> None:
        if database_state.status != 'available':
            task.skip(f'Skipped, previous state was not "available" it was "{database_state.status}" instead')

        live_status = self._describe_status(database_state.identifier)
        if live_status == 'available':
            task.skip('Skipped, database is already available')

        if options.dry_run:
            task.skip('Skipped, would start the RDS database')

        task.output('Starting RDS database...')
        self.client.start_db_instance(DBInstanceIdentifier=database_state.identifier)

        task.output('Waiting for database to be available...')
        self.client.get_waiter('db_instance_available').wait(
            DBInstanceIdentifier=database_state.identifier,
            WaiterConfig={'Delay': 30, 'MaxAttempts': 60},
        )

        task.output('Started successfully')

    def _list_databases(self, task: TaskHandle) -> List[dict]:
        databases = []
        paginator = self.client.get_paginator('describe_db_instances')

        for page_number, page in enumerate(paginator.paginate(), start=1):
            task.output(f'Fetching page {page_number}...')
            for database in page.get('DBInstances', []):
                # Aurora instances are handled through their cluster
                if database.get('DBClusterIdentifier'):
                    continue
                databases.append(database)

        return databases

    def _describe_status(self, identifier: str) -> Optional[str]:
        response = self.client.describe_db_instances(DBInstanceIdentifier=identifier)
        for database in response.get('DBInstances', []):
            return database.get('DBInstanceStatus')
        return None
