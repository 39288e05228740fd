"""
Lower provisioned DynamoDB read/write capacity to the minimum and put it back on restore.
"""
from typing import List, Optional, Sequence, Tuple

from ..core.config import TrickOptions
from ..services.tasks import Task, TaskHandle, TaskList
from .base import RecordedInt, ResourceState, StateCollector, Trick, TrickContext


class DynamoDBTableState(ResourceState):
    name: str
    provisioned_throughput: bool = False
    rcu: RecordedInt = None
    wcu: RecordedInt = None


class DecreaseDynamoDBProvisionedRcuWcuTrick(Trick[DynamoDBTableState]):
    """Sets RCU and WCU of provisioned tables to 1."""

    machine_name = 'decrease-dynamodb-provisioned-rcu-wcu'
    conserve_title = 'Decrease DynamoDB Provisioned RCU and WCU'
    restore_title = 'Restore DynamoDB Provisioned RCU and WCU'
    state_type = DynamoDBTableState
    tagging_resource_types = ('dynamodb:table',)

    @property
    def client(self):
        return self.client_factory.client('dynamodb')

    def get_current_state(
        self,
        task: TaskHandle,
        context: TrickContext,
        state: StateCollector,
        options: TrickOptions,
    ) -> Optional[TaskList]:
        table_names = self._list_table_names(task)

        if not table_names:
            task.skip('No DynamoDB tables found')

        def capture(subtask: TaskHandle, table_name: str) -> None:
            subtask.output('Fetching table information...')
            table = self.client.describe_table(TableName=table_name).get('Table', {})
            state.append(self.table_state(table_name, table))

        task_list = TaskList(concurrency=10)
        for table_name in table_names:
            if not context.is_included(table_name):
                task_list.add(self._excluded_task(table_name))
                continue
            task_list.add(Task(title=table_name, run=lambda t, name=table_name: capture(t, name)))

        return task_list

    def conserve(
        self,
        task: TaskHandle,
        state: Sequence[DynamoDBTableState],
        options: TrickOptions,
    ) -> Optional[TaskList]:
        return self._record_tasks(
            task,
            state,
            title=lambda table: table.name,
            action=lambda t, table: self.conserve_table(t, table, options),
            concurrency=10,
            empty_message='No DynamoDB tables found',
        )

    def restore(
        self,
        task: TaskHandle,
        state: Sequence[DynamoDBTableState],
        options: TrickOptions,
    ) -> Optional[TaskList]:
        return self._record_tasks(
            task,
            state,
            title=lambda table: table.name,
            action=lambda t, table: self.restore_table(t, table, options),
            concurrency=10,
            empty_message='No DynamoDB tables were conserved',
        )

    def conserve_table(
        self,
        task: TaskHandle,
        table_state: DynamoDBTableState,
        options: TrickOptions,
    ) -> None:
        if not table_state.provisioned_throughput:
            task.skip('Provisioned throughput is not configured')

        if (table_state.rcu or 0) < 2 and (table_state.wcu or 0) < 2:
            task.skip('Provisioned RCU/WCU is already at minimum of 1')

        if options.dry_run:
            task.skip('Skipped, would configure RCU = 1 WCU = 1')

        task.output('Configuring RCU = 1 WCU = 1 ...')
        self.client.update_table(
            TableName=table_state.name,
            ProvisionedThroughput={'ReadCapacityUnits': 1, 'WriteCapacityUnits': 1},
        )

        task.output('Configured RCU = 1 WCU = 1')

    def restore_table(
        self,
        task: TaskHandle,
        table_state: DynamoDBTableState,
        options: TrickOptions,
    ) -> None:
        if not table_state.provisioned_throughput:
            task.skip('Provisioned throughput was not configured')

        if not table_state.rcu or not table_state.wcu:
            task.skip(
                f'Skipped, RCU = {table_state.rcu} WCU = {table_state.wcu} are not configured correctly'
            )

        live_rcu, live_wcu = self._describe_throughput(table_state.name)
        if live_rcu == table_state.rcu and live_wcu == table_state.wcu:
            task.skip(f'Skipped, RCU = {live_rcu} WCU = {live_wcu} are already configured')

        if options.dry_run:
            task.skip(f'Skipped, would configure RCU = {table_state.rcu} WCU = {table_state.wcu}')

        task.output(f'Configuring RCU = {table_state.rcu} WCU = {table_state.wcu} ...')
        self.client.update_table(
            TableName=table_state.name,
            ProvisionedThroughput={
                'ReadCapacityUnits': table_state.rcu,
                'WriteCapacityUnits': table_state.wcu,
            },
        )

        task.output(f'Configured RCU = {table_state.rcu} WCU = {table_state.wcu}')

    @staticmethod
    def table_state(table_name: str, table: dict) -> DynamoDBTableState:
        """Record for a ``describe_table`` response.

        On-demand tables report a zero throughput block, they count as not
        provisioned.
        """
        billing_mode = table.get('BillingModeSummary', {}).get('BillingMode')
        throughput = table.get('ProvisionedThroughput')

        if not throughput or billing_mode == 'PAY_PER_REQUEST':
            return DynamoDBTableState(name=table_name, provisioned_throughput=False)

        return DynamoDBTableState(
            name=table_name,
            provisioned_throughput=True,
            rcu=throughput.get('ReadCapacityUnits'),
            wcu=throughput.get('WriteCapacityUnits'),
        )

    def _list_table_names(self, task: TaskHandle) -> List[str]:
        table_names = []
        paginator = self.client.get_paginator('list_tables')

        for page_number, page in enumerate(paginator.paginate(), start=1):
            task.output(f'Fetching page {page_number}...')
            table_names.extend(page.get('TableNames', []))

        return table_names

    def _describe_throughput(self, table_name: str) -> Tuple[Optional[int], Optional[int]]:
        table = self.client.describe_table(TableName=table_name).get('Table', {})
        throughput = table.get('ProvisionedThroughput', {})
        return throughput.get('ReadCapacityUnits'), throughput.get('WriteCapacityUnits')
