"""
Snapshot and delete ElastiCache Redis replication groups, recreate them from the snapshot on restore.

Everything ``create_replication_group`` needs is derived during capture from
the group and one of its member clusters, so a deleted group can be rebuilt
with the same topology, networking, engine and tags.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from botocore.exceptions import ClientError

from ..core.config import TrickOptions
from ..core.exceptions import ServiceError
from ..services.tasks import Task, TaskHandle, TaskList
from .base import ResourceState, StateCollector, Trick, TrickContext


GROUP_WAITER_CONFIG = {'Delay': 30, 'MaxAttempts': 100}


class ElasticacheReplicationGroupState(ResourceState):
    id: str
    status: str
    snapshot_name: Optional[str] = None
    create_params: Optional[Dict[str, Any]] = None


def generate_snapshot_name(replication_group_id: str, now: Optional[datetime] = None) -> str:
    now = now or datetime.now()
    return f"{replication_group_id}-{now.strftime('%Y%m%d%H%M')}"


def node_group_configs(replication_group: dict) -> List[dict]:
    configs = []
    for node_group in replication_group.get('NodeGroups', []):
        config = {
            'NodeGroupId': node_group.get('NodeGroupId'),
            # Members include the primary node
            'ReplicaCount': max(len(node_group.get('NodeGroupMembers', [])) - 1, 0),
            'Slots': node_group.get('Slots'),
        }
        configs.append({k: v for k, v in config.items() if v is not None})
    return configs


def build_create_params(
    snapshot_name: str,
    replication_group: dict,
    sample_cache_cluster: dict,
    tags: List[dict],
) -> Dict[str, Any]:
    """``create_replication_group`` arguments that rebuild the group from its snapshot.

    A group with more than one node group is cluster-mode enabled and is
    recreated with ``NumNodeGroups`` and ``NodeGroupConfiguration``,
    otherwise with ``NumCacheClusters`` and the preferred availability zone.
    """
    node_groups = node_group_configs(replication_group)
    multi_shard = len(node_groups) > 1

    cache_nodes = sample_cache_cluster.get('CacheNodes') or [{}]
    group_node_groups = replication_group.get('NodeGroups') or [{}]
    port = (
        cache_nodes[0].get('Endpoint', {}).get('Port')
        or group_node_groups[0].get('PrimaryEndpoint', {}).get('Port')
    )
    availability_zone = sample_cache_cluster.get('PreferredAvailabilityZone')

    params = {
        'ReplicationGroupId': replication_group['ReplicationGroupId'],
        'ReplicationGroupDescription': (
            replication_group.get('Description')
            or f'Restored by aws-cost-saver from snapshot: {snapshot_name}'
        ),
        'SnapshotName': snapshot_name,

        # Replication group
        'AtRestEncryptionEnabled': replication_group.get('AtRestEncryptionEnabled'),
        'TransitEncryptionEnabled': replication_group.get('TransitEncryptionEnabled'),
        'NumCacheClusters': None if multi_shard else len(replication_group.get('MemberClusters', [])) or 1,
        'NumNodeGroups': len(node_groups) if multi_shard else None,
        'NodeGroupConfiguration': node_groups if multi_shard else None,
        'MultiAZEnabled': replication_group.get('MultiAZ') == 'enabled',
        'AutomaticFailoverEnabled': replication_group.get('AutomaticFailover') in ('enabled', 'enabling'),
        'GlobalReplicationGroupId': replication_group.get('GlobalReplicationGroupInfo', {}).get('GlobalReplicationGroupId'),
        'KmsKeyId': replication_group.get('KmsKeyId'),
        'Port': port,
        'Tags': tags or None,

        # Member clusters
        'PreferredCacheClusterAZs': None if multi_shard or not availability_zone else [availability_zone],
        'SecurityGroupIds': [
            g['SecurityGroupId'] for g in sample_cache_cluster.get('SecurityGroups', []) if g.get('SecurityGroupId')
        ] or None,
        'CacheSecurityGroupNames': [
            g['CacheSecurityGroupName'] for g in sample_cache_cluster.get('CacheSecurityGroups', [])
            if g.get('CacheSecurityGroupName')
        ] or None,
        'AutoMinorVersionUpgrade': sample_cache_cluster.get('AutoMinorVersionUpgrade'),
        'CacheNodeType': sample_cache_cluster.get('CacheNodeType'),
        'SnapshotRetentionLimit': sample_cache_cluster.get('SnapshotRetentionLimit'),
        'Engine': sample_cache_cluster.get('Engine'),
        'EngineVersion': sample_cache_cluster.get('EngineVersion'),
        'CacheParameterGroupName': sample_cache_cluster.get('CacheParameterGroup', {}).get('CacheParameterGroupName'),
        'CacheSubnetGroupName': sample_cache_cluster.get('CacheSubnetGroupName'),
        'NotificationTopicArn': sample_cache_cluster.get('NotificationConfiguration', {}).get('TopicArn'),
        'SnapshotWindow': sample_cache_cluster.get('SnapshotWindow'),
        'PreferredMaintenanceWindow': sample_cache_cluster.get('PreferredMaintenanceWindow'),
    }

    return {k: v for k, v in params.items() if v is not None}


class SnapshotRemoveElasticacheRedisTrick(Trick[ElasticacheReplicationGroupState]):
    """Deletes Redis replication groups with a final snapshot."""

    machine_name = 'snapshot-remove-elasticache-redis'
    conserve_title = 'Snapshot and Remove ElastiCache Redis Clusters'
    restore_title = 'Recreate ElastiCache Redis Clusters from Snapshot'
    state_type = ElasticacheReplicationGroupState
    tagging_resource_types = ('elasticache:replicationgroup',)

    @property
    def client(self):
        return self.client_factory.client('elasticache')

    def get_current_state(
        self,
        task: TaskHandle,
        context: TrickContext,
        state: StateCollector,
        options: TrickOptions,
    ) -> Optional[TaskList]:
        replication_groups = self._list_replication_groups(task)

        if not replication_groups:
            task.skip('No ElastiCache Redis clusters found')

        task_list = TaskList(concurrency=10)
        for replication_group in replication_groups:
            title = replication_group.get('ReplicationGroupId') or '<no-id>'
            if not context.is_included(replication_group.get('ARN') or title):
                task_list.add(self._excluded_task(title))
                continue
            task_list.add(Task(
                title=title,
                run=lambda t, group=replication_group: state.append(self.capture_replication_group(t, group)),
            ))

        return task_list

    def capture_replication_group(self, task: TaskHandle, replication_group: dict) -> ElasticacheReplicationGroupState:
        """Build the record of one group.

        Raises:
            ServiceError: If the group cannot be rebuilt faithfully later
        """
        if not replication_group.get('ReplicationGroupId'):
            raise ServiceError('Unexpected error: ReplicationGroupId is missing for ElastiCache replication group')
        if not replication_group.get('ARN'):
            raise ServiceError('Unexpected error: ARN is missing for ElastiCache replication group')
        if not replication_group.get('Status'):
            raise ServiceError('Unexpected error: Status is missing for ElastiCache replication group')
        if not replication_group.get('MemberClusters'):
            raise ServiceError('Unexpected error: No member clusters for ElastiCache replication group')
        if replication_group.get('AuthTokenEnabled'):
            raise ServiceError(
                'Cannot conserve an AuthToken protected Redis Cluster because on restore token will change'
            )

        task.output('Fetching a sample cache cluster...')
        sample_cache_cluster = self._describe_cache_cluster(replication_group['MemberClusters'][0])
        if not sample_cache_cluster:
            raise ServiceError('Could not find sample cache cluster')

        task.output('Preparing re-create params...')
        snapshot_name = generate_snapshot_name(replication_group['ReplicationGroupId'])
        tags = self._list_tags(sample_cache_cluster.get('ARN'))

        return ElasticacheReplicationGroupState(
            id=replication_group['ReplicationGroupId'],
            status=replication_group['Status'],
            snapshot_name=snapshot_name,
            create_params=build_create_params(snapshot_name, replication_group, sample_cache_cluster, tags),
        )

    def conserve(
        self,
        task: TaskHandle,
        state: Sequence[ElasticacheReplicationGroupState],
        options: TrickOptions,
    ) -> Optional[TaskList]:
        return self._record_tasks(
            task,
            state,
            title=lambda group: group.id,
            action=lambda t, group: self.conserve_replication_group(t, group, options),
            concurrency=10,
            empty_message='No ElastiCache Redis clusters found',
        )

    def restore(
        self,
        task: TaskHandle,
        state: Sequence[ElasticacheReplicationGroupState],
        options: TrickOptions,
    ) -> Optional[TaskList]:
        return self._record_tasks(
            task,
            state,
            title=lambda group: group.id,
            action=lambda t, group: self.restore_replication_group(t, group, options),
            concurrency=10,
            empty_message='No ElastiCache Redis clusters were conserved',
        )

    def conserve_replication_group(
        self,
        task: TaskHandle,
        group_state: ElasticacheReplicationGroupState,
        options: TrickOptions,
    ) -> None:
        if group_state.status != 'available':
            task.skip(f'Skipped, current state is not "available" it is "{group_state.status}" instead')

        if options.dry_run:
            task.skip('Skipped, would take a snapshot and delete')

        task.output('Taking a snapshot and deleting replication group...')
        self.client.delete_replication_group(
            ReplicationGroupId=group_state.id,
            FinalSnapshotIdentifier=group_state.snapshot_name,
        )

        task.output('Waiting for snapshot to be created, and replication group to be deleted...')
        self.client.get_waiter('replication_group_deleted').wait(
            ReplicationGroupId=group_state.id,
            WaiterConfig=GROUP_WAITER_CONFIG,
        )

        task.output(f'Snapshot {group_state.snapshot_name} taken and replication group deleted successfully')

    def restore_replication_group(
        self,
        task: TaskHandle,
        group_state: ElasticacheReplicationGroupState,
        options: TrickOptions,
    ) -> None:
        if not group_state.snapshot_name:
            raise ServiceError('Unexpected error: snapshotName is missing in state')
        if not group_state.create_params:
            raise ServiceError('Unexpected error: createParams is missing in state')

        if group_state.status != 'available':
            task.skip(f'Skipped, previous state was not "available" it was "{group_state.status}" instead')

        if self.replication_group_exists(group_state.id):
            task.skip('ElastiCache redis cluster already exists')

        if options.dry_run:
            task.skip(
                f'Skipped, would re-create the cluster and remove the snapshot {group_state.snapshot_name}'
            )

        task.output(f'Creating replication group (snapshot: {group_state.snapshot_name})...')
        self.client.create_replication_group(**group_state.create_params)

        task.output(f'Waiting for replication group to be available (snapshot: {group_state.snapshot_name})...')
        self.client.get_waiter('replication_group_available').wait(
            ReplicationGroupId=group_state.id,
            WaiterConfig=GROUP_WAITER_CONFIG,
        )

        task.output(f'Deleting snapshot {group_state.snapshot_name}...')
        self.client.delete_snapshot(SnapshotName=group_state.snapshot_name)

        task.output('Restored successfully')

    def replication_group_exists(self, replication_group_id: str) -> bool:
        try:
            response = self.client.describe_replication_groups(ReplicationGroupId=replication_group_id)
        except ClientError as e:
            if e.response.get('Error', {}).get('Code') == 'ReplicationGroupNotFoundFault':
                return False
            raise

        return bool(response.get('ReplicationGroups'))

    def _list_replication_groups(self, task: TaskHandle) -> List[dict]:
        replication_groups = []
        paginator = self.client.get_paginator('describe_replication_groups')

        for page_number, page in enumerate(paginator.paginate(), start=1):
            task.output(f'Fetching page {page_number}...')
            replication_groups.extend(page.get('ReplicationGroups', []))

        return replication_groups

    def _describe_cache_cluster(self, cache_cluster_id: str) -> Optional[dict]:
        response = self.client.describe_cache_clusters(
            CacheClusterId=cache_cluster_id,
            ShowCacheNodeInfo=True,
        )
        cache_clusters = response.get('CacheClusters', [])
        return cache_clusters[-1] if cache_clusters else None

    def _list_tags(self, arn: Optional[str]) -> List[dict]:
        if not arn:
            return []
        return self.client.list_tags_for_resource(ResourceName=arn).get('TagList', [])
