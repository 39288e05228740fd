"""
Delete NAT gateways and recreate them, with their routes, on restore.

A recreated gateway gets a new id, so every route that pointed at the old
gateway is recorded during capture and replaced to target the new one.
Not enabled by default: infrastructure-as-code tools tend to recreate
gateways they no longer find.
"""
from typing import Dict, List, Optional, Sequence

from pydantic import Field

from ..core.config import TrickOptions
from ..core.exceptions import ServiceError
from ..services.tasks import Task, TaskHandle, TaskList
from .base import ResourceState, StateCollector, Trick, TrickContext
from .tags import native_filters


class NatGatewayRouteState(ResourceState):
    route_table_id: str
    destination_cidr: Optional[str] = None
    destination_ipv6_cidr: Optional[str] = Field(default=None, alias='destinationIpv6Cidr')
    destination_prefix_list_id: Optional[str] = None

    def destination(self) -> Dict[str, str]:
        """The ``replace_route`` destination selector of this route."""
        if self.destination_cidr:
            return {'DestinationCidrBlock': self.destination_cidr}
        if self.destination_ipv6_cidr:
            return {'DestinationIpv6CidrBlock': self.destination_ipv6_cidr}
        return {'DestinationPrefixListId': self.destination_prefix_list_id}

    def describe(self) -> str:
        return self.destination_cidr or self.destination_ipv6_cidr or self.destination_prefix_list_id or '?'

    def matches(self, route: dict) -> bool:
        """Whether a live route has the same destination as this one."""
        return (
            route.get('DestinationCidrBlock') == self.destination_cidr
            and route.get('DestinationIpv6CidrBlock') == self.destination_ipv6_cidr
            and route.get('DestinationPrefixListId') == self.destination_prefix_list_id
        )


class NatGatewayState(ResourceState):
    id: str
    vpc_id: str
    subnet_id: str
    state: str
    allocation_ids: List[str] = []
    routes: List[NatGatewayRouteState] = []
    tags: List[Dict[str, str]] = []


def find_routes(route_tables: Sequence[dict], nat_gateway_id: str) -> List[NatGatewayRouteState]:
    """Every route, across every table, that targets the gateway."""
    routes = []
    for route_table in route_tables:
        for route in route_table.get('Routes', []):
            if route.get('NatGatewayId') != nat_gateway_id:
                continue
            routes.append(NatGatewayRouteState(
                route_table_id=route_table['RouteTableId'],
                destination_cidr=route.get('DestinationCidrBlock'),
                destination_ipv6_cidr=route.get('DestinationIpv6CidrBlock'),
                destination_prefix_list_id=route.get('DestinationPrefixListId'),
            ))
    return routes


class RemoveNatGatewaysTrick(Trick[NatGatewayState]):
    """Deletes available NAT gateways."""

    machine_name = 'remove-nat-gateways'
    conserve_title = 'Remove NAT Gateways'
    restore_title = 'Recreate NAT Gateways'
    state_type = NatGatewayState
    default_enabled = False

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
        nat_gateways = self._list_nat_gateways(task, options)

        if not nat_gateways:
            task.skip('No NAT gateways found')

        task.output('Fetching route tables...')
        route_tables = self.get_route_tables(context)

        def capture(subtask: TaskHandle, nat_gateway: dict) -> None:
            if not all(nat_gateway.get(k) for k in ('NatGatewayId', 'VpcId', 'SubnetId', 'State')):
                raise ServiceError(f'Unexpected values on Nat Gateway: {nat_gateway}')

            subtask.output('Finding routes...')
            state.append(NatGatewayState(
                id=nat_gateway['NatGatewayId'],
                vpc_id=nat_gateway['VpcId'],
                subnet_id=nat_gateway['SubnetId'],
                state=nat_gateway['State'],
                allocation_ids=[
                    address['AllocationId']
                    for address in nat_gateway.get('NatGatewayAddresses', [])
                    if address.get('AllocationId')
                ],
                routes=find_routes(route_tables, nat_gateway['NatGatewayId']),
                tags=nat_gateway.get('Tags', []),
            ))

        return TaskList(
            [
                Task(
                    title=nat_gateway.get('NatGatewayId') or '<no-id>',
                    run=lambda t, nat_gateway=nat_gateway: capture(t, nat_gateway),
                )
                for nat_gateway in nat_gateways
            ],
            concurrency=5,
        )

    def get_route_tables(self, context: TrickContext) -> List[dict]:
        """All route tables of the region, fetched once per run."""
        def fetch() -> List[dict]:
            route_tables = []
            paginator = self.client.get_paginator('describe_route_tables')
            for page in paginator.paginate():
                route_tables.extend(page.get('RouteTables', []))
            return route_tables

        return context.memoize('route-tables', fetch)

    def conserve(
        self,
        task: TaskHandle,
        state: Sequence[NatGatewayState],
        options: TrickOptions,
    ) -> Optional[TaskList]:
        return self._record_tasks(
            task,
            state,
            title=lambda nat_gateway: f'{nat_gateway.id} / {self.get_name_tag(nat_gateway)}',
            action=lambda t, nat_gateway: self.conserve_nat_gateway(t, nat_gateway, options),
            concurrency=1,
            empty_message='No NAT gateways found',
        )

    def restore(
        self,
        task: TaskHandle,
        state: Sequence[NatGatewayState],
        options: TrickOptions,
    ) -> Optional[TaskList]:
        return self._record_tasks(
            task,
            state,
            title=lambda nat_gateway: nat_gateway.id,
            action=lambda t, nat_gateway: self.restore_nat_gateway(t, nat_gateway, options),
            concurrency=1,
            empty_message='No NAT gateways were conserved',
        )

    def conserve_nat_gateway(
        self,
        task: TaskHandle,
        nat_gateway: NatGatewayState,
        options: TrickOptions,
    ) -> None:
        if nat_gateway.state != 'available':
            task.skip(f'Skipped, state is not "available", it is "{nat_gateway.state}" instead')

        if options.dry_run:
            task.skip('Skipped, would remove NAT gateway')

        task.output('Deleting NAT gateway...')
        self.client.delete_nat_gateway(NatGatewayId=nat_gateway.id)

        task.output('NAT gateway deleted')

    def restore_nat_gateway(
        self,
        task: TaskHandle,
        nat_gateway: NatGatewayState,
        options: TrickOptions,
    ) -> None:
        allocation_id = nat_gateway.allocation_ids[0] if nat_gateway.allocation_ids else None

        if nat_gateway.state != 'available':
            task.skip(f'Skipped, state was not "available", it was "{nat_gateway.state}" instead')

        task.output('Looking for a recreated NAT gateway...')
        existing = self.find_live_nat_gateway(nat_gateway.subnet_id, allocation_id)

        if existing:
            new_id = existing['NatGatewayId']
            routes = self.routes_to_replace(nat_gateway.routes, new_id)
            if not routes:
                task.skip(f'NAT gateway is already recreated as {new_id}')
            if options.dry_run:
                task.skip(f'Skipped, would point {len(routes)} routes to NAT gateway {new_id}')
        else:
            if options.dry_run:
                task.skip(
                    f'Skipped, would create NAT gateway on subnet = {nat_gateway.subnet_id} '
                    f'and allocate EIP = {allocation_id}'
                )
            new_id = self.create_nat_gateway(nat_gateway, allocation_id)
            routes = nat_gateway.routes

        if not existing or existing.get('State') != 'available':
            task.output('Waiting for NAT gateway to be available...')
            self.client.get_waiter('nat_gateway_available').wait(
                NatGatewayIds=[new_id],
                WaiterConfig={'Delay': 15, 'MaxAttempts': 40},
            )

        for route in routes:
            task.output(f'Adding NAT gateway to original route tables ({route.describe()})...')
            self.client.replace_route(
                RouteTableId=route.route_table_id,
                NatGatewayId=new_id,
                **route.destination(),
            )

        task.output(f'NAT gateway recreated as {new_id}')

    def create_nat_gateway(self, nat_gateway: NatGatewayState, allocation_id: Optional[str]) -> str:
        request = {'SubnetId': nat_gateway.subnet_id}
        if allocation_id:
            request['AllocationId'] = allocation_id
        if nat_gateway.tags:
            request['TagSpecifications'] = [{'ResourceType': 'natgateway', 'Tags': nat_gateway.tags}]

        response = self.client.create_nat_gateway(**request)
        new_id = response.get('NatGateway', {}).get('NatGatewayId')
        if not new_id:
            raise ServiceError(f'NAT gateway replacing {nat_gateway.id} was created without an id')
        return new_id

    def find_live_nat_gateway(self, subnet_id: str, allocation_id: Optional[str]) -> Optional[dict]:
        """A pending or available gateway on the subnet, holding the EIP when one was recorded.

        An EIP is associated with one gateway at most, so a match means an
        earlier restore already recreated this gateway.
        """
        response = self.client.describe_nat_gateways(Filter=[
            {'Name': 'subnet-id', 'Values': [subnet_id]},
            {'Name': 'state', 'Values': ['pending', 'available']},
        ])
        for candidate in response.get('NatGateways', []):
            allocation_ids = [a.get('AllocationId') for a in candidate.get('NatGatewayAddresses', [])]
            if allocation_id is None or allocation_id in allocation_ids:
                return candidate
        return None

    def routes_to_replace(
        self,
        routes: Sequence[NatGatewayRouteState],
        nat_gateway_id: str,
    ) -> List[NatGatewayRouteState]:
        """Recorded routes that do not target the gateway yet."""
        route_table_ids = sorted({route.route_table_id for route in routes})
        if not route_table_ids:
            return []

        response = self.client.describe_route_tables(RouteTableIds=route_table_ids)
        live_routes = {
            route_table['RouteTableId']: route_table.get('Routes', [])
            for route_table in response.get('RouteTables', [])
        }

        return [
            route for route in routes
            if not any(
                route.matches(live) and live.get('NatGatewayId') == nat_gateway_id
                for live in live_routes.get(route.route_table_id, [])
            )
        ]

    def _list_nat_gateways(self, task: TaskHandle, options: TrickOptions) -> List[dict]:
        nat_gateways = []
        kwargs = {}
        if options.has_tag_filters:
            kwargs['Filter'] = native_filters(options.tags)

        paginator = self.client.get_paginator('describe_nat_gateways')
        for page_number, page in enumerate(paginator.paginate(**kwargs), start=1):
            task.output(f'Fetching page {page_number}...')
            nat_gateways.extend(page.get('NatGateways', []))

        return nat_gateways

    @staticmethod
    def get_name_tag(nat_gateway: NatGatewayState) -> str:
        return ' '.join(
            t.get('Value', '') for t in nat_gateway.tags if str(t.get('Key', '')).lower() == 'name'
        )
