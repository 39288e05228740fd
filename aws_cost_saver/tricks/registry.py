"""
Registry of every trick known to AWS Cost Saver.
"""
import logging
from typing import Iterable, List, Optional

from ..core.exceptions import TrickNotFound
from .base import Trick
from .decrease_dynamodb_provisioned_rcu_wcu import DecreaseDynamoDBProvisionedRcuWcuTrick
from .decrease_kinesis_streams_shards import DecreaseKinesisStreamsShardsTrick
from .remove_nat_gateways import RemoveNatGatewaysTrick
from .scaledown_auto_scaling_groups import ScaledownAutoScalingGroupsTrick
from .shutdown_ec2_instances import ShutdownEC2InstancesTrick
from .snapshot_remove_elasticache_redis import SnapshotRemoveElasticacheRedisTrick
from .stop_fargate_ecs_services import StopFargateEcsServicesTrick
from .stop_rds_database_clusters import StopRdsDatabaseClustersTrick
from .stop_rds_database_instances import StopRdsDatabaseInstancesTrick
from .suspend_auto_scaling_groups import SuspendAutoScalingGroupsTrick


logger = logging.getLogger(__name__)

# Registry and display order, trick units still run concurrently
TRICK_CLASSES = (
    SuspendAutoScalingGroupsTrick,
    ScaledownAutoScalingGroupsTrick,
    ShutdownEC2InstancesTrick,
    StopFargateEcsServicesTrick,
    StopRdsDatabaseInstancesTrick,
    StopRdsDatabaseClustersTrick,
    DecreaseDynamoDBProvisionedRcuWcuTrick,
    RemoveNatGatewaysTrick,
    SnapshotRemoveElasticacheRedisTrick,
    DecreaseKinesisStreamsShardsTrick,
)


class TrickRegistry:
    """Ordered collection of trick instances."""

    def __init__(self, tricks: Optional[Iterable[Trick]] = None):
        self._tricks: List[Trick] = []
        if tricks:
            self.register(*tricks)

    @classmethod
    def initialize(cls, client_factory) -> 'TrickRegistry':
        """Registry with one instance of every trick sharing the client factory."""
        return cls(trick_class(client_factory) for trick_class in TRICK_CLASSES)

    def register(self, *tricks: Trick) -> None:
        for trick in tricks:
            if trick.get_machine_name() in self.machine_names():
                raise ValueError(f"Trick already registered: {trick.get_machine_name()}")
            self._tricks.append(trick)

    def all(self) -> List[Trick]:
        return list(self._tricks)

    def defaults(self) -> List[Trick]:
        return [trick for trick in self._tricks if trick.default_enabled]

    def machine_names(self) -> List[str]:
        return [trick.get_machine_name() for trick in self._tricks]

    def get(self, machine_name: str) -> Trick:
        for trick in self._tricks:
            if trick.get_machine_name() == machine_name:
                return trick
        raise TrickNotFound(machine_name, self.machine_names())

    def select(
        self,
        use: Iterable[str] = (),
        ignore: Iterable[str] = (),
        no_default_tricks: bool = False,
    ) -> List[Trick]:
        """Tricks to run, in registry order.

        Starts from the default set (or nothing with ``no_default_tricks``),
        adds ``use`` and removes ``ignore``.

        Raises:
            TrickNotFound: If a name in ``use`` or ``ignore`` is unknown
        """
        use = list(use)
        ignore = list(ignore)
        for name in use + ignore:
            self.get(name)

        selected = set() if no_default_tricks else {t.get_machine_name() for t in self.defaults()}
        selected.update(use)
        selected.difference_update(ignore)

        tricks = [trick for trick in self._tricks if trick.get_machine_name() in selected]
        logger.debug(f"Selected tricks: {', '.join(t.get_machine_name() for t in tricks) or 'none'}")
        return tricks
