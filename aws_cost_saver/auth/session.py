"""Session and client factory shared by all tricks of one run."""

import logging
import threading
from typing import Any, Dict, Optional

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, NoCredentialsError, ProfileNotFound

from aws_cost_saver.core.exceptions import ConfigurationError


logger = logging.getLogger(__name__)

# Adaptive retries absorb throttling from many tricks calling one API at once
DEFAULT_BOTO_CONFIG = BotoConfig(retries={'max_attempts': 10, 'mode': 'adaptive'})


def create_session(profile: Optional[str] = None, region: Optional[str] = None) -> boto3.Session:
    """Build the boto3 session for a run.

    Args:
        profile: Optional shared credentials profile name
        region: Optional AWS region, falls back to the profile/environment default

    Returns:
        boto3 Session

    Raises:
        ConfigurationError: If the profile does not exist or no region can be resolved
    """
    try:
        session = boto3.Session(profile_name=profile, region_name=region)
    except ProfileNotFound as e:
        raise ConfigurationError(f"AWS profile not found: {profile}", details=str(e))

    if not session.region_name:
        raise ConfigurationError(
            "No AWS region configured. Pass --region or set AWS_DEFAULT_REGION."
        )

    return session


class ClientFactory:
    """Creates and memoizes one boto3 client per service for one run.

    The factory is built once by the command line layer and handed to every
    trick, nothing in the engine reaches for a global session.
    """

    def __init__(self, session: boto3.Session, boto_config: Optional[BotoConfig] = None):
        self.session = session
        self.boto_config = boto_config or DEFAULT_BOTO_CONFIG
        self._clients: Dict[str, Any] = {}
        self._lock = threading.Lock()

    @property
    def region(self) -> Optional[str]:
        return self.session.region_name

    @property
    def profile(self) -> Optional[str]:
        return self.session.profile_name

    def client(self, service_name: str) -> Any:
        """Get the client for an AWS service, creating it on first use."""
        with self._lock:
            if service_name not in self._clients:
                logger.debug(f"Creating {service_name} client in {self.region}")
                try:
                    self._clients[service_name] = self.session.client(
                        service_name, config=self.boto_config
                    )
                except (NoCredentialsError, BotoCoreError) as e:
                    raise ConfigurationError(
                        f"Could not create AWS {service_name} client: {e}", details=str(e)
                    )
            return self._clients[service_name]
