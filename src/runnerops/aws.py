"""
EC2 and STS access for the runner instance.

Wraps the handful of boto3 calls the health checks and CLI need. botocore
failures are re-raised as ``AwsError`` so callers handle a single type.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from runnerops.errors import AwsError

__all__ = ["Ec2Instance", "AwsClient"]

logger = logging.getLogger(__name__)

_BOTO_CONFIG = Config(
    retries={"max_attempts": 3, "mode": "adaptive"},
    connect_timeout=5,
    read_timeout=10,
)


@dataclass(frozen=True)
class Ec2Instance:
    instance_id: str
    state: str
    instance_type: Optional[str] = None
    public_ip: Optional[str] = None
    private_ip: Optional[str] = None


class AwsClient:
    """
    Thin EC2/STS client.

    Args:
        region: AWS region; boto3's own resolution applies when None
        session: Pre-built ``boto3.session.Session`` (tests pass a mock)
    """

    def __init__(self, region: Optional[str] = None, session: Any = None):
        self.region = region
        self._session = session
        self._clients: dict[str, Any] = {}

    @classmethod
    def from_config(cls, config) -> "AwsClient":
        return cls(region=config.aws_region)

    def _get_session(self):
        if self._session is None:
            self._session = boto3.session.Session(region_name=self.region)
        return self._session

    def _client(self, service: str):
        if service not in self._clients:
            self._clients[service] = self._get_session().client(service, config=_BOTO_CONFIG)
        return self._clients[service]

    def has_credentials(self) -> bool:
        try:
            return self._get_session().get_credentials() is not None
        except BotoCoreError:
            return False

    def get_caller_identity(self) -> dict[str, str]:
        try:
            response = self._client("sts").get_caller_identity()
        except (BotoCoreError, ClientError) as e:
            raise AwsError(f"AWS authentication failed: {e}") from e
        return {
            "account": response.get("Account", ""),
            "arn": response.get("Arn", ""),
            "user_id": response.get("UserId", ""),
        }

    def describe_instance(self, instance_id: str) -> Ec2Instance:
        try:
            response = self._client("ec2").describe_instances(InstanceIds=[instance_id])
        except (BotoCoreError, ClientError) as e:
            raise AwsError(f"Failed to describe EC2 instance {instance_id}: {e}") from e
        for reservation in response.get("Reservations", []):
            for instance in reservation.get("Instances", []):
                return Ec2Instance(
                    instance_id=instance.get("InstanceId", instance_id),
                    state=instance.get("State", {}).get("Name", "unknown"),
                    instance_type=instance.get("InstanceType"),
                    public_ip=instance.get("PublicIpAddress"),
                    private_ip=instance.get("PrivateIpAddress"),
                )
        raise AwsError(f"EC2 instance {instance_id} not found")

    def start_instance(self, instance_id: str) -> str:
        return self._transition("start_instances", "StartingInstances", instance_id)

    def stop_instance(self, instance_id: str) -> str:
        return self._transition("stop_instances", "StoppingInstances", instance_id)

    def terminate_instance(self, instance_id: str) -> str:
        return self._transition("terminate_instances", "TerminatingInstances", instance_id)

    def _transition(self, operation: str, key: str, instance_id: str) -> str:
        """Run a state-changing EC2 call and return the new state name."""
        try:
            response = getattr(self._client("ec2"), operation)(InstanceIds=[instance_id])
        except (BotoCoreError, ClientError) as e:
            raise AwsError(f"{operation} failed for {instance_id}: {e}") from e
        changes = response.get(key, [])
        state = changes[0].get("CurrentState", {}).get("Name", "unknown") if changes else "unknown"
        logger.info("EC2 %s %s -> %s", operation, instance_id, state)
        return state
