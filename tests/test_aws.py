"""
Tests for the EC2/STS client.
"""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError, NoCredentialsError

from runnerops.aws import AwsClient
from runnerops.errors import AwsError


def client_error(operation, code="UnauthorizedOperation"):
    return ClientError({"Error": {"Code": code, "Message": "denied"}}, operation)


@pytest.fixture
def ec2():
    return MagicMock()


@pytest.fixture
def sts():
    return MagicMock()


@pytest.fixture
def aws(ec2, sts):
    session = MagicMock()
    session.client.side_effect = lambda service, config=None: {"ec2": ec2, "sts": sts}[service]
    return AwsClient(region="us-east-1", session=session)


class TestCredentials:
    def test_has_credentials(self, aws):
        aws._session.get_credentials.return_value = object()
        assert aws.has_credentials()

    def test_no_credentials(self, aws):
        aws._session.get_credentials.return_value = None
        assert not aws.has_credentials()

    def test_credential_lookup_error(self, aws):
        aws._session.get_credentials.side_effect = NoCredentialsError()
        assert not aws.has_credentials()

    def test_caller_identity(self, aws, sts):
        sts.get_caller_identity.return_value = {"Account": "123", "Arn": "arn:aws:iam::123:user/x", "UserId": "U"}
        assert aws.get_caller_identity() == {"account": "123", "arn": "arn:aws:iam::123:user/x", "user_id": "U"}

    def test_caller_identity_failure(self, aws, sts):
        sts.get_caller_identity.side_effect = client_error("GetCallerIdentity", "ExpiredToken")
        with pytest.raises(AwsError, match="AWS authentication failed"):
            aws.get_caller_identity()


class TestInstances:
    def test_describe(self, aws, ec2):
        ec2.describe_instances.return_value = {"Reservations": [{"Instances": [{
            "InstanceId": "i-0abc",
            "State": {"Name": "running"},
            "InstanceType": "t3.medium",
            "PrivateIpAddress": "10.0.0.5",
        }]}]}
        instance = aws.describe_instance("i-0abc")
        assert instance.state == "running"
        assert instance.instance_type == "t3.medium"
        assert instance.private_ip == "10.0.0.5"
        assert instance.public_ip is None
        ec2.describe_instances.assert_called_once_with(InstanceIds=["i-0abc"])

    def test_describe_missing(self, aws, ec2):
        ec2.describe_instances.return_value = {"Reservations": []}
        with pytest.raises(AwsError, match="not found"):
            aws.describe_instance("i-0abc")

    @pytest.mark.parametrize("method,operation,key,state", [
        ("start_instance", "start_instances", "StartingInstances", "pending"),
        ("stop_instance", "stop_instances", "StoppingInstances", "stopping"),
        ("terminate_instance", "terminate_instances", "TerminatingInstances", "shutting-down"),
    ])
    def test_transitions(self, aws, ec2, method, operation, key, state):
        getattr(ec2, operation).return_value = {key: [{"CurrentState": {"Name": state}}]}
        assert getattr(aws, method)("i-0abc") == state
        getattr(ec2, operation).assert_called_once_with(InstanceIds=["i-0abc"])

    def test_transition_failure(self, aws, ec2):
        ec2.stop_instances.side_effect = client_error("StopInstances")
        with pytest.raises(AwsError, match="stop_instances failed"):
            aws.stop_instance("i-0abc")

    def test_clients_cached(self, aws, ec2):
        ec2.describe_instances.return_value = {"Reservations": [{"Instances": [{"State": {"Name": "stopped"}}]}]}
        aws.describe_instance("i-0abc")
        aws.describe_instance("i-0abc")
        assert aws._session.client.call_count == 1
