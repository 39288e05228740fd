"""
Pytest configuration and shared fixtures for AWS Cost Saver tests.
"""

import os

import boto3
import pytest
from moto import mock_aws

from aws_cost_saver.auth.session import ClientFactory
from aws_cost_saver.core.config import TagFilter, TrickOptions
from helpers import FakeClientFactory


@pytest.fixture(scope="session", autouse=True)
def aws_credentials():
    """Fake credentials so nothing ever reaches a real AWS account."""
    os.environ["AWS_ACCESS_KEY_ID"] = "testing"
    os.environ["AWS_SECRET_ACCESS_KEY"] = "testing"
    os.environ["AWS_SECURITY_TOKEN"] = "testing"
    os.environ["AWS_SESSION_TOKEN"] = "testing"
    os.environ["AWS_DEFAULT_REGION"] = "us-east-1"
    os.environ.pop("AWS_PROFILE", None)


@pytest.fixture
def mock_aws_services():
    """Mock all AWS services used by the application."""
    with mock_aws():
        yield


@pytest.fixture
def client_factory():
    """Client factory handing out MagicMock clients."""
    return FakeClientFactory()


@pytest.fixture
def options():
    return TrickOptions()


@pytest.fixture
def dry_run_options():
    return TrickOptions(dry_run=True)


@pytest.fixture
def team_tag_options():
    return TrickOptions(tags=(TagFilter(key="Team", values=("data",)),))


@pytest.fixture
def temp_state_file(tmp_path):
    return str(tmp_path / "state" / "aws-cost-saver.json")


@pytest.fixture
def no_sleep(monkeypatch):
    """Polling with wait_until returns without sleeping."""
    monkeypatch.setattr("aws_cost_saver.tricks.base.time.sleep", lambda seconds: None)


@pytest.fixture
def aws_client_factory(mock_aws_services):
    """Real boto3 clients talking to moto."""
    return ClientFactory(boto3.Session(region_name="us-east-1"))
