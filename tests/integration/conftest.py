"""Integration test fixtures: LocalStack STS and Cloud Control."""

from __future__ import annotations

import os

import boto3
import pytest

from strata.core.config import AppSettings, AWSConfig, DeployConfig, RetryConfig

# Default LocalStack endpoint
LOCALSTACK_URL = os.environ.get("LOCALSTACK_URL", "http://localhost:4566")
REGION = "us-east-1"


def _localstack_available() -> bool:
    """Check if LocalStack is reachable."""
    try:
        client = boto3.client(
            "sts",
            region_name=REGION,
            endpoint_url=LOCALSTACK_URL,
            aws_access_key_id="test",
            aws_secret_access_key="test",
        )
        client.get_caller_identity()
        return True
    except Exception:
        return False


skip_no_localstack = pytest.mark.skipif(
    not _localstack_available(),
    reason="LocalStack not available",
)


@pytest.fixture
def localstack_env(monkeypatch):
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "test")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "test")
    monkeypatch.delenv("AWS_SESSION_TOKEN", raising=False)


@pytest.fixture
def localstack_settings(localstack_env) -> AppSettings:
    """Settings pointing every service at LocalStack with fast polling."""
    return AppSettings(
        aws=AWSConfig(region=REGION, endpoint_url=LOCALSTACK_URL),
        retry=RetryConfig(max_attempts=3, base_delay=0.05),
        deploy=DeployConfig(poll_interval=0.5, poll_timeout=60.0),
    )


@pytest.fixture
def localstack_sqs(localstack_env):
    """SQS client pointing at LocalStack."""
    return boto3.client("sqs", region_name=REGION, endpoint_url=LOCALSTACK_URL)
