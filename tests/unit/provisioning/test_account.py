"""Unit tests for the STS account lookup using moto."""

from __future__ import annotations

import pytest
from moto import mock_aws

from strata.provisioning.account import lookup_account_id


@pytest.fixture
def aws_env(monkeypatch):
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.delenv("AWS_PROFILE", raising=False)


def test_returns_caller_account(aws_env):
    with mock_aws():
        account = lookup_account_id("us-east-1")
    # moto's default account
    assert account == "123456789012"
