"""Caller account lookup through boto3 STS."""

from __future__ import annotations

import logging

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from strata.core.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


def lookup_account_id(region: str, endpoint_url: str | None = None) -> str:
    """Return the account id of the caller's credentials."""
    kwargs: dict = {"region_name": region}
    if endpoint_url:
        kwargs["endpoint_url"] = endpoint_url
    client = boto3.client("sts", **kwargs)
    try:
        account = client.get_caller_identity()["Account"]
    except (BotoCoreError, ClientError) as exc:
        raise ConfigurationError(f"Could not determine the AWS account id: {exc}") from exc
    logger.info("Resolved account %s", account)
    return account
