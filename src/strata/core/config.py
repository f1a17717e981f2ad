"""Application configuration using pydantic-settings with grouped env prefixes."""

from __future__ import annotations

from typing import Literal

from pydantic_settings import BaseSettings


class AWSConfig(BaseSettings):
    """Target account and endpoint configuration."""

    model_config = {"env_prefix": "STRATA_AWS_"}

    region: str = "us-east-1"
    profile: str | None = None
    endpoint_url: str | None = None  # LocalStack override
    account_id: str | None = None  # skips the STS lookup when set


class RetryConfig(BaseSettings):
    """Retry policy for control-plane calls."""

    model_config = {"env_prefix": "STRATA_RETRY_"}

    max_attempts: int = 3
    base_delay: float = 0.1  # seconds
    max_delay: float = 5.0
    jitter: bool = True
    timeout: float = 30.0  # per-request HTTP timeout


class DeployConfig(BaseSettings):
    """Deployment orchestration configuration."""

    model_config = {"env_prefix": "STRATA_DEPLOY_"}

    max_concurrency: int = 10
    poll_interval: float = 2.0
    poll_timeout: float = 900.0
    refresh_on_auth_failure: bool = True
    # type name -> properties GetResource reports but an update patch may not remove
    read_only_properties: dict[str, list[str]] = {}


class AppSettings(BaseSettings):
    """Root application settings aggregating all sub-configs."""

    model_config = {"env_prefix": "STRATA_"}

    environment: Literal["dev", "uat", "prod"] = "dev"
    log_level: str = "INFO"

    aws: AWSConfig = AWSConfig()
    retry: RetryConfig = RetryConfig()
    deploy: DeployConfig = DeployConfig()
