"""Service endpoints and JSON-protocol metadata."""

from __future__ import annotations

from pydantic import BaseModel


class ServiceSpec(BaseModel):
    """How to address one AWS JSON-protocol service."""

    endpoint_prefix: str
    signing_name: str
    target_prefix: str
    json_version: str = "1.0"

    @property
    def content_type(self) -> str:
        return f"application/x-amz-json-{self.json_version}"


SERVICES: dict[str, ServiceSpec] = {
    "cloudcontrolapi": ServiceSpec(
        endpoint_prefix="cloudcontrolapi",
        signing_name="cloudcontrolapi",
        target_prefix="CloudApiService",
    ),
    "dynamodb": ServiceSpec(
        endpoint_prefix="dynamodb",
        signing_name="dynamodb",
        target_prefix="DynamoDB_20120810",
    ),
    "logs": ServiceSpec(
        endpoint_prefix="logs",
        signing_name="logs",
        target_prefix="Logs_20140328",
        json_version="1.1",
    ),
    "kms": ServiceSpec(
        endpoint_prefix="kms",
        signing_name="kms",
        target_prefix="TrentService",
        json_version="1.1",
    ),
    "secretsmanager": ServiceSpec(
        endpoint_prefix="secretsmanager",
        signing_name="secretsmanager",
        target_prefix="secretsmanager",
        json_version="1.1",
    ),
    "ssm": ServiceSpec(
        endpoint_prefix="ssm",
        signing_name="ssm",
        target_prefix="AmazonSSM",
        json_version="1.1",
    ),
    "events": ServiceSpec(
        endpoint_prefix="events",
        signing_name="events",
        target_prefix="AWSEvents",
        json_version="1.1",
    ),
}


class EndpointResolver:
    """Maps (service, region) to a base URL; ``endpoint_url`` overrides every service."""

    def __init__(self, endpoint_url: str | None = None,
                 services: dict[str, ServiceSpec] | None = None) -> None:
        self._endpoint_url = endpoint_url
        self._services = services if services is not None else SERVICES

    def spec(self, service: str) -> ServiceSpec:
        try:
            return self._services[service]
        except KeyError:
            raise KeyError(f"Unknown JSON-protocol service {service!r}") from None

    def endpoint(self, service: str, region: str) -> str:
        if self._endpoint_url:
            return self._endpoint_url.rstrip("/")
        prefix = self.spec(service).endpoint_prefix
        suffix = "amazonaws.com.cn" if region.startswith("cn-") else "amazonaws.com"
        return f"https://{prefix}.{region}.{suffix}"
