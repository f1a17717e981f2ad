"""Per-resource provisioning backends behind the IResourceProvisioner protocol."""

from __future__ import annotations

from strata.core.config import AppSettings
from strata.core.protocols import ICredentialProvider
from strata.models.request import RetryPolicy
from strata.provisioning.cloudcontrol_backend import CloudControlProvisioner
from strata.signing import create_credential_provider
from strata.transport.dispatcher import RequestDispatcher
from strata.transport.endpoints import EndpointResolver


def create_provisioner(
    settings: AppSettings | None = None,
    credentials: ICredentialProvider | None = None,
):
    """Create a wired-up Cloud Control provisioner from application settings.

    Returns:
        Tuple of (provisioner, dispatcher). The caller owns the dispatcher
        and should ``aclose()`` it when done.
    """
    if settings is None:
        settings = AppSettings()
    if credentials is None:
        credentials = create_credential_provider(settings)

    dispatcher = RequestDispatcher(
        credentials,
        policy=RetryPolicy(
            max_attempts=settings.retry.max_attempts,
            base_delay=settings.retry.base_delay,
            max_delay=settings.retry.max_delay,
            jitter=settings.retry.jitter,
        ),
        endpoints=EndpointResolver(settings.aws.endpoint_url),
        timeout=settings.retry.timeout,
    )

    provisioner = CloudControlProvisioner(
        dispatcher,
        settings.aws.region,
        poll_interval=settings.deploy.poll_interval,
        poll_timeout=settings.deploy.poll_timeout,
        credentials=credentials,
        refresh_on_auth_failure=settings.deploy.refresh_on_auth_failure,
        read_only_properties=settings.deploy.read_only_properties,
    )

    return provisioner, dispatcher
