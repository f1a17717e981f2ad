"""Deployment units and the layered orchestrator."""

from __future__ import annotations

from strata.core.config import AppSettings
from strata.core.protocols import ICredentialProvider
from strata.orchestration.orchestrator import DeploymentOrchestrator, default_pseudo_parameters
from strata.provisioning import create_provisioner
from strata.provisioning.account import lookup_account_id
from strata.signing import create_credential_provider


def create_orchestrator(
    settings: AppSettings | None = None,
    credentials: ICredentialProvider | None = None,
):
    """Create an orchestrator wired to the Cloud Control provisioner.

    The account id comes from settings when set, otherwise from STS.

    Returns:
        Tuple of (orchestrator, dispatcher). The caller owns the dispatcher.
    """
    if settings is None:
        settings = AppSettings()
    if credentials is None:
        credentials = create_credential_provider(settings)

    provisioner, dispatcher = create_provisioner(settings, credentials)
    account_id = settings.aws.account_id or lookup_account_id(
        settings.aws.region, settings.aws.endpoint_url
    )

    orchestrator = DeploymentOrchestrator(
        provisioner,
        max_concurrency=settings.deploy.max_concurrency,
        pseudo_parameters=default_pseudo_parameters(settings.aws.region, account_id),
    )
    return orchestrator, dispatcher
