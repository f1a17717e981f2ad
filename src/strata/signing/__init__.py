"""Request signing and credential resolution."""

from __future__ import annotations

from strata.core.config import AppSettings
from strata.signing.credentials import (
    CredentialChain,
    RefreshingCredentialProvider,
    from_boto_session,
    from_environment,
)

# boto3 refreshes its own short-lived credentials; re-read them this often
BOTO_SESSION_MAX_AGE = 300.0


def create_credential_provider(
    settings: AppSettings | None = None,
) -> RefreshingCredentialProvider:
    """Create the default credential provider: environment, then the boto3 chain."""
    if settings is None:
        settings = AppSettings()

    chain = CredentialChain([
        from_environment,
        from_boto_session(settings.aws.profile),
    ])
    return RefreshingCredentialProvider(chain, max_age=BOTO_SESSION_MAX_AGE)
