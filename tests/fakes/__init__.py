"""Shared test doubles: re-export memory backends."""

from __future__ import annotations

from strata.models.request import Credentials
from strata.provisioning.memory_backend import MemoryProvisioner
from strata.signing.credentials import StaticCredentialProvider


class RefreshableCredentials:
    """Refreshable provider that counts invalidations."""

    def __init__(self) -> None:
        self.invalidations = 0

    async def get_credentials(self) -> Credentials:
        return Credentials(access_key_id="AKID", secret_access_key="secret")

    def invalidate(self) -> None:
        self.invalidations += 1


__all__ = ["MemoryProvisioner", "RefreshableCredentials", "StaticCredentialProvider"]
