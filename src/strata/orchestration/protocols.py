"""Re-export orchestration protocols from core."""

from __future__ import annotations

from strata.core.protocols import IRefreshableCredentialProvider, IResourceProvisioner

__all__ = ["IRefreshableCredentialProvider", "IResourceProvisioner"]
