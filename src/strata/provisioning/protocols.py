"""Re-export provisioning protocols from core for convenience."""

from __future__ import annotations

from strata.core.protocols import IDispatcher, IResourceProvisioner

__all__ = ["IDispatcher", "IResourceProvisioner"]
