"""Protocol interfaces for the Strata abstractions.

All inter-layer communication uses these Protocols: structural typing,
no inheritance required, easy to test with isinstance().
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from strata.models.outcome import DispatchResult
    from strata.models.request import ApiCall, Credentials
    from strata.models.resource import ProvisionedResource, ResourceNode


# ---------------------------------------------------------------------------
# Credentials
# ---------------------------------------------------------------------------

@runtime_checkable
class ICredentialProvider(Protocol):
    """Supplies credentials for each signing operation; safe for concurrent callers."""

    async def get_credentials(self) -> Credentials: ...


@runtime_checkable
class IRefreshableCredentialProvider(ICredentialProvider, Protocol):
    """Credential provider whose cached value can be discarded on demand."""

    def invalidate(self) -> None: ...


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------

@runtime_checkable
class IDispatcher(Protocol):
    """Signed, retried, classified control-plane calls."""

    async def dispatch(self, call: ApiCall) -> DispatchResult: ...

    async def send(self, call: ApiCall) -> dict[str, Any]: ...


# ---------------------------------------------------------------------------
# Provisioning
# ---------------------------------------------------------------------------

@runtime_checkable
class IResourceProvisioner(Protocol):
    """Creates, updates and deletes one resource per call."""

    async def create(
        self, node: ResourceNode, properties: dict[str, Any]
    ) -> ProvisionedResource: ...

    async def update(
        self, node: ResourceNode, identifier: str, properties: dict[str, Any]
    ) -> ProvisionedResource: ...

    async def delete(self, node: ResourceNode, identifier: str) -> None: ...
