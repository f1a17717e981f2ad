"""In-memory provisioner for unit tests, a dict-backed fake."""

from __future__ import annotations

import asyncio
from typing import Any, Mapping

from strata.models.resource import ProvisionedResource, ResourceNode


class MemoryProvisioner:
    """Dict-backed IResourceProvisioner for unit tests.

    ``failures`` maps a logical id to exceptions raised by successive calls
    for that resource; once the list is used up, calls succeed. ``delays``
    holds per-resource latencies in seconds. ``events`` records
    ("start", id) and ("end", id) pairs in the order they happen.
    """

    def __init__(
        self,
        *,
        failures: Mapping[str, list[BaseException]] | None = None,
        delays: Mapping[str, float] | None = None,
        attributes: Mapping[str, dict[str, Any]] | None = None,
    ) -> None:
        self._failures = {key: list(value) for key, value in (failures or {}).items()}
        self._delays = dict(delays or {})
        self._attributes = {key: dict(value) for key, value in (attributes or {}).items()}
        self.resources: dict[str, ProvisionedResource] = {}
        self.received: dict[str, dict[str, Any]] = {}
        self.calls: list[tuple[str, str]] = []
        self.events: list[tuple[str, str]] = []
        self.in_flight = 0
        self.peak_in_flight = 0

    async def _run(self, operation: str, logical_id: str) -> None:
        self.calls.append((operation, logical_id))
        self.events.append(("start", logical_id))
        self.in_flight += 1
        self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self._delays.get(logical_id, 0))
            pending = self._failures.get(logical_id)
            if pending:
                raise pending.pop(0)
        finally:
            self.in_flight -= 1
            self.events.append(("end", logical_id))

    def _store(self, node: ResourceNode, identifier: str,
               properties: dict[str, Any]) -> ProvisionedResource:
        attributes = {**properties, **self._attributes.get(node.logical_id, {})}
        resource = ProvisionedResource(
            logical_id=node.logical_id,
            type_name=node.type_name,
            identifier=identifier,
            attributes=attributes,
        )
        self.received[node.logical_id] = properties
        self.resources[node.logical_id] = resource
        return resource

    async def create(self, node: ResourceNode, properties: dict[str, Any]) -> ProvisionedResource:
        await self._run("create", node.logical_id)
        return self._store(node, f"{node.logical_id.lower()}-id", properties)

    async def update(
        self, node: ResourceNode, identifier: str, properties: dict[str, Any]
    ) -> ProvisionedResource:
        await self._run("update", node.logical_id)
        return self._store(node, identifier, properties)

    async def delete(self, node: ResourceNode, identifier: str) -> None:
        await self._run("delete", node.logical_id)
        self.resources.pop(node.logical_id, None)

    def started(self) -> list[str]:
        return [logical_id for kind, logical_id in self.events if kind == "start"]
