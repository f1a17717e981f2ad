"""Layered, concurrent deployment of a unit's resources.

Layers run strictly one after another; members of a layer run concurrently
up to ``max_concurrency``. The first layer with a failure ends the run and
every later layer is reported as not attempted.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Mapping

from strata.core.exceptions import ErrorKind, GraphFrozenError, StrataError
from strata.core.protocols import IResourceProvisioner
from strata.graph.dependency_graph import DependencyGraph
from strata.graph.references import resolve_intrinsics
from strata.models.outcome import DeploymentResult, FailedResource, Operation
from strata.models.resource import ProvisionedResource
from strata.orchestration.unit import DeploymentUnit

logger = logging.getLogger(__name__)

ResourceAction = Callable[[str], Awaitable[ProvisionedResource | None]]


def default_pseudo_parameters(region: str, account_id: str | None = None) -> dict[str, str]:
    """Region-derived pseudo-parameters; AWS::StackName is added per unit."""
    if region.startswith("cn-"):
        partition, suffix = "aws-cn", "amazonaws.com.cn"
    elif region.startswith("us-gov-"):
        partition, suffix = "aws-us-gov", "amazonaws.com"
    else:
        partition, suffix = "aws", "amazonaws.com"
    values = {
        "AWS::Region": region,
        "AWS::Partition": partition,
        "AWS::URLSuffix": suffix,
    }
    if account_id:
        values["AWS::AccountId"] = account_id
    return values


class DeploymentOrchestrator:
    """Walks a unit's layers against an IResourceProvisioner."""

    def __init__(
        self,
        provisioner: IResourceProvisioner,
        *,
        max_concurrency: int = 10,
        pseudo_parameters: Mapping[str, str] | None = None,
    ) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self._provisioner = provisioner
        self._max_concurrency = max_concurrency
        self._pseudo_parameters = dict(pseudo_parameters or {})

    def pseudo_parameters_for(self, unit: DeploymentUnit) -> dict[str, str]:
        return {"AWS::StackName": unit.name, **self._pseudo_parameters}

    async def deploy(
        self,
        unit: DeploymentUnit,
        existing: Mapping[str, str] | None = None,
        cancel: asyncio.Event | None = None,
    ) -> DeploymentResult:
        """Create (or update, for ids in ``existing``) every resource of ``unit``.

        Raises ConfigurationError before any provisioner call when the graph
        has a dangling reference or a cycle, and GraphFrozenError when the
        unit is already being deployed or destroyed.
        """
        graph = unit.graph
        layers = graph.layers()
        existing = dict(existing or {})
        pseudo = self.pseudo_parameters_for(unit)
        result = DeploymentResult(operation=Operation.DEPLOY, layers=layers)

        async def provision(logical_id: str) -> ProvisionedResource:
            node = graph.get(logical_id)
            properties = resolve_intrinsics(
                node.definition.properties, result.resources, pseudo, unit.parameters
            )
            if logical_id in existing:
                return await self._provisioner.update(node, existing[logical_id], properties)
            return await self._provisioner.create(node, properties)

        logger.info("Deploying %s: %d resources in %d layers", unit.name, len(graph), len(layers))
        await self._walk(graph, layers, provision, result, cancel)
        return result

    async def destroy(
        self,
        unit: DeploymentUnit,
        identifiers: Mapping[str, str],
        cancel: asyncio.Event | None = None,
    ) -> DeploymentResult:
        """Delete provisioned resources, dependents first.

        Resources without an identifier or with ``DeletionPolicy: Retain`` are
        skipped.
        """
        graph = unit.graph
        skipped: list[str] = []
        layers: list[list[str]] = []
        for layer in graph.deletion_layers():
            targets = []
            for logical_id in layer:
                if logical_id not in identifiers or graph.get(logical_id).definition.retained:
                    skipped.append(logical_id)
                else:
                    targets.append(logical_id)
            if targets:
                layers.append(targets)

        result = DeploymentResult(operation=Operation.DESTROY, layers=layers, skipped=skipped)

        async def delete(logical_id: str) -> None:
            await self._provisioner.delete(graph.get(logical_id), identifiers[logical_id])

        logger.info("Destroying %s: %d resources in %d layers, %d skipped",
                    unit.name, sum(len(layer) for layer in layers), len(layers), len(skipped))
        await self._walk(graph, layers, delete, result, cancel)
        return result

    async def _walk(
        self,
        graph: DependencyGraph,
        layers: list[list[str]],
        action: ResourceAction,
        result: DeploymentResult,
        cancel: asyncio.Event | None,
    ) -> None:
        if graph.frozen:
            raise GraphFrozenError(
                f"{result.operation} refused: the unit is already being deployed or destroyed"
            )
        graph.freeze()
        try:
            for index, layer in enumerate(layers):
                if cancel is not None and cancel.is_set():
                    result.cancelled = True
                    remaining = layers[index:]
                else:
                    logger.info("Layer %d/%d: %s", index + 1, len(layers), ", ".join(layer))
                    tasks, cancelled = await self._run_layer(layer, action, cancel)
                    self._record(tasks, result)
                    if not (cancelled or result.failed):
                        continue
                    result.cancelled = cancelled
                    remaining = layers[index + 1:]

                result.not_attempted = [
                    logical_id for later in remaining for logical_id in later
                ]
                logger.warning(
                    "%s stopped at layer %d/%d: %d failed, %d not attempted%s",
                    result.operation, index + 1, len(layers), len(result.failed),
                    len(result.not_attempted), " (cancelled)" if result.cancelled else "",
                )
                break
            else:
                logger.info("%s finished: %d resources", result.operation, len(result.succeeded))
        finally:
            graph.unfreeze()

    async def _run_layer(
        self,
        layer: list[str],
        action: ResourceAction,
        cancel: asyncio.Event | None,
    ) -> tuple[dict[str, asyncio.Task], bool]:
        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def guarded(logical_id: str) -> ProvisionedResource | None:
            async with semaphore:
                return await action(logical_id)

        tasks = {
            logical_id: asyncio.create_task(guarded(logical_id), name=logical_id)
            for logical_id in layer
        }
        waiter = asyncio.create_task(cancel.wait()) if cancel is not None else None
        pending: set[asyncio.Task] = set(tasks.values())
        cancelled = False
        try:
            while pending:
                watched = pending | {waiter} if waiter is not None else pending
                done, _ = await asyncio.wait(watched, return_when=asyncio.FIRST_COMPLETED)
                pending -= done
                if waiter is not None and waiter in done and pending:
                    cancelled = True
                    for task in pending:
                        task.cancel()
                    await asyncio.gather(*pending, return_exceptions=True)
                    pending.clear()
        finally:
            if waiter is not None:
                waiter.cancel()
            for task in pending:
                task.cancel()
        return tasks, cancelled

    @staticmethod
    def _record(tasks: dict[str, asyncio.Task], result: DeploymentResult) -> None:
        for logical_id, task in tasks.items():
            if task.cancelled():
                result.failed.append(FailedResource(
                    logical_id=logical_id,
                    error_kind=ErrorKind.CANCELLED,
                    message="Cancelled before completion",
                ))
                continue
            error = task.exception()
            if error is None:
                resource: Any = task.result()
                result.succeeded.append(logical_id)
                if resource is not None:
                    result.resources[logical_id] = resource
            elif isinstance(error, StrataError):
                logger.error("%s failed (%s): %s", logical_id, error.kind, error)
                result.failed.append(FailedResource(
                    logical_id=logical_id, error_kind=error.kind, message=str(error),
                ))
            else:
                raise error
