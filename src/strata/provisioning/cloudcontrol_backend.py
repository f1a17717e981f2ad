"""Cloud Control API backend implementing IResourceProvisioner.

Every resource operation is asynchronous on the service side: the call
returns a ProgressEvent with a request token, which is polled with
GetResourceRequestStatus until it settles.
"""

from __future__ import annotations

import asyncio
import json
import logging
import math
import uuid
from enum import StrEnum
from typing import Any, Awaitable, Callable, Collection, Mapping, Optional, TypeVar

import pydantic
from pydantic import BaseModel, ConfigDict, Field

from strata.core.exceptions import (
    AuthenticationError,
    MalformedResponseError,
    ProvisioningTimeoutError,
    ResourceOperationError,
)
from strata.core.protocols import (
    ICredentialProvider,
    IDispatcher,
    IRefreshableCredentialProvider,
)
from strata.models.request import ApiCall
from strata.models.resource import ProvisionedResource, ResourceNode
from strata.transport.pagination import paginate

logger = logging.getLogger(__name__)

SERVICE = "cloudcontrolapi"

M = TypeVar("M", bound=BaseModel)


class OperationStatus(StrEnum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    CANCEL_IN_PROGRESS = "CANCEL_IN_PROGRESS"
    CANCEL_COMPLETE = "CANCEL_COMPLETE"


_SETTLING = {OperationStatus.PENDING, OperationStatus.IN_PROGRESS,
             OperationStatus.CANCEL_IN_PROGRESS}


class _Shape(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


# ---- request shapes ----

class CreateResourceInput(_Shape):
    type_name: str = Field(alias="TypeName")
    desired_state: str = Field(alias="DesiredState")
    client_token: Optional[str] = Field(default=None, alias="ClientToken")


class UpdateResourceInput(_Shape):
    type_name: str = Field(alias="TypeName")
    identifier: str = Field(alias="Identifier")
    patch_document: str = Field(alias="PatchDocument")
    client_token: Optional[str] = Field(default=None, alias="ClientToken")


class DeleteResourceInput(_Shape):
    type_name: str = Field(alias="TypeName")
    identifier: str = Field(alias="Identifier")
    client_token: Optional[str] = Field(default=None, alias="ClientToken")


class GetResourceInput(_Shape):
    type_name: str = Field(alias="TypeName")
    identifier: str = Field(alias="Identifier")


class GetResourceRequestStatusInput(_Shape):
    request_token: str = Field(alias="RequestToken")


class ListResourcesInput(_Shape):
    type_name: str = Field(alias="TypeName")
    max_results: Optional[int] = Field(default=None, alias="MaxResults")


# ---- response shapes ----

class ProgressEvent(_Shape):
    type_name: Optional[str] = Field(default=None, alias="TypeName")
    identifier: Optional[str] = Field(default=None, alias="Identifier")
    request_token: Optional[str] = Field(default=None, alias="RequestToken")
    operation: Optional[str] = Field(default=None, alias="Operation")
    operation_status: OperationStatus = Field(alias="OperationStatus")
    status_message: Optional[str] = Field(default=None, alias="StatusMessage")
    error_code: Optional[str] = Field(default=None, alias="ErrorCode")


class ProgressEventOutput(_Shape):
    progress_event: ProgressEvent = Field(alias="ProgressEvent")


class ResourceDescription(_Shape):
    identifier: str = Field(alias="Identifier")
    properties: str = Field(default="{}", alias="Properties")


class GetResourceOutput(_Shape):
    type_name: Optional[str] = Field(default=None, alias="TypeName")
    resource_description: ResourceDescription = Field(alias="ResourceDescription")


def _pointer(key: str) -> str:
    return "/" + key.replace("~", "~0").replace("/", "~1")


def build_patch_document(
    properties: dict[str, Any],
    current: Mapping[str, Any] | None = None,
    keep: Collection[str] = (),
) -> str:
    """JSON Patch moving a resource's top-level properties to ``properties``.

    Members of ``current`` missing from ``properties`` are removed unless
    named in ``keep`` (read-only attributes the service reports but rejects
    in a patch). "add" replaces existing members.
    """
    ops: list[dict[str, Any]] = [
        {"op": "remove", "path": _pointer(key)}
        for key in (current or {})
        if key not in properties and key not in keep
    ]
    ops.extend({"op": "add", "path": _pointer(key), "value": value}
               for key, value in properties.items())
    return json.dumps(ops, separators=(",", ":"))


class CloudControlProvisioner:
    """Production IResourceProvisioner backed by the Cloud Control API."""

    def __init__(
        self,
        dispatcher: IDispatcher,
        region: str,
        *,
        poll_interval: float = 2.0,
        poll_timeout: float = 900.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        credentials: ICredentialProvider | None = None,
        refresh_on_auth_failure: bool = True,
        read_only_properties: Mapping[str, Collection[str]] | None = None,
    ) -> None:
        self._dispatcher = dispatcher
        self._region = region
        self._poll_interval = poll_interval
        self._max_polls = max(1, math.ceil(poll_timeout / poll_interval)) if poll_interval else 1
        self._sleep = sleep
        self._credentials = credentials
        self._refresh_on_auth_failure = refresh_on_auth_failure
        self._read_only = {
            type_name: frozenset(names)
            for type_name, names in (read_only_properties or {}).items()
        }

    async def _send(self, call: ApiCall) -> dict[str, Any]:
        """Send one call; on an auth failure refresh credentials and resend that call once.

        Only the rejected call is repeated, with the same payload and client
        token, so an operation the service already accepted is never
        submitted a second time.
        """
        try:
            return await self._dispatcher.send(call)
        except AuthenticationError:
            credentials = self._credentials
            if not (self._refresh_on_auth_failure
                    and isinstance(credentials, IRefreshableCredentialProvider)):
                raise
            logger.warning("%s rejected the credentials; refreshing and retrying once",
                           call.action)
            credentials.invalidate()
            return await self._dispatcher.send(call)

    async def _call(self, action: str, payload: BaseModel, output: type[M]) -> M:
        call = ApiCall(service=SERVICE, region=self._region, action=action, payload=payload)
        body = await self._send(call)
        try:
            return output.model_validate(body)
        except pydantic.ValidationError as exc:
            raise MalformedResponseError(
                f"Unexpected {action} response: {exc.error_count()} validation errors"
            ) from exc

    async def _await_completion(self, event: ProgressEvent, logical_id: str) -> ProgressEvent:
        polls = 0
        while event.operation_status in _SETTLING:
            if polls >= self._max_polls:
                raise ProvisioningTimeoutError(
                    f"{event.operation or 'Operation'} on {logical_id!r} did not finish in time",
                    request_token=event.request_token,
                )
            await self._sleep(self._poll_interval)
            polls += 1
            out = await self._call(
                "GetResourceRequestStatus",
                GetResourceRequestStatusInput(request_token=event.request_token or ""),
                ProgressEventOutput,
            )
            event = out.progress_event

        if event.operation_status is not OperationStatus.SUCCESS:
            raise ResourceOperationError(
                f"{event.operation or 'Operation'} on {logical_id!r} ended "
                f"{event.operation_status}: {event.status_message or 'no status message'}",
                request_token=event.request_token,
                error_code=event.error_code,
            )
        return event

    async def describe(self, node: ResourceNode, identifier: str) -> ProvisionedResource:
        out = await self._call(
            "GetResource",
            GetResourceInput(type_name=node.type_name, identifier=identifier),
            GetResourceOutput,
        )
        try:
            attributes = json.loads(out.resource_description.properties or "{}")
        except ValueError as exc:
            raise MalformedResponseError(
                f"GetResource returned unparseable properties for {node.logical_id!r}"
            ) from exc
        return ProvisionedResource(
            logical_id=node.logical_id,
            type_name=node.type_name,
            identifier=out.resource_description.identifier,
            attributes=attributes,
        )

    # ---- IResourceProvisioner methods ----

    async def create(self, node: ResourceNode, properties: dict[str, Any]) -> ProvisionedResource:
        logger.info("Creating %s (%s)", node.logical_id, node.type_name)
        out = await self._call(
            "CreateResource",
            CreateResourceInput(
                type_name=node.type_name,
                desired_state=json.dumps(properties, separators=(",", ":")),
                client_token=str(uuid.uuid4()),
            ),
            ProgressEventOutput,
        )
        event = await self._await_completion(out.progress_event, node.logical_id)
        if not event.identifier:
            raise MalformedResponseError(f"CreateResource for {node.logical_id!r} returned no identifier")
        return await self.describe(node, event.identifier)

    async def update(
        self, node: ResourceNode, identifier: str, properties: dict[str, Any]
    ) -> ProvisionedResource:
        logger.info("Updating %s (%s) %s", node.logical_id, node.type_name, identifier)
        current = await self.describe(node, identifier)
        keep = self._read_only.get(node.type_name, frozenset())
        out = await self._call(
            "UpdateResource",
            UpdateResourceInput(
                type_name=node.type_name,
                identifier=identifier,
                patch_document=build_patch_document(properties, current.attributes, keep),
                client_token=str(uuid.uuid4()),
            ),
            ProgressEventOutput,
        )
        event = await self._await_completion(out.progress_event, node.logical_id)
        return await self.describe(node, event.identifier or identifier)

    async def delete(self, node: ResourceNode, identifier: str) -> None:
        logger.info("Deleting %s (%s) %s", node.logical_id, node.type_name, identifier)
        out = await self._call(
            "DeleteResource",
            DeleteResourceInput(
                type_name=node.type_name,
                identifier=identifier,
                client_token=str(uuid.uuid4()),
            ),
            ProgressEventOutput,
        )
        try:
            await self._await_completion(out.progress_event, node.logical_id)
        except ResourceOperationError as exc:
            if exc.error_code != "NotFound":
                raise
            logger.info("%s already gone", node.logical_id)

    async def list_resources(self, type_name: str) -> list[dict[str, Any]]:
        call = ApiCall(
            service=SERVICE,
            region=self._region,
            action="ListResources",
            payload=ListResourcesInput(type_name=type_name),
        )
        return await paginate(self._dispatcher, call, "ResourceDescriptions")
