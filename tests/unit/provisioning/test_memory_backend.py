"""Tests for the in-memory provisioner used by orchestration tests."""

from __future__ import annotations

import pytest

from strata.core.exceptions import ThrottlingError
from strata.core.protocols import IResourceProvisioner
from strata.models.resource import ResourceDefinition, ResourceNode
from tests.fakes import MemoryProvisioner

NODE = ResourceNode(logical_id="Bucket", definition=ResourceDefinition(type="AWS::S3::Bucket"))


def test_satisfies_protocol():
    assert isinstance(MemoryProvisioner(), IResourceProvisioner)


@pytest.mark.asyncio
async def test_create_update_delete():
    provisioner = MemoryProvisioner(attributes={"Bucket": {"Arn": "arn:aws:s3:::b"}})
    created = await provisioner.create(NODE, {"BucketName": "b"})
    assert created.identifier == "bucket-id"
    assert created.attributes == {"BucketName": "b", "Arn": "arn:aws:s3:::b"}

    await provisioner.update(NODE, "bucket-id", {"BucketName": "c"})
    assert provisioner.received["Bucket"] == {"BucketName": "c"}

    await provisioner.delete(NODE, "bucket-id")
    assert "Bucket" not in provisioner.resources
    assert provisioner.calls == [("create", "Bucket"), ("update", "Bucket"), ("delete", "Bucket")]


@pytest.mark.asyncio
async def test_scripted_failures_are_consumed_in_order():
    provisioner = MemoryProvisioner(failures={"Bucket": [ThrottlingError("slow")]})
    with pytest.raises(ThrottlingError):
        await provisioner.create(NODE, {})
    await provisioner.create(NODE, {})
    assert provisioner.events == [
        ("start", "Bucket"), ("end", "Bucket"), ("start", "Bucket"), ("end", "Bucket"),
    ]
