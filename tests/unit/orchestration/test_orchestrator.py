"""Tests for layered deployment, failure handling and cancellation."""

from __future__ import annotations

import asyncio

import pytest

from strata.core.exceptions import (
    AuthenticationError,
    CircularDependencyError,
    DanglingDependencyError,
    ErrorKind,
    GraphFrozenError,
    ValidationError,
)
from strata.models.outcome import Operation
from strata.orchestration.orchestrator import DeploymentOrchestrator, default_pseudo_parameters
from strata.orchestration.unit import DeploymentUnit
from tests.fakes import MemoryProvisioner


def _unit(resources: dict, name: str = "app") -> DeploymentUnit:
    unit = DeploymentUnit(name)
    for logical_id, definition in resources.items():
        unit.add_resource(logical_id, definition)
    return unit


def _chain() -> DeploymentUnit:
    """C depends on B, B depends on A."""
    return _unit({
        "A": {"Type": "AWS::S3::Bucket", "Properties": {"BucketName": "a"}},
        "B": {"Type": "AWS::SQS::Queue", "Properties": {"Source": {"Ref": "A"}}},
        "C": {"Type": "AWS::Lambda::Function",
              "Properties": {"Queue": {"Fn::GetAtt": ["B", "Arn"]}}},
    })


# ---------- ordering ----------


class TestDeployOrdering:
    @pytest.mark.asyncio
    async def test_layers_happen_in_order(self):
        provisioner = MemoryProvisioner(attributes={"B": {"Arn": "arn:b"}})
        result = await DeploymentOrchestrator(provisioner).deploy(_chain())

        assert result.ok
        assert result.operation is Operation.DEPLOY
        assert result.succeeded == ["A", "B", "C"]
        assert result.layers == [["A"], ["B"], ["C"]]
        assert provisioner.events == [
            ("start", "A"), ("end", "A"),
            ("start", "B"), ("end", "B"),
            ("start", "C"), ("end", "C"),
        ]

    @pytest.mark.asyncio
    async def test_properties_resolved_from_earlier_layers(self):
        provisioner = MemoryProvisioner(attributes={"B": {"Arn": "arn:b"}})
        result = await DeploymentOrchestrator(provisioner).deploy(_chain())
        assert provisioner.received["B"] == {"Source": "a-id"}
        assert provisioner.received["C"] == {"Queue": "arn:b"}
        assert result.resources["A"].identifier == "a-id"

    @pytest.mark.asyncio
    async def test_layer_members_run_concurrently(self):
        provisioner = MemoryProvisioner(delays={"X": 0.02, "Y": 0.02, "Z": 0.02})
        unit = _unit({"X": {"Type": "T"}, "Y": {"Type": "T"}, "Z": {"Type": "T"}})
        await DeploymentOrchestrator(provisioner).deploy(unit)
        assert provisioner.peak_in_flight == 3

    @pytest.mark.asyncio
    async def test_concurrency_bound(self):
        provisioner = MemoryProvisioner(delays={"X": 0.02, "Y": 0.02, "Z": 0.02})
        unit = _unit({"X": {"Type": "T"}, "Y": {"Type": "T"}, "Z": {"Type": "T"}})
        result = await DeploymentOrchestrator(provisioner, max_concurrency=2).deploy(unit)
        assert provisioner.peak_in_flight == 2
        assert sorted(result.succeeded) == ["X", "Y", "Z"]

    @pytest.mark.asyncio
    async def test_existing_resources_are_updated(self):
        provisioner = MemoryProvisioner(attributes={"B": {"Arn": "arn:b"}})
        await DeploymentOrchestrator(provisioner).deploy(_chain(), existing={"A": "bucket-a"})
        assert provisioner.calls[0] == ("update", "A")
        assert provisioner.received["B"] == {"Source": "bucket-a"}

    @pytest.mark.asyncio
    async def test_pseudo_parameters(self):
        provisioner = MemoryProvisioner()
        unit = _unit({"Topic": {"Type": "T", "Properties": {
            "Name": {"Ref": "AWS::StackName"},
            "Region": {"Ref": "AWS::Region"},
        }}}, name="orders")
        orchestrator = DeploymentOrchestrator(
            provisioner, pseudo_parameters=default_pseudo_parameters("eu-west-1", "111122223333")
        )
        await orchestrator.deploy(unit)
        assert provisioner.received["Topic"] == {"Name": "orders", "Region": "eu-west-1"}

    @pytest.mark.asyncio
    async def test_graph_frozen_only_during_deploy(self):
        unit = _chain()
        seen = []

        class Observing(MemoryProvisioner):
            async def create(self, node, properties):
                seen.append(unit.graph.frozen)
                return await super().create(node, properties)

        await DeploymentOrchestrator(Observing(attributes={"B": {"Arn": "x"}})).deploy(unit)
        assert seen == [True, True, True]
        assert not unit.graph.frozen

    @pytest.mark.asyncio
    async def test_siblings_wait_for_shared_dependency_then_overlap(self):
        provisioner = MemoryProvisioner(delays={"A": 0.02, "B": 0.02, "C": 0.02})
        unit = _unit({
            "A": {"Type": "T"},
            "B": {"Type": "T", "DependsOn": ["A"]},
            "C": {"Type": "T", "DependsOn": ["A"]},
        })
        result = await DeploymentOrchestrator(provisioner).deploy(unit)

        assert result.ok
        end_a = provisioner.events.index(("end", "A"))
        assert provisioner.events.index(("start", "B")) > end_a
        assert provisioner.events.index(("start", "C")) > end_a
        assert provisioner.events[:2] == [("start", "A"), ("end", "A")]
        assert set(provisioner.events[2:4]) == {("start", "B"), ("start", "C")}
        assert provisioner.peak_in_flight == 2


# ---------- concurrent use of one unit ----------


class TestConcurrentUse:
    @pytest.mark.asyncio
    async def test_second_deploy_of_same_unit_is_refused(self):
        provisioner = MemoryProvisioner(delays={"A": 0.05})
        unit = _unit({"A": {"Type": "T"}})
        orchestrator = DeploymentOrchestrator(provisioner)

        first = asyncio.create_task(orchestrator.deploy(unit))
        await asyncio.sleep(0.01)
        with pytest.raises(GraphFrozenError):
            await orchestrator.deploy(unit)
        result = await first

        assert result.succeeded == ["A"]
        assert provisioner.calls == [("create", "A")]
        assert not unit.graph.frozen

    @pytest.mark.asyncio
    async def test_destroy_during_deploy_is_refused(self):
        provisioner = MemoryProvisioner(delays={"A": 0.05})
        unit = _unit({"A": {"Type": "T"}})
        orchestrator = DeploymentOrchestrator(provisioner)

        first = asyncio.create_task(orchestrator.deploy(unit))
        await asyncio.sleep(0.01)
        with pytest.raises(GraphFrozenError):
            await orchestrator.destroy(unit, {"A": "a-id"})
        await first
        assert ("delete", "A") not in provisioner.calls


# ---------- pre-flight errors ----------


class TestPreflight:
    @pytest.mark.asyncio
    async def test_dangling_reference_makes_no_calls(self):
        provisioner = MemoryProvisioner()
        unit = _unit({"A": {"Type": "T", "Properties": {"X": {"Ref": "Ghost"}}}})
        with pytest.raises(DanglingDependencyError):
            await DeploymentOrchestrator(provisioner).deploy(unit)
        assert provisioner.calls == []

    @pytest.mark.asyncio
    async def test_cycle_makes_no_calls(self):
        provisioner = MemoryProvisioner()
        unit = _unit({"A": {"Type": "T", "DependsOn": "B"}, "B": {"Type": "T", "DependsOn": "A"}})
        with pytest.raises(CircularDependencyError):
            await DeploymentOrchestrator(provisioner).deploy(unit)
        assert provisioner.calls == []

    def test_concurrency_must_be_positive(self):
        with pytest.raises(ValueError):
            DeploymentOrchestrator(MemoryProvisioner(), max_concurrency=0)


# ---------- failures ----------


class TestFailures:
    @pytest.mark.asyncio
    async def test_failure_stops_later_layers(self):
        provisioner = MemoryProvisioner(failures={"X": [ValidationError("bad property")]})
        unit = _unit({
            "A": {"Type": "T"},
            "X": {"Type": "T"},
            "B": {"Type": "T", "DependsOn": ["A", "X"]},
            "C": {"Type": "T", "DependsOn": "B"},
        })
        result = await DeploymentOrchestrator(provisioner).deploy(unit)

        assert not result.ok
        assert result.succeeded == ["A"]
        assert result.failed_ids == ["X"]
        assert result.failed[0].error_kind is ErrorKind.VALIDATION
        assert result.not_attempted == ["B", "C"]
        assert ("create", "B") not in provisioner.calls

    @pytest.mark.asyncio
    async def test_unresolvable_attribute_is_a_configuration_failure(self):
        provisioner = MemoryProvisioner()
        result = await DeploymentOrchestrator(provisioner).deploy(_chain())
        assert result.failed_ids == ["C"]
        assert result.failed[0].error_kind is ErrorKind.CONFIGURATION

    @pytest.mark.asyncio
    async def test_auth_failure_is_reported_without_rerunning_the_action(self):
        provisioner = MemoryProvisioner(failures={"A": [AuthenticationError("expired")]})
        result = await DeploymentOrchestrator(provisioner).deploy(_unit({"A": {"Type": "T"}}))
        assert result.failed[0].error_kind is ErrorKind.AUTHENTICATION
        assert provisioner.calls == [("create", "A")]


# ---------- cancellation ----------


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancel_during_layer(self):
        provisioner = MemoryProvisioner(delays={"Slow": 5.0})
        unit = _unit({
            "Fast": {"Type": "T"},
            "Slow": {"Type": "T"},
            "Later": {"Type": "T", "DependsOn": ["Fast", "Slow"]},
        })
        cancel = asyncio.Event()

        async def trip():
            await asyncio.sleep(0.05)
            cancel.set()

        tripper = asyncio.create_task(trip())
        result = await DeploymentOrchestrator(provisioner).deploy(unit, cancel=cancel)
        await tripper

        assert result.cancelled
        assert result.succeeded == ["Fast"]
        assert result.failed_ids == ["Slow"]
        assert result.failed[0].error_kind is ErrorKind.CANCELLED
        assert result.not_attempted == ["Later"]
        assert provisioner.in_flight == 0

    @pytest.mark.asyncio
    async def test_cancel_before_start(self):
        provisioner = MemoryProvisioner()
        cancel = asyncio.Event()
        cancel.set()
        result = await DeploymentOrchestrator(provisioner).deploy(_chain(), cancel=cancel)
        assert result.cancelled
        assert result.not_attempted == ["A", "B", "C"]
        assert provisioner.calls == []


# ---------- destroy ----------


class TestDestroy:
    @pytest.mark.asyncio
    async def test_reverse_order(self):
        provisioner = MemoryProvisioner()
        identifiers = {"A": "a-id", "B": "b-id", "C": "c-id"}
        result = await DeploymentOrchestrator(provisioner).destroy(_chain(), identifiers)
        assert result.operation is Operation.DESTROY
        assert result.succeeded == ["C", "B", "A"]
        assert provisioner.calls == [("delete", "C"), ("delete", "B"), ("delete", "A")]

    @pytest.mark.asyncio
    async def test_retained_and_unknown_are_skipped(self):
        provisioner = MemoryProvisioner()
        unit = _unit({
            "Logs": {"Type": "T", "DeletionPolicy": "Retain"},
            "Queue": {"Type": "T", "DependsOn": "Logs"},
            "Topic": {"Type": "T"},
        })
        result = await DeploymentOrchestrator(provisioner).destroy(
            unit, {"Logs": "logs-id", "Queue": "queue-id"}
        )
        assert result.succeeded == ["Queue"]
        assert sorted(result.skipped) == ["Logs", "Topic"]
        assert provisioner.calls == [("delete", "Queue")]

    @pytest.mark.asyncio
    async def test_failure_stops_deeper_deletes(self):
        provisioner = MemoryProvisioner(failures={"C": [ValidationError("in use")]})
        result = await DeploymentOrchestrator(provisioner).destroy(
            _chain(), {"A": "a", "B": "b", "C": "c"}
        )
        assert result.failed_ids == ["C"]
        assert result.not_attempted == ["B", "A"]


def test_default_pseudo_parameters_partition():
    assert default_pseudo_parameters("cn-north-1")["AWS::Partition"] == "aws-cn"
    assert default_pseudo_parameters("us-gov-west-1")["AWS::Partition"] == "aws-us-gov"
    values = default_pseudo_parameters("us-east-1", "123456789012")
    assert values["AWS::AccountId"] == "123456789012"
    assert values["AWS::URLSuffix"] == "amazonaws.com"


def test_stack_name_added_per_unit():
    orchestrator = DeploymentOrchestrator(MemoryProvisioner())
    assert orchestrator.pseudo_parameters_for(DeploymentUnit("x")) == {"AWS::StackName": "x"}
