"""Deployment units: a named set of resources plus template parameters."""

from __future__ import annotations

from typing import Any, Iterable, Mapping

from pydantic import BaseModel, Field

from strata.core.exceptions import ConfigurationError
from strata.graph.dependency_graph import DependencyGraph
from strata.models.resource import ResourceDefinition, ResourceNode


class DeploymentPlan(BaseModel):
    """What a deploy or destroy of a unit would do, without calling anything."""

    name: str
    order: list[str] = Field(default_factory=list)
    layers: list[list[str]] = Field(default_factory=list)
    deletion_layers: list[list[str]] = Field(default_factory=list)


class DeploymentUnit:
    """Named resource set with its own dependency graph.

    Every declared parameter name is an external name for the graph, so a
    ``Ref`` to a parameter never becomes a dependency edge.
    """

    def __init__(
        self,
        name: str,
        parameters: Mapping[str, Any] | None = None,
        declared_parameters: Iterable[str] = (),
    ) -> None:
        self.name = name
        self.parameters: dict[str, Any] = dict(parameters or {})
        self._external_names = frozenset({*self.parameters, *declared_parameters})
        self.graph = DependencyGraph(external_names=self._external_names)

    @classmethod
    def from_template(
        cls,
        name: str,
        template: Mapping[str, Any],
        parameter_values: Mapping[str, Any] | None = None,
    ) -> DeploymentUnit:
        """Build a unit from a template's ``Parameters`` and ``Resources`` sections.

        Parameter values come from ``parameter_values`` first, then the
        declared ``Default``. A parameter with neither is a configuration error.
        """
        declared: Mapping[str, Any] = template.get("Parameters") or {}
        supplied = dict(parameter_values or {})
        values: dict[str, Any] = {}
        for param_name, declaration in declared.items():
            if param_name in supplied:
                values[param_name] = supplied.pop(param_name)
            elif isinstance(declaration, Mapping) and "Default" in declaration:
                values[param_name] = declaration["Default"]
            else:
                raise ConfigurationError(f"Parameter {param_name!r} has no value")
        if supplied:
            raise ConfigurationError(f"Unknown parameters: {sorted(supplied)}")

        resources = template.get("Resources") or {}
        if not isinstance(resources, Mapping):
            raise ConfigurationError("Template Resources must be a mapping")

        unit = cls(name, parameters=values, declared_parameters=declared)
        for logical_id, definition in resources.items():
            unit.add_resource(logical_id, definition)
        return unit

    def add_resource(
        self, logical_id: str, definition: ResourceDefinition | Mapping[str, Any]
    ) -> ResourceNode:
        return self.graph.add_resource(logical_id, definition)

    def rebuild(self) -> DependencyGraph:
        """Discard the graph and build a new one from the same definitions.

        The new graph is unfrozen and its dependencies are derived afresh.
        """
        previous = self.graph
        self.graph = DependencyGraph(external_names=self._external_names)
        for logical_id, node in previous.nodes.items():
            self.graph.add_resource(logical_id, node.definition)
        return self.graph

    def plan(self) -> DeploymentPlan:
        layers = self.graph.layers()
        return DeploymentPlan(
            name=self.name,
            order=self.graph.topological_sort(),
            layers=layers,
            deletion_layers=list(reversed(layers)),
        )
