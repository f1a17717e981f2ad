"""Dependency graph over the resources of one deployment unit.

Determines a safe creation order, the layers that may be created
concurrently, and the reverse order for deletion. Dangling references and
cycles are reported before any control-plane call is made.
"""

from __future__ import annotations

import logging
from enum import IntEnum
from typing import Any, Iterable, Mapping

from strata.core.exceptions import (
    CircularDependencyError,
    ConfigurationError,
    DanglingDependencyError,
    GraphFrozenError,
)
from strata.graph.references import iter_references
from strata.models.resource import ResourceDefinition, ResourceNode

logger = logging.getLogger(__name__)


class _Mark(IntEnum):
    UNVISITED = 0
    IN_PROGRESS = 1
    DONE = 2


def extract_dependencies(
    definition: ResourceDefinition, external_names: Iterable[str] = ()
) -> list[str]:
    """Explicit DependsOn ids followed by referenced ids, de-duplicated.

    Pseudo-parameters (``AWS::*``) and names in ``external_names`` such as
    template parameters are not graph nodes and are skipped.
    """
    external = set(external_names)
    deps: dict[str, None] = {}

    for dep in definition.explicit_dependencies:
        deps[dep] = None

    for ref in iter_references(definition.to_template()):
        if ref.is_pseudo_parameter or ref.target in external:
            continue
        deps[ref.target] = None

    return list(deps)


class DependencyGraph:
    """Resource nodes keyed by logical id, in insertion order."""

    def __init__(self, external_names: Iterable[str] = ()) -> None:
        self._nodes: dict[str, ResourceNode] = {}
        self._external_names = frozenset(external_names)
        self._frozen = False

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, logical_id: object) -> bool:
        return logical_id in self._nodes

    @property
    def nodes(self) -> Mapping[str, ResourceNode]:
        return dict(self._nodes)

    @property
    def frozen(self) -> bool:
        return self._frozen

    def get(self, logical_id: str) -> ResourceNode:
        return self._nodes[logical_id]

    def add_resource(
        self, logical_id: str, definition: ResourceDefinition | Mapping[str, Any]
    ) -> ResourceNode:
        """Register (or replace) a resource and derive its dependencies."""
        if self._frozen:
            raise GraphFrozenError(
                f"Cannot add {logical_id!r}: graph is in use by a deployment attempt"
            )
        if not isinstance(definition, ResourceDefinition):
            if not isinstance(definition, Mapping):
                raise ConfigurationError(f"Resource {logical_id!r} must be a mapping")
            definition = ResourceDefinition.model_validate(dict(definition))

        dependencies = extract_dependencies(definition, self._external_names)
        if logical_id in dependencies:
            raise CircularDependencyError(logical_id, [logical_id, logical_id])

        node = ResourceNode(
            logical_id=logical_id,
            definition=definition,
            dependencies=tuple(dependencies),
        )
        self._nodes[logical_id] = node
        return node

    def freeze(self) -> None:
        self._frozen = True

    def unfreeze(self) -> None:
        self._frozen = False

    def validate(self) -> None:
        """Raise DanglingDependencyError for the first node with unknown dependencies."""
        for node_id, node in self._nodes.items():
            missing = [dep for dep in node.dependencies if dep not in self._nodes]
            if missing:
                raise DanglingDependencyError(node_id, missing)

    def topological_sort(self) -> list[str]:
        """Every dependency precedes its dependents; stable for an unchanged graph."""
        self.validate()

        marks = {node_id: _Mark.UNVISITED for node_id in self._nodes}
        order: list[str] = []

        for root in self._nodes:
            if marks[root] is _Mark.DONE:
                continue
            # (node, iterator over its dependencies) pairs; the stack is the DFS path
            stack = [(root, iter(self._nodes[root].dependencies))]
            marks[root] = _Mark.IN_PROGRESS
            while stack:
                node_id, deps = stack[-1]
                for dep in deps:
                    if marks[dep] is _Mark.DONE:
                        continue
                    if marks[dep] is _Mark.IN_PROGRESS:
                        path = [n for n, _ in stack]
                        cycle = path[path.index(dep):] + [dep]
                        raise CircularDependencyError(dep, cycle)
                    marks[dep] = _Mark.IN_PROGRESS
                    stack.append((dep, iter(self._nodes[dep].dependencies)))
                    break
                else:
                    stack.pop()
                    marks[node_id] = _Mark.DONE
                    order.append(node_id)

        return order

    def layers(self) -> list[list[str]]:
        """Group the topological order into layers of mutually independent nodes."""
        depth: dict[str, int] = {}
        layers: list[list[str]] = []
        for node_id in self.topological_sort():
            deps = self._nodes[node_id].dependencies
            level = 1 + max((depth[d] for d in deps), default=-1)
            depth[node_id] = level
            if level == len(layers):
                layers.append([])
            layers[level].append(node_id)
        logger.debug("Computed %d layers over %d resources", len(layers), len(self._nodes))
        return layers

    def deletion_order(self) -> list[str]:
        return list(reversed(self.topological_sort()))

    def deletion_layers(self) -> list[list[str]]:
        return list(reversed(self.layers()))

    def get_dependents(self, logical_id: str) -> list[str]:
        """Ids whose dependency set contains ``logical_id``."""
        return [
            node_id for node_id, node in self._nodes.items()
            if logical_id in node.dependencies
        ]

    def get_all_dependents(self, logical_id: str) -> list[str]:
        """Transitive dependents: everything that must go if ``logical_id`` goes."""
        seen: dict[str, None] = {}
        pending = self.get_dependents(logical_id)
        while pending:
            node_id = pending.pop(0)
            if node_id in seen or node_id == logical_id:
                continue
            seen[node_id] = None
            pending.extend(self.get_dependents(node_id))
        return list(seen)
