# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Set

# Observer bits
from ..observers.dispatcher import EventBus
from ..observers.events import PlanComputed, PlanFailed


class UnknownDependencyError(ValueError):
    pass


class CyclicDependencyError(ValueError):
    pass


@dataclass
class Ack:
    """What the target API returned once it accepted a resource."""
    ref: Optional[str] = None            # provider id, object uid, release name...
    detail: Dict = field(default_factory=dict)


@dataclass
class ResourceNode:
    name: str                            # stable logical name
    kind: str
    apply: Callable[[], Optional[Ack]]
    depends_on: List[str] = field(default_factory=list)
    layer: str = ""                      # display grouping only; edges decide order


class ResourceGraph:
    """
    Resources plus explicit "must be acknowledged before" edges.

    Ordering lives here as data: nothing is inferred from call order or
    manifest content.
    """

    def __init__(self) -> None:
        self._nodes: Dict[str, ResourceNode] = {}

    def add(self, node: ResourceNode) -> ResourceNode:
        if node.name in self._nodes:
            raise ValueError(f"Duplicate resource name '{node.name}'")
        self._nodes[node.name] = node
        return node

    def node(self, name: str) -> ResourceNode:
        return self._nodes[name]

    def names(self) -> List[str]:
        return list(self._nodes)

    def __contains__(self, name: str) -> bool:
        return name in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def validate(self) -> None:
        for n in self._nodes.values():
            for d in n.depends_on:
                if d not in self._nodes:
                    raise UnknownDependencyError(
                        f"Resource '{n.name}' depends on unknown resource '{d}'"
                    )

    def order(
        self,
        bus: Optional[EventBus] = None,
        run_ctx: Optional[dict] = None,
    ) -> List[ResourceNode]:
        """
        Stable topological sort. Among resources that are ready at the same
        time, the one added first goes first.
        Emits PlanComputed / PlanFailed if an EventBus and run context are given.
        """
        try:
            self.validate()

            position = {name: i for i, name in enumerate(self._nodes)}
            indeg: Dict[str, int] = {n: len(set(node.depends_on)) for n, node in self._nodes.items()}
            dependents: Dict[str, Set[str]] = {n: set() for n in self._nodes}
            for n, node in self._nodes.items():
                for d in node.depends_on:
                    dependents[d].add(n)

            queue = deque(sorted((n for n, deg in indeg.items() if deg == 0), key=position.get))
            order: List[ResourceNode] = []

            while queue:
                n = queue.popleft()
                order.append(self._nodes[n])
                for m in dependents[n]:
                    indeg[m] -= 1
                    if indeg[m] == 0:
                        queue.append(m)
                queue = deque(sorted(queue, key=position.get))  # deterministic

            if len(order) != len(self._nodes):
                stuck = sorted(n for n, deg in indeg.items() if deg > 0)
                raise CyclicDependencyError(
                    f"Cyclic dependency detected among resources: {', '.join(stuck)}"
                )

            if bus and run_ctx:
                bus.emit(PlanComputed(order=[r.name for r in order], **run_ctx))
            return order

        except Exception as e:
            if bus and run_ctx:
                bus.emit(PlanFailed(error=str(e), **run_ctx))
            raise

    def layers(self) -> List[List[ResourceNode]]:
        """Group the topological order by depth (longest dependency chain)."""
        ordered = self.order()
        depth: Dict[str, int] = {}
        for node in ordered:
            depth[node.name] = 1 + max((depth[d] for d in node.depends_on), default=-1)
        grouped: Dict[int, List[ResourceNode]] = {}
        for node in ordered:
            grouped.setdefault(depth[node.name], []).append(node)
        return [grouped[k] for k in sorted(grouped)]
