from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterator, List, Optional, Set, Tuple

from .exceptions import ConfigurationError
from .layout import BACKWARD, FORWARD
from .node import ComputationNodeBase

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class RecurrentLoop:
    """A cyclic cluster executed one time position at a time.

    ``nodes`` is the intra-step execution order; ``stepping_direction`` is
    ``FORWARD`` for loops closed by a past-value delay and ``BACKWARD`` for
    loops closed by a future-value delay.
    """

    loop_id: int
    nodes: List[ComputationNodeBase]
    stepping_direction: int
    completed_evaluate: bool = False
    completed_gradient: bool = False
    _members: Set[ComputationNodeBase] = field(default_factory=set, repr=False)

    def __post_init__(self) -> None:
        self._members = set(self.nodes)

    def __contains__(self, node: object) -> bool:
        return node in self._members

    def __iter__(self) -> Iterator[ComputationNodeBase]:
        return iter(self.nodes)

    def __len__(self) -> int:
        return len(self.nodes)

    def __repr__(self) -> str:
        direction = "forward" if self.stepping_direction == FORWARD else "backward"
        names = ", ".join(node.name for node in self.nodes)
        return f"RecurrentLoop(id={self.loop_id}, {direction}, [{names}])"

    @property
    def name(self) -> str:
        return f"loop{self.loop_id}"

    @property
    def member_set(self) -> FrozenSet[ComputationNodeBase]:
        return frozenset(self._members)

    def reset_completion(self) -> None:
        self.completed_evaluate = False
        self.completed_gradient = False

    def is_func_value_older_than_inputs(self) -> bool:
        # delays read the previous step of an in-loop input, so they always look stale
        return any(
            node.is_func_value_older_than_inputs() for node in self.nodes if not node.is_delay
        )


class RecurrentLoopRegistry:
    """Loops discovered so far, shared by every root of one network."""

    def __init__(self) -> None:
        self._loops: List[RecurrentLoop] = []
        self._by_node: Dict[ComputationNodeBase, RecurrentLoop] = {}
        self._next_id = 0

    def __iter__(self) -> Iterator[RecurrentLoop]:
        return iter(self._loops)

    def __len__(self) -> int:
        return len(self._loops)

    def find(self, node: ComputationNodeBase) -> Optional[RecurrentLoop]:
        return self._by_node.get(node)

    def clear(self) -> None:
        for loop in self._loops:
            for node in loop.nodes:
                node.is_part_of_loop = False
        self._loops.clear()
        self._by_node.clear()
        self._next_id = 0

    def reset_completion(self) -> None:
        for loop in self._loops:
            loop.reset_completion()

    def form(self, root: ComputationNodeBase) -> Tuple[List[RecurrentLoop], bool]:
        """Register every cycle reachable from ``root``.

        Returns the loops reachable from ``root`` and whether the registry
        changed. Loops whose members no longer form exactly one cycle (the graph
        was edited) are dropped and replaced. Calling it again for the same root
        is a no-op.
        """
        components, discovery = _strongly_connected_components(root)
        loops: List[RecurrentLoop] = []
        changed = False
        for component in components:
            members = frozenset(component)
            cyclic = len(component) > 1 or component[0] in component[0].children
            existing = self._by_node.get(component[0])
            if cyclic and existing is not None and existing.member_set == members:
                loops.append(existing)
                continue
            superseded = {self._by_node[node] for node in component if node in self._by_node}
            for stale in sorted(superseded, key=lambda loop: loop.loop_id):
                self._drop(stale)
                changed = True
            if not cyclic:
                continue
            ordered = sorted(component, key=discovery.__getitem__)
            direction = _stepping_direction(ordered)
            loop = RecurrentLoop(
                loop_id=self._next_id,
                nodes=_loop_forward_order(ordered, members),
                stepping_direction=direction,
            )
            self._next_id += 1
            for node in loop.nodes:
                node.is_part_of_loop = True
                self._by_node[node] = loop
            self._loops.append(loop)
            loops.append(loop)
            changed = True
            logger.info("Formed %r", loop)
        loops.sort(key=lambda loop: loop.loop_id)
        return loops, changed

    def _drop(self, loop: RecurrentLoop) -> None:
        self._loops.remove(loop)
        for node in loop.nodes:
            if self._by_node.get(node) is loop:
                del self._by_node[node]
                node.is_part_of_loop = False
        logger.info("Dropped superseded %r", loop)


def _strongly_connected_components(
    root: ComputationNodeBase,
) -> Tuple[List[List[ComputationNodeBase]], Dict[ComputationNodeBase, int]]:
    index: Dict[ComputationNodeBase, int] = {}
    lowlink: Dict[ComputationNodeBase, int] = {}
    stack: List[ComputationNodeBase] = []
    on_stack: Set[ComputationNodeBase] = set()
    components: List[List[ComputationNodeBase]] = []

    def enter(node: ComputationNodeBase):
        position = len(index)
        index[node] = position
        lowlink[node] = position
        stack.append(node)
        on_stack.add(node)
        return node, iter(node.children)

    work = [enter(root)]
    while work:
        node, children = work[-1]
        descended = False
        for child in children:
            if child not in index:
                work.append(enter(child))
                descended = True
                break
            if child in on_stack:
                lowlink[node] = min(lowlink[node], index[child])
        if descended:
            continue
        work.pop()
        if work:
            parent = work[-1][0]
            lowlink[parent] = min(lowlink[parent], lowlink[node])
        if lowlink[node] == index[node]:
            component: List[ComputationNodeBase] = []
            while True:
                member = stack.pop()
                on_stack.discard(member)
                component.append(member)
                if member is node:
                    break
            components.append(component)
    return components, index


def _stepping_direction(component: List[ComputationNodeBase]) -> int:
    directions = {node.stepping_direction for node in component if node.is_delay}
    names = ", ".join(node.name for node in component)
    if not directions:
        raise ConfigurationError(
            f"Cycle without a delay node cannot be evaluated step by step: [{names}]"
        )
    if len(directions) > 1 or not directions <= {FORWARD, BACKWARD}:
        raise ConfigurationError(
            f"Recurrent loop mixes past and future delays, no consistent stepping direction: [{names}]"
        )
    return directions.pop()


def _loop_forward_order(
    component: List[ComputationNodeBase],
    members: FrozenSet[ComputationNodeBase],
) -> List[ComputationNodeBase]:
    """Order members so each one follows its same-step in-loop inputs.

    Edges out of delay nodes are cut: a delay reads an earlier time position.
    """
    order: List[ComputationNodeBase] = []
    done: Set[ComputationNodeBase] = set()
    active: Set[ComputationNodeBase] = set()

    def same_step_inputs(node: ComputationNodeBase) -> List[ComputationNodeBase]:
        if node.is_delay:
            return []
        return [child for child in node.children if child in members]

    for start in component:
        if start in done:
            continue
        active.add(start)
        work = [(start, iter(same_step_inputs(start)))]
        while work:
            node, children = work[-1]
            descended = False
            for child in children:
                if child in done:
                    continue
                if child in active:
                    raise ConfigurationError(
                        f"Nodes '{node.name}' and '{child.name}' form a cycle that "
                        "does not pass through a delay node"
                    )
                active.add(child)
                work.append((child, iter(same_step_inputs(child))))
                descended = True
                break
            if descended:
                continue
            work.pop()
            active.discard(node)
            done.add(node)
            order.append(node)
    return order
