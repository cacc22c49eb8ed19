from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Set, Tuple, Union

from .loops import RecurrentLoop, RecurrentLoopRegistry
from .node import ComputationNodeBase

Unit = Union[ComputationNodeBase, RecurrentLoop]


class EvalOrderCache:
    """Memoized execution orders, one per ``(root, stop_at_boundary)``.

    An order lists execution units (plain nodes or whole recurrent loops) such
    that every unit follows the units it reads from. Loops are collapsed into a
    single unit, so intra-loop edges never constrain the outer order.
    """

    def __init__(self, loops: RecurrentLoopRegistry):
        self._loops = loops
        self._orders: Dict[Tuple[ComputationNodeBase, bool], List[Unit]] = {}

    def get(self, root: ComputationNodeBase, stop_at_boundary: bool = False) -> List[Unit]:
        key = (root, bool(stop_at_boundary))
        order = self._orders.get(key)
        if order is None:
            order = self._build(root, stop_at_boundary)
            self._orders[key] = order
        return order

    def nodes(self, root: ComputationNodeBase, stop_at_boundary: bool = False) -> List[ComputationNodeBase]:
        """The order with every loop expanded into its members."""
        return list(_flatten(self.get(root, stop_at_boundary)))

    def invalidate(self, root: Optional[ComputationNodeBase] = None) -> None:
        if root is None:
            self._orders.clear()
            return
        for key in [key for key in self._orders if key[0] is root]:
            del self._orders[key]

    # Internal helpers -------------------------------------------------------
    def _unit_of(self, node: ComputationNodeBase) -> Unit:
        loop = self._loops.find(node)
        return node if loop is None else loop

    def _inputs_of(self, unit: Unit, root: ComputationNodeBase, stop_at_boundary: bool) -> List[Unit]:
        if isinstance(unit, RecurrentLoop):
            children = [child for node in unit.nodes for child in node.children if child not in unit]
        elif stop_at_boundary and unit.is_network_boundary and unit is not root:
            children = []
        else:
            children = list(unit.children)
        inputs: List[Unit] = []
        for child in children:
            child_unit = self._unit_of(child)
            if child_unit is not unit and child_unit not in inputs:
                inputs.append(child_unit)
        return inputs

    def _build(self, root: ComputationNodeBase, stop_at_boundary: bool) -> List[Unit]:
        order: List[Unit] = []
        seen: Set[Unit] = set()
        start = self._unit_of(root)
        seen.add(start)
        work = [(start, iter(self._inputs_of(start, root, stop_at_boundary)))]
        while work:
            unit, inputs = work[-1]
            descended = False
            for child in inputs:
                if child in seen:
                    continue
                seen.add(child)
                work.append((child, iter(self._inputs_of(child, root, stop_at_boundary))))
                descended = True
                break
            if descended:
                continue
            work.pop()
            order.append(unit)
        return order


def _flatten(units: Iterable[Unit]) -> Iterable[ComputationNodeBase]:
    for unit in units:
        if isinstance(unit, RecurrentLoop):
            yield from unit.nodes
        else:
            yield unit
