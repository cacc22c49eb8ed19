from __future__ import annotations

import logging
from typing import Any, Dict, Iterator, List, Optional, Set

import numpy as np

from .config import EngineConfig
from .evaluator import backward_pass, forward_pass
from .exceptions import ConfigurationError, LogicError
from .layout import MBLayout
from .loops import RecurrentLoop, RecurrentLoopRegistry
from .node import ComputationNodeBase
from .scheduler import EvalOrderCache, Unit
from .validator import validate_subnetwork

logger = logging.getLogger(__name__)


class ComputationNetwork:
    """Owns the execution state of one computation graph.

    Nodes stay owned by whoever built the graph; the network only keeps
    references for the root categories, the recurrent loops it found, the
    memoized eval orders and the set of roots that were built and validated.
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        mb_layout: Optional[MBLayout] = None,
    ):
        self.config = (config or EngineConfig()).normalized()
        self.mb_layout = mb_layout if mb_layout is not None else MBLayout()
        self._nodes: Dict[str, ComputationNodeBase] = {}
        self.feature_nodes: List[ComputationNodeBase] = []
        self.final_criterion_nodes: List[ComputationNodeBase] = []
        self.output_nodes: List[ComputationNodeBase] = []
        self.evaluation_nodes: List[ComputationNodeBase] = []

        self._loops = RecurrentLoopRegistry()
        self._eval_orders = EvalOrderCache(self._loops)
        self._built: Set[ComputationNodeBase] = set()
        self._inputs: Dict[ComputationNodeBase, List[ComputationNodeBase]] = {}
        self._learnables: Dict[ComputationNodeBase, List[ComputationNodeBase]] = {}

    # Node registry ------------------------------------------------------------
    def add(self, *nodes: ComputationNodeBase) -> ComputationNodeBase:
        """Register nodes by name; returns the last one for chaining."""
        if not nodes:
            raise ValueError("add() requires at least one node")
        for node in nodes:
            existing = self._nodes.get(node.name)
            if existing is not None and existing is not node:
                raise ValueError(f"Duplicate node name '{node.name}'")
            self._nodes[node.name] = node
        return nodes[-1]

    def node(self, name: str) -> ComputationNodeBase:
        try:
            return self._nodes[name]
        except KeyError:
            raise KeyError(f"Unknown node '{name}'") from None

    def __contains__(self, name: str) -> bool:
        return name in self._nodes

    def __iter__(self) -> Iterator[ComputationNodeBase]:
        return iter(self._nodes.values())

    def get_num_parallel_sequences(self) -> int:
        return self.mb_layout.num_parallel_sequences

    # Loops and ordering -------------------------------------------------------
    @property
    def recurrent_loops(self) -> List[RecurrentLoop]:
        return list(self._loops)

    def form_recurrent_loops(self, root: ComputationNodeBase) -> List[RecurrentLoop]:
        loops, changed = self._loops.form(root)
        if changed:
            # cached orders collapse the loops that existed when they were built
            self._eval_orders.invalidate()
        logger.info("%d recurrent loop(s) reachable from node %s", len(loops), root.name)
        return loops

    def find_in_recurrent_loops(self, node: ComputationNodeBase) -> Optional[RecurrentLoop]:
        return self._loops.find(node)

    def get_eval_order(self, root: ComputationNodeBase, stop_at_boundary: bool = False) -> List[Unit]:
        return self._eval_orders.get(root, stop_at_boundary)

    def get_eval_order_nodes(
        self, root: ComputationNodeBase, stop_at_boundary: bool = False
    ) -> List[ComputationNodeBase]:
        return self._eval_orders.nodes(root, stop_at_boundary)

    def get_gradient_calc_order(self, root: ComputationNodeBase) -> List[Unit]:
        return list(reversed(self._eval_orders.get(root)))

    def invalidate_caches(self) -> None:
        """Forget loops, eval orders and built roots after the graph was edited."""
        self._eval_orders.invalidate()
        self._loops.clear()
        self._built.clear()
        self._inputs.clear()
        self._learnables.clear()

    # Build memoizer -----------------------------------------------------------
    def collect_input_and_learnable_parameters(self, root: ComputationNodeBase) -> None:
        nodes = self.get_eval_order_nodes(root)
        self._inputs[root] = [node for node in nodes if node.is_input]
        self._learnables[root] = sorted(
            (node for node in nodes if node.requires_parameter_update),
            key=lambda node: node.name,
        )

    def input_nodes(self, root: ComputationNodeBase) -> List[ComputationNodeBase]:
        if root not in self._inputs:
            return [node for node in self.get_eval_order_nodes(root) if node.is_input]
        return list(self._inputs[root])

    def learnable_parameter_nodes(self, root: ComputationNodeBase) -> List[ComputationNodeBase]:
        if root not in self._learnables:
            self.collect_input_and_learnable_parameters(root)
        return list(self._learnables[root])

    def build_and_validate_subnetwork(self, root: ComputationNodeBase) -> None:
        """Form loops, collect inputs and validate ``root`` once; later calls are no-ops."""
        if root in self._built:
            return
        self.form_recurrent_loops(root)
        self.collect_input_and_learnable_parameters(root)
        self.validate_subnetwork(root)
        self._built.add(root)

    def built_and_validated_subnetwork(self, root: ComputationNodeBase) -> bool:
        return root in self._built

    # Validation ---------------------------------------------------------------
    def validate_subnetwork(self, root: ComputationNodeBase) -> None:
        nodes = self.get_eval_order_nodes(root)
        if self.config.check_finite:
            for node in nodes:
                node.check_finite = True
        validate_subnetwork(
            root,
            nodes,
            self.mb_layout,
            self.input_nodes(root),
            max_passes=self.config.max_validation_passes,
        )

    def validate_network(
        self,
        allow_fragment: Optional[bool] = None,
        allow_no_criterion: Optional[bool] = None,
    ) -> None:
        """Validate every criterion, output and evaluation root."""
        if allow_fragment is None:
            allow_fragment = self.config.allow_fragment
        if allow_no_criterion is None:
            allow_no_criterion = self.config.allow_no_criterion

        if not self.feature_nodes and not allow_fragment:
            raise ConfigurationError("No Feature nodes specified")

        if self.final_criterion_nodes:
            self._validate_roots(self.final_criterion_nodes, allow_fragment)
        elif not allow_no_criterion and not allow_fragment:
            raise ConfigurationError("No Criterion nodes specified")

        if self.output_nodes:
            self._validate_roots(self.output_nodes, allow_fragment)
        elif not allow_fragment:
            raise ConfigurationError("No Output nodes specified")

        self._validate_roots(self.evaluation_nodes, allow_fragment)

    def _validate_roots(self, roots: List[ComputationNodeBase], allow_fragment: bool) -> None:
        for root in roots:
            if not allow_fragment:
                self.form_recurrent_loops(root)
            self.validate_subnetwork(root)

    # Execution ----------------------------------------------------------------
    def evaluate(self, root: ComputationNodeBase) -> None:
        """Forward-propagate the minibatch up to ``root``."""
        if not self.built_and_validated_subnetwork(root):
            raise LogicError(
                f"Evaluate for node {root.name} {root.operation_name}: "
                "build_and_validate_subnetwork() has not been called on this node."
            )
        forward_pass(self.get_eval_order(root), trace=self.config.trace)

    def compute_gradient(
        self,
        root: ComputationNodeBase,
        reset_to_one: bool = True,
        root_gradient: Optional[Any] = None,
        clear_gradient: bool = True,
        reset_timestamp_after_computation: Optional[bool] = None,
    ) -> None:
        """Forward-propagate, then back-propagate from ``root``.

        ``reset_to_one`` seeds every element of the root gradient with 1;
        ``root_gradient`` seeds it with a caller-supplied array of the root's
        shape instead. With neither, whatever gradient already sits in the root
        is propagated.
        """
        if reset_to_one and root_gradient is not None:
            raise ValueError("reset_to_one and root_gradient are mutually exclusive")
        if reset_timestamp_after_computation is None:
            reset_timestamp_after_computation = self.config.reset_timestamp_after_computation

        self.evaluate(root)

        if clear_gradient:
            self.clear_gradient_for_all_nodes(root)

        if reset_to_one:
            root.set_gradient(np.ones(root.get_dims()))
        elif root_gradient is not None:
            seed = np.array(root_gradient, dtype=np.float64, ndmin=2)
            if seed.shape != root.get_dims():
                raise ValueError(
                    f"root_gradient of shape {seed.shape} does not match node "
                    f"'{root.name}' of shape {root.get_dims()}"
                )
            root.set_gradient(seed)

        backward_pass(
            self.get_eval_order(root),
            self.get_num_parallel_sequences(),
            trace=self.config.trace,
        )

        # gradient storage may share memory with function values
        if reset_timestamp_after_computation:
            self.reset_eval_timestamps(root)

    def clear_gradient_for_all_nodes(self, root: ComputationNodeBase) -> None:
        for node in self.get_eval_order_nodes(root):
            node.clear_gradient()

    def reset_eval_timestamps(self, root: Optional[ComputationNodeBase] = None) -> None:
        """Mark function values stale so the next evaluate() recomputes them."""
        nodes = self._nodes.values() if root is None else self.get_eval_order_nodes(root)
        for node in nodes:
            node.reset_eval_timestamp()

    # Diagnostics --------------------------------------------------------------
    def describe_computation_tree(self, root: ComputationNodeBase, forward: bool = True) -> str:
        units = self.get_eval_order(root) if forward else self.get_gradient_calc_order(root)
        title = "Forward Computation Node Order" if forward else "Gradient Computation Node Order"
        lines = [f"{title} for {root.name}:"]
        if not units:
            lines.append("  (empty)")
        for unit in units:
            if isinstance(unit, RecurrentLoop):
                lines.append(f"  {unit!r}")
                members = unit.nodes if forward else list(reversed(unit.nodes))
                lines.extend(f"    {_describe_node(node)}" for node in members)
            else:
                lines.append(f"  {_describe_node(unit)}")
        text = "\n".join(lines)
        logger.info("%s", text)
        return text


def _describe_node(node: ComputationNodeBase) -> str:
    rows, cols = node.get_dims()
    mb = "MBSize " if node.get_mb_layout() is not None else ""
    return f"{node.name} = {node.operation_name}() -> [{rows}, {mb}{cols}]"
