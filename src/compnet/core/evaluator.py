from __future__ import annotations

import logging
from typing import Sequence

from .exceptions import LogicError
from .layout import FrameRange, FrameRangeIteration
from .loops import RecurrentLoop
from .node import ComputationNodeBase
from .scheduler import Unit

logger = logging.getLogger(__name__)


# Forward propagation -----------------------------------------------------------
def forward_pass(units: Sequence[Unit], *, trace: bool = False) -> None:
    """Evaluate ``units`` (an eval order) once.

    Plain nodes run as a single whole-minibatch "map"; recurrent loops run time
    position by time position. Only nodes whose function value is older than
    their inputs are recomputed.
    """
    for unit in units:
        if isinstance(unit, RecurrentLoop):
            unit.completed_evaluate = False

    for unit in units:
        if isinstance(unit, RecurrentLoop):
            if not unit.completed_evaluate and unit.is_func_value_older_than_inputs():
                if trace:
                    logger.debug("Evaluate %r", unit)
                _evaluate_loop(unit)
            else:
                for node in unit.nodes:
                    node.on_evaluate_end_iteration()
        elif unit.is_func_value_older_than_inputs():
            if trace:
                logger.debug("Evaluate node %s (%s)", unit.name, unit.operation_name)
            _evaluate_node(unit)
        else:
            # cached value is reused; still run the end-of-iteration checks
            unit.on_evaluate_end_iteration()


def _evaluate_loop(loop: RecurrentLoop) -> None:
    nodes = loop.nodes
    layout = nodes[0].get_mb_layout()
    for node in nodes:
        if layout is None or node.get_mb_layout() is not layout:
            raise LogicError(
                "Evaluate: all nodes inside a recurrent loop must have a layout that is "
                f"identical; mismatch found for nodes '{node.name}' vs. '{nodes[0].name}'"
            )
        node.update_function_mb_size()
        node.on_evaluate_begin_iteration()
    for node in nodes:
        node.validate(True)

    for fr in FrameRangeIteration(layout, loop.stepping_direction):
        for node in nodes:
            node.evaluate(fr)
            if node.requires_multi_seq_handling:
                node.mask_missing_values_to_zero(fr)
            node.update_eval_timestamp()

    for node in nodes:
        node.on_evaluate_end_iteration()
    loop.completed_evaluate = True


def _evaluate_node(node: ComputationNodeBase) -> None:
    fr = FrameRange(node.get_mb_layout())
    node.update_function_mb_size()
    if not node.is_leaf and not node.requires_pre_compute:
        node.validate(True)
    node.on_evaluate_begin_iteration()
    node.evaluate(fr)
    if node.requires_multi_seq_handling:
        node.mask_missing_values_to_zero(fr)
    node.on_evaluate_end_iteration()
    node.update_eval_timestamp()


# Back propagation --------------------------------------------------------------
def backward_pass(
    units: Sequence[Unit],
    num_parallel_sequences: int,
    *,
    trace: bool = False,
) -> None:
    """Accumulate gradients into children, walking ``units`` in reverse.

    Every parent has pushed its contribution into a node before that node
    propagates further down; inside a loop, later time positions are handled
    before earlier ones.
    """
    for unit in units:
        if isinstance(unit, RecurrentLoop):
            unit.completed_gradient = False

    for unit in reversed(units):
        if isinstance(unit, RecurrentLoop):
            if not unit.completed_gradient:
                if trace:
                    logger.debug("Compute gradient for %r", unit)
                _backprop_loop(unit, num_parallel_sequences)
            continue
        if trace:
            logger.debug("Compute gradient for node %s (%s)", unit.name, unit.operation_name)
        _backprop_node(unit)


def _backprop_loop(loop: RecurrentLoop, num_parallel_sequences: int) -> None:
    nodes = loop.nodes
    for node in nodes:
        node.on_compute_gradient_begin_iteration()
    layout = nodes[0].get_mb_layout()
    if layout is None:
        raise LogicError(f"Recurrent loop {loop.name} has no minibatch layout")
    for fr in reversed(FrameRangeIteration(layout, loop.stepping_direction)):
        for node in reversed(nodes):
            node.verify_num_parallel_sequences(num_parallel_sequences)
            if node.requires_multi_seq_handling:
                node.mask_missing_gradient_to_zero(fr)
            node.compute_gradient_for_children(fr)
    for node in nodes:
        node.on_compute_gradient_end_iteration()
    loop.completed_gradient = True


def _backprop_node(node: ComputationNodeBase) -> None:
    fr = FrameRange(node.get_mb_layout())
    node.on_compute_gradient_begin_iteration()
    if node.requires_multi_seq_handling:
        if node.is_part_of_loop:
            raise LogicError(
                f"Evaluate: Applying whole-MB operation to node '{node.name}' that "
                "participates in a loop. This is likely wrong."
            )
        node.mask_missing_gradient_to_zero(fr)
    node.compute_gradient_for_children(fr)
    node.on_compute_gradient_end_iteration()
