from __future__ import annotations

import logging
from typing import Iterable, List, Optional, Sequence

from .exceptions import ConfigurationError, LogicError
from .layout import MBLayout
from .node import ComputationNodeBase

logger = logging.getLogger(__name__)


def validate_subnetwork(
    root: ComputationNodeBase,
    nodes: Sequence[ComputationNodeBase],
    layout: MBLayout,
    input_nodes: Iterable[ComputationNodeBase],
    *,
    max_passes: Optional[int] = None,
) -> None:
    """Resolve output dimensions and layouts of ``nodes`` (in evaluation order).

    Non-final passes infer dimensions and are repeated until every node is
    stable and has all of its inputs resolved. One final pass then lets each
    node hard-check its inputs; any node that still changes at that point means
    the fixpoint was not reached.
    """
    for node in input_nodes:
        node.link_to_mb_layout(layout)
        # validated before the first minibatch was read
        if layout.num_cols == 0:
            layout.init(1, node.get_dims()[1])

    for node in nodes:
        node.visited = False
        node.needs_gradient = node.requires_parameter_update

    passes = 0
    todo = len(nodes)
    while todo > 0:
        passes += 1
        if max_passes is not None and passes > max_passes:
            raise LogicError(
                f"Validation of '{root.name}' did not converge within {max_passes} passes "
                f"({todo} nodes unresolved)"
            )
        logger.info(
            "Validating for node %s. %d nodes to process in pass %d.", root.name, todo, passes
        )
        todo = validate_nodes(nodes, is_final_validation_pass=False)

    logger.info("Validating for node %s, final verification.", root.name)
    todo = validate_nodes(nodes, is_final_validation_pass=True)
    if todo != 0:
        raise LogicError(
            "ValidateSubNetwork: final validation pass unexpectedly returned with work left to do"
        )

    for node in nodes:
        rows, cols = node.get_dims()
        # a layout-less node with columns but no rows is a placeholder
        if rows == 0 and (node.get_mb_layout() is not None or cols == 0):
            raise ConfigurationError(f"{node.name} operation has 0 elements")

    foreign = [node for node in nodes if node.get_mb_layout() is not layout]
    if foreign:
        logger.info(
            "%d out of %d nodes do not share the minibatch layout with the input data.",
            len(foreign),
            len(nodes),
        )


def validate_nodes(nodes: Sequence[ComputationNodeBase], is_final_validation_pass: bool) -> int:
    """Run one validation pass; returns how many nodes still need another one."""
    todo = 0
    for node in nodes:
        children = node.children
        has_visited_child = any(child.visited for child in children)
        all_children_visited = all(child.visited for child in children)
        valid = False
        if has_visited_child or node.is_leaf:
            old_layout = node.get_mb_layout()
            old_dims = node.get_dims()
            old_child_dims = _child_dims(children)
            old_image_layout = node.image_layout

            node.validate(is_final_validation_pass)
            node.visited = True
            logger.debug(
                "  %s %s -> [%d, %s%d]",
                node.operation_name,
                node.name,
                node.get_dims()[0],
                "MBSize " if node.get_mb_layout() is not None else "",
                node.get_dims()[1],
            )

            needs_gradient = node.needs_gradient
            for child in children:
                node.needs_gradient |= child.needs_gradient

            unchanged = (
                old_layout is node.get_mb_layout()
                and old_dims == node.get_dims()
                and old_child_dims == _child_dims(children)
                and old_image_layout == node.image_layout
                and needs_gradient == node.needs_gradient
            )
            if is_final_validation_pass and not unchanged:
                raise LogicError(
                    f"ValidateSubNetwork: {node.name} {node.operation_name} operation "
                    "changed during final validation."
                )
            if is_final_validation_pass and not all_children_visited:
                raise LogicError(
                    f"ValidateSubNetwork: {node.name} {node.operation_name} operation in final "
                    "validation although not all children were visited?"
                )
            valid = (all_children_visited and unchanged) or node.is_leaf
        if not valid:
            todo += 1
    return todo


def _child_dims(children: Sequence[ComputationNodeBase]) -> List[tuple]:
    return [child.get_dims() for child in children]
