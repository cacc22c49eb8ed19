from __future__ import annotations

from typing import Dict, Optional, Sequence

import numpy as np

from ..core.network import ComputationNetwork
from ..core.node import ComputationNodeBase


def gradients_for_network(
    network: ComputationNetwork,
    criterion: ComputationNodeBase,
    *,
    parameters: Optional[Sequence[ComputationNodeBase]] = None,
) -> Dict[str, np.ndarray]:
    """
    Run forward and backward propagation for ``criterion`` and collect gradients.

    Parameters
    ----------
    network:
        Network owning the loop registry and eval-order caches for ``criterion``.
    criterion:
        Scalar root node; its gradient is seeded with 1.
    parameters:
        Nodes whose gradients should be returned. Defaults to the learnable
        parameters reachable from ``criterion``.

    Returns
    -------
    grads:
        Mapping of node name to a copy of its accumulated gradient.
    """
    network.build_and_validate_subnetwork(criterion)
    network.compute_gradient(criterion)
    if parameters is None:
        parameters = network.learnable_parameter_nodes(criterion)
    grads: Dict[str, np.ndarray] = {}
    for node in parameters:
        gradient = getattr(node, "gradient", None)
        if gradient is None:
            raise KeyError(f"Gradient for '{node.name}' missing after back-propagation")
        grads[node.name] = np.array(gradient)
    return grads


def sgd_step(
    network: ComputationNetwork,
    criterion: ComputationNodeBase,
    learning_rate: float,
) -> float:
    """One plain gradient-descent update; returns the criterion before the update."""
    if learning_rate <= 0:
        raise ValueError("learning_rate must be positive")
    grads = gradients_for_network(network, criterion)
    loss = float(np.asarray(criterion.value)[0, 0])
    for node in network.learnable_parameter_nodes(criterion):
        node.set_value(node.value - learning_rate * grads[node.name])
    return loss
