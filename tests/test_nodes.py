import numpy as np
import pytest

from compnet import ComputationNetwork, FrameRange, LogicError, MBLayout, ValidationError
from compnet.nodes import (
    ElementTimes,
    FutureValue,
    InputValue,
    LearnableParameter,
    Minus,
    Plus,
    ReLU,
    Sigmoid,
    SumElements,
    Tanh,
)
from compnet.nodes.elementwise import _UnaryMap


def _numeric_gradient(network, root, param, eps=1e-6):
    original = param.value.copy()
    grad = np.zeros_like(original)
    for index in np.ndindex(*original.shape):
        shifted = original.copy()
        shifted[index] += eps
        param.set_value(shifted)
        network.evaluate(root)
        upper = root.value[0, 0]
        shifted[index] -= 2 * eps
        param.set_value(shifted)
        network.evaluate(root)
        lower = root.value[0, 0]
        grad[index] = (upper - lower) / (2 * eps)
    param.set_value(original)
    return grad


def _check_gradients(root, params):
    network = ComputationNetwork()
    network.build_and_validate_subnetwork(root)
    network.compute_gradient(root)
    analytic = {param.name: param.gradient.copy() for param in params}
    for param in params:
        numeric = _numeric_gradient(network, root, param)
        assert np.allclose(analytic[param.name], numeric, rtol=1e-4, atol=1e-6), param.name


@pytest.mark.parametrize("op", [Plus, Minus, ElementTimes])
def test_binary_gradients(op):
    a = LearnableParameter("a", 2, 3, seed=0, init_scale=1.0)
    b = LearnableParameter("b", 2, 3, seed=1, init_scale=1.0)
    _check_gradients(SumElements("total", [op("out", [a, b])]), [a, b])


def test_plus_broadcasts_column_vector():
    a = LearnableParameter("a", 2, 3, seed=0, init_scale=1.0)
    bias = LearnableParameter("bias", 2, 1, seed=1, init_scale=1.0)
    out = Plus("out", [a, bias])
    root = SumElements("total", [ElementTimes("sq", [out, out])])
    _check_gradients(root, [a, bias])
    assert out.get_dims() == (2, 3)


@pytest.mark.parametrize("op", [Tanh, Sigmoid, ReLU])
def test_unary_gradients(op):
    # keep away from the ReLU kink
    a = LearnableParameter("a", 3, 2, value=[[0.5, -0.7], [1.2, -0.3], [-1.5, 0.9]])
    _check_gradients(SumElements("total", [op("out", [a])]), [a])


def test_binary_shape_mismatch_fails_in_final_pass():
    a = LearnableParameter("a", 2, 3, seed=0)
    b = LearnableParameter("b", 3, 3, seed=1)
    root = SumElements("total", [Plus("out", [a, b])])
    network = ComputationNetwork()
    with pytest.raises(ValidationError, match="row dimensions 2 and 3 are incompatible"):
        network.build_and_validate_subnetwork(root)


def test_future_value_reads_next_step_and_respects_sequence_end():
    layout = MBLayout(2, 3)
    layout.set_sequence_end(0, 1)
    x = InputValue("x", 1)
    x.set_value([[0.0, 10.0, 1.0, 11.0, 2.0, 12.0]])
    future = FutureValue("future", [x], rows=1, initial_state=-1.0)
    network = ComputationNetwork(mb_layout=layout)
    network.build_and_validate_subnetwork(future)
    network.evaluate(future)
    # sequence 0 ends at t=1, so t=1 does not see t=2
    assert np.allclose(future.value, [[1.0, 11.0, -1.0, 12.0, -1.0, -1.0]])


def test_unary_map_requires_function_and_derivative():
    class Halve(_UnaryMap):
        operation_name = "Halve"

        def function(self, x):
            return x / 2

    a = LearnableParameter("a", 2, 2, seed=0)
    with pytest.raises(TypeError, match="derivative"):
        Halve("half", [a])


def test_leaves_have_no_inputs_to_propagate_to():
    a = LearnableParameter("a", 2, 2, seed=0)
    with pytest.raises(LogicError, match="has no inputs"):
        a.backprop_to_child(0, FrameRange())
