import numpy as np
import pytest

from compnet import gradients_for_network, sgd_step


def test_gradients_for_network_returns_parameter_gradients(rnn):
    grads = gradients_for_network(rnn.network, rnn.criterion)
    assert sorted(grads) == ["U", "W", "b"]
    assert grads["W"].shape == rnn.W.value.shape
    assert grads["b"].shape == (3, 1)
    # copies, not views into the node buffers
    grads["W"][...] = 0.0
    assert not np.allclose(rnn.W.gradient, 0.0)


def test_gradients_for_selected_parameters(rnn):
    grads = gradients_for_network(rnn.network, rnn.criterion, parameters=[rnn.U])
    assert list(grads) == ["U"]


def test_sgd_step_reduces_loss(rnn):
    losses = [sgd_step(rnn.network, rnn.criterion, learning_rate=0.02) for _ in range(20)]
    assert losses[-1] < losses[0]


def test_sgd_step_rejects_non_positive_learning_rate(rnn):
    with pytest.raises(ValueError, match="learning_rate"):
        sgd_step(rnn.network, rnn.criterion, learning_rate=0.0)
