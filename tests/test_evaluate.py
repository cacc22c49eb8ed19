import numpy as np
import pytest

from compnet import ComputationNetwork, EngineConfig, LogicError, MBLayout, NumericError
from compnet.nodes import FutureValue, InputValue, PastValue

from _graph_utils import Probe, build_accumulator_loop, make_input, reference_rnn_hidden


def _looped_graph(delay_cls=PastValue, steps=3):
    layout = MBLayout(1, steps)
    log = []
    x = make_input("x", layout=layout)
    y = make_input("y", layout=layout, seed=1)
    delay = delay_cls("delay", rows=2)
    a = Probe("a", [x, delay], log=log)
    b = Probe("b", [a], log=log)
    delay.set_inputs(b)
    head = Probe("head", [b], log=log)
    side = Probe("side", [y], log=log)
    top = Probe("top", [head, side], log=log)
    network = ComputationNetwork(mb_layout=layout)
    network.feature_nodes.extend([x, y])
    return network, log, dict(x=x, y=y, delay=delay, a=a, b=b, head=head, side=side, top=top)


def test_evaluate_requires_build():
    network, _, nodes = _looped_graph()
    with pytest.raises(LogicError, match="has not been called on this node"):
        network.evaluate(nodes["top"])


def test_rnn_forward_matches_reference(rnn):
    rnn.network.build_and_validate_subnetwork(rnn.criterion)
    rnn.network.evaluate(rnn.criterion)
    expected = reference_rnn_hidden(rnn)
    assert np.allclose(rnn.h.value, expected)
    assert np.isclose(rnn.criterion.value[0, 0], np.sum((rnn.label.value - expected) ** 2))


def test_second_evaluate_recomputes_nothing():
    network, log, nodes = _looped_graph()
    network.build_and_validate_subnetwork(nodes["top"])
    network.evaluate(nodes["top"])
    calls = {name: node.eval_calls for name, node in nodes.items() if isinstance(node, Probe)}
    assert calls == {"a": 3, "b": 3, "head": 1, "side": 1, "top": 1}
    hooks = nodes["top"].end_iteration_calls

    network.evaluate(nodes["top"])
    assert {name: nodes[name].eval_calls for name in calls} == calls
    # cached values still see the end-of-iteration hook
    assert nodes["top"].end_iteration_calls == hooks + 1
    assert nodes["a"].end_iteration_calls == 2


def test_new_input_only_recomputes_dependents():
    network, _, nodes = _looped_graph()
    network.build_and_validate_subnetwork(nodes["top"])
    network.evaluate(nodes["top"])
    nodes["y"].set_value(np.zeros((2, 3)))
    network.evaluate(nodes["top"])
    assert nodes["side"].eval_calls == 2
    assert nodes["top"].eval_calls == 2
    assert nodes["a"].eval_calls == 3
    assert nodes["head"].eval_calls == 1
    assert np.allclose(nodes["side"].value, 0.0)


@pytest.mark.parametrize("delay_cls, times", [(PastValue, [0, 1, 2]), (FutureValue, [2, 1, 0])])
def test_loop_runs_all_members_per_time_position(delay_cls, times):
    network, log, nodes = _looped_graph(delay_cls)
    network.build_and_validate_subnetwork(nodes["top"])
    network.evaluate(nodes["top"])
    loop_events = [event for event in log if event[1] in ("a", "b")]
    expected = [("eval", name, t) for t in times for name in ("a", "b")]
    assert loop_events == expected


def test_past_value_loop_accumulates_over_time():
    network, _, nodes = _looped_graph(PastValue)
    network.build_and_validate_subnetwork(nodes["top"])
    network.evaluate(nodes["top"])
    x = nodes["x"].value
    expected = np.cumsum(x, axis=1) + 0.1
    assert np.allclose(nodes["b"].value, expected)


def test_loop_members_with_different_layouts_fail():
    network, _, nodes = _looped_graph()
    network.build_and_validate_subnetwork(nodes["top"])
    nodes["b"].link_to_mb_layout(MBLayout(1, 3))
    with pytest.raises(LogicError, match="must have a layout that is identical"):
        network.evaluate(nodes["top"])


def test_check_finite_reports_nan_even_for_cached_values():
    layout = MBLayout(1, 2)
    x = InputValue("x", 1)
    x.set_value([[1.0, np.nan]])
    head = Probe("head", [x])
    network = ComputationNetwork(config=EngineConfig(check_finite=True), mb_layout=layout)
    network.build_and_validate_subnetwork(head)
    with pytest.raises(NumericError, match="Non-finite function value"):
        network.evaluate(head)


def test_multi_sequence_nodes_zero_padding_columns():
    layout = MBLayout(2, 3)
    layout.set_gap(1, 2)
    x = InputValue("x", 2)
    x.set_value(np.ones((2, 6)))
    masked = Probe("masked", [x])
    masked.requires_multi_seq_handling = True
    plain = Probe("plain", [x])
    top = Probe("top", [masked, plain])
    network = ComputationNetwork(mb_layout=layout)
    network.build_and_validate_subnetwork(top)
    network.evaluate(top)
    assert np.allclose(masked.value[:, 5], 0.0)
    assert np.allclose(masked.value[:, :5], 1.0)
    assert np.allclose(plain.value, 1.0)


def test_reset_timestamps_forces_recompute():
    network, _, nodes = _looped_graph()
    network.build_and_validate_subnetwork(nodes["top"])
    network.evaluate(nodes["top"])
    network.reset_eval_timestamps(nodes["top"])
    network.evaluate(nodes["top"])
    assert nodes["top"].eval_calls == 2
    assert nodes["a"].eval_calls == 6


def test_square_error_ignores_padding(rnn):
    rnn.layout.set_gap(1, 3)
    rnn.network.build_and_validate_subnetwork(rnn.criterion)
    rnn.network.evaluate(rnn.criterion)
    diff = rnn.label.value - rnn.h.value
    diff[:, 7] = 0.0
    assert np.isclose(rnn.criterion.value[0, 0], np.sum(diff**2))


def test_loop_member_values_are_masked_per_time_position():
    loop = build_accumulator_loop(sequences=2)
    loop.layout.set_gap(1, 2)
    loop.a.requires_multi_seq_handling = True
    loop.network.evaluate(loop.total)
    w = loop.w.value[:, 0]
    # sequence 1 is padding at t=2 (column 5); sequence 0 keeps accumulating
    assert np.allclose(loop.a.value[:, 5], 0.0)
    assert np.allclose(loop.b.value[:, 5], 0.0)
    assert np.allclose(loop.b.value[:, 4], 3 * w + 0.1)
    assert np.allclose(loop.b.value[:, 3], 2 * w + 0.1)
    expected_total = np.sum(6 * w + 0.3) + np.sum(3 * w + 0.2)
    assert np.isclose(loop.total.value[0, 0], expected_total)
