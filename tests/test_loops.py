import pytest

from compnet import BACKWARD, FORWARD, ComputationNetwork, ConfigurationError, MBLayout
from compnet.nodes import FutureValue, PastValue

from _graph_utils import Probe, make_input


def _three_node_cycle(delay_cls):
    x = make_input("x")
    delay = delay_cls("delay", rows=2)
    a = Probe("a", [x, delay])
    b = Probe("b", [a])
    delay.set_inputs(b)
    root = Probe("out", [b])
    return x, delay, a, b, root


@pytest.mark.parametrize("delay_cls, direction", [(PastValue, FORWARD), (FutureValue, BACKWARD)])
def test_single_cycle_forms_one_loop_with_delay_direction(delay_cls, direction):
    x, delay, a, b, root = _three_node_cycle(delay_cls)
    network = ComputationNetwork(mb_layout=MBLayout(1, 4))
    loops = network.form_recurrent_loops(root)
    assert len(loops) == 1
    loop = loops[0]
    assert set(loop.nodes) == {delay, a, b}
    assert len(loop) == 3
    assert loop.stepping_direction == direction
    assert all(node.is_part_of_loop for node in loop)
    assert not x.is_part_of_loop and not root.is_part_of_loop


def test_loop_order_starts_at_delay_and_follows_same_step_inputs():
    _, delay, a, b, root = _three_node_cycle(PastValue)
    network = ComputationNetwork()
    (loop,) = network.form_recurrent_loops(root)
    assert loop.nodes == [delay, a, b]


def test_forming_loops_twice_is_idempotent():
    _, delay, a, b, root = _three_node_cycle(PastValue)
    other_root = Probe("other", [a])
    network = ComputationNetwork()
    first = network.form_recurrent_loops(root)
    second = network.form_recurrent_loops(root)
    third = network.form_recurrent_loops(other_root)
    assert first == second == third
    assert len(network.recurrent_loops) == 1
    assert network.find_in_recurrent_loops(a) is first[0]
    assert network.find_in_recurrent_loops(root) is None


def test_acyclic_graph_has_no_loops():
    x = make_input("x")
    root = Probe("out", [Probe("mid", [x])])
    assert ComputationNetwork().form_recurrent_loops(root) == []


def test_self_loop_through_delay_is_a_loop():
    x = make_input("x")
    delay = PastValue("delay", rows=2)
    acc = Probe("acc", [x, delay])
    delay.set_inputs(acc)
    (loop,) = ComputationNetwork().form_recurrent_loops(acc)
    assert loop.nodes == [delay, acc]


def test_cycle_without_delay_is_configuration_error():
    x = make_input("x")
    a = Probe("a", [x])
    b = Probe("b", [a])
    a.set_inputs(x, b)
    with pytest.raises(ConfigurationError, match="without a delay"):
        ComputationNetwork().form_recurrent_loops(b)


def test_cycle_mixing_past_and_future_is_configuration_error():
    x = make_input("x")
    past = PastValue("past", rows=2)
    future = FutureValue("future", rows=2)
    a = Probe("a", [x, past])
    b = Probe("b", [a])
    future.set_inputs(b)
    past.set_inputs(future)
    root = Probe("out", [b])
    with pytest.raises(ConfigurationError, match="mixes past and future"):
        ComputationNetwork().form_recurrent_loops(root)


def test_delay_free_inner_cycle_is_rejected():
    x = make_input("x")
    delay = PastValue("delay", rows=2)
    a = Probe("a", [x, delay])
    b = Probe("b", [a])
    c = Probe("c", [b])
    a.set_inputs(x, delay, c)
    delay.set_inputs(c)
    with pytest.raises(ConfigurationError, match="does not pass through a delay"):
        ComputationNetwork().form_recurrent_loops(c)


def test_edited_cycle_replaces_its_old_loop():
    _, delay, a, b, root = _three_node_cycle(PastValue)
    network = ComputationNetwork()
    (old,) = network.form_recurrent_loops(root)
    b2 = Probe("b2", [b])
    delay.set_inputs(b2)
    (new,) = network.form_recurrent_loops(Probe("out2", [b2]))
    assert set(new.nodes) == {delay, a, b, b2}
    assert new.loop_id != old.loop_id
    assert network.recurrent_loops == [new]
    assert network.find_in_recurrent_loops(a) is new


def test_shrunk_cycle_releases_former_members():
    x, delay, a, b, root = _three_node_cycle(PastValue)
    network = ComputationNetwork()
    network.form_recurrent_loops(root)
    network.get_eval_order(root)
    delay.set_inputs(a)
    (loop,) = network.form_recurrent_loops(root)
    assert loop.nodes == [delay, a]
    assert network.recurrent_loops == [loop]
    assert not b.is_part_of_loop
    assert network.find_in_recurrent_loops(b) is None
    assert network.get_eval_order_nodes(root) == [x, delay, a, b, root]


def test_broken_cycle_drops_its_loop():
    x, delay, a, b, root = _three_node_cycle(PastValue)
    network = ComputationNetwork()
    network.form_recurrent_loops(root)
    delay.set_inputs(x)
    assert network.form_recurrent_loops(root) == []
    assert network.recurrent_loops == []
    assert not any(node.is_part_of_loop for node in (delay, a, b))
