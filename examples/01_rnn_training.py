import logging

import numpy as np

from compnet import ComputationNetwork, MBLayout, sgd_step
from compnet.nodes import InputValue, LearnableParameter, PastValue, Plus, SquareError, Tanh, Times

logging.basicConfig(level=logging.INFO, format="%(name)s: %(message)s")

# Two parallel sequences of 6 steps; the second one ends after step 3
layout = MBLayout(2, 6)
layout.set_sequence_start(0, 0)
layout.set_sequence_start(1, 0)
layout.set_sequence_end(1, 3)
layout.set_gap(1, 4)

hidden, features = 4, 3
x = InputValue("x", features)
target = InputValue("target", hidden)
W = LearnableParameter("W", hidden, hidden, init_scale=0.3, seed=0)
U = LearnableParameter("U", hidden, features, init_scale=0.3, seed=1)
b = LearnableParameter("b", hidden, 1, init_scale=0.1, seed=2)
prev = PastValue("prev", rows=hidden, initial_state=0.0)
pre = Plus("pre", [Times("Wh", [W, prev]), Times("Ux", [U, x])])
h = Tanh("h", [Plus("biased", [pre, b])])
prev.set_inputs(h)
criterion = SquareError("criterion", [target, h])

net = ComputationNetwork(mb_layout=layout)
net.feature_nodes.append(x)
net.final_criterion_nodes.append(criterion)
net.output_nodes.append(h)

rng = np.random.default_rng(0)
x.set_value(rng.normal(size=(features, layout.num_cols)))
target.set_value(np.tanh(rng.normal(size=(hidden, layout.num_cols))))

net.validate_network()
net.build_and_validate_subnetwork(criterion)
net.describe_computation_tree(criterion)
for step in range(50):
    loss = sgd_step(net, criterion, learning_rate=0.02)
    if step % 10 == 0:
        print(f"step {step:2d}  loss {loss:.4f}")
