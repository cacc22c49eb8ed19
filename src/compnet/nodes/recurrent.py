from __future__ import annotations

from typing import Iterable, Sequence

from ..core.exceptions import LogicError
from ..core.layout import BACKWARD, FORWARD, FrameRange, MBLayout
from ..core.node import ComputationNode, ComputationNodeBase


class DelayedValueNode(ComputationNode):
    """Reads its input ``time_step`` positions earlier (past) or later (future).

    Across sequence boundaries and at the edges of the minibatch the node
    outputs ``initial_state`` instead. The input is usually attached after
    construction with ``set_inputs`` since it closes a cycle.
    """

    is_delay = True

    def __init__(
        self,
        name: str,
        inputs: Sequence[ComputationNodeBase] = (),
        *,
        rows: int = 0,
        time_step: int = 1,
        initial_state: float = 0.1,
        check_finite: bool = False,
    ):
        super().__init__(name, inputs, check_finite=check_finite)
        if time_step <= 0:
            raise ValueError(f"{self.operation_name} '{name}' needs a positive time_step")
        self.declared_rows = int(rows)
        self.time_step = int(time_step)
        self.initial_state = float(initial_state)

    @property
    def offset(self) -> int:
        return -self.stepping_direction * self.time_step

    def validate(self, is_final_validation_pass: bool) -> None:
        if len(self.children) != 1:
            self._fail(f"expects 1 input, got {len(self.children)}")
        self.infer_mb_layout_from_inputs()
        rows, cols = self.children[0].get_dims()
        if is_final_validation_pass:
            if self.get_mb_layout() is None:
                self._fail("a delay node requires a minibatch input")
            if self.declared_rows and rows != self.declared_rows:
                self._fail(f"declared {self.declared_rows} rows but the input has {rows}")
        self.set_dims(rows or self.declared_rows, self._layout_cols(cols))

    def _layout(self) -> MBLayout:
        layout = self.get_mb_layout()
        if layout is None:
            raise LogicError(f"{self.operation_name} '{self.name}' has no minibatch layout")
        return layout

    def _times(self, fr: FrameRange, layout: MBLayout) -> Iterable[int]:
        if fr.t is None:
            return range(layout.num_time_steps)
        return (fr.t,)

    def evaluate(self, fr: FrameRange) -> None:
        layout = self._layout()
        width = layout.num_parallel_sequences
        source = self.children[0].value
        out = self.value
        for t in self._times(fr, layout):
            for s in range(width):
                column = t * width + s
                if layout.crosses_boundary(s, t, self.offset):
                    out[:, column] = self.initial_state
                else:
                    out[:, column] = source[:, (t + self.offset) * width + s]

    def backprop_to_child(self, index: int, fr: FrameRange) -> None:
        layout = self._layout()
        width = layout.num_parallel_sequences
        gradient = self.ensure_gradient()
        target = self.children[index].ensure_gradient()
        for t in self._times(fr, layout):
            for s in range(width):
                if layout.crosses_boundary(s, t, self.offset):
                    continue
                target[:, (t + self.offset) * width + s] += gradient[:, t * width + s]


class PastValue(DelayedValueNode):
    operation_name = "PastValue"
    stepping_direction = FORWARD


class FutureValue(DelayedValueNode):
    operation_name = "FutureValue"
    stepping_direction = BACKWARD
