from __future__ import annotations

from typing import Sequence

import numpy as np

from ..core.layout import FrameRange
from ..core.node import ComputationNode, ComputationNodeBase


class SumElements(ComputationNode):
    """Scalar sum over every element of its input."""

    operation_name = "SumElements"

    def validate(self, is_final_validation_pass: bool) -> None:
        if len(self.children) != 1:
            self._fail(f"expects 1 input, got {len(self.children)}")
        self.link_to_mb_layout(None)
        if is_final_validation_pass and self.children[0].get_dims()[0] == 0:
            self._fail(f"input '{self.children[0].name}' has no rows")
        self.set_dims(1, 1)

    def evaluate(self, fr: FrameRange) -> None:
        self.value[0, 0] = float(np.sum(self.children[0].value))

    def backprop_to_child(self, index: int, fr: FrameRange) -> None:
        self.children[index].ensure_gradient()[...] += self.ensure_gradient()[0, 0]


class SquareError(ComputationNode):
    """Training criterion ``sum((label - prediction) ** 2)`` over non-padding columns."""

    operation_name = "SquareError"

    def __init__(self, name: str, inputs: Sequence[ComputationNodeBase] = (), **kwargs):
        super().__init__(name, inputs, **kwargs)
        self.requires_multi_seq_handling = True

    def validate(self, is_final_validation_pass: bool) -> None:
        if len(self.children) != 2:
            self._fail(f"expects 2 inputs, got {len(self.children)}")
        self.link_to_mb_layout(None)
        label, prediction = self.children
        if is_final_validation_pass and label.get_dims() != prediction.get_dims():
            self._fail(
                f"label {label.get_dims()} and prediction {prediction.get_dims()} differ in shape"
            )
        self.set_dims(1, 1)

    def _masked_difference(self) -> np.ndarray:
        label, prediction = self.children
        difference = label.value - prediction.value
        layout = label.get_mb_layout()
        if layout is not None and layout.has_gaps:
            difference = difference.copy()
            difference[:, layout.gap_columns(FrameRange(layout))] = 0.0
        return difference

    def evaluate(self, fr: FrameRange) -> None:
        difference = self._masked_difference()
        self.value[0, 0] = float(np.sum(difference * difference))

    def backprop_to_child(self, index: int, fr: FrameRange) -> None:
        sign = 2.0 if index == 0 else -2.0
        gradient = sign * self.ensure_gradient()[0, 0] * self._masked_difference()
        self.children[index].ensure_gradient()[...] += gradient
