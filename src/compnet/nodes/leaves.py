from __future__ import annotations

from typing import Any, Optional

import numpy as np

from ..core.exceptions import LogicError
from ..core.layout import FrameRange
from ..core.node import ComputationNode


class InputValue(ComputationNode):
    """Minibatch input; the network links it to its layout during validation."""

    operation_name = "InputValue"
    is_input = True

    def __init__(self, name: str, rows: int, *, check_finite: bool = False):
        super().__init__(name, check_finite=check_finite)
        if rows <= 0:
            raise ValueError(f"InputValue '{name}' needs a positive row count")
        self.set_dims(rows, 0)

    def set_value(self, value: Any) -> None:
        array = np.array(value, dtype=np.float64, ndmin=2)
        if array.ndim != 2 or array.shape[0] != self.num_rows:
            raise ValueError(
                f"InputValue '{self.name}' expects {self.num_rows} rows, got shape {array.shape}"
            )
        self._value = array
        self.set_dims(*array.shape)
        self.update_eval_timestamp()

    def update_function_mb_size(self) -> None:
        # the minibatch supplier owns this buffer
        pass

    def validate(self, is_final_validation_pass: bool) -> None:
        layout = self.get_mb_layout()
        cols = layout.num_cols if layout is not None else self.num_cols
        if is_final_validation_pass and self._value is not None and self._value.shape[1] != cols:
            self._fail(
                f"value has {self._value.shape[1]} columns but the minibatch layout has {cols}"
            )
        self.set_dims(self.num_rows, cols)

    def evaluate(self, fr: FrameRange) -> None:
        pass

    def backprop_to_child(self, index: int, fr: FrameRange) -> None:
        raise LogicError(f"{self.operation_name} '{self.name}' has no inputs to propagate to")


class LearnableParameter(ComputationNode):
    """Fixed-shape model parameter, updated from outside between minibatches."""

    operation_name = "LearnableParameter"

    def __init__(
        self,
        name: str,
        rows: int,
        cols: int,
        *,
        value: Optional[Any] = None,
        init_scale: float = 0.05,
        seed: Optional[int] = None,
        trainable: bool = True,
        check_finite: bool = False,
    ):
        super().__init__(name, check_finite=check_finite)
        if rows <= 0 or cols <= 0:
            raise ValueError(f"LearnableParameter '{name}' needs positive dimensions")
        self.requires_parameter_update = trainable
        self.set_dims(rows, cols)
        if value is None:
            rng = np.random.default_rng(seed)
            value = rng.uniform(-init_scale, init_scale, size=(rows, cols))
        self.set_value(value)

    def set_value(self, value: Any) -> None:
        array = np.array(value, dtype=np.float64, ndmin=2)
        if array.shape != self.get_dims():
            raise ValueError(
                f"LearnableParameter '{self.name}' expects shape {self.get_dims()}, got {array.shape}"
            )
        self._value = array
        self.update_eval_timestamp()

    def update_function_mb_size(self) -> None:
        pass

    def validate(self, is_final_validation_pass: bool) -> None:
        self.link_to_mb_layout(None)

    def evaluate(self, fr: FrameRange) -> None:
        pass

    def backprop_to_child(self, index: int, fr: FrameRange) -> None:
        raise LogicError(f"{self.operation_name} '{self.name}' has no inputs to propagate to")
