from __future__ import annotations

import abc
import logging
from typing import Any, List, Optional, Sequence, Tuple

import numpy as np

from .exceptions import LogicError, NumericError, ValidationError
from .layout import FrameRange, MBLayout

logger = logging.getLogger(__name__)

Dims = Tuple[int, int]


class _TimestampCounter:
    """Process-wide monotone counter shared by every node."""

    def __init__(self) -> None:
        self.current = 0

    def bump(self) -> int:
        self.current += 1
        return self.current


_TIMESTAMPS = _TimestampCounter()


class ComputationNodeBase(abc.ABC):
    """
    Capability surface the engine needs from a graph vertex.

    The engine only ever goes through these methods and flags; the single place
    it looks at the kind of a node is ``is_delay``, which exempts delayed-read
    operators from the staleness check of a recurrent loop.
    """

    operation_name = "Node"
    is_delay = False
    stepping_direction: Optional[int] = None
    is_input = False
    requires_pre_compute = False
    requires_parameter_update = False

    def __init__(self, name: str, inputs: Sequence["ComputationNodeBase"] = ()):
        self.name = name
        self.children: List[ComputationNodeBase] = list(inputs)
        self.needs_gradient = False
        self.visited = False
        self.is_part_of_loop = False
        self.requires_multi_seq_handling = False
        self.is_network_boundary = False
        self.image_layout: Tuple[Any, ...] = ()
        self.check_finite = False
        self.eval_timestamp = _TIMESTAMPS.current

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r})"

    # Structure ----------------------------------------------------------------
    def set_inputs(self, *inputs: "ComputationNodeBase") -> None:
        self.children = list(inputs)

    @property
    def is_leaf(self) -> bool:
        return not self.children

    @abc.abstractmethod
    def get_mb_layout(self) -> Optional[MBLayout]: ...

    @abc.abstractmethod
    def link_to_mb_layout(self, layout: Optional[MBLayout]) -> None: ...

    @abc.abstractmethod
    def get_dims(self) -> Dims: ...

    # Lifecycle hooks ----------------------------------------------------------
    def on_evaluate_begin_iteration(self) -> None:
        pass

    def on_evaluate_end_iteration(self) -> None:
        pass

    def on_compute_gradient_begin_iteration(self) -> None:
        pass

    def on_compute_gradient_end_iteration(self) -> None:
        pass

    # Compute ------------------------------------------------------------------
    @abc.abstractmethod
    def update_function_mb_size(self) -> None: ...

    @abc.abstractmethod
    def evaluate(self, fr: FrameRange) -> None: ...

    @abc.abstractmethod
    def compute_gradient_for_children(self, fr: FrameRange) -> None: ...

    @abc.abstractmethod
    def validate(self, is_final_validation_pass: bool) -> None: ...

    @abc.abstractmethod
    def mask_missing_values_to_zero(self, fr: FrameRange) -> None: ...

    @abc.abstractmethod
    def mask_missing_gradient_to_zero(self, fr: FrameRange) -> None: ...

    @abc.abstractmethod
    def clear_gradient(self) -> None: ...

    @abc.abstractmethod
    def set_gradient(self, gradient: Any) -> None: ...

    # Staleness ----------------------------------------------------------------
    def is_func_value_older_than_inputs(self) -> bool:
        return any(child.eval_timestamp >= self.eval_timestamp for child in self.children)

    def update_eval_timestamp(self) -> None:
        self.eval_timestamp = _TIMESTAMPS.bump()

    def reset_eval_timestamp(self) -> None:
        self.eval_timestamp = _TIMESTAMPS.current

    # Sequences ----------------------------------------------------------------
    def get_num_parallel_sequences(self) -> int:
        layout = self.get_mb_layout()
        return 1 if layout is None else layout.num_parallel_sequences

    def verify_num_parallel_sequences(self, expected: int) -> None:
        layout = self.get_mb_layout()
        if layout is not None and layout.num_parallel_sequences != expected:
            raise LogicError(
                f"Node '{self.name}' has {layout.num_parallel_sequences} parallel "
                f"sequences, expected {expected}"
            )


class ComputationNode(ComputationNodeBase):
    """NumPy implementation of the node contract.

    Function values and gradients are 2-D arrays. Minibatch nodes carry a layout
    and ``cols == layout.num_cols``; all other nodes have fixed dimensions.
    """

    def __init__(
        self,
        name: str,
        inputs: Sequence[ComputationNodeBase] = (),
        *,
        check_finite: bool = False,
    ):
        super().__init__(name, inputs)
        self.check_finite = check_finite
        self._mb_layout: Optional[MBLayout] = None
        self._dims: Dims = (0, 0)
        self._value: Optional[np.ndarray] = None
        self._gradient: Optional[np.ndarray] = None

    # Layout and dimensions ----------------------------------------------------
    def get_mb_layout(self) -> Optional[MBLayout]:
        return self._mb_layout

    def link_to_mb_layout(self, layout: Optional[MBLayout]) -> None:
        self._mb_layout = layout

    @property
    def has_mb_layout(self) -> bool:
        return self._mb_layout is not None

    def get_dims(self) -> Dims:
        return self._dims

    @property
    def num_rows(self) -> int:
        return self._dims[0]

    @property
    def num_cols(self) -> int:
        return self._dims[1]

    def set_dims(self, rows: int, cols: int) -> None:
        self._dims = (int(rows), int(cols))

    def infer_mb_layout_from_inputs(self) -> None:
        layout = None
        for child in self.children:
            layout = child.get_mb_layout()
            if layout is not None:
                break
        self._mb_layout = layout

    def _layout_cols(self, fallback: int) -> int:
        if self._mb_layout is not None:
            return self._mb_layout.num_cols
        return fallback

    # Buffers ------------------------------------------------------------------
    @property
    def value(self) -> np.ndarray:
        if self._value is None:
            raise LogicError(f"Node '{self.name}' has no function value yet")
        return self._value

    @property
    def gradient(self) -> Optional[np.ndarray]:
        return self._gradient

    def set_gradient(self, gradient: Any) -> None:
        self._gradient = np.array(gradient, dtype=np.float64, ndmin=2)

    def clear_gradient(self) -> None:
        if self._value is None:
            self._gradient = None
            return
        self._gradient = np.zeros_like(self._value)

    def ensure_gradient(self) -> np.ndarray:
        if self._gradient is None:
            self.clear_gradient()
        if self._gradient is None:
            raise LogicError(f"Node '{self.name}' has no gradient buffer")
        if self._value is not None and self._gradient.shape != self._value.shape:
            raise LogicError(
                f"Gradient of node '{self.name}' has shape {self._gradient.shape} "
                f"but its function value has shape {self._value.shape}"
            )
        return self._gradient

    def update_function_mb_size(self) -> None:
        rows, cols = self.get_dims()
        cols = self._layout_cols(cols)
        if self._value is None or self._value.shape != (rows, cols):
            logger.debug("Allocating function value of %s as [%d, %d]", self.name, rows, cols)
            self._value = np.zeros((rows, cols), dtype=np.float64)

    def value_for(self, fr: FrameRange) -> np.ndarray:
        if self._mb_layout is None:
            return self.value
        return self.value[:, fr.column_slice()]

    def gradient_for(self, fr: FrameRange) -> np.ndarray:
        gradient = self.ensure_gradient()
        if self._mb_layout is None:
            return gradient
        return gradient[:, fr.column_slice()]

    # Masking ------------------------------------------------------------------
    def _mask_columns(self, buffer: Optional[np.ndarray], fr: FrameRange) -> None:
        layout = self._mb_layout
        if buffer is None or layout is None or not layout.has_gaps:
            return
        block = buffer[:, fr.column_slice()]
        block[:, layout.gap_columns(fr)] = 0.0

    def mask_missing_values_to_zero(self, fr: FrameRange) -> None:
        self._mask_columns(self._value, fr)

    def mask_missing_gradient_to_zero(self, fr: FrameRange) -> None:
        self._mask_columns(self._gradient, fr)

    # Hooks --------------------------------------------------------------------
    def on_evaluate_end_iteration(self) -> None:
        if self.check_finite and self._value is not None and not np.all(np.isfinite(self._value)):
            raise NumericError("Non-finite function value", node=self.name)

    # Gradient dispatch --------------------------------------------------------
    def compute_gradient_for_children(self, fr: FrameRange) -> None:
        for index, child in enumerate(self.children):
            if child.needs_gradient:
                self.backprop_to_child(index, fr)

    @abc.abstractmethod
    def backprop_to_child(self, index: int, fr: FrameRange) -> None:
        """Accumulate this node's gradient for ``fr`` into input ``index``."""

    # Validation helpers -------------------------------------------------------
    def validate(self, is_final_validation_pass: bool) -> None:
        self.infer_mb_layout_from_inputs()

    def _fail(self, message: str) -> None:
        raise ValidationError(message, node=self.name, operation=self.operation_name)

    def _validate_unary_map(self, is_final_validation_pass: bool) -> None:
        self.infer_mb_layout_from_inputs()
        rows, cols = self.children[0].get_dims()
        self.set_dims(rows, self._layout_cols(cols))
        if is_final_validation_pass and rows == 0:
            self._fail(f"input '{self.children[0].name}' has no rows")

    def _validate_binary_zip(self, is_final_validation_pass: bool) -> None:
        self.infer_mb_layout_from_inputs()
        (rows_a, cols_a), (rows_b, cols_b) = (child.get_dims() for child in self.children)
        rows = max(rows_a, rows_b)
        cols = max(cols_a, cols_b)
        if is_final_validation_pass:
            if rows_a not in (rows, 1) or rows_b not in (rows, 1):
                self._fail(f"row dimensions {rows_a} and {rows_b} are incompatible")
            if cols_a not in (cols, 1) or cols_b not in (cols, 1):
                self._fail(f"column dimensions {cols_a} and {cols_b} are incompatible")
        self.set_dims(rows, self._layout_cols(cols))
