from __future__ import annotations

import abc

import numpy as np

from ..core.layout import FrameRange
from ..core.node import ComputationNode


def _accumulate(target: np.ndarray, gradient: np.ndarray) -> None:
    """Add ``gradient`` into ``target``, summing over broadcast axes."""
    if gradient.shape[1] != target.shape[1]:
        gradient = gradient.sum(axis=1, keepdims=True)
    if gradient.shape[0] != target.shape[0]:
        gradient = gradient.sum(axis=0, keepdims=True)
    target += gradient


class _BinaryZip(ComputationNode):
    def validate(self, is_final_validation_pass: bool) -> None:
        if len(self.children) != 2:
            self._fail(f"expects 2 inputs, got {len(self.children)}")
        self._validate_binary_zip(is_final_validation_pass)


class Plus(_BinaryZip):
    operation_name = "Plus"

    def evaluate(self, fr: FrameRange) -> None:
        a, b = self.children
        self.value_for(fr)[...] = a.value_for(fr) + b.value_for(fr)

    def backprop_to_child(self, index: int, fr: FrameRange) -> None:
        child = self.children[index]
        _accumulate(child.gradient_for(fr), self.gradient_for(fr))


class Minus(_BinaryZip):
    operation_name = "Minus"

    def evaluate(self, fr: FrameRange) -> None:
        a, b = self.children
        self.value_for(fr)[...] = a.value_for(fr) - b.value_for(fr)

    def backprop_to_child(self, index: int, fr: FrameRange) -> None:
        child = self.children[index]
        sign = 1.0 if index == 0 else -1.0
        _accumulate(child.gradient_for(fr), sign * self.gradient_for(fr))


class ElementTimes(_BinaryZip):
    operation_name = "ElementTimes"

    def evaluate(self, fr: FrameRange) -> None:
        a, b = self.children
        self.value_for(fr)[...] = a.value_for(fr) * b.value_for(fr)

    def backprop_to_child(self, index: int, fr: FrameRange) -> None:
        child = self.children[index]
        other = self.children[1 - index]
        _accumulate(child.gradient_for(fr), self.gradient_for(fr) * other.value_for(fr))


class Times(ComputationNode):
    """Matrix product of a parameter ``W`` (no layout) with an input ``x``."""

    operation_name = "Times"

    def validate(self, is_final_validation_pass: bool) -> None:
        if len(self.children) != 2:
            self._fail(f"expects 2 inputs, got {len(self.children)}")
        weight, data = self.children
        self.infer_mb_layout_from_inputs()
        (w_rows, w_cols), (x_rows, x_cols) = weight.get_dims(), data.get_dims()
        if is_final_validation_pass:
            if weight.get_mb_layout() is not None:
                self._fail(f"left operand '{weight.name}' must not be a minibatch")
            if w_cols != x_rows:
                self._fail(
                    f"inner dimensions differ: [{w_rows} x {w_cols}] * [{x_rows} x {x_cols}]"
                )
        self.set_dims(w_rows, self._layout_cols(x_cols))

    def evaluate(self, fr: FrameRange) -> None:
        weight, data = self.children
        self.value_for(fr)[...] = weight.value @ data.value_for(fr)

    def backprop_to_child(self, index: int, fr: FrameRange) -> None:
        weight, data = self.children
        gradient = self.gradient_for(fr)
        if index == 0:
            weight.gradient_for(fr)[...] += gradient @ data.value_for(fr).T
        else:
            data.gradient_for(fr)[...] += weight.value.T @ gradient


class _UnaryMap(ComputationNode):
    def validate(self, is_final_validation_pass: bool) -> None:
        if len(self.children) != 1:
            self._fail(f"expects 1 input, got {len(self.children)}")
        self._validate_unary_map(is_final_validation_pass)

    def evaluate(self, fr: FrameRange) -> None:
        self.value_for(fr)[...] = self.function(self.children[0].value_for(fr))

    def backprop_to_child(self, index: int, fr: FrameRange) -> None:
        child = self.children[index]
        derivative = self.derivative(self.value_for(fr), child.value_for(fr))
        child.gradient_for(fr)[...] += self.gradient_for(fr) * derivative

    @abc.abstractmethod
    def function(self, x: np.ndarray) -> np.ndarray: ...

    @abc.abstractmethod
    def derivative(self, y: np.ndarray, x: np.ndarray) -> np.ndarray: ...



class Tanh(_UnaryMap):
    operation_name = "Tanh"

    def function(self, x: np.ndarray) -> np.ndarray:
        return np.tanh(x)

    def derivative(self, y: np.ndarray, x: np.ndarray) -> np.ndarray:
        return 1.0 - y * y


class Sigmoid(_UnaryMap):
    operation_name = "Sigmoid"

    def function(self, x: np.ndarray) -> np.ndarray:
        return 1.0 / (1.0 + np.exp(-x))

    def derivative(self, y: np.ndarray, x: np.ndarray) -> np.ndarray:
        return y * (1.0 - y)


class ReLU(_UnaryMap):
    operation_name = "RectifiedLinear"

    def function(self, x: np.ndarray) -> np.ndarray:
        return np.maximum(x, 0.0)

    def derivative(self, y: np.ndarray, x: np.ndarray) -> np.ndarray:
        return (x > 0.0).astype(y.dtype)
