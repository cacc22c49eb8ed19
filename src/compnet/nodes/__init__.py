"""Reference NumPy operators for compnet networks."""

from .elementwise import ElementTimes, Minus, Plus, ReLU, Sigmoid, Tanh, Times
from .leaves import InputValue, LearnableParameter
from .recurrent import DelayedValueNode, FutureValue, PastValue
from .reductions import SquareError, SumElements

__all__ = [
    "InputValue",
    "LearnableParameter",
    "Plus",
    "Minus",
    "ElementTimes",
    "Times",
    "Tanh",
    "Sigmoid",
    "ReLU",
    "SumElements",
    "SquareError",
    "DelayedValueNode",
    "PastValue",
    "FutureValue",
]
