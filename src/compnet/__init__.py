from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as _load_version

from . import nodes, training
from .core.config import EngineConfig
from .core.exceptions import (
    CompNetError,
    ConfigurationError,
    LogicError,
    NumericError,
    ValidationError,
)
from .core.layout import BACKWARD, FORWARD, FrameRange, FrameRangeIteration, MBLayout
from .core.loops import RecurrentLoop
from .core.network import ComputationNetwork
from .core.node import ComputationNode, ComputationNodeBase
from .training import gradients_for_network, sgd_step

try:
    __version__ = _load_version("compnet")
except PackageNotFoundError:
    __version__ = "0.0.0"

__all__ = [
    "ComputationNetwork",
    "ComputationNode",
    "ComputationNodeBase",
    "EngineConfig",
    "MBLayout",
    "FrameRange",
    "FrameRangeIteration",
    "FORWARD",
    "BACKWARD",
    "RecurrentLoop",
    "CompNetError",
    "LogicError",
    "ConfigurationError",
    "ValidationError",
    "NumericError",
    "gradients_for_network",
    "sgd_step",
    "nodes",
    "training",
    "__version__",
]
