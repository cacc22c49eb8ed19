from __future__ import annotations

from typing import Optional


class CompNetError(Exception):
    """Base class for compnet-specific exceptions."""


class LogicError(CompNetError, RuntimeError):
    """An internal invariant of the engine was broken by the caller or a node."""


class ConfigurationError(CompNetError, RuntimeError):
    """The network is structurally unusable as configured."""


class ValidationError(CompNetError, ValueError):
    def __init__(
        self,
        message: str,
        *,
        node: Optional[str] = None,
        operation: Optional[str] = None,
    ):
        super().__init__(f"{message}{_format_node(node, operation)}")
        self.node = node
        self.operation = operation


class NumericError(CompNetError, FloatingPointError):
    def __init__(self, message: str, *, node: Optional[str] = None):
        super().__init__(f"{message}{_format_node(node, None)}")
        self.node = node


def _format_node(node: Optional[str], operation: Optional[str]) -> str:
    if node is None:
        return ""
    if operation is None:
        return f" (node '{node}')"
    return f" (node '{node}', {operation})"
