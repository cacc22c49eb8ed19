"""Core engine modules for compnet."""

__all__ = [
    "config",
    "evaluator",
    "exceptions",
    "layout",
    "loops",
    "network",
    "node",
    "scheduler",
    "validator",
]
