from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Optional


@dataclass(frozen=True)
class EngineConfig:
    """
    Behaviour switches shared by validation, forward evaluation and gradients.

    Key behaviors:
    * ``allow_fragment`` / ``allow_no_criterion`` are the defaults used by
      ``ComputationNetwork.validate_network`` when the caller does not pass them.
    * ``check_finite`` makes every node verify its function value in
      ``on_evaluate_end_iteration``; cached values are checked as well.
    * ``max_validation_passes`` of ``None`` keeps the validator iterating until
      nothing is left to resolve.
    """

    allow_fragment: bool = False
    allow_no_criterion: bool = False
    check_finite: bool = False
    trace: bool = False
    max_validation_passes: Optional[int] = None
    reset_timestamp_after_computation: bool = False

    def normalized(self) -> "EngineConfig":
        passes = self.max_validation_passes
        if passes is not None:
            passes = int(passes)
            if passes <= 0:
                raise ValueError("max_validation_passes must be positive when provided")
        return replace(
            self,
            allow_fragment=bool(self.allow_fragment),
            allow_no_criterion=bool(self.allow_no_criterion),
            check_finite=bool(self.check_finite),
            trace=bool(self.trace),
            max_validation_passes=passes,
            reset_timestamp_after_computation=bool(self.reset_timestamp_after_computation),
        )
