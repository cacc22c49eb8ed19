from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, Optional

import numpy as np

# Stepping directions of a recurrent loop.
FORWARD = 1
BACKWARD = -1

SEQUENCE_START = 1
SEQUENCE_END = 2
GAP = 4


class MBLayout:
    """
    Sequence structure of one minibatch.

    ``S`` parallel sequences are interleaved over ``T`` time positions; in the
    value matrices of minibatch nodes column ``t * S + s`` holds sequence ``s``
    at time ``t``. Per-cell flags mark sequence boundaries and padding (gaps).
    Layouts are compared by identity only.
    """

    def __init__(self, num_parallel_sequences: int = 1, num_time_steps: int = 0):
        self._flags = np.zeros((0, 0), dtype=np.uint8)
        self.init(num_parallel_sequences, num_time_steps)

    def init(self, num_parallel_sequences: int, num_time_steps: int) -> None:
        num_parallel_sequences = int(num_parallel_sequences)
        num_time_steps = int(num_time_steps)
        if num_parallel_sequences <= 0:
            raise ValueError("num_parallel_sequences must be positive")
        if num_time_steps < 0:
            raise ValueError("num_time_steps must be non-negative")
        self._flags = np.zeros((num_parallel_sequences, num_time_steps), dtype=np.uint8)

    def __repr__(self) -> str:
        return (
            f"MBLayout(S={self.num_parallel_sequences}, T={self.num_time_steps}, "
            f"gaps={int(np.count_nonzero(self._flags & GAP))})"
        )

    @property
    def num_parallel_sequences(self) -> int:
        return int(self._flags.shape[0])

    @property
    def num_time_steps(self) -> int:
        return int(self._flags.shape[1])

    @property
    def num_cols(self) -> int:
        return self.num_parallel_sequences * self.num_time_steps

    # Flag editing (minibatch supplier side) ---------------------------------
    def set_sequence_start(self, s: int, t: int) -> None:
        self._flags[s, t] |= SEQUENCE_START

    def set_sequence_end(self, s: int, t: int) -> None:
        self._flags[s, t] |= SEQUENCE_END

    def set_gap(self, s: int, t_begin: int, t_end: Optional[int] = None) -> None:
        stop = t_begin + 1 if t_end is None else t_end
        self._flags[s, t_begin:stop] |= GAP

    # Queries ------------------------------------------------------------------
    @property
    def has_gaps(self) -> bool:
        return bool(np.any(self._flags & GAP))

    def is_gap(self, s: int, t: int) -> bool:
        return bool(self._flags[s, t] & GAP)

    def is_sequence_start(self, s: int, t: int) -> bool:
        return bool(self._flags[s, t] & SEQUENCE_START)

    def is_sequence_end(self, s: int, t: int) -> bool:
        return bool(self._flags[s, t] & SEQUENCE_END)

    def gap_columns(self, fr: "FrameRange") -> np.ndarray:
        """Boolean mask over the columns addressed by ``fr``; True marks padding."""
        gaps = (self._flags & GAP).astype(bool)
        if fr.t is None:
            return gaps.T.reshape(-1)
        return gaps[:, fr.t].copy()

    def crosses_boundary(self, s: int, t: int, offset: int) -> bool:
        """True when reading ``t + offset`` from ``t`` leaves sequence ``s``.

        ``offset`` is negative for past reads and positive for future reads.
        """
        target = t + offset
        if target < 0 or target >= self.num_time_steps:
            return True
        if offset < 0:
            # a start flag in (target, t] cuts the sequence
            return bool(np.any(self._flags[s, target + 1 : t + 1] & SEQUENCE_START))
        if offset > 0:
            return bool(np.any(self._flags[s, t:target] & SEQUENCE_END))
        return False


@dataclass(frozen=True)
class FrameRange:
    """Either the whole minibatch (``t is None``) or one time position."""

    layout: Optional[MBLayout] = None
    t: Optional[int] = None

    @property
    def is_all_frames(self) -> bool:
        return self.t is None

    def column_slice(self) -> slice:
        if self.t is None or self.layout is None:
            return slice(None)
        width = self.layout.num_parallel_sequences
        return slice(self.t * width, (self.t + 1) * width)

    def __repr__(self) -> str:
        if self.t is None:
            return "FrameRange(all)"
        return f"FrameRange(t={self.t})"


class FrameRangeIteration:
    """Time positions of a layout in stepping order; ``reversed()`` walks them backwards."""

    def __init__(self, layout: MBLayout, direction: int = FORWARD):
        if direction not in (FORWARD, BACKWARD):
            raise ValueError(f"Unsupported stepping direction: {direction}")
        self.layout = layout
        self.direction = direction

    def _times(self, reverse: bool) -> range:
        steps = self.layout.num_time_steps
        forward_in_time = (self.direction == FORWARD) != reverse
        if forward_in_time:
            return range(steps)
        return range(steps - 1, -1, -1)

    def __iter__(self) -> Iterator[FrameRange]:
        for t in self._times(reverse=False):
            yield FrameRange(self.layout, t)

    def __reversed__(self) -> Iterator[FrameRange]:
        for t in self._times(reverse=True):
            yield FrameRange(self.layout, t)

    def __len__(self) -> int:
        return self.layout.num_time_steps
