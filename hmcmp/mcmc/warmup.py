# hmcmp/mcmc/warmup.py
# --------------------------------------------------------------
# Author: Emmanuel Vazquez <emmanuel.vazquez@centralesupelec.fr>
# Copyright (c) 2022-2026, CentraleSupelec
# License: GPLv3 (see LICENSE)
# --------------------------------------------------------------
"""
Windowed warmup schedule (Stan-like).

Warmup iterations [0, num_warmup) are split into
  1. an initial buffer: step size adaptation only,
  2. slow windows of doubling size: step size adapted every iteration,
     draws accumulated for the metric, metric updated and the accumulator
     reset at each window end,
  3. a terminal buffer: step size adaptation only, with the final metric.

When the window after the next one would not fit before the terminal buffer,
the next window is stretched up to the terminal buffer.
"""

from __future__ import annotations

from typing import List, Tuple

_DEFAULT_INIT_BUFFER = 75
_DEFAULT_TERM_BUFFER = 50
_DEFAULT_BASE_WINDOW = 25
_DEFAULT_MIN_WARMUP = 20

STAGES = ("initial", "window", "final")


def make_warmup_windows(
    num_warmup: int,
    *,
    init_buffer: int = _DEFAULT_INIT_BUFFER,
    term_buffer: int = _DEFAULT_TERM_BUFFER,
    base_window: int = _DEFAULT_BASE_WINDOW,
    min_warmup: int = _DEFAULT_MIN_WARMUP,
    init_buffer_ratio: float = 0.15,
    term_buffer_ratio: float = 0.10,
) -> List[Tuple[int, int]]:
    """
    Slow windows [start, end) for metric adaptation.
    The metric is updated at the end of each window.
    """
    if num_warmup < min_warmup:
        return []

    if init_buffer + base_window + term_buffer > num_warmup:
        init_buffer = int(init_buffer_ratio * num_warmup)
        term_buffer = int(term_buffer_ratio * num_warmup)
        base_window = num_warmup - (init_buffer + term_buffer)

    start = init_buffer
    end_slow = num_warmup - term_buffer
    if base_window <= 0 or end_slow <= start:
        return []

    windows: List[Tuple[int, int]] = []
    win = base_window
    while start < end_slow:
        end = min(start + win, end_slow)
        if windows and end + 2 * win > end_slow:
            end = end_slow
        windows.append((start, end))
        start = end
        win *= 2
    return windows


def describe_windows(windows: List[Tuple[int, int]]) -> str:
    if not windows:
        return "no mass adaptation windows"
    parts = []
    for a, b in windows:
        parts.append(f"[{a},{b})")
    return "mass windows: " + " ".join(parts)


class WarmupScheduler:
    """Stage lookup over a fixed warmup window layout."""

    def __init__(self, num_warmup: int, **window_kwargs):
        if num_warmup < 0:
            raise ValueError("num_warmup must be non-negative")
        self.num_warmup = int(num_warmup)
        self.windows = make_warmup_windows(self.num_warmup, **window_kwargs)
        self._window_ends = {end for (_, end) in self.windows}
        if self.windows:
            self._slow_start = self.windows[0][0]
            self._slow_end = self.windows[-1][1]
        else:
            self._slow_start = self._slow_end = self.num_warmup

    def __len__(self) -> int:
        return self.num_warmup

    def __repr__(self):
        return f"WarmupScheduler(num_warmup={self.num_warmup}, {self.describe()})"

    def describe(self) -> str:
        return describe_windows(self.windows)

    def stage(self, iteration: int) -> str:
        if not 0 <= iteration < self.num_warmup:
            raise IndexError(f"iteration {iteration} outside warmup [0, {self.num_warmup})")
        if iteration < self._slow_start:
            return "initial"
        if iteration < self._slow_end:
            return "window"
        return "final"

    def in_window(self, iteration: int) -> bool:
        return self._slow_start <= iteration < self._slow_end

    def is_window_end(self, iteration: int) -> bool:
        """True if the metric is updated after ``iteration`` completes."""
        return (iteration + 1) in self._window_ends

    def is_last_window_end(self, iteration: int) -> bool:
        return bool(self.windows) and iteration + 1 == self._slow_end
