"""
Scanline flood fill over a stitch grid.

Two ways to run the same algorithm:
- ``scanline_fill``: synchronous, runs to completion in one call
- ``ChunkedFill``: pops a bounded number of seeds per scheduler tick and
  abandons itself when the grid it started on is no longer the live one
"""

import numpy as np
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Tuple

from .grid import FillRegion, StitchGrid


@dataclass
class FillResult:
    """
    Outcome of a flood fill.

    Exactly one representation is populated: ``grid`` holds the full
    replacement cell array, or ``indices`` the changed flat indices when the
    caller asked for them.
    """
    grid: Optional[np.ndarray]
    indices: Optional[np.ndarray]
    color_id: int
    changed: int = 0
    peak_stack: int = 0

    @property
    def filled(self) -> bool:
        return self.changed > 0


class _ScanlineJob:
    """Explicit-stack scanline fill state, advanced one seed at a time."""

    def __init__(self, cells: np.ndarray, width: int, height: int, x: int, y: int,
                 color_id: int, bounds: FillRegion):
        self.cells = cells
        self.width = width
        self.height = height
        self.color_id = color_id
        self.target = int(cells[y * width + x])
        self.bounds = bounds
        self.stack: List[Tuple[int, int]] = [(x, y)]
        self.peak_stack = 1
        self.runs: List[Tuple[int, int]] = []
        self.changed = 0

    @classmethod
    def prepare(cls, cells, width: int, height: int, x: int, y: int, color_id: int,
                region: Optional[FillRegion] = None) -> Optional["_ScanlineJob"]:
        """Set up a fill, or return None when it cannot change anything."""
        if width <= 0 or height <= 0:
            return None
        if not (0 <= x < width and 0 <= y < height):
            return None
        if region is not None and not region.contains(x, y):
            return None

        cells = np.array(cells, dtype=np.uint16).reshape(-1)
        if cells.size != width * height:
            raise ValueError(f"Grid data has {cells.size} cells, expected {width}x{height}")
        if int(cells[y * width + x]) == color_id:
            return None

        bounds = region.clamp(width, height) if region is not None else \
            FillRegion(0, 0, width - 1, height - 1)
        return cls(cells, width, height, x, y, color_id, bounds)

    @property
    def done(self) -> bool:
        return not self.stack

    def pop(self) -> bool:
        """Process one seed. Returns False once the stack is empty."""
        if not self.stack:
            return False

        x, y = self.stack.pop()
        b = self.bounds
        row_start = y * self.width
        row = self.cells[row_start + b.x0:row_start + b.x1 + 1]
        offset = x - b.x0
        if row[offset] != self.target:
            return True

        left = np.flatnonzero(row[:offset] != self.target)
        right = np.flatnonzero(row[offset:] != self.target)
        x_left = b.x0 + (int(left[-1]) + 1 if left.size else 0)
        x_right = x + (int(right[0]) - 1 if right.size else b.x1 - x)

        start, end = row_start + x_left, row_start + x_right + 1
        self.cells[start:end] = self.color_id
        self.runs.append((start, end))
        self.changed += end - start

        for ny in (y - 1, y + 1):
            if ny < b.y0 or ny > b.y1:
                continue
            span = self.cells[ny * self.width + x_left:ny * self.width + x_right + 1] == self.target
            if not span.any():
                continue
            # One seed per contiguous still-target run, left to right
            run_starts = np.flatnonzero(span & ~np.concatenate(([False], span[:-1])))
            self.stack.extend((x_left + int(i), ny) for i in run_starts)

        self.peak_stack = max(self.peak_stack, len(self.stack))
        return True

    def result(self, collect_indices: bool = False) -> Optional[FillResult]:
        if self.changed == 0:
            return None
        if collect_indices:
            indices = np.concatenate([np.arange(s, e, dtype=np.int64) for s, e in self.runs])
            return FillResult(None, indices, self.color_id, self.changed, self.peak_stack)
        return FillResult(self.cells, None, self.color_id, self.changed, self.peak_stack)


def scanline_fill(cells, width: int, height: int, x: int, y: int, color_id: int,
                  region: Optional[FillRegion] = None,
                  collect_indices: bool = False) -> Optional[FillResult]:
    """
    4-connected flood fill from (x, y), run to completion.

    The input array is never modified; the result carries a fresh array (or
    the changed indices). Returns None when the seed is out of bounds or
    outside ``region``, already has ``color_id``, or nothing was repainted.
    """
    job = _ScanlineJob.prepare(cells, width, height, x, y, color_id, region)
    if job is None:
        return None
    while job.pop():
        pass
    return job.result(collect_indices)


class FillState(Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    ABORTED = "aborted"


class FrameScheduler:
    """
    Cooperative per-frame callback queue.

    Callbacks requested during a frame run on the next one, the way a
    browser's animation frame hook behaves.
    """

    def __init__(self):
        self._pending: List[Callable[[], None]] = []
        self.frames_run = 0

    @property
    def pending(self) -> int:
        return len(self._pending)

    def request_frame(self, callback: Callable[[], None]):
        self._pending.append(callback)

    def run_frame(self) -> int:
        """Run every callback queued before this frame. Returns how many ran."""
        callbacks, self._pending = self._pending, []
        for callback in callbacks:
            callback()
        if callbacks:
            self.frames_run += 1
        return len(callbacks)

    def run_until_idle(self, max_frames: Optional[int] = None) -> int:
        frames = 0
        while self._pending and (max_frames is None or frames < max_frames):
            self.run_frame()
            frames += 1
        return frames


class ChunkedFill:
    """
    Scanline fill that yields between ticks and cancels itself when stale.

    ``source`` is whatever owns the live grid; it must expose ``epoch`` and
    ``grid``. Both are captured at construction and compared by value and
    identity before each tick and again at completion. A mismatch aborts the
    fill with no output.
    """

    def __init__(self, source, x: int, y: int, color_id: int,
                 region: Optional[FillRegion] = None,
                 collect_indices: bool = False,
                 seeds_per_tick: int = 1800,
                 on_complete: Optional[Callable[[Optional[FillResult]], None]] = None):
        self.source = source
        self.epoch = source.epoch
        self.grid: StitchGrid = source.grid
        self.color_id = color_id
        self.collect_indices = collect_indices
        self.seeds_per_tick = max(1, seeds_per_tick)
        self.on_complete = on_complete

        self.state = FillState.IDLE
        self.result: Optional[FillResult] = None
        self.ticks = 0
        self._job = _ScanlineJob.prepare(
            self.grid.cells, self.grid.width, self.grid.height, x, y, color_id, region
        )

    @property
    def peak_stack(self) -> int:
        return self._job.peak_stack if self._job is not None else 0

    @property
    def finished(self) -> bool:
        return self.state in (FillState.COMPLETED, FillState.ABORTED)

    def is_current(self) -> bool:
        return self.source.epoch == self.epoch and self.source.grid is self.grid

    def _finish(self, state: FillState, result: Optional[FillResult]):
        self.state = state
        self.result = result
        if self.on_complete is not None:
            self.on_complete(result)

    def step(self) -> bool:
        """
        Run one tick. Returns True while more ticks are needed.
        """
        if self.finished:
            return False
        if not self.is_current():
            self._finish(FillState.ABORTED, None)
            return False

        self.state = FillState.RUNNING
        self.ticks += 1
        if self._job is not None:
            for _ in range(self.seeds_per_tick):
                if not self._job.pop():
                    break
            if not self._job.done:
                return True

        if not self.is_current():
            self._finish(FillState.ABORTED, None)
            return False

        result = self._job.result(self.collect_indices) if self._job is not None else None
        self._finish(FillState.COMPLETED, result)
        return False

    def run(self, scheduler: FrameScheduler):
        """Schedule ticks on ``scheduler`` until the fill completes or aborts."""
        def tick():
            if self.step():
                scheduler.request_frame(tick)

        scheduler.request_frame(tick)

    def run_sync(self) -> Optional[FillResult]:
        """Run to completion without yielding."""
        while self.step():
            pass
        return self.result
