import sys
from pathlib import Path
from types import SimpleNamespace

import numpy as np

PROJECT_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(PROJECT_ROOT / "src"))

from stitchkit.config import Config
from stitchkit.fill import ChunkedFill, FillState, FrameScheduler, scanline_fill
from stitchkit.grid import FillRegion, StitchGrid, make_grid
from stitchkit.session import GridSession


def _ring_grid() -> np.ndarray:
    """7x7 of color 1 with a ring of color 2 enclosing a 3x3 pocket."""
    cells = np.ones((7, 7), dtype=np.uint16)
    cells[1:6, 1:6] = 2
    cells[2:5, 2:5] = 1
    return cells


def _comb_grid(width=21, height=15) -> np.ndarray:
    """Vertical walls of color 9 with alternating gaps, forcing many seeds."""
    cells = np.zeros((height, width), dtype=np.uint16)
    for x in range(1, width, 2):
        cells[:, x] = 9
        gap = 0 if (x // 2) % 2 else height - 1
        cells[gap, x] = 0
    return cells


def test_fill_all_empty_grid_in_one_call():
    cells = np.zeros(50 * 50, dtype=np.uint16)
    result = scanline_fill(cells, 50, 50, 17, 33, 5)
    assert result is not None and result.filled
    assert result.changed == 2500
    assert (result.grid == 5).all()
    assert (cells == 0).all(), "Input buffer must not be modified"


def test_fill_replaces_exactly_the_enclosed_region():
    cells = _ring_grid()
    result = scanline_fill(cells.ravel(), 7, 7, 3, 3, 3)
    filled = result.grid.reshape(7, 7)
    expected = cells.copy()
    expected[2:5, 2:5] = 3
    assert np.array_equal(filled, expected)
    assert result.changed == 9


def test_fill_with_own_color_is_noop():
    cells = _ring_grid()
    assert scanline_fill(cells.ravel(), 7, 7, 3, 3, 1) is None
    assert scanline_fill(cells.ravel(), 7, 7, 7, 0, 4) is None
    assert scanline_fill(cells.ravel(), 7, 7, -1, 2, 4) is None


def test_isolated_cell_changes_exactly_one_cell():
    cells = np.full((5, 5), 2, dtype=np.uint16)
    cells[2, 3] = 1
    result = scanline_fill(cells.ravel(), 5, 5, 3, 2, 7, collect_indices=True)
    assert result.grid is None
    assert result.indices.tolist() == [2 * 5 + 3]
    assert result.color_id == 7


def test_indices_match_full_grid_output():
    cells = _comb_grid().ravel()
    full = scanline_fill(cells, 21, 15, 0, 0, 4)
    sparse = scanline_fill(cells, 21, 15, 0, 0, 4, collect_indices=True)
    changed = np.flatnonzero(full.grid != cells)
    assert sorted(sparse.indices.tolist()) == changed.tolist()
    assert len(set(sparse.indices.tolist())) == sparse.changed


def test_fill_is_limited_to_region():
    cells = np.zeros(10 * 10, dtype=np.uint16)
    region = FillRegion(5, 4, 2, 2)  # reversed corners
    result = scanline_fill(cells, 10, 10, 3, 3, 6, region=region)
    filled = result.grid.reshape(10, 10)
    assert (filled[2:5, 2:6] == 6).all()
    assert result.changed == 12
    assert scanline_fill(cells, 10, 10, 8, 8, 6, region=region) is None


def test_region_overhanging_grid_is_clamped():
    cells = np.zeros(6 * 6, dtype=np.uint16)
    result = scanline_fill(cells, 6, 6, 4, 4, 2, region=FillRegion(3, 3, 40, 40))
    assert result.changed == 9


def test_stack_is_bounded_by_cell_count():
    cells = _comb_grid()
    result = scanline_fill(cells.ravel(), 21, 15, 0, 0, 3)
    assert 0 < result.peak_stack <= cells.size
    rng = np.random.default_rng(5)
    noise = rng.integers(0, 2, size=40 * 40).astype(np.uint16)
    seed = int(np.flatnonzero(noise == 0)[0])
    result = scanline_fill(noise, 40, 40, seed % 40, seed // 40, 8)
    assert result.peak_stack <= noise.size


def test_chunked_fill_matches_synchronous_fill():
    grid = StitchGrid(21, 15, _comb_grid().ravel())
    source = SimpleNamespace(epoch=3, grid=grid)
    scheduler = FrameScheduler()
    finished = []
    job = ChunkedFill(source, 0, 0, 4, seeds_per_tick=2, on_complete=finished.append)
    job.run(scheduler)
    assert job.state == FillState.IDLE

    frames = scheduler.run_until_idle()
    assert frames > 1
    assert job.state == FillState.COMPLETED
    assert len(finished) == 1 and finished[0] is job.result
    expected = scanline_fill(grid.cells, 21, 15, 0, 0, 4)
    assert np.array_equal(job.result.grid, expected.grid)
    assert (grid.cells != 4).all(), "Captured grid stays a stable snapshot"


def test_chunked_fill_aborts_when_grid_is_replaced():
    grid = make_grid(30, 30)
    source = SimpleNamespace(epoch=1, grid=grid)
    scheduler = FrameScheduler()
    job = ChunkedFill(source, 0, 0, 4, seeds_per_tick=1)
    job.run(scheduler)
    scheduler.run_frame()
    assert job.state == FillState.RUNNING

    # Same epoch, different grid object
    source.grid = grid.copy()
    scheduler.run_until_idle()
    assert job.state == FillState.ABORTED
    assert job.result is None


def test_newer_fill_wins_over_pending_fill():
    config = Config()
    config.fill.sync_cell_limit = 0
    config.fill.seeds_per_tick = 1
    session = GridSession(make_grid(30, 30), config=config)

    first = session.fill(0, 0, 4)
    session.scheduler.run_frame()
    assert first.state == FillState.RUNNING
    assert (session.grid.cells == 0).all()

    second = session.fill(29, 29, 7)
    session.scheduler.run_until_idle()
    assert first.state == FillState.ABORTED
    assert second.state == FillState.COMPLETED
    assert (session.grid.cells == 7).all()


def test_paint_stroke_cancels_pending_fill():
    config = Config()
    config.fill.sync_cell_limit = 10
    session = GridSession(make_grid(8, 8), config=config)
    results = []
    job = session.fill(0, 0, 3, on_complete=results.append)
    session.paint_cell(7, 7, 2)
    session.scheduler.run_until_idle()
    assert job.state == FillState.ABORTED
    assert results == [None]
    assert session.grid.get_cell_at(7, 7) == 2
    assert int((session.grid.cells == 3).sum()) == 0


def test_session_fill_is_synchronous_on_small_grids():
    session = GridSession(make_grid(50, 50))
    job = session.fill(10, 10, 5)
    assert job.state == FillState.COMPLETED
    assert job.result.changed == 2500
    assert (session.grid.cells == 5).all()
    assert session.scheduler.pending == 0


def test_session_fill_with_indices_and_region():
    session = GridSession(make_grid(6, 6))
    session.set_region(FillRegion(-3, -3, 2, 1))
    job = session.fill(0, 0, 9, collect_indices=True)
    assert job.result.grid is None
    assert sorted(job.result.indices.tolist()) == [0, 1, 2, 6, 7, 8]
    assert int((session.grid.cells == 9).sum()) == 6


def test_committed_grid_does_not_share_result_buffer():
    session = GridSession(make_grid(6, 6))
    job = session.fill(0, 0, 5)
    assert job.state == FillState.COMPLETED
    job.result.grid[:] = 9
    assert (session.grid.cells == 5).all()
