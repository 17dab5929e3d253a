"""
Editing session: the live grid, the mutation epoch, and every grid edit.

Each edit replaces ``session.grid`` with a new object and bumps ``epoch``, so
any chunked fill started before it notices at its next tick and gives up.
"""

from typing import Callable, Iterable, Optional, Sequence

from . import grid as grid_ops
from .config import Config
from .fill import ChunkedFill, FillResult, FillState, FrameScheduler
from .grid import FillRegion, StitchGrid
from .image_io import ImageLike
from .mapping import replacement_map
from .palette import EMPTY_ID, Palette
from .quantize import ImageQuantizer, Placement


class GridSession:
    """Owns the live stitch grid for one chart being edited."""

    def __init__(self, grid: StitchGrid, palette: Optional[Palette] = None,
                 config: Optional[Config] = None,
                 scheduler: Optional[FrameScheduler] = None):
        self.grid = grid
        self.palette = palette if palette is not None else Palette()
        self.config = config or Config()
        self.scheduler = scheduler or FrameScheduler()
        self.epoch = 0
        # Optional rectangle every edit is limited to
        self.region: Optional[FillRegion] = None

    def begin_mutation(self) -> int:
        """Invalidate in-flight fills. Returns the new epoch."""
        self.epoch += 1
        return self.epoch

    def _region(self, region: Optional[FillRegion]) -> Optional[FillRegion]:
        return region if region is not None else self.region

    def _commit(self, new_grid: StitchGrid) -> StitchGrid:
        self.grid = new_grid
        return self.grid

    def set_region(self, region: Optional[FillRegion]):
        """Set (or clear with None) the edit rectangle, clamped into the grid."""
        if region is None or self.grid.total_cells == 0:
            self.region = None
        else:
            self.region = region.clamp(self.grid.width, self.grid.height)

    def apply_grid(self, new_grid: StitchGrid) -> StitchGrid:
        """Replace the whole grid, e.g. from an external loader."""
        if new_grid.width != self.grid.width or new_grid.height != self.grid.height:
            raise ValueError(
                f"Grid is {new_grid.width}x{new_grid.height}, "
                f"session expects {self.grid.width}x{self.grid.height}"
            )
        self.begin_mutation()
        return self._commit(new_grid)

    def paint_cell(self, x: int, y: int, color_id: int, size: int = 1) -> StitchGrid:
        self.begin_mutation()
        if size <= 1:
            return self._commit(grid_ops.paint_cell(self.grid, x, y, color_id, self.region))
        return self._commit(grid_ops.paint_stamp(self.grid, x, y, color_id, size, self.region))

    def apply_cells(self, indices: Sequence[int], color_id: int) -> StitchGrid:
        self.begin_mutation()
        return self._commit(grid_ops.apply_indices(self.grid, indices, color_id, self.region))

    def replace_color(self, source_id: int, target_id: int) -> StitchGrid:
        self.begin_mutation()
        return self._commit(grid_ops.replace_color(self.grid, source_id, target_id, self.region))

    def merge_colors(self, source_ids: Iterable[int], target_id: int) -> StitchGrid:
        self.begin_mutation()
        return self._commit(grid_ops.merge_colors(self.grid, source_ids, target_id, self.region))

    def delete_colors(self, color_ids: Iterable[int]) -> StitchGrid:
        """
        Drop colors from the palette and restitch their cells.

        Cells of a deleted color take the nearest remaining palette color, or
        become empty when no color remains.
        """
        doomed = {int(c) for c in color_ids}
        keep = [c for c in self.palette.ids if c not in doomed]
        mapping = replacement_map(doomed, keep, self.palette)
        if not mapping:
            mapping = {color_id: EMPTY_ID for color_id in doomed}

        self.begin_mutation()
        self.palette = self.palette.subset(keep)
        return self._commit(grid_ops.recolor(self.grid, mapping, self.region))

    def fill_lasso(self, polygon: Sequence[grid_ops.Point], color_id: int,
                   cell_size: float = 1.0) -> StitchGrid:
        self.begin_mutation()
        return self._commit(
            grid_ops.fill_polygon(self.grid, polygon, color_id, cell_size, self.region)
        )

    def quantize_image(self, image: ImageLike, placement: Optional[Placement] = None,
                       max_colors: Optional[int] = None,
                       smoothing: Optional[float] = None) -> StitchGrid:
        """Rebuild the grid from an image using the session palette."""
        self.begin_mutation()
        quantizer = ImageQuantizer(self.palette, self.config)
        return self._commit(quantizer.quantize(
            image, self.grid, placement=placement, max_colors=max_colors, smoothing=smoothing
        ))

    def fill(self, x: int, y: int, color_id: int, region: Optional[FillRegion] = None,
             collect_indices: bool = False,
             on_complete: Optional[Callable[[Optional[FillResult]], None]] = None
             ) -> ChunkedFill:
        """
        Paint-bucket fill from (x, y).

        Grids up to ``fill.sync_cell_limit`` cells are filled before this
        returns; larger ones are scheduled on ``self.scheduler`` and applied
        when they finish, provided nothing else touched the grid meanwhile.

        Returns:
            The fill job; inspect ``state`` and ``result`` once it is finished
        """
        self.begin_mutation()

        def apply(result: Optional[FillResult]):
            # Only reached for fills that passed the staleness check
            if result is not None:
                if result.grid is not None:
                    self._commit(self.grid.with_cells(result.grid.copy()))
                else:
                    self._commit(grid_ops.apply_indices(self.grid, result.indices, result.color_id))
            if on_complete is not None:
                on_complete(result)

        def complete(result: Optional[FillResult]):
            if job.state is FillState.COMPLETED:
                apply(result)
            elif on_complete is not None:
                on_complete(None)

        job = ChunkedFill(
            self, x, y, color_id,
            region=self._region(region),
            collect_indices=collect_indices,
            seeds_per_tick=self.config.fill.seeds_per_tick,
            on_complete=complete,
        )

        if self.grid.total_cells <= self.config.fill.sync_cell_limit:
            job.run_sync()
        else:
            job.run(self.scheduler)
        return job
