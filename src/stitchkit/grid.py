"""
Stitch grid model plus the whole-grid editing operations.

Every mutating helper here is copy-on-write: it returns a new ``StitchGrid``
(or the very same object when nothing changed), so a reference captured
earlier keeps describing the grid as it was.
"""

import numpy as np
from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .palette import EMPTY_ID, MAX_COLOR_ID

Point = Tuple[float, float]


@dataclass(frozen=True)
class FillRegion:
    """Inclusive axis-aligned rectangle of cells, ``x0..x1`` by ``y0..y1``."""
    x0: int
    y0: int
    x1: int
    y1: int

    def normalized(self) -> "FillRegion":
        """Swap reversed corners so that x0 <= x1 and y0 <= y1."""
        return FillRegion(
            min(self.x0, self.x1), min(self.y0, self.y1),
            max(self.x0, self.x1), max(self.y0, self.y1),
        )

    def clamp(self, width: int, height: int) -> "FillRegion":
        """Normalize and clamp every corner into the grid."""
        x0 = max(0, min(width - 1, self.x0))
        y0 = max(0, min(height - 1, self.y0))
        x1 = max(0, min(width - 1, self.x1))
        y1 = max(0, min(height - 1, self.y1))
        return FillRegion(x0, y0, x1, y1).normalized()

    def contains(self, x: int, y: int) -> bool:
        r = self.normalized()
        return r.x0 <= x <= r.x1 and r.y0 <= y <= r.y1

    def mask(self, width: int, height: int) -> np.ndarray:
        """Flat boolean mask of cells inside the rectangle."""
        r = self.normalized()
        inside = np.zeros((height, width), dtype=bool)
        x0, x1 = max(0, r.x0), min(width - 1, r.x1)
        y0, y1 = max(0, r.y0), min(height - 1, r.y1)
        if x0 <= x1 and y0 <= y1:
            inside[y0:y1 + 1, x0:x1 + 1] = True
        return inside.reshape(-1)


@dataclass(eq=False)
class StitchGrid:
    """Row-major grid of palette ids; 0 means an empty cell."""
    width: int
    height: int
    cells: np.ndarray

    def __post_init__(self):
        if self.width < 0 or self.height < 0:
            raise ValueError("Grid dimensions must be non-negative")
        self.cells = np.asarray(self.cells, dtype=np.uint16).reshape(-1)
        if self.cells.size != self.width * self.height:
            raise ValueError(
                f"Grid data has {self.cells.size} cells, expected {self.width}x{self.height}"
            )

    @property
    def total_cells(self) -> int:
        return self.width * self.height

    def index(self, x: int, y: int) -> int:
        return y * self.width + x

    def in_bounds(self, x: int, y: int) -> bool:
        return 0 <= x < self.width and 0 <= y < self.height

    def get_cell_at(self, x: int, y: int) -> int:
        """Get color id at specified coordinates."""
        if not self.in_bounds(x, y):
            raise IndexError(f"Coordinates ({x}, {y}) outside grid bounds")
        return int(self.cells[self.index(x, y)])

    def with_cells(self, cells: np.ndarray) -> "StitchGrid":
        """New grid of the same size holding ``cells``."""
        return StitchGrid(self.width, self.height, cells)

    def copy(self) -> "StitchGrid":
        return StitchGrid(self.width, self.height, self.cells.copy())


def make_grid(width: int, height: int, fill_id: int = EMPTY_ID) -> StitchGrid:
    """Create a grid filled with ``fill_id`` (empty by default)."""
    if not (0 <= fill_id <= MAX_COLOR_ID):
        raise ValueError(f"Fill id {fill_id} outside uint16 range")
    cells = np.full(width * height, fill_id, dtype=np.uint16)
    return StitchGrid(width, height, cells)


def _region_mask(grid: StitchGrid, region: Optional[FillRegion]) -> Optional[np.ndarray]:
    if region is None:
        return None
    return region.mask(grid.width, grid.height)


def color_usage(grid: StitchGrid, region: Optional[FillRegion] = None) -> List[Tuple[int, int]]:
    """(color id, count) pairs sorted by count descending; empty cells ignored."""
    cells = grid.cells
    mask = _region_mask(grid, region)
    if mask is not None:
        cells = cells[mask]
    ids, counts = np.unique(cells[cells != EMPTY_ID], return_counts=True)
    usage = [(int(i), int(c)) for i, c in zip(ids, counts)]
    # Stable on id for equal counts
    usage.sort(key=lambda item: item[1], reverse=True)
    return usage


def recolor(grid: StitchGrid, mapping: Mapping[int, int],
            region: Optional[FillRegion] = None) -> StitchGrid:
    """Apply an id -> id mapping to every (optionally region-limited) cell."""
    mapping = {int(k): int(v) for k, v in mapping.items() if int(k) != int(v)}
    if not mapping:
        return grid

    lookup = np.arange(MAX_COLOR_ID + 1, dtype=np.uint16)
    for source, target in mapping.items():
        lookup[source] = target
    remapped = lookup[grid.cells]

    mask = _region_mask(grid, region)
    if mask is not None:
        remapped = np.where(mask, remapped, grid.cells).astype(np.uint16)

    if np.array_equal(remapped, grid.cells):
        return grid
    return grid.with_cells(remapped)


def replace_color(grid: StitchGrid, source_id: int, target_id: int,
                  region: Optional[FillRegion] = None) -> StitchGrid:
    """Swap every ``source_id`` cell for ``target_id``."""
    return recolor(grid, {source_id: target_id}, region)


def merge_colors(grid: StitchGrid, source_ids: Iterable[int], target_id: int,
                 region: Optional[FillRegion] = None) -> StitchGrid:
    """Fold several colors into ``target_id``."""
    return recolor(grid, {source: target_id for source in source_ids}, region)


def paint_cell(grid: StitchGrid, x: int, y: int, color_id: int,
               region: Optional[FillRegion] = None) -> StitchGrid:
    """Set one cell. Out-of-bounds or out-of-region cells are ignored."""
    if not grid.in_bounds(x, y):
        return grid
    if region is not None and not region.contains(x, y):
        return grid
    i = grid.index(x, y)
    if grid.cells[i] == color_id:
        return grid
    cells = grid.cells.copy()
    cells[i] = color_id
    return grid.with_cells(cells)


def paint_stamp(grid: StitchGrid, x: int, y: int, color_id: int, size: int = 1,
                region: Optional[FillRegion] = None) -> StitchGrid:
    """Paint a ``size`` x ``size`` square brush roughly centred on (x, y)."""
    size = max(1, int(size))
    start_x = x - size // 2
    start_y = y - size // 2
    x0, x1 = max(0, start_x), min(grid.width - 1, start_x + size - 1)
    y0, y1 = max(0, start_y), min(grid.height - 1, start_y + size - 1)
    if x0 > x1 or y0 > y1:
        return grid

    brush = FillRegion(x0, y0, x1, y1).mask(grid.width, grid.height)
    region_mask = _region_mask(grid, region)
    if region_mask is not None:
        brush &= region_mask
    return apply_indices(grid, np.flatnonzero(brush), color_id)


def apply_indices(grid: StitchGrid, indices: Sequence[int], color_id: int,
                  region: Optional[FillRegion] = None) -> StitchGrid:
    """Set the listed flat indices to ``color_id``."""
    indices = np.asarray(indices, dtype=np.int64).reshape(-1)
    if indices.size:
        indices = indices[(indices >= 0) & (indices < grid.total_cells)]
    mask = _region_mask(grid, region)
    if mask is not None and indices.size:
        indices = indices[mask[indices]]
    if indices.size == 0 or np.all(grid.cells[indices] == color_id):
        return grid
    cells = grid.cells.copy()
    cells[indices] = color_id
    return grid.with_cells(cells)


def point_in_polygon(point: Point, polygon: Sequence[Point]) -> bool:
    """Even-odd ray casting test."""
    px, py = point
    inside = False
    j = len(polygon) - 1
    for i in range(len(polygon)):
        xi, yi = polygon[i]
        xj, yj = polygon[j]
        if (yi > py) != (yj > py):
            if px < (xj - xi) * (py - yi) / (yj - yi) + xi:
                inside = not inside
        j = i
    return inside


def fill_polygon(grid: StitchGrid, polygon: Sequence[Point], color_id: int,
                 cell_size: float = 1.0,
                 region: Optional[FillRegion] = None) -> StitchGrid:
    """
    Lasso fill: paint every cell whose centre lies inside ``polygon``.

    Polygon vertices are in canvas units where one cell spans ``cell_size``.
    Fewer than three points is a no-op.
    """
    if len(polygon) < 3 or grid.total_cells == 0:
        return grid

    xs = [p[0] for p in polygon]
    ys = [p[1] for p in polygon]
    # Only cells whose centre is within the polygon's bounding box can match
    x_lo = max(0, int(np.floor(min(xs) / cell_size - 0.5)))
    x_hi = min(grid.width - 1, int(np.ceil(max(xs) / cell_size - 0.5)))
    y_lo = max(0, int(np.floor(min(ys) / cell_size - 0.5)))
    y_hi = min(grid.height - 1, int(np.ceil(max(ys) / cell_size - 0.5)))

    hits = []
    for y in range(y_lo, y_hi + 1):
        cy = (y + 0.5) * cell_size
        for x in range(x_lo, x_hi + 1):
            if region is not None and not region.contains(x, y):
                continue
            if point_in_polygon(((x + 0.5) * cell_size, cy), polygon):
                hits.append(grid.index(x, y))
    return apply_indices(grid, hits, color_id)


def grid_summary(grid: StitchGrid, palette=None) -> Dict[str, object]:
    """Dimensions and usage table, resolving names when a palette is given."""
    usage = color_usage(grid)
    filled = sum(count for _, count in usage)
    colors = []
    for color_id, count in usage:
        color = palette.get_color_by_id(color_id) if palette is not None else None
        colors.append({
            'id': color_id,
            'name': color.name if color else None,
            'hex': color.hex if color else None,
            'code': color.code if color else None,
            'count': count,
            'percentage': (count / grid.total_cells) * 100 if grid.total_cells else 0.0,
        })
    return {
        'width': grid.width,
        'height': grid.height,
        'total_cells': grid.total_cells,
        'filled_cells': filled,
        'colors': colors,
    }
