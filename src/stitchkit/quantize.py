"""
Image -> stitch grid quantization.

Pipeline per run:
    1. sample each cell centre through the placement transform
    2. edge-preserving bilateral smoothing in sRGB, weighted by OKLab similarity
    3. choose the allowed palette (extract + map when capped below palette size)
    4. nearest-color assignment in OKLab
    5. edge strength map from the smoothed colors
    6. speckle cleanup over 4-connected same-color components
    7. snapshot majority vote over the 8-neighbourhood
"""

import math
import numpy as np
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from scipy import ndimage
from skimage import measure

from .color_math import rgb_to_oklab, squared_distances
from .config import Config, QuantizeConfig
from .extract import PaletteExtractor
from .grid import StitchGrid
from .image_io import ImageLike, load_image
from .mapping import map_to_palette
from .palette import EMPTY_ID, Palette

FOUR_NEIGHBOURS = ((-1, 0), (1, 0), (0, -1), (0, 1))
EIGHT_NEIGHBOURS = FOUR_NEIGHBOURS + ((-1, -1), (1, -1), (-1, 1), (1, 1))


@dataclass
class Placement:
    """
    Affine placement of the image over the grid canvas.

    A cell (x, y) has its centre at ((x + 0.5) * cell_size, (y + 0.5) * cell_size)
    in canvas units; image pixel (u, v) sits at (offset_x + u * scale,
    offset_y + v * scale).
    """
    offset_x: float = 0.0
    offset_y: float = 0.0
    scale: float = 1.0
    cell_size: float = 1.0

    @property
    def is_valid(self) -> bool:
        values = (self.offset_x, self.offset_y, self.scale, self.cell_size)
        return all(math.isfinite(v) for v in values) and self.scale > 0 and self.cell_size > 0

    def image_coords(self, grid_width: int, grid_height: int) -> Tuple[np.ndarray, np.ndarray]:
        """Image-space x for each column and y for each row of cell centres."""
        centers_x = (np.arange(grid_width) + 0.5) * self.cell_size
        centers_y = (np.arange(grid_height) + 0.5) * self.cell_size
        return (centers_x - self.offset_x) / self.scale, (centers_y - self.offset_y) / self.scale


def fit_placement(image_width: int, image_height: int, grid_width: int, grid_height: int,
                  cell_size: float = 1.0) -> Placement:
    """Scale the image to fit inside the grid canvas and centre it."""
    canvas_w = grid_width * cell_size
    canvas_h = grid_height * cell_size
    if image_width <= 0 or image_height <= 0:
        return Placement(cell_size=cell_size)
    scale = min(canvas_w / image_width, canvas_h / image_height)
    return Placement(
        offset_x=(canvas_w - image_width * scale) / 2,
        offset_y=(canvas_h - image_height * scale) / 2,
        scale=scale,
        cell_size=cell_size,
    )


@dataclass
class SmoothingParams:
    """Concrete filter settings derived from a 0-1 smoothing strength."""
    strength: float
    bilateral: bool
    radius: int
    spatial_sigma: float
    range_sigma2: float
    min_blob_size: int
    edge_threshold_sq: float
    majority_passes: int
    majority_count: int


def strength_params(strength: float, config: Optional[QuantizeConfig] = None) -> SmoothingParams:
    """
    Map the user-facing smoothing strength onto filter settings.

    Higher strength widens the bilateral kernel, loosens its range sigma,
    raises the minimum blob size and lowers the edge threshold.
    """
    cfg = config or QuantizeConfig()
    s = min(1.0, max(0.0, float(strength)))
    radius = 2 if s > cfg.radius_strength else 1
    range_sigma = cfg.range_sigma_base + cfg.range_sigma_scale * s
    edge_threshold = cfg.edge_base + (1 - s) * cfg.edge_scale
    return SmoothingParams(
        strength=s,
        bilateral=s > cfg.bilateral_min_strength,
        radius=radius,
        spatial_sigma=cfg.wide_spatial_sigma if radius == 2 else cfg.spatial_sigma,
        range_sigma2=2 * range_sigma * range_sigma,
        min_blob_size=max(2, int(math.floor(cfg.blob_base + s * cfg.blob_scale + 0.5))),
        edge_threshold_sq=edge_threshold * edge_threshold,
        majority_passes=2 if s > cfg.extra_pass_strength else 1,
        majority_count=cfg.majority_count,
    )


@dataclass
class CellSamples:
    """Per-cell colors, all shaped (height, width[, 3])."""
    mask: np.ndarray
    rgb: np.ndarray
    lab: np.ndarray


def _shifted(values: np.ndarray, dx: int, dy: int, fill=0) -> np.ndarray:
    """out[y, x] = values[y + dy, x + dx], or ``fill`` beyond the edges."""
    h, w = values.shape[:2]
    r = max(abs(dx), abs(dy))
    if r == 0:
        return values.copy()
    pad = [(r, r), (r, r)] + [(0, 0)] * (values.ndim - 2)
    padded = np.pad(values, pad, mode='constant', constant_values=fill)
    return padded[r + dy:r + dy + h, r + dx:r + dx + w]


def sample_cells(rgba: np.ndarray, grid_width: int, grid_height: int,
                 placement: Placement, alpha_cutoff: int = 10) -> CellSamples:
    """
    Sample the image at every cell centre (nearest pixel).

    Cells whose centre falls outside the image, or on a pixel with alpha below
    ``alpha_cutoff``, are left unmasked.
    """
    img_h, img_w = rgba.shape[:2]
    img_x, img_y = placement.image_coords(grid_width, grid_height)
    valid_x = (img_x >= 0) & (img_x < img_w)
    valid_y = (img_y >= 0) & (img_y < img_h)
    ix = np.floor(np.where(valid_x, img_x, 0)).astype(np.int64)
    iy = np.floor(np.where(valid_y, img_y, 0)).astype(np.int64)

    mask = valid_y[:, np.newaxis] & valid_x[np.newaxis, :]
    if img_w == 0 or img_h == 0:
        mask[:] = False
        zeros = np.zeros((grid_height, grid_width, 3), dtype=np.float64)
        return CellSamples(mask, zeros, zeros.copy())

    pixels = rgba[iy[:, np.newaxis], ix[np.newaxis, :]]
    mask &= pixels[..., 3] >= alpha_cutoff

    rgb = pixels[..., :3].astype(np.float64) / 255.0
    rgb[~mask] = 0.0
    lab = rgb_to_oklab(rgb)
    lab[~mask] = 0.0
    return CellSamples(mask, rgb, lab)


def bilateral_smooth(samples: CellSamples, params: SmoothingParams) -> Tuple[np.ndarray, np.ndarray]:
    """
    Edge-preserving smoothing of masked cells.

    Each cell becomes a weighted mean of its masked neighbours' sRGB, the
    weight being a spatial Gaussian times a range Gaussian over OKLab distance,
    so neighbours across a real color edge contribute almost nothing.

    Returns:
        Tuple of (smoothed sRGB, smoothed OKLab)
    """
    mask = samples.mask
    if not params.bilateral:
        return samples.rgb.copy(), samples.lab.copy()

    sum_rgb = np.zeros_like(samples.rgb)
    sum_w = np.zeros(mask.shape, dtype=np.float64)
    two_sigma2 = 2 * params.spatial_sigma * params.spatial_sigma

    for dy in range(-params.radius, params.radius + 1):
        for dx in range(-params.radius, params.radius + 1):
            spatial = math.exp(-(dx * dx + dy * dy) / two_sigma2)
            n_mask = _shifted(mask, dx, dy, fill=False)
            n_rgb = _shifted(samples.rgb, dx, dy)
            n_lab = _shifted(samples.lab, dx, dy)
            dist = np.sum((n_lab - samples.lab) ** 2, axis=-1)
            weight = spatial * np.exp(-dist / params.range_sigma2) * n_mask
            sum_rgb += n_rgb * weight[..., np.newaxis]
            sum_w += weight

    smoothed = np.where(
        (sum_w > 0)[..., np.newaxis],
        sum_rgb / np.maximum(sum_w, 1e-300)[..., np.newaxis],
        samples.rgb,
    )
    smoothed[~mask] = 0.0
    lab = rgb_to_oklab(smoothed)
    lab[~mask] = 0.0
    return smoothed, lab


def assign_nearest(lab: np.ndarray, mask: np.ndarray, palette: Palette) -> np.ndarray:
    """Nearest allowed palette id per masked cell; unmasked cells stay empty."""
    ids, labs = palette.lab_array()
    quantized = np.zeros(mask.shape, dtype=np.uint16)
    if len(ids) == 0 or not mask.any():
        return quantized
    distances = squared_distances(lab[mask], labs)
    quantized[mask] = ids[np.argmin(distances, axis=1)]
    return quantized


def edge_strength_map(lab: np.ndarray, mask: np.ndarray) -> np.ndarray:
    """Max squared OKLab distance from each masked cell to its masked 4-neighbours."""
    edge = np.zeros(mask.shape, dtype=np.float64)
    for dx, dy in FOUR_NEIGHBOURS:
        n_mask = _shifted(mask, dx, dy, fill=False) & mask
        dist = np.sum((_shifted(lab, dx, dy) - lab) ** 2, axis=-1)
        edge = np.maximum(edge, np.where(n_mask, dist, 0.0))
    return edge


def cleanup_speckles(quantized: np.ndarray, edge: np.ndarray, min_blob_size: int,
                     edge_threshold_sq: float) -> np.ndarray:
    """
    Absorb tiny flat components into their surroundings.

    A 4-connected same-color component of at most ``min_blob_size`` cells whose
    strongest internal edge is below ``edge_threshold_sq`` takes the color most
    often seen across its border. Components are visited in row-major order
    of their first cell and see the recolorings made before them. Empty cells
    count as a border color like any other. Ties go to the color met first
    while walking the component row by row, checking each cell's left, right,
    up and down neighbours in turn.
    """
    cleaned = quantized.copy()
    labels = measure.label(quantized.astype(np.int32), background=EMPTY_ID, connectivity=1)
    n_labels = int(labels.max())
    if n_labels == 0:
        return cleaned

    index = np.arange(1, n_labels + 1)
    sizes = np.bincount(labels.ravel(), minlength=n_labels + 1)[1:]
    max_edge = np.asarray(ndimage.maximum(edge, labels=labels, index=index), dtype=np.float64)
    candidates = index[(sizes <= min_blob_size) & (max_edge < edge_threshold_sq)]
    if candidates.size == 0:
        return cleaned

    h, w = quantized.shape
    objects = ndimage.find_objects(labels)
    for label_id in candidates:
        rows, cols = objects[label_id - 1]
        in_component = labels[rows, cols] == label_id
        own = int(quantized[rows, cols][in_component][0])

        tally: Dict[int, int] = {}
        ys, xs = np.nonzero(in_component)
        for y, x in zip(ys + rows.start, xs + cols.start):
            for dx, dy in FOUR_NEIGHBOURS:
                nx, ny = x + dx, y + dy
                if nx < 0 or ny < 0 or nx >= w or ny >= h:
                    continue
                if labels[ny, nx] == label_id:
                    continue
                neighbour = int(cleaned[ny, nx])
                if neighbour == own:
                    continue
                tally[neighbour] = tally.get(neighbour, 0) + 1

        if tally:
            replacement = max(tally, key=tally.get)
            cleaned[rows, cols][in_component] = replacement

    return cleaned


def majority_smooth(grid: np.ndarray, mask: np.ndarray, edge: np.ndarray,
                    edge_threshold_sq: float, passes: int = 1,
                    majority_count: int = 5) -> np.ndarray:
    """
    8-neighbour majority vote on flat (non-edge) masked cells.

    Each pass reads the previous pass's grid and writes a fresh one, so
    changes never cascade within a pass.
    """
    current = grid.copy()
    eligible_cells = mask & (edge < edge_threshold_sq)
    if not eligible_cells.any():
        return current

    for _ in range(passes):
        neighbours = np.stack([
            np.where(_shifted(mask, dx, dy, fill=False), _shifted(current, dx, dy), EMPTY_ID)
            for dx, dy in EIGHT_NEIGHBOURS
        ])
        votes = np.stack([
            np.sum(neighbours == neighbours[k], axis=0) for k in range(len(EIGHT_NEIGHBOURS))
        ])
        votes[neighbours == EMPTY_ID] = 0

        winner = np.argmax(votes, axis=0)[np.newaxis]
        best_count = np.take_along_axis(votes, winner, axis=0)[0]
        best_id = np.take_along_axis(neighbours, winner, axis=0)[0]

        change = eligible_cells & (best_count >= majority_count) & (best_id != current)
        current = np.where(change, best_id, current).astype(np.uint16)

    return current


class ImageQuantizer:
    """Converts a raster image into a stitch grid against a thread palette."""

    def __init__(self, palette: Palette, config: Optional[Config] = None):
        self.palette = palette
        self.config = config or Config()

    def allowed_palette(self, rgba: np.ndarray, max_colors: int) -> Palette:
        """
        Palette entries the quantizer may use.

        When ``max_colors`` is below the palette size, the image's own
        representative colors are extracted and snapped to that many distinct
        entries; otherwise the whole palette is allowed.
        """
        valid = Palette(self.palette.valid_colors())
        if len(valid) == 0:
            return valid

        limit = max(2, min(max_colors, len(valid)))
        if limit >= len(valid):
            return valid

        hexes = PaletteExtractor(self.config).extract_from_image(rgba, limit)
        picked = map_to_palette(hexes, valid)
        if picked:
            subset = valid.subset(picked)
            if len(subset) > 0:
                return subset
        return valid

    def quantize(self, image: ImageLike, grid: StitchGrid,
                 placement: Optional[Placement] = None,
                 max_colors: Optional[int] = None,
                 smoothing: Optional[float] = None) -> StitchGrid:
        """
        Quantize ``image`` onto a grid the size of ``grid``.

        Args:
            image: Path, PIL image or RGBA array
            grid: Current grid; only its dimensions are used
            placement: Image placement over the canvas (fit-to-grid if None)
            max_colors: Cap on distinct palette colors (config default if None)
            smoothing: Smoothing strength 0-1 (config default if None)

        Returns:
            A new grid of identical dimensions, or ``grid`` itself when there
            is nothing to quantize (no masked cells, empty palette, bad placement)
        """
        cfg = self.config.quantize
        max_colors = cfg.max_colors if max_colors is None else max_colors
        smoothing = cfg.smoothing if smoothing is None else smoothing

        rgba = load_image(image)
        if placement is None:
            placement = fit_placement(rgba.shape[1], rgba.shape[0], grid.width, grid.height)
        if grid.total_cells == 0 or not placement.is_valid:
            return grid
        if not self.palette.valid_colors():
            return grid

        samples = sample_cells(rgba, grid.width, grid.height, placement, cfg.alpha_cutoff)
        if not samples.mask.any():
            return grid

        if self.config.verbose:
            print(f"Quantizing {grid.width}x{grid.height} grid to at most {max_colors} colors "
                  f"(smoothing {smoothing:.2f})...")

        params = strength_params(smoothing, cfg)
        allowed = self.allowed_palette(rgba, max_colors)
        _, smooth_lab = bilateral_smooth(samples, params)

        quantized = assign_nearest(smooth_lab, samples.mask, allowed)
        edge = edge_strength_map(smooth_lab, samples.mask)
        cleaned = cleanup_speckles(quantized, edge, params.min_blob_size, params.edge_threshold_sq)
        cleaned = majority_smooth(
            cleaned, samples.mask, edge, params.edge_threshold_sq,
            passes=params.majority_passes, majority_count=params.majority_count,
        )

        if self.config.verbose:
            self._print_color_distribution(cleaned)

        return grid.with_cells(cleaned.reshape(-1))

    def _print_color_distribution(self, cells: np.ndarray):
        ids, counts = np.unique(cells[cells != EMPTY_ID], return_counts=True)
        total = cells.size
        print("Color distribution: ", end="")
        for color_id, count in zip(ids, counts):
            color = self.palette.get_color_by_id(int(color_id))
            label = color.code or color.name if color else str(color_id)
            print(f"{label}:{count / total * 100:.0f}% ", end="")
        print()


def quantize_image_to_grid(image: ImageLike, grid: StitchGrid, palette: Palette,
                           placement: Optional[Placement] = None,
                           max_colors: Optional[int] = None,
                           smoothing: Optional[float] = None,
                           config: Optional[Config] = None) -> StitchGrid:
    """
    Convenience function to quantize an image onto a grid.

    Returns a new grid of the same dimensions (or ``grid`` unchanged for
    degenerate input).
    """
    return ImageQuantizer(palette, config).quantize(
        image, grid, placement=placement, max_colors=max_colors, smoothing=smoothing
    )
