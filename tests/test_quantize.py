import sys
from pathlib import Path

import numpy as np
from PIL import Image

PROJECT_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(PROJECT_ROOT / "src"))

from stitchkit.config import Config
from stitchkit.grid import make_grid
from stitchkit.palette import Palette, get_bundled_palette
from stitchkit.quantize import (
    ImageQuantizer,
    Placement,
    cleanup_speckles,
    edge_strength_map,
    fit_placement,
    majority_smooth,
    quantize_image_to_grid,
    sample_cells,
    strength_params,
)


def _split_image(size=10) -> np.ndarray:
    rgb = np.zeros((size, size, 3), dtype=np.uint8)
    rgb[:, :size // 2] = (255, 0, 0)
    rgb[:, size // 2:] = (0, 0, 255)
    return rgb


def _noisy_image(tmp_path: Path, size=(32, 24)) -> Path:
    """Smooth gradient with a little noise, saved to disk."""
    width, height = size
    rng = np.random.default_rng(11)
    x = np.linspace(0, 255, width)
    y = np.linspace(0, 255, height)
    xx, yy = np.meshgrid(x, y)
    rgb = np.stack([xx, yy, 255 - xx], axis=2) + rng.normal(0, 12, size=(height, width, 3))
    image_path = tmp_path / "noisy.png"
    Image.fromarray(np.clip(rgb, 0, 255).astype(np.uint8)).save(image_path)
    return image_path


def test_split_image_quantizes_to_two_clean_halves():
    palette = Palette.from_hexes(["#ff0000", "#0000ff", "#00ff00", "#ffffff"])
    grid = make_grid(10, 10)
    result = quantize_image_to_grid(
        _split_image(), grid, palette, placement=Placement(), max_colors=2
    )
    cells = result.cells.reshape(10, 10)
    assert (cells[:, :5] == 1).all()
    assert (cells[:, 5:] == 2).all()
    assert result is not grid
    assert (grid.cells == 0).all(), "Input grid must not be modified"


def test_requantizing_is_stable(tmp_path):
    image_path = _noisy_image(tmp_path)
    palette = get_bundled_palette()
    quantizer = ImageQuantizer(palette)
    first = quantizer.quantize(str(image_path), make_grid(32, 24), max_colors=6, smoothing=0.5)
    second = quantizer.quantize(str(image_path), first, max_colors=6, smoothing=0.5)
    assert np.array_equal(first.cells, second.cells)
    used = set(np.unique(first.cells).tolist())
    assert 0 not in used
    assert len(used) <= 6
    assert used <= set(palette.ids)


def test_full_palette_used_when_cap_exceeds_palette():
    palette = Palette.from_hexes(["#ff0000", "#0000ff"])
    result = quantize_image_to_grid(_split_image(), make_grid(10, 10), palette,
                                    placement=Placement(), max_colors=20)
    assert set(np.unique(result.cells).tolist()) == {1, 2}


def test_degenerate_inputs_return_the_same_grid():
    palette = Palette.from_hexes(["#ff0000", "#0000ff"])
    grid = make_grid(6, 6)
    clear = np.zeros((6, 6, 4), dtype=np.uint8)
    assert quantize_image_to_grid(clear, grid, palette) is grid
    assert quantize_image_to_grid(_split_image(6), grid, Palette()) is grid
    bad = Placement(scale=0.0)
    assert quantize_image_to_grid(_split_image(6), grid, palette, placement=bad) is grid
    empty = make_grid(0, 0)
    assert quantize_image_to_grid(_split_image(6), empty, palette) is empty


def test_cells_outside_image_stay_empty():
    palette = Palette.from_hexes(["#ff0000", "#0000ff"])
    image = np.zeros((4, 4, 4), dtype=np.uint8)
    image[..., 0] = 255
    image[..., 3] = 255
    image[0, 0, 3] = 5  # below the alpha cutoff
    result = quantize_image_to_grid(
        image, make_grid(6, 6), palette, placement=Placement(offset_x=1, offset_y=1)
    )
    cells = result.cells.reshape(6, 6)
    assert (cells[0, :] == 0).all() and (cells[:, 0] == 0).all()
    assert (cells[5, :] == 0).all() and (cells[:, 5] == 0).all()
    assert cells[1, 1] == 0
    assert (cells[2:5, 2:5] == 1).all()


def test_fit_placement_centres_image():
    placement = fit_placement(20, 10, 10, 10)
    assert placement.scale == 0.5
    assert placement.offset_x == 0.0
    assert placement.offset_y == 2.5
    wide_cells = fit_placement(100, 100, 4, 2, cell_size=10.0)
    assert abs(wide_cells.scale - 0.2) < 1e-12
    assert abs(wide_cells.offset_x - 10.0) < 1e-9
    assert abs(wide_cells.offset_y) < 1e-9


def test_sampling_maps_cell_centres_through_placement():
    image = np.zeros((2, 2, 4), dtype=np.uint8)
    image[0, 0] = (255, 0, 0, 255)
    image[0, 1] = (0, 255, 0, 255)
    image[1, 0] = (0, 0, 255, 255)
    image[1, 1] = (255, 255, 255, 255)
    # Each image pixel spans 2x2 cells
    samples = sample_cells(image, 4, 4, Placement(scale=2.0))
    assert samples.mask.all()
    assert np.allclose(samples.rgb[0, 0], [1, 0, 0])
    assert np.allclose(samples.rgb[1, 3], [0, 1, 0])
    assert np.allclose(samples.rgb[3, 1], [0, 0, 1])
    assert np.allclose(samples.rgb[2, 2], [1, 1, 1])


def test_strength_mapping():
    low = strength_params(0.0)
    assert not low.bilateral
    assert low.radius == 1 and low.min_blob_size == 2 and low.majority_passes == 1
    assert abs(low.edge_threshold_sq - 0.18 ** 2) < 1e-12

    default = strength_params(0.25)
    assert default.bilateral and default.radius == 1
    assert default.min_blob_size == 4
    assert abs(default.range_sigma2 - 2 * 0.07 ** 2) < 1e-12

    high = strength_params(1.0)
    assert high.radius == 2 and high.spatial_sigma == 1.6
    assert high.min_blob_size == 8 and high.majority_passes == 2
    assert abs(high.edge_threshold_sq - 0.01) < 1e-12
    assert strength_params(7.0).strength == 1.0


def test_speckle_is_absorbed_by_surroundings():
    grid = np.ones((5, 5), dtype=np.uint16)
    grid[2, 2] = 2
    flat = np.zeros((5, 5))
    cleaned = cleanup_speckles(grid, flat, min_blob_size=2, edge_threshold_sq=0.01)
    assert (cleaned == 1).all()
    assert grid[2, 2] == 2, "Input must not be modified"

    # A sharp edge inside the component protects it
    sharp = flat.copy()
    sharp[2, 2] = 1.0
    assert cleanup_speckles(grid, sharp, 2, 0.01)[2, 2] == 2

    # Large components are left alone
    block = np.ones((5, 5), dtype=np.uint16)
    block[1:4, 1:4] = 3
    assert np.array_equal(cleanup_speckles(block, flat, 8, 0.01), block)


def test_speckle_bordered_by_empty_cells_becomes_empty():
    grid = np.zeros((3, 3), dtype=np.uint16)
    grid[1, 1] = 4
    grid[1, 2] = 6
    cleaned = cleanup_speckles(grid, np.zeros((3, 3)), 1, 0.01)
    assert cleaned[1, 1] == 0
    assert (cleaned == 0).all()

    # Mostly colored border still wins over a single empty neighbour
    grid = np.full((3, 3), 6, dtype=np.uint16)
    grid[1, 1] = 4
    grid[0, 1] = 0
    cleaned = cleanup_speckles(grid, np.zeros((3, 3)), 1, 0.01)
    assert cleaned[1, 1] == 6
    assert cleaned[0, 1] == 0


def test_speckle_tie_goes_to_first_neighbour_seen():
    flat = np.zeros((1, 5))
    grid = np.array([[1, 1, 5, 2, 2]], dtype=np.uint16)
    assert cleanup_speckles(grid, flat, 1, 0.01).tolist() == [[1, 1, 1, 2, 2]]
    grid = np.array([[2, 2, 5, 1, 1]], dtype=np.uint16)
    assert cleanup_speckles(grid, flat, 1, 0.01).tolist() == [[2, 2, 2, 1, 1]]


def test_majority_vote_flips_isolated_cell():
    grid = np.ones((3, 3), dtype=np.uint16)
    grid[1, 1] = 2
    mask = np.ones((3, 3), dtype=bool)
    edge = np.zeros((3, 3))
    smoothed = majority_smooth(grid, mask, edge, 0.01)
    assert (smoothed == 1).all()

    # Strong edge blocks the vote
    edge[1, 1] = 1.0
    assert majority_smooth(grid, mask, edge, 0.01)[1, 1] == 2

    # Unmasked neighbours do not vote
    edge[1, 1] = 0.0
    mask[0, :] = False
    mask[2, 0] = False
    assert majority_smooth(grid, mask, edge, 0.01)[1, 1] == 2


def test_edge_map_ignores_unmasked_neighbours():
    lab = np.zeros((1, 3, 3))
    lab[0, 1] = (0.5, 0.0, 0.0)
    lab[0, 2] = (0.9, 0.0, 0.0)
    mask = np.array([[True, True, False]])
    edge = edge_strength_map(lab, mask)
    assert np.allclose(edge[0], [0.25, 0.25, 0.0])


def test_verbose_quantization_reports_progress(capsys):
    config = Config(verbose=True)
    palette = Palette.from_hexes(["#ff0000", "#0000ff", "#00ff00"])
    ImageQuantizer(palette, config).quantize(_split_image(), make_grid(10, 10),
                                             placement=Placement(), max_colors=2)
    out = capsys.readouterr().out
    assert "Quantizing 10x10 grid" in out
    assert "Color distribution" in out
