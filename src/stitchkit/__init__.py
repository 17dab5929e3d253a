"""
Stitch Chart Engine

Turns reference photos into limited-palette, grid-aligned stitch charts:
perceptual palette extraction, image-to-grid quantization, and a
cancellable scanline flood fill for interactive editing.
"""

__version__ = "1.0.0"
__author__ = "Stitch Kit"

from .config import Config
from .palette import Palette, StitchColor, get_bundled_palette
from .grid import FillRegion, StitchGrid, make_grid
from .extract import PaletteExtractor, extract_palette, extract_palette_from_image
from .mapping import map_to_palette
from .quantize import ImageQuantizer, Placement, fit_placement, quantize_image_to_grid
from .fill import ChunkedFill, FillResult, FillState, FrameScheduler, scanline_fill
from .session import GridSession
from . import cli

__all__ = [
    "Config",
    "Palette",
    "StitchColor",
    "get_bundled_palette",
    "FillRegion",
    "StitchGrid",
    "make_grid",
    "PaletteExtractor",
    "extract_palette",
    "extract_palette_from_image",
    "map_to_palette",
    "ImageQuantizer",
    "Placement",
    "fit_placement",
    "quantize_image_to_grid",
    "ChunkedFill",
    "FillResult",
    "FillState",
    "FrameScheduler",
    "scanline_fill",
    "GridSession",
    "cli"
]
