"""
Raster loading and OKLab sampling for palette extraction and quantization.
"""

import os
import numpy as np
from dataclasses import dataclass
from typing import Union

from PIL import Image, ImageOps

from .color_math import rgb_to_oklab

ImageLike = Union[str, os.PathLike, Image.Image, np.ndarray]


@dataclass
class Samples:
    """Flat OKLab samples plus the sRGB (0-1) they came from."""
    values: np.ndarray
    rgb: np.ndarray

    @property
    def count(self) -> int:
        return int(self.values.shape[0])

    @classmethod
    def empty(cls) -> "Samples":
        return cls(np.zeros((0, 3), dtype=np.float64), np.zeros((0, 3), dtype=np.float64))


def load_image(image: ImageLike) -> np.ndarray:
    """
    Load an image as an (H, W, 4) uint8 RGBA array.

    Accepts a path, a PIL image, or an existing array (gray, RGB or RGBA).
    """
    if isinstance(image, np.ndarray):
        return _as_rgba_array(image)

    if isinstance(image, Image.Image):
        pil_image = image
    else:
        if not os.path.exists(image):
            raise FileNotFoundError(f"Image not found: {image}")
        pil_image = Image.open(image)
        # Auto-orient based on EXIF
        pil_image = ImageOps.exif_transpose(pil_image)

    if pil_image.mode != 'RGBA':
        pil_image = pil_image.convert('RGBA')
    return np.array(pil_image, dtype=np.uint8)


def _as_rgba_array(array: np.ndarray) -> np.ndarray:
    array = np.asarray(array)
    if array.ndim == 2:
        array = np.stack([array] * 3, axis=-1)
    if array.ndim != 3 or array.shape[2] not in (3, 4):
        raise ValueError(f"Expected an (H, W, 3|4) image array, got shape {array.shape}")
    if array.dtype != np.uint8:
        array = np.clip(array, 0, 255).astype(np.uint8)
    if array.shape[2] == 3:
        alpha = np.full(array.shape[:2] + (1,), 255, dtype=np.uint8)
        array = np.concatenate([array, alpha], axis=2)
    return array


def downsample_to_budget(rgba: np.ndarray, max_samples: int) -> np.ndarray:
    """Nearest-neighbour shrink so that width*height stays within ``max_samples``."""
    height, width = rgba.shape[:2]
    total = width * height
    if total <= max_samples:
        return rgba
    scale = np.sqrt(max_samples / total)
    sample_w = max(1, int(round(width * scale)))
    sample_h = max(1, int(round(height * scale)))
    resized = Image.fromarray(rgba).resize((sample_w, sample_h), Image.Resampling.NEAREST)
    return np.array(resized, dtype=np.uint8)


def sample_image_oklab(image: ImageLike, max_samples: int = 40000,
                       alpha_cutoff: int = 16) -> Samples:
    """
    Collect OKLab samples from an image.

    Images larger than ``max_samples`` pixels are uniformly sub-sampled first.
    Pixels with alpha below ``alpha_cutoff`` carry no color and are skipped.
    A zero-size image yields empty samples.
    """
    rgba = load_image(image)
    if rgba.shape[0] == 0 or rgba.shape[1] == 0:
        return Samples.empty()

    rgba = downsample_to_budget(rgba, max_samples)
    pixels = rgba.reshape(-1, 4)
    opaque = pixels[pixels[:, 3] >= alpha_cutoff]
    if opaque.shape[0] == 0:
        return Samples.empty()

    rgb = opaque[:, :3].astype(np.float64) / 255.0
    return Samples(values=rgb_to_oklab(rgb), rgb=rgb)
