"""
Low-level color science utilities shared across the stitch chart pipeline.

Provides:
    - sRGB <-> linear light transfer functions (IEC 61966-2-1 piecewise gamma)
    - sRGB <-> OKLab conversion (Björn Ottosson's M1/M2 matrices)
    - Hex string parsing/formatting that degrades to ``None`` instead of raising

All conversions accept NumPy arrays of shape (..., 3) so callers can operate on
entire grids, yet they also work with plain Python tuples for single colors.
Channel values are floats in [0, 1] unless a helper says otherwise.
"""

from __future__ import annotations

import math
from typing import Optional, Tuple

import numpy as np
from scipy.spatial.distance import cdist

LMS_FROM_LINEAR = np.array(
    [
        [0.4122214708, 0.5363325363, 0.0514459929],
        [0.2119034982, 0.6806995451, 0.1073969566],
        [0.0883024619, 0.2817188376, 0.6299787005],
    ],
    dtype=np.float64,
)

OKLAB_FROM_LMS = np.array(
    [
        [0.2104542553, 0.7936177850, -0.0040720468],
        [1.9779984951, -2.4285922050, 0.4505937099],
        [0.0259040371, 0.7827717662, -0.8086757660],
    ],
    dtype=np.float64,
)

LMS_FROM_OKLAB = np.array(
    [
        [1.0, 0.3963377774, 0.2158037573],
        [1.0, -0.1055613458, -0.0638541728],
        [1.0, -0.0894841775, -1.2914855480],
    ],
    dtype=np.float64,
)

LINEAR_FROM_LMS = np.array(
    [
        [4.0767416621, -3.3077115913, 0.2309699292],
        [-1.2684380046, 2.6097574011, -0.3413193965],
        [-0.0041960863, -0.7034186147, 1.7076147010],
    ],
    dtype=np.float64,
)

TWO_PI = 2.0 * math.pi


def _to_ndarray(color) -> np.ndarray:
    arr = np.asarray(color, dtype=np.float64)
    if arr.shape[-1] != 3:
        raise ValueError("Input color must have three channels")
    return arr


def srgb_to_linear(rgb) -> np.ndarray:
    """Convert gamma-encoded sRGB (0-1) to linear light."""
    rgb = _to_ndarray(rgb)
    return np.where(rgb <= 0.04045, rgb / 12.92, ((rgb + 0.055) / 1.055) ** 2.4)


def linear_to_srgb(linear_rgb) -> np.ndarray:
    """Convert linear light back to gamma-encoded sRGB, clamped to 0-1."""
    linear_rgb = np.clip(_to_ndarray(linear_rgb), 0.0, 1.0)
    srgb = np.where(
        linear_rgb <= 0.0031308,
        12.92 * linear_rgb,
        1.055 * np.power(linear_rgb, 1 / 2.4) - 0.055,
    )
    return np.clip(srgb, 0.0, 1.0)


def rgb_to_oklab(rgb) -> np.ndarray:
    """Convert sRGB (0-1 per channel) to OKLab."""
    linear = srgb_to_linear(rgb)
    lms = linear @ LMS_FROM_LINEAR.T
    return np.cbrt(lms) @ OKLAB_FROM_LMS.T


def oklab_to_rgb(lab) -> np.ndarray:
    """OKLab -> sRGB (0-1). Out-of-gamut colors are clamped, never NaN."""
    lab = _to_ndarray(lab)
    lms = (lab @ LMS_FROM_OKLAB.T) ** 3
    linear = lms @ LINEAR_FROM_LMS.T
    return linear_to_srgb(linear)


def rgb255_to_oklab(rgb) -> np.ndarray:
    """Convenience helper for 8-bit sRGB -> OKLab."""
    return rgb_to_oklab(_to_ndarray(rgb) / 255.0)


def oklab_to_rgb255(lab) -> np.ndarray:
    """OKLab -> 8-bit sRGB, rounded half up."""
    rgb = oklab_to_rgb(lab)
    return np.floor(rgb * 255.0 + 0.5).astype(np.uint8)


def parse_hex(hex_value: str) -> Optional[Tuple[float, float, float]]:
    """Parse ``#rrggbb`` (hash optional) into 0-1 floats, or None if malformed."""
    if not isinstance(hex_value, str):
        return None
    clean = hex_value.strip().lstrip("#")
    if len(clean) != 6:
        return None
    try:
        r = int(clean[0:2], 16)
        g = int(clean[2:4], 16)
        b = int(clean[4:6], 16)
    except ValueError:
        return None
    return (r / 255.0, g / 255.0, b / 255.0)


def rgb_to_hex(r: float, g: float, b: float) -> str:
    """Format 0-1 float channels as ``#rrggbb``."""
    def to_byte(value: float) -> int:
        return int(math.floor(min(1.0, max(0.0, float(value))) * 255.0 + 0.5))

    return f"#{to_byte(r):02x}{to_byte(g):02x}{to_byte(b):02x}"


def hex_to_oklab(hex_value: str) -> Optional[np.ndarray]:
    """Parse a hex color straight into OKLab; None when malformed."""
    rgb = parse_hex(hex_value)
    if rgb is None:
        return None
    return rgb_to_oklab(rgb)


def oklab_to_hex(lab) -> str:
    r, g, b = oklab_to_rgb(lab)
    return rgb_to_hex(r, g, b)


def hue_and_chroma(lab) -> Tuple[np.ndarray, np.ndarray]:
    """
    Polar form of the (a, b) plane.

    Returns hue in [0, 2*pi) and chroma (magnitude of a/b). Near-zero chroma
    yields hue 0 rather than a noisy angle.
    """
    lab = _to_ndarray(lab)
    a = lab[..., 1]
    b = lab[..., 2]
    chroma = np.sqrt(a * a + b * b)
    hue = np.where(chroma > 1e-12, np.arctan2(b, a), 0.0)
    hue = np.where(hue < 0, hue + TWO_PI, hue)
    return hue, chroma


def squared_distances(points, centers) -> np.ndarray:
    """Pairwise squared Euclidean distances, shape (len(points), len(centers))."""
    points = np.atleast_2d(_to_ndarray(points))
    centers = np.atleast_2d(_to_ndarray(centers))
    return cdist(points, centers, "sqeuclidean")


def contrast_for_hex(hex_value: str) -> str:
    """Pick black or white for symbols drawn on top of a cell color."""
    rgb = parse_hex(hex_value)
    if rgb is None:
        return "#000000"
    r, g, b = rgb
    luminance = 0.2126 * r + 0.7152 * g + 0.0722 * b
    return "#000000" if luminance > 0.6 else "#ffffff"
