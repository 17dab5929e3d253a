"""
Snap free-form colors onto a fixed thread palette.
"""

import numpy as np
from typing import Dict, Iterable, List, Optional

from .color_math import hex_to_oklab
from .palette import Palette


def map_to_palette(candidates: Iterable[str], palette: Palette) -> List[int]:
    """
    Match each candidate hex to the nearest not-yet-used palette entry.

    Matching is greedy in candidate order and never reuses an entry, so two
    distinct extracted colors do not collapse onto one thread while another
    close match is still free. Malformed candidates are skipped, as are
    palette entries whose own hex is malformed.

    Returns:
        Palette ids, one per matched candidate, in candidate order
    """
    pool_ids, pool_labs = palette.lab_array()
    used = np.zeros(len(pool_ids), dtype=bool)
    picked: List[int] = []

    for hex_value in candidates:
        if used.all():
            break
        lab = hex_to_oklab(hex_value)
        if lab is None:
            continue
        distances = np.sum((pool_labs - lab) ** 2, axis=1)
        distances[used] = np.inf
        best = int(np.argmin(distances))
        used[best] = True
        picked.append(int(pool_ids[best]))

    return picked


def nearest_color_id(hex_value: str, palette: Palette,
                     exclude: Iterable[int] = ()) -> Optional[int]:
    """Nearest palette id to ``hex_value`` by OKLab distance; None if nothing matches."""
    lab = hex_to_oklab(hex_value)
    if lab is None:
        return None
    pool_ids, pool_labs = palette.lab_array()
    excluded = set(exclude)
    keep = np.array([int(i) not in excluded for i in pool_ids], dtype=bool)
    if not keep.any():
        return None
    distances = np.sum((pool_labs - lab) ** 2, axis=1)
    distances[~keep] = np.inf
    return int(pool_ids[int(np.argmin(distances))])


def replacement_map(delete_ids: Iterable[int], keep_ids: Iterable[int],
                    palette: Palette) -> Dict[int, int]:
    """
    Pick a surviving color for each color being deleted from a chart.

    Each deleted id maps to the perceptually nearest kept id. Deleted colors
    that cannot be resolved (unknown id, malformed hex) fall back to the first
    matchable kept id. Returns an empty mapping when nothing is kept.
    """
    keep_ids = [int(i) for i in keep_ids]
    if not keep_ids:
        return {}

    kept = palette.subset(keep_ids)
    kept_ids, kept_labs = kept.lab_array()
    fallback = int(kept_ids[0]) if len(kept_ids) else keep_ids[0]

    mapping: Dict[int, int] = {}
    for color_id in delete_ids:
        color = palette.get_color_by_id(int(color_id))
        if color is None or not color.is_valid or len(kept_ids) == 0:
            mapping[int(color_id)] = fallback
            continue
        distances = np.sum((kept_labs - np.asarray(color.lab)) ** 2, axis=1)
        mapping[int(color_id)] = int(kept_ids[int(np.argmin(distances))])
    return mapping
