"""
Thread palette management with OKLab coordinates for perceptual matching.
"""

import csv
import os
import numpy as np
from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from .color_math import parse_hex, rgb_to_oklab

# Grid value reserved for "no stitch"; never a palette id.
EMPTY_ID = 0
MAX_COLOR_ID = 0xFFFF


@dataclass
class StitchColor:
    """A single palette entry."""
    id: int
    name: str
    hex: str
    family: Optional[str] = None
    code: Optional[str] = None
    rgb: Optional[Tuple[float, float, float]] = field(default=None, repr=False)
    lab: Optional[Tuple[float, float, float]] = field(default=None, repr=False)

    def __post_init__(self):
        """Validate the id and pre-compute sRGB and OKLab coordinates."""
        if not (1 <= int(self.id) <= MAX_COLOR_ID):
            raise ValueError(f"Palette id must be between 1 and {MAX_COLOR_ID}, got {self.id}")
        self.id = int(self.id)
        if self.rgb is None:
            self.rgb = parse_hex(self.hex)
        if self.rgb is not None:
            self.hex = "#" + self.hex.strip().lstrip("#").lower()
            if self.lab is None:
                self.lab = tuple(float(v) for v in rgb_to_oklab(self.rgb))

    @property
    def is_valid(self) -> bool:
        """False when the hex string could not be parsed."""
        return self.rgb is not None


class Palette:
    """Ordered palette with unique ids and a cached OKLab array."""

    def __init__(self, colors: Iterable[StitchColor] = ()):
        self.colors: List[StitchColor] = []
        self.id_lookup: Dict[int, StitchColor] = {}
        self.code_lookup: Dict[str, StitchColor] = {}
        for color in colors:
            self._append(color)

    def _append(self, color: StitchColor):
        if color.id in self.id_lookup:
            raise ValueError(f"Duplicate palette id: {color.id}")
        self.colors.append(color)
        self.id_lookup[color.id] = color
        if color.code:
            self.code_lookup[color.code] = color

    @classmethod
    def from_csv(cls, csv_path: str, verbose: bool = False) -> "Palette":
        """
        Load a palette from CSV with columns ``id,name,hex[,family,code]``.

        Rows with a missing/invalid id or a duplicate id are skipped with a
        warning. Rows with a malformed hex are kept but never matched against.
        """
        if not os.path.exists(csv_path):
            raise FileNotFoundError(f"Palette file not found: {csv_path}")

        palette = cls()
        try:
            with open(csv_path, 'r', encoding='utf-8') as f:
                palette._load_rows(csv.DictReader(f))
        except UnicodeDecodeError:
            palette = cls()
            with open(csv_path, 'r', encoding='latin-1') as f:
                palette._load_rows(csv.DictReader(f))

        if verbose:
            print(f"Loaded {len(palette)} palette colors from {csv_path}")
        return palette

    def _load_rows(self, reader: csv.DictReader):
        for row in reader:
            if not row or not row.get('id'):
                continue
            try:
                color = StitchColor(
                    id=int(row['id']),
                    name=(row.get('name') or '').strip(),
                    hex=(row.get('hex') or '').strip(),
                    family=(row.get('family') or '').strip() or None,
                    code=(row.get('code') or '').strip() or None,
                )
                self._append(color)
            except (ValueError, KeyError) as e:
                print(f"Warning: Skipping invalid palette entry: {row} - {e}")

    @classmethod
    def from_hexes(cls, hexes: Iterable[str], family: Optional[str] = None) -> "Palette":
        """Build a palette with sequential ids starting at 1."""
        return cls(
            StitchColor(id=i, name=hex_value, hex=hex_value, family=family)
            for i, hex_value in enumerate(hexes, start=1)
        )

    def add_color(self, name: str, hex_value: str, family: str = "Custom") -> "Palette":
        """Return a new palette with a custom color appended under the next free id."""
        next_id = max((c.id for c in self.colors), default=0) + 1
        return Palette(self.colors + [StitchColor(next_id, name, hex_value, family=family)])

    def __len__(self) -> int:
        return len(self.colors)

    def __iter__(self) -> Iterator[StitchColor]:
        return iter(self.colors)

    def __contains__(self, color_id: int) -> bool:
        return color_id in self.id_lookup

    @property
    def ids(self) -> List[int]:
        return [c.id for c in self.colors]

    def valid_colors(self) -> List[StitchColor]:
        """Entries whose hex parsed; the pool used for nearest-color matching."""
        return [c for c in self.colors if c.is_valid]

    def lab_array(self) -> Tuple[np.ndarray, np.ndarray]:
        """(ids, OKLab array) for the valid entries, in palette order."""
        valid = self.valid_colors()
        ids = np.array([c.id for c in valid], dtype=np.uint16)
        labs = np.array([c.lab for c in valid], dtype=np.float64).reshape(-1, 3)
        return ids, labs

    def subset(self, color_ids: Iterable[int]) -> "Palette":
        """Entries whose id is in ``color_ids``, keeping palette order."""
        wanted = set(color_ids)
        return Palette(c for c in self.colors if c.id in wanted)

    def get_color_by_id(self, color_id: int) -> Optional[StitchColor]:
        return self.id_lookup.get(color_id)

    def get_color_by_code(self, code: str) -> Optional[StitchColor]:
        return self.code_lookup.get(code)

    def families(self) -> List[str]:
        """Distinct family labels in first-seen order."""
        seen = []
        for color in self.colors:
            if color.family and color.family not in seen:
                seen.append(color.family)
        return seen

    def export_to_dict(self) -> dict:
        return {
            color.id: {
                'name': color.name,
                'hex': color.hex,
                'family': color.family,
                'code': color.code,
            }
            for color in self.colors
        }


def bundled_palette_path() -> str:
    current_dir = os.path.dirname(os.path.abspath(__file__))
    return os.path.join(current_dir, "data", "palette.csv")


# Global palette instance
_bundled_palette: Optional[Palette] = None


def get_bundled_palette() -> Palette:
    """Get the palette shipped with the package (loaded once)."""
    global _bundled_palette
    if _bundled_palette is None:
        _bundled_palette = Palette.from_csv(bundled_palette_path())
    return _bundled_palette
