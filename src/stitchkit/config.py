"""
Configuration management for the stitch chart engine.
"""

import os
import yaml
from dataclasses import dataclass, field, fields, asdict
from typing import Optional


@dataclass
class SamplingConfig:
    """Raster sampling for palette extraction."""
    max_samples: int = 40000
    alpha_cutoff: int = 16


@dataclass
class ExtractionConfig:
    """K-means palette extraction parameters."""
    min_colors: int = 2
    max_colors: int = 32
    iterations: int = 8
    over_cluster_factor: int = 5
    over_cluster_scale: float = 6.0


@dataclass
class SelectionWeights:
    """Heuristic weights for picking a diverse subset of cluster centers."""
    distance: float = 1.8
    importance: float = 0.6
    rarity: float = 1.2
    hue: float = 0.6
    chroma: float = 0.5
    hue_bins: int = 12
    bin_penalty: float = 0.8
    chroma_softening: float = 0.05


@dataclass
class QuantizeConfig:
    """Image -> grid conversion settings."""
    alpha_cutoff: int = 10
    smoothing: float = 0.25
    max_colors: int = 20

    # Smoothing strength mapping
    bilateral_min_strength: float = 0.01
    radius_strength: float = 0.66
    spatial_sigma: float = 1.0
    wide_spatial_sigma: float = 1.6
    range_sigma_base: float = 0.04
    range_sigma_scale: float = 0.12

    # Speckle cleanup and majority vote
    blob_base: float = 2.0
    blob_scale: float = 6.0
    edge_base: float = 0.1
    edge_scale: float = 0.08
    majority_count: int = 5
    extra_pass_strength: float = 0.7


@dataclass
class FillConfig:
    """Flood fill scheduling."""
    sync_cell_limit: int = 240000
    seeds_per_tick: int = 1800


@dataclass
class Config:
    """Main configuration class."""
    config_file: Optional[str] = None
    verbose: bool = False

    sampling: SamplingConfig = field(default_factory=SamplingConfig)
    extraction: ExtractionConfig = field(default_factory=ExtractionConfig)
    selection: SelectionWeights = field(default_factory=SelectionWeights)
    quantize: QuantizeConfig = field(default_factory=QuantizeConfig)
    fill: FillConfig = field(default_factory=FillConfig)

    # Override lookup order; shared keys (max_colors, alpha_cutoff) land on quantize
    SECTIONS = ("quantize", "fill", "sampling", "extraction", "selection")

    @classmethod
    def from_yaml(cls, config_path: str, **overrides) -> "Config":
        """Load configuration from YAML file with optional overrides."""
        if not os.path.exists(config_path):
            # Defaults when the file doesn't exist yet
            config = cls()
            config.config_file = config_path
            config.apply_overrides(**overrides)
            config.validate()
            return config

        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f) or {}
        except UnicodeDecodeError:
            with open(config_path, 'r', encoding='latin-1') as f:
                data = yaml.safe_load(f) or {}

        config = cls(
            config_file=config_path,
            verbose=bool(data.get('verbose', False)),
            sampling=SamplingConfig(**data.get('sampling', {})),
            extraction=ExtractionConfig(**data.get('extraction', {})),
            selection=SelectionWeights(**data.get('selection', {})),
            quantize=QuantizeConfig(**data.get('quantize', {})),
            fill=FillConfig(**data.get('fill', {})),
        )

        config.apply_overrides(**overrides)
        config.validate()

        return config

    def apply_overrides(self, **overrides):
        """Apply CLI-style overrides onto whichever section owns the key."""
        for key, value in overrides.items():
            if value is None:
                continue
            if key in ('verbose', 'config_file'):
                setattr(self, key, value)
                continue
            for section_name in self.SECTIONS:
                section = getattr(self, section_name)
                if key in {f.name for f in fields(section)}:
                    setattr(section, key, value)
                    break

    def validate(self):
        """Validate configuration parameters."""
        if self.sampling.max_samples < 1:
            raise ValueError("Sample budget must be at least 1")

        if not (0 <= self.sampling.alpha_cutoff <= 255):
            raise ValueError("Sampling alpha cutoff must be between 0 and 255")

        if not (0 <= self.quantize.alpha_cutoff <= 255):
            raise ValueError("Quantize alpha cutoff must be between 0 and 255")

        if self.extraction.min_colors < 2:
            raise ValueError("Extraction needs at least 2 colors")

        if self.extraction.max_colors < self.extraction.min_colors:
            raise ValueError("max_colors must not be below min_colors")

        if self.extraction.iterations < 1:
            raise ValueError("K-means needs at least one iteration")

        if self.selection.hue_bins < 1:
            raise ValueError("Hue bins must be at least 1")

        if not (0 <= self.quantize.smoothing <= 1):
            raise ValueError("Smoothing strength must be between 0 and 1")

        if self.quantize.max_colors < 1:
            raise ValueError("Max colors must be at least 1")

        if self.quantize.majority_count < 1 or self.quantize.majority_count > 8:
            raise ValueError("Majority count must be between 1 and 8")

        if self.fill.sync_cell_limit < 0:
            raise ValueError("Sync cell limit must be non-negative")

        if self.fill.seeds_per_tick < 1:
            raise ValueError("Seeds per tick must be at least 1")

    def to_dict(self) -> dict:
        """Convert configuration to dictionary."""
        data = {'verbose': self.verbose}
        for section_name in self.SECTIONS:
            data[section_name] = asdict(getattr(self, section_name))
        return data

    def save_yaml(self, path: Optional[str] = None):
        """Save configuration to YAML file."""
        if path is None:
            path = self.config_file or "stitchkit.yaml"

        dir_path = os.path.dirname(path)
        if dir_path:
            os.makedirs(dir_path, exist_ok=True)

        with open(path, 'w') as f:
            yaml.dump(self.to_dict(), f, default_flow_style=False, indent=2)
