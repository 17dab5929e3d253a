"""
Deterministic k-means palette extraction in OKLab.

Over-clusters the samples, then greedily picks a perceptually spread subset of
the cluster centers so that small but distinct accents survive next to the
dominant colors of the image.
"""

import math
import numpy as np
from typing import List, Optional, Sequence

from .color_math import TWO_PI, hue_and_chroma, oklab_to_hex, squared_distances
from .config import Config, SelectionWeights
from .image_io import ImageLike, Samples, sample_image_oklab


def seed_centers(values: np.ndarray, k: int) -> np.ndarray:
    """
    Farthest-point seeding without randomness.

    The first center is the sample farthest from the global mean; every next
    one is the sample with the largest distance to its nearest chosen center.
    Ties go to the lowest sample index.
    """
    centers = np.zeros((k, 3), dtype=np.float64)
    mean = values.mean(axis=0)
    first = int(np.argmax(np.sum((values - mean) ** 2, axis=1)))
    centers[0] = values[first]
    nearest = np.sum((values - centers[0]) ** 2, axis=1)

    for c in range(1, k):
        farthest = int(np.argmax(nearest))
        centers[c] = values[farthest]
        nearest = np.minimum(nearest, np.sum((values - centers[c]) ** 2, axis=1))

    return centers


def kmeans_oklab(values, k: int, iterations: int = 8,
                 history: Optional[List[float]] = None):
    """
    Lloyd's k-means over OKLab samples for a fixed number of iterations.

    Args:
        values: (n, 3) OKLab samples
        k: Number of centers
        iterations: Assign/update rounds to run
        history: Optional list that receives the within-cluster sum of squared
            distances measured at each assignment step

    Returns:
        Tuple of (centers (k, 3), counts (k,)) where counts come from the last
        assignment. Empty input or k <= 0 gives empty arrays.
    """
    values = np.asarray(values, dtype=np.float64).reshape(-1, 3)
    count = values.shape[0]
    if count == 0 or k <= 0:
        return np.zeros((0, 3), dtype=np.float64), np.zeros(0, dtype=np.int64)

    centers = seed_centers(values, k)
    counts = np.zeros(k, dtype=np.int64)

    for _ in range(iterations):
        distances = squared_distances(values, centers)
        labels = np.argmin(distances, axis=1)
        if history is not None:
            history.append(float(distances[np.arange(count), labels].sum()))

        counts = np.bincount(labels, minlength=k).astype(np.int64)
        sums = np.zeros((k, 3), dtype=np.float64)
        np.add.at(sums, labels, values)

        for c in range(k):
            if counts[c] > 0:
                centers[c] = sums[c] / counts[c]
            else:
                # Empty cluster: move it onto the worst-served sample
                nearest = squared_distances(values, centers).min(axis=1)
                centers[c] = values[int(np.argmax(nearest))]

    return centers, counts


def _hue_bin(hue: np.ndarray, bins: int) -> np.ndarray:
    return np.minimum(bins - 1, np.floor(hue / TWO_PI * bins)).astype(np.int64)


def select_diverse_clusters(centers: np.ndarray, counts: Sequence[int], target: int,
                            weights: Optional[SelectionWeights] = None) -> List[int]:
    """
    Greedily pick ``target`` populated clusters that are both common and distinct.

    Starts from the most populous cluster, then repeatedly adds the candidate
    with the best score, combining population (log scaled), distance to the
    nearest selected center, a rarity bonus for uncommon-but-distant colors,
    hue separation and chroma. Candidates whose hue bucket already holds a
    selection are damped, proportionally to how saturated they are, so grays
    are not pushed out by hue collisions.
    """
    weights = weights or SelectionWeights()
    centers = np.asarray(centers, dtype=np.float64).reshape(-1, 3)
    counts = np.asarray(counts, dtype=np.int64)

    available = [c for c in range(len(counts)) if counts[c] > 0]
    if len(available) <= target:
        return available

    max_count = int(counts[available].max())
    importance = np.log1p(counts) / np.log1p(max_count)
    hue, chroma = hue_and_chroma(centers)
    bins = _hue_bin(hue, weights.hue_bins)
    chroma_factor = chroma / np.maximum(chroma + weights.chroma_softening, 1e-12)

    best = max(available, key=lambda i: counts[i])
    selected = [best]
    selected_set = {best}
    bin_counts = np.zeros(weights.hue_bins, dtype=np.int64)
    bin_counts[bins[best]] += 1

    while len(selected) < target:
        candidates = np.array([i for i in available if i not in selected_set], dtype=np.int64)
        if candidates.size == 0:
            break

        min_dist = np.sqrt(squared_distances(centers[candidates], centers[selected]).min(axis=1))
        hue_diff = np.abs(hue[candidates][:, np.newaxis] - hue[selected][np.newaxis, :])
        min_hue_dist = np.minimum(hue_diff, TWO_PI - hue_diff).min(axis=1)

        imp = importance[candidates]
        cand_chroma = chroma[candidates]
        cand_factor = chroma_factor[candidates]
        score = (
            weights.importance * imp
            + weights.distance * min_dist
            + weights.rarity * (1 - imp) * min_dist
            + weights.hue * min_hue_dist * cand_factor
            + weights.chroma * cand_chroma * (1 - imp)
        )
        score = score / (1 + bin_counts[bins[candidates]] * weights.bin_penalty * cand_factor)

        pick = int(candidates[int(np.argmax(score))])
        selected.append(pick)
        selected_set.add(pick)
        bin_counts[bins[pick]] += 1

    return selected


class PaletteExtractor:
    """Extracts representative hex colors from OKLab samples."""

    def __init__(self, config: Optional[Config] = None):
        self.config = config or Config()

    def target_count(self, k: int, sample_count: int) -> int:
        extraction = self.config.extraction
        return max(extraction.min_colors, min(k, extraction.max_colors, sample_count))

    def over_cluster_count(self, target: int, sample_count: int) -> int:
        extraction = self.config.extraction
        scaled = int(math.floor(target * extraction.over_cluster_scale + 0.5))
        return min(sample_count, max(target * extraction.over_cluster_factor, scaled))

    def extract(self, samples: Samples, k: int) -> List[str]:
        """
        Extract up to ``k`` unique ``#rrggbb`` colors.

        Zero samples or k <= 0 give an empty list.
        """
        if samples.count == 0 or k <= 0:
            return []

        target = self.target_count(k, samples.count)
        over_cluster = self.over_cluster_count(target, samples.count)

        if self.config.verbose:
            print(f"Clustering {samples.count:,} samples into {over_cluster} centers "
                  f"to pick {target} colors...")

        centers, counts = kmeans_oklab(
            samples.values, over_cluster, self.config.extraction.iterations
        )
        selected = select_diverse_clusters(centers, counts, target, self.config.selection)

        seen = set()
        palette: List[str] = []
        for idx in selected:
            hex_value = oklab_to_hex(centers[idx])
            if hex_value in seen:
                continue
            seen.add(hex_value)
            palette.append(hex_value)
            if len(palette) >= target:
                break

        if len(palette) < target:
            # Backfill from the most populous clusters
            order = sorted(range(len(counts)), key=lambda i: counts[i], reverse=True)
            for idx in order:
                hex_value = oklab_to_hex(centers[idx])
                if hex_value in seen:
                    continue
                seen.add(hex_value)
                palette.append(hex_value)
                if len(palette) >= target:
                    break

        if self.config.verbose:
            print(f"Extracted {len(palette)} colors: {', '.join(palette)}")
        return palette

    def extract_from_image(self, image: ImageLike, k: int) -> List[str]:
        """Sample ``image`` and extract up to ``k`` colors from it."""
        sampling = self.config.sampling
        samples = sample_image_oklab(image, sampling.max_samples, sampling.alpha_cutoff)
        return self.extract(samples, k)


def extract_palette(samples: Samples, k: int, config: Optional[Config] = None) -> List[str]:
    """Convenience wrapper around ``PaletteExtractor.extract``."""
    return PaletteExtractor(config).extract(samples, k)


def extract_palette_from_image(image: ImageLike, k: int,
                               config: Optional[Config] = None) -> List[str]:
    """Convenience wrapper around ``PaletteExtractor.extract_from_image``."""
    return PaletteExtractor(config).extract_from_image(image, k)
