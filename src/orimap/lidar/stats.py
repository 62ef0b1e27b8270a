# src/orimap/lidar/stats.py

"""
This module gathers per-file distributional statistics of lidar returns.

The statistics are computed once per input file ahead of tiling and combined
across files; the combined values fix the normalisation of the return number
and intensity rasters so that every tile is classified on the same scale.
"""

from dataclasses import dataclass, field
from functools import reduce
from pathlib import Path
from typing import Iterable, Tuple, Union
import logging

import laspy
import numpy as np

from orimap.errors import UnreadableInputError
from .layer import PointCloud

log = logging.getLogger(__name__)

__all__ = [
    "MAX_NUMBER_OF_RETURNS",
    "Stat",
    "LidarStats",
    "combine_stats"
]

MAX_NUMBER_OF_RETURNS = 15

@dataclass(frozen=True)
class Stat:
    """
    Summary statistic of a scalar point attribute.

    Attributes:
        min (float): Smallest observed value (+inf when empty).
        max (float): Largest observed value (-inf when empty).
        mean (float): Arithmetic mean.
        std_dev (float): Population standard deviation.
        num_points (int): Number of observations.
    """
    min: float = float("inf")
    max: float = float("-inf")
    mean: float = 0.0
    std_dev: float = 0.0
    num_points: int = 0

    @classmethod
    def empty(cls) -> 'Stat':
        return cls()

    @classmethod
    def from_values(cls, values: np.ndarray) -> 'Stat':
        values = np.asarray(values, dtype=np.float64)
        if values.size == 0:
            return cls.empty()
        return cls(
            min=float(values.min()),
            max=float(values.max()),
            mean=float(values.mean()),
            std_dev=float(values.std()),
            num_points=int(values.size)
        )

    @classmethod
    def from_histogram(cls, counts: np.ndarray) -> 'Stat':
        """Statistic of the values 1..len(counts) occurring counts[i-1] times each."""
        counts = np.asarray(counts, dtype=np.float64)
        total = counts.sum()
        if total == 0:
            return cls.empty()
        values = np.arange(1, len(counts) + 1, dtype=np.float64)
        present = np.nonzero(counts)[0]
        mean = float((values * counts).sum() / total)
        var = float((counts * (values - mean) ** 2).sum() / total)
        return cls(
            min=float(values[present[0]]),
            max=float(values[present[-1]]),
            mean=mean,
            std_dev=float(np.sqrt(var)),
            num_points=int(total)
        )

    @property
    def is_empty(self) -> bool:
        return self.num_points == 0

    def combine(self, other: 'Stat') -> 'Stat':
        """
        Statistic of the union of both samples.

        Means are weighted by point count and variances pooled with the parallel
        algorithm (sum of squared deviations plus the between-group term), so the
        operation is commutative and associative and the empty stat is its identity.
        """
        if other.is_empty:
            return self
        if self.is_empty:
            return other

        n = self.num_points + other.num_points
        delta = other.mean - self.mean
        mean = (self.num_points * self.mean + other.num_points * other.mean) / n
        m2 = (
            self.num_points * self.std_dev ** 2
            + other.num_points * other.std_dev ** 2
            + delta ** 2 * self.num_points * other.num_points / n
        )
        return Stat(
            min=min(self.min, other.min),
            max=max(self.max, other.max),
            mean=mean,
            std_dev=float(np.sqrt(max(m2, 0.0) / n)),
            num_points=n
        )

def _empty_distribution() -> Tuple[int, ...]:
    return (0,) * MAX_NUMBER_OF_RETURNS

@dataclass(frozen=True)
class LidarStats:
    """
    Distributional statistics of one lidar file (or several, once combined).

    Attributes:
        return_distr (Tuple[int, ...]): Number of points per return number 1..15.
        return_number (Stat): Statistic of the return numbers.
        intensity (Stat): Statistic of the return intensities.
    """
    return_distr: Tuple[int, ...] = field(default_factory=_empty_distribution)
    return_number: Stat = field(default_factory=Stat.empty)
    intensity: Stat = field(default_factory=Stat.empty)

    def __post_init__(self):
        if len(self.return_distr) != MAX_NUMBER_OF_RETURNS:
            raise ValueError(
                f"Return distribution needs {MAX_NUMBER_OF_RETURNS} bins, got {len(self.return_distr)}"
            )

    @classmethod
    def empty(cls) -> 'LidarStats':
        return cls()

    @staticmethod
    def _histogram(return_number: np.ndarray) -> Tuple[int, ...]:
        rn = np.asarray(return_number, dtype=np.int64)
        rn = rn[(rn >= 1) & (rn <= MAX_NUMBER_OF_RETURNS)]
        counts = np.bincount(rn - 1, minlength=MAX_NUMBER_OF_RETURNS)
        return tuple(int(c) for c in counts)

    @classmethod
    def from_point_cloud(cls, pc: PointCloud) -> 'LidarStats':
        distr = cls._histogram(pc.return_number)
        return cls(
            return_distr=distr,
            return_number=Stat.from_histogram(np.array(distr)),
            intensity=Stat.from_values(pc.intensity)
        )

    @classmethod
    def from_file(
        cls,
        path: Union[str, Path],
        chunk_size: int = 1_000_000
        ) -> 'LidarStats':
        """
        Computes the statistics of a lidar file without loading it whole.

        The return histogram is taken from the header when the header carries one,
        otherwise it is counted while streaming. Intensities are always streamed.

        Args:
            path (Union[str, Path]): Target .las or .laz file.
            chunk_size (int): Number of points to stream per chunk.

        Returns:
            LidarStats: Statistics of every point in the file.
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Lidar file not found: {path}")

        try:
            with laspy.open(path) as fh:
                header_counts = np.zeros(MAX_NUMBER_OF_RETURNS, dtype=np.int64)
                by_return = np.asarray(fh.header.number_of_points_by_return, dtype=np.int64)
                usable = min(len(by_return), MAX_NUMBER_OF_RETURNS)
                header_counts[:usable] = by_return[:usable]
        except laspy.LaspyException as e:
            raise UnreadableInputError(f"Failed to read lidar header {path}: {e}") from e

        intensity = Stat.empty()
        counted = np.zeros(MAX_NUMBER_OF_RETURNS, dtype=np.int64)
        for chunk in PointCloud.iter_chunks(path, chunk_size=chunk_size):
            intensity = intensity.combine(Stat.from_values(chunk.intensity))
            counted += np.array(cls._histogram(chunk.return_number), dtype=np.int64)

        distr = header_counts if header_counts.sum() > 0 else counted
        log.debug(f"Statistics of {path.name}: {intensity.num_points} points, mean intensity {intensity.mean:.1f}")

        return cls(
            return_distr=tuple(int(c) for c in distr),
            return_number=Stat.from_histogram(distr),
            intensity=intensity
        )

    def combine(self, other: 'LidarStats') -> 'LidarStats':
        return LidarStats(
            return_distr=tuple(a + b for a, b in zip(self.return_distr, other.return_distr)),
            return_number=self.return_number.combine(other.return_number),
            intensity=self.intensity.combine(other.intensity)
        )

    def return_normalization(self) -> Tuple[float, float]:
        """
        (offset, scale) such that (value - offset) / scale maps return numbers onto [0, 1].
        """
        if self.return_number.is_empty:
            return 1.0, 1.0
        low = self.return_number.min
        span = self.return_number.max - low
        return low, span if span > 0 else 1.0

    def intensity_normalization(self, n_sigma: float = 2.0) -> Tuple[float, float]:
        """
        (offset, scale) such that (value - offset) / scale maps mean ± n_sigma·std onto [0, 1].

        Degenerate distributions fall back to the observed min/max range.
        """
        stat = self.intensity
        if stat.is_empty:
            return 0.0, 1.0
        span = 2.0 * n_sigma * stat.std_dev
        if span > 0:
            return stat.mean - n_sigma * stat.std_dev, span
        span = stat.max - stat.min
        return stat.min, span if span > 0 else 1.0

def combine_stats(stats: Iterable[LidarStats]) -> LidarStats:
    """Reduces the statistics of many files into one."""
    return reduce(lambda a, b: a.combine(b), stats, LidarStats.empty())
