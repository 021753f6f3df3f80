"""Colored point clouds and the ingestion filter collaborator.

Incoming point batches are cleaned by a :class:`PointCloudFilter` before
being merged into a pose node's accumulated cloud. Only the steps needed
to keep the accumulated cloud bounded live here (finite/colored point
selection and voxel-grid downsampling); heavier filtering is expected to
be supplied by an external implementation of the same protocol.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

import numpy as np

from .pose import SE3


@dataclass
class PointCloud:
    """Point cloud with optional RGBA colors.

    Attributes:
        points: (N, 3) float64 positions
        colors: (N, 4) float64 RGBA in [0, 1], or None for uncolored clouds
    """

    points: np.ndarray
    colors: np.ndarray | None = None

    def __post_init__(self) -> None:
        """Validate shapes."""
        self.points = np.asarray(self.points, dtype=np.float64).reshape(-1, 3)
        if self.colors is not None:
            self.colors = np.asarray(self.colors, dtype=np.float64).reshape(-1, 4)
            if len(self.colors) != len(self.points):
                raise ValueError(
                    f"Got {len(self.colors)} colors for {len(self.points)} points"
                )

    @classmethod
    def empty(cls, colored: bool = True) -> PointCloud:
        return cls(
            points=np.empty((0, 3)),
            colors=np.empty((0, 4)) if colored else None,
        )

    def concatenate(self, other: PointCloud) -> PointCloud:
        """Return the union of both clouds (colors kept only if both have them)."""
        points = np.vstack([self.points, other.points])
        if self.colors is not None and other.colors is not None:
            colors = np.vstack([self.colors, other.colors])
        else:
            colors = None
        return PointCloud(points=points, colors=colors)

    def transformed(self, pose: SE3) -> PointCloud:
        """Return a copy with points mapped from the body frame to the world frame."""
        if len(self.points) == 0:
            return PointCloud(points=self.points.copy(), colors=self._copy_colors())
        return PointCloud(points=pose.transform_points(self.points), colors=self._copy_colors())

    def select(self, mask: np.ndarray) -> PointCloud:
        colors = self.colors[mask] if self.colors is not None else None
        return PointCloud(points=self.points[mask], colors=colors)

    def _copy_colors(self) -> np.ndarray | None:
        return None if self.colors is None else self.colors.copy()

    def __len__(self) -> int:
        return len(self.points)


class PointCloudFilter(Protocol):
    """Collaborator that cleans raw point batches."""

    def filter(self, cloud: PointCloud) -> PointCloud:
        ...

    def downsample(self, cloud: PointCloud, leaf_size: float) -> PointCloud:
        ...


class VoxelGridFilter:
    """Drops unusable points and downsamples on a voxel grid.

    Each occupied voxel is replaced by the centroid of its points (and
    the mean of their colors).
    """

    def __init__(self, downsample_size: float = 0.01) -> None:
        """Initialize filter.

        Args:
            downsample_size: Voxel edge length (m) used by :meth:`filter`
        """
        if downsample_size <= 0.0:
            raise ValueError(f"downsample_size must be positive, got {downsample_size}")
        self._downsample_size = downsample_size

    def filter(self, cloud: PointCloud) -> PointCloud:
        """Remove non-finite and uncolored points, then downsample."""
        mask = np.all(np.isfinite(cloud.points), axis=1)
        if cloud.colors is not None:
            colored = np.all(np.isfinite(cloud.colors), axis=1) & (cloud.colors[:, 3] > 0.0)
            mask &= colored
        return self.downsample(cloud.select(mask), self._downsample_size)

    def downsample(self, cloud: PointCloud, leaf_size: float) -> PointCloud:
        """Voxel-grid downsample with the given leaf size."""
        if len(cloud) == 0:
            return cloud
        voxels = np.floor(cloud.points / leaf_size).astype(np.int64)
        _, inverse, counts = np.unique(
            voxels, axis=0, return_inverse=True, return_counts=True
        )
        inverse = inverse.reshape(-1)

        points = np.zeros((len(counts), 3))
        np.add.at(points, inverse, cloud.points)
        points /= counts[:, None]

        colors = None
        if cloud.colors is not None:
            colors = np.zeros((len(counts), 4))
            np.add.at(colors, inverse, cloud.colors)
            colors /= counts[:, None]

        return PointCloud(points=points, colors=colors)

    @property
    def downsample_size(self) -> float:
        return self._downsample_size
