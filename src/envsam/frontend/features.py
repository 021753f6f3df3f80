"""Feature collaborators for appearance-based data association.

Keypoint detection and descriptor computation on point clouds are
supplied from outside through :class:`FeatureExtractor`. The nearest
neighbour query in descriptor space defaults to OpenCV's brute-force
matcher.
"""

from __future__ import annotations

from typing import Protocol

import cv2
import numpy as np

from .point_cloud import PointCloud


class FeatureExtractor(Protocol):
    """Computes keypoints and one descriptor per keypoint for a cloud."""

    def extract(self, cloud: PointCloud) -> tuple[np.ndarray, np.ndarray]:
        """Return (keypoints (N, 3), descriptors (N, D))."""
        ...


class NearestNeighborMatcher(Protocol):
    """1-nearest-neighbour query over a target descriptor set."""

    def nearest(
        self, source: np.ndarray, target: np.ndarray
    ) -> tuple[np.ndarray, np.ndarray]:
        """Return (indices into target, squared distances), one per source row."""
        ...


class DescriptorMatcher:
    """Brute-force L2 matcher for float descriptors (e.g. FPFH histograms)."""

    def __init__(self) -> None:
        self._bf_matcher = cv2.BFMatcher(cv2.NORM_L2, crossCheck=False)

    def nearest(
        self, source: np.ndarray, target: np.ndarray
    ) -> tuple[np.ndarray, np.ndarray]:
        """Find the closest target descriptor for every source descriptor.

        Args:
            source: (N, D) descriptors to query
            target: (M, D) descriptors to search

        Returns:
            Tuple of (indices (N,) int32, squared L2 distances (N,) float32)
        """
        source = np.ascontiguousarray(source, dtype=np.float32)
        target = np.ascontiguousarray(target, dtype=np.float32)

        if len(source) == 0 or len(target) == 0:
            return np.empty(0, dtype=np.int32), np.empty(0, dtype=np.float32)
        if source.shape[1] != target.shape[1]:
            raise ValueError(
                f"Descriptor sizes differ: {source.shape[1]} vs {target.shape[1]}"
            )

        matches = self._bf_matcher.match(source, target)

        indices = np.full(len(source), -1, dtype=np.int32)
        sq_distances = np.full(len(source), np.inf, dtype=np.float32)
        for m in matches:
            indices[m.queryIdx] = m.trainIdx
            sq_distances[m.queryIdx] = m.distance * m.distance

        return indices, sq_distances
