"""Typed items attached to spatial graph frames."""

from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np

from ..frontend.bounding_box import AlignedBoundingBox
from ..frontend.point_cloud import PointCloud
from ..frontend.pose import SE3


@dataclass
class PoseWithCovariance:
    """Pose estimate with its 6x6 covariance.

    The covariance uses the [translation, rotation] ordering, so
    ``covariance[:3, :3]`` is the positional block.
    """

    pose: SE3
    covariance: np.ndarray = field(default_factory=lambda: np.zeros((6, 6)))

    def __post_init__(self) -> None:
        self.covariance = np.asarray(self.covariance, dtype=np.float64)
        if self.covariance.shape != (6, 6):
            raise ValueError(f"Pose covariance must be 6x6, got {self.covariance.shape}")

    @property
    def translation(self) -> np.ndarray:
        return self.pose.translation

    @property
    def position_covariance(self) -> np.ndarray:
        return self.covariance[:3, :3]


@dataclass
class PoseItem:
    """Current estimate of a pose node and its optional bounding volume."""

    data: PoseWithCovariance
    bounding_box: AlignedBoundingBox | None = None

    def contains(self, point: np.ndarray) -> bool:
        """Whether the bounding box contains ``point`` (False without a box)."""
        if self.bounding_box is None:
            return False
        return self.bounding_box.contains(point)


@dataclass
class LandmarkItem:
    """Current 3D position estimate of a landmark node."""

    position: np.ndarray

    def __post_init__(self) -> None:
        self.position = np.asarray(self.position, dtype=np.float64).flatten()
        if self.position.shape != (3,):
            raise ValueError(f"Landmark position must be (3,), got {self.position.shape}")


@dataclass
class PointCloudItem:
    """Point cloud accumulated in a pose node's body frame."""

    cloud: PointCloud


@dataclass
class KeypointItem:
    """Keypoints (N, 3) in a pose node's body frame."""

    points: np.ndarray

    def __post_init__(self) -> None:
        self.points = np.asarray(self.points, dtype=np.float64).reshape(-1, 3)

    def __len__(self) -> int:
        return len(self.points)


@dataclass
class DescriptorItem:
    """One descriptor per keypoint, (N, D)."""

    descriptors: np.ndarray

    def __post_init__(self) -> None:
        self.descriptors = np.atleast_2d(np.asarray(self.descriptors, dtype=np.float32))

    def __len__(self) -> int:
        return len(self.descriptors)
