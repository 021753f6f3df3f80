"""Configuration for the smoothing-and-mapping core.

All parameters are plain dataclasses passed in memory.
"""

from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np


@dataclass
class SolverConfig:
    """Configuration for batch graph optimization."""

    relative_error_tol: float = 1e-5  # Stop once relative error decrease is below this
    max_iterations: int = 100

    def __post_init__(self) -> None:
        if self.relative_error_tol <= 0.0:
            raise ValueError("relative_error_tol must be positive")
        if self.max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")


@dataclass
class CandidateSearchConfig:
    """Configuration for bounding-volume loop closure candidate search."""

    margin_floor: tuple[float, float, float] = (0.05, 0.4, 1.0)  # meters per axis
    use_covariance_margins: bool = True  # False: always use margin_floor
    loop_closure_index_gap: int = 10  # Index gap above which a candidate is long-range

    def __post_init__(self) -> None:
        self.margin_floor = tuple(float(m) for m in self.margin_floor)
        if len(self.margin_floor) != 3 or any(m < 0.0 for m in self.margin_floor):
            raise ValueError("margin_floor must be three non-negative values")
        if self.loop_closure_index_gap < 0:
            raise ValueError("loop_closure_index_gap must be non-negative")


@dataclass
class AssociationConfig:
    """Configuration for descriptor-based data association."""

    match_percentage: float = 1.0  # Accept scores <= percentage * median
    landmark_variance: tuple[float, float, float] = (0.01, 0.01, 0.01)
    enforce_mahalanobis_gate: bool = True
    significance: float = 0.05

    def __post_init__(self) -> None:
        self.landmark_variance = tuple(float(v) for v in self.landmark_variance)
        if len(self.landmark_variance) != 3 or any(v <= 0.0 for v in self.landmark_variance):
            raise ValueError("landmark_variance must be three positive values")
        if self.match_percentage < 0.0:
            raise ValueError("match_percentage must be non-negative")
        if not 0.0 < self.significance < 1.0:
            raise ValueError("significance must be in (0, 1)")

    @property
    def landmark_covariance(self) -> np.ndarray:
        return np.diag(self.landmark_variance)


@dataclass
class PointCloudConfig:
    """Configuration for point cloud accumulation."""

    downsample_size: float = 0.01  # Voxel size (m) for incoming batches
    merge_leaf_factor: float = 2.0  # Accumulated clouds use factor * downsample_size

    def __post_init__(self) -> None:
        if self.downsample_size <= 0.0:
            raise ValueError("downsample_size must be positive")
        if self.merge_leaf_factor <= 0.0:
            raise ValueError("merge_leaf_factor must be positive")


@dataclass
class SAMConfig:
    """Top-level configuration."""

    pose_key: str = "x"
    landmark_key: str = "l"
    solver: SolverConfig = field(default_factory=SolverConfig)
    candidate_search: CandidateSearchConfig = field(default_factory=CandidateSearchConfig)
    association: AssociationConfig = field(default_factory=AssociationConfig)
    point_cloud: PointCloudConfig = field(default_factory=PointCloudConfig)
    # Force an optimization after this many poses without one (None: never)
    max_poses_between_optimizations: int | None = None

    def __post_init__(self) -> None:
        if (
            self.max_poses_between_optimizations is not None
            and self.max_poses_between_optimizations < 1
        ):
            raise ValueError("max_poses_between_optimizations must be at least 1")
