"""Factor graph and spatial bookkeeping graph."""

from .factor_graph import FactorGraph, FactorGraphStore
from .factors import (
    BEARING_RANGE_DOF,
    LANDMARK_DOF,
    POSE_DOF,
    BearingRangeFactor,
    BetweenFactor,
    Factor,
    FactorKind,
    LandmarkFactor,
    PriorFactor,
    whitened_error,
)
from .items import (
    DescriptorItem,
    KeypointItem,
    LandmarkItem,
    PointCloudItem,
    PoseItem,
    PoseWithCovariance,
)
from .noise import NoiseModel, as_noise_model
from .spatial_graph import SpatialGraph, TransformEdge

__all__ = [
    # Noise
    "NoiseModel",
    "as_noise_model",
    # Factors
    "FactorKind",
    "Factor",
    "PriorFactor",
    "BetweenFactor",
    "BearingRangeFactor",
    "LandmarkFactor",
    "whitened_error",
    "POSE_DOF",
    "BEARING_RANGE_DOF",
    "LANDMARK_DOF",
    # Factor Graph
    "FactorGraph",
    "FactorGraphStore",
    # Spatial Graph
    "SpatialGraph",
    "TransformEdge",
    # Items
    "PoseWithCovariance",
    "PoseItem",
    "LandmarkItem",
    "PointCloudItem",
    "KeypointItem",
    "DescriptorItem",
]
