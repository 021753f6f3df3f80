"""Frontend components for smoothing and mapping.

- SE3: Rigid body transformation used by factors and pose items
- AlignedBoundingBox: Axis-aligned bounding volume of a finalized pose
- PointCloud / VoxelGridFilter: Point batch ingestion and downsampling
- FeatureExtractor / DescriptorMatcher: Feature pipeline collaborators
"""

from .bounding_box import AlignedBoundingBox
from .features import DescriptorMatcher, FeatureExtractor, NearestNeighborMatcher
from .point_cloud import PointCloud, PointCloudFilter, VoxelGridFilter
from .pose import SE3, wrap_angle

__all__ = [
    # Pose
    "SE3",
    "wrap_angle",
    # Bounding Volume
    "AlignedBoundingBox",
    # Point Clouds
    "PointCloud",
    "PointCloudFilter",
    "VoxelGridFilter",
    # Features
    "FeatureExtractor",
    "NearestNeighborMatcher",
    "DescriptorMatcher",
]
