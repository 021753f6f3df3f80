"""Tests for PointCloud, VoxelGridFilter and DescriptorMatcher."""

import numpy as np
import pytest

from envsam.frontend.bounding_box import AlignedBoundingBox
from envsam.frontend.features import DescriptorMatcher
from envsam.frontend.point_cloud import PointCloud, VoxelGridFilter
from envsam.frontend.pose import SE3


class TestPointCloud:
    """Test suite for PointCloud."""

    def test_concatenate(self):
        """Test that concatenation keeps all points and colors."""
        a = PointCloud(points=np.zeros((2, 3)), colors=np.ones((2, 4)))
        b = PointCloud(points=np.ones((3, 3)), colors=np.ones((3, 4)))
        merged = a.concatenate(b)
        assert len(merged) == 5
        assert merged.colors.shape == (5, 4)

    def test_concatenate_drops_partial_colors(self):
        """Test that colors are dropped when one side has none."""
        a = PointCloud(points=np.zeros((2, 3)), colors=np.ones((2, 4)))
        b = PointCloud(points=np.ones((3, 3)))
        assert a.concatenate(b).colors is None

    def test_transformed(self):
        """Test moving a cloud into the world frame."""
        cloud = PointCloud(points=np.array([[1.0, 0.0, 0.0]]))
        pose = SE3.from_yaw(np.pi / 2, np.array([0.0, 0.0, 1.0]))
        np.testing.assert_allclose(
            cloud.transformed(pose).points, [[0.0, 1.0, 1.0]], atol=1e-12
        )

    def test_color_count_mismatch(self):
        """Test that mismatched colors are rejected."""
        with pytest.raises(ValueError):
            PointCloud(points=np.zeros((2, 3)), colors=np.ones((3, 4)))


class TestVoxelGridFilter:
    """Test suite for VoxelGridFilter."""

    def test_filter_drops_invalid_points(self):
        """Test that non-finite and uncolored points are removed."""
        points = np.array(
            [
                [0.0, 0.0, 0.0],
                [np.nan, 0.0, 0.0],
                [1.0, 1.0, 1.0],
                [2.0, 2.0, 2.0],
            ]
        )
        colors = np.array(
            [
                [1.0, 0.0, 0.0, 1.0],
                [1.0, 0.0, 0.0, 1.0],
                [np.nan, 0.0, 0.0, 1.0],
                [0.0, 1.0, 0.0, 0.0],
            ]
        )
        filtered = VoxelGridFilter(0.01).filter(PointCloud(points=points, colors=colors))
        assert len(filtered) == 1
        np.testing.assert_allclose(filtered.points, [[0.0, 0.0, 0.0]])

    def test_downsample_centroids(self):
        """Test that points in one voxel collapse to their centroid."""
        points = np.array(
            [
                [0.01, 0.01, 0.01],
                [0.03, 0.03, 0.03],
                [1.05, 1.05, 1.05],
            ]
        )
        result = VoxelGridFilter().downsample(PointCloud(points=points), leaf_size=0.1)
        assert len(result) == 2
        np.testing.assert_allclose(
            sorted(result.points.tolist()), [[0.02, 0.02, 0.02], [1.05, 1.05, 1.05]]
        )

    def test_downsample_empty(self):
        """Test that an empty cloud stays empty."""
        assert len(VoxelGridFilter().downsample(PointCloud.empty(), 0.1)) == 0

    def test_rejects_non_positive_size(self):
        with pytest.raises(ValueError):
            VoxelGridFilter(0.0)


class TestAlignedBoundingBox:
    """Test suite for AlignedBoundingBox."""

    def test_empty_contains_nothing(self):
        box = AlignedBoundingBox.empty()
        assert box.is_empty
        assert not box.contains(np.zeros(3))

    def test_extend_and_contains(self):
        """Test inclusive containment after extension."""
        box = AlignedBoundingBox.from_points(np.zeros(3), np.array([1.0, 2.0, 3.0]))
        assert box.contains(np.array([1.0, 2.0, 3.0]))
        assert box.contains(np.array([0.5, 1.0, 1.5]))
        assert not box.contains(np.array([1.1, 1.0, 1.0]))
        np.testing.assert_allclose(box.center, [0.5, 1.0, 1.5])


class TestDescriptorMatcher:
    """Test suite for DescriptorMatcher."""

    def test_nearest_neighbours(self):
        """Test that each source descriptor finds its closest target."""
        target = np.array([[0.0, 0.0], [10.0, 0.0], [0.0, 10.0]], dtype=np.float32)
        source = np.array([[9.0, 0.0], [0.0, 1.0]], dtype=np.float32)

        indices, sq_distances = DescriptorMatcher().nearest(source, target)

        np.testing.assert_array_equal(indices, [1, 0])
        np.testing.assert_allclose(sq_distances, [1.0, 1.0], rtol=1e-5)

    def test_empty_inputs(self):
        """Test that empty descriptor sets give empty results."""
        indices, sq_distances = DescriptorMatcher().nearest(
            np.empty((0, 4), dtype=np.float32), np.ones((3, 4), dtype=np.float32)
        )
        assert len(indices) == 0
        assert len(sq_distances) == 0

    def test_size_mismatch(self):
        with pytest.raises(ValueError):
            DescriptorMatcher().nearest(np.ones((2, 3)), np.ones((2, 4)))
