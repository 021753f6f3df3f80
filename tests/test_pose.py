"""Tests for SE3 pose operations."""

import numpy as np
import pytest

from envsam.frontend.pose import SE3, wrap_angle


@pytest.fixture
def pose_a() -> SE3:
    return SE3.from_rvec_tvec(np.array([0.1, -0.2, 0.3]), np.array([1.0, 2.0, 3.0]))


@pytest.fixture
def pose_b() -> SE3:
    return SE3.from_rvec_tvec(np.array([-0.3, 0.05, 0.2]), np.array([-1.0, 0.5, 2.0]))


class TestSE3:
    """Test suite for SE3."""

    def test_identity(self):
        """Test that identity leaves points unchanged."""
        point = np.array([1.0, -2.0, 3.0])
        np.testing.assert_allclose(SE3.identity().transform_point(point), point)

    def test_inverse_compose(self, pose_a: SE3):
        """Test that T @ T^-1 is identity."""
        result = pose_a @ pose_a.inverse()
        np.testing.assert_allclose(result.to_matrix(), np.eye(4), atol=1e-12)

    def test_between(self, pose_a: SE3, pose_b: SE3):
        """Test that a.compose(a.between(b)) == b."""
        result = pose_a.compose(pose_a.between(pose_b))
        np.testing.assert_allclose(result.to_matrix(), pose_b.to_matrix(), atol=1e-12)

    def test_retract_inverts_local(self, pose_a: SE3, pose_b: SE3):
        """Test that a.retract(a.local(b)) == b."""
        result = pose_a.retract(pose_a.local(pose_b))
        np.testing.assert_allclose(result.to_matrix(), pose_b.to_matrix(), atol=1e-9)

    def test_local_ordering(self):
        """Test that local() puts translation first, then rotation."""
        target = SE3.from_yaw(0.5, np.array([1.0, 0.0, 0.0]))
        delta = SE3.identity().local(target)
        np.testing.assert_allclose(delta[:3], [1.0, 0.0, 0.0], atol=1e-12)
        np.testing.assert_allclose(delta[3:], [0.0, 0.0, 0.5], atol=1e-12)

    @pytest.mark.parametrize("angle", [1e-6, 1e-9])
    def test_local_small_rotation(self, angle: float):
        """Test that tiny rotations are not rounded to zero."""
        delta = SE3.identity().local(SE3.from_rvec_tvec(np.array([angle, 0.0, 0.0]), np.zeros(3)))
        assert delta[3] == pytest.approx(angle, rel=1e-6)
        np.testing.assert_allclose(delta[4:], 0.0, atol=1e-15)

    def test_retract_small_rotation(self, pose_a: SE3):
        """Test that a tiny perturbation survives retract then local."""
        delta = np.array([0.0, 0.0, 0.0, 0.0, 2e-7, -3e-7])
        np.testing.assert_allclose(pose_a.local(pose_a.retract(delta)), delta, atol=1e-13)

    def test_transform_points(self, pose_a: SE3):
        """Test that batched and single-point transforms agree."""
        points = np.array([[0.3, 0.4, -0.5], [1.0, 0.0, 2.0]])
        batched = pose_a.transform_points(points)
        np.testing.assert_allclose(batched[1], pose_a.transform_point(points[1]), atol=1e-12)

    def test_inverse_transform_point(self, pose_a: SE3):
        """Test that inverse_transform_point undoes transform_point."""
        point = np.array([0.3, 0.4, -0.5])
        world = pose_a.transform_point(point)
        np.testing.assert_allclose(pose_a.inverse_transform_point(world), point, atol=1e-12)

    def test_invalid_shapes(self):
        """Test that wrong shapes raise ValueError."""
        with pytest.raises(ValueError):
            SE3(rotation=np.eye(2), translation=np.zeros(3))
        with pytest.raises(ValueError):
            SE3.identity().retract(np.zeros(3))

    def test_wrap_angle(self):
        """Test angle wrapping into [-pi, pi)."""
        assert wrap_angle(2.5 * np.pi) == pytest.approx(0.5 * np.pi)
        assert wrap_angle(0.5) == pytest.approx(0.5)
        assert wrap_angle(-0.5 - 2.0 * np.pi) == pytest.approx(-0.5)
