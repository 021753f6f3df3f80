"""Rigid body poses and their tangent-space perturbations."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from scipy.spatial.transform import Rotation


def wrap_angle(angle: float) -> float:
    """Wrap an angle to [-pi, pi)."""
    return (angle + np.pi) % (2.0 * np.pi) - np.pi


@dataclass
class SE3:
    """Pose T_world_body mapping body-frame points into the world frame.

        p_world = rotation @ p_body + translation

    Perturbations are 6-vectors [tx, ty, tz, rx, ry, rz] in the body
    frame: a translation followed by a rotation vector (axis * angle). Pose
    covariances share this ordering, so ``cov[:3, :3]`` is positional.

    Attributes:
        rotation: (3, 3) rotation matrix
        translation: (3,) position of the body origin in the world
    """

    rotation: np.ndarray
    translation: np.ndarray

    def __post_init__(self) -> None:
        self.rotation = np.asarray(self.rotation, dtype=np.float64)
        self.translation = np.asarray(self.translation, dtype=np.float64).flatten()
        if self.rotation.shape != (3, 3):
            raise ValueError(f"Rotation must be 3x3, got {self.rotation.shape}")
        if self.translation.shape != (3,):
            raise ValueError(f"Translation must be (3,), got {self.translation.shape}")

    @classmethod
    def identity(cls) -> SE3:
        return cls(rotation=np.eye(3), translation=np.zeros(3))

    @classmethod
    def from_translation(cls, translation: np.ndarray) -> SE3:
        return cls(rotation=np.eye(3), translation=translation)

    @classmethod
    def from_rvec_tvec(cls, rvec: np.ndarray, tvec: np.ndarray) -> SE3:
        """Build a pose from a rotation vector (axis * angle) and a translation."""
        rvec = np.asarray(rvec, dtype=np.float64).reshape(3)
        return cls(rotation=Rotation.from_rotvec(rvec).as_matrix(), translation=tvec)

    @classmethod
    def from_yaw(cls, yaw: float, translation: np.ndarray | None = None) -> SE3:
        """Pose rotated by ``yaw`` radians about Z."""
        c, s = np.cos(yaw), np.sin(yaw)
        R = np.array([[c, -s, 0.0], [s, c, 0.0], [0.0, 0.0, 1.0]])
        return cls(rotation=R, translation=np.zeros(3) if translation is None else translation)

    def to_matrix(self) -> np.ndarray:
        """4x4 homogeneous matrix."""
        T = np.eye(4)
        T[:3, :3] = self.rotation
        T[:3, 3] = self.translation
        return T

    def inverse(self) -> SE3:
        R_t = self.rotation.T
        return SE3(rotation=R_t, translation=-R_t @ self.translation)

    def compose(self, other: SE3) -> SE3:
        """``self`` followed by ``other``: T_world_a.compose(T_a_b) is T_world_b."""
        return SE3(
            rotation=self.rotation @ other.rotation,
            translation=self.rotation @ other.translation + self.translation,
        )

    def between(self, other: SE3) -> SE3:
        """Pose of ``other`` expressed in the frame of ``self``."""
        return self.inverse().compose(other)

    def retract(self, delta: np.ndarray) -> SE3:
        """Move this pose by a body-frame perturbation [dt, drot].

        ``a.retract(a.local(b))`` recovers ``b``.
        """
        delta = np.asarray(delta, dtype=np.float64).flatten()
        if delta.shape != (6,):
            raise ValueError(f"Pose perturbation must be (6,), got {delta.shape}")
        return self.compose(SE3.from_rvec_tvec(delta[3:], delta[:3]))

    def local(self, other: SE3) -> np.ndarray:
        """Perturbation [dt, drot] that retracts ``self`` onto ``other``."""
        relative = self.between(other)
        rvec = Rotation.from_matrix(relative.rotation).as_rotvec()
        return np.concatenate([relative.translation, rvec])

    def transform_points(self, points: np.ndarray) -> np.ndarray:
        """Map (N, 3) body-frame points into the world frame."""
        points = np.asarray(points, dtype=np.float64).reshape(-1, 3)
        return points @ self.rotation.T + self.translation

    def transform_point(self, point: np.ndarray) -> np.ndarray:
        point = np.asarray(point, dtype=np.float64).flatten()
        return self.rotation @ point + self.translation

    def inverse_transform_point(self, point: np.ndarray) -> np.ndarray:
        """Express a world-frame point in the body frame."""
        point = np.asarray(point, dtype=np.float64).flatten()
        return self.rotation.T @ (point - self.translation)

    def copy(self) -> SE3:
        return SE3(rotation=self.rotation.copy(), translation=self.translation.copy())

    def __matmul__(self, other: SE3) -> SE3:
        return self.compose(other)

    def __repr__(self) -> str:
        x, y, z = self.translation
        return f"SE3(translation=[{x:.3f}, {y:.3f}, {z:.3f}])"
