"""Measurement factors of the pose/landmark factor graph.

Each factor references one or two symbols and computes an unwhitened
residual from the current variable values. Pose residuals use the
[translation, rotation] ordering of :meth:`SE3.local`. ``dof`` is the
dimension of the measurement noise, ``residual_dim`` the number of rows
the factor contributes to the stacked residual.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Mapping, Union

import numpy as np

from ..frontend.pose import SE3, wrap_angle
from ..symbols import Symbol
from .noise import NoiseModel

Value = Union[SE3, np.ndarray]
Values = Mapping[Symbol, Value]

POSE_DOF = 6
BEARING_RANGE_DOF = 2
BEARING_RANGE_RESIDUALS = 3
LANDMARK_DOF = 3


class FactorKind(Enum):
    """Kinds of measurement constraints."""

    PRIOR = "prior"
    BETWEEN = "between"
    BEARING_RANGE = "bearing_range"
    LANDMARK = "landmark"


class _GaussianFactor:
    """Factor whose whole residual is whitened by its noise model."""

    noise: NoiseModel

    def whiten(self, error: np.ndarray) -> np.ndarray:
        return self.noise.whiten(error)


@dataclass(frozen=True, eq=False)
class PriorFactor(_GaussianFactor):
    """Absolute anchor on a pose."""

    symbol: Symbol
    prior: SE3
    noise: NoiseModel

    kind = FactorKind.PRIOR
    dof = POSE_DOF
    residual_dim = POSE_DOF

    @property
    def keys(self) -> tuple[Symbol, ...]:
        return (self.symbol,)

    def error(self, values: Values) -> np.ndarray:
        return self.prior.local(values[self.symbol])


@dataclass(frozen=True, eq=False)
class BetweenFactor(_GaussianFactor):
    """Relative pose measurement T_a_b between two poses."""

    symbol_a: Symbol
    symbol_b: Symbol
    measured: SE3
    noise: NoiseModel

    kind = FactorKind.BETWEEN
    dof = POSE_DOF
    residual_dim = POSE_DOF

    @property
    def keys(self) -> tuple[Symbol, ...]:
        return (self.symbol_a, self.symbol_b)

    def error(self, values: Values) -> np.ndarray:
        predicted = values[self.symbol_a].between(values[self.symbol_b])
        return self.measured.local(predicted)


@dataclass(frozen=True, eq=False)
class BearingRangeFactor(_GaussianFactor):
    """Planar bearing (yaw in the pose frame) and range observation of a landmark.

    Noise ordering is [bearing, range]. The landmark is observed in the
    pose's XY plane: a third residual holds its height in the pose frame
    at zero with the range standard deviation, so one observation
    constrains all three landmark coordinates.
    """

    pose_symbol: Symbol
    landmark_symbol: Symbol
    bearing: float
    range: float
    noise: NoiseModel

    kind = FactorKind.BEARING_RANGE
    dof = BEARING_RANGE_DOF
    residual_dim = BEARING_RANGE_RESIDUALS

    @property
    def keys(self) -> tuple[Symbol, ...]:
        return (self.pose_symbol, self.landmark_symbol)

    def error(self, values: Values) -> np.ndarray:
        local = values[self.pose_symbol].inverse_transform_point(values[self.landmark_symbol])
        predicted_bearing = np.arctan2(local[1], local[0])
        predicted_range = np.linalg.norm(local)
        return np.array(
            [
                wrap_angle(predicted_bearing - self.bearing),
                predicted_range - self.range,
                local[2],
            ]
        )

    def whiten(self, error: np.ndarray) -> np.ndarray:
        elevation_sigma = np.sqrt(self.noise.variances[1])
        planar = self.noise.whiten(error[:BEARING_RANGE_DOF])
        return np.append(planar, error[BEARING_RANGE_DOF] / elevation_sigma)


@dataclass(frozen=True, eq=False)
class LandmarkFactor(_GaussianFactor):
    """Landmark position observed in the pose frame."""

    pose_symbol: Symbol
    landmark_symbol: Symbol
    measured: np.ndarray
    noise: NoiseModel

    kind = FactorKind.LANDMARK
    dof = LANDMARK_DOF
    residual_dim = LANDMARK_DOF

    @property
    def keys(self) -> tuple[Symbol, ...]:
        return (self.pose_symbol, self.landmark_symbol)

    def error(self, values: Values) -> np.ndarray:
        local = values[self.pose_symbol].inverse_transform_point(values[self.landmark_symbol])
        return local - self.measured


Factor = Union[PriorFactor, BetweenFactor, BearingRangeFactor, LandmarkFactor]


def whitened_error(factor: Factor, values: Values) -> np.ndarray:
    """Residual scaled by the factor's square-root information."""
    return factor.whiten(factor.error(values))
