"""Append-only factor graph mirrored into the spatial graph.

Every relative measurement inserted through :class:`FactorGraphStore`
also becomes a :class:`TransformEdge` in the spatial graph, with a 6x6
covariance whose slots match the factor's noise:

- between:        the full 6x6 factor covariance
- bearing-range:  range variance at (0, 0), bearing variance at (5, 5)
- landmark:       the 3x3 factor covariance in the positional block

Symbols are not checked against existing frames; forward references are
resolved by the solver when the graph is optimized.
"""

from __future__ import annotations

import logging
from typing import Iterator

import numpy as np

from ..frontend.pose import SE3
from ..symbols import Symbol
from .factors import (
    BEARING_RANGE_DOF,
    LANDMARK_DOF,
    POSE_DOF,
    BearingRangeFactor,
    BetweenFactor,
    Factor,
    LandmarkFactor,
    PriorFactor,
)
from .noise import NoiseModel, as_noise_model
from .spatial_graph import SpatialGraph

logger = logging.getLogger("envsam.graph")


class FactorGraph:
    """Ordered, append-only collection of factors."""

    def __init__(self) -> None:
        self._factors: list[Factor] = []

    def add(self, factor: Factor) -> None:
        self._factors.append(factor)

    def keys(self) -> set[Symbol]:
        """Every symbol referenced by at least one factor."""
        return {key for factor in self._factors for key in factor.keys}

    @property
    def factors(self) -> tuple[Factor, ...]:
        return tuple(self._factors)

    def __len__(self) -> int:
        return len(self._factors)

    def __iter__(self) -> Iterator[Factor]:
        return iter(list(self._factors))

    def __getitem__(self, index: int) -> Factor:
        return self._factors[index]


class FactorGraphStore:
    """Inserts factors into the factor graph and mirrors them as edges."""

    def __init__(self, spatial_graph: SpatialGraph, graph: FactorGraph | None = None) -> None:
        """Initialize store.

        Args:
            spatial_graph: Spatial graph receiving the mirrored edges
            graph: Existing factor graph to append to (new one if None)
        """
        self._spatial_graph = spatial_graph
        self._graph = graph if graph is not None else FactorGraph()

    def insert_prior(
        self,
        symbol: Symbol,
        pose: SE3,
        noise: NoiseModel | np.ndarray,
    ) -> PriorFactor:
        """Anchor a pose. Priors have no counterpart edge."""
        factor = PriorFactor(symbol=symbol, prior=pose.copy(), noise=as_noise_model(noise, POSE_DOF))
        self._graph.add(factor)
        logger.debug("Inserted prior on %s", symbol)
        return factor

    def insert_between(
        self,
        symbol_a: Symbol,
        symbol_b: Symbol,
        relative_pose: SE3,
        noise: NoiseModel | np.ndarray,
        timestamp_ns: int | None = None,
    ) -> BetweenFactor:
        """Insert a relative pose T_a_b."""
        noise = as_noise_model(noise, POSE_DOF)
        factor = BetweenFactor(
            symbol_a=symbol_a,
            symbol_b=symbol_b,
            measured=relative_pose.copy(),
            noise=noise,
        )
        self._graph.add(factor)

        self._spatial_graph.add_transform(
            symbol_a, symbol_b, relative_pose, noise.covariance, timestamp_ns
        )
        logger.debug("Inserted between factor %s -> %s", symbol_a, symbol_b)
        return factor

    def insert_bearing_range(
        self,
        pose_symbol: Symbol,
        landmark_symbol: Symbol,
        bearing: float,
        range_distance: float,
        noise: NoiseModel | np.ndarray,
        timestamp_ns: int | None = None,
    ) -> BearingRangeFactor:
        """Insert a bearing/range observation. Noise order is [bearing, range]."""
        noise = as_noise_model(noise, BEARING_RANGE_DOF)
        factor = BearingRangeFactor(
            pose_symbol=pose_symbol,
            landmark_symbol=landmark_symbol,
            bearing=float(bearing),
            range=float(range_distance),
            noise=noise,
        )
        self._graph.add(factor)

        variances = noise.variances
        covariance = np.zeros((6, 6))
        covariance[0, 0] = variances[1]  # range along the ray
        covariance[5, 5] = variances[0]  # bearing as yaw
        transform = SE3.from_yaw(bearing, np.array([range_distance, 0.0, 0.0]))
        self._spatial_graph.add_transform(
            pose_symbol, landmark_symbol, transform, covariance, timestamp_ns
        )
        logger.debug("Inserted bearing-range factor %s -> %s", pose_symbol, landmark_symbol)
        return factor

    def insert_landmark(
        self,
        pose_symbol: Symbol,
        landmark_symbol: Symbol,
        offset: np.ndarray,
        noise: NoiseModel | np.ndarray,
        timestamp_ns: int | None = None,
    ) -> LandmarkFactor:
        """Insert a landmark position measured in the pose frame."""
        noise = as_noise_model(noise, LANDMARK_DOF)
        offset = np.asarray(offset, dtype=np.float64).flatten()
        if offset.shape != (3,):
            raise ValueError(f"Landmark offset must be (3,), got {offset.shape}")

        factor = LandmarkFactor(
            pose_symbol=pose_symbol,
            landmark_symbol=landmark_symbol,
            measured=offset.copy(),
            noise=noise,
        )
        self._graph.add(factor)

        covariance = np.zeros((6, 6))
        covariance[:3, :3] = noise.covariance
        self._spatial_graph.add_transform(
            pose_symbol,
            landmark_symbol,
            SE3.from_translation(offset),
            covariance,
            timestamp_ns,
        )
        logger.debug("Inserted landmark factor %s -> %s", pose_symbol, landmark_symbol)
        return factor

    @property
    def graph(self) -> FactorGraph:
        return self._graph

    @property
    def spatial_graph(self) -> SpatialGraph:
        return self._spatial_graph
