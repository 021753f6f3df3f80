"""Shared fixtures for envsam tests."""

from __future__ import annotations

from typing import Callable

import numpy as np
import pytest

from envsam.frontend.pose import SE3
from envsam.graph.factor_graph import FactorGraphStore
from envsam.graph.items import PoseItem, PoseWithCovariance
from envsam.graph.spatial_graph import SpatialGraph
from envsam.symbols import Symbol, SymbolRegistry


@pytest.fixture
def registry() -> SymbolRegistry:
    return SymbolRegistry()


@pytest.fixture
def spatial_graph() -> SpatialGraph:
    return SpatialGraph()


@pytest.fixture
def store(spatial_graph: SpatialGraph) -> FactorGraphStore:
    return FactorGraphStore(spatial_graph)


@pytest.fixture
def add_pose_frame(
    spatial_graph: SpatialGraph, registry: SymbolRegistry
) -> Callable[..., Symbol]:
    """Allocate the next pose and create its frame at ``translation``.

    Returns:
        Function (translation, covariance=None, yaw=0.0) -> Symbol
    """

    def _add(
        translation: np.ndarray,
        covariance: np.ndarray | None = None,
        yaw: float = 0.0,
    ) -> Symbol:
        symbol = registry.pose_symbol(registry.next_pose_index())
        spatial_graph.add_frame(symbol)
        pose = SE3.from_yaw(yaw, np.asarray(translation, dtype=np.float64))
        data = PoseWithCovariance(
            pose=pose,
            covariance=np.zeros((6, 6)) if covariance is None else covariance,
        )
        spatial_graph.add_item_to_frame(symbol, PoseItem(data=data))
        return symbol

    return _add
