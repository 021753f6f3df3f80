"""Tests for median-score filtering, Mahalanobis gating and data association."""

from typing import Callable

import numpy as np
import pytest

from envsam.config import AssociationConfig
from envsam.graph.factor_graph import FactorGraphStore
from envsam.graph.factors import FactorKind
from envsam.graph.items import DescriptorItem, KeypointItem, LandmarkItem
from envsam.graph.spatial_graph import SpatialGraph
from envsam.loop_closure.candidate_search import LoopCandidate
from envsam.loop_closure.data_association import DataAssociation, median_score, score_mask
from envsam.loop_closure.gating import (
    accept_point_distance,
    chi_square_critical,
    mahalanobis_squared,
)
from envsam.symbols import Symbol, SymbolRegistry

KEYPOINTS = np.array(
    [
        [1.0, 0.0, 0.0],
        [0.0, 1.0, 0.0],
        [0.0, 0.0, 1.0],
        [1.0, 1.0, 0.0],
        [0.0, 1.0, 1.0],
    ]
)


class FixedMatcher:
    """Matches keypoint i to keypoint i with preset squared distances."""

    def __init__(self, sq_distances: np.ndarray) -> None:
        self.sq_distances = np.asarray(sq_distances, dtype=np.float64)
        self.calls = 0

    def nearest(self, source: np.ndarray, target: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        self.calls += 1
        return np.arange(len(source)), self.sq_distances.copy()


def add_features(
    spatial_graph: SpatialGraph, symbol: Symbol, keypoints: np.ndarray, descriptors: np.ndarray
) -> None:
    spatial_graph.add_item_to_frame(symbol, KeypointItem(points=keypoints))
    spatial_graph.add_item_to_frame(symbol, DescriptorItem(descriptors=descriptors))


class TestScoreFilter:
    """Test suite for median-score filtering."""

    def test_median_odd(self):
        assert median_score(np.array([5.0, 1.0, 4.0, 2.0, 3.0])) == 3.0

    def test_median_even_is_upper(self):
        """Test that even-length medians take the upper middle value."""
        assert median_score(np.array([4.0, 1.0, 3.0, 2.0])) == 3.0

    def test_median_empty(self):
        assert median_score(np.array([])) == float("inf")

    def test_score_mask(self):
        """Test that scores above the median are rejected at percentage 1.0."""
        mask = score_mask(np.array([1.0, 2.0, 3.0, 4.0, 5.0]), percentage=1.0)
        np.testing.assert_array_equal(mask, [True, True, True, False, False])

    def test_score_mask_percentage(self):
        mask = score_mask(np.array([1.0, 2.0, 3.0, 4.0, 5.0]), percentage=0.5)
        np.testing.assert_array_equal(mask, [True, False, False, False, False])


class TestGating:
    """Test suite for chi-square gating."""

    @pytest.mark.parametrize("dof,expected", [(1, 3.84), (2, 5.99), (3, 7.81), (4, 9.49)])
    def test_table(self, dof: int, expected: float):
        assert chi_square_critical(dof) == expected

    def test_outside_table(self):
        """Test that values outside the table use the exact quantile."""
        assert chi_square_critical(5) == pytest.approx(11.07, abs=0.01)
        assert chi_square_critical(3, significance=0.01) == pytest.approx(11.34, abs=0.01)

    def test_invalid_dof(self):
        with pytest.raises(ValueError):
            chi_square_critical(0)

    def test_mahalanobis(self):
        """Test the squared Mahalanobis distance under a diagonal covariance."""
        distance = mahalanobis_squared(np.array([1.0, 2.0, 0.0]), np.diag([1.0, 4.0, 1.0]))
        assert distance == pytest.approx(2.0)

    def test_accept(self):
        assert accept_point_distance(7.8, 3)
        assert not accept_point_distance(7.81, 3)


@pytest.fixture
def association_setup(
    store: FactorGraphStore,
    registry: SymbolRegistry,
    spatial_graph: SpatialGraph,
    add_pose_frame: Callable[..., Symbol],
) -> tuple[Symbol, Symbol]:
    """Two poses at the same place, each with five matching keypoints."""
    target = add_pose_frame([0.0, 0.0, 0.0])
    source = add_pose_frame([0.0, 0.0, 0.0])
    descriptors = np.eye(5, dtype=np.float32)
    add_features(spatial_graph, target, KEYPOINTS, descriptors)
    add_features(spatial_graph, source, KEYPOINTS, descriptors)
    return source, target


class TestDataAssociation:
    """Test suite for DataAssociation."""

    def test_median_filter_accepts_lower_half(
        self,
        store: FactorGraphStore,
        registry: SymbolRegistry,
        spatial_graph: SpatialGraph,
        association_setup: tuple[Symbol, Symbol],
    ):
        """Test that scores [1..5] give three landmarks with two factors each."""
        source, target = association_setup
        association = DataAssociation(
            store, registry, matcher=FixedMatcher([1.0, 2.0, 3.0, 4.0, 5.0])
        )

        result = association.associate(source, [LoopCandidate(symbol=target)])

        (report,) = result.reports
        assert report.num_matches == 5
        assert report.num_score_rejected == 2
        assert report.num_gate_rejected == 0
        assert result.new_landmarks == [Symbol("l", 0), Symbol("l", 1), Symbol("l", 2)]
        assert registry.num_landmarks == 3

        landmark_factors = [f for f in store.graph if f.kind is FactorKind.LANDMARK]
        assert len(landmark_factors) == 6
        assert {f.pose_symbol for f in landmark_factors} == {source, target}

        position = spatial_graph.get_item(Symbol("l", 1), LandmarkItem).position
        np.testing.assert_allclose(position, KEYPOINTS[1])
        assert len(spatial_graph.edges_to(Symbol("l", 1))) == 2

    def test_landmark_noise(
        self,
        store: FactorGraphStore,
        registry: SymbolRegistry,
        association_setup: tuple[Symbol, Symbol],
    ):
        """Test that landmark factors use the configured landmark variance."""
        source, target = association_setup
        config = AssociationConfig(landmark_variance=(0.02, 0.03, 0.04))
        association = DataAssociation(store, registry, config, matcher=FixedMatcher(np.ones(5)))

        association.associate(source, [LoopCandidate(symbol=target)])

        factor = store.graph[0]
        np.testing.assert_allclose(factor.noise.variances, [0.02, 0.03, 0.04])

    @pytest.fixture
    def displaced_target(
        self,
        spatial_graph: SpatialGraph,
        add_pose_frame: Callable[..., Symbol],
    ) -> tuple[Symbol, Symbol]:
        """Source and target whose first keypoint is 1 m apart in the world."""
        target = add_pose_frame([0.0, 0.0, 0.0])
        source = add_pose_frame([0.0, 0.0, 0.0])
        descriptors = np.eye(2, dtype=np.float32)
        target_keypoints = np.array([[2.0, 0.0, 0.0], [0.0, 1.0, 0.0]])
        source_keypoints = np.array([[1.0, 0.0, 0.0], [0.0, 1.0, 0.0]])
        add_features(spatial_graph, target, target_keypoints, descriptors)
        add_features(spatial_graph, source, source_keypoints, descriptors)
        return source, target

    def test_gate_rejects_inconsistent_match(
        self,
        store: FactorGraphStore,
        registry: SymbolRegistry,
        displaced_target: tuple[Symbol, Symbol],
    ):
        """Test that the enforced gate rejects a match 10 sigma away."""
        source, target = displaced_target
        association = DataAssociation(store, registry, matcher=FixedMatcher([1.0, 1.0]))

        result = association.associate(source, [LoopCandidate(symbol=target)])

        (report,) = result.reports
        assert report.num_gate_rejected == 1
        assert report.distances[0] == pytest.approx(100.0)
        assert report.distances[1] == pytest.approx(0.0)
        assert result.num_new_landmarks == 1

    def test_ungated_accepts_inconsistent_match(
        self,
        store: FactorGraphStore,
        registry: SymbolRegistry,
        displaced_target: tuple[Symbol, Symbol],
    ):
        """Test that disabling the gate accepts every score-accepted match."""
        source, target = displaced_target
        config = AssociationConfig(enforce_mahalanobis_gate=False)
        association = DataAssociation(store, registry, config, matcher=FixedMatcher([1.0, 1.0]))

        result = association.associate(source, [LoopCandidate(symbol=target)])

        (report,) = result.reports
        assert report.num_gate_rejected == 0
        assert report.distances[0] == pytest.approx(100.0)
        assert result.num_new_landmarks == 2

    def test_source_without_features(
        self,
        store: FactorGraphStore,
        registry: SymbolRegistry,
        add_pose_frame: Callable[..., Symbol],
        association_setup: tuple[Symbol, Symbol],
    ):
        """Test that a source lacking features produces an empty result."""
        _, target = association_setup
        bare = add_pose_frame([0.0, 0.0, 0.0])
        matcher = FixedMatcher(np.ones(5))
        association = DataAssociation(store, registry, matcher=matcher)

        result = association.associate(bare, [LoopCandidate(symbol=target)])

        assert result.reports == []
        assert matcher.calls == 0
        assert len(store.graph) == 0

    def test_candidate_without_features_skipped(
        self,
        store: FactorGraphStore,
        registry: SymbolRegistry,
        add_pose_frame: Callable[..., Symbol],
        association_setup: tuple[Symbol, Symbol],
    ):
        """Test that candidates lacking features or frames are skipped."""
        source, target = association_setup
        bare = add_pose_frame([0.0, 0.0, 0.0])
        association = DataAssociation(store, registry, matcher=FixedMatcher(np.ones(5)))

        result = association.associate(
            source,
            [
                LoopCandidate(symbol=bare),
                LoopCandidate(symbol=Symbol("x", 99)),
                LoopCandidate(symbol=target),
            ],
        )

        assert [r.candidate for r in result.reports] == [target]

    def test_keypoint_descriptor_mismatch_skipped(
        self,
        store: FactorGraphStore,
        registry: SymbolRegistry,
        spatial_graph: SpatialGraph,
        add_pose_frame: Callable[..., Symbol],
        association_setup: tuple[Symbol, Symbol],
    ):
        """Test that a candidate with mismatched feature counts is skipped."""
        source, _ = association_setup
        broken = add_pose_frame([0.0, 0.0, 0.0])
        add_features(spatial_graph, broken, KEYPOINTS, np.eye(3, 5, dtype=np.float32))
        association = DataAssociation(store, registry, matcher=FixedMatcher(np.ones(5)))

        result = association.associate(source, [LoopCandidate(symbol=broken)])

        assert result.reports == []

    def test_with_descriptor_matcher(
        self,
        store: FactorGraphStore,
        registry: SymbolRegistry,
        association_setup: tuple[Symbol, Symbol],
    ):
        """Test identical descriptor sets with the default OpenCV matcher."""
        source, target = association_setup
        association = DataAssociation(store, registry)

        result = association.associate(source, [LoopCandidate(symbol=target)])

        # Every distance is zero, so every match equals the median
        assert result.num_new_landmarks == 5
