"""Descriptor-based data association against loop closure candidates.

For every candidate pose, each source keypoint is matched to its nearest
candidate descriptor. Matches scoring above ``percentage * median`` are
dropped, the remaining pairs are moved into the global frame and gated
on their Mahalanobis distance, and every surviving pair becomes a new
landmark observed by both poses.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

import numpy as np

from ..config import AssociationConfig
from ..frontend.features import DescriptorMatcher, NearestNeighborMatcher
from ..graph.factor_graph import FactorGraphStore
from ..graph.factors import LANDMARK_DOF
from ..graph.items import DescriptorItem, KeypointItem, LandmarkItem, PoseItem
from ..graph.noise import NoiseModel
from ..graph.spatial_graph import SpatialGraph
from ..symbols import Symbol, SymbolRegistry
from .candidate_search import LoopCandidate
from .gating import accept_point_distance, mahalanobis_squared

logger = logging.getLogger("envsam.loop_closure")


def median_score(scores: np.ndarray) -> float:
    """Element at position ``len // 2`` of the sorted scores.

    For an even number of scores this is the upper of the two middle
    values. Returns ``inf`` for an empty array.
    """
    scores = np.asarray(scores, dtype=np.float64).flatten()
    if len(scores) == 0:
        return float("inf")
    return float(np.sort(scores)[len(scores) // 2])


def score_mask(scores: np.ndarray, percentage: float = 1.0) -> np.ndarray:
    """Boolean mask of scores not exceeding ``percentage`` times the median."""
    scores = np.asarray(scores, dtype=np.float64).flatten()
    return scores <= percentage * median_score(scores)


@dataclass
class CandidateMatchReport:
    """Outcome of matching the source pose against one candidate.

    Attributes:
        candidate: Candidate pose symbol
        num_matches: Source keypoints with a nearest neighbour
        num_score_rejected: Matches dropped by the median-score filter
        num_gate_rejected: Matches dropped by the Mahalanobis gate
        distances: Squared Mahalanobis distance of every score-accepted match
        landmarks: Landmarks created from this candidate
    """

    candidate: Symbol
    num_matches: int = 0
    num_score_rejected: int = 0
    num_gate_rejected: int = 0
    distances: list[float] = field(default_factory=list)
    landmarks: list[Symbol] = field(default_factory=list)


@dataclass
class AssociationResult:
    """Outcome of associating a source pose against all its candidates."""

    source: Symbol
    reports: list[CandidateMatchReport] = field(default_factory=list)

    @property
    def new_landmarks(self) -> list[Symbol]:
        return [symbol for report in self.reports for symbol in report.landmarks]

    @property
    def num_new_landmarks(self) -> int:
        return sum(len(report.landmarks) for report in self.reports)


class DataAssociation:
    """Matches a source pose's features against candidate poses.

    Accepted correspondences allocate a landmark, insert two landmark
    factors (one per observing pose) and create the landmark's frame at
    the source keypoint's global position.
    """

    def __init__(
        self,
        store: FactorGraphStore,
        registry: SymbolRegistry,
        config: AssociationConfig | None = None,
        matcher: NearestNeighborMatcher | None = None,
    ) -> None:
        """Initialize data association.

        Args:
            store: Factor graph store receiving landmark factors
            registry: Symbol registry allocating landmark indices
            config: Matching and gating parameters
            matcher: Nearest-neighbour query (OpenCV brute force if None)
        """
        self._store = store
        self._registry = registry
        self._config = config or AssociationConfig()
        self._matcher = matcher if matcher is not None else DescriptorMatcher()
        self._landmark_noise = NoiseModel.from_variances(
            np.asarray(self._config.landmark_variance)
        )

    @property
    def spatial_graph(self) -> SpatialGraph:
        return self._store.spatial_graph

    def _features(
        self, symbol: Symbol
    ) -> tuple[PoseItem, np.ndarray, np.ndarray] | None:
        """Pose, keypoints and descriptors of a frame, or None if incomplete."""
        graph = self.spatial_graph
        pose_item = graph.find_item(symbol, PoseItem)
        keypoints = graph.find_item(symbol, KeypointItem)
        descriptors = graph.find_item(symbol, DescriptorItem)
        if pose_item is None or keypoints is None or descriptors is None:
            return None
        if len(keypoints) != len(descriptors):
            logger.warning(
                "Frame %s has %d keypoints but %d descriptors",
                symbol,
                len(keypoints),
                len(descriptors),
            )
            return None
        return pose_item, keypoints.points, descriptors.descriptors

    def associate(
        self,
        source: Symbol,
        candidates: list[LoopCandidate],
        timestamp_ns: int | None = None,
    ) -> AssociationResult:
        """Associate ``source`` against every candidate in order.

        Args:
            source: Finalized pose whose features are matched
            candidates: Candidate poses from the loop closure search
            timestamp_ns: Optional time stored on the new transform edges

        Returns:
            AssociationResult with one report per processed candidate
        """
        result = AssociationResult(source=source)

        source_features = self._features(source)
        if source_features is None:
            logger.debug("Source %s has no features, skipping association", source)
            return result

        for candidate in candidates:
            if candidate.symbol == source:
                continue
            target_features = self._features(candidate.symbol)
            if target_features is None:
                logger.debug("Candidate %s has no features, skipping", candidate.symbol)
                continue

            report = self._match_candidate(
                source, source_features, candidate.symbol, target_features, timestamp_ns
            )
            result.reports.append(report)

        if result.num_new_landmarks > 0:
            logger.info(
                "Associated %d landmarks for %s across %d candidates",
                result.num_new_landmarks,
                source,
                len(result.reports),
            )
        return result

    def _match_candidate(
        self,
        source: Symbol,
        source_features: tuple[PoseItem, np.ndarray, np.ndarray],
        target: Symbol,
        target_features: tuple[PoseItem, np.ndarray, np.ndarray],
        timestamp_ns: int | None,
    ) -> CandidateMatchReport:
        source_item, source_keypoints, source_descriptors = source_features
        target_item, target_keypoints, target_descriptors = target_features
        report = CandidateMatchReport(candidate=target)

        indices, sq_distances = self._matcher.nearest(source_descriptors, target_descriptors)
        indices = np.asarray(indices)
        sq_distances = np.asarray(sq_distances, dtype=np.float64)

        valid = (indices >= 0) & np.isfinite(sq_distances)
        report.num_matches = int(np.count_nonzero(valid))
        if report.num_matches == 0:
            return report

        median = median_score(sq_distances[valid])
        accepted = valid & (sq_distances <= self._config.match_percentage * median)
        report.num_score_rejected = report.num_matches - int(np.count_nonzero(accepted))

        source_pose = source_item.data.pose
        target_pose = target_item.data.pose
        added_covariance = (
            source_item.data.position_covariance + self._config.landmark_covariance
        )

        for i in np.flatnonzero(accepted):
            source_local = source_keypoints[i]
            target_local = target_keypoints[indices[i]]

            source_global = source_pose.transform_point(source_local)
            target_global = target_pose.transform_point(target_local)
            innovation = source_global - target_global

            distance = mahalanobis_squared(innovation, added_covariance)
            report.distances.append(distance)

            inside = accept_point_distance(
                distance, LANDMARK_DOF, self._config.significance
            )
            if not inside and self._config.enforce_mahalanobis_gate:
                report.num_gate_rejected += 1
                continue

            landmark = self._add_landmark(
                source, source_local, target, target_local, source_global, timestamp_ns
            )
            report.landmarks.append(landmark)

        logger.debug(
            "Candidate %s for %s: %d matches, %d score-rejected, %d gate-rejected, %d landmarks",
            target,
            source,
            report.num_matches,
            report.num_score_rejected,
            report.num_gate_rejected,
            len(report.landmarks),
        )
        return report

    def _add_landmark(
        self,
        source: Symbol,
        source_local: np.ndarray,
        target: Symbol,
        target_local: np.ndarray,
        position: np.ndarray,
        timestamp_ns: int | None,
    ) -> Symbol:
        landmark = self._registry.landmark_symbol(self._registry.next_landmark_index())

        self._store.insert_landmark(
            source, landmark, source_local, self._landmark_noise, timestamp_ns
        )
        self._store.insert_landmark(
            target, landmark, target_local, self._landmark_noise, timestamp_ns
        )

        graph = self.spatial_graph
        graph.add_frame(landmark)
        graph.add_item_to_frame(landmark, LandmarkItem(position=position))
        return landmark
