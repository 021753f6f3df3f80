"""Loop closure candidate search using pose bounding volumes.

Once pose n exists, pose n-1 is considered finalized. Its bounding box
spans the segment from pose n-1 to pose n, pushed outwards on every
axis by a per-axis margin. Every other pose whose position (or, for
earlier poses, the center of its own box) falls inside that box becomes
a candidate for data association.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Protocol

import numpy as np

from ..config import CandidateSearchConfig
from ..errors import ItemNotFoundError, UnknownFrameError
from ..frontend.bounding_box import AlignedBoundingBox
from ..graph.items import PoseItem
from ..graph.spatial_graph import SpatialGraph
from ..symbols import INVALID_SYMBOL, Symbol, SymbolRegistry

logger = logging.getLogger("envsam.loop_closure")

QueryPointsPolicy = Callable[[Symbol, Symbol, PoseItem], list[np.ndarray]]


def directional_query_points(
    container: Symbol, query: Symbol, query_item: PoseItem
) -> list[np.ndarray]:
    """Points of the query pose tested against the container's box.

    The query position is always tested. When the container is newer
    than the query, the center of the query's own box is tested too,
    so earlier territory is matched against a later container more
    generously than the reverse.
    """
    points = [query_item.data.translation]
    if container.index > query.index and query_item.bounding_box is not None:
        points.append(query_item.bounding_box.center)
    return points


class CandidatePolicy(Protocol):
    """Hook that may force extra candidates for a container."""

    def force(self, container: Symbol, target: Symbol) -> bool:
        ...


class ForcedCandidateWindow:
    """Forces candidates for containers and targets inside open index bands.

    Used to inject artificial loop closures in tests.
    """

    def __init__(
        self,
        container_range: tuple[int, int],
        target_range: tuple[int, int],
    ) -> None:
        """Initialize window.

        Args:
            container_range: Exclusive (low, high) band of container indices
            target_range: Exclusive (low, high) band of target indices
        """
        self._container_range = container_range
        self._target_range = target_range

    def force(self, container: Symbol, target: Symbol) -> bool:
        low, high = self._container_range
        if not low < container.index < high:
            return False
        low, high = self._target_range
        return low < target.index < high


@dataclass
class LoopCandidate:
    """A pose proposed for data association against a container pose.

    Attributes:
        symbol: Candidate pose symbol
        long_range: Index gap to the container exceeds the loop closure gap
        forced: Added by a candidate policy rather than by containment
    """

    symbol: Symbol
    long_range: bool = False
    forced: bool = False


class LoopClosureCandidateSearch:
    """Computes bounding boxes of finalized poses and finds contained poses."""

    def __init__(
        self,
        spatial_graph: SpatialGraph,
        registry: SymbolRegistry,
        config: CandidateSearchConfig | None = None,
        query_points: QueryPointsPolicy = directional_query_points,
        candidate_policy: CandidatePolicy | None = None,
    ) -> None:
        """Initialize candidate search.

        Args:
            spatial_graph: Graph holding pose items
            registry: Symbol registry (pose counter and keys)
            config: Margins and loop closure gap
            query_points: Policy selecting which query points are tested
            candidate_policy: Optional hook forcing extra candidates
        """
        self._spatial_graph = spatial_graph
        self._registry = registry
        self._config = config or CandidateSearchConfig()
        self._query_points = query_points
        self._candidate_policy = candidate_policy

    def margins(self, position_covariance: np.ndarray) -> np.ndarray:
        """Per-axis margin: standard deviation clamped to the configured floor."""
        floor = np.asarray(self._config.margin_floor, dtype=np.float64)
        if not self._config.use_covariance_margins:
            return floor
        std = np.sqrt(np.clip(np.diag(position_covariance), 0.0, None))
        return np.maximum(std, floor)

    def compute_bounding_box(self, previous: Symbol, current: Symbol) -> Symbol:
        """Store the box spanning ``previous`` -> ``current`` on ``previous``.

        Returns:
            ``previous``, or the invalid symbol if the box could not be built
        """
        if not previous.is_valid or not current.is_valid:
            return INVALID_SYMBOL

        try:
            prev_item = self._spatial_graph.get_item(previous, PoseItem)
            curr_item = self._spatial_graph.get_item(current, PoseItem)
        except (UnknownFrameError, ItemNotFoundError) as e:
            logger.warning("Cannot compute bounding box for %s: %s", previous, e)
            return INVALID_SYMBOL

        prev_margin = self.margins(prev_item.data.position_covariance)
        curr_margin = self.margins(curr_item.data.position_covariance)

        front = curr_item.data.translation.copy()
        rear = prev_item.data.translation.copy()

        # Push each limit further out along the direction it already lies
        for i in range(3):
            if front[i] > rear[i]:
                front[i] += curr_margin[i]
                rear[i] -= prev_margin[i]
            else:
                front[i] -= curr_margin[i]
                rear[i] += prev_margin[i]

        prev_item.bounding_box = AlignedBoundingBox.from_points(front, rear)
        logger.debug(
            "Bounding box for %s: min=%s max=%s",
            previous,
            prev_item.bounding_box.min,
            prev_item.bounding_box.max,
        )
        return previous

    def compute_latest_bounding_box(self) -> Symbol:
        """Box the pose before the most recent one; invalid if only pose 0 exists."""
        num_poses = self._registry.num_poses
        if num_poses < 2:
            return INVALID_SYMBOL
        return self.compute_bounding_box(
            self._registry.pose_symbol(num_poses - 2),
            self._registry.pose_symbol(num_poses - 1),
        )

    def contains(self, container: Symbol, query: Symbol) -> bool:
        """Whether the container's box holds any of the query's test points.

        Raises:
            UnknownFrameError: If either frame does not exist
            ItemNotFoundError: If either frame has no pose item
        """
        container_item = self._spatial_graph.get_item(container, PoseItem)
        query_item = self._spatial_graph.get_item(query, PoseItem)

        if container_item.bounding_box is None:
            return False
        return any(
            container_item.contains(point)
            for point in self._query_points(container, query, query_item)
        )

    def contains_frames(self, container: Symbol) -> list[LoopCandidate]:
        """Collect every other pose contained by the container's box.

        Poses are scanned in increasing index order. Poses whose lookup
        fails are skipped.
        """
        candidates: list[LoopCandidate] = []
        if not container.is_valid:
            return candidates

        gap = self._config.loop_closure_index_gap
        for target in self._registry.pose_symbols():
            if target == container:
                continue

            try:
                contained = self.contains(container, target)
            except (UnknownFrameError, ItemNotFoundError) as e:
                logger.warning("Skipping candidate %s: %s", target, e)
                continue

            forced = (
                not contained
                and self._candidate_policy is not None
                and self._candidate_policy.force(container, target)
            )
            if not (contained or forced):
                continue

            long_range = abs(container.index - target.index) > gap
            candidates.append(LoopCandidate(symbol=target, long_range=long_range, forced=forced))

            if long_range:
                logger.info("Potential loop closure: container %s, target %s", container, target)
            if forced:
                logger.info("Forced loop closure candidate: container %s, target %s", container, target)

        logger.debug("Container %s has %d candidates", container, len(candidates))
        return candidates
