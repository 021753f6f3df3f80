"""Smoothing and mapping system combining the graph stores, loop closure and optimization.

SmoothingAndMapping drives the incremental pipeline:
- Odometry: each delta pose allocates the next pose and a between factor
- Point clouds: filtered batches accumulate in the current pose's frame
- Loop closure: once pose n exists, pose n-1 gets a bounding box, its
  features, and a candidate set searched one frame later
- Optimization: a full batch re-solve whenever new landmarks were
  associated (or too many poses accumulated without one)

All calls are synchronous and the caller serializes them.
"""

from __future__ import annotations

import logging

import numpy as np

from .backend import GraphSolver, OptimizationOrchestrator, OptimizationResult
from .config import SAMConfig
from .errors import ItemNotFoundError, UnknownFrameError
from .frontend import (
    SE3,
    FeatureExtractor,
    NearestNeighborMatcher,
    PointCloud,
    PointCloudFilter,
    VoxelGridFilter,
)
from .graph import (
    BearingRangeFactor,
    BetweenFactor,
    DescriptorItem,
    FactorGraph,
    FactorGraphStore,
    KeypointItem,
    LandmarkFactor,
    LandmarkItem,
    NoiseModel,
    PointCloudItem,
    PoseItem,
    PoseWithCovariance,
    SpatialGraph,
)
from .loop_closure import (
    AssociationResult,
    CandidatePolicy,
    DataAssociation,
    LoopCandidate,
    LoopClosureCandidateSearch,
)
from .symbols import INVALID_SYMBOL, Symbol, SymbolRegistry

logger = logging.getLogger("envsam.sam")

DEFAULT_PRIOR_VARIANCES = np.full(6, 1e-6)


class SmoothingAndMapping:
    """Incremental pose graph SLAM with bounding-volume loop closure.

    Poses are symbols ``x0, x1, ...`` and landmarks ``l0, l1, ...``
    (keys configurable). The constructor allocates pose 0 and anchors it
    with a prior; its estimate is added with :meth:`add_pose_value` like
    every other pose.
    """

    def __init__(
        self,
        prior_pose: SE3 | None = None,
        prior_noise: NoiseModel | np.ndarray | None = None,
        config: SAMConfig | None = None,
        solver: GraphSolver | None = None,
        feature_extractor: FeatureExtractor | None = None,
        point_cloud_filter: PointCloudFilter | None = None,
        matcher: NearestNeighborMatcher | None = None,
        candidate_policy: CandidatePolicy | None = None,
    ) -> None:
        """Initialize the system.

        Args:
            prior_pose: Pose of the origin frame (identity if None)
            prior_noise: Prior variances (6,) or covariance (6, 6)
            config: System configuration
            solver: Graph solver (scipy trust-region solver if None)
            feature_extractor: Keypoint/descriptor extractor for point clouds
            point_cloud_filter: Filter for incoming point batches
            matcher: Nearest-neighbour descriptor query
            candidate_policy: Optional hook forcing extra loop closure candidates
        """
        self._config = config or SAMConfig()

        self._registry = SymbolRegistry(self._config.pose_key, self._config.landmark_key)
        self._spatial_graph = SpatialGraph()
        self._store = FactorGraphStore(self._spatial_graph)

        self._candidate_search = LoopClosureCandidateSearch(
            self._spatial_graph,
            self._registry,
            self._config.candidate_search,
            candidate_policy=candidate_policy,
        )
        self._association = DataAssociation(
            self._store,
            self._registry,
            self._config.association,
            matcher=matcher,
        )
        self._orchestrator = OptimizationOrchestrator(
            self._store,
            self._registry,
            self._config.solver,
            solver=solver,
        )

        self._feature_extractor = feature_extractor
        self._point_cloud_filter = point_cloud_filter or VoxelGridFilter(
            self._config.point_cloud.downsample_size
        )

        # Loop closure search lags one frame behind candidate computation
        self._candidates: list[LoopCandidate] = []
        self._candidate_source: Symbol = INVALID_SYMBOL
        self._frames_to_search: list[LoopCandidate] = []
        self._search_source: Symbol = INVALID_SYMBOL
        self._search_pending = False

        self._poses_since_optimization = 0

        if prior_pose is None:
            prior_pose = SE3.identity()
        if prior_noise is None:
            prior_noise = DEFAULT_PRIOR_VARIANCES
        origin = self._registry.pose_symbol(self._registry.next_pose_index())
        self._store.insert_prior(origin, prior_pose, prior_noise)

    # ------------------------------------------------------------------
    # Factors
    # ------------------------------------------------------------------

    def add_delta_pose_factor(
        self,
        delta: SE3,
        noise: NoiseModel | np.ndarray,
        timestamp_ns: int | None = None,
    ) -> BetweenFactor:
        """Allocate the next pose and constrain it relative to the previous one."""
        previous = self._registry.current_pose_symbol
        current = self._registry.pose_symbol(self._registry.next_pose_index())
        self._poses_since_optimization += 1
        return self._store.insert_between(previous, current, delta, noise, timestamp_ns)

    def insert_pose_factor(
        self,
        symbol_a: Symbol,
        symbol_b: Symbol,
        delta: SE3,
        noise: NoiseModel | np.ndarray,
        timestamp_ns: int | None = None,
    ) -> BetweenFactor:
        """Insert a relative pose between two existing symbols."""
        return self._store.insert_between(symbol_a, symbol_b, delta, noise, timestamp_ns)

    def add_bearing_range_factor(
        self,
        pose_symbol: Symbol,
        bearing: float,
        range_distance: float,
        noise: NoiseModel | np.ndarray,
        timestamp_ns: int | None = None,
    ) -> Symbol:
        """Observe a new landmark by bearing and range; returns its symbol."""
        landmark = self._registry.landmark_symbol(self._registry.next_landmark_index())
        self._store.insert_bearing_range(
            pose_symbol, landmark, bearing, range_distance, noise, timestamp_ns
        )
        return landmark

    def insert_bearing_range_factor(
        self,
        pose_symbol: Symbol,
        landmark_symbol: Symbol,
        bearing: float,
        range_distance: float,
        noise: NoiseModel | np.ndarray,
        timestamp_ns: int | None = None,
    ) -> BearingRangeFactor:
        """Observe an already allocated landmark by bearing and range."""
        return self._store.insert_bearing_range(
            pose_symbol, landmark_symbol, bearing, range_distance, noise, timestamp_ns
        )

    def add_landmark_factor(
        self,
        pose_symbol: Symbol,
        offset: np.ndarray,
        noise: NoiseModel | np.ndarray,
        timestamp_ns: int | None = None,
    ) -> Symbol:
        """Observe a new landmark at ``offset`` in the pose frame; returns its symbol."""
        landmark = self._registry.landmark_symbol(self._registry.next_landmark_index())
        self._store.insert_landmark(pose_symbol, landmark, offset, noise, timestamp_ns)
        return landmark

    def insert_landmark_factor(
        self,
        pose_symbol: Symbol,
        landmark_symbol: Symbol,
        offset: np.ndarray,
        noise: NoiseModel | np.ndarray,
        timestamp_ns: int | None = None,
    ) -> LandmarkFactor:
        """Observe an already allocated landmark at ``offset`` in the pose frame."""
        return self._store.insert_landmark(
            pose_symbol, landmark_symbol, offset, noise, timestamp_ns
        )

    # ------------------------------------------------------------------
    # Values
    # ------------------------------------------------------------------

    def add_pose_value(self, pose: SE3, covariance: np.ndarray | None = None) -> Symbol:
        """Create the current pose's frame holding the given estimate."""
        symbol = self._registry.current_pose_symbol
        self._spatial_graph.add_frame(symbol)
        self.insert_pose_value(symbol, pose, covariance)
        return symbol

    def insert_pose_value(
        self, symbol: Symbol, pose: SE3, covariance: np.ndarray | None = None
    ) -> bool:
        """Attach a pose estimate to an existing frame.

        Returns:
            False (logged) if the frame does not exist
        """
        if covariance is None:
            covariance = np.zeros((6, 6))
        item = PoseItem(data=PoseWithCovariance(pose=pose.copy(), covariance=covariance))
        try:
            self._spatial_graph.add_item_to_frame(symbol, item)
        except UnknownFrameError as e:
            logger.warning("Cannot insert pose value: %s", e)
            return False
        return True

    def add_landmark_value(self, position: np.ndarray) -> Symbol:
        """Create the frame of the most recently allocated landmark."""
        symbol = self._registry.current_landmark_symbol
        if not symbol.is_valid:
            raise ValueError("No landmark has been allocated yet")
        self._spatial_graph.add_frame(symbol)
        self.insert_landmark_value(symbol, position)
        return symbol

    def insert_landmark_value(self, symbol: Symbol, position: np.ndarray) -> bool:
        """Attach a landmark position to an existing frame.

        Returns:
            False (logged) if the frame does not exist
        """
        try:
            self._spatial_graph.add_item_to_frame(symbol, LandmarkItem(position=position))
        except UnknownFrameError as e:
            logger.warning("Cannot insert landmark value: %s", e)
            return False
        return True

    # ------------------------------------------------------------------
    # Point clouds
    # ------------------------------------------------------------------

    def push_point_cloud(
        self,
        points: np.ndarray,
        colors: np.ndarray | None = None,
        height: int | None = None,
        width: int | None = None,
    ) -> int:
        """Filter a raw point batch and merge it into the current pose's cloud.

        Args:
            points: (N, 3) or organized (height, width, 3) points in the body frame
            colors: Matching RGBA colors, or None
            height: Rows of an organized cloud (informational)
            width: Columns of an organized cloud (informational)

        Returns:
            Number of points held by the current pose after merging
        """
        if height is not None and width is not None and height * width != len(
            np.asarray(points).reshape(-1, 3)
        ):
            raise ValueError(f"Point batch does not match {height}x{width}")

        symbol = self._registry.current_pose_symbol
        cloud = self._point_cloud_filter.filter(PointCloud(points=points, colors=colors))

        existing = self._spatial_graph.find_item(symbol, PointCloudItem)
        try:
            if existing is None:
                self._spatial_graph.add_item_to_frame(symbol, PointCloudItem(cloud=cloud))
                merged = cloud
            else:
                merged = self._point_cloud_filter.downsample(
                    existing.cloud.concatenate(cloud), self._merge_leaf_size
                )
                existing.cloud = merged
        except UnknownFrameError as e:
            logger.warning("Cannot push point cloud: %s", e)
            return 0

        logger.debug("Frame %s holds %d points", symbol, len(merged))
        return len(merged)

    @property
    def _merge_leaf_size(self) -> float:
        pc_config = self._config.point_cloud
        return pc_config.merge_leaf_factor * pc_config.downsample_size

    # ------------------------------------------------------------------
    # Loop closure
    # ------------------------------------------------------------------

    def finalize_previous_frame(self) -> Symbol:
        """Summarize pose n-1 now that pose n exists.

        Computes the bounding box of pose n-1, extracts its features
        when it holds a point cloud, promotes the candidates computed on
        the previous call to the search set, and computes new candidates
        for pose n-1.

        Returns:
            Symbol of the finalized pose, or the invalid symbol
        """
        frame = self._candidate_search.compute_latest_bounding_box()
        if not frame.is_valid:
            return frame

        self._extract_features(frame)

        self._frames_to_search = self._candidates
        self._search_source = self._candidate_source
        self._search_pending = True

        self._candidates = self._candidate_search.contains_frames(frame)
        self._candidate_source = frame

        logger.info(
            "Finalized %s with %d candidates; next search %s over %d frames",
            frame,
            len(self._candidates),
            self._search_source,
            len(self._frames_to_search),
        )
        return frame

    def _extract_features(self, frame: Symbol) -> int:
        if self._feature_extractor is None:
            return 0
        cloud_item = self._spatial_graph.find_item(frame, PointCloudItem)
        if cloud_item is None:
            return 0
        if self._spatial_graph.contains_items(frame, KeypointItem):
            return self._spatial_graph.item_count(frame, KeypointItem)

        keypoints, descriptors = self._feature_extractor.extract(cloud_item.cloud)
        keypoints = np.asarray(keypoints, dtype=np.float64).reshape(-1, 3)
        if len(keypoints) == 0:
            logger.debug("No keypoints detected for %s", frame)
            return 0

        self._spatial_graph.add_item_to_frame(frame, KeypointItem(points=keypoints))
        self._spatial_graph.add_item_to_frame(frame, DescriptorItem(descriptors=descriptors))
        logger.debug("Detected %d keypoints for %s", len(keypoints), frame)
        return len(keypoints)

    def detect_landmarks(self, timestamp_ns: int | None = None) -> AssociationResult:
        """Associate the pending search source against its candidates.

        The search set is consumed: a second call before the next
        :meth:`finalize_previous_frame` associates nothing. Optimizes
        once if any landmark was accepted, or if
        ``max_poses_between_optimizations`` poses were added since the
        last optimization.
        """
        result = AssociationResult(source=self._search_source)
        if self._search_pending and self._frames_to_search and self._search_source.is_valid:
            result = self._association.associate(
                self._search_source, self._frames_to_search, timestamp_ns
            )
        self._search_pending = False

        limit = self._config.max_poses_between_optimizations
        if result.num_new_landmarks > 0:
            self.optimize()
        elif limit is not None and self._poses_since_optimization >= limit:
            logger.info(
                "%d poses without optimization, forcing one", self._poses_since_optimization
            )
            self.optimize()

        return result

    def pose_correspondences(self) -> tuple[int, list[int]]:
        """Index of the latest search source and of the poses it is searched in."""
        return (
            self._search_source.index,
            [candidate.symbol.index for candidate in self._frames_to_search],
        )

    # ------------------------------------------------------------------
    # Optimization
    # ------------------------------------------------------------------

    def optimize(self) -> OptimizationResult | None:
        """Re-solve the whole graph. See :meth:`OptimizationOrchestrator.optimize`."""
        result = self._orchestrator.optimize()
        if result is not None:
            self._poses_since_optimization = 0
        return result

    def marginal_covariance(self, symbol: Symbol) -> np.ndarray | None:
        """Marginal from the last successful optimization (6x6 pose, 3x3 landmark)."""
        return self._orchestrator.marginal_covariance(symbol)

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    def get_pose(self, symbol: Symbol) -> PoseWithCovariance | None:
        """Current pose estimate of ``symbol``, or None (logged) if unavailable."""
        try:
            return self._spatial_graph.get_item(symbol, PoseItem).data
        except (UnknownFrameError, ItemNotFoundError) as e:
            logger.warning("Cannot get pose: %s", e)
            return None

    def get_poses(self) -> list[PoseWithCovariance]:
        """Estimates of every allocated pose that has one, in index order."""
        poses = []
        for symbol in self._registry.pose_symbols():
            item = self._spatial_graph.find_item(symbol, PoseItem)
            if item is not None:
                poses.append(item.data)
        return poses

    def get_landmark(self, symbol: Symbol) -> np.ndarray | None:
        """Current position estimate of ``symbol``, or None (logged) if unavailable."""
        try:
            return self._spatial_graph.get_item(symbol, LandmarkItem).position.copy()
        except (UnknownFrameError, ItemNotFoundError) as e:
            logger.warning("Cannot get landmark: %s", e)
            return None

    def get_point_cloud(self, symbol: Symbol) -> PointCloud | None:
        """Accumulated cloud of ``symbol`` in its body frame."""
        try:
            return self._spatial_graph.get_item(symbol, PointCloudItem).cloud
        except (UnknownFrameError, ItemNotFoundError) as e:
            logger.warning("Cannot get point cloud: %s", e)
            return None

    def merge_point_clouds(self, downsample: bool = False) -> PointCloud:
        """Every pose's cloud moved into the world frame and concatenated."""
        merged = PointCloud.empty()
        for symbol in self._registry.pose_symbols():
            cloud_item = self._spatial_graph.find_item(symbol, PointCloudItem)
            pose_item = self._spatial_graph.find_item(symbol, PoseItem)
            if cloud_item is None or pose_item is None:
                continue
            merged = merged.concatenate(cloud_item.cloud.transformed(pose_item.data.pose))

        if downsample:
            merged = self._point_cloud_filter.downsample(
                merged, self._config.point_cloud.downsample_size
            )
        return merged

    def current_point_cloud(self, downsample: bool = False) -> PointCloud:
        """Cloud of the most recently finalized pose (n-1) in its body frame."""
        num_poses = self._registry.num_poses
        if num_poses < 2:
            return PointCloud.empty()
        cloud_item = self._spatial_graph.find_item(
            self._registry.pose_symbol(num_poses - 2), PointCloudItem
        )
        if cloud_item is None:
            return PointCloud.empty()

        cloud = cloud_item.cloud
        if downsample:
            cloud = self._point_cloud_filter.downsample(
                cloud, self._config.point_cloud.downsample_size
            )
        return cloud

    @property
    def current_pose_symbol(self) -> Symbol:
        return self._registry.current_pose_symbol

    @property
    def current_landmark_symbol(self) -> Symbol:
        return self._registry.current_landmark_symbol

    @property
    def candidates(self) -> list[LoopCandidate]:
        """Candidates computed for the most recently finalized pose."""
        return list(self._candidates)

    @property
    def factor_graph(self) -> FactorGraph:
        return self._store.graph

    @property
    def spatial_graph(self) -> SpatialGraph:
        return self._spatial_graph

    @property
    def registry(self) -> SymbolRegistry:
        return self._registry

    @property
    def config(self) -> SAMConfig:
        return self._config
