"""Batch re-optimization of the whole factor graph.

OptimizationOrchestrator reads the current estimate of every allocated
pose and landmark from the spatial graph, hands the accumulated factor
graph to a solver, and writes refined estimates and marginal
covariances back. Nothing is written unless the solve succeeds.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np

from ..config import SolverConfig
from ..errors import SolverError
from ..frontend.pose import SE3
from ..graph.factor_graph import FactorGraphStore
from ..graph.factors import Value
from ..graph.items import LandmarkItem, PoseItem, PoseWithCovariance
from ..symbols import Symbol, SymbolRegistry
from .optimizer import GraphSolver, ScipyGraphSolver, SolverResult

logger = logging.getLogger("envsam.backend")


@dataclass
class OptimizationResult:
    """Result of one full batch optimization."""

    solver_result: SolverResult
    num_poses_updated: int = 0
    num_landmarks_updated: int = 0

    @property
    def initial_error(self) -> float:
        return self.solver_result.initial_error

    @property
    def final_error(self) -> float:
        return self.solver_result.final_error


class OptimizationOrchestrator:
    """Runs full batch optimizations and writes the results back."""

    def __init__(
        self,
        store: FactorGraphStore,
        registry: SymbolRegistry,
        config: SolverConfig | None = None,
        solver: GraphSolver | None = None,
    ) -> None:
        """Initialize orchestrator.

        Args:
            store: Factor graph store (factor graph and spatial graph)
            registry: Symbol registry listing allocated variables
            config: Convergence tolerance and iteration cap
            solver: Graph solver (scipy trust-region solver if None)
        """
        self._store = store
        self._registry = registry
        self._config = config or SolverConfig()
        self._solver = solver if solver is not None else ScipyGraphSolver()
        self._last_result: SolverResult | None = None
        self._num_optimizations = 0

    def initial_estimate(self) -> dict[Symbol, Value] | None:
        """Current estimate of every allocated variable, or None if any is missing."""
        graph = self._store.spatial_graph
        initial: dict[Symbol, Value] = {}

        for symbol in self._registry.pose_symbols():
            item = graph.find_item(symbol, PoseItem)
            if item is None:
                logger.error("Cannot optimize: no pose estimate for %s", symbol)
                return None
            initial[symbol] = item.data.pose.copy()

        for symbol in self._registry.landmark_symbols():
            item = graph.find_item(symbol, LandmarkItem)
            if item is None:
                logger.error("Cannot optimize: no landmark estimate for %s", symbol)
                return None
            initial[symbol] = item.position.copy()

        return initial

    def optimize(self) -> OptimizationResult | None:
        """Re-solve the entire graph and write refined estimates back.

        Returns:
            OptimizationResult, or None if an estimate was missing

        Raises:
            SolverError: If the solver fails; the graph is left unchanged
        """
        initial = self.initial_estimate()
        if initial is None:
            return None

        try:
            result = self._solver.solve(
                self._store.graph,
                initial,
                self._config.relative_error_tol,
                self._config.max_iterations,
            )
            updates = self._collect_updates(initial, result)
        except SolverError as e:
            logger.error("Optimization failed: %s", e)
            raise

        graph = self._store.spatial_graph
        num_poses = 0
        num_landmarks = 0
        for symbol, update in updates.items():
            if isinstance(update, PoseWithCovariance):
                graph.get_item(symbol, PoseItem).data = update
                num_poses += 1
            else:
                graph.get_item(symbol, LandmarkItem).position = update
                num_landmarks += 1

        self._last_result = result
        self._num_optimizations += 1
        logger.info(
            "Optimized %d poses and %d landmarks: error %.6g -> %.6g",
            num_poses,
            num_landmarks,
            result.initial_error,
            result.final_error,
        )
        return OptimizationResult(
            solver_result=result,
            num_poses_updated=num_poses,
            num_landmarks_updated=num_landmarks,
        )

    def _collect_updates(
        self, initial: dict[Symbol, Value], result: SolverResult
    ) -> dict[Symbol, PoseWithCovariance | np.ndarray]:
        """Check the solver covered every variable and prepare the writes."""
        updates: dict[Symbol, PoseWithCovariance | np.ndarray] = {}
        for symbol in initial:
            if symbol not in result.values:
                raise SolverError(f"Solver returned no estimate for {symbol}")
            value = result.values[symbol]
            if isinstance(value, SE3):
                if symbol not in result.marginals:
                    raise SolverError(f"Solver returned no marginal for {symbol}")
                updates[symbol] = PoseWithCovariance(
                    pose=value.copy(),
                    covariance=result.marginals.marginal_covariance(symbol),
                )
            else:
                updates[symbol] = np.asarray(value, dtype=np.float64).copy()
        return updates

    def marginal_covariance(self, symbol: Symbol) -> np.ndarray | None:
        """Marginal covariance from the last successful optimization."""
        if self._last_result is None or symbol not in self._last_result.marginals:
            return None
        return self._last_result.marginals.marginal_covariance(symbol)

    @property
    def last_result(self) -> SolverResult | None:
        return self._last_result

    @property
    def num_optimizations(self) -> int:
        return self._num_optimizations
