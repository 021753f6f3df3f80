"""Backend with full batch factor graph optimization."""

from .optimizer import GraphSolver, MarginalCovariances, ScipyGraphSolver, SolverResult
from .orchestrator import OptimizationOrchestrator, OptimizationResult

__all__ = [
    # Orchestration
    "OptimizationOrchestrator",
    "OptimizationResult",
    # Solvers
    "GraphSolver",
    "ScipyGraphSolver",
    "SolverResult",
    "MarginalCovariances",
]
