"""Factor graph solvers."""

from .scipy_solver import GraphSolver, MarginalCovariances, ScipyGraphSolver, SolverResult

__all__ = [
    "GraphSolver",
    "ScipyGraphSolver",
    "SolverResult",
    "MarginalCovariances",
]
