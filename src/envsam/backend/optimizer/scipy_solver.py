"""Batch factor graph optimization using scipy.optimize.least_squares.

The optimization problem:
    minimize sum_f ||whiten_f(error_f(X))||^2

over every pose and landmark variable X referenced by the graph. Poses
are parameterized by a body-frame perturbation [dt, drot] retracted from
their initial estimate, landmarks by an additive offset, so the
parameter vector starts at zero and stays small.

Marginal covariances come from the Gauss-Newton information matrix
J^T J, with J the whitened Jacobian linearized at the solution.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Mapping, Protocol

import numpy as np
from scipy import linalg
from scipy.optimize import least_squares
from scipy.sparse import lil_matrix

from ...errors import SolverError
from ...frontend.pose import SE3
from ...graph.factor_graph import FactorGraph
from ...graph.factors import LANDMARK_DOF, POSE_DOF, Factor, Value, whitened_error
from ...symbols import Symbol

logger = logging.getLogger("envsam.backend")

_JACOBIAN_STEP = 1e-6


class MarginalCovariances:
    """Per-variable marginal covariances reported by a solver."""

    def __init__(self, covariances: Mapping[Symbol, np.ndarray] | None = None) -> None:
        self._covariances = dict(covariances or {})

    def marginal_covariance(self, symbol: Symbol) -> np.ndarray:
        """Marginal covariance of ``symbol`` (6x6 for poses, 3x3 for landmarks).

        Raises:
            KeyError: If the solver reported no marginal for ``symbol``
        """
        if symbol not in self._covariances:
            raise KeyError(f"No marginal covariance for {symbol}")
        return self._covariances[symbol].copy()

    def __contains__(self, symbol: object) -> bool:
        return symbol in self._covariances

    def __len__(self) -> int:
        return len(self._covariances)


@dataclass
class SolverResult:
    """Result of a batch optimization."""

    values: dict[Symbol, Value] = field(default_factory=dict)
    marginals: MarginalCovariances = field(default_factory=MarginalCovariances)
    initial_error: float = 0.0
    final_error: float = 0.0
    iterations: int = 0
    message: str = ""


class GraphSolver(Protocol):
    """Solves a factor graph from an initial estimate."""

    def solve(
        self,
        graph: FactorGraph,
        initial: Mapping[Symbol, Value],
        relative_error_tol: float,
        max_iterations: int,
    ) -> SolverResult:
        """Return refined values and marginals, or raise :class:`SolverError`."""
        ...


def _variable_dof(value: Value) -> int:
    return POSE_DOF if isinstance(value, SE3) else LANDMARK_DOF


def _retract(value: Value, delta: np.ndarray) -> Value:
    if isinstance(value, SE3):
        return value.retract(delta)
    return np.asarray(value, dtype=np.float64) + delta


class _Layout:
    """Column layout of the stacked variable perturbations."""

    def __init__(self, values: Mapping[Symbol, Value]) -> None:
        self.symbols = sorted(values)
        self.offsets: dict[Symbol, int] = {}
        self.dofs: dict[Symbol, int] = {}
        offset = 0
        for symbol in self.symbols:
            dof = _variable_dof(values[symbol])
            self.offsets[symbol] = offset
            self.dofs[symbol] = dof
            offset += dof
        self.num_params = offset

    def columns(self, symbol: Symbol) -> slice:
        start = self.offsets[symbol]
        return slice(start, start + self.dofs[symbol])

    def retract(self, values: Mapping[Symbol, Value], x: np.ndarray) -> dict[Symbol, Value]:
        return {symbol: _retract(values[symbol], x[self.columns(symbol)]) for symbol in self.symbols}


class ScipyGraphSolver:
    """Factor graph optimizer using scipy's trust-region least squares.

    Uses the sparse Jacobian pattern of the graph (each factor only
    touches the variables it references) for efficiency.
    """

    def __init__(self, loss: str = "linear") -> None:
        """Initialize solver.

        Args:
            loss: Loss function ("linear", "huber", "soft_l1", "cauchy")
        """
        self._loss = loss

    def solve(
        self,
        graph: FactorGraph,
        initial: Mapping[Symbol, Value],
        relative_error_tol: float = 1e-5,
        max_iterations: int = 100,
    ) -> SolverResult:
        """Optimize every variable of ``graph``.

        Args:
            graph: Factor graph to optimize
            initial: Initial estimate for every referenced variable
            relative_error_tol: Relative cost decrease at which to stop
            max_iterations: Iteration cap

        Returns:
            SolverResult with refined values and marginal covariances

        Raises:
            SolverError: If the problem is malformed, does not converge, or
                its information matrix is rank deficient
        """
        factors = list(graph)
        if not factors:
            raise SolverError("Factor graph is empty")

        referenced = graph.keys()
        missing = referenced - set(initial)
        if missing:
            raise SolverError(
                f"Initial estimate is missing variables: {', '.join(map(str, sorted(missing)))}"
            )
        disconnected = set(initial) - referenced
        if disconnected:
            raise SolverError(
                f"Variables not constrained by any factor: {', '.join(map(str, sorted(disconnected)))}"
            )

        layout = _Layout(initial)
        row_offsets = np.cumsum([0] + [factor.residual_dim for factor in factors])
        num_residuals = int(row_offsets[-1])

        def residuals(x: np.ndarray) -> np.ndarray:
            values = layout.retract(initial, x)
            return np.concatenate([whitened_error(factor, values) for factor in factors])

        x0 = np.zeros(layout.num_params)
        initial_residuals = residuals(x0)
        if not np.all(np.isfinite(initial_residuals)):
            raise SolverError("Initial residuals are not finite")
        initial_error = 0.5 * float(np.sum(initial_residuals**2))

        sparsity = self._build_sparsity_matrix(factors, layout, row_offsets, num_residuals)

        try:
            result = least_squares(
                residuals,
                x0,
                jac_sparsity=sparsity,
                method="trf",  # 'lm' doesn't support jac_sparsity
                loss=self._loss,
                ftol=relative_error_tol,
                max_nfev=max_iterations,
                verbose=0,
            )
        except ValueError as e:
            raise SolverError(f"Optimization failed: {e}") from e

        if result.status == 0:
            raise SolverError(
                f"No convergence after {result.nfev} iterations: {result.message}"
            )
        if result.status < 0:
            raise SolverError(f"Optimization failed: {result.message}")
        if not np.all(np.isfinite(result.fun)):
            raise SolverError("Final residuals are not finite")

        values = layout.retract(initial, result.x)
        final_error = 0.5 * float(np.sum(result.fun**2))
        marginals = self._marginals(factors, values, layout, row_offsets, num_residuals)

        logger.debug(
            "Solved %d factors over %d variables: error %.6g -> %.6g in %d iterations",
            len(factors),
            len(layout.symbols),
            initial_error,
            final_error,
            result.nfev,
        )

        return SolverResult(
            values=values,
            marginals=marginals,
            initial_error=initial_error,
            final_error=final_error,
            iterations=int(result.nfev),
            message=str(result.message),
        )

    def _build_sparsity_matrix(
        self,
        factors: list[Factor],
        layout: _Layout,
        row_offsets: np.ndarray,
        num_residuals: int,
    ) -> lil_matrix:
        """Each factor's rows depend only on the columns of its own variables."""
        sparsity = lil_matrix((num_residuals, layout.num_params), dtype=int)
        for i, factor in enumerate(factors):
            rows = slice(int(row_offsets[i]), int(row_offsets[i + 1]))
            for symbol in factor.keys:
                sparsity[rows, layout.columns(symbol)] = 1
        return sparsity

    def _whitened_jacobian(
        self,
        factors: list[Factor],
        values: dict[Symbol, Value],
        layout: _Layout,
        row_offsets: np.ndarray,
        num_residuals: int,
    ) -> np.ndarray:
        """Central-difference Jacobian of the whitened residuals at ``values``."""
        jacobian = np.zeros((num_residuals, layout.num_params))
        for i, factor in enumerate(factors):
            rows = slice(int(row_offsets[i]), int(row_offsets[i + 1]))
            for symbol in factor.keys:
                start = layout.offsets[symbol]
                for j in range(layout.dofs[symbol]):
                    delta = np.zeros(layout.dofs[symbol])
                    delta[j] = _JACOBIAN_STEP
                    plus = dict(values)
                    minus = dict(values)
                    plus[symbol] = _retract(values[symbol], delta)
                    minus[symbol] = _retract(values[symbol], -delta)
                    jacobian[rows, start + j] = (
                        whitened_error(factor, plus) - whitened_error(factor, minus)
                    ) / (2.0 * _JACOBIAN_STEP)
        return jacobian

    def _marginals(
        self,
        factors: list[Factor],
        values: dict[Symbol, Value],
        layout: _Layout,
        row_offsets: np.ndarray,
        num_residuals: int,
    ) -> MarginalCovariances:
        jacobian = self._whitened_jacobian(factors, values, layout, row_offsets, num_residuals)
        information = jacobian.T @ jacobian

        try:
            factor = linalg.cho_factor(information)
            covariance = linalg.cho_solve(factor, np.eye(layout.num_params))
        except linalg.LinAlgError as e:
            raise SolverError(f"Information matrix is rank deficient: {e}") from e

        covariance = 0.5 * (covariance + covariance.T)
        return MarginalCovariances(
            {
                symbol: covariance[layout.columns(symbol), layout.columns(symbol)].copy()
                for symbol in layout.symbols
            }
        )
