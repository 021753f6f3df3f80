"""Statistical gating of point correspondences."""

from __future__ import annotations

import numpy as np
from scipy.stats import chi2

# Chi-square critical values at 5% significance, indexed by degrees of freedom
CHI_SQUARE_95 = {1: 3.84, 2: 5.99, 3: 7.81, 4: 9.49}


def chi_square_critical(dof: int, significance: float = 0.05) -> float:
    """Critical value of the chi-square distribution.

    Uses the tabulated values for 1-4 degrees of freedom at 5%
    significance and the exact quantile otherwise.
    """
    if dof < 1:
        raise ValueError(f"Degrees of freedom must be positive, got {dof}")
    if significance == 0.05 and dof in CHI_SQUARE_95:
        return CHI_SQUARE_95[dof]
    return float(chi2.ppf(1.0 - significance, dof))


def mahalanobis_squared(innovation: np.ndarray, covariance: np.ndarray) -> float:
    """Squared Mahalanobis distance of ``innovation`` under ``covariance``."""
    innovation = np.asarray(innovation, dtype=np.float64).flatten()
    covariance = np.asarray(covariance, dtype=np.float64)
    return float(innovation @ np.linalg.solve(covariance, innovation))


def accept_point_distance(
    distance_squared: float, dof: int = 3, significance: float = 0.05
) -> bool:
    """Whether a squared Mahalanobis distance lies inside the confidence region."""
    return distance_squared < chi_square_critical(dof, significance)
