"""Gaussian noise models for factor measurements.

A noise model is built either from a variance vector (diagonal) or from
a full covariance matrix. Residuals are whitened with the upper Cholesky
factor of the information matrix so that the squared norm of the
whitened residual is the Mahalanobis distance of the raw residual.
"""

from __future__ import annotations

import numpy as np
from scipy import linalg

from ..errors import NoiseModelError


class NoiseModel:
    """Zero-mean Gaussian measurement noise."""

    def __init__(self, covariance: np.ndarray, is_diagonal: bool = False) -> None:
        """Initialize from a covariance matrix.

        Prefer :meth:`from_variances` / :meth:`from_covariance`.

        Args:
            covariance: (d, d) symmetric positive definite matrix
            is_diagonal: Whether the model was specified by variances
        """
        covariance = np.asarray(covariance, dtype=np.float64)
        if covariance.ndim != 2 or covariance.shape[0] != covariance.shape[1]:
            raise NoiseModelError(f"Covariance must be square, got {covariance.shape}")
        if not np.allclose(covariance, covariance.T, atol=1e-12, rtol=1e-9):
            raise NoiseModelError("Covariance must be symmetric")
        try:
            information = linalg.inv(covariance)
            sqrt_information = linalg.cholesky(information, lower=False)
        except (linalg.LinAlgError, ValueError) as e:
            raise NoiseModelError(f"Covariance is not positive definite: {e}") from e

        self._covariance = covariance
        self._sqrt_information = sqrt_information
        self._is_diagonal = is_diagonal

    @classmethod
    def from_variances(cls, variances: np.ndarray) -> NoiseModel:
        """Diagonal model from per-component variances.

        Args:
            variances: (d,) finite, strictly positive variances

        Raises:
            NoiseModelError: If any variance is non-finite or not positive
        """
        variances = np.asarray(variances, dtype=np.float64).flatten()
        if len(variances) == 0 or np.any(~np.isfinite(variances)) or np.any(variances <= 0.0):
            raise NoiseModelError(f"Variances must be finite and positive, got {variances}")
        return cls(np.diag(variances), is_diagonal=True)

    @classmethod
    def from_covariance(cls, covariance: np.ndarray) -> NoiseModel:
        """Full Gaussian model from a (d, d) covariance matrix.

        Raises:
            NoiseModelError: If the matrix is not symmetric positive definite
        """
        return cls(covariance, is_diagonal=False)

    def whiten(self, error: np.ndarray) -> np.ndarray:
        """Scale a raw residual so its squared norm is its Mahalanobis distance.

        Args:
            error: (d,) residual in measurement units

        Returns:
            (d,) whitened residual
        """
        return self._sqrt_information @ error

    @property
    def dim(self) -> int:
        return self._covariance.shape[0]

    @property
    def covariance(self) -> np.ndarray:
        return self._covariance.copy()

    @property
    def variances(self) -> np.ndarray:
        return np.diag(self._covariance).copy()

    @property
    def is_diagonal(self) -> bool:
        return self._is_diagonal

    def __repr__(self) -> str:
        kind = "Diagonal" if self._is_diagonal else "Gaussian"
        return f"NoiseModel.{kind}(dim={self.dim})"


def as_noise_model(noise: NoiseModel | np.ndarray, dim: int) -> NoiseModel:
    """Coerce ``noise`` into a noise model of dimension ``dim``.

    A 1-D array is read as variances, a 2-D array as a covariance matrix.

    Raises:
        NoiseModelError: If the input is malformed or has the wrong dimension
    """
    if not isinstance(noise, NoiseModel):
        array = np.asarray(noise, dtype=np.float64)
        if array.ndim == 1:
            noise = NoiseModel.from_variances(array)
        elif array.ndim == 2:
            noise = NoiseModel.from_covariance(array)
        else:
            raise NoiseModelError(f"Noise must be a vector or matrix, got ndim={array.ndim}")

    if noise.dim != dim:
        raise NoiseModelError(
            f"Noise model has dimension {noise.dim}, measurement needs {dim}"
        )
    return noise
