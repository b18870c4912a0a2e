"""
Weighted least-squares solver.

The grid search repeatedly solves small regression problems of the form

    minimize  sum_i w_i * (y_i - x_i^T beta)^2

which are linear in beta once the decay constants are fixed. Rows are scaled
by sqrt(w_i) and the resulting ordinary least-squares problem is solved with
a column-pivoted QR decomposition. A singular-value solve is used as the
fallback when the triangular solve cannot be trusted.

No regularisation is applied: a design matrix without full column rank is
reported as ``RankDeficiencyError`` and the caller decides what to do.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
import scipy.linalg
from numpy.typing import ArrayLike, NDArray

from curvefit.errors import DomainInputError, NumericalFailureError, RankDeficiencyError


@dataclass(frozen=True)
class LeastSquaresSolution:
    """
    Result of a weighted least-squares solve.

    Attributes:
        coefficients: Coefficient vector minimising the weighted residual norm.
        sse: Weighted sum of squared residuals at the solution.
        rank: Numerical rank of the weighted design matrix.
    """
    coefficients: NDArray[np.float64]
    sse: float
    rank: int


def _rank_tolerance(r_diag: NDArray[np.float64], n: int, k: int) -> float:
    return max(n, k) * np.finfo(np.float64).eps * float(np.abs(r_diag[0]))


def _solve_qr(
    xw: NDArray[np.float64], yw: NDArray[np.float64]
) -> tuple[NDArray[np.float64], int]:
    n, k = xw.shape
    q, r, perm = scipy.linalg.qr(xw, mode="economic", pivoting=True)
    r_diag = np.abs(np.diag(r))
    if r_diag[0] == 0.0:
        return np.zeros(k), 0

    rank = int(np.sum(r_diag > _rank_tolerance(r_diag, n, k)))
    if rank < k:
        return np.zeros(k), rank

    permuted = scipy.linalg.solve_triangular(r, q.T @ yw)
    beta = np.empty(k, dtype=np.float64)
    beta[perm] = permuted
    return beta, rank


def _solve_svd(
    xw: NDArray[np.float64], yw: NDArray[np.float64]
) -> tuple[NDArray[np.float64], int]:
    beta, _, rank, _ = np.linalg.lstsq(xw, yw, rcond=None)
    return beta, int(rank)


def solve_weighted_least_squares(
    design: ArrayLike,
    target: ArrayLike,
    weights: ArrayLike,
) -> LeastSquaresSolution:
    """
    Solve a weighted linear least-squares problem.

    Scaling every weight by the same positive constant c leaves the
    coefficients unchanged and multiplies the SSE by c.

    Args:
        design: Design matrix of shape (n, k), n >= k.
        target: Target vector of length n.
        weights: Non-negative weights of length n.

    Returns:
        LeastSquaresSolution with coefficients, weighted SSE and rank.

    Raises:
        DomainInputError: If shapes disagree or weights are negative/non-finite.
        RankDeficiencyError: If the weighted matrix lacks full column rank.
        NumericalFailureError: If the solution is not finite.
    """
    x = np.asarray(design, dtype=np.float64)
    y = np.asarray(target, dtype=np.float64)
    w = np.asarray(weights, dtype=np.float64)

    if x.ndim != 2:
        raise DomainInputError("Design matrix must be two-dimensional")
    n, k = x.shape
    if y.shape != (n,) or w.shape != (n,):
        raise DomainInputError(
            f"target ({y.shape}) and weights ({w.shape}) must have {n} rows"
        )
    if not np.all(np.isfinite(w)) or np.any(w < 0):
        raise DomainInputError("Weights must be finite and non-negative")
    if not (np.all(np.isfinite(x)) and np.all(np.isfinite(y))):
        raise NumericalFailureError("Design matrix or target contains NaN/inf")
    if k == 0 or n < k:
        raise RankDeficiencyError(f"Need at least {k} rows to solve for {k} coefficients, got {n}")

    sqrt_w = np.sqrt(w)
    xw = x * sqrt_w[:, None]
    yw = y * sqrt_w

    try:
        beta, rank = _solve_qr(xw, yw)
    except (np.linalg.LinAlgError, scipy.linalg.LinAlgError, ValueError):
        beta, rank = _solve_svd(xw, yw)
    else:
        if rank == k and not np.all(np.isfinite(beta)):
            beta, rank = _solve_svd(xw, yw)

    if rank < k:
        raise RankDeficiencyError(f"Design matrix has rank {rank} < {k} columns")
    if not np.all(np.isfinite(beta)):
        raise NumericalFailureError("Least-squares solution is not finite")

    residuals = yw - xw @ beta
    sse = float(residuals @ residuals)
    if not np.isfinite(sse):
        raise NumericalFailureError("Weighted SSE is not finite")

    return LeastSquaresSolution(coefficients=beta, sse=sse, rank=rank)
