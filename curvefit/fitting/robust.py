"""
Huber-style iteratively reweighted least squares around the grid search.

Pass 0 fits with the caller's weights. Each further pass computes residuals
of the previous best curve, derives Huber factors from them and refits with
``base_weights * factor``. The number of passes is bounded by configuration
and never adapts beyond an early stop once the weights stop changing.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np
from numpy.typing import NDArray

from curvefit.fitting.config import RobustKind, ShortEndMonotone
from curvefit.fitting.grid_search import FitCandidate, search_tau_grid
from curvefit.fitting.model import ModelVariant, predict
from curvefit.fitting.tau_grid import TauTuple

logger = logging.getLogger(__name__)

# Converts the median absolute residual into a normal-consistent scale.
MAD_TO_SIGMA = 0.6745
MIN_SCALE = 1e-12
MIN_HUBER_K = 1e-6
# Floor on the Huber factor; no observation is dropped entirely.
MIN_FACTOR = 1e-3
CONVERGENCE_TOLERANCE = 1e-12


@dataclass(frozen=True)
class RobustFit:
    """
    Outcome of a (possibly) robust fit of one variant.

    Attributes:
        candidate: Best candidate from the final pass.
        weights: Weights used in the final pass.
        iterations: Number of reweighting passes run after pass 0.
        monotone: Monotonicity mode actually applied in the final pass.
    """
    candidate: FitCandidate
    weights: NDArray[np.float64]
    iterations: int
    monotone: ShortEndMonotone


def robust_scale(residuals: NDArray[np.float64]) -> float:
    """Median absolute residual scaled to a normal-consistent sigma."""
    finite = np.abs(residuals[np.isfinite(residuals)])
    if finite.size == 0:
        return MIN_SCALE
    return max(float(np.median(finite)) / MAD_TO_SIGMA, MIN_SCALE)


def huber_weights(
    base_weights: NDArray[np.float64],
    residuals: NDArray[np.float64],
    k: float,
) -> NDArray[np.float64]:
    """
    Downweight observations with large residuals.

    factor_i = 1 if |r_i| <= k * scale else (k * scale) / |r_i|, floored at
    ``MIN_FACTOR``. Returns ``base_weights * factor``.
    """
    cutoff = max(k, MIN_HUBER_K) * robust_scale(residuals)
    abs_r = np.abs(residuals)
    with np.errstate(divide="ignore", invalid="ignore"):
        factor = np.where(
            (abs_r <= cutoff) | ~np.isfinite(abs_r),
            1.0,
            cutoff / abs_r,
        )
    return base_weights * np.maximum(factor, MIN_FACTOR)


def _converged(old: NDArray[np.float64], new: NDArray[np.float64]) -> bool:
    scale = np.maximum(np.abs(old), 1.0)
    return bool(np.all(np.abs(new - old) <= CONVERGENCE_TOLERANCE * scale))


def fit_robust(
    variant: ModelVariant,
    grid: Sequence[TauTuple],
    tenors: NDArray[np.float64],
    values: NDArray[np.float64],
    base_weights: NDArray[np.float64],
    front_end_value: Optional[float] = None,
    monotone: ShortEndMonotone = ShortEndMonotone.NONE,
    window: float = 1.0,
    robust: RobustKind = RobustKind.NONE,
    robust_k: float = 1.5,
    max_iterations: int = 2,
    max_workers: Optional[int] = None,
) -> RobustFit:
    """
    Fit one variant, optionally with Huber reweighting.

    With ``RobustKind.NONE`` (or zero iterations) this is a single grid
    search. Once the monotone guardrail has fallen back it stays disabled
    for later passes.

    Raises:
        NoValidCandidateError: Propagated from the grid search.
    """
    weights = np.asarray(base_weights, dtype=np.float64)
    passes = max_iterations if robust == RobustKind.HUBER else 0

    result = search_tau_grid(
        variant, grid, tenors, values, weights,
        front_end_value, monotone, window, max_workers,
    )
    iterations = 0

    for _ in range(passes):
        best = result.best
        residuals = values - predict(variant, tenors, best.coefficients, best.taus)
        new_weights = huber_weights(base_weights, residuals, robust_k)
        if _converged(weights, new_weights):
            logger.debug("%s robust weights converged after %d pass(es)", variant.label, iterations)
            break

        weights = new_weights
        result = search_tau_grid(
            variant, grid, tenors, values, weights,
            front_end_value, result.monotone, window, max_workers,
        )
        iterations += 1

    return RobustFit(
        candidate=result.best,
        weights=weights,
        iterations=iterations,
        monotone=result.monotone,
    )
