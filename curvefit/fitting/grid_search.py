"""
Tau grid search.

For every tau tuple the model is linear in its coefficients, so a weighted
least-squares solve gives the best coefficients and the weighted SSE. The
best candidate over the grid is kept.

Candidate evaluation has no shared mutable state and may run on a thread
pool. Results are collected in grid order and reduced with ``better_of``,
an associative and commutative minimum (smaller SSE wins, equal SSE keeps
the earlier grid index). The chosen candidate is therefore the same for any
worker count.

Front-end conditioning:
-----------------------
With y(0) = b0 + b1 fixed to a level L, b1 = L - b0 and

    y - L * f1 = b0 * (1 - f1) + b2 * f2(tau1) + ...

so b1 is eliminated from the regression and reconstructed afterwards.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from functools import reduce
from typing import Optional, Sequence

import numpy as np
from numpy.typing import NDArray

from curvefit.errors import (
    NoValidCandidateError,
    NumericalFailureError,
    RankDeficiencyError,
)
from curvefit.fitting.config import ShortEndMonotone
from curvefit.fitting.model import ModelVariant, design_matrix, predict, value_at_zero
from curvefit.fitting.tau_grid import TauTuple
from curvefit.numerics.least_squares import solve_weighted_least_squares

logger = logging.getLogger(__name__)

# Points sampled over the short-end window by the monotonicity guardrail.
MONOTONE_SAMPLES = 25
# Allowed step against the required direction (numerical noise).
MONOTONE_TOLERANCE = 1e-9


@dataclass(frozen=True)
class FitCandidate:
    """
    Best coefficients for one tau tuple.

    Attributes:
        index: Position of the tau tuple in the grid (tie-break key).
        taus: Decay constants.
        coefficients: Full coefficient vector [b0, b1, humps...].
        sse: Weighted sum of squared residuals.
    """
    index: int
    taus: TauTuple
    coefficients: NDArray[np.float64]
    sse: float


@dataclass(frozen=True)
class GridSearchResult:
    """Best candidate of a grid pass and whether the monotone filter was applied."""
    best: FitCandidate
    monotone: ShortEndMonotone
    evaluated: int
    admitted: int


def better_of(a: FitCandidate, b: FitCandidate) -> FitCandidate:
    """Pick the smaller SSE; on equal SSE keep the earlier grid index."""
    if b.sse < a.sse or (b.sse == a.sse and b.index < a.index):
        return b
    return a


def violates_short_end_monotone(
    variant: ModelVariant,
    coefficients: Sequence[float],
    taus: TauTuple,
    direction: ShortEndMonotone,
    window: float,
) -> bool:
    """
    Check the fitted curve against a short-end monotonicity requirement.

    The curve is sampled at ``MONOTONE_SAMPLES`` equally spaced tenors over
    [0, window]; the value at 0 is the analytic limit b0 + b1. For AUTO the
    required direction is taken from the first two samples (or the first
    step larger than the tolerance when they coincide).
    """
    if direction == ShortEndMonotone.NONE or window <= 0:
        return False

    tenors = np.linspace(0.0, window, MONOTONE_SAMPLES)[1:]
    samples = np.concatenate(
        ([value_at_zero(coefficients)], predict(variant, tenors, coefficients, taus))
    )
    if not np.all(np.isfinite(samples)):
        return True

    steps = np.diff(samples)
    if direction == ShortEndMonotone.AUTO:
        significant = np.flatnonzero(np.abs(steps) > MONOTONE_TOLERANCE)
        if significant.size == 0:
            return False
        rising = steps[significant[0]] > 0
        direction = ShortEndMonotone.INCREASING if rising else ShortEndMonotone.DECREASING

    if direction == ShortEndMonotone.INCREASING:
        return bool(np.any(steps < -MONOTONE_TOLERANCE))
    return bool(np.any(steps > MONOTONE_TOLERANCE))


def solve_for_taus(
    variant: ModelVariant,
    taus: TauTuple,
    tenors: NDArray[np.float64],
    values: NDArray[np.float64],
    weights: NDArray[np.float64],
    front_end_value: Optional[float] = None,
) -> tuple[NDArray[np.float64], float]:
    """
    Solve the coefficients for a fixed tau tuple.

    Returns:
        (coefficients, weighted SSE).

    Raises:
        RankDeficiencyError: If the (reduced) design matrix is rank deficient.
        NumericalFailureError: If a prediction or the SSE is not finite.
    """
    x = design_matrix(variant, tenors, taus)

    if front_end_value is None:
        solution = solve_weighted_least_squares(x, values, weights)
        coefficients = solution.coefficients
    else:
        slope = x[:, 1]
        reduced = np.column_stack([1.0 - slope, x[:, 2:]])
        target = values - front_end_value * slope
        solution = solve_weighted_least_squares(reduced, target, weights)
        level = solution.coefficients[0]
        coefficients = np.concatenate(
            ([level, front_end_value - level], solution.coefficients[1:])
        )

    residuals = values - x @ coefficients
    sse = float(np.sum(weights * residuals * residuals))
    if not np.isfinite(sse) or not np.all(np.isfinite(coefficients)):
        raise NumericalFailureError(f"Non-finite fit for taus {taus}")
    return coefficients, sse


def _evaluate(
    variant: ModelVariant,
    index: int,
    taus: TauTuple,
    tenors: NDArray[np.float64],
    values: NDArray[np.float64],
    weights: NDArray[np.float64],
    front_end_value: Optional[float],
    monotone: ShortEndMonotone,
    window: float,
) -> Optional[FitCandidate]:
    try:
        coefficients, sse = solve_for_taus(
            variant, taus, tenors, values, weights, front_end_value
        )
    except (RankDeficiencyError, NumericalFailureError) as exc:
        logger.debug("Skipping %s taus=%s: %s", variant.label, taus, exc)
        return None

    if violates_short_end_monotone(variant, coefficients, taus, monotone, window):
        return None
    return FitCandidate(index=index, taus=tuple(taus), coefficients=coefficients, sse=sse)


def _grid_pass(
    variant: ModelVariant,
    grid: Sequence[TauTuple],
    tenors: NDArray[np.float64],
    values: NDArray[np.float64],
    weights: NDArray[np.float64],
    front_end_value: Optional[float],
    monotone: ShortEndMonotone,
    window: float,
    max_workers: Optional[int],
) -> list[FitCandidate]:
    def evaluate(item: tuple[int, TauTuple]) -> Optional[FitCandidate]:
        index, taus = item
        return _evaluate(
            variant, index, taus, tenors, values, weights,
            front_end_value, monotone, window,
        )

    items = list(enumerate(grid))
    if max_workers is None or max_workers <= 1:
        results = [evaluate(item) for item in items]
    else:
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            results = list(executor.map(evaluate, items))
    return [c for c in results if c is not None]


def search_tau_grid(
    variant: ModelVariant,
    grid: Sequence[TauTuple],
    tenors: NDArray[np.float64],
    values: NDArray[np.float64],
    weights: NDArray[np.float64],
    front_end_value: Optional[float] = None,
    monotone: ShortEndMonotone = ShortEndMonotone.NONE,
    window: float = 1.0,
    max_workers: Optional[int] = None,
) -> GridSearchResult:
    """
    Find the best tau tuple for a variant.

    If the monotonicity guardrail rejects every candidate, the grid is
    searched once more without it and the result reports
    ``ShortEndMonotone.NONE`` as the applied mode.

    Args:
        variant: Model variant.
        grid: Ordered tau tuples (see ``tau_grid``).
        tenors, values, weights: Observation arrays of equal length.
        front_end_value: Fixed y(0) level, or None for a free front end.
        monotone: Short-end monotonicity requirement.
        window: Short-end window in years.
        max_workers: Threads used to evaluate candidates (None = serial).

    Returns:
        GridSearchResult with the best candidate.

    Raises:
        NoValidCandidateError: If the grid is empty or no candidate survives.
    """
    if len(grid) == 0:
        raise NoValidCandidateError(f"Tau grid for {variant.label} is empty")

    candidates = _grid_pass(
        variant, grid, tenors, values, weights,
        front_end_value, monotone, window, max_workers,
    )
    if not candidates and monotone != ShortEndMonotone.NONE:
        logger.debug(
            "Monotone guardrail (%s) rejected every %s candidate; refitting without it",
            monotone.value, variant.label,
        )
        monotone = ShortEndMonotone.NONE
        candidates = _grid_pass(
            variant, grid, tenors, values, weights,
            front_end_value, monotone, window, max_workers,
        )

    if not candidates:
        raise NoValidCandidateError(f"No valid fit candidates for model {variant.label}")

    best = reduce(better_of, candidates)
    return GridSearchResult(
        best=best,
        monotone=monotone,
        evaluated=len(grid),
        admitted=len(candidates),
    )
