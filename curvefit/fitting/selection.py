"""
Model selection (NS vs NSS vs NSSC) by BIC with guardrails.

Each requested variant is fitted (grid search plus optional robust
reweighting) and scored with

    BIC = n * ln(SSE / n) + k * ln(n)

where k is the effective parameter count (one less when y(0) is fixed).

Selection rules:
    1. Exclude underdetermined variants: require n >= k + 5.
    2. Take the variant with minimum BIC as the provisional winner.
    3. Walking from the simplest variant, take the first one whose BIC is
       within 2.0 of the provisional winner.

Usage:
------
    from curvefit.fitting import FitConfig, Observation, fit_curve

    observations = [Observation(tenor=t, value=v) for t, v in points]
    result = fit_curve(observations, FitConfig())
    print(result.label, result.coefficients, result.taus)
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np
from numpy.typing import ArrayLike, NDArray

from curvefit.errors import (
    NoEligibleModelError,
    NoValidCandidateError,
    NumericalFailureError,
)
from curvefit.fitting import model
from curvefit.fitting.config import FitConfig, FrontEndMode, ShortEndMonotone
from curvefit.fitting.model import VARIANT_ORDER, ModelVariant
from curvefit.fitting.observations import Observation, as_arrays, resolve_weights
from curvefit.fitting.robust import RobustFit, fit_robust
from curvefit.fitting.tau_grid import tau_grid

logger = logging.getLogger(__name__)

# Minimum number of observations beyond the parameter count.
MIN_N_BUFFER = 5
# BIC margin within which the simpler variant is preferred.
SIMPLICITY_MARGIN = 2.0
# Shortest tenors used by the AUTO front-end estimate when the window is sparse.
FRONT_END_FALLBACK_POINTS = 5
MIN_SSE_PER_POINT = 1e-12


@dataclass(frozen=True)
class FitResult:
    """
    Fitted curve for one model variant.

    Attributes:
        variant: Model variant.
        label: Display label of the variant.
        coefficients: [b0, b1, humps...].
        taus: Decay constants.
        sse: Weighted sum of squared residuals.
        rmse: sqrt(sse / n).
        n: Number of observations used (positive weight).
        bic: Bayesian information criterion.
        param_count: Effective parameter count used in the BIC.
        front_end_mode: Front-end conditioning actually applied.
        front_end_value: Fixed y(0) level, if any.
        monotone: Short-end guardrail actually applied.
        robust_iterations: Reweighting passes run after the initial fit.
    """
    variant: ModelVariant
    label: str
    coefficients: tuple[float, ...]
    taus: tuple[float, ...]
    sse: float
    rmse: float
    n: int
    bic: float
    param_count: int
    front_end_mode: FrontEndMode
    front_end_value: Optional[float]
    monotone: ShortEndMonotone
    robust_iterations: int

    def predict(self, tenors: ArrayLike) -> NDArray[np.float64]:
        """Evaluate the fitted curve at tenors > 0."""
        return model.predict(self.variant, tenors, self.coefficients, self.taus)

    def value_at_zero(self) -> float:
        """Limiting value of the curve as tenor -> 0."""
        return model.value_at_zero(self.coefficients)

    def residuals(self, observations: Sequence[Observation]) -> NDArray[np.float64]:
        """Observed minus fitted value for each observation."""
        tenors, values = as_arrays(observations)
        return values - self.predict(tenors)


@dataclass(frozen=True)
class ModelSelection:
    """
    Outcome of fitting and selecting among model variants.

    Attributes:
        best: The selected fit.
        fits: Every variant that was fitted, simplest first.
        skipped: (variant, reason) for variants excluded from selection.
    """
    best: FitResult
    fits: tuple[FitResult, ...]
    skipped: tuple[tuple[ModelVariant, str], ...]


def bic(n: int, sse: float, k: int) -> float:
    """BIC = n * ln(SSE / n) + k * ln(n), with SSE / n floored."""
    sse_per_point = max(sse / n, MIN_SSE_PER_POINT)
    return n * math.log(sse_per_point) + k * math.log(n)


def estimate_front_end(
    tenors: NDArray[np.float64],
    values: NDArray[np.float64],
    window: float,
) -> Optional[float]:
    """
    Robust short-end level: median of values with tenor <= window.

    Falls back to the shortest few tenors when fewer than three
    observations fall inside the window.
    """
    if tenors.size == 0:
        return None

    order = np.argsort(tenors, kind="stable")
    sorted_tenors = tenors[order]
    sorted_values = values[order]

    front = sorted_values[sorted_tenors <= window]
    if front.size < 3:
        front = sorted_values[:FRONT_END_FALLBACK_POINTS]
    return float(np.median(front))


def resolve_front_end(
    tenors: NDArray[np.float64],
    values: NDArray[np.float64],
    config: FitConfig,
) -> tuple[FrontEndMode, Optional[float]]:
    """Return the applied front-end mode and the fixed y(0) level, if any."""
    mode = config.front_end_mode
    if mode == FrontEndMode.ZERO:
        return mode, 0.0
    if mode == FrontEndMode.FIXED:
        return mode, float(config.front_end_value)
    if mode == FrontEndMode.AUTO:
        level = estimate_front_end(tenors, values, config.front_end_window)
        if level is None:
            return FrontEndMode.OFF, None
        return mode, level
    return FrontEndMode.OFF, None


def select_by_bic(fits: Sequence[FitResult]) -> FitResult:
    """Minimum BIC, then prefer the simplest variant within the margin."""
    best = fits[0]
    for fit in fits[1:]:
        if fit.bic < best.bic:
            best = fit

    by_variant = {fit.variant: fit for fit in fits}
    for variant in VARIANT_ORDER:
        fit = by_variant.get(variant)
        if fit is not None and fit.bic <= best.bic + SIMPLICITY_MARGIN:
            return fit
    return best


def _to_fit_result(
    variant: ModelVariant,
    robust: RobustFit,
    n: int,
    k: int,
    front_end_mode: FrontEndMode,
    front_end_value: Optional[float],
) -> FitResult:
    candidate = robust.candidate
    return FitResult(
        variant=variant,
        label=variant.label,
        coefficients=tuple(float(c) for c in candidate.coefficients),
        taus=tuple(float(t) for t in candidate.taus),
        sse=candidate.sse,
        rmse=math.sqrt(candidate.sse / n),
        n=n,
        bic=bic(n, candidate.sse, k),
        param_count=k,
        front_end_mode=front_end_mode,
        front_end_value=front_end_value,
        monotone=robust.monotone,
        robust_iterations=robust.iterations,
    )


def _check_finite(result: FitResult) -> None:
    numbers = (*result.coefficients, *result.taus, result.sse, result.rmse, result.bic)
    if not all(math.isfinite(x) for x in numbers):
        raise NumericalFailureError(f"Selected {result.label} fit contains NaN/inf values")


def select_model(
    observations: Sequence[Observation],
    config: Optional[FitConfig] = None,
) -> ModelSelection:
    """
    Fit every requested variant and select the best one.

    Args:
        observations: Validated observations.
        config: Fitting options (defaults to ``FitConfig()``).

    Returns:
        ModelSelection with the chosen fit, all fits and skipped variants.

    Raises:
        InvalidObservationError: If the observation set is empty or has no
            positive weight.
        NoEligibleModelError: If no variant could be fitted.
        NumericalFailureError: If the selected fit is not finite.
    """
    config = config or FitConfig()

    weights = resolve_weights(observations, config.weight_mode)
    tenors, values = as_arrays(observations)
    used = weights > 0
    tenors, values, weights = tenors[used], values[used], weights[used]
    n = int(tenors.size)

    front_end_mode, front_end_value = resolve_front_end(tenors, values, config)
    fits: list[FitResult] = []
    skipped: list[tuple[ModelVariant, str]] = []

    for variant in config.variants:
        k = variant.effective_param_count(front_end_value is not None)
        if n < k + MIN_N_BUFFER:
            reason = f"Underdetermined: n={n} < k+{MIN_N_BUFFER}={k + MIN_N_BUFFER}"
            logger.debug("Skipping %s: %s", variant.label, reason)
            skipped.append((variant, reason))
            continue

        try:
            grid = tau_grid(
                variant,
                config.tau_min,
                config.tau_max,
                config.tau_steps(variant),
                config.tau_min_ratio,
            )
            robust = fit_robust(
                variant,
                grid,
                tenors,
                values,
                weights,
                front_end_value=front_end_value,
                monotone=config.short_end_monotone,
                window=config.short_end_window,
                robust=config.robust,
                robust_k=config.robust_k,
                max_iterations=config.robust_iterations,
                max_workers=config.max_workers,
            )
        except NoValidCandidateError as exc:
            logger.debug("Skipping %s: %s", variant.label, exc)
            skipped.append((variant, str(exc)))
            continue

        fits.append(_to_fit_result(variant, robust, n, k, front_end_mode, front_end_value))

    if not fits:
        reasons = "; ".join(f"{v.label}: {r}" for v, r in skipped)
        raise NoEligibleModelError(f"No model variant could be fitted ({reasons})")

    best = select_by_bic(fits) if config.selects_by_bic else fits[0]
    _check_finite(best)
    logger.debug(
        "Selected %s (BIC %.4f, SSE %.6g) among %s",
        best.label, best.bic, best.sse, [f.label for f in fits],
    )
    return ModelSelection(best=best, fits=tuple(fits), skipped=tuple(skipped))


def fit_curve(
    observations: Sequence[Observation],
    config: Optional[FitConfig] = None,
) -> FitResult:
    """Fit and select; return only the chosen ``FitResult``."""
    return select_model(observations, config).best
