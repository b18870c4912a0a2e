"""
Decay-constant grid generation.

Decay constants are never optimised by a gradient method. Each variant
instead searches an exhaustive log-spaced grid: 1-D for NS, and the
strictly increasing 2-D / 3-D tuples for NSS / NSSC. Tuples are produced in
lexicographic order over axis indices, so identical options always give an
identical sequence. Ties in the grid search are broken by that order.
"""

from __future__ import annotations

import itertools
import math

import numpy as np

from curvefit.errors import InvalidConfigError, NoValidCandidateError
from curvefit.fitting.model import ModelVariant

TauTuple = tuple[float, ...]


def log_space(tau_min: float, tau_max: float, steps: int) -> list[float]:
    """
    Generate ``steps`` log-spaced points from tau_min to tau_max inclusive.

    Raises:
        InvalidConfigError: If the range is not finite and positive with
            tau_max > tau_min, or steps < 2.
    """
    if not (
        math.isfinite(tau_min) and math.isfinite(tau_max) and 0 < tau_min < tau_max
    ):
        raise InvalidConfigError(
            f"Invalid tau range: min={tau_min}, max={tau_max} "
            "(must be finite, > 0 and max > min)"
        )
    if steps < 2:
        raise InvalidConfigError("Tau steps must be >= 2")

    values = np.exp(np.linspace(math.log(tau_min), math.log(tau_max), steps))
    # Pin the endpoints so they survive the log/exp round trip exactly.
    values[0] = tau_min
    values[-1] = tau_max
    return [float(v) for v in values]


def _is_admissible(taus: TauTuple, min_ratio: float) -> bool:
    return all(b > a and b >= a * min_ratio for a, b in zip(taus, taus[1:]))


def tau_grid(
    variant: ModelVariant,
    tau_min: float,
    tau_max: float,
    steps: int,
    min_ratio: float = 1.0,
) -> list[TauTuple]:
    """
    Build the ordered candidate tuples for a model variant.

    Args:
        variant: Model variant; fixes the tuple length.
        tau_min, tau_max: Search range in years.
        steps: Points per axis.
        min_ratio: Minimum ratio between successive constants (>= 1).

    Returns:
        List of strictly increasing tau tuples in lexicographic index order.

    Raises:
        InvalidConfigError: If range or steps are invalid.
        NoValidCandidateError: If every tuple is rejected by the ordering filter.
    """
    axis = log_space(tau_min, tau_max, steps)
    min_ratio = max(min_ratio, 1.0)

    grid = [
        taus
        for taus in itertools.product(axis, repeat=variant.tau_count)
        if _is_admissible(taus, min_ratio)
    ]
    if not grid:
        raise NoValidCandidateError(
            f"Tau grid for {variant.label} is empty "
            f"(range {tau_min}..{tau_max}, {steps} steps, min ratio {min_ratio})"
        )
    return grid
