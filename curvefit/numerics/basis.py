"""
Basis functions for the Nelson-Siegel family.

With x = t / tau the two kernels are:

    f1(t, tau) = (1 - exp(-x)) / x
    f2(t, tau) = f1(t, tau) - exp(-x)

Numerical notes:
----------------
- ``1 - exp(-x)`` loses almost all significant digits for small x when
  computed by subtraction. It is evaluated as ``-expm1(-x)`` instead.
- Below ``SMALL_X`` the second-order series is used:
  f1 ~ 1 - x/2 + x^2/6 and f2 ~ x/2 - x^2/3.
- As t -> 0 the analytic limits are f1 -> 1 and f2 -> 0.

Usage:
------
    from curvefit.numerics.basis import f1, f2

    slope = f1([0.5, 1.0, 10.0], tau=2.0)
    hump = f2([0.5, 1.0, 10.0], tau=2.0)
"""

from __future__ import annotations

from typing import Union

import numpy as np
from numpy.typing import ArrayLike, NDArray

from curvefit.errors import DomainInputError

# Below this x the series expansion is used.
SMALL_X = 1e-6

FloatOrArray = Union[float, NDArray[np.float64]]


def _validated_x(t: ArrayLike, tau: float) -> NDArray[np.float64]:
    """Check the domain of (t, tau) and return x = t / tau as an array."""
    t_arr = np.asarray(t, dtype=np.float64)
    if not np.isfinite(tau) or tau <= 0:
        raise DomainInputError(f"Decay constant must be finite and positive, got {tau!r}")
    if not np.all(np.isfinite(t_arr)) or np.any(t_arr <= 0):
        raise DomainInputError("Tenors must be finite and positive")
    return t_arr / tau


def _unwrap(values: NDArray[np.float64], like: ArrayLike) -> FloatOrArray:
    if np.ndim(like) == 0:
        return float(values)
    return values


def _f1_of_x(x: NDArray[np.float64]) -> NDArray[np.float64]:
    small = x < SMALL_X
    # Guard the division on the small branch; np.where evaluates both sides.
    safe_x = np.where(small, 1.0, x)
    exact = -np.expm1(-safe_x) / safe_x
    series = 1.0 - x / 2.0 + x * x / 6.0
    return np.where(small, series, exact)


def _f2_of_x(x: NDArray[np.float64]) -> NDArray[np.float64]:
    small = x < SMALL_X
    exact = _f1_of_x(x) - np.exp(-x)
    series = x / 2.0 - x * x / 3.0
    return np.where(small, series, exact)


def f1(t: ArrayLike, tau: float) -> FloatOrArray:
    """
    Slope loading ``(1 - exp(-t/tau)) / (t/tau)``.

    Args:
        t: Tenor(s) in years, finite and > 0.
        tau: Decay constant, finite and > 0.

    Returns:
        A float for scalar ``t``, otherwise an array shaped like ``t``.

    Raises:
        DomainInputError: If any input is non-finite or non-positive.
    """
    return _unwrap(_f1_of_x(_validated_x(t, tau)), t)


def f2(t: ArrayLike, tau: float) -> FloatOrArray:
    """
    Curvature (hump) loading ``f1(t, tau) - exp(-t/tau)``.

    Args:
        t: Tenor(s) in years, finite and > 0.
        tau: Decay constant, finite and > 0.

    Returns:
        A float for scalar ``t``, otherwise an array shaped like ``t``.

    Raises:
        DomainInputError: If any input is non-finite or non-positive.
    """
    return _unwrap(_f2_of_x(_validated_x(t, tau)), t)
