"""
Nelson-Siegel family model variants.

Every variant is linear in its coefficients once the decay constants are
fixed:

    y(t) = b0 + b1 * f1(t, tau1) + b2 * f2(t, tau1)
              [+ b3 * f2(t, tau2) [+ b4 * f2(t, tau3)]]

- NS:   one decay constant, three coefficients (k = 4).
- NSS:  Svensson extension, a second hump (k = 6).
- NSSC: a third hump term (k = 8).

The parameter count k includes the decay constants and is the count used by
the information criterion. All hump terms vanish at t -> 0, so the limiting
short-end value is always b0 + b1.
"""

from __future__ import annotations

from enum import Enum
from typing import Sequence

import numpy as np
from numpy.typing import ArrayLike, NDArray

from curvefit.numerics.basis import f1, f2


class ModelVariant(Enum):
    """Closed set of supported curve shapes, simplest first."""
    NS = "ns"
    NSS = "nss"
    NSSC = "nssc"

    @property
    def tau_count(self) -> int:
        """Number of decay constants."""
        return _TAU_COUNTS[self]

    @property
    def hump_count(self) -> int:
        """Number of hump (curvature) coefficients."""
        return self.tau_count

    @property
    def coefficient_count(self) -> int:
        """Number of linear coefficients: level, slope and the humps."""
        return 2 + self.hump_count

    @property
    def param_count(self) -> int:
        """Total parameter count k (coefficients plus decay constants)."""
        return self.coefficient_count + self.tau_count

    @property
    def label(self) -> str:
        """Human-readable name used in results."""
        return _LABELS[self]

    def effective_param_count(self, front_end_fixed: bool = False) -> int:
        """
        Parameter count for the information criterion.

        Fixing y(0) = b0 + b1 removes one free coefficient.
        """
        return self.param_count - (1 if front_end_fixed else 0)


_TAU_COUNTS = {ModelVariant.NS: 1, ModelVariant.NSS: 2, ModelVariant.NSSC: 3}
_LABELS = {ModelVariant.NS: "NS", ModelVariant.NSS: "NSS", ModelVariant.NSSC: "NSS+ (3-hump)"}

# Simplest to most complex; selection walks variants in this order.
VARIANT_ORDER = (ModelVariant.NS, ModelVariant.NSS, ModelVariant.NSSC)


def _check_taus(variant: ModelVariant, taus: Sequence[float]) -> None:
    if len(taus) != variant.tau_count:
        raise ValueError(
            f"{variant.label} needs {variant.tau_count} decay constant(s), got {len(taus)}"
        )


def design_matrix(
    variant: ModelVariant,
    tenors: ArrayLike,
    taus: Sequence[float],
) -> NDArray[np.float64]:
    """
    Build the design matrix for one tau tuple.

    Columns are [1, f1(tau1), f2(tau1), f2(tau2)?, f2(tau3)?].

    Args:
        variant: Model variant.
        tenors: Observation tenors in years (all > 0).
        taus: Decay constants, one per variant tau.

    Returns:
        Array of shape (n, variant.coefficient_count).
    """
    _check_taus(variant, taus)
    t = np.atleast_1d(np.asarray(tenors, dtype=np.float64))

    columns = [np.ones_like(t), f1(t, taus[0]), f2(t, taus[0])]
    for tau in taus[1:]:
        columns.append(f2(t, tau))
    return np.column_stack(columns)


def predict(
    variant: ModelVariant,
    tenors: ArrayLike,
    coefficients: Sequence[float],
    taus: Sequence[float],
) -> NDArray[np.float64]:
    """Evaluate the fitted curve at the given tenors."""
    beta = np.asarray(coefficients, dtype=np.float64)
    if beta.shape != (variant.coefficient_count,):
        raise ValueError(
            f"{variant.label} needs {variant.coefficient_count} coefficients, got {beta.size}"
        )
    return design_matrix(variant, tenors, taus) @ beta


def value_at_zero(coefficients: Sequence[float]) -> float:
    """Limiting curve value as tenor -> 0, i.e. b0 + b1."""
    return float(coefficients[0] + coefficients[1])
