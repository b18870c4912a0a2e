"""Numerical building blocks: Nelson-Siegel kernels and weighted least squares."""

from curvefit.numerics.basis import f1, f2
from curvefit.numerics.least_squares import (
    LeastSquaresSolution,
    solve_weighted_least_squares,
)

__all__ = [
    "LeastSquaresSolution",
    "f1",
    "f2",
    "solve_weighted_least_squares",
]
