"""
Observations and fit-weight resolution.

An ``Observation`` is one normalised point on the curve: a tenor in years,
an observed value (a yield or a spread) and a weight. An optional
sensitivity (e.g. DV01 magnitude) can be used as an alternative weight
source, see ``WeightMode``.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np
from numpy.typing import NDArray

from curvefit.errors import InvalidObservationError
from curvefit.fitting.config import WeightMode


@dataclass(frozen=True)
class Observation:
    """
    A single observation used for fitting.

    Attributes:
        tenor: Time to the relevant event date in years (> 0).
        value: Observed value, e.g. a yield or spread (finite).
        weight: Observation weight (finite, >= 0). Higher means more influence.
        sensitivity: Optional secondary weight source such as |DV01|.
    """
    tenor: float
    value: float
    weight: float = 1.0
    sensitivity: Optional[float] = None

    def __post_init__(self) -> None:
        if not math.isfinite(self.tenor) or self.tenor <= 0:
            raise InvalidObservationError(f"tenor must be finite and positive, got {self.tenor!r}")
        if not math.isfinite(self.value):
            raise InvalidObservationError(f"value must be finite, got {self.value!r}")
        if not math.isfinite(self.weight) or self.weight < 0:
            raise InvalidObservationError(
                f"weight must be finite and non-negative, got {self.weight!r}"
            )
        if self.sensitivity is not None and not math.isfinite(self.sensitivity):
            raise InvalidObservationError("sensitivity must be finite when given")


def _resolve_one(obs: Observation, mode: WeightMode, use_sensitivity: bool) -> float:
    if mode == WeightMode.UNIFORM:
        return 1.0
    if mode == WeightMode.WEIGHT:
        return obs.weight
    if mode in (WeightMode.SENSITIVITY, WeightMode.SENSITIVITY_WEIGHT) or use_sensitivity:
        if obs.sensitivity is None:
            raise InvalidObservationError(
                f"weight mode {mode.value} requires a sensitivity on every observation"
            )
        squared = obs.sensitivity * obs.sensitivity
        return squared if mode == WeightMode.SENSITIVITY else squared * obs.weight
    return obs.weight


def resolve_weights(
    observations: Sequence[Observation],
    mode: WeightMode = WeightMode.WEIGHT,
) -> NDArray[np.float64]:
    """
    Compute the fit weight of every observation.

    AUTO uses sensitivity^2 * weight when every observation carries a
    sensitivity and falls back to the supplied weight otherwise.

    Raises:
        InvalidObservationError: If the set is empty, a required sensitivity
            is missing, or all resulting weights are zero.
    """
    if len(observations) == 0:
        raise InvalidObservationError("No observations to fit")

    use_sensitivity = mode == WeightMode.AUTO and all(
        obs.sensitivity is not None for obs in observations
    )
    weights = np.array(
        [_resolve_one(obs, mode, use_sensitivity) for obs in observations],
        dtype=np.float64,
    )
    if not np.all(np.isfinite(weights)):
        raise InvalidObservationError("Resolved weights must be finite")
    if not np.any(weights > 0):
        raise InvalidObservationError("At least one observation must have a positive weight")
    return weights


def as_arrays(
    observations: Sequence[Observation],
) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
    """Return (tenors, values) as float arrays in observation order."""
    tenors = np.array([obs.tenor for obs in observations], dtype=np.float64)
    values = np.array([obs.value for obs in observations], dtype=np.float64)
    return tenors, values
