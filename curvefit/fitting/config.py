"""
Fitting options.

A single immutable ``FitConfig`` value carries every knob of the pipeline
and is threaded explicitly through each stage. Use ``dataclasses.replace``
to derive a modified copy.

Usage:
------
    from curvefit.fitting.config import FitConfig, FrontEndMode, ModelSpec

    config = FitConfig(
        model_spec=ModelSpec.AUTO,
        front_end_mode=FrontEndMode.ZERO,
        max_workers=4,
    )
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from curvefit.errors import InvalidConfigError
from curvefit.fitting.model import VARIANT_ORDER, ModelVariant


class ModelSpec(Enum):
    """Which model variant(s) to fit."""
    AUTO = "auto"
    NS = "ns"
    NSS = "nss"
    NSSC = "nssc"
    ALL = "all"


class FrontEndMode(Enum):
    """
    How to condition the curve as tenor -> 0.

    In the Nelson-Siegel family y(0) = b0 + b1. Without very short tenors
    this limit is weakly identified and the fitted curve can hook near zero.
    Fixing it is done as a parameter constraint, not a synthetic observation.
    """
    OFF = "off"
    AUTO = "auto"    # robust estimate of the short-end level from the data
    ZERO = "zero"
    FIXED = "fixed"  # use FitConfig.front_end_value


class ShortEndMonotone(Enum):
    """Short-end shape guardrail applied as a candidate filter."""
    NONE = "none"
    INCREASING = "increasing"
    DECREASING = "decreasing"
    AUTO = "auto"


class RobustKind(Enum):
    """Outlier-robust fitting mode."""
    NONE = "none"
    HUBER = "huber"


class WeightMode(Enum):
    """Source of the per-observation fit weight."""
    UNIFORM = "uniform"
    WEIGHT = "weight"
    SENSITIVITY = "sensitivity"                # sensitivity^2
    SENSITIVITY_WEIGHT = "sensitivity_weight"  # sensitivity^2 * weight
    AUTO = "auto"


_SPEC_VARIANTS = {
    ModelSpec.NS: (ModelVariant.NS,),
    ModelSpec.NSS: (ModelVariant.NSS,),
    ModelSpec.NSSC: (ModelVariant.NSSC,),
    ModelSpec.ALL: VARIANT_ORDER,
    ModelSpec.AUTO: VARIANT_ORDER,
}


def _require_positive(name: str, value: float) -> None:
    if not math.isfinite(value) or value <= 0:
        raise InvalidConfigError(f"{name} must be finite and positive, got {value!r}")


@dataclass(frozen=True)
class FitConfig:
    """
    Options for one fit call.

    Attributes:
        model_spec: Which variant(s) to fit. AUTO and ALL fit all three and
                    select by BIC.
        enabled_variants: Explicit set of variants to fit. Overrides
                    model_spec when given; selects by BIC when it holds
                    more than one variant.
        tau_min, tau_max: Decay-constant search range in years.
        tau_steps_ns, tau_steps_nss, tau_steps_nssc: Log-spaced points per
                    grid axis for each variant.
        tau_min_ratio: Minimum ratio between successive decay constants in
                    multi-tau variants (1.0 means strictly increasing only).
        front_end_mode: Front-end conditioning mode.
        front_end_value: y(0) level used when front_end_mode is FIXED.
        front_end_window: Tenor window (years) for the AUTO level estimate.
        short_end_monotone: Short-end monotonicity guardrail.
        short_end_window: Tenor window (years) the guardrail is checked on.
        robust: Robust reweighting mode.
        robust_k: Huber tuning constant (larger means less downweighting).
        robust_iterations: Maximum number of reweighting passes.
        weight_mode: Source of observation weights.
        max_workers: Thread count for the grid search (None or 1 = serial).
    """
    model_spec: ModelSpec = ModelSpec.AUTO
    enabled_variants: Optional[tuple[ModelVariant, ...]] = None
    tau_min: float = 0.05
    tau_max: float = 30.0
    tau_steps_ns: int = 60
    tau_steps_nss: int = 25
    tau_steps_nssc: int = 15
    tau_min_ratio: float = 1.0
    front_end_mode: FrontEndMode = FrontEndMode.OFF
    front_end_value: Optional[float] = None
    front_end_window: float = 1.0
    short_end_monotone: ShortEndMonotone = ShortEndMonotone.NONE
    short_end_window: float = 1.0
    robust: RobustKind = RobustKind.NONE
    robust_k: float = 1.5
    robust_iterations: int = 2
    weight_mode: WeightMode = WeightMode.WEIGHT
    max_workers: Optional[int] = None

    def __post_init__(self) -> None:
        if self.enabled_variants is not None:
            chosen = tuple(self.enabled_variants)
            if not chosen:
                raise InvalidConfigError("enabled_variants must not be empty")
            if not all(isinstance(v, ModelVariant) for v in chosen):
                raise InvalidConfigError("enabled_variants must hold ModelVariant members")
            if len(set(chosen)) != len(chosen):
                raise InvalidConfigError(f"enabled_variants has duplicates: {chosen}")
            object.__setattr__(self, "enabled_variants", chosen)

        _require_positive("tau_min", self.tau_min)
        _require_positive("tau_max", self.tau_max)
        if self.tau_max <= self.tau_min:
            raise InvalidConfigError(
                f"tau_max ({self.tau_max}) must exceed tau_min ({self.tau_min})"
            )
        for name in ("tau_steps_ns", "tau_steps_nss", "tau_steps_nssc"):
            if getattr(self, name) < 2:
                raise InvalidConfigError(f"{name} must be >= 2")
        if not math.isfinite(self.tau_min_ratio) or self.tau_min_ratio < 1.0:
            raise InvalidConfigError("tau_min_ratio must be finite and >= 1")

        if self.front_end_mode == FrontEndMode.FIXED:
            if self.front_end_value is None:
                raise InvalidConfigError("front_end_mode FIXED requires front_end_value")
            if not math.isfinite(self.front_end_value):
                raise InvalidConfigError("front_end_value must be finite")
        _require_positive("front_end_window", self.front_end_window)
        _require_positive("short_end_window", self.short_end_window)

        _require_positive("robust_k", self.robust_k)
        if self.robust_iterations < 0:
            raise InvalidConfigError("robust_iterations must be >= 0")
        if self.max_workers is not None and self.max_workers < 1:
            raise InvalidConfigError("max_workers must be >= 1")

    @property
    def variants(self) -> tuple[ModelVariant, ...]:
        """Variants to fit, simplest first."""
        if self.enabled_variants is not None:
            return tuple(v for v in VARIANT_ORDER if v in self.enabled_variants)
        return _SPEC_VARIANTS[self.model_spec]

    @property
    def selects_by_bic(self) -> bool:
        if self.enabled_variants is not None:
            return len(self.enabled_variants) > 1
        return self.model_spec in (ModelSpec.AUTO, ModelSpec.ALL)

    def tau_steps(self, variant: ModelVariant) -> int:
        """Grid points per axis for the given variant."""
        return {
            ModelVariant.NS: self.tau_steps_ns,
            ModelVariant.NSS: self.tau_steps_nss,
            ModelVariant.NSSC: self.tau_steps_nssc,
        }[variant]
