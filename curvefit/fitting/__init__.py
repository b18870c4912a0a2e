"""Nelson-Siegel family curve fitting: grid search, robust reweighting and BIC selection."""

from curvefit.fitting.config import (
    FitConfig,
    FrontEndMode,
    ModelSpec,
    RobustKind,
    ShortEndMonotone,
    WeightMode,
)
from curvefit.fitting.grid_search import FitCandidate, GridSearchResult, search_tau_grid
from curvefit.fitting.model import ModelVariant, design_matrix, predict, value_at_zero
from curvefit.fitting.observations import Observation, resolve_weights
from curvefit.fitting.robust import RobustFit, fit_robust, huber_weights
from curvefit.fitting.selection import (
    FitResult,
    ModelSelection,
    bic,
    fit_curve,
    select_model,
)
from curvefit.fitting.tau_grid import log_space, tau_grid

__all__ = [
    "FitCandidate",
    "FitConfig",
    "FitResult",
    "FrontEndMode",
    "GridSearchResult",
    "ModelSelection",
    "ModelSpec",
    "ModelVariant",
    "Observation",
    "RobustFit",
    "RobustKind",
    "ShortEndMonotone",
    "WeightMode",
    "bic",
    "design_matrix",
    "fit_curve",
    "fit_robust",
    "huber_weights",
    "log_space",
    "predict",
    "resolve_weights",
    "search_tau_grid",
    "select_model",
    "tau_grid",
    "value_at_zero",
]
