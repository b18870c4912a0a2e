"""
Exception hierarchy for the curve-fitting engine.

Failures are split by how far they propagate:

- Per-candidate failures (``RankDeficiencyError``, ``NumericalFailureError``)
  are absorbed by the grid search; the tau tuple is simply not kept.
- Per-variant failures (``NoValidCandidateError``) exclude one model from
  selection.
- ``NoEligibleModelError`` and a ``NumericalFailureError`` on the chosen
  result are surfaced to the caller.
"""


class CurveFitError(Exception):
    """Base exception for curve-fitting errors."""
    pass


class InvalidObservationError(CurveFitError):
    """Raised when an observation or an observation set is invalid."""
    pass


class InvalidConfigError(CurveFitError):
    """Raised when fitting options are inconsistent or out of range."""
    pass


class DomainInputError(CurveFitError):
    """Raised when a tenor or decay constant is non-finite or non-positive."""
    pass


class RankDeficiencyError(CurveFitError):
    """Raised when a weighted design matrix lacks full column rank."""
    pass


class NumericalFailureError(CurveFitError):
    """Raised when a NaN or infinite value is produced."""
    pass


class NoValidCandidateError(CurveFitError):
    """Raised when no tau tuple produced an admissible fit for a variant."""
    pass


class NoEligibleModelError(CurveFitError):
    """Raised when every requested model variant was excluded."""
    pass
