"""
Unit tests for the tau grid search and robust reweighting.

Tests verify correctness of:
- Recovery of the generating tau tuple and coefficients
- Deterministic best-candidate reduction regardless of worker count
- Front-end elimination of the slope coefficient
- The short-end monotonicity filter and its fallback
- Huber weights and the IRLS loop
"""

import numpy as np
import pytest

from curvefit.errors import NoValidCandidateError, RankDeficiencyError
from curvefit.fitting.config import RobustKind, ShortEndMonotone
from curvefit.fitting.grid_search import (
    FitCandidate,
    better_of,
    search_tau_grid,
    solve_for_taus,
    violates_short_end_monotone,
)
from curvefit.fitting.model import ModelVariant, predict, value_at_zero
from curvefit.fitting.robust import MIN_FACTOR, fit_robust, huber_weights, robust_scale
from curvefit.fitting.tau_grid import tau_grid

TRUE_NS = np.array([5.0, -3.0, 2.0])
TRUE_TAU = (2.0,)


# ------------------------------------------------------------------
# Fixtures
# ------------------------------------------------------------------

@pytest.fixture
def tenors() -> np.ndarray:
    return np.linspace(0.25, 30.0, 40)


@pytest.fixture
def exact_ns(tenors):
    """Noise-free NS observations with unit weights."""
    values = predict(ModelVariant.NS, tenors, TRUE_NS, TRUE_TAU)
    return tenors, values, np.ones_like(tenors)


@pytest.fixture
def noisy_nss(tenors):
    """NSS observations with seeded noise."""
    rng = np.random.default_rng(11)
    values = predict(ModelVariant.NSS, tenors, [4.0, -2.0, 1.5, -1.0], (0.8, 6.0))
    return tenors, values + rng.normal(0.0, 0.01, tenors.size), np.ones_like(tenors)


def _candidate(index: int, sse: float) -> FitCandidate:
    return FitCandidate(index=index, taus=(1.0,), coefficients=np.zeros(3), sse=sse)


# ------------------------------------------------------------------
# Grid search
# ------------------------------------------------------------------

class TestSearchTauGrid:
    """Tests for the best-candidate search."""

    def test_picks_generating_tau(self, exact_ns):
        tenors, values, weights = exact_ns
        grid = [(1.0,), (2.0,), (4.0,)]

        result = search_tau_grid(ModelVariant.NS, grid, tenors, values, weights)

        assert result.best.taus == (2.0,)
        assert result.best.index == 1
        np.testing.assert_allclose(result.best.coefficients, TRUE_NS, rtol=1e-9)
        assert result.best.sse == pytest.approx(0.0, abs=1e-18)
        assert result.evaluated == 3
        assert result.admitted == 3

    def test_worker_count_does_not_change_result(self, noisy_nss):
        tenors, values, weights = noisy_nss
        grid = tau_grid(ModelVariant.NSS, 0.1, 20.0, 14)

        serial = search_tau_grid(ModelVariant.NSS, grid, tenors, values, weights)
        parallel = search_tau_grid(
            ModelVariant.NSS, grid, tenors, values, weights, max_workers=4
        )

        assert parallel.best.index == serial.best.index
        assert parallel.best.taus == serial.best.taus
        np.testing.assert_allclose(parallel.best.coefficients, serial.best.coefficients, rtol=1e-12)
        assert parallel.best.sse == pytest.approx(serial.best.sse, rel=1e-12)

    def test_best_has_minimum_sse(self, noisy_nss):
        tenors, values, weights = noisy_nss
        grid = tau_grid(ModelVariant.NSS, 0.1, 20.0, 8)

        result = search_tau_grid(ModelVariant.NSS, grid, tenors, values, weights)

        for taus in grid:
            try:
                _, sse = solve_for_taus(ModelVariant.NSS, taus, tenors, values, weights)
            except RankDeficiencyError:
                continue
            assert result.best.sse <= sse

    def test_empty_grid_raises(self, exact_ns):
        tenors, values, weights = exact_ns
        with pytest.raises(NoValidCandidateError):
            search_tau_grid(ModelVariant.NS, [], tenors, values, weights)

    def test_all_rank_deficient_raises(self):
        """Two distinct tenors cannot identify three coefficients."""
        tenors = np.repeat([1.0, 5.0], 10)
        values = np.repeat([2.0, 3.0], 10)

        with pytest.raises(NoValidCandidateError, match="No valid fit candidates"):
            search_tau_grid(
                ModelVariant.NS, [(0.5,), (2.0,)], tenors, values, np.ones_like(tenors)
            )


class TestBetterOf:
    """Tests for the deterministic reduction."""

    def test_smaller_sse_wins(self):
        a, b = _candidate(0, 2.0), _candidate(1, 1.0)
        assert better_of(a, b) is b
        assert better_of(b, a) is b

    def test_tie_keeps_earlier_index(self):
        a, b = _candidate(3, 1.0), _candidate(5, 1.0)
        assert better_of(a, b) is a
        assert better_of(b, a) is a

    def test_associative(self):
        a, b, c = _candidate(2, 1.0), _candidate(0, 1.0), _candidate(1, 0.5)
        assert better_of(better_of(a, b), c) is better_of(a, better_of(b, c))


class TestFrontEnd:
    """Tests for y(0) conditioning."""

    def test_fixed_level_is_exact(self, exact_ns):
        tenors, values, weights = exact_ns
        coefficients, _ = solve_for_taus(
            ModelVariant.NSS, (1.0, 5.0), tenors, values, weights, front_end_value=0.0
        )
        assert value_at_zero(coefficients) == pytest.approx(0.0, abs=1e-12)
        assert coefficients.shape == (4,)

    def test_true_level_reproduces_free_fit(self, exact_ns):
        tenors, values, weights = exact_ns
        level = TRUE_NS[0] + TRUE_NS[1]

        coefficients, sse = solve_for_taus(
            ModelVariant.NS, TRUE_TAU, tenors, values, weights, front_end_value=level
        )

        np.testing.assert_allclose(coefficients, TRUE_NS, rtol=1e-9)
        assert sse == pytest.approx(0.0, abs=1e-18)

    def test_constraint_costs_fit_quality(self, exact_ns):
        tenors, values, weights = exact_ns
        _, free_sse = solve_for_taus(ModelVariant.NS, TRUE_TAU, tenors, values, weights)
        _, fixed_sse = solve_for_taus(
            ModelVariant.NS, TRUE_TAU, tenors, values, weights, front_end_value=0.0
        )
        assert fixed_sse > free_sse


# ------------------------------------------------------------------
# Short-end monotonicity
# ------------------------------------------------------------------

class TestShortEndMonotone:
    """Tests for the shape guardrail."""

    # y = 4 + 2 * f1 decreases everywhere.
    DECREASING = ([4.0, 2.0, 0.0], (1.0,))
    # A sharp hump inside the 1y window.
    HUMP = ([0.0, 0.0, 10.0], (0.1,))

    def test_decreasing_curve(self):
        coefficients, taus = self.DECREASING

        def check(mode):
            return violates_short_end_monotone(ModelVariant.NS, coefficients, taus, mode, 1.0)

        assert check(ShortEndMonotone.INCREASING)
        assert not check(ShortEndMonotone.DECREASING)
        assert not check(ShortEndMonotone.AUTO)
        assert not check(ShortEndMonotone.NONE)

    def test_hump_violates_every_direction(self):
        coefficients, taus = self.HUMP
        for mode in (ShortEndMonotone.INCREASING, ShortEndMonotone.DECREASING, ShortEndMonotone.AUTO):
            assert violates_short_end_monotone(ModelVariant.NS, coefficients, taus, mode, 1.0)

    def test_flat_curve_passes(self):
        for mode in ShortEndMonotone:
            assert not violates_short_end_monotone(
                ModelVariant.NS, [3.0, 0.0, 0.0], (1.0,), mode, 1.0
            )

    def test_filter_rejects_violating_candidates(self, exact_ns):
        tenors, _, weights = exact_ns
        coefficients, taus = self.DECREASING
        values = predict(ModelVariant.NS, tenors, coefficients, taus)
        grid = [(1.0,), (3.0,)]

        result = search_tau_grid(
            ModelVariant.NS, grid, tenors, values, weights,
            monotone=ShortEndMonotone.DECREASING,
        )

        assert result.monotone == ShortEndMonotone.DECREASING
        assert result.best.taus == (1.0,)

    def test_falls_back_when_nothing_survives(self, exact_ns):
        tenors, _, weights = exact_ns
        coefficients, taus = self.DECREASING
        values = predict(ModelVariant.NS, tenors, coefficients, taus)

        result = search_tau_grid(
            ModelVariant.NS, [(1.0,)], tenors, values, weights,
            monotone=ShortEndMonotone.INCREASING,
        )

        assert result.monotone == ShortEndMonotone.NONE
        np.testing.assert_allclose(result.best.coefficients, coefficients, atol=1e-9)


# ------------------------------------------------------------------
# Robust reweighting
# ------------------------------------------------------------------

class TestHuberWeights:
    """Tests for the pure reweighting function."""

    def test_downweights_outlier_only(self):
        base = np.array([1.0, 2.0, 1.0, 0.5, 1.0])
        residuals = np.array([0.1, -0.1, 0.1, -0.1, 10.0])
        cutoff = 1.5 * 0.1 / 0.6745

        weights = huber_weights(base, residuals, 1.5)

        np.testing.assert_allclose(weights[:4], base[:4])
        assert weights[4] == pytest.approx(base[4] * cutoff / 10.0)

    def test_factor_is_floored(self):
        base = np.ones(5)
        residuals = np.array([0.1, -0.1, 0.1, -0.1, 1e9])

        weights = huber_weights(base, residuals, 1.5)

        assert weights[4] == pytest.approx(MIN_FACTOR)

    def test_zero_residuals_keep_weights(self):
        base = np.array([1.0, 3.0, 0.5])
        np.testing.assert_allclose(huber_weights(base, np.zeros(3), 1.5), base)

    def test_robust_scale_is_normal_consistent(self):
        residuals = np.array([-2.0, 1.0, 0.5, -0.5, 3.0])
        assert robust_scale(residuals) == pytest.approx(1.0 / 0.6745)


class TestFitRobust:
    """Tests for the IRLS loop."""

    def test_disabled_is_single_pass(self, exact_ns):
        tenors, values, weights = exact_ns
        result = fit_robust(ModelVariant.NS, [(1.0,), (2.0,)], tenors, values, weights)

        assert result.iterations == 0
        np.testing.assert_array_equal(result.weights, weights)
        assert result.candidate.taus == (2.0,)

    def test_outlier_is_downweighted(self, exact_ns):
        tenors, values, weights = exact_ns
        rng = np.random.default_rng(3)
        values = values + rng.normal(0.0, 0.01, values.size)
        values[20] += 3.0

        result = fit_robust(
            ModelVariant.NS, [(1.0,), (2.0,), (4.0,)], tenors, values, weights,
            robust=RobustKind.HUBER, robust_k=1.5, max_iterations=4,
        )

        assert 1 <= result.iterations <= 4
        assert result.weights[20] < 0.1
        assert np.median(result.weights) == pytest.approx(1.0)

    def test_exact_data_stops_early(self, exact_ns):
        tenors, values, weights = exact_ns
        result = fit_robust(
            ModelVariant.NS, [(2.0,)], tenors, values, weights,
            robust=RobustKind.HUBER, max_iterations=5,
        )
        assert result.iterations < 5
