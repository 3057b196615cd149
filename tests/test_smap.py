"""
Tests for S-map local linear fits.
"""

import numpy as np
import pytest

from dynstab.core.smap import SMapModel, design, fit_smap, library_mask, local_fit
from dynstab.errors import InsufficientDataError


@pytest.fixture
def linear_system():
    """x[t+1] = 0.5 x[t] + 0.3 d[t], noise free."""
    rng = np.random.default_rng(21)
    n = 80
    d = rng.normal(size=n)
    x = np.zeros(n)
    x[0] = 1.0
    for t in range(n - 1):
        x[t + 1] = 0.5 * x[t] + 0.3 * d[t]
    return x, d


def logistic(n=100, r=3.8, x0=0.4):
    x = np.empty(n)
    x[0] = x0
    for t in range(n - 1):
        x[t + 1] = r * x[t] * (1 - x[t])
    return x


class TestDesign:

    def test_shapes(self, linear_system):
        x, d = linear_system
        X, y = design(x, 3, [d])
        assert X.shape == (80, 4)
        assert np.isnan(X[:2]).any(axis=1).all()
        np.testing.assert_array_equal(X[5], [x[5], x[4], x[3], d[5]])
        assert y[5] == x[6]
        assert np.isnan(y[-1])

    def test_terms(self):
        model = SMapModel(target='B', E=2, drivers=('A', 'C'))
        assert model.terms == [('B', 0), ('B', 1), ('A', 0), ('C', 0)]


class TestLocalFit:

    def test_exact_linear(self):
        rng = np.random.default_rng(2)
        X = rng.normal(size=(40, 2))
        y = 1.0 + 2.0 * X[:, 0] - 0.5 * X[:, 1]
        solution, regularized = local_fit(X, y, X[0], theta=2.0)
        np.testing.assert_allclose(solution, [1.0, 2.0, -0.5], atol=1e-9)
        assert not regularized

    def test_collinear_design_falls_back_to_ridge(self):
        rng = np.random.default_rng(2)
        a = rng.normal(size=40)
        X = np.column_stack([a, a])
        y = 3.0 * a
        solution, regularized = local_fit(X, y, X[0], theta=0.0)
        assert regularized
        assert np.isfinite(solution).all()
        # Ridge splits the weight evenly between the identical columns
        assert solution[1] + solution[2] == pytest.approx(3.0, rel=1e-3)


class TestLibraryMask:

    def test_excludes_prediction_point(self):
        usable = np.ones(10, dtype=bool)
        mask = library_mask(4, usable, rolling=False, half=5)
        assert not mask[4]
        assert mask.sum() == 9

    def test_rolling_first_half(self):
        usable = np.ones(10, dtype=bool)
        mask = library_mask(2, usable, rolling=True, half=5)
        np.testing.assert_array_equal(np.flatnonzero(mask), [0, 1, 3, 4])

    def test_rolling_second_half_uses_only_the_past(self):
        usable = np.ones(10, dtype=bool)
        mask = library_mask(7, usable, rolling=True, half=5)
        np.testing.assert_array_equal(np.flatnonzero(mask), [0, 1, 2, 3, 4, 5, 6])


class TestFitSMap:

    def test_recovers_linear_coefficients(self, linear_system):
        x, d = linear_system
        times = np.arange(len(x))
        fit = fit_smap('x', x, 1, {'d': d}, times, horizon=1, theta=[0.0])
        assert fit.model.terms == [('x', 0), ('d', 0)]
        assert fit.model.theta == 0.0
        assert fit.model.rho > 0.999
        present = fit.rows.present()
        assert len(present) == len(x)
        for _, row in present:
            np.testing.assert_allclose(row.coefficients, [0.5, 0.3], atol=1e-8)

    def test_shared_axis_and_forecast_only_last_step(self, linear_system):
        x, d = linear_system
        times = np.arange(100, 100 + len(x))
        fit = fit_smap('x', x, 1, {}, times, horizon=3, theta=[0.0])
        assert fit.rows.times == tuple(times[2:])
        last = fit.rows[len(fit.rows) - 1]
        assert last is not None
        assert last.observed is None
        assert np.isfinite(last.predicted)

    def test_theta_selection_prefers_locality_for_nonlinear_map(self):
        x = logistic()
        fit = fit_smap('x', x, 1, {}, np.arange(len(x)), horizon=1, theta=[0.0, 2.0])
        assert fit.model.theta == 2.0

    def test_collinear_driver_is_regularized(self, linear_system):
        x, _ = linear_system
        fit = fit_smap('x', x, 1, {'copy': x.copy()}, np.arange(len(x)), horizon=1, theta=[0.0])
        assert fit.model.n_regularized > 0
        assert fit.model.n_missing == 0

    def test_too_few_library_points(self):
        x = np.array([1.0, 2.0, 0.5, 1.5, 0.7])
        with pytest.raises(InsufficientDataError) as info:
            fit_smap('x', x, 2, {'d': x[::-1].copy()}, np.arange(5), horizon=2, theta=[0.0])
        assert info.value.entity == 'x'

    def test_rolling_forecast(self, linear_system):
        x, d = linear_system
        fit = fit_smap('x', x, 1, {'d': d}, np.arange(len(x)), horizon=1,
                       theta=[0.0], rolling_forecast=True)
        assert fit.model.rolling_forecast
        assert fit.model.n_missing == 0
        assert fit.model.rho > 0.999
