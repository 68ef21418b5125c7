"""
Test cases for the prediction driver.
"""

import pytest
import warnings
import numpy as np

from vecchiagp import vecchia_pred, vecchia_specify, vecchia_prediction, simulate
from vecchiagp.covariance import matern
from vecchiagp.estimation import fitted
from vecchiagp.exceptions import DimensionMismatch


class TestTrend:
    """Test that the trend is added back to the predictions."""

    def setup_method(self):
        rng = np.random.default_rng(0)
        self.locs = rng.uniform(size=(80, 2))
        self.locs_pred = rng.uniform(size=(12, 2))
        self.theta = np.array([1., 0.2, 0.8, 0.1])
        self.z = simulate(self.locs, self.theta, seed=1)
        approx = vecchia_specify(self.locs, 30, locs_pred=self.locs_pred)
        self.mu, self.var = vecchia_prediction(self.z, approx, self.theta)

    def fit(self, beta_hat, trend):
        return fitted(self.z, np.array(beta_hat), self.theta, trend, self.locs, matern(), 20, 0.)

    def test_constant(self):
        mean, var = vecchia_pred(self.fit([5.], 'constant'), self.locs_pred)
        np.testing.assert_allclose(mean, self.mu + 5.)
        np.testing.assert_allclose(var, self.var)

    def test_none(self):
        mean, _ = vecchia_pred(self.fit([], 'none'), self.locs_pred)
        np.testing.assert_allclose(mean, self.mu)

    def test_covariates(self):
        X_pred = np.column_stack((np.ones(12), self.locs_pred[:, 1]))
        mean, _ = vecchia_pred(self.fit([1., -2.], 'userspecified'), self.locs_pred, X_pred=X_pred)
        np.testing.assert_allclose(mean, self.mu + X_pred @ [1., -2.])

    def test_constant_with_covariates(self):
        mean, _ = vecchia_pred(self.fit([5.], 'constant'), self.locs_pred, X_pred=np.full(12, 2.))
        np.testing.assert_allclose(mean, self.mu + 10.)

    def test_missing_covariates_warn(self):
        with pytest.warns(UserWarning, match='X_pred was not specified'):
            mean, _ = vecchia_pred(self.fit([1., -2.], 'userspecified'), self.locs_pred)
        np.testing.assert_allclose(mean, self.mu)

    def test_no_warning_for_constant(self):
        with warnings.catch_warnings():
            warnings.simplefilter('error')
            vecchia_pred(self.fit([5.], 'constant'), self.locs_pred)

    def test_predict_method(self):
        fit = self.fit([5.], 'constant')
        mean, var = fit.predict(self.locs_pred, m=10)
        mean_2, var_2 = vecchia_pred(fit, self.locs_pred, m=10)
        np.testing.assert_allclose(mean, mean_2)
        np.testing.assert_allclose(var, var_2)

    def test_options_are_passed(self):
        mean, var = vecchia_pred(self.fit([], 'none'), self.locs_pred, m=15, cond_on_pred=False, ordering='coord')
        approx = vecchia_specify(self.locs, 15, locs_pred=self.locs_pred, cond_on_pred=False, ordering='coord')
        mu, var_2 = vecchia_prediction(self.z, approx, self.theta)
        np.testing.assert_allclose(mean, mu)
        np.testing.assert_allclose(var, var_2)

    @pytest.mark.parametrize('var_exact', [True, False])
    def test_variance_option_is_passed(self, var_exact):
        fit = self.fit([], 'none')
        approx = vecchia_specify(self.locs, 5, locs_pred=self.locs_pred)
        _, var = vecchia_prediction(self.z, approx, self.theta, var_exact=var_exact)
        np.testing.assert_allclose(vecchia_pred(fit, self.locs_pred, m=5, var_exact=var_exact)[1], var)
        np.testing.assert_allclose(fit.predict(self.locs_pred, m=5, var_exact=var_exact)[1], var)

    def test_errors(self):
        fit = self.fit([1., -2.], 'userspecified')
        with pytest.raises(DimensionMismatch):
            vecchia_pred(fit, self.locs_pred, X_pred=np.ones((12, 3)))
        with pytest.raises(DimensionMismatch):
            vecchia_pred(fit, np.zeros((0, 2)))
        with pytest.raises(DimensionMismatch):
            vecchia_pred(fit, np.zeros((3, 3)))
