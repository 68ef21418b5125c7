"""
Test cases for the covariance functions.
"""

import pytest
import numpy as np
from scipy.special import kv, gamma
from scipy.spatial.distance import cdist

from vecchiagp.covariance import matern_cor, matern, exponential, gaussian, covariance, get_covfun
from vecchiagp.exceptions import InvalidParameter


class TestMaternCorrelation:
    """Test the Matern correlation function."""

    def test_general_smoothness_matches_bessel_formula(self):
        d = np.linspace(0.01, 2., 40)
        for nu in [0.3, 0.8, 1.2, 3.7]:
            h = d/0.4
            expected = 2**(1-nu)/gamma(nu)*h**nu*kv(nu, h)
            np.testing.assert_allclose(matern_cor(d, 0.4, nu), expected, rtol=1e-10)

    def test_closed_forms(self):
        h = np.linspace(0, 5, 30)
        np.testing.assert_allclose(matern_cor(h, 1., 0.5), np.exp(-h))
        np.testing.assert_allclose(matern_cor(h, 1., 1.5), (1+h)*np.exp(-h))
        np.testing.assert_allclose(matern_cor(h, 1., 2.5), (1+h+h**2/3)*np.exp(-h))

    def test_closed_forms_are_continuous(self):
        h = np.linspace(0.01, 5, 30)
        for nu in [0.5, 1.5, 2.5]:
            np.testing.assert_allclose(matern_cor(h, 1., nu + 1e-7), matern_cor(h, 1., nu), rtol=1e-5)

    def test_gaussian_limit(self):
        h = np.linspace(0, 3, 30)
        np.testing.assert_allclose(matern_cor(h, 0.5, np.inf), np.exp(-(h/0.5)**2))

    def test_zero_distance(self):
        assert np.all(matern_cor(np.zeros(5), 0.3, 0.8) == 1.)

    def test_stable_for_extreme_arguments(self):
        d = np.array([0., 1e-12, 1e-6, 1e-2, 1., 1e2, 1e4])
        for nu in [0.05, 0.8, 30., 120.]:
            cor = matern_cor(d, 1., nu)
            assert np.all(np.isfinite(cor))
            assert np.all((cor >= 0) & (cor <= 1))
            assert np.all(np.diff(cor) <= 1e-12)

    def test_keeps_shape(self):
        d = np.random.default_rng(0).uniform(size=(3, 4, 4))
        assert matern_cor(d, 1., 0.8).shape == (3, 4, 4)


class TestCovarianceFamilies:
    """Test the covariance classes."""

    def setup_method(self):
        rng = np.random.default_rng(1)
        self.locs = rng.uniform(size=(30, 2))
        self.dists = cdist(self.locs, self.locs)

    @pytest.mark.parametrize('covfun, covparms', [
        (matern(), [1.3, 0.2, 0.8, 0.1]),
        (matern(), [1., 0.2, np.inf, 0.]),
        (exponential(), [2., 0.5, 0.]),
        (gaussian(), [1., 0.1, 0.05]),
    ])
    def test_symmetric_positive_semidefinite(self, covfun, covparms):
        K = covfun.cov(self.dists, covparms)
        np.testing.assert_allclose(K, K.T)
        assert np.min(np.linalg.eigvalsh(K)) > -1e-8

    def test_nugget_on_diagonal_only(self):
        locs = np.array([[0., 0.], [0., 0.], [1., 0.]])
        K = matern().cov(cdist(locs, locs), [2., 0.5, 0.8, 0.3])
        np.testing.assert_allclose(np.diag(K), 2.3)
        assert K[0, 1] == 2.
        assert K[1, 0] == 2.

    def test_cross_has_no_nugget(self):
        K = exponential().cross(self.dists, [1., 0.3, 0.5])
        np.testing.assert_allclose(np.diag(K), 1.)

    def test_batched(self):
        batch = np.stack([self.dists[:5, :5], self.dists[5:10, 5:10]])
        K = matern().cov(batch, [1., 0.2, 0.8, 0.1])
        np.testing.assert_allclose(K[1], matern().cov(self.dists[5:10, 5:10], [1., 0.2, 0.8, 0.1]))

    def test_exponential_is_matern_half(self):
        np.testing.assert_allclose(exponential().cov(self.dists, [1.5, 0.3, 0.2]),
            matern().cov(self.dists, [1.5, 0.3, 0.5, 0.2]))

    def test_gaussian_is_matern_infinity(self):
        np.testing.assert_allclose(gaussian().cov(self.dists, [1.5, 0.3, 0.2]),
            matern().cov(self.dists, [1.5, 0.3, np.inf, 0.2]))

    @pytest.mark.parametrize('covparms', [
        [0., 0.1, 0.5, 0.1],
        [1., -0.1, 0.5, 0.1],
        [1., 0.1, 0., 0.1],
        [1., 0.1, 0.5, -0.1],
        [1., 0.1, 0.5],
        [np.nan, 0.1, 0.5, 0.1],
        [np.inf, 0.1, 0.5, 0.1],
        [1., np.inf, 0.5, 0.1],
    ])
    def test_invalid_parameters(self, covparms):
        with pytest.raises(InvalidParameter):
            matern().cov(self.dists, covparms)

    def test_invalid_parameter_is_value_error(self):
        with pytest.raises(ValueError):
            exponential().check([1., 0.1, 0.5, 0.1])


class TestGetCovfun:
    """Test the resolution of covariance families."""

    def test_names(self):
        assert get_covfun('matern') == matern()
        assert get_covfun('Exponential') == exponential()
        assert get_covfun('GAUSSIAN') == gaussian()

    def test_classes_and_instances(self):
        class powered(covariance):
            name = 'powered'

            def cor(self, dists, covparms):
                return np.exp(-np.sqrt(dists/covparms[1]))

        fun = powered()
        assert get_covfun(fun) is fun
        assert isinstance(get_covfun(powered), powered)

    def test_unknown(self):
        with pytest.raises(ValueError, match='Only support'):
            get_covfun('spherical')

    def test_parameter_names(self):
        assert matern().par_names == ('variance', 'range', 'smoothness', 'nugget')
        assert exponential().n_par == 3
