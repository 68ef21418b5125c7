"""
Test cases for the orderings.
"""

import pytest
import numpy as np
from scipy.spatial.distance import cdist

from vecchiagp.ordering import order_maxmin, order_coord, order_random, get_order


def maxmin_naive(locs):
    n = locs.shape[0]
    d = cdist(locs, locs)
    first = np.argmin(np.sum((locs - locs.mean(0))**2, axis=1))
    ord = [first]
    mind = d[first].copy()
    mind[first] = -1
    for _ in range(n - 1):
        i = int(np.argmax(mind))
        ord.append(i)
        mind = np.minimum(mind, d[i])
        mind[ord] = -1
    return np.array(ord)


def is_permutation(ord, n):
    return np.array_equal(np.sort(ord), np.arange(n))


class TestMaxmin:
    """Test the max-min ordering."""

    @pytest.mark.parametrize('n, d', [(50, 1), (300, 2), (200, 3)])
    def test_matches_naive(self, n, d):
        locs = np.random.default_rng(n).uniform(size=(n, d))
        np.testing.assert_array_equal(order_maxmin(locs), maxmin_naive(locs))

    def test_maxmin_distances_decrease_on_grid(self):
        g = np.linspace(0, 1, 15)
        locs = np.stack(np.meshgrid(g, g), -1).reshape(-1, 2)
        ord = order_maxmin(locs)
        assert is_permutation(ord, locs.shape[0])
        x = locs[ord]
        mind = [np.min(np.linalg.norm(x[:i] - x[i], axis=1)) for i in range(1, len(x))]
        assert np.all(np.diff(mind) <= 1e-12)

    def test_starts_near_center(self):
        locs = np.array([[0., 0.], [1., 1.], [0.45, 0.5], [1., 0.], [0., 1.]])
        assert order_maxmin(locs)[0] == 2

    def test_small_sets(self):
        np.testing.assert_array_equal(order_maxmin(np.zeros((1, 2))), [0])
        np.testing.assert_array_equal(order_maxmin(np.array([[0.], [1.]])), [0, 1])

    def test_duplicates(self):
        locs = np.array([[0.], [0.], [1.], [1.], [0.5]])
        ord = order_maxmin(locs)
        assert is_permutation(ord, 5)
        assert ord[0] == 4


class TestOtherOrderings:
    """Test the coordinate, random and custom orderings."""

    def setup_method(self):
        self.locs = np.random.default_rng(3).uniform(size=(40, 2))

    def test_coord(self):
        ord = order_coord(self.locs)
        assert np.all(np.diff(self.locs[ord, 0]) >= 0)

    def test_coord_ties_use_second_coordinate(self):
        locs = np.array([[1., 2.], [0., 5.], [1., 1.]])
        np.testing.assert_array_equal(order_coord(locs), [1, 2, 0])

    def test_random_is_reproducible(self):
        ord = order_random(self.locs, seed=7)
        assert is_permutation(ord, 40)
        np.testing.assert_array_equal(ord, get_order(self.locs, 'random', seed=7))

    def test_none(self):
        np.testing.assert_array_equal(get_order(self.locs, 'none'), np.arange(40))

    def test_function(self):
        ord = get_order(self.locs, lambda locs: np.argsort(locs[:, 1]))
        np.testing.assert_array_equal(ord, np.argsort(self.locs[:, 1]))

    def test_function_must_return_permutation(self):
        with pytest.raises(ValueError, match='permutation'):
            get_order(self.locs, lambda locs: np.zeros(len(locs)))

    def test_unknown(self):
        with pytest.raises(ValueError):
            get_order(self.locs, 'hilbert')
