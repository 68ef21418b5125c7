import numpy as np
from scipy.spatial.distance import cdist
from .covariance import get_covfun
from .vecchia import as_locs

def simulate(locs, covparms, covmodel='matern', size=None, seed=None):
    """Draw exact realizations of a zero-mean Gaussian process (with the nugget) at given locations.

    The draws use the Cholesky factor of the full covariance matrix and are meant for small location sets.

    Args:
        locs (ndarray): a numpy 2d-array of locations.
        covparms (ndarray): a numpy 1d-array of covariance parameters with the nugget as the last entry.
        covmodel (str_or_class, optional): the covariance family. Defaults to `matern`.
        size (int, optional): the number of realizations. Defaults to `None`, i.e., a single realization.
        seed (int, optional): the seed of the random generator. Defaults to `None`.

    Returns:
        ndarray: a numpy 1d-array of length n if **size** is `None`, otherwise a numpy 2d-array of shape (size, n).
    """
    locs = as_locs(locs)
    covfun = get_covfun(covmodel)
    m = locs.shape[0]
    cov = covfun.cov(cdist(locs, locs), covparms)
    L = np.linalg.cholesky(cov)
    randn = np.random.default_rng(seed).normal(size=(m, 1 if size is None else size))
    path_record = (L @ randn).T
    return path_record[0] if size is None else path_record
