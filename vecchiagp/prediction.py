import numpy as np
import warnings
from .exceptions import DimensionMismatch
from .vecchia import as_locs, vecchia_prediction, vecchia_specify

def vecchia_pred(fit, locs_pred, X_pred=None, m=30, var_exact=None, num_threads=None, **kwargs):
    """Make predictions at new locations from a fitted model and add the trend back.

    Args:
        fit (class): a :class:`.fitted` class returned by :func:`.vecchia_estimate`.
        locs_pred (ndarray): a numpy 2d-array of prediction locations.
        X_pred (ndarray, optional): a numpy 2d-array of trend covariates at the prediction locations. It is only
            needed if the model was fitted with a covariate trend. Defaults to `None`.
        m (int, optional): the number of neighbours of the Vecchia approximation. Defaults to `30`.
        var_exact (bool, optional): whether to compute exact prediction variances. See :func:`.vecchia_prediction`.
            Defaults to `None`.
        num_threads (int, optional): the number of numba threads. Defaults to `None`.
        **kwargs: passed to :func:`.vecchia_specify`, e.g., `ordering` or `cond_on_pred`.

    Returns:
        tuple: a tuple of two numpy 1d-arrays giving the predictive means and variances at **locs_pred**.
    """
    locs_pred = as_locs(locs_pred, 'locs_pred')
    if locs_pred.shape[0]==0:
        raise DimensionMismatch('locs_pred is empty.')
    approx = vecchia_specify(fit.locs, m, locs_pred=locs_pred, **kwargs)
    mu, var = vecchia_prediction(fit.z, approx, fit.theta_hat, fit.covmodel, var_exact=var_exact, num_threads=num_threads)
    if X_pred is not None:
        X_pred = np.asarray(X_pred, dtype=float)
        if X_pred.ndim==1:
            X_pred = X_pred.reshape(-1,1)
        if X_pred.shape!=(locs_pred.shape[0], len(fit.beta_hat)):
            raise DimensionMismatch(f'X_pred has to be of shape {(locs_pred.shape[0], len(fit.beta_hat))}, got {X_pred.shape}.')
        mu = mu + X_pred @ fit.beta_hat
    elif fit.trend=='constant':
        mu = mu + fit.beta_hat[0]
    elif fit.trend=='userspecified':
        warnings.warn('X_pred was not specified, so no trend was added back to the predictions.', UserWarning)
    return mu, var
