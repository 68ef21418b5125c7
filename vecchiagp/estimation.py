import numpy as np
from scipy.optimize import minimize
from scipy.spatial.distance import pdist
from tqdm import tqdm
from .covariance import get_covfun
from .exceptions import ConvergenceFailure, DimensionMismatch, InvalidParameter
from .prediction import vecchia_pred
from .utils import summary, thread_scope
from .vecchia import as_locs, vecchia_likelihood, vecchia_specify

class init_config:
    """
    Class that derives the initial covariance parameters of the estimation from the data.

    Args:
        variance_scale (float, optional): the share of the sample variance of the residuals used as the initial variance. Defaults to `0.9`.
        range_divisor (float, optional): the initial range is the mean pairwise distance of a subsample of the
            locations divided by **range_divisor**. Defaults to `4`.
        smoothness_default (float, optional): the initial smoothness. Defaults to `0.8`.
        nugget_scale (float, optional): the share of the sample variance of the residuals used as the initial nugget. Defaults to `0.1`.
        sample_size (int, optional): the maximum number of locations in the subsample. Defaults to `300`.
        seed (int, optional): the seed used to draw the subsample. Defaults to `None`.
    """

    def __init__(self, variance_scale=0.9, range_divisor=4., smoothness_default=0.8, nugget_scale=0.1, sample_size=300, seed=None):
        self.variance_scale = variance_scale
        self.range_divisor = range_divisor
        self.smoothness_default = smoothness_default
        self.nugget_scale = nugget_scale
        self.sample_size = sample_size
        self.seed = seed

    def guess(self, z, locs, covfun):
        """Compute the initial covariance parameters.

        Args:
            z (ndarray): a numpy 1d-array of residuals.
            locs (ndarray): a numpy 2d-array of locations.
            covfun (class): a :class:`.covariance` instance.

        Returns:
            ndarray: a numpy 1d-array of initial parameters ordered as **covfun.par_names**.
        """
        var_res = np.var(z, ddof=1)
        n = locs.shape[0]
        idx = np.random.default_rng(self.seed).choice(n, min(n, self.sample_size), replace=False)
        mean_dist = np.mean(pdist(locs[idx]))
        values = {'variance': self.variance_scale*var_res, 'range': mean_dist/self.range_divisor,
            'smoothness': self.smoothness_default, 'nugget': self.nugget_scale*var_res}
        missing = [name for name in covfun.par_names if name not in values]
        if missing:
            raise ValueError(f'No initial value is available for {missing}. Please supply theta_ini.')
        return np.array([values[name] for name in covfun.par_names])

def detrend(data, X='constant'):
    """Remove the trend from the data.

    Args:
        data (ndarray): a numpy 1d-array of observations.
        X (str_or_ndarray, optional): `constant` to remove the sample mean, `None` to keep the data as they are,
            or a numpy 2d-array of covariates whose least-squares fit is removed. Defaults to `constant`.

    Returns:
        tuple: the residuals, the trend coefficients and the trend type (`constant`, `none` or `userspecified`).
    """
    if X is None:
        return data.copy(), np.array([]), 'none'
    if isinstance(X, str):
        if X!='constant':
            raise ValueError(f"X has to be 'constant', None or a covariate matrix, got {X!r}.")
        beta_hat = np.array([np.mean(data)])
        return data - beta_hat[0], beta_hat, 'constant'
    X = np.asarray(X, dtype=float)
    if X.ndim==1:
        X = X.reshape(-1,1)
    if X.shape[0]!=len(data):
        raise DimensionMismatch(f'X has {X.shape[0]} rows but there are {len(data)} observations.')
    beta_hat = np.linalg.solve(X.T @ X, X.T @ data)
    return data - X @ beta_hat, beta_hat, 'userspecified'

def negloglik_vecchia(lgparms, z, approx, covfun, smooth_max=10., penalty=1e10):
    """Compute the negative Vecchia log-likelihood at log-transformed covariance parameters.

    Parameters that cannot be evaluated (a smoothness above **smooth_max**, parameters that over- or underflow
    on the natural scale, or a failed factorization) give **penalty** so that the minimizer can move away from them.
    """
    with np.errstate(over='ignore', under='ignore'):
        covparms = np.exp(lgparms)
    if 'smoothness' in covfun.par_names and covparms[covfun.par_names.index('smoothness')]>smooth_max:
        return penalty
    try:
        llik = vecchia_likelihood(z, approx, covparms, covfun)
    except InvalidParameter:
        return penalty
    if not np.isfinite(llik):
        return penalty
    return -llik

class fitted:
    """
    Class that stores a Gaussian process model fitted by :func:`vecchia_estimate`.

    Args:
        z (ndarray): a numpy 1d-array of residuals (the data with the trend removed).
        beta_hat (ndarray): a numpy 1d-array of trend coefficients. It is empty if no trend was removed.
        theta_hat (ndarray): a numpy 1d-array of estimated covariance parameters.
        trend (str): the trend type: `none`, `constant` or `userspecified`.
        locs (ndarray): a numpy 2d-array of training locations.
        covmodel (class): the :class:`.covariance` instance of the model.
        m (int): the number of neighbours used in the estimation.
        loglik (float): the Vecchia log-likelihood at **theta_hat**.
        result (OptimizeResult): the result returned by the minimizer.
    """

    def __init__(self, z, beta_hat, theta_hat, trend, locs, covmodel, m, loglik, result=None):
        self.z = z
        self.beta_hat = beta_hat
        self.theta_hat = theta_hat
        self.trend = trend
        self.locs = locs
        self.covmodel = covmodel
        self.m = m
        self.loglik = loglik
        self.result = result

    @property
    def par_names(self):
        return self.covmodel.par_names

    @property
    def params(self):
        return dict(zip(self.par_names, self.theta_hat))

    def __repr__(self):
        pars = ', '.join(f'{k}={v:.4g}' for k, v in self.params.items())
        return f'fitted({self.covmodel.name}, trend={self.trend}, {pars})'

    def predict(self, locs_pred, X_pred=None, m=30, var_exact=None, num_threads=None, **kwargs):
        """Make predictions at new locations. See :func:`.vecchia_pred`.
        """
        return vecchia_pred(self, locs_pred, X_pred=X_pred, m=m, var_exact=var_exact, num_threads=num_threads, **kwargs)

def vecchia_estimate(data, locs, X='constant', m=20, covmodel='matern', theta_ini=None, config=None, output_level=1, reltol=1e-8, maxit=2000, smooth_max=10., penalty=1e10, num_threads=None, **kwargs):
    """Estimate the trend and the covariance parameters of a Gaussian process by maximizing the Vecchia likelihood.

    Args:
        data (ndarray): a numpy 1d-array of observations.
        locs (ndarray): a numpy 2d-array of locations, one row per observation.
        X (str_or_ndarray, optional): the trend: `constant`, `None` for no trend, or a numpy 2d-array of
            covariates with one row per observation. Defaults to `constant`.
        m (int, optional): the number of neighbours of the Vecchia approximation. Defaults to `20`.
        covmodel (str_or_class, optional): the covariance family. Defaults to `matern`.
        theta_ini (ndarray, optional): a numpy 1d-array of initial covariance parameters (the nugget last).
            Defaults to `None`, in which case they are derived from the data by **config**.
        config (class, optional): an :class:`init_config` instance. Defaults to `None`, i.e., `init_config()`.
        output_level (int, optional): whether to show the progress bar and print the estimates (`>0`)
            or not (`0`). Defaults to `1`.
        reltol (float, optional): the relative tolerance on the negative log-likelihood. Defaults to `1e-8`.
        maxit (int, optional): the maximum number of minimizer iterations. Defaults to `2000`.
        smooth_max (float, optional): the largest smoothness the minimizer may visit. Defaults to `10`.
        penalty (float, optional): the loss given to parameters that cannot be evaluated. Defaults to `1e10`.
        num_threads (int, optional): the number of numba threads. Defaults to `None`.
        **kwargs: passed to :func:`.vecchia_specify`, e.g., `ordering`.

    Returns:
        class: a :class:`fitted` class.
    """
    data = np.asarray(data, dtype=float).ravel()
    locs = as_locs(locs)
    if locs.shape[0]!=len(data):
        raise DimensionMismatch(f'locs has {locs.shape[0]} rows but there are {len(data)} observations.')
    if len(data)<2:
        raise DimensionMismatch('At least two observations are needed for the estimation.')
    covfun = get_covfun(covmodel)
    z, beta_hat, trend = detrend(data, X)
    approx = vecchia_specify(locs, m, **kwargs)
    if theta_ini is None or np.any(np.isnan(theta_ini)):
        config = init_config() if config is None else config
        theta_ini = config.guess(z, locs, covfun)
    theta_ini = covfun.check(theta_ini)
    if np.any(theta_ini<=0):
        raise InvalidParameter(f'The initial covariance parameters have to be strictly positive: {theta_ini}.')
    if 'smoothness' in covfun.par_names and theta_ini[covfun.par_names.index('smoothness')]>smooth_max:
        raise InvalidParameter(f'The initial smoothness {theta_ini[covfun.par_names.index("smoothness")]} exceeds smooth_max={smooth_max}.')
    x0 = np.log(theta_ini)
    loss = [np.inf]
    def fun(lgparms):
        f = negloglik_vecchia(lgparms, z, approx, covfun, smooth_max, penalty)
        loss[0] = min(loss[0], f)
        return f
    with thread_scope(num_threads):
        f0 = fun(x0)
        pgb = tqdm(total=maxit, disable=output_level<1)
        def callback(xk):
            pgb.update(1)
            pgb.set_description('Negative log-likelihood %.4f' % loss[0])
        simplex = np.vstack((x0, x0 + 0.5*np.eye(len(x0))))
        # convergence is judged on the relative spread of the loss over the simplex only
        result = minimize(fun, x0, method='Nelder-Mead', callback=callback,
            options={'maxiter': maxit, 'xatol': np.inf, 'fatol': reltol*(abs(f0)+reltol), 'initial_simplex': simplex})
        pgb.close()
    if not result.success:
        raise ConvergenceFailure(f'The optimization of the covariance parameters did not converge: {result.message} Try a different theta_ini or a larger maxit.', result=result)
    if result.fun>=penalty:
        raise ConvergenceFailure('The Vecchia log-likelihood could not be evaluated at any of the visited covariance parameters. Try a different theta_ini.', result=result)
    theta_hat = np.exp(result.x)
    fit = fitted(z, beta_hat, theta_hat, trend, locs, covfun, approx.m, -result.fun, result)
    if output_level>0:
        summary(fit)
    return fit
