import numpy as np
from scipy.special import kve, gammaln
from .exceptions import InvalidParameter

def matern_cor(dists, rng, smooth):
    """Compute the Matern correlation 2^(1-nu)/Gamma(nu) * (d/rho)^nu * K_nu(d/rho).

    The general case is evaluated on the log scale with the exponentially scaled Bessel
    function so that neither small nor large arguments (or large smoothness) overflow.

    Args:
        dists (ndarray): a numpy array (of any shape) of Euclidean distances.
        rng (float): the range parameter rho.
        smooth (float): the smoothness parameter nu. `np.inf` gives the Gaussian limit exp(-(d/rho)^2).

    Returns:
        ndarray: a numpy array of correlations with the same shape as **dists**.
    """
    h = np.asarray(dists, dtype=float)/rng
    if np.isinf(smooth):
        return np.exp(-h**2)
    if smooth == 0.5:
        return np.exp(-h)
    if smooth == 1.5:
        return (1+h)*np.exp(-h)
    if smooth == 2.5:
        return (1+h+h**2/3)*np.exp(-h)
    cor = np.ones(h.shape)
    pos = h>0
    hp = h[pos]
    with np.errstate(divide='ignore', over='ignore', under='ignore', invalid='ignore'):
        log_cor = (1-smooth)*np.log(2) - gammaln(smooth) + smooth*np.log(hp) + np.log(kve(smooth, hp)) - hp
        val = np.exp(log_cor)
    # kve overflows for arguments that are tiny relative to the smoothness; the limit there is 1
    val[~np.isfinite(val)] = 1.
    cor[pos] = np.minimum(val, 1.)
    return cor


class covariance:
    """
    Base class of the covariance families used by the Vecchia likelihood and prediction engines.

    A family is defined by its parameter names (the variance first and the nugget last) and the
    correlation function :meth:`cor`. New families are added by subclassing and passing an instance
    (or the class) as **covmodel**, or by registering the class in :data:`covfuns`.

    Attributes:
        name (str): the identifier of the family.
        par_names (tuple): the names of the covariance parameters, in order.
    """

    name = None
    par_names = ('variance', 'range', 'nugget')

    @property
    def n_par(self):
        return len(self.par_names)

    def __repr__(self):
        return '%s()' % type(self).__name__

    def __eq__(self, other):
        return type(self) is type(other)

    def __hash__(self):
        return hash(type(self))

    def check(self, covparms):
        """Validate a covariance parameter vector.

        Args:
            covparms (ndarray): a numpy 1d-array of covariance parameters ordered as :attr:`par_names`.

        Returns:
            ndarray: the validated numpy 1d-array of floats.
        """
        covparms = np.asarray(covparms, dtype=float).ravel()
        if len(covparms) != self.n_par:
            raise InvalidParameter('The %s covariance needs %i parameters %s, but %i were given.' % (self.name, self.n_par, self.par_names, len(covparms)))
        if np.any(np.isnan(covparms)):
            raise InvalidParameter('Covariance parameters cannot be NaN: %s.' % covparms)
        if np.any(covparms[:-1]<=0):
            raise InvalidParameter('The %s have to be strictly positive: %s.' % (', '.join(self.par_names[:-1]), covparms))
        if covparms[-1]<0:
            raise InvalidParameter('The nugget cannot be negative: %s.' % covparms[-1])
        for name, value in zip(self.par_names, covparms):
            if np.isinf(value) and name!='smoothness':
                raise InvalidParameter('The %s has to be finite.' % name)
        return covparms

    def cor(self, dists, covparms):
        raise NotImplementedError

    def cross(self, dists, covparms):
        """Compute the covariance between two location sets without the nugget.

        Args:
            dists (ndarray): a numpy array of pairwise distances.
            covparms (ndarray): a numpy 1d-array of covariance parameters.

        Returns:
            ndarray: a numpy array of covariances with the same shape as **dists**.
        """
        covparms = self.check(covparms)
        return covparms[0]*self.cor(dists, covparms)

    def cov(self, dists, covparms, same=True):
        """Compute the covariance matrix from a (batch of) distance matrices.

        Args:
            dists (ndarray): a numpy 2d-array, or a 3d-array of stacked square distance matrices.
            covparms (ndarray): a numpy 1d-array of covariance parameters, the nugget being the last one.
            same (bool, optional): whether the last two axes of **dists** index the same location set,
                in which case the nugget is added to their diagonal only. Defaults to `True`.

        Returns:
            ndarray: a numpy array of covariances with the same shape as **dists**.
        """
        covparms = self.check(covparms)
        K = covparms[0]*self.cor(dists, covparms)
        if same:
            if K.shape[-1] != K.shape[-2]:
                raise ValueError('same=True needs square distance matrices.')
            diag = np.arange(K.shape[-1])
            K[..., diag, diag] += covparms[-1]
        return K


class matern(covariance):
    """Matern covariance with parameters (variance, range, smoothness, nugget).
    """

    name = 'matern'
    par_names = ('variance', 'range', 'smoothness', 'nugget')

    def cor(self, dists, covparms):
        return matern_cor(dists, covparms[1], covparms[2])


class exponential(covariance):
    """Exponential covariance (Matern with smoothness 0.5) with parameters (variance, range, nugget).
    """

    name = 'exponential'

    def cor(self, dists, covparms):
        return np.exp(-np.asarray(dists, dtype=float)/covparms[1])


class gaussian(covariance):
    """Gaussian (squared exponential) covariance with parameters (variance, range, nugget).
    """

    name = 'gaussian'

    def cor(self, dists, covparms):
        return np.exp(-(np.asarray(dists, dtype=float)/covparms[1])**2)


covfuns = {'matern': matern, 'exponential': exponential, 'gaussian': gaussian}

def get_covfun(covmodel):
    """Resolve a covariance family.

    Args:
        covmodel (str_or_class): the name of a registered family (`matern`, `exponential` or `gaussian`),
            a :class:`covariance` subclass, or an instance of one.

    Returns:
        class: an instance of a :class:`covariance` subclass.
    """
    if isinstance(covmodel, covariance):
        return covmodel
    if isinstance(covmodel, type) and issubclass(covmodel, covariance):
        return covmodel()
    if isinstance(covmodel, str) and covmodel.lower() in covfuns:
        return covfuns[covmodel.lower()]()
    raise ValueError("Only support %s covariance models or covariance subclasses, got %r." % (', '.join(covfuns), covmodel))
