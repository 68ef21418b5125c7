from numba import njit, prange, config, set_num_threads
import numpy as np
from scipy.sparse import csr_matrix
from scipy.sparse.linalg import spsolve_triangular
from sklearn.neighbors import NearestNeighbors
from psutil import cpu_count
from .covariance import get_covfun
from .exceptions import DimensionMismatch, NumericalInstability
from .ordering import get_order
from .utils import thread_scope

core_num = cpu_count(logical = False) or 1
max_threads = config.NUMBA_NUM_THREADS
core_num = min(core_num, max_threads)
config.THREADING_LAYER = 'workqueue'
set_num_threads(core_num)

######nearest neighbours########
@njit(cache=True)
def insert_nb(sel, sel_d, sel_id, j, dj, idj):
    """Insert candidate j into the sorted selection if it is closer (ties go to the lower id).
    """
    m = len(sel)
    if sel[m-1]>=0 and (dj>sel_d[m-1] or (dj==sel_d[m-1] and idj>sel_id[m-1])):
        return
    k = m-1
    while k>0 and (sel[k-1]<0 or dj<sel_d[k-1] or (dj==sel_d[k-1] and idj<sel_id[k-1])):
        sel[k], sel_d[k], sel_id[k] = sel[k-1], sel_d[k-1], sel_id[k-1]
        k -= 1
    sel[k], sel_d[k], sel_id[k] = j, dj, idj

@njit(cache=True)
def nn_brute(x, ids, m):
    """Find the m nearest preceding points of every point by brute force.
    """
    n, d = x.shape
    NNarray = np.full((n, m+1), -1)
    for i in range(n):
        NNarray[i,0] = i
        k = min(m, i)
        if k==0:
            continue
        sel, sel_d, sel_id = np.full(k, -1), np.full(k, np.inf), np.full(k, -1)
        for j in range(i):
            dist = 0.
            for r in range(d):
                dist += (x[j,r]-x[i,r])**2
            insert_nb(sel, sel_d, sel_id, j, dist, ids[j])
        NNarray[i,1:k+1] = sel
    return NNarray

@njit(cache=True)
def extract_NN_m(NN, dists, query_inds, ids, m, exhaustive):
    """Keep the m closest preceding points among the kd-tree candidates.

    A row is only resolved when the candidates provably contain every preceding point that is as
    close as the m-th selected one, so that distance ties are broken by the lower id.
    """
    q, k = NN.shape
    NN_m = np.full((q, m), -1)
    found = np.zeros(q, dtype=np.bool_)
    for r in range(q):
        sel, sel_d, sel_id = np.full(m, -1), np.full(m, np.inf), np.full(m, -1)
        count = 0
        for c in range(k):
            j = NN[r,c]
            if j<query_inds[r]:
                insert_nb(sel, sel_d, sel_id, j, dists[r,c], ids[j])
                count += 1
        if count>=m and (exhaustive or sel_d[m-1]<dists[r,k-1]):
            NN_m[r] = sel
            found[r] = True
    return NN_m, found

def nn(x, m, ids=None):
    """Find, for each ordered point, its m nearest neighbours among the points preceding it.

    Args:
        x (ndarray): a numpy 2d-array of ordered locations.
        m (int): the maximum size of the conditioning sets.
        ids (ndarray, optional): a numpy 1d-array of the original indices of the ordered locations, used
            to break distance ties. Defaults to `None`, i.e., the positions in **x**.

    Returns:
        ndarray: a numpy 2d-array with ``min(m, n-1)+1`` columns. Row i contains i followed by its
        neighbours, sorted in decreasing order and padded with -1.
    """
    n = x.shape[0]
    m, mult = min(m, n-1), 2
    if ids is None:
        ids = np.arange(n)
    ids = np.ascontiguousarray(ids, dtype=np.int64)
    x = np.ascontiguousarray(x, dtype=float)
    NNarray = np.full((n, m + 1), -1, dtype=np.int64)
    NNarray[:,0] = np.arange(n)
    if m==0:
        return NNarray
    maxval = min(mult * m + 1, n)
    NNarray[:maxval] = nn_brute(x[:maxval], ids[:maxval], m)
    query_inds, msearch = np.arange(maxval, n), m
    neigh = NearestNeighbors(algorithm='kd_tree')
    while len(query_inds) > 0:
        max_query_inds = np.max(query_inds) + 1
        msearch = min(max_query_inds, 2*msearch)
        neigh.fit(x[:max_query_inds,:])
        dists, NN = neigh.kneighbors(x[query_inds,:], n_neighbors=msearch)
        NN_m, found = extract_NN_m(NN, dists, query_inds, ids, m, msearch==max_query_inds)
        NNarray[query_inds[found],1:] = NN_m[found]
        query_inds = query_inds[~found]
    NNarray = np.fliplr(np.sort(NNarray))
    return np.ascontiguousarray(NNarray)

def get_pred_nn(query, x, m, ids=None):
    """Find the m nearest neighbours in **x** of every query point (ties go to the lower id).

    Returns:
        ndarray: a numpy 2d-array with ``min(m, len(x))`` columns of indices into **x**, closest first.
    """
    n = x.shape[0]
    m = min(m, n)
    if ids is None:
        ids = np.arange(n)
    ids = np.ascontiguousarray(ids, dtype=np.int64)
    NNarray = np.full((query.shape[0], m), -1, dtype=np.int64)
    if m==0:
        return NNarray
    query_inds, msearch = np.arange(query.shape[0]), max(m//2, 1)
    neigh = NearestNeighbors(algorithm='kd_tree')
    neigh.fit(x)
    before = np.full(query.shape[0], n)
    while len(query_inds) > 0:
        msearch = min(n, 2*msearch)
        dists, NN = neigh.kneighbors(query[query_inds,:], n_neighbors=msearch)
        NN_m, found = extract_NN_m(NN, dists, before[query_inds], ids, m, msearch==n)
        NNarray[query_inds[found]] = NN_m[found]
        query_inds = query_inds[~found]
    return NNarray

######Vecchia approximation object########
class approx:
    """
    Class that holds the ordering and the conditioning sets of a Vecchia approximation.

    The object is built by :func:`vecchia_specify` and is read-only afterwards: the same instance is
    shared by all likelihood evaluations of an optimization, and by the likelihood and the prediction
    engines for the same configuration.

    Args:
        locs (ndarray): a numpy 2d-array stacking the training locations and then the prediction locations.
        ord (ndarray): a numpy 1d-array mapping each ordered position to its row in **locs**. The training
            locations occupy the first **n** positions.
        NNarray (ndarray): a numpy 2d-array whose row i contains i followed by the ordered positions
            of its conditioning set, sorted in decreasing order and padded with -1.
        n (int): the number of training locations.
        ordering (str): the name of the ordering strategy.
        cond_on_pred (bool): whether prediction locations may condition on earlier prediction locations.

    Attributes:
        n_pred (int): the number of prediction locations.
        m (int): the maximum size of the conditioning sets.
        rev_ord (ndarray): the inverse permutation of **ord**.
        locs_ord (ndarray): the ordered locations.
        obs (ndarray): a boolean numpy 1d-array indicating the ordered positions of training locations.
    """

    def __init__(self, locs, ord, NNarray, n, ordering='maxmin', cond_on_pred=True):
        self.locs = locs
        self.ord = np.array(ord, dtype=np.int64)
        self.NNarray = NNarray
        self.n = n
        self.n_pred = locs.shape[0] - n
        self.m = NNarray.shape[1] - 1
        self.ordering = ordering if isinstance(ordering, str) else getattr(ordering, '__name__', 'custom')
        self.cond_on_pred = cond_on_pred
        self.rev_ord = np.argsort(ord)
        self.locs_ord = locs[ord]
        self.obs = np.arange(locs.shape[0]) < n
        for arr in (self.locs, self.ord, self.NNarray, self.rev_ord, self.locs_ord, self.obs):
            arr.setflags(write=False)

    def __repr__(self):
        return 'approx(n=%i, n_pred=%i, m=%i, ordering=%r)' % (self.n, self.n_pred, self.m, self.ordering)

    def levels(self):
        """Compute the topological level of every prediction location.

        Level 0 locations only condition on training locations, and a location at level l conditions on
        prediction locations of levels below l. Locations of the same level can be resolved together.

        Returns:
            ndarray: a numpy 1d-array of integers over the ordered prediction positions.
        """
        return pred_levels_nb(np.array(self.NNarray), self.n)

@njit(cache=True)
def pred_levels_nb(NNarray, n):
    N, k = NNarray.shape
    level = np.zeros(N - n, dtype=np.int64)
    for i in range(n, N):
        lv = 0
        for c in range(1, k):
            j = NNarray[i,c]
            if j>=n:
                lv = max(lv, level[j-n]+1)
        level[i-n] = lv
    return level

def as_locs(locs, name='locs'):
    locs = np.asarray(locs, dtype=float)
    if locs.ndim==1:
        locs = locs.reshape(-1,1)
    if locs.ndim!=2:
        raise DimensionMismatch('%s has to be a numpy 2d-array with one row per location.' % name)
    return locs

def vecchia_specify(locs, m, locs_pred=None, ordering='maxmin', cond_on_pred=True, seed=None):
    """Specify a Vecchia approximation: order the locations and find their conditioning sets.

    Args:
        locs (ndarray): a numpy 2d-array of training locations (n x d).
        m (int): the maximum number of neighbours in each conditioning set. When fewer than **m**
            points precede a location, all of them are used.
        locs_pred (ndarray, optional): a numpy 2d-array of prediction locations (n_pred x d). Prediction
            locations are ordered after all training locations. Defaults to `None`.
        ordering (str_or_function, optional): the ordering strategy applied to the training and the prediction
            locations separately: `maxmin`, `coord`, `random`, `none`, or a function that returns a permutation.
            Defaults to `maxmin`.
        cond_on_pred (bool, optional): whether a prediction location may condition on earlier prediction
            locations. If `False`, conditioning sets of prediction locations only contain training locations.
            Defaults to `True`.
        seed (int, optional): the seed used by the `random` ordering. Defaults to `None`.

    Returns:
        class: an :class:`approx` object.
    """
    locs = as_locs(locs)
    if locs.shape[0]==0:
        raise DimensionMismatch('The location set is empty.')
    if m<0:
        raise DimensionMismatch('The number of neighbours m has to be non-negative, got %i.' % m)
    m = int(m)
    n = locs.shape[0]
    ord = get_order(locs, ordering, seed)
    if locs_pred is not None:
        locs_pred = as_locs(locs_pred, 'locs_pred')
        if locs_pred.shape[1]!=locs.shape[1]:
            raise DimensionMismatch('locs_pred has %i coordinates but locs has %i.' % (locs_pred.shape[1], locs.shape[1]))
        if locs_pred.shape[0]==0:
            locs_pred = None
    if locs_pred is None:
        all_locs = locs.copy()
    else:
        all_locs = np.vstack((locs, locs_pred))
        ord = np.concatenate((ord, get_order(locs_pred, ordering, seed) + n))
    locs_ord = all_locs[ord]
    if locs_pred is None or cond_on_pred:
        NNarray = nn(locs_ord, m, ord)
    else:
        NNarray = np.full((all_locs.shape[0], min(m, all_locs.shape[0]-1)+1), -1, dtype=np.int64)
        NN_obs = nn(locs_ord[:n], m, ord[:n])
        NNarray[:n,:NN_obs.shape[1]] = NN_obs
        NN_pred = get_pred_nn(locs_ord[n:], locs_ord[:n], m, ord[:n])
        NNarray[n:,0] = np.arange(n, all_locs.shape[0])
        NNarray[n:,1:NN_pred.shape[1]+1] = NN_pred
        NNarray = np.ascontiguousarray(np.fliplr(np.sort(NNarray)))
    return approx(all_locs, ord, NNarray, n, ordering, cond_on_pred)

######per-point Gaussian conditioning########
@njit(cache=True)
def chol_nb(A):
    """Cholesky factorization that reports a non-positive pivot instead of raising.
    """
    n = A.shape[0]
    L = np.zeros((n, n))
    for j in range(n):
        s = A[j,j]
        for k in range(j):
            s -= L[j,k]**2
        if not s>0.:
            return L, False
        L[j,j] = np.sqrt(s)
        for i in range(j+1, n):
            t = A[i,j]
            for k in range(j):
                t -= L[i,k]*L[j,k]
            L[i,j] = t/L[j,j]
    return L, True

@njit(cache=True)
def forward_solve(L, b):
    n = L.shape[0]
    x = np.zeros(n)
    for i in range(n):
        sumj = 0.0
        for j in range(i):
            sumj += L[i, j] * x[j]
        x[i] = (b[i] - sumj) / L[i, i]
    return x

@njit(cache=True)
def backward_solve(U, b):
    n = U.shape[0]
    x = np.zeros(n)
    for i in range(n-1, -1, -1):
        sumj = 0.0
        for j in range(i+1, n):
            sumj += U[i, j] * x[j]
        x[i] = (b[i] - sumj) / U[i, i]
    return x

@njit(cache=True, parallel=True)
def vecchia_llik_nb(K, y):
    """Accumulate the quadratic and log-determinant terms of the Vecchia log-likelihood.

    Args:
        K (ndarray): a numpy 3d-array of local covariance matrices, the conditioned point being the last one.
        y (ndarray): a numpy 2d-array of local data, aligned with **K**.
    """
    n = K.shape[0]
    quad = 0.
    logdet = 0.
    n_fail = 0
    for i in prange(n):
        Li, ok = chol_nb(K[i])
        if ok:
            Liyi = forward_solve(Li, y[i])
            quad += Liyi[-1]**2
            logdet += 2*np.log(Li[-1,-1])
        else:
            n_fail += 1
    return quad, logdet, n_fail

@njit(cache=True, parallel=True)
def vecchia_coef_nb(K):
    """Compute the regression coefficients and the conditional variance of the last point of
    every local covariance matrix given the other points.
    """
    n, k = K.shape[0], K.shape[1]
    B = np.zeros((n, k-1))
    D = np.zeros(n)
    ok = np.ones(n, dtype=np.bool_)
    for i in prange(n):
        Li, good = chol_nb(K[i])
        if good:
            B[i,:] = backward_solve(Li[:-1,:-1].T, Li[-1,:-1])
            D[i] = Li[-1,-1]**2
        else:
            ok[i] = False
    return B, D, ok

def row_blocks(n, k, d, max_entries=2**22):
    size = max(1, max_entries // (k*k*max(d,1)))
    for start in range(0, n, size):
        yield slice(start, min(start+size, n))

def local_cov(locs_ord, idx, obs, covfun, covparms):
    """Build the local covariance matrices of a block of conditioning sets.

    Args:
        locs_ord (ndarray): a numpy 2d-array of ordered locations.
        idx (ndarray): a numpy 2d-array of ordered positions, one conditioning set per row with the
            conditioned point last, padded with -1 at the front.
        obs (ndarray): a boolean numpy 1d-array flagging the ordered positions that are observed. The
            nugget is only added to the diagonal entries of observed points.
        covfun (class): a :class:`.covariance` instance.
        covparms (ndarray): a numpy 1d-array of covariance parameters.

    Returns:
        ndarray: a numpy 3d-array of local covariance matrices. Padded entries form an identity block.
    """
    valid = idx>=0
    safe = np.where(valid, idx, 0)
    pts = locs_ord[safe]
    dists = np.sqrt(np.sum((pts[:,:,np.newaxis,:]-pts[:,np.newaxis,:,:])**2, axis=-1))
    K = covfun.cross(dists, covparms)
    K *= valid[:,:,np.newaxis] & valid[:,np.newaxis,:]
    diag = np.arange(idx.shape[1])
    K[:,diag,diag] += np.where(valid, covparms[-1]*obs[safe], 1.)
    return K

def vecchia_likelihood(z, approx, covparms, covmodel='matern', check=False, num_threads=None):
    """Compute the Vecchia approximation of the Gaussian log-likelihood.

    Args:
        z (ndarray): a numpy 1d-array of (detrended) data aligned with the original order of the training locations.
        approx (class): an :class:`approx` object returned by :func:`vecchia_specify`.
        covparms (ndarray): a numpy 1d-array of covariance parameters with the nugget as the last entry.
        covmodel (str_or_class, optional): the covariance family. Defaults to `matern`.
        check (bool, optional): whether to raise :class:`.NumericalInstability` when a local Cholesky
            factorization fails. If `False`, `-inf` is returned instead. Defaults to `False`.
        num_threads (int, optional): the number of numba threads to use. Defaults to `None`, i.e., the
            current setting (see :func:`.set_thread`).

    Returns:
        float: the approximate log-likelihood.
    """
    covfun = get_covfun(covmodel)
    covparms = covfun.check(covparms)
    z = np.asarray(z, dtype=float).ravel()
    n = approx.n
    if len(z)!=n:
        raise DimensionMismatch('z has length %i but the Vecchia approximation has %i training locations.' % (len(z), n))
    y = z[approx.ord[:n]]
    idx = approx.NNarray[:n,::-1]
    quad, logdet, n_fail = 0., 0., 0
    with thread_scope(num_threads):
        for rows in row_blocks(n, idx.shape[1], approx.locs.shape[1]):
            idx_b = idx[rows]
            K = local_cov(approx.locs_ord, idx_b, approx.obs, covfun, covparms)
            yi = np.where(idx_b>=0, y[np.where(idx_b>=0, idx_b, 0)], 0.)
            quad_b, logdet_b, fail_b = vecchia_llik_nb(K, yi)
            quad, logdet, n_fail = quad+quad_b, logdet+logdet_b, n_fail+fail_b
    llik = -0.5*(logdet + quad + n*np.log(2*np.pi))
    if n_fail>0 or not np.isfinite(llik):
        if check:
            raise NumericalInstability('%i local Cholesky factorizations failed at covariance parameters %s.' % (n_fail, covparms))
        return -np.inf
    return llik

@njit(cache=True)
def drop_coincident_nb(idx, locs_ord, noisefree):
    """Resolve conditioning sets that contain noise-free copies of the same location.

    A noise-free neighbour at the location of the conditioned point makes it a deterministic copy of that
    neighbour, and of several noise-free neighbours at one location only the first is kept.

    Returns:
        tuple: the conditioning sets with the dropped neighbours set to -1, and for every row the position
        of the neighbour it copies (-1 if none).
    """
    q, k = idx.shape
    copy_of = np.full(q, -1)
    for r in range(q):
        i = idx[r,k-1]
        for c in range(k-1):
            j = idx[r,c]
            if j<0 or not noisefree[j]:
                continue
            if copy_of[r]<0 and np.all(locs_ord[j]==locs_ord[i]):
                copy_of[r] = j
            for c2 in range(c+1, k-1):
                j2 = idx[r,c2]
                if j2>=0 and noisefree[j2] and np.all(locs_ord[j2]==locs_ord[j]):
                    idx[r,c2] = -1
    return idx, copy_of

def pred_var(B, D, nbr, n, chunk=256):
    """Compute the marginal variances of the prediction locations under the joint Vecchia approximation.

    With x_p = B_po z + B_pp x_p + e, e ~ N(0, diag(D)), the variances are the diagonal of
    A^-1 diag(D) A^-T with A = I - B_pp, obtained by sparse triangular solves on column chunks.
    """
    n_pred = len(D)
    pp = nbr>=n
    if not np.any(pp):
        return D.copy()
    r, c = np.nonzero(pp)
    diag = np.arange(n_pred)
    A = csr_matrix((np.concatenate((np.ones(n_pred), -B[r,c])), (np.concatenate((diag, r)), np.concatenate((diag, nbr[r,c]-n)))), shape=(n_pred, n_pred))
    sd = np.sqrt(D)
    var = np.zeros(n_pred)
    for start in range(0, n_pred, chunk):
        stop = min(start+chunk, n_pred)
        rhs = np.zeros((n_pred-start, stop-start))
        rhs[np.arange(stop-start), np.arange(stop-start)] = sd[start:stop]
        X = spsolve_triangular(A[start:,start:], rhs, lower=True)
        var[start:] += np.sum(X**2, axis=1)
    return var

def pred_var_seq(B, D, nbr, n, levels):
    """Propagate the prediction variances in one pass over the topological levels.

    Each location adds the variances of its prediction neighbours, weighted by the squared coefficients,
    to its conditional variance. Covariances between prediction neighbours are ignored.
    """
    var = np.zeros(len(D))
    for l in range(np.max(levels)+1):
        rows = np.nonzero(levels==l)[0]
        nb = nbr[rows]
        pp = nb>=n
        var[rows] = D[rows] + np.sum(np.where(pp, B[rows]**2*var[np.where(pp, nb-n, 0)], 0.), axis=1)
    return var

VAR_EXACT_MAX = 2000

def vecchia_prediction(z, approx, covparms, covmodel='matern', var_exact=None, num_threads=None):
    """Make Vecchia predictions of the latent (nugget-free) process at the prediction locations.

    Conditional means are propagated through the conditioning sets one topological level at a time,
    so that a prediction location that conditions on earlier prediction locations uses their resolved means.
    Prediction locations that coincide with each other (or with training locations when the nugget is zero)
    are exact copies and share their mean and variance.

    Args:
        z (ndarray): a numpy 1d-array of (detrended) training data aligned with the original order of the training locations.
        approx (class): an :class:`approx` object built with prediction locations.
        covparms (ndarray): a numpy 1d-array of covariance parameters with the nugget as the last entry.
        covmodel (str_or_class, optional): the covariance family. Defaults to `matern`.
        var_exact (bool, optional): whether to compute the exact marginal variances of the joint approximation,
            whose cost grows quadratically with the number of prediction locations, or to propagate the variances
            in one pass ignoring the covariances between prediction neighbours. Defaults to `None`, i.e., exact
            variances for at most `VAR_EXACT_MAX` (2000) prediction locations.
        num_threads (int, optional): the number of numba threads to use. Defaults to `None`.

    Returns:
        tuple: a tuple of two numpy 1d-arrays giving the predictive means and (non-negative) variances, aligned
        with the original order of the prediction locations.
    """
    covfun = get_covfun(covmodel)
    covparms = covfun.check(covparms)
    z = np.asarray(z, dtype=float).ravel()
    n, n_pred = approx.n, approx.n_pred
    if n_pred==0:
        raise DimensionMismatch('The Vecchia approximation has no prediction locations.')
    if len(z)!=n:
        raise DimensionMismatch('z has length %i but the Vecchia approximation has %i training locations.' % (len(z), n))
    if var_exact is None:
        var_exact = n_pred<=VAR_EXACT_MAX
    idx = approx.NNarray[n:,::-1]
    k = idx.shape[1]
    locs_ord = np.array(approx.locs_ord)
    noisefree = ~approx.obs | (covparms[-1]==0)
    B, D = np.zeros((n_pred, k-1)), np.zeros(n_pred)
    nbr = np.full((n_pred, k-1), -1, dtype=np.int64)
    with thread_scope(num_threads):
        for rows in row_blocks(n_pred, k, approx.locs.shape[1]):
            idx_b, copy_of = drop_coincident_nb(np.array(idx[rows]), locs_ord, noisefree)
            K = local_cov(locs_ord, idx_b, approx.obs, covfun, covparms)
            B_b, D_b, ok = vecchia_coef_nb(K)
            cp = copy_of>=0
            B_b[cp] = idx_b[cp,:-1]==copy_of[cp,np.newaxis]
            D_b[cp] = 0.
            if not np.all(ok | cp):
                raise NumericalInstability('%i local Cholesky factorizations failed at covariance parameters %s.' % (np.sum(~(ok | cp)), covparms))
            B[rows], D[rows], nbr[rows] = B_b, D_b, idx_b[:,:-1]
    vals = np.zeros(n + n_pred)
    vals[:n] = z[approx.ord[:n]]
    levels = approx.levels()
    for l in range(np.max(levels)+1):
        rows = np.nonzero(levels==l)[0]
        nb = nbr[rows]
        vals[n+rows] = np.sum(np.where(nb>=0, B[rows]*vals[np.where(nb>=0, nb, 0)], 0.), axis=1)
    if var_exact:
        var = pred_var(B, D, nbr, n)
    else:
        var = pred_var_seq(B, D, nbr, n, levels)
    var = np.maximum(var, 0.)
    pred_ord = approx.ord[n:] - n
    mu_pred, var_pred = np.empty(n_pred), np.empty(n_pred)
    mu_pred[pred_ord], var_pred[pred_ord] = vals[n:], var
    return mu_pred, var_pred
