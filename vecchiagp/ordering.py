import heapq
import numpy as np
from sklearn.neighbors import KDTree

def order_maxmin(locs):
    """Compute the exact max-min ordering of a location set.

    The first point is the one closest to the centroid. Each following point is the one that
    maximizes the distance to the already ordered points. A static KD-tree gives, for each newly
    ordered point, the points whose distance to the ordered set can shrink: they all lie within
    the current max-min distance of the new point. Ties are broken by the lower index.

    Args:
        locs (ndarray): a numpy 2d-array of locations, one row per point.

    Returns:
        ndarray: a numpy 1d-array of integers giving the max-min permutation of the row indices.
    """
    n = locs.shape[0]
    if n<=2:
        return np.arange(n)
    center = np.mean(locs, axis=0)
    first = int(np.argmin(np.sum((locs-center)**2, axis=1)))
    dist = np.sqrt(np.sum((locs-locs[first])**2, axis=1))
    tree = KDTree(locs)
    selected = np.zeros(n, dtype=bool)
    selected[first] = True
    ord = [first]
    heap = [(-dist[i], i) for i in range(n) if i!=first]
    heapq.heapify(heap)
    while heap:
        neg_d, i = heapq.heappop(heap)
        # entries are left in the heap when a distance shrinks
        if selected[i] or -neg_d!=dist[i]:
            continue
        selected[i] = True
        ord.append(i)
        ind, d = tree.query_radius(locs[i:i+1], r=dist[i], return_distance=True)
        ind, d = ind[0], d[0]
        upd = ~selected[ind] & (d<dist[ind])
        for j, dj in zip(ind[upd], d[upd]):
            dist[j] = dj
            heapq.heappush(heap, (-dj, j))
    return np.array(ord, dtype=np.int64)

def order_coord(locs):
    """Order the locations by their first coordinate, then by the remaining ones.
    """
    return np.lexsort(locs.T[::-1]).astype(np.int64)

def order_random(locs, seed=None):
    """Order the locations at random.
    """
    return np.random.default_rng(seed).permutation(locs.shape[0]).astype(np.int64)

orderings = {
    'maxmin': order_maxmin,
    'coord': order_coord,
    'random': order_random,
    'none': lambda locs: np.arange(locs.shape[0], dtype=np.int64),
}

def get_order(locs, ordering='maxmin', seed=None):
    """Compute the ordering of a location set.

    Args:
        locs (ndarray): a numpy 2d-array of locations, one row per point.
        ordering (str_or_function, optional): either `maxmin`, `coord`, `random`, `none`, or a function that
            takes **locs** and returns a permutation of its row indices. Defaults to `maxmin`.
        seed (int, optional): the seed used by the `random` ordering. Defaults to `None`.

    Returns:
        ndarray: a numpy 1d-array of integers giving the permutation.
    """
    n = locs.shape[0]
    if callable(ordering):
        ord = np.asarray(ordering(locs), dtype=np.int64)
    elif ordering=='random':
        ord = order_random(locs, seed)
    elif ordering in orderings:
        ord = orderings[ordering](locs)
    else:
        raise ValueError("ordering has to be one of %s or a function, got %r." % (', '.join(orderings), ordering))
    if ord.shape!=(n,) or not np.array_equal(np.sort(ord), np.arange(n)):
        raise ValueError('The ordering is not a permutation of the %i locations.' % n)
    return ord
