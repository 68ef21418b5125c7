from dill import dump, load
from tabulate import tabulate
from numba import set_num_threads, get_num_threads, config
import numpy as np
import warnings
from contextlib import contextmanager

######Save and Load Fits#######
def write(obj, pkl_file):
    """Save a fitted model (or a Vecchia approximation) to a `.pkl` file.

    Args:
        obj (class): a :class:`.fitted` class returned by :func:`.vecchia_estimate`, or an :class:`.approx` class.
        pkl_file (strings): the path to and the name of the `.pkl` file to which
            **obj** is saved.
    """
    with open(pkl_file+".pkl","wb") as f:
        dump(obj, f)


def read(pkl_file):
    """Load the `.pkl` file that stores a fitted model.

    Args:
        pkl_file (strings): the path to and the name of the `.pkl` file where
            the fitted model is stored.

    Returns:
        class: the stored object.
    """
    with open(pkl_file+".pkl", "rb") as f:
        obj = load(f)
    return obj

######thread functions#######
def get_thread():
    """Get number of numba thread.
    """
    return get_num_threads()

def set_thread(value):
    """Set number of numba thread.

    Requests above the number of threads numba was launched with are capped.
    """
    value = int(value)
    if value<1:
        raise ValueError('The number of threads has to be at least 1.')
    if value>config.NUMBA_NUM_THREADS:
        warnings.warn(f'{value} threads requested but only {config.NUMBA_NUM_THREADS} are available. The number of threads is set to {config.NUMBA_NUM_THREADS}.', UserWarning)
        value = config.NUMBA_NUM_THREADS
    set_num_threads(value)

@contextmanager
def thread_scope(num_threads=None):
    """Temporarily set the number of numba threads. `None` keeps the current setting.
    """
    if num_threads is None:
        yield get_num_threads()
        return
    original = get_num_threads()
    set_thread(num_threads)
    try:
        yield get_num_threads()
    finally:
        set_num_threads(original)

######summary function#######
def summary(obj, tablefmt='fancy_grid'):
    """Summarize key information of a fitted model or a Vecchia approximation.

    Args:
        obj (class): **obj** can be one of the following:

            1. an instance of :class:`.fitted` class;
            2. an instance of :class:`.approx` class.
        tablefmt (str): the style of output summary table. See https://pypi.org/project/tabulate/ for different options.
            Defaults to `fancy_grid`.

    Returns:
        string: a table summarizing key information contained in **obj**.
    """
    info=[]
    if type(obj).__name__=='fitted':
        info.append(['Parameter', 'Estimate'])
        for name, value in zip(obj.par_names, obj.theta_hat):
            info.append([name, f"{value:.4g}"])
        for i, value in enumerate(np.atleast_1d(obj.beta_hat)):
            info.append([f'beta {i+1:d}', f"{value:.4g}"])
        table = tabulate(info, headers='firstrow', tablefmt=tablefmt)
        print(table)
        print(f"Covariance model: {obj.covmodel.name}. Trend: {obj.trend}. Locations: {obj.locs.shape[0]}. Neighbours: {obj.m}. Log-likelihood: {obj.loglik:.4f}.")
    elif type(obj).__name__=='approx':
        info.append(['Training Locs', 'Prediction Locs', 'Dims', 'Neighbours', 'Ordering', 'Prediction Levels'])
        info.append([obj.n, obj.n_pred, obj.locs.shape[1], obj.m, obj.ordering,
            'NA' if obj.n_pred==0 else int(np.max(obj.levels()))+1])
        table = tabulate(info, headers='firstrow', tablefmt=tablefmt)
        print(table)
    else:
        raise TypeError(f"summary() only supports fitted and approx objects, got {type(obj).__name__}.")
    return table
