from .covariance import covariance, matern, exponential, gaussian, get_covfun
from .ordering import get_order, order_maxmin, order_coord, order_random
from .vecchia import approx, vecchia_specify, vecchia_likelihood, vecchia_prediction
from .estimation import init_config, fitted, vecchia_estimate
from .prediction import vecchia_pred
from .synthetic import simulate
from .utils import write, read, summary, get_thread, set_thread
from .exceptions import VecchiaError, InvalidParameter, DimensionMismatch, ConvergenceFailure, NumericalInstability
