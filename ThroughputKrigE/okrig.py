"""
This file contains the neighborhood predictors: kNN mean, inverse-distance weighted kNN and ordinary kriging
with a fitted variogram, plus a grid driver that applies one of them to every query point.
"""

# import modules
import logging
from multiprocessing.pool import ThreadPool
from typing import Callable, Dict, NamedTuple, Optional

import numpy as np
from scipy.linalg import LinAlgError, solve

# from package
from ThroughputKrigE.errors import InputError, NumericalError
from ThroughputKrigE.utils import check_square, check_values, select_neighbors
from ThroughputKrigE.variofit import VariogramModel

logger = logging.getLogger(__name__)

# singular systems are rejected before solving; solve() alone only warns on them
MAX_CONDITION = 1e12
WEIGHT_SUM_TOL = 1e-9


class Prediction(NamedTuple):
    """A predicted value with the neighborhood and weights it came from."""

    value: float
    neighbors: np.ndarray
    weights: np.ndarray


def _query_vector(query_distances, n):
    d = np.asarray(query_distances, dtype=float).ravel()
    if d.size != n:
        raise InputError(f"query distance vector has length {d.size}, expected {n}")
    return d

# kNN mean
def knn_mean(query_distances, values, k, *, skip=1, self_index=None, **_):
    """
    Unweighted mean of the k neighbors at ranks skip+1 .. skip+k.

    Extra keyword arguments (train_distances, model, query_index) are accepted so all predictors share one
    call shape.
    """
    z = check_values(values)
    d = _query_vector(query_distances, z.size)
    nb = select_neighbors(d, k, skip=skip, self_index=self_index)
    w = np.full(nb.size, 1.0 / nb.size)
    return Prediction(float(np.mean(z[nb])), nb, w)

# inverse-distance weighted kNN
def knn_weighted(query_distances, values, k, *, skip=1, self_index=None, query_index=None, **_):
    """
    Inverse-distance weighted mean of the k neighbors, w_i = (1 / d_i) / sum_j (1 / d_j).

    A neighbor at distance 0 makes the weights undefined and raises NumericalError; in cross-validation this
    only happens when self-exclusion was not applied.
    """
    z = check_values(values)
    d = _query_vector(query_distances, z.size)
    nb = select_neighbors(d, k, skip=skip, self_index=self_index)
    dn = d[nb]
    if np.any(dn <= 0.0):
        raise NumericalError("inverse-distance weights undefined for a zero-distance neighbor",
                             query_index=query_index, neighbors=nb)
    w = 1.0 / dn
    w = w / np.sum(w)
    return Prediction(float(np.sum(w * z[nb])), nb, w)

# ordinary kriging
def kriging_weights(C, b, query_index=None, neighbors=()):
    """
    Ordinary-kriging weights from the variogram system.

    With x = C^-1 b and y = C^-1 1,
        w = x - y (1^T x) / (1^T y) + y / (1^T y)
    which enforces sum(w) = 1. Both right-hand sides go through one LU solve; no explicit inverse is formed.

    Parameters
    ----------
    C : (k, k) ndarray
        C[i, j] = -gamma(distance between neighbors i and j).
    b : (k,) ndarray
        b[i] = -gamma(distance from the query to neighbor i).

    Returns
    -------
    (k,) ndarray
        Weights summing to one.
    """
    k = b.size
    C = np.asarray(C, dtype=float)
    if not np.all(np.isfinite(C)) or np.linalg.cond(C) > MAX_CONDITION:
        raise NumericalError("kriging system is singular or ill-conditioned",
                             query_index=query_index, neighbors=neighbors)
    rhs = np.column_stack([b, np.ones(k)])
    try:
        sol = solve(C, rhs, check_finite=True)
    except (LinAlgError, ValueError) as exc:
        raise NumericalError(f"kriging system could not be solved: {exc}",
                             query_index=query_index, neighbors=neighbors) from exc
    x, y = sol[:, 0], sol[:, 1]
    denom = float(np.sum(y))
    if not np.isfinite(denom) or denom == 0.0:
        raise NumericalError("kriging system is degenerate (1^T C^-1 1 = 0)",
                             query_index=query_index, neighbors=neighbors)
    w = x - y * (np.sum(x) / denom) + y / denom
    if not np.all(np.isfinite(w)):
        raise NumericalError("kriging weights are not finite", query_index=query_index, neighbors=neighbors)
    if abs(float(np.sum(w)) - 1.0) > WEIGHT_SUM_TOL:
        raise NumericalError(f"kriging weights sum to {float(np.sum(w)):.12g}, not 1",
                             query_index=query_index, neighbors=neighbors)
    return w

def ordinary_kriging(query_distances, values, k, *, train_distances, model: VariogramModel, skip=1,
                     self_index=None, query_index=None, **_):
    """
    Ordinary-kriging prediction from the k neighbors at ranks skip+1 .. skip+k.

    Parameters
    ----------
    query_distances : (n,) array_like
        Distances from the query point to every training sample.
    values : (n,) array_like
        Training measurements.
    k : int
        Neighborhood size.
    train_distances : (n, n) array_like
        Training sample-to-sample distances; neighbor-to-neighbor entries of C are read from here.
    model : VariogramModel
        Fitted variogram.
    skip, self_index
        Neighbor ranks, see :func:`ThroughputKrigE.utils.select_neighbors`.
    query_index : int, optional
        Reported in NumericalError.

    Returns
    -------
    Prediction
        Value sum_i w_i z_i with the kriging weights.
    """
    if model is None:
        raise InputError("ordinary kriging requires a fitted VariogramModel")
    z = check_values(values)
    D = check_square(train_distances, z.size, name="train_distances")
    d = _query_vector(query_distances, z.size)
    nb = select_neighbors(d, k, skip=skip, self_index=self_index)

    Dn = D[np.ix_(nb, nb)]
    if np.any(Dn[~np.eye(nb.size, dtype=bool)] <= 0.0):
        raise NumericalError("coincident neighbor locations make the kriging system singular",
                             query_index=query_index, neighbors=nb)
    C = -model.evaluate(Dn)
    b = -model.evaluate(d[nb])
    w = kriging_weights(C, b, query_index=query_index, neighbors=nb)
    return Prediction(float(np.sum(w * z[nb])), nb, w)


PREDICTORS: Dict[str, Callable[..., Prediction]] = {
    "knn_mean": knn_mean,
    "knn_weighted": knn_weighted,
    "kriging": ordinary_kriging,
}

def get_predictor(method):
    if method not in PREDICTORS:
        raise InputError(f"Unknown method '{method}'. Available: {list(PREDICTORS)}")
    return PREDICTORS[method]

def check_train_distances(train_distances, n):
    """
    Validate the explicit training distance matrix against n training values.

    A shape mismatch raises InputError. A matrix that is not symmetric with a zero diagonal is likely the
    wrong matrix for this sample set and is logged as a warning.
    """
    D = check_square(train_distances, n, name="train_distances")
    if not (np.allclose(D, D.T) and np.allclose(np.diag(D), 0.0)):
        logger.warning("train_distances is not symmetric with a zero diagonal; "
                       "check that it belongs to the supplied sample set")
    return D

def _predict_row(i, predictor, row, values, k, options, on_error):
    try:
        return i, predictor(row, values, k, query_index=i, **options).value
    except NumericalError as exc:
        if on_error == "raise":
            raise
        logger.warning("Skipping query %d: %s", i, exc)
        return i, np.nan

def predict_grid(
    target_distances,
    values,
    k: int,
    method: str = "kriging",
    *,
    train_distances=None,
    model: Optional[VariogramModel] = None,
    skip: int = 1,
    n_jobs: int = 1,
    on_error: str = "raise",
) -> np.ndarray:
    """
    Predict one value per query point.

    Parameters
    ----------
    target_distances : (m, n) array_like
        Distances from each query point to each training sample.
    values : (n,) array_like
        Training measurements.
    k : int
        Neighborhood size.
    method : {'knn_mean', 'knn_weighted', 'kriging'}
    train_distances : (n, n) array_like
        Training sample-to-sample distances for the supplied `values`; required for kriging.
    model : VariogramModel
        Fitted variogram; required for kriging.
    skip : int, default 1
        Leading ranks discarded. The default drops the nearest sample even for new locations.
    n_jobs : int, default 1
        Worker threads; each query writes only its own output slot.
    on_error : {'raise', 'nan'}
        'nan' records NaN for query points whose system fails and logs them.

    Returns
    -------
    (m,) ndarray
        Predictions in query order.
    """
    predictor = get_predictor(method)
    if on_error not in ("raise", "nan"):
        raise InputError("on_error must be 'raise' or 'nan'")
    z = check_values(values)
    DT = np.asarray(target_distances, dtype=float)
    if DT.ndim != 2 or DT.shape[1] != z.size:
        raise InputError(f"target_distances has shape {DT.shape}, expected (m, {z.size})")

    options = {"skip": skip}
    if method == "kriging":
        if train_distances is None or model is None:
            raise InputError("kriging requires explicit train_distances and model")
        options.update(train_distances=check_train_distances(train_distances, z.size), model=model)

    m = DT.shape[0]
    est = np.full(m, np.nan)
    args = [(i, predictor, DT[i], z, k, options, on_error) for i in range(m)]
    if n_jobs is not None and n_jobs > 1 and m > 1:
        with ThreadPool(int(n_jobs)) as pool:
            out = pool.starmap(_predict_row, args, chunksize=max(1, m // (4 * int(n_jobs))))
    else:
        out = [_predict_row(*a) for a in args]

    # aggregate output by query index
    for idx, value in out:
        est[idx] = value
    return est
