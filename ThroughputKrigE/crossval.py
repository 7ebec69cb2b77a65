"""
This file contains the leave-one-out cross-validation harness used to score neighborhood sizes for the kNN mean,
inverse-distance weighted kNN and ordinary-kriging predictors on the same footing.
"""

import logging
from multiprocessing.pool import ThreadPool
from typing import NamedTuple, Optional, Sequence

import numpy as np
import pandas as pd
from tqdm.auto import tqdm

from ThroughputKrigE.errors import InputError, NumericalError
from ThroughputKrigE.okrig import PREDICTORS, check_train_distances, get_predictor
from ThroughputKrigE.utils import check_values
from ThroughputKrigE.variofit import VariogramModel

logger = logging.getLogger(__name__)


class CrossValidationResult(NamedTuple):
    """Per-size table with columns ['k', 'mse', 'n_failed'] and the size with the smallest error."""

    table: pd.DataFrame
    best_k: int


def _loo_row(i, predictor, D, z, k, options, on_error):
    try:
        return i, predictor(D[i], z, k, self_index=i, query_index=i, **options).value
    except NumericalError as exc:
        if on_error == "raise":
            raise
        logger.warning("Leave-one-out prediction failed for sample %d (k=%d): %s", i, k, exc)
        return i, np.nan

def loo_predictions(distance, values, k, method, *, model=None, n_jobs=1, on_error="raise"):
    """
    Predict every sample from the remaining ones with a neighborhood of size k.

    The sample itself is pinned to rank 1 and skipped, so each prediction uses the k nearest *other* samples.
    Training and query distances both come from `distance`.

    Returns
    -------
    (n,) ndarray
        Leave-one-out predictions in sample order (NaN where on_error='nan' skipped a failure).
    """
    predictor = get_predictor(method)
    if on_error not in ("raise", "nan"):
        raise InputError("on_error must be 'raise' or 'nan'")
    z = check_values(values)
    D = check_train_distances(distance, z.size)
    if z.size < 2:
        raise InputError("leave-one-out needs at least two samples")

    options = {"skip": 1}
    if method == "kriging":
        if model is None:
            raise InputError("kriging cross-validation requires a fitted VariogramModel")
        options.update(train_distances=D, model=model)

    n = z.size
    est = np.full(n, np.nan)
    args = [(i, predictor, D, z, k, options, on_error) for i in range(n)]
    if n_jobs is not None and n_jobs > 1:
        with ThreadPool(int(n_jobs)) as pool:
            out = pool.starmap(_loo_row, args, chunksize=max(1, n // (4 * int(n_jobs))))
    else:
        out = [_loo_row(*a) for a in args]

    for idx, value in out:
        est[idx] = value
    return est

def loo_cross_validation(
    distance,
    values,
    k_values: Sequence[int],
    method: str = "kriging",
    *,
    model: Optional[VariogramModel] = None,
    n_jobs: int = 1,
    on_error: str = "raise",
    progress: bool = False,
) -> CrossValidationResult:
    """
    Leave-one-out mean squared error for each candidate neighborhood size.

    Parameters
    ----------
    distance : (n, n) array_like
        Sample-to-sample distances.
    values : (n,) array_like
        Measurements.
    k_values : sequence of int
        Candidate neighborhood sizes, each at most n - 1. Repeated sizes are scored once.
    method : {'knn_mean', 'knn_weighted', 'kriging'}
    model : VariogramModel, optional
        Fitted variogram, required for kriging.
    n_jobs : int
        Worker threads across samples.
    on_error : {'raise', 'nan'}
        With 'nan', failed samples are excluded from the mean and counted in 'n_failed'.
    progress : bool
        Show a progress bar over k.

    Returns
    -------
    CrossValidationResult
        Per-size table and the arg-min size (the smallest k on ties).
    """
    z = check_values(values)
    # repeated sizes would give duplicate table rows
    ks = list(dict.fromkeys(int(k) for k in k_values))
    if not ks:
        raise InputError("k_values is empty")
    too_big = [k for k in ks if k < 1 or k > z.size - 1]
    if too_big:
        raise InputError(f"neighborhood sizes {too_big} are outside 1..{z.size - 1}")

    rows = []
    for k in tqdm(ks, desc=f"Cross-validating {method}", leave=False, disable=not progress):
        est = loo_predictions(distance, z, k, method, model=model, n_jobs=n_jobs, on_error=on_error)
        ok = np.isfinite(est)
        mse = float(np.mean((est[ok] - z[ok])**2)) if np.any(ok) else np.nan
        rows.append({"k": k, "mse": mse, "n_failed": int(np.sum(~ok))})

    table = pd.DataFrame(rows, columns=["k", "mse", "n_failed"])
    if table["mse"].notna().any():
        best_k = int(table.loc[table["mse"].idxmin(), "k"])
    else:
        raise InputError(f"no neighborhood size produced a finite error for method '{method}'")
    logger.info("%s: best k=%d (mse=%.4g)", method, best_k, float(table["mse"].min()))
    return CrossValidationResult(table, best_k)

def compare_methods(
    distance,
    values,
    k_values: Sequence[int],
    model: Optional[VariogramModel] = None,
    methods: Sequence[str] = tuple(PREDICTORS),
    **kwargs,
) -> pd.DataFrame:
    """
    Like-for-like comparison table: index 'k', one mean-squared-error column per method.

    Keyword arguments (n_jobs, on_error, progress) are passed to :func:`loo_cross_validation`.
    """
    cols = {}
    for method in methods:
        res = loo_cross_validation(distance, values, k_values, method,
                                   model=model if method == "kriging" else None, **kwargs)
        cols[method] = res.table.set_index("k")["mse"]
    return pd.DataFrame(cols).rename_axis("k")
