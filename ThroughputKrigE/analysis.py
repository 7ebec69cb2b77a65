"""
This file contains the per-subset drivers: fitting one variogram per subset (plus the aggregate set), scoring every
predictor by leave-one-out cross-validation per subset, and predicting a caller-supplied query grid per subset.
"""

import logging
from typing import Dict, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from tqdm.auto import tqdm

from ThroughputKrigE.config import AnalysisConfig
from ThroughputKrigE.crossval import loo_cross_validation
from ThroughputKrigE.errors import InputError
from ThroughputKrigE.okrig import predict_grid
from ThroughputKrigE.utils import SampleSet, as_points
from ThroughputKrigE.variofit import FitResult, variofit

logger = logging.getLogger(__name__)

AGGREGATE = "aggregate"


def split_subsets(df, value_col, subset_col=None, coord_cols=("longitude", "latitude"), include_aggregate=True):
    """
    One SampleSet per subset label, in order of first appearance, plus the whole table under "aggregate".

    Each subset gets its own SampleSet, hence its own distance matrix.
    """
    sets: Dict[str, SampleSet] = {}
    if include_aggregate or subset_col is None:
        sets[AGGREGATE] = SampleSet.from_frame(df, value_col, coord_cols)
    if subset_col is not None:
        if subset_col not in df.columns:
            raise InputError(f"Missing required columns: {[subset_col]}")
        for gid, gdf in df.groupby(subset_col, sort=False):
            sets[str(gid)] = SampleSet.from_frame(gdf, value_col, coord_cols)
    return sets

# Main function: multi fitting
def variofitmulti(
    df: pd.DataFrame,
    value_col: str,
    subset_col: Optional[str] = None,
    coord_cols: Sequence[str] = ("longitude", "latitude"),
    config: Optional[AnalysisConfig] = None,
    include_aggregate: bool = True,
    progress: bool = False,
) -> Tuple[pd.DataFrame, Dict[str, FitResult], Dict[str, SampleSet]]:
    """
    Fit an experimental semivariogram and a variogram model per subset.

    Parameters
    ----------
    df : pandas.DataFrame
        Cleaned samples with coordinate, value and (optionally) subset columns.
    value_col : str
        Measurement column.
    subset_col : str, optional
        Column whose values define subsets (e.g. 'urban' / 'rural').
    coord_cols : (lon_col, lat_col)
        Coordinate columns in degrees.
    config : AnalysisConfig, optional
        Binning and descent settings; defaults when omitted.
    include_aggregate : bool
        Also fit the whole table under the label "aggregate".
    progress : bool
        Show a progress bar over subsets.

    Returns
    -------
    summary : DataFrame
        One row per subset: subset, n_samples, mean, std, n_bins, a, s, r, loss, r2, n_iter, converged.
    fits : dict
        {subset: FitResult}
    sets : dict
        {subset: SampleSet}, reused by :func:`crossvalmulti` and :func:`predict_subsets`.
    """
    cfg = (config or AnalysisConfig()).validate()
    vcfg, fcfg = cfg.variogram, cfg.fit
    sets = split_subsets(df, value_col, subset_col, coord_cols, include_aggregate)

    fits: Dict[str, FitResult] = {}
    summary_rows = []
    for gid, ss in tqdm(sets.items(), total=len(sets), desc="Fitting subsets", disable=not progress):
        empirical, fit = variofit(
            ss.distances,
            ss.values,
            vcfg.radius,
            vcfg.h_delta,
            vcfg.max_lag,
            model_type=fcfg.model_type,
            estimator=vcfg.estimator,
            range_guess=fcfg.range_guess,
            **fcfg.descent(),
        )
        fits[gid] = fit
        summary_rows.append({
            "subset": gid,
            "n_samples": len(ss),
            "mean": float(np.mean(ss.values)),
            "std": float(np.std(ss.values, ddof=1)) if len(ss) > 1 else np.nan,
            "n_bins": int(np.sum(empirical.valid)),
            **fit.model.params,
            "loss": fit.loss,
            "r2": fit.r2,
            "n_iter": fit.n_iter,
            "converged": fit.converged,
        })

    summary = pd.DataFrame(summary_rows, columns=["subset", "n_samples", "mean", "std", "n_bins",
                                                  "a", "s", "r", "loss", "r2", "n_iter", "converged"])
    return summary, fits, sets

def crossvalmulti(
    sets: Mapping[str, SampleSet],
    fits: Mapping[str, FitResult],
    config: Optional[AnalysisConfig] = None,
    on_error: str = "raise",
    progress: bool = False,
) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """
    Per-subset, per-method leave-one-out error across the configured neighborhood grid.

    Sizes larger than n - 1 for a subset are dropped for that subset.

    Returns
    -------
    errors : DataFrame
        Long table with columns ['subset', 'method', 'k', 'mse', 'n_failed'].
    best : DataFrame
        One row per (subset, method) with the selected 'best_k' and its 'mse'.
    """
    cfg = (config or AnalysisConfig()).validate()
    ccfg = cfg.crossval
    frames = []
    best_rows = []
    for gid, ss in tqdm(sets.items(), total=len(sets), desc="Cross-validating subsets", disable=not progress):
        ks = [k for k in ccfg.k_values if k <= len(ss) - 1]
        if not ks:
            logger.warning("Subset %s has %d samples; no neighborhood size fits", gid, len(ss))
            continue
        for method in ccfg.methods:
            model = fits[gid].model if method == "kriging" else None
            res = loo_cross_validation(ss.distances, ss.values, ks, method, model=model,
                                       n_jobs=ccfg.n_jobs, on_error=on_error)
            frames.append(res.table.assign(subset=gid, method=method))
            best_rows.append({"subset": gid, "method": method, "best_k": res.best_k,
                              "mse": float(res.table.set_index("k").loc[res.best_k, "mse"])})

    cols = ["subset", "method", "k", "mse", "n_failed"]
    errors = pd.concat(frames, ignore_index=True)[cols] if frames else pd.DataFrame(columns=cols)
    best = pd.DataFrame(best_rows, columns=["subset", "method", "best_k", "mse"])
    return errors, best

def predict_subsets(
    sets: Mapping[str, SampleSet],
    targets,
    best: pd.DataFrame,
    fits: Optional[Mapping[str, FitResult]] = None,
    skip: int = 1,
    n_jobs: int = 1,
    on_error: str = "raise",
) -> pd.DataFrame:
    """
    Predict the query grid for every (subset, method) row of `best`, using that row's best_k.

    Each subset is predicted from its own samples and its own training distance matrix.

    Returns
    -------
    DataFrame
        Columns ['longitude', 'latitude'] followed by one '<subset>/<method>' column per row of `best`.
    """
    XT = as_points(targets, "targets")
    out = pd.DataFrame({"longitude": XT[:, 0], "latitude": XT[:, 1]})

    for row in best.itertuples(index=False):
        ss = sets[row.subset]
        model = None
        if row.method == "kriging":
            if fits is None or row.subset not in fits:
                raise InputError(f"no fitted variogram for subset '{row.subset}'")
            model = fits[row.subset].model
        out[f"{row.subset}/{row.method}"] = predict_grid(
            ss.distances_to(XT), ss.values, int(row.best_k), row.method,
            train_distances=ss.distances, model=model, skip=skip, n_jobs=n_jobs, on_error=on_error,
        )
    return out
