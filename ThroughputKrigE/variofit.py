"""
This file contains the functions required for estimating the empirical semivariance as well as fitting a theoretical
variogram model to it by gradient descent.
"""

import logging
import warnings
from dataclasses import dataclass
from typing import NamedTuple, Optional, Sequence, Tuple, Union

import numpy as np
from numba import njit

from ThroughputKrigE.errors import FitNonConvergence, InputError
from ThroughputKrigE.utils import check_square, check_values

logger = logging.getLogger(__name__)

# Semivariogram Estimators
@njit
def matheron(x):
    """Matheron (classical) semivariogram from increments x = |z_i - z_j|.

    References
    Matheron, G. (1962): Traité de Géostatistique Appliqué, Tonne 1. Memoires de Bureau de Recherches Géologiques et Miniéres, Paris.

    """
    if x.size == 0:
        return np.nan

    return 0.5 * np.sum(x**2) / x.size

@njit
def cressie_hawkins_median(x):
    """Median-based robust estimator, gamma = 1/2 * 2.198 * median(x)^2.

    The constant 2.198 rescales the squared median of |z_i - z_j| toward an unbiased variance estimate under
    Gaussian increments.

    References
    Cressie, N., and D. Hawkins (1980): Robust estimation of the variogram. Math. Geol., 12, 115-125.

    """
    if x.size == 0:
        return np.nan

    return 0.5 * 2.198 * (np.median(x)**2)

ESTIMATORS = {
    "CressieHawkins": cressie_hawkins_median,
    "Matheron": matheron,
}

# Semivariogram Models
def spherical(h, a, s, r):
    """
    Semivariogram: Spherical (compact support)

    Definition
    ----------
    With x = h / r,
        γ(h) = a + s * [ 1.5 x - 0.5 x^3 ]     for 0 < h <= r
               a + s                           for h  >  r
        γ(0) = 0

    Parameters
    ----------
    h : array-like or float
        Nonnegative lag distance(s).
    a : float
        Nugget.
    s : float
        Partial sill.
    r : float
        Range; the sill is reached exactly at h = r.

    Returns
    -------
    gamma : ndarray
        Semivariogram values with the same shape as `h`.
    """

    h = np.asarray(h, float)
    x = h / r
    part = a + s * (1.5*x - 0.5*x**3)
    out = np.where(h <= r, part, a + s)
    return np.where(h == 0.0, 0.0, out)

def exponential(h, a, s, r):
    """
    Semivariogram: Exponential

    Definition
    ----------
        γ(h) = a + s * ( 1 - exp(-h / r) )     for h > 0
        γ(0) = 0

    Notes
    -----
    Approaches the sill asymptotically (never exactly reaches it).
    """

    h = np.asarray(h, float)
    out = a + s * (1.0 - np.exp(-h / r))
    return np.where(h == 0.0, 0.0, out)

def gaussian(h, a, s, r):
    """
    Semivariogram: Gaussian

    Definition
    ----------
        γ(h) = a + s * ( 1 - exp( - (h / a)^2 ) )     for h > 0
        γ(0) = 0

    Notes
    -----
    The decay scale is the nugget `a`, not the range `r`; `r` is accepted for a uniform signature and unused.
    With a = 0 every positive lag sits on the sill.
    """

    h = np.asarray(h, float)
    with np.errstate(divide='ignore', invalid='ignore'):
        out = a + s * (1.0 - np.exp(-(h / a)**2))
    return np.where(h == 0.0, 0.0, out)

VARIOGRAM_MODELS = {
    "spherical": spherical,
    "exponential": exponential,
    "gaussian": gaussian,
}

PARAM_NAMES = ("a", "s", "r")


def pack_params(theta):
    """Parameter vector (a, s, r) -> {'a': nugget, 's': partial sill, 'r': range}."""
    return {k: float(v) for k, v in zip(PARAM_NAMES, theta)}


@dataclass(frozen=True)
class VariogramModel:
    """
    A theoretical variogram: model tag plus nugget `a`, partial sill `s` and range `r`.

    Selected once by name and passed by value to the fitter and the kriging predictor.
    """

    model_type: str
    a: float
    s: float
    r: float

    def __post_init__(self):
        if self.model_type not in VARIOGRAM_MODELS:
            raise InputError(f"Unknown model_type '{self.model_type}'. Available: {list(VARIOGRAM_MODELS)}")
        if not np.all(np.isfinite([self.a, self.s, self.r])):
            raise InputError(f"variogram parameters must be finite; got a={self.a}, s={self.s}, r={self.r}")
        if self.a < 0:
            raise InputError(f"nugget must be >= 0; got {self.a}")
        if self.r <= 0:
            raise InputError(f"range must be > 0; got {self.r}")

    @classmethod
    def from_theta(cls, model_type, theta):
        a, s, r = (float(v) for v in theta)
        return cls(model_type, a, s, r)

    @property
    def theta(self):
        return (self.a, self.s, self.r)

    @property
    def params(self):
        return pack_params(self.theta)

    def evaluate(self, h):
        return VARIOGRAM_MODELS[self.model_type](h, self.a, self.s, self.r)


class EmpiricalVariogram(NamedTuple):
    """Experimental semivariogram; `gamma` is NaN and `n_pairs` 0 for empty bins."""

    lags: np.ndarray
    gamma: np.ndarray
    n_pairs: np.ndarray

    @property
    def valid(self):
        return np.isfinite(self.gamma)


class FitResult(NamedTuple):
    """Outcome of gradient-descent fitting; `converged` is False when the iteration cap was hit."""

    model: VariogramModel
    loss: float
    n_iter: int
    converged: bool
    r2: float


# Empirical semivariogram
def lag_centers(radius, h_delta, max_lag):
    """Bin centers radius, radius + h_delta, ... up to and including max_lag."""
    if radius <= 0 or h_delta <= 0:
        raise InputError(f"radius and h_delta must be > 0; got radius={radius}, h_delta={h_delta}")
    if max_lag < radius:
        raise InputError(f"max_lag ({max_lag}) must be >= radius ({radius})")
    nbins = int(np.floor((max_lag - radius) / h_delta + 1e-9)) + 1
    return radius + h_delta * np.arange(nbins, dtype=float)

def empirical_variogram(distance, values, radius, h_delta, max_lag, estimator="CressieHawkins"):
    """
    Experimental semivariogram over sliding lag bins.

    Parameters
    ----------
    distance : (n, n) array_like
        Sample-to-sample distance matrix.
    values : (n,) array_like
        Measurements z_i.
    radius : float
        Bin half-width; the first bin is centered at `radius`.
    h_delta : float
        Step between successive bin centers.
    max_lag : float
        Largest bin center.
    estimator : {'CressieHawkins', 'Matheron'}
        Estimator applied to the increments |z_i - z_j| of each bin.

    Returns
    -------
    EmpiricalVariogram
        Lag centers, semivariance per bin (NaN when empty) and ordered-pair counts.

    Notes
    -----
    A bin centered at h takes every ordered pair (i, j) with h - radius < D[i, j] < h + radius, so each
    symmetric pair is counted twice. Self-pairs (distance 0) only qualify when h - radius < 0.
    """

    z = check_values(values)
    D = check_square(distance, z.size)
    if estimator not in ESTIMATORS:
        raise InputError(f"Invalid estimator: choose from {list(ESTIMATORS)}")
    semivarioest_fn = ESTIMATORS[estimator]

    lags = lag_centers(float(radius), float(h_delta), float(max_lag))
    gamma = np.full(lags.size, np.nan)
    n_pairs = np.zeros(lags.size, dtype=int)

    for b, h in enumerate(lags):
        site1, site2 = np.nonzero((D > h - radius) & (D < h + radius))
        if site1.size > 0:
            x = np.abs(z[site1] - z[site2])
            gamma[b] = semivarioest_fn(x)
            n_pairs[b] = site1.size
        else:
            logger.debug("Empty lag bin at h=%.4g", h)

    n_empty = int(np.sum(n_pairs == 0))
    if n_empty:
        logger.info("%d of %d lag bins are empty", n_empty, lags.size)
    return EmpiricalVariogram(lags, gamma, n_pairs)


# Objective Function for Fitting
def objective_func(theta, h, gamma, semivario_fn):
    """Mean squared error between the model at the lags and the empirical semivariance."""
    gamma_pred = semivario_fn(h, *theta)
    return float(np.mean((gamma - gamma_pred)**2))

def r2_score(y, yhat):
    """Coefficient of determination; NaN when y has zero variance."""
    y = np.asarray(y, float).ravel()
    yhat = np.asarray(yhat, float).ravel()
    ss_res = np.sum((y - yhat)**2)
    ss_tot = np.sum((y - np.mean(y))**2)
    return float(1.0 - ss_res / ss_tot) if ss_tot > 0 else np.nan

def initial_guess(empirical, values, range_guess=None):
    """
    Conventional starting point (a, s, r) for the fitter.

    nugget = first non-empty semivariance, sill = sample variance minus the nugget, range = `range_guess` or half
    of the largest non-empty lag.
    """
    valid = empirical.valid
    if not np.any(valid):
        raise InputError("empirical variogram has no non-empty bins")
    z = check_values(values)
    a0 = float(empirical.gamma[valid][0])
    var = float(np.var(z, ddof=1)) if z.size > 1 else 0.0
    s0 = var - a0
    r0 = float(range_guess) if range_guess is not None else 0.5 * float(empirical.lags[valid][-1])
    return a0, s0, r0

def fit_variogram(
    empirical: EmpiricalVariogram,
    model_type: str,
    init: Union[Sequence[float], VariogramModel],
    *,
    alpha: float = 1e-2,
    delta: float = 1e-4,
    limit: int = 10000,
    thresh: float = 1e-6,
    min_range: float = 1e-9,
) -> FitResult:
    """
    Fit (a, s, r) by batch gradient descent on the mean squared error over non-empty lags.

    Parameters
    ----------
    empirical : EmpiricalVariogram
        Output of :func:`empirical_variogram`; NaN bins are left out of the loss.
    model_type : {'spherical', 'exponential', 'gaussian'}
        Theoretical model to fit.
    init : sequence of float or VariogramModel
        Starting (a, s, r).
    alpha : float
        Fixed step size. The curvature of the loss grows with the sill and shrinks with the range, so alpha must
        be scaled to the semivariance magnitude. The default is conservative and can stop at the limit on
        unit-scale curves (a spherical curve with a=1, s=4, r=10 needs about 0.4).
    delta : float
        Forward finite-difference perturbation for each partial derivative.
    limit : int
        Hard iteration cap.
    thresh : float
        Stop once the largest absolute parameter change of a step is below this.
    min_range : float
        Lower bound the range is projected onto after each step (the nugget is projected onto >= 0).

    Returns
    -------
    FitResult
        The last iterate. At the cap ``converged`` is False and a FitNonConvergence warning is emitted.
    """

    if model_type not in VARIOGRAM_MODELS:
        raise InputError(f"Unknown model_type '{model_type}'. Available: {list(VARIOGRAM_MODELS)}")
    if alpha <= 0 or delta <= 0 or thresh < 0 or int(limit) < 1:
        raise InputError(f"invalid descent settings alpha={alpha}, delta={delta}, limit={limit}, thresh={thresh}")
    semivariomodel_fn = VARIOGRAM_MODELS[model_type]

    valid = empirical.valid
    h = np.asarray(empirical.lags, float)[valid]
    g = np.asarray(empirical.gamma, float)[valid]
    if h.size == 0:
        raise InputError("empirical variogram has no non-empty bins")

    theta = np.asarray(init.theta if isinstance(init, VariogramModel) else init, dtype=float).copy()
    if theta.shape != (3,) or not np.all(np.isfinite(theta)):
        raise InputError(f"init must be three finite numbers (a, s, r); got {theta}")
    theta[0] = max(theta[0], 0.0)
    theta[2] = max(theta[2], min_range)

    loss = objective_func(theta, h, g, semivariomodel_fn)
    converged = False
    n_iter = 0
    grad = np.empty(3)
    for n_iter in range(1, int(limit) + 1):
        for p in range(3):
            bumped = theta.copy()
            bumped[p] += delta
            grad[p] = (objective_func(bumped, h, g, semivariomodel_fn) - loss) / delta

        new = theta - alpha * grad
        new[0] = max(new[0], 0.0)
        new[2] = max(new[2], min_range)
        new_loss = objective_func(new, h, g, semivariomodel_fn)
        if not np.isfinite(new_loss):
            logger.warning("Descent diverged at iteration %d; keeping the previous iterate", n_iter)
            break

        step = float(np.max(np.abs(new - theta)))
        theta, loss = new, new_loss
        if step < thresh:
            converged = True
            break

    model = VariogramModel.from_theta(model_type, theta)
    r2 = r2_score(g, semivariomodel_fn(h, *theta)) if h.size > 1 else np.nan
    if converged:
        logger.info("Fitted %s variogram in %d iterations: a=%.4g s=%.4g r=%.4g mse=%.4g",
                    model_type, n_iter, model.a, model.s, model.r, loss)
    else:
        msg = (f"{model_type} fit stopped after {n_iter} iterations without meeting thresh={thresh}; "
               f"returning last iterate a={model.a:.4g} s={model.s:.4g} r={model.r:.4g}")
        logger.warning(msg)
        warnings.warn(msg, FitNonConvergence, stacklevel=2)
    return FitResult(model, loss, n_iter, converged, r2)


# Main Function
def variofit(
    distance,
    values,
    radius: float,
    h_delta: float,
    max_lag: float,
    model_type: str = "spherical",
    estimator: str = "CressieHawkins",
    init: Optional[Sequence[float]] = None,
    range_guess: Optional[float] = None,
    **descent,
) -> Tuple[EmpiricalVariogram, FitResult]:
    """
    Compute an experimental semivariogram and fit a user-selected variogram model.

    Parameters
    ----------
    distance : (n, n) array_like
        Sample-to-sample distances (statute miles).
    values : (n,) array_like
        Measurements.
    radius, h_delta, max_lag : float
        Lag binning, see :func:`empirical_variogram`.
    model_type : {'spherical', 'exponential', 'gaussian'}
        Variogram model to fit.
    estimator : {'CressieHawkins', 'Matheron'}
        Semivariance estimator per bin.
    init : (a, s, r), optional
        Starting parameters; defaults to :func:`initial_guess`.
    range_guess : float, optional
        Starting range used by :func:`initial_guess`.
    **descent
        alpha, delta, limit, thresh, min_range passed to :func:`fit_variogram`.

    Returns
    -------
    empirical : EmpiricalVariogram
    fit : FitResult
    """

    empirical = empirical_variogram(distance, values, radius, h_delta, max_lag, estimator=estimator)
    if init is None:
        init = initial_guess(empirical, values, range_guess=range_guess)
    fit = fit_variogram(empirical, model_type, init, **descent)
    return empirical, fit
