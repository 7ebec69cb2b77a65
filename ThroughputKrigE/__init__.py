"""
ThroughputKrigE
---------------
Great-circle distances, robust empirical variograms, gradient-descent variogram
fitting, and neighborhood predictors (kNN mean, inverse-distance weighted kNN,
ordinary kriging) compared by leave-one-out cross-validation.
"""

# ---------------------------------------------------------------------
# Version (written by setuptools-scm to _version.py at build/install time)
# ---------------------------------------------------------------------
try:
    from ._version import version as __version__  # created by setuptools-scm
except ImportError:  # pragma: no cover
    __version__ = "0.0.0"

# ---------------------------------------------------------------------
# Errors and logging
# ---------------------------------------------------------------------
from .errors import KrigeError, InputError, NumericalError, FitNonConvergence
from .log import configure_logging

# ---------------------------------------------------------------------
# Utilities (distances, sample sets, neighbors)
# ---------------------------------------------------------------------
from .utils import (
    EARTH_RADIUS_MILES,
    haversine_distances,
    pairwise_distances,
    SampleSet,
    select_neighbors,
)

# ---------------------------------------------------------------------
# Variogram estimation and fitting
# ---------------------------------------------------------------------
from .variofit import (
    VARIOGRAM_MODELS,
    ESTIMATORS,
    VariogramModel,
    EmpiricalVariogram,
    FitResult,
    empirical_variogram,
    initial_guess,
    fit_variogram,
    variofit,
)

# ---------------------------------------------------------------------
# Predictors & cross-validation
# ---------------------------------------------------------------------
from .okrig import (
    PREDICTORS,
    Prediction,
    knn_mean,
    knn_weighted,
    ordinary_kriging,
    kriging_weights,
    predict_grid,
)
from .crossval import CrossValidationResult, loo_predictions, loo_cross_validation, compare_methods

# ---------------------------------------------------------------------
# Configuration & per-subset drivers
# ---------------------------------------------------------------------
from .config import AnalysisConfig, VariogramConfig, FitConfig, CrossValidationConfig, load_config
from .analysis import variofitmulti, crossvalmulti, predict_subsets

__all__ = [
    "__version__",
    "KrigeError", "InputError", "NumericalError", "FitNonConvergence", "configure_logging",
    "EARTH_RADIUS_MILES", "haversine_distances", "pairwise_distances", "SampleSet", "select_neighbors",
    "VARIOGRAM_MODELS", "ESTIMATORS", "VariogramModel", "EmpiricalVariogram", "FitResult",
    "empirical_variogram", "initial_guess", "fit_variogram", "variofit",
    "PREDICTORS", "Prediction", "knn_mean", "knn_weighted", "ordinary_kriging", "kriging_weights", "predict_grid",
    "CrossValidationResult", "loo_predictions", "loo_cross_validation", "compare_methods",
    "AnalysisConfig", "VariogramConfig", "FitConfig", "CrossValidationConfig", "load_config",
    "variofitmulti", "crossvalmulti", "predict_subsets",
]
