"""
Analysis settings.

Defaults live in frozen dataclasses; :func:`load_config` overlays a YAML mapping
of the form::

    variogram:
      radius: 0.5
      h_delta: 1.0
      max_lag: 30.0
    fit:
      model_type: spherical
      alpha: 0.01
    crossval:
      k_values: [2, 4, 8, 16]
      n_jobs: 4
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Optional, Tuple

import yaml

from ThroughputKrigE.errors import InputError
from ThroughputKrigE.okrig import PREDICTORS
from ThroughputKrigE.variofit import ESTIMATORS, VARIOGRAM_MODELS

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VariogramConfig:
    radius: float = 0.5
    h_delta: float = 1.0
    max_lag: float = 30.0
    estimator: str = "CressieHawkins"


@dataclass(frozen=True)
class FitConfig:
    model_type: str = "spherical"
    alpha: float = 1e-2
    delta: float = 1e-4
    limit: int = 10000
    thresh: float = 1e-6
    range_guess: Optional[float] = None

    def descent(self) -> dict[str, Any]:
        return {"alpha": self.alpha, "delta": self.delta, "limit": self.limit, "thresh": self.thresh}


@dataclass(frozen=True)
class CrossValidationConfig:
    k_values: Tuple[int, ...] = (2, 4, 6, 8, 10, 15, 20)
    methods: Tuple[str, ...] = tuple(PREDICTORS)
    n_jobs: int = 1


@dataclass(frozen=True)
class AnalysisConfig:
    variogram: VariogramConfig = field(default_factory=VariogramConfig)
    fit: FitConfig = field(default_factory=FitConfig)
    crossval: CrossValidationConfig = field(default_factory=CrossValidationConfig)

    def validate(self) -> "AnalysisConfig":
        v, f, c = self.variogram, self.fit, self.crossval
        if v.radius <= 0 or v.h_delta <= 0 or v.max_lag < v.radius:
            raise InputError(f"invalid lag binning: {v}")
        if v.estimator not in ESTIMATORS:
            raise InputError(f"Unknown estimator '{v.estimator}'. Available: {list(ESTIMATORS)}")
        if f.model_type not in VARIOGRAM_MODELS:
            raise InputError(f"Unknown model_type '{f.model_type}'. Available: {list(VARIOGRAM_MODELS)}")
        if f.alpha <= 0 or f.delta <= 0 or f.limit < 1 or f.thresh < 0:
            raise InputError(f"invalid descent settings: {f}")
        if not c.k_values or min(c.k_values) < 1:
            raise InputError(f"k_values must be positive integers: {c.k_values}")
        unknown = [m for m in c.methods if m not in PREDICTORS]
        if unknown:
            raise InputError(f"Unknown methods {unknown}. Available: {list(PREDICTORS)}")
        return self


def _section(cls, data: Any, name: str):
    if data is None:
        return cls()
    if not isinstance(data, dict):
        raise InputError(f"config section '{name}' must be a mapping")
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise InputError(f"unknown keys in config section '{name}': {unknown}")
    values = dict(data)
    # YAML lists become tuples so the dataclasses stay hashable.
    for key, value in values.items():
        if isinstance(value, list):
            values[key] = tuple(value)
    return replace(cls(), **values)


def config_from_dict(data: dict[str, Any]) -> AnalysisConfig:
    unknown = sorted(set(data) - {"variogram", "fit", "crossval"})
    if unknown:
        raise InputError(f"unknown config sections: {unknown}")
    cfg = AnalysisConfig(
        variogram=_section(VariogramConfig, data.get("variogram"), "variogram"),
        fit=_section(FitConfig, data.get("fit"), "fit"),
        crossval=_section(CrossValidationConfig, data.get("crossval"), "crossval"),
    )
    return cfg.validate()


def load_config(path: Optional[Path] = None) -> AnalysisConfig:
    """
    Load settings from a YAML file over the defaults.

    A missing path (None) returns the defaults. The file must hold a mapping.
    """
    if path is None:
        return AnalysisConfig().validate()
    path = Path(path)
    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise InputError(f"YAML must be a mapping: {path}")
    cfg = config_from_dict(data)
    logger.info("Loaded analysis config from %s", path)
    return cfg
