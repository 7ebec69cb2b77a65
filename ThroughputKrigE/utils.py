"""
This file contains the distance provider, the sample-set container and the neighbor selector shared by the variogram
fitting, kriging and cross-validation modules.
"""

import logging
from functools import cached_property

import numpy as np

from ThroughputKrigE.errors import InputError

logger = logging.getLogger(__name__)

EARTH_RADIUS_MILES = 3958.8


def as_points(coords, name="coordinates"):
    """
    Coerce an array-like of (longitude, latitude) rows to a float array of shape (n, 2).

    A single point given as a flat pair is promoted to shape (1, 2). Anything else that is not (n, 2) raises
    InputError.
    """
    X = np.asarray(coords, dtype=float)
    if X.ndim == 1 and X.size == 2:
        X = X.reshape(1, 2)
    if X.ndim == 1 and X.size == 0:
        X = X.reshape(0, 2)
    if X.ndim != 2 or X.shape[1] != 2:
        raise InputError(f"{name} must have shape (n, 2) as (longitude, latitude); got {X.shape}")
    return X


# Geographical Distance Function
def haversine_distances(targets, samples, earth_radius=EARTH_RADIUS_MILES):
    """
    Great-circle distance matrix between two point sets using the haversine formula.

    :param targets: target locations, rows of (longitude, latitude) in degrees
    :type targets: numpy.ndarray, shape (m, 2)
    :param samples: sample locations, rows of (longitude, latitude) in degrees
    :type samples: numpy.ndarray, shape (n, 2)
    :keyword earth_radius: radius of the earth in statute miles
    :type earth_radius: float
    :returns: distance matrix where entry (i, j) is the distance from target i to sample j
    :rtype: numpy.ndarray, shape (m, n)
    """
    XT = as_points(targets, "targets")
    X = as_points(samples, "samples")
    m, n = XT.shape[0], X.shape[0]
    if m == 0 or n == 0:
        return np.zeros((m, n))

    cfact = np.pi / 180.
    lon1 = cfact * XT[:, 0][:, None]
    lat1 = cfact * XT[:, 1][:, None]
    lon2 = cfact * X[:, 0][None, :]
    lat2 = cfact * X[:, 1][None, :]

    dlat = lat1 - lat2
    dlon = lon1 - lon2
    aval = (np.sin(dlat / 2.) ** 2.) + (np.cos(lat1) * np.cos(lat2) * (np.sin(dlon / 2.) ** 2.))
    # rounding can push aval a hair outside [0, 1] for antipodal points
    aval = np.clip(aval, 0.0, 1.0)
    return 2. * earth_radius * np.arctan2(np.sqrt(aval), np.sqrt(1. - aval))


def pairwise_distances(coords, earth_radius=EARTH_RADIUS_MILES):
    """Symmetric (n, n) sample-to-sample distance matrix with an exact zero diagonal."""
    X = as_points(coords)
    D = haversine_distances(X, X, earth_radius=earth_radius)
    D = 0.5 * (D + D.T)
    np.fill_diagonal(D, 0.0)
    return D


def check_values(values, n=None, name="values"):
    """Validate a measurement vector: 1-D, non-empty, finite and (optionally) of length n."""
    z = np.asarray(values, dtype=float).ravel()
    if z.size == 0:
        raise InputError(f"{name} is empty")
    if n is not None and z.size != n:
        raise InputError(f"{name} has length {z.size}, expected {n}")
    bad = np.flatnonzero(~np.isfinite(z))
    if bad.size:
        raise InputError(f"{name} contains non-finite entries at indices {bad[:10].tolist()}")
    return z


def check_square(distance, n, name="distance"):
    """Validate an (n, n) distance matrix."""
    D = np.asarray(distance, dtype=float)
    if D.shape != (n, n):
        raise InputError(f"{name} has shape {D.shape}, expected ({n}, {n}) to match the sample values")
    return D


class SampleSet:
    """
    Ordered, index-stable set of (longitude, latitude, value) samples.

    The index into the set is the only identity used by the neighbor selector and the predictors, so coordinates
    and values are stored read-only. Derived artifacts (the pairwise distance matrix) are cached per instance;
    :meth:`subset` returns a new instance, which is how a change of sample set invalidates them.

    Parameters
    ----------
    coords : (n, 2) array_like
        Sample locations as (longitude, latitude) in degrees.
    values : (n,) array_like
        Finite measurements in the working unit.
    earth_radius : float, default 3958.8
        Sphere radius used for distances (statute miles).
    """

    def __init__(self, coords, values, earth_radius=EARTH_RADIUS_MILES):
        X = as_points(coords).copy()
        if X.shape[0] == 0:
            raise InputError("sample set is empty")
        z = check_values(values, n=X.shape[0]).copy()
        bad = np.flatnonzero(~np.isfinite(X).all(axis=1))
        if bad.size:
            raise InputError(f"coordinates contain non-finite rows at indices {bad[:10].tolist()}")
        X.setflags(write=False)
        z.setflags(write=False)
        self.coords = X
        self.values = z
        self.earth_radius = float(earth_radius)

    @classmethod
    def from_frame(cls, df, value_col, coord_cols=("longitude", "latitude"), **kwargs):
        """Build a sample set from DataFrame columns; row order becomes the sample index."""
        missing = [c for c in (*coord_cols, value_col) if c not in df.columns]
        if missing:
            raise InputError(f"Missing required columns: {missing}")
        return cls(df[list(coord_cols)].to_numpy(dtype=float), df[value_col].to_numpy(dtype=float), **kwargs)

    def __len__(self):
        return self.values.size

    def __repr__(self):
        return f"SampleSet(n={len(self)})"

    @cached_property
    def distances(self):
        D = pairwise_distances(self.coords, earth_radius=self.earth_radius)
        D.setflags(write=False)
        logger.debug("Computed %dx%d sample distance matrix", D.shape[0], D.shape[1])
        return D

    def distances_to(self, targets):
        """(m, n) distances from target points to every sample."""
        return haversine_distances(targets, self.coords, earth_radius=self.earth_radius)

    def subset(self, mask):
        """New sample set holding the rows selected by a boolean mask or index array."""
        idx = np.asarray(mask)
        if idx.dtype == bool:
            if idx.shape != (len(self),):
                raise InputError(f"mask has shape {idx.shape}, expected ({len(self)},)")
            idx = np.flatnonzero(idx)
        return SampleSet(self.coords[idx], self.values[idx], earth_radius=self.earth_radius)


# Neighbor selection
def select_neighbors(distances, k, skip=1, self_index=None):
    """
    Sample indices at ranks skip+1 .. skip+k of one query's distance vector.

    Ranks come from a stable ascending sort, so ties keep sample order. By convention rank 1 is skipped
    (``skip=1``): when the query is itself a sample, its zero-distance entry would otherwise predict itself.
    Passing ``self_index`` pins that sample to rank 1 so a coincident duplicate location cannot take its place.

    When predicting genuinely new locations the default still discards the single nearest sample, which
    differs from cross-validation mode; pass ``skip=0`` to keep it.

    Parameters
    ----------
    distances : (n,) array_like
        Distances from the query point to every sample.
    k : int
        Neighborhood size, >= 1.
    skip : int, default 1
        Number of leading ranks to discard.
    self_index : int, optional
        Index of the query within the sample set (cross-validation mode).

    Returns
    -------
    (k,) ndarray of int
        Neighbor indices, nearest first.
    """
    d = np.asarray(distances, dtype=float).ravel()
    k = int(k)
    skip = int(skip)
    if k < 1:
        raise InputError(f"neighborhood size must be >= 1; got {k}")
    if skip < 0:
        raise InputError(f"skip must be >= 0; got {skip}")
    if skip + k > d.size:
        raise InputError(f"requested ranks {skip + 1}..{skip + k} but only {d.size} samples are available")

    if self_index is not None:
        d = d.copy()
        d[int(self_index)] = -np.inf
    order = np.argsort(d, kind="stable")
    return order[skip:skip + k]
